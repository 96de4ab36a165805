# restore_sandbox.py - POST /api/restore-sandbox

from typing import Any, Dict

from loguru import logger

from sandbox.errors import SandboxError
from shared_state import AppServices


async def POST(services: AppServices, body: Dict[str, Any]) -> Dict[str, Any]:
    """Reattach to a sandbox by id, or to the one recorded before a restart."""
    manager = services.manager
    sandbox_id = body.get("sandboxId")
    if sandbox_id is not None and (not isinstance(sandbox_id, str) or not sandbox_id.strip()):
        return {"success": False, "error": "sandboxId must be a non-empty string", "status": 400}

    try:
        if sandbox_id:
            info = await manager.reconnect(sandbox_id.strip())
        else:
            if manager.state_store is None or manager.state_store.load() is None:
                return {"success": False, "error": "No sandbox id given and none recorded", "status": 400}
            info = await manager.restore()
    except SandboxError as error:
        logger.warning(f"[restore-sandbox] Restore failed: {error}")
        return {"success": False, "error": str(error), "status": error.status_code}

    logger.info(f"[restore-sandbox] Restored sandbox {info.sandboxId}")
    return {"success": True, "sandboxId": info.sandboxId, "url": info.url, "message": "Sandbox restored"}
