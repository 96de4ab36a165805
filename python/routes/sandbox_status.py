# sandbox_status.py - GET /api/sandbox-status

from typing import Any, Dict, Optional

from loguru import logger

from sandbox.errors import SandboxError
from shared_state import AppServices


async def GET(services: AppServices, sandbox_id: Optional[str] = None) -> Dict[str, Any]:
    """Report whether a sandbox is active and answering.

    When a sandbox id is given that is not the active one, reconnect to it first.
    """
    manager = services.manager
    if sandbox_id and (manager.info is None or manager.info.sandboxId != sandbox_id):
        try:
            await manager.reconnect(sandbox_id)
        except SandboxError as error:
            logger.warning(f"[sandbox-status] Could not reconnect to {sandbox_id}: {error}")
            return {
                "success": True,
                "active": False,
                "healthy": False,
                "sandboxData": None,
                "message": f"Sandbox {sandbox_id} is not available",
            }

    status = await manager.get_status()
    if status.healthy:
        message = "Sandbox is active and healthy"
    elif status.active:
        message = "Sandbox exists but is not responding"
    else:
        message = "No active sandbox"

    return {
        "success": True,
        "active": status.active,
        "healthy": status.healthy,
        "sandboxData": status.info.model_dump(mode="json") if status.info else None,
        "message": message,
    }
