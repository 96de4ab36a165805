# kill_sandbox.py - POST /api/kill-sandbox

from typing import Any, Dict

from loguru import logger

from shared_state import AppServices


async def POST(services: AppServices) -> Dict[str, Any]:
    """Terminate the active sandbox. Calling it with nothing active is a no-op."""
    had_sandbox = services.manager.environment is not None
    killed = await services.manager.kill_sandbox()
    logger.info(f"[kill-sandbox] Sandbox killed: {killed}")

    if not had_sandbox:
        message = "No active sandbox to kill"
    elif killed:
        message = "Sandbox cleaned up successfully"
    else:
        message = "Sandbox released; remote termination failed and it will expire on its own"
    return {"success": True, "sandboxKilled": killed, "message": message}
