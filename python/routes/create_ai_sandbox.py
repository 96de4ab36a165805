# create_ai_sandbox.py - POST /api/create-ai-sandbox

from typing import Any, Dict

from loguru import logger

from sandbox.errors import SandboxError
from shared_state import AppServices


async def POST(services: AppServices) -> Dict[str, Any]:
    """Kill any existing sandbox, then create and bootstrap a fresh one."""
    try:
        info = await services.manager.create_sandbox()
    except SandboxError as error:
        logger.error(f"[create-ai-sandbox] CRITICAL ERROR: {error}")
        return {
            "success": False,
            "error": str(error),
            "status": error.status_code,
        }

    logger.info(f"[create-ai-sandbox] Sandbox {info.sandboxId} ready at {info.url}")
    return {
        "success": True,
        "sandboxId": info.sandboxId,
        "url": info.url,
        "message": "Sandbox created with Vite, React, and Tailwind.",
    }
