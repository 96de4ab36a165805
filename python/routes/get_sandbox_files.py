# get_sandbox_files.py - GET /api/get-sandbox-files

from typing import Any, Dict

from loguru import logger

from codegen.file_cache import read_project_files
from sandbox.errors import SandboxError
from shared_state import AppServices


async def GET(services: AppServices) -> Dict[str, Any]:
    """Read the project files straight from the sandbox.

    Read-only: the apply pipeline's file cache is left as it is.
    """
    environment = services.manager.environment
    if environment is None:
        return {"success": False, "error": "No active sandbox", "status": 404}

    logger.info("[get-sandbox-files] Fetching file structure...")
    try:
        files, structure = await read_project_files(environment)
    except SandboxError as error:
        logger.error(f"[get-sandbox-files] {error}")
        return {"success": False, "error": str(error), "status": error.status_code}

    return {
        "success": True,
        "files": files,
        "structure": structure,
        "fileCount": len(files),
    }
