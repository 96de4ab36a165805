# detect_and_install_packages.py - POST /api/detect-and-install-packages

from typing import Any, Dict

from loguru import logger

from codegen.packages import detect_packages_from_files
from sandbox.errors import InstallError
from shared_state import AppServices


async def POST(services: AppServices, body: Dict[str, Any]) -> Dict[str, Any]:
    """Scan ``{path: content}`` for imported npm packages and install the missing ones."""
    files = body.get("files")
    if not files or not isinstance(files, dict):
        return {"success": False, "error": "Files object is required", "status": 400}

    if services.manager.environment is None:
        return {"success": False, "error": "No active sandbox", "status": 404}

    logger.info(f"[detect-and-install-packages] Processing files: {list(files.keys())}")
    detected = detect_packages_from_files(files)
    logger.info(f"[detect-and-install-packages] Packages to install: {detected}")

    if not detected:
        return {
            "success": True,
            "packagesDetected": [],
            "installed": [],
            "failed": [],
            "alreadyInstalled": [],
            "message": "No new packages to install",
        }

    try:
        report = await services.sandbox_installer.install(detected)
    except InstallError as error:
        logger.error(f"[detect-and-install-packages] Error: {error}")
        return {"success": False, "error": str(error), "packagesDetected": detected, "status": 500}

    return {
        "success": True,
        "packagesDetected": detected,
        "installed": report.installed,
        "failed": report.failed,
        "alreadyInstalled": report.alreadyInstalled,
        "message": f"Installed {len(report.installed)} packages",
    }
