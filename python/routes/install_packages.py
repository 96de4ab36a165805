# install_packages.py - POST /api/install-packages

from typing import Any, Dict

from loguru import logger

from codegen.packages import dedupe_packages
from sandbox.errors import InstallError
from shared_state import AppServices


async def POST(services: AppServices, body: Dict[str, Any]) -> Dict[str, Any]:
    packages = body.get("packages")
    if not packages or not isinstance(packages, list):
        return {"success": False, "error": "Packages array is required", "status": 400}

    valid_packages = dedupe_packages(packages)
    if not valid_packages:
        return {"success": False, "error": "No valid package names provided", "status": 400}
    if len(packages) != len(valid_packages):
        logger.info(
            f"[install-packages] Cleaned packages: removed {len(packages) - len(valid_packages)} invalid/duplicate entries"
        )

    if services.manager.environment is None:
        return {"success": False, "error": "No active sandbox available", "status": 404}

    try:
        report = await services.sandbox_installer.install(valid_packages)
    except InstallError as error:
        logger.error(f"[install-packages] Error: {error}")
        return {"success": False, "error": str(error), "failed": error.packages, "status": 500}

    return {
        "success": True,
        "installed": report.installed,
        "failed": report.failed,
        "alreadyInstalled": report.alreadyInstalled,
        "message": f"Installed {len(report.installed)} package(s)",
    }
