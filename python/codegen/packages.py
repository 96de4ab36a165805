# codegen/packages.py - npm package detection from imports, and installers

from __future__ import annotations

import json
import re
from typing import Any, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

import httpx
from loguru import logger
from pydantic import BaseModel

from config.app_config import appConfig
from sandbox.bootstrap import start_dev_server_script
from sandbox.errors import InstallError

CONFIG_FILES = {
    "package.json",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "vite.config.js",
    "vite.config.ts",
    "vite.config.mjs",
    "tailwind.config.js",
    "tailwind.config.ts",
    "postcss.config.js",
    "tsconfig.json",
    "tsconfig.node.json",
    "next.config.js",
}

# default, namespace, named and combined clauses, plus side-effect imports
IMPORT_REGEX = re.compile(
    r'import\s+(?:(?:\{[^}]*\}|\*\s+as\s+\w+|\w+)(?:\s*,\s*(?:\{[^}]*\}|\*\s+as\s+\w+|\w+))*\s+from\s+)?[\'"]([^\'"]+)[\'"]'
)

INSTALL_RESULT_MARKER = "INSTALL_RESULT:"


class InstallReport(BaseModel):
    installed: List[str] = []
    failed: List[str] = []
    alreadyInstalled: List[str] = []


@runtime_checkable
class PackageInstaller(Protocol):
    async def install(self, packages: List[str]) -> InstallReport:
        ...


def dedupe_packages(names: Iterable[Any]) -> List[str]:
    """Trim, drop non-strings/empties and dedupe preserving first-seen order."""
    unique: List[str] = []
    for name in names:
        if not isinstance(name, str):
            continue
        name = name.strip()
        if name and name not in unique:
            unique.append(name)
    return unique


def package_name(specifier: str) -> Optional[str]:
    """Reduce an import specifier to the npm package that provides it.

    Relative and absolute paths and the ``@/`` source alias are not packages.
    """
    if specifier.startswith(".") or specifier.startswith("/") or specifier.startswith("@/"):
        return None
    if specifier.startswith("@"):
        return "/".join(specifier.split("/")[:2])
    return specifier.split("/")[0]


def extract_packages_from_code(content: str) -> List[str]:
    packages: List[str] = []
    for match in IMPORT_REGEX.finditer(content):
        name = package_name(match.group(1))
        if name and name not in packages:
            packages.append(name)
    return packages


def detect_packages_from_files(files: Mapping[str, str]) -> List[str]:
    """Scan ``{path: content}`` for ES imports of npm packages, skipping config files."""
    detected: List[str] = []
    for path, content in files.items():
        if path.rsplit("/", 1)[-1] in CONFIG_FILES or not isinstance(content, str):
            continue
        for name in extract_packages_from_code(content):
            if name not in detected:
                detected.append(name)
                logger.debug(f"[packages] Package detected from {path}: {name}")
    return detected


class HttpPackageInstaller:
    """Delegates installation to the install-packages endpoint of a running app."""

    def __init__(
        self,
        app_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_url = (app_url or appConfig.api.appUrl).rstrip("/")
        self.timeout = timeout or appConfig.api.installTimeoutSeconds
        self._transport = transport

    async def install(self, packages: List[str]) -> InstallReport:
        url = f"{self.app_url}/api/install-packages"
        logger.info(f"[packages] Requesting install of {packages} from {url}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json={"packages": packages})
        except httpx.HTTPError as e:
            raise InstallError(f"Package install request failed: {e}", packages) from e

        if response.status_code >= 300:
            raise InstallError(f"Package install request failed with status {response.status_code}", packages)

        try:
            body = response.json()
        except ValueError as e:
            raise InstallError(f"Invalid install response: {e}", packages) from e
        if not body.get("success", False):
            raise InstallError(body.get("error") or "Package installation failed", packages)

        return InstallReport(
            installed=body.get("installed", []),
            failed=body.get("failed", []),
            alreadyInstalled=body.get("alreadyInstalled", []),
        )


def install_packages_script(app_dir: str, packages: List[str]) -> str:
    return f"""
import json
import os
import subprocess

os.chdir({app_dir!r})
packages = {json.dumps(packages)}

def base_name(pkg):
    if pkg.startswith('@'):
        scope, _, rest = pkg[1:].partition('/')
        return '@' + scope + '/' + rest.split('@')[0]
    return pkg.split('@')[0]

def declared():
    try:
        with open('package.json') as f:
            data = json.load(f)
    except Exception:
        return set()
    return set(data.get('dependencies', {{}})) | set(data.get('devDependencies', {{}}))

existing = declared()
already = [p for p in packages if base_name(p) in existing]
need = [p for p in packages if base_name(p) not in existing]

stderr = ''
if need:
    result = subprocess.run(
        ['npm', 'install', '--legacy-peer-deps'] + need,
        capture_output=True,
        text=True,
    )
    stderr = result.stderr[-2000:]

after = declared()
installed = [p for p in need if base_name(p) in after]
failed = [p for p in need if base_name(p) not in after]

print({INSTALL_RESULT_MARKER!r} + json.dumps({{
    'installed': installed,
    'failed': failed,
    'alreadyInstalled': already,
    'stderr': stderr,
}}))
"""


class SandboxPackageInstaller:
    """Installs packages with npm inside the manager's active environment."""

    def __init__(self, manager: Any, app_dir: Optional[str] = None, timeout: Optional[float] = None):
        self.manager = manager
        self.app_dir = app_dir or appConfig.e2b.appDir
        self.timeout = timeout or appConfig.api.installTimeoutSeconds

    async def install(self, packages: List[str]) -> InstallReport:
        environment = self.manager.environment
        if environment is None:
            raise InstallError("No active sandbox", packages)

        logger.info(f"[install-packages] Installing packages: {packages}")
        output = await environment.run_code(install_packages_script(self.app_dir, packages), timeout=self.timeout)
        if not output.ok:
            raise InstallError(f"Package installation failed: {output.error}", packages)

        result = None
        for line in output.stdout.splitlines():
            if line.startswith(INSTALL_RESULT_MARKER):
                try:
                    result = json.loads(line[len(INSTALL_RESULT_MARKER):])
                except json.JSONDecodeError as e:
                    raise InstallError(f"Invalid install output: {e}", packages) from e
                break
        if result is None:
            raise InstallError("Package installation produced no result", packages)

        report = InstallReport(
            installed=result.get("installed", []),
            failed=result.get("failed", []),
            alreadyInstalled=result.get("alreadyInstalled", []),
        )
        if report.failed:
            logger.warning(f"[install-packages] Failed to install {report.failed}: {result.get('stderr', '')}")

        if report.installed:
            logger.info("[install-packages] Restarting Vite dev server...")
            restart = await environment.run_code(start_dev_server_script(self.app_dir))
            if not restart.ok:
                logger.warning(f"[install-packages] Dev server restart failed: {restart.error}")
        return report
