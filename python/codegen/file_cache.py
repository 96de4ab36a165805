# codegen/file_cache.py - process-side view of the files in the active sandbox

from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional, Tuple

from loguru import logger
from pydantic import BaseModel

from config.app_config import appConfig
from sandbox.environment import RemoteEnvironment
from sandbox.errors import SandboxError

MANIFEST_MARKER = "FILES_MANIFEST:"


def _now_ms() -> int:
    return int(time.time() * 1000)


class CachedFile(BaseModel):
    content: str
    lastModified: int


class FileCache:
    """Paths (relative to the app dir) and contents last written to one sandbox.

    Valid only while ``sandboxId`` equals the active sandbox; callers check
    ``is_stale()`` and rebuild before use. Only the apply pipeline writes here.
    """

    def __init__(self):
        self.files: Dict[str, CachedFile] = {}
        self.lastSync: Optional[int] = None
        self.sandboxId: Optional[str] = None

    def is_stale(self, sandbox_id: Optional[str]) -> bool:
        return self.sandboxId != sandbox_id

    def __contains__(self, path: str) -> bool:
        return path in self.files

    def __len__(self) -> int:
        return len(self.files)

    def get(self, path: str) -> Optional[str]:
        cached = self.files.get(path)
        return cached.content if cached else None

    def put(self, path: str, content: str) -> None:
        self.files[path] = CachedFile(content=content, lastModified=_now_ms())

    def mark_synced(self) -> None:
        self.lastSync = _now_ms()

    def reset(self, sandbox_id: Optional[str], files: Optional[Dict[str, str]] = None) -> None:
        now = _now_ms()
        self.files = {path: CachedFile(content=content, lastModified=now) for path, content in (files or {}).items()}
        self.sandboxId = sandbox_id
        self.lastSync = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": {path: cached.model_dump() for path, cached in self.files.items()},
            "lastSync": self.lastSync,
            "sandboxId": self.sandboxId,
        }


def manifest_script(app_dir: str) -> str:
    return f"""
import json
import os

APP_DIR = {app_dir!r}
SKIP_DIRS = ['node_modules', '.git', 'dist', 'build']
EXTENSIONS = ('.jsx', '.js', '.tsx', '.ts', '.css', '.json', '.html')

files = {{}}
structure = []
for root, dirs, fnames in os.walk(APP_DIR):
    dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)
    level = os.path.relpath(root, APP_DIR).count(os.sep) if root != APP_DIR else 0
    structure.append('  ' * level + os.path.basename(root) + '/')
    for fname in sorted(fnames):
        structure.append('  ' * (level + 1) + fname)
        if not fname.endswith(EXTENSIONS):
            continue
        path = os.path.join(root, fname)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                content = f.read()
        except (OSError, UnicodeDecodeError):
            continue
        if len(content) < 100000:
            files[os.path.relpath(path, APP_DIR)] = content

print({MANIFEST_MARKER!r} + json.dumps({{'files': files, 'structure': '\\n'.join(structure[:50])}}))
"""


async def read_project_files(
    environment: RemoteEnvironment, app_dir: Optional[str] = None
) -> Tuple[Dict[str, str], str]:
    """Return ``({relative_path: content}, structure)`` for the project in ``environment``.

    Raises:
        SandboxError: the manifest script failed or produced unreadable output.
    """
    output = await environment.run_code(manifest_script(app_dir or appConfig.e2b.appDir))
    if not output.ok:
        raise SandboxError(f"Failed to read sandbox files: {output.error}")

    for line in output.stdout.splitlines():
        if line.startswith(MANIFEST_MARKER):
            try:
                manifest = json.loads(line[len(MANIFEST_MARKER):])
            except json.JSONDecodeError as e:
                raise SandboxError(f"Failed to parse sandbox output: {e}") from e
            return dict(manifest.get("files") or {}), manifest.get("structure") or ""
    raise SandboxError("Sandbox produced no file manifest")


async def rebuild_file_cache(
    cache: FileCache, environment: RemoteEnvironment, sandbox_id: str, app_dir: Optional[str] = None
) -> FileCache:
    """Repopulate ``cache`` from the environment; falls back to an empty cache for ``sandbox_id``."""
    try:
        files, _ = await read_project_files(environment, app_dir)
    except Exception as e:
        logger.warning(f"[file-cache] Rebuild from sandbox {sandbox_id} failed, starting empty: {e}")
        files = {}
    cache.reset(sandbox_id, files)
    logger.info(f"[file-cache] Rebuilt cache with {len(files)} files for sandbox {sandbox_id}")
    return cache
