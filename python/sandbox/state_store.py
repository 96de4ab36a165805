import json
import os
from typing import Any, Dict, Optional

from filelock import FileLock, Timeout
from loguru import logger

from config.app_config import appConfig


class SandboxStateStore:
    """Persists the active sandbox id/url so a restarted process can reconnect.

    Reads and writes are guarded by a FileLock; failures are logged and
    never raised, the store is only a hint for ``restore()``.
    """

    def __init__(self, path: Optional[str] = None, lock_timeout: float = 5):
        self.path = path or appConfig.state.stateFilePath
        self.lock_path = f"{self.path}.lock"
        self.lock_timeout = lock_timeout

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return None
        try:
            with FileLock(self.lock_path, timeout=self.lock_timeout):
                with open(self.path, 'r') as f:
                    state = json.load(f)
        except (OSError, json.JSONDecodeError, Timeout) as e:
            logger.warning(f"[state_store] Error reading state file: {e}")
            return None

        if isinstance(state, dict) and state.get('active') and state.get('sandboxId'):
            return state
        return None

    def save(self, state: Dict[str, Any]) -> None:
        self._write({**state, 'active': True})

    def clear(self) -> None:
        self._write({"active": False, "sandboxId": None, "url": None})

    def _write(self, payload: Dict[str, Any]) -> None:
        try:
            os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
            with FileLock(self.lock_path, timeout=self.lock_timeout):
                with open(self.path, 'w') as f:
                    json.dump(payload, f, indent=2, default=str)
        except (OSError, Timeout) as e:
            logger.warning(f"[state_store] Error writing state file: {e}")
