# config/app_config.py - Python Backend Configuration

import os
import sys
from types import SimpleNamespace

from dotenv import load_dotenv
from loguru import logger

from sandbox.errors import ConfigError

load_dotenv()

appConfig = SimpleNamespace(
    e2b=SimpleNamespace(
        timeoutMinutes=15,
        timeoutMs=15 * 60 * 1000,  # 15 minutes in milliseconds
        vitePort=5173,
        viteStartupDelay=7000,  # settle delay after the dev server is spawned
        appDir='/home/user/app',
    ),

    health=SimpleNamespace(
        checkIntervalSeconds=30,
        probeTimeoutSeconds=10,
        maxReconnectAttempts=3,
    ),

    api=SimpleNamespace(
        appUrl=os.getenv("NEXT_PUBLIC_APP_URL") or os.getenv("APP_URL") or "http://localhost:8000",
        installTimeoutSeconds=180,
        # when set, the apply pipeline installs through this app's /api/install-packages
        installerUrl=os.getenv("PACKAGE_INSTALLER_URL"),
    ),

    state=SimpleNamespace(
        stateFilePath=os.getenv("SANDBOX_STATE_FILE", "/tmp/open_lovable_sandbox_state.json"),
    ),

    ai=SimpleNamespace(
        model=os.getenv("AI_MODEL"),  # e.g. "openai:gpt-4o-mini"; unset disables generation
        temperature=0.7,
        maxTokens=8000,
    ),
)


def get_e2b_api_key() -> str:
    """Return the E2B API key or fail fast when it is not configured."""
    api_key = os.getenv("E2B_API_KEY")
    if not api_key:
        raise ConfigError("E2B_API_KEY is not configured")
    return api_key


def configure_logging(level: str = None) -> None:
    """Replace loguru's default handler with one at ``LOG_LEVEL`` (default INFO)."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
