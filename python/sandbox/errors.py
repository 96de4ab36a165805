"""Error taxonomy for the sandbox lifecycle and the code apply pipeline.

Errors local to one file, package or command are caught and recorded by the
pipeline. The others propagate to the route layer, which turns them into a
``{"success": False, "error": ...}`` payload with an HTTP status.
"""


class SandboxError(Exception):
    """Base class for sandbox backend errors."""

    status_code = 500


class ProvisionError(SandboxError):
    """Remote environment creation or bootstrap failed; no sandbox is registered."""


class SandboxConnectionError(SandboxError):
    """Reconnect or liveness probe against a remote environment failed."""


class InstallError(SandboxError):
    """Package installation failed for one or more packages."""

    def __init__(self, message: str, packages=None):
        super().__init__(message)
        self.packages = list(packages or [])


class WriteError(SandboxError):
    """A single file could not be written into the environment."""

    def __init__(self, path: str, message: str):
        super().__init__(f"Failed to write {path}: {message}")
        self.path = path


class ConfigError(SandboxError):
    """Required credentials or endpoints are missing."""