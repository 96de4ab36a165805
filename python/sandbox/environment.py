"""RemoteEnvironment protocol: what the backend needs from a sandbox provider."""

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel


class ExecutionOutput(BaseModel):
    """Result of running a snippet of Python inside the environment."""

    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FileEntry(BaseModel):
    name: str
    path: str
    type: str = "file"


@runtime_checkable
class RemoteEnvironment(Protocol):
    """Handle on one live remote container.

    Implementations wrap a provider SDK object; tests use an in-memory fake.
    """

    sandbox_id: str

    async def run_code(self, code: str, timeout: Optional[float] = None) -> ExecutionOutput:
        """Run Python code inside the environment and return its captured output."""
        ...

    async def write_file(self, path: str, content: str) -> None:
        """Write ``content`` to ``path``, creating parent directories as needed."""
        ...

    async def list_files(self, path: str, recursive: bool = False) -> List[FileEntry]:
        """List entries below ``path``."""
        ...

    def get_host(self, port: int) -> str:
        """Public hostname that proxies ``port`` inside the environment."""
        ...

    async def kill(self) -> None:
        """Terminate the environment."""
        ...


@runtime_checkable
class EnvironmentProvider(Protocol):
    """Creates new environments or attaches to existing ones by id."""

    async def create(self) -> RemoteEnvironment:
        ...

    async def connect(self, sandbox_id: str) -> RemoteEnvironment:
        ...


def preview_url(environment: RemoteEnvironment, port: int) -> str:
    return f"https://{environment.get_host(port)}"
