# sandbox/e2b_environment.py - E2B-backed RemoteEnvironment

from __future__ import annotations

from typing import Any, Dict, List, Optional, TypedDict

from e2b_code_interpreter import AsyncSandbox
from langchain_core.runnables import RunnableLambda
from langgraph.graph import StateGraph, START, END
from loguru import logger

from config.app_config import appConfig, get_e2b_api_key
from sandbox.environment import ExecutionOutput, FileEntry
from sandbox.errors import ProvisionError, SandboxConnectionError

SKIP_DIRS = {"node_modules", ".git", "dist", "build"}


class _ExecState(TypedDict, total=False):
    sandbox: Any
    code: str
    timeout: Optional[float]
    output: ExecutionOutput


def _to_output(execution: Any) -> ExecutionOutput:
    logs = getattr(execution, "logs", None)
    stdout = getattr(logs, "stdout", None) or []
    stderr = getattr(logs, "stderr", None) or []
    error = getattr(execution, "error", None)
    error_text = None
    if error is not None:
        error_text = f"{getattr(error, 'name', 'Error')}: {getattr(error, 'value', error)}"
    return ExecutionOutput(
        stdout="".join(stdout) if isinstance(stdout, list) else str(stdout),
        stderr="".join(stderr) if isinstance(stderr, list) else str(stderr),
        error=error_text,
    )


async def _runner(payload: Dict[str, Any]) -> ExecutionOutput:
    sandbox = payload["sandbox"]
    try:
        execution = await sandbox.run_code(payload.get("code", ""), timeout=payload.get("timeout"))
    except Exception as e:
        return ExecutionOutput(error=f"{type(e).__name__}: {e}")
    return _to_output(execution)


_chain = RunnableLambda(_runner)


def _compile_exec_graph():
    g = StateGraph(_ExecState)

    async def exec_node(state: _ExecState) -> Dict[str, Any]:
        return {"output": await _chain.ainvoke(state)}

    g.add_node("exec", exec_node)
    g.add_edge(START, "exec")
    g.add_edge("exec", END)
    return g.compile()


_exec_graph = _compile_exec_graph()


class E2BEnvironment:
    """RemoteEnvironment over an ``e2b_code_interpreter.AsyncSandbox``."""

    def __init__(self, sandbox: AsyncSandbox):
        self._sandbox = sandbox
        self.sandbox_id: str = sandbox.sandbox_id

    async def run_code(self, code: str, timeout: Optional[float] = None) -> ExecutionOutput:
        result = await _exec_graph.ainvoke({"sandbox": self._sandbox, "code": code, "timeout": timeout})
        return result["output"]

    async def write_file(self, path: str, content: str) -> None:
        # files.write creates missing parent directories
        await self._sandbox.files.write(path, content)

    async def list_files(self, path: str, recursive: bool = False) -> List[FileEntry]:
        entries: List[FileEntry] = []
        for entry in await self._sandbox.files.list(path):
            entry_type = getattr(entry.type, "value", str(entry.type))
            entries.append(FileEntry(name=entry.name, path=entry.path, type=entry_type))
            if recursive and entry_type == "dir" and entry.name not in SKIP_DIRS:
                entries.extend(await self.list_files(entry.path, recursive=True))
        return entries

    def get_host(self, port: int) -> str:
        return self._sandbox.get_host(port)

    async def kill(self) -> None:
        await self._sandbox.kill()


class E2BEnvironmentProvider:
    """Creates and reconnects E2B sandboxes with the configured API key."""

    def __init__(self, api_key: Optional[str] = None, timeout_seconds: Optional[int] = None):
        self._api_key = api_key
        self._timeout = timeout_seconds or appConfig.e2b.timeoutMinutes * 60

    def _key(self) -> str:
        return self._api_key or get_e2b_api_key()

    async def create(self) -> E2BEnvironment:
        api_key = self._key()
        try:
            sandbox = await AsyncSandbox.create(api_key=api_key, timeout=self._timeout)
        except Exception as e:
            logger.error(f"[e2b] Sandbox creation failed: {e}")
            raise ProvisionError(f"Failed to create sandbox: {e}") from e
        logger.info(f"[e2b] Sandbox created with ID: {sandbox.sandbox_id}")
        return E2BEnvironment(sandbox)

    async def connect(self, sandbox_id: str) -> E2BEnvironment:
        api_key = self._key()
        try:
            sandbox = await AsyncSandbox.connect(sandbox_id, api_key=api_key)
        except Exception as e:
            logger.warning(f"[e2b] Sandbox {sandbox_id} connection failed: {e}")
            raise SandboxConnectionError(f"Failed to reconnect to sandbox {sandbox_id}: {e}") from e
        logger.info(f"[e2b] Connected to sandbox {sandbox_id}")
        return E2BEnvironment(sandbox)
