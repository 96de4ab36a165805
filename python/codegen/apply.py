# codegen/apply.py - materializes a ParsedResponse into the active sandbox

from __future__ import annotations

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypedDict, Union

from langgraph.graph import StateGraph, START, END
from loguru import logger
from pydantic import BaseModel, Field

from codegen.file_cache import FileCache, rebuild_file_cache
from codegen.packages import PackageInstaller, dedupe_packages, detect_packages_from_files
from codegen.parser import ParsedFile, ParsedResponse
from config.app_config import appConfig
from sandbox.errors import WriteError

ProgressCallback = Callable[[Dict[str, Any]], Union[Awaitable[None], None]]

COMMAND_RESULT_MARKER = "COMMAND_RESULT:"


class ApplyResult(BaseModel):
    filesCreated: List[str] = Field(default_factory=list)
    filesUpdated: List[str] = Field(default_factory=list)
    packagesInstalled: List[str] = Field(default_factory=list)
    packagesAlreadyInstalled: List[str] = Field(default_factory=list)
    packagesFailed: List[str] = Field(default_factory=list)
    commandsExecuted: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ApplyOutcome(BaseModel):
    results: ApplyResult
    explanation: str = ""
    structure: Optional[str] = None
    parsedFiles: List[ParsedFile] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    preview: bool = False


class _ApplyState(TypedDict, total=False):
    parsed: ParsedResponse
    packages: List[str]
    is_edit: bool
    environment: Any
    sandbox_id: str
    results: ApplyResult
    written: List[Tuple[str, str]]
    on_progress: Optional[ProgressCallback]


def run_command_script(command: str, cwd: str) -> str:
    return f"""
import json
import subprocess

cmd = {json.dumps(command)}
try:
    proc = subprocess.run(cmd, shell=True, cwd={cwd!r}, capture_output=True, text=True)
    result = {{"returncode": proc.returncode, "stdout": proc.stdout[-2000:], "stderr": proc.stderr[-2000:]}}
except Exception as e:
    result = {{"returncode": 1, "stdout": "", "stderr": str(e)}}
print({COMMAND_RESULT_MARKER!r} + json.dumps(result))
"""


def normalize_path(path: str) -> str:
    return path.strip().lstrip("/")


async def _emit(on_progress: Optional[ProgressCallback], event: Dict[str, Any]) -> None:
    if on_progress is None:
        return
    result = on_progress(event)
    if inspect.isawaitable(result):
        await result


class CodeApplyPipeline:
    """install_packages -> write_files -> run_commands -> sync_cache.

    Per-file, per-package and per-command failures are recorded in the
    ApplyResult and never abort the run. Nothing is rolled back.
    """

    def __init__(self, manager: Any, file_cache: FileCache, installer: PackageInstaller, *, app_dir: Optional[str] = None):
        self.manager = manager
        self.file_cache = file_cache
        self.installer = installer
        self.app_dir = (app_dir or appConfig.e2b.appDir).rstrip("/")
        self._graph = self._compile_graph()

    def _compile_graph(self):
        g = StateGraph(_ApplyState)
        g.add_node("install_packages", self._install_packages)
        g.add_node("write_files", self._write_files)
        g.add_node("run_commands", self._run_commands)
        g.add_node("sync_cache", self._sync_cache)
        g.add_edge(START, "install_packages")
        g.add_edge("install_packages", "write_files")
        g.add_edge("write_files", "run_commands")
        g.add_edge("run_commands", "sync_cache")
        g.add_edge("sync_cache", END)
        return g.compile()

    async def apply(
        self,
        parsed: ParsedResponse,
        explicit_packages: Sequence[Any] = (),
        is_edit: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ApplyOutcome:
        results = ApplyResult()
        environment = self.manager.environment
        info = self.manager.info

        if environment is None or info is None:
            logger.info("[apply-ai-code] No active sandbox, returning parsed files as preview")
            results.filesCreated = [f.path for f in parsed.files]
            # what would be installed and run
            results.packagesInstalled = dedupe_packages([*explicit_packages, *parsed.packages])
            results.commandsExecuted = list(parsed.commands)
            outcome = self._outcome(parsed, results, preview=True)
            await _emit(on_progress, self._complete_event(outcome))
            return outcome

        await _emit(on_progress, {"type": "start", "message": "Starting code application..."})
        state = await self._graph.ainvoke({
            "parsed": parsed,
            "packages": dedupe_packages([*explicit_packages, *parsed.packages]),
            "is_edit": is_edit,
            "environment": environment,
            "sandbox_id": info.sandboxId,
            "results": results,
            "written": [],
            "on_progress": on_progress,
        })

        outcome = self._outcome(parsed, state["results"])
        await _emit(on_progress, self._complete_event(outcome))
        return outcome

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------
    async def _install_packages(self, state: _ApplyState) -> Dict[str, Any]:
        results = state["results"]
        on_progress = state.get("on_progress")
        packages = state.get("packages") or []

        if not packages:
            packages = detect_packages_from_files({f.path: f.content for f in state["parsed"].files})
            if packages:
                logger.info(f"[apply-ai-code] Detected packages from imports: {packages}")

        if not packages:
            return {"packages": [], "results": results}

        await _emit(on_progress, {
            "type": "step",
            "step": 1,
            "message": f"Installing {len(packages)} package{'s' if len(packages) > 1 else ''}...",
            "packages": packages,
        })
        try:
            report = await self.installer.install(packages)
        except Exception as e:
            # installation problems never block the file writes
            logger.warning(f"[apply-ai-code] Package installation failed: {e}")
            results.packagesFailed.extend(packages)
            results.errors.append(f"Package installation failed: {e}")
        else:
            results.packagesInstalled.extend(report.installed)
            results.packagesAlreadyInstalled.extend(report.alreadyInstalled)
            results.packagesFailed.extend(report.failed)

        await _emit(on_progress, {
            "type": "package-result",
            "installed": results.packagesInstalled,
            "alreadyInstalled": results.packagesAlreadyInstalled,
            "failed": results.packagesFailed,
        })
        return {"packages": packages, "results": results}

    async def _write_files(self, state: _ApplyState) -> Dict[str, Any]:
        results = state["results"]
        on_progress = state.get("on_progress")
        environment = state["environment"]
        sandbox_id = state["sandbox_id"]
        files = state["parsed"].files

        if self.file_cache.is_stale(sandbox_id):
            await rebuild_file_cache(self.file_cache, environment, sandbox_id, self.app_dir)

        if state.get("is_edit"):
            paths = [f.path for f in files]
            if any("components/" in p for p in paths) and not any(p.endswith("App.jsx") for p in paths):
                logger.warning("[apply-ai-code] Component edited without App.jsx, app structure may break")

        await _emit(on_progress, {"type": "step", "step": 2, "message": f"Writing {len(files)} files..."})

        targets = [(normalize_path(f.path), f.content) for f in files]
        existing = {path for path, _ in targets if path in self.file_cache}
        outcomes = await asyncio.gather(
            *(self._write_file(environment, path, content) for path, content in targets),
            return_exceptions=True,
        )

        written: List[Tuple[str, str]] = []
        for (path, content), outcome in zip(targets, outcomes):
            if isinstance(outcome, WriteError):
                logger.error(f"[apply-ai-code] {outcome}")
                results.errors.append(str(outcome))
                await _emit(on_progress, {"type": "file-error", "fileName": path, "error": str(outcome)})
                continue
            if isinstance(outcome, BaseException):
                raise outcome

            action = "updated" if path in existing else "created"
            (results.filesUpdated if action == "updated" else results.filesCreated).append(path)
            written.append((path, content))
            await _emit(on_progress, {"type": "file-complete", "fileName": path, "action": action})

        return {"results": results, "written": written}

    async def _write_file(self, environment: Any, path: str, content: str) -> None:
        try:
            await environment.write_file(f"{self.app_dir}/{path}", content)
        except Exception as e:
            raise WriteError(path, str(e)) from e

    async def _run_commands(self, state: _ApplyState) -> Dict[str, Any]:
        results = state["results"]
        on_progress = state.get("on_progress")
        environment = state["environment"]

        for command in state["parsed"].commands:
            logger.info(f"[apply-ai-code] Running command: {command}")
            error = await self._run_command(environment, command)
            if error is None:
                results.commandsExecuted.append(command)
            else:
                logger.warning(f"[apply-ai-code] Command failed: {command}: {error}")
                results.errors.append(f"Command failed: {command}: {error}")
            await _emit(on_progress, {"type": "command-complete", "command": command, "success": error is None})

        return {"results": results}

    async def _run_command(self, environment: Any, command: str) -> Optional[str]:
        try:
            output = await environment.run_code(run_command_script(command, self.app_dir))
        except Exception as e:
            return f"{type(e).__name__}: {e}"
        if not output.ok:
            return output.error
        for line in output.stdout.splitlines():
            if line.startswith(COMMAND_RESULT_MARKER):
                try:
                    result = json.loads(line[len(COMMAND_RESULT_MARKER):])
                except json.JSONDecodeError as e:
                    return f"unreadable command output: {e}"
                if result.get("returncode") == 0:
                    return None
                return (result.get("stderr") or "").strip() or f"exit code {result.get('returncode')}"
        return "command produced no result"

    async def _sync_cache(self, state: _ApplyState) -> Dict[str, Any]:
        for path, content in state.get("written") or []:
            self.file_cache.put(path, content)
        self.file_cache.mark_synced()
        logger.info(f"[apply-ai-code] File cache holds {len(self.file_cache)} files")
        return {"written": state.get("written") or []}

    # ------------------------------------------------------------------
    @staticmethod
    def _outcome(parsed: ParsedResponse, results: ApplyResult, preview: bool = False) -> ApplyOutcome:
        return ApplyOutcome(
            results=results,
            explanation=parsed.explanation,
            structure=parsed.structure,
            parsedFiles=list(parsed.files),
            warnings=list(parsed.warnings),
            preview=preview,
        )

    @staticmethod
    def _complete_event(outcome: ApplyOutcome) -> Dict[str, Any]:
        applied = len(outcome.results.filesCreated) + len(outcome.results.filesUpdated)
        return {
            "type": "complete",
            "results": outcome.results.model_dump(),
            "explanation": outcome.explanation,
            "structure": outcome.structure,
            "preview": outcome.preview,
            "message": f"Successfully applied {applied} files",
        }
