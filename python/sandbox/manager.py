# sandbox/manager.py - owns the single active sandbox for this process

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from loguru import logger
from pydantic import BaseModel

from config.app_config import appConfig
from sandbox.bootstrap import ViteBootstrapper
from sandbox.environment import EnvironmentProvider, RemoteEnvironment, preview_url
from sandbox.errors import ConfigError, ProvisionError, SandboxConnectionError
from sandbox.state_store import SandboxStateStore

HEALTH_PROBE_CODE = 'print("health_check")'


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SandboxState(str, Enum):
    IDLE = "idle"
    CREATING = "creating"
    RUNNING = "running"
    DEGRADED = "degraded"
    RECOVERING = "recovering"
    KILLED = "killed"


class SandboxInfo(BaseModel):
    sandboxId: str
    url: str
    createdAt: datetime
    lastHealthCheck: datetime
    isHealthy: bool = True


class SandboxStatus(BaseModel):
    active: bool
    healthy: bool
    info: Optional[SandboxInfo] = None


class SandboxLifecycleManager:
    """Creates, monitors, recovers and kills the one remote environment of this process.

    Constructed once at startup and handed to whatever needs the active
    environment. Only this object mutates the handle and its SandboxInfo.

    State machine::

        IDLE -> CREATING -> RUNNING -> DEGRADED -> RECOVERING -> RUNNING
                                                              -> KILLED

    A failed health probe enters DEGRADED and triggers one recovery attempt.
    After ``max_reconnect_attempts`` consecutive failed attempts the sandbox is
    killed and monitoring stops until the next ``create_sandbox()``.
    """

    def __init__(
        self,
        provider: EnvironmentProvider,
        bootstrapper: Optional[ViteBootstrapper] = None,
        *,
        health_check_interval: Optional[float] = None,
        max_reconnect_attempts: Optional[int] = None,
        probe_timeout: Optional[float] = None,
        vite_port: Optional[int] = None,
        state_store: Optional[SandboxStateStore] = None,
    ):
        self.provider = provider
        self.bootstrapper = bootstrapper or ViteBootstrapper()
        self.health_check_interval = (
            appConfig.health.checkIntervalSeconds if health_check_interval is None else health_check_interval
        )
        self.max_reconnect_attempts = (
            appConfig.health.maxReconnectAttempts if max_reconnect_attempts is None else max_reconnect_attempts
        )
        self.probe_timeout = appConfig.health.probeTimeoutSeconds if probe_timeout is None else probe_timeout
        self.vite_port = appConfig.e2b.vitePort if vite_port is None else vite_port
        self.state_store = state_store

        self.reconnect_attempts = 0
        self._environment: Optional[RemoteEnvironment] = None
        self._info: Optional[SandboxInfo] = None
        self._state = SandboxState.IDLE
        self._health_task: Optional[asyncio.Task[None]] = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def environment(self) -> Optional[RemoteEnvironment]:
        return self._environment

    @property
    def info(self) -> Optional[SandboxInfo]:
        return self._info

    @property
    def state(self) -> SandboxState:
        return self._state

    @property
    def is_monitoring(self) -> bool:
        return self._health_task is not None and not self._health_task.done()

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------
    async def create_sandbox(self) -> SandboxInfo:
        """Replace any existing sandbox with a freshly bootstrapped one.

        Raises:
            ProvisionError: creation or bootstrap failed. Nothing is registered.
            ConfigError: provider credentials are missing.
        """
        async with self._lock:
            logger.info("[SandboxManager] Creating new sandbox...")
            await self._kill_locked()
            self._state = SandboxState.CREATING
            try:
                environment, info = await self._provision()
            except Exception:
                self._state = SandboxState.IDLE
                raise

            self._environment = environment
            self._info = info
            self.reconnect_attempts = 0
            self._state = SandboxState.RUNNING
            self._persist()
            self._start_health_monitoring()
            logger.info(f"[SandboxManager] Sandbox ready at: {info.url}")
            return info

    async def get_status(self) -> SandboxStatus:
        environment = self._environment
        if environment is None or self._info is None:
            return SandboxStatus(active=False, healthy=False, info=None)

        healthy = await self._probe(environment)
        if self._environment is environment:
            self._record_probe(healthy)
        info = self._info.model_copy() if self._info else None
        return SandboxStatus(active=info is not None, healthy=healthy, info=info)

    async def kill_sandbox(self) -> bool:
        """Stop monitoring and terminate the sandbox. Safe to call repeatedly.

        Returns True when a remote environment was terminated.
        """
        async with self._lock:
            return await self._kill_locked()

    async def reconnect(self, sandbox_id: str) -> SandboxInfo:
        """Attach to an existing remote environment instead of creating one.

        Raises:
            SandboxConnectionError: the environment does not exist or does not
                answer; the current state is left untouched.
        """
        async with self._lock:
            if self._environment is not None and self._info is not None and self._info.sandboxId == sandbox_id:
                return self._info

            logger.info(f"[SandboxManager] Reconnecting to sandbox {sandbox_id}...")
            try:
                environment = await self.provider.connect(sandbox_id)
            except (SandboxConnectionError, ConfigError):
                raise
            except Exception as e:
                raise SandboxConnectionError(f"Failed to reconnect to sandbox {sandbox_id}: {e}") from e

            if not await self._probe(environment):
                raise SandboxConnectionError(f"Sandbox {sandbox_id} is not responding")

            # the previous handle is dropped without terminating it; its sandbox expires on its own
            await self._stop_health_monitoring()
            now = _now()
            self._environment = environment
            self._info = SandboxInfo(
                sandboxId=sandbox_id,
                url=preview_url(environment, self.vite_port),
                createdAt=now,
                lastHealthCheck=now,
                isHealthy=True,
            )
            self.reconnect_attempts = 0
            self._state = SandboxState.RUNNING
            self._persist()
            self._start_health_monitoring()
            logger.info(f"[SandboxManager] Reconnected to sandbox {sandbox_id}")
            return self._info

    async def restore(self) -> SandboxInfo:
        """Reconnect to the sandbox recorded by a previous process."""
        state = self.state_store.load() if self.state_store else None
        if not state:
            raise SandboxConnectionError("No sandbox recorded to restore")
        return await self.reconnect(state["sandboxId"])

    async def shutdown(self) -> None:
        """Stop monitoring on process exit; the remote sandbox is left to expire."""
        await self._stop_health_monitoring()

    # ------------------------------------------------------------------
    # Health monitoring
    # ------------------------------------------------------------------
    async def check_health(self) -> bool:
        """Run one monitoring iteration: probe, and recover on failure."""
        environment = self._environment
        if environment is None:
            return False

        healthy = await self._probe(environment)
        if self._environment is not environment:
            return healthy
        self._record_probe(healthy)

        if healthy:
            if self._state == SandboxState.DEGRADED:
                logger.info("[SandboxManager] Sandbox answering again")
                self._state = SandboxState.RUNNING
                self.reconnect_attempts = 0
            return True

        logger.warning("[SandboxManager] Sandbox unhealthy, attempting recovery...")
        self._state = SandboxState.DEGRADED
        await self._attempt_recovery()
        return False

    async def _attempt_recovery(self) -> None:
        async with self._lock:
            if self._environment is None:
                return
            self.reconnect_attempts += 1
            self._state = SandboxState.RECOVERING
            logger.info(
                f"[SandboxManager] Recovery attempt {self.reconnect_attempts}/{self.max_reconnect_attempts}"
            )

            previous = self._environment
            try:
                environment, info = await self._provision()
            except Exception as e:
                logger.error(f"[SandboxManager] Recovery failed: {e}")
                if self.reconnect_attempts >= self.max_reconnect_attempts:
                    logger.error("[SandboxManager] Max recovery attempts reached, giving up")
                    await self._kill_locked()
                else:
                    self._state = SandboxState.DEGRADED
                return

            self._environment = environment
            self._info = info
            self.reconnect_attempts = 0
            self._state = SandboxState.RUNNING
            self._persist()
            await self._terminate(previous)
            logger.info(f"[SandboxManager] Recovery successful, new sandbox {info.sandboxId}")

    def _start_health_monitoring(self) -> None:
        if self.health_check_interval <= 0:
            return
        self._health_task = asyncio.create_task(self._monitor_loop())

    async def _stop_health_monitoring(self) -> None:
        task = self._health_task
        self._health_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _monitor_loop(self) -> None:
        me = asyncio.current_task()
        while True:
            await asyncio.sleep(self.health_check_interval)
            if self._health_task is not me:
                return
            try:
                await self.check_health()
            except Exception as e:
                logger.error(f"[SandboxManager] Health monitoring error: {e}")
            if self._health_task is not me:
                return

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _provision(self) -> Tuple[RemoteEnvironment, SandboxInfo]:
        try:
            environment = await self.provider.create()
        except (ProvisionError, ConfigError):
            raise
        except Exception as e:
            raise ProvisionError(f"Failed to create sandbox: {e}") from e

        try:
            await self.bootstrapper.bootstrap(environment)
            url = preview_url(environment, self.vite_port)
        except Exception as e:
            logger.error(f"[SandboxManager] Bootstrap of {environment.sandbox_id} failed: {e}")
            await self._terminate(environment)
            if isinstance(e, ProvisionError):
                raise
            raise ProvisionError(f"Failed to set up sandbox: {e}") from e

        now = _now()
        return environment, SandboxInfo(
            sandboxId=environment.sandbox_id,
            url=url,
            createdAt=now,
            lastHealthCheck=now,
            isHealthy=True,
        )

    async def _kill_locked(self) -> bool:
        await self._stop_health_monitoring()
        environment = self._environment
        self._environment = None
        self._info = None
        self.reconnect_attempts = 0
        if environment is None:
            return False

        killed = await self._terminate(environment)
        self._state = SandboxState.KILLED
        if self.state_store:
            self.state_store.clear()
        logger.info("[SandboxManager] Sandbox killed")
        return killed

    async def _terminate(self, environment: RemoteEnvironment) -> bool:
        try:
            await environment.kill()
            return True
        except Exception as e:
            # the remote sandbox expires on its own
            logger.warning(f"[SandboxManager] Error killing sandbox {environment.sandbox_id}: {e}")
            return False

    async def _probe(self, environment: RemoteEnvironment) -> bool:
        try:
            output = await asyncio.wait_for(environment.run_code(HEALTH_PROBE_CODE), timeout=self.probe_timeout)
        except Exception as e:
            logger.warning(f"[SandboxManager] Health check failed: {e!r}")
            return False
        if not output.ok:
            logger.warning(f"[SandboxManager] Health check failed: {output.error}")
            return False
        return True

    def _record_probe(self, healthy: bool) -> None:
        if self._info is not None:
            self._info.isHealthy = healthy
            self._info.lastHealthCheck = _now()

    def _persist(self) -> None:
        if self.state_store and self._info:
            self.state_store.save({
                "sandboxId": self._info.sandboxId,
                "url": self._info.url,
                "createdAt": self._info.createdAt.isoformat(),
            })
