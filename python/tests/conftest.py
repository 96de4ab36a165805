"""Shared fixtures: a lifecycle manager and pipeline wired to in-memory fakes."""

import pytest
from fastapi.testclient import TestClient

from codegen.apply import CodeApplyPipeline
from codegen.file_cache import FileCache
from codegen.packages import SandboxPackageInstaller
from main import create_app
from routes.conversation_state import ConversationStore
from sandbox.manager import SandboxLifecycleManager
from sandbox.state_store import SandboxStateStore
from shared_state import AppServices

from fakes import FakeBootstrapper, FakeInstaller, FakeProvider


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def bootstrapper() -> FakeBootstrapper:
    return FakeBootstrapper()


@pytest.fixture
def state_store(tmp_path) -> SandboxStateStore:
    return SandboxStateStore(str(tmp_path / "sandbox_state.json"))


@pytest.fixture
def manager(provider, bootstrapper, state_store) -> SandboxLifecycleManager:
    return SandboxLifecycleManager(
        provider,
        bootstrapper,
        health_check_interval=0,
        probe_timeout=0.5,
        state_store=state_store,
    )


@pytest.fixture
def file_cache() -> FileCache:
    return FileCache()


@pytest.fixture
def installer(manager) -> FakeInstaller:
    return FakeInstaller(manager)


@pytest.fixture
def pipeline(manager, file_cache, installer) -> CodeApplyPipeline:
    return CodeApplyPipeline(manager, file_cache, installer)


@pytest.fixture
def services(manager, file_cache, pipeline) -> AppServices:
    return AppServices(
        manager=manager,
        file_cache=file_cache,
        pipeline=pipeline,
        sandbox_installer=SandboxPackageInstaller(manager),
        conversations=ConversationStore(),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client
