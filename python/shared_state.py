# shared_state.py - process-wide services, built once at startup and passed to the routes

from dataclasses import dataclass
from typing import Any, Optional

from loguru import logger

from codegen.apply import CodeApplyPipeline
from codegen.file_cache import FileCache
from codegen.generation import CodeGenerator, build_chat_model
from codegen.packages import HttpPackageInstaller, PackageInstaller, SandboxPackageInstaller
from config.app_config import appConfig
from routes.conversation_state import ConversationStore
from sandbox.bootstrap import ViteBootstrapper
from sandbox.e2b_environment import E2BEnvironmentProvider
from sandbox.environment import EnvironmentProvider
from sandbox.manager import SandboxLifecycleManager
from sandbox.state_store import SandboxStateStore


@dataclass
class AppServices:
    manager: SandboxLifecycleManager
    file_cache: FileCache
    pipeline: CodeApplyPipeline
    sandbox_installer: SandboxPackageInstaller
    conversations: ConversationStore
    generator: Optional[CodeGenerator] = None


def build_services(
    provider: Optional[EnvironmentProvider] = None,
    *,
    bootstrapper: Optional[ViteBootstrapper] = None,
    state_store: Optional[SandboxStateStore] = None,
    installer: Optional[PackageInstaller] = None,
    chat_model: Optional[Any] = None,
    health_check_interval: Optional[float] = None,
) -> AppServices:
    manager = SandboxLifecycleManager(
        provider or E2BEnvironmentProvider(),
        bootstrapper,
        health_check_interval=health_check_interval,
        state_store=state_store,
    )
    sandbox_installer = SandboxPackageInstaller(manager)

    if installer is None and appConfig.api.installerUrl:
        installer = HttpPackageInstaller(appConfig.api.installerUrl)
    file_cache = FileCache()
    pipeline = CodeApplyPipeline(manager, file_cache, installer or sandbox_installer)

    if chat_model is None:
        try:
            chat_model = build_chat_model()
        except (ImportError, ValueError) as e:
            logger.error(f"[services] Could not build chat model {appConfig.ai.model!r}: {e}")
    if chat_model is None:
        logger.warning("[services] AI_MODEL not set, code generation is disabled")

    return AppServices(
        manager=manager,
        file_cache=file_cache,
        pipeline=pipeline,
        sandbox_installer=sandbox_installer,
        conversations=ConversationStore(),
        generator=CodeGenerator(chat_model) if chat_model is not None else None,
    )
