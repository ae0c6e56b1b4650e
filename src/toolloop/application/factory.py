"""
Application Layer - Coordinator Factory

Dependency injection for the runtime. Builds every service from
ToolloopSettings and passes them by reference; nothing is a global.

Key Responsibilities:
- Instantiate infrastructure adapters (store, model transport)
- Register tool schemas and runners (builtin, plugins, host-supplied)
- Wire state manager, API manager, dispatcher and executor
- Hand the composed capabilities to the coordinator in startup order
"""

from typing import Iterable

import structlog

from toolloop.application.api_manager import ApiManager
from toolloop.application.coordinator import TaskCoordinator
from toolloop.application.event_bus import EventBus
from toolloop.application.state_manager import StateManager
from toolloop.config.settings import ToolloopSettings
from toolloop.core.domain.approval import ApprovalGate, ApprovalPolicy
from toolloop.core.domain.task_executor import TaskExecutor
from toolloop.core.interfaces.llm import ModelTransportProtocol
from toolloop.core.interfaces.state import KeyValueStoreProtocol
from toolloop.core.interfaces.tools import ToolProtocol
from toolloop.core.tools.builtin import builtin_tools
from toolloop.core.tools.catalog import WORKSPACE_TOOL_SCHEMAS
from toolloop.core.tools.dispatcher import ToolDispatcher
from toolloop.core.tools.registry import SchemaRegistry
from toolloop.infrastructure.persistence.file_store import FileKeyValueStore
from toolloop.infrastructure.tools.plugin_loader import load_entry_point_tools


class CoordinatorFactory:
    """
    Factory for creating coordinators with dependency injection.

    Args:
        settings: Runtime configuration
    """

    def __init__(self, settings: ToolloopSettings | None = None):
        self.settings = settings or ToolloopSettings()
        self.logger = structlog.get_logger().bind(component="coordinator_factory")

    def create_coordinator(
        self,
        extra_tools: Iterable[ToolProtocol] = (),
        transport: ModelTransportProtocol | None = None,
        store: KeyValueStoreProtocol | None = None,
        load_plugins: bool = True,
    ) -> TaskCoordinator:
        """
        Build a fully wired coordinator.

        Args:
            extra_tools: Host-supplied tool runners
            transport: Model transport override (defaults to LiteLLM)
            store: Key-value store override (defaults to the file store)
            load_plugins: Discover runners from the ``toolloop.tools`` entry points

        Returns:
            TaskCoordinator; call ``init()`` (or use ``async with``) before starting tasks
        """
        settings = self.settings
        if store is None:
            store = self._create_store()
        if transport is None:
            transport = self._create_transport()

        state_manager = StateManager(store, settings.state.interested_files_capacity)
        dispatcher = self._create_dispatcher(extra_tools, load_plugins)
        api_manager = ApiManager(transport, dispatcher.registry, settings.model, settings.retry)
        approvals = ApprovalGate(ApprovalPolicy(settings.approval.policy), settings.approval.timeout_seconds)
        event_bus = EventBus()

        executor = TaskExecutor(
            state_manager=state_manager,
            api_manager=api_manager,
            dispatcher=dispatcher,
            approvals=approvals,
            events=event_bus,
            settings=settings.executor,
            workspace_root=settings.workspace_root,
        )

        self.logger.info(
            "coordinator_created",
            model=settings.model.name,
            tools=dispatcher.registry.names(),
            approval_policy=settings.approval.policy,
        )
        return TaskCoordinator(
            state_manager=state_manager,
            executor=executor,
            approvals=approvals,
            event_bus=event_bus,
            capabilities=[store, transport],
        )

    def _create_store(self) -> KeyValueStoreProtocol:
        return FileKeyValueStore(self.settings.state.store_dir)

    def _create_transport(self) -> ModelTransportProtocol:
        from toolloop.infrastructure.llm.litellm_transport import LiteLLMTransport

        return LiteLLMTransport(self.settings.model, self.settings.retry)

    def _create_dispatcher(self, extra_tools: Iterable[ToolProtocol], load_plugins: bool) -> ToolDispatcher:
        registry = SchemaRegistry(WORKSPACE_TOOL_SCHEMAS)
        dispatcher = ToolDispatcher(registry, timeout_seconds=self.settings.executor.tool_timeout_seconds)
        dispatcher.register_runners(builtin_tools())
        if load_plugins:
            dispatcher.register_runners(load_entry_point_tools())
        dispatcher.register_runners(extra_tools)
        return dispatcher


def build_coordinator(
    settings: ToolloopSettings | None = None,
    extra_tools: Iterable[ToolProtocol] = (),
    **kwargs,
) -> TaskCoordinator:
    """Shortcut for ``CoordinatorFactory(settings).create_coordinator(...)``."""
    return CoordinatorFactory(settings).create_coordinator(extra_tools=extra_tools, **kwargs)
