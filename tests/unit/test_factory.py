"""
Unit Tests for CoordinatorFactory

Verifies dependency wiring from settings without touching the network.
"""

from unittest.mock import patch

import pytest

from toolloop.application.factory import CoordinatorFactory, build_coordinator
from toolloop.config.settings import load_settings
from toolloop.core.domain.approval import ApprovalPolicy
from toolloop.core.domain.models import TaskStatus
from toolloop.infrastructure.llm.litellm_transport import LiteLLMTransport
from toolloop.infrastructure.persistence.file_store import FileKeyValueStore

from conftest import EchoTool, ScriptedTransport, completion


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        state={"store_dir": str(tmp_path / "tasks"), "interested_files_capacity": 7},
        approval={"policy": "auto_deny", "timeout_seconds": 12},
        executor={"tool_timeout_seconds": 3, "max_turns": 9},
        workspace_root=str(tmp_path),
    )


class TestCoordinatorFactory:
    def test_default_wiring(self, settings):
        with patch(
            "toolloop.application.factory.load_entry_point_tools", return_value=[]
        ) as load_plugins:
            coordinator = CoordinatorFactory(settings).create_coordinator()

        load_plugins.assert_called_once()
        executor = coordinator.executor
        assert isinstance(coordinator.state_manager.store, FileKeyValueStore)
        assert coordinator.state_manager.interested_files_capacity == 7
        assert isinstance(executor.api_manager.transport, LiteLLMTransport)
        assert executor.dispatcher.timeout_seconds == 3
        assert executor.settings.max_turns == 9
        assert executor.workspace_root == settings.workspace_root
        assert coordinator.approvals.policy == ApprovalPolicy.AUTO_DENY
        assert coordinator.approvals.timeout_seconds == 12
        assert [type(c) for c in coordinator.capabilities] == [FileKeyValueStore, LiteLLMTransport]

    def test_tools_registered(self, settings):
        coordinator = build_coordinator(settings, extra_tools=[EchoTool()], load_plugins=False)
        dispatcher = coordinator.executor.dispatcher

        assert dispatcher.has_runner("attempt_completion")
        assert dispatcher.has_runner("add_interested_file")
        assert dispatcher.has_runner("echo")
        assert "read_file" in dispatcher.registry
        assert not dispatcher.has_runner("read_file")

    def test_plugins_disabled(self, settings):
        with patch("toolloop.application.factory.load_entry_point_tools") as load_plugins:
            build_coordinator(settings, load_plugins=False)
        load_plugins.assert_not_called()

    @pytest.mark.asyncio
    async def test_injected_transport_runs_a_task(self, settings, memory_store):
        transport = ScriptedTransport()
        transport.add(*completion())
        coordinator = build_coordinator(settings, transport=transport, store=memory_store, load_plugins=False)

        async with coordinator:
            task_id = await coordinator.start("Go")
            task = await coordinator.wait(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert "## attempt_completion" in transport.requests[0].system
