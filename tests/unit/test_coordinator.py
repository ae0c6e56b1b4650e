"""
Unit Tests for TaskCoordinator

Lifecycle of capabilities, single active task, resume semantics and
command routing.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from toolloop.application.coordinator import TaskCoordinator
from toolloop.core.domain.approval import ApprovalGate, ApprovalPolicy
from toolloop.core.domain.errors import CoordinatorBusyError, StateError
from toolloop.core.domain.events import AgentEventType
from toolloop.core.domain.models import TaskStatus
from toolloop.core.interfaces.tools import RunnerOutcome
from toolloop.core.tools.catalog import EXECUTE_COMMAND

from conftest import EventRecorder, SchemaTool, completion, tool_call


@pytest.fixture
def approvals():
    return ApprovalGate(ApprovalPolicy.PROMPT, timeout_seconds=5)


@pytest.fixture
def coordinator(state_manager, make_executor, transport, approvals, event_bus, memory_store):
    executor = make_executor(transport, approvals=approvals)
    return TaskCoordinator(
        state_manager=state_manager,
        executor=executor,
        approvals=approvals,
        event_bus=event_bus,
        capabilities=[memory_store, transport],
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_capabilities_start_in_order_and_stop_in_reverse(self, state_manager, make_executor, transport):
        calls = []

        def capability(name):
            mock = MagicMock()
            mock.init = AsyncMock(side_effect=lambda: calls.append(f"init {name}"))
            mock.shutdown = AsyncMock(side_effect=lambda: calls.append(f"shutdown {name}"))
            return mock

        coordinator = TaskCoordinator(
            state_manager=state_manager,
            executor=make_executor(transport),
            approvals=ApprovalGate(),
            event_bus=MagicMock(),
            capabilities=[capability("store"), capability("transport")],
        )

        async with coordinator:
            pass

        assert calls == ["init store", "init transport", "shutdown transport", "shutdown store"]

    @pytest.mark.asyncio
    async def test_failing_shutdown_does_not_stop_others(self, state_manager, make_executor, transport):
        first, second = MagicMock(), MagicMock()
        first.init, first.shutdown = AsyncMock(), AsyncMock()
        second.init, second.shutdown = AsyncMock(), AsyncMock(side_effect=RuntimeError("stuck"))

        coordinator = TaskCoordinator(
            state_manager, make_executor(transport), ApprovalGate(), MagicMock(), [first, second]
        )
        await coordinator.init()
        await coordinator.shutdown()

        first.shutdown.assert_awaited_once()

    def test_objects_without_lifecycle_are_ignored(self, state_manager, make_executor, transport):
        coordinator = TaskCoordinator(
            state_manager, make_executor(transport), ApprovalGate(), MagicMock(), [object(), transport]
        )
        assert coordinator.capabilities == [transport]


class TestRunningTasks:
    @pytest.mark.asyncio
    async def test_start_and_wait(self, coordinator, transport, recorder):
        transport.add(*completion("done"))

        async with coordinator:
            task_id = await coordinator.start("Do it")
            task = await coordinator.wait(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert recorder.of_type(AgentEventType.TOOL_RESULT)[0].data["message"] == "done"
        transport.init.assert_awaited_once()
        transport.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_only_one_active_task(self, coordinator, transport, approvals):
        transport.add(tool_call("execute_command", command="ls"))
        coordinator.executor.dispatcher.register_runner(SchemaTool(EXECUTE_COMMAND))

        task_id = await coordinator.start("First")
        while not approvals.pending_ids:
            await asyncio.sleep(0.01)

        assert coordinator.is_busy
        assert coordinator.active_task_id == task_id
        with pytest.raises(CoordinatorBusyError):
            await coordinator.start("Second")

        coordinator.abort()
        task = await coordinator.wait()
        assert task.status == TaskStatus.ABORTED
        assert not coordinator.is_busy

    @pytest.mark.asyncio
    async def test_approve_routes_to_gate(self, coordinator, transport, approvals):
        runner = SchemaTool(EXECUTE_COMMAND, handler=lambda params, ctx: RunnerOutcome(payload="listed"))
        coordinator.executor.dispatcher.register_runner(runner)
        transport.add(tool_call("execute_command", command="ls"))
        transport.add(*completion())

        task_id = await coordinator.start("List")
        while not approvals.pending_ids:
            await asyncio.sleep(0.01)
        assert coordinator.approve(approvals.pending_ids[0])
        task = await coordinator.wait(task_id)

        assert task.status == TaskStatus.COMPLETED
        assert runner.calls == [{"command": "ls"}]
        assert not coordinator.approve("call_unknown")

    @pytest.mark.asyncio
    async def test_reject_routes_to_gate(self, coordinator, transport, approvals):
        runner = SchemaTool(EXECUTE_COMMAND)
        coordinator.executor.dispatcher.register_runner(runner)
        transport.add(tool_call("execute_command", command="rm -rf /"))
        transport.add(*completion())

        task_id = await coordinator.start("Clean")
        while not approvals.pending_ids:
            await asyncio.sleep(0.01)
        coordinator.reject(approvals.pending_ids[0])
        await coordinator.wait(task_id)

        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_abort_and_pause_without_active_task(self, coordinator):
        assert not coordinator.abort()
        assert not coordinator.pause()

    @pytest.mark.asyncio
    async def test_wait_without_task(self, coordinator):
        with pytest.raises(StateError):
            await coordinator.wait()


class TestResume:
    @pytest.mark.asyncio
    async def test_completed_task_cannot_resume(self, coordinator, state_manager):
        task = await state_manager.create_task("Done")
        await state_manager.set_status(task.id, TaskStatus.COMPLETED)

        with pytest.raises(StateError):
            await coordinator.resume(task.id)

    @pytest.mark.asyncio
    async def test_idle_task_resumes_in_place(self, coordinator, state_manager, transport):
        task = await state_manager.create_task("Paused earlier")
        transport.add(*completion())

        resumed_id = await coordinator.resume(task.id)
        final = await coordinator.wait(resumed_id)

        assert resumed_id == task.id
        assert final.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_task_resumes_as_fork(self, coordinator, state_manager, transport):
        task = await state_manager.create_task("Flaky")
        await state_manager.checkpoint(task.id)
        await state_manager.set_status(task.id, TaskStatus.FAILED, failure_reason="503")
        transport.add(*completion())

        resumed_id = await coordinator.resume(task.id)
        final = await coordinator.wait(resumed_id)

        assert resumed_id != task.id
        assert final.parent_task_id == task.id
        assert final.status == TaskStatus.COMPLETED
        assert (await coordinator.get_task(task.id)).status == TaskStatus.FAILED


class TestStateAccess:
    @pytest.mark.asyncio
    async def test_interested_files_default_to_last_task(self, coordinator, transport):
        transport.add(*completion())
        task_id = await coordinator.start("Go")
        await coordinator.wait(task_id)

        task = await coordinator.add_interested_file("src/app.py", "entry point", priority=70, pinned=True)
        assert task.id == task_id
        assert task.interested_files[0].pinned
        assert await coordinator.remove_interested_file("src/app.py")

    @pytest.mark.asyncio
    async def test_interested_files_need_a_task(self, coordinator):
        with pytest.raises(StateError):
            await coordinator.add_interested_file("a.py")

    @pytest.mark.asyncio
    async def test_list_and_subscribe(self, coordinator, state_manager, transport):
        recorder = EventRecorder()
        unsubscribe = coordinator.subscribe(recorder, AgentEventType.STATE_CHANGED)
        transport.add(*completion())

        task_id = await coordinator.start("Go")
        await coordinator.wait(task_id)
        unsubscribe()

        assert [t.id for t in await coordinator.list_tasks()] == [task_id]
        assert recorder.events
        assert all(e.type == AgentEventType.STATE_CHANGED for e in recorder.events)
