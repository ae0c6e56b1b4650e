"""
Unit Tests for the runtime's own tools and the Tool base class
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from toolloop.core.interfaces.tools import ApprovalRiskLevel, RunnerOutcome, ToolContext
from toolloop.core.tools.base import Tool
from toolloop.core.tools.builtin import (
    ADD_INTERESTED_FILE,
    ATTEMPT_COMPLETION,
    AddInterestedFileTool,
    AttemptCompletionTool,
    builtin_tools,
)
from toolloop.core.tools.schema import FieldType


class TestAttemptCompletionTool:
    @pytest.mark.asyncio
    async def test_result_becomes_payload(self):
        outcome = await AttemptCompletionTool().run({"result": "All done."}, ToolContext(task_id="t1"))
        assert outcome == RunnerOutcome(payload="All done.")

    def test_schema(self):
        schema = AttemptCompletionTool().schema
        assert schema.name == ATTEMPT_COMPLETION
        assert schema.read_only
        assert not schema.requires_approval
        assert schema.fields[0].name == "result"
        assert schema.fields[0].non_empty


class TestAddInterestedFileTool:
    @pytest.mark.asyncio
    async def test_adds_file_through_state_manager(self, state_manager):
        task = await state_manager.create_task("Refactor")
        context = ToolContext(task_id=task.id, invocation_id="call_1", state_manager=state_manager)

        outcome = await AddInterestedFileTool().run(
            {"path": "src/app.py", "why": "entry point", "priority": 80}, context
        )

        assert outcome.success
        assert outcome.payload == "Added src/app.py to interested files."
        stored = (await state_manager.get(task.id)).interested_files
        assert [(f.path, f.why, f.priority) for f in stored] == [("src/app.py", "entry point", 80)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("priority", [-1, 101])
    async def test_priority_out_of_range(self, priority):
        state_manager = MagicMock()
        state_manager.add_interested_file = AsyncMock()
        context = ToolContext(task_id="t1", state_manager=state_manager)

        outcome = await AddInterestedFileTool().run({"path": "a.py", "why": "x", "priority": priority}, context)

        assert not outcome.success
        assert "between 0 and 100" in outcome.error
        state_manager.add_interested_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_without_state_manager(self):
        outcome = await AddInterestedFileTool().run({"path": "a.py", "why": "x"}, ToolContext(task_id="t1"))
        assert not outcome.success
        assert "no state manager" in outcome.error

    def test_priority_is_optional_integer(self):
        priority = AddInterestedFileTool().fields[2]
        assert priority.type == FieldType.INTEGER
        assert not priority.required
        assert priority.default == 50


def test_builtin_tools():
    assert [tool.name for tool in builtin_tools()] == [ATTEMPT_COMPLETION, ADD_INTERESTED_FILE]


class GrepTool(Tool):
    @property
    def name(self) -> str:
        return "grep"

    @property
    def description(self) -> str:
        return "Search files"

    @property
    def requires_approval(self) -> bool:
        return True

    async def execute(self, context, pattern: str, max_results: int = 20, recursive: bool = True, **kwargs):
        return {"success": True, "matches": [pattern] * 2, "files_touched": ["a.py"]}


class TestToolBase:
    def test_fields_from_signature(self):
        fields = {spec.name: spec for spec in GrepTool().fields}

        assert list(fields) == ["pattern", "max_results", "recursive"]
        assert fields["pattern"].required
        assert fields["pattern"].type == FieldType.STRING
        assert fields["max_results"].type == FieldType.INTEGER
        assert fields["max_results"].default == 20
        assert fields["recursive"].type == FieldType.BOOLEAN

    def test_approval_metadata(self):
        tool = GrepTool()
        assert tool.schema.requires_approval
        assert tool.approval_risk_level == ApprovalRiskLevel.MEDIUM

    def test_approval_preview_truncates(self):
        preview = GrepTool().get_approval_preview(pattern="x" * 300)
        assert preview.startswith("Tool: grep\npattern: ")
        assert preview.endswith("...")

    @pytest.mark.asyncio
    async def test_dict_result_is_normalized(self):
        outcome = await GrepTool().run({"pattern": "TODO"}, ToolContext(task_id="t1"))

        assert outcome.success
        assert outcome.payload == {"matches": ["TODO", "TODO"]}
        assert outcome.files_touched == ("a.py",)
