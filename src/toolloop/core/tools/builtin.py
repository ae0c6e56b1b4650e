"""
Tools implemented by the runtime itself.

Both only touch task state, never the workspace:

- attempt_completion: the model declares the task finished
- add_interested_file: the model flags a file as relevant context
"""

from typing import Any

from toolloop.core.interfaces.tools import RunnerOutcome, ToolContext
from toolloop.core.tools.base import Tool
from toolloop.core.tools.schema import FieldSpec, FieldType

ATTEMPT_COMPLETION = "attempt_completion"
ADD_INTERESTED_FILE = "add_interested_file"


class AttemptCompletionTool(Tool):
    @property
    def name(self) -> str:
        return ATTEMPT_COMPLETION

    @property
    def description(self) -> str:
        return (
            "Present the final result of the task to the user. Use this only once the task "
            "is complete and every previous tool result has confirmed success. The result "
            "must be final and must not end with a question or an offer for further help."
        )

    @property
    def fields(self) -> tuple[FieldSpec, ...]:
        return (
            FieldSpec(
                name="result",
                description="Final summary of what was accomplished",
                non_empty=True,
            ),
        )

    @property
    def examples(self) -> tuple[str, ...]:
        return (
            '<tool name="attempt_completion">\n'
            "<result>Renamed the helper and updated all three call sites.</result>\n"
            "</tool>",
        )

    @property
    def read_only(self) -> bool:
        return True

    async def execute(self, context: ToolContext, result: str, **kwargs) -> RunnerOutcome:
        return RunnerOutcome(payload=result)


class AddInterestedFileTool(Tool):
    """Adds (or refreshes) an entry in the task's interested-file set."""

    @property
    def name(self) -> str:
        return ADD_INTERESTED_FILE

    @property
    def description(self) -> str:
        return (
            "Track a file that is relevant to the current task so it stays in context. "
            "Explain why the file matters."
        )

    @property
    def fields(self) -> tuple[FieldSpec, ...]:
        return (
            FieldSpec(name="path", description="Workspace-relative path of the file", non_empty=True),
            FieldSpec(name="why", description="Why this file matters for the task", non_empty=True),
            FieldSpec(
                name="priority",
                type=FieldType.INTEGER,
                description="0-100, higher is kept longer",
                required=False,
                default=50,
            ),
        )

    @property
    def read_only(self) -> bool:
        return True

    async def execute(
        self, context: ToolContext, path: str, why: str, priority: int = 50, **kwargs: Any
    ) -> RunnerOutcome:
        if context.state_manager is None:
            return RunnerOutcome(success=False, error="no state manager available to track files")
        if not 0 <= priority <= 100:
            return RunnerOutcome(success=False, error=f"priority must be between 0 and 100, got {priority}")

        await context.state_manager.add_interested_file(context.task_id, path, why, priority=priority)
        return RunnerOutcome(payload=f"Added {path} to interested files.")


def builtin_tools() -> list[Tool]:
    return [AttemptCompletionTool(), AddInterestedFileTool()]
