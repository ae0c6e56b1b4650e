"""
Tool runner port.

Runners receive parameters that already passed schema validation, so they
never need to guard against missing or mistyped values.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from toolloop.core.tools.schema import ToolSchema


class ApprovalRiskLevel(str, Enum):
    """Risk level shown to the operator when approval is requested."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class ToolContext:
    """
    Execution context handed to a runner.

    Attributes:
        task_id: Task the invocation belongs to
        invocation_id: Id of the invocation being executed
        workspace_root: Root directory of the host workspace
        state_manager: Handle used by tools that touch task metadata
    """

    task_id: str
    invocation_id: str = ""
    workspace_root: str = "."
    state_manager: Any = None


@dataclass
class RunnerOutcome:
    """
    What a runner reports back.

    A runner signals an expected failure by returning ``success=False`` with
    an ``error`` message. Unexpected failures are raised and classified by
    the dispatcher.
    """

    payload: Any = None
    success: bool = True
    error: str | None = None
    files_touched: tuple[str, ...] = field(default_factory=tuple)


class ToolProtocol(Protocol):
    @property
    def name(self) -> str:
        ...

    @property
    def schema(self) -> "ToolSchema":
        ...

    async def run(self, params: dict[str, Any], context: ToolContext) -> RunnerOutcome:
        ...
