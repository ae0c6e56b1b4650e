"""
Presentation events.

The core publishes these on the event bus. Subscribers are read-only
observers; commands flow back only through the coordinator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from toolloop.core.domain.models import utc_now


class AgentEventType(str, Enum):
    TEXT_CHUNK = "text_chunk"
    TOOL_INVOCATION_STARTED = "tool_invocation_started"
    TOOL_RESULT = "tool_result"
    STATE_CHANGED = "state_changed"
    APPROVAL_REQUESTED = "approval_requested"
    TURN_RESTARTED = "turn_restarted"


@dataclass
class AgentEvent:
    """
    A single event emitted during task execution.

    Attributes:
        type: What happened
        task_id: Task the event belongs to
        data: Event-specific payload (plain JSON-compatible values)
        timestamp: When the event was emitted
    """

    type: AgentEventType
    task_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now)
