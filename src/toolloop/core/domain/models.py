"""
Core Domain Models

Dataclasses for the task aggregate and everything it owns:

- Task: root aggregate for one agent run
- ConversationMessage: one element of a turn, made of ordered segments
- ToolInvocation / ToolResult: a parsed tool block and its outcome
- InterestedFile: a workspace file flagged as relevant context
- Checkpoint: a resumable snapshot taken after a committed turn

All models serialize to plain dicts (``to_dict`` / ``from_dict``) so the
state manager can persist them as JSON.
"""

import copy
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from toolloop.core.domain.errors import ErrorKind


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:12]}"


class TaskStatus(str, Enum):
    """Lifecycle states of a task."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    STREAMING = "streaming"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING_TOOL = "executing_tool"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.ABORTED, TaskStatus.FAILED)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"


class ToolOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ToolInvocation:
    """
    One complete tool block parsed out of model output.

    Attributes:
        id: Identifier generated when the block opened
        name: Tool name from the ``name`` attribute
        params: Parameter name to decoded string, or list of mappings for
            structured parameters
        valid: False when the block was incomplete or malformed
        errors: Names of missing or malformed fields
        reason: Human-readable explanation when invalid
        raw: Exact wire text of the block, used to replay history verbatim
    """

    id: str
    name: str
    params: dict[str, Any] = field(default_factory=dict)
    valid: bool = True
    errors: tuple[str, ...] = ()
    reason: str | None = None
    raw: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "params": copy.deepcopy(self.params),
            "valid": self.valid,
            "errors": list(self.errors),
            "reason": self.reason,
            "raw": self.raw,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolInvocation":
        return cls(
            id=data["id"],
            name=data["name"],
            params=data.get("params", {}),
            valid=data.get("valid", True),
            errors=tuple(data.get("errors", ())),
            reason=data.get("reason"),
            raw=data.get("raw", ""),
        )


@dataclass(frozen=True)
class ToolError:
    """Structured failure attached to a non-successful ToolResult."""

    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": dict(self.details)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolError":
        return cls(
            kind=ErrorKind(data["kind"]),
            message=data["message"],
            details=data.get("details", {}),
        )


@dataclass(frozen=True)
class ToolResult:
    """
    Outcome of exactly one ToolInvocation.

    Attributes:
        invocation_id: Id of the invocation this result answers
        tool_name: Name of the invoked tool
        outcome: success, failure or cancelled
        payload: Runner output on success
        error: Structured error for failure/cancelled outcomes
        files_touched: Paths the runner reported as modified
        timestamp: When the result was produced
    """

    invocation_id: str
    tool_name: str
    outcome: ToolOutcome
    payload: Any = None
    error: ToolError | None = None
    files_touched: tuple[str, ...] = ()
    timestamp: str = field(default_factory=utc_now)

    @property
    def success(self) -> bool:
        return self.outcome == ToolOutcome.SUCCESS

    @classmethod
    def ok(
        cls, invocation: ToolInvocation, payload: Any = None, files_touched: tuple[str, ...] = ()
    ) -> "ToolResult":
        return cls(
            invocation_id=invocation.id,
            tool_name=invocation.name,
            outcome=ToolOutcome.SUCCESS,
            payload=payload,
            files_touched=tuple(files_touched),
        )

    @classmethod
    def failed(
        cls,
        invocation: ToolInvocation,
        kind: ErrorKind,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> "ToolResult":
        return cls(
            invocation_id=invocation.id,
            tool_name=invocation.name,
            outcome=ToolOutcome.FAILURE,
            error=ToolError(kind=kind, message=message, details=details or {}),
        )

    @classmethod
    def cancelled(cls, invocation: ToolInvocation, kind: ErrorKind, message: str) -> "ToolResult":
        return cls(
            invocation_id=invocation.id,
            tool_name=invocation.name,
            outcome=ToolOutcome.CANCELLED,
            error=ToolError(kind=kind, message=message),
        )

    def render(self) -> str:
        """Render a human/model-readable message. Never returns an empty string."""
        if self.outcome == ToolOutcome.SUCCESS:
            if self.payload is None or self.payload == "":
                return f"Tool '{self.tool_name}' completed successfully."
            if isinstance(self.payload, str):
                return self.payload
            return json.dumps(self.payload, ensure_ascii=False, default=str)

        message = (self.error.message if self.error else "").strip()
        kind = self.error.kind.value if self.error else self.outcome.value
        if not message:
            message = f"Tool '{self.tool_name}' did not complete."
        return f"{kind}: {message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "invocation_id": self.invocation_id,
            "tool_name": self.tool_name,
            "outcome": self.outcome.value,
            "payload": copy.deepcopy(self.payload),
            "error": self.error.to_dict() if self.error else None,
            "files_touched": list(self.files_touched),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolResult":
        return cls(
            invocation_id=data["invocation_id"],
            tool_name=data["tool_name"],
            outcome=ToolOutcome(data["outcome"]),
            payload=data.get("payload"),
            error=ToolError.from_dict(data["error"]) if data.get("error") else None,
            files_touched=tuple(data.get("files_touched", ())),
            timestamp=data.get("timestamp") or utc_now(),
        )


@dataclass(frozen=True)
class TextSegment:
    text: str


@dataclass(frozen=True)
class ToolInvocationSegment:
    invocation: ToolInvocation


@dataclass(frozen=True)
class ToolResultSegment:
    result: ToolResult


Segment = Union[TextSegment, ToolInvocationSegment, ToolResultSegment]


def _segment_to_dict(segment: Segment) -> dict[str, Any]:
    if isinstance(segment, TextSegment):
        return {"type": "text", "text": segment.text}
    if isinstance(segment, ToolInvocationSegment):
        return {"type": "tool_invocation", "invocation": segment.invocation.to_dict()}
    return {"type": "tool_result", "result": segment.result.to_dict()}


def _segment_from_dict(data: dict[str, Any]) -> Segment:
    kind = data["type"]
    if kind == "text":
        return TextSegment(text=data["text"])
    if kind == "tool_invocation":
        return ToolInvocationSegment(invocation=ToolInvocation.from_dict(data["invocation"]))
    if kind == "tool_result":
        return ToolResultSegment(result=ToolResult.from_dict(data["result"]))
    raise ValueError(f"Unknown segment type: {kind}")


@dataclass(frozen=True)
class ConversationMessage:
    """
    One immutable element of the conversation history.

    Attributes:
        role: user, assistant or tool_result
        segments: Ordered content segments in stream order
        timestamp: When the message was committed
    """

    role: Role
    segments: tuple[Segment, ...]
    timestamp: str = field(default_factory=utc_now)

    @classmethod
    def user(cls, text: str) -> "ConversationMessage":
        return cls(role=Role.USER, segments=(TextSegment(text),))

    @classmethod
    def tool_result(cls, result: ToolResult) -> "ConversationMessage":
        return cls(role=Role.TOOL_RESULT, segments=(ToolResultSegment(result),))

    @property
    def text(self) -> str:
        return "".join(s.text for s in self.segments if isinstance(s, TextSegment))

    @property
    def invocations(self) -> list[ToolInvocation]:
        return [s.invocation for s in self.segments if isinstance(s, ToolInvocationSegment)]

    @property
    def results(self) -> list[ToolResult]:
        return [s.result for s in self.segments if isinstance(s, ToolResultSegment)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "segments": [_segment_to_dict(s) for s in self.segments],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationMessage":
        return cls(
            role=Role(data["role"]),
            segments=tuple(_segment_from_dict(s) for s in data.get("segments", [])),
            timestamp=data.get("timestamp") or utc_now(),
        )


@dataclass
class InterestedFile:
    """
    A workspace file flagged as relevant context for the model.

    Attributes:
        path: Workspace-relative path, unique within a task
        why: Rationale shown to the model
        priority: 0-100, lower priorities are evicted first
        pinned: Pinned files are never evicted
        last_access: ISO timestamp of the last add/touch
    """

    path: str
    why: str = ""
    priority: int = 50
    pinned: bool = False
    last_access: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "why": self.why,
            "priority": self.priority,
            "pinned": self.pinned,
            "last_access": self.last_access,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InterestedFile":
        return cls(
            path=data["path"],
            why=data.get("why", ""),
            priority=int(data.get("priority", 50)),
            pinned=bool(data.get("pinned", False)),
            last_access=data.get("last_access") or utc_now(),
        )


@dataclass
class Checkpoint:
    task_id: str
    seq: int
    snapshot: dict[str, Any]
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "seq": self.seq,
            "snapshot": copy.deepcopy(self.snapshot),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Checkpoint":
        return cls(
            task_id=data["task_id"],
            seq=int(data["seq"]),
            snapshot=data["snapshot"],
            timestamp=data.get("timestamp") or utc_now(),
        )


@dataclass
class Task:
    """
    Root aggregate for one agent run.

    Owned exclusively by the StateManager. Everyone else works on copies
    returned by ``StateManager.get``.

    Attributes:
        id: Unique task identifier
        status: Current lifecycle state
        history: Append-only conversation history
        interested_files: Flagged workspace files, unique by path
        checkpoints: Ordered checkpoints, strictly increasing seq
        created_at: Creation timestamp
        updated_at: Timestamp of the last committed mutation
        parent_task_id: Task this one was resumed from, if any
        failure_reason: Why the task ended in FAILED
    """

    id: str
    status: TaskStatus = TaskStatus.IDLE
    history: list[ConversationMessage] = field(default_factory=list)
    interested_files: list[InterestedFile] = field(default_factory=list)
    checkpoints: list[Checkpoint] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    parent_task_id: str | None = None
    failure_reason: str | None = None

    def pending_invocations(self) -> list[ToolInvocation]:
        """Invocations in history that do not have a result yet, in order."""
        resolved = {
            result.invocation_id for message in self.history for result in message.results
        }
        return [
            invocation
            for message in self.history
            if message.role == Role.ASSISTANT
            for invocation in message.invocations
            if invocation.id not in resolved
        ]

    def find_interested_file(self, path: str) -> InterestedFile | None:
        for entry in self.interested_files:
            if entry.path == path:
                return entry
        return None

    @property
    def last_checkpoint(self) -> Checkpoint | None:
        return self.checkpoints[-1] if self.checkpoints else None

    def snapshot(self) -> dict[str, Any]:
        """Serialized task without its checkpoint list."""
        return self.to_dict(include_checkpoints=False)

    def to_dict(self, include_checkpoints: bool = True) -> dict[str, Any]:
        data = {
            "id": self.id,
            "status": self.status.value,
            "history": [m.to_dict() for m in self.history],
            "interested_files": [f.to_dict() for f in self.interested_files],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "parent_task_id": self.parent_task_id,
            "failure_reason": self.failure_reason,
        }
        if include_checkpoints:
            data["checkpoints"] = [c.to_dict() for c in self.checkpoints]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            status=TaskStatus(data.get("status", TaskStatus.IDLE.value)),
            history=[ConversationMessage.from_dict(m) for m in data.get("history", [])],
            interested_files=[InterestedFile.from_dict(f) for f in data.get("interested_files", [])],
            checkpoints=[Checkpoint.from_dict(c) for c in data.get("checkpoints", [])],
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
            parent_task_id=data.get("parent_task_id"),
            failure_reason=data.get("failure_reason"),
        )
