"""
Model transport port.

The core never talks to a provider SDK directly. It builds a ModelRequest
and consumes the text fragments a transport yields.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol


@dataclass(frozen=True)
class ModelRequest:
    """
    One fully-built model request.

    Attributes:
        system: Assembled system prompt
        messages: Chat messages (``{"role": ..., "content": ...}``) built
            from committed history only
        model: Provider model identifier
        params: Extra sampling parameters (temperature, max_tokens, ...)
    """

    system: str
    messages: tuple[dict[str, str], ...]
    model: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_messages(self) -> list[dict[str, str]]:
        return [{"role": "system", "content": self.system}, *[dict(m) for m in self.messages]]


class ModelTransportProtocol(Protocol):
    """
    Streaming access to a model provider.

    Implementations raise ``TransportError`` for transient failures,
    ``AuthError`` for rejected credentials and ``ProtocolError`` for
    malformed responses.
    """

    def stream(self, request: ModelRequest) -> AsyncIterator[str]:
        """Yield raw text fragments of the model response."""
        ...


@dataclass(frozen=True)
class TurnRestart:
    """Marker in a turn stream: everything yielded so far is void, the response restarts."""

    attempt: int
    reason: str


class TurnStreamProtocol(Protocol):
    """Produces the fragments of one model turn for a task."""

    def send_turn(self, task: Any, tool_schemas: Any = None) -> AsyncIterator["str | TurnRestart"]:
        ...
