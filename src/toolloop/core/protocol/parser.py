"""
Streaming Tool-Call Protocol Parser

Turns a raw model-output stream into an ordered sequence of ``TextChunk``
and ``ToolInvocation`` events. The wire format is::

    Some prose.
    <tool name="read_file">
      <path>src/app.py</path>
    </tool>

Fragments may be split at any byte, including in the middle of a tag. The
parser is a character-driven state machine, so it never re-scans the
accumulated buffer:

- PROSE: plain text, surfaced as TextChunk
- PROSE_TAG: a ``<`` was seen in prose, collecting a possible tool-open tag
- BODY: inside a tool block, between parameters
- BODY_TAG: collecting a tag inside a tool block
- PARAM: inside a parameter, collecting raw content
- PARAM_TAG: a ``<`` was seen inside a parameter
- DONE: finished or abandoned

Inside a parameter only three tags are structural: the parameter's own
open/close tag (depth-tracked), ``</tool>`` and a new ``<tool name=...>``.
Everything else is content, so file bodies full of markup pass through.

Faults never raise. A block that cannot be completed is emitted as an
invalid ToolInvocation with a reason, and parsing continues.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Collection, Union

import structlog

from toolloop.core.domain.models import ToolInvocation, new_id
from toolloop.core.protocol.entities import decode_parameter_text

TOOL_OPEN_RE = re.compile(r"""<tool\s+name\s*=\s*["']([^"'<>]+)["']\s*>""")
_PARAM_OPEN_RE = re.compile(r"<([A-Za-z_][\w.\-]*)\s*(/?)>")
_CLOSE_RE = re.compile(r"</\s*([A-Za-z_][\w.\-]*)\s*>")

TOOL_CLOSE = "</tool>"
MAX_TAG_LENGTH = 256

logger = structlog.get_logger().bind(component="protocol_parser")


@dataclass(frozen=True)
class TextChunk:
    """A run of prose outside any tool block."""

    text: str


ParserEvent = Union[TextChunk, ToolInvocation]


class _State(Enum):
    PROSE = "prose"
    PROSE_TAG = "prose_tag"
    BODY = "body"
    BODY_TAG = "body_tag"
    PARAM = "param"
    PARAM_TAG = "param_tag"
    DONE = "done"


def _could_be_tool_open(buffer: str) -> bool:
    if len(buffer) > MAX_TAG_LENGTH:
        return False
    if len(buffer) <= 5:
        return "<tool".startswith(buffer)
    return buffer.startswith("<tool") and buffer[5].isspace() and "<" not in buffer[1:]


class _ToolBlock:
    """Accumulator for the tool block currently being parsed."""

    def __init__(self, name: str, open_tag: str):
        self.id = new_id("call_")
        self.name = name
        self.params: dict = {}
        self.raw: list[str] = [open_tag]
        self.param_name: str | None = None
        self.param_depth = 0
        self.param_content: list[str] = []

    def build(self, *, valid: bool = True, reason: str | None = None, errors=()) -> ToolInvocation:
        return ToolInvocation(
            id=self.id,
            name=self.name,
            params=self.params,
            valid=valid,
            errors=tuple(errors),
            reason=reason,
            raw="".join(self.raw),
        )


class ProtocolParser:
    """
    Incremental parser for one model response.

    A fresh parser is used per turn. ``feed`` may be called any number of
    times, then exactly one of ``finish`` or ``abandon``.

    Args:
        structured_params: Returns, for a tool name, the parameter names
            whose content is a list of sub-elements.
    """

    def __init__(self, structured_params: Callable[[str], Collection[str]] | None = None):
        self._structured_params = structured_params or (lambda _name: ())
        self._state = _State.PROSE
        self._prose: list[str] = []
        self._tag: list[str] = []
        self._block: _ToolBlock | None = None
        self._events: list[ParserEvent] = []

    @property
    def done(self) -> bool:
        return self._state == _State.DONE

    def feed(self, fragment: str) -> list[ParserEvent]:
        """Consume a fragment and return the events it completed."""
        if self._state == _State.DONE:
            raise RuntimeError("ProtocolParser.feed() called after finish() or abandon()")

        for char in fragment:
            self._step(char)

        self._flush_prose()
        return self._drain()

    def finish(self) -> list[ParserEvent]:
        """Signal end of stream and return the remaining events."""
        if self._state == _State.DONE:
            raise RuntimeError("ProtocolParser.finish() called twice")

        if self._state == _State.PROSE_TAG:
            self._prose.append("".join(self._tag))
            self._tag = []
        elif self._block is not None:
            self._tag = []
            self._emit_incomplete("stream ended before </tool>")

        self._flush_prose()
        self._state = _State.DONE
        return self._drain()

    def abandon(self) -> None:
        """Drop everything, e.g. when the stream is restarted or aborted."""
        self._state = _State.DONE
        self._prose = []
        self._tag = []
        self._block = None
        self._events = []

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------

    def _step(self, char: str) -> None:
        state = self._state
        if state == _State.PROSE:
            if char == "<":
                self._tag = ["<"]
                self._state = _State.PROSE_TAG
            else:
                self._prose.append(char)
        elif state == _State.PROSE_TAG:
            self._step_prose_tag(char)
        elif state == _State.BODY:
            self._block.raw.append(char)
            if char == "<":
                self._tag = ["<"]
                self._state = _State.BODY_TAG
        elif state == _State.BODY_TAG:
            self._block.raw.append(char)
            self._step_body_tag(char)
        elif state == _State.PARAM:
            self._block.raw.append(char)
            if char == "<":
                self._tag = ["<"]
                self._state = _State.PARAM_TAG
            else:
                self._block.param_content.append(char)
        elif state == _State.PARAM_TAG:
            self._block.raw.append(char)
            self._step_param_tag(char)

    def _step_prose_tag(self, char: str) -> None:
        if char == "<":
            self._prose.append("".join(self._tag))
            self._tag = ["<"]
            return

        self._tag.append(char)
        buffer = "".join(self._tag)
        if char == ">":
            self._tag = []
            match = TOOL_OPEN_RE.fullmatch(buffer)
            if match:
                self._open_block(match.group(1), buffer)
            else:
                self._prose.append(buffer)
                self._state = _State.PROSE
        elif not _could_be_tool_open(buffer):
            self._prose.append(buffer)
            self._tag = []
            self._state = _State.PROSE

    def _step_body_tag(self, char: str) -> None:
        if char == "<":
            self._tag = ["<"]
            return

        self._tag.append(char)
        if char != ">":
            if len(self._tag) > MAX_TAG_LENGTH:
                self._tag = []
                self._state = _State.BODY
            return

        buffer = "".join(self._tag)
        self._tag = []
        block = self._block

        if buffer == TOOL_CLOSE:
            self._close_block()
            return

        tool_open = TOOL_OPEN_RE.fullmatch(buffer)
        if tool_open:
            del block.raw[-len(buffer):]
            self._reopen(tool_open.group(1), buffer, "new tool block opened before </tool>")
            return

        close = _CLOSE_RE.fullmatch(buffer)
        if close:
            logger.warning("parser_unmatched_close_tag", tool=block.name, tag=close.group(1))
            self._events.append(
                block.build(
                    valid=False,
                    reason=f"unexpected closing tag </{close.group(1)}> with no matching open tag",
                    errors=(close.group(1),),
                )
            )
            self._block = None
            self._state = _State.PROSE
            return

        param = _PARAM_OPEN_RE.fullmatch(buffer)
        if param:
            if param.group(2):
                block.params[param.group(1)] = self._param_value(param.group(1), "")
                self._state = _State.BODY
            else:
                block.param_name = param.group(1)
                block.param_depth = 1
                block.param_content = []
                self._state = _State.PARAM
            return

        # Anything else between parameters is ignored.
        self._state = _State.BODY

    def _step_param_tag(self, char: str) -> None:
        block = self._block
        name = block.param_name
        open_tag = f"<{name}>"
        close_tag = f"</{name}>"

        if char == "<":
            block.param_content.append("".join(self._tag))
            self._tag = ["<"]
            return

        self._tag.append(char)
        buffer = "".join(self._tag)

        if char != ">":
            if not (
                close_tag.startswith(buffer)
                or open_tag.startswith(buffer)
                or TOOL_CLOSE.startswith(buffer)
                or _could_be_tool_open(buffer)
            ):
                block.param_content.append(buffer)
                self._tag = []
                self._state = _State.PARAM
            return

        self._tag = []
        self._state = _State.PARAM

        if buffer == close_tag:
            block.param_depth -= 1
            if block.param_depth == 0:
                block.params[name] = self._param_value(name, "".join(block.param_content))
                block.param_name = None
                block.param_content = []
                self._state = _State.BODY
            else:
                block.param_content.append(buffer)
        elif buffer == open_tag:
            block.param_depth += 1
            block.param_content.append(buffer)
        elif buffer == TOOL_CLOSE:
            logger.warning("parser_unclosed_parameter", tool=block.name, param=name)
            self._events.append(
                block.build(
                    valid=False,
                    reason=f"parameter '{name}' was never closed",
                    errors=(name,),
                )
            )
            self._block = None
            self._state = _State.PROSE
        elif TOOL_OPEN_RE.fullmatch(buffer):
            del block.raw[-len(buffer):]
            self._reopen(
                TOOL_OPEN_RE.fullmatch(buffer).group(1),
                buffer,
                f"new tool block opened while parameter '{name}' was still open",
                errors=(name,),
            )
        else:
            block.param_content.append(buffer)

    # ------------------------------------------------------------------
    # block lifecycle
    # ------------------------------------------------------------------

    def _open_block(self, name: str, open_tag: str) -> None:
        self._flush_prose()
        self._block = _ToolBlock(name=name.strip(), open_tag=open_tag)
        self._state = _State.BODY

    def _reopen(self, name: str, open_tag: str, reason: str, errors=()) -> None:
        self._emit_incomplete(reason, errors=errors)
        self._open_block(name, open_tag)

    def _close_block(self) -> None:
        self._events.append(self._block.build())
        self._block = None
        self._state = _State.PROSE

    def _emit_incomplete(self, reason: str, errors=()) -> None:
        block = self._block
        if block.param_name and not errors:
            errors = (block.param_name,)
        logger.warning("parser_incomplete_block", tool=block.name, reason=reason)
        self._events.append(block.build(valid=False, reason=f"incomplete tool block: {reason}", errors=errors))
        self._block = None
        self._state = _State.PROSE

    def _param_value(self, param: str, content: str):
        if param in self._structured_params(self._block.name):
            return parse_structured(content)
        return decode_parameter_text(content)

    def _flush_prose(self) -> None:
        if self._prose:
            self._events.append(TextChunk("".join(self._prose)))
            self._prose = []

    def _drain(self) -> list[ParserEvent]:
        events, self._events = self._events, []
        return events


# ----------------------------------------------------------------------
# structured parameters
# ----------------------------------------------------------------------


def _find_close(text: str, name: str, start: int) -> tuple[int, int] | None:
    open_tag, close_tag = f"<{name}>", f"</{name}>"
    depth = 1
    pos = start
    while True:
        close_at = text.find(close_tag, pos)
        if close_at < 0:
            return None
        open_at = text.find(open_tag, pos)
        if 0 <= open_at < close_at:
            depth += 1
            pos = open_at + len(open_tag)
            continue
        depth -= 1
        if depth == 0:
            return close_at, close_at + len(close_tag)
        pos = close_at + len(close_tag)


def _split_elements(text: str) -> list[tuple[str, str]] | None:
    """Split complete text into top-level ``(tag, inner)`` pairs, or None if it is not pure markup."""
    elements = []
    pos = 0
    length = len(text)
    while True:
        while pos < length and text[pos].isspace():
            pos += 1
        if pos >= length:
            return elements
        match = _PARAM_OPEN_RE.match(text, pos)
        if not match:
            return None
        if match.group(2):
            elements.append((match.group(1), ""))
            pos = match.end()
            continue
        bounds = _find_close(text, match.group(1), match.end())
        if bounds is None:
            return None
        elements.append((match.group(1), text[match.end():bounds[0]]))
        pos = bounds[1]


def parse_structured(content: str):
    """
    Parse the completed content of a list-valued parameter.

    ``<item><a>1</a><b>2</b></item><item>...</item>`` becomes
    ``[{"a": "1", "b": "2"}, ...]``. Content that is not made of
    sub-elements (for example a JSON array) is returned as decoded text so
    the schema registry can interpret it.
    """
    items = _split_elements(content)
    if items is None:
        return decode_parameter_text(content)

    parsed = []
    for _tag, inner in items:
        fields = _split_elements(inner)
        if fields is None:
            parsed.append({})
            continue
        parsed.append({key: decode_parameter_text(value) for key, value in fields})
    return parsed
