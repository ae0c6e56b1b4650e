"""Rendering of invocations and results back into wire format."""

from typing import Any

from toolloop.core.domain.models import ToolInvocation, ToolResult
from toolloop.core.protocol.entities import encode_parameter_text


def _render_value(value: Any) -> str:
    if isinstance(value, list):
        items = []
        for item in value:
            if isinstance(item, dict):
                children = "".join(
                    f"<{key}>{encode_parameter_text(str(child))}</{key}>" for key, child in item.items()
                )
                items.append(f"<item>{children}</item>")
            else:
                items.append(f"<item>{encode_parameter_text(str(item))}</item>")
        return "".join(items)
    return encode_parameter_text(str(value))


def render_invocation(invocation: ToolInvocation) -> str:
    """Wire text of an invocation. Uses the original text when it was recorded."""
    if invocation.raw:
        return invocation.raw
    lines = [f'<tool name="{invocation.name}">']
    for name, value in invocation.params.items():
        lines.append(f"<{name}>{_render_value(value)}</{name}>")
    lines.append("</tool>")
    return "\n".join(lines)


def render_tool_result(result: ToolResult) -> str:
    return (
        f'<tool_result name="{result.tool_name}" id="{result.invocation_id}" '
        f'outcome="{result.outcome.value}">\n{result.render()}\n</tool_result>'
    )
