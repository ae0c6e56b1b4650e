"""
System prompt assembly.

The prompt is built from three sections, each wrapped in a tag so the
model can tell them apart:

- <Base>: static instructions, including the tool-call protocol
- <ToolsDescription>: every registered tool schema with usage examples
- <InterestedFiles>: files currently flagged as relevant context
"""

from typing import Iterable

from toolloop.core.domain.models import InterestedFile

BASE_PROMPT = """You are an autonomous coding agent working inside a user's workspace.
You accomplish the user's task step by step by calling tools.

Tool calls use this exact format, one block per call:

<tool name="TOOL_NAME">
<parameter_name>value</parameter_name>
</tool>

Rules:
- Use only the tools listed in the tools description, with their exact parameter names.
- Escape special characters in parameter values: &lt; for <, &gt; for >, &amp; for &.
  Use &#10; for a newline and &#9; for a tab when exactness matters.
- You may call several tools in one response. They run in the order you wrote them.
- Wait for tool results before assuming an action succeeded.
- When the task is done, call attempt_completion with a final summary of the result.
"""


def build_system_prompt(
    system_prompt: str,
    tools_description: str,
    interested_files: Iterable[InterestedFile] = (),
) -> str:
    """
    Build the system prompt from base, tools description and interested files.

    Args:
        system_prompt: Static base instructions
        tools_description: Rendered tool schemas
        interested_files: Files flagged as relevant, highest priority first

    Returns:
        Final system prompt. Identical inputs always produce identical output.
    """
    prompt_parts = [f"<Base>\n{system_prompt.strip()}\n</Base>"]

    if tools_description:
        prompt_parts.append(f"<ToolsDescription>\n{tools_description.strip()}\n</ToolsDescription>")

    files = sorted(interested_files, key=lambda f: (-f.priority, f.path))
    if files:
        lines = []
        for entry in files:
            flags = f"priority {entry.priority}" + (", pinned" if entry.pinned else "")
            line = f"- {entry.path} ({flags})"
            if entry.why:
                line += f": {entry.why}"
            lines.append(line)
        prompt_parts.append("<InterestedFiles>\n" + "\n".join(lines) + "\n</InterestedFiles>")

    return "\n\n".join(prompt_parts)
