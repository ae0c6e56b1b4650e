"""
Tool plugin discovery.

Host integrations ship tool runners as installed packages that advertise
them under the ``toolloop.tools`` entry point group. An entry point may
resolve to a Tool subclass, a zero-argument factory returning a tool (or a
list of tools), or a ready-made tool instance.
"""

from importlib.metadata import EntryPoint, entry_points
from typing import Any

import structlog

from toolloop.core.interfaces.tools import ToolProtocol

ENTRY_POINT_GROUP = "toolloop.tools"

logger = structlog.get_logger().bind(component="plugin_loader")


def _instantiate(target: Any) -> list[ToolProtocol]:
    if isinstance(target, type) or (callable(target) and not hasattr(target, "run")):
        target = target()
    if isinstance(target, (list, tuple)):
        return list(target)
    return [target]


def _is_tool(candidate: Any) -> bool:
    return all(hasattr(candidate, attr) for attr in ("name", "schema", "run"))


def load_entry_point_tools(group: str = ENTRY_POINT_GROUP) -> list[ToolProtocol]:
    """Load every tool advertised in ``group``. Broken plugins are skipped with a warning."""
    tools: list[ToolProtocol] = []
    for entry_point in entry_points(group=group):
        tools.extend(load_tools_from_entry_point(entry_point))
    return tools


def load_tools_from_entry_point(entry_point: EntryPoint) -> list[ToolProtocol]:
    try:
        loaded = _instantiate(entry_point.load())
    except Exception as e:
        logger.warning("tool_plugin_load_failed", plugin=entry_point.name, error=str(e))
        return []

    tools = [tool for tool in loaded if _is_tool(tool)]
    if len(tools) != len(loaded):
        logger.warning("tool_plugin_invalid_objects", plugin=entry_point.name, skipped=len(loaded) - len(tools))
    logger.info("tool_plugin_loaded", plugin=entry_point.name, tools=[tool.name for tool in tools])
    return tools
