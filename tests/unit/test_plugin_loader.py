"""
Unit Tests for entry-point tool discovery
"""

from unittest.mock import MagicMock, patch

from toolloop.infrastructure.tools.plugin_loader import (
    ENTRY_POINT_GROUP,
    load_entry_point_tools,
    load_tools_from_entry_point,
)

from conftest import EchoTool


def entry_point(name, target=None, error=None):
    ep = MagicMock()
    ep.name = name
    if error is not None:
        ep.load.side_effect = error
    else:
        ep.load.return_value = target
    return ep


class TestLoadToolsFromEntryPoint:
    def test_tool_class_is_instantiated(self):
        tools = load_tools_from_entry_point(entry_point("echo", EchoTool))
        assert len(tools) == 1
        assert isinstance(tools[0], EchoTool)

    def test_factory_returning_list(self):
        tools = load_tools_from_entry_point(entry_point("pair", lambda: [EchoTool(), EchoTool()]))
        assert len(tools) == 2

    def test_instance_is_used_as_is(self):
        tool = EchoTool()
        assert load_tools_from_entry_point(entry_point("echo", tool)) == [tool]

    def test_broken_plugin_is_skipped(self):
        assert load_tools_from_entry_point(entry_point("broken", error=ImportError("no module"))) == []

    def test_non_tools_are_filtered(self):
        tools = load_tools_from_entry_point(entry_point("mixed", lambda: [EchoTool(), "not a tool"]))
        assert [tool.name for tool in tools] == ["echo"]


def test_load_entry_point_tools_reads_group():
    with patch(
        "toolloop.infrastructure.tools.plugin_loader.entry_points",
        return_value=[entry_point("echo", EchoTool), entry_point("broken", error=RuntimeError("boom"))],
    ) as mock_entry_points:
        tools = load_entry_point_tools()

    mock_entry_points.assert_called_once_with(group=ENTRY_POINT_GROUP)
    assert [tool.name for tool in tools] == ["echo"]
