"""
Unit Tests for the streaming tool-call parser

Verifies that the event sequence does not depend on how the stream is
fragmented, and that malformed blocks become invalid invocations instead
of exceptions.
"""

import pytest

from toolloop.core.domain.models import ToolInvocation
from toolloop.core.protocol.parser import ProtocolParser, TextChunk, parse_structured


def structured(name):
    return {"replacements"} if name == "multi_replace_string_in_file" else set()


def parse(fragments, structured_params=structured):
    parser = ProtocolParser(structured_params)
    events = []
    for fragment in fragments:
        events.extend(parser.feed(fragment))
    events.extend(parser.finish())
    return events


def normalize(events):
    """Merge adjacent text chunks and drop generated invocation ids."""
    normalized = []
    for event in events:
        if isinstance(event, TextChunk):
            if normalized and normalized[-1][0] == "text":
                normalized[-1] = ("text", normalized[-1][1] + event.text)
            else:
                normalized.append(("text", event.text))
        else:
            normalized.append(
                ("tool", event.name, event.params, event.valid, event.reason, event.errors, event.raw)
            )
    return normalized


def invocations(events):
    return [event for event in events if isinstance(event, ToolInvocation)]


def text_of(events):
    return "".join(event.text for event in events if isinstance(event, TextChunk))


STREAM = (
    "I'll read the file first, since a < b here.\n"
    '<tool name="read_file">\n<path>src/app.py</path>\n</tool>\n'
    "Then edit it:\n"
    '<tool name="multi_replace_string_in_file">\n<replacements>'
    "<replacement><filePath>src/app.py</filePath>"
    "<oldString>x &amp;&amp; y</oldString><newString>line1&#10;line2</newString></replacement>"
    "</replacements>\n</tool>\n"
    '<tool name="write_to_file"><path>index.html</path>'
    "<content><div><content>nested</content></div></content></tool>"
    "Done <tools> tag stays prose."
)


class TestFragmentationInvariance:
    """The same bytes produce the same events however they are split."""

    def test_every_split_offset(self):
        expected = normalize(parse([STREAM]))
        for offset in range(len(STREAM) + 1):
            assert normalize(parse([STREAM[:offset], STREAM[offset:]])) == expected, offset

    def test_one_character_per_fragment(self):
        assert normalize(parse(list(STREAM))) == normalize(parse([STREAM]))

    def test_three_way_splits(self):
        expected = normalize(parse([STREAM]))
        for first in range(0, len(STREAM), 7):
            for second in range(first, len(STREAM), 13):
                fragments = [STREAM[:first], STREAM[first:second], STREAM[second:]]
                assert normalize(parse(fragments)) == expected


class TestWellFormedBlocks:
    def test_prose_and_invocations_in_order(self):
        events = normalize(parse([STREAM]))
        kinds = [event[0] for event in events]
        assert kinds == ["text", "tool", "text", "tool", "text", "tool", "text"]

    def test_simple_parameter(self):
        (read,) = invocations(parse(['<tool name="read_file"><path>src/app.py</path></tool>']))
        assert read.valid
        assert read.name == "read_file"
        assert read.params == {"path": "src/app.py"}

    def test_parameter_text_is_decoded(self):
        (call,) = invocations(
            parse(['<tool name="execute_command"><command>echo &lt;hi&gt; &amp;&amp; ls</command></tool>'])
        )
        assert call.params["command"] == "echo <hi> && ls"

    def test_markup_inside_parameter_is_content(self):
        events = parse([STREAM])
        write = invocations(events)[2]
        assert write.valid
        assert write.params["content"] == "<div><content>nested</content></div>"

    def test_structured_parameter(self):
        edit = invocations(parse([STREAM]))[1]
        assert edit.params["replacements"] == [
            {"filePath": "src/app.py", "oldString": "x && y", "newString": "line1\nline2"}
        ]

    def test_self_closing_parameter(self):
        (call,) = invocations(parse(['<tool name="list_files"><path>.</path><recursive/></tool>']))
        assert call.params == {"path": ".", "recursive": ""}

    def test_raw_is_exact_block_text(self):
        block = '<tool name="read_file">\n<path>a.py</path>\n</tool>'
        (call,) = invocations(parse(["before ", block, " after"]))
        assert call.raw == block

    def test_prose_lookalikes_stay_text(self):
        events = parse(["if a <b and <tools> or <tool> then"])
        assert invocations(events) == []
        assert text_of(events) == "if a <b and <tools> or <tool> then"

    def test_unique_ids(self):
        calls = invocations(parse([STREAM]))
        assert len({call.id for call in calls}) == len(calls)


class TestMalformedBlocks:
    """Faults surface as invalid invocations, never as exceptions."""

    def test_stream_ends_inside_block(self):
        (call,) = invocations(parse(['<tool name="read_file"><path>src/a']))
        assert not call.valid
        assert call.reason == "incomplete tool block: stream ended before </tool>"
        assert call.errors == ("path",)

    def test_parameter_never_closed(self):
        events = parse(['<tool name="write_to_file"><path>a.txt</path><content>abc</tool> after'])
        (call,) = invocations(events)
        assert not call.valid
        assert call.reason == "parameter 'content' was never closed"
        assert call.errors == ("content",)
        assert call.params == {"path": "a.txt"}
        assert text_of(events) == " after"

    def test_unmatched_closing_tag(self):
        events = parse(['<tool name="read_file"></path></tool>'])
        (call,) = invocations(events)
        assert not call.valid
        assert "unexpected closing tag </path>" in call.reason
        assert text_of(events) == "</tool>"

    def test_new_block_before_close(self):
        calls = invocations(
            parse(['<tool name="echo"><text>1</text><tool name="read_file"><path>p</path></tool>'])
        )
        assert [call.name for call in calls] == ["echo", "read_file"]
        assert not calls[0].valid
        assert calls[0].reason == "incomplete tool block: new tool block opened before </tool>"
        assert calls[0].params == {"text": "1"}
        assert calls[1].valid
        assert calls[1].raw == '<tool name="read_file"><path>p</path></tool>'

    def test_parsing_continues_after_fault(self):
        events = parse(['<tool name="a"></x></tool>', 'ok <tool name="read_file"><path>b</path></tool>'])
        calls = invocations(events)
        assert [call.valid for call in calls] == [False, True]


class TestParserLifecycle:
    def test_feed_after_finish_raises(self):
        parser = ProtocolParser()
        parser.finish()
        with pytest.raises(RuntimeError):
            parser.feed("more")

    def test_double_finish_raises(self):
        parser = ProtocolParser()
        parser.finish()
        with pytest.raises(RuntimeError):
            parser.finish()

    def test_abandon_discards_pending_state(self):
        parser = ProtocolParser()
        parser.feed('text <tool name="read_file"><path>a')
        parser.abandon()
        assert parser.done

    def test_partial_tag_at_end_becomes_text(self):
        assert text_of(parse(["trailing <too"])) == "trailing <too"


class TestParseStructured:
    def test_items_with_fields(self):
        content = "<r><a>1</a><b>&lt;2&gt;</b></r>\n<r><a>3</a></r>"
        assert parse_structured(content) == [{"a": "1", "b": "<2>"}, {"a": "3"}]

    def test_empty_content(self):
        assert parse_structured("  \n ") == []

    def test_json_array_is_returned_as_text(self):
        assert parse_structured('[{"a": "1"}]') == '[{"a": "1"}]'

    def test_item_without_fields(self):
        assert parse_structured("<r>plain</r>") == [{}]
