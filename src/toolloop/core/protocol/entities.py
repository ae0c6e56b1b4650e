"""
Character decoding for tool parameter text.

Decoding runs in a fixed order so that an escaped ampersand is never
decoded twice:

1. numeric decimal references (``&#10;``)
2. numeric hexadecimal references (``&#x9;``)
3. named entities ``&lt; &gt; &quot; &apos;``
4. ``&amp;``

Afterwards doubled backslashes collapse to one. Single backslashes stay as
they are, so Windows paths like ``C:\\Users\\Test`` survive untouched.
"""

import re

_DECIMAL_REF = re.compile(r"&#(\d+);")
_HEX_REF = re.compile(r"&#[xX]([0-9A-Fa-f]+);")

_NAMED_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
)

_MAX_CODE_POINT = 0x10FFFF


def _char_or_verbatim(match: re.Match, base: int) -> str:
    code_point = int(match.group(1), base)
    if code_point > _MAX_CODE_POINT or 0xD800 <= code_point <= 0xDFFF:
        return match.group(0)
    return chr(code_point)


def decode_entities(text: str) -> str:
    """Decode numeric and named character references."""
    if "&" not in text:
        return text
    text = _DECIMAL_REF.sub(lambda m: _char_or_verbatim(m, 10), text)
    text = _HEX_REF.sub(lambda m: _char_or_verbatim(m, 16), text)
    for entity, char in _NAMED_ENTITIES:
        text = text.replace(entity, char)
    return text.replace("&amp;", "&")


def normalize_backslashes(text: str) -> str:
    return text.replace("\\\\", "\\")


def decode_parameter_text(text: str) -> str:
    """Full decoding applied to every leaf parameter value."""
    return normalize_backslashes(decode_entities(text))


def encode_parameter_text(text: str) -> str:
    """Inverse of decode_parameter_text, used when re-rendering invocations."""
    text = text.replace("\\", "\\\\")
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
