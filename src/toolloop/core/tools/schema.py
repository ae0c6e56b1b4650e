"""
Tool schema value types.

A ToolSchema declares the parameters a tool accepts. The registry
validates raw wire parameters against it and produces either
ValidatedParams or a ValidationError. Both are plain values.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class FieldType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"


_MISSING = object()


@dataclass(frozen=True)
class FieldSpec:
    """
    Declaration of a single parameter.

    Attributes:
        name: Parameter (or sub-field) name as it appears on the wire
        type: Declared type, wire strings are coerced to it
        description: Shown to the model in the system prompt
        required: Whether the parameter must be present
        default: Value used when an optional parameter is absent
        enum: Allowed values, if restricted
        non_empty: Reject blank strings
        strip: Strip surrounding whitespace from string values
        item_fields: Sub-field specs for list parameters
        item_name: Wire tag of one list element, e.g. ``replacement``
        min_items: Minimum number of valid items for list parameters
    """

    name: str
    type: FieldType = FieldType.STRING
    description: str = ""
    required: bool = True
    default: Any = _MISSING
    enum: tuple[Any, ...] | None = None
    non_empty: bool = False
    strip: bool = True
    item_fields: tuple["FieldSpec", ...] = ()
    item_name: str = "item"
    min_items: int = 0

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING


@dataclass(frozen=True)
class ToolSchema:
    """
    Parameter contract of one tool.

    Attributes:
        name: Tool name used in ``<tool name="...">``
        description: What the tool does
        fields: Parameter declarations in display order
        examples: Wire-format usage examples for the system prompt
        requires_approval: Execution must be approved by the operator
        read_only: The tool has no side effects on the workspace
    """

    name: str
    description: str
    fields: tuple[FieldSpec, ...] = ()
    examples: tuple[str, ...] = ()
    requires_approval: bool = False
    read_only: bool = False

    def field_spec(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    @property
    def structured_params(self) -> frozenset[str]:
        return frozenset(spec.name for spec in self.fields if spec.type == FieldType.LIST)

    def parameters_schema(self) -> dict[str, Any]:
        """JSON-schema style description of the parameters."""
        return {
            "type": "object",
            "properties": {spec.name: _json_schema(spec) for spec in self.fields},
            "required": [spec.name for spec in self.fields if spec.required],
        }


def _json_schema(spec: FieldSpec) -> dict[str, Any]:
    if spec.type == FieldType.LIST:
        schema: dict[str, Any] = {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {item.name: _json_schema(item) for item in spec.item_fields},
                "required": [item.name for item in spec.item_fields if item.required],
            },
        }
        if spec.min_items:
            schema["minItems"] = spec.min_items
    else:
        schema = {"type": spec.type.value}
    if spec.description:
        schema["description"] = spec.description
    if spec.enum:
        schema["enum"] = list(spec.enum)
    return schema


@dataclass(frozen=True)
class ValidatedParams:
    """Parameters that passed validation, with defaults filled in."""

    values: dict[str, Any]
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldIssue:
    path: str
    message: str


@dataclass(frozen=True)
class ValidationError:
    """Validation failure for one invocation. A value, never raised."""

    tool_name: str
    issues: tuple[FieldIssue, ...]
    notes: tuple[str, ...] = ()

    @property
    def fields(self) -> list[str]:
        return [issue.path for issue in self.issues]

    @property
    def message(self) -> str:
        details = "; ".join(f"{issue.path}: {issue.message}" for issue in self.issues)
        return f"Invalid parameters for tool '{self.tool_name}': {details}"
