"""
Tool Schema Registry

Single validation point for tool parameters. Raw parameters come from the
protocol parser as decoded strings (or lists of mappings for structured
parameters). The registry coerces them to the declared types, fills
defaults and reports problems as values, so nothing downstream ever needs
to guard against absent or mistyped fields.
"""

import json
from typing import Any, Iterable

import structlog

from toolloop.core.tools.schema import (
    FieldIssue,
    FieldSpec,
    FieldType,
    ToolSchema,
    ValidatedParams,
    ValidationError,
)

_INVALID = object()

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


class SchemaRegistry:
    """Per-tool-name parameter schemas with validation and default-filling."""

    def __init__(self, schemas: Iterable[ToolSchema] = ()):
        self._schemas: dict[str, ToolSchema] = {}
        self.logger = structlog.get_logger().bind(component="schema_registry")
        for schema in schemas:
            self.register(schema)

    def register(self, schema: ToolSchema) -> None:
        if schema.name in self._schemas:
            self.logger.info("tool_schema_replaced", tool=schema.name)
        self._schemas[schema.name] = schema

    def get(self, name: str) -> ToolSchema | None:
        return self._schemas.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._schemas

    def names(self) -> list[str]:
        return list(self._schemas)

    def schemas(self) -> list[ToolSchema]:
        return list(self._schemas.values())

    def structured_params(self, name: str) -> frozenset[str]:
        """Parameter names the parser must treat as lists of sub-elements."""
        schema = self._schemas.get(name)
        return schema.structured_params if schema else frozenset()

    def validate(self, name: str, raw_params: dict[str, Any]) -> ValidatedParams | ValidationError:
        """
        Validate raw parameters for one invocation.

        Args:
            name: Tool name
            raw_params: Parameters as produced by the protocol parser

        Returns:
            ValidatedParams with coerced values and defaults, or a
            ValidationError listing every problem found.
        """
        schema = self._schemas.get(name)
        if schema is None:
            return ValidationError(
                tool_name=name,
                issues=(FieldIssue(path="<tool>", message=f"no schema registered for '{name}'"),),
            )

        issues: list[FieldIssue] = []
        notes: list[str] = []
        values = self._validate_fields(schema.fields, raw_params or {}, "", issues, notes)

        if issues:
            error = ValidationError(tool_name=name, issues=tuple(issues), notes=tuple(notes))
            self.logger.info("tool_params_invalid", tool=name, fields=error.fields)
            return error
        return ValidatedParams(values=values, notes=tuple(notes))

    def _validate_fields(
        self,
        specs: tuple[FieldSpec, ...],
        raw: dict[str, Any],
        prefix: str,
        issues: list[FieldIssue],
        notes: list[str],
    ) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for spec in specs:
            path = f"{prefix}.{spec.name}" if prefix else spec.name
            value = raw.get(spec.name)

            if spec.type == FieldType.LIST:
                result = self._validate_list(spec, value, path, issues, notes)
                if result is not _INVALID:
                    values[spec.name] = result
                continue

            if value is None or (spec.type != FieldType.STRING and isinstance(value, str) and not value.strip()):
                if spec.required:
                    issues.append(FieldIssue(path, "required parameter is missing"))
                elif spec.has_default:
                    values[spec.name] = spec.default
                continue

            result = self._coerce(spec, value, path, issues)
            if result is not _INVALID:
                values[spec.name] = result

        known = {spec.name for spec in specs}
        for key in raw:
            if key not in known:
                unknown = f"{prefix}.{key}" if prefix else key
                notes.append(f"ignored unknown parameter '{unknown}'")
        return values

    def _coerce(self, spec: FieldSpec, value: Any, path: str, issues: list[FieldIssue]) -> Any:
        if spec.type == FieldType.STRING:
            if isinstance(value, (dict, list)):
                issues.append(FieldIssue(path, "expected text, got structured content"))
                return _INVALID
            text = str(value)
            if spec.strip:
                text = text.strip()
            if spec.non_empty and not text.strip():
                issues.append(FieldIssue(path, "must not be empty"))
                return _INVALID
            coerced: Any = text

        elif spec.type == FieldType.BOOLEAN:
            if isinstance(value, bool):
                coerced = value
            elif str(value).strip().lower() in _TRUE_VALUES:
                coerced = True
            elif str(value).strip().lower() in _FALSE_VALUES:
                coerced = False
            else:
                issues.append(FieldIssue(path, f"expected true or false, got {value!r}"))
                return _INVALID

        elif spec.type == FieldType.INTEGER:
            if isinstance(value, bool):
                issues.append(FieldIssue(path, f"expected an integer, got {value!r}"))
                return _INVALID
            try:
                coerced = value if isinstance(value, int) else int(str(value).strip(), 10)
            except ValueError:
                issues.append(FieldIssue(path, f"expected an integer, got {value!r}"))
                return _INVALID

        elif spec.type == FieldType.NUMBER:
            if isinstance(value, bool):
                issues.append(FieldIssue(path, f"expected a number, got {value!r}"))
                return _INVALID
            try:
                coerced = value if isinstance(value, (int, float)) else float(str(value).strip())
            except ValueError:
                issues.append(FieldIssue(path, f"expected a number, got {value!r}"))
                return _INVALID

        else:
            issues.append(FieldIssue(path, f"unsupported field type {spec.type.value}"))
            return _INVALID

        if spec.enum and coerced not in spec.enum:
            allowed = ", ".join(str(option) for option in spec.enum)
            issues.append(FieldIssue(path, f"must be one of: {allowed}"))
            return _INVALID
        return coerced

    def _validate_list(
        self,
        spec: FieldSpec,
        value: Any,
        path: str,
        issues: list[FieldIssue],
        notes: list[str],
    ) -> Any:
        items = self._list_items(spec, value, path, issues)
        if items is _INVALID:
            return _INVALID

        if not items:
            if spec.min_items >= 1:
                issues.append(
                    FieldIssue(
                        path,
                        f"block contained zero <{spec.item_name}> sub-elements; "
                        f"at least {spec.min_items} required",
                    )
                )
                return _INVALID
            notes.append(f"'{path}' is empty")
            return []

        valid_items = []
        for index, item in enumerate(items):
            item_path = f"{path}[{index}]"
            if not isinstance(item, dict):
                notes.append(f"dropped {item_path}: not a <{spec.item_name}> element")
                continue
            item_issues: list[FieldIssue] = []
            item_values = self._validate_fields(spec.item_fields, item, item_path, item_issues, notes)
            if item_issues:
                reasons = "; ".join(f"{issue.path} {issue.message}" for issue in item_issues)
                notes.append(f"dropped {item_path}: {reasons}")
                continue
            valid_items.append(item_values)

        if len(valid_items) < spec.min_items:
            dropped = [note for note in notes if note.startswith(f"dropped {path}[")]
            message = (
                f"block contained {len(valid_items)} valid <{spec.item_name}> sub-elements "
                f"out of {len(items)}; at least {spec.min_items} required"
            )
            if dropped:
                message += " (" + "; ".join(dropped) + ")"
            issues.append(FieldIssue(path, message))
            return _INVALID
        return valid_items

    def _list_items(self, spec: FieldSpec, value: Any, path: str, issues: list[FieldIssue]) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return []
            if text.startswith("["):
                try:
                    decoded = json.loads(text)
                except json.JSONDecodeError as e:
                    issues.append(FieldIssue(path, f"invalid JSON array: {e.msg}"))
                    return _INVALID
                if isinstance(decoded, list):
                    return decoded
        issues.append(
            FieldIssue(path, f"expected a list of <{spec.item_name}> elements or a JSON array")
        )
        return _INVALID

    def describe_for_prompt(self) -> str:
        """Render every registered schema with its parameters and examples in wire format."""
        return describe_schemas(self._schemas.values())


def describe_schemas(schemas: Iterable[ToolSchema]) -> str:
    sections = []
    for schema in schemas:
        lines = [f"## {schema.name}", schema.description.strip()]
        if schema.requires_approval:
            lines.append("Requires user approval before execution.")
        if schema.fields:
            lines.append("Parameters:")
            for spec in schema.fields:
                lines.extend(_describe_field(spec, indent="- "))
        lines.append("Usage:")
        lines.extend(schema.examples or (_example(schema),))
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def _describe_field(spec: FieldSpec, indent: str) -> list[str]:
    flags = [spec.type.value, "required" if spec.required else "optional"]
    if spec.enum:
        flags.append("one of " + "/".join(str(option) for option in spec.enum))
    if spec.min_items:
        flags.append(f"at least {spec.min_items}")
    line = f"{indent}{spec.name} ({', '.join(flags)})"
    if spec.description:
        line += f": {spec.description}"
    lines = [line]
    if spec.type == FieldType.LIST:
        lines.append(f"  {indent.strip()} each <{spec.item_name}> contains:")
        for item in spec.item_fields:
            lines.extend(_describe_field(item, indent="    - "))
    return lines


def _example(schema: ToolSchema) -> str:
    parts = [f'<tool name="{schema.name}">']
    for spec in schema.fields:
        if spec.type == FieldType.LIST:
            children = "".join(f"<{item.name}>...</{item.name}>" for item in spec.item_fields if item.required)
            parts.append(f"<{spec.name}><{spec.item_name}>{children}</{spec.item_name}></{spec.name}>")
        elif spec.required:
            parts.append(f"<{spec.name}>...</{spec.name}>")
    parts.append("</tool>")
    return "\n".join(parts)
