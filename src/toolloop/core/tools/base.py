# ============================================
# BASE TOOL INTERFACE
# ============================================

from abc import ABC, abstractmethod
import inspect
from typing import Any

from toolloop.core.interfaces.tools import ApprovalRiskLevel, RunnerOutcome, ToolContext
from toolloop.core.tools.schema import FieldSpec, FieldType, ToolSchema

_ANNOTATION_TYPES = {
    str: FieldType.STRING,
    int: FieldType.INTEGER,
    float: FieldType.NUMBER,
    bool: FieldType.BOOLEAN,
    list: FieldType.LIST,
}


class Tool(ABC):
    """Base class for all tool runners"""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    def fields(self) -> tuple[FieldSpec, ...]:
        """Override to declare parameters explicitly"""
        return self._generate_fields_from_signature()

    def _generate_fields_from_signature(self) -> tuple[FieldSpec, ...]:
        """Auto-generate parameter fields from the execute method signature"""
        sig = inspect.signature(self.execute)
        fields = []

        for param_name, param in sig.parameters.items():
            if param_name in ["self", "context", "kwargs"]:
                continue
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue

            field_type = _ANNOTATION_TYPES.get(param.annotation, FieldType.STRING)
            required = param.default == inspect.Parameter.empty
            spec_kwargs: dict[str, Any] = {"name": param_name, "type": field_type, "required": required}
            if not required:
                spec_kwargs["default"] = param.default
            fields.append(FieldSpec(**spec_kwargs))

        return tuple(fields)

    @property
    def examples(self) -> tuple[str, ...]:
        return ()

    @property
    def requires_approval(self) -> bool:
        return False

    @property
    def read_only(self) -> bool:
        return False

    @property
    def approval_risk_level(self) -> ApprovalRiskLevel:
        return ApprovalRiskLevel.MEDIUM if self.requires_approval else ApprovalRiskLevel.LOW

    def get_approval_preview(self, **kwargs: Any) -> str:
        """Text shown to the operator when approval is requested"""
        lines = [f"Tool: {self.name}"]
        for key, value in kwargs.items():
            preview = str(value)
            if len(preview) > 200:
                preview = preview[:200] + "..."
            lines.append(f"{key}: {preview}")
        return "\n".join(lines)

    @property
    def schema(self) -> ToolSchema:
        return ToolSchema(
            name=self.name,
            description=self.description,
            fields=self.fields,
            examples=self.examples,
            requires_approval=self.requires_approval,
            read_only=self.read_only,
        )

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs) -> Any:
        pass

    async def run(self, params: dict[str, Any], context: ToolContext) -> RunnerOutcome:
        """
        Call execute() with validated params and normalize what it returns.

        execute() may return a RunnerOutcome, a dict with a ``success`` key,
        or any other payload (treated as success).
        """
        result = await self.execute(context=context, **params)

        if isinstance(result, RunnerOutcome):
            return result

        if isinstance(result, dict) and "success" in result:
            payload = {k: v for k, v in result.items() if k not in ("success", "error", "files_touched")}
            return RunnerOutcome(
                payload=payload or None,
                success=bool(result["success"]),
                error=result.get("error"),
                files_touched=tuple(result.get("files_touched", ())),
            )

        return RunnerOutcome(payload=result)
