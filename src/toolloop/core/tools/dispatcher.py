"""
Tool Dispatcher

Routes a ToolInvocation to its runner and always produces exactly one
ToolResult. Runner failures are isolated: exceptions and timeouts become
failure results, only task cancellation propagates.

Checks run in a fixed order:

1. invalid invocation (parser fault) -> ParseError
2. no schema or no runner -> UnknownTool
3. schema validation failure -> ValidationError
4. runner exception -> RunnerError, runner timeout -> Timeout
"""

import asyncio
import json
from dataclasses import replace
from typing import Any, Iterable

import structlog

from toolloop.core.domain.errors import ErrorKind
from toolloop.core.domain.models import ToolInvocation, ToolResult
from toolloop.core.interfaces.tools import RunnerOutcome, ToolContext, ToolProtocol
from toolloop.core.tools.registry import SchemaRegistry
from toolloop.core.tools.schema import ValidationError


class ToolDispatcher:
    """
    Executes validated invocations against registered runners.

    Args:
        registry: Schema registry used for validation
        timeout_seconds: Per-invocation runner timeout
    """

    def __init__(self, registry: SchemaRegistry, timeout_seconds: float = 120.0):
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self._runners: dict[str, ToolProtocol] = {}
        self.logger = structlog.get_logger().bind(component="tool_dispatcher")

    def register_runner(self, tool: ToolProtocol) -> None:
        """Register a runner and its schema."""
        self.registry.register(tool.schema)
        self._runners[tool.name] = tool
        self.logger.debug("tool_runner_registered", tool=tool.name)

    def register_runners(self, tools: Iterable[ToolProtocol]) -> None:
        for tool in tools:
            self.register_runner(tool)

    def get_runner(self, name: str) -> ToolProtocol | None:
        return self._runners.get(name)

    def has_runner(self, name: str) -> bool:
        return name in self._runners

    def is_read_only(self, invocation: ToolInvocation) -> bool:
        schema = self.registry.get(invocation.name)
        return bool(invocation.valid and schema and schema.read_only)

    async def dispatch(self, invocation: ToolInvocation, context: ToolContext) -> ToolResult:
        """
        Execute one invocation.

        Never raises except for ``asyncio.CancelledError``.
        """
        if not invocation.valid:
            message = invocation.reason or "malformed tool block"
            if invocation.errors:
                message += f" (fields: {', '.join(invocation.errors)})"
            return ToolResult.failed(
                invocation,
                ErrorKind.PARSE_ERROR,
                message,
                details={"fields": list(invocation.errors)},
            )

        runner = self._runners.get(invocation.name)
        if runner is None or invocation.name not in self.registry:
            available = ", ".join(sorted(self._runners)) or "none"
            self.logger.info("tool_unknown", tool=invocation.name)
            return ToolResult.failed(
                invocation,
                ErrorKind.UNKNOWN_TOOL,
                f"Tool '{invocation.name}' is not available. Available tools: {available}",
            )

        validated = self.registry.validate(invocation.name, invocation.params)
        if isinstance(validated, ValidationError):
            return ToolResult.failed(
                invocation,
                ErrorKind.VALIDATION_ERROR,
                validated.message,
                details={"fields": validated.fields, "notes": list(validated.notes)},
            )

        if validated.notes:
            self.logger.debug("tool_params_notes", tool=invocation.name, notes=list(validated.notes))

        context = replace(context, invocation_id=invocation.id)
        return await self._run(runner, invocation, validated.values, context)

    async def dispatch_many(
        self,
        invocations: list[ToolInvocation],
        context: ToolContext,
        parallel_read_only: bool = False,
    ) -> list[ToolResult]:
        """
        Execute invocations and return results in invocation order.

        With ``parallel_read_only`` set, each run of consecutive read-only
        invocations executes concurrently. Everything else runs one at a
        time.
        """
        results: list[ToolResult] = []
        index = 0
        while index < len(invocations):
            invocation = invocations[index]
            if parallel_read_only and self.is_read_only(invocation):
                batch = [invocation]
                while index + len(batch) < len(invocations) and self.is_read_only(
                    invocations[index + len(batch)]
                ):
                    batch.append(invocations[index + len(batch)])
                results.extend(await asyncio.gather(*(self.dispatch(inv, context) for inv in batch)))
                index += len(batch)
            else:
                results.append(await self.dispatch(invocation, context))
                index += 1
        return results

    async def _run(
        self,
        runner: ToolProtocol,
        invocation: ToolInvocation,
        params: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        self.logger.info("tool_execution_started", tool=invocation.name, invocation_id=invocation.id)
        try:
            outcome = await asyncio.wait_for(runner.run(params, context), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.warning(
                "tool_execution_timeout",
                tool=invocation.name,
                timeout_seconds=self.timeout_seconds,
            )
            return ToolResult.failed(
                invocation,
                ErrorKind.TIMEOUT,
                f"Tool '{invocation.name}' timed out after {self.timeout_seconds}s",
            )
        except Exception as e:
            self.logger.error(
                "tool_execution_failed",
                tool=invocation.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ToolResult.failed(
                invocation,
                ErrorKind.RUNNER_ERROR,
                f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                details={"error_type": type(e).__name__},
            )

        if not isinstance(outcome, RunnerOutcome):
            outcome = RunnerOutcome(payload=outcome)

        # Results are persisted with the task, so payloads must be plain JSON values.
        try:
            payload = to_json_safe(outcome.payload)
        except (TypeError, ValueError) as e:
            self.logger.error("tool_payload_unserializable", tool=invocation.name, error=str(e))
            return ToolResult.failed(
                invocation,
                ErrorKind.RUNNER_ERROR,
                f"Tool '{invocation.name}' returned a result that cannot be stored: {e}",
                details={"error_type": type(e).__name__},
            )
        files_touched = tuple(str(path) for path in outcome.files_touched)

        if not outcome.success:
            self.logger.info("tool_execution_unsuccessful", tool=invocation.name, error=outcome.error)
            result = ToolResult.failed(
                invocation,
                ErrorKind.RUNNER_ERROR,
                str(outcome.error) if outcome.error else f"Tool '{invocation.name}' reported failure",
            )
            return replace(result, payload=payload, files_touched=files_touched)

        self.logger.info("tool_execution_completed", tool=invocation.name, invocation_id=invocation.id)
        return ToolResult.ok(invocation, payload, files_touched=files_touched)


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def to_json_safe(value: Any) -> Any:
    """
    Convert a runner payload to plain JSON values.

    Sets become sorted lists, bytes are decoded and other unknown objects
    (paths, datetimes, ...) are stringified.

    Raises:
        TypeError, ValueError: For payloads JSON cannot represent at all,
            e.g. non-string mapping keys or circular references
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return json.loads(json.dumps(value, default=_json_default))
