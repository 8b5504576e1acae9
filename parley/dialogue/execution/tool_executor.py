"""Tool execution with timeout handling.

Tool steps run their tools sequentially; model-requested calls run one at
a time through `execute_call`.
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any

from parley.conversation.models import Session
from parley.dialogue.data import DataStore
from parley.dialogue.execution.models import (
    CallExecutionResult,
    StepExecutionResult,
    Tool,
    ToolContext,
    ToolOutput,
    ToolResult,
)
from parley.dialogue.models import DataSchema, Step
from parley.observability.logging import get_logger
from parley.providers.llm import ToolCall, ToolDefinition

logger = get_logger(__name__)

ContextHook = Callable[
    [dict[str, Any], dict[str, Any]],
    dict[str, Any] | Awaitable[dict[str, Any]],
]


class ToolExecutor:
    """Execute the tools of a tool step.

    Tools run in declaration order, one at a time, and each tool sees the
    data and context produced by the tools before it. A failing tool does
    not stop the step; a later tool whose `requires` are unmet is skipped.
    """

    def __init__(
        self,
        tools: dict[str, Tool],
        data_store: DataStore | None = None,
        context_hooks: list[ContextHook] | None = None,
        timeout_ms: int = 30000,
    ) -> None:
        """Initialize the tool executor.

        Args:
            tools: Map of tool name -> Tool
            data_store: Store validating `data_update` patches
            context_hooks: Ordered (new_context, previous_context) transforms
            timeout_ms: Maximum execution time per async tool
        """
        self._tools = tools
        self._data_store = data_store or DataStore()
        self._context_hooks = list(context_hooks or [])
        self._timeout_ms = timeout_ms

    @property
    def tool_names(self) -> set[str]:
        return set(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        """Definitions of the tools the model may call."""
        return [tool.definition() for tool in self._tools.values() if tool.model_callable]

    async def execute_step(
        self,
        step: Step,
        *,
        data: dict[str, Any],
        context: dict[str, Any],
        session: Session,
        schema: DataSchema | None = None,
    ) -> StepExecutionResult:
        """Run every tool of `step` and return the resulting data and context."""
        assert step.id is not None
        result = StepExecutionResult(step_id=step.id, data=dict(data), context=dict(context))

        for tool_name in step.tools:
            tool = self._tools.get(tool_name)
            if tool is None:
                result.tool_results.append(
                    ToolResult(tool_name=tool_name, success=False, error="tool_not_found")
                )
                continue

            missing = [name for name in tool.requires if name not in result.data]
            if missing:
                logger.info(
                    "tool_skipped_unmet_requires",
                    tool=tool_name,
                    step_id=step.id,
                    missing=missing,
                )
                result.tool_results.append(
                    ToolResult(
                        tool_name=tool_name,
                        success=False,
                        skipped=True,
                        error=f"unmet requires: {missing}",
                    )
                )
                continue

            tool_ctx = ToolContext(
                context=dict(result.context),
                data=dict(result.data),
                history=list(session.history),
                session=session,
                step=step,
            )
            tool_result = await self._run_with_timeout(tool, tool_ctx)
            result.tool_results.append(tool_result)

            if not tool_result.success:
                logger.warning(
                    "tool_failed",
                    tool=tool_name,
                    step_id=step.id,
                    error=tool_result.error,
                    timeout=tool_result.timeout,
                )
                continue

            result.data, result.context = await self._apply_updates(
                tool_result, result.data, result.context, schema
            )

        return result

    async def execute_call(
        self,
        call: ToolCall,
        *,
        data: dict[str, Any],
        context: dict[str, Any],
        session: Session,
        step: Step | None = None,
        schema: DataSchema | None = None,
    ) -> CallExecutionResult:
        """Run one tool the model asked for, with the call's arguments.

        Unknown tools, tools not exposed to the model and missing required
        arguments produce a failed result rather than an exception.
        """
        tool = self._tools.get(call.name)
        error = None
        if tool is None or not tool.model_callable:
            error = "tool_not_found"
        else:
            missing = tool.missing_arguments(call.arguments)
            if missing:
                error = f"missing arguments: {missing}"

        if error is not None:
            logger.warning("tool_call_rejected", tool=call.name, error=error)
            return CallExecutionResult(
                tool_result=ToolResult(
                    tool_name=call.name,
                    success=False,
                    call_id=call.id,
                    arguments=dict(call.arguments),
                    error=error,
                ),
                data=dict(data),
                context=dict(context),
            )

        tool_ctx = ToolContext(
            context=dict(context),
            data=dict(data),
            history=list(session.history),
            session=session,
            step=step,
            args=dict(call.arguments),
        )
        tool_result = await self._run_with_timeout(tool, tool_ctx)
        tool_result = tool_result.model_copy(
            update={"call_id": call.id, "arguments": dict(call.arguments)}
        )
        if not tool_result.success:
            logger.warning(
                "tool_call_failed",
                tool=call.name,
                error=tool_result.error,
                timeout=tool_result.timeout,
            )
            return CallExecutionResult(
                tool_result=tool_result, data=dict(data), context=dict(context)
            )

        new_data, new_context = await self._apply_updates(
            tool_result, dict(data), dict(context), schema
        )
        logger.info("tool_call_executed", tool=call.name, call_id=call.id)
        return CallExecutionResult(tool_result=tool_result, data=new_data, context=new_context)

    async def _apply_updates(
        self,
        tool_result: ToolResult,
        data: dict[str, Any],
        context: dict[str, Any],
        schema: DataSchema | None,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        if tool_result.data_update:
            patch = await self._data_store.commit(data, tool_result.data_update, schema)
            data = patch.data
        if tool_result.context_update:
            context = await self._apply_context_update(context, tool_result.context_update)
        return data, context

    async def _run_with_timeout(self, tool: Tool, tool_ctx: ToolContext) -> ToolResult:
        """Execute a tool with timeout and timing."""
        start_time = time.perf_counter()
        try:
            outcome = tool.handler(tool_ctx)
            if inspect.isawaitable(outcome):
                outcome = await asyncio.wait_for(outcome, timeout=self._timeout_ms / 1000)
            output = self._normalize(outcome)
        except TimeoutError:
            return ToolResult(
                tool_name=tool.name,
                success=False,
                error="timeout",
                timeout=True,
                execution_time_ms=(time.perf_counter() - start_time) * 1000,
            )
        except Exception as exc:  # noqa: BLE001
            return ToolResult(
                tool_name=tool.name,
                success=False,
                error=str(exc) or type(exc).__name__,
                execution_time_ms=(time.perf_counter() - start_time) * 1000,
            )

        return ToolResult(
            tool_name=tool.name,
            success=True,
            output=output.data,
            data_update=output.data_update,
            context_update=output.context_update,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    async def _apply_context_update(
        self, context: dict[str, Any], update: dict[str, Any]
    ) -> dict[str, Any]:
        updated = {**context, **update}
        for hook in self._context_hooks:
            transformed = hook(dict(updated), dict(context))
            if inspect.isawaitable(transformed):
                transformed = await transformed
            if transformed is not None:
                updated = dict(transformed)
        return updated

    @staticmethod
    def _normalize(outcome: Any) -> ToolOutput:
        if outcome is None:
            return ToolOutput()
        if isinstance(outcome, ToolOutput):
            return outcome
        if isinstance(outcome, dict) and set(outcome) <= {"data", "data_update", "context_update"}:
            return ToolOutput.model_validate(outcome)
        return ToolOutput(data=outcome)
