"""Tool definitions, tool-step execution and model-requested tool calls."""

from parley.dialogue.execution.models import (
    CallExecutionResult,
    StepExecutionResult,
    Tool,
    ToolContext,
    ToolOutput,
    ToolResult,
)
from parley.dialogue.execution.tool_executor import ContextHook, ToolExecutor

__all__ = [
    "CallExecutionResult",
    "ContextHook",
    "StepExecutionResult",
    "Tool",
    "ToolContext",
    "ToolExecutor",
    "ToolOutput",
    "ToolResult",
]
