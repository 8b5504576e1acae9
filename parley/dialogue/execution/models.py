"""Execution models for tool steps and model-requested tool calls."""

import json
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from parley.conversation.models import Message, Session
from parley.dialogue.models import Step
from parley.providers.llm import ToolDefinition


class ToolContext(BaseModel):
    """What a tool handler can read: context, collected data and history."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    context: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    history: list[Message] = Field(default_factory=list)
    session: Session | None = None
    step: Step | None = None
    args: dict[str, Any] = Field(
        default_factory=dict, description="Arguments of a model-requested call"
    )


class ToolOutput(BaseModel):
    """Value returned by a tool handler."""

    data: Any = Field(default=None, description="Raw result, kept on the ToolResult")
    data_update: dict[str, Any] | None = Field(
        default=None, description="Patch for the collected data record"
    )
    context_update: dict[str, Any] | None = Field(
        default=None, description="Patch for the external context"
    )


ToolHandler = Callable[
    [ToolContext],
    ToolOutput | dict[str, Any] | None | Awaitable[ToolOutput | dict[str, Any] | None],
]


class Tool(BaseModel):
    """A named, user-supplied handler referenced by tool steps."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1)
    handler: ToolHandler
    description: str | None = None
    requires: list[str] = Field(
        default_factory=list,
        description="Data fields that must be present; the tool is skipped otherwise",
    )
    parameters: dict[str, Any] | None = Field(
        default=None,
        description="JSON schema of call arguments; makes the tool callable by the model",
    )

    @property
    def model_callable(self) -> bool:
        return self.parameters is not None

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters or {"type": "object", "properties": {}},
        )

    def missing_arguments(self, arguments: dict[str, Any]) -> list[str]:
        """Required parameters absent from `arguments`."""
        required = (self.parameters or {}).get("required", [])
        return [name for name in required if name not in arguments]


class ToolResult(BaseModel):
    """Outcome of executing one tool."""

    tool_name: str
    success: bool
    skipped: bool = False
    call_id: str | None = None
    arguments: dict[str, Any] | None = None
    output: Any = None
    data_update: dict[str, Any] | None = None
    context_update: dict[str, Any] | None = None
    error: str | None = None
    execution_time_ms: float = Field(default=0.0, ge=0)
    timeout: bool = False


class StepExecutionResult(BaseModel):
    """Outcome of running every tool of one tool step."""

    step_id: str
    data: dict[str, Any] = Field(default_factory=dict, description="Data after the step")
    context: dict[str, Any] = Field(default_factory=dict, description="Context after the step")
    tool_results: list[ToolResult] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(not r.success and not r.skipped for r in self.tool_results)

    @property
    def errors(self) -> dict[str, str]:
        return {
            r.tool_name: r.error or "failed"
            for r in self.tool_results
            if not r.success and not r.skipped
        }


class CallExecutionResult(BaseModel):
    """Outcome of one model-requested tool call."""

    tool_result: ToolResult
    data: dict[str, Any] = Field(default_factory=dict, description="Data after the call")
    context: dict[str, Any] = Field(default_factory=dict, description="Context after the call")

    def feedback(self) -> str:
        """Tool message content returned to the model."""
        result = self.tool_result
        if result.success:
            payload: dict[str, Any] = {"success": True, "output": result.output}
        else:
            payload = {"success": False, "error": result.error or "failed"}
        return json.dumps(payload, default=str)
