"""LLM provider contract, data models and error types.

The dialogue engine depends only on the shapes defined here:
- LLMMessage: input message format
- LLMResponse: a single completion
- LLMStreamChunk: one fragment of a streamed completion
- ToolDefinition / ToolCall: tools offered to the model and its requests to run them
- LLMProvider: the abstract adapter vendors implement
- Error types for the failure modes adapters surface
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class ToolDefinition(BaseModel):
    """A tool the model may call, described by a JSON schema."""

    name: str = Field(..., description="Tool name the model calls")
    description: str | None = Field(default=None, description="What the tool does")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema of the call arguments",
    )


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    id: str = Field(default_factory=lambda: uuid4().hex, description="Call id")
    name: str = Field(..., description="Requested tool name")
    arguments: dict[str, Any] = Field(default_factory=dict, description="Call arguments")


class LLMMessage(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role: system, user, assistant, or tool")
    content: str = Field(..., description="Message content")
    name: str | None = Field(default=None, description="Optional speaker name")
    tool_calls: list[ToolCall] | None = Field(
        default=None, description="Calls requested by an assistant message"
    )
    tool_call_id: str | None = Field(
        default=None, description="Call answered by a tool message"
    )


class TokenUsage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int = Field(default=0, description="Tokens in prompt")
    completion_tokens: int = Field(default=0, description="Tokens in completion")
    total_tokens: int = Field(default=0, description="Total tokens used")


class LLMResponse(BaseModel):
    """Response from a single LLM call.

    When a response schema was requested, `structured` holds the parsed
    object and `content` the user-facing text.
    """

    content: str = Field(default="", description="Generated text")
    model: str = Field(..., description="Model used")
    finish_reason: str | None = Field(default=None, description="Why generation stopped")
    usage: TokenUsage | None = Field(default=None, description="Token usage stats")
    structured: dict[str, Any] | None = Field(
        default=None, description="Parsed structured output"
    )
    tool_calls: list[ToolCall] = Field(
        default_factory=list, description="Tools the model asked to run"
    )
    metadata: dict[str, Any] = Field(default_factory=dict, description="Execution metadata")


class LLMStreamChunk(BaseModel):
    """One fragment of a streamed completion. The last fragment has done=True."""

    delta: str = Field(default="", description="Text added by this fragment")
    accumulated: str = Field(default="", description="All text streamed so far")
    done: bool = Field(default=False, description="Whether this is the final fragment")
    usage: TokenUsage | None = Field(default=None, description="Usage, on the final fragment")
    structured: dict[str, Any] | None = Field(
        default=None, description="Parsed structured output, on the final fragment"
    )
    tool_calls: list[ToolCall] = Field(
        default_factory=list, description="Requested tool calls, on the final fragment"
    )
    finish_reason: str | None = Field(default=None, description="Why generation stopped")


class LLMProvider(ABC):
    """Adapter contract for a model vendor."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        *,
        response_schema: dict[str, Any] | None = None,
        schema_name: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        tools: list[ToolDefinition] | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a single completion.

        When `tools` are offered the model may answer with `tool_calls`
        instead of (or alongside) text.
        """

    @abstractmethod
    def generate_stream(
        self,
        messages: list[LLMMessage],
        *,
        response_schema: dict[str, Any] | None = None,
        schema_name: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        tools: list[ToolDefinition] | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[LLMStreamChunk]:
        """Stream a completion as successive fragments."""


# ============================================================================
# Error Types
# ============================================================================


class ProviderError(Exception):
    """Base exception for LLM provider errors."""


class AuthenticationError(ProviderError):
    """Invalid or missing API key."""


class RateLimitError(ProviderError):
    """Rate limit exceeded."""


class ModelError(ProviderError):
    """Model not found or unavailable."""


class ContentFilterError(ProviderError):
    """Content blocked by safety filter."""


class ProviderTimeoutError(ProviderError):
    """The provider did not answer in time."""
