"""Mock LLM provider for testing."""

from collections.abc import AsyncIterator, Callable
from typing import Any

from parley.providers.llm.base import (
    LLMMessage,
    LLMProvider,
    LLMResponse,
    LLMStreamChunk,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)

StructuredScript = (
    dict[str, Any]
    | list[dict[str, Any]]
    | Callable[[list[LLMMessage], dict[str, Any] | None], dict[str, Any]]
)


class MockLLMProvider(LLMProvider):
    """Scriptable provider that never leaves the process.

    Text responses are matched on the last message content. Structured
    outputs are scripted per schema name: a dict is returned every time, a
    list is consumed in order (the last entry repeats), and a callable
    receives the messages and requested schema.

    Tool-call rounds are queued with `script_tool_calls` and returned, one
    round per call, only by calls that offer tools. A tool-call round has
    no text.
    """

    def __init__(
        self,
        default_response: str = "Mock response",
        default_model: str = "mock-model",
        responses: dict[str, str] | None = None,
        structured_responses: dict[str, StructuredScript] | None = None,
        stream_chunks: list[str] | None = None,
        stream_chunk_size: int = 10,
        tool_call_rounds: list[list[ToolCall]] | None = None,
    ):
        self._default_response = default_response
        self._default_model = default_model
        self._responses = responses or {}
        self._structured = structured_responses or {}
        self._stream_chunks = stream_chunks
        self._stream_chunk_size = stream_chunk_size
        self._tool_rounds = [list(r) for r in tool_call_rounds or []]
        self._failures: dict[str | None, Exception] = {}
        self._stream_failure: tuple[int, Exception] | None = None
        self._call_history: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "mock"

    @property
    def call_history(self) -> list[dict[str, Any]]:
        """Return history of calls for testing assertions."""
        return self._call_history

    def calls_for(self, schema_name: str | None) -> list[dict[str, Any]]:
        """Return recorded calls made with the given schema name."""
        return [c for c in self._call_history if c["schema_name"] == schema_name]

    def clear_history(self) -> None:
        self._call_history.clear()

    def set_response(self, trigger: str, response: str) -> None:
        """Set a text response for a specific last-message content."""
        self._responses[trigger] = response

    def set_structured(self, schema_name: str, script: StructuredScript) -> None:
        """Script the structured output returned for a schema name."""
        self._structured[schema_name] = script

    def script_tool_calls(self, *rounds: list[ToolCall]) -> None:
        """Queue tool-call rounds, consumed in order by calls that offer tools."""
        self._tool_rounds.extend(list(r) for r in rounds)

    def fail_with(self, error: Exception, schema_name: str | None = None) -> None:
        """Raise `error` for calls with `schema_name` (None means every call)."""
        self._failures[schema_name] = error

    def fail_stream_after(self, fragments: int, error: Exception) -> None:
        """Raise `error` after yielding `fragments` stream fragments."""
        self._stream_failure = (fragments, error)

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
        self._call_history.append({
            "messages": messages,
            "schema_name": schema_name,
            "response_schema": response_schema,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "tools": tools,
            "kwargs": kwargs,
        })

        failure = self._failures.get(schema_name) or self._failures.get(None)
        if failure is not None:
            raise failure

        content = self._default_response
        if messages and messages[-1].content in self._responses:
            content = self._responses[messages[-1].content]

        tool_calls: list[ToolCall] = []
        if tools and self._tool_rounds:
            tool_calls = self._tool_rounds.pop(0)
            content = ""

        structured = None
        if not tool_calls and schema_name is not None and schema_name in self._structured:
            structured = self._next_structured(schema_name, messages, response_schema)

        prompt_tokens = sum(len(m.content) // 4 for m in messages)
        return LLMResponse(
            content=content,
            model=self._default_model,
            finish_reason="tool_calls" if tool_calls else "stop",
            structured=structured,
            tool_calls=tool_calls,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=len(content) // 4,
                total_tokens=prompt_tokens + len(content) // 4,
            ),
        )

    async def generate_stream(
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
        response = await self.generate(
            messages,
            response_schema=response_schema,
            schema_name=schema_name,
            max_tokens=max_tokens,
            temperature=temperature,
            tools=tools,
            **kwargs,
        )

        if response.tool_calls:
            fragments = []
        elif self._stream_chunks is not None:
            fragments = list(self._stream_chunks)
        else:
            size = self._stream_chunk_size
            fragments = [
                response.content[i:i + size]
                for i in range(0, len(response.content), size)
            ]

        accumulated = ""
        for index, fragment in enumerate(fragments):
            if self._stream_failure and index == self._stream_failure[0]:
                raise self._stream_failure[1]
            accumulated += fragment
            yield LLMStreamChunk(delta=fragment, accumulated=accumulated)

        yield LLMStreamChunk(
            accumulated=accumulated,
            done=True,
            usage=response.usage,
            structured=response.structured,
            tool_calls=response.tool_calls,
            finish_reason=response.finish_reason,
        )

    def _next_structured(
        self,
        schema_name: str,
        messages: list[LLMMessage],
        response_schema: dict[str, Any] | None,
    ) -> dict[str, Any]:
        script = self._structured[schema_name]
        if callable(script):
            return script(messages, response_schema)
        if isinstance(script, list):
            if len(script) > 1:
                return dict(script.pop(0))
            return dict(script[0]) if script else {}
        return dict(script)
