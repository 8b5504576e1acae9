"""Response generation for the RESPONSE phase."""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from parley.config.models.pipeline import GenerationConfig
from parley.observability.logging import get_logger
from parley.providers.llm import (
    LLMMessage,
    LLMProvider,
    LLMStreamChunk,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)

logger = get_logger(__name__)

RESPONSE_SCHEMA_NAME = "response"

ToolCallback = Callable[[ToolCall], Awaitable[str]]


def build_response_schema(collect_schema: dict[str, Any]) -> dict[str, Any]:
    """Response schema: the message plus the fields the active step may collect."""
    return {
        "type": "object",
        "properties": {
            "message": {"type": "string", "description": "Reply shown to the user"},
            **collect_schema.get("properties", {}),
        },
        "required": ["message"],
        "additionalProperties": False,
    }


def split_structured(
    structured: dict[str, Any] | None,
    content: str,
    allowed_fields: list[str],
) -> tuple[str, dict[str, Any]]:
    """Separate the reply text from extracted fields, keeping only allowed ones."""
    structured = structured or {}
    message = structured.get("message")
    if not isinstance(message, str) or not message:
        message = content
    extracted = {
        name: value
        for name, value in structured.items()
        if name in allowed_fields and value is not None
    }
    return message, extracted


class GenerationResult(BaseModel):
    """Result of response generation."""

    message: str = Field(default="")
    extracted: dict[str, Any] = Field(default_factory=dict)
    model: str | None = None
    usage: TokenUsage | None = None
    tool_calls: list[ToolCall] = Field(
        default_factory=list, description="Tool calls executed before the reply"
    )
    generation_time_ms: float = Field(default=0.0, ge=0)


def _add_usage(total: TokenUsage | None, usage: TokenUsage | None) -> TokenUsage | None:
    if usage is None:
        return total
    if total is None:
        return usage
    return TokenUsage(
        prompt_tokens=total.prompt_tokens + usage.prompt_tokens,
        completion_tokens=total.completion_tokens + usage.completion_tokens,
        total_tokens=total.total_tokens + usage.total_tokens,
    )


class ResponseGenerator:
    """Generate the user-facing reply, whole or streamed.

    When tools are offered and the model asks for them, each requested call
    is run through `call_tool`, its result is appended as a `tool` message,
    and the model is asked again. At most `max_tool_iterations` rounds run;
    past that the last answer is used as is.
    """

    def __init__(
        self,
        llm_provider: LLMProvider,
        config: GenerationConfig | None = None,
    ) -> None:
        self._llm_provider = llm_provider
        self._config = config or GenerationConfig()

    async def generate(
        self,
        messages: list[LLMMessage],
        collect_schema: dict[str, Any],
        tools: list[ToolDefinition] | None = None,
        call_tool: ToolCallback | None = None,
    ) -> GenerationResult:
        """Generate a single completion, resolving tool calls first.

        Raises:
            ProviderError: Propagated from the provider
        """
        start_time = time.perf_counter()
        allowed = list(collect_schema.get("properties", {}))
        response_schema = build_response_schema(collect_schema)
        offered = tools if tools and call_tool is not None else None
        conversation = list(messages)
        executed: list[ToolCall] = []
        usage: TokenUsage | None = None
        iterations = 0

        while True:
            response = await self._llm_provider.generate(
                conversation,
                response_schema=response_schema,
                schema_name=RESPONSE_SCHEMA_NAME,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                tools=offered,
            )
            usage = _add_usage(usage, response.usage)
            if not response.tool_calls or call_tool is None:
                break
            if iterations >= self._config.max_tool_iterations:
                logger.warning("tool_call_limit_reached", iterations=iterations)
                break
            iterations += 1
            recorded = await self._run_tool_calls(response.content, response.tool_calls, call_tool)
            conversation = [*conversation, *recorded]
            executed.extend(response.tool_calls)

        message, extracted = split_structured(response.structured, response.content, allowed)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        logger.debug(
            "response_generated",
            response_length=len(message),
            extracted_fields=sorted(extracted),
            tool_iterations=iterations,
            elapsed_ms=elapsed_ms,
            model=response.model,
        )
        return GenerationResult(
            message=message,
            extracted=extracted,
            model=response.model,
            usage=usage,
            tool_calls=executed,
            generation_time_ms=elapsed_ms,
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        collect_schema: dict[str, Any],
        tools: list[ToolDefinition] | None = None,
        call_tool: ToolCallback | None = None,
    ) -> AsyncIterator[LLMStreamChunk]:
        """Stream the completion. Extraction is read from the final fragment.

        A round that ends in tool calls is not final: the calls run and a
        new round streams on, with `accumulated` spanning every round.
        """
        response_schema = build_response_schema(collect_schema)
        offered = tools if tools and call_tool is not None else None
        conversation = list(messages)
        accumulated = ""
        iterations = 0

        while True:
            round_text = ""
            final: LLMStreamChunk | None = None
            stream = self._llm_provider.generate_stream(
                conversation,
                response_schema=response_schema,
                schema_name=RESPONSE_SCHEMA_NAME,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                tools=offered,
            )
            try:
                async for chunk in stream:
                    if chunk.done:
                        final = chunk
                        break
                    round_text = chunk.accumulated or round_text + chunk.delta
                    yield LLMStreamChunk(delta=chunk.delta, accumulated=accumulated + round_text)
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            accumulated += round_text
            if final is None:
                return
            more_rounds = iterations < self._config.max_tool_iterations
            if not final.tool_calls or call_tool is None or not more_rounds:
                if final.tool_calls and call_tool is not None:
                    logger.warning("tool_call_limit_reached", iterations=iterations)
                yield final.model_copy(update={"accumulated": accumulated})
                return
            iterations += 1
            recorded = await self._run_tool_calls(round_text, final.tool_calls, call_tool)
            conversation = [*conversation, *recorded]

    @staticmethod
    async def _run_tool_calls(
        content: str, tool_calls: list[ToolCall], call_tool: ToolCallback
    ) -> list[LLMMessage]:
        """Run requested calls in order; return the messages that record them."""
        recorded = [LLMMessage(role="assistant", content=content, tool_calls=list(tool_calls))]
        for call in tool_calls:
            feedback = await call_tool(call)
            recorded.append(
                LLMMessage(role="tool", content=feedback, name=call.name, tool_call_id=call.id)
            )
        return recorded
