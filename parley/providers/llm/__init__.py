"""LLM provider interface, data models and a scriptable mock."""

from parley.providers.llm.base import (
    AuthenticationError,
    ContentFilterError,
    LLMMessage,
    LLMProvider,
    LLMResponse,
    LLMStreamChunk,
    ModelError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from parley.providers.llm.mock import MockLLMProvider

__all__ = [
    "AuthenticationError",
    "ContentFilterError",
    "LLMMessage",
    "LLMProvider",
    "LLMResponse",
    "LLMStreamChunk",
    "MockLLMProvider",
    "ModelError",
    "ProviderError",
    "ProviderTimeoutError",
    "RateLimitError",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
]
