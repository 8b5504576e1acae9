"""Prompt building and response generation."""

from parley.dialogue.generation.generator import (
    RESPONSE_SCHEMA_NAME,
    GenerationResult,
    ResponseGenerator,
    ToolCallback,
    build_response_schema,
    split_structured,
)
from parley.dialogue.generation.prompt_builder import (
    Disambiguation,
    PromptBuilder,
    RenderedGuideline,
    ResponsePromptInput,
    render_text,
)
from parley.dialogue.generation.template_loader import TemplateLoader

__all__ = [
    "RESPONSE_SCHEMA_NAME",
    "Disambiguation",
    "GenerationResult",
    "PromptBuilder",
    "RenderedGuideline",
    "ResponseGenerator",
    "ResponsePromptInput",
    "TemplateLoader",
    "ToolCallback",
    "build_response_schema",
    "render_text",
    "split_structured",
]
