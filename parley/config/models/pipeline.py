"""Turn pipeline configuration models."""

from pydantic import BaseModel, Field


class PreparationConfig(BaseModel):
    """Configuration for the PREPARATION phase (tool steps)."""

    enabled: bool = Field(default=True, description="Run tool steps before routing")
    max_tool_steps: int = Field(
        default=10,
        ge=1,
        description="Maximum tool steps executed in one turn",
    )


class PreExtractionConfig(BaseModel):
    """Configuration for extracting route fields before the step machine advances."""

    enabled: bool = Field(
        default=True,
        description="Extract collectable route fields from the latest user message",
    )


class RoutingConfig(BaseModel):
    """Configuration for route and step selection."""

    allow_route_switch: bool = Field(
        default=True,
        description="Allow leaving an active route that is still eligible",
    )
    switch_threshold: int = Field(
        default=20,
        ge=0,
        le=100,
        description="Score margin a challenger needs over the active route",
    )
    max_candidates: int = Field(
        default=8,
        ge=1,
        description="Maximum candidate routes offered to the routing model",
    )
    default_route: str | None = Field(
        default=None,
        description="Route id or title used when no route is eligible",
    )


class GenerationConfig(BaseModel):
    """Configuration for the RESPONSE phase."""

    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=1024, gt=0, description="Maximum tokens per response")
    fallback_message: str | None = Field(
        default=None,
        description="Generic user-facing message on tool or provider errors",
    )
    history_window: int = Field(
        default=20,
        ge=0,
        description="Maximum history messages sent with each model call",
    )
    system_template: str = Field(
        default="system.jinja2",
        description="Template used to render the system prompt",
    )
    max_tool_iterations: int = Field(
        default=5,
        ge=0,
        description="Maximum model-requested tool call rounds per response",
    )


class PipelineConfig(BaseModel):
    """Configuration for the three-phase turn pipeline."""

    preparation: PreparationConfig = Field(default_factory=PreparationConfig)
    pre_extraction: PreExtractionConfig = Field(default_factory=PreExtractionConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
