"""Configuration model exports.

    from parley.config.models import PipelineConfig, LoggingConfig
"""

from parley.config.models.observability import LoggingConfig, ObservabilityConfig
from parley.config.models.pipeline import (
    GenerationConfig,
    PipelineConfig,
    PreExtractionConfig,
    PreparationConfig,
    RoutingConfig,
)

__all__ = [
    "GenerationConfig",
    "LoggingConfig",
    "ObservabilityConfig",
    "PipelineConfig",
    "PreExtractionConfig",
    "PreparationConfig",
    "RoutingConfig",
]
