"""Dialogue domain models."""

from parley.conversation.models.session import END_ROUTE
from parley.dialogue.models.context import TemplateContext
from parley.dialogue.models.guidance import (
    AgentProfile,
    Guideline,
    Observation,
    Term,
    TextTemplate,
)
from parley.dialogue.models.route import (
    OnComplete,
    Route,
    RouteTransition,
    Step,
    generate_route_id,
)
from parley.dialogue.models.schema import DataSchema, FieldSchema

__all__ = [
    "END_ROUTE",
    "AgentProfile",
    "DataSchema",
    "FieldSchema",
    "Guideline",
    "Observation",
    "OnComplete",
    "Route",
    "RouteTransition",
    "Step",
    "TemplateContext",
    "Term",
    "TextTemplate",
    "generate_route_id",
]
