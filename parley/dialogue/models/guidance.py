"""Narrative guidance forwarded to the model: guidelines, terms, observations."""

from collections.abc import Awaitable, Callable
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from parley.dialogue.models.context import TemplateContext

TextTemplate = str | Callable[[TemplateContext], str | Awaitable[str]]


class Guideline(BaseModel):
    """Conditional behavior hint.

    The condition uses `when` semantics: the guideline is shown to the model
    when its programmatic result is true, together with its condition text.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: f"guideline_{uuid4().hex[:8]}")
    condition: Any = Field(default=None, description="Condition spec (string, predicate or list)")
    action: TextTemplate = Field(..., description="What the agent should do")
    enabled: bool = Field(default=True)
    tags: list[str] = Field(default_factory=list)


class Term(BaseModel):
    """Glossary entry rendered into the prompt."""

    name: str
    description: str
    synonyms: list[str] = Field(default_factory=list)


class Observation(BaseModel):
    """An ambiguous situation and the routes that could resolve it.

    When the routing model selects an observation, the agent asks a
    clarifying question instead of committing to a route.
    """

    id: str = Field(default_factory=lambda: f"observation_{uuid4().hex[:8]}")
    description: str = Field(..., description="Situation the model should recognize")
    route_refs: list[str] = Field(
        default_factory=list, description="Route ids or titles that could apply"
    )


class AgentProfile(BaseModel):
    """Identity of the agent and its agent-wide guidance."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1)
    description: str | None = None
    goal: str | None = None
    personality: str | None = None
    guidelines: list[Guideline] = Field(default_factory=list)
    terms: list[Term] = Field(default_factory=list)
    knowledge: dict[str, Any] = Field(
        default_factory=dict, description="Static reference facts shown to the model"
    )
