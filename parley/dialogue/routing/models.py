"""Routing models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from parley.conversation.models import PendingTransition
from parley.dialogue.models import Observation, Route


class RoutingOutcome(str, Enum):
    """How the route for a turn was decided.

    - TRANSITION: a pending hand-off from a completed route
    - CONTINUITY: the active route still qualifies and was kept
    - SELECTED: a (new) route was chosen among candidates
    - DISAMBIGUATION: an observation asks the user to clarify
    - DEFAULT: nothing qualified, the configured default route is used
    - NONE: nothing qualified and there is no default
    """

    TRANSITION = "transition"
    CONTINUITY = "continuity"
    SELECTED = "selected"
    DISAMBIGUATION = "disambiguation"
    DEFAULT = "default"
    NONE = "none"


class RouteSelection(BaseModel):
    """Result of route selection for one turn."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    outcome: RoutingOutcome
    route: Route | None = None
    reasoning: str | None = None
    candidates: list[str] = Field(default_factory=list, description="Eligible route ids")
    ai_context_strings: list[str] = Field(
        default_factory=list, description="Condition text of the chosen route"
    )
    scores: dict[str, int] = Field(default_factory=dict)
    observation: Observation | None = None
    disambiguation_routes: list[Route] = Field(default_factory=list)
    transition: PendingTransition | None = None
    response_directives: list[str] = Field(default_factory=list)

    @property
    def disambiguation_needed(self) -> bool:
        return self.outcome == RoutingOutcome.DISAMBIGUATION

    @property
    def route_id(self) -> str | None:
        return self.route.id if self.route else None
