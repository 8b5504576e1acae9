"""Route and step selection."""

from parley.dialogue.routing.models import RouteSelection, RoutingOutcome
from parley.dialogue.routing.selector import RouteSelector, build_routing_schema, find_route
from parley.dialogue.routing.step_selector import StepSelector

__all__ = [
    "RouteSelection",
    "RouteSelector",
    "RoutingOutcome",
    "StepSelector",
    "build_routing_schema",
    "find_route",
]
