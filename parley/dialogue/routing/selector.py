"""Route selection.

Each turn, every route is gated by its `when` / `skip_if` conditions.
Among the survivors the selector keeps the active route when it still
qualifies, and consults the model only when several routes qualify and
their conditions carry text the model has to interpret.
"""

from typing import Any

from parley.config.models.pipeline import RoutingConfig
from parley.conversation.models import PendingTransition
from parley.dialogue.conditions import ConditionEvaluator
from parley.dialogue.exceptions import ConfigurationError
from parley.dialogue.generation import PromptBuilder
from parley.dialogue.models import Observation, Route, TemplateContext
from parley.dialogue.routing.models import RouteSelection, RoutingOutcome
from parley.observability.logging import get_logger
from parley.providers.llm import LLMProvider

logger = get_logger(__name__)

ROUTING_SCHEMA_NAME = "route_selection"


def find_route(routes: list[Route], ref: str | None) -> Route | None:
    """Resolve a route by id, then by title."""
    if ref is None:
        return None
    for route in routes:
        if route.id == ref:
            return route
    for route in routes:
        if route.title == ref:
            return route
    return None


def build_routing_schema(route_ids: list[str], observation_ids: list[str]) -> dict[str, Any]:
    score = {"type": "integer", "minimum": 0, "maximum": 100}
    return {
        "type": "object",
        "properties": {
            "routes": {
                "type": "object",
                "properties": {route_id: score for route_id in route_ids},
                "required": route_ids,
            },
            "observation_id": {"type": ["string", "null"], "enum": [*observation_ids, None]},
            "reasoning": {"type": "string"},
            "response_directives": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["routes"],
    }


class RouteSelector:
    """Selects the active route for a turn."""

    def __init__(
        self,
        llm_provider: LLMProvider,
        prompt_builder: PromptBuilder,
        evaluator: ConditionEvaluator | None = None,
        config: RoutingConfig | None = None,
        observations: list[Observation] | None = None,
    ) -> None:
        self._llm_provider = llm_provider
        self._prompt_builder = prompt_builder
        self._evaluator = evaluator or ConditionEvaluator()
        self._config = config or RoutingConfig()
        self._observations = list(observations or [])

    def resolve_transition(
        self, routes: list[Route], transition: PendingTransition
    ) -> Route:
        """Resolve a pending transition target.

        Raises:
            ConfigurationError: If the target is not a known route id or title
        """
        route = find_route(routes, transition.target_route_id)
        if route is None:
            raise ConfigurationError(
                f"Pending transition targets unknown route '{transition.target_route_id}'"
            )
        return route

    async def select(
        self,
        routes: list[Route],
        ctx: TemplateContext,
        pending_transition: PendingTransition | None = None,
        current_route_id: str | None = None,
    ) -> RouteSelection:
        """Select the route for this turn.

        A pending transition wins without re-evaluating eligibility.
        `current_route_id` is the active, not yet completed route, if any.
        """
        if pending_transition is not None:
            route = self.resolve_transition(routes, pending_transition)
            logger.info("route_transition_resolved", route_id=route.id)
            return RouteSelection(
                outcome=RoutingOutcome.TRANSITION,
                route=route,
                transition=pending_transition,
                reasoning=pending_transition.reason,
            )

        candidates: list[tuple[Route, list[str]]] = []
        for route in routes:
            when = await self._evaluator.evaluate_when(route.when, ctx)
            skip = await self._evaluator.evaluate_skip_if(route.skip_if, ctx)
            if when.programmatic_result and not skip.programmatic_result:
                candidates.append(
                    (route, [*when.ai_context_strings, *skip.ai_context_strings])
                )

        candidate_ids = [route.route_id for route, _ in candidates]
        current = next((c for c in candidates if c[0].id == current_route_id), None)

        if not candidates:
            return self._fallback(routes)

        if len(candidates) == 1:
            route, strings = candidates[0]
            return RouteSelection(
                outcome=RoutingOutcome.CONTINUITY if current else RoutingOutcome.SELECTED,
                route=route,
                candidates=candidate_ids,
                ai_context_strings=strings,
                reasoning="single_candidate",
            )

        needs_model = any(strings for _, strings in candidates) or bool(self._observations)
        if not needs_model:
            return self._deterministic(candidates, current, "deterministic")

        if ctx.session is None:
            raise ValueError("Model-scored routing requires a session in the template context")
        try:
            return await self._score(candidates, current, ctx)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "routing_call_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                candidates=candidate_ids,
            )
            return self._deterministic(candidates, current, "routing_call_failed")

    def _fallback(self, routes: list[Route]) -> RouteSelection:
        default_ref = self._config.default_route
        if default_ref is None:
            logger.info("no_eligible_route")
            return RouteSelection(outcome=RoutingOutcome.NONE, reasoning="no_eligible_route")
        route = find_route(routes, default_ref)
        if route is None:
            raise ConfigurationError(f"Default route '{default_ref}' is not a known route")
        return RouteSelection(
            outcome=RoutingOutcome.DEFAULT, route=route, reasoning="default_route"
        )

    def _deterministic(
        self,
        candidates: list[tuple[Route, list[str]]],
        current: tuple[Route, list[str]] | None,
        reasoning: str,
    ) -> RouteSelection:
        route, strings = current or candidates[0]
        return RouteSelection(
            outcome=RoutingOutcome.CONTINUITY if current else RoutingOutcome.SELECTED,
            route=route,
            candidates=[c[0].route_id for c in candidates],
            ai_context_strings=strings,
            reasoning=reasoning,
        )

    async def _score(
        self,
        candidates: list[tuple[Route, list[str]]],
        current: tuple[Route, list[str]] | None,
        ctx: TemplateContext,
    ) -> RouteSelection:
        offered = candidates[: self._config.max_candidates]
        if current is not None and current not in offered:
            offered = [current, *offered[:-1]]
        offered_ids = [route.route_id for route, _ in offered]

        messages = self._prompt_builder.build_routing_messages(
            ctx.session,
            offered,
            self._observations,
            current[0] if current else None,
        )
        response = await self._llm_provider.generate(
            messages,
            response_schema=build_routing_schema(
                offered_ids, [o.id for o in self._observations]
            ),
            schema_name=ROUTING_SCHEMA_NAME,
            temperature=0.0,
        )
        structured = response.structured or {}
        raw_scores = structured.get("routes") or {}
        scores = {
            route_id: int(raw_scores.get(route_id, 0) or 0) for route_id in offered_ids
        }
        reasoning = structured.get("reasoning")
        directives = [str(d) for d in structured.get("response_directives") or []]

        observation = next(
            (o for o in self._observations if o.id == structured.get("observation_id")),
            None,
        )
        if observation is not None:
            eligible = [c[0] for c in candidates]
            options: list[Route] = []
            for ref in observation.route_refs:
                option = find_route(eligible, ref)
                if option is not None:
                    options.append(option)
            logger.info(
                "route_disambiguation_needed",
                observation_id=observation.id,
                routes=[r.id for r in options],
            )
            return RouteSelection(
                outcome=RoutingOutcome.DISAMBIGUATION,
                candidates=offered_ids,
                scores=scores,
                observation=observation,
                disambiguation_routes=options,
                reasoning=reasoning,
                response_directives=directives,
            )

        best_route, best_strings = max(offered, key=lambda c: scores[c[0].route_id])
        chosen, strings = best_route, best_strings
        if current is not None and best_route.id != current[0].id:
            margin = scores[best_route.route_id] - scores[current[0].route_id]
            if not self._config.allow_route_switch or margin < self._config.switch_threshold:
                chosen, strings = current

        kept = current is not None and chosen.id == current[0].id
        logger.info(
            "route_selected",
            route_id=chosen.id,
            scores=scores,
            kept_active=kept,
        )
        return RouteSelection(
            outcome=RoutingOutcome.CONTINUITY if kept else RoutingOutcome.SELECTED,
            route=chosen,
            candidates=offered_ids,
            ai_context_strings=strings,
            scores=scores,
            reasoning=reasoning,
            response_directives=directives,
        )
