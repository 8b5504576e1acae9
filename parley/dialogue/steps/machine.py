"""Step state machine.

Resolves where a route's pointer can move next given the collected data.
The machine never mutates the session; it reports eligible candidates and
the caller (PREPARATION or ROUTING) commits a choice through the
SessionManager.

Eligibility of a successor, in successor order:
- `requires` unmet: not eligible
- `when` programmatically false: not eligible
- `skip_if` true, or a prompt step whose `collect` is already satisfied:
  bypassed, and its own successors are evaluated in its place
- otherwise: a candidate

The pointer holds at the current prompt step while its `collect` fields
are missing, and at the current step when no successor is eligible.
"""

from pydantic import BaseModel, ConfigDict, Field

from parley.conversation.models.session import END_ROUTE
from parley.dialogue.conditions import ConditionEvaluator
from parley.dialogue.data import is_route_complete
from parley.dialogue.models import Route, Step, TemplateContext
from parley.observability.logging import get_logger

logger = get_logger(__name__)


class StepCandidate(BaseModel):
    """An eligible step plus the advisory text of its `when` condition."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    step: Step
    ai_context_strings: list[str] = Field(default_factory=list)

    @property
    def step_id(self) -> str:
        assert self.step.id is not None
        return self.step.id


class StepResolution(BaseModel):
    """Where the pointer of one route can go from its current position."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    candidates: list[StepCandidate] = Field(default_factory=list)
    is_route_complete: bool = Field(default=False)
    held_step: Step | None = Field(
        default=None, description="Step the machine holds at when nothing is eligible"
    )
    skipped: list[str] = Field(default_factory=list, description="Bypassed step ids")
    missing_required: list[str] = Field(
        default_factory=list,
        description="Required fields blocking completion at the terminal marker",
    )

    @property
    def held(self) -> bool:
        return not self.candidates and not self.is_route_complete


class StepMachine:
    """Computes eligible successor steps for a route."""

    def __init__(self, evaluator: ConditionEvaluator | None = None) -> None:
        self._evaluator = evaluator or ConditionEvaluator()

    async def resolve(
        self,
        route: Route,
        current_step_id: str | None,
        ctx: TemplateContext,
    ) -> StepResolution:
        """Resolve candidates from the current step (or the route's initial step)."""
        if current_step_id == END_ROUTE:
            return StepResolution(is_route_complete=True)

        current: Step | None = None
        if current_step_id is not None:
            current = route.get_step(current_step_id)
            if current is None:
                logger.warning(
                    "step_not_in_route",
                    route_id=route.id,
                    step_id=current_step_id,
                )

        if current is None:
            frontier = [route.initial_step_id] if route.initial_step_id else [END_ROUTE]
        elif not current.is_tool_step and current.collect and not current.collect_complete(
            ctx.data
        ):
            return StepResolution(held_step=current)
        else:
            frontier = route.successors(current)

        resolution = StepResolution(held_step=current)
        reached_end = await self._expand(
            route, frontier, ctx, resolution, visited=set()
        )

        if resolution.candidates:
            return resolution

        if reached_end:
            required = route.effective_required_fields
            if is_route_complete(ctx.data, required):
                resolution.is_route_complete = True
                return resolution
            resolution.missing_required = [n for n in required if n not in ctx.data]
            logger.info(
                "route_completion_blocked",
                route_id=route.id,
                missing=resolution.missing_required,
            )
        return resolution

    async def _expand(
        self,
        route: Route,
        frontier: list[str],
        ctx: TemplateContext,
        resolution: StepResolution,
        visited: set[str],
    ) -> bool:
        reached_end = False
        for step_id in frontier:
            if step_id == END_ROUTE:
                reached_end = True
                continue
            if step_id in visited:
                continue
            visited.add(step_id)

            step = route.get_step(step_id)
            if step is None or not step.requires_met(ctx.data):
                continue

            when = await self._evaluator.evaluate_when(step.when, ctx)
            if not when.programmatic_result:
                continue

            skip = await self._evaluator.evaluate_skip_if(step.skip_if, ctx)
            already_collected = not step.is_tool_step and step.collect_complete(ctx.data)
            if skip.programmatic_result or already_collected:
                resolution.skipped.append(step_id)
                if await self._expand(
                    route, route.successors(step), ctx, resolution, visited
                ):
                    reached_end = True
                continue

            resolution.candidates.append(
                StepCandidate(step=step, ai_context_strings=when.ai_context_strings)
            )
        return reached_end
