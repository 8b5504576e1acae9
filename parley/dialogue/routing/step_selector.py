"""Choice among several eligible successor steps."""

from typing import Any

from parley.dialogue.generation import PromptBuilder
from parley.dialogue.models import Route, Step, TemplateContext
from parley.dialogue.steps import StepCandidate
from parley.observability.logging import get_logger
from parley.providers.llm import LLMProvider

logger = get_logger(__name__)

STEP_SELECTION_SCHEMA_NAME = "step_selection"


def build_step_selection_schema(step_ids: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "step_id": {"type": "string", "enum": step_ids},
            "reasoning": {"type": "string"},
        },
        "required": ["step_id"],
    }


class StepSelector:
    """Picks one candidate step.

    The model is only asked when a candidate's `when` condition carries
    text; otherwise the first candidate in successor order wins.
    """

    def __init__(self, llm_provider: LLMProvider, prompt_builder: PromptBuilder) -> None:
        self._llm_provider = llm_provider
        self._prompt_builder = prompt_builder

    async def choose(
        self,
        route: Route,
        candidates: list[StepCandidate],
        ctx: TemplateContext,
        current_step: Step | None = None,
    ) -> StepCandidate:
        if not candidates:
            raise ValueError("choose() needs at least one candidate")
        if len(candidates) == 1 or not any(c.ai_context_strings for c in candidates):
            return candidates[0]

        if ctx.session is None:
            raise ValueError("Step selection requires a session in the template context")
        step_ids = [c.step_id for c in candidates]
        try:
            response = await self._llm_provider.generate(
                self._prompt_builder.build_step_selection_messages(
                    ctx.session,
                    route,
                    [(c.step, c.ai_context_strings) for c in candidates],
                    current_step,
                ),
                response_schema=build_step_selection_schema(step_ids),
                schema_name=STEP_SELECTION_SCHEMA_NAME,
                temperature=0.0,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "step_selection_failed",
                route_id=route.id,
                error=str(exc),
                candidates=step_ids,
            )
            return candidates[0]

        chosen_id = (response.structured or {}).get("step_id")
        for candidate in candidates:
            if candidate.step_id == chosen_id:
                logger.debug("step_selected", route_id=route.id, step_id=chosen_id)
                return candidate

        logger.warning(
            "step_selection_unknown_id",
            route_id=route.id,
            step_id=chosen_id,
            candidates=step_ids,
        )
        return candidates[0]
