"""Prompt building for routing, extraction and response generation.

Every model call the engine makes is assembled here from a Jinja2 system
template plus the recent conversation history.
"""

import inspect
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from parley.conversation.models import MessageRole, Session
from parley.dialogue.generation.template_loader import TemplateLoader
from parley.dialogue.models import (
    AgentProfile,
    Observation,
    Route,
    Step,
    TemplateContext,
    Term,
    TextTemplate,
)
from parley.providers.llm import LLMMessage


async def render_text(template: TextTemplate | None, ctx: TemplateContext) -> str | None:
    """Resolve a string or (sync/async) callable template to text."""
    if template is None or isinstance(template, str):
        return template
    rendered = template(ctx)
    if inspect.isawaitable(rendered):
        rendered = await rendered
    return None if rendered is None else str(rendered)


class RenderedGuideline(BaseModel):
    """A guideline that applies this turn."""

    when: list[str] = Field(default_factory=list)
    action: str


class Disambiguation(BaseModel):
    """Clarifying question the response should ask instead of entering a route."""

    description: str
    routes: list[str] = Field(default_factory=list, description="Candidate route titles")


class ResponsePromptInput(BaseModel):
    """Everything the response system prompt can show."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    route: Route | None = None
    route_conditions: list[str] = Field(default_factory=list)
    step: Step | None = None
    step_instructions: str | None = None
    step_conditions: list[str] = Field(default_factory=list)
    collect_schema: dict[str, Any] = Field(default_factory=dict)
    guidelines: list[RenderedGuideline] = Field(default_factory=list)
    terms: list[Term] = Field(default_factory=list)
    directives: list[str] = Field(default_factory=list)
    completing: bool = False
    end_prompt: str | None = None
    disambiguation: Disambiguation | None = None
    transition_condition: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)


DEFAULT_END_PROMPT = (
    "Summarize what was accomplished in this conversation flow and confirm completion."
)


class PromptBuilder:
    """Build message lists for each kind of model call."""

    def __init__(
        self,
        agent: AgentProfile,
        loader: TemplateLoader | None = None,
        system_template: str = "system.jinja2",
        history_window: int = 20,
    ) -> None:
        """Initialize the prompt builder.

        Args:
            agent: Agent identity and agent-wide guidance
            loader: Template loader (defaults to the packaged prompts)
            system_template: Template rendered for response generation
            history_window: Maximum history messages sent with each call
        """
        self._agent = agent
        self._loader = loader or TemplateLoader()
        self._system_template = system_template
        self._history_window = history_window

    def history_messages(self, session: Session) -> list[LLMMessage]:
        recent = session.history[-self._history_window:] if self._history_window else []
        return [
            LLMMessage(role=m.role.value, content=m.content, name=m.name)
            for m in recent
            if m.role in (MessageRole.USER, MessageRole.ASSISTANT)
        ]

    def build_response_messages(
        self, session: Session, prompt: ResponsePromptInput
    ) -> list[LLMMessage]:
        route = None
        if prompt.route is not None:
            route = {
                "title": prompt.route.title,
                "description": prompt.route.description,
                "conditions": prompt.route_conditions,
                "rules": prompt.route.rules,
                "prohibitions": prompt.route.prohibitions,
                "identity": prompt.route.identity,
                "personality": prompt.route.personality,
            }
        step = None
        if prompt.step is not None:
            step = {
                "id": prompt.step.id,
                "instructions": prompt.step_instructions,
                "conditions": prompt.step_conditions,
            }
        system = self._loader.render(
            self._system_template,
            agent=self._agent,
            terms=prompt.terms,
            guidelines=prompt.guidelines,
            knowledge=self._agent.knowledge,
            route=route,
            step=step,
            collect_fields=prompt.collect_schema.get("properties", {}),
            data=session.data,
            context=prompt.context,
            directives=prompt.directives,
            completing=prompt.completing,
            end_prompt=prompt.end_prompt or DEFAULT_END_PROMPT,
            disambiguation=prompt.disambiguation,
            transition_condition=prompt.transition_condition,
        )
        return [LLMMessage(role="system", content=system), *self.history_messages(session)]

    def build_routing_messages(
        self,
        session: Session,
        candidates: list[tuple[Route, list[str]]],
        observations: list[Observation],
        current_route: Route | None,
    ) -> list[LLMMessage]:
        system = self._loader.render(
            "routing.jinja2",
            agent=self._agent,
            current_route=current_route,
            candidates=[
                {
                    "id": route.id,
                    "title": route.title,
                    "description": route.description,
                    "conditions": conditions,
                }
                for route, conditions in candidates
            ],
            observations=observations,
        )
        return [LLMMessage(role="system", content=system), *self.history_messages(session)]

    def build_step_selection_messages(
        self,
        session: Session,
        route: Route,
        candidates: list[tuple[Step, list[str]]],
        current_step: Step | None,
    ) -> list[LLMMessage]:
        system = self._loader.render(
            "step_selection.jinja2",
            route=route,
            current_step=(current_step.description or current_step.id) if current_step else None,
            candidates=[
                {"id": step.id, "description": step.description, "conditions": conditions}
                for step, conditions in candidates
            ],
            data=session.data,
        )
        return [LLMMessage(role="system", content=system), *self.history_messages(session)]

    def build_extraction_messages(
        self, session: Session, route: Route, fields_schema: dict[str, Any]
    ) -> list[LLMMessage]:
        system = self._loader.render(
            "extraction.jinja2",
            route=route,
            fields=fields_schema.get("properties", {}),
            data=session.data,
        )
        messages = [LLMMessage(role="system", content=system)]
        last = session.last_user_message
        if last is not None:
            messages.append(LLMMessage(role="user", content=last.content))
        return messages
