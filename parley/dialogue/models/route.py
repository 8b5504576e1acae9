"""Route and step models.

A route owns an arena of steps indexed by id; edges are successor-id
lists resolved through the route, so steps never reference each other
directly. `END_ROUTE` is the synthetic terminal marker.
"""

import hashlib
import re
from collections import deque
from collections.abc import Awaitable, Callable, Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from parley.conversation.models.session import END_ROUTE
from parley.dialogue.exceptions import ConfigurationError
from parley.dialogue.models.context import TemplateContext
from parley.dialogue.models.guidance import Guideline, Term, TextTemplate
from parley.dialogue.models.schema import DataSchema

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def generate_route_id(title: str, index: int = 0) -> str:
    """Deterministic route id derived from title and registration index."""
    slug = _SLUG_PATTERN.sub("_", title.lower()).strip("_") or "route"
    digest = hashlib.sha1(f"{title}:{index}".encode()).hexdigest()[:8]
    return f"route_{slug}_{digest}"


class RouteTransition(BaseModel):
    """Target of an `on_complete` hand-off."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., description="Route id or title")
    condition: str | None = Field(
        default=None, description="Advisory text carried into the next route"
    )


OnComplete = (
    str
    | RouteTransition
    | Callable[[TemplateContext], str | RouteTransition | None]
    | Callable[[TemplateContext], Awaitable[str | RouteTransition | None]]
)


class Step(BaseModel):
    """One node of a route's state machine.

    A step with `tools` runs during PREPARATION without a model call. A
    step without tools is presented to the model during RESPONSE, which
    may populate only the fields listed in `collect`.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str | None = Field(default=None, description="Unique within the route")
    description: str | None = Field(default=None)
    instructions: TextTemplate | None = Field(
        default=None, description="Guidance for the model at this step"
    )
    collect: list[str] = Field(default_factory=list, description="Fields this step may populate")
    requires: list[str] = Field(
        default_factory=list, description="Fields that must be present for eligibility"
    )
    when: Any = Field(default=None, description="Branch condition among sibling successors")
    skip_if: Any = Field(default=None, description="Condition that bypasses this step")
    tools: list[str] = Field(default_factory=list, description="Tool names run in order")
    next: list[str] | None = Field(
        default=None, description="Successor step ids (defaults to the next declared step)"
    )
    guidelines: list[Guideline] = Field(default_factory=list)

    @field_validator("next", mode="before")
    @classmethod
    def _coerce_next(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @property
    def is_tool_step(self) -> bool:
        return bool(self.tools)

    def requires_met(self, data: dict[str, Any]) -> bool:
        return all(name in data for name in self.requires)

    def collect_complete(self, data: dict[str, Any]) -> bool:
        """True when the step collects something and all of it is present."""
        return bool(self.collect) and all(name in data for name in self.collect)


class Route(BaseModel):
    """A named conversational capability with its step graph."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    title: str = Field(..., min_length=1)
    id: str | None = Field(default=None, description="Explicit id, else derived from title")
    description: str | None = Field(default=None)
    identity: str | None = Field(
        default=None, description="Agent identity while in this route"
    )
    personality: str | None = Field(
        default=None, description="Agent personality while in this route"
    )
    when: Any = Field(default=None, description="Eligibility condition spec")
    skip_if: Any = Field(default=None, description="Exclusion condition spec")
    data_schema: DataSchema | None = Field(default=None, description="Route-scoped schema")
    required_fields: list[str] | None = Field(
        default=None, description="Fields required for completion (defaults to schema.required)"
    )
    steps: list[Step] = Field(default_factory=list)
    initial_step_id: str | None = Field(default=None)
    on_complete: Any = Field(
        default=None, description="Route id/title, RouteTransition or callable"
    )
    initial_data: dict[str, Any] = Field(default_factory=dict)
    end_prompt: str | None = Field(
        default=None, description="Instruction for the completion message"
    )
    guidelines: list[Guideline] = Field(default_factory=list)
    terms: list[Term] = Field(default_factory=list)
    rules: list[str] = Field(default_factory=list)
    prohibitions: list[str] = Field(default_factory=list)

    @field_validator("data_schema", mode="before")
    @classmethod
    def _coerce_schema(cls, value: Any) -> Any:
        if isinstance(value, dict) and "properties" in value:
            return DataSchema.from_json_schema(value)
        return value

    @model_validator(mode="after")
    def _link_steps(self) -> "Route":
        if self.id is None:
            self.id = generate_route_id(self.title)

        named = [
            step if step.id else step.model_copy(update={"id": f"step_{index}"})
            for index, step in enumerate(self.steps)
        ]
        # Sequential fall-through applies only to routes with no explicit edges.
        branching = any(step.next for step in named)
        linked: list[Step] = []
        for index, step in enumerate(named):
            if step.next:
                linked.append(step)
                continue
            if branching or index + 1 >= len(named):
                following = END_ROUTE
            else:
                following = named[index + 1].id
            linked.append(step.model_copy(update={"next": [following]}))
        self.steps = linked

        if self.initial_step_id is None and linked:
            self.initial_step_id = linked[0].id
        return self

    @property
    def route_id(self) -> str:
        assert self.id is not None
        return self.id

    @property
    def initial_step(self) -> Step | None:
        return self.get_step(self.initial_step_id) if self.initial_step_id else None

    @property
    def effective_required_fields(self) -> list[str]:
        if self.required_fields is not None:
            return list(self.required_fields)
        return list(self.data_schema.required) if self.data_schema else []

    @property
    def collectable_fields(self) -> list[str]:
        """Fields any step of the route may collect, in first-seen order."""
        seen: dict[str, None] = {}
        for step in self.steps:
            for name in step.collect:
                seen.setdefault(name, None)
        return list(seen)

    def get_step(self, step_id: str | None) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def successors(self, step: Step) -> list[str]:
        return list(step.next or [END_ROUTE])

    def iter_steps(self) -> Iterator[Step]:
        """Breadth-first walk over steps reachable from the initial step."""
        start = self.initial_step
        if start is None:
            return
        queue: deque[Step] = deque([start])
        visited = {start.id}
        while queue:
            step = queue.popleft()
            yield step
            for successor_id in self.successors(step):
                successor = self.get_step(successor_id)
                if successor is not None and successor.id not in visited:
                    visited.add(successor.id)
                    queue.append(successor)

    def add_guideline(self, guideline: Guideline) -> None:
        self.guidelines.append(guideline)

    def add_term(self, term: Term) -> None:
        self.terms.append(term)

    def validate_graph(self, tool_names: set[str] | None = None) -> None:
        """Check step ids, successor references and tool references.

        Raises:
            ConfigurationError: On the first inconsistency found
        """
        ids = [step.id for step in self.steps]
        duplicates = {step_id for step_id in ids if ids.count(step_id) > 1}
        if duplicates:
            raise ConfigurationError(
                f"Route '{self.title}' has duplicate step ids: {sorted(duplicates)}"
            )
        if END_ROUTE in ids:
            raise ConfigurationError(f"Route '{self.title}' uses reserved step id {END_ROUTE}")
        if self.steps and self.get_step(self.initial_step_id) is None:
            raise ConfigurationError(
                f"Route '{self.title}' initial step '{self.initial_step_id}' does not exist"
            )
        for step in self.steps:
            for successor_id in self.successors(step):
                if successor_id != END_ROUTE and self.get_step(successor_id) is None:
                    raise ConfigurationError(
                        f"Step '{step.id}' of route '{self.title}' points to "
                        f"unknown step '{successor_id}'"
                    )
            if tool_names is not None:
                missing = [name for name in step.tools if name not in tool_names]
                if missing:
                    raise ConfigurationError(
                        f"Step '{step.id}' of route '{self.title}' references "
                        f"unknown tools: {missing}"
                    )

    def describe(self) -> str:
        """Human readable outline of the route and its step graph."""
        lines = [f"Route: {self.title} ({self.id})"]
        if self.description:
            lines.append(f"  {self.description}")
        for step in self.iter_steps():
            kind = f"tools={step.tools}" if step.is_tool_step else f"collect={step.collect}"
            label = step.description or (
                step.instructions if isinstance(step.instructions, str) else ""
            )
            arrows = ", ".join(self.successors(step))
            lines.append(f"  - {step.id}: {label} [{kind}] -> {arrows}")
        if self.on_complete is not None:
            target = (
                self.on_complete.target
                if isinstance(self.on_complete, RouteTransition)
                else self.on_complete if isinstance(self.on_complete, str) else "<dynamic>"
            )
            lines.append(f"  on_complete -> {target}")
        return "\n".join(lines)
