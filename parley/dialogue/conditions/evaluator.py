"""Condition evaluator.

A condition spec is a string (advisory text for the model), a predicate
over the template context (sync or async), or an arbitrarily nested list
of both. Specs are parsed into a three-case tagged union and evaluated
recursively:

- strings are collected, in order of appearance, as AI context strings
- predicates are invoked; a predicate that raises counts as False
- `when` combines predicate results with AND, `skip_if` with OR
- with no predicates, `when` is True and `skip_if` is False
- any other leaf (numbers, None, ...) is ignored
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from parley.dialogue.models.context import TemplateContext
from parley.observability.logging import get_logger

logger = get_logger(__name__)

Predicate = Callable[[TemplateContext], bool | Awaitable[bool]]


@dataclass(frozen=True)
class LiteralCondition:
    """Advisory text, interpreted by the model only."""

    text: str


@dataclass(frozen=True)
class PredicateCondition:
    """Programmatic check over the template context."""

    fn: Predicate

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", None) or repr(self.fn)


@dataclass(frozen=True)
class GroupCondition:
    """Nested list of conditions."""

    items: tuple["Condition", ...]


Condition = LiteralCondition | PredicateCondition | GroupCondition


def parse_condition(spec: Any) -> Condition | None:
    """Parse a user-supplied spec. Returns None for absent or ignored specs."""
    if spec is None:
        return None
    if isinstance(spec, (LiteralCondition, PredicateCondition, GroupCondition)):
        return spec
    if isinstance(spec, str):
        return LiteralCondition(spec)
    if isinstance(spec, (list, tuple)):
        parsed = (parse_condition(item) for item in spec)
        return GroupCondition(tuple(item for item in parsed if item is not None))
    if callable(spec):
        return PredicateCondition(spec)
    logger.debug("condition_leaf_ignored", leaf_type=type(spec).__name__)
    return None


class ConditionKind(str, Enum):
    """How predicate results are combined."""

    WHEN = "when"
    SKIP_IF = "skip_if"


class ConditionEvaluation(BaseModel):
    """Result of evaluating one condition spec."""

    programmatic_result: bool = Field(..., description="Combined predicate outcome")
    ai_context_strings: list[str] = Field(
        default_factory=list, description="String leaves, for the model"
    )
    has_programmatic_conditions: bool = Field(
        default=False, description="Whether any predicate leaf was present"
    )


class ConditionEvaluator:
    """Evaluates `when` and `skip_if` condition specs against a template context."""

    async def evaluate(
        self,
        kind: ConditionKind | str,
        spec: Any,
        ctx: TemplateContext,
    ) -> ConditionEvaluation:
        kind = ConditionKind(kind)
        condition = parse_condition(spec)

        strings: list[str] = []
        results: list[bool] = []
        if condition is not None:
            await self._collect(condition, ctx, strings, results)

        if not results:
            programmatic = kind == ConditionKind.WHEN
        elif kind == ConditionKind.WHEN:
            programmatic = all(results)
        else:
            programmatic = any(results)

        return ConditionEvaluation(
            programmatic_result=programmatic,
            ai_context_strings=strings,
            has_programmatic_conditions=bool(results),
        )

    async def evaluate_when(self, spec: Any, ctx: TemplateContext) -> ConditionEvaluation:
        return await self.evaluate(ConditionKind.WHEN, spec, ctx)

    async def evaluate_skip_if(self, spec: Any, ctx: TemplateContext) -> ConditionEvaluation:
        return await self.evaluate(ConditionKind.SKIP_IF, spec, ctx)

    async def _collect(
        self,
        condition: Condition,
        ctx: TemplateContext,
        strings: list[str],
        results: list[bool],
    ) -> None:
        if isinstance(condition, LiteralCondition):
            strings.append(condition.text)
        elif isinstance(condition, PredicateCondition):
            results.append(await self._invoke(condition, ctx))
        else:
            for item in condition.items:
                await self._collect(item, ctx, strings, results)

    async def _invoke(self, predicate: PredicateCondition, ctx: TemplateContext) -> bool:
        try:
            outcome = predicate.fn(ctx)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            return bool(outcome)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "condition_predicate_failed",
                predicate=predicate.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False
