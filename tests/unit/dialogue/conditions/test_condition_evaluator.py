"""Tests for the condition evaluator."""

import itertools

import pytest

from parley.dialogue.conditions import (
    ConditionEvaluator,
    ConditionKind,
    GroupCondition,
    LiteralCondition,
    PredicateCondition,
    parse_condition,
)
from tests.factories import SessionFactory


@pytest.fixture
def evaluator() -> ConditionEvaluator:
    return ConditionEvaluator()


def _const(value: bool):
    return lambda ctx: value


def _boom(ctx):
    raise RuntimeError("predicate exploded")


class TestParseCondition:
    """Tests for parse_condition."""

    def test_string_is_literal(self) -> None:
        assert parse_condition("user is upset") == LiteralCondition("user is upset")

    def test_callable_is_predicate(self) -> None:
        fn = _const(True)
        assert parse_condition(fn) == PredicateCondition(fn)

    def test_nested_lists_become_groups(self) -> None:
        fn = _const(True)
        parsed = parse_condition(["a", [fn, "b"]])
        assert parsed == GroupCondition(
            (LiteralCondition("a"), GroupCondition((PredicateCondition(fn), LiteralCondition("b"))))
        )

    def test_none_and_other_leaves_are_dropped(self) -> None:
        assert parse_condition(None) is None
        assert parse_condition(42) is None
        assert parse_condition(["a", 42, None]) == GroupCondition((LiteralCondition("a"),))


class TestCombinationLaws:
    """`when` is AND over predicates, `skip_if` is OR."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("values", list(itertools.product([True, False], repeat=3)))
    async def test_and_or_over_predicates(self, evaluator: ConditionEvaluator, values) -> None:
        ctx = SessionFactory.context()
        spec = [_const(v) for v in values]

        when = await evaluator.evaluate(ConditionKind.WHEN, spec, ctx)
        skip = await evaluator.evaluate(ConditionKind.SKIP_IF, spec, ctx)

        assert when.programmatic_result is all(values)
        assert skip.programmatic_result is any(values)
        assert when.has_programmatic_conditions is True

    @pytest.mark.asyncio
    async def test_no_predicates_defaults(self, evaluator: ConditionEvaluator) -> None:
        """Only strings (or nothing): when is True, skip_if is False."""
        ctx = SessionFactory.context()
        for spec in (None, [], "text only", ["a", ["b"]]):
            when = await evaluator.evaluate_when(spec, ctx)
            skip = await evaluator.evaluate_skip_if(spec, ctx)
            assert when.programmatic_result is True
            assert skip.programmatic_result is False
            assert when.has_programmatic_conditions is False

    @pytest.mark.asyncio
    async def test_string_kind_accepted(self, evaluator: ConditionEvaluator) -> None:
        ctx = SessionFactory.context()
        result = await evaluator.evaluate("skip_if", [_const(True)], ctx)
        assert result.programmatic_result is True


class TestErrorDefault:
    """A raising predicate behaves exactly like one returning False."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("others", [[], [True], [False], [True, True]])
    async def test_raising_equals_false(self, evaluator: ConditionEvaluator, others) -> None:
        ctx = SessionFactory.context()
        with_error = [_boom, *(_const(v) for v in others)]
        with_false = [_const(False), *(_const(v) for v in others)]

        for kind in ConditionKind:
            a = await evaluator.evaluate(kind, with_error, ctx)
            b = await evaluator.evaluate(kind, with_false, ctx)
            assert a.programmatic_result is b.programmatic_result

    @pytest.mark.asyncio
    async def test_async_raising_predicate(self, evaluator: ConditionEvaluator) -> None:
        async def fails(ctx):
            raise ValueError("async boom")

        ctx = SessionFactory.context()
        assert (await evaluator.evaluate_when(fails, ctx)).programmatic_result is False
        assert (await evaluator.evaluate_skip_if(fails, ctx)).programmatic_result is False


class TestContextStrings:
    """String leaves are collected in order of appearance."""

    @pytest.mark.asyncio
    async def test_mixed_skip_if(self, evaluator: ConditionEvaluator) -> None:
        """Strings are collected while the predicate decides the result."""
        ctx = SessionFactory.context(context={"status": "active"})
        spec = ["x restricted", lambda c: c.context["status"] != "active"]

        result = await evaluator.evaluate_skip_if(spec, ctx)

        assert result.programmatic_result is False
        assert result.ai_context_strings == ["x restricted"]

    @pytest.mark.asyncio
    async def test_nested_order_preserved(self, evaluator: ConditionEvaluator) -> None:
        ctx = SessionFactory.context()
        spec = ["first", [_const(True), "second", ["third"]], "fourth"]
        result = await evaluator.evaluate_when(spec, ctx)
        assert result.ai_context_strings == ["first", "second", "third", "fourth"]

    @pytest.mark.asyncio
    async def test_async_predicates_read_data(self, evaluator: ConditionEvaluator) -> None:
        async def has_topic(ctx):
            return "topic" in ctx.data

        ctx = SessionFactory.context(data={"topic": "AI"})
        assert (await evaluator.evaluate_when(has_topic, ctx)).programmatic_result is True
