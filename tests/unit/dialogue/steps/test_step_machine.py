"""Tests for the step state machine."""

import pytest

from parley.dialogue.models import END_ROUTE, Route, Step
from parley.dialogue.steps import StepMachine
from tests.factories import RouteFactory, SessionFactory, StepFactory


@pytest.fixture
def machine() -> StepMachine:
    return StepMachine()


class TestInitialResolution:
    """Resolution from a route's initial step."""

    @pytest.mark.asyncio
    async def test_skip_if_bypasses_to_next(self, machine: StepMachine) -> None:
        """With topic known, ask_topic is skipped and ask_depth is offered."""
        route = RouteFactory.research()
        ctx = SessionFactory.context(data={"topic": "AI"})

        resolution = await machine.resolve(route, None, ctx)

        assert [c.step_id for c in resolution.candidates] == ["ask_depth"]
        assert resolution.skipped == ["ask_topic"]
        assert resolution.is_route_complete is False

    @pytest.mark.asyncio
    async def test_first_step_offered(self, machine: StepMachine) -> None:
        route = RouteFactory.research()
        resolution = await machine.resolve(route, None, SessionFactory.context())
        assert [c.step_id for c in resolution.candidates] == ["ask_topic"]

    @pytest.mark.asyncio
    async def test_empty_route_completes_when_requirements_met(
        self, machine: StepMachine
    ) -> None:
        route = Route(title="Empty", required_fields=["x"])
        done = await machine.resolve(route, None, SessionFactory.context(data={"x": 1}))
        blocked = await machine.resolve(route, None, SessionFactory.context())

        assert done.is_route_complete is True
        assert blocked.is_route_complete is False
        assert blocked.missing_required == ["x"]


class TestHolding:
    """The pointer holds while the current step is unsatisfied."""

    @pytest.mark.asyncio
    async def test_holds_at_incomplete_prompt_step(self, machine: StepMachine) -> None:
        route = RouteFactory.research()
        resolution = await machine.resolve(route, "ask_depth", SessionFactory.context())

        assert resolution.held is True
        assert resolution.held_step.id == "ask_depth"

    @pytest.mark.asyncio
    async def test_advances_once_collected(self, machine: StepMachine) -> None:
        route = RouteFactory.research()
        ctx = SessionFactory.context(data={"topic": "AI", "depth": "deep"})
        resolution = await machine.resolve(route, "ask_depth", ctx)
        assert [c.step_id for c in resolution.candidates] == ["research"]

    @pytest.mark.asyncio
    async def test_holds_when_no_successor_eligible(self, machine: StepMachine) -> None:
        route = Route(
            title="R",
            steps=[
                Step(id="a", next=["b"]),
                Step(id="b", requires=["token"]),
            ],
        )
        resolution = await machine.resolve(route, "a", SessionFactory.context())
        assert resolution.held is True
        assert resolution.held_step.id == "a"


class TestEligibility:
    """requires and when gate successors; order is preserved."""

    @pytest.mark.asyncio
    async def test_branching_by_when(self, machine: StepMachine) -> None:
        route = Route(
            title="R",
            steps=[
                Step(id="start", next=["vip", "regular"]),
                Step(id="vip", when=lambda ctx: ctx.data.get("tier") == "vip"),
                Step(id="regular", when=["Customer is not VIP", lambda ctx: True]),
            ],
        )
        regular = await machine.resolve(route, "start", SessionFactory.context())
        both = await machine.resolve(route, "start", SessionFactory.context(data={"tier": "vip"}))

        assert [c.step_id for c in regular.candidates] == ["regular"]
        assert regular.candidates[0].ai_context_strings == ["Customer is not VIP"]
        assert [c.step_id for c in both.candidates] == ["vip", "regular"]

    @pytest.mark.asyncio
    async def test_requires_gate(self, machine: StepMachine) -> None:
        route = Route(
            title="R",
            steps=[
                Step(id="start", next=["pay", "ask_card"]),
                Step(id="pay", requires=["card"], tools=["charge"]),
                Step(id="ask_card", collect=["card"]),
            ],
        )
        without = await machine.resolve(route, "start", SessionFactory.context())
        with_card = await machine.resolve(
            route, "start", SessionFactory.context(data={"card": "4242"})
        )

        assert [c.step_id for c in without.candidates] == ["ask_card"]
        assert [c.step_id for c in with_card.candidates] == ["pay"]

    @pytest.mark.asyncio
    async def test_satisfied_prompt_step_is_bypassed(self, machine: StepMachine) -> None:
        route = Route(
            title="R",
            steps=[
                StepFactory.prompt("ask_name", ["name"]),
                StepFactory.prompt("ask_age", ["age"]),
            ],
        )
        resolution = await machine.resolve(
            route, None, SessionFactory.context(data={"name": "Ada"})
        )
        assert [c.step_id for c in resolution.candidates] == ["ask_age"]
        assert resolution.skipped == ["ask_name"]

    @pytest.mark.asyncio
    async def test_cycles_terminate(self, machine: StepMachine) -> None:
        route = Route(
            title="Loop",
            steps=[
                Step(id="a", next=["b"], skip_if=lambda ctx: True),
                Step(id="b", next=["a"], skip_if=lambda ctx: True),
            ],
        )
        resolution = await machine.resolve(route, None, SessionFactory.context())
        assert resolution.candidates == []
        assert resolution.is_route_complete is False


class TestCompletion:
    """Reaching END_ROUTE completes only with required fields present."""

    @pytest.mark.asyncio
    async def test_last_step_reaches_end(self, machine: StepMachine) -> None:
        route = RouteFactory.research()
        ctx = SessionFactory.context(data={"topic": "AI", "depth": "deep"})
        resolution = await machine.resolve(route, "research", ctx)
        assert resolution.is_route_complete is True

    @pytest.mark.asyncio
    async def test_missing_required_holds(self, machine: StepMachine) -> None:
        route = Route(
            title="R",
            required_fields=["email"],
            steps=[StepFactory.prompt("done")],
        )
        resolution = await machine.resolve(route, "done", SessionFactory.context())

        assert resolution.is_route_complete is False
        assert resolution.missing_required == ["email"]

    @pytest.mark.asyncio
    async def test_already_at_end(self, machine: StepMachine) -> None:
        route = RouteFactory.research()
        resolution = await machine.resolve(route, END_ROUTE, SessionFactory.context())
        assert resolution.is_route_complete is True
