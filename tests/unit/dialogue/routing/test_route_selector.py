"""Tests for route selection."""

import pytest

from parley.config.models.pipeline import RoutingConfig
from parley.conversation.models import PendingTransition
from parley.dialogue.exceptions import ConfigurationError
from parley.dialogue.generation import PromptBuilder
from parley.dialogue.models import AgentProfile, Observation, TemplateContext
from parley.dialogue.routing import RouteSelector, RoutingOutcome, find_route
from parley.dialogue.routing.selector import ROUTING_SCHEMA_NAME
from parley.providers.llm import MockLLMProvider, ModelError
from tests.factories import RouteFactory, SessionFactory


@pytest.fixture
def prompt_builder() -> PromptBuilder:
    return PromptBuilder(AgentProfile(name="Tester"))


def _selector(llm, prompt_builder, **config) -> RouteSelector:
    observations = config.pop("observations", None)
    return RouteSelector(
        llm, prompt_builder, config=RoutingConfig(**config), observations=observations
    )


def _ctx(data=None):
    return SessionFactory.context(SessionFactory.create(messages=["hello"]), data=data)


@pytest.fixture
def routes():
    return [
        RouteFactory.create(title="Booking", id="booking", when="User wants to book"),
        RouteFactory.create(title="Support", id="support", when="User needs help"),
        RouteFactory.create(
            title="Admin", id="admin", when=lambda ctx: ctx.data.get("is_admin", False)
        ),
    ]


class TestFindRoute:
    """Tests for find_route."""

    def test_by_id_then_title(self, routes) -> None:
        assert find_route(routes, "support").id == "support"
        assert find_route(routes, "Booking").id == "booking"
        assert find_route(routes, "nope") is None
        assert find_route(routes, None) is None


class TestDeterministicSelection:
    """Cases that never call the model."""

    @pytest.mark.asyncio
    async def test_pending_transition_wins(self, routes, prompt_builder) -> None:
        llm = MockLLMProvider()
        selector = _selector(llm, prompt_builder)
        transition = PendingTransition(target_route_id="Admin")

        selection = await selector.select(routes, _ctx(), pending_transition=transition)

        assert selection.outcome == RoutingOutcome.TRANSITION
        assert selection.route_id == "admin"
        assert llm.call_history == []

    @pytest.mark.asyncio
    async def test_unknown_transition_target(self, routes, prompt_builder) -> None:
        selector = _selector(MockLLMProvider(), prompt_builder)
        with pytest.raises(ConfigurationError):
            await selector.select(
                routes, _ctx(), pending_transition=PendingTransition(target_route_id="Ghost")
            )

    @pytest.mark.asyncio
    async def test_single_candidate(self, prompt_builder) -> None:
        llm = MockLLMProvider()
        routes = [
            RouteFactory.create(title="A", id="a", when=lambda ctx: True),
            RouteFactory.create(title="B", id="b", when=lambda ctx: False),
        ]
        selection = await _selector(llm, prompt_builder).select(routes, _ctx())

        assert selection.outcome == RoutingOutcome.SELECTED
        assert selection.route_id == "a"
        assert llm.call_history == []

    @pytest.mark.asyncio
    async def test_skip_if_excludes(self, prompt_builder) -> None:
        routes = [
            RouteFactory.create(title="A", id="a", skip_if=lambda ctx: True),
            RouteFactory.create(title="B", id="b"),
        ]
        selection = await _selector(MockLLMProvider(), prompt_builder).select(routes, _ctx())
        assert selection.route_id == "b"

    @pytest.mark.asyncio
    async def test_no_candidates_without_default(self, prompt_builder) -> None:
        routes = [RouteFactory.create(title="A", id="a", when=lambda ctx: False)]
        selection = await _selector(MockLLMProvider(), prompt_builder).select(routes, _ctx())
        assert selection.outcome == RoutingOutcome.NONE
        assert selection.route is None

    @pytest.mark.asyncio
    async def test_no_candidates_uses_default(self, prompt_builder) -> None:
        routes = [
            RouteFactory.create(title="A", id="a", when=lambda ctx: False),
            RouteFactory.create(title="Fallback", id="fallback", when=lambda ctx: False),
        ]
        selector = _selector(MockLLMProvider(), prompt_builder, default_route="Fallback")
        selection = await selector.select(routes, _ctx())
        assert selection.outcome == RoutingOutcome.DEFAULT
        assert selection.route_id == "fallback"

    @pytest.mark.asyncio
    async def test_several_programmatic_candidates_keep_active(self, prompt_builder) -> None:
        """Sticky routing: the active route wins while it stays eligible."""
        llm = MockLLMProvider()
        routes = [
            RouteFactory.create(title="A", id="a"),
            RouteFactory.create(title="B", id="b"),
        ]
        selector = _selector(llm, prompt_builder)

        first = await selector.select(routes, _ctx(), current_route_id="b")
        second = await selector.select(routes, _ctx(), current_route_id="b")
        fresh = await selector.select(routes, _ctx())

        assert first.route_id == second.route_id == "b"
        assert first.outcome == RoutingOutcome.CONTINUITY
        assert fresh.route_id == "a"
        assert llm.call_history == []


class TestScoredSelection:
    """Cases that ask the model to score candidates."""

    @pytest.mark.asyncio
    async def test_highest_score_wins(self, routes, prompt_builder) -> None:
        llm = MockLLMProvider(
            structured_responses={
                ROUTING_SCHEMA_NAME: {
                    "routes": {"booking": 20, "support": 90},
                    "reasoning": "help request",
                    "response_directives": ["Be brief"],
                }
            }
        )
        selection = await _selector(llm, prompt_builder).select(routes, _ctx())

        assert selection.route_id == "support"
        assert selection.scores == {"booking": 20, "support": 90}
        assert selection.candidates == ["booking", "support"]
        assert selection.ai_context_strings == ["User needs help"]
        assert selection.response_directives == ["Be brief"]

    @pytest.mark.asyncio
    async def test_active_route_kept_below_threshold(self, routes, prompt_builder) -> None:
        llm = MockLLMProvider(
            structured_responses={ROUTING_SCHEMA_NAME: {"routes": {"booking": 60, "support": 75}}}
        )
        selector = _selector(llm, prompt_builder, switch_threshold=20)

        selection = await selector.select(routes, _ctx(), current_route_id="booking")

        assert selection.route_id == "booking"
        assert selection.outcome == RoutingOutcome.CONTINUITY

    @pytest.mark.asyncio
    async def test_switch_at_threshold(self, routes, prompt_builder) -> None:
        llm = MockLLMProvider(
            structured_responses={ROUTING_SCHEMA_NAME: {"routes": {"booking": 50, "support": 70}}}
        )
        selector = _selector(llm, prompt_builder, switch_threshold=20)

        selection = await selector.select(routes, _ctx(), current_route_id="booking")

        assert selection.route_id == "support"
        assert selection.outcome == RoutingOutcome.SELECTED

    @pytest.mark.asyncio
    async def test_switching_disabled(self, routes, prompt_builder) -> None:
        llm = MockLLMProvider(
            structured_responses={ROUTING_SCHEMA_NAME: {"routes": {"booking": 0, "support": 100}}}
        )
        selector = _selector(llm, prompt_builder, allow_route_switch=False)
        selection = await selector.select(routes, _ctx(), current_route_id="booking")
        assert selection.route_id == "booking"

    @pytest.mark.asyncio
    async def test_max_candidates_keeps_active(self, prompt_builder) -> None:
        routes = [
            RouteFactory.create(title=f"R{i}", id=f"r{i}", when=f"case {i}") for i in range(4)
        ]
        llm = MockLLMProvider(structured_responses={ROUTING_SCHEMA_NAME: {"routes": {}}})
        selector = _selector(llm, prompt_builder, max_candidates=2)

        selection = await selector.select(routes, _ctx(), current_route_id="r3")

        assert selection.candidates == ["r3", "r0"]
        assert selection.route_id == "r3"

    @pytest.mark.asyncio
    async def test_model_failure_falls_back(self, routes, prompt_builder) -> None:
        llm = MockLLMProvider()
        llm.fail_with(ModelError("down"), schema_name=ROUTING_SCHEMA_NAME)

        selection = await _selector(llm, prompt_builder).select(
            routes, _ctx(), current_route_id="support"
        )

        assert selection.route_id == "support"
        assert selection.reasoning == "routing_call_failed"

    @pytest.mark.asyncio
    async def test_observation_requests_disambiguation(self, routes, prompt_builder) -> None:
        observation = Observation(
            id="unclear_booking",
            description="User mentions a booking problem",
            route_refs=["Booking", "support", "Admin"],
        )
        llm = MockLLMProvider(
            structured_responses={
                ROUTING_SCHEMA_NAME: {
                    "routes": {"booking": 50, "support": 50},
                    "observation_id": "unclear_booking",
                }
            }
        )
        selector = _selector(llm, prompt_builder, observations=[observation])

        selection = await selector.select(routes, _ctx())

        assert selection.disambiguation_needed is True
        assert selection.route is None
        assert [r.id for r in selection.disambiguation_routes] == ["booking", "support"]

    @pytest.mark.asyncio
    async def test_routing_prompt_lists_candidates(self, routes, prompt_builder) -> None:
        llm = MockLLMProvider(
            structured_responses={ROUTING_SCHEMA_NAME: {"routes": {"booking": 80}}}
        )
        await _selector(llm, prompt_builder).select(routes, _ctx())

        call = llm.calls_for(ROUTING_SCHEMA_NAME)[0]
        system = call["messages"][0].content
        assert "id: booking" in system
        assert "applies when: User needs help" in system
        assert call["response_schema"]["properties"]["routes"]["required"] == [
            "booking",
            "support",
        ]


class TestContextRequirements:
    """Model scoring needs a session to build the routing prompt."""

    @pytest.mark.asyncio
    async def test_scoring_without_session_raises(self, routes, prompt_builder) -> None:
        llm = MockLLMProvider()
        selector = _selector(llm, prompt_builder)

        with pytest.raises(ValueError, match="requires a session"):
            await selector.select(routes, TemplateContext(data={}))
        assert llm.call_history == []
