"""Tests for prompt templates and the prompt builder."""

import pytest

from parley.dialogue.generation import (
    Disambiguation,
    PromptBuilder,
    RenderedGuideline,
    ResponsePromptInput,
    TemplateLoader,
    render_text,
)
from parley.dialogue.models import AgentProfile, Term
from tests.factories import RouteFactory, SessionFactory


@pytest.fixture
def agent() -> AgentProfile:
    return AgentProfile(
        name="Ada",
        description="a travel assistant",
        goal="Book trips",
        personality="Warm",
        knowledge={"office_hours": "9-17"},
    )


@pytest.fixture
def builder(agent: AgentProfile) -> PromptBuilder:
    return PromptBuilder(agent, history_window=2)


class TestRenderText:
    """Tests for render_text."""

    @pytest.mark.asyncio
    async def test_strings_and_none_pass_through(self) -> None:
        ctx = SessionFactory.context()
        assert await render_text("Say hi", ctx) == "Say hi"
        assert await render_text(None, ctx) is None

    @pytest.mark.asyncio
    async def test_sync_and_async_callables(self) -> None:
        ctx = SessionFactory.context(data={"name": "Lin"})

        async def greet(c):
            return f"Greet {c.data['name']}"

        assert await render_text(lambda c: f"Ask {c.data['name']}", ctx) == "Ask Lin"
        assert await render_text(greet, ctx) == "Greet Lin"


class TestTemplateLoader:
    """Tests for TemplateLoader."""

    def test_render_strips_output(self, tmp_path) -> None:
        (tmp_path / "hello.jinja2").write_text("\n{% if name %}\nHello {{ name }}\n{% endif %}\n")
        loader = TemplateLoader(tmp_path)
        assert loader.render("hello.jinja2", name="Lin") == "Hello Lin"


class TestResponseMessages:
    """Tests for build_response_messages."""

    def test_agent_identity_and_history_window(self, builder: PromptBuilder) -> None:
        session = SessionFactory.create(messages=["one", "two", "three"], data={"city": "Oslo"})
        messages = builder.build_response_messages(
            session,
            ResponsePromptInput(
                terms=[Term(name="PNR", description="Booking reference")],
                guidelines=[RenderedGuideline(when=["user is upset"], action="Apologize")],
                directives=["Keep it short"],
                context={"channel": "web"},
            ),
        )

        system = messages[0].content
        assert system.startswith("You are Ada, a travel assistant.")
        assert "Your goal: Book trips" in system
        assert "Personality: Warm" in system
        assert "- PNR: Booking reference" in system
        assert "- When user is upset: Apologize" in system
        assert "- office_hours: 9-17" in system
        assert "- city: Oslo" in system
        assert "- channel: web" in system
        assert "- Keep it short" in system
        assert [m.content for m in messages[1:]] == ["two", "three"]

    def test_route_identity_overrides_agent(self, builder: PromptBuilder) -> None:
        route = RouteFactory.create(
            title="Billing",
            identity="You are the billing desk.",
            personality="Precise",
            rules=["Quote invoice numbers"],
        )
        system = builder.build_response_messages(
            SessionFactory.create(), ResponsePromptInput(route=route)
        )[0].content

        assert system.startswith("You are the billing desk.")
        assert "Personality: Precise" in system
        assert "Personality: Warm" not in system
        assert "## Current conversation flow: Billing" in system
        assert "- Quote invoice numbers" in system

    def test_step_and_collect_fields(self, builder: PromptBuilder) -> None:
        route = RouteFactory.create()
        prompt = ResponsePromptInput(
            route=route,
            step=route.get_step("ask_name"),
            step_instructions="Ask for the full name",
            step_conditions=["user has not introduced themselves"],
            collect_schema={
                "properties": {"name": {"type": "string", "description": "Full name"}}
            },
        )
        system = builder.build_response_messages(SessionFactory.create(), prompt)[0].content

        assert "## Current step" in system
        assert "Ask for the full name" in system
        assert "This step applies when: user has not introduced themselves" in system
        assert "- name: Full name" in system

    def test_completing_uses_end_prompt(self, builder: PromptBuilder) -> None:
        route = RouteFactory.create()
        system = builder.build_response_messages(
            SessionFactory.create(),
            ResponsePromptInput(route=route, completing=True, end_prompt="Say goodbye"),
        )[0].content

        assert "## Wrapping up" in system
        assert "Say goodbye" in system
        assert "## Current step" not in system

    def test_disambiguation(self, builder: PromptBuilder) -> None:
        system = builder.build_response_messages(
            SessionFactory.create(),
            ResponsePromptInput(
                disambiguation=Disambiguation(
                    description="Unclear request", routes=["Booking", "Support"]
                )
            ),
        )[0].content

        assert "## Clarification needed" in system
        assert "- Booking" in system
        assert "- Support" in system


class TestExtractionMessages:
    """Tests for build_extraction_messages."""

    def test_only_last_user_message(self, builder: PromptBuilder) -> None:
        session = SessionFactory.create(messages=["hi", "I'm Lin"])
        messages = builder.build_extraction_messages(
            session, RouteFactory.create(), {"properties": {"name": {"type": "string"}}}
        )
        assert messages[0].role == "system"
        assert [m.content for m in messages[1:]] == ["I'm Lin"]
