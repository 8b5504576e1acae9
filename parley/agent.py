"""Agent facade.

Assembles routes, tools, guidance and a model provider into a turn
pipeline, validates the configuration up front, and checkpoints sessions
through the persistence adapter around every turn.

Usage:
    agent = Agent(name="Concierge", llm_provider=provider)
    booking = agent.create_route(
        "Book a table",
        when="The user wants to book a table",
        steps=[Step(id="ask_date", collect=["date"])],
    )
    result = await agent.respond("I'd like a table tomorrow", session_id="abc")
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from parley.config import get_settings
from parley.config.models.pipeline import PipelineConfig
from parley.conversation.manager import SessionManager
from parley.conversation.models import Session
from parley.conversation.store import PersistenceAdapter
from parley.dialogue.data import DataHook, DataStore
from parley.dialogue.exceptions import ConfigurationError
from parley.dialogue.execution import ContextHook, Tool
from parley.dialogue.models import (
    AgentProfile,
    DataSchema,
    Guideline,
    Observation,
    Route,
    RouteTransition,
    Term,
    generate_route_id,
)
from parley.dialogue.pipeline import ContextProvider, TurnPipeline
from parley.dialogue.result import TurnChunk, TurnResult
from parley.dialogue.routing import find_route
from parley.observability.logging import get_logger
from parley.providers.llm import LLMProvider

logger = get_logger(__name__)


class Agent:
    """A conversational agent built from routes.

    Configuration errors (duplicate ids, dangling successors, unknown
    tools, unknown transition targets) raise ConfigurationError when the
    agent is built or a route is added, never mid-conversation.
    """

    def __init__(
        self,
        name: str,
        llm_provider: LLMProvider,
        *,
        description: str | None = None,
        goal: str | None = None,
        personality: str | None = None,
        routes: list[Route | dict[str, Any]] | None = None,
        tools: list[Tool] | None = None,
        terms: list[Term] | None = None,
        guidelines: list[Guideline] | None = None,
        observations: list[Observation] | None = None,
        knowledge: dict[str, Any] | None = None,
        schema: DataSchema | dict[str, Any] | None = None,
        persistence: PersistenceAdapter | None = None,
        hooks: dict[str, list[Any]] | None = None,
        context_provider: ContextProvider | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        """Build and validate the agent.

        Args:
            name: Agent name shown to the model
            llm_provider: Provider for every model call
            description: Short identity description
            goal: What the agent is trying to achieve
            personality: Tone and style
            routes: Routes, or route keyword dicts, in priority order
            tools: Tools referenced by tool steps
            terms: Agent-wide glossary
            guidelines: Agent-wide guidelines
            observations: Ambiguous situations offered to the routing model
            knowledge: Static reference facts shown to the model
            schema: Agent-wide data schema; makes collected data shared
                across routes
            persistence: Adapter used to load and checkpoint sessions
            hooks: `{"data": [...], "context": [...]}` ordered hook lists
            context_provider: Supplies external context at every turn start
            config: Pipeline configuration (defaults to loaded settings)

        Raises:
            ConfigurationError: If the configuration is inconsistent
        """
        self._profile = AgentProfile(
            name=name,
            description=description,
            goal=goal,
            personality=personality,
            guidelines=list(guidelines or []),
            terms=list(terms or []),
            knowledge=dict(knowledge or {}),
        )
        self._llm_provider = llm_provider
        self._schema = DataSchema.from_json_schema(schema) if isinstance(schema, dict) else schema
        self._observations = list(observations or [])
        self._context_provider = context_provider
        self._config = config or get_settings().pipeline

        hooks = hooks or {}
        unknown_hooks = set(hooks) - {"data", "context"}
        if unknown_hooks:
            raise ConfigurationError(f"Unknown hook kinds: {sorted(unknown_hooks)}")
        self._data_hooks: list[DataHook] = list(hooks.get("data", []))
        self._context_hooks: list[ContextHook] = list(hooks.get("context", []))

        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            if tool.name in self._tools:
                raise ConfigurationError(f"Duplicate tool name '{tool.name}'")
            self._tools[tool.name] = tool

        self._routes: list[Route] = []
        for route in routes or []:
            self._register(route if isinstance(route, Route) else self._build_route(**route))
        self.validate()

        self._sessions = SessionManager(
            persistence=persistence,
            data_store=DataStore(self._data_hooks),
            agent_name=name,
        )
        self._pipeline: TurnPipeline | None = None

        logger.info(
            "agent_built",
            agent=name,
            routes=[r.id for r in self._routes],
            tools=sorted(self._tools),
        )

    @property
    def name(self) -> str:
        return self._profile.name

    @property
    def profile(self) -> AgentProfile:
        return self._profile

    @property
    def routes(self) -> list[Route]:
        return list(self._routes)

    @property
    def tools(self) -> dict[str, Tool]:
        return dict(self._tools)

    @property
    def schema(self) -> DataSchema | None:
        return self._schema

    @property
    def session_manager(self) -> SessionManager:
        return self._sessions

    @property
    def pipeline(self) -> TurnPipeline:
        """Turn pipeline over the current routes (rebuilt when routes change)."""
        if self._pipeline is None:
            self.validate()
            self._pipeline = TurnPipeline(
                agent=self._profile,
                routes=self._routes,
                llm_provider=self._llm_provider,
                tools=self._tools,
                observations=self._observations,
                agent_schema=self._schema,
                session_manager=self._sessions,
                context_hooks=self._context_hooks,
                context_provider=self._context_provider,
                config=self._config,
            )
        return self._pipeline

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def create_route(self, title: str, **kwargs: Any) -> Route:
        """Build and register a route.

        Transition targets are checked by `validate()`, which runs before
        the first turn, so routes may reference routes added later.

        Raises:
            ConfigurationError: If the route conflicts with existing ones
        """
        route = self._build_route(title=title, **kwargs)
        self._register(route)
        return route

    def add_route(self, route: Route) -> Route:
        self._register(route)
        return route

    def add_tool(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ConfigurationError(f"Duplicate tool name '{tool.name}'")
        self._tools[tool.name] = tool
        self._pipeline = None

    def add_guideline(self, guideline: Guideline) -> None:
        self._profile.guidelines.append(guideline)

    def add_term(self, term: Term) -> None:
        self._profile.terms.append(term)

    def add_observation(self, observation: Observation) -> None:
        self._observations.append(observation)
        self._pipeline = None

    def get_route(self, ref: str) -> Route | None:
        """Find a route by id or title."""
        return find_route(self._routes, ref)

    def describe(self) -> str:
        return "\n\n".join(route.describe() for route in self._routes)

    def _build_route(self, **kwargs: Any) -> Route:
        if kwargs.get("id") is None and "title" in kwargs:
            kwargs["id"] = generate_route_id(kwargs["title"], len(self._routes))
        return Route(**kwargs)

    def _register(self, route: Route) -> None:
        for existing in self._routes:
            if existing.id == route.id:
                raise ConfigurationError(f"Duplicate route id '{route.id}'")
            if existing.title == route.title:
                raise ConfigurationError(f"Duplicate route title '{route.title}'")
        route.validate_graph(set(self._tools))
        self._routes.append(route)
        self._pipeline = None

    def validate(self) -> None:
        """Check that static `on_complete` targets and the default route resolve.

        Raises:
            ConfigurationError: On the first unresolved reference
        """
        for route in self._routes:
            target = route.on_complete
            if isinstance(target, RouteTransition):
                target = target.target
            if isinstance(target, str) and find_route(self._routes, target) is None:
                raise ConfigurationError(
                    f"Route '{route.title}' on_complete targets unknown route '{target}'"
                )
        default_route = self._config.routing.default_route
        if default_route is not None and self._routes:
            if find_route(self._routes, default_route) is None:
                raise ConfigurationError(f"Default route '{default_route}' is not a known route")

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def respond(
        self,
        message: str | None = None,
        *,
        session_id: str | None = None,
        session: Session | None = None,
        context: dict[str, Any] | None = None,
        message_id: str | None = None,
        user_id: str | None = None,
    ) -> TurnResult:
        """Run one turn and checkpoint the resulting session.

        Pass either a session value from a previous result, or a session id
        to load from the persistence adapter (a new session is started when
        nothing is stored under that id).
        """
        if session is None:
            session = await self._sessions.get_or_create(session_id, user_id=user_id)
        result = await self.pipeline.process_turn(
            session, message, context=context, message_id=message_id
        )
        await self._sessions.save(result.session)
        return result

    async def respond_stream(
        self,
        message: str | None = None,
        *,
        session_id: str | None = None,
        session: Session | None = None,
        context: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
        message_id: str | None = None,
        user_id: str | None = None,
    ) -> AsyncIterator[TurnChunk]:
        """Stream one turn. The final chunk carries the checkpointed session."""
        if session is None:
            session = await self._sessions.get_or_create(session_id, user_id=user_id)
        async for chunk in self.pipeline.stream_turn(
            session,
            message,
            context=context,
            cancel_event=cancel_event,
            message_id=message_id,
        ):
            if chunk.done and chunk.session is not None:
                await self._sessions.save(chunk.session)
            yield chunk

    async def get_session(self, session_id: str) -> Session | None:
        return await self._sessions.load(session_id)

    async def reset_session(self, session: Session, preserve_history: bool = False) -> Session:
        reset = self._sessions.reset(session, preserve_history=preserve_history)
        await self._sessions.save(reset)
        return reset
