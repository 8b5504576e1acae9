"""Three-phase turn pipeline.

A turn runs PREPARATION (tool steps and pre-extraction on the active
route), then ROUTING (route selection and step advance), then RESPONSE
(model call constrained to the active step's `collect` fields). Phases
never re-enter within a turn. A route entered during ROUTING runs its
leading tool steps before the step to present is chosen.

The pipeline takes a session value and returns an updated one inside a
TurnResult. It never raises: failures are reported on `TurnResult.error`.
"""

import asyncio
import inspect
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from parley.config.models.pipeline import PipelineConfig
from parley.conversation.manager import SessionManager
from parley.conversation.models import MessageRole, PendingTransition, Session
from parley.dialogue.conditions import ConditionEvaluator
from parley.dialogue.data import DataExtractor
from parley.dialogue.exceptions import (
    CancelledTurnError,
    ConfigurationError,
    ToolExecutionError,
)
from parley.dialogue.execution import ContextHook, Tool, ToolExecutor, ToolResult
from parley.dialogue.generation import (
    Disambiguation,
    PromptBuilder,
    RenderedGuideline,
    ResponseGenerator,
    ResponsePromptInput,
    ToolCallback,
    render_text,
    split_structured,
)
from parley.dialogue.models import (
    AgentProfile,
    DataSchema,
    Observation,
    Route,
    RouteTransition,
    Step,
    TemplateContext,
)
from parley.dialogue.result import (
    PhaseTiming,
    TurnChunk,
    TurnError,
    TurnErrorKind,
    TurnPhase,
    TurnResult,
)
from parley.dialogue.routing import RouteSelection, RouteSelector, StepSelector, find_route
from parley.dialogue.steps import StepMachine
from parley.observability.logging import bind_turn_context, clear_turn_context, get_logger
from parley.providers.llm import LLMMessage, LLMProvider, ProviderError, ToolCall

logger = get_logger(__name__)

ContextProvider = Callable[[Session], dict[str, Any] | Awaitable[dict[str, Any]]]


@dataclass
class _TurnState:
    """Working values of one turn. Discarded when the turn ends."""

    session: Session
    context: dict[str, Any]
    transition: PendingTransition | None = None
    route: Route | None = None
    selection: RouteSelection | None = None
    active_step: Step | None = None
    commit_step_id: str | None = None
    step_conditions: list[str] = field(default_factory=list)
    completing: bool = False
    completion_transition: PendingTransition | None = None
    missing_required: list[str] = field(default_factory=list)
    collect_fields: list[str] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    tool_steps_run: int = 0
    timings: list[PhaseTiming] = field(default_factory=list)
    error: TurnError | None = None


class TurnPipeline:
    """Runs single conversational turns for one agent."""

    def __init__(
        self,
        *,
        agent: AgentProfile,
        routes: list[Route],
        llm_provider: LLMProvider,
        tools: dict[str, Tool] | None = None,
        observations: list[Observation] | None = None,
        agent_schema: DataSchema | None = None,
        session_manager: SessionManager | None = None,
        context_hooks: list[ContextHook] | None = None,
        context_provider: ContextProvider | None = None,
        config: PipelineConfig | None = None,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            agent: Agent identity and agent-wide guidance
            routes: Routes in declaration order
            llm_provider: Provider used for every model call
            tools: Tools referenced by tool steps, by name
            observations: Ambiguous situations offered to the routing model
            agent_schema: Agent-wide schema; makes data shared across routes
            session_manager: Session mutator (a fresh one if omitted)
            context_hooks: Ordered transforms run after tool context updates
            context_provider: Supplies external context at every turn start
            config: Pipeline configuration
            prompt_builder: Builder for every prompt (defaults from config)
        """
        self._agent = agent
        self._routes = list(routes)
        self._agent_schema = agent_schema
        self._config = config or PipelineConfig()
        self._context_provider = context_provider
        self._sessions = session_manager or SessionManager(agent_name=agent.name)

        self._prompt_builder = prompt_builder or PromptBuilder(
            agent,
            system_template=self._config.generation.system_template,
            history_window=self._config.generation.history_window,
        )
        self._evaluator = ConditionEvaluator()
        self._machine = StepMachine(self._evaluator)
        self._route_selector = RouteSelector(
            llm_provider,
            self._prompt_builder,
            evaluator=self._evaluator,
            config=self._config.routing,
            observations=observations,
        )
        self._step_selector = StepSelector(llm_provider, self._prompt_builder)
        self._extractor = DataExtractor(llm_provider, self._prompt_builder)
        self._tool_executor = ToolExecutor(
            tools or {},
            data_store=self._sessions.data_store,
            context_hooks=context_hooks,
        )
        self._generator = ResponseGenerator(llm_provider, self._config.generation)

    @property
    def routes(self) -> list[Route]:
        return list(self._routes)

    @property
    def session_manager(self) -> SessionManager:
        return self._sessions

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def process_turn(
        self,
        session: Session,
        message: str | None = None,
        *,
        context: dict[str, Any] | None = None,
        message_id: str | None = None,
        user_name: str | None = None,
    ) -> TurnResult:
        """Process one turn and return its result.

        Args:
            session: Session value at turn start (left untouched)
            message: New user message, if any
            context: External context for this turn
            message_id: Id making a retried user message idempotent
            user_name: Optional speaker name for the user message
        """
        turn_id = uuid4().hex
        start_time = time.perf_counter()
        bind_turn_context(session_id=session.id, turn_id=turn_id)
        state: _TurnState | None = None

        try:
            logger.info("processing_turn", route_id=session.current_route_id)
            state = await self._begin(session, message, context, message_id, user_name)
            await self._run_preparation(state)
            if state.error is not None:
                return self._failed_result(turn_id, state, start_time)

            await self._run_routing(state)
            if state.error is not None:
                return self._failed_result(turn_id, state, start_time)

            phase_start = self._phase_start()
            prompt_messages, collect_schema = await self._build_response_prompt(state)
            generation = await self._generator.generate(
                prompt_messages,
                collect_schema,
                tools=self._tool_executor.definitions(),
                call_tool=self._tool_caller(state),
            )
            state.session = await self._finish(state, generation.message, generation.extracted)
            self._record_timing(state, TurnPhase.RESPONSE, phase_start)

            total_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "turn_processed",
                route_id=state.session.current_route_id,
                step_id=state.session.current_step_id,
                is_route_complete=state.completing,
                total_time_ms=total_ms,
            )
            return TurnResult(
                turn_id=turn_id,
                message=generation.message,
                session=state.session,
                context=state.context,
                is_route_complete=state.completing,
                tool_results=state.tool_results,
                routing=state.selection,
                usage=generation.usage,
                timings=state.timings,
                total_time_ms=total_ms,
            )
        except ConfigurationError as exc:
            logger.error("turn_configuration_error", error=str(exc))
            return TurnResult(
                turn_id=turn_id,
                session=session,
                context=dict(context or {}),
                error=TurnError(kind=TurnErrorKind.CONFIGURATION, message=str(exc)),
                total_time_ms=(time.perf_counter() - start_time) * 1000,
            )
        except ProviderError as exc:
            if state is None:
                state = _TurnState(session=session, context=dict(context or {}))
            state.error = self._provider_error(exc)
            return self._failed_result(turn_id, state, start_time)
        except Exception as exc:  # noqa: BLE001
            logger.exception("turn_failed", error=str(exc))
            return TurnResult(
                turn_id=turn_id,
                session=session,
                context=dict(context or {}),
                error=TurnError(kind=TurnErrorKind.INTERNAL, message=str(exc)),
                total_time_ms=(time.perf_counter() - start_time) * 1000,
            )
        finally:
            clear_turn_context("session_id", "turn_id")

    async def stream_turn(
        self,
        session: Session,
        message: str | None = None,
        *,
        context: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
        message_id: str | None = None,
        user_name: str | None = None,
    ) -> AsyncIterator[TurnChunk]:
        """Process one turn, streaming the reply.

        Setting `cancel_event` stops the stream: the final chunk is marked
        cancelled and nothing extracted by the interrupted call is merged.
        """
        turn_id = uuid4().hex
        bind_turn_context(session_id=session.id, turn_id=turn_id)
        state: _TurnState | None = None
        accumulated = ""

        try:
            logger.info("processing_turn", route_id=session.current_route_id, streaming=True)
            state = await self._begin(session, message, context, message_id, user_name)
            await self._run_preparation(state)
            if state.error is not None:
                yield self._failed_chunk(state, accumulated)
                return

            await self._run_routing(state)
            if state.error is not None:
                yield self._failed_chunk(state, accumulated)
                return

            phase_start = self._phase_start()
            prompt_messages, collect_schema = await self._build_response_prompt(state)
            final = None
            cancelled_mid_stream = False
            stream = self._generator.stream(
                prompt_messages,
                collect_schema,
                tools=self._tool_executor.definitions(),
                call_tool=self._tool_caller(state),
            )
            try:
                async for chunk in stream:
                    if cancel_event is not None and cancel_event.is_set():
                        cancelled_mid_stream = True
                        break
                    if chunk.done:
                        final = chunk
                        break
                    accumulated = chunk.accumulated or accumulated + chunk.delta
                    yield TurnChunk(delta=chunk.delta, accumulated=accumulated)
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            if cancelled_mid_stream:
                logger.info("turn_cancelled", streamed_chars=len(accumulated))
                cancelled = CancelledTurnError("Turn cancelled by caller")
                state.error = TurnError(kind=TurnErrorKind.CANCELLED, message=str(cancelled))
                yield TurnChunk(
                    accumulated=accumulated,
                    done=True,
                    cancelled=True,
                    session=state.session,
                    context=state.context,
                    error=state.error,
                )
                return

            allowed = list(collect_schema.get("properties", {}))
            structured = final.structured if final is not None else None
            reply, extracted = split_structured(structured, accumulated, allowed)
            reply = accumulated or reply
            state.session = await self._finish(state, reply, extracted)
            self._record_timing(state, TurnPhase.RESPONSE, phase_start)

            logger.info(
                "turn_processed",
                route_id=state.session.current_route_id,
                step_id=state.session.current_step_id,
                is_route_complete=state.completing,
                streaming=True,
            )
            yield TurnChunk(
                accumulated=reply,
                done=True,
                is_route_complete=state.completing,
                session=state.session,
                context=state.context,
                usage=final.usage if final is not None else None,
            )
        except ConfigurationError as exc:
            logger.error("turn_configuration_error", error=str(exc))
            yield TurnChunk(
                accumulated=accumulated,
                done=True,
                session=session,
                context=dict(context or {}),
                error=TurnError(kind=TurnErrorKind.CONFIGURATION, message=str(exc)),
            )
        except ProviderError as exc:
            if state is None:
                state = _TurnState(session=session, context=dict(context or {}))
            state.error = self._provider_error(exc)
            yield self._failed_chunk(state, accumulated)
        except Exception as exc:  # noqa: BLE001
            logger.exception("turn_failed", error=str(exc))
            yield TurnChunk(
                accumulated=accumulated,
                done=True,
                session=session,
                context=dict(context or {}),
                error=TurnError(kind=TurnErrorKind.INTERNAL, message=str(exc)),
            )
        finally:
            clear_turn_context("session_id", "turn_id")

    # ------------------------------------------------------------------
    # Turn start
    # ------------------------------------------------------------------

    async def _begin(
        self,
        session: Session,
        message: str | None,
        context: dict[str, Any] | None,
        message_id: str | None,
        user_name: str | None,
    ) -> _TurnState:
        working = session
        if message is not None:
            working = self._sessions.add_message(
                working, MessageRole.USER, message, name=user_name, message_id=message_id
            )

        turn_context: dict[str, Any] = {}
        if self._context_provider is not None:
            provided = self._context_provider(working)
            if inspect.isawaitable(provided):
                provided = await provided
            turn_context.update(provided or {})
        turn_context.update(context or {})

        state = _TurnState(session=working, context=turn_context)

        pending = working.pending_transition
        if pending is not None:
            route = self._route_selector.resolve_transition(self._routes, pending)
            state.transition = pending
            state.session = self._sessions.consume_pending_transition(
                working, route, shared_data=self._shared_data
            )
            logger.info(
                "pending_transition_consumed",
                route_id=route.id,
                reason=pending.reason,
            )
        return state

    # ------------------------------------------------------------------
    # PREPARATION
    # ------------------------------------------------------------------

    async def _run_preparation(self, state: _TurnState) -> None:
        phase_start = self._phase_start()
        route = self._active_route(state.session)
        if not self._config.preparation.enabled or route is None:
            reason = "disabled" if route is not None else "no_active_route"
            self._record_timing(state, TurnPhase.PREPARATION, phase_start, skip_reason=reason)
            return

        await self._pre_extract(state, route)
        await self._run_tool_steps(state, route)
        self._record_timing(state, TurnPhase.PREPARATION, phase_start)

    async def _run_tool_steps(self, state: _TurnState, route: Route) -> None:
        """Execute the tool steps that lead from the current step pointer.

        Shares one `max_tool_steps` budget per turn. A failure sets
        `state.error` and leaves the pointer at the last completed step.
        """
        while state.tool_steps_run < self._config.preparation.max_tool_steps:
            resolution = await self._machine.resolve(
                route, state.session.current_step_id, self._template_context(state)
            )
            if not resolution.candidates:
                break
            step = resolution.candidates[0].step
            if not step.is_tool_step:
                break

            assert step.id is not None
            execution = await self._tool_executor.execute_step(
                step,
                data=state.session.data,
                context=state.context,
                session=state.session,
                schema=self._schema_for(route),
            )
            state.tool_steps_run += 1
            state.tool_results.extend(execution.tool_results)
            state.session = self._sessions.replace_data(state.session, execution.data)
            state.context = execution.context

            if execution.failed:
                error = ToolExecutionError(step.id, execution.errors)
                logger.warning(
                    "tool_step_failed",
                    route_id=route.id,
                    step_id=step.id,
                    errors=execution.errors,
                )
                state.error = TurnError(
                    kind=TurnErrorKind.TOOL,
                    message=str(error),
                    details={"step_id": step.id, "errors": execution.errors},
                )
                break

            state.session = self._sessions.enter_step(state.session, route, step.id)

    # ------------------------------------------------------------------
    # ROUTING
    # ------------------------------------------------------------------

    async def _run_routing(self, state: _TurnState) -> None:
        phase_start = self._phase_start()
        session = state.session
        current_route_id = None if session.is_route_complete else session.current_route_id

        selection = await self._route_selector.select(
            self._routes,
            self._template_context(state),
            pending_transition=state.transition,
            current_route_id=current_route_id,
        )
        state.selection = selection
        logger.info(
            "route_selection",
            outcome=selection.outcome.value,
            route_id=selection.route_id,
            reasoning=selection.reasoning,
        )

        if selection.disambiguation_needed or selection.route is None:
            self._record_timing(state, TurnPhase.ROUTING, phase_start)
            return

        route = selection.route
        state.route = route
        if route.id != session.current_route_id or session.is_route_complete:
            state.session = self._sessions.enter_route(
                session, route, shared_data=self._shared_data
            )
            await self._pre_extract(state, route)
            if self._config.preparation.enabled:
                await self._run_tool_steps(state, route)
                if state.error is not None:
                    self._record_timing(state, TurnPhase.ROUTING, phase_start)
                    return

        ctx = self._template_context(state)
        resolution = await self._machine.resolve(route, state.session.current_step_id, ctx)

        if resolution.is_route_complete:
            state.completing = True
            state.completion_transition = await self._resolve_on_complete(route, ctx)
        elif resolution.candidates:
            presentable = [c for c in resolution.candidates if not c.step.is_tool_step]
            if presentable:
                chosen = await self._step_selector.choose(
                    route, presentable, ctx, current_step=resolution.held_step
                )
                state.active_step = chosen.step
                state.commit_step_id = chosen.step_id
                state.step_conditions = chosen.ai_context_strings
            else:
                state.active_step = resolution.held_step
        else:
            state.active_step = resolution.held_step
            state.missing_required = resolution.missing_required

        logger.debug(
            "step_resolved",
            route_id=route.id,
            step_id=state.commit_step_id,
            held=state.commit_step_id is None and not state.completing,
            skipped=resolution.skipped,
        )
        self._record_timing(state, TurnPhase.ROUTING, phase_start)

    async def _resolve_on_complete(
        self, route: Route, ctx: TemplateContext
    ) -> PendingTransition | None:
        """Turn a route's `on_complete` into a pending transition.

        Raises:
            ConfigurationError: If the target is not a known route
        """
        target = route.on_complete
        if callable(target):
            target = target(ctx)
            if inspect.isawaitable(target):
                target = await target
        if target is None:
            return None

        condition = None
        if isinstance(target, RouteTransition):
            condition = target.condition
            target = target.target
        target_route = find_route(self._routes, str(target))
        if target_route is None:
            raise ConfigurationError(
                f"Route '{route.title}' on_complete targets unknown route '{target}'"
            )
        return PendingTransition(
            target_route_id=target_route.route_id,
            reason="route_complete",
            condition=condition,
        )

    # ------------------------------------------------------------------
    # RESPONSE
    # ------------------------------------------------------------------

    async def _build_response_prompt(
        self, state: _TurnState
    ) -> tuple[list[LLMMessage], dict[str, Any]]:
        route = state.route
        step = state.active_step
        selection = state.selection
        ctx = self._template_context(state)

        if state.completing or route is None:
            collect: list[str] = []
        elif state.missing_required:
            collect = list(state.missing_required)
        elif step is not None and not step.is_tool_step:
            collect = list(step.collect)
        else:
            collect = []
        state.collect_fields = collect

        schema = self._schema_for(route) if route is not None else self._agent_schema
        if schema is not None:
            collect_schema = schema.to_json_schema(only=collect)
            for name in collect:
                collect_schema["properties"].setdefault(name, {})
        else:
            collect_schema = {
                "type": "object",
                "properties": {name: {} for name in collect},
                "additionalProperties": False,
            }

        guidelines = list(self._agent.guidelines)
        terms = list(self._agent.terms)
        if route is not None:
            guidelines.extend(route.guidelines)
            terms.extend(route.terms)
        if step is not None:
            guidelines.extend(step.guidelines)

        rendered: list[RenderedGuideline] = []
        for guideline in guidelines:
            if not guideline.enabled:
                continue
            evaluation = await self._evaluator.evaluate_when(guideline.condition, ctx)
            if evaluation.programmatic_result:
                action = await render_text(guideline.action, ctx)
                rendered.append(
                    RenderedGuideline(when=evaluation.ai_context_strings, action=action or "")
                )

        disambiguation = None
        if selection is not None and selection.observation is not None:
            disambiguation = Disambiguation(
                description=selection.observation.description,
                routes=[r.title for r in selection.disambiguation_routes],
            )

        instructions = None
        if step is not None:
            instructions = await render_text(step.instructions, ctx) or step.description

        prompt = ResponsePromptInput(
            route=route,
            route_conditions=selection.ai_context_strings if selection else [],
            step=step if not state.completing else None,
            step_instructions=instructions,
            step_conditions=state.step_conditions,
            collect_schema=collect_schema,
            guidelines=rendered,
            terms=terms,
            directives=selection.response_directives if selection else [],
            completing=state.completing,
            end_prompt=route.end_prompt if route is not None else None,
            disambiguation=disambiguation,
            transition_condition=state.transition.condition if state.transition else None,
            context=state.context,
        )
        return self._prompt_builder.build_response_messages(state.session, prompt), collect_schema

    async def _finish(
        self, state: _TurnState, reply: str, extracted: dict[str, Any]
    ) -> Session:
        """Commit extraction, the step pointer and the reply."""
        session = state.session
        route = state.route

        if extracted and route is not None:
            allowed = {k: v for k, v in extracted.items() if k in state.collect_fields}
            if allowed:
                session, _ = await self._sessions.set_data(
                    session, allowed, self._schema_for(route)
                )

        if route is not None:
            if state.completing:
                session = self._sessions.complete_route(
                    session, route, state.completion_transition
                )
            elif state.commit_step_id is not None:
                session = self._sessions.enter_step(session, route, state.commit_step_id)

        if reply:
            session = self._sessions.add_message(
                session, MessageRole.ASSISTANT, reply, name=self._agent.name
            )
        return self._sessions.finish_turn(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _tool_caller(self, state: _TurnState) -> ToolCallback:
        """Run model-requested calls against the turn's data and context."""

        async def call_tool(call: ToolCall) -> str:
            route = state.route
            execution = await self._tool_executor.execute_call(
                call,
                data=state.session.data,
                context=state.context,
                session=state.session,
                step=state.active_step,
                schema=self._schema_for(route) if route is not None else self._agent_schema,
            )
            state.tool_results.append(execution.tool_result)
            state.session = self._sessions.replace_data(state.session, execution.data)
            state.context = execution.context
            return execution.feedback()

        return call_tool

    async def _pre_extract(self, state: _TurnState, route: Route) -> None:
        if not self._config.pre_extraction.enabled:
            return
        patch = await self._extractor.extract(route, state.session, self._schema_for(route))
        if patch:
            state.session, _ = await self._sessions.set_data(
                state.session, patch, self._schema_for(route)
            )

    @property
    def _shared_data(self) -> bool:
        return self._agent_schema is not None

    def _schema_for(self, route: Route) -> DataSchema | None:
        return route.data_schema or self._agent_schema

    def _active_route(self, session: Session) -> Route | None:
        if session.current_route_id is None or session.is_route_complete:
            return None
        route = find_route(self._routes, session.current_route_id)
        if route is None:
            raise ConfigurationError(
                f"Session route '{session.current_route_id}' is not a known route"
            )
        return route

    def _template_context(self, state: _TurnState) -> TemplateContext:
        return TemplateContext.from_session(state.session, state.context)

    def _provider_error(self, exc: ProviderError) -> TurnError:
        logger.error("provider_call_failed", error=str(exc), error_type=type(exc).__name__)
        return TurnError(
            kind=TurnErrorKind.PROVIDER,
            message=str(exc) or type(exc).__name__,
            details={"error_type": type(exc).__name__},
        )

    def _failed_result(self, turn_id: str, state: _TurnState, start_time: float) -> TurnResult:
        return TurnResult(
            turn_id=turn_id,
            message=self._config.generation.fallback_message or "",
            session=state.session,
            context=state.context,
            error=state.error,
            tool_results=state.tool_results,
            routing=state.selection,
            timings=state.timings,
            total_time_ms=(time.perf_counter() - start_time) * 1000,
        )

    def _failed_chunk(self, state: _TurnState, accumulated: str) -> TurnChunk:
        return TurnChunk(
            accumulated=accumulated or self._config.generation.fallback_message or "",
            done=True,
            session=state.session,
            context=state.context,
            error=state.error,
        )

    @staticmethod
    def _phase_start() -> tuple[datetime, float]:
        return datetime.now(UTC), time.perf_counter()

    @staticmethod
    def _record_timing(
        state: _TurnState,
        phase: TurnPhase,
        start: tuple[datetime, float],
        skip_reason: str | None = None,
    ) -> None:
        started_at, perf_start = start
        state.timings.append(
            PhaseTiming(
                phase=phase,
                started_at=started_at,
                ended_at=datetime.now(UTC),
                duration_ms=(time.perf_counter() - perf_start) * 1000,
                skipped=skip_reason is not None,
                skip_reason=skip_reason,
            )
        )
