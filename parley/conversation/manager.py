"""Session manager: the only component that writes session fields.

Operations take a Session and return an updated copy, so the turn
pipeline can keep the turn-start value untouched until it succeeds.
Persistence is touched only by `load`, `save` and `delete`, which callers
use at turn boundaries.
"""

from typing import Any

from parley.conversation.models import (
    END_ROUTE,
    Message,
    MessageRole,
    PendingTransition,
    RouteVisit,
    Session,
    SessionStatus,
    message_to_record,
    record_to_session,
    session_to_record,
    utc_now,
)
from parley.conversation.store import PersistenceAdapter
from parley.dialogue.data import DataPatchResult, DataStore
from parley.dialogue.exceptions import ConfigurationError
from parley.dialogue.models import DataSchema, Route
from parley.observability.logging import get_logger

logger = get_logger(__name__)


class SessionManager:
    """Creates, loads, mutates and checkpoints sessions."""

    def __init__(
        self,
        persistence: PersistenceAdapter | None = None,
        data_store: DataStore | None = None,
        agent_name: str | None = None,
    ) -> None:
        self._persistence = persistence
        self._data_store = data_store or DataStore()
        self._agent_name = agent_name

    @property
    def data_store(self) -> DataStore:
        return self._data_store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, session_id: str | None = None, user_id: str | None = None) -> Session:
        fields: dict[str, Any] = {"user_id": user_id, "agent_name": self._agent_name}
        if session_id is not None:
            fields["id"] = session_id
        session = Session(**fields)
        logger.debug("session_created", session_id=session.id)
        return session

    async def load(self, session_id: str) -> Session | None:
        if self._persistence is None:
            return None
        record = await self._persistence.sessions.find_by_id(session_id)
        if record is None:
            return None
        messages = await self._persistence.messages.find_by_session_id(session_id)
        return record_to_session(record, messages)

    async def get_or_create(
        self, session_id: str | None = None, user_id: str | None = None
    ) -> Session:
        """Load the session if it is persisted, otherwise start a new one."""
        if session_id is not None:
            session = await self.load(session_id)
            if session is not None:
                return session
        return self.create(session_id=session_id, user_id=user_id)

    async def save(self, session: Session) -> None:
        """Checkpoint a session and any history messages not yet stored.

        Stored messages missing from `session.history` (after `reset`,
        `clear_history` or `set_history`) are purged.
        """
        if self._persistence is None:
            return
        sessions = self._persistence.sessions
        record = session_to_record(session)
        if await sessions.find_by_id(session.id) is None:
            await sessions.create(record)
        else:
            await sessions.update_route_step(
                session.id, session.current_route_id, session.current_step_id
            )
            await sessions.update_collected_data(session.id, record.collected_data)
            await sessions.update(record)

        messages = self._persistence.messages
        stored = {m.id for m in await messages.find_by_session_id(session.id)}
        current = {m.id for m in session.history}
        if not stored <= current:
            # History was reset or rewritten; the stored log is rebuilt from it.
            await messages.delete_by_session_id(session.id)
            stored = set()
        for message in session.history:
            if message.id not in stored:
                await messages.create(message_to_record(session.id, message))

        logger.debug(
            "session_saved",
            session_id=session.id,
            route_id=session.current_route_id,
            step_id=session.current_step_id,
        )

    async def delete(self, session_id: str) -> bool:
        if self._persistence is None:
            return False
        await self._persistence.messages.delete_by_session_id(session_id)
        return await self._persistence.sessions.delete(session_id)

    def reset(self, session: Session, preserve_history: bool = False) -> Session:
        """Clear routing state and data, optionally keeping the history."""
        updated = self.create(session_id=session.id, user_id=session.user_id)
        if preserve_history:
            updated.history = list(session.history)
        return updated

    def abandon(self, session: Session) -> Session:
        return self._update(session, status=SessionStatus.ABANDONED)

    def finish_turn(self, session: Session) -> Session:
        return self._update(session, turn_count=session.turn_count + 1)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def add_message(
        self,
        session: Session,
        role: MessageRole | str,
        content: str,
        name: str | None = None,
        message_id: str | None = None,
    ) -> Session:
        """Append a message. Re-adding a message id already present is a no-op."""
        if message_id is not None and any(m.id == message_id for m in session.history):
            return session
        fields: dict[str, Any] = {"role": MessageRole(role), "content": content, "name": name}
        if message_id is not None:
            fields["id"] = message_id
        return self._update(session, history=[*session.history, Message(**fields)])

    def get_history(self, session: Session) -> list[Message]:
        return list(session.history)

    def set_history(self, session: Session, history: list[Message]) -> Session:
        return self._update(session, history=list(history))

    def clear_history(self, session: Session) -> Session:
        return self._update(session, history=[])

    # ------------------------------------------------------------------
    # Collected data
    # ------------------------------------------------------------------

    def get_data(self, session: Session) -> dict[str, Any]:
        return dict(session.data)

    async def set_data(
        self,
        session: Session,
        patch: dict[str, Any],
        schema: DataSchema | None = None,
    ) -> tuple[Session, DataPatchResult]:
        """Merge a patch through the data store and its hooks."""
        result = await self._data_store.commit(session.data, patch, schema)
        if not result.changed:
            return session, result
        return self._update(session, data=result.data), result

    def replace_data(self, session: Session, data: dict[str, Any]) -> Session:
        """Store data already validated by the data store (e.g. by a tool step)."""
        return self._update(session, data=dict(data))

    def clear_data(self, session: Session) -> Session:
        return self._update(session, data={})

    # ------------------------------------------------------------------
    # Routes, steps and transitions
    # ------------------------------------------------------------------

    def enter_route(self, session: Session, route: Route, shared_data: bool = False) -> Session:
        """Make `route` active with no current step.

        Route-scoped data of the route being left is stashed unless that route
        completed; the entered route resumes its stashed data, or starts from
        its initial data. With `shared_data` the record carries over as is.
        """
        if session.current_route_id == route.id and not session.is_route_complete:
            return session

        now = utc_now()
        data_by_route = dict(session.data_by_route)
        if session.current_route_id is not None and not shared_data:
            if session.is_route_complete:
                data_by_route.pop(session.current_route_id, None)
            else:
                data_by_route[session.current_route_id] = dict(session.data)

        history = [visit.model_copy() for visit in session.route_history]
        if history and history[-1].exited_at is None:
            history[-1].exited_at = now

        if shared_data:
            data = {**route.initial_data, **session.data}
        else:
            data = {**route.initial_data, **data_by_route.pop(route.route_id, {})}

        history.append(RouteVisit(route_id=route.route_id, route_title=route.title, entered_at=now))
        logger.info(
            "route_entered",
            session_id=session.id,
            route_id=route.id,
            previous_route_id=session.current_route_id,
        )
        return self._update(
            session,
            current_route_id=route.id,
            current_step_id=None,
            data=data,
            data_by_route=data_by_route,
            route_history=history,
            status=SessionStatus.ACTIVE,
        )

    def enter_step(self, session: Session, route: Route, step_id: str) -> Session:
        """Move the pointer to a step of the active route (or END_ROUTE).

        Raises:
            ConfigurationError: If the step does not belong to the active route
        """
        if session.current_route_id != route.id:
            raise ConfigurationError(
                f"Route '{route.id}' is not the active route of session '{session.id}'"
            )
        if step_id != END_ROUTE and route.get_step(step_id) is None:
            raise ConfigurationError(f"Step '{step_id}' does not belong to route '{route.id}'")
        if session.current_step_id == step_id:
            return session
        logger.debug("step_entered", session_id=session.id, route_id=route.id, step_id=step_id)
        return self._update(session, current_step_id=step_id)

    def complete_route(
        self,
        session: Session,
        route: Route,
        transition: PendingTransition | None = None,
    ) -> Session:
        """Move to the terminal marker and queue the hand-off, if any.

        Without a hand-off the session is marked completed.
        """
        session = self.enter_step(session, route, END_ROUTE)
        history = [visit.model_copy() for visit in session.route_history]
        if history and history[-1].route_id == route.id:
            history[-1].completed = True
        status = SessionStatus.ACTIVE if transition is not None else SessionStatus.COMPLETED
        logger.info(
            "route_completed",
            session_id=session.id,
            route_id=route.id,
            next_route_id=transition.target_route_id if transition else None,
        )
        return self._update(
            session,
            route_history=history,
            pending_transition=transition,
            status=status,
        )

    def record_pending_transition(
        self, session: Session, transition: PendingTransition | None
    ) -> Session:
        """Queue (or clear, with None) the route the next turn starts in."""
        return self._update(session, pending_transition=transition)

    def consume_pending_transition(
        self, session: Session, route: Route, shared_data: bool = False
    ) -> Session:
        """Clear the pending hand-off and enter its target route."""
        cleared = self._update(session, pending_transition=None)
        return self.enter_route(cleared, route, shared_data=shared_data)

    def _update(self, session: Session, **changes: Any) -> Session:
        updated = session.model_copy(deep=True)
        for name, value in changes.items():
            setattr(updated, name, value)
        updated.updated_at = utc_now()
        return updated
