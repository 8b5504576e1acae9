"""Persistence adapter interfaces.

The engine calls these only at turn-boundary checkpoints, never mid-turn.
"""

from abc import ABC, abstractmethod

from parley.conversation.models import (
    CollectedData,
    MessageRecord,
    SessionRecord,
    SessionStatus,
)


class SessionRepository(ABC):
    """Abstract interface for session records."""

    @abstractmethod
    async def create(self, record: SessionRecord) -> SessionRecord:
        """Store a new session record."""

    @abstractmethod
    async def find_by_id(self, session_id: str) -> SessionRecord | None:
        """Get a session record by ID."""

    @abstractmethod
    async def update(self, record: SessionRecord) -> SessionRecord | None:
        """Replace an existing record. Returns None if it does not exist."""

    @abstractmethod
    async def update_collected_data(
        self, session_id: str, collected_data: CollectedData
    ) -> SessionRecord | None:
        """Replace the collected data of a session."""

    @abstractmethod
    async def update_route_step(
        self, session_id: str, route_id: str | None, step_id: str | None
    ) -> SessionRecord | None:
        """Move the route/step pointers of a session."""

    @abstractmethod
    async def update_status(
        self, session_id: str, status: SessionStatus
    ) -> SessionRecord | None:
        """Change the lifecycle status of a session."""

    @abstractmethod
    async def find_by_user_id(self, user_id: str, *, limit: int = 100) -> list[SessionRecord]:
        """List sessions of a user, most recently updated first."""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete a session record."""


class MessageRepository(ABC):
    """Abstract interface for history messages."""

    @abstractmethod
    async def create(self, record: MessageRecord) -> MessageRecord:
        """Store a message."""

    @abstractmethod
    async def find_by_session_id(self, session_id: str) -> list[MessageRecord]:
        """List a session's messages in creation order."""

    @abstractmethod
    async def delete_by_session_id(self, session_id: str) -> int:
        """Delete a session's messages, returning how many were removed."""


class PersistenceAdapter(ABC):
    """Bundle of repositories plus connection lifecycle."""

    sessions: SessionRepository
    messages: MessageRepository

    async def initialize(self) -> None:  # noqa: B027
        """Open connections or create tables. Optional."""

    async def disconnect(self) -> None:  # noqa: B027
        """Release connections. Optional."""
