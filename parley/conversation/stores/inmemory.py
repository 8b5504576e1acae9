"""In-memory persistence adapter."""

from parley.conversation.models import (
    CollectedData,
    MessageRecord,
    SessionRecord,
    SessionStatus,
    utc_now,
)
from parley.conversation.store import MessageRepository, PersistenceAdapter, SessionRepository


class InMemorySessionRepository(SessionRepository):
    """Dict-backed session records for testing and development.

    Uses linear scans for queries. Not suitable for production use.
    """

    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}

    async def create(self, record: SessionRecord) -> SessionRecord:
        self._records[record.id] = record.model_copy(deep=True)
        return record

    async def find_by_id(self, session_id: str) -> SessionRecord | None:
        record = self._records.get(session_id)
        return record.model_copy(deep=True) if record else None

    async def update(self, record: SessionRecord) -> SessionRecord | None:
        if record.id not in self._records:
            return None
        self._records[record.id] = record.model_copy(deep=True)
        return record

    async def update_collected_data(
        self, session_id: str, collected_data: CollectedData
    ) -> SessionRecord | None:
        return self._patch(session_id, collected_data=collected_data.model_copy(deep=True))

    async def update_route_step(
        self, session_id: str, route_id: str | None, step_id: str | None
    ) -> SessionRecord | None:
        return self._patch(session_id, current_route=route_id, current_step=step_id)

    async def update_status(
        self, session_id: str, status: SessionStatus
    ) -> SessionRecord | None:
        completed_at = utc_now() if status == SessionStatus.COMPLETED else None
        return self._patch(session_id, status=status, completed_at=completed_at)

    async def find_by_user_id(self, user_id: str, *, limit: int = 100) -> list[SessionRecord]:
        matches = [r for r in self._records.values() if r.user_id == user_id]
        matches.sort(key=lambda r: r.updated_at, reverse=True)
        return [r.model_copy(deep=True) for r in matches[:limit]]

    async def delete(self, session_id: str) -> bool:
        return self._records.pop(session_id, None) is not None

    def _patch(self, session_id: str, **changes: object) -> SessionRecord | None:
        record = self._records.get(session_id)
        if record is None:
            return None
        updated = record.model_copy(update={**changes, "updated_at": utc_now()})
        self._records[session_id] = updated
        return updated.model_copy(deep=True)


class InMemoryMessageRepository(MessageRepository):
    """Dict-backed message records grouped by session."""

    def __init__(self) -> None:
        self._messages: dict[str, list[MessageRecord]] = {}

    async def create(self, record: MessageRecord) -> MessageRecord:
        self._messages.setdefault(record.session_id, []).append(record)
        return record

    async def find_by_session_id(self, session_id: str) -> list[MessageRecord]:
        return sorted(self._messages.get(session_id, []), key=lambda m: m.created_at)

    async def delete_by_session_id(self, session_id: str) -> int:
        return len(self._messages.pop(session_id, []))


class InMemoryPersistenceAdapter(PersistenceAdapter):
    """Persistence adapter keeping everything in process memory."""

    def __init__(self) -> None:
        self.sessions = InMemorySessionRepository()
        self.messages = InMemoryMessageRepository()
