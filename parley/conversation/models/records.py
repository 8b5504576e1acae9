"""Persistence records exchanged with persistence adapters.

Records are flat snapshots of a session taken at turn checkpoints; adapters
never see the live Session value.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from parley.conversation.models.session import (
    Message,
    MessageRole,
    PendingTransition,
    RouteVisit,
    Session,
    SessionStatus,
    utc_now,
)


class CollectedData(BaseModel):
    """Collected data and routing bookkeeping stored with a session."""

    data: dict[str, Any] = Field(default_factory=dict)
    data_by_route: dict[str, dict[str, Any]] = Field(default_factory=dict)
    route_history: list[RouteVisit] = Field(default_factory=list)
    pending_transition: PendingTransition | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionRecord(BaseModel):
    """Stored form of a session."""

    id: str
    user_id: str | None = None
    agent_name: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    current_route: str | None = None
    current_step: str | None = None
    collected_data: CollectedData = Field(default_factory=CollectedData)
    message_count: int = 0
    turn_count: int = 0
    last_message_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class MessageRecord(BaseModel):
    """Stored form of a history message."""

    id: str
    session_id: str
    role: MessageRole
    content: str
    name: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


def session_to_record(session: Session) -> SessionRecord:
    last = session.history[-1].timestamp if session.history else None
    return SessionRecord(
        id=session.id,
        user_id=session.user_id,
        agent_name=session.agent_name,
        status=session.status,
        current_route=session.current_route_id,
        current_step=session.current_step_id,
        collected_data=CollectedData(
            data=dict(session.data),
            data_by_route={k: dict(v) for k, v in session.data_by_route.items()},
            route_history=list(session.route_history),
            pending_transition=session.pending_transition,
            metadata=dict(session.metadata),
        ),
        message_count=len(session.history),
        turn_count=session.turn_count,
        last_message_at=last,
        completed_at=session.updated_at if session.status == SessionStatus.COMPLETED else None,
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


def record_to_session(record: SessionRecord, messages: list[MessageRecord]) -> Session:
    collected = record.collected_data
    return Session(
        id=record.id,
        user_id=record.user_id,
        agent_name=record.agent_name,
        status=record.status,
        history=[
            Message(
                id=m.id,
                role=m.role,
                content=m.content,
                name=m.name,
                timestamp=m.created_at,
            )
            for m in sorted(messages, key=lambda m: m.created_at)
        ],
        current_route_id=record.current_route,
        current_step_id=record.current_step,
        data=dict(collected.data),
        data_by_route={k: dict(v) for k, v in collected.data_by_route.items()},
        route_history=list(collected.route_history),
        pending_transition=collected.pending_transition,
        turn_count=record.turn_count,
        metadata=dict(collected.metadata),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def message_to_record(session_id: str, message: Message) -> MessageRecord:
    return MessageRecord(
        id=message.id,
        session_id=session_id,
        role=message.role,
        content=message.content,
        name=message.name,
        created_at=message.timestamp,
    )
