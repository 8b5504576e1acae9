"""Conversation domain models."""

from parley.conversation.models.records import (
    CollectedData,
    MessageRecord,
    SessionRecord,
    message_to_record,
    record_to_session,
    session_to_record,
)
from parley.conversation.models.session import (
    END_ROUTE,
    Message,
    MessageRole,
    PendingTransition,
    RouteVisit,
    Session,
    SessionStatus,
    utc_now,
)

__all__ = [
    "END_ROUTE",
    "CollectedData",
    "Message",
    "MessageRecord",
    "MessageRole",
    "PendingTransition",
    "RouteVisit",
    "Session",
    "SessionRecord",
    "SessionStatus",
    "message_to_record",
    "record_to_session",
    "session_to_record",
    "utc_now",
]
