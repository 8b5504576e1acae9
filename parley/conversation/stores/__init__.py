"""Persistence adapters for conversation state."""

from parley.conversation.store import MessageRepository, PersistenceAdapter, SessionRepository
from parley.conversation.stores.inmemory import (
    InMemoryMessageRepository,
    InMemoryPersistenceAdapter,
    InMemorySessionRepository,
)

__all__ = [
    "InMemoryMessageRepository",
    "InMemoryPersistenceAdapter",
    "InMemorySessionRepository",
    "MessageRepository",
    "PersistenceAdapter",
    "SessionRepository",
]
