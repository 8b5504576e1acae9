"""Template context handed to predicates, prompt callables and tools."""

from dataclasses import dataclass, field
from typing import Any

from parley.conversation.models import Message, Session


@dataclass(frozen=True)
class TemplateContext:
    """Read-only view of the turn state.

    Predicates receive this and must not mutate it.
    """

    context: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    session: Session | None = None
    history: list[Message] = field(default_factory=list)

    @classmethod
    def from_session(
        cls, session: Session, context: dict[str, Any] | None = None
    ) -> "TemplateContext":
        return cls(
            context=dict(context or {}),
            data=dict(session.data),
            session=session,
            history=list(session.history),
        )
