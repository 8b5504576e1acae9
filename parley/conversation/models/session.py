"""Session models for conversation state."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

END_ROUTE = "END_ROUTE"


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(UTC)


class SessionStatus(str, Enum):
    """Session lifecycle states."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class MessageRole(str, Enum):
    """Speaker of a history message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class Message(BaseModel):
    """One entry of the ordered conversation history."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex, description="Message identifier")
    role: MessageRole = Field(..., description="Who produced the message")
    content: str = Field(..., description="Message text")
    name: str | None = Field(default=None, description="Optional speaker name")
    timestamp: datetime = Field(default_factory=utc_now, description="When it was added")


class PendingTransition(BaseModel):
    """A hand-off to another route, recorded on completion and resolved next turn."""

    model_config = ConfigDict(frozen=True)

    target_route_id: str = Field(..., description="Route to enter at the next turn start")
    reason: str = Field(default="route_complete", description="What triggered the hand-off")
    condition: str | None = Field(
        default=None, description="Advisory text shown to the model after the hand-off"
    )


class RouteVisit(BaseModel):
    """Record of a route entry and exit."""

    route_id: str
    route_title: str
    entered_at: datetime = Field(default_factory=utc_now)
    exited_at: datetime | None = None
    completed: bool = False


class Session(BaseModel):
    """Runtime state of one conversation.

    Sessions are treated as values: the turn pipeline receives one and
    returns an updated copy. Only SessionManager changes fields.
    """

    model_config = ConfigDict(frozen=False, validate_assignment=True)

    id: str = Field(default_factory=lambda: uuid4().hex, description="Session identifier")
    user_id: str | None = Field(default=None, description="Owning user, if known")
    agent_name: str | None = Field(default=None, description="Agent serving the session")
    status: SessionStatus = Field(default=SessionStatus.ACTIVE)

    history: list[Message] = Field(default_factory=list, description="Ordered messages")
    current_route_id: str | None = Field(default=None, description="Active route")
    current_step_id: str | None = Field(
        default=None, description="Step of the active route last presented or executed"
    )
    data: dict[str, Any] = Field(default_factory=dict, description="Collected data record")
    data_by_route: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Stashed data of routes left before completion"
    )
    route_history: list[RouteVisit] = Field(default_factory=list)
    pending_transition: PendingTransition | None = Field(default=None)

    turn_count: int = Field(default=0, description="Completed turns")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_route_complete(self) -> bool:
        """Whether the active route has reached its terminal marker."""
        return self.current_route_id is not None and self.current_step_id == END_ROUTE

    @property
    def last_user_message(self) -> Message | None:
        for message in reversed(self.history):
            if message.role == MessageRole.USER:
                return message
        return None

    def snapshot(self) -> "Session":
        """Deep copy, so callers can keep the turn-start value."""
        return self.model_copy(deep=True)
