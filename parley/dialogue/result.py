"""Turn result models.

Contains the TurnResult returned by the pipeline, the chunks of a
streamed turn, and per-phase timing records.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from parley.conversation.models import Session
from parley.dialogue.execution import ToolResult
from parley.dialogue.routing import RouteSelection
from parley.providers.llm import TokenUsage


class TurnPhase(str, Enum):
    """Phases of a turn, in execution order."""

    PREPARATION = "preparation"
    ROUTING = "routing"
    RESPONSE = "response"


class PhaseTiming(BaseModel):
    """Timing information for a single phase."""

    phase: TurnPhase
    started_at: datetime
    ended_at: datetime
    duration_ms: float = Field(ge=0)
    skipped: bool = False
    skip_reason: str | None = None


class TurnErrorKind(str, Enum):
    """Category of a turn-level error."""

    TOOL = "tool"
    PROVIDER = "provider"
    CONFIGURATION = "configuration"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


class TurnError(BaseModel):
    """Error surfaced on a turn result instead of being raised."""

    kind: TurnErrorKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class TurnResult(BaseModel):
    """Outcome of one turn.

    `session` is the updated session value the caller threads into the
    next turn; `context` likewise for the external context.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    turn_id: str = Field(default_factory=lambda: uuid4().hex)
    message: str = Field(default="", description="Reply shown to the user")
    session: Session
    context: dict[str, Any] = Field(default_factory=dict)
    is_route_complete: bool = False
    error: TurnError | None = None
    tool_results: list[ToolResult] = Field(default_factory=list)
    routing: RouteSelection | None = None
    usage: TokenUsage | None = None
    timings: list[PhaseTiming] = Field(default_factory=list)
    total_time_ms: float = Field(default=0.0, ge=0)

    @property
    def route_id(self) -> str | None:
        return self.session.current_route_id

    @property
    def step_id(self) -> str | None:
        return self.session.current_step_id


class TurnChunk(BaseModel):
    """One fragment of a streamed turn. The last chunk has done=True.

    Only the final chunk carries the session, usage and error.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    delta: str = ""
    accumulated: str = ""
    done: bool = False
    cancelled: bool = False
    is_route_complete: bool = False
    session: Session | None = None
    context: dict[str, Any] | None = None
    usage: TokenUsage | None = None
    error: TurnError | None = None
