"""Parley: a route and step dialogue engine for conversational agents."""

from parley.agent import Agent
from parley.conversation.models import Message, Session, SessionStatus
from parley.dialogue.models import (
    END_ROUTE,
    Guideline,
    Observation,
    Route,
    RouteTransition,
    Step,
    Term,
)
from parley.dialogue.execution import Tool, ToolOutput
from parley.dialogue.result import TurnChunk, TurnResult

__all__ = [
    "Agent",
    "END_ROUTE",
    "Guideline",
    "Message",
    "Observation",
    "Route",
    "RouteTransition",
    "Session",
    "SessionStatus",
    "Step",
    "Term",
    "Tool",
    "ToolOutput",
    "TurnChunk",
    "TurnResult",
]
