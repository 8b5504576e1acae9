"""Test factories for creating test data."""

from tests.factories.dialogue import RouteFactory, SessionFactory, StepFactory, ToolFactory

__all__ = [
    "RouteFactory",
    "SessionFactory",
    "StepFactory",
    "ToolFactory",
]
