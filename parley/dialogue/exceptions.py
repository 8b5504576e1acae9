"""Exceptions raised by the dialogue engine."""


class ParleyError(Exception):
    """Base exception for parley errors."""


class ConfigurationError(ParleyError):
    """Agent, route or transition configuration is inconsistent.

    Raised at agent build time, or when a transition target cannot be
    resolved. Never recovered silently.
    """


class ToolExecutionError(ParleyError):
    """One or more tools of a tool step failed."""

    def __init__(self, step_id: str, errors: dict[str, str]) -> None:
        self.step_id = step_id
        self.errors = errors
        failed = ", ".join(sorted(errors))
        super().__init__(f"Tool step '{step_id}' failed: {failed}")


class CancelledTurnError(ParleyError):
    """The caller cancelled the turn while a response was being generated."""
