"""Step state machine."""

from parley.dialogue.steps.machine import StepCandidate, StepMachine, StepResolution

__all__ = ["StepCandidate", "StepMachine", "StepResolution"]
