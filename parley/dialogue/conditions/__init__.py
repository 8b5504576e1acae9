"""Condition parsing and evaluation for `when` / `skip_if` specs."""

from parley.dialogue.conditions.evaluator import (
    Condition,
    ConditionEvaluation,
    ConditionEvaluator,
    ConditionKind,
    GroupCondition,
    LiteralCondition,
    PredicateCondition,
    parse_condition,
)

__all__ = [
    "Condition",
    "ConditionEvaluation",
    "ConditionEvaluator",
    "ConditionKind",
    "GroupCondition",
    "LiteralCondition",
    "PredicateCondition",
    "parse_condition",
]
