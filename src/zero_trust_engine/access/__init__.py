"""Conditional access: policies, request context and the evaluation engine."""
from __future__ import annotations

from zero_trust_engine.access.engine import ConditionalAccessEngine
from zero_trust_engine.access.models import (
    ACTION_DECISIONS,
    AccessContext,
    AccessEvaluation,
    Condition,
    ConditionalAccessPolicy,
    Decision,
    Operator,
    PolicyMode,
)

__all__ = [
    "ACTION_DECISIONS",
    "AccessContext",
    "AccessEvaluation",
    "Condition",
    "ConditionalAccessEngine",
    "ConditionalAccessPolicy",
    "Decision",
    "Operator",
    "PolicyMode",
]
