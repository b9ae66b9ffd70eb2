"""Just-in-time elevated access: grants, admission policy and expiry sweep."""
from __future__ import annotations

from zero_trust_engine.jit.coordinator import JITAccessCoordinator
from zero_trust_engine.jit.models import ACCESS_TYPE_PERMISSIONS, AccessType, JITGrant, JITStatus
from zero_trust_engine.jit.policy import MAX_DURATION_HOURS, MIN_DURATION_HOURS, JITPolicy
from zero_trust_engine.jit.sweeper import JITExpirySweeper

__all__ = [
    "ACCESS_TYPE_PERMISSIONS",
    "AccessType",
    "JITAccessCoordinator",
    "JITExpirySweeper",
    "JITGrant",
    "JITPolicy",
    "JITStatus",
    "MAX_DURATION_HOURS",
    "MIN_DURATION_HOURS",
]
