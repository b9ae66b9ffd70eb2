"""JITPolicy — admission rules for just-in-time access requests.

The hard duration bounds (1 to 72 hours) are not configurable; a policy
may only tighten them.
"""
from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from zero_trust_engine.jit.models import AccessType
from zero_trust_engine.permissions.model import Role

MIN_DURATION_HOURS = 1
MAX_DURATION_HOURS = 72


class JITPolicy(BaseModel):
    """Configurable JIT admission policy.

    Parameters
    ----------
    max_duration_hours:
        Longest grant any access type may request.
    max_duration_by_type:
        Per-access-type ceiling, applied on top of ``max_duration_hours``.
    approval_required:
        Whether requests start ``Pending`` by default.
    min_justification_length:
        Minimum number of non-blank characters in the justification.
    allowed_roles:
        Roles allowed to request each access type. Missing types allow all roles.
    min_trust_score:
        Identities below this trust score are rejected.
    """

    max_duration_hours: int = Field(default=MAX_DURATION_HOURS, ge=MIN_DURATION_HOURS, le=MAX_DURATION_HOURS)
    max_duration_by_type: dict[AccessType, int] = Field(
        default_factory=lambda: {
            AccessType.EMERGENCY: 8,
            AccessType.ADMINISTRATIVE: 24,
            AccessType.MAINTENANCE: 24,
        }
    )
    approval_required: bool = True
    min_justification_length: int = Field(default=10, ge=0)
    allowed_roles: dict[AccessType, list[Role]] = Field(
        default_factory=lambda: {
            AccessType.ADMINISTRATIVE: [Role.ADMINISTRATOR],
            AccessType.MAINTENANCE: [Role.ADMINISTRATOR, Role.SYSTEM_ACCOUNT],
            AccessType.EVIDENCE_REVIEW: [
                Role.FORENSIC_INVESTIGATOR,
                Role.DFIR_ANALYST,
                Role.INCIDENT_RESPONDER,
                Role.ADMINISTRATOR,
            ],
        }
    )
    min_trust_score: float = Field(default=0.0, ge=0.0, le=100.0)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _check_type_ceilings(self) -> "JITPolicy":
        for access_type, hours in self.max_duration_by_type.items():
            if not MIN_DURATION_HOURS <= hours <= MAX_DURATION_HOURS:
                raise ValueError(
                    f"max_duration_by_type[{access_type.value}] must be within "
                    f"[{MIN_DURATION_HOURS}, {MAX_DURATION_HOURS}], got {hours}"
                )
        return self

    def duration_ceiling(self, access_type: AccessType) -> int:
        """Return the longest duration allowed for *access_type*."""
        return min(self.max_duration_hours, self.max_duration_by_type.get(access_type, MAX_DURATION_HOURS))

    def tightened(self, max_duration_hours: int, approval_required: bool | None = None) -> "JITPolicy":
        """Return a copy whose ceilings never exceed *max_duration_hours*."""
        ceiling = min(self.max_duration_hours, max_duration_hours)
        return self.model_copy(
            update={
                "max_duration_hours": ceiling,
                "max_duration_by_type": {
                    t: min(h, ceiling) for t, h in self.max_duration_by_type.items()
                },
                "approval_required": (
                    self.approval_required if approval_required is None else approval_required
                ),
            }
        )
