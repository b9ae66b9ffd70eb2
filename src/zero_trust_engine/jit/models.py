"""JIT grant record and access-type permission deltas."""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum

from zero_trust_engine.errors import ValidationError
from zero_trust_engine.permissions.model import Permission, permission_set


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _ts(value: datetime.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: object) -> datetime.datetime | None:
    if value in (None, ""):
        return None
    return datetime.datetime.fromisoformat(str(value))


class JITStatus(str, Enum):
    """States of the JIT grant state machine.

    ``APPROVED`` is transient: an approval moves a pending grant straight
    on to ``GRANTED`` once it is activated.
    """

    PENDING = "Pending"
    APPROVED = "Approved"
    DENIED = "Denied"
    GRANTED = "Granted"
    EXPIRED = "Expired"
    REVOKED = "Revoked"

    @property
    def is_terminal(self) -> bool:
        return self in (JITStatus.DENIED, JITStatus.EXPIRED, JITStatus.REVOKED)


class AccessType(str, Enum):
    """Kinds of elevated access that can be requested."""

    EMERGENCY = "Emergency"
    INVESTIGATION = "Investigation"
    EVIDENCE_REVIEW = "EvidenceReview"
    MAINTENANCE = "Maintenance"
    ADMINISTRATIVE = "Administrative"

    @classmethod
    def parse(cls, value: "str | AccessType") -> "AccessType":
        if isinstance(value, AccessType):
            return value
        for member in cls:
            if value.strip().lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValidationError(f"Unknown access type {value!r}.")


# Permissions added to the identity's effective set for each access type.
ACCESS_TYPE_PERMISSIONS: dict[AccessType, frozenset[str]] = {
    AccessType.EMERGENCY: frozenset(
        {"VelociraptorAdmin", "HuntManage", "ClientControl", "ArtifactCollection", "EvidenceExport"}
    ),
    AccessType.INVESTIGATION: frozenset(
        {"ArtifactCollection", "HuntWrite", "HuntManage", "EvidenceAccess", "ClientControl"}
    ),
    AccessType.EVIDENCE_REVIEW: frozenset({"EvidenceAccess", "EvidenceExport", "DataAnalysis"}),
    AccessType.MAINTENANCE: frozenset({"ServerConfigure", "ServiceControl", "VelociraptorWrite"}),
    AccessType.ADMINISTRATIVE: frozenset({"VelociraptorAdmin", "UserManage", "ServerConfigure"}),
}


@dataclass
class JITGrant:
    """A time-boxed elevated-access request and its lifecycle.

    Parameters
    ----------
    request_id:
        UUID of the request.
    identity_id:
        The identity receiving the access.
    access_type:
        Kind of access; selects the base permission delta.
    justification:
        Free-text business reason.
    duration_hours:
        Requested duration, 1 to 72 hours.
    permissions:
        Permission delta granted while the grant is active.
    status:
        Current state.
    requested_at:
        When the request was made.
    expires_at:
        End of the grant. Set when the grant is activated; None while pending.
    approver:
        Who approved or denied the request.
    emergency_override:
        True when approval and admission policy were bypassed.
    policy_violations:
        Violations that an emergency override downgraded to warnings.
    """

    request_id: str
    identity_id: str
    access_type: AccessType
    justification: str
    duration_hours: int
    permissions: list[Permission] = field(default_factory=list)
    status: JITStatus = JITStatus.PENDING
    requested_at: datetime.datetime = field(default_factory=_utcnow)
    expires_at: datetime.datetime | None = None
    granted_at: datetime.datetime | None = None
    closed_at: datetime.datetime | None = None
    requested_by: str = "system"
    approver: str | None = None
    decision_reason: str = ""
    emergency_override: bool = False
    policy_violations: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.permissions = permission_set(self.permissions)

    def is_active(self, now: datetime.datetime | None = None) -> bool:
        """True while the grant is ``Granted`` and not past its expiry."""
        if self.status is not JITStatus.GRANTED or self.expires_at is None:
            return False
        return (now or _utcnow()) < self.expires_at

    def is_due(self, now: datetime.datetime | None = None) -> bool:
        """True for a ``Granted`` grant whose expiry has been reached."""
        if self.status is not JITStatus.GRANTED or self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow())

    def remaining(self, now: datetime.datetime | None = None) -> datetime.timedelta:
        if self.expires_at is None:
            return datetime.timedelta(0)
        return max(datetime.timedelta(0), self.expires_at - (now or _utcnow()))

    def to_dict(self) -> dict[str, object]:
        return {
            "request_id": self.request_id,
            "identity_id": self.identity_id,
            "access_type": self.access_type.value,
            "justification": self.justification,
            "duration_hours": self.duration_hours,
            "permissions": [p.name for p in self.permissions],
            "status": self.status.value,
            "requested_at": self.requested_at.isoformat(),
            "expires_at": _ts(self.expires_at),
            "granted_at": _ts(self.granted_at),
            "closed_at": _ts(self.closed_at),
            "requested_by": self.requested_by,
            "approver": self.approver,
            "decision_reason": self.decision_reason,
            "emergency_override": self.emergency_override,
            "policy_violations": list(self.policy_violations),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "JITGrant":
        return cls(
            request_id=str(data["request_id"]),
            identity_id=str(data["identity_id"]),
            access_type=AccessType.parse(str(data["access_type"])),
            justification=str(data.get("justification", "")),
            duration_hours=int(data["duration_hours"]),  # type: ignore[arg-type]
            permissions=permission_set(data.get("permissions") or []),  # type: ignore[arg-type]
            status=JITStatus(str(data["status"])),
            requested_at=datetime.datetime.fromisoformat(str(data["requested_at"])),
            expires_at=_parse_ts(data.get("expires_at")),
            granted_at=_parse_ts(data.get("granted_at")),
            closed_at=_parse_ts(data.get("closed_at")),
            requested_by=str(data.get("requested_by", "system")),
            approver=(str(data["approver"]) if data.get("approver") else None),
            decision_reason=str(data.get("decision_reason", "")),
            emergency_override=bool(data.get("emergency_override", False)),
            policy_violations=[str(v) for v in (data.get("policy_violations") or [])],  # type: ignore[union-attr]
        )
