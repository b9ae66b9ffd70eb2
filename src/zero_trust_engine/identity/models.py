"""Identity record and its value objects.

An :class:`Identity` holds the baseline permission set from its last
least-privilege computation together with the inputs of that computation,
so the effective set can always be rebuilt. Time-boxed JIT permissions are
layered on top by :meth:`Identity.effective_permissions` and vanish as soon
as the grant is no longer active.
"""
from __future__ import annotations

import copy
import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from zero_trust_engine.errors import ValidationError
from zero_trust_engine.permissions.model import (
    Permission,
    PrivilegeLevel,
    Role,
    Scope,
    permission_set,
)

if TYPE_CHECKING:
    from zero_trust_engine.jit.models import JITGrant


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _parse_ts(value: object) -> datetime.datetime | None:
    if value in (None, ""):
        return None
    return datetime.datetime.fromisoformat(str(value))


class IdentityStatus(str, Enum):
    """Lifecycle state of an identity."""

    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    EXPIRED = "Expired"


class AuthMethodKind(str, Enum):
    """Authentication factors an identity can be configured with."""

    CERTIFICATE = "Certificate"
    MFA = "MFA"
    PASSWORD = "Password"
    SMART_CARD = "SmartCard"
    BIOMETRIC = "Biometric"


@dataclass
class AuthMethod:
    """One entry of an identity's ordered authentication-method list."""

    kind: AuthMethodKind
    required: bool = False
    configured: bool = False
    last_used: datetime.datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "required": self.required,
            "configured": self.configured,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AuthMethod":
        return cls(
            kind=AuthMethodKind(str(data["kind"])),
            required=bool(data.get("required", False)),
            configured=bool(data.get("configured", False)),
            last_used=_parse_ts(data.get("last_used")),
        )


@dataclass
class AccessControls:
    """Session limits and the trust boundaries an identity may operate in."""

    session_timeout_minutes: int = 480
    concurrent_sessions: int = 3
    boundaries: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.session_timeout_minutes <= 0:
            raise ValidationError("session_timeout_minutes must be positive.")
        if self.concurrent_sessions <= 0:
            raise ValidationError("concurrent_sessions must be positive.")

    def to_dict(self) -> dict[str, object]:
        return {
            "session_timeout_minutes": self.session_timeout_minutes,
            "concurrent_sessions": self.concurrent_sessions,
            "boundaries": list(self.boundaries),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AccessControls":
        return cls(
            session_timeout_minutes=int(data.get("session_timeout_minutes", 480)),  # type: ignore[arg-type]
            concurrent_sessions=int(data.get("concurrent_sessions", 3)),  # type: ignore[arg-type]
            boundaries=[str(b) for b in (data.get("boundaries") or [])],  # type: ignore[union-attr]
        )


@dataclass(frozen=True)
class AuditEntry:
    """Append-only entry in an identity's own audit trail."""

    timestamp: datetime.datetime
    actor: str
    action: str
    details: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "actor": self.actor,
            "action": self.action,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AuditEntry":
        return cls(
            timestamp=datetime.datetime.fromisoformat(str(data["timestamp"])),
            actor=str(data.get("actor", "system")),
            action=str(data["action"]),
            details=dict(data.get("details") or {}),  # type: ignore[arg-type]
        )


# ------------------------------------------------------------------
# Role defaults
# ------------------------------------------------------------------

_REQUIRED_METHODS: dict[Role, tuple[AuthMethodKind, ...]] = {
    Role.ADMINISTRATOR: (AuthMethodKind.CERTIFICATE, AuthMethodKind.MFA, AuthMethodKind.SMART_CARD),
    Role.SYSTEM_ACCOUNT: (AuthMethodKind.CERTIFICATE,),
    Role.READ_ONLY: (AuthMethodKind.PASSWORD,),
}
_DEFAULT_REQUIRED = (AuthMethodKind.CERTIFICATE, AuthMethodKind.MFA)

_SESSION_DEFAULTS: dict[Role, tuple[int, int]] = {
    Role.ADMINISTRATOR: (60, 1),
    Role.SYSTEM_ACCOUNT: (1440, 10),
    Role.INCIDENT_RESPONDER: (720, 3),
    Role.READ_ONLY: (240, 2),
}


def default_auth_methods(role: Role) -> list[AuthMethod]:
    """Return the ordered default authentication methods for *role*.

    Required methods come first in the order listed for the role; the
    password factor is appended as an optional fallback when not required.
    """
    required = _REQUIRED_METHODS.get(role, _DEFAULT_REQUIRED)
    methods = [AuthMethod(kind=kind, required=True) for kind in required]
    if AuthMethodKind.PASSWORD not in required and role is not Role.SYSTEM_ACCOUNT:
        methods.append(AuthMethod(kind=AuthMethodKind.PASSWORD, required=False))
    return methods


def default_access_controls(role: Role) -> AccessControls:
    timeout, sessions = _SESSION_DEFAULTS.get(role, (480, 3))
    return AccessControls(session_timeout_minutes=timeout, concurrent_sessions=sessions)


# ------------------------------------------------------------------
# Identity
# ------------------------------------------------------------------


@dataclass
class Identity:
    """A principal known to the engine.

    Parameters
    ----------
    identity_id:
        Immutable unique identifier (UUID string).
    username:
        Unique, case-sensitive login name.
    role:
        The principal's role; selects the base permission table.
    trust_score:
        Score in [0, 100]. Only changed by an explicit trust recomputation.
    permissions:
        Baseline permissions from the last least-privilege computation,
        deduplicated and sorted by name.
    scopes, privilege_level, explicit_permissions, denied_permissions:
        Inputs of that computation.
    auth_methods:
        Ordered authentication methods.
    access_controls:
        Session limits and boundaries.
    active_jit:
        The current JIT grant, if any.
    status:
        Lifecycle state.
    """

    identity_id: str
    username: str
    role: Role
    display_name: str = ""
    trust_score: float = 0.0
    permissions: list[Permission] = field(default_factory=list)
    scopes: list[Scope] = field(default_factory=list)
    privilege_level: PrivilegeLevel = PrivilegeLevel.STANDARD
    explicit_permissions: list[Permission] = field(default_factory=list)
    denied_permissions: list[Permission] = field(default_factory=list)
    auth_methods: list[AuthMethod] = field(default_factory=list)
    access_controls: AccessControls = field(default_factory=AccessControls)
    active_jit: JITGrant | None = None
    status: IdentityStatus = IdentityStatus.ACTIVE
    metadata: dict[str, object] = field(default_factory=dict)
    created_at: datetime.datetime = field(default_factory=_utcnow)
    last_modified: datetime.datetime = field(default_factory=_utcnow)
    audit_trail: list[AuditEntry] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.username or not self.username.strip():
            raise ValidationError("username must not be empty.")
        if not 0.0 <= self.trust_score <= 100.0:
            raise ValidationError(f"trust_score must be within [0, 100], got {self.trust_score}.")
        self.permissions = permission_set(self.permissions)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.status is IdentityStatus.ACTIVE

    def jit_permissions(self, now: datetime.datetime | None = None) -> list[Permission]:
        """Permissions contributed by an active, unexpired JIT grant."""
        if self.active_jit is None or not self.active_jit.is_active(now):
            return []
        return list(self.active_jit.permissions)

    def effective_permissions(self, now: datetime.datetime | None = None) -> list[Permission]:
        """Baseline permissions plus any active JIT permissions, sorted.

        Explicit denials also apply to JIT permissions.
        """
        denied = set(self.denied_permissions)
        return permission_set(
            p for p in [*self.permissions, *self.jit_permissions(now)] if p not in denied
        )

    def has_permission(self, permission: "Permission | str", now: datetime.datetime | None = None) -> bool:
        return Permission.parse(permission) in set(self.effective_permissions(now))

    def auth_method(self, kind: AuthMethodKind) -> AuthMethod | None:
        for method in self.auth_methods:
            if method.kind is kind:
                return method
        return None

    def snapshot(self) -> "Identity":
        """Return a deep copy safe to read without holding the entity lock."""
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, object]:
        return {
            "identity_id": self.identity_id,
            "username": self.username,
            "role": self.role.value,
            "display_name": self.display_name,
            "trust_score": self.trust_score,
            "permissions": [p.name for p in self.permissions],
            "scopes": [s.value for s in self.scopes],
            "privilege_level": self.privilege_level.label,
            "explicit_permissions": [p.name for p in self.explicit_permissions],
            "denied_permissions": [p.name for p in self.denied_permissions],
            "auth_methods": [m.to_dict() for m in self.auth_methods],
            "access_controls": self.access_controls.to_dict(),
            "active_jit": self.active_jit.request_id if self.active_jit else None,
            "status": self.status.value,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
            "last_modified": self.last_modified.isoformat(),
            "audit_trail": [e.to_dict() for e in self.audit_trail],
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Identity":
        """Rebuild an identity. ``active_jit`` is re-linked by the JIT coordinator."""
        return cls(
            identity_id=str(data["identity_id"]),
            username=str(data["username"]),
            role=Role.parse(str(data["role"])),
            display_name=str(data.get("display_name", "")),
            trust_score=float(data.get("trust_score", 0.0)),  # type: ignore[arg-type]
            permissions=permission_set(data.get("permissions") or []),  # type: ignore[arg-type]
            scopes=[Scope.parse(str(s)) for s in (data.get("scopes") or [])],  # type: ignore[union-attr]
            privilege_level=PrivilegeLevel.parse(str(data.get("privilege_level", "Standard"))),
            explicit_permissions=permission_set(data.get("explicit_permissions") or []),  # type: ignore[arg-type]
            denied_permissions=permission_set(data.get("denied_permissions") or []),  # type: ignore[arg-type]
            auth_methods=[AuthMethod.from_dict(m) for m in (data.get("auth_methods") or [])],  # type: ignore[union-attr]
            access_controls=AccessControls.from_dict(dict(data.get("access_controls") or {})),  # type: ignore[arg-type]
            status=IdentityStatus(str(data.get("status", "Active"))),
            metadata=dict(data.get("metadata") or {}),  # type: ignore[arg-type]
            created_at=datetime.datetime.fromisoformat(str(data["created_at"])),
            last_modified=datetime.datetime.fromisoformat(str(data["last_modified"])),
            audit_trail=[AuditEntry.from_dict(e) for e in (data.get("audit_trail") or [])],  # type: ignore[union-attr]
        )
