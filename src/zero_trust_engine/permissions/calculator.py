"""PermissionCalculator — least-privilege permission derivation.

The effective set is computed in a fixed order:

1. the role's base permissions,
2. scope additions (``System`` and ``Network`` only at Elevated or above),
3. the least-privilege filter for the requested privilege level,
4. explicit grants, then explicit denials,
5. deduplicate and sort by canonical name.

Explicit grants are added *after* the filter, so they can restore a
permission the filter stripped. Denials are applied *after* grants, so a
grant can never escape a denial. This ordering is intentional and
covered by tests; change it only together with the product owner.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable

from zero_trust_engine.permissions.model import (
    Permission,
    PrivilegeLevel,
    Role,
    Scope,
    Verb,
    permission_set,
)

# ------------------------------------------------------------------
# Constant tables
# ------------------------------------------------------------------

ROLE_BASE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.DFIR_ANALYST: frozenset(
        {
            "VelociraptorRead",
            "ArtifactExecution",
            "ArtifactCollection",
            "HuntRead",
            "ClientRead",
            "DataAnalysis",
        }
    ),
    Role.FORENSIC_INVESTIGATOR: frozenset(
        {
            "VelociraptorRead",
            "ArtifactExecution",
            "ArtifactCollection",
            "EvidenceAccess",
            "EvidenceExport",
            "EvidenceWrite",
            "DataAnalysis",
        }
    ),
    Role.INCIDENT_RESPONDER: frozenset(
        {
            "VelociraptorRead",
            "VelociraptorWrite",
            "ArtifactExecution",
            "ArtifactCollection",
            "HuntWrite",
            "HuntManage",
            "ClientControl",
        }
    ),
    Role.SOC_ANALYST: frozenset(
        {
            "VelociraptorRead",
            "ArtifactExecution",
            "ClientMonitor",
            "HuntRead",
            "ReportRead",
        }
    ),
    Role.ADMINISTRATOR: frozenset(
        {
            "VelociraptorRead",
            "VelociraptorWrite",
            "VelociraptorAdmin",
            "ArtifactExecution",
            "ArtifactModify",
            "UserManage",
            "ServerConfigure",
            "SystemAdmin",
            "GlobalAdmin",
        }
    ),
    Role.READ_ONLY: frozenset({"VelociraptorRead", "ArtifactExecution"}),
    Role.SYSTEM_ACCOUNT: frozenset(
        {
            "VelociraptorRead",
            "VelociraptorWrite",
            "ArtifactExecution",
            "ArtifactCollection",
            "ServiceControl",
        }
    ),
}

SCOPE_PERMISSIONS: dict[Scope, frozenset[str]] = {
    Scope.DATA: frozenset({"DataAccess", "DataAnalysis"}),
    Scope.ARTIFACTS: frozenset({"ArtifactRead", "ArtifactCollection", "ArtifactModify"}),
    Scope.HUNTS: frozenset({"HuntRead", "HuntWrite", "HuntManage"}),
    Scope.CLIENTS: frozenset({"ClientRead", "ClientMonitor", "ClientControl"}),
    Scope.EVIDENCE: frozenset({"EvidenceAccess", "EvidenceExport", "EvidenceWrite"}),
    Scope.REPORTS: frozenset({"ReportRead", "ReportWrite"}),
    Scope.SYSTEM: frozenset({"SystemRead", "SystemConfigure", "SystemAdmin"}),
    Scope.NETWORK: frozenset(
        {"NetworkRead", "NetworkMonitor", "NetworkConfigure", "NetworkControl"}
    ),
}

# Scopes whose additions are only granted at these privilege levels.
GATED_SCOPES: dict[Scope, frozenset[PrivilegeLevel]] = {
    Scope.SYSTEM: frozenset({PrivilegeLevel.ELEVATED, PrivilegeLevel.ADMINISTRATIVE}),
    Scope.NETWORK: frozenset({PrivilegeLevel.ELEVATED, PrivilegeLevel.ADMINISTRATIVE}),
}

_READ_ONLY_STRIPPED = frozenset({Verb.WRITE, Verb.MODIFY, Verb.DELETE, Verb.ADMIN, Verb.MANAGE})
_STANDARD_STRIPPED = frozenset({Verb.ADMIN, Verb.MANAGE, Verb.CONFIGURE, Verb.CONTROL})
_ELEVATED_STRIPPED_ADMIN_DOMAINS = frozenset({"System", "Global"})


def _strip_read_only(p: Permission) -> bool:
    return p.verb in _READ_ONLY_STRIPPED


def _strip_standard(p: Permission) -> bool:
    return p.verb in _STANDARD_STRIPPED


def _strip_elevated(p: Permission) -> bool:
    return p.verb is Verb.ADMIN and p.domain in _ELEVATED_STRIPPED_ADMIN_DOMAINS


def _strip_nothing(p: Permission) -> bool:
    return False


PRIVILEGE_FILTERS: dict[PrivilegeLevel, Callable[[Permission], bool]] = {
    PrivilegeLevel.READ_ONLY: _strip_read_only,
    PrivilegeLevel.STANDARD: _strip_standard,
    PrivilegeLevel.ELEVATED: _strip_elevated,
    PrivilegeLevel.ADMINISTRATIVE: _strip_nothing,
}


@dataclass(frozen=True)
class PermissionBreakdown:
    """Every intermediate set of one computation, for audit and debugging."""

    role: Role
    scopes: tuple[Scope, ...]
    privilege_level: PrivilegeLevel
    base: tuple[Permission, ...]
    scoped: tuple[Permission, ...]
    stripped: tuple[Permission, ...]
    granted: tuple[Permission, ...]
    denied: tuple[Permission, ...]
    effective: tuple[Permission, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        return {
            "role": self.role.value,
            "scopes": [s.value for s in self.scopes],
            "privilege_level": self.privilege_level.label,
            "base": [p.name for p in self.base],
            "scoped": [p.name for p in self.scoped],
            "stripped": [p.name for p in self.stripped],
            "granted": [p.name for p in self.granted],
            "denied": [p.name for p in self.denied],
            "effective": [p.name for p in self.effective],
        }


class PermissionCalculator:
    """Derives deterministic least-privilege permission sets.

    The calculator holds no mutable state and is safe to share between
    threads.

    Parameters
    ----------
    role_permissions:
        Override for the per-role base table. Defaults to
        :data:`ROLE_BASE_PERMISSIONS`.
    scope_permissions:
        Override for the per-scope additions. Defaults to
        :data:`SCOPE_PERMISSIONS`.
    """

    def __init__(
        self,
        role_permissions: dict[Role, frozenset[str]] | None = None,
        scope_permissions: dict[Scope, frozenset[str]] | None = None,
    ) -> None:
        self._roles = {
            role: tuple(permission_set(names))
            for role, names in (role_permissions or ROLE_BASE_PERMISSIONS).items()
        }
        self._scopes = {
            scope: tuple(permission_set(names))
            for scope, names in (scope_permissions or SCOPE_PERMISSIONS).items()
        }

    def compute(
        self,
        role: "Role | str",
        scopes: Iterable["Scope | str"] = (),
        privilege_level: "PrivilegeLevel | str" = PrivilegeLevel.STANDARD,
        explicit_permissions: Iterable["Permission | str"] = (),
        denied_permissions: Iterable["Permission | str"] = (),
    ) -> list[Permission]:
        """Return the effective permission set, sorted by canonical name.

        Parameters
        ----------
        role:
            The identity's role.
        scopes:
            Scopes to widen the base set with.
        privilege_level:
            Requested privilege level; selects the least-privilege filter.
        explicit_permissions:
            Permissions to add after filtering.
        denied_permissions:
            Permissions to remove last. Denial always wins.

        Raises
        ------
        ValidationError
            For unknown roles, scopes, privilege levels or permission names.
        """
        return list(
            self.explain(
                role,
                scopes,
                privilege_level,
                explicit_permissions,
                denied_permissions,
            ).effective
        )

    def explain(
        self,
        role: "Role | str",
        scopes: Iterable["Scope | str"] = (),
        privilege_level: "PrivilegeLevel | str" = PrivilegeLevel.STANDARD,
        explicit_permissions: Iterable["Permission | str"] = (),
        denied_permissions: Iterable["Permission | str"] = (),
    ) -> PermissionBreakdown:
        """Run :meth:`compute` and keep every intermediate set."""
        parsed_role = Role.parse(role)
        level = PrivilegeLevel.parse(privilege_level)
        parsed_scopes = tuple(sorted({Scope.parse(s) for s in scopes}, key=lambda s: s.value))
        granted = permission_set(explicit_permissions)
        denied = permission_set(denied_permissions)

        base = set(self._roles.get(parsed_role, ()))
        working = set(base)
        for scope in parsed_scopes:
            allowed_levels = GATED_SCOPES.get(scope)
            if allowed_levels is not None and level not in allowed_levels:
                continue
            working.update(self._scopes.get(scope, ()))
        scoped = set(working)

        strip = PRIVILEGE_FILTERS[level]
        stripped = {p for p in working if strip(p)}
        working -= stripped

        working.update(granted)
        working.difference_update(denied)

        def ordered(items: Iterable[Permission]) -> tuple[Permission, ...]:
            return tuple(sorted(set(items), key=lambda p: p.name))

        return PermissionBreakdown(
            role=parsed_role,
            scopes=parsed_scopes,
            privilege_level=level,
            base=ordered(base),
            scoped=ordered(scoped),
            stripped=ordered(stripped),
            granted=ordered(granted),
            denied=ordered(denied),
            effective=ordered(working),
        )

    def base_permissions(self, role: "Role | str") -> list[Permission]:
        """Return the role's base permissions before any scope or filter."""
        return list(self._roles.get(Role.parse(role), ()))
