"""Least-privilege permission model and calculator.

Quick start
-----------
::

    from zero_trust_engine.permissions import PermissionCalculator

    calculator = PermissionCalculator()
    perms = calculator.compute("ReadOnly", {"Data"}, "ReadOnly")
    print([p.name for p in perms])
"""
from __future__ import annotations

from zero_trust_engine.permissions.calculator import (
    GATED_SCOPES,
    ROLE_BASE_PERMISSIONS,
    SCOPE_PERMISSIONS,
    PermissionBreakdown,
    PermissionCalculator,
)
from zero_trust_engine.permissions.model import (
    Permission,
    PrivilegeLevel,
    Role,
    Scope,
    Verb,
    permission_names,
    permission_set,
)

__all__ = [
    "GATED_SCOPES",
    "Permission",
    "PermissionBreakdown",
    "PermissionCalculator",
    "PrivilegeLevel",
    "ROLE_BASE_PERMISSIONS",
    "Role",
    "SCOPE_PERMISSIONS",
    "Scope",
    "Verb",
    "permission_names",
    "permission_set",
]
