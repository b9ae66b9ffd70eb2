"""Error taxonomy and the explicit result type used by administrative operations.

Components raise the exceptions defined here. The orchestrator facade turns
them into :class:`OperationResult` values so that callers of administrative
operations never have to use exceptions for control flow. ``StorageError``
is deliberately outside the taxonomy: it signals unrecoverable persistence
failure and always propagates.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Machine-readable category of an engine error."""

    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    VALIDATION = "validation"
    POLICY_VIOLATION = "policy_violation"
    CONFLICT = "conflict"
    FORENSIC_CONSTRAINT = "forensic_constraint"


class ZeroTrustError(Exception):
    """Base class for every recoverable engine error."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFoundError(ZeroTrustError, KeyError):
    """Raised when an identity, grant, certificate, segment or policy is unknown."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, key: str) -> None:
        super().__init__(f"{entity} {key!r} was not found.")
        self.entity = entity
        self.key = key


class DuplicateError(ZeroTrustError, ValueError):
    """Raised when a unique name or range is already taken."""

    kind = ErrorKind.DUPLICATE


class DuplicateUsernameError(DuplicateError):
    """Raised when creating an identity whose username already exists."""

    def __init__(self, username: str) -> None:
        super().__init__(
            f"Username {username!r} is already registered. "
            "Use update() to modify the existing identity."
        )
        self.username = username


class CIDRConflictError(DuplicateError):
    """Raised when a new network range overlaps an existing one."""

    def __init__(self, cidr: str, existing_name: str, existing_cidr: str) -> None:
        super().__init__(
            f"CIDR {cidr} overlaps segment {existing_name!r} ({existing_cidr})."
        )
        self.cidr = cidr
        self.existing_name = existing_name
        self.existing_cidr = existing_cidr


class ValidationError(ZeroTrustError, ValueError):
    """Raised for malformed input: subjects, key usages, policy schemas, ranges."""

    kind = ErrorKind.VALIDATION


class PolicyViolationError(ZeroTrustError):
    """Raised when a JIT request fails admission policy."""

    kind = ErrorKind.POLICY_VIOLATION

    def __init__(self, violations: list[str]) -> None:
        super().__init__("JIT request rejected: " + "; ".join(violations))
        self.violations = list(violations)


class ConflictError(ZeroTrustError):
    """Raised for state conflicts such as re-revocation with a different reason."""

    kind = ErrorKind.CONFLICT


class ForensicConstraintError(ZeroTrustError):
    """Raised when forensic-grade certificate parameters cannot be honoured."""

    kind = ErrorKind.FORENSIC_CONSTRAINT


class StorageError(Exception):
    """Unrecoverable persistence failure. Never converted into a result."""


@dataclass
class OperationResult(Generic[T]):
    """Outcome of an administrative operation.

    Parameters
    ----------
    ok:
        True when the operation succeeded and ``value`` is populated.
    value:
        The operation's return value on success.
    error_kind:
        Category of the failure, None on success.
    message:
        Human-readable failure description (empty on success).
    details:
        Extra failure context, e.g. the list of JIT policy violations.
    """

    ok: bool
    value: T | None = None
    error_kind: ErrorKind | None = None
    message: str = ""
    details: dict[str, object] = field(default_factory=dict)

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ZeroTrustError) -> "OperationResult[T]":
        details: dict[str, object] = {}
        if isinstance(error, PolicyViolationError):
            details["violations"] = list(error.violations)
        return cls(ok=False, error_kind=error.kind, message=str(error), details=details)

    def unwrap(self) -> T:
        """Return the value or raise ``RuntimeError`` describing the failure."""
        if not self.ok:
            raise RuntimeError(f"Operation failed ({self.error_kind}): {self.message}")
        return self.value  # type: ignore[return-value]
