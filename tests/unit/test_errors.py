"""Tests for zero_trust_engine.errors — error taxonomy and OperationResult."""
from __future__ import annotations

import pytest

from zero_trust_engine.errors import (
    CIDRConflictError,
    ConflictError,
    DuplicateError,
    DuplicateUsernameError,
    ErrorKind,
    ForensicConstraintError,
    NotFoundError,
    OperationResult,
    PolicyViolationError,
    StorageError,
    ValidationError,
    ZeroTrustError,
)


class TestErrorKinds:
    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (NotFoundError("Identity", "abc"), ErrorKind.NOT_FOUND),
            (DuplicateUsernameError("alice"), ErrorKind.DUPLICATE),
            (CIDRConflictError("10.0.0.0/24", "dmz", "10.0.0.0/16"), ErrorKind.DUPLICATE),
            (ValidationError("bad"), ErrorKind.VALIDATION),
            (PolicyViolationError(["too long"]), ErrorKind.POLICY_VIOLATION),
            (ConflictError("clash"), ErrorKind.CONFLICT),
            (ForensicConstraintError("weak key"), ErrorKind.FORENSIC_CONSTRAINT),
        ],
    )
    def test_kind_matches_class(self, error: ZeroTrustError, kind: ErrorKind) -> None:
        assert error.kind is kind

    def test_not_found_is_key_error(self) -> None:
        with pytest.raises(KeyError):
            raise NotFoundError("Grant", "g-1")

    def test_not_found_message_names_entity(self) -> None:
        error = NotFoundError("Segment", "dmz")
        assert str(error) == "Segment 'dmz' was not found."
        assert error.entity == "Segment"
        assert error.key == "dmz"

    def test_duplicate_username_is_duplicate_error(self) -> None:
        assert isinstance(DuplicateUsernameError("bob"), DuplicateError)

    def test_cidr_conflict_keeps_existing_segment(self) -> None:
        error = CIDRConflictError("10.1.0.0/24", "core", "10.1.0.0/16")
        assert error.existing_name == "core"
        assert "10.1.0.0/16" in str(error)

    def test_policy_violation_lists_violations(self) -> None:
        error = PolicyViolationError(["a", "b"])
        assert error.violations == ["a", "b"]
        assert "a; b" in str(error)

    def test_storage_error_outside_taxonomy(self) -> None:
        assert not issubclass(StorageError, ZeroTrustError)


class TestOperationResult:
    def test_success_carries_value(self) -> None:
        result = OperationResult.success(42)
        assert result.ok is True
        assert result.value == 42
        assert result.error_kind is None
        assert result.unwrap() == 42

    def test_failure_carries_kind_and_message(self) -> None:
        result: OperationResult[int] = OperationResult.failure(ConflictError("nope"))
        assert result.ok is False
        assert result.value is None
        assert result.error_kind is ErrorKind.CONFLICT
        assert result.message == "nope"

    def test_failure_keeps_violations(self) -> None:
        result: OperationResult[int] = OperationResult.failure(
            PolicyViolationError(["duration exceeds maximum"])
        )
        assert result.details["violations"] == ["duration exceeds maximum"]

    def test_unwrap_failure_raises(self) -> None:
        result: OperationResult[int] = OperationResult.failure(ValidationError("bad"))
        with pytest.raises(RuntimeError, match="bad"):
            result.unwrap()
