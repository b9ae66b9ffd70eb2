"""Tests for zero_trust_engine.identity — IdentityStore and trust scoring."""
from __future__ import annotations

import datetime

import pytest

from zero_trust_engine.audit import AuditLog
from zero_trust_engine.errors import DuplicateUsernameError, NotFoundError, ValidationError
from zero_trust_engine.identity import (
    AuthMethodKind,
    Identity,
    IdentityStatus,
    IdentityStore,
    TrustEvidence,
    compute_trust_score,
    default_access_controls,
    default_auth_methods,
)
from zero_trust_engine.permissions import Permission, Role

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture()
def store(audit_log: AuditLog) -> IdentityStore:
    return IdentityStore(audit_log=audit_log, clock=lambda: NOW)


@pytest.fixture()
def alice(store: IdentityStore) -> Identity:
    return store.create("alice", role="DFIRAnalyst", actor="admin")


# ---------------------------------------------------------------------------
# Role defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_administrator_requires_three_factors(self) -> None:
        methods = default_auth_methods(Role.ADMINISTRATOR)
        assert [m.kind for m in methods if m.required] == [
            AuthMethodKind.CERTIFICATE,
            AuthMethodKind.MFA,
            AuthMethodKind.SMART_CARD,
        ]

    def test_password_appended_as_optional(self) -> None:
        methods = default_auth_methods(Role.DFIR_ANALYST)
        assert methods[-1].kind is AuthMethodKind.PASSWORD
        assert methods[-1].required is False

    def test_system_account_has_no_password(self) -> None:
        kinds = [m.kind for m in default_auth_methods(Role.SYSTEM_ACCOUNT)]
        assert kinds == [AuthMethodKind.CERTIFICATE]

    def test_administrator_session_limits(self) -> None:
        controls = default_access_controls(Role.ADMINISTRATOR)
        assert controls.session_timeout_minutes == 60
        assert controls.concurrent_sessions == 1


# ---------------------------------------------------------------------------
# Create / get
# ---------------------------------------------------------------------------


class TestCreate:
    def test_create_returns_active_identity(self, alice: Identity) -> None:
        assert alice.status is IdentityStatus.ACTIVE
        assert alice.role is Role.DFIR_ANALYST
        assert alice.trust_score == 0.0
        assert alice.created_at == NOW

    def test_display_name_defaults_to_username(self, alice: Identity) -> None:
        assert alice.display_name == "alice"

    def test_create_writes_trail_and_audit(self, alice: Identity, audit_log: AuditLog) -> None:
        assert [e.action for e in alice.audit_trail] == ["identity_created"]
        records = audit_log.records(action="identity_created")
        assert records[0]["subject"] == alice.identity_id
        assert records[0]["actor"] == "admin"

    def test_duplicate_username_rejected(self, store: IdentityStore, alice: Identity) -> None:
        with pytest.raises(DuplicateUsernameError):
            store.create("alice", role="ReadOnly")

    def test_usernames_case_sensitive(self, store: IdentityStore, alice: Identity) -> None:
        other = store.create("Alice", role="ReadOnly")
        assert other.identity_id != alice.identity_id

    def test_empty_username_rejected(self, store: IdentityStore) -> None:
        with pytest.raises(ValidationError):
            store.create("   ", role="ReadOnly")

    def test_unknown_role_rejected(self, store: IdentityStore) -> None:
        with pytest.raises(ValidationError):
            store.create("bob", role="Wizard")

    def test_get_unknown_raises(self, store: IdentityStore) -> None:
        with pytest.raises(NotFoundError):
            store.get("missing")

    def test_get_by_username(self, store: IdentityStore, alice: Identity) -> None:
        assert store.get_by_username("alice").identity_id == alice.identity_id

    def test_get_by_unknown_username(self, store: IdentityStore) -> None:
        with pytest.raises(NotFoundError):
            store.get_by_username("nobody")

    def test_get_returns_copy(self, store: IdentityStore, alice: Identity) -> None:
        snapshot = store.get(alice.identity_id)
        snapshot.metadata["tampered"] = True
        assert "tampered" not in store.get(alice.identity_id).metadata

    def test_contains_and_len(self, store: IdentityStore, alice: Identity) -> None:
        assert alice.identity_id in store
        assert "other" not in store
        assert len(store) == 1


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_update_applies_mutator(self, store: IdentityStore, alice: Identity) -> None:
        updated = store.update(
            alice.identity_id,
            lambda i: i.metadata.update(team="blue"),
            actor="admin",
            action="metadata_updated",
        )
        assert updated.metadata == {"team": "blue"}
        assert updated.audit_trail[-1].action == "metadata_updated"

    def test_failing_mutator_leaves_record_untouched(
        self, store: IdentityStore, alice: Identity
    ) -> None:
        def broken(identity: Identity) -> None:
            identity.metadata["half"] = True
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update(alice.identity_id, broken)
        assert "half" not in store.get(alice.identity_id).metadata

    def test_username_immutable(self, store: IdentityStore, alice: Identity) -> None:
        def rename(identity: Identity) -> None:
            identity.username = "mallory"

        with pytest.raises(ValidationError):
            store.update(alice.identity_id, rename)

    def test_trust_score_only_via_recompute(self, store: IdentityStore, alice: Identity) -> None:
        def bump(identity: Identity) -> None:
            identity.trust_score = 99.0

        with pytest.raises(ValidationError):
            store.update(alice.identity_id, bump)

    def test_record_false_skips_audit_log(
        self, store: IdentityStore, alice: Identity, audit_log: AuditLog
    ) -> None:
        store.update(alice.identity_id, lambda i: None, action="quiet", record=False)
        assert audit_log.records(action="quiet") == []
        assert store.get(alice.identity_id).audit_trail[-1].action == "quiet"

    def test_update_unknown_raises(self, store: IdentityStore) -> None:
        with pytest.raises(NotFoundError):
            store.update("missing", lambda i: None)

    def test_set_status_suspends(
        self, store: IdentityStore, alice: Identity, audit_log: AuditLog
    ) -> None:
        suspended = store.set_status(alice.identity_id, IdentityStatus.SUSPENDED, reason="leaver")
        assert suspended.is_active is False
        record = audit_log.records(action="identity_suspended")[0]
        assert record["severity"] == "WARNING"
        assert record["details"]["reason"] == "leaver"


# ---------------------------------------------------------------------------
# Trust
# ---------------------------------------------------------------------------


class TestTrust:
    def test_full_evidence_scores_100(self, store: IdentityStore, alice: Identity) -> None:
        evidence = TrustEvidence(
            verified_methods={AuthMethodKind.CERTIFICATE, AuthMethodKind.MFA},
            device_compliant=True,
            certificate_valid=True,
        )
        updated = store.recompute_trust(alice.identity_id, evidence)
        assert updated.trust_score == 100.0

    def test_no_evidence_scores_baseline(self, alice: Identity) -> None:
        assert compute_trust_score(alice, TrustEvidence()) == 30.0

    def test_failures_reduce_score(self, alice: Identity) -> None:
        evidence = TrustEvidence(recent_failures=2)
        assert compute_trust_score(alice, evidence) == 10.0

    def test_score_clamped_at_zero(self, alice: Identity) -> None:
        assert compute_trust_score(alice, TrustEvidence(recent_failures=10)) == 0.0

    def test_suspended_identity_scores_zero(self, store: IdentityStore, alice: Identity) -> None:
        suspended = store.set_status(alice.identity_id, IdentityStatus.SUSPENDED)
        evidence = TrustEvidence(
            verified_methods={AuthMethodKind.CERTIFICATE, AuthMethodKind.MFA},
            device_compliant=True,
            certificate_valid=True,
        )
        assert compute_trust_score(suspended, evidence) == 0.0

    def test_recompute_marks_methods_used(self, store: IdentityStore, alice: Identity) -> None:
        updated = store.recompute_trust(
            alice.identity_id, TrustEvidence(verified_methods={AuthMethodKind.MFA})
        )
        mfa = updated.auth_method(AuthMethodKind.MFA)
        assert mfa is not None
        assert mfa.configured is True
        assert mfa.last_used == NOW

    def test_recompute_audited(
        self, store: IdentityStore, alice: Identity, audit_log: AuditLog
    ) -> None:
        store.recompute_trust(alice.identity_id, TrustEvidence())
        record = audit_log.records(action="trust_recomputed")[0]
        assert record["details"]["old_score"] == 0.0
        assert record["details"]["new_score"] == 30.0


# ---------------------------------------------------------------------------
# Query and serialization
# ---------------------------------------------------------------------------


class TestQuery:
    def test_list_sorted_by_username(self, store: IdentityStore) -> None:
        store.create("zed", role="ReadOnly")
        store.create("amy", role="SOCAnalyst")
        assert [i.username for i in store.list()] == ["amy", "zed"]

    def test_list_filters(self, store: IdentityStore) -> None:
        store.create("zed", role="ReadOnly")
        amy = store.create("amy", role="SOCAnalyst")
        store.set_status(amy.identity_id, IdentityStatus.SUSPENDED)
        assert [i.username for i in store.list(role="ReadOnly")] == ["zed"]
        assert [i.username for i in store.list(status=IdentityStatus.SUSPENDED)] == ["amy"]
        assert [i.username for i in store.list(query="ZE")] == ["zed"]

    def test_ids_sorted(self, store: IdentityStore, alice: Identity) -> None:
        assert store.ids() == [alice.identity_id]


class TestSerialization:
    def test_to_dict_from_dict_preserves_fields(self, store: IdentityStore, alice: Identity) -> None:
        def grant(identity: Identity) -> None:
            identity.permissions = [Permission.parse("HuntRead"), Permission.parse("DataAccess")]

        updated = store.update(alice.identity_id, grant)
        rebuilt = Identity.from_dict(updated.to_dict())
        assert rebuilt.identity_id == updated.identity_id
        assert [p.name for p in rebuilt.permissions] == ["DataAccess", "HuntRead"]
        assert [m.kind for m in rebuilt.auth_methods] == [m.kind for m in updated.auth_methods]
        assert len(rebuilt.audit_trail) == 2

    def test_restore_inserts_without_audit(self, audit_log: AuditLog, alice: Identity) -> None:
        other = IdentityStore(audit_log=audit_log, clock=lambda: NOW)
        other.restore(alice)
        assert other.get(alice.identity_id).username == "alice"
        assert len(audit_log.records()) == 1

    def test_restore_duplicate_rejected(self, store: IdentityStore, alice: Identity) -> None:
        with pytest.raises(DuplicateUsernameError):
            store.restore(alice)
