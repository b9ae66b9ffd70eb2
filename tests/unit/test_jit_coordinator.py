"""Tests for zero_trust_engine.jit — JITAccessCoordinator, JITPolicy and JITGrant."""
from __future__ import annotations

import datetime
import threading

import pytest

from zero_trust_engine.audit import AuditLog
from zero_trust_engine.errors import (
    ConflictError,
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)
from zero_trust_engine.identity import Identity, IdentityStatus, IdentityStore
from zero_trust_engine.jit import (
    AccessType,
    JITAccessCoordinator,
    JITGrant,
    JITPolicy,
    JITStatus,
)
from zero_trust_engine.permissions import permission_set

NOW = datetime.datetime(2026, 3, 1, 9, 0, tzinfo=datetime.timezone.utc)
JUSTIFICATION = "Incident INC-4411 lateral movement triage"


class FakeClock:
    def __init__(self, now: datetime.datetime) -> None:
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += datetime.timedelta(**delta)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture()
def audit_log() -> AuditLog:
    return AuditLog()


@pytest.fixture()
def store(audit_log: AuditLog, clock: FakeClock) -> IdentityStore:
    return IdentityStore(audit_log=audit_log, clock=clock)


@pytest.fixture()
def notified() -> list[JITGrant]:
    return []


@pytest.fixture()
def coordinator(
    store: IdentityStore, audit_log: AuditLog, clock: FakeClock, notified: list[JITGrant]
) -> JITAccessCoordinator:
    return JITAccessCoordinator(
        store, audit_log=audit_log, notifier=notified.append, clock=clock
    )


@pytest.fixture()
def analyst(store: IdentityStore) -> Identity:
    return store.create("analyst", role="DFIRAnalyst")


def effective_names(store: IdentityStore, identity_id: str, now: datetime.datetime) -> list[str]:
    return [p.name for p in store.get(identity_id).effective_permissions(now)]


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class TestPolicy:
    def test_emergency_ceiling(self) -> None:
        assert JITPolicy().duration_ceiling(AccessType.EMERGENCY) == 8

    def test_investigation_uses_global_ceiling(self) -> None:
        assert JITPolicy().duration_ceiling(AccessType.INVESTIGATION) == 72

    def test_tightened_caps_every_ceiling(self) -> None:
        policy = JITPolicy().tightened(4, approval_required=True)
        assert policy.max_duration_hours == 4
        assert policy.duration_ceiling(AccessType.ADMINISTRATIVE) == 4
        assert policy.approval_required is True

    def test_tightened_never_loosens(self) -> None:
        assert JITPolicy(max_duration_hours=8).tightened(24).max_duration_hours == 8

    def test_type_ceiling_out_of_range_rejected(self) -> None:
        with pytest.raises(ValueError):
            JITPolicy(max_duration_by_type={AccessType.EMERGENCY: 100})

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValueError):
            JITPolicy(max_hours=4)  # type: ignore[call-arg]

    def test_access_type_parse(self) -> None:
        assert AccessType.parse("evidencereview") is AccessType.EVIDENCE_REVIEW
        assert AccessType.parse("EVIDENCE_REVIEW") is AccessType.EVIDENCE_REVIEW
        with pytest.raises(ValidationError):
            AccessType.parse("Holiday")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestRequest:
    def test_no_approval_grants_immediately(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity
    ) -> None:
        grant = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 8, approval_required=False
        )
        assert grant.status is JITStatus.GRANTED
        assert grant.expires_at == NOW + datetime.timedelta(hours=8)
        assert "HuntManage" in effective_names(store, analyst.identity_id, NOW)

    def test_denied_permission_stays_denied_under_jit(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity
    ) -> None:
        def deny_hunt_manage(identity: Identity) -> None:
            identity.denied_permissions = permission_set(["HuntManage"])

        store.update(analyst.identity_id, deny_hunt_manage)
        coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 8, approval_required=False
        )
        identity = store.get(analyst.identity_id)
        assert identity.jit_permissions(NOW)
        assert not identity.has_permission("HuntManage", NOW)

    def test_default_requires_approval(
        self,
        coordinator: JITAccessCoordinator,
        store: IdentityStore,
        analyst: Identity,
        notified: list[JITGrant],
    ) -> None:
        grant = coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 4)
        assert grant.status is JITStatus.PENDING
        assert grant.expires_at is None
        assert [g.request_id for g in notified] == [grant.request_id]
        assert store.get(analyst.identity_id).active_jit is None

    def test_extra_permissions_added(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        grant = coordinator.request(
            analyst.identity_id,
            "EvidenceReview",
            JUSTIFICATION,
            2,
            permissions=["ReportWrite"],
            approval_required=False,
        )
        assert [p.name for p in grant.permissions] == [
            "DataAnalysis",
            "EvidenceAccess",
            "EvidenceExport",
            "ReportWrite",
        ]

    @pytest.mark.parametrize("hours", [0, 73, -1])
    def test_duration_out_of_range(
        self, coordinator: JITAccessCoordinator, analyst: Identity, hours: int
    ) -> None:
        with pytest.raises(ValidationError):
            coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, hours)

    def test_non_integer_duration_rejected(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        with pytest.raises(ValidationError):
            coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 1.5)  # type: ignore[arg-type]

    def test_short_justification_violates_policy(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        with pytest.raises(PolicyViolationError) as exc_info:
            coordinator.request(analyst.identity_id, "Investigation", "because", 4)
        assert any("justification" in v for v in exc_info.value.violations)

    def test_type_ceiling_violates_policy(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        with pytest.raises(PolicyViolationError):
            coordinator.request(analyst.identity_id, "Emergency", JUSTIFICATION, 12)

    def test_role_restriction(self, coordinator: JITAccessCoordinator, analyst: Identity) -> None:
        with pytest.raises(PolicyViolationError) as exc_info:
            coordinator.request(analyst.identity_id, "Administrative", JUSTIFICATION, 2)
        assert exc_info.value.violations == [
            "role DFIRAnalyst may not request Administrative access"
        ]

    def test_suspended_identity_rejected(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity
    ) -> None:
        store.set_status(analyst.identity_id, IdentityStatus.SUSPENDED)
        with pytest.raises(PolicyViolationError):
            coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 4)

    def test_emergency_override_records_violations(
        self,
        coordinator: JITAccessCoordinator,
        analyst: Identity,
        audit_log: AuditLog,
    ) -> None:
        grant = coordinator.request(
            analyst.identity_id, "Emergency", "now", 12, emergency_override=True
        )
        assert grant.status is JITStatus.GRANTED
        assert grant.emergency_override is True
        assert len(grant.policy_violations) == 2
        record = audit_log.records(action="jit_granted")[0]
        assert record["severity"] == "WARNING"
        assert record["details"]["overridden_violations"] == grant.policy_violations

    def test_unknown_identity(self, coordinator: JITAccessCoordinator) -> None:
        with pytest.raises(NotFoundError):
            coordinator.request("missing", "Investigation", JUSTIFICATION, 4)

    def test_test_request_lists_violations_without_side_effects(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        violations = coordinator.test_request(analyst, "Administrative", "", 30)
        assert len(violations) == 3
        assert coordinator.list() == []


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class TestDecisions:
    def test_approve_activates(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity
    ) -> None:
        pending = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 4, requested_by="analyst"
        )
        granted = coordinator.approve(pending.request_id, approver="lead", reason="ok")
        assert granted.status is JITStatus.GRANTED
        assert granted.approver == "lead"
        assert store.get(analyst.identity_id).active_jit is not None

    def test_self_approval_rejected(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        pending = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 4, requested_by="analyst"
        )
        with pytest.raises(PolicyViolationError):
            coordinator.approve(pending.request_id, approver="analyst")

    def test_approve_twice_conflicts(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        pending = coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 4)
        coordinator.approve(pending.request_id, approver="lead")
        with pytest.raises(ConflictError):
            coordinator.approve(pending.request_id, approver="lead")

    def test_approve_suspended_identity_rejected(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity
    ) -> None:
        pending = coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 4)
        store.set_status(analyst.identity_id, IdentityStatus.SUSPENDED)
        with pytest.raises(PolicyViolationError):
            coordinator.approve(pending.request_id, approver="lead")

    def test_deny(self, coordinator: JITAccessCoordinator, analyst: Identity) -> None:
        pending = coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 4)
        denied = coordinator.deny(pending.request_id, approver="lead", reason="not needed")
        assert denied.status is JITStatus.DENIED
        assert denied.status.is_terminal
        assert denied.closed_at == NOW
        with pytest.raises(ConflictError):
            coordinator.approve(pending.request_id, approver="lead")

    def test_audit_times_follow_clock(
        self, coordinator: JITAccessCoordinator, audit_log: AuditLog, analyst: Identity
    ) -> None:
        grant = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 4, approval_required=False
        )
        entry = audit_log.records(action="jit_granted")[0]
        assert entry["timestamp"] == NOW.isoformat()
        assert grant.granted_at == NOW

    def test_deny_unknown(self, coordinator: JITAccessCoordinator) -> None:
        with pytest.raises(NotFoundError):
            coordinator.deny("missing", approver="lead")

    def test_deny_during_approval_waits_for_activation(
        self,
        coordinator: JITAccessCoordinator,
        store: IdentityStore,
        audit_log: AuditLog,
        analyst: Identity,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        pending = coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 4)
        outcome: list[object] = []

        def deny() -> None:
            try:
                outcome.append(coordinator.deny(pending.request_id, approver="second-lead"))
            except ConflictError as exc:
                outcome.append(exc)

        racer = threading.Thread(target=deny)
        original_update = store.update

        def update_while_denying(*args: object, **kwargs: object) -> Identity:
            racer.start()
            racer.join(timeout=0.2)
            return original_update(*args, **kwargs)  # type: ignore[arg-type]

        monkeypatch.setattr(store, "update", update_while_denying)
        granted = coordinator.approve(pending.request_id, approver="lead")
        racer.join(timeout=5)

        assert granted.status is JITStatus.GRANTED
        assert len(outcome) == 1
        assert isinstance(outcome[0], ConflictError)
        assert coordinator.get(pending.request_id).status is JITStatus.GRANTED
        assert audit_log.records(action="jit_denied") == []

    def test_revoke_strips_permissions(
        self,
        coordinator: JITAccessCoordinator,
        store: IdentityStore,
        analyst: Identity,
        audit_log: AuditLog,
    ) -> None:
        grant = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 4, approval_required=False
        )
        revoked = coordinator.revoke(grant.request_id, actor="lead", reason="done early")
        assert revoked.status is JITStatus.REVOKED
        assert effective_names(store, analyst.identity_id, NOW) == []
        assert audit_log.records(action="jit_revoked")[0]["severity"] == "WARNING"

    def test_revoke_pending_conflicts(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        pending = coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 4)
        with pytest.raises(ConflictError):
            coordinator.revoke(pending.request_id)

    def test_new_grant_supersedes_previous(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity
    ) -> None:
        first = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 4, approval_required=False
        )
        second = coordinator.request(
            analyst.identity_id, "EvidenceReview", JUSTIFICATION, 2, approval_required=False
        )
        assert coordinator.get(first.request_id).status is JITStatus.REVOKED
        active = coordinator.active_grant(analyst.identity_id)
        assert active is not None
        assert active.request_id == second.request_id
        current = store.get(analyst.identity_id).active_jit
        assert current is not None and current.request_id == second.request_id


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestSweep:
    def test_sweep_expires_and_removes_permissions(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity
    ) -> None:
        grant = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 8, approval_required=False
        )
        later = NOW + datetime.timedelta(hours=8, seconds=1)
        expired = coordinator.sweep(later)
        assert [g.request_id for g in expired] == [grant.request_id]
        assert coordinator.get(grant.request_id).status is JITStatus.EXPIRED
        assert store.get(analyst.identity_id).active_jit is None
        assert effective_names(store, analyst.identity_id, later) == []

    def test_second_sweep_is_noop(
        self, coordinator: JITAccessCoordinator, analyst: Identity, audit_log: AuditLog
    ) -> None:
        coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 8, approval_required=False
        )
        later = NOW + datetime.timedelta(hours=8, seconds=1)
        coordinator.sweep(later)
        assert coordinator.sweep(later) == []
        assert len(audit_log.records(action="jit_expired")) == 1

    def test_sweep_before_expiry_does_nothing(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 8, approval_required=False
        )
        assert coordinator.sweep(NOW + datetime.timedelta(hours=7)) == []

    def test_expired_jit_permissions_hidden_before_sweep(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity
    ) -> None:
        coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 1, approval_required=False
        )
        later = NOW + datetime.timedelta(hours=2)
        assert effective_names(store, analyst.identity_id, later) == []

    def test_emergency_expiry_is_high_severity(
        self, coordinator: JITAccessCoordinator, analyst: Identity, audit_log: AuditLog
    ) -> None:
        coordinator.request(
            analyst.identity_id, "Emergency", JUSTIFICATION, 2, emergency_override=True
        )
        coordinator.sweep(NOW + datetime.timedelta(hours=3))
        assert audit_log.records(action="jit_expired")[0]["severity"] == "HIGH"

    def test_sweep_uses_clock_by_default(
        self, coordinator: JITAccessCoordinator, analyst: Identity, clock: FakeClock
    ) -> None:
        coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 1, approval_required=False
        )
        clock.advance(hours=1)
        assert len(coordinator.sweep()) == 1


# ---------------------------------------------------------------------------
# Query and persistence
# ---------------------------------------------------------------------------


class TestQuery:
    def test_list_filters_and_orders(
        self, coordinator: JITAccessCoordinator, store: IdentityStore, analyst: Identity, clock: FakeClock
    ) -> None:
        other = store.create("responder", role="IncidentResponder")
        first = coordinator.request(analyst.identity_id, "Investigation", JUSTIFICATION, 4)
        clock.advance(minutes=5)
        second = coordinator.request(other.identity_id, "Investigation", JUSTIFICATION, 4)
        assert [g.request_id for g in coordinator.list()] == [second.request_id, first.request_id]
        assert [g.request_id for g in coordinator.list(identity_id=analyst.identity_id)] == [
            first.request_id
        ]
        assert coordinator.list(status=JITStatus.GRANTED) == []

    def test_get_unknown(self, coordinator: JITAccessCoordinator) -> None:
        with pytest.raises(NotFoundError):
            coordinator.get("missing")

    def test_grant_round_trip(
        self, coordinator: JITAccessCoordinator, analyst: Identity
    ) -> None:
        grant = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 4, approval_required=False
        )
        rebuilt = JITGrant.from_dict(grant.to_dict())
        assert rebuilt == grant

    def test_restore_relinks_granted(
        self,
        coordinator: JITAccessCoordinator,
        store: IdentityStore,
        analyst: Identity,
        audit_log: AuditLog,
        clock: FakeClock,
    ) -> None:
        grant = coordinator.request(
            analyst.identity_id, "Investigation", JUSTIFICATION, 4, approval_required=False
        )
        fresh_store = IdentityStore(clock=clock)
        fresh_store.restore(store.get(analyst.identity_id))
        fresh = JITAccessCoordinator(fresh_store, clock=clock)
        fresh.restore(grant)
        assert fresh.active_grant(analyst.identity_id) is not None
        assert "HuntManage" in effective_names(fresh_store, analyst.identity_id, NOW)
