"""Tests for zero_trust_engine.orchestrator — the facade over every component."""
from __future__ import annotations

import datetime

import pytest

from zero_trust_engine.access import Decision
from zero_trust_engine.audit import AuditLog
from zero_trust_engine.config import EngineConfig, SecurityLevel
from zero_trust_engine.errors import ErrorKind, NotFoundError
from zero_trust_engine.identity import AuthMethodKind, Identity, TrustEvidence
from zero_trust_engine.jit import JITStatus
from zero_trust_engine.orchestrator import (
    EnforcementMode,
    ZeroTrustOrchestrator,
    baseline_policies,
)

NOW = datetime.datetime(2026, 3, 2, 10, 0, tzinfo=datetime.timezone.utc)
JUSTIFICATION = "Ransomware case 4711 containment"

STRONG_EVIDENCE = TrustEvidence(
    verified_methods={AuthMethodKind.CERTIFICATE, AuthMethodKind.MFA},
    device_compliant=True,
    certificate_valid=True,
)


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
def zt(clock: FakeClock, audit_log: AuditLog) -> ZeroTrustOrchestrator:
    return ZeroTrustOrchestrator(EngineConfig(), audit_log=audit_log, clock=clock)


@pytest.fixture()
def analyst(zt: ZeroTrustOrchestrator) -> Identity:
    return zt.create_identity("analyst1", "DFIRAnalyst", scopes=["Data"]).unwrap()


def enforce(zt: ZeroTrustOrchestrator) -> None:
    zt.enable_enforcement("Transitioning").unwrap()
    zt.enable_enforcement("Enforcing").unwrap()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    @pytest.mark.parametrize(
        ("level", "count"),
        [
            (SecurityLevel.BASIC, 1),
            (SecurityLevel.STANDARD, 3),
            (SecurityLevel.HIGH, 4),
            (SecurityLevel.MAXIMUM, 5),
        ],
    )
    def test_baseline_policies_per_level(self, level: SecurityLevel, count: int) -> None:
        assert len(baseline_policies(level)) == count

    def test_baseline_installed(self, zt: ZeroTrustOrchestrator) -> None:
        names = [p.name for p in zt.access.list()]
        assert "baseline-allow-verified" in names
        assert "baseline-require-mfa-low-trust" in names

    def test_baseline_skipped_on_request(self) -> None:
        zt = ZeroTrustOrchestrator(install_baseline=False)
        assert len(zt.access) == 0

    def test_security_level_drives_components(self) -> None:
        zt = ZeroTrustOrchestrator(EngineConfig(security_level="Basic"))
        assert zt.access.default_deny_all is False
        assert zt.jit.policy.max_duration_hours == 72
        assert zt.certificates.forensic_required is False

        strict = ZeroTrustOrchestrator(EngineConfig(security_level="Maximum"))
        assert strict.access.default_deny_all is True
        assert strict.jit.policy.max_duration_hours == 4
        assert strict.certificates.forensic_required is True

    def test_starts_disabled(self, zt: ZeroTrustOrchestrator) -> None:
        assert zt.enforcement_mode is EnforcementMode.DISABLED

    def test_context_manager_runs_sweeper(self, clock: FakeClock) -> None:
        with ZeroTrustOrchestrator(EngineConfig(sweep_interval_seconds=30), clock=clock) as zt:
            assert zt.sweeper.running
        assert not zt.sweeper.running


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


class TestIdentityAdministration:
    def test_create_computes_permissions(self, analyst: Identity) -> None:
        names = [p.name for p in analyst.permissions]
        assert "DataAccess" in names
        assert "DataAnalysis" in names
        assert analyst.trust_score == 0.0

    def test_create_records_two_audit_entries(
        self, zt: ZeroTrustOrchestrator, analyst: Identity, audit_log: AuditLog
    ) -> None:
        actions = [r["action"] for r in audit_log.records(subject=analyst.identity_id)]
        assert actions == ["identity_created", "least_privilege_set"]

    def test_invalid_scope_stores_nothing(self, zt: ZeroTrustOrchestrator) -> None:
        result = zt.create_identity("bob", "SOCAnalyst", scopes=["Moon"])
        assert not result.ok
        assert result.error_kind is ErrorKind.VALIDATION
        assert zt.list_identities() == []

    def test_duplicate_username(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        result = zt.create_identity("analyst1", "SOCAnalyst")
        assert result.error_kind is ErrorKind.DUPLICATE

    def test_set_least_privilege(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        updated = zt.set_least_privilege_access(
            analyst.identity_id, scopes=["Evidence"], denied_permissions=["EvidenceWrite"]
        ).unwrap()
        names = [p.name for p in updated.permissions]
        assert "EvidenceExport" in names
        assert "EvidenceWrite" not in names
        assert "DataAccess" not in names

    def test_set_least_privilege_unknown_identity(self, zt: ZeroTrustOrchestrator) -> None:
        result = zt.set_least_privilege_access("missing")
        assert result.error_kind is ErrorKind.NOT_FOUND

    def test_set_identity_status(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        suspended = zt.set_identity_status(analyst.identity_id, "Suspended", reason="leaver").unwrap()
        assert not suspended.is_active

    def test_set_identity_status_unknown(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        result = zt.set_identity_status(analyst.identity_id, "Vanished")
        assert result.error_kind is ErrorKind.VALIDATION

    def test_recompute_trust(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        updated = zt.recompute_trust(analyst.identity_id, STRONG_EVIDENCE).unwrap()
        assert updated.trust_score == 100.0

    def test_get_identity_raises(self, zt: ZeroTrustOrchestrator) -> None:
        with pytest.raises(NotFoundError):
            zt.get_identity("missing")


# ---------------------------------------------------------------------------
# Enforcement mode
# ---------------------------------------------------------------------------


class TestEnforcementMode:
    def test_disabled_cannot_jump_to_enforcing(self, zt: ZeroTrustOrchestrator) -> None:
        result = zt.enable_enforcement("Enforcing")
        assert result.error_kind is ErrorKind.CONFLICT
        assert zt.enforcement_mode is EnforcementMode.DISABLED

    def test_walk_to_enforcing_and_back(self, zt: ZeroTrustOrchestrator, audit_log: AuditLog) -> None:
        enforce(zt)
        assert zt.enforcement_mode is EnforcementMode.ENFORCING
        assert zt.enable_enforcement("Transitioning").ok
        assert zt.enable_enforcement("Disabled").ok
        records = audit_log.records(action="enforcement_mode_changed")
        assert [r["details"]["mode"] for r in records] == [  # type: ignore[index]
            "Transitioning",
            "Enforcing",
            "Transitioning",
            "Disabled",
        ]
        assert records[-1]["severity"] == "WARNING"

    def test_same_mode_is_a_no_op(self, zt: ZeroTrustOrchestrator, audit_log: AuditLog) -> None:
        assert zt.enable_enforcement("Disabled").value is EnforcementMode.DISABLED
        assert audit_log.records(action="enforcement_mode_changed") == []

    def test_unknown_mode(self, zt: ZeroTrustOrchestrator) -> None:
        assert zt.enable_enforcement("Sometimes").error_kind is ErrorKind.VALIDATION


# ---------------------------------------------------------------------------
# Access evaluation
# ---------------------------------------------------------------------------


class TestEvaluateAccess:
    def test_disabled_mode_allows_but_keeps_computed(
        self, zt: ZeroTrustOrchestrator, analyst: Identity
    ) -> None:
        evaluation = zt.evaluate_access(analyst.identity_id)
        assert evaluation.decision is Decision.ALLOW
        assert evaluation.computed is Decision.STEP_UP

    def test_low_trust_must_step_up(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        enforce(zt)
        evaluation = zt.evaluate_access(analyst.identity_id, "DataAccess")
        assert evaluation.decision is Decision.STEP_UP
        assert evaluation.policy == "baseline-require-mfa-low-trust"

    def test_verified_identity_allowed(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        enforce(zt)
        zt.recompute_trust(analyst.identity_id, STRONG_EVIDENCE).unwrap()
        evaluation = zt.evaluate_access(analyst.identity_id, "DataAccess")
        assert evaluation.decision is Decision.ALLOW
        assert evaluation.policy == "baseline-allow-verified"
        assert evaluation.obligations["session_timeout"] == 3600

    def test_permission_outside_set_denied(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        enforce(zt)
        zt.recompute_trust(analyst.identity_id, STRONG_EVIDENCE).unwrap()
        evaluation = zt.evaluate_access(analyst.identity_id, "SystemAdmin")
        assert evaluation.decision is Decision.DENY
        assert evaluation.policy is None

    def test_inactive_identity_denied(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        enforce(zt)
        zt.set_identity_status(analyst.identity_id, "Suspended").unwrap()
        evaluation = zt.evaluate_access(analyst.identity_id)
        assert evaluation.decision is Decision.DENY
        assert "Suspended" in evaluation.reason

    def test_transitioning_downgrades_deny(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        zt.enable_enforcement("Transitioning").unwrap()
        evaluation = zt.evaluate_access(analyst.identity_id, "SystemAdmin")
        assert evaluation.decision is Decision.MONITOR
        assert evaluation.computed is Decision.DENY

    def test_transitioning_keeps_step_up(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        zt.enable_enforcement("Transitioning").unwrap()
        assert zt.evaluate_access(analyst.identity_id).decision is Decision.STEP_UP

    def test_custom_policy_from_mapping(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        enforce(zt)
        zt.recompute_trust(analyst.identity_id, STRONG_EVIDENCE).unwrap()
        zt.set_conditional_access_policy(
            {
                "name": "block-foreign",
                "conditions": {"location.country": {"operator": "not_in", "value": ["DE", "NL"]}},
                "actions": {"block": {}},
                "priority": 5,
            }
        ).unwrap()
        blocked = zt.evaluate_access(analyst.identity_id, location={"country": "US"})
        assert blocked.decision is Decision.DENY
        assert blocked.policy == "block-foreign"
        allowed = zt.evaluate_access(analyst.identity_id, location={"country": "DE"})
        assert allowed.decision is Decision.ALLOW

        assert zt.remove_conditional_access_policy("block-foreign").ok
        assert zt.remove_conditional_access_policy("block-foreign").error_kind is ErrorKind.NOT_FOUND

    def test_invalid_policy_mapping(self, zt: ZeroTrustOrchestrator) -> None:
        result = zt.set_conditional_access_policy({"name": "bad", "actions": {"teleport": {}}})
        assert result.error_kind is ErrorKind.VALIDATION

    def test_unknown_identity_raises(self, zt: ZeroTrustOrchestrator) -> None:
        with pytest.raises(NotFoundError):
            zt.evaluate_access("missing")


# ---------------------------------------------------------------------------
# JIT access
# ---------------------------------------------------------------------------


class TestJITAccess:
    def test_grant_widens_then_expires(
        self, zt: ZeroTrustOrchestrator, analyst: Identity, clock: FakeClock
    ) -> None:
        enforce(zt)
        zt.recompute_trust(analyst.identity_id, STRONG_EVIDENCE).unwrap()
        assert zt.evaluate_access(analyst.identity_id, "HuntManage").decision is Decision.DENY

        pending = zt.request_jit_access(
            analyst.identity_id, "Investigation", JUSTIFICATION, 8, requested_by="analyst1"
        ).unwrap()
        assert pending.status is JITStatus.PENDING
        granted = zt.approve_jit_access(pending.request_id, approver="lead").unwrap()
        assert granted.status is JITStatus.GRANTED
        assert zt.evaluate_access(analyst.identity_id, "HuntManage").decision is Decision.ALLOW

        clock.advance(hours=8, seconds=1)
        expired = zt.sweep_jit()
        assert [g.request_id for g in expired] == [pending.request_id]
        assert zt.evaluate_access(analyst.identity_id, "HuntManage").decision is Decision.DENY

    def test_duration_above_level_ceiling(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        result = zt.request_jit_access(analyst.identity_id, "Investigation", JUSTIFICATION, 48)
        assert result.error_kind is ErrorKind.POLICY_VIOLATION
        assert result.details["violations"]

    def test_self_approval_rejected(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        pending = zt.request_jit_access(
            analyst.identity_id, "Investigation", JUSTIFICATION, 4, requested_by="analyst1"
        ).unwrap()
        result = zt.approve_jit_access(pending.request_id, approver="analyst1")
        assert result.error_kind is ErrorKind.POLICY_VIOLATION

    def test_deny_and_revoke(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        pending = zt.request_jit_access(analyst.identity_id, "Investigation", JUSTIFICATION, 4).unwrap()
        denied = zt.deny_jit_access(pending.request_id, approver="lead", reason="not needed").unwrap()
        assert denied.status is JITStatus.DENIED
        assert zt.revoke_jit_access(pending.request_id).error_kind is ErrorKind.CONFLICT

    def test_immediate_grant_without_approval(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        grant = zt.request_jit_access(
            analyst.identity_id, "EvidenceReview", JUSTIFICATION, 2, approval_required=False
        ).unwrap()
        assert grant.status is JITStatus.GRANTED
        revoked = zt.revoke_jit_access(grant.request_id, reason="case closed").unwrap()
        assert revoked.status is JITStatus.REVOKED


# ---------------------------------------------------------------------------
# Certificates and segments
# ---------------------------------------------------------------------------


class TestCertificatesAndSegments:
    def test_issue_validate_revoke(self) -> None:
        zt = ZeroTrustOrchestrator()
        cert = zt.issue_certificate("CN=collector01, O=DFIR", cert_type="Client").unwrap()
        report = zt.validate_certificate_chain(cert.thumbprint, "Basic")
        assert report.chain[0] == cert.thumbprint
        revoked = zt.revoke_certificate(cert.thumbprint, reason="KeyCompromise").unwrap()
        assert revoked.is_revoked

    def test_issue_bad_subject(self, zt: ZeroTrustOrchestrator) -> None:
        result = zt.issue_certificate("not a subject")
        assert result.error_kind is ErrorKind.VALIDATION

    def test_revoke_unknown(self, zt: ZeroTrustOrchestrator) -> None:
        assert zt.revoke_certificate("00FF").error_kind is ErrorKind.NOT_FOUND

    def test_segments(self, zt: ZeroTrustOrchestrator) -> None:
        zt.create_network_segment("forensics", "10.20.0.0/16", "HighlyTrusted", "Complete").unwrap()
        clash = zt.create_network_segment("lab", "10.20.1.0/24", "Trusted")
        assert clash.error_kind is ErrorKind.DUPLICATE
        micro = zt.add_micro_segment("forensics", "evidence", "10.20.5.0/24", allowed_ports=[8443]).unwrap()
        assert micro.trust_level.value == "HighlyTrusted"
        assert [s.name for s in zt.get_trust_boundaries()] == ["forensics"]


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class TestStatus:
    def test_status_summary(self, zt: ZeroTrustOrchestrator, analyst: Identity) -> None:
        zt.request_jit_access(analyst.identity_id, "Investigation", JUSTIFICATION, 4)
        status = zt.status()
        assert status["security_level"] == "Standard"
        assert status["enforcement_mode"] == "Disabled"
        assert status["identities"] == {"total": 1, "active": 1}
        assert status["jit"]["pending"] == 1  # type: ignore[index]
        assert status["policies"] == 3
        assert status["certificates"]["total"] == 0  # type: ignore[index]
