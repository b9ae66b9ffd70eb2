"""ZeroTrustOrchestrator — the single facade over every engine component.

The orchestrator owns one instance of each component, all sharing one
audit log, and builds them from an :class:`EngineConfig`. Administrative
operations return :class:`OperationResult` values instead of raising;
query operations raise the component exceptions directly.

Enforcement mode state machine::

    Disabled ──► Transitioning ──► Enforcing
        ▲              │    ▲          │
        └──────────────┘    └──────────┘

Under ``Disabled`` decisions are computed but every outcome is Allow.
Under ``Transitioning`` Deny outcomes are downgraded to Monitor while
StepUp is still required. Under ``Enforcing`` decisions are binding.
"""
from __future__ import annotations

import dataclasses
import datetime
import logging
import threading
from enum import Enum
from typing import Any, Callable, Iterable, TypeVar

from zero_trust_engine.access.engine import ConditionalAccessEngine
from zero_trust_engine.access.models import (
    AccessContext,
    AccessEvaluation,
    ConditionalAccessPolicy,
    Decision,
)
from zero_trust_engine.audit.log import AuditLog, Severity
from zero_trust_engine.certificates.ca import CertificateAuthority
from zero_trust_engine.certificates.manager import CertificateLifecycleManager
from zero_trust_engine.certificates.models import (
    Certificate,
    CertificateRequest,
    CertificateStatus,
    ValidationDepth,
    ValidationReport,
)
from zero_trust_engine.certificates.revocation import RevocationList
from zero_trust_engine.certificates.store import FilesystemCertificateStore
from zero_trust_engine.config import EngineConfig, SecurityLevel
from zero_trust_engine.errors import ConflictError, OperationResult, ValidationError, ZeroTrustError
from zero_trust_engine.identity.models import Identity, IdentityStatus
from zero_trust_engine.identity.store import IdentityStore
from zero_trust_engine.identity.trust import TrustEvidence
from zero_trust_engine.jit.coordinator import JITAccessCoordinator
from zero_trust_engine.jit.models import JITGrant, JITStatus
from zero_trust_engine.jit.sweeper import JITExpirySweeper
from zero_trust_engine.network.boundaries import RuleSink, TrustBoundaryModel
from zero_trust_engine.network.models import MicroSegment, NetworkSegment
from zero_trust_engine.permissions.calculator import PermissionCalculator
from zero_trust_engine.permissions.model import Permission, permission_set

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class EnforcementMode(str, Enum):
    DISABLED = "Disabled"
    TRANSITIONING = "Transitioning"
    ENFORCING = "Enforcing"

    @classmethod
    def parse(cls, value: "str | EnforcementMode") -> "EnforcementMode":
        if isinstance(value, EnforcementMode):
            return value
        for member in cls:
            if str(value).strip().lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValidationError(f"Unknown enforcement mode {value!r}.")


ALLOWED_TRANSITIONS: dict[EnforcementMode, frozenset[EnforcementMode]] = {
    EnforcementMode.DISABLED: frozenset({EnforcementMode.TRANSITIONING}),
    EnforcementMode.TRANSITIONING: frozenset({EnforcementMode.ENFORCING, EnforcementMode.DISABLED}),
    EnforcementMode.ENFORCING: frozenset({EnforcementMode.TRANSITIONING}),
}

# Trust score needed for the baseline allow policy, per security level.
_TRUST_THRESHOLDS: dict[SecurityLevel, int] = {
    SecurityLevel.STANDARD: 50,
    SecurityLevel.HIGH: 70,
    SecurityLevel.MAXIMUM: 80,
}


def baseline_policies(level: SecurityLevel) -> list[ConditionalAccessPolicy]:
    """Conditional-access policies installed for a fresh engine at *level*.

    Every level monitors requests from networks marked untrusted. From
    ``Standard`` up, low-trust identities must step up and sufficiently
    trusted ones are allowed; ``High`` additionally demands a compliant
    device and ``Maximum`` blocks untrusted locations outright.
    """
    policies = [
        ConditionalAccessPolicy(
            name="baseline-monitor-untrusted-network",
            description="Log requests arriving from networks not marked trusted.",
            conditions={"network.trusted": False},
            actions={"monitor": {}},
            priority=500,
        )
    ]
    threshold = _TRUST_THRESHOLDS.get(level)
    if threshold is None:
        return policies

    allow_conditions: dict[str, object] = {
        "trust": {"attribute": "identity.trust_score", "operator": "gte", "value": threshold},
    }
    policies.append(
        ConditionalAccessPolicy(
            name="baseline-require-mfa-low-trust",
            description=f"Identities below trust {threshold} must re-authenticate.",
            conditions={"trust": {"attribute": "identity.trust_score", "operator": "lt", "value": threshold}},
            actions={"require_mfa": {}},
            priority=50,
        )
    )
    if level.rank >= SecurityLevel.HIGH.rank:
        policies.append(
            ConditionalAccessPolicy(
                name="baseline-require-compliant-device",
                description="Non-compliant devices must be remediated first.",
                conditions={"device.compliant": False},
                actions={"require_compliant_device": {}},
                priority=40,
            )
        )
        allow_conditions["device.compliant"] = True
    if level is SecurityLevel.MAXIMUM:
        policies.append(
            ConditionalAccessPolicy(
                name="baseline-block-untrusted-location",
                description="Requests from untrusted locations are blocked.",
                conditions={"location.trusted": False},
                actions={"block": {}},
                priority=10,
            )
        )
    policies.append(
        ConditionalAccessPolicy(
            name="baseline-allow-verified",
            description="Allow verified identities within their entitlements.",
            conditions=allow_conditions,
            actions={"allow": {}, "session_timeout": 3600 if level.rank < SecurityLevel.HIGH.rank else 1800},
            priority=1000,
        )
    )
    return policies


class ZeroTrustOrchestrator:
    """Builds, owns and exposes every engine component.

    Parameters
    ----------
    config:
        Engine configuration. Defaults to ``EngineConfig()``.
    audit_log:
        Shared audit log. Defaults to one at ``config.audit_log_path``.
    root_ca:
        External root authority. When omitted the certificate manager
        generates an internal root on first use.
    notifier:
        Receives JIT requests awaiting approval.
    rule_sink:
        Receives segments whose firewall rules must be applied.
    install_baseline:
        Install the baseline conditional-access policies for the security
        level. Snapshot loading turns this off.
    clock:
        Source of the current UTC time for every component.

    Example
    -------
    ::

        with ZeroTrustOrchestrator(EngineConfig(security_level="High")) as zt:
            alice = zt.create_identity("alice", "DFIRAnalyst").unwrap()
            zt.enable_enforcement("Transitioning")
            print(zt.evaluate_access(alice.identity_id).decision)
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        audit_log: AuditLog | None = None,
        root_ca: CertificateAuthority | None = None,
        notifier: Callable[[JITGrant], None] | None = None,
        rule_sink: RuleSink | None = None,
        install_baseline: bool = True,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._config = config if config is not None else EngineConfig()
        self._clock = clock
        self.audit_log = audit_log if audit_log is not None else AuditLog(self._config.audit_log_path, clock=clock)

        self.identities = IdentityStore(audit_log=self.audit_log, clock=clock)
        self.calculator = PermissionCalculator()
        self.jit = JITAccessCoordinator(
            self.identities,
            policy=self._config.jit_policy(),
            audit_log=self.audit_log,
            notifier=notifier,
            clock=clock,
        )
        self.sweeper = JITExpirySweeper(self.jit, interval_seconds=self._config.sweep_interval_seconds)
        self.access = ConditionalAccessEngine(
            default_deny_all=self._config.effective_default_deny_all(),
            audit_log=self.audit_log,
            clock=clock,
        )
        store = (
            FilesystemCertificateStore(self._config.certificate_store_path)
            if self._config.certificate_store_path is not None
            else None
        )
        self.certificates = CertificateLifecycleManager(
            store=store,
            revocation_list=RevocationList(self._config.crl_path),
            root_ca=root_ca,
            audit_log=self.audit_log,
            forensic_required=self._config.forensic_certificates_required(),
            ca_common_name=self._config.ca_common_name,
            ca_organization=self._config.ca_organization,
            clock=clock,
        )
        self.boundaries = TrustBoundaryModel(
            management_networks=self._config.management_networks,
            audit_log=self.audit_log,
            rule_sink=rule_sink,
            clock=clock,
        )

        self._mode = EnforcementMode.DISABLED
        self._mode_lock = threading.Lock()

        if install_baseline:
            for policy in baseline_policies(self._config.security_level):
                self.access.add(policy)
        logger.info(
            "Zero-trust engine initialised at %s (default deny: %s, forensic certificates: %s)",
            self._config.security_level.value,
            self.access.default_deny_all,
            self.certificates.forensic_required,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def enforcement_mode(self) -> EnforcementMode:
        with self._mode_lock:
            return self._mode

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background JIT expiry sweep."""
        self.sweeper.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self.sweeper.stop(timeout)

    def __enter__(self) -> "ZeroTrustOrchestrator":
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Identity administration
    # ------------------------------------------------------------------

    def create_identity(
        self,
        username: str,
        role: str,
        display_name: str = "",
        scopes: Iterable[str] = (),
        privilege_level: str = "Standard",
        explicit_permissions: Iterable[str] = (),
        denied_permissions: Iterable[str] = (),
        actor: str = "system",
    ) -> OperationResult[Identity]:
        """Create an identity and compute its baseline permissions.

        The permission inputs are validated before anything is stored.
        """
        scopes = list(scopes)
        explicit = list(explicit_permissions)
        denied = list(denied_permissions)

        def run() -> Identity:
            self.calculator.compute(role, scopes, privilege_level, explicit, denied)
            identity = self.identities.create(username, role, display_name=display_name, actor=actor)
            return self._apply_least_privilege(
                identity.identity_id, scopes, privilege_level, explicit, denied, actor
            )

        return self._attempt("create_identity", run)

    def set_least_privilege_access(
        self,
        identity_id: str,
        scopes: Iterable[str] = (),
        privilege_level: str = "Standard",
        explicit_permissions: Iterable[str] = (),
        denied_permissions: Iterable[str] = (),
        actor: str = "system",
    ) -> OperationResult[Identity]:
        """Recompute and store the identity's baseline permission set."""
        return self._attempt(
            "set_least_privilege_access",
            self._apply_least_privilege,
            identity_id,
            list(scopes),
            privilege_level,
            list(explicit_permissions),
            list(denied_permissions),
            actor,
        )

    def set_identity_status(
        self,
        identity_id: str,
        status: str,
        actor: str = "system",
        reason: str = "",
    ) -> OperationResult[Identity]:
        def run() -> Identity:
            try:
                parsed = IdentityStatus(status)
            except ValueError as exc:
                raise ValidationError(f"Unknown identity status {status!r}.") from exc
            return self.identities.set_status(identity_id, parsed, actor=actor, reason=reason)

        return self._attempt("set_identity_status", run)

    def recompute_trust(
        self,
        identity_id: str,
        evidence: TrustEvidence,
        actor: str = "system",
    ) -> OperationResult[Identity]:
        return self._attempt("recompute_trust", self.identities.recompute_trust, identity_id, evidence, actor)

    # ------------------------------------------------------------------
    # JIT administration
    # ------------------------------------------------------------------

    def request_jit_access(
        self,
        identity_id: str,
        access_type: str,
        justification: str,
        duration_hours: int,
        permissions: Iterable[str] = (),
        approval_required: bool | None = None,
        emergency_override: bool = False,
        requested_by: str = "system",
    ) -> OperationResult[JITGrant]:
        return self._attempt(
            "request_jit_access",
            self.jit.request,
            identity_id,
            access_type,
            justification,
            duration_hours,
            permissions=list(permissions),
            approval_required=approval_required,
            emergency_override=emergency_override,
            requested_by=requested_by,
        )

    def approve_jit_access(self, request_id: str, approver: str, reason: str = "") -> OperationResult[JITGrant]:
        return self._attempt("approve_jit_access", self.jit.approve, request_id, approver, reason)

    def deny_jit_access(self, request_id: str, approver: str, reason: str = "") -> OperationResult[JITGrant]:
        return self._attempt("deny_jit_access", self.jit.deny, request_id, approver, reason)

    def revoke_jit_access(self, request_id: str, actor: str = "system", reason: str = "") -> OperationResult[JITGrant]:
        return self._attempt("revoke_jit_access", self.jit.revoke, request_id, actor, reason)

    def sweep_jit(self, now: datetime.datetime | None = None) -> list[JITGrant]:
        """Run one expiry sweep immediately."""
        return self.jit.sweep(now)

    # ------------------------------------------------------------------
    # Conditional access administration
    # ------------------------------------------------------------------

    def set_conditional_access_policy(
        self,
        policy: "ConditionalAccessPolicy | dict[str, Any]",
        actor: str = "system",
    ) -> OperationResult[ConditionalAccessPolicy]:
        """Add or replace a policy given as a record or a plain mapping."""

        def run() -> ConditionalAccessPolicy:
            parsed = policy if isinstance(policy, ConditionalAccessPolicy) else ConditionalAccessPolicy.from_dict(policy)
            return self.access.set(parsed, actor=actor)

        return self._attempt("set_conditional_access_policy", run)

    def remove_conditional_access_policy(self, name: str, actor: str = "system") -> OperationResult[ConditionalAccessPolicy]:
        return self._attempt("remove_conditional_access_policy", self.access.remove, name, actor)

    # ------------------------------------------------------------------
    # Certificate administration
    # ------------------------------------------------------------------

    def issue_certificate(
        self,
        subject: str,
        cert_type: str = "Client",
        key_usage: Iterable[str] = (),
        validity_days: int = 365,
        key_size: int = 2048,
        hash_algorithm: str = "SHA256",
        forensic_grade: bool = False,
        issuer_thumbprint: str | None = None,
        subject_alt_names: Iterable[str] = (),
        owner_id: str | None = None,
        actor: str = "system",
    ) -> OperationResult[Certificate]:
        def run() -> Certificate:
            request = CertificateRequest(
                subject=subject,
                cert_type=cert_type,  # type: ignore[arg-type]
                key_usage=frozenset(key_usage),  # type: ignore[arg-type]
                validity_days=validity_days,
                key_size=key_size,
                hash_algorithm=hash_algorithm,
                forensic_grade=forensic_grade,
                issuer_thumbprint=issuer_thumbprint,
                subject_alt_names=list(subject_alt_names),
                owner_id=owner_id,
            )
            return self.certificates.issue(request, actor=actor)

        return self._attempt("issue_certificate", run)

    def revoke_certificate(
        self,
        thumbprint: str,
        reason: str = "Unspecified",
        effective_date: datetime.datetime | None = None,
        actor: str = "system",
    ) -> OperationResult[Certificate]:
        return self._attempt(
            "revoke_certificate", self.certificates.revoke, thumbprint, reason, effective_date, actor
        )

    def renew_certificate(
        self,
        thumbprint: str,
        validity_days: int | None = None,
        actor: str = "system",
    ) -> OperationResult[Certificate]:
        return self._attempt("renew_certificate", self.certificates.renew, thumbprint, validity_days, actor)

    # ------------------------------------------------------------------
    # Network administration
    # ------------------------------------------------------------------

    def create_network_segment(
        self,
        name: str,
        cidr: str,
        trust_level: str,
        isolation_level: str = "Basic",
        description: str = "",
        actor: str = "system",
    ) -> OperationResult[NetworkSegment]:
        return self._attempt(
            "create_network_segment",
            self.boundaries.create_segment,
            name,
            cidr,
            trust_level,
            isolation_level,
            description,
            actor,
        )

    def add_micro_segment(
        self,
        parent: str,
        name: str,
        cidr: str,
        trust_level: str | None = None,
        allowed_ports: Iterable[int] = (),
        allowed_sources: Iterable[str] = (),
        actor: str = "system",
    ) -> OperationResult[MicroSegment]:
        return self._attempt(
            "add_micro_segment",
            self.boundaries.add_micro_segment,
            parent,
            name,
            cidr,
            trust_level,
            list(allowed_ports),
            list(allowed_sources),
            actor,
        )

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    def enable_enforcement(self, mode: "EnforcementMode | str", actor: str = "system") -> OperationResult[EnforcementMode]:
        """Move the enforcement state machine to *mode*.

        Requesting the current mode succeeds without a change. Any move
        not listed in :data:`ALLOWED_TRANSITIONS` is a conflict.
        """

        def run() -> EnforcementMode:
            target = EnforcementMode.parse(mode)
            with self._mode_lock:
                current = self._mode
                if target is current:
                    return current
                if target not in ALLOWED_TRANSITIONS[current]:
                    raise ConflictError(
                        f"Cannot move enforcement from {current.value} to {target.value}."
                    )
                self._mode = target
            severity = Severity.WARNING if target is EnforcementMode.DISABLED else Severity.INFO
            self.audit_log.record(
                "enforcement_mode_changed",
                subject="engine",
                actor=actor,
                severity=severity,
                timestamp=self._clock(),
                previous=current.value,
                mode=target.value,
            )
            logger.info("Enforcement mode %s -> %s", current.value, target.value)
            return target

        return self._attempt("enable_enforcement", run)

    def restore_enforcement_mode(self, mode: "EnforcementMode | str") -> None:
        """Set the mode from a snapshot, bypassing the transition rules."""
        with self._mode_lock:
            self._mode = EnforcementMode.parse(mode)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_identity(self, identity_id: str) -> Identity:
        return self.identities.get(identity_id)

    def list_identities(self, role: str | None = None, status: IdentityStatus | None = None, query: str = "") -> list[Identity]:
        return self.identities.list(role=role, status=status, query=query)

    def evaluate_access(
        self,
        identity_id: str,
        requested_permission: str | None = None,
        device: dict[str, Any] | None = None,
        network: dict[str, Any] | None = None,
        location: dict[str, Any] | None = None,
        request: dict[str, Any] | None = None,
        timestamp: datetime.datetime | None = None,
    ) -> AccessEvaluation:
        """Decide one access attempt by *identity_id*.

        Inactive identities and permissions outside the identity's
        effective set are denied before any policy runs. The outcome is
        then adjusted for the enforcement mode.

        Raises
        ------
        NotFoundError
            If the identity does not exist.
        ValidationError
            If *requested_permission* is not a valid permission name.
        """
        now = timestamp or self._clock()
        identity = self.identities.get(identity_id)
        context = AccessContext.from_identity(
            identity,
            timestamp=now,
            requested_permission=requested_permission,
            device=dict(device or {}),
            network=dict(network or {}),
            location=dict(location or {}),
            request=dict(request or {}),
        )

        if not identity.is_active:
            evaluation = AccessEvaluation(
                decision=Decision.DENY,
                reason=f"identity is {identity.status.value}",
                timestamp=now,
            )
        elif requested_permission is not None and not identity.has_permission(
            Permission.parse(requested_permission), now
        ):
            evaluation = AccessEvaluation(
                decision=Decision.DENY,
                reason=f"{requested_permission} is not in the effective permission set",
                timestamp=now,
            )
        else:
            evaluation = self.access.evaluate(context)

        adjusted = self._apply_mode(evaluation)
        logger.debug(
            "Access for %s (%s): %s", identity.username, requested_permission or "-", adjusted.decision.value
        )
        return adjusted

    def validate_certificate_chain(self, thumbprint: str, depth: str = "Basic") -> ValidationReport:
        return self.certificates.validate_chain(thumbprint, ValidationDepth.parse(depth))

    def get_trust_boundaries(self) -> list[NetworkSegment]:
        return self.boundaries.list()

    def status(self) -> dict[str, object]:
        """Summarise the state of every component."""
        identities = self.identities.list()
        grants = self.jit.list()
        certificates = self.certificates.list()
        return {
            "security_level": self._config.security_level.value,
            "compliance_frameworks": [f.value for f in self._config.compliance_frameworks],
            "enforcement_mode": self.enforcement_mode.value,
            "default_deny_all": self.access.default_deny_all,
            "identities": {
                "total": len(identities),
                "active": sum(1 for i in identities if i.is_active),
            },
            "jit": {
                "pending": sum(1 for g in grants if g.status is JITStatus.PENDING),
                "granted": sum(1 for g in grants if g.status is JITStatus.GRANTED),
                "sweeper_running": self.sweeper.running,
            },
            "policies": len(self.access),
            "certificates": {
                "total": len(certificates),
                "active": sum(1 for c in certificates if c.status is CertificateStatus.ACTIVE),
                "revoked": sum(1 for c in certificates if c.status is CertificateStatus.REVOKED),
                "expiring_30d": len(self.certificates.expiring(30)),
                "forensic_required": self.certificates.forensic_required,
            },
            "segments": self.boundaries.summary()["by_status"],
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_least_privilege(
        self,
        identity_id: str,
        scopes: list[str],
        privilege_level: str,
        explicit: list[str],
        denied: list[str],
        actor: str,
    ) -> Identity:
        breakdown = self.calculator.explain(
            self.identities.get(identity_id).role, scopes, privilege_level, explicit, denied
        )

        def apply(identity: Identity) -> None:
            identity.permissions = list(breakdown.effective)
            identity.scopes = list(breakdown.scopes)
            identity.privilege_level = breakdown.privilege_level
            identity.explicit_permissions = permission_set(breakdown.granted)
            identity.denied_permissions = permission_set(breakdown.denied)

        return self.identities.update(
            identity_id,
            apply,
            actor=actor,
            action="least_privilege_set",
            details={
                "privilege_level": breakdown.privilege_level.label,
                "scopes": [s.value for s in breakdown.scopes],
                "permissions": [p.name for p in breakdown.effective],
            },
        )

    def _apply_mode(self, evaluation: AccessEvaluation) -> AccessEvaluation:
        mode = self.enforcement_mode
        if mode is EnforcementMode.ENFORCING:
            return evaluation
        if mode is EnforcementMode.DISABLED and evaluation.decision is not Decision.ALLOW:
            return dataclasses.replace(
                evaluation,
                decision=Decision.ALLOW,
                computed=evaluation.decision,
                reason=f"{evaluation.reason} (enforcement disabled)",
            )
        if mode is EnforcementMode.TRANSITIONING and evaluation.decision is Decision.DENY:
            return dataclasses.replace(
                evaluation,
                decision=Decision.MONITOR,
                computed=Decision.DENY,
                reason=f"{evaluation.reason} (transitioning: deny logged only)",
            )
        return evaluation

    @staticmethod
    def _attempt(operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> OperationResult[T]:
        try:
            return OperationResult.success(func(*args, **kwargs))
        except ZeroTrustError as exc:
            logger.warning("%s failed: %s", operation, exc)
            return OperationResult.failure(exc)
