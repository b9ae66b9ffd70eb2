"""JITAccessCoordinator — grants and expires time-boxed elevated access.

State machine::

    Pending --approve--> Granted --timeout--> Expired
    Pending --deny-----> Denied   Granted --revoke--> Revoked
    (request with emergency override or without approval) --> Granted

Every transition that touches an identity runs under that identity's lock
in the :class:`IdentityStore`, so granting, superseding, expiring and
revoking are atomic with respect to each other for the same identity.
At most one grant per identity is ``Granted`` at any time; a new grant
supersedes (revokes) the previous one.
"""
from __future__ import annotations

import copy
import dataclasses
import datetime
import logging
import threading
import uuid
from typing import Callable, Iterable

from zero_trust_engine.audit.log import AuditLog, Severity
from zero_trust_engine.errors import (
    ConflictError,
    NotFoundError,
    PolicyViolationError,
    ValidationError,
)
from zero_trust_engine.identity.models import Identity
from zero_trust_engine.identity.store import IdentityStore
from zero_trust_engine.jit.models import ACCESS_TYPE_PERMISSIONS, AccessType, JITGrant, JITStatus
from zero_trust_engine.jit.policy import MAX_DURATION_HOURS, MIN_DURATION_HOURS, JITPolicy
from zero_trust_engine.permissions.model import Permission, permission_set

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class JITAccessCoordinator:
    """Coordinates JIT requests, approvals, revocations and expiry.

    Parameters
    ----------
    identity_store:
        Store owning the identities that receive access.
    policy:
        Admission policy. Defaults to :class:`JITPolicy` defaults.
    audit_log:
        Engine-wide audit log; one record per transition.
    notifier:
        Called with a copy of each grant that needs approval. Failures are
        logged and do not affect the request.
    clock:
        Source of the current UTC time.
    """

    def __init__(
        self,
        identity_store: IdentityStore,
        policy: JITPolicy | None = None,
        audit_log: AuditLog | None = None,
        notifier: Callable[[JITGrant], None] | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._store = identity_store
        self._policy = policy if policy is not None else JITPolicy()
        self._audit = audit_log
        self._notifier = notifier
        self._clock = clock
        self._grants: dict[str, JITGrant] = {}
        self._lock = threading.Lock()

    @property
    def policy(self) -> JITPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def test_request(
        self,
        identity: Identity,
        access_type: "AccessType | str",
        justification: str,
        duration_hours: int,
    ) -> list[str]:
        """Return every admission-policy violation for a prospective request.

        An empty list means the request is admissible.
        """
        parsed_type = AccessType.parse(access_type)
        violations: list[str] = []
        if not identity.is_active:
            violations.append(f"identity is {identity.status.value}")
        if identity.trust_score < self._policy.min_trust_score:
            violations.append(
                f"trust score {identity.trust_score} is below the required "
                f"{self._policy.min_trust_score}"
            )
        if len(justification.strip()) < self._policy.min_justification_length:
            violations.append(
                f"justification must be at least {self._policy.min_justification_length} characters"
            )
        ceiling = self._policy.duration_ceiling(parsed_type)
        if duration_hours > ceiling:
            violations.append(
                f"duration {duration_hours}h exceeds the {ceiling}h limit for {parsed_type.value}"
            )
        allowed = self._policy.allowed_roles.get(parsed_type)
        if allowed is not None and identity.role not in allowed:
            violations.append(
                f"role {identity.role.value} may not request {parsed_type.value} access"
            )
        return violations

    def request(
        self,
        identity_id: str,
        access_type: "AccessType | str",
        justification: str,
        duration_hours: int,
        permissions: Iterable["Permission | str"] = (),
        approval_required: bool | None = None,
        emergency_override: bool = False,
        requested_by: str = "system",
    ) -> JITGrant:
        """Request JIT access for an identity.

        Parameters
        ----------
        identity_id:
            Identity receiving the access.
        access_type:
            Kind of access; selects the permission delta.
        justification:
            Business reason, checked against the policy's minimum length.
        duration_hours:
            Requested duration, 1 to 72 hours.
        permissions:
            Extra permissions added to the access type's delta.
        approval_required:
            Overrides the policy default. When False the request is granted
            immediately if it passes admission.
        emergency_override:
            Bypass approval and admission; violations are recorded as a
            warning-severity audit entry instead of failing.
        requested_by:
            The requesting principal.

        Returns
        -------
        JITGrant
            A copy of the new grant, ``Pending`` or ``Granted``.

        Raises
        ------
        ValidationError
            For a duration outside [1, 72] or malformed permissions.
        PolicyViolationError
            When admission fails and no emergency override was given.
        NotFoundError
            For an unknown identity.
        """
        if isinstance(duration_hours, bool) or not isinstance(duration_hours, int):
            raise ValidationError("duration_hours must be an integer number of hours.")
        if not MIN_DURATION_HOURS <= duration_hours <= MAX_DURATION_HOURS:
            raise ValidationError(
                f"duration_hours must be within [{MIN_DURATION_HOURS}, {MAX_DURATION_HOURS}], "
                f"got {duration_hours}."
            )
        parsed_type = AccessType.parse(access_type)
        delta = permission_set([*ACCESS_TYPE_PERMISSIONS[parsed_type], *permissions])

        identity = self._store.get(identity_id)
        violations = self.test_request(identity, parsed_type, justification, duration_hours)
        if violations and not emergency_override:
            logger.warning(
                "JIT request for identity %s rejected: %s", identity_id, "; ".join(violations)
            )
            raise PolicyViolationError(violations)

        now = self._clock()
        grant = JITGrant(
            request_id=str(uuid.uuid4()),
            identity_id=identity_id,
            access_type=parsed_type,
            justification=justification,
            duration_hours=duration_hours,
            permissions=delta,
            requested_at=now,
            requested_by=requested_by,
            emergency_override=emergency_override,
            policy_violations=violations if emergency_override else [],
        )

        needs_approval = (
            self._policy.approval_required if approval_required is None else approval_required
        )
        if emergency_override or not needs_approval:
            return self._activate(grant, actor=requested_by, approver=None, now=now)

        with self._lock:
            self._grants[grant.request_id] = grant
            pending = copy.deepcopy(grant)
        self._record(
            "jit_requested",
            pending,
            actor=requested_by,
            access_type=parsed_type.value,
            duration_hours=duration_hours,
        )
        self._notify(pending)
        return pending

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def approve(self, request_id: str, approver: str, reason: str = "") -> JITGrant:
        """Approve a pending request and activate it.

        Raises
        ------
        ConflictError
            If the request is not pending.
        PolicyViolationError
            If the approver is the requester or the identity is no longer active.
        """
        grant = self._require(request_id)
        if grant.status is not JITStatus.PENDING:
            raise ConflictError(
                f"JIT request {request_id} is {grant.status.value}; only Pending requests can be approved."
            )
        if approver == grant.requested_by:
            raise PolicyViolationError(["approver must differ from the requester"])
        identity = self._store.get(grant.identity_id)
        if not identity.is_active:
            raise PolicyViolationError([f"identity is {identity.status.value}"])
        return self._activate(
            grant, actor=approver, approver=approver, now=self._clock(), reason=reason
        )

    def deny(self, request_id: str, approver: str, reason: str = "") -> JITGrant:
        """Deny a pending request.

        Raises
        ------
        ConflictError
            If the request is not pending.
        """
        grant = self._require(request_id)
        with self._store.entity_lock(grant.identity_id):
            with self._lock:
                grant = self._grants[request_id]
                if grant.status is not JITStatus.PENDING:
                    raise ConflictError(
                        f"JIT request {request_id} is {grant.status.value}; only Pending requests can be denied."
                    )
                grant.status = JITStatus.DENIED
                grant.approver = approver
                grant.decision_reason = reason
                grant.closed_at = self._clock()
                denied = copy.deepcopy(grant)
        self._record("jit_denied", denied, actor=approver, reason=reason)
        return denied

    def revoke(self, request_id: str, actor: str = "system", reason: str = "") -> JITGrant:
        """Revoke an active grant and strip its permissions from the identity.

        Raises
        ------
        ConflictError
            If the grant is not currently ``Granted``.
        """
        grant = self._require(request_id)
        with self._store.entity_lock(grant.identity_id):
            if grant.status is not JITStatus.GRANTED:
                raise ConflictError(
                    f"JIT grant {request_id} is {grant.status.value}; only Granted grants can be revoked."
                )
            now = self._clock()
            self._detach(grant, actor=actor, action="jit_revoked", details={"reason": reason})
            with self._lock:
                grant.status = JITStatus.REVOKED
                grant.closed_at = now
                grant.decision_reason = reason
                revoked = copy.deepcopy(grant)
        self._record("jit_revoked", revoked, actor=actor, severity=Severity.WARNING, reason=reason)
        return revoked

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep(self, now: datetime.datetime | None = None) -> list[JITGrant]:
        """Expire every ``Granted`` grant whose expiry has been reached.

        Failures are logged per grant and do not stop the sweep. Running
        the sweep again has no further effect on grants already expired.

        Returns
        -------
        list[JITGrant]
            Copies of the grants expired by this call.
        """
        reference = now or self._clock()
        with self._lock:
            due = [g for g in self._grants.values() if g.is_due(reference)]

        expired: list[JITGrant] = []
        for grant in sorted(due, key=lambda g: (g.expires_at, g.request_id)):
            try:
                result = self._expire(grant, reference)
            except Exception:
                logger.exception("Failed to expire JIT grant %s", grant.request_id)
                continue
            if result is not None:
                expired.append(result)
        return expired

    def _expire(self, grant: JITGrant, now: datetime.datetime) -> JITGrant | None:
        with self._store.entity_lock(grant.identity_id):
            if not grant.is_due(now):
                return None
            self._detach(
                grant,
                actor="jit-sweeper",
                action="jit_expired",
                details={"request_id": grant.request_id},
            )
            with self._lock:
                grant.status = JITStatus.EXPIRED
                grant.closed_at = now
                expired = copy.deepcopy(grant)

        severity = Severity.HIGH if expired.emergency_override else Severity.INFO
        self._record(
            "jit_expired",
            expired,
            actor="jit-sweeper",
            severity=severity,
            expires_at=expired.expires_at.isoformat() if expired.expires_at else None,
        )
        logger.info("JIT grant %s for identity %s expired", expired.request_id, expired.identity_id)
        return expired

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def get(self, request_id: str) -> JITGrant:
        with self._lock:
            grant = self._grants.get(request_id)
            if grant is None:
                raise NotFoundError("JIT request", request_id)
            return copy.deepcopy(grant)

    def list(
        self,
        identity_id: str | None = None,
        status: JITStatus | None = None,
    ) -> list[JITGrant]:
        """Return grant copies, newest request first."""
        with self._lock:
            grants = [copy.deepcopy(g) for g in self._grants.values()]
        if identity_id is not None:
            grants = [g for g in grants if g.identity_id == identity_id]
        if status is not None:
            grants = [g for g in grants if g.status is status]
        return sorted(grants, key=lambda g: (g.requested_at, g.request_id), reverse=True)

    def active_grant(self, identity_id: str) -> JITGrant | None:
        with self._lock:
            for grant in self._grants.values():
                if grant.identity_id == identity_id and grant.status is JITStatus.GRANTED:
                    return copy.deepcopy(grant)
        return None

    def restore(self, grant: JITGrant) -> None:
        """Insert a persisted grant and re-link it to its identity if granted."""
        with self._lock:
            self._grants[grant.request_id] = copy.deepcopy(grant)
        if grant.status is JITStatus.GRANTED:
            self._store.attach_restored_grant(grant.identity_id, grant)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, request_id: str) -> JITGrant:
        with self._lock:
            grant = self._grants.get(request_id)
        if grant is None:
            raise NotFoundError("JIT request", request_id)
        return grant

    def _activate(
        self,
        grant: JITGrant,
        actor: str,
        approver: str | None,
        now: datetime.datetime,
        reason: str = "",
    ) -> JITGrant:
        activated = dataclasses.replace(
            grant,
            status=JITStatus.GRANTED,
            granted_at=now,
            expires_at=now + datetime.timedelta(hours=grant.duration_hours),
            approver=approver,
            decision_reason=reason,
        )
        with self._store.entity_lock(grant.identity_id):
            with self._lock:
                if grant.request_id in self._grants and self._grants[grant.request_id].status is not JITStatus.PENDING:
                    raise ConflictError(f"JIT request {grant.request_id} was decided concurrently.")
                superseded = [
                    g
                    for g in self._grants.values()
                    if g.identity_id == grant.identity_id and g.status is JITStatus.GRANTED
                ]

            def attach(identity: Identity) -> None:
                identity.active_jit = copy.deepcopy(activated)

            self._store.update(
                grant.identity_id,
                attach,
                actor=actor,
                action="jit_granted",
                details={
                    "request_id": activated.request_id,
                    "permissions": [p.name for p in activated.permissions],
                    "expires_at": activated.expires_at.isoformat() if activated.expires_at else None,
                },
                record=False,
            )
            with self._lock:
                for previous in superseded:
                    previous.status = JITStatus.REVOKED
                    previous.closed_at = now
                    previous.decision_reason = f"superseded by {activated.request_id}"
                self._grants[activated.request_id] = activated
                result = copy.deepcopy(activated)

        severity = Severity.WARNING if result.emergency_override else Severity.INFO
        self._record(
            "jit_granted",
            result,
            actor=actor,
            severity=severity,
            access_type=result.access_type.value,
            expires_at=result.expires_at.isoformat() if result.expires_at else None,
            emergency_override=result.emergency_override,
            overridden_violations=list(result.policy_violations),
            superseded=[g.request_id for g in superseded],
        )
        return result

    def _detach(
        self,
        grant: JITGrant,
        actor: str,
        action: str,
        details: dict[str, object],
    ) -> None:
        def clear(identity: Identity) -> None:
            if identity.active_jit is not None and identity.active_jit.request_id == grant.request_id:
                identity.active_jit = None

        self._store.update(
            grant.identity_id,
            clear,
            actor=actor,
            action=action,
            details=details,
            record=False,
        )

    def _record(
        self,
        action: str,
        grant: JITGrant,
        actor: str,
        severity: Severity = Severity.INFO,
        **details: object,
    ) -> None:
        if self._audit is None:
            return
        self._audit.record(
            action,
            subject=grant.identity_id,
            actor=actor,
            severity=severity,
            timestamp=self._clock(),
            request_id=grant.request_id,
            **details,
        )

    def _notify(self, grant: JITGrant) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier(grant)
        except Exception:
            logger.exception("Approval notification failed for JIT request %s", grant.request_id)
