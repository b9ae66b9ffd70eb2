"""ConditionalAccessEngine — evaluates request context against policies.

Selection rule: policies whose scope matches the principal, whose effective
window contains the request time and whose mode is not ``Disabled`` are
ordered by ``(priority, name)``. The first ``Enforce`` policy whose
conditions all hold decides. ``Report`` policies that match along the way
are logged and listed in the result but never decide. When nothing decides,
the default is ``Deny`` if ``default_deny_all`` is set and ``Allow``
otherwise.

Evaluation takes a snapshot of the policy table and holds no lock while it
runs, so any number of evaluations may proceed in parallel.
"""
from __future__ import annotations

import datetime
import logging
import threading
from typing import Callable, Iterable

from zero_trust_engine.access.models import (
    AccessContext,
    AccessEvaluation,
    ConditionalAccessPolicy,
    Decision,
    PolicyMode,
)
from zero_trust_engine.audit.log import AuditLog, Severity
from zero_trust_engine.errors import DuplicateError, NotFoundError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ConditionalAccessEngine:
    """Holds the policy table and produces one decision per evaluation.

    Parameters
    ----------
    default_deny_all:
        Decision when no enforcing policy matches: Deny when True, Allow
        when False.
    audit_log:
        Receives one record per policy-table change.
    clock:
        Source of the current UTC time for audit timestamps.
    """

    def __init__(
        self,
        default_deny_all: bool = False,
        audit_log: AuditLog | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._policies: dict[str, ConditionalAccessPolicy] = {}
        self._ordered: tuple[ConditionalAccessPolicy, ...] = ()
        self._default_deny_all = default_deny_all
        self._lock = threading.RLock()
        self._audit = audit_log
        self._clock = clock

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def default_deny_all(self) -> bool:
        return self._default_deny_all

    def set_default_deny_all(self, value: bool, actor: str = "system") -> None:
        with self._lock:
            previous = self._default_deny_all
            self._default_deny_all = value
        self._record(
            "default_deny_all_set",
            "*",
            actor,
            Severity.WARNING if previous and not value else Severity.INFO,
            previous=previous,
            value=value,
        )

    # ------------------------------------------------------------------
    # Policy table
    # ------------------------------------------------------------------

    def add(self, policy: ConditionalAccessPolicy, actor: str = "system") -> ConditionalAccessPolicy:
        """Add a new policy.

        Raises
        ------
        DuplicateError
            If a policy with the same name exists.
        """
        with self._lock:
            if policy.name in self._policies:
                raise DuplicateError(
                    f"Conditional access policy {policy.name!r} already exists. Use replace()."
                )
            self._policies[policy.name] = policy
            self._reorder()
        self._record("policy_added", policy.name, actor, policy=policy.to_dict())
        logger.info("Added conditional access policy %s (priority %d)", policy.name, policy.priority)
        return policy

    def replace(self, policy: ConditionalAccessPolicy, actor: str = "system") -> ConditionalAccessPolicy:
        """Replace an existing policy of the same name.

        Raises
        ------
        NotFoundError
            If no policy with that name exists.
        """
        with self._lock:
            if policy.name not in self._policies:
                raise NotFoundError("Conditional access policy", policy.name)
            previous = self._policies[policy.name]
            self._policies[policy.name] = policy
            self._reorder()
        self._record(
            "policy_replaced",
            policy.name,
            actor,
            previous=previous.to_dict(),
            policy=policy.to_dict(),
        )
        return policy

    def set(self, policy: ConditionalAccessPolicy, actor: str = "system") -> ConditionalAccessPolicy:
        """Add the policy, or replace it if the name is taken."""
        with self._lock:
            exists = policy.name in self._policies
            if exists:
                return self.replace(policy, actor=actor)
            return self.add(policy, actor=actor)

    def remove(self, name: str, actor: str = "system") -> ConditionalAccessPolicy:
        with self._lock:
            policy = self._policies.pop(name, None)
            if policy is None:
                raise NotFoundError("Conditional access policy", name)
            self._reorder()
        self._record("policy_removed", name, actor, Severity.WARNING)
        return policy

    def get(self, name: str) -> ConditionalAccessPolicy:
        with self._lock:
            policy = self._policies.get(name)
        if policy is None:
            raise NotFoundError("Conditional access policy", name)
        return policy

    def list(self) -> list[ConditionalAccessPolicy]:
        """Return all policies in evaluation order."""
        with self._lock:
            return list(self._ordered)

    def restore(self, policy: ConditionalAccessPolicy) -> None:
        """Insert a persisted policy without writing an audit record."""
        with self._lock:
            self._policies[policy.name] = policy
            self._reorder()

    def __len__(self) -> int:
        with self._lock:
            return len(self._policies)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._policies

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, context: AccessContext) -> AccessEvaluation:
        """Return the single decision for *context*."""
        with self._lock:
            ordered = self._ordered
            default_deny = self._default_deny_all

        now = context.timestamp
        attributes = context.attributes()
        evaluated: list[str] = []
        report_only: list[tuple[str, Decision]] = []

        for policy in ordered:
            if policy.mode is PolicyMode.DISABLED:
                continue
            if not policy.in_window(now) or not policy.applies_to(context):
                continue
            evaluated.append(policy.name)
            if not policy.conditions_match(attributes):
                continue
            if policy.mode is PolicyMode.REPORT:
                report_only.append((policy.name, policy.decision))
                logger.info(
                    "Report-only policy %s would decide %s for %s",
                    policy.name,
                    policy.decision.value,
                    context.username or context.identity_id,
                )
                continue
            return AccessEvaluation(
                decision=policy.decision,
                policy=policy.name,
                obligations=policy.obligations,
                report_only=report_only,
                evaluated=evaluated,
                reason=f"matched policy {policy.name} (priority {policy.priority})",
                timestamp=now,
            )

        decision = Decision.DENY if default_deny else Decision.ALLOW
        return AccessEvaluation(
            decision=decision,
            report_only=report_only,
            evaluated=evaluated,
            reason="no enforcing policy matched; default "
            + ("deny-all" if default_deny else "allow"),
            timestamp=now,
        )

    def simulate(self, contexts: Iterable[AccessContext]) -> list[AccessEvaluation]:
        """Evaluate several contexts against the current table, in order."""
        return [self.evaluate(context) for context in contexts]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reorder(self) -> None:
        self._ordered = tuple(sorted(self._policies.values(), key=lambda p: p.sort_key()))

    def _record(
        self,
        action: str,
        subject: str,
        actor: str,
        severity: Severity = Severity.INFO,
        **details: object,
    ) -> None:
        if self._audit is not None:
            self._audit.record(
                action,
                subject=subject,
                actor=actor,
                severity=severity,
                timestamp=self._clock(),
                **details,
            )
