"""IdentityStore — durable record of principals and their trust state.

Each identity has its own re-entrant lock. Mutations run a caller-supplied
mutator against a working copy while holding that lock and only swap the
copy in when the mutator returns, so a failing mutator leaves the stored
identity untouched. Readers get deep-copied snapshots.
"""
from __future__ import annotations

import contextlib
import copy
import datetime
import threading
import uuid
from typing import TYPE_CHECKING, Callable, Iterator, TypeVar

from zero_trust_engine.audit.log import AuditLog, Severity
from zero_trust_engine.errors import DuplicateUsernameError, NotFoundError, ValidationError
from zero_trust_engine.identity.models import (
    AccessControls,
    AuditEntry,
    AuthMethod,
    Identity,
    IdentityStatus,
    default_access_controls,
    default_auth_methods,
)
from zero_trust_engine.identity.trust import TrustEvidence, compute_trust_score
from zero_trust_engine.permissions.model import Role

if TYPE_CHECKING:
    from zero_trust_engine.jit.models import JITGrant

R = TypeVar("R")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class IdentityStore:
    """Thread-safe store of :class:`Identity` records.

    Parameters
    ----------
    audit_log:
        Engine-wide audit log. Each mutating call writes one record to it
        unless the caller opts out because it records the operation itself.
    clock:
        Source of the current UTC time. Injected for tests.

    Example
    -------
    ::

        store = IdentityStore()
        alice = store.create("alice", role="DFIRAnalyst")
        store.update(alice.identity_id, lambda i: i.metadata.update(team="blue"),
                     actor="admin", action="metadata_updated")
    """

    def __init__(
        self,
        audit_log: AuditLog | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._records: dict[str, Identity] = {}
        self._usernames: dict[str, str] = {}
        self._entity_locks: dict[str, threading.RLock] = {}
        self._lock = threading.Lock()
        self._audit = audit_log
        self._clock = clock

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def entity_lock(self, identity_id: str) -> Iterator[None]:
        """Hold the per-identity lock. Re-entrant within one thread."""
        with self._lock:
            lock = self._entity_locks.get(identity_id)
        if lock is None:
            raise NotFoundError("Identity", identity_id)
        with lock:
            yield

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(
        self,
        username: str,
        role: "Role | str",
        display_name: str = "",
        auth_methods: list[AuthMethod] | None = None,
        access_controls: AccessControls | None = None,
        metadata: dict[str, object] | None = None,
        actor: str = "system",
    ) -> Identity:
        """Create a new identity.

        Parameters
        ----------
        username:
            Unique login name. Matching is exact and case-sensitive.
        role:
            Role name or :class:`Role`.
        auth_methods:
            Ordered authentication methods. Defaults per role.
        access_controls:
            Session limits and boundaries. Defaults per role.

        Raises
        ------
        DuplicateUsernameError
            If *username* is already registered.
        ValidationError
            For an empty username or unknown role.
        """
        parsed_role = Role.parse(role)
        now = self._clock()
        identity = Identity(
            identity_id=str(uuid.uuid4()),
            username=username,
            role=parsed_role,
            display_name=display_name or username,
            auth_methods=list(auth_methods) if auth_methods is not None else default_auth_methods(parsed_role),
            access_controls=access_controls or default_access_controls(parsed_role),
            metadata=dict(metadata or {}),
            created_at=now,
            last_modified=now,
        )
        identity.audit_trail.append(
            AuditEntry(
                timestamp=now,
                actor=actor,
                action="identity_created",
                details={"username": username, "role": parsed_role.value},
            )
        )
        with self._lock:
            if username in self._usernames:
                raise DuplicateUsernameError(username)
            self._records[identity.identity_id] = identity
            self._usernames[username] = identity.identity_id
            self._entity_locks[identity.identity_id] = threading.RLock()

        if self._audit is not None:
            self._audit.record(
                "identity_created",
                subject=identity.identity_id,
                actor=actor,
                timestamp=self._clock(),
                username=username,
                role=parsed_role.value,
            )
        return identity.snapshot()

    def get(self, identity_id: str) -> Identity:
        """Return a snapshot of the identity.

        Raises
        ------
        NotFoundError
            If the identity does not exist.
        """
        with self.entity_lock(identity_id):
            return self._records[identity_id].snapshot()

    def get_by_username(self, username: str) -> Identity:
        with self._lock:
            identity_id = self._usernames.get(username)
        if identity_id is None:
            raise NotFoundError("Identity", username)
        return self.get(identity_id)

    def update(
        self,
        identity_id: str,
        mutator: Callable[[Identity], R],
        actor: str = "system",
        action: str = "identity_updated",
        details: dict[str, object] | None = None,
        severity: Severity = Severity.INFO,
        record: bool = True,
    ) -> Identity:
        """Atomically apply *mutator* to the identity.

        The mutator receives a working copy. If it raises, nothing is
        stored. The identity's own trail always receives an entry; the
        engine-wide audit log receives one unless *record* is False.

        Raises
        ------
        NotFoundError
            If the identity does not exist.
        ValidationError
            If the mutator touched immutable fields or the trust score.
        """
        with self.entity_lock(identity_id):
            current = self._records[identity_id]
            working = copy.deepcopy(current)
            mutator(working)
            self._check_immutable(current, working)
            if working.trust_score != current.trust_score:
                raise ValidationError(
                    "trust_score can only change through recompute_trust()."
                )
            self._commit(current, working, actor, action, details or {})
            snapshot = working.snapshot()

        if record and self._audit is not None:
            self._audit.record(
                action,
                subject=identity_id,
                actor=actor,
                severity=severity,
                timestamp=self._clock(),
                **(details or {}),
            )
        return snapshot

    def recompute_trust(
        self,
        identity_id: str,
        evidence: TrustEvidence,
        actor: str = "system",
    ) -> Identity:
        """Recompute the trust score from verification *evidence*.

        This is the only operation that changes ``trust_score``.
        """
        with self.entity_lock(identity_id):
            current = self._records[identity_id]
            working = copy.deepcopy(current)
            old_score = working.trust_score
            working.trust_score = compute_trust_score(working, evidence)
            now = evidence.verified_at or self._clock()
            for method in working.auth_methods:
                if method.kind in evidence.verified_methods:
                    method.configured = True
                    method.last_used = now
            details: dict[str, object] = {
                "old_score": old_score,
                "new_score": working.trust_score,
                "verified_methods": sorted(m.value for m in evidence.verified_methods),
            }
            self._commit(current, working, actor, "trust_recomputed", details)
            snapshot = working.snapshot()

        if self._audit is not None:
            self._audit.record(
                "trust_recomputed", subject=identity_id, actor=actor, timestamp=self._clock(), **details
            )
        return snapshot

    def set_status(
        self,
        identity_id: str,
        status: IdentityStatus,
        actor: str = "system",
        reason: str = "",
    ) -> Identity:
        """Move the identity to *status* (suspend, reactivate, expire)."""

        def apply(identity: Identity) -> None:
            identity.status = status

        severity = Severity.INFO if status is IdentityStatus.ACTIVE else Severity.WARNING
        return self.update(
            identity_id,
            apply,
            actor=actor,
            action=f"identity_{status.value.lower()}",
            details={"status": status.value, "reason": reason},
            severity=severity,
        )

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def list(
        self,
        role: "Role | str | None" = None,
        status: IdentityStatus | None = None,
        query: str = "",
    ) -> list[Identity]:
        """Return snapshots matching every given filter, sorted by username."""
        parsed_role = Role.parse(role) if role is not None else None
        with self._lock:
            ids = list(self._records)

        results: list[Identity] = []
        for identity_id in ids:
            identity = self.get(identity_id)
            if parsed_role is not None and identity.role is not parsed_role:
                continue
            if status is not None and identity.status is not status:
                continue
            if query and query.lower() not in identity.username.lower():
                continue
            results.append(identity)
        return sorted(results, key=lambda i: i.username)

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, identity_id: object) -> bool:
        with self._lock:
            return identity_id in self._records

    # ------------------------------------------------------------------
    # Persistence support
    # ------------------------------------------------------------------

    def restore(self, identity: Identity) -> None:
        """Insert a previously persisted identity verbatim (no audit record)."""
        with self._lock:
            if identity.username in self._usernames:
                raise DuplicateUsernameError(identity.username)
            self._records[identity.identity_id] = copy.deepcopy(identity)
            self._usernames[identity.username] = identity.identity_id
            self._entity_locks[identity.identity_id] = threading.RLock()

    def attach_restored_grant(self, identity_id: str, grant: JITGrant) -> None:
        """Re-link a restored JIT grant without touching the trail."""
        with self.entity_lock(identity_id):
            self._records[identity_id].active_jit = copy.deepcopy(grant)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _check_immutable(current: Identity, working: Identity) -> None:
        for attr in ("identity_id", "username", "created_at"):
            if getattr(current, attr) != getattr(working, attr):
                raise ValidationError(f"{attr} is immutable.")
        if working.audit_trail != current.audit_trail:
            raise ValidationError("audit_trail is append-only and managed by the store.")

    def _commit(
        self,
        current: Identity,
        working: Identity,
        actor: str,
        action: str,
        details: dict[str, object],
    ) -> None:
        now = self._clock()
        working.last_modified = now
        working.audit_trail = list(current.audit_trail)
        working.audit_trail.append(
            AuditEntry(timestamp=now, actor=actor, action=action, details=dict(details))
        )
        self._records[current.identity_id] = working
