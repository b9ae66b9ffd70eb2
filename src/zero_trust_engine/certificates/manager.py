"""CertificateLifecycleManager — issue, validate, revoke and renew certificates.

Lifecycle::

    issue --> Issued --install--> Active --revoke--> Revoked (terminal)

A certificate is only recorded once it has been installed in the
certificate store; a failed install leaves no record behind. Revocation is
irreversible and idempotent for the same reason. Mutations of one
certificate are serialised by a per-thumbprint lock; validation reads a
snapshot and takes no per-certificate lock.
"""
from __future__ import annotations

import contextlib
import copy
import datetime
import logging
import threading
from typing import Callable, Iterator

from cryptography.hazmat.primitives import serialization

from zero_trust_engine.audit.log import AuditLog, Severity
from zero_trust_engine.certificates.ca import (
    CertificateAuthority,
    generate_key,
    key_pem,
    thumbprint as compute_thumbprint,
)
from zero_trust_engine.certificates.models import (
    FORENSIC_HASHES,
    FORENSIC_MIN_KEY_SIZE,
    Certificate,
    CertificateRequest,
    CertificateStatus,
    CertificateType,
    KeyUsage,
    RevocationReason,
    ValidationDepth,
    ValidationReport,
    parse_subject,
)
from zero_trust_engine.certificates.revocation import RevocationEntry, RevocationList
from zero_trust_engine.certificates.store import CertificateStore, InMemoryCertificateStore
from zero_trust_engine.certificates.validator import ChainValidator
from zero_trust_engine.errors import (
    ConflictError,
    ForensicConstraintError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

MAX_CHAIN_LENGTH = 10


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class CertificateLifecycleManager:
    """Owns every certificate the engine issued or trusts.

    Parameters
    ----------
    store:
        Where issued certificates are installed. Defaults to an in-memory store.
    revocation_list:
        The CRL. Defaults to an in-memory list.
    root_ca:
        Root authority to issue from. When omitted an internal self-signed
        root is generated on first use.
    audit_log:
        Receives one record per issuance, revocation and renewal.
    forensic_required:
        Upgrade every request to the forensic profile.
    clock:
        Source of the current UTC time.
    """

    def __init__(
        self,
        store: CertificateStore | None = None,
        revocation_list: RevocationList | None = None,
        root_ca: CertificateAuthority | None = None,
        audit_log: AuditLog | None = None,
        forensic_required: bool = False,
        ca_common_name: str = "Zero Trust Root CA",
        ca_organization: str = "Zero Trust Engine",
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._store = store if store is not None else InMemoryCertificateStore()
        self._crl = revocation_list if revocation_list is not None else RevocationList()
        self._audit = audit_log
        self._clock = clock
        self._forensic_required = forensic_required
        self._ca_common_name = ca_common_name
        self._ca_organization = ca_organization
        self._validator = ChainValidator(self._crl, clock=clock)

        self._records: dict[str, Certificate] = {}
        self._authorities: dict[str, CertificateAuthority] = {}
        self._cert_locks: dict[str, threading.RLock] = {}
        self._lock = threading.RLock()
        self._root_thumbprint: str | None = None

        if root_ca is not None:
            self.register_authority(root_ca)

    # ------------------------------------------------------------------
    # Authorities
    # ------------------------------------------------------------------

    @property
    def revocation_list(self) -> RevocationList:
        return self._crl

    @property
    def forensic_required(self) -> bool:
        return self._forensic_required

    @property
    def root_thumbprint(self) -> str:
        """Thumbprint of the default root, generating it on first use."""
        with self._lock:
            if self._root_thumbprint is None:
                root = CertificateAuthority.generate_ca(
                    common_name=self._ca_common_name,
                    organization=self._ca_organization,
                    now=self._clock(),
                )
                self.register_authority(root)
                logger.info("Generated internal root CA %s", root.thumbprint)
            return self._root_thumbprint  # type: ignore[return-value]

    def register_authority(self, authority: CertificateAuthority) -> Certificate:
        """Trust *authority* as a root and make it the default issuer if none is set.

        The authority's certificate is recorded as an Active ``CA``
        certificate but is not installed in the store.
        """
        cert = authority.ca_cert
        record = Certificate(
            thumbprint=authority.thumbprint,
            subject=cert.subject.rfc4514_string(),
            cert_type=CertificateType.CA,
            key_usage=frozenset({KeyUsage.KEY_CERT_SIGN, KeyUsage.CRL_SIGN, KeyUsage.DIGITAL_SIGNATURE}),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            serial_number=cert.serial_number,
            cert_pem=authority.ca_cert_pem(),
            key_size=authority.key_size,
            hash_algorithm=authority.hash_name,
            status=CertificateStatus.ACTIVE,
        )
        with self._lock:
            self._records[record.thumbprint] = record
            self._authorities[record.thumbprint] = authority
            self._cert_locks.setdefault(record.thumbprint, threading.RLock())
            if self._root_thumbprint is None:
                self._root_thumbprint = record.thumbprint
        return copy.deepcopy(record)

    @property
    def default_root(self) -> str | None:
        """Thumbprint of the default root without generating one."""
        with self._lock:
            return self._root_thumbprint

    def authority(self, thumbprint: str) -> CertificateAuthority:
        with self._lock:
            authority = self._authorities.get(thumbprint)
        if authority is None:
            raise NotFoundError("Certificate authority", thumbprint)
        return authority

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(self, request: CertificateRequest, actor: str = "system") -> Certificate:
        """Issue, install and record a certificate.

        Parameters
        ----------
        request:
            Validated issuance parameters. Upgraded to the forensic profile
            when ``forensic_grade`` is set or the manager requires it.

        Returns
        -------
        Certificate
            A copy of the new ``Active`` record.

        Raises
        ------
        NotFoundError
            If the requested issuer is unknown.
        ConflictError
            If the issuer is revoked or expired.
        ForensicConstraintError
            If a forensic-grade certificate would chain to a weaker issuer.
        StorageError
            If the store could not install the certificate. Nothing is recorded.
        """
        if request.forensic_grade or self._forensic_required:
            request = request.with_forensic_profile()

        subject = parse_subject(request.subject)
        private_key = generate_key(request.key_size)
        now = self._clock().replace(microsecond=0)
        not_after = now + datetime.timedelta(days=request.validity_days)

        authority: CertificateAuthority | None = None
        if request.cert_type is CertificateType.CA:
            issuer_thumbprint: str | None = None
            authority = CertificateAuthority.self_signed(request, subject, private_key, now, not_after)
            x509_cert = authority.ca_cert
        else:
            issuer_thumbprint = request.issuer_thumbprint or self.root_thumbprint
            issuer = self._usable_issuer(issuer_thumbprint, now)
            if request.forensic_grade:
                self._check_forensic_issuer(issuer_thumbprint, issuer)
            x509_cert = issuer.sign(request, subject, private_key.public_key(), now, not_after)
            if request.cert_type.is_authority:
                authority = CertificateAuthority.wrap(x509_cert, private_key)

        record = Certificate(
            thumbprint=compute_thumbprint(x509_cert),
            subject=request.subject,
            cert_type=request.cert_type,
            key_usage=request.key_usage,
            not_before=x509_cert.not_valid_before_utc,
            not_after=x509_cert.not_valid_after_utc,
            serial_number=x509_cert.serial_number,
            cert_pem=x509_cert.public_bytes(serialization.Encoding.PEM),
            key_pem=key_pem(private_key),
            key_size=request.key_size,
            hash_algorithm=request.hash_algorithm,
            issuer_thumbprint=issuer_thumbprint,
            forensic_grade=request.forensic_grade,
            owner_id=request.owner_id,
            subject_alt_names=list(request.subject_alt_names),
        )

        self._store.install(record)
        record.status = CertificateStatus.ACTIVE

        with self._lock:
            self._records[record.thumbprint] = record
            self._cert_locks[record.thumbprint] = threading.RLock()
            if authority is not None:
                self._authorities[record.thumbprint] = authority
            if request.cert_type is CertificateType.CA and self._root_thumbprint is None:
                self._root_thumbprint = record.thumbprint
            issued = copy.deepcopy(record)

        self._record(
            "certificate_issued",
            issued,
            actor,
            subject=issued.subject,
            cert_type=issued.cert_type.value,
            serial_number=str(issued.serial_number),
            issuer=issued.issuer_thumbprint,
            forensic_grade=issued.forensic_grade,
            not_after=issued.not_after.isoformat(),
        )
        logger.info("Issued %s certificate %s for %s", issued.cert_type.value, issued.thumbprint, issued.subject)
        return issued

    def _usable_issuer(self, issuer_thumbprint: str, now: datetime.datetime) -> CertificateAuthority:
        with self._lock:
            authority = self._authorities.get(issuer_thumbprint)
            record = self._records.get(issuer_thumbprint)
        if record is not None and record.is_revoked:
            raise ConflictError(f"Issuer {issuer_thumbprint} is revoked and cannot sign.")
        if authority is None or record is None:
            raise NotFoundError("Certificate authority", issuer_thumbprint)
        if record.is_expired(now):
            raise ConflictError(f"Issuer {issuer_thumbprint} expired at {record.not_after.isoformat()}.")
        return authority

    @staticmethod
    def _check_forensic_issuer(issuer_thumbprint: str, issuer: CertificateAuthority) -> None:
        if issuer.key_size < FORENSIC_MIN_KEY_SIZE:
            raise ForensicConstraintError(
                f"Issuer {issuer_thumbprint} uses a {issuer.key_size}-bit key; forensic-grade "
                f"chains require at least {FORENSIC_MIN_KEY_SIZE} bits."
            )
        if issuer.hash_name not in FORENSIC_HASHES:
            raise ForensicConstraintError(
                f"Issuer {issuer_thumbprint} is signed with {issuer.hash_name}; forensic-grade "
                f"chains require {' or '.join(FORENSIC_HASHES)}."
            )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_chain(
        self,
        thumbprint: str,
        depth: "ValidationDepth | str" = ValidationDepth.BASIC,
    ) -> ValidationReport:
        """Build the trust path for *thumbprint* and validate it.

        Raises
        ------
        NotFoundError
            If the certificate is unknown.
        """
        parsed_depth = ValidationDepth.parse(depth)
        with self._lock:
            leaf = self._records.get(thumbprint)
            if leaf is None:
                raise NotFoundError("Certificate", thumbprint)
            chain = [copy.deepcopy(leaf)]
            complete = True
            current = leaf
            while not current.is_self_signed:
                parent = self._records.get(current.issuer_thumbprint or "")
                if parent is None or len(chain) >= MAX_CHAIN_LENGTH:
                    complete = False
                    break
                chain.append(copy.deepcopy(parent))
                current = parent
        return self._validator.validate(chain, parsed_depth, complete=complete)

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(
        self,
        thumbprint: str,
        reason: "RevocationReason | str" = RevocationReason.UNSPECIFIED,
        effective_date: datetime.datetime | None = None,
        actor: str = "system",
    ) -> Certificate:
        """Revoke a certificate permanently.

        Revoking an already revoked certificate with the same reason is a
        no-op that returns the existing record.

        Raises
        ------
        NotFoundError
            If the certificate is unknown.
        ConflictError
            If it is already revoked with a different reason.
        """
        parsed_reason = RevocationReason.parse(reason)
        with self._entity_lock(thumbprint):
            with self._lock:
                record = self._records[thumbprint]
            if record.is_revoked:
                if record.revocation_reason is parsed_reason:
                    logger.debug("Certificate %s already revoked (%s)", thumbprint, parsed_reason.value)
                    return copy.deepcopy(record)
                raise ConflictError(
                    f"Certificate {thumbprint} is already revoked as "
                    f"{record.revocation_reason.value if record.revocation_reason else 'Unspecified'}; "
                    f"cannot revoke again as {parsed_reason.value}."
                )
            now = self._clock()
            self._crl.add(
                RevocationEntry(
                    serial_number=record.serial_number,
                    reason=parsed_reason,
                    effective_date=effective_date or now,
                    revoked_at=now,
                    thumbprint=thumbprint,
                    issuer_thumbprint=record.issuer_thumbprint if not record.is_self_signed else thumbprint,
                )
            )
            with self._lock:
                record.status = CertificateStatus.REVOKED
                record.revocation_reason = parsed_reason
                record.revoked_at = now
                self._authorities.pop(thumbprint, None)
                if self._root_thumbprint == thumbprint:
                    self._root_thumbprint = None
                revoked = copy.deepcopy(record)

        severity = Severity.HIGH if parsed_reason.is_compromise else Severity.WARNING
        self._record(
            "certificate_revoked",
            revoked,
            actor,
            severity,
            reason=parsed_reason.value,
            serial_number=str(revoked.serial_number),
            effective_date=(effective_date or now).isoformat(),
        )
        logger.warning("Revoked certificate %s (%s)", thumbprint, parsed_reason.value)
        return revoked

    def renew(
        self,
        thumbprint: str,
        validity_days: int | None = None,
        actor: str = "system",
    ) -> Certificate:
        """Issue a replacement for *thumbprint* and revoke the old one as Superseded.

        Raises
        ------
        ConflictError
            If the certificate is already revoked.
        """
        with self._entity_lock(thumbprint):
            with self._lock:
                old = copy.deepcopy(self._records[thumbprint])
            if old.is_revoked:
                raise ConflictError(f"Certificate {thumbprint} is revoked and cannot be renewed.")
            request = CertificateRequest(
                subject=old.subject,
                cert_type=old.cert_type,
                key_usage=old.key_usage,
                validity_days=validity_days or max(1, old.validity_days),
                key_size=old.key_size,
                hash_algorithm=old.hash_algorithm,
                forensic_grade=old.forensic_grade,
                issuer_thumbprint=None if old.is_self_signed else old.issuer_thumbprint,
                subject_alt_names=list(old.subject_alt_names),
                owner_id=old.owner_id,
            )
            replacement = self.issue(request, actor=actor)
            self.revoke(thumbprint, RevocationReason.SUPERSEDED, actor=actor)
        self._record(
            "certificate_renewed",
            replacement,
            actor,
            previous=thumbprint,
        )
        return replacement

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def get(self, thumbprint: str) -> Certificate:
        with self._lock:
            record = self._records.get(thumbprint)
            if record is None:
                raise NotFoundError("Certificate", thumbprint)
            return copy.deepcopy(record)

    def list(
        self,
        status: CertificateStatus | None = None,
        cert_type: CertificateType | None = None,
        owner_id: str | None = None,
    ) -> list[Certificate]:
        """Return matching records sorted by notAfter, then thumbprint."""
        with self._lock:
            records = [copy.deepcopy(r) for r in self._records.values()]
        if status is not None:
            records = [r for r in records if r.status is status]
        if cert_type is not None:
            records = [r for r in records if r.cert_type is cert_type]
        if owner_id is not None:
            records = [r for r in records if r.owner_id == owner_id]
        return sorted(records, key=lambda r: (r.not_after, r.thumbprint))

    def expiring(self, within_days: int = 30, now: datetime.datetime | None = None) -> list[Certificate]:
        """Active certificates whose notAfter falls within *within_days*."""
        reference = now or self._clock()
        horizon = reference + datetime.timedelta(days=within_days)
        return [
            r for r in self.list(status=CertificateStatus.ACTIVE) if r.not_after <= horizon
        ]

    def find_by_serial(self, serial_number: int) -> Certificate:
        with self._lock:
            for record in self._records.values():
                if record.serial_number == serial_number:
                    return copy.deepcopy(record)
        raise NotFoundError("Certificate serial", str(serial_number))

    def crl_pem(self, issuer_thumbprint: str | None = None) -> bytes:
        """Export the signed CRL for *issuer_thumbprint* (default: the root)."""
        authority = self.authority(issuer_thumbprint or self.root_thumbprint)
        return self._crl.export_crl_pem(authority)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------
    # Persistence support
    # ------------------------------------------------------------------

    def authorities(self) -> dict[str, CertificateAuthority]:
        with self._lock:
            return dict(self._authorities)

    def restore(self, record: Certificate, is_root: bool = False) -> None:
        """Insert a persisted record; authorities are rebuilt from its key."""
        with self._lock:
            self._records[record.thumbprint] = copy.deepcopy(record)
            self._cert_locks.setdefault(record.thumbprint, threading.RLock())
            if record.is_authority and record.key_pem and not record.is_revoked:
                self._authorities[record.thumbprint] = CertificateAuthority.from_pem(
                    record.cert_pem, record.key_pem
                )
            if is_root:
                self._root_thumbprint = record.thumbprint

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _entity_lock(self, thumbprint: str) -> Iterator[None]:
        with self._lock:
            lock = self._cert_locks.get(thumbprint)
        if lock is None:
            raise NotFoundError("Certificate", thumbprint)
        with lock:
            yield

    def _record(
        self,
        action: str,
        cert: Certificate,
        actor: str,
        severity: Severity = Severity.INFO,
        **details: object,
    ) -> None:
        if self._audit is not None:
            self._audit.record(
                action,
                subject=cert.thumbprint,
                actor=actor,
                severity=severity,
                timestamp=self._clock(),
                **details,
            )

