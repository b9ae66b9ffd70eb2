"""Certificate records, issuance requests and validation vocabulary.

A :class:`Certificate` is the engine's record of an X.509 certificate it
issued or trusts. The record validates its own invariants at construction:
forensic-grade certificates always carry at least a 3072-bit key and are
valid for at most 365 days.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum

from cryptography import x509
from cryptography.x509.oid import NameOID

from zero_trust_engine.errors import ForensicConstraintError, ValidationError

FORENSIC_MIN_KEY_SIZE = 3072
FORENSIC_MAX_VALIDITY_DAYS = 365
FORENSIC_HASHES = ("SHA384", "SHA512")
SUPPORTED_HASHES = ("SHA256", "SHA384", "SHA512")
MIN_KEY_SIZE = 2048


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _parse_ts(value: object) -> datetime.datetime | None:
    if value in (None, ""):
        return None
    return datetime.datetime.fromisoformat(str(value))


class CertificateType(str, Enum):
    CLIENT = "Client"
    SERVER = "Server"
    SERVICE = "Service"
    CA = "CA"
    INTERMEDIATE = "Intermediate"
    CODE_SIGNING = "CodeSigning"

    @property
    def is_authority(self) -> bool:
        return self in (CertificateType.CA, CertificateType.INTERMEDIATE)

    @classmethod
    def parse(cls, value: "str | CertificateType") -> "CertificateType":
        if isinstance(value, CertificateType):
            return value
        for member in cls:
            if value.strip().lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValidationError(f"Unknown certificate type {value!r}.")


class KeyUsage(str, Enum):
    DIGITAL_SIGNATURE = "DigitalSignature"
    NON_REPUDIATION = "NonRepudiation"
    KEY_ENCIPHERMENT = "KeyEncipherment"
    DATA_ENCIPHERMENT = "DataEncipherment"
    KEY_AGREEMENT = "KeyAgreement"
    KEY_CERT_SIGN = "KeyCertSign"
    CRL_SIGN = "CRLSign"

    @classmethod
    def parse(cls, value: "str | KeyUsage") -> "KeyUsage":
        if isinstance(value, KeyUsage):
            return value
        for member in cls:
            if value.strip().lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValidationError(f"Unknown key usage {value!r}.")


# Key usages each certificate type must declare.
REQUIRED_KEY_USAGE: dict[CertificateType, frozenset[KeyUsage]] = {
    CertificateType.CLIENT: frozenset({KeyUsage.DIGITAL_SIGNATURE}),
    CertificateType.SERVER: frozenset({KeyUsage.KEY_ENCIPHERMENT}),
    CertificateType.SERVICE: frozenset({KeyUsage.DIGITAL_SIGNATURE}),
    CertificateType.CA: frozenset({KeyUsage.KEY_CERT_SIGN}),
    CertificateType.INTERMEDIATE: frozenset({KeyUsage.KEY_CERT_SIGN}),
    CertificateType.CODE_SIGNING: frozenset({KeyUsage.DIGITAL_SIGNATURE}),
}

DEFAULT_KEY_USAGE: dict[CertificateType, frozenset[KeyUsage]] = {
    CertificateType.CLIENT: frozenset({KeyUsage.DIGITAL_SIGNATURE, KeyUsage.KEY_ENCIPHERMENT}),
    CertificateType.SERVER: frozenset({KeyUsage.DIGITAL_SIGNATURE, KeyUsage.KEY_ENCIPHERMENT}),
    CertificateType.SERVICE: frozenset({KeyUsage.DIGITAL_SIGNATURE, KeyUsage.KEY_ENCIPHERMENT}),
    CertificateType.CA: frozenset({KeyUsage.KEY_CERT_SIGN, KeyUsage.CRL_SIGN, KeyUsage.DIGITAL_SIGNATURE}),
    CertificateType.INTERMEDIATE: frozenset({KeyUsage.KEY_CERT_SIGN, KeyUsage.CRL_SIGN, KeyUsage.DIGITAL_SIGNATURE}),
    CertificateType.CODE_SIGNING: frozenset({KeyUsage.DIGITAL_SIGNATURE, KeyUsage.NON_REPUDIATION}),
}


class CertificateStatus(str, Enum):
    ISSUED = "Issued"
    ACTIVE = "Active"
    REVOKED = "Revoked"


class RevocationReason(str, Enum):
    """Revocation reasons, mirroring the X.509 CRL reason codes."""

    UNSPECIFIED = "Unspecified"
    KEY_COMPROMISE = "KeyCompromise"
    CA_COMPROMISE = "CACompromise"
    AFFILIATION_CHANGED = "AffiliationChanged"
    SUPERSEDED = "Superseded"
    CESSATION_OF_OPERATION = "CessationOfOperation"
    CERTIFICATE_HOLD = "CertificateHold"
    PRIVILEGE_WITHDRAWN = "PrivilegeWithdrawn"

    @property
    def x509_flag(self) -> x509.ReasonFlags:
        return _REASON_FLAGS[self]

    @property
    def is_compromise(self) -> bool:
        return self in (RevocationReason.KEY_COMPROMISE, RevocationReason.CA_COMPROMISE)

    @classmethod
    def parse(cls, value: "str | RevocationReason") -> "RevocationReason":
        if isinstance(value, RevocationReason):
            return value
        for member in cls:
            if value.strip().lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValidationError(f"Unknown revocation reason {value!r}.")


_REASON_FLAGS = {
    RevocationReason.UNSPECIFIED: x509.ReasonFlags.unspecified,
    RevocationReason.KEY_COMPROMISE: x509.ReasonFlags.key_compromise,
    RevocationReason.CA_COMPROMISE: x509.ReasonFlags.ca_compromise,
    RevocationReason.AFFILIATION_CHANGED: x509.ReasonFlags.affiliation_changed,
    RevocationReason.SUPERSEDED: x509.ReasonFlags.superseded,
    RevocationReason.CESSATION_OF_OPERATION: x509.ReasonFlags.cessation_of_operation,
    RevocationReason.CERTIFICATE_HOLD: x509.ReasonFlags.certificate_hold,
    RevocationReason.PRIVILEGE_WITHDRAWN: x509.ReasonFlags.privilege_withdrawn,
}


class ValidationDepth(str, Enum):
    BASIC = "Basic"
    EXTENDED = "Extended"
    FORENSIC = "Forensic"

    @classmethod
    def parse(cls, value: "str | ValidationDepth") -> "ValidationDepth":
        if isinstance(value, ValidationDepth):
            return value
        for member in cls:
            if value.strip().lower() == member.value.lower():
                return member
        raise ValidationError(f"Unknown validation depth {value!r}.")


class CheckOutcome(str, Enum):
    PASSED = "Passed"
    WARNING = "Warning"
    FAILED = "Failed"


class ValidationStatus(str, Enum):
    VALID = "Valid"
    WARNING = "Warning"
    INVALID = "Invalid"


# ------------------------------------------------------------------
# Subject parsing
# ------------------------------------------------------------------

_SUBJECT_ATTRIBUTES = {
    "CN": NameOID.COMMON_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "E": NameOID.EMAIL_ADDRESS,
}


def parse_subject(subject: str) -> x509.Name:
    """Parse ``"CN=host, O=Org, OU=Unit"`` into an :class:`x509.Name`.

    Raises
    ------
    ValidationError
        If the subject does not start with ``CN=``, has an empty common
        name, or uses an unsupported attribute.
    """
    text = subject.strip()
    if not text.upper().startswith("CN="):
        raise ValidationError(f"Subject {subject!r} must start with 'CN='.")
    attributes: list[x509.NameAttribute] = []
    for part in text.split(","):
        key, sep, value = part.strip().partition("=")
        key = key.strip().upper()
        value = value.strip()
        if not sep or not value:
            raise ValidationError(f"Malformed subject component {part.strip()!r}.")
        oid = _SUBJECT_ATTRIBUTES.get(key)
        if oid is None:
            raise ValidationError(f"Unsupported subject attribute {key!r}.")
        try:
            attributes.append(x509.NameAttribute(oid, value))
        except ValueError as exc:
            raise ValidationError(f"Invalid subject component {part.strip()!r}: {exc}") from exc
    return x509.Name(attributes)


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------


@dataclass
class CertificateRequest:
    """Parameters for issuing a certificate.

    Parameters
    ----------
    subject:
        Distinguished name, ``CN=`` first (``"CN=collector01, O=DFIR"``).
    cert_type:
        Certificate type; selects required key usages and extensions.
    key_usage:
        Declared key usages. Defaults per type when empty.
    validity_days:
        Requested lifetime. Capped at 365 for forensic-grade certificates.
    key_size:
        RSA key size in bits. Raised to 3072 for forensic-grade certificates.
    hash_algorithm:
        Signature hash; raised to SHA384 for forensic-grade certificates.
    forensic_grade:
        Request the forensic profile.
    issuer_thumbprint:
        Signing authority. Defaults to the manager's root CA. Ignored for
        ``CA`` requests, which create a new self-signed root.
    subject_alt_names:
        DNS names or IP addresses.
    owner_id:
        Identity or service the certificate belongs to.
    """

    subject: str
    cert_type: CertificateType = CertificateType.CLIENT
    key_usage: frozenset[KeyUsage] = frozenset()
    validity_days: int = 365
    key_size: int = MIN_KEY_SIZE
    hash_algorithm: str = "SHA256"
    forensic_grade: bool = False
    issuer_thumbprint: str | None = None
    subject_alt_names: list[str] = field(default_factory=list)
    owner_id: str | None = None

    def __post_init__(self) -> None:
        parse_subject(self.subject)
        self.cert_type = CertificateType.parse(self.cert_type)
        usages = frozenset(KeyUsage.parse(u) for u in self.key_usage)
        self.key_usage = usages or DEFAULT_KEY_USAGE[self.cert_type]
        missing = REQUIRED_KEY_USAGE[self.cert_type] - self.key_usage
        if missing:
            raise ValidationError(
                f"{self.cert_type.value} certificates require key usage "
                + ", ".join(sorted(u.value for u in missing))
                + "."
            )
        if self.validity_days <= 0:
            raise ValidationError("validity_days must be positive.")
        if self.key_size < MIN_KEY_SIZE:
            raise ValidationError(f"key_size must be at least {MIN_KEY_SIZE} bits, got {self.key_size}.")
        self.hash_algorithm = self.hash_algorithm.upper().replace("-", "")
        if self.hash_algorithm not in SUPPORTED_HASHES:
            raise ValidationError(
                f"Unsupported hash algorithm {self.hash_algorithm!r}; use one of {', '.join(SUPPORTED_HASHES)}."
            )

    def with_forensic_profile(self) -> "CertificateRequest":
        """Return a copy upgraded to forensic-grade parameters."""
        return CertificateRequest(
            subject=self.subject,
            cert_type=self.cert_type,
            key_usage=self.key_usage,
            validity_days=min(self.validity_days, FORENSIC_MAX_VALIDITY_DAYS),
            key_size=max(self.key_size, FORENSIC_MIN_KEY_SIZE),
            hash_algorithm=self.hash_algorithm if self.hash_algorithm in FORENSIC_HASHES else "SHA384",
            forensic_grade=True,
            issuer_thumbprint=self.issuer_thumbprint,
            subject_alt_names=list(self.subject_alt_names),
            owner_id=self.owner_id,
        )


@dataclass
class Certificate:
    """The engine's record of one X.509 certificate.

    ``status`` moves Issued -> Active when the certificate is installed in
    the certificate store, and Active -> Revoked on revocation. A revoked
    record is never modified again.
    """

    thumbprint: str
    subject: str
    cert_type: CertificateType
    key_usage: frozenset[KeyUsage]
    not_before: datetime.datetime
    not_after: datetime.datetime
    serial_number: int
    cert_pem: bytes
    key_size: int
    hash_algorithm: str
    key_pem: bytes = b""
    issuer_thumbprint: str | None = None
    forensic_grade: bool = False
    status: CertificateStatus = CertificateStatus.ISSUED
    revocation_reason: RevocationReason | None = None
    revoked_at: datetime.datetime | None = None
    owner_id: str | None = None
    subject_alt_names: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.not_after <= self.not_before:
            raise ValidationError("Certificate notAfter must be later than notBefore.")
        if self.forensic_grade:
            if self.key_size < FORENSIC_MIN_KEY_SIZE:
                raise ForensicConstraintError(
                    f"Forensic-grade certificate requires a key of at least {FORENSIC_MIN_KEY_SIZE} bits, "
                    f"got {self.key_size}."
                )
            if self.validity_days > FORENSIC_MAX_VALIDITY_DAYS:
                raise ForensicConstraintError(
                    f"Forensic-grade certificate validity is capped at {FORENSIC_MAX_VALIDITY_DAYS} days, "
                    f"got {self.validity_days}."
                )

    @property
    def validity_days(self) -> int:
        return (self.not_after - self.not_before).days

    @property
    def is_authority(self) -> bool:
        return self.cert_type.is_authority

    @property
    def is_self_signed(self) -> bool:
        return self.issuer_thumbprint is None or self.issuer_thumbprint == self.thumbprint

    @property
    def is_revoked(self) -> bool:
        return self.status is CertificateStatus.REVOKED

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        return (now or _utcnow()) > self.not_after

    def days_remaining(self, now: datetime.datetime | None = None) -> int:
        """Return number of days until expiry (negative if already expired)."""
        return (self.not_after - (now or _utcnow())).days

    def load_x509(self) -> x509.Certificate:
        return x509.load_pem_x509_certificate(self.cert_pem)

    def to_dict(self, include_key: bool = False) -> dict[str, object]:
        data: dict[str, object] = {
            "thumbprint": self.thumbprint,
            "subject": self.subject,
            "cert_type": self.cert_type.value,
            "key_usage": sorted(u.value for u in self.key_usage),
            "not_before": self.not_before.isoformat(),
            "not_after": self.not_after.isoformat(),
            "serial_number": str(self.serial_number),
            "issuer_thumbprint": self.issuer_thumbprint,
            "forensic_grade": self.forensic_grade,
            "status": self.status.value,
            "revocation_reason": self.revocation_reason.value if self.revocation_reason else None,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
            "key_size": self.key_size,
            "hash_algorithm": self.hash_algorithm,
            "owner_id": self.owner_id,
            "subject_alt_names": list(self.subject_alt_names),
            "cert_pem": self.cert_pem.decode("ascii"),
        }
        if include_key:
            data["key_pem"] = self.key_pem.decode("ascii")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Certificate":
        reason = data.get("revocation_reason")
        return cls(
            thumbprint=str(data["thumbprint"]),
            subject=str(data["subject"]),
            cert_type=CertificateType.parse(str(data["cert_type"])),
            key_usage=frozenset(KeyUsage.parse(str(u)) for u in data.get("key_usage") or []),  # type: ignore[union-attr]
            not_before=datetime.datetime.fromisoformat(str(data["not_before"])),
            not_after=datetime.datetime.fromisoformat(str(data["not_after"])),
            serial_number=int(str(data["serial_number"])),
            cert_pem=str(data["cert_pem"]).encode("ascii"),
            key_pem=str(data.get("key_pem") or "").encode("ascii"),
            key_size=int(data["key_size"]),  # type: ignore[arg-type]
            hash_algorithm=str(data["hash_algorithm"]),
            issuer_thumbprint=(str(data["issuer_thumbprint"]) if data.get("issuer_thumbprint") else None),
            forensic_grade=bool(data.get("forensic_grade", False)),
            status=CertificateStatus(str(data.get("status", "Active"))),
            revocation_reason=RevocationReason.parse(str(reason)) if reason else None,
            revoked_at=_parse_ts(data.get("revoked_at")),
            owner_id=(str(data["owner_id"]) if data.get("owner_id") else None),
            subject_alt_names=[str(s) for s in data.get("subject_alt_names") or []],  # type: ignore[union-attr]
        )


@dataclass(frozen=True)
class ValidationFinding:
    """Outcome of one check on one certificate of the chain."""

    test: str
    outcome: CheckOutcome
    message: str
    thumbprint: str

    def to_dict(self) -> dict[str, str]:
        return {
            "test": self.test,
            "outcome": self.outcome.value,
            "message": self.message,
            "thumbprint": self.thumbprint,
        }


@dataclass
class ValidationReport:
    """Aggregate result of a chain validation.

    ``status`` is chosen by the worst individual finding: any Failed makes
    the report Invalid, otherwise any Warning makes it Warning.
    """

    thumbprint: str
    depth: ValidationDepth
    findings: list[ValidationFinding] = field(default_factory=list)
    chain: list[str] = field(default_factory=list)
    checked_at: datetime.datetime = field(default_factory=_utcnow)

    @property
    def status(self) -> ValidationStatus:
        outcomes = {f.outcome for f in self.findings}
        if CheckOutcome.FAILED in outcomes:
            return ValidationStatus.INVALID
        if CheckOutcome.WARNING in outcomes:
            return ValidationStatus.WARNING
        return ValidationStatus.VALID

    @property
    def valid(self) -> bool:
        return self.status is not ValidationStatus.INVALID

    def findings_for(self, test: str) -> list[ValidationFinding]:
        return [f for f in self.findings if f.test == test]

    def has_failure(self, test: str) -> bool:
        return any(f.outcome is CheckOutcome.FAILED for f in self.findings_for(test))

    def to_dict(self) -> dict[str, object]:
        return {
            "thumbprint": self.thumbprint,
            "depth": self.depth.value,
            "status": self.status.value,
            "chain": list(self.chain),
            "findings": [f.to_dict() for f in self.findings],
            "checked_at": self.checked_at.isoformat(),
        }
