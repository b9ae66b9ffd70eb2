"""Certificate chain validation at Basic, Extended and Forensic depth.

The validator is a pure function of the chain it is given, the revocation
list and the current time, so validations may run in parallel.

Checks per depth (cumulative):

* Basic: chain completeness, record status (a revoked certificate yields a
  Failed ``Revoked`` finding), validity window, signature by the issuer.
* Extended: CRL lookup for every certificate of the chain, issuer
  constraints (CA flag and ``keyCertSign``), declared key usage present on
  the leaf's X.509 extension.
* Forensic: weak signature algorithms, RSA key sizes, and the forensic
  profile (key >= 3072 bits, SHA-384/512, validity <= 365 days) for
  forensic-grade certificates.
"""
from __future__ import annotations

import datetime
import logging
from typing import Callable

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from zero_trust_engine.certificates.models import (
    FORENSIC_HASHES,
    FORENSIC_MAX_VALIDITY_DAYS,
    FORENSIC_MIN_KEY_SIZE,
    MIN_KEY_SIZE,
    Certificate,
    CheckOutcome,
    KeyUsage,
    ValidationDepth,
    ValidationFinding,
    ValidationReport,
)
from zero_trust_engine.certificates.revocation import RevocationList

logger = logging.getLogger(__name__)

EXPIRY_WARNING_DAYS = 30
# Short-lived certificates warn only in the last fifth of their lifetime.
EXPIRY_WARNING_FRACTION = 0.2
WEAK_HASHES = ("MD5", "SHA1", "SHA224")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ChainValidator:
    """Validates a leaf-first certificate chain.

    Parameters
    ----------
    revocation_list:
        CRL consulted at Extended depth and above.
    clock:
        Source of the current UTC time.
    """

    def __init__(
        self,
        revocation_list: RevocationList | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._revocation_list = revocation_list
        self._clock = clock

    def validate(
        self,
        chain: list[Certificate],
        depth: ValidationDepth = ValidationDepth.BASIC,
        complete: bool = True,
    ) -> ValidationReport:
        """Validate *chain* (leaf first, root last).

        Parameters
        ----------
        chain:
            The trust path built by the caller.
        depth:
            How thorough the validation is.
        complete:
            False when the caller could not reach a trusted root.
        """
        if not chain:
            raise ValueError("chain must contain at least the leaf certificate")
        now = self._clock()
        leaf = chain[0]
        report = ValidationReport(
            thumbprint=leaf.thumbprint,
            depth=depth,
            chain=[c.thumbprint for c in chain],
            checked_at=now,
        )
        findings = report.findings

        if complete:
            findings.append(self._pass("ChainComplete", f"chain of {len(chain)} ends at a trusted root", chain[-1]))
        else:
            findings.append(
                ValidationFinding("ChainComplete", CheckOutcome.FAILED, "no trusted root reachable", chain[-1].thumbprint)
            )

        loaded = [c.load_x509() for c in chain]
        for index, cert in enumerate(chain):
            findings.append(self._check_status(cert))
            findings.append(self._check_window(cert, now))
            issuer = loaded[index + 1] if index + 1 < len(loaded) else (loaded[index] if cert.is_self_signed else None)
            if issuer is not None:
                findings.append(self._check_signature(cert, loaded[index], issuer))

        if depth in (ValidationDepth.EXTENDED, ValidationDepth.FORENSIC):
            for index, cert in enumerate(chain):
                findings.append(self._check_crl(cert))
                if index > 0:
                    findings.append(self._check_issuer_constraints(cert, loaded[index]))
            findings.append(self._check_key_usage(leaf, loaded[0]))

        if depth is ValidationDepth.FORENSIC:
            for index, cert in enumerate(chain):
                findings.extend(self._check_forensic(cert, loaded[index], is_leaf=index == 0))

        logger.debug(
            "Validated %s at %s depth: %s", leaf.thumbprint, depth.value, report.status.value
        )
        return report

    # ------------------------------------------------------------------
    # Basic checks
    # ------------------------------------------------------------------

    @staticmethod
    def _pass(test: str, message: str, cert: Certificate) -> ValidationFinding:
        return ValidationFinding(test, CheckOutcome.PASSED, message, cert.thumbprint)

    @staticmethod
    def _fail(test: str, message: str, cert: Certificate) -> ValidationFinding:
        return ValidationFinding(test, CheckOutcome.FAILED, message, cert.thumbprint)

    @staticmethod
    def _warn(test: str, message: str, cert: Certificate) -> ValidationFinding:
        return ValidationFinding(test, CheckOutcome.WARNING, message, cert.thumbprint)

    def _check_status(self, cert: Certificate) -> ValidationFinding:
        if cert.is_revoked:
            reason = cert.revocation_reason.value if cert.revocation_reason else "Unspecified"
            return self._fail("Revoked", f"{cert.subject} was revoked ({reason})", cert)
        return self._pass("Revoked", "not revoked", cert)

    def _check_window(self, cert: Certificate, now: datetime.datetime) -> ValidationFinding:
        if now < cert.not_before:
            return self._fail("ValidityWindow", f"not valid before {cert.not_before.isoformat()}", cert)
        if now > cert.not_after:
            return self._fail("ValidityWindow", f"expired at {cert.not_after.isoformat()}", cert)
        remaining = cert.not_after - now
        threshold = min(
            datetime.timedelta(days=EXPIRY_WARNING_DAYS),
            (cert.not_after - cert.not_before) * EXPIRY_WARNING_FRACTION,
        )
        if remaining < threshold:
            return self._warn("ValidityWindow", f"expires in {remaining.days} days", cert)
        return self._pass("ValidityWindow", f"valid until {cert.not_after.isoformat()}", cert)

    def _check_signature(
        self,
        cert: Certificate,
        x509_cert: x509.Certificate,
        issuer: x509.Certificate,
    ) -> ValidationFinding:
        try:
            x509_cert.verify_directly_issued_by(issuer)
        except InvalidSignature:
            return self._fail("Signature", "signature does not verify against the issuer key", cert)
        except (ValueError, TypeError) as exc:
            return self._fail("Signature", f"issuer mismatch: {exc}", cert)
        return self._pass("Signature", "signed by issuer", cert)

    # ------------------------------------------------------------------
    # Extended checks
    # ------------------------------------------------------------------

    def _check_crl(self, cert: Certificate) -> ValidationFinding:
        if self._revocation_list is None:
            return self._warn("CRL", "no revocation list configured", cert)
        entry = self._revocation_list.get(cert.serial_number)
        if entry is not None:
            return self._fail(
                "CRL",
                f"serial {cert.serial_number} listed as {entry.reason.value} "
                f"effective {entry.effective_date.isoformat()}",
                cert,
            )
        return self._pass("CRL", "serial not listed", cert)

    def _check_issuer_constraints(self, cert: Certificate, x509_cert: x509.Certificate) -> ValidationFinding:
        try:
            constraints = x509_cert.extensions.get_extension_for_class(x509.BasicConstraints).value
            usage = x509_cert.extensions.get_extension_for_class(x509.KeyUsage).value
        except x509.ExtensionNotFound as exc:
            return self._fail("IssuerConstraints", f"issuer lacks extension: {exc}", cert)
        if not constraints.ca or not usage.key_cert_sign:
            return self._fail("IssuerConstraints", "issuer is not a certificate authority", cert)
        return self._pass("IssuerConstraints", "issuer may sign certificates", cert)

    def _check_key_usage(self, cert: Certificate, x509_cert: x509.Certificate) -> ValidationFinding:
        try:
            usage = x509_cert.extensions.get_extension_for_class(x509.KeyUsage).value
        except x509.ExtensionNotFound:
            return self._fail("KeyUsage", "keyUsage extension missing", cert)
        present = {
            KeyUsage.DIGITAL_SIGNATURE: usage.digital_signature,
            KeyUsage.NON_REPUDIATION: usage.content_commitment,
            KeyUsage.KEY_ENCIPHERMENT: usage.key_encipherment,
            KeyUsage.DATA_ENCIPHERMENT: usage.data_encipherment,
            KeyUsage.KEY_AGREEMENT: usage.key_agreement,
            KeyUsage.KEY_CERT_SIGN: usage.key_cert_sign,
            KeyUsage.CRL_SIGN: usage.crl_sign,
        }
        missing = sorted(u.value for u in cert.key_usage if not present[u])
        if missing:
            return self._fail("KeyUsage", "declared usage missing from extension: " + ", ".join(missing), cert)
        return self._pass("KeyUsage", "declared usage present", cert)

    # ------------------------------------------------------------------
    # Forensic checks
    # ------------------------------------------------------------------

    def _check_forensic(
        self,
        cert: Certificate,
        x509_cert: x509.Certificate,
        is_leaf: bool,
    ) -> list[ValidationFinding]:
        findings: list[ValidationFinding] = []
        algorithm = x509_cert.signature_hash_algorithm
        hash_name = algorithm.name.upper().replace("-", "") if algorithm else "UNKNOWN"
        if hash_name in WEAK_HASHES or algorithm is None:
            findings.append(self._fail("SignatureAlgorithm", f"weak signature hash {hash_name}", cert))
        elif cert.forensic_grade and hash_name not in FORENSIC_HASHES:
            findings.append(
                self._fail("SignatureAlgorithm", f"forensic-grade certificate signed with {hash_name}", cert)
            )
        elif hash_name not in FORENSIC_HASHES:
            findings.append(self._warn("SignatureAlgorithm", f"{hash_name} is below the forensic profile", cert))
        else:
            findings.append(self._pass("SignatureAlgorithm", hash_name, cert))

        public_key = x509_cert.public_key()
        if not isinstance(public_key, RSAPublicKey):
            findings.append(self._warn("KeySize", "non-RSA key not assessed", cert))
        elif public_key.key_size < MIN_KEY_SIZE:
            findings.append(self._fail("KeySize", f"{public_key.key_size}-bit key", cert))
        elif public_key.key_size < FORENSIC_MIN_KEY_SIZE:
            outcome = CheckOutcome.FAILED if cert.forensic_grade else CheckOutcome.WARNING
            findings.append(
                ValidationFinding("KeySize", outcome, f"{public_key.key_size}-bit key below {FORENSIC_MIN_KEY_SIZE}", cert.thumbprint)
            )
        else:
            findings.append(self._pass("KeySize", f"{public_key.key_size}-bit key", cert))

        if is_leaf and cert.forensic_grade:
            if cert.validity_days > FORENSIC_MAX_VALIDITY_DAYS:
                findings.append(
                    self._fail("ForensicValidity", f"validity {cert.validity_days} days exceeds {FORENSIC_MAX_VALIDITY_DAYS}", cert)
                )
            else:
                findings.append(self._pass("ForensicValidity", f"validity {cert.validity_days} days", cert))
        return findings
