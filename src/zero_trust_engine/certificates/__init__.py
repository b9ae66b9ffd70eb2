"""X.509 certificate lifecycle: issuance, chain validation, revocation and storage.

Quick start
-----------
::

    from zero_trust_engine.certificates import CertificateLifecycleManager, CertificateRequest

    manager = CertificateLifecycleManager()
    cert = manager.issue(CertificateRequest(subject="CN=collector01", cert_type="Client"))
    report = manager.validate_chain(cert.thumbprint)
    print(report.status)
"""
from __future__ import annotations

from zero_trust_engine.certificates.ca import CertificateAuthority
from zero_trust_engine.certificates.manager import CertificateLifecycleManager
from zero_trust_engine.certificates.models import (
    Certificate,
    CertificateRequest,
    CertificateStatus,
    CertificateType,
    CheckOutcome,
    KeyUsage,
    RevocationReason,
    ValidationDepth,
    ValidationFinding,
    ValidationReport,
    ValidationStatus,
    parse_subject,
)
from zero_trust_engine.certificates.revocation import RevocationEntry, RevocationList
from zero_trust_engine.certificates.store import (
    CertificateStore,
    FilesystemCertificateStore,
    InMemoryCertificateStore,
)
from zero_trust_engine.certificates.validator import ChainValidator

__all__ = [
    "Certificate",
    "CertificateAuthority",
    "CertificateLifecycleManager",
    "CertificateRequest",
    "CertificateStatus",
    "CertificateStore",
    "CertificateType",
    "ChainValidator",
    "CheckOutcome",
    "FilesystemCertificateStore",
    "InMemoryCertificateStore",
    "KeyUsage",
    "RevocationEntry",
    "RevocationList",
    "RevocationReason",
    "ValidationDepth",
    "ValidationFinding",
    "ValidationReport",
    "ValidationStatus",
    "parse_subject",
]
