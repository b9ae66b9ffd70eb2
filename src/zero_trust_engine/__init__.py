"""zero-trust-engine — Zero-trust access control for incident-response platforms.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import zero_trust_engine
>>> zero_trust_engine.__version__
'0.1.0'

Quick start
-----------
::

    from zero_trust_engine import EngineConfig, ZeroTrustOrchestrator

    with ZeroTrustOrchestrator(EngineConfig(security_level="Standard")) as zt:
        analyst = zt.create_identity("analyst1", "DFIRAnalyst", scopes=["Data"]).unwrap()
        grant = zt.request_jit_access(
            analyst.identity_id, "Investigation", "Ransomware case 4711", 8,
            approval_required=False,
        ).unwrap()
        print(zt.evaluate_access(analyst.identity_id, "HuntManage").decision)
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ------------------------------------------------------------------
# Errors and audit
# ------------------------------------------------------------------
from zero_trust_engine.audit.log import AuditLog, AuditRecord, Severity
from zero_trust_engine.errors import (
    CIDRConflictError,
    ConflictError,
    DuplicateError,
    DuplicateUsernameError,
    ErrorKind,
    ForensicConstraintError,
    NotFoundError,
    OperationResult,
    PolicyViolationError,
    StorageError,
    ValidationError,
    ZeroTrustError,
)

# ------------------------------------------------------------------
# Identities and permissions
# ------------------------------------------------------------------
from zero_trust_engine.identity.models import Identity, IdentityStatus
from zero_trust_engine.identity.store import IdentityStore
from zero_trust_engine.identity.trust import TrustEvidence
from zero_trust_engine.permissions.calculator import PermissionCalculator
from zero_trust_engine.permissions.model import Permission, PrivilegeLevel, Role, Scope, Verb

# ------------------------------------------------------------------
# JIT access
# ------------------------------------------------------------------
from zero_trust_engine.jit.coordinator import JITAccessCoordinator
from zero_trust_engine.jit.models import AccessType, JITGrant, JITStatus
from zero_trust_engine.jit.policy import JITPolicy
from zero_trust_engine.jit.sweeper import JITExpirySweeper

# ------------------------------------------------------------------
# Conditional access
# ------------------------------------------------------------------
from zero_trust_engine.access.engine import ConditionalAccessEngine
from zero_trust_engine.access.models import (
    AccessContext,
    AccessEvaluation,
    ConditionalAccessPolicy,
    Decision,
    PolicyMode,
)

# ------------------------------------------------------------------
# Certificates
# ------------------------------------------------------------------
from zero_trust_engine.certificates.ca import CertificateAuthority
from zero_trust_engine.certificates.manager import CertificateLifecycleManager
from zero_trust_engine.certificates.models import (
    Certificate,
    CertificateRequest,
    CertificateType,
    RevocationReason,
    ValidationDepth,
    ValidationReport,
    ValidationStatus,
)

# ------------------------------------------------------------------
# Network trust boundaries
# ------------------------------------------------------------------
from zero_trust_engine.network.boundaries import TrustBoundaryModel
from zero_trust_engine.network.models import IsolationLevel, NetworkSegment, SegmentStatus, TrustLevel

# ------------------------------------------------------------------
# Orchestration
# ------------------------------------------------------------------
from zero_trust_engine.config import ComplianceFramework, EngineConfig, SecurityLevel
from zero_trust_engine.orchestrator import EnforcementMode, ZeroTrustOrchestrator
from zero_trust_engine.persistence import load_snapshot, save_snapshot

__all__ = [
    "__version__",
    # Errors and audit
    "AuditLog",
    "AuditRecord",
    "CIDRConflictError",
    "ConflictError",
    "DuplicateError",
    "DuplicateUsernameError",
    "ErrorKind",
    "ForensicConstraintError",
    "NotFoundError",
    "OperationResult",
    "PolicyViolationError",
    "Severity",
    "StorageError",
    "ValidationError",
    "ZeroTrustError",
    # Identities and permissions
    "Identity",
    "IdentityStatus",
    "IdentityStore",
    "Permission",
    "PermissionCalculator",
    "PrivilegeLevel",
    "Role",
    "Scope",
    "TrustEvidence",
    "Verb",
    # JIT access
    "AccessType",
    "JITAccessCoordinator",
    "JITExpirySweeper",
    "JITGrant",
    "JITPolicy",
    "JITStatus",
    # Conditional access
    "AccessContext",
    "AccessEvaluation",
    "ConditionalAccessEngine",
    "ConditionalAccessPolicy",
    "Decision",
    "PolicyMode",
    # Certificates
    "Certificate",
    "CertificateAuthority",
    "CertificateLifecycleManager",
    "CertificateRequest",
    "CertificateType",
    "RevocationReason",
    "ValidationDepth",
    "ValidationReport",
    "ValidationStatus",
    # Network
    "IsolationLevel",
    "NetworkSegment",
    "SegmentStatus",
    "TrustBoundaryModel",
    "TrustLevel",
    # Orchestration
    "ComplianceFramework",
    "EnforcementMode",
    "EngineConfig",
    "SecurityLevel",
    "ZeroTrustOrchestrator",
    "load_snapshot",
    "save_snapshot",
]
