"""Identity records, the identity store, and trust-score recomputation.

Quick start
-----------
::

    from zero_trust_engine.identity import IdentityStore

    store = IdentityStore()
    analyst = store.create("analyst1", role="DFIRAnalyst")
    print(store.get(analyst.identity_id).status)
"""
from __future__ import annotations

from zero_trust_engine.identity.models import (
    AccessControls,
    AuditEntry,
    AuthMethod,
    AuthMethodKind,
    Identity,
    IdentityStatus,
    default_access_controls,
    default_auth_methods,
)
from zero_trust_engine.identity.store import IdentityStore
from zero_trust_engine.identity.trust import TrustEvidence, compute_trust_score

__all__ = [
    "AccessControls",
    "AuditEntry",
    "AuthMethod",
    "AuthMethodKind",
    "Identity",
    "IdentityStatus",
    "IdentityStore",
    "TrustEvidence",
    "compute_trust_score",
    "default_access_controls",
    "default_auth_methods",
]
