"""Trust-score recomputation from verification evidence.

The score is a weighted sum of four components, each expressed as a
fraction of its weight, clamped to [0, 100]:

* authentication: share of required methods verified, plus a small bonus
  for each optional method verified,
* device posture,
* certificate validity,
* an activity baseline for identities in good standing.

Recent authentication failures subtract a fixed penalty each. Suspended
and expired identities always score 0.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field

from zero_trust_engine.identity.models import AuthMethodKind, Identity, IdentityStatus

WEIGHTS: dict[str, float] = {
    "authentication": 45.0,
    "device": 20.0,
    "certificate": 20.0,
    "baseline": 15.0,
}
OPTIONAL_METHOD_BONUS = 5.0
FAILURE_PENALTY = 10.0


@dataclass
class TrustEvidence:
    """Facts established by one verification pass.

    Parameters
    ----------
    verified_methods:
        Authentication methods that were successfully exercised.
    device_compliant:
        Device posture result; None when unknown.
    certificate_valid:
        Result of validating the identity's certificate; None when the
        identity has no certificate.
    recent_failures:
        Failed authentication attempts since the last verification.
    verified_at:
        Time of verification. Defaults to the store clock.
    """

    verified_methods: set[AuthMethodKind] = field(default_factory=set)
    device_compliant: bool | None = None
    certificate_valid: bool | None = None
    recent_failures: int = 0
    verified_at: datetime.datetime | None = None


def _fraction(value: bool | None, unknown: float) -> float:
    if value is None:
        return unknown
    return 1.0 if value else 0.0


def compute_trust_score(identity: Identity, evidence: TrustEvidence) -> float:
    """Return the trust score for *identity* given *evidence*."""
    if identity.status is not IdentityStatus.ACTIVE:
        return 0.0

    required = [m.kind for m in identity.auth_methods if m.required]
    optional = [m.kind for m in identity.auth_methods if not m.required]
    if required:
        auth_share = sum(1 for k in required if k in evidence.verified_methods) / len(required)
    else:
        auth_share = 1.0 if evidence.verified_methods else 0.0

    score = WEIGHTS["authentication"] * auth_share
    score += OPTIONAL_METHOD_BONUS * sum(1 for k in optional if k in evidence.verified_methods)
    score += WEIGHTS["device"] * _fraction(evidence.device_compliant, 0.5)
    score += WEIGHTS["certificate"] * _fraction(evidence.certificate_valid, 0.25)
    score += WEIGHTS["baseline"]
    score -= FAILURE_PENALTY * max(0, evidence.recent_failures)

    return round(max(0.0, min(100.0, score)), 2)
