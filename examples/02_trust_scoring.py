#!/usr/bin/env python3
"""Example: Trust Scoring and Conditional Access

Demonstrates how authentication evidence moves an identity's trust score
and how the baseline conditional-access policies react to it.

Usage:
    python examples/02_trust_scoring.py

Requirements:
    pip install zero-trust-engine
"""
from __future__ import annotations

import zero_trust_engine
from zero_trust_engine import EngineConfig, TrustEvidence, ZeroTrustOrchestrator
from zero_trust_engine.identity import AuthMethodKind


def main() -> None:
    print(f"zero-trust-engine version: {zero_trust_engine.__version__}")

    zt = ZeroTrustOrchestrator(EngineConfig(security_level="High"))
    zt.enable_enforcement("Transitioning").unwrap()
    zt.enable_enforcement("Enforcing").unwrap()
    responder = zt.create_identity("responder1", "IncidentResponder").unwrap()

    # Step 1: A fresh identity has no trust and must step up
    evaluation = zt.evaluate_access(responder.identity_id, device={"compliant": True})
    print(f"Trust {responder.trust_score:.0f}: {evaluation.decision.value} via {evaluation.policy}")

    # Step 2: Partial evidence, one factor verified and the device unknown
    partial = TrustEvidence(verified_methods={AuthMethodKind.CERTIFICATE}, recent_failures=1)
    responder = zt.recompute_trust(responder.identity_id, partial).unwrap()
    evaluation = zt.evaluate_access(responder.identity_id, device={"compliant": True})
    print(f"Trust {responder.trust_score:.0f}: {evaluation.decision.value} via {evaluation.policy}")

    # Step 3: Full evidence
    full = TrustEvidence(
        verified_methods={AuthMethodKind.CERTIFICATE, AuthMethodKind.MFA},
        device_compliant=True,
        certificate_valid=True,
    )
    responder = zt.recompute_trust(responder.identity_id, full).unwrap()
    for compliant in (True, False):
        evaluation = zt.evaluate_access(responder.identity_id, device={"compliant": compliant})
        print(
            f"Trust {responder.trust_score:.0f}, compliant device={compliant}: "
            f"{evaluation.decision.value} via {evaluation.policy}"
        )


if __name__ == "__main__":
    main()
