#!/usr/bin/env python3
"""Example: Quickstart

Demonstrates the minimal setup for zero-trust-engine: create an analyst,
grant time-boxed elevated access and evaluate a request.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install zero-trust-engine
"""
from __future__ import annotations

import zero_trust_engine
from zero_trust_engine import EngineConfig, ZeroTrustOrchestrator


def main() -> None:
    print(f"zero-trust-engine version: {zero_trust_engine.__version__}")

    with ZeroTrustOrchestrator(EngineConfig(security_level="Standard")) as zt:
        # Step 1: Create an identity with least-privilege permissions
        analyst = zt.create_identity("analyst1", "DFIRAnalyst", scopes=["Data"]).unwrap()
        print(f"Identity created: {analyst.username} ({analyst.identity_id})")
        print(f"  Permissions: {', '.join(p.name for p in analyst.permissions)}")

        # Step 2: Request JIT access; a second person approves it
        pending = zt.request_jit_access(
            analyst.identity_id, "Investigation", "Ransomware case 4711", 8,
            requested_by="analyst1",
        ).unwrap()
        grant = zt.approve_jit_access(pending.request_id, approver="ir-lead").unwrap()
        print(f"JIT grant {grant.status.value} until {grant.expires_at}")

        # Step 3: Evaluate a request under the Transitioning mode
        zt.enable_enforcement("Transitioning").unwrap()
        evaluation = zt.evaluate_access(analyst.identity_id, "HuntManage")
        print(f"HuntManage: {evaluation.decision.value} ({evaluation.reason})")

        # Step 4: Show the engine status
        for key, value in zt.status().items():
            print(f"  {key}: {value}")

    print("\nQuickstart complete.")


if __name__ == "__main__":
    main()
