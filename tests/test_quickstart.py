"""Test that the quickstart API works for zero-trust-engine."""
from __future__ import annotations


def test_quickstart_import() -> None:
    from zero_trust_engine import ZeroTrustOrchestrator

    zt = ZeroTrustOrchestrator()
    assert zt is not None


def test_quickstart_create_identity() -> None:
    from zero_trust_engine import Identity, ZeroTrustOrchestrator

    zt = ZeroTrustOrchestrator()
    analyst = zt.create_identity("analyst1", "DFIRAnalyst", scopes=["Data"]).unwrap()
    assert isinstance(analyst, Identity)
    assert analyst.username == "analyst1"


def test_quickstart_jit_widens_access() -> None:
    from zero_trust_engine import Decision, EngineConfig, JITStatus, ZeroTrustOrchestrator

    with ZeroTrustOrchestrator(EngineConfig(security_level="Standard")) as zt:
        analyst = zt.create_identity("analyst1", "DFIRAnalyst").unwrap()
        grant = zt.request_jit_access(
            analyst.identity_id, "Investigation", "Ransomware case 4711", 8,
            approval_required=False,
        ).unwrap()
        assert grant.status is JITStatus.GRANTED
        assert zt.get_identity(analyst.identity_id).has_permission("HuntManage")
        assert zt.evaluate_access(analyst.identity_id, "HuntManage").decision is Decision.ALLOW


def test_quickstart_failure_is_a_result() -> None:
    from zero_trust_engine import ErrorKind, ZeroTrustOrchestrator

    result = ZeroTrustOrchestrator().create_identity("eve", "Wizard")
    assert not result.ok
    assert result.error_kind is ErrorKind.VALIDATION


def test_quickstart_version() -> None:
    import zero_trust_engine

    assert zero_trust_engine.__version__ == "0.1.0"
