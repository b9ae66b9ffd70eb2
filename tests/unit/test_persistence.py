"""Tests for zero_trust_engine.persistence — snapshot save and load."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from zero_trust_engine.access import ConditionalAccessPolicy, Decision
from zero_trust_engine.config import EngineConfig
from zero_trust_engine.errors import StorageError
from zero_trust_engine.jit import JITStatus
from zero_trust_engine.orchestrator import EnforcementMode, ZeroTrustOrchestrator
from zero_trust_engine.persistence import (
    SNAPSHOT_VERSION,
    load_snapshot,
    save_snapshot,
    snapshot_dict,
)

JUSTIFICATION = "Ransomware case 4711 containment"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def state_file(tmp_path: Path) -> Path:
    return tmp_path / "state" / "engine.json"


@pytest.fixture()
def populated() -> ZeroTrustOrchestrator:
    zt = ZeroTrustOrchestrator(EngineConfig(security_level="High"))
    analyst = zt.create_identity("analyst1", "DFIRAnalyst", scopes=["Data"]).unwrap()
    zt.request_jit_access(analyst.identity_id, "Investigation", JUSTIFICATION, 4).unwrap()
    zt.set_conditional_access_policy(
        ConditionalAccessPolicy(
            name="night-shift-monitor",
            conditions={"late": {"attribute": "time.hour", "operator": "gte", "value": 22}},
            actions={"monitor": {}},
            priority=300,
        )
    ).unwrap()
    zt.create_network_segment("forensics", "10.20.0.0/16", "HighlyTrusted", "Complete").unwrap()
    zt.add_micro_segment("forensics", "evidence", "10.20.5.0/24", allowed_ports=[8443]).unwrap()
    zt.issue_certificate("CN=collector01, O=DFIR").unwrap()
    zt.enable_enforcement("Transitioning").unwrap()
    return zt


# ---------------------------------------------------------------------------
# Snapshot content
# ---------------------------------------------------------------------------


class TestSnapshotDict:
    def test_sections(self, populated: ZeroTrustOrchestrator) -> None:
        data = snapshot_dict(populated)
        assert data["version"] == SNAPSHOT_VERSION
        assert data["enforcement_mode"] == "Transitioning"
        assert len(data["identities"]) == 1  # type: ignore[arg-type]
        assert len(data["jit_grants"]) == 1  # type: ignore[arg-type]
        assert len(data["segments"]) == 1  # type: ignore[arg-type]
        assert "audit" not in data

    def test_authority_keys_included(self, populated: ZeroTrustOrchestrator) -> None:
        data = snapshot_dict(populated)
        root = data["root_thumbprint"]
        roots = [c for c in data["certificates"] if c["thumbprint"] == root]  # type: ignore[union-attr, index]
        assert len(roots) == 1
        assert roots[0]["key_pem"].startswith("-----BEGIN")


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_save_creates_parent(self, populated: ZeroTrustOrchestrator, state_file: Path) -> None:
        save_snapshot(populated, state_file)
        assert state_file.exists()
        assert not state_file.with_suffix(".json.tmp").exists()

    def test_load_restores_every_component(self, populated: ZeroTrustOrchestrator, state_file: Path) -> None:
        save_snapshot(populated, state_file)
        loaded = load_snapshot(state_file)

        assert loaded.config.security_level.value == "High"
        assert loaded.enforcement_mode is EnforcementMode.TRANSITIONING
        analyst = loaded.identities.get_by_username("analyst1")
        assert analyst.permissions == populated.identities.get_by_username("analyst1").permissions
        assert [g.status for g in loaded.jit.list()] == [JITStatus.PENDING]
        assert [p.name for p in loaded.access.list()] == [p.name for p in populated.access.list()]
        assert loaded.boundaries.get("forensics").micro_segment("evidence") is not None
        assert loaded.certificates.default_root == populated.certificates.default_root
        assert len(loaded.certificates.list()) == len(populated.certificates.list())

    def test_loaded_engine_keeps_working(self, populated: ZeroTrustOrchestrator, state_file: Path) -> None:
        save_snapshot(populated, state_file)
        loaded = load_snapshot(state_file)

        root = loaded.certificates.default_root
        cert = loaded.issue_certificate("CN=collector02, O=DFIR").unwrap()
        assert cert.issuer_thumbprint == root

        analyst = loaded.identities.get_by_username("analyst1")
        pending = loaded.jit.list()[0]
        granted = loaded.approve_jit_access(pending.request_id, approver="lead").unwrap()
        assert granted.status is JITStatus.GRANTED
        evaluation = loaded.evaluate_access(analyst.identity_id, "SystemAdmin")
        assert evaluation.decision is Decision.MONITOR

    def test_default_deny_restored(self, state_file: Path) -> None:
        zt = ZeroTrustOrchestrator(EngineConfig(security_level="Basic"))
        zt.access.set_default_deny_all(True)
        save_snapshot(zt, state_file)
        assert load_snapshot(state_file).access.default_deny_all is True

    def test_baseline_not_duplicated(self, state_file: Path) -> None:
        zt = ZeroTrustOrchestrator()
        save_snapshot(zt, state_file)
        assert len(load_snapshot(state_file).access) == len(zt.access)

    def test_config_override(self, populated: ZeroTrustOrchestrator, state_file: Path) -> None:
        save_snapshot(populated, state_file)
        loaded = load_snapshot(state_file, config=EngineConfig(security_level="Maximum"))
        assert loaded.jit.policy.max_duration_hours == 4


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestLoadFailures:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(StorageError):
            load_snapshot(tmp_path / "absent.json")

    def test_not_json(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError):
            load_snapshot(path)

    def test_wrong_version(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": 99}), encoding="utf-8")
        with pytest.raises(StorageError, match="version"):
            load_snapshot(path)

    def test_malformed_section(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(
            json.dumps({"version": SNAPSHOT_VERSION, "config": {}, "identities": [{"username": "x"}]}),
            encoding="utf-8",
        )
        with pytest.raises(StorageError, match="malformed"):
            load_snapshot(path)
