"""Snapshot persistence for a whole engine.

A snapshot is one JSON document holding the configuration, identities, JIT
grants, conditional-access policies, certificates (PEM, metadata and the
private keys of authorities), the revocation list, network segments and
the enforcement mode. The audit log is not part of the snapshot; it lives
in its own append-only file.
"""
from __future__ import annotations

import datetime
import json
import logging
import os
from pathlib import Path
from typing import Any

from zero_trust_engine.access.models import ConditionalAccessPolicy
from zero_trust_engine.certificates.models import Certificate
from zero_trust_engine.config import EngineConfig
from zero_trust_engine.errors import StorageError
from zero_trust_engine.identity.models import Identity
from zero_trust_engine.jit.models import JITGrant
from zero_trust_engine.network.models import NetworkSegment
from zero_trust_engine.orchestrator import ZeroTrustOrchestrator

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def snapshot_dict(orchestrator: ZeroTrustOrchestrator) -> dict[str, object]:
    """Serialise the engine state into a JSON-compatible mapping."""
    manager = orchestrator.certificates
    authorities = manager.authorities()
    certificates = []
    for record in manager.list():
        data = record.to_dict(include_key=True)
        authority = authorities.get(record.thumbprint)
        if authority is not None and not data.get("key_pem"):
            data["key_pem"] = authority.ca_key_pem().decode("ascii")
        certificates.append(data)

    return {
        "version": SNAPSHOT_VERSION,
        "saved_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "config": orchestrator.config.model_dump(mode="json"),
        "enforcement_mode": orchestrator.enforcement_mode.value,
        "default_deny_all": orchestrator.access.default_deny_all,
        "identities": [i.to_dict() for i in orchestrator.identities.list()],
        "jit_grants": [g.to_dict() for g in orchestrator.jit.list()],
        "policies": [p.to_dict() for p in orchestrator.access.list()],
        "certificates": certificates,
        "root_thumbprint": manager.default_root,
        "revocations": manager.revocation_list.to_dict(),
        "segments": [s.to_dict() for s in orchestrator.boundaries.list()],
    }


def save_snapshot(orchestrator: ZeroTrustOrchestrator, path: Path) -> None:
    """Atomically write the engine snapshot to *path*.

    Raises
    ------
    StorageError
        If the file cannot be written.
    """
    payload = json.dumps(snapshot_dict(orchestrator), indent=2, default=str)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as exc:
        raise StorageError(f"Cannot write snapshot {path}: {exc}") from exc
    logger.debug("Saved snapshot to %s", path)


def load_snapshot(
    path: Path,
    config: EngineConfig | None = None,
    **kwargs: Any,
) -> ZeroTrustOrchestrator:
    """Rebuild an orchestrator from the snapshot at *path*.

    Parameters
    ----------
    path:
        Snapshot file written by :func:`save_snapshot`.
    config:
        Configuration to use instead of the one stored in the snapshot.
    **kwargs:
        Passed to :class:`ZeroTrustOrchestrator` (``clock``, ``notifier``...).

    Raises
    ------
    StorageError
        If the file cannot be read or is not a valid snapshot.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise StorageError(f"Cannot read snapshot {path}: {exc}") from exc
    if data.get("version") != SNAPSHOT_VERSION:
        raise StorageError(f"Unsupported snapshot version {data.get('version')!r} in {path}.")

    try:
        effective_config = config if config is not None else EngineConfig.model_validate(data["config"])
        orchestrator = ZeroTrustOrchestrator(effective_config, install_baseline=False, **kwargs)
        _restore(orchestrator, data)
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"Snapshot {path} is malformed: {exc}") from exc
    logger.debug("Loaded snapshot from %s", path)
    return orchestrator


def _restore(orchestrator: ZeroTrustOrchestrator, data: dict[str, Any]) -> None:
    for item in data.get("identities") or []:
        orchestrator.identities.restore(Identity.from_dict(item))
    for item in data.get("jit_grants") or []:
        orchestrator.jit.restore(JITGrant.from_dict(item))
    for item in data.get("policies") or []:
        orchestrator.access.restore(ConditionalAccessPolicy.from_dict(item))

    root = data.get("root_thumbprint")
    for item in data.get("certificates") or []:
        record = Certificate.from_dict(item)
        orchestrator.certificates.restore(record, is_root=record.thumbprint == root)
    orchestrator.certificates.revocation_list.restore(data.get("revocations") or {})

    for item in data.get("segments") or []:
        orchestrator.boundaries.restore(NetworkSegment.from_dict(item))

    deny_all = bool(data.get("default_deny_all", orchestrator.access.default_deny_all))
    if deny_all != orchestrator.access.default_deny_all:
        orchestrator.access.set_default_deny_all(deny_all, actor="snapshot")
    orchestrator.restore_enforcement_mode(data.get("enforcement_mode", "Disabled"))
