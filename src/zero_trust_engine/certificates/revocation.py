"""Certificate Revocation List (CRL) management.

Keeps every revoked serial with its reason and effective date, persists the
list as JSON, and exports a signed X.509 CRL per issuing authority.
Revocation is permanent: there is no way to remove an entry.
"""
from __future__ import annotations

import datetime
import json
import threading
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from zero_trust_engine.certificates.ca import CertificateAuthority, hash_algorithm
from zero_trust_engine.certificates.models import RevocationReason
from zero_trust_engine.errors import StorageError


@dataclass(frozen=True)
class RevocationEntry:
    """One revoked certificate.

    Parameters
    ----------
    serial_number:
        Serial of the revoked certificate.
    reason:
        Why it was revoked.
    effective_date:
        When the certificate stopped being trustworthy (may precede
        ``revoked_at``, e.g. for a key compromise discovered later).
    revoked_at:
        When the revocation was recorded.
    thumbprint:
        Thumbprint of the revoked certificate.
    issuer_thumbprint:
        Thumbprint of the authority that issued it.
    """

    serial_number: int
    reason: RevocationReason
    effective_date: datetime.datetime
    revoked_at: datetime.datetime
    thumbprint: str = ""
    issuer_thumbprint: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "serial_number": str(self.serial_number),
            "reason": self.reason.value,
            "effective_date": self.effective_date.isoformat(),
            "revoked_at": self.revoked_at.isoformat(),
            "thumbprint": self.thumbprint,
            "issuer_thumbprint": self.issuer_thumbprint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "RevocationEntry":
        return cls(
            serial_number=int(str(data["serial_number"])),
            reason=RevocationReason.parse(str(data["reason"])),
            effective_date=datetime.datetime.fromisoformat(str(data["effective_date"])),
            revoked_at=datetime.datetime.fromisoformat(str(data["revoked_at"])),
            thumbprint=str(data.get("thumbprint", "")),
            issuer_thumbprint=(str(data["issuer_thumbprint"]) if data.get("issuer_thumbprint") else None),
        )


class RevocationList:
    """Manages revoked certificate serial numbers.

    Thread-safe implementation that stores revocation entries in memory
    with optional JSON persistence to disk.

    Parameters
    ----------
    persist_path:
        If provided, revocations are read from and written to this JSON file.

    Raises
    ------
    StorageError
        If the persisted list exists but cannot be parsed.
    """

    def __init__(self, persist_path: Path | None = None) -> None:
        self._entries: dict[int, RevocationEntry] = {}
        self._lock = threading.Lock()
        self._persist_path = persist_path

        if persist_path is not None and persist_path.exists():
            self._load_from_disk()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, entry: RevocationEntry) -> RevocationEntry:
        """Record *entry*. An existing entry for the same serial is kept.

        Returns
        -------
        RevocationEntry
            The entry now on the list for that serial.
        """
        with self._lock:
            existing = self._entries.get(entry.serial_number)
            if existing is not None:
                return existing
            self._entries[entry.serial_number] = entry
            try:
                self._save_to_disk()
            except StorageError:
                del self._entries[entry.serial_number]
                raise
            return entry

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def is_revoked(self, serial_number: int) -> bool:
        with self._lock:
            return serial_number in self._entries

    def get(self, serial_number: int) -> RevocationEntry | None:
        with self._lock:
            return self._entries.get(serial_number)

    def entries(self, issuer_thumbprint: str | None = None) -> list[RevocationEntry]:
        """Return entries ordered by revocation time, optionally per issuer."""
        with self._lock:
            entries = list(self._entries.values())
        if issuer_thumbprint is not None:
            entries = [e for e in entries if e.issuer_thumbprint == issuer_thumbprint]
        return sorted(entries, key=lambda e: (e.revoked_at, e.serial_number))

    def revoked_serials(self) -> frozenset[int]:
        """Return a snapshot of all revoked serial numbers."""
        with self._lock:
            return frozenset(self._entries)

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # X.509 export
    # ------------------------------------------------------------------

    def export_crl(
        self,
        authority: CertificateAuthority,
        next_update_days: int = 7,
        now: datetime.datetime | None = None,
    ) -> x509.CertificateRevocationList:
        """Build a CRL of every entry issued by *authority*, signed by it."""
        current = (now or datetime.datetime.now(datetime.timezone.utc)).replace(microsecond=0)
        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(authority.ca_cert.subject)
            .last_update(current)
            .next_update(current + datetime.timedelta(days=next_update_days))
        )
        for entry in self.entries(issuer_thumbprint=authority.thumbprint):
            revoked = (
                x509.RevokedCertificateBuilder()
                .serial_number(entry.serial_number)
                .revocation_date(entry.revoked_at.replace(microsecond=0))
                .add_extension(x509.CRLReason(entry.reason.x509_flag), critical=False)
                .add_extension(
                    x509.InvalidityDate(
                        entry.effective_date.astimezone(datetime.timezone.utc).replace(
                            microsecond=0, tzinfo=None
                        )
                    ),
                    critical=False,
                )
                .build()
            )
            builder = builder.add_revoked_certificate(revoked)
        return builder.sign(authority.ca_key, hash_algorithm(authority.hash_name or "SHA256"))

    def export_crl_pem(self, authority: CertificateAuthority, next_update_days: int = 7) -> bytes:
        return self.export_crl(authority, next_update_days).public_bytes(serialization.Encoding.PEM)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, object]:
        with self._lock:
            return {"entries": [e.to_dict() for e in self._entries.values()]}

    def restore(self, data: dict[str, object]) -> None:
        """Replace the in-memory entries with a persisted snapshot."""
        entries = [RevocationEntry.from_dict(e) for e in data.get("entries") or []]  # type: ignore[union-attr]
        with self._lock:
            self._entries = {e.serial_number: e for e in entries}
            self._save_to_disk()

    def _save_to_disk(self) -> None:
        """Write entries to the persist path as JSON."""
        if self._persist_path is None:
            return
        payload = {"entries": [e.to_dict() for e in self._entries.values()]}
        try:
            self._persist_path.parent.mkdir(parents=True, exist_ok=True)
            self._persist_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Cannot write revocation list {self._persist_path}: {exc}") from exc

    def _load_from_disk(self) -> None:
        """Read entries from the persist path."""
        if self._persist_path is None or not self._persist_path.exists():
            return
        try:
            payload = json.loads(self._persist_path.read_text(encoding="utf-8"))
            entries = [RevocationEntry.from_dict(e) for e in payload.get("entries", [])]
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as exc:
            raise StorageError(f"Cannot read revocation list {self._persist_path}: {exc}") from exc
        self._entries = {e.serial_number: e for e in entries}
