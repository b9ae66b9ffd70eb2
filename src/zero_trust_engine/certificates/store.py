"""Certificate storage — abstract interface plus in-memory and filesystem backends.

Installing a certificate into a store is what makes it ``Active``. The
filesystem store keeps one directory per thumbprint containing
``cert.pem``, ``key.pem`` (when a key is held) and ``meta.json``.
"""
from __future__ import annotations

import copy
import json
import shutil
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from zero_trust_engine.certificates.models import Certificate
from zero_trust_engine.errors import NotFoundError, StorageError


class CertificateStore(ABC):
    """Abstract base class for certificate storage backends."""

    @abstractmethod
    def install(self, cert: Certificate) -> None:
        """Persist a certificate (and its private key, if the record holds one).

        Raises
        ------
        StorageError
            If the certificate could not be written.
        """

    @abstractmethod
    def load(self, thumbprint: str) -> Certificate:
        """Retrieve a certificate by thumbprint.

        Raises
        ------
        NotFoundError
            If no certificate is stored under *thumbprint*.
        """

    @abstractmethod
    def remove(self, thumbprint: str) -> None:
        """Remove a certificate from storage.

        Raises
        ------
        NotFoundError
            If no certificate is stored under *thumbprint*.
        """

    @abstractmethod
    def thumbprints(self) -> list[str]:
        """Return the sorted thumbprints of all stored certificates."""

    def exists(self, thumbprint: str) -> bool:
        return thumbprint in self.thumbprints()


class InMemoryCertificateStore(CertificateStore):
    """Process-local store, used by default and in tests."""

    def __init__(self) -> None:
        self._certs: dict[str, Certificate] = {}
        self._lock = threading.Lock()

    def install(self, cert: Certificate) -> None:
        with self._lock:
            self._certs[cert.thumbprint] = copy.deepcopy(cert)

    def load(self, thumbprint: str) -> Certificate:
        with self._lock:
            cert = self._certs.get(thumbprint)
        if cert is None:
            raise NotFoundError("Certificate", thumbprint)
        return copy.deepcopy(cert)

    def remove(self, thumbprint: str) -> None:
        with self._lock:
            if self._certs.pop(thumbprint, None) is None:
                raise NotFoundError("Certificate", thumbprint)

    def thumbprints(self) -> list[str]:
        with self._lock:
            return sorted(self._certs)

    def exists(self, thumbprint: str) -> bool:
        with self._lock:
            return thumbprint in self._certs


class FilesystemCertificateStore(CertificateStore):
    """Filesystem-backed certificate storage.

    Parameters
    ----------
    base_dir:
        Root directory for certificate storage. Created if missing.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir
        self._base_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # CertificateStore interface
    # ------------------------------------------------------------------

    def install(self, cert: Certificate) -> None:
        """Write certificate PEM files and metadata JSON to disk.

        A partially written directory is removed before the error propagates.
        """
        cert_dir = self._cert_dir(cert.thumbprint)
        try:
            cert_dir.mkdir(parents=True, exist_ok=True)
            (cert_dir / "cert.pem").write_bytes(cert.cert_pem)
            if cert.key_pem:
                (cert_dir / "key.pem").write_bytes(cert.key_pem)
            meta = cert.to_dict()
            meta.pop("cert_pem", None)
            (cert_dir / "meta.json").write_text(json.dumps(meta, indent=2), encoding="utf-8")
        except OSError as exc:
            shutil.rmtree(cert_dir, ignore_errors=True)
            raise StorageError(f"Cannot install certificate {cert.thumbprint}: {exc}") from exc

    def load(self, thumbprint: str) -> Certificate:
        cert_dir = self._cert_dir(thumbprint)
        if not cert_dir.exists():
            raise NotFoundError("Certificate", thumbprint)
        try:
            meta = json.loads((cert_dir / "meta.json").read_text(encoding="utf-8"))
            meta["cert_pem"] = (cert_dir / "cert.pem").read_text(encoding="ascii")
            key_path = cert_dir / "key.pem"
            if key_path.exists():
                meta["key_pem"] = key_path.read_text(encoding="ascii")
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Cannot read certificate {thumbprint}: {exc}") from exc
        return Certificate.from_dict(meta)

    def remove(self, thumbprint: str) -> None:
        cert_dir = self._cert_dir(thumbprint)
        if not cert_dir.exists():
            raise NotFoundError("Certificate", thumbprint)
        try:
            shutil.rmtree(cert_dir)
        except OSError as exc:
            raise StorageError(f"Cannot remove certificate {thumbprint}: {exc}") from exc

    def thumbprints(self) -> list[str]:
        return sorted(d.name for d in self._base_dir.iterdir() if d.is_dir())

    def exists(self, thumbprint: str) -> bool:
        return self._cert_dir(thumbprint).exists()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _cert_dir(self, thumbprint: str) -> Path:
        safe_name = thumbprint.replace("/", "_").replace("\\", "_")
        return self._base_dir / safe_name
