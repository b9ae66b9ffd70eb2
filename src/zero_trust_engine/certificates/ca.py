"""Certificate authority: key generation and X.509 signing.

:class:`CertificateAuthority` wraps a signing certificate and its private
key. The lifecycle manager keeps one per root and intermediate it trusts;
an externally supplied authority can be injected in place of the internal
self-signed root.
"""
from __future__ import annotations

import datetime
import ipaddress
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from zero_trust_engine.certificates.models import (
    CertificateRequest,
    CertificateType,
    KeyUsage,
)
from zero_trust_engine.errors import ValidationError

_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "SHA256": hashes.SHA256,
    "SHA384": hashes.SHA384,
    "SHA512": hashes.SHA512,
}

_EXTENDED_USAGE: dict[CertificateType, list[x509.ObjectIdentifier]] = {
    CertificateType.CLIENT: [ExtendedKeyUsageOID.CLIENT_AUTH],
    CertificateType.SERVER: [ExtendedKeyUsageOID.SERVER_AUTH],
    CertificateType.SERVICE: [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH],
    CertificateType.CODE_SIGNING: [ExtendedKeyUsageOID.CODE_SIGNING],
}


def hash_algorithm(name: str) -> hashes.HashAlgorithm:
    try:
        return _HASHES[name.upper()]()
    except KeyError as exc:
        raise ValidationError(f"Unsupported hash algorithm {name!r}.") from exc


def generate_key(key_size: int) -> RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def key_pem(key: RSAPrivateKey) -> bytes:
    """Return PEM-encoded private key bytes (unencrypted)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def thumbprint(cert: x509.Certificate) -> str:
    """Upper-case hex SHA-256 fingerprint of the DER encoding."""
    return cert.fingerprint(hashes.SHA256()).hex().upper()


def x509_key_usage(usages: frozenset[KeyUsage]) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=KeyUsage.DIGITAL_SIGNATURE in usages,
        content_commitment=KeyUsage.NON_REPUDIATION in usages,
        key_encipherment=KeyUsage.KEY_ENCIPHERMENT in usages,
        data_encipherment=KeyUsage.DATA_ENCIPHERMENT in usages,
        key_agreement=KeyUsage.KEY_AGREEMENT in usages,
        key_cert_sign=KeyUsage.KEY_CERT_SIGN in usages,
        crl_sign=KeyUsage.CRL_SIGN in usages,
        encipher_only=False,
        decipher_only=False,
    )


def _general_names(values: list[str]) -> list[x509.GeneralName]:
    names: list[x509.GeneralName] = []
    for value in values:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(value)))
        except ValueError:
            names.append(x509.DNSName(value))
    return names


def build_certificate(
    request: CertificateRequest,
    subject: x509.Name,
    public_key: rsa.RSAPublicKey,
    issuer_name: x509.Name,
    issuer_public_key: rsa.RSAPublicKey,
    signing_key: RSAPrivateKey,
    not_before: datetime.datetime,
    not_after: datetime.datetime,
) -> x509.Certificate:
    """Sign a certificate for *request* with *signing_key*.

    The serial number is cryptographically random. Authority certificates
    get ``BasicConstraints(ca=True)``; end-entity certificates get the
    extended key usage matching their type.
    """
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            x509.BasicConstraints(ca=request.cert_type.is_authority, path_length=None),
            critical=True,
        )
        .add_extension(x509_key_usage(request.key_usage), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_public_key),
            critical=False,
        )
    )
    extended = _EXTENDED_USAGE.get(request.cert_type)
    if extended:
        builder = builder.add_extension(x509.ExtendedKeyUsage(extended), critical=False)
    if request.subject_alt_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName(_general_names(request.subject_alt_names)),
            critical=False,
        )
    return builder.sign(signing_key, hash_algorithm(request.hash_algorithm))


@dataclass
class CertificateAuthority:
    """A signing certificate together with its private key.

    Parameters
    ----------
    ca_cert:
        The authority's own X.509 certificate.
    ca_key:
        The authority's RSA private key.
    common_name:
        Human-readable name for this CA (used in subject).
    organization:
        Organization that owns this CA.
    """

    ca_cert: x509.Certificate
    ca_key: RSAPrivateKey
    common_name: str
    organization: str

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def generate_ca(
        cls,
        common_name: str = "Zero Trust Root CA",
        organization: str = "Zero Trust Engine",
        validity_days: int = 3650,
        ca_key_size: int = 3072,
        hash_name: str = "SHA384",
        now: datetime.datetime | None = None,
    ) -> "CertificateAuthority":
        """Generate a new self-signed root authority.

        The default key size is 3072 bits so that the root can anchor
        forensic-grade chains. *now* sets the start of the validity window.

        Raises
        ------
        ValueError
            If ``ca_key_size`` is less than 2048.
        """
        if ca_key_size < 2048:
            raise ValueError(f"ca_key_size must be at least 2048 bits, got {ca_key_size}")
        ca_key = generate_key(ca_key_size)
        now = (now or datetime.datetime.now(datetime.timezone.utc)).replace(microsecond=0)

        subject = issuer = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            ]
        )

        ca_cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(ca_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509_key_usage(
                    frozenset({KeyUsage.DIGITAL_SIGNATURE, KeyUsage.KEY_CERT_SIGN, KeyUsage.CRL_SIGN})
                ),
                critical=True,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()), critical=False
            )
            .sign(ca_key, hash_algorithm(hash_name))
        )

        return cls(
            ca_cert=ca_cert,
            ca_key=ca_key,
            common_name=common_name,
            organization=organization,
        )

    @classmethod
    def wrap(cls, ca_cert: x509.Certificate, ca_key: RSAPrivateKey) -> "CertificateAuthority":
        """Wrap an existing authority certificate and its key."""
        cn_attrs = ca_cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        org_attrs = ca_cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
        return cls(
            ca_cert=ca_cert,
            ca_key=ca_key,
            common_name=str(cn_attrs[0].value) if cn_attrs else "Zero Trust Root CA",
            organization=str(org_attrs[0].value) if org_attrs else "Unknown",
        )

    @classmethod
    def self_signed(
        cls,
        request: CertificateRequest,
        subject: x509.Name,
        ca_key: RSAPrivateKey,
        not_before: datetime.datetime,
        not_after: datetime.datetime,
    ) -> "CertificateAuthority":
        """Create a new root from a ``CA`` issuance request."""
        public_key = ca_key.public_key()
        ca_cert = build_certificate(
            request,
            subject=subject,
            public_key=public_key,
            issuer_name=subject,
            issuer_public_key=public_key,
            signing_key=ca_key,
            not_before=not_before,
            not_after=not_after,
        )
        return cls.wrap(ca_cert, ca_key)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def sign(
        self,
        request: CertificateRequest,
        subject: x509.Name,
        public_key: rsa.RSAPublicKey,
        not_before: datetime.datetime,
        not_after: datetime.datetime,
    ) -> x509.Certificate:
        """Issue a certificate for *request* signed by this authority.

        The validity window is clipped to the authority's own window.
        """
        ca_not_after = self.ca_cert.not_valid_after_utc
        return build_certificate(
            request,
            subject=subject,
            public_key=public_key,
            issuer_name=self.ca_cert.subject,
            issuer_public_key=self.ca_key.public_key(),
            signing_key=self.ca_key,
            not_before=not_before,
            not_after=min(not_after, ca_not_after),
        )

    @property
    def thumbprint(self) -> str:
        return thumbprint(self.ca_cert)

    @property
    def key_size(self) -> int:
        return self.ca_key.key_size

    @property
    def hash_name(self) -> str:
        algorithm = self.ca_cert.signature_hash_algorithm
        return algorithm.name.upper().replace("-", "") if algorithm else ""

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def ca_cert_pem(self) -> bytes:
        """Return PEM-encoded CA certificate bytes."""
        return self.ca_cert.public_bytes(serialization.Encoding.PEM)

    def ca_key_pem(self) -> bytes:
        """Return PEM-encoded CA private key bytes (unencrypted)."""
        return key_pem(self.ca_key)

    @classmethod
    def from_pem(cls, cert_pem: bytes, key_pem_bytes: bytes) -> "CertificateAuthority":
        """Reconstruct a CertificateAuthority from PEM-encoded bytes.

        Raises
        ------
        TypeError
            If the key is not an RSA private key.
        """
        ca_cert = x509.load_pem_x509_certificate(cert_pem)
        ca_key = load_pem_private_key(key_pem_bytes, password=None)
        if not isinstance(ca_key, RSAPrivateKey):
            raise TypeError("CA key must be an RSA private key")
        return cls.wrap(ca_cert, ca_key)
