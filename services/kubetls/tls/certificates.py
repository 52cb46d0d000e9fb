"""Certificate issuance.

A single certificate template serves CA, server and client certificates:
every certificate carries server and client auth extended key usage, and
loopback is always present as an IP SAN so clients reaching the server
through a port forward can verify it.
"""

import datetime
import ipaddress
import secrets
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID

from kubetls.logging_config import get_logger

from .errors import UnknownPrivateKeyAlgorithm
from .keys import KeyPair, PrivateKey, PublicKey, generate_key_pair, store_pem, store_private_key, store_public_key
from .options import DistinguishedName, TLSOptions

logger = get_logger(__name__)

SERIAL_NUMBER_BITS = 128

LOOPBACK_ADDRESS = ipaddress.ip_address("127.0.0.1")


@dataclass(frozen=True)
class CertificateKeyPairPath:
    """Where a certificate key pair was written on disk."""

    certificate_path: Path
    private_key_path: Path
    public_key_path: Path

    @classmethod
    def for_base(cls, root: Path, name: str) -> "CertificateKeyPairPath":
        return cls(
            certificate_path=root / f"{name}.crt",
            private_key_path=root / f"{name}.pem",
            public_key_path=root / f"{name}.pub",
        )


@dataclass(frozen=True)
class CertificateKeyPair:
    """A certificate and the key pair it was issued for."""

    certificate: x509.Certificate
    key_pair: KeyPair

    @property
    def certificate_pem(self) -> bytes:
        return serialize_certificate(self.certificate)

    def store(self, root: Path, name: str, key_password: str = "") -> CertificateKeyPairPath:
        """Write ``<name>.crt``, ``<name>.pem`` and ``<name>.pub`` into ``root``."""
        path = CertificateKeyPairPath.for_base(root, name)
        store_certificate(self.certificate, path.certificate_path)
        store_private_key(self.key_pair.private_key, path.private_key_path, key_password)
        store_public_key(self.key_pair.public_key, path.public_key_path)
        return path


def generate_serial_number() -> int:
    """Random serial in [1, 2**128). Zero is not a valid serial."""
    return secrets.randbelow(2**SERIAL_NUMBER_BITS - 1) + 1


def _signature_hash(signing_key: PrivateKey) -> hashes.HashAlgorithm:
    """Pick the digest for the signing key, matching the curve strength for EC keys."""
    if isinstance(signing_key, ec.EllipticCurvePrivateKey):
        if signing_key.curve.key_size == 384:
            return hashes.SHA384()
        if signing_key.curve.key_size == 521:
            return hashes.SHA512()
    return hashes.SHA256()


def issue_certificate(
    validity: datetime.timedelta,
    subject: DistinguishedName,
    *,
    public_key: PublicKey,
    signing_key: PrivateKey,
    signed_by: x509.Certificate | None = None,
    is_ca: bool = False,
    dns_names: Sequence[str] = (),
) -> x509.Certificate:
    """Issue a certificate for ``public_key``.

    When ``signed_by`` is None the certificate is self-signed and
    ``signing_key`` must be the subject's own private key. Otherwise
    ``signing_key`` must be the private key of ``signed_by``; this is not
    checked here, a mismatch surfaces when the chain is verified.
    """
    subject_name = subject.to_x509_name()
    issuer_name = signed_by.subject if signed_by is not None else subject_name

    now = datetime.datetime.now(datetime.UTC)

    san_entries: list[x509.GeneralName] = [x509.DNSName(name) for name in dns_names]
    san_entries.append(x509.IPAddress(LOOPBACK_ADDRESS))

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject_name)
        .issuer_name(issuer_name)
        .public_key(public_key)
        .serial_number(generate_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + validity)
        .add_extension(
            x509.BasicConstraints(ca=is_ca, path_length=None),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                key_cert_sign=is_ca,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage(
                [
                    ExtendedKeyUsageOID.SERVER_AUTH,
                    ExtendedKeyUsageOID.CLIENT_AUTH,
                ]
            ),
            critical=False,
        )
        .add_extension(
            x509.SubjectAlternativeName(san_entries),
            critical=False,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        )
    )

    if signed_by is not None:
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(signed_by.public_key()),
            critical=False,
        )

    cert = builder.sign(signing_key, _signature_hash(signing_key))

    logger.info(
        "Issued certificate",
        common_name=subject.common_name,
        is_ca=is_ca,
        self_signed=signed_by is None,
        dns_names=list(dns_names),
        expires=cert.not_valid_after_utc.isoformat(),
    )
    return cert


def generate_certificate_key_pair(
    options: TLSOptions,
    *,
    is_ca: bool = False,
    dns_names: Sequence[str] = (),
    signed_by: x509.Certificate | None = None,
    signed_by_key: PrivateKey | None = None,
) -> CertificateKeyPair:
    """Generate a fresh key pair per ``options`` and issue its certificate."""
    if options.private_key_algorithm not in ("ECDSA", "RSA"):
        raise UnknownPrivateKeyAlgorithm(options.private_key_algorithm)

    key_pair = generate_key_pair(
        options.private_key_algorithm,
        ecdsa_curve=options.ecdsa_curve,
        rsa_bits=options.rsa_bits,
    )

    signing_key = key_pair.private_key
    if signed_by is not None:
        if signed_by_key is None:
            raise ValueError("signed_by_key is required when signed_by is set")
        signing_key = signed_by_key

    cert = issue_certificate(
        options.validity,
        options.distinguished_name,
        public_key=key_pair.public_key,
        signing_key=signing_key,
        signed_by=signed_by,
        is_ca=is_ca,
        dns_names=dns_names,
    )
    return CertificateKeyPair(certificate=cert, key_pair=key_pair)


# ── Serialization Helpers ────────────────────────────────────────────────


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def store_certificate(cert: x509.Certificate, path: Path) -> None:
    """Encode the certificate to PEM and store it world readable."""
    store_pem(serialize_certificate(cert), path, private=False)


def load_certificate(pem_data: bytes) -> x509.Certificate:
    """Load certificate from PEM data."""
    return x509.load_pem_x509_certificate(pem_data)
