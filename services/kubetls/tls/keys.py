"""Private/public key pair generation and PEM encoding.

Private keys are encoded in the traditional OpenSSL format, so the PEM block
type names the algorithm (``EC PRIVATE KEY`` or ``RSA PRIVATE KEY``). Passing
a password encrypts the block; an empty password leaves it in the clear.
Public keys use the generic SubjectPublicKeyInfo format (``PUBLIC KEY``).
"""

import os
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from kubetls.logging_config import get_logger

from .errors import (
    PrivateKeyLoadError,
    PrivateKeyTypeMismatch,
    RSABitsTooLow,
    UnknownECDSACurve,
    UnknownPrivateKeyAlgorithm,
)
from .options import ECDSA_ALGORITHM, MINIMUM_RSA_BITS, RSA_ALGORITHM

logger = get_logger(__name__)

PrivateKey = ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey
PublicKey = ec.EllipticCurvePublicKey | rsa.RSAPublicKey

CURVES: dict[str, type[ec.EllipticCurve]] = {
    "P224": ec.SECP224R1,
    "P256": ec.SECP256R1,
    "P384": ec.SECP384R1,
    "P521": ec.SECP521R1,
}

RSA_PUBLIC_EXPONENT = 65537

PRIVATE_KEY_FILE_MODE = 0o600
PUBLIC_FILE_MODE = 0o644


@dataclass(frozen=True)
class KeyPair:
    """An algorithm-tagged private/public key pair."""

    algorithm: str
    private_key: PrivateKey
    public_key: PublicKey


def create_ecdsa_key_pair(curve_name: str) -> KeyPair:
    """Generate an ECDSA key pair on one of P224, P256, P384, P521."""
    curve = CURVES.get(curve_name)
    if curve is None:
        raise UnknownECDSACurve(curve_name)
    private_key = ec.generate_private_key(curve())
    return KeyPair(ECDSA_ALGORITHM, private_key, private_key.public_key())


def create_rsa_key_pair(rsa_bits: int) -> KeyPair:
    """Generate an RSA key pair of at least 2048 bits."""
    if rsa_bits < MINIMUM_RSA_BITS:
        raise RSABitsTooLow(rsa_bits)
    private_key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=rsa_bits)
    return KeyPair(RSA_ALGORITHM, private_key, private_key.public_key())


def generate_key_pair(algorithm: str, *, ecdsa_curve: str = "", rsa_bits: int = 0) -> KeyPair:
    """Generate a key pair for the given algorithm."""
    match algorithm:
        case "ECDSA":
            key_pair = create_ecdsa_key_pair(ecdsa_curve)
        case "RSA":
            key_pair = create_rsa_key_pair(rsa_bits)
        case _:
            raise UnknownPrivateKeyAlgorithm(algorithm)
    logger.debug("Generated key pair", algorithm=algorithm, key_size=key_pair.private_key.key_size)
    return key_pair


# ── Encoding ─────────────────────────────────────────────────────────────


def encode_private_key(key: PrivateKey, password: str = "") -> bytes:
    """Encode a private key to PEM, encrypted when a password is given."""
    encryption: serialization.KeySerializationEncryption
    if password:
        encryption = serialization.BestAvailableEncryption(password.encode())
    else:
        encryption = serialization.NoEncryption()

    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=encryption,
    )


def encode_public_key(key: PublicKey) -> bytes:
    """Encode a public key to PEM (SubjectPublicKeyInfo)."""
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_private_key(pem_data: bytes, algorithm: str, password: str = "") -> PrivateKey:
    """Load a PEM private key and check it matches the expected algorithm."""
    match algorithm:
        case "ECDSA":
            expected: type = ec.EllipticCurvePrivateKey
        case "RSA":
            expected = rsa.RSAPrivateKey
        case _:
            raise UnknownPrivateKeyAlgorithm(algorithm)

    try:
        key = serialization.load_pem_private_key(pem_data, password=password.encode() or None)
    except (TypeError, ValueError) as e:
        raise PrivateKeyLoadError(f"Failed to load {algorithm} private key: {e}") from e
    if not isinstance(key, expected):
        raise PrivateKeyTypeMismatch(algorithm, type(key).__name__)
    return key


def load_public_key(pem_data: bytes) -> PublicKey:
    """Load a PEM public key."""
    key = serialization.load_pem_public_key(pem_data)
    if not isinstance(key, ec.EllipticCurvePublicKey | rsa.RSAPublicKey):
        raise PrivateKeyTypeMismatch("ECDSA or RSA", type(key).__name__)
    return key


# ── Storage ──────────────────────────────────────────────────────────────


def store_pem(pem_data: bytes, path: Path, *, private: bool) -> None:
    """Write PEM data to disk.

    Private keys are readable by the owner only. Certificates and public keys
    are world readable. The mode is set explicitly so the umask can't loosen
    or tighten it, including when overwriting an existing file.
    """
    mode = PRIVATE_KEY_FILE_MODE if private else PUBLIC_FILE_MODE
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as f:
        os.fchmod(f.fileno(), mode)
        f.write(pem_data)


def store_private_key(key: PrivateKey, path: Path, password: str = "") -> None:
    """Encode a private key and store it with owner-only permissions."""
    store_pem(encode_private_key(key, password), path, private=True)


def store_public_key(key: PublicKey, path: Path) -> None:
    """Encode a public key and store it world readable."""
    store_pem(encode_public_key(key), path, private=False)
