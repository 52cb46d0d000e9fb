"""TLS generation options.

A ``TLSOptions`` captures everything needed to generate a certificate key
pair: the subject, how long the certificate is valid, and the private key
algorithm with its algorithm-specific parameter. Only the parameter for the
selected algorithm is consulted.
"""

import datetime
import json
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.x509.oid import NameOID

from kubetls.config import settings

from .errors import InvalidSubjectInfo, RSABitsTooLow, UnknownECDSACurve, UnknownPrivateKeyAlgorithm

# Private key algorithms
ECDSA_ALGORITHM = "ECDSA"
RSA_ALGORITHM = "RSA"
PRIVATE_KEY_ALGORITHMS = (ECDSA_ALGORITHM, RSA_ALGORITHM)

# Elliptic curves
P224_CURVE = "P224"
P256_CURVE = "P256"
P384_CURVE = "P384"
P521_CURVE = "P521"
KNOWN_CURVES = (P224_CURVE, P256_CURVE, P384_CURVE, P521_CURVE)

# Anything shorter has been factored in practice
MINIMUM_RSA_BITS = 2048


@dataclass(frozen=True)
class DistinguishedName:
    """Subject identity embedded in a certificate."""

    common_name: str
    organization: str
    organizational_unit: str = ""
    city: str = ""
    state: str = ""
    country: str = ""

    def __post_init__(self) -> None:
        if not self.common_name:
            raise InvalidSubjectInfo("Certificate subject requires a common name")
        if not self.organization:
            raise InvalidSubjectInfo("Certificate subject requires an organization")

    @classmethod
    def from_json(cls, raw: str) -> "DistinguishedName":
        """Parse subject info encoded as JSON.

        Accepts the keys ``common_name``, ``org``, ``org_unit``, ``city``,
        ``state`` and ``country``.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidSubjectInfo(f"Subject info is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidSubjectInfo("Subject info must be a JSON object")
        return cls(
            common_name=data.get("common_name", ""),
            organization=data.get("org", ""),
            organizational_unit=data.get("org_unit", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            country=data.get("country", ""),
        )

    def to_x509_name(self) -> x509.Name:
        """Build the x509 Name, skipping empty optional attributes."""
        attributes = [
            (NameOID.COUNTRY_NAME, self.country),
            (NameOID.STATE_OR_PROVINCE_NAME, self.state),
            (NameOID.LOCALITY_NAME, self.city),
            (NameOID.ORGANIZATION_NAME, self.organization),
            (NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
            (NameOID.COMMON_NAME, self.common_name),
        ]
        return x509.Name([x509.NameAttribute(oid, value) for oid, value in attributes if value])


@dataclass
class TLSOptions:
    """Options for generating a TLS certificate key pair."""

    distinguished_name: DistinguishedName
    validity: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(days=settings.tls.validity_days)
    )
    private_key_algorithm: str = field(default_factory=lambda: settings.tls.private_key_algorithm)
    ecdsa_curve: str = field(default_factory=lambda: settings.tls.ecdsa_curve)
    rsa_bits: int = field(default_factory=lambda: settings.tls.rsa_bits)

    @classmethod
    def from_settings(cls, distinguished_name: DistinguishedName) -> "TLSOptions":
        """Options for ``distinguished_name`` with every other field from config."""
        tls = settings.tls
        return cls(
            distinguished_name=distinguished_name,
            validity=datetime.timedelta(days=tls.validity_days),
            private_key_algorithm=tls.private_key_algorithm,
            ecdsa_curve=tls.ecdsa_curve,
            rsa_bits=tls.rsa_bits,
        )

    def validate(self) -> None:
        """Reject an unknown algorithm, an unknown curve, or too few RSA bits."""
        match self.private_key_algorithm:
            case "ECDSA":
                if self.ecdsa_curve not in KNOWN_CURVES:
                    raise UnknownECDSACurve(self.ecdsa_curve)
            case "RSA":
                if self.rsa_bits < MINIMUM_RSA_BITS:
                    raise RSABitsTooLow(self.rsa_bits)
            case _:
                raise UnknownPrivateKeyAlgorithm(self.private_key_algorithm)
