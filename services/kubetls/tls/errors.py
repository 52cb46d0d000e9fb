"""Errors raised while generating, encoding, and storing TLS key material."""

from kubetls.errors import KubeTLSError


class TLSError(KubeTLSError):
    """Base class for TLS errors."""


class UnknownPrivateKeyAlgorithm(TLSError):
    """Raised when the private key algorithm is not ECDSA or RSA."""

    def __init__(self, algorithm: str):
        self.algorithm = algorithm
        super().__init__(f"Unrecognized private key algorithm {algorithm!r}. Expected ECDSA or RSA.")


class UnknownECDSACurve(TLSError):
    """Raised when an unknown elliptic curve is requested."""

    def __init__(self, curve: str):
        self.curve = curve
        super().__init__(f"Unrecognized elliptic curve {curve!r} when generating ECDSA key pair.")


class RSABitsTooLow(TLSError):
    """Raised when the requested RSA key length is below the minimum."""

    def __init__(self, rsa_bits: int):
        self.rsa_bits = rsa_bits
        super().__init__(f"RSA key length of {rsa_bits} is too low. Choose at least 2048.")


class InvalidSubjectInfo(TLSError):
    """Raised when the certificate subject is missing required fields."""


class PrivateKeyTypeMismatch(TLSError):
    """Raised when a loaded private key does not match the recorded algorithm."""

    def __init__(self, algorithm: str, key_type: str):
        self.algorithm = algorithm
        self.key_type = key_type
        super().__init__(f"Expected {algorithm} private key, got {key_type}")


class CANotFoundError(TLSError):
    """Raised when the CA secret used to sign a certificate does not exist."""

    def __init__(self, namespace: str, name: str):
        self.namespace = namespace
        self.name = name
        super().__init__(
            f"CA key pair secret {name} not found in namespace {namespace}. "
            "Generate it first with gen_ca=True."
        )


class PrivateKeyLoadError(TLSError):
    """Raised when a PEM private key can't be decoded with the given password."""
