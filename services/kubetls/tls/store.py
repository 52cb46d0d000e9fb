"""Kubernetes Secrets as the PKI's durable store.

Each secret holds one certificate key pair:

    <base>.crt   certificate (PEM)
    <base>.pem   private key (PEM, optionally encrypted)
    <base>.pub   public key (PEM)
    ca.crt       signing CA certificate (signed records only)

Provenance travels on the secret's annotations. ``PKIMetadata`` is written
twice: as a versioned JSON document under ``<prefix>/pki-metadata`` and as
the flat per-key annotations older readers understand. Reads prefer the JSON
document and fall back to the flat keys.
"""

import json
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509

from kubetls.config import settings
from kubetls.kube.client import KubernetesClient, Secret, prepare_secret
from kubetls.kube.errors import ResourceNotFoundError
from kubetls.logging_config import get_logger

from .certificates import CertificateKeyPair, CertificateKeyPairPath, generate_certificate_key_pair, load_certificate
from .errors import CANotFoundError, TLSError, UnknownPrivateKeyAlgorithm
from .keys import KeyPair, PrivateKey, load_private_key
from .options import PRIVATE_KEY_ALGORITHMS, TLSOptions

logger = get_logger(__name__)

PKI_METADATA_VERSION = 1

CA_CERTIFICATE_KEY = "ca.crt"
DEFAULT_CA_FILENAME_BASE = "ca"
DEFAULT_FILENAME_BASE = "tls"


def annotation_key(name: str) -> str:
    return f"{settings.label_prefix}/{name}"


@dataclass
class KubernetesSecretOptions:
    """Where to store a secret and what to tag it with."""

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def reference(self) -> "SecretReference":
        return SecretReference(namespace=self.namespace, name=self.name)


@dataclass(frozen=True)
class SecretReference:
    """Storage coordinates of a secret."""

    namespace: str
    name: str

    def encode(self) -> str:
        return f"namespace={self.namespace},name={self.name}"

    @classmethod
    def decode(cls, raw: str) -> "SecretReference":
        """Parse ``namespace=<ns>,name=<name>``."""
        parts = dict(item.split("=", 1) for item in raw.split(",") if "=" in item)
        if not parts.get("namespace") or not parts.get("name"):
            raise TLSError(f"Invalid secret reference {raw!r}. Expected namespace=NAMESPACE,name=NAME.")
        return cls(namespace=parts["namespace"], name=parts["name"])

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class PKIMetadata:
    """Provenance of the key material held in a secret."""

    private_key_algorithm: str
    filename_base: str
    signed_by: SecretReference | None = None
    version: int = PKI_METADATA_VERSION

    def to_annotations(self) -> dict[str, str]:
        document = {
            "version": self.version,
            "private_key_algorithm": self.private_key_algorithm,
            "filename_base": self.filename_base,
            "signed_by": (
                {"namespace": self.signed_by.namespace, "name": self.signed_by.name} if self.signed_by else None
            ),
        }
        annotations = {
            annotation_key("pki-metadata"): json.dumps(document, sort_keys=True),
            annotation_key("private-key-algorithm"): self.private_key_algorithm,
            annotation_key("filename-base"): self.filename_base,
        }
        if self.signed_by is not None:
            annotations[annotation_key("signed-by")] = self.signed_by.encode()
        return annotations

    @classmethod
    def from_annotations(cls, annotations: dict[str, str]) -> "PKIMetadata":
        raw = annotations.get(annotation_key("pki-metadata"))
        if raw:
            try:
                document = json.loads(raw)
            except json.JSONDecodeError as e:
                raise TLSError(f"Malformed PKI metadata annotation: {e}") from e
            signed_by = document.get("signed_by")
            return cls(
                private_key_algorithm=document.get("private_key_algorithm", ""),
                filename_base=document.get("filename_base", ""),
                signed_by=SecretReference(**signed_by) if signed_by else None,
                version=document.get("version", PKI_METADATA_VERSION),
            )

        signed_by_raw = annotations.get(annotation_key("signed-by"), "")
        return cls(
            private_key_algorithm=annotations.get(annotation_key("private-key-algorithm"), ""),
            filename_base=annotations.get(annotation_key("filename-base"), ""),
            signed_by=SecretReference.decode(signed_by_raw) if signed_by_raw else None,
        )


@dataclass(frozen=True)
class StoredCA:
    """A CA loaded back from its secret."""

    reference: SecretReference
    metadata: PKIMetadata
    certificate: x509.Certificate
    private_key: PrivateKey
    certificate_pem: bytes


async def load_ca_key_pair(
    client: KubernetesClient,
    ca_secret_options: KubernetesSecretOptions,
    key_password: str = "",
) -> StoredCA:
    """Read the CA certificate and private key out of its secret."""
    try:
        secret = await client.get_secret(ca_secret_options.namespace, ca_secret_options.name)
    except ResourceNotFoundError:
        logger.error(
            "CA secret not found",
            namespace=ca_secret_options.namespace,
            name=ca_secret_options.name,
        )
        raise CANotFoundError(ca_secret_options.namespace, ca_secret_options.name) from None

    metadata = PKIMetadata.from_annotations(secret.annotations)
    if metadata.private_key_algorithm not in PRIVATE_KEY_ALGORITHMS:
        raise UnknownPrivateKeyAlgorithm(metadata.private_key_algorithm)
    base = metadata.filename_base or DEFAULT_CA_FILENAME_BASE

    cert_key = f"{base}.crt"
    key_key = f"{base}.pem"
    if cert_key not in secret.data or key_key not in secret.data:
        raise TLSError(f"CA secret {secret.namespace}/{secret.name} is missing {cert_key} or {key_key}")

    certificate_pem = secret.data[cert_key]
    return StoredCA(
        reference=ca_secret_options.reference,
        metadata=metadata,
        certificate=load_certificate(certificate_pem),
        private_key=load_private_key(secret.data[key_key], metadata.private_key_algorithm, key_password),
        certificate_pem=certificate_pem,
    )


async def store_certificate_key_pair_as_secret(
    client: KubernetesClient,
    secret_options: KubernetesSecretOptions,
    path: CertificateKeyPairPath,
    filename_base: str,
    ca_certificate_path: Path | None = None,
) -> Secret:
    """Create a secret from key material written in the workspace.

    Fails with SecretAlreadyExistsError when the name is taken; existing
    secrets are never overwritten.
    """
    secret = prepare_secret(
        secret_options.namespace,
        secret_options.name,
        secret_options.labels,
        secret_options.annotations,
    )
    secret.data[f"{filename_base}.crt"] = path.certificate_path.read_bytes()
    secret.data[f"{filename_base}.pem"] = path.private_key_path.read_bytes()
    secret.data[f"{filename_base}.pub"] = path.public_key_path.read_bytes()
    if ca_certificate_path is not None:
        secret.data[CA_CERTIFICATE_KEY] = ca_certificate_path.read_bytes()

    return await client.create_secret(secret)


async def generate_and_store_as_secret(
    client: KubernetesClient,
    secret_options: KubernetesSecretOptions,
    ca_secret_options: KubernetesSecretOptions | None,
    *,
    gen_ca: bool,
    filename_base: str = "",
    tls_options: TLSOptions,
    dns_names: Sequence[str] = (),
    key_password: str = "",
    ca_key_password: str = "",
) -> CertificateKeyPair:
    """Generate a certificate key pair and persist it as a secret.

    With ``gen_ca`` a self-signed CA is created. Otherwise the CA in
    ``ca_secret_options`` is loaded and signs a fresh leaf, and the leaf
    secret records which CA signed it. ``key_password`` encrypts the new key
    and ``ca_key_password`` decrypts the stored CA key.
    """
    tls_options.validate()

    filename_base = filename_base or (DEFAULT_CA_FILENAME_BASE if gen_ca else DEFAULT_FILENAME_BASE)
    log = logger.bind(namespace=secret_options.namespace, name=secret_options.name, is_ca=gen_ca)

    with tempfile.TemporaryDirectory(prefix="kubetls-") as tmpdir:
        workspace = Path(tmpdir)
        ca_certificate_path: Path | None = None
        signed_by: SecretReference | None = None

        if gen_ca:
            cert_key_pair = generate_certificate_key_pair(tls_options, is_ca=True, dns_names=dns_names)
        elif ca_secret_options is None:
            raise ValueError("ca_secret_options is required when gen_ca is False")
        else:
            ca = await load_ca_key_pair(client, ca_secret_options, ca_key_password)
            # The CA is materialized alongside the leaf so ca.crt is stored from disk
            ca_path = CertificateKeyPair(
                certificate=ca.certificate,
                key_pair=KeyPair(
                    ca.metadata.private_key_algorithm,
                    ca.private_key,
                    ca.private_key.public_key(),
                ),
            ).store(workspace, CA_CERTIFICATE_KEY.removesuffix(".crt"), ca_key_password)
            ca_certificate_path = ca_path.certificate_path

            cert_key_pair = generate_certificate_key_pair(
                tls_options,
                dns_names=dns_names,
                signed_by=ca.certificate,
                signed_by_key=ca.private_key,
            )
            signed_by = ca.reference
            log = log.bind(signed_by=str(signed_by))

        metadata = PKIMetadata(
            private_key_algorithm=tls_options.private_key_algorithm,
            filename_base=filename_base,
            signed_by=signed_by,
        )
        store_options = KubernetesSecretOptions(
            name=secret_options.name,
            namespace=secret_options.namespace,
            labels=dict(secret_options.labels),
            annotations={**secret_options.annotations, **metadata.to_annotations()},
        )

        leaf_dir = workspace / "out"
        leaf_dir.mkdir(mode=0o700)
        path = cert_key_pair.store(leaf_dir, filename_base, key_password)
        await store_certificate_key_pair_as_secret(
            client,
            store_options,
            path,
            filename_base,
            ca_certificate_path=ca_certificate_path,
        )

    log.info("Stored certificate key pair", filename_base=filename_base)
    return cert_key_pair
