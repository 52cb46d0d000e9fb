"""Provision the CA and server certificates for a TLS server deployment.

The CA secret lives in the admin-only CA namespace (kube-system by default)
so that only cluster admins can sign new client certificates. The server
key pair lives next to the server in its own namespace. Both are removed
again by their credential labels when the server is torn down.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from kubetls.access import names
from kubetls.config import settings
from kubetls.kube.client import KubernetesClient, labels_to_selector
from kubetls.kube.errors import (
    KubernetesAPIError,
    NamespaceNotFoundError,
    ResourceNotFoundError,
    ServiceAccountNotFoundError,
)
from kubetls.logging_config import get_logger
from kubetls.tls.options import TLSOptions
from kubetls.tls.store import KubernetesSecretOptions, SecretReference, generate_and_store_as_secret

from .errors import ServerCredentialsRemovalError

logger = get_logger(__name__)

CA_FILENAME_BASE = "ca"
SERVER_FILENAME_BASE = "server"


@dataclass(frozen=True)
class ServerCertificates:
    ca: SecretReference
    server: SecretReference


async def validate_namespace(client: KubernetesClient, namespace: str) -> None:
    try:
        await client.get_namespace(namespace)
    except ResourceNotFoundError:
        logger.error("Namespace does not exist", namespace=namespace)
        raise NamespaceNotFoundError(namespace) from None


async def validate_service_account(client: KubernetesClient, namespace: str, name: str) -> None:
    try:
        await client.get_service_account(namespace, name)
    except ResourceNotFoundError:
        logger.error("ServiceAccount does not exist", namespace=namespace, name=name)
        raise ServiceAccountNotFoundError(namespace, name) from None


async def provision_server_certificates(
    client: KubernetesClient,
    tls_options: TLSOptions,
    server_namespace: str,
    *,
    service_account: str = "",
    dns_names: Sequence[str] = (),
) -> ServerCertificates:
    """Generate the CA and the server certificate key pair for ``server_namespace``.

    Args:
        client: Kubernetes client
        tls_options: Subject and key parameters, shared by the CA and server certificates
        server_namespace: Namespace the server is deployed into
        service_account: If set, the server's ServiceAccount, checked to exist first
        dns_names: Extra DNS SANs for the server certificate

    Returns:
        References to the CA secret and the server secret
    """
    tls_options.validate()
    await validate_namespace(client, server_namespace)
    if service_account:
        await validate_service_account(client, server_namespace, service_account)

    log = logger.bind(namespace=server_namespace)

    ca_options = KubernetesSecretOptions(
        name=names.ca_secret_name(server_namespace),
        namespace=settings.server.ca_namespace,
        labels=names.ca_labels(server_namespace),
    )
    await generate_and_store_as_secret(
        client,
        ca_options,
        None,
        gen_ca=True,
        filename_base=CA_FILENAME_BASE,
        tls_options=tls_options,
    )
    log.info("Generated CA key pair", secret=str(ca_options.reference))

    server_options = KubernetesSecretOptions(
        name=names.server_secret_name(server_namespace),
        namespace=server_namespace,
        labels=names.server_labels(server_namespace),
    )
    await generate_and_store_as_secret(
        client,
        server_options,
        ca_options,
        gen_ca=False,
        filename_base=SERVER_FILENAME_BASE,
        tls_options=tls_options,
        dns_names=dns_names,
    )
    log.info("Generated server certificate key pair", secret=str(server_options.reference))

    return ServerCertificates(ca=ca_options.reference, server=server_options.reference)


async def remove_server_certificates(client: KubernetesClient, server_namespace: str) -> list[SecretReference]:
    """Delete the CA and server secrets created for ``server_namespace``.

    Secrets are found by their credential labels, so nothing is assumed
    about their names. Every deletion is attempted; failures are collected
    and raised together as ServerCredentialsRemovalError at the end.

    Returns:
        References to the secrets that were removed
    """
    log = logger.bind(namespace=server_namespace)
    removed: list[SecretReference] = []
    errors: list[Exception] = []

    for namespace, labels in (
        (settings.server.ca_namespace, names.ca_labels(server_namespace)),
        (server_namespace, names.server_labels(server_namespace)),
    ):
        try:
            secrets = await client.list_secrets(namespace, labels_to_selector(labels))
        except KubernetesAPIError as e:
            log.error("Failed to list server credentials", secret_namespace=namespace, error=str(e))
            errors.append(e)
            continue

        for secret in secrets:
            try:
                await client.delete_secret(namespace, secret.name)
            except KubernetesAPIError as e:
                log.error("Failed to remove server credentials", secret=f"{namespace}/{secret.name}", error=str(e))
                errors.append(e)
                continue
            removed.append(SecretReference(namespace, secret.name))

    if errors:
        raise ServerCredentialsRemovalError(server_namespace, errors)

    log.info("Removed server credentials", secrets=[str(ref) for ref in removed])
    return removed
