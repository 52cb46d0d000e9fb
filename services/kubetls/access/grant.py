"""Grant RBAC identities access to the TLS server.

For every identity:

1. Issue a client certificate signed by the server's CA and store it as a
   secret in the server namespace.
2. Create a Role that can read that one secret, find the server pods, and
   port forward to them.
3. Bind the Role to the identity.

Identities are independent: one failing does not stop or undo the others.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from kubetls.config import settings
from kubetls.kube.client import RBAC_API_GROUP, KubernetesClient
from kubetls.kube.errors import KubernetesAPIError
from kubetls.logging_config import get_logger
from kubetls.tls.errors import TLSError
from kubetls.tls.options import DistinguishedName, TLSOptions
from kubetls.tls.store import KubernetesSecretOptions, generate_and_store_as_secret

from . import names
from .entities import RBACEntity
from .errors import MultiAccessError, RequiredArgsError, ServerValidationError

logger = get_logger(__name__)

CLIENT_FILENAME_BASE = "client"


@dataclass
class AccessResult:
    """Outcome of a grant or revoke for one identity."""

    entity: RBACEntity
    secret_name: str = ""
    role_name: str = ""
    role_binding_name: str = ""
    errors: list[Exception] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


def raise_for_failures(action: str, results: Sequence[AccessResult]) -> None:
    failed = {str(r.entity): r.errors for r in results if not r.succeeded}
    if failed:
        raise MultiAccessError(action, failed)


async def validate_server_deployed(client: KubernetesClient, server_namespace: str) -> list[dict[str, Any]]:
    """Check that the server pods are visible in the namespace."""
    try:
        pods = await client.list_pods(server_namespace, settings.server.pod_label_selector)
    except KubernetesAPIError as e:
        raise ServerValidationError(server_namespace, str(e)) from e
    if not pods:
        logger.error(
            "No TLS server pods found",
            namespace=server_namespace,
            label_selector=settings.server.pod_label_selector,
        )
        raise ServerValidationError(server_namespace)
    return pods


def client_tls_options(base: TLSOptions, entity: RBACEntity) -> TLSOptions:
    """Per-identity certificate options: the identity becomes the common name."""
    dn = base.distinguished_name
    return TLSOptions(
        distinguished_name=DistinguishedName(
            common_name=entity.entity_id,
            organization=dn.organization,
            organizational_unit=dn.organizational_unit,
            city=dn.city,
            state=dn.state,
            country=dn.country,
        ),
        validity=base.validity,
        private_key_algorithm=base.private_key_algorithm,
        ecdsa_curve=base.ecdsa_curve,
        rsa_bits=base.rsa_bits,
    )


def build_role(entity: RBACEntity, server_namespace: str, secret_name: str) -> dict[str, Any]:
    return {
        "apiVersion": f"{RBAC_API_GROUP}/v1",
        "kind": "Role",
        "metadata": {
            "name": names.role_name(entity, server_namespace),
            "namespace": server_namespace,
            "labels": names.rbac_labels(entity, server_namespace),
        },
        "rules": [
            {"apiGroups": [""], "resources": ["pods"], "verbs": ["get", "list"]},
            {"apiGroups": [""], "resources": ["secrets"], "verbs": ["get"], "resourceNames": [secret_name]},
            {"apiGroups": [""], "resources": ["pods/portforward"], "verbs": ["create"]},
        ],
    }


def build_role_binding(entity: RBACEntity, server_namespace: str) -> dict[str, Any]:
    return {
        "apiVersion": f"{RBAC_API_GROUP}/v1",
        "kind": "RoleBinding",
        "metadata": {
            "name": names.role_binding_name(entity, server_namespace),
            "namespace": server_namespace,
            "labels": names.rbac_labels(entity, server_namespace),
        },
        "roleRef": {
            "apiGroup": RBAC_API_GROUP,
            "kind": "Role",
            "name": names.role_name(entity, server_namespace),
        },
        "subjects": [entity.subject()],
    }


async def grant_access_to_entity(
    client: KubernetesClient,
    tls_options: TLSOptions,
    server_namespace: str,
    entity: RBACEntity,
) -> AccessResult:
    """Grant one identity. Errors are recorded on the result, not raised."""
    result = AccessResult(entity=entity, secret_name=names.client_secret_name(entity))
    log = logger.bind(namespace=server_namespace, entity=str(entity), entity_type=entity.entity_type)

    ca_options = KubernetesSecretOptions(
        name=names.ca_secret_name(server_namespace),
        namespace=settings.server.ca_namespace,
    )
    client_options = KubernetesSecretOptions(
        name=result.secret_name,
        namespace=server_namespace,
        labels=names.client_labels(entity, server_namespace),
    )

    try:
        await generate_and_store_as_secret(
            client,
            client_options,
            ca_options,
            gen_ca=False,
            filename_base=CLIENT_FILENAME_BASE,
            tls_options=client_tls_options(tls_options, entity),
        )
        log.info("Issued client certificate", secret=result.secret_name)

        await client.create_role(server_namespace, build_role(entity, server_namespace, result.secret_name))
        result.role_name = names.role_name(entity, server_namespace)

        await client.create_role_binding(server_namespace, build_role_binding(entity, server_namespace))
        result.role_binding_name = names.role_binding_name(entity, server_namespace)
    except (TLSError, KubernetesAPIError) as e:
        log.error("Failed to grant access", error=str(e))
        result.errors.append(e)
        return result

    log.info("Granted access", role=result.role_name, role_binding=result.role_binding_name)
    return result


async def grant_access(
    client: KubernetesClient,
    tls_options: TLSOptions,
    server_namespace: str,
    entities: Sequence[RBACEntity],
) -> list[AccessResult]:
    """Grant every identity access to the server in ``server_namespace``.

    Raises MultiAccessError when any identity failed. Identities that
    succeeded keep their access.
    """
    if not entities:
        raise RequiredArgsError()
    tls_options.validate()
    await validate_server_deployed(client, server_namespace)

    results = [await grant_access_to_entity(client, tls_options, server_namespace, entity) for entity in entities]
    raise_for_failures("grant", results)
    return results
