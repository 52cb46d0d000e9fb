"""Revoke access granted by ``grant_access``.

Deletes the Role, RoleBinding and client certificate secret of each
identity. Resources are found by the labels grant put on them, so whatever
a partial grant managed to create is cleaned up. Every failure is collected
and processing continues with the next resource and identity.
"""

from collections.abc import Sequence

from kubetls.kube.client import KubernetesClient, labels_to_selector, resource_name
from kubetls.kube.errors import KubernetesAPIError
from kubetls.logging_config import get_logger

from . import names
from .entities import RBACEntity
from .errors import RequiredArgsError
from .grant import AccessResult, raise_for_failures

logger = get_logger(__name__)


async def revoke_access_for_entity(
    client: KubernetesClient,
    server_namespace: str,
    entity: RBACEntity,
) -> AccessResult:
    """Revoke one identity. Errors are recorded on the result, not raised."""
    result = AccessResult(entity=entity)
    log = logger.bind(namespace=server_namespace, entity=str(entity), entity_type=entity.entity_type)
    rbac_selector = labels_to_selector(names.rbac_labels(entity, server_namespace))

    try:
        for role in await client.list_roles(server_namespace, rbac_selector):
            result.role_name = resource_name(role)
            await client.delete_role(server_namespace, result.role_name)
    except KubernetesAPIError as e:
        log.error("Failed to remove role", error=str(e))
        result.errors.append(e)

    try:
        for binding in await client.list_role_bindings(server_namespace, rbac_selector):
            result.role_binding_name = resource_name(binding)
            await client.delete_role_binding(server_namespace, result.role_binding_name)
    except KubernetesAPIError as e:
        log.error("Failed to remove role binding", error=str(e))
        result.errors.append(e)

    try:
        secret_selector = labels_to_selector(names.client_labels(entity, server_namespace))
        for secret in await client.list_secrets(server_namespace, secret_selector):
            result.secret_name = secret.name
            await client.delete_secret(server_namespace, secret.name)
    except KubernetesAPIError as e:
        log.error("Failed to remove client certificate secret", error=str(e))
        result.errors.append(e)

    if result.succeeded:
        log.info("Revoked access")
    return result


async def revoke_access(
    client: KubernetesClient,
    server_namespace: str,
    entities: Sequence[RBACEntity],
) -> list[AccessResult]:
    """Revoke every identity's access to the server in ``server_namespace``.

    Raises MultiAccessError at the end when anything failed.
    """
    if not entities:
        raise RequiredArgsError()

    results = [await revoke_access_for_entity(client, server_namespace, entity) for entity in entities]
    raise_for_failures("revoke", results)
    return results
