"""Naming and labelling conventions for the resources kubetls creates.

Labels are how revoke finds what grant created, so both sides must build
them through these helpers.
"""

import hashlib
import re

from kubetls.config import settings

from .entities import RBACEntity

# Label values allow alphanumerics plus '-', '_' and '.'
_INVALID_LABEL_CHARS = re.compile(r"[^0-9A-Za-z\-_.]")


def sanitize_label_value(value: str) -> str:
    return _INVALID_LABEL_CHARS.sub("-", value)


def sanitize_label_values(labels: dict[str, str]) -> dict[str, str]:
    return {key: sanitize_label_value(value) for key, value in labels.items()}


def label_key(name: str) -> str:
    return f"{settings.label_prefix}/{name}"


# ── Secret names ─────────────────────────────────────────────────────────


def ca_secret_name(server_namespace: str) -> str:
    return f"{server_namespace}-namespace-tls-ca-certs"


def server_secret_name(server_namespace: str) -> str:
    return f"{server_namespace}-namespace-tls-server-certs"


def client_secret_name(entity: RBACEntity) -> str:
    """Entity IDs may not be valid resource names, so the ID is hashed."""
    digest = hashlib.md5(entity.entity_id.encode(), usedforsecurity=False).hexdigest()
    return f"tls-client-{digest}-certs"


# ── RBAC names ───────────────────────────────────────────────────────────


def role_name(entity: RBACEntity, server_namespace: str) -> str:
    return f"{entity.entity_id}-{server_namespace}-tls-access"


def role_binding_name(entity: RBACEntity, server_namespace: str) -> str:
    return f"{entity.entity_id}-{role_name(entity, server_namespace)}-binding"


# ── Labels ───────────────────────────────────────────────────────────────


def ca_labels(server_namespace: str) -> dict[str, str]:
    return sanitize_label_values(
        {
            label_key("namespace"): server_namespace,
            label_key("credentials"): "true",
            label_key("credentials-type"): "ca",
        }
    )


def server_labels(server_namespace: str) -> dict[str, str]:
    return sanitize_label_values(
        {
            label_key("namespace"): server_namespace,
            label_key("credentials"): "true",
            label_key("credentials-type"): "server",
        }
    )


def client_labels(entity: RBACEntity, server_namespace: str) -> dict[str, str]:
    return sanitize_label_values(
        {
            label_key("namespace"): server_namespace,
            label_key("credentials"): "true",
            label_key("credentials-type"): "client",
            label_key("entity-id"): entity.entity_id,
        }
    )


def rbac_labels(entity: RBACEntity, server_namespace: str) -> dict[str, str]:
    return sanitize_label_values(
        {
            label_key("namespace"): server_namespace,
            label_key("entity-id"): entity.entity_id,
        }
    )
