"""Async client for the handful of Kubernetes REST resources kubetls touches.

Secrets (the PKI store), Roles and RoleBindings (access grants), Pods and
Deployments (server discovery and readiness), Namespaces and
ServiceAccounts (pre-flight validation).

Non-2xx responses are mapped to typed errors:

- 404 -> ResourceNotFoundError
- 409 -> SecretAlreadyExistsError / ResourceAlreadyExistsError
- anything else -> KubernetesAPIError

Transport failures are wrapped in KubernetesAPIError with the httpx error
chained.
"""

import base64
from dataclasses import dataclass, field
from typing import Any

import httpx

from kubetls.config import settings
from kubetls.logging_config import get_logger

from .config import ClusterConnection, KubectlOptions, resolve_connection
from .errors import (
    KubernetesAPIError,
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    SecretAlreadyExistsError,
)

logger = get_logger(__name__)

CORE_V1 = "/api/v1"
APPS_V1 = "/apis/apps/v1"
RBAC_V1 = "/apis/rbac.authorization.k8s.io/v1"

RBAC_API_GROUP = "rbac.authorization.k8s.io"


@dataclass
class Secret:
    """A namespaced Secret with its data already base64 decoded."""

    name: str
    namespace: str
    data: dict[str, bytes] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    def to_manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": self.name,
                "namespace": self.namespace,
                "labels": dict(self.labels),
                "annotations": dict(self.annotations),
            },
            "type": "Opaque",
            "data": {key: base64.b64encode(value).decode() for key, value in self.data.items()},
        }

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> "Secret":
        metadata = manifest.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            data={key: base64.b64decode(value) for key, value in (manifest.get("data") or {}).items()},
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
        )


def prepare_secret(
    namespace: str,
    name: str,
    labels: dict[str, str],
    annotations: dict[str, str],
) -> Secret:
    """Build an empty Secret; callers fill ``data`` before creating it."""
    return Secret(name=name, namespace=namespace, labels=dict(labels), annotations=dict(annotations))


def labels_to_selector(labels: dict[str, str]) -> str:
    """Render a label map as an equality based label selector."""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def is_pod_ready(pod: dict[str, Any]) -> bool:
    """True when the pod reports the Ready condition as True."""
    for condition in (pod.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def resource_name(manifest: dict[str, Any]) -> str:
    return (manifest.get("metadata") or {}).get("name", "")


class KubernetesClient:
    """Thin async wrapper over the Kubernetes REST API."""

    def __init__(
        self,
        connection: ClusterConnection,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.connection = connection
        self._client = httpx.AsyncClient(
            base_url=connection.server,
            headers=connection.headers,
            verify=connection.verify,
            timeout=timeout if timeout is not None else settings.kube.request_timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_options(cls, options: KubectlOptions | None = None) -> "KubernetesClient":
        """Resolve the cluster connection and build a client for it."""
        return cls(resolve_connection(options or KubectlOptions.from_settings()))

    async def __aenter__(self) -> "KubernetesClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Request plumbing ─────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        kind: str,
        namespace: str = "",
        name: str = "",
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            logger.warning("Kubernetes API request failed", method=method, path=path, error=str(e))
            raise KubernetesAPIError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 404:
            raise ResourceNotFoundError(kind, namespace, name)
        if resp.status_code == 409 and method == "POST":
            if kind == "Secret":
                raise SecretAlreadyExistsError(namespace, name)
            raise ResourceAlreadyExistsError(kind, namespace, name)
        if resp.is_error:
            status = _status_body(resp)
            logger.warning(
                "Kubernetes API returned an error",
                method=method,
                path=path,
                status_code=resp.status_code,
                reason=status.get("reason", ""),
            )
            raise KubernetesAPIError(
                status.get("message") or f"{method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
                reason=status.get("reason", ""),
            )
        return resp.json() if resp.content else {}

    async def _list(self, path: str, *, kind: str, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        params = {"labelSelector": label_selector} if label_selector else None
        body = await self._request("GET", path, kind=kind, namespace=namespace, params=params)
        return body.get("items") or []

    # ── Secrets ──────────────────────────────────────────────────────────

    async def get_secret(self, namespace: str, name: str) -> Secret:
        body = await self._request(
            "GET",
            f"{CORE_V1}/namespaces/{namespace}/secrets/{name}",
            kind="Secret",
            namespace=namespace,
            name=name,
        )
        return Secret.from_manifest(body)

    async def create_secret(self, secret: Secret) -> Secret:
        body = await self._request(
            "POST",
            f"{CORE_V1}/namespaces/{secret.namespace}/secrets",
            kind="Secret",
            namespace=secret.namespace,
            name=secret.name,
            json=secret.to_manifest(),
        )
        logger.info("Created secret", namespace=secret.namespace, name=secret.name)
        return Secret.from_manifest(body) if body else secret

    async def list_secrets(self, namespace: str, label_selector: str = "") -> list[Secret]:
        items = await self._list(
            f"{CORE_V1}/namespaces/{namespace}/secrets",
            kind="Secret",
            namespace=namespace,
            label_selector=label_selector,
        )
        return [Secret.from_manifest(item) for item in items]

    async def delete_secret(self, namespace: str, name: str) -> None:
        await self._request(
            "DELETE",
            f"{CORE_V1}/namespaces/{namespace}/secrets/{name}",
            kind="Secret",
            namespace=namespace,
            name=name,
        )
        logger.info("Deleted secret", namespace=namespace, name=name)

    # ── RBAC ─────────────────────────────────────────────────────────────

    async def create_role(self, namespace: str, role: dict[str, Any]) -> dict[str, Any]:
        name = resource_name(role)
        body = await self._request(
            "POST",
            f"{RBAC_V1}/namespaces/{namespace}/roles",
            kind="Role",
            namespace=namespace,
            name=name,
            json=role,
        )
        logger.info("Created role", namespace=namespace, name=name)
        return body

    async def list_roles(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        return await self._list(
            f"{RBAC_V1}/namespaces/{namespace}/roles",
            kind="Role",
            namespace=namespace,
            label_selector=label_selector,
        )

    async def delete_role(self, namespace: str, name: str) -> None:
        await self._request(
            "DELETE",
            f"{RBAC_V1}/namespaces/{namespace}/roles/{name}",
            kind="Role",
            namespace=namespace,
            name=name,
        )
        logger.info("Deleted role", namespace=namespace, name=name)

    async def create_role_binding(self, namespace: str, binding: dict[str, Any]) -> dict[str, Any]:
        name = resource_name(binding)
        body = await self._request(
            "POST",
            f"{RBAC_V1}/namespaces/{namespace}/rolebindings",
            kind="RoleBinding",
            namespace=namespace,
            name=name,
            json=binding,
        )
        logger.info("Created role binding", namespace=namespace, name=name)
        return body

    async def list_role_bindings(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        return await self._list(
            f"{RBAC_V1}/namespaces/{namespace}/rolebindings",
            kind="RoleBinding",
            namespace=namespace,
            label_selector=label_selector,
        )

    async def delete_role_binding(self, namespace: str, name: str) -> None:
        await self._request(
            "DELETE",
            f"{RBAC_V1}/namespaces/{namespace}/rolebindings/{name}",
            kind="RoleBinding",
            namespace=namespace,
            name=name,
        )
        logger.info("Deleted role binding", namespace=namespace, name=name)

    # ── Workloads ────────────────────────────────────────────────────────

    async def list_pods(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        return await self._list(
            f"{CORE_V1}/namespaces/{namespace}/pods",
            kind="Pod",
            namespace=namespace,
            label_selector=label_selector,
        )

    async def get_deployment(self, namespace: str, name: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"{APPS_V1}/namespaces/{namespace}/deployments/{name}",
            kind="Deployment",
            namespace=namespace,
            name=name,
        )

    # ── Cluster objects ──────────────────────────────────────────────────

    async def get_namespace(self, name: str) -> dict[str, Any]:
        return await self._request("GET", f"{CORE_V1}/namespaces/{name}", kind="Namespace", name=name)

    async def get_service_account(self, namespace: str, name: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"{CORE_V1}/namespaces/{namespace}/serviceaccounts/{name}",
            kind="ServiceAccount",
            namespace=namespace,
            name=name,
        )


def _status_body(resp: httpx.Response) -> dict[str, Any]:
    """Decode a metav1.Status body, tolerating non-JSON error pages."""
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
