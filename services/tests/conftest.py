"""Pytest configuration and fixtures."""

import copy
import datetime
from typing import Any

import pytest

from kubetls.config import settings
from kubetls.kube.client import Secret, resource_name
from kubetls.kube.errors import ResourceAlreadyExistsError, ResourceNotFoundError, SecretAlreadyExistsError
from kubetls.tls.options import DistinguishedName, TLSOptions

SERVER_NAMESPACE = "tls-server"
SERVER_IMAGE = "registry.example.com/tls-server:v1.2.3"


def _matches(labels: dict[str, str], selector: str) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


def _labels(manifest: dict[str, Any]) -> dict[str, str]:
    return manifest.get("metadata", {}).get("labels") or {}


class FakeKubernetesClient:
    """In-memory stand-in for KubernetesClient.

    Mirrors the real client's conflict and not-found semantics so the
    workflows can be exercised without a cluster.
    """

    def __init__(self):
        self.secrets: dict[tuple[str, str], Secret] = {}
        self.roles: dict[tuple[str, str], dict[str, Any]] = {}
        self.role_bindings: dict[tuple[str, str], dict[str, Any]] = {}
        self.pods: dict[str, list[dict[str, Any]]] = {}
        self.deployments: dict[tuple[str, str], dict[str, Any]] = {}
        self.namespaces: set[str] = set()
        self.service_accounts: set[tuple[str, str]] = set()

    # Secrets

    async def get_secret(self, namespace: str, name: str) -> Secret:
        try:
            return copy.deepcopy(self.secrets[(namespace, name)])
        except KeyError:
            raise ResourceNotFoundError("Secret", namespace, name) from None

    async def create_secret(self, secret: Secret) -> Secret:
        key = (secret.namespace, secret.name)
        if key in self.secrets:
            raise SecretAlreadyExistsError(secret.namespace, secret.name)
        self.secrets[key] = copy.deepcopy(secret)
        return secret

    async def list_secrets(self, namespace: str, label_selector: str = "") -> list[Secret]:
        return [
            copy.deepcopy(s)
            for (ns, _), s in self.secrets.items()
            if ns == namespace and _matches(s.labels, label_selector)
        ]

    async def delete_secret(self, namespace: str, name: str) -> None:
        if self.secrets.pop((namespace, name), None) is None:
            raise ResourceNotFoundError("Secret", namespace, name)

    # RBAC

    def _create(self, store: dict, kind: str, namespace: str, manifest: dict[str, Any]) -> dict[str, Any]:
        key = (namespace, resource_name(manifest))
        if key in store:
            raise ResourceAlreadyExistsError(kind, *key)
        store[key] = copy.deepcopy(manifest)
        return manifest

    def _list(self, store: dict, namespace: str, label_selector: str) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(m) for (ns, _), m in store.items() if ns == namespace and _matches(_labels(m), label_selector)
        ]

    def _delete(self, store: dict, kind: str, namespace: str, name: str) -> None:
        if store.pop((namespace, name), None) is None:
            raise ResourceNotFoundError(kind, namespace, name)

    async def create_role(self, namespace: str, role: dict[str, Any]) -> dict[str, Any]:
        return self._create(self.roles, "Role", namespace, role)

    async def list_roles(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        return self._list(self.roles, namespace, label_selector)

    async def delete_role(self, namespace: str, name: str) -> None:
        self._delete(self.roles, "Role", namespace, name)

    async def create_role_binding(self, namespace: str, binding: dict[str, Any]) -> dict[str, Any]:
        return self._create(self.role_bindings, "RoleBinding", namespace, binding)

    async def list_role_bindings(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        return self._list(self.role_bindings, namespace, label_selector)

    async def delete_role_binding(self, namespace: str, name: str) -> None:
        self._delete(self.role_bindings, "RoleBinding", namespace, name)

    # Workloads and cluster objects

    async def list_pods(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        return [copy.deepcopy(p) for p in self.pods.get(namespace, []) if _matches(_labels(p), label_selector)]

    async def get_deployment(self, namespace: str, name: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(self.deployments[(namespace, name)])
        except KeyError:
            raise ResourceNotFoundError("Deployment", namespace, name) from None

    async def get_namespace(self, name: str) -> dict[str, Any]:
        if name not in self.namespaces:
            raise ResourceNotFoundError("Namespace", "", name)
        return {"metadata": {"name": name}}

    async def get_service_account(self, namespace: str, name: str) -> dict[str, Any]:
        if (namespace, name) not in self.service_accounts:
            raise ResourceNotFoundError("ServiceAccount", namespace, name)
        return {"metadata": {"name": name, "namespace": namespace}}

    # Helpers for arranging cluster state

    def add_server_pod(self, namespace: str, image: str, ready: bool = True, name: str = "tls-server-0") -> None:
        key, _, value = settings.server.pod_label_selector.partition("=")
        self.pods.setdefault(namespace, []).append(
            {
                "metadata": {"name": name, "namespace": namespace, "labels": {key: value}},
                "spec": {"containers": [{"name": "server", "image": image}]},
                "status": {"conditions": [{"type": "Ready", "status": "True" if ready else "False"}]},
            }
        )

    def set_deployment(self, namespace: str, available_replicas: int) -> None:
        self.deployments[(namespace, settings.server.deployment_name)] = {
            "metadata": {"name": settings.server.deployment_name, "namespace": namespace},
            "status": {"availableReplicas": available_replicas},
        }


@pytest.fixture
def fake_kube() -> FakeKubernetesClient:
    """Empty fake cluster with the server namespace created."""
    kube = FakeKubernetesClient()
    kube.namespaces.update({SERVER_NAMESPACE, settings.server.ca_namespace})
    return kube


@pytest.fixture
def deployed_kube(fake_kube: FakeKubernetesClient) -> FakeKubernetesClient:
    """Fake cluster with a ready server pod."""
    fake_kube.set_deployment(SERVER_NAMESPACE, 1)
    fake_kube.add_server_pod(SERVER_NAMESPACE, SERVER_IMAGE)
    return fake_kube


@pytest.fixture
def subject() -> DistinguishedName:
    return DistinguishedName(
        common_name="tls-server",
        organization="Acme Corp",
        organizational_unit="Platform",
        city="Phoenix",
        state="AZ",
        country="US",
    )


@pytest.fixture
def tls_options(subject: DistinguishedName) -> TLSOptions:
    """Fast ECDSA options suitable for most tests."""
    return TLSOptions(
        distinguished_name=subject,
        validity=datetime.timedelta(days=1),
        private_key_algorithm="ECDSA",
        ecdsa_curve="P256",
        rsa_bits=2048,
    )
