"""RBAC identities that can be granted access to the TLS server.

An identity is exactly one of a user, a group, or a service account.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from kubetls.kube.client import RBAC_API_GROUP

from .errors import InvalidServiceAccountInfo, MutuallyExclusiveArgsError, RequiredArgsError


@dataclass(frozen=True)
class UserInfo:
    name: str

    entity_type = "User"

    @property
    def entity_id(self) -> str:
        return self.name

    def subject(self) -> dict[str, Any]:
        return {"kind": "User", "name": self.name, "apiGroup": RBAC_API_GROUP}

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class GroupInfo:
    name: str

    entity_type = "Group"

    @property
    def entity_id(self) -> str:
        return self.name

    def subject(self) -> dict[str, Any]:
        return {"kind": "Group", "name": self.name, "apiGroup": RBAC_API_GROUP}

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ServiceAccountInfo:
    namespace: str
    name: str

    entity_type = "ServiceAccount"

    @property
    def entity_id(self) -> str:
        return f"{self.namespace}.{self.name}"

    def subject(self) -> dict[str, Any]:
        # ServiceAccounts live in the core API group
        return {"kind": "ServiceAccount", "name": self.name, "namespace": self.namespace, "apiGroup": ""}

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


RBACEntity = UserInfo | GroupInfo | ServiceAccountInfo


def parse_service_account(encoded: str) -> ServiceAccountInfo:
    """Parse ``NAMESPACE/NAME`` into a ServiceAccountInfo."""
    parts = encoded.split("/")
    if len(parts) != 2 or not all(parts):
        raise InvalidServiceAccountInfo(encoded)
    return ServiceAccountInfo(namespace=parts[0], name=parts[1])


def parse_rbac_entities(
    users: Iterable[str] = (),
    groups: Iterable[str] = (),
    service_accounts: Iterable[str] = (),
) -> list[RBACEntity]:
    """Parse the identities for a grant or revoke. At least one is required."""
    entities: list[RBACEntity] = [UserInfo(name) for name in users]
    entities.extend(GroupInfo(name) for name in groups)
    entities.extend(parse_service_account(sa) for sa in service_accounts)
    if not entities:
        raise RequiredArgsError()
    return entities


def parse_rbac_entity(user: str = "", group: str = "", service_account: str = "") -> RBACEntity:
    """Parse the single identity for a configure call."""
    if sum(1 for value in (user, group, service_account) if value) != 1:
        raise MutuallyExclusiveArgsError()
    if user:
        return UserInfo(user)
    if group:
        return GroupInfo(group)
    return parse_service_account(service_account)
