"""Errors raised by the grant, revoke, and configure workflows."""

from kubetls.errors import KubeTLSError


class AccessError(KubeTLSError):
    """Base class for access workflow errors."""


class RequiredArgsError(AccessError):
    """Raised when no RBAC identity was given."""

    def __init__(self, message: str = "At least one rbac_group, rbac_user, or service_account is required"):
        super().__init__(message)


class MutuallyExclusiveArgsError(AccessError):
    """Raised when exactly one RBAC identity is required but zero or several were given."""

    def __init__(self, message: str = "Exactly one of rbac_group, rbac_user, or service_account must be set"):
        super().__init__(message)


class InvalidServiceAccountInfo(AccessError):
    """Raised when a service account string is not NAMESPACE/NAME."""

    def __init__(self, encoded: str):
        self.encoded = encoded
        super().__init__(f"Invalid encoding for ServiceAccount string {encoded}. Expected NAMESPACE/NAME.")


class ServerValidationError(AccessError):
    """Raised when no TLS server pods are visible in the target namespace."""

    def __init__(self, namespace: str, reason: str = ""):
        self.namespace = namespace
        message = f"Could not find a TLS server deployed in namespace {namespace}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ClientCredentialsNotFoundError(AccessError):
    """Raised when an identity has no client certificate secret."""

    def __init__(self, entity: str, namespace: str, name: str):
        self.entity = entity
        self.namespace = namespace
        self.name = name
        super().__init__(
            f"No client credentials for {entity} in namespace {namespace} (expected secret {name}). "
            "Has access been granted?"
        )


class MultiAccessError(AccessError):
    """Raised when the workflow failed for one or more identities.

    ``errors`` maps each failed identity to the exceptions it hit.
    """

    def __init__(self, action: str, errors: dict[str, list[Exception]]):
        self.action = action
        self.errors = errors
        details = "; ".join(
            f"{entity}: {', '.join(str(e) for e in entity_errors)}" for entity, entity_errors in errors.items()
        )
        super().__init__(f"Failed to {action} access for {len(errors)} identities: {details}")
