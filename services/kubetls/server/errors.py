"""Errors raised while provisioning and waiting for the TLS server."""

from kubetls.errors import KubeTLSError


class ServerError(KubeTLSError):
    """Base class for server errors."""


class ServerReadinessTimeoutError(ServerError):
    """Raised when the server did not become ready before the deadline. Not retryable."""

    def __init__(self, namespace: str):
        self.namespace = namespace
        super().__init__(f"Timed out waiting for TLS server deployment in namespace {namespace}")


class ServerCredentialsRemovalError(ServerError):
    """Raised when one or more server credential secrets could not be removed."""

    def __init__(self, namespace: str, errors: list[Exception]):
        self.namespace = namespace
        self.errors = errors
        details = "; ".join(str(e) for e in errors)
        super().__init__(f"Failed to remove TLS server credentials for namespace {namespace}: {details}")
