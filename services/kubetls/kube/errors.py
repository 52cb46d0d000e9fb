"""Errors raised while talking to the Kubernetes API."""

from kubetls.errors import KubeTLSError


class KubernetesError(KubeTLSError):
    """Base class for Kubernetes errors."""


class KubeConfigError(KubernetesError):
    """Raised when the kubeconfig cannot be loaded or is incomplete."""


class KubeContextNotFoundError(KubeConfigError):
    """Raised when the requested context does not exist in the kubeconfig."""

    def __init__(self, context_name: str, config_path: str):
        self.context_name = context_name
        self.config_path = config_path
        super().__init__(f"Context {context_name} does not exist in config {config_path}")


class KubernetesAPIError(KubernetesError):
    """Raised when the API server returns an error or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)


class ResourceNotFoundError(KubernetesAPIError):
    """Raised when the requested resource does not exist (HTTP 404)."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(
            f"{kind} {name} not found in namespace {namespace}",
            status_code=404,
            reason="NotFound",
        )


class ResourceAlreadyExistsError(KubernetesAPIError):
    """Raised when creating a resource whose name is taken (HTTP 409)."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(
            f"{kind} {name} already exists in namespace {namespace}",
            status_code=409,
            reason="AlreadyExists",
        )


class SecretAlreadyExistsError(ResourceAlreadyExistsError):
    """Raised when a Secret with the same name already exists in the namespace."""

    def __init__(self, namespace: str, name: str):
        super().__init__("Secret", namespace, name)


class NamespaceNotFoundError(KubernetesError):
    """Raised when a required Namespace does not exist."""

    def __init__(self, namespace: str):
        self.namespace = namespace
        super().__init__(f"Namespace {namespace} does not exist")


class ServiceAccountNotFoundError(KubernetesError):
    """Raised when a required ServiceAccount does not exist."""

    def __init__(self, namespace: str, name: str):
        self.namespace = namespace
        self.name = name
        super().__init__(f"ServiceAccount {name} does not exist in namespace {namespace}")
