"""kubetls: certificate lifecycle for TLS-protected in-cluster servers.

Issues CA and leaf certificates, persists them as Kubernetes Secrets with
provenance metadata, grants RBAC identities access to their client
credentials, and waits for the TLS server to come up.
"""

__version__ = "0.1.0"
