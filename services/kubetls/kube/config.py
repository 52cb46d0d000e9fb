"""Cluster connectivity: resolve which API server to talk to and how to authenticate.

Two schemes are supported:

- Direct: ``server`` + base64 PEM ``certificate_authority`` + bearer ``token``.
  Takes precedence whenever ``server`` is set.
- Kubeconfig: ``config_path`` + ``context_name``. The context's cluster and
  user entries supply the endpoint, CA bundle and credentials.
"""

import base64
import binascii
import os
import ssl
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from kubetls.config import settings
from kubetls.logging_config import get_logger

from .errors import KubeConfigError, KubeContextNotFoundError

logger = get_logger(__name__)


@dataclass
class KubectlOptions:
    """Common options for every call against the cluster."""

    # Config based authentication scheme
    context_name: str = ""
    config_path: Path | None = None

    # Direct authentication scheme. All three values must be set.
    server: str = ""
    base64_pem_certificate_authority: str = ""
    bearer_token: str = ""

    @classmethod
    def from_settings(cls) -> "KubectlOptions":
        kube = settings.kube
        return cls(
            context_name=kube.context_name,
            config_path=kube.config_path,
            server=kube.server,
            base64_pem_certificate_authority=kube.certificate_authority,
            bearer_token=kube.token,
        )

    @property
    def uses_direct_auth(self) -> bool:
        return bool(self.server)


@dataclass
class ClusterConnection:
    """Everything needed to build an HTTP client for the API server."""

    server: str
    verify: ssl.SSLContext | bool
    headers: dict[str, str] = field(default_factory=dict)


def default_kubeconfig_path() -> Path:
    """$KUBECONFIG (first entry) or ~/.kube/config."""
    env_path = os.environ.get("KUBECONFIG", "")
    if env_path:
        return Path(env_path.split(os.pathsep)[0]).expanduser()
    return Path.home() / ".kube" / "config"


def load_kubeconfig(path: Path) -> dict[str, Any]:
    """Load a kubeconfig file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise KubeConfigError(f"Unable to read kubeconfig {path}: {e}") from e
    except yaml.YAMLError as e:
        raise KubeConfigError(f"Kubeconfig {path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise KubeConfigError(f"Kubeconfig {path} is not a mapping")
    return data


def resolve_connection(options: KubectlOptions) -> ClusterConnection:
    """Build a ClusterConnection from KubectlOptions."""
    if options.uses_direct_auth:
        logger.info("Using direct auth methods to set up client", server=options.server)
        return _connection_from_auth_info(
            options.server,
            options.base64_pem_certificate_authority,
            options.bearer_token,
        )

    config_path = options.config_path or default_kubeconfig_path()
    logger.info(
        "No direct auth methods provided, using config and context",
        config_path=str(config_path),
        context=options.context_name or "(current)",
    )
    return _connection_from_kubeconfig(config_path, options.context_name)


def _decode_b64(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KubeConfigError(f"{what} is not valid base64") from e


def _connection_from_auth_info(server: str, ca_data_b64: str, token: str) -> ClusterConnection:
    ctx = ssl.create_default_context()
    if ca_data_b64:
        ca_pem = _decode_b64(ca_data_b64, "Certificate authority data")
        ctx.load_verify_locations(cadata=ca_pem.decode())
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return ClusterConnection(server=server.rstrip("/"), verify=ctx, headers=headers)


def _named(entries: list[dict[str, Any]] | None, name: str, kind: str, config_path: Path) -> dict:
    for entry in entries or []:
        if entry.get("name") == name:
            return entry.get(kind) or {}
    raise KubeConfigError(f"No {kind} named {name} in kubeconfig {config_path}")


def _connection_from_kubeconfig(config_path: Path, context_name: str) -> ClusterConnection:
    config = load_kubeconfig(config_path)
    base_dir = config_path.parent

    context_name = context_name or config.get("current-context", "")
    if not context_name:
        raise KubeConfigError(f"No context given and no current-context set in {config_path}")

    try:
        context = _named(config.get("contexts"), context_name, "context", config_path)
    except KubeConfigError:
        raise KubeContextNotFoundError(context_name, str(config_path)) from None

    cluster = _named(config.get("clusters"), context.get("cluster", ""), "cluster", config_path)
    user = _named(config.get("users"), context.get("user", ""), "user", config_path) if context.get("user") else {}

    server = cluster.get("server", "")
    if not server:
        raise KubeConfigError(f"Cluster for context {context_name} has no server")

    if "exec" in user or "auth-provider" in user:
        raise KubeConfigError(
            f"User for context {context_name} authenticates with an external plugin, "
            "which is not supported. Pass a server, CA and token directly instead."
        )

    verify = ssl.create_default_context()
    if cluster.get("insecure-skip-tls-verify"):
        logger.warning("TLS verification of the API server is disabled", context=context_name)
        # check_hostname must be cleared before verify_mode can drop to CERT_NONE
        verify.check_hostname = False
        verify.verify_mode = ssl.CERT_NONE
    elif cluster.get("certificate-authority-data"):
        ca_pem = _decode_b64(cluster["certificate-authority-data"], "certificate-authority-data")
        verify.load_verify_locations(cadata=ca_pem.decode())
    elif cluster.get("certificate-authority"):
        verify.load_verify_locations(cafile=str(base_dir / cluster["certificate-authority"]))
    _load_client_certificate(verify, user, base_dir)

    headers: dict[str, str] = {}
    token = user.get("token", "")
    if not token and user.get("tokenFile"):
        token_path = base_dir / user["tokenFile"]
        try:
            token = token_path.read_text().strip()
        except OSError as e:
            raise KubeConfigError(f"Unable to read tokenFile {token_path}: {e}") from e
    if token:
        headers["Authorization"] = f"Bearer {token}"
    elif user.get("username"):
        basic = base64.b64encode(f"{user['username']}:{user.get('password', '')}".encode()).decode()
        headers["Authorization"] = f"Basic {basic}"

    return ClusterConnection(server=server.rstrip("/"), verify=verify, headers=headers)


def _load_client_certificate(ctx: ssl.SSLContext, user: dict[str, Any], base_dir: Path) -> None:
    """Load the user's client certificate into the SSL context, if configured."""
    if user.get("client-certificate") and user.get("client-key"):
        ctx.load_cert_chain(
            str(base_dir / user["client-certificate"]),
            str(base_dir / user["client-key"]),
        )
        return

    if not (user.get("client-certificate-data") and user.get("client-key-data")):
        return

    cert_pem = _decode_b64(user["client-certificate-data"], "client-certificate-data")
    key_pem = _decode_b64(user["client-key-data"], "client-key-data")

    # ssl only loads cert chains from files
    with tempfile.TemporaryDirectory(prefix="kubetls-client-") as tmpdir:
        cert_path = Path(tmpdir) / "cert.pem"
        key_path = Path(tmpdir) / "key.pem"
        cert_path.write_bytes(cert_pem)
        cert_path.chmod(0o600)
        key_path.touch(mode=0o600)
        key_path.write_bytes(key_pem)
        ctx.load_cert_chain(str(cert_path), str(key_path))
