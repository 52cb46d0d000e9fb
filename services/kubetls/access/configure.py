"""Set up a local home directory with an identity's client credentials.

Downloads the client certificate granted to the identity and writes:

    ca.pem    CA certificate the server certificate is verified against
    cert.pem  client certificate
    key.pem   client private key (owner only)
    env       shell snippet to source before talking to the server
"""

from pathlib import Path

from kubetls.kube.client import KubernetesClient
from kubetls.kube.errors import ResourceNotFoundError
from kubetls.logging_config import get_logger
from kubetls.tls.keys import store_pem
from kubetls.tls.store import CA_CERTIFICATE_KEY

from . import names
from .entities import RBACEntity
from .errors import AccessError, ClientCredentialsNotFoundError
from .grant import CLIENT_FILENAME_BASE, validate_server_deployed

logger = get_logger(__name__)

ENV_FILE_NAME = "env"
ENV_FILE_MODE = 0o700

ENV_TEMPLATE = """\
export KUBETLS_HOME={home}
export KUBETLS_SERVER_NAMESPACE={namespace}
export KUBETLS_TLS_VERIFY=true
export KUBETLS_TLS_ENABLE=true
"""


def render_env_file(home_dir: Path, server_namespace: str) -> Path:
    """Write the sourceable env file into ``home_dir``."""
    path = home_dir / ENV_FILE_NAME
    path.write_text(ENV_TEMPLATE.format(home=home_dir, namespace=server_namespace))
    path.chmod(ENV_FILE_MODE)
    return path


async def configure_client(
    client: KubernetesClient,
    home_dir: Path,
    server_namespace: str,
    entity: RBACEntity,
) -> Path:
    """Download ``entity``'s client credentials into ``home_dir``.

    Returns the path of the rendered env file.
    """
    home_dir = home_dir.expanduser().resolve()
    log = logger.bind(namespace=server_namespace, entity=str(entity), home=str(home_dir))

    await validate_server_deployed(client, server_namespace)

    secret_name = names.client_secret_name(entity)
    try:
        secret = await client.get_secret(server_namespace, secret_name)
    except ResourceNotFoundError:
        log.error("Client credentials not found", secret=secret_name)
        raise ClientCredentialsNotFoundError(str(entity), server_namespace, secret_name) from None

    files = {
        "ca.pem": (CA_CERTIFICATE_KEY, False),
        "cert.pem": (f"{CLIENT_FILENAME_BASE}.crt", False),
        "key.pem": (f"{CLIENT_FILENAME_BASE}.pem", True),
    }
    missing = [key for key, _ in files.values() if key not in secret.data]
    if missing:
        raise AccessError(f"Secret {server_namespace}/{secret_name} is missing {', '.join(missing)}")

    home_dir.mkdir(parents=True, exist_ok=True)
    for filename, (key, private) in files.items():
        store_pem(secret.data[key], home_dir / filename, private=private)
    log.info("Downloaded client credentials")

    env_path = render_env_file(home_dir, server_namespace)
    log.info("Rendered env file", path=str(env_path))
    return env_path
