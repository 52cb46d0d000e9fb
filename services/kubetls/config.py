"""
Configuration management for kubetls.

Non-secret configuration loaded from YAML file, secrets (bearer tokens,
key passwords) from environment variables.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path("/etc/kubetls/config.yaml")
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


class TLSDefaults(BaseModel):
    """Defaults applied when a caller does not specify key parameters."""

    private_key_algorithm: str = Field(
        default="ECDSA",
        description="Private key algorithm for generated key pairs (ECDSA or RSA)",
    )
    ecdsa_curve: str = Field(
        default="P256",
        description="Elliptic curve used when the algorithm is ECDSA (P224, P256, P384, P521)",
    )
    rsa_bits: int = Field(default=4096, description="RSA key length when the algorithm is RSA")
    validity_days: int = Field(default=3650, description="Certificate validity in days")


class ServerConfig(BaseModel):
    """Where the TLS server lives and how to wait for it."""

    pod_label_selector: str = Field(
        default="app=tls-server",
        description="Label selector identifying the TLS server pods",
    )
    deployment_name: str = Field(default="tls-server", description="Name of the server Deployment")
    ca_namespace: str = Field(
        default="kube-system",
        description="Namespace holding the CA secrets (should be admin-only)",
    )
    readiness_timeout_seconds: float = Field(
        default=300,
        description="How long to wait for a freshly deployed server to become ready",
    )
    readiness_interval_seconds: float = Field(
        default=0.5,
        description="Sleep between readiness checks",
    )


class KubeConfig(BaseModel):
    """Cluster connectivity.

    Either ``config_path``/``context_name`` (kubeconfig based auth), or
    ``server``/``certificate_authority``/``token`` (direct auth). Direct auth
    wins when ``server`` is set.
    """

    config_path: Path | None = Field(
        default=None,
        description="Path to kubeconfig. Defaults to $KUBECONFIG or ~/.kube/config",
    )
    context_name: str = Field(default="", description="Kubeconfig context (default: current)")
    server: str = Field(default="", description="Kubernetes API server endpoint")
    certificate_authority: str = Field(
        default="",
        description="Base64 encoded PEM CA certificate of the API server",
    )
    token: str = Field(default="", description="Bearer token. Set via KUBETLS_KUBE__TOKEN")
    request_timeout_seconds: float = Field(default=30, description="API request timeout")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="KUBETLS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False, description="JSON logging (for CI and automation)")

    # Prefix for labels and annotations written to cluster resources
    label_prefix: str = Field(default="kubetls.io")

    tls: TLSDefaults = Field(default_factory=TLSDefaults)
    server: ServerConfig = Field(default_factory=ServerConfig)
    kube: KubeConfig = Field(default_factory=KubeConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
