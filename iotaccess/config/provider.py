"""Configuration provider following Black Box Design principles."""
import os
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass
class ProjectConfig:
    """Cloud project and region the devices live in."""
    project_id: str
    region: str


@dataclass
class EndpointConfig:
    """Base URLs of the remote services."""
    token_url: str
    iam_credentials_url: str
    storage_url: str
    pubsub_url: str
    cloudiot_url: str
    http_timeout: float


@dataclass
class MqttConfig:
    """MQTT bridge connection settings."""
    host: str
    port: int
    ca_certs: Optional[str]
    keepalive: int
    connect_timeout: float

    @property
    def use_tls(self) -> bool:
        """TLS is on unless the bridge is a plain local broker."""
        return self.port != 1883


@dataclass
class CredentialConfig:
    """Lifetimes used when minting assertions and tokens."""
    jwt_expiration_minutes: int
    service_account_lifetime_seconds: int
    management_access_token: Optional[str]


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_project_config(self) -> ProjectConfig:
        """Get project configuration."""
        ...

    def get_endpoint_config(self) -> EndpointConfig:
        """Get remote endpoint configuration."""
        ...

    def get_mqtt_config(self) -> MqttConfig:
        """Get MQTT bridge configuration."""
        ...

    def get_credential_config(self) -> CredentialConfig:
        """Get credential lifetime configuration."""
        ...


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def __init__(
        self,
        project_id: Optional[str] = None,
        region: Optional[str] = None
    ):
        """
        Args:
            project_id: Overrides GOOGLE_CLOUD_PROJECT / GCLOUD_PROJECT
            region: Overrides CLOUD_REGION
        """
        self._project_id = project_id
        self._region = region

    def get_project_config(self) -> ProjectConfig:
        """Get project configuration from environment variables."""
        project_id = (
            self._project_id
            or os.getenv("GOOGLE_CLOUD_PROJECT")
            or os.getenv("GCLOUD_PROJECT")
        )
        if not project_id:
            raise ValueError(
                "GOOGLE_CLOUD_PROJECT (or GCLOUD_PROJECT) environment variable is required. "
                "Set it to the project that owns the device registry."
            )

        return ProjectConfig(
            project_id=project_id,
            region=self._region or os.getenv("CLOUD_REGION", "us-central1")
        )

    def get_endpoint_config(self) -> EndpointConfig:
        """Get endpoint configuration from environment variables."""
        return EndpointConfig(
            token_url=os.getenv("IOT_TOKEN_URL", "https://cloudiottoken.googleapis.com").rstrip("/"),
            iam_credentials_url=os.getenv(
                "IAM_CREDENTIALS_URL", "https://iamcredentials.googleapis.com"
            ).rstrip("/"),
            storage_url=os.getenv("STORAGE_URL", "https://storage.googleapis.com").rstrip("/"),
            pubsub_url=os.getenv("PUBSUB_URL", "https://pubsub.googleapis.com").rstrip("/"),
            cloudiot_url=os.getenv("CLOUDIOT_URL", "https://cloudiot.googleapis.com").rstrip("/"),
            http_timeout=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
        )

    def get_mqtt_config(self) -> MqttConfig:
        """Get MQTT configuration from environment variables."""
        return MqttConfig(
            host=os.getenv("MQTT_BRIDGE_HOSTNAME", "mqtt.googleapis.com"),
            port=int(os.getenv("MQTT_BRIDGE_PORT", "8883")),
            ca_certs=os.getenv("MQTT_CA_CERTS") or None,
            keepalive=int(os.getenv("MQTT_KEEPALIVE", "60")),
            connect_timeout=float(os.getenv("MQTT_CONNECT_TIMEOUT", "10"))
        )

    def get_credential_config(self) -> CredentialConfig:
        """Get credential configuration from environment variables."""
        return CredentialConfig(
            jwt_expiration_minutes=int(os.getenv("JWT_EXPIRATION_MINUTES", "60")),
            service_account_lifetime_seconds=int(
                os.getenv("SERVICE_ACCOUNT_TOKEN_LIFETIME", "3600")
            ),
            management_access_token=os.getenv("MANAGEMENT_ACCESS_TOKEN") or None
        )
