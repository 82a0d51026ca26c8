import pytest

from iotaccess.config.provider import EnvConfigProvider

ENV_VARS = (
    "GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT", "CLOUD_REGION", "IOT_TOKEN_URL", "IAM_CREDENTIALS_URL",
    "STORAGE_URL", "PUBSUB_URL", "CLOUDIOT_URL", "HTTP_TIMEOUT_SECONDS", "MQTT_BRIDGE_HOSTNAME",
    "MQTT_BRIDGE_PORT", "MQTT_CA_CERTS", "MQTT_KEEPALIVE", "MQTT_CONNECT_TIMEOUT",
    "JWT_EXPIRATION_MINUTES", "SERVICE_ACCOUNT_TOKEN_LIFETIME", "MANAGEMENT_ACCESS_TOKEN",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    clean_env.setenv("GOOGLE_CLOUD_PROJECT", "my-project")
    provider = EnvConfigProvider()

    project = provider.get_project_config()
    assert (project.project_id, project.region) == ("my-project", "us-central1")

    endpoints = provider.get_endpoint_config()
    assert endpoints.token_url == "https://cloudiottoken.googleapis.com"
    assert endpoints.iam_credentials_url == "https://iamcredentials.googleapis.com"
    assert endpoints.http_timeout == 30.0

    mqtt = provider.get_mqtt_config()
    assert (mqtt.host, mqtt.port) == ("mqtt.googleapis.com", 8883)
    assert mqtt.use_tls

    credentials = provider.get_credential_config()
    assert credentials.jwt_expiration_minutes == 60
    assert credentials.service_account_lifetime_seconds == 3600
    assert credentials.management_access_token is None


def test_gcloud_project_fallback(clean_env):
    clean_env.setenv("GCLOUD_PROJECT", "legacy-project")
    assert EnvConfigProvider().get_project_config().project_id == "legacy-project"


def test_explicit_values_win(clean_env):
    clean_env.setenv("GOOGLE_CLOUD_PROJECT", "env-project")
    clean_env.setenv("CLOUD_REGION", "europe-west1")
    project = EnvConfigProvider(project_id="cli-project", region="asia-east1").get_project_config()
    assert (project.project_id, project.region) == ("cli-project", "asia-east1")


def test_missing_project(clean_env):
    with pytest.raises(ValueError, match="GOOGLE_CLOUD_PROJECT"):
        EnvConfigProvider().get_project_config()


def test_overrides(clean_env):
    clean_env.setenv("PUBSUB_URL", "http://localhost:8085/")
    clean_env.setenv("MQTT_BRIDGE_PORT", "1883")
    clean_env.setenv("JWT_EXPIRATION_MINUTES", "20")
    provider = EnvConfigProvider(project_id="p")

    assert provider.get_endpoint_config().pubsub_url == "http://localhost:8085"
    assert not provider.get_mqtt_config().use_tls
    assert provider.get_credential_config().jwt_expiration_minutes == 20
