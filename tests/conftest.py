"""
Shared pytest fixtures for iotaccess tests.

This module provides common fixtures including:
- Device key pairs (RSA and P-256) generated once per session
- A controllable clock shared by the client stack and the mock cloud
- The in-process mock cloud reached through httpx's ASGI transport
- Environment-backed configuration pointing every endpoint at the mock
"""

import os
import sys
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from iotaccess.config.provider import EnvConfigProvider, MqttConfig
from iotaccess.mock_cloud import MockCloud, create_mock_cloud_app
from iotaccess.modules.credentials import CredentialsFactory, DeviceIdentity

PROJECT_ID = "test-project"
REGION = "us-central1"
REGISTRY_ID = "test-registry"
DEVICE_ID = "test-device"
SERVICE_ACCOUNT = "device-commander@test-project.iam.gserviceaccount.com"
MOCK_URL = "http://mock"


# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    """Clock starting at wall time so signatures and local checks agree."""
    return FakeClock(datetime.now(UTC))


# =============================================================================
# Keys
# =============================================================================

def _private_pem(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )


def _public_pem(key) -> str:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode("ascii")


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_private_key():
    """A key the mock cloud has never seen."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def rsa_private_pem(rsa_private_key) -> bytes:
    return _private_pem(rsa_private_key)


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_private_key) -> str:
    return _public_pem(rsa_private_key)


@pytest.fixture(scope="session")
def ec_public_pem(ec_private_key) -> str:
    return _public_pem(ec_private_key)


@pytest.fixture
def rsa_key_file(tmp_path, rsa_private_pem):
    """Device private key written to disk, as the CLI expects it."""
    path = tmp_path / "rsa_private.pem"
    path.write_bytes(rsa_private_pem)
    return str(path)


# =============================================================================
# Mock cloud
# =============================================================================

@pytest.fixture
def mock_cloud(clock):
    return MockCloud(project_id=PROJECT_ID, region=REGION, clock=clock)


@pytest.fixture
def device_path(mock_cloud, rsa_public_pem):
    """Register the RSA test device and return its resource name."""
    return mock_cloud.register_device(REGISTRY_ID, DEVICE_ID, rsa_public_pem)


@pytest.fixture
def mock_app(mock_cloud):
    return create_mock_cloud_app(mock_cloud)


@pytest_asyncio.fixture
async def http_client(mock_app):
    """Async HTTP client whose requests are served in-process by the mock cloud."""
    transport = httpx.ASGITransport(app=mock_app)
    async with httpx.AsyncClient(transport=transport, base_url=MOCK_URL) as client:
        yield client


@pytest.fixture
def cloud_env(monkeypatch):
    """Point every endpoint at the mock cloud."""
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", PROJECT_ID)
    monkeypatch.setenv("CLOUD_REGION", REGION)
    for name in ("IOT_TOKEN_URL", "IAM_CREDENTIALS_URL", "STORAGE_URL", "PUBSUB_URL", "CLOUDIOT_URL"):
        monkeypatch.setenv(name, MOCK_URL)
    monkeypatch.delenv("MANAGEMENT_ACCESS_TOKEN", raising=False)


@pytest.fixture
def config_provider(cloud_env):
    return EnvConfigProvider()


@pytest.fixture
def mqtt_config():
    return MqttConfig(
        host="mqtt.test",
        port=8883,
        ca_certs=None,
        keepalive=60,
        connect_timeout=0.5
    )


@pytest.fixture
def credentials_factory(config_provider, http_client, clock):
    return CredentialsFactory.build(config_provider, http_client, clock=clock)


@pytest.fixture
def identity():
    return DeviceIdentity(
        project_id=PROJECT_ID,
        region=REGION,
        registry_id=REGISTRY_ID,
        device_id=DEVICE_ID
    )


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: Tests driving a full flow against the mock cloud"
    )
    config.addinivalue_line(
        "markers", "mqtt: Tests using the fake MQTT bridge"
    )
