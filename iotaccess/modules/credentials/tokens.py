"""
Identity and credential value types.

All of these are immutable and live only in memory for one flow.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class DeviceIdentity:
    """Project, region, registry and device a credential is issued for."""
    project_id: str
    region: str
    registry_id: str
    device_id: str

    @property
    def location_path(self) -> str:
        return f"projects/{self.project_id}/locations/{self.region}"

    @property
    def registry_path(self) -> str:
        return f"{self.location_path}/registries/{self.registry_id}"

    @property
    def device_path(self) -> str:
        """Full resource name; also the MQTT client id."""
        return f"{self.registry_path}/devices/{self.device_id}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class SignedAssertion:
    """A signed JWT proving possession of the device private key."""
    token: str
    issued_at: datetime
    expires_at: datetime
    audience: str
    algorithm: str

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def __str__(self) -> str:
        return self.token


@dataclass(frozen=True)
class BearerToken:
    """Opaque bearer credential with a known expiry."""
    value: str = field(repr=False)
    expires_at: datetime
    scopes: Tuple[str, ...] = ()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    @property
    def authorization(self) -> str:
        """Value for the Authorization header."""
        return f"Bearer {self.value}"


def static_token(value: str) -> BearerToken:
    """Wrap an externally issued token whose expiry is not known locally."""
    return BearerToken(value=value, expires_at=datetime.max.replace(tzinfo=UTC))


@dataclass(frozen=True)
class DeviceAccessToken(BearerToken):
    """Token issued to a device in exchange for its signed assertion."""
    identity: Optional[DeviceIdentity] = None


@dataclass(frozen=True)
class ServiceAccountAccessToken(BearerToken):
    """Token minted for a service account on behalf of a device."""
    service_account: str = ""
