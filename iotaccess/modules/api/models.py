"""
iotaccess shared wire models.

These models define the JSON bodies exchanged with the token service,
IAM credentials, storage, pub/sub and the device manager. Field names are
snake_case in Python; aliases carry the camelCase names used on the wire.
"""

import base64
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class WireModel(BaseModel):
    """Base model accepting both field names and wire aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with wire aliases, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Enums


class SigningAlgorithm(str, Enum):
    """Signing schemes accepted for device assertions."""

    RS256 = "RS256"
    ES256 = "ES256"


class PublicKeyFormat(str, Enum):
    """Public key formats the device manager accepts."""

    RSA_X509_PEM = "RSA_X509_PEM"
    RSA_PEM = "RSA_PEM"
    ES256_PEM = "ES256_PEM"
    ES256_X509_PEM = "ES256_X509_PEM"


# Token exchange


class DeviceTokenRequest(WireModel):
    """Body of a device generateAccessToken call."""

    device: str = Field(..., description="Full device resource name", min_length=1)
    scope: str = Field(..., description="Space separated OAuth scopes", min_length=1)


class DeviceTokenResponse(WireModel):
    """Device access token issued in exchange for a signed assertion."""

    access_token: str = Field(..., min_length=1)
    expires_in: int = Field(..., gt=0, description="Lifetime in seconds")
    token_type: str = "Bearer"


class ServiceAccountTokenRequest(WireModel):
    """Body of an IAM credentials generateAccessToken call."""

    scope: List[str] = Field(..., min_length=1)
    lifetime: str = Field("3600s", pattern=r"^\d+s$")

    @property
    def lifetime_seconds(self) -> int:
        return int(self.lifetime[:-1])


class ServiceAccountTokenResponse(WireModel):
    """Service-account token; accepts the IAM shape and the OAuth shape."""

    access_token: str = Field(..., alias="accessToken", min_length=1)
    expire_time: Optional[datetime] = Field(None, alias="expireTime")
    expires_in: Optional[int] = Field(None, gt=0)

    @model_validator(mode="after")
    def require_expiry(self) -> "ServiceAccountTokenResponse":
        if self.expire_time is None and self.expires_in is None:
            raise ValueError("response carries neither expireTime nor expires_in")
        return self


# Pub/Sub


class PubsubMessage(WireModel):
    """A pub/sub message; ``data`` is base64 on the wire."""

    data: str = ""
    attributes: Optional[Dict[str, str]] = None
    message_id: Optional[str] = Field(None, alias="messageId")
    publish_time: Optional[str] = Field(None, alias="publishTime")

    @classmethod
    def from_bytes(cls, payload: bytes, attributes: Optional[Dict[str, str]] = None) -> "PubsubMessage":
        return cls(data=base64.b64encode(payload).decode("ascii"), attributes=attributes or None)

    def decoded(self) -> bytes:
        return base64.b64decode(self.data) if self.data else b""


class PublishRequest(WireModel):
    messages: List[PubsubMessage] = Field(..., min_length=1)


class PublishResponse(WireModel):
    message_ids: List[str] = Field(..., alias="messageIds")


class TopicModel(WireModel):
    name: str


class SubscriptionModel(WireModel):
    name: Optional[str] = None
    topic: str
    ack_deadline_seconds: int = Field(10, alias="ackDeadlineSeconds", ge=10, le=600)


class PullRequest(WireModel):
    max_messages: int = Field(10, alias="maxMessages", ge=1)
    return_immediately: bool = Field(True, alias="returnImmediately")


class ReceivedPubsubMessage(WireModel):
    ack_id: str = Field(..., alias="ackId")
    message: PubsubMessage


class PullResponse(WireModel):
    received_messages: List[ReceivedPubsubMessage] = Field(
        default_factory=list, alias="receivedMessages"
    )


class AcknowledgeRequest(WireModel):
    ack_ids: List[str] = Field(..., alias="ackIds", min_length=1)


# Storage


class BucketModel(WireModel):
    name: str = Field(..., min_length=3, max_length=63)


class StorageObjectModel(WireModel):
    name: str
    bucket: str
    size: Optional[str] = None
    content_type: Optional[str] = Field(None, alias="contentType")


# Device manager


class EventNotificationConfig(WireModel):
    pubsub_topic_name: str = Field(..., alias="pubsubTopicName")
    subfolder_matches: Optional[str] = Field(None, alias="subfolderMatches")


class DeviceRegistryModel(WireModel):
    """A device registry resource."""

    id: str = Field(
        ...,
        min_length=3,
        max_length=255,
        pattern=r"^[a-zA-Z][a-zA-Z0-9\-_.+~%]*$",
    )
    name: Optional[str] = None
    event_notification_configs: Optional[List[EventNotificationConfig]] = Field(
        None, alias="eventNotificationConfigs"
    )


class PublicKeyCredential(WireModel):
    format: PublicKeyFormat
    key: str = Field(..., min_length=1)


class DeviceCredential(WireModel):
    public_key: PublicKeyCredential = Field(..., alias="publicKey")


class DeviceModel(WireModel):
    """A device resource."""

    id: str = Field(..., min_length=1, max_length=128)
    name: Optional[str] = None
    num_id: Optional[str] = Field(None, alias="numId")
    credentials: List[DeviceCredential] = Field(default_factory=list)
    blocked: Optional[bool] = None


class SendCommandRequest(WireModel):
    binary_data: str = Field(..., alias="binaryData")
    subfolder: Optional[str] = None

    @field_validator("binary_data")
    @classmethod
    def must_be_base64(cls, value: str) -> str:
        base64.b64decode(value, validate=True)
        return value


class DeviceState(WireModel):
    update_time: Optional[str] = Field(None, alias="updateTime")
    binary_data: str = Field("", alias="binaryData")

    def decoded(self) -> bytes:
        return base64.b64decode(self.binary_data) if self.binary_data else b""


class ListDeviceStatesResponse(WireModel):
    device_states: List[DeviceState] = Field(default_factory=list, alias="deviceStates")
