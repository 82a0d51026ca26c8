"""
API Module - Black Box Interface

Purpose: Shared wire models for every remote call
Interface: pydantic models in models.py
Hidden: Alias handling, base64 payload encoding
"""

from .models import (
    AcknowledgeRequest,
    BucketModel,
    DeviceCredential,
    DeviceModel,
    DeviceRegistryModel,
    DeviceState,
    DeviceTokenRequest,
    DeviceTokenResponse,
    EventNotificationConfig,
    ListDeviceStatesResponse,
    PublicKeyCredential,
    PublicKeyFormat,
    PublishRequest,
    PublishResponse,
    PubsubMessage,
    PullRequest,
    PullResponse,
    ReceivedPubsubMessage,
    SendCommandRequest,
    ServiceAccountTokenRequest,
    ServiceAccountTokenResponse,
    SigningAlgorithm,
    StorageObjectModel,
    SubscriptionModel,
    TopicModel,
    WireModel,
)

__all__ = [
    "AcknowledgeRequest",
    "BucketModel",
    "DeviceCredential",
    "DeviceModel",
    "DeviceRegistryModel",
    "DeviceState",
    "DeviceTokenRequest",
    "DeviceTokenResponse",
    "EventNotificationConfig",
    "ListDeviceStatesResponse",
    "PublicKeyCredential",
    "PublicKeyFormat",
    "PublishRequest",
    "PublishResponse",
    "PubsubMessage",
    "PullRequest",
    "PullResponse",
    "ReceivedPubsubMessage",
    "SendCommandRequest",
    "ServiceAccountTokenRequest",
    "ServiceAccountTokenResponse",
    "SigningAlgorithm",
    "StorageObjectModel",
    "SubscriptionModel",
    "TopicModel",
    "WireModel",
]
