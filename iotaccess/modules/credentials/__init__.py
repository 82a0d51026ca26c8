"""
Credentials Module - Black Box Interface

Purpose: Turn a device private key into bearer tokens
Interface: AssertionBuilder.build(), DeviceTokenExchanger.exchange(),
           ServiceAccountTokenExchanger.exchange(), AccessTokenFlow
Hidden: JWT encoding, key parsing, endpoint shapes, error mapping

Tokens are never cached; every flow starts from a fresh assertion.
"""

from .assertion import SUPPORTED_ALGORITHMS, AssertionBuilder, load_private_key
from .device_token import (
    CLOUD_PLATFORM_SCOPE,
    PUBSUB_SCOPE,
    STORAGE_SCOPE,
    DeviceTokenExchanger,
)
from .factory import CredentialsFactory
from .flow import AccessTokenFlow, FlowState
from .service_account import ServiceAccountTokenExchanger
from .tokens import (
    BearerToken,
    DeviceAccessToken,
    DeviceIdentity,
    ServiceAccountAccessToken,
    SignedAssertion,
    static_token,
)

__all__ = [
    "AccessTokenFlow",
    "AssertionBuilder",
    "BearerToken",
    "CLOUD_PLATFORM_SCOPE",
    "CredentialsFactory",
    "DeviceAccessToken",
    "DeviceIdentity",
    "DeviceTokenExchanger",
    "FlowState",
    "PUBSUB_SCOPE",
    "STORAGE_SCOPE",
    "SUPPORTED_ALGORITHMS",
    "ServiceAccountAccessToken",
    "ServiceAccountTokenExchanger",
    "SignedAssertion",
    "load_private_key",
    "static_token",
]
