"""Credential interfaces following Black Box Design principles."""
from typing import Protocol, Sequence

from .assertion import KeySource
from .tokens import (
    DeviceAccessToken,
    DeviceIdentity,
    ServiceAccountAccessToken,
    SignedAssertion,
)


class AssertionSigner(Protocol):
    """Protocol for assertion builders - allows swappable implementations."""

    def build(
        self,
        identity: DeviceIdentity,
        private_key: KeySource,
        algorithm: str
    ) -> SignedAssertion:
        """
        Build a signed assertion.

        Args:
            identity: Device identity the assertion speaks for
            private_key: Device private key
            algorithm: Signing algorithm

        Returns:
            SignedAssertion valid from now
        """
        ...


class DeviceTokenSource(Protocol):
    """Protocol for device token exchangers."""

    async def exchange(
        self,
        assertion: SignedAssertion,
        identity: DeviceIdentity,
        scopes: Sequence[str] = ...
    ) -> DeviceAccessToken:
        """Exchange a signed assertion for a device access token."""
        ...


class ServiceAccountTokenSource(Protocol):
    """Protocol for service-account token exchangers."""

    async def exchange(
        self,
        device_token: DeviceAccessToken,
        service_account_email: str,
        scopes: Sequence[str] = ...,
        lifetime_seconds: int = ...
    ) -> ServiceAccountAccessToken:
        """Exchange a device access token for a service-account token."""
        ...
