"""
Device token exchanger.

Trades a signed assertion for a short-lived device access token. Every
call builds a new request; tokens are never cached or reused.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Callable, Optional, Sequence

import httpx

from ..api.models import DeviceTokenRequest, DeviceTokenResponse
from ..transport import error_detail, parse_model, send
from ...errors import InvalidAssertionError, ProtocolError, TransportError
from .tokens import DeviceAccessToken, DeviceIdentity, SignedAssertion

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
PUBSUB_SCOPE = "https://www.googleapis.com/auth/pubsub"
STORAGE_SCOPE = "https://www.googleapis.com/auth/devstorage.full_control"


class DeviceTokenExchanger:
    """
    Exchanges signed assertions at the device token endpoint.

    The HTTP client is injected and owned by the caller.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_url: str,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            http_client: Async HTTP client
            token_url: Base URL of the device token service
            clock: Returns the current aware datetime (defaults to UTC now)
        """
        self.http = http_client
        self.token_url = token_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(UTC))

    def endpoint(self, identity: DeviceIdentity) -> str:
        return f"{self.token_url}/v1beta1/{identity.device_path}:generateAccessToken"

    async def exchange(
        self,
        assertion: SignedAssertion,
        identity: DeviceIdentity,
        scopes: Sequence[str] = (CLOUD_PLATFORM_SCOPE,)
    ) -> DeviceAccessToken:
        """
        Exchange *assertion* for a device access token.

        Args:
            assertion: Freshly built signed assertion
            identity: Device the assertion was built for
            scopes: OAuth scopes requested for the token

        Returns:
            DeviceAccessToken whose expiry never outlives the assertion

        Raises:
            InvalidAssertionError: Assertion expired or rejected
            TransportError: Network failure or 5xx
            ProtocolError: Malformed response
        """
        now = self._clock()
        if assertion.is_expired(now):
            raise InvalidAssertionError(
                f"Assertion for {identity.device_path} expired at {assertion.expires_at.isoformat()}"
            )
        if not scopes:
            raise ValueError("At least one scope is required")

        request = DeviceTokenRequest(device=identity.device_path, scope=" ".join(scopes))
        response = await send(
            self.http,
            "POST",
            self.endpoint(identity),
            operation="Device token exchange",
            json=request.to_wire(),
            headers={"Authorization": f"Bearer {assertion.token}"},
        )

        status = response.status_code
        if status in (400, 401, 403):
            raise InvalidAssertionError(
                f"Device token exchange rejected (HTTP {status}): {error_detail(response)}",
                status,
                response.text
            )
        if status >= 500:
            raise TransportError(
                f"Device token service unavailable (HTTP {status})", status, response.text
            )
        if not response.is_success:
            raise ProtocolError(
                f"Unexpected device token response (HTTP {status})", status, response.text
            )

        body = parse_model(response, DeviceTokenResponse, "Device token exchange")
        if body.token_type.lower() != "bearer":
            raise ProtocolError(f"Unexpected token type {body.token_type!r}", status, response.text)

        # The token must not outlive the assertion it was derived from
        expires_at = min(now + timedelta(seconds=body.expires_in), assertion.expires_at)
        logger.info(
            "Obtained device access token for %s (expires %s)",
            identity.device_path, expires_at.isoformat()
        )
        return DeviceAccessToken(
            value=body.access_token,
            expires_at=expires_at,
            scopes=tuple(scopes),
            identity=identity
        )
