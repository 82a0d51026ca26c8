"""
Service-account token exchanger.

Presents a device access token to the IAM credentials service and asks
it to mint a token for a different principal, the service account.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Callable, Optional, Sequence
from urllib.parse import quote

import httpx

from ..api.models import ServiceAccountTokenRequest, ServiceAccountTokenResponse
from ..transport import check_bearer_response, parse_model, send
from ...errors import ExpiredTokenError
from .device_token import CLOUD_PLATFORM_SCOPE
from .tokens import DeviceAccessToken, ServiceAccountAccessToken

logger = logging.getLogger(__name__)


class ServiceAccountTokenExchanger:
    """Exchanges device tokens for service-account tokens."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        iam_credentials_url: str,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.http = http_client
        self.iam_credentials_url = iam_credentials_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(UTC))

    def endpoint(self, service_account_email: str) -> str:
        email = quote(service_account_email, safe="@.")
        return f"{self.iam_credentials_url}/v1/projects/-/serviceAccounts/{email}:generateAccessToken"

    async def exchange(
        self,
        device_token: DeviceAccessToken,
        service_account_email: str,
        scopes: Sequence[str] = (CLOUD_PLATFORM_SCOPE,),
        lifetime_seconds: int = 3600
    ) -> ServiceAccountAccessToken:
        """
        Mint a token for *service_account_email* using *device_token*.

        Raises:
            ExpiredTokenError: Device token already expired, or rejected as expired
            InvalidTokenError: Device token rejected
            PermissionDeniedError: Device may not impersonate the service account
            TransportError: Network failure or 5xx
            ProtocolError: Malformed response
        """
        now = self._clock()
        if device_token.is_expired(now):
            raise ExpiredTokenError(
                f"Device access token expired at {device_token.expires_at.isoformat()}"
            )
        if not service_account_email:
            raise ValueError("service_account_email is required")

        request = ServiceAccountTokenRequest(
            scope=list(scopes), lifetime=f"{lifetime_seconds}s"
        )
        operation = f"Service account exchange for {service_account_email}"
        response = await send(
            self.http,
            "POST",
            self.endpoint(service_account_email),
            operation=operation,
            json=request.to_wire(),
            headers={"Authorization": device_token.authorization},
        )
        check_bearer_response(response, operation)
        body = parse_model(response, ServiceAccountTokenResponse, operation)

        if body.expire_time is not None:
            expires_at = body.expire_time
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=UTC)
        else:
            expires_at = now + timedelta(seconds=body.expires_in)

        logger.info(
            "Obtained service account token for %s (expires %s)",
            service_account_email, expires_at.isoformat()
        )
        return ServiceAccountAccessToken(
            value=body.access_token,
            expires_at=expires_at,
            scopes=tuple(scopes),
            service_account=service_account_email
        )
