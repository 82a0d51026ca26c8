"""Shared plumbing for resources called with a bearer token."""

from datetime import UTC, datetime
from typing import Any, Callable, Optional

import httpx

from ...errors import ExpiredTokenError
from ..credentials.tokens import BearerToken
from ..transport import check_bearer_response, send


class BearerResource:
    """
    Base class for downstream REST resources.

    Attaches the token to each request and maps rejections to the error
    taxonomy. Expired tokens are refused locally; nothing is refreshed.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.http = http_client
        self.base_url = base_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _call(
        self,
        method: str,
        url: str,
        token: BearerToken,
        operation: str,
        **kwargs: Any
    ) -> httpx.Response:
        if token.is_expired(self._clock()):
            raise ExpiredTokenError(
                f"{operation}: access token expired at {token.expires_at.isoformat()}"
            )
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = token.authorization
        response = await send(self.http, method, url, operation=operation, headers=headers, **kwargs)
        return check_bearer_response(response, operation)
