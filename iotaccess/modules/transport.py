"""
HTTP helpers shared by every remote call.

Wraps ``httpx`` so transport failures, rejected tokens and malformed
responses surface as the package's own error types. No retries happen
here; callers decide whether to start over.
"""

import logging
from typing import Any, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import (
    ExpiredTokenError,
    InvalidTokenError,
    PermissionDeniedError,
    ProtocolError,
    TransportError,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    operation: str,
    **kwargs: Any
) -> httpx.Response:
    """
    Issue one request, turning network failures into TransportError.

    Args:
        client: Injected async HTTP client (owns timeouts)
        method: HTTP method
        url: Absolute URL
        operation: Short name used in error messages and logs
        **kwargs: Passed through to ``client.request``
    """
    logger.debug("%s: %s %s", operation, method, url)
    try:
        return await client.request(method, url, **kwargs)
    except httpx.TransportError as e:
        raise TransportError(f"{operation} failed: {e}") from e


def error_detail(response: httpx.Response) -> str:
    """Best-effort human readable error from a response body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return body.get("error_description") or error
        if body.get("detail"):
            return str(body["detail"])
    return response.text[:500]


def token_expired(response: httpx.Response) -> bool:
    """Whether a 401 response says the presented token expired."""
    challenge = response.headers.get("www-authenticate", "")
    return "expired" in challenge.lower() or "expired" in error_detail(response).lower()


def check_bearer_response(response: httpx.Response, operation: str) -> httpx.Response:
    """
    Map a downstream response to the error taxonomy.

    Raises:
        ExpiredTokenError / InvalidTokenError: 401
        PermissionDeniedError: 403
        TransportError: 5xx
        ProtocolError: any other non-2xx
    """
    status = response.status_code
    if response.is_success:
        return response

    detail = error_detail(response)
    message = f"{operation} failed (HTTP {status}): {detail}"
    if status == 401:
        if token_expired(response):
            raise ExpiredTokenError(message, status, response.text)
        raise InvalidTokenError(message, status, response.text)
    if status == 403:
        raise PermissionDeniedError(message, status, response.text)
    if status >= 500:
        raise TransportError(message, status, response.text)
    raise ProtocolError(message, status, response.text)


def parse_model(response: httpx.Response, model: Type[ModelT], operation: str) -> ModelT:
    """
    Parse a JSON response into *model*.

    Raises:
        ProtocolError: Body is not JSON or does not fit the model
    """
    try:
        data = response.json()
    except ValueError as e:
        raise ProtocolError(
            f"{operation} returned a non-JSON body", response.status_code, response.text
        ) from e

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(
            f"{operation} returned an unexpected response: {e.error_count()} invalid field(s)",
            response.status_code,
            response.text
        ) from e
