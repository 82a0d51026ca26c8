"""
Error taxonomy for the device access flow.

Every error raised by the credential, resource and registry modules derives
from IotAccessError so callers (and the CLI) can report and exit on a single
type. Nothing in this package retries; errors always propagate.
"""

from typing import Optional


class IotAccessError(Exception):
    """Base class for all errors raised by iotaccess."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class KeyFormatError(IotAccessError):
    """Private key cannot be parsed, or does not fit the requested algorithm."""


class InvalidAssertionError(IotAccessError):
    """Signed assertion rejected (expired, wrong audience, bad signature)."""


class PermissionDeniedError(IotAccessError):
    """Caller is not allowed to impersonate the principal or reach the resource."""


class TransportError(IotAccessError):
    """Network-level failure, or the remote service is unavailable."""


class ProtocolError(IotAccessError):
    """Response has an unexpected status or shape."""


class TokenRejectedError(IotAccessError):
    """Bearer token refused by a downstream call."""


class ExpiredTokenError(TokenRejectedError):
    """Bearer token is past its expiry."""


class InvalidTokenError(TokenRejectedError):
    """Bearer token is unknown or malformed."""


class FlowStateError(IotAccessError):
    """Flow step called out of order, or after the flow has terminated."""
