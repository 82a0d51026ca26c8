"""
Signed assertion builder.

Produces the compact JWT a device presents to prove possession of its
private key. Claims are ``iat``, ``exp`` and ``aud`` (the project id); the
token is signed with RS256 or ES256.
"""

import logging
import os
from datetime import UTC, datetime, timedelta
from typing import Callable, Optional, Union

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from ..api.models import SigningAlgorithm
from ...errors import KeyFormatError
from .tokens import DeviceIdentity, SignedAssertion

logger = logging.getLogger(__name__)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]
KeySource = Union[str, bytes, os.PathLike, PrivateKey]

SUPPORTED_ALGORITHMS = tuple(a.value for a in SigningAlgorithm)
DEFAULT_VALIDITY = timedelta(minutes=60)


def load_private_key(source: KeySource) -> PrivateKey:
    """
    Load a device private key.

    Args:
        source: Loaded key, PEM bytes, PEM text, or a path to a PEM file

    Returns:
        RSA or EC private key

    Raises:
        KeyFormatError: If the key cannot be read or parsed
    """
    if isinstance(source, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        return source

    if isinstance(source, str) and source.lstrip().startswith("-----BEGIN"):
        pem = source.encode("utf-8")
    elif isinstance(source, bytes):
        pem = source
    else:
        try:
            with open(source, "rb") as f:
                pem = f.read()
        except OSError as e:
            raise KeyFormatError(f"Cannot read private key file {source}: {e}") from e

    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyFormatError(f"Unrecognized private key format: {e}") from e

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise KeyFormatError(f"Unsupported private key type: {type(key).__name__}")
    return key


def _check_key_matches(key: PrivateKey, algorithm: str) -> None:
    if algorithm == SigningAlgorithm.RS256.value:
        if not isinstance(key, rsa.RSAPrivateKey):
            raise KeyFormatError("RS256 requires an RSA private key")
    elif algorithm == SigningAlgorithm.ES256.value:
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise KeyFormatError("ES256 requires an elliptic-curve private key")
        if not isinstance(key.curve, ec.SECP256R1):
            raise KeyFormatError(f"ES256 requires a P-256 key, got {key.curve.name}")


class AssertionBuilder:
    """
    Builds signed assertions for device identities.

    Stateless apart from the injected clock, so one builder can serve any
    number of flows.
    """

    def __init__(
        self,
        validity: timedelta = DEFAULT_VALIDITY,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            validity: Lifetime of each assertion
            clock: Returns the current aware datetime (defaults to UTC now)
        """
        if validity <= timedelta(0):
            raise ValueError("Assertion validity must be positive")
        self.validity = validity
        self._clock = clock or (lambda: datetime.now(UTC))

    def build(
        self,
        identity: DeviceIdentity,
        private_key: KeySource,
        algorithm: str
    ) -> SignedAssertion:
        """
        Build a signed assertion valid from now until now + validity.

        Raises:
            KeyFormatError: Unsupported algorithm, unreadable key, or key
                that does not fit the algorithm
        """
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise KeyFormatError(
                f"Unsupported algorithm {algorithm!r}; expected one of {', '.join(SUPPORTED_ALGORITHMS)}"
            )

        key = load_private_key(private_key)
        _check_key_matches(key, algorithm)

        issued = int(self._clock().timestamp())
        expires = issued + int(self.validity.total_seconds())
        claims = {
            "iat": issued,
            "exp": expires,
            "aud": identity.project_id,
        }

        try:
            token = jwt.encode(claims, key, algorithm=algorithm)
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise KeyFormatError(f"Signing with {algorithm} failed: {e}") from e

        logger.debug(
            "Built %s assertion for %s valid until %s",
            algorithm, identity.device_path, expires
        )
        return SignedAssertion(
            token=token,
            issued_at=datetime.fromtimestamp(issued, UTC),
            expires_at=datetime.fromtimestamp(expires, UTC),
            audience=identity.project_id,
            algorithm=algorithm
        )
