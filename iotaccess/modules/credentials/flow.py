"""
Access token flow.

One AccessTokenFlow object is one pass through

    UNAUTHENTICATED -> ASSERTION_BUILT -> DEVICE_TOKEN_OBTAINED
        -> [SERVICE_ACCOUNT_TOKEN_OBTAINED] -> RESOURCE_INVOKED

Any error, cancellation included, moves the flow to FAILED. There are no
backward transitions: retrying means building a new flow, so no credential
from a failed or finished flow can be used again.
"""

import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, TypeVar, Union

from ...errors import FlowStateError
from .assertion import KeySource
from .device_token import CLOUD_PLATFORM_SCOPE
from .interfaces import AssertionSigner, DeviceTokenSource, ServiceAccountTokenSource
from .tokens import (
    DeviceAccessToken,
    DeviceIdentity,
    ServiceAccountAccessToken,
    SignedAssertion,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
AccessToken = Union[DeviceAccessToken, ServiceAccountAccessToken]


class FlowState(str, Enum):
    """State of an access token flow."""

    UNAUTHENTICATED = "unauthenticated"
    ASSERTION_BUILT = "assertion_built"
    DEVICE_TOKEN_OBTAINED = "device_token_obtained"
    SERVICE_ACCOUNT_TOKEN_OBTAINED = "service_account_token_obtained"
    RESOURCE_INVOKED = "resource_invoked"
    FAILED = "failed"


TERMINAL_STATES = frozenset({FlowState.RESOURCE_INVOKED, FlowState.FAILED})


class AccessTokenFlow:
    """
    Drives one device through assertion, token exchange and resource call.

    Collaborators are injected; the flow itself holds the credentials it
    obtains and nothing else.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        private_key: KeySource,
        algorithm: str,
        assertion_builder: AssertionSigner,
        device_exchanger: DeviceTokenSource,
        service_account_exchanger: Optional[ServiceAccountTokenSource] = None
    ):
        self.identity = identity
        self.algorithm = algorithm
        self._private_key = private_key
        self._builder = assertion_builder
        self._device_exchanger = device_exchanger
        self._sa_exchanger = service_account_exchanger

        self._state = FlowState.UNAUTHENTICATED
        self.failure: Optional[BaseException] = None
        self.assertion: Optional[SignedAssertion] = None
        self.device_token: Optional[DeviceAccessToken] = None
        self.service_account_token: Optional[ServiceAccountAccessToken] = None

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def finished(self) -> bool:
        return self._state in TERMINAL_STATES

    def _require(self, step: str, *allowed: FlowState) -> None:
        if self._state not in allowed:
            expected = " or ".join(s.value for s in allowed)
            raise FlowStateError(
                f"Cannot {step} in state {self._state.value} (expected {expected})"
            )

    def _advance(self, new_state: FlowState) -> None:
        logger.debug("Flow %s: %s -> %s", self.identity.device_id, self._state.value, new_state.value)
        self._state = new_state

    def _fail(self, error: BaseException) -> None:
        logger.warning(
            "Flow for %s failed in state %s: %s",
            self.identity.device_path, self._state.value, error
        )
        self.failure = error
        self._state = FlowState.FAILED
        # Drop partial credentials so nothing from this flow is reused
        self.assertion = None
        self.device_token = None
        self.service_account_token = None

    def build_assertion(self) -> SignedAssertion:
        """Sign a fresh assertion for the device."""
        self._require("build assertion", FlowState.UNAUTHENTICATED)
        try:
            self.assertion = self._builder.build(self.identity, self._private_key, self.algorithm)
        except BaseException as e:
            self._fail(e)
            raise
        self._advance(FlowState.ASSERTION_BUILT)
        return self.assertion

    async def obtain_device_token(
        self, scopes: Sequence[str] = (CLOUD_PLATFORM_SCOPE,)
    ) -> DeviceAccessToken:
        """Exchange the assertion for a device access token."""
        self._require("obtain device token", FlowState.ASSERTION_BUILT)
        try:
            self.device_token = await self._device_exchanger.exchange(
                self.assertion, self.identity, scopes
            )
        except BaseException as e:
            self._fail(e)
            raise
        self._advance(FlowState.DEVICE_TOKEN_OBTAINED)
        return self.device_token

    async def obtain_service_account_token(
        self,
        service_account_email: str,
        scopes: Sequence[str] = (CLOUD_PLATFORM_SCOPE,),
        lifetime_seconds: int = 3600
    ) -> ServiceAccountAccessToken:
        """Exchange the device token for a service-account token."""
        self._require("obtain service account token", FlowState.DEVICE_TOKEN_OBTAINED)
        if self._sa_exchanger is None:
            raise FlowStateError("Flow was built without a service account exchanger")
        try:
            self.service_account_token = await self._sa_exchanger.exchange(
                self.device_token, service_account_email, scopes, lifetime_seconds
            )
        except BaseException as e:
            self._fail(e)
            raise
        self._advance(FlowState.SERVICE_ACCOUNT_TOKEN_OBTAINED)
        return self.service_account_token

    @property
    def access_token(self) -> Optional[AccessToken]:
        """Most privileged token obtained so far."""
        return self.service_account_token or self.device_token

    async def invoke(self, call: Callable[[AccessToken], Awaitable[T]]) -> T:
        """
        Run the downstream call with the obtained token.

        Args:
            call: Coroutine function receiving the bearer token

        Returns:
            Whatever *call* returns
        """
        self._require(
            "invoke resource",
            FlowState.DEVICE_TOKEN_OBTAINED,
            FlowState.SERVICE_ACCOUNT_TOKEN_OBTAINED,
        )
        try:
            result = await call(self.access_token)
        except BaseException as e:
            self._fail(e)
            raise
        self._advance(FlowState.RESOURCE_INVOKED)
        return result
