"""
Credential Factory following Black Box Design principles.

This factory:
- Constructs the credential stack based on configuration
- Wires the injected HTTP client into every exchanger
- Hands out a fresh AccessTokenFlow per device invocation
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from ...config.provider import ConfigProvider
from .assertion import AssertionBuilder, KeySource
from .device_token import DeviceTokenExchanger
from .flow import AccessTokenFlow
from .service_account import ServiceAccountTokenExchanger
from .tokens import DeviceIdentity

logger = logging.getLogger(__name__)


class CredentialsFactory:
    """
    Composition root for the credential stack.

    Holds no credentials itself; every call to ``flow()`` starts from an
    unauthenticated state.
    """

    def __init__(
        self,
        assertion_builder: AssertionBuilder,
        device_exchanger: DeviceTokenExchanger,
        service_account_exchanger: ServiceAccountTokenExchanger,
        project_id: str,
        region: str,
        service_account_lifetime_seconds: int = 3600
    ):
        self.assertion_builder = assertion_builder
        self.device_exchanger = device_exchanger
        self.service_account_exchanger = service_account_exchanger
        self.project_id = project_id
        self.region = region
        self.service_account_lifetime_seconds = service_account_lifetime_seconds

    @classmethod
    def build(
        cls,
        config_provider: ConfigProvider,
        http_client: httpx.AsyncClient,
        clock: Optional[Callable[[], datetime]] = None
    ) -> "CredentialsFactory":
        """
        Build the credential stack from configuration.

        Args:
            config_provider: Configuration provider
            http_client: Async HTTP client shared by the exchangers
            clock: Optional clock override (tests)
        """
        project = config_provider.get_project_config()
        endpoints = config_provider.get_endpoint_config()
        credentials = config_provider.get_credential_config()

        logger.debug(
            "Building credential stack for project %s (token service %s)",
            project.project_id, endpoints.token_url
        )
        return cls(
            assertion_builder=AssertionBuilder(
                validity=timedelta(minutes=credentials.jwt_expiration_minutes),
                clock=clock
            ),
            device_exchanger=DeviceTokenExchanger(http_client, endpoints.token_url, clock=clock),
            service_account_exchanger=ServiceAccountTokenExchanger(
                http_client, endpoints.iam_credentials_url, clock=clock
            ),
            project_id=project.project_id,
            region=project.region,
            service_account_lifetime_seconds=credentials.service_account_lifetime_seconds
        )

    def identity(self, registry_id: str, device_id: str) -> DeviceIdentity:
        return DeviceIdentity(
            project_id=self.project_id,
            region=self.region,
            registry_id=registry_id,
            device_id=device_id
        )

    def flow(
        self,
        registry_id: str,
        device_id: str,
        private_key: KeySource,
        algorithm: str
    ) -> AccessTokenFlow:
        """Start a new flow for one device."""
        return AccessTokenFlow(
            identity=self.identity(registry_id, device_id),
            private_key=private_key,
            algorithm=algorithm,
            assertion_builder=self.assertion_builder,
            device_exchanger=self.device_exchanger,
            service_account_exchanger=self.service_account_exchanger
        )
