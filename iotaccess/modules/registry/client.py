"""
Device manager client.

Thin REST wrapper over the device-registry management API, used to set up
registries and devices and to read device state. It authenticates with an
ambient management credential supplied by the caller, never with a device
token.
"""

import logging
from typing import List, Optional, Sequence, Union

from ..api.models import (
    DeviceCredential,
    DeviceModel,
    DeviceRegistryModel,
    DeviceState,
    EventNotificationConfig,
    ListDeviceStatesResponse,
    PublicKeyCredential,
    PublicKeyFormat,
)
from ..credentials.tokens import BearerToken
from ..resources.base import BearerResource
from ..resources.commands import CommandResource
from ..transport import parse_model

logger = logging.getLogger(__name__)


class DeviceManagerClient(BearerResource):
    """
    Registry and device management.

    Args:
        http_client: Async HTTP client
        base_url: Device manager base URL
        credentials: Management bearer token
    """

    def __init__(self, http_client, base_url: str, credentials: BearerToken, clock=None):
        super().__init__(http_client, base_url, clock=clock)
        self.credentials = credentials
        self._commands = CommandResource(http_client, base_url, clock=clock)

    # Resource names

    @staticmethod
    def location_path(project_id: str, region: str) -> str:
        return f"projects/{project_id}/locations/{region}"

    @classmethod
    def registry_path(cls, project_id: str, region: str, registry_id: str) -> str:
        return f"{cls.location_path(project_id, region)}/registries/{registry_id}"

    @classmethod
    def device_path(cls, project_id: str, region: str, registry_id: str, device_id: str) -> str:
        return f"{cls.registry_path(project_id, region, registry_id)}/devices/{device_id}"

    def _url(self, name: str) -> str:
        return f"{self.base_url}/v1/{name}"

    # Registries

    async def create_device_registry(
        self,
        parent: str,
        registry_id: str,
        pubsub_topics: Sequence[str] = ()
    ) -> DeviceRegistryModel:
        """
        Create a registry under *parent* (a location path).

        Args:
            parent: ``projects/{p}/locations/{r}``
            registry_id: New registry id
            pubsub_topics: Full topic names that receive device telemetry
        """
        registry = DeviceRegistryModel(
            id=registry_id,
            event_notification_configs=[
                EventNotificationConfig(pubsub_topic_name=t) for t in pubsub_topics
            ] or None,
        )
        operation = f"Create registry {registry_id}"
        response = await self._call(
            "POST", self._url(f"{parent}/registries"), self.credentials, operation,
            json=registry.to_wire(),
        )
        logger.info("Created registry %s", registry_id)
        return parse_model(response, DeviceRegistryModel, operation)

    async def delete_device_registry(self, name: str) -> None:
        await self._call("DELETE", self._url(name), self.credentials, f"Delete registry {name}")
        logger.info("Deleted registry %s", name)

    # Devices

    async def create_device(
        self,
        parent: str,
        device_id: str,
        public_key_pem: Union[str, bytes],
        key_format: PublicKeyFormat = PublicKeyFormat.RSA_X509_PEM
    ) -> DeviceModel:
        """Register a device with one public key credential."""
        if isinstance(public_key_pem, bytes):
            public_key_pem = public_key_pem.decode("utf-8")
        device = DeviceModel(
            id=device_id,
            credentials=[
                DeviceCredential(public_key=PublicKeyCredential(format=key_format, key=public_key_pem))
            ],
        )
        operation = f"Create device {device_id}"
        response = await self._call(
            "POST", self._url(f"{parent}/devices"), self.credentials, operation,
            json=device.to_wire(),
        )
        logger.info("Created device %s", device_id)
        return parse_model(response, DeviceModel, operation)

    async def delete_device(self, name: str) -> None:
        await self._call("DELETE", self._url(name), self.credentials, f"Delete device {name}")
        logger.info("Deleted device %s", name)

    async def list_device_states(self, name: str, num_states: Optional[int] = None) -> List[DeviceState]:
        """
        List the most recent states reported by a device, newest first.

        Args:
            name: Device resource name
            num_states: How many states to return; None or 0 returns all retained
        """
        operation = f"List states of {name}"
        params = {"numStates": num_states} if num_states else None
        response = await self._call(
            "GET", self._url(f"{name}/states"), self.credentials, operation, params=params
        )
        return parse_model(response, ListDeviceStatesResponse, operation).device_states

    async def send_command_to_device(
        self,
        name: str,
        command: Union[bytes, str],
        subfolder: Optional[str] = None
    ) -> None:
        await self._commands.send(self.credentials, name, command, subfolder)
