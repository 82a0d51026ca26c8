"""Device command dispatch."""

import base64
import logging
from typing import Optional, Union

from ..api.models import SendCommandRequest
from ..credentials.tokens import BearerToken, DeviceIdentity
from .base import BearerResource

logger = logging.getLogger(__name__)


class CommandResource(BearerResource):
    """Sends commands to devices through the device manager API."""

    async def send(
        self,
        token: BearerToken,
        device_name: str,
        command: Union[bytes, str],
        subfolder: Optional[str] = None
    ) -> None:
        """
        Send *command* to the device named *device_name*.

        The device receives it on ``/devices/{id}/commands[/subfolder]``.
        """
        data = command.encode("utf-8") if isinstance(command, str) else command
        request = SendCommandRequest(
            binary_data=base64.b64encode(data).decode("ascii"),
            subfolder=subfolder,
        )
        await self._call(
            "POST",
            f"{self.base_url}/v1/{device_name}:sendCommandToDevice",
            token,
            f"Send command to {device_name}",
            json=request.to_wire(),
        )
        logger.info("Sent %d byte command to %s", len(data), device_name)

    async def send_command(
        self,
        token: BearerToken,
        identity: DeviceIdentity,
        command: Union[bytes, str],
        subfolder: Optional[str] = None
    ) -> None:
        await self.send(token, identity.device_path, command, subfolder)
