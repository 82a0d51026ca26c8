"""
End-to-end device access samples.

Each sample runs one AccessTokenFlow: build a signed assertion, exchange it
for a device access token, optionally exchange that for a service-account
token, then call one downstream service with the result.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import httpx

from .config.provider import ConfigProvider
from .errors import ProtocolError
from .modules.api.models import DeviceState
from .modules.credentials import (
    CLOUD_PLATFORM_SCOPE,
    PUBSUB_SCOPE,
    STORAGE_SCOPE,
    CredentialsFactory,
    static_token,
)
from .modules.credentials.assertion import KeySource
from .modules.registry import DeviceManagerClient
from .modules.resources import CommandResource, PubSubResource, StorageResource

logger = logging.getLogger(__name__)


@dataclass
class SampleContext:
    """Every collaborator the samples need, constructed up front."""
    credentials: CredentialsFactory
    storage: StorageResource
    pubsub: PubSubResource
    commands: CommandResource
    project_id: str
    device_manager: Optional[DeviceManagerClient] = None

    @classmethod
    def build(
        cls,
        config_provider: ConfigProvider,
        http_client: httpx.AsyncClient,
        clock: Optional[Callable[[], datetime]] = None
    ) -> "SampleContext":
        project = config_provider.get_project_config()
        endpoints = config_provider.get_endpoint_config()
        management_token = config_provider.get_credential_config().management_access_token

        device_manager = None
        if management_token:
            device_manager = DeviceManagerClient(
                http_client, endpoints.cloudiot_url, static_token(management_token), clock=clock
            )

        return cls(
            credentials=CredentialsFactory.build(config_provider, http_client, clock=clock),
            storage=StorageResource(http_client, endpoints.storage_url, clock=clock),
            pubsub=PubSubResource(http_client, endpoints.pubsub_url, clock=clock),
            commands=CommandResource(http_client, endpoints.cloudiot_url, clock=clock),
            project_id=project.project_id,
            device_manager=device_manager,
        )


@dataclass
class PublishOutcome:
    topic: str
    message_id: str
    observed: bool


async def _cleanup(step: Callable[[], Awaitable[None]], what: str) -> None:
    try:
        await step()
    except Exception:
        # Cleanup must not hide the error that got us here
        logger.warning("Cleanup failed: %s", what, exc_info=True)


async def publish_pubsub_message(
    context: SampleContext,
    registry_id: str,
    device_id: str,
    algorithm: str,
    private_key: KeySource,
    topic: str,
    message: bytes = b"Hello from device",
    verify_timeout: Optional[float] = 30.0
) -> PublishOutcome:
    """
    Create *topic* with a device token, publish one message, delete the topic.

    With *verify_timeout* set, a temporary subscription is created first and
    the message must be pulled back within that many seconds.
    """
    flow = context.credentials.flow(registry_id, device_id, private_key, algorithm)
    flow.build_assertion()
    await flow.obtain_device_token([PUBSUB_SCOPE])

    pubsub = context.pubsub
    project_id = context.project_id
    subscription_id = f"{topic}-verify-{uuid.uuid4().hex[:8]}"

    async def run(token) -> PublishOutcome:
        await pubsub.create_topic(token, project_id, topic)
        try:
            if verify_timeout is None:
                message_ids = await pubsub.publish(token, project_id, topic, message)
                return PublishOutcome(topic=topic, message_id=message_ids[0], observed=False)

            await pubsub.create_subscription(token, project_id, subscription_id, topic)
            async with pubsub.subscribe(token, project_id, subscription_id, delete_on_close=True) as sub:
                message_ids = await pubsub.publish(token, project_id, topic, message)
                received = await sub.first(
                    lambda m: m.message_id == message_ids[0], timeout=verify_timeout
                )
                logger.info("Observed message %s on %s", received.message_id, sub.name)
                return PublishOutcome(topic=topic, message_id=message_ids[0], observed=True)
        finally:
            await _cleanup(lambda: pubsub.delete_topic(token, project_id, topic), f"delete topic {topic}")

    return await flow.invoke(run)


async def download_cloud_storage_file(
    context: SampleContext,
    registry_id: str,
    device_id: str,
    algorithm: str,
    private_key: KeySource,
    bucket: str,
    data_path: str
) -> bytes:
    """
    Create *bucket*, upload *data_path*, download it again and compare.

    The bucket and object are deleted afterwards.

    Raises:
        ProtocolError: Downloaded bytes differ from the uploaded file
    """
    data = Path(data_path).read_bytes()
    object_name = Path(data_path).name

    flow = context.credentials.flow(registry_id, device_id, private_key, algorithm)
    flow.build_assertion()
    await flow.obtain_device_token([STORAGE_SCOPE])

    storage = context.storage

    async def run(token) -> bytes:
        await storage.create_bucket(token, context.project_id, bucket)
        try:
            await storage.upload_object(token, bucket, object_name, data)
            try:
                downloaded = await storage.download_object(token, bucket, object_name)
            finally:
                await _cleanup(
                    lambda: storage.delete_object(token, bucket, object_name),
                    f"delete object {bucket}/{object_name}"
                )
        finally:
            await _cleanup(lambda: storage.delete_bucket(token, bucket), f"delete bucket {bucket}")

        if downloaded != data:
            raise ProtocolError(
                f"Downloaded {len(downloaded)} bytes from {bucket}/{object_name}, "
                f"expected {len(data)} matching the upload"
            )
        return downloaded

    return await flow.invoke(run)


async def send_command_to_iot_device(
    context: SampleContext,
    registry_id: str,
    device_id: str,
    algorithm: str,
    private_key: KeySource,
    service_account_email: str,
    command: str,
    subfolder: Optional[str] = None
) -> None:
    """
    Exchange the device token for a service-account token and use it to send
    *command* to the device.
    """
    flow = context.credentials.flow(registry_id, device_id, private_key, algorithm)
    flow.build_assertion()
    await flow.obtain_device_token([CLOUD_PLATFORM_SCOPE])
    await flow.obtain_service_account_token(
        service_account_email,
        [CLOUD_PLATFORM_SCOPE],
        context.credentials.service_account_lifetime_seconds,
    )

    async def run(token) -> None:
        await context.commands.send_command(token, flow.identity, command, subfolder)

    await flow.invoke(run)


async def list_device_states(
    context: SampleContext,
    device_name: str,
    num_states: Optional[int] = None
) -> List[DeviceState]:
    """List recent device states with the management credential."""
    if context.device_manager is None:
        raise ValueError(
            "MANAGEMENT_ACCESS_TOKEN environment variable is required to call the device manager."
        )
    states = await context.device_manager.list_device_states(device_name, num_states)
    logger.info("Device %s has %d state(s)", device_name, len(states))
    return states
