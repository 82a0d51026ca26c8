"""
MQTT bridge client for devices.

The bridge authenticates a device by its connection: the client id is the
device resource name, the username is ignored (but must be non-empty) and
the password carries the signed assertion. paho-mqtt runs its network loop
on a background thread; messages are handed to asyncio subscriptions.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Optional, Union

import paho.mqtt.client as mqtt

from ...config.provider import MqttConfig
from ...errors import InvalidAssertionError, TransportError
from ..credentials.tokens import DeviceIdentity, SignedAssertion
from .subscription import QueueSubscription, ReceivedMessage

logger = logging.getLogger(__name__)

# CONNACK codes meaning the credentials were refused (MQTT 3.1.1 and the
# MQTT 5 reason codes paho maps them to)
_AUTH_REFUSED = {4, 5, 134, 135}

ClientFactory = Callable[[str], Any]


def default_client_factory(client_id: str) -> mqtt.Client:
    """Create a paho client speaking MQTT 3.1.1."""
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


def _code(reason_code: Any) -> int:
    return int(getattr(reason_code, "value", reason_code))


class MqttBridgeClient:
    """
    Device-side connection to the MQTT bridge.

    Usage:
        bridge = MqttBridgeClient(identity, mqtt_config)
        await bridge.connect(assertion)
        async with await bridge.subscribe_commands() as commands:
            async for message in commands.messages(timeout=30):
                ...
        await bridge.disconnect()
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        config: MqttConfig,
        client_factory: Optional[ClientFactory] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.identity = identity
        self.config = config
        self._client_factory = client_factory or default_client_factory
        self._clock = clock or (lambda: datetime.now(UTC))
        self._client = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected: Optional[asyncio.Future] = None
        self._subscriptions: Dict[str, QueueSubscription] = {}

    # Topics

    @property
    def events_topic(self) -> str:
        return f"/devices/{self.identity.device_id}/events"

    @property
    def state_topic(self) -> str:
        return f"/devices/{self.identity.device_id}/state"

    @property
    def config_topic(self) -> str:
        return f"/devices/{self.identity.device_id}/config"

    @property
    def commands_topic(self) -> str:
        return f"/devices/{self.identity.device_id}/commands/#"

    @property
    def is_connected(self) -> bool:
        if self._client is None or self._connected is None or not self._connected.done():
            return False
        return self._connected.exception() is None

    # Lifecycle

    async def __aenter__(self) -> "MqttBridgeClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def connect(self, assertion: SignedAssertion) -> None:
        """
        Connect using *assertion* as the password.

        An existing connection is closed first, together with its
        subscriptions.

        Raises:
            InvalidAssertionError: Assertion expired, or the bridge refused it
            TransportError: Network failure or connect timeout
        """
        if assertion.is_expired(self._clock()):
            raise InvalidAssertionError("Cannot connect with an expired assertion")
        if self._client is not None:
            await self.disconnect()

        self._loop = asyncio.get_running_loop()
        self._connected = self._loop.create_future()

        client = self._client_factory(self.identity.device_path)
        client.username_pw_set(username="unused", password=assertion.token)
        if self.config.use_tls:
            client.tls_set(ca_certs=self.config.ca_certs)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        self._client = client

        logger.info(
            "Connecting %s to MQTT bridge %s:%d",
            self.identity.device_path, self.config.host, self.config.port
        )
        try:
            client.connect_async(self.config.host, self.config.port, keepalive=self.config.keepalive)
            client.loop_start()
        except (OSError, ValueError) as e:
            self._client = None
            raise TransportError(f"MQTT connect to {self.config.host} failed: {e}") from e

        try:
            await asyncio.wait_for(asyncio.shield(self._connected), self.config.connect_timeout)
        except asyncio.TimeoutError as e:
            self._teardown()
            raise TransportError(
                f"MQTT bridge did not acknowledge connect within {self.config.connect_timeout}s"
            ) from e
        except (InvalidAssertionError, TransportError):
            self._teardown()
            raise

    async def disconnect(self) -> None:
        """Close every subscription and the connection."""
        for subscription in list(self._subscriptions.values()):
            await subscription.close()
        if self._client is not None:
            self._client.disconnect()
            self._teardown()
            logger.info("Disconnected %s from MQTT bridge", self.identity.device_path)

    def _teardown(self) -> None:
        if self._client is not None:
            self._client.loop_stop()
        self._client = None

    # paho callbacks (network thread)

    @staticmethod
    def _resolve_connect(future: Optional[asyncio.Future], error: Optional[Exception]) -> None:
        if future is None or future.done():
            return
        if error is None:
            future.set_result(True)
        else:
            future.set_exception(error)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        code = _code(reason_code)
        error: Optional[Exception] = None
        if code in _AUTH_REFUSED:
            error = InvalidAssertionError(f"MQTT bridge refused credentials (code {code})")
        elif code != 0:
            error = TransportError(f"MQTT bridge refused connection (code {code})")
        else:
            logger.info("Device %s connected", self.identity.device_id)
        self._loop.call_soon_threadsafe(self._resolve_connect, self._connected, error)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        code = _code(reason_code)
        if code != 0:
            logger.warning("Device %s disconnected (code %d)", self.identity.device_id, code)
        if self._loop is not None:
            self._loop.call_soon_threadsafe(
                self._resolve_connect,
                self._connected,
                TransportError(f"MQTT connection closed before acknowledgement (code {code})")
            )

    def _on_message(self, client, userdata, msg) -> None:
        message = ReceivedMessage(
            source=msg.topic,
            data=bytes(msg.payload),
            attributes={"qos": str(msg.qos)},
        )
        for topic_filter, subscription in list(self._subscriptions.items()):
            if mqtt.topic_matches_sub(topic_filter, msg.topic):
                subscription.deliver(message)

    # Operations

    def _require_client(self):
        if self._client is None:
            raise TransportError("MQTT bridge client is not connected")
        return self._client

    async def subscribe(self, topic: str, qos: int = 0) -> QueueSubscription:
        """Subscribe to *topic*; closing the subscription unsubscribes."""
        client = self._require_client()
        result, _ = client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"Subscribe to {topic} failed: {mqtt.error_string(result)}")

        def unsubscribe() -> None:
            self._subscriptions.pop(topic, None)
            if self._client is not None:
                self._client.unsubscribe(topic)

        subscription = QueueSubscription(topic, on_close=unsubscribe)
        self._subscriptions[topic] = subscription
        logger.debug("Subscribed to %s (qos %d)", topic, qos)
        return subscription

    async def subscribe_commands(self) -> QueueSubscription:
        """Subscribe to every command sent to the device."""
        return await self.subscribe(self.commands_topic, qos=0)

    async def subscribe_config(self) -> QueueSubscription:
        """Subscribe to configuration updates."""
        return await self.subscribe(self.config_topic, qos=1)

    async def publish(self, topic: str, payload: Union[bytes, str], qos: int = 1) -> None:
        client = self._require_client()
        info = client.publish(topic, payload, qos=qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")
        if qos > 0:
            await asyncio.to_thread(info.wait_for_publish, self.config.connect_timeout)

    async def publish_event(
        self,
        payload: Union[bytes, str],
        subfolder: Optional[str] = None
    ) -> None:
        """Publish telemetry, optionally into an events subfolder."""
        topic = f"{self.events_topic}/{subfolder}" if subfolder else self.events_topic
        await self.publish(topic, payload, qos=1)

    async def publish_state(self, payload: Union[bytes, str]) -> None:
        await self.publish(self.state_topic, payload, qos=1)
