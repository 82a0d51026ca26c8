from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from fixtures.fake_mqtt import FakeBroker
from iotaccess.errors import InvalidAssertionError, TransportError
from iotaccess.modules.credentials import AssertionBuilder, SignedAssertion
from iotaccess.modules.messaging import MqttBridgeClient

pytestmark = pytest.mark.mqtt


@pytest.fixture
def broker(mock_cloud):
    return FakeBroker(mock_cloud)


@pytest.fixture
def assertion(identity, rsa_private_key):
    return AssertionBuilder().build(identity, rsa_private_key, "RS256")


@pytest.fixture
def bridge(identity, mqtt_config, broker):
    return MqttBridgeClient(identity, mqtt_config, client_factory=broker.client_factory)


@pytest.mark.asyncio
async def test_connect_presents_device_credentials(bridge, broker, device_path, assertion):
    async with bridge:
        await bridge.connect(assertion)
        client = broker.last_client

        assert bridge.is_connected
        assert client.client_id == device_path
        assert client.username == "unused"
        assert client.password == assertion.token
        assert client.tls_enabled
        assert client.address == ("mqtt.test", 8883)

    assert client.disconnected
    assert not client.loop_running
    assert not bridge.is_connected


@pytest.mark.asyncio
async def test_plain_port_skips_tls(identity, mqtt_config, broker, device_path, assertion):
    bridge = MqttBridgeClient(identity, replace(mqtt_config, port=1883), client_factory=broker.client_factory)
    async with bridge:
        await bridge.connect(assertion)
        assert not broker.last_client.tls_enabled


@pytest.mark.asyncio
async def test_unknown_key_is_refused(identity, bridge, broker, device_path, other_rsa_private_key):
    assertion = AssertionBuilder().build(identity, other_rsa_private_key, "RS256")

    with pytest.raises(InvalidAssertionError, match="refused credentials"):
        await bridge.connect(assertion)
    assert not broker.last_client.loop_running
    assert not bridge.is_connected


@pytest.mark.asyncio
async def test_expired_assertion_is_refused_before_connecting(bridge, broker, assertion):
    expired = SignedAssertion(
        token=assertion.token,
        issued_at=assertion.issued_at - timedelta(hours=2),
        expires_at=datetime.now(UTC) - timedelta(seconds=1),
        audience=assertion.audience,
        algorithm=assertion.algorithm
    )
    with pytest.raises(InvalidAssertionError, match="expired"):
        await bridge.connect(expired)
    assert broker.clients == []


@pytest.mark.asyncio
async def test_other_connack_codes_are_transport_errors(bridge, broker, device_path, assertion):
    broker.refuse_code = 3  # server unavailable
    with pytest.raises(TransportError, match="code 3"):
        await bridge.connect(assertion)


@pytest.mark.asyncio
async def test_missing_connack_times_out(bridge, broker, device_path, assertion):
    broker.acknowledge = False
    with pytest.raises(TransportError, match="did not acknowledge"):
        await bridge.connect(assertion)
    assert not broker.last_client.loop_running


@pytest.mark.asyncio
async def test_unreachable_bridge(bridge, broker, assertion):
    broker.unreachable = True
    with pytest.raises(TransportError, match="Connection refused"):
        await bridge.connect(assertion)


@pytest.mark.asyncio
async def test_commands_are_delivered(bridge, broker, mock_cloud, device_path, assertion):
    async with bridge:
        await bridge.connect(assertion)
        async with await bridge.subscribe_commands() as commands:
            assert broker.last_client.subscriptions == {"/devices/test-device/commands/#": 0}
            for listener in mock_cloud.command_listeners[device_path]:
                listener(b"OPEN_DOOR", "doors")
            message = await commands.first(timeout=1)

        assert message.data == b"OPEN_DOOR"
        assert message.source == "/devices/test-device/commands/doors"
        assert broker.last_client.subscriptions == {}
        assert mock_cloud.command_listeners[device_path] == []


@pytest.mark.asyncio
async def test_config_subscription_uses_qos_1(bridge, broker, device_path, assertion):
    async with bridge:
        await bridge.connect(assertion)
        async with await bridge.subscribe_config() as config:
            broker.last_client.deliver("/devices/test-device/config", b'{"interval": 5}', qos=1)
            message = await config.first(timeout=1)

    assert message.attributes == {"qos": "1"}


@pytest.mark.asyncio
async def test_publish_state_is_recorded(bridge, broker, mock_cloud, device_path, assertion):
    async with bridge:
        await bridge.connect(assertion)
        await bridge.publish_state(b"door=closed")

    assert broker.last_client.published == [("/devices/test-device/state", b"door=closed", 1)]
    assert mock_cloud.devices[device_path]["states"][0]["binaryData"] == "ZG9vcj1jbG9zZWQ="


@pytest.mark.asyncio
async def test_publish_event_routes_to_registry_topic(bridge, broker, mock_cloud, rsa_public_pem, assertion):
    topic = "projects/test-project/topics/device-events"
    subscription = "projects/test-project/subscriptions/watch"
    mock_cloud.topics[topic] = {subscription}
    mock_cloud.subscriptions[subscription] = {"topic": topic, "pending": [], "outstanding": {}}
    mock_cloud.register_device("test-registry", "test-device", rsa_public_pem, event_topics=[topic])

    async with bridge:
        await bridge.connect(assertion)
        await bridge.publish_event(b"temp=21", subfolder="climate")

    assert broker.last_client.published == [("/devices/test-device/events/climate", b"temp=21", 1)]
    pending = mock_cloud.subscriptions[subscription]["pending"]
    assert [m["attributes"] for m in pending] == [{"deviceId": "test-device"}]


@pytest.mark.asyncio
async def test_operations_require_connection(bridge):
    with pytest.raises(TransportError, match="not connected"):
        await bridge.publish_event(b"data")


@pytest.mark.asyncio
async def test_expiry_is_checked_against_the_injected_clock(
    identity, mqtt_config, broker, device_path, assertion, clock
):
    bridge = MqttBridgeClient(identity, mqtt_config, client_factory=broker.client_factory, clock=clock)
    clock.advance(minutes=61)

    with pytest.raises(InvalidAssertionError, match="expired"):
        await bridge.connect(assertion)
    assert broker.clients == []


@pytest.mark.asyncio
async def test_reconnect_closes_the_previous_connection(bridge, broker, device_path, assertion):
    async with bridge:
        await bridge.connect(assertion)
        first = broker.last_client
        commands = await bridge.subscribe_commands()

        await bridge.connect(assertion)

        assert broker.last_client is not first
        assert first.disconnected
        assert not first.loop_running
        assert commands.closed
        assert bridge.is_connected
