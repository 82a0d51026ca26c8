import base64
import json
from datetime import timedelta

import httpx
import pytest

from iotaccess.errors import (
    ExpiredTokenError,
    InvalidTokenError,
    PermissionDeniedError,
    ProtocolError,
    TransportError,
)
from iotaccess.modules.credentials import (
    PUBSUB_SCOPE,
    STORAGE_SCOPE,
    BearerToken,
    CLOUD_PLATFORM_SCOPE,
)
from iotaccess.modules.resources import CommandResource, PubSubResource, StorageResource

MOCK_URL = "http://mock"
PROJECT_ID = "test-project"


def _token(mock_cloud, clock, scopes, lifetime=3600, kind="device", principal="device"):
    value = mock_cloud.issue_token(kind, principal, list(scopes), lifetime)
    return BearerToken(value=value, expires_at=clock.now + timedelta(seconds=lifetime), scopes=tuple(scopes))


def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# Storage


@pytest.mark.asyncio
async def test_storage_round_trip(http_client, mock_cloud, clock):
    token = _token(mock_cloud, clock, [STORAGE_SCOPE])
    storage = StorageResource(http_client, MOCK_URL, clock=clock)

    await storage.create_bucket(token, PROJECT_ID, "device-bucket")
    uploaded = await storage.upload_object(token, "device-bucket", "dir/data.bin", b"\x00\x01payload")
    assert uploaded.size == "9"
    assert await storage.download_object(token, "device-bucket", "dir/data.bin") == b"\x00\x01payload"

    await storage.delete_object(token, "device-bucket", "dir/data.bin")
    await storage.delete_bucket(token, "device-bucket")
    assert mock_cloud.buckets == {}


@pytest.mark.asyncio
async def test_storage_missing_object_is_protocol_error(http_client, mock_cloud, clock):
    token = _token(mock_cloud, clock, [STORAGE_SCOPE])
    storage = StorageResource(http_client, MOCK_URL, clock=clock)
    await storage.create_bucket(token, PROJECT_ID, "device-bucket")

    with pytest.raises(ProtocolError) as excinfo:
        await storage.download_object(token, "device-bucket", "missing")
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_wrong_scope_is_permission_denied(http_client, mock_cloud, clock):
    token = _token(mock_cloud, clock, [PUBSUB_SCOPE])

    with pytest.raises(PermissionDeniedError):
        await StorageResource(http_client, MOCK_URL, clock=clock).create_bucket(token, PROJECT_ID, "bucket")


# Token lifetime


@pytest.mark.asyncio
async def test_token_authorizes_until_expiry(http_client, mock_cloud, clock):
    token = _token(mock_cloud, clock, [PUBSUB_SCOPE], lifetime=60)
    pubsub = PubSubResource(http_client, MOCK_URL, clock=clock)

    await pubsub.create_topic(token, PROJECT_ID, "before-expiry")
    clock.advance(seconds=61)

    with pytest.raises(ExpiredTokenError):
        await pubsub.create_topic(token, PROJECT_ID, "after-expiry")
    assert f"projects/{PROJECT_ID}/topics/after-expiry" not in mock_cloud.topics


@pytest.mark.asyncio
async def test_server_side_expiry_is_expired_token_error(http_client, mock_cloud, clock):
    """The server's clock can run ahead of the local one."""
    token = _token(mock_cloud, clock, [PUBSUB_SCOPE], lifetime=60)
    local_view = BearerToken(value=token.value, expires_at=clock.now + timedelta(hours=1))
    clock.advance(seconds=61)

    with pytest.raises(ExpiredTokenError) as excinfo:
        await PubSubResource(http_client, MOCK_URL).create_topic(local_view, PROJECT_ID, "late")
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_unknown_token_is_invalid(http_client, clock):
    token = BearerToken(value="forged", expires_at=clock.now + timedelta(hours=1))

    with pytest.raises(InvalidTokenError):
        await PubSubResource(http_client, MOCK_URL, clock=clock).create_topic(token, PROJECT_ID, "topic")


@pytest.mark.asyncio
async def test_5xx_is_transport_error(clock):
    client = _mock_client(lambda request: httpx.Response(502, json={"error": {"message": "bad gateway"}}))
    token = BearerToken(value="t", expires_at=clock.now + timedelta(hours=1))

    with pytest.raises(TransportError, match="bad gateway"):
        await StorageResource(client, MOCK_URL, clock=clock).delete_bucket(token, "bucket")


# Pub/Sub


@pytest.mark.asyncio
async def test_publish_and_pull(http_client, mock_cloud, clock):
    token = _token(mock_cloud, clock, [PUBSUB_SCOPE])
    pubsub = PubSubResource(http_client, MOCK_URL, clock=clock)

    await pubsub.create_topic(token, PROJECT_ID, "telemetry")
    await pubsub.create_subscription(token, PROJECT_ID, "telemetry-sub", "telemetry")
    message_ids = await pubsub.publish(token, PROJECT_ID, "telemetry", b"hello", {"origin": "test"})

    received = await pubsub.pull(token, PROJECT_ID, "telemetry-sub")
    assert [r.message.message_id for r in received] == message_ids
    assert received[0].message.decoded() == b"hello"
    assert received[0].message.attributes == {"origin": "test"}

    await pubsub.acknowledge(token, PROJECT_ID, "telemetry-sub", [r.ack_id for r in received])
    assert await pubsub.pull(token, PROJECT_ID, "telemetry-sub") == []


@pytest.mark.asyncio
async def test_publish_request_shape(clock):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"messageIds": ["42"]})

    token = BearerToken(value="t", expires_at=clock.now + timedelta(hours=1))
    ids = await PubSubResource(_mock_client(handler), MOCK_URL, clock=clock).publish(
        token, PROJECT_ID, "topic", b"data"
    )

    assert ids == ["42"]
    assert seen[0].url.path == f"/v1/projects/{PROJECT_ID}/topics/topic:publish"
    assert seen[0].headers["Authorization"] == "Bearer t"
    assert json.loads(seen[0].content) == {"messages": [{"data": base64.b64encode(b"data").decode()}]}


@pytest.mark.asyncio
async def test_pull_subscription_observes_message(http_client, mock_cloud, clock):
    token = _token(mock_cloud, clock, [PUBSUB_SCOPE])
    pubsub = PubSubResource(http_client, MOCK_URL, clock=clock)
    await pubsub.create_topic(token, PROJECT_ID, "events")
    await pubsub.create_subscription(token, PROJECT_ID, "events-sub", "events")

    async with pubsub.subscribe(token, PROJECT_ID, "events-sub", poll_interval=0.01, delete_on_close=True) as sub:
        await pubsub.publish(token, PROJECT_ID, "events", b"one")
        await pubsub.publish(token, PROJECT_ID, "events", b"two")
        message = await sub.first(lambda m: m.data == b"two", timeout=2)

    assert message.source == f"projects/{PROJECT_ID}/subscriptions/events-sub"
    assert f"projects/{PROJECT_ID}/subscriptions/events-sub" not in mock_cloud.subscriptions


@pytest.mark.asyncio
async def test_stopping_early_keeps_the_rest_of_a_batch(http_client, mock_cloud, clock):
    token = _token(mock_cloud, clock, [PUBSUB_SCOPE])
    pubsub = PubSubResource(http_client, MOCK_URL, clock=clock)
    await pubsub.create_topic(token, PROJECT_ID, "batch")
    await pubsub.create_subscription(token, PROJECT_ID, "batch-sub", "batch")
    for i in range(3):
        await pubsub.publish(token, PROJECT_ID, "batch", str(i).encode())

    seen = []
    async with pubsub.subscribe(token, PROJECT_ID, "batch-sub", poll_interval=0.01) as sub:
        async for message in sub.messages(timeout=2, max_messages=1):
            seen.append(message.data)
        async for message in sub.messages(timeout=2, max_messages=2):
            seen.append(message.data)

    assert seen == [b"0", b"1", b"2"]
    # Only what was handed out is acknowledged
    assert mock_cloud.subscriptions[f"projects/{PROJECT_ID}/subscriptions/batch-sub"]["outstanding"] == {}


@pytest.mark.asyncio
async def test_pull_subscription_times_out(http_client, mock_cloud, clock):
    token = _token(mock_cloud, clock, [PUBSUB_SCOPE])
    pubsub = PubSubResource(http_client, MOCK_URL, clock=clock)
    await pubsub.create_topic(token, PROJECT_ID, "quiet")
    await pubsub.create_subscription(token, PROJECT_ID, "quiet-sub", "quiet")

    async with pubsub.subscribe(token, PROJECT_ID, "quiet-sub", poll_interval=0.01) as sub:
        with pytest.raises(TimeoutError):
            await sub.first(timeout=0.1)
    # Not deleted unless asked to
    assert f"projects/{PROJECT_ID}/subscriptions/quiet-sub" in mock_cloud.subscriptions


# Commands


@pytest.mark.asyncio
async def test_device_token_cannot_send_commands(http_client, mock_cloud, device_path, identity, clock):
    token = _token(mock_cloud, clock, [CLOUD_PLATFORM_SCOPE], principal=device_path)

    with pytest.raises(PermissionDeniedError):
        await CommandResource(http_client, MOCK_URL, clock=clock).send_command(token, identity, "OPEN_DOOR")


@pytest.mark.asyncio
async def test_command_reaches_listener(http_client, mock_cloud, device_path, identity, clock):
    received = []
    mock_cloud.add_command_listener(device_path, lambda payload, subfolder: received.append((payload, subfolder)))
    token = _token(mock_cloud, clock, [CLOUD_PLATFORM_SCOPE], kind="service_account", principal="sa")

    await CommandResource(http_client, MOCK_URL, clock=clock).send_command(token, identity, "OPEN_DOOR", "doors")
    assert received == [(b"OPEN_DOOR", "doors")]


@pytest.mark.asyncio
async def test_command_to_disconnected_device_fails(http_client, mock_cloud, device_path, identity, clock):
    token = _token(mock_cloud, clock, [CLOUD_PLATFORM_SCOPE], kind="service_account", principal="sa")

    with pytest.raises(ProtocolError, match="not connected"):
        await CommandResource(http_client, MOCK_URL, clock=clock).send_command(token, identity, b"\x01")
