import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from conftest import SERVICE_ACCOUNT
from iotaccess.errors import (
    ExpiredTokenError,
    InvalidTokenError,
    PermissionDeniedError,
    ProtocolError,
)
from iotaccess.modules.credentials import (
    CLOUD_PLATFORM_SCOPE,
    AssertionBuilder,
    DeviceAccessToken,
    DeviceTokenExchanger,
    ServiceAccountTokenExchanger,
)

MOCK_URL = "http://mock"


async def _device_token(http_client, identity, private_key, clock):
    assertion = AssertionBuilder(clock=clock).build(identity, private_key, "RS256")
    return await DeviceTokenExchanger(http_client, MOCK_URL, clock=clock).exchange(assertion, identity)


def _static_device_token(clock, lifetime=timedelta(hours=1)):
    return DeviceAccessToken(
        value="device-token",
        expires_at=clock.now + lifetime,
        scopes=(CLOUD_PLATFORM_SCOPE,)
    )


@pytest.mark.asyncio
async def test_permitted_device_gets_service_account_token(
    http_client, mock_cloud, device_path, identity, rsa_private_key, clock
):
    mock_cloud.allow_impersonation(SERVICE_ACCOUNT, device_path)
    device_token = await _device_token(http_client, identity, rsa_private_key, clock)

    exchanger = ServiceAccountTokenExchanger(http_client, MOCK_URL, clock=clock)
    token = await exchanger.exchange(device_token, SERVICE_ACCOUNT, lifetime_seconds=1800)

    assert token.service_account == SERVICE_ACCOUNT
    assert token.value != device_token.value
    # expireTime is whole seconds on the wire
    expected = clock.now + timedelta(seconds=1800)
    assert abs((token.expires_at - expected).total_seconds()) < 1
    assert mock_cloud.tokens[token.value]["principal"] == SERVICE_ACCOUNT


@pytest.mark.asyncio
async def test_impersonation_denied(http_client, device_path, identity, rsa_private_key, clock):
    device_token = await _device_token(http_client, identity, rsa_private_key, clock)

    with pytest.raises(PermissionDeniedError) as excinfo:
        await ServiceAccountTokenExchanger(http_client, MOCK_URL, clock=clock).exchange(
            device_token, SERVICE_ACCOUNT
        )
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_expired_device_token_is_refused_locally(clock):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    device_token = _static_device_token(clock, lifetime=timedelta(minutes=1))
    clock.advance(minutes=2)

    with pytest.raises(ExpiredTokenError):
        await ServiceAccountTokenExchanger(client, MOCK_URL, clock=clock).exchange(device_token, SERVICE_ACCOUNT)
    assert seen == []


@pytest.mark.asyncio
async def test_unknown_device_token_is_invalid(http_client, clock):
    with pytest.raises(InvalidTokenError):
        await ServiceAccountTokenExchanger(http_client, MOCK_URL, clock=clock).exchange(
            _static_device_token(clock), SERVICE_ACCOUNT
        )


@pytest.mark.asyncio
async def test_request_shape(clock):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"accessToken": "sa-token", "expireTime": "2030-01-01T00:00:00Z"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    token = await ServiceAccountTokenExchanger(client, MOCK_URL, clock=clock).exchange(
        _static_device_token(clock), SERVICE_ACCOUNT, lifetime_seconds=600
    )

    request = seen[0]
    assert request.url.path == f"/v1/projects/-/serviceAccounts/{SERVICE_ACCOUNT}:generateAccessToken"
    assert request.headers["Authorization"] == "Bearer device-token"
    assert json.loads(request.content) == {"scope": [CLOUD_PLATFORM_SCOPE], "lifetime": "600s"}
    assert token.expires_at == datetime(2030, 1, 1, tzinfo=UTC)


@pytest.mark.asyncio
async def test_oauth_shaped_response_is_accepted(clock):
    def handler(request):
        return httpx.Response(200, json={"access_token": "sa-token", "expires_in": 900})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    token = await ServiceAccountTokenExchanger(client, MOCK_URL, clock=clock).exchange(
        _static_device_token(clock), SERVICE_ACCOUNT
    )
    assert token.value == "sa-token"
    assert token.expires_at == clock.now + timedelta(seconds=900)


@pytest.mark.asyncio
async def test_response_without_expiry_is_protocol_error(clock):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"accessToken": "sa-token"}))
    )
    with pytest.raises(ProtocolError):
        await ServiceAccountTokenExchanger(client, MOCK_URL, clock=clock).exchange(
            _static_device_token(clock), SERVICE_ACCOUNT
        )
