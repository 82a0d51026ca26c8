#!/usr/bin/env python3
"""
iotaccess - Main Entry Point

Thin orchestration layer that:
1. Loads configuration (environment, .env, global options)
2. Builds the injected HTTP client and sample context
3. Runs one sample flow and reports its outcome

All credential and resource logic lives in the modules.
"""

import asyncio
import sys
from typing import Awaitable, Callable, Optional, TypeVar

import click
import httpx
import uvicorn
from dotenv import load_dotenv

from .config.provider import EnvConfigProvider
from .errors import IotAccessError
from .logging_config import configure_logging
from .mock_cloud import MockCloud, create_mock_cloud_app
from .modules.api.models import SigningAlgorithm
from .samples import (
    SampleContext,
    download_cloud_storage_file,
    list_device_states,
    publish_pubsub_message,
    send_command_to_iot_device,
)

T = TypeVar("T")

HttpClientFactory = Callable[[float], httpx.AsyncClient]

ALGORITHM = click.Choice([a.value for a in SigningAlgorithm], case_sensitive=False)
PRIVATE_KEY = click.Path(exists=True, dir_okay=False)


def default_http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def run_sample(ctx: click.Context, sample: Callable[[SampleContext], Awaitable[T]]) -> T:
    """
    Run *sample* with a fresh HTTP client and sample context.

    Library errors are reported on stderr and end the process with status 1.
    """
    obj = ctx.obj

    async def run() -> T:
        config_provider = EnvConfigProvider(project_id=obj["project"], region=obj["region"])
        timeout = config_provider.get_endpoint_config().http_timeout
        async with obj["http_client_factory"](timeout) as http_client:
            context = SampleContext.build(config_provider, http_client)
            return await sample(context)

    try:
        return asyncio.run(run())
    except (IotAccessError, ValueError, TimeoutError, OSError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("--project", envvar="GOOGLE_CLOUD_PROJECT", default=None,
              help="Cloud project id (defaults to GOOGLE_CLOUD_PROJECT)")
@click.option("--region", envvar="CLOUD_REGION", default=None,
              help="Cloud region (defaults to CLOUD_REGION or us-central1)")
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.pass_context
def cli(ctx: click.Context, project: Optional[str], region: Optional[str], log_level: str):
    """Access cloud services with device credentials."""
    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["project"] = project
    ctx.obj["region"] = region
    ctx.obj.setdefault("http_client_factory", default_http_client)


@cli.command("publish-pubsub-message")
@click.argument("registry_id")
@click.argument("device_id")
@click.argument("algorithm", type=ALGORITHM)
@click.argument("private_key", type=PRIVATE_KEY)
@click.argument("topic")
@click.option("--message", default="Hello from device", show_default=True)
@click.option("--verify-timeout", type=float, default=30.0, show_default=True,
              help="Seconds to wait for the message on a temporary subscription")
@click.option("--no-verify", is_flag=True, help="Publish without pulling the message back")
@click.pass_context
def publish_pubsub_message_command(
    ctx, registry_id, device_id, algorithm, private_key, topic, message, verify_timeout, no_verify
):
    """Publish a message to a new topic using a device access token."""
    outcome = run_sample(ctx, lambda context: publish_pubsub_message(
        context, registry_id, device_id, algorithm.upper(), private_key, topic,
        message.encode("utf-8"), None if no_verify else verify_timeout
    ))
    click.echo(f"Published message {outcome.message_id} to {outcome.topic}")
    if outcome.observed:
        click.echo("Message observed on subscription")


@cli.command("download-cloud-storage-file")
@click.argument("registry_id")
@click.argument("device_id")
@click.argument("algorithm", type=ALGORITHM)
@click.argument("private_key", type=PRIVATE_KEY)
@click.argument("bucket")
@click.argument("data_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def download_cloud_storage_file_command(
    ctx, registry_id, device_id, algorithm, private_key, bucket, data_path
):
    """Upload a file to a new bucket and download it again using a device access token."""
    data = run_sample(ctx, lambda context: download_cloud_storage_file(
        context, registry_id, device_id, algorithm.upper(), private_key, bucket, data_path
    ))
    click.echo(f"Downloaded {len(data)} bytes from bucket {bucket}; contents match the upload")


@cli.command("send-command-to-iot-device")
@click.argument("registry_id")
@click.argument("device_id")
@click.argument("algorithm", type=ALGORITHM)
@click.argument("private_key", type=PRIVATE_KEY)
@click.argument("service_account_email")
@click.argument("command")
@click.option("--subfolder", default=None, help="Command subfolder on the device")
@click.pass_context
def send_command_to_iot_device_command(
    ctx, registry_id, device_id, algorithm, private_key, service_account_email, command, subfolder
):
    """Send a command to a device using a service-account token minted for the device."""
    run_sample(ctx, lambda context: send_command_to_iot_device(
        context, registry_id, device_id, algorithm.upper(), private_key,
        service_account_email, command, subfolder
    ))
    click.echo(f"Sent command to {device_id}")


@cli.command("list-device-states")
@click.argument("device_name")
@click.option("--num-states", type=click.IntRange(min=1), default=None,
              help="Number of most recent states to list")
@click.pass_context
def list_device_states_command(ctx, device_name, num_states):
    """List recent states of DEVICE_NAME (full resource name) with the management token."""
    states = run_sample(ctx, lambda context: list_device_states(context, device_name, num_states))
    if not states:
        click.echo("No states reported")
    for state in states:
        click.echo(f"{state.update_time}: {state.decoded().decode('utf-8', errors='replace')}")


@cli.command("mock-cloud")
@click.option("--host", "host", default="127.0.0.1")
@click.option("--port", "port", default=8085, type=int)
@click.pass_context
def mock_cloud_command(ctx, host: str, port: int):
    """Serve the in-memory mock cloud for local runs."""
    cloud = MockCloud(
        project_id=ctx.obj["project"] or "test-project",
        region=ctx.obj["region"] or "us-central1",
    )
    click.echo(f"Management access token: {cloud.management_token}")
    uvicorn.run(create_mock_cloud_app(cloud), host=host, port=port)


def main():
    load_dotenv()
    cli(obj={})


if __name__ == "__main__":
    main()
