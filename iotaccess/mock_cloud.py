"""
Mock IoT cloud for testing.

Simulates the request/response contracts of the remote services a device
talks to: the device token endpoint, IAM credentials impersonation, the
device manager, Pub/Sub and object storage. Everything lives in memory.

Device assertions are verified with the public keys registered for the
device, so a flow run against this app exercises real signatures.
"""

import base64
import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from fastapi import FastAPI, Header, HTTPException, Query, Request, Response

from .modules.api.models import (
    AcknowledgeRequest,
    DeviceModel,
    DeviceRegistryModel,
    DeviceTokenRequest,
    PublishRequest,
    PullRequest,
    SendCommandRequest,
    ServiceAccountTokenRequest,
    SubscriptionModel,
)
from .modules.credentials import CLOUD_PLATFORM_SCOPE, PUBSUB_SCOPE, STORAGE_SCOPE

logger = logging.getLogger(__name__)

# Longest assertion validity the token endpoint accepts
MAX_ASSERTION_LIFETIME = timedelta(hours=24)
# States retained per device
MAX_DEVICE_STATES = 10

CommandListener = Callable[[bytes, Optional[str]], None]

_EXPIRED_CHALLENGE = 'Bearer error="invalid_token", error_description="The access token expired"'


def _load_public_key(pem: str):
    data = pem.encode("utf-8")
    if b"BEGIN CERTIFICATE" in data:
        return x509.load_pem_x509_certificate(data).public_key()
    return serialization.load_pem_public_key(data)


def _key_fits(key, algorithm: str) -> bool:
    if algorithm == "RS256":
        return isinstance(key, rsa.RSAPublicKey)
    if algorithm == "ES256":
        return isinstance(key, ec.EllipticCurvePublicKey)
    return False


class MockCloud:
    """
    In-memory state behind the mock cloud app.

    Tests drive it directly (register devices, grant impersonation, listen
    for commands) and reach the HTTP side through ``create_mock_cloud_app``.
    """

    def __init__(
        self,
        project_id: str = "test-project",
        region: str = "us-central1",
        device_token_lifetime: int = 3600,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.project_id = project_id
        self.region = region
        self.device_token_lifetime = device_token_lifetime
        self._clock = clock or (lambda: datetime.now(UTC))

        self.registries: Dict[str, dict] = {}
        self.devices: Dict[str, dict] = {}
        self.tokens: Dict[str, dict] = {}
        self.impersonation: Dict[str, Set[str]] = {}
        self.buckets: Dict[str, Dict[str, dict]] = {}
        self.topics: Dict[str, Set[str]] = {}
        self.subscriptions: Dict[str, dict] = {}
        self.command_listeners: Dict[str, List[CommandListener]] = {}
        self._next_id = 1000

        # Ambient credential for the device manager; never expires
        self.management_token = self.issue_token("management", "admin", [CLOUD_PLATFORM_SCOPE], None)

    def now(self) -> datetime:
        return self._clock()

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    # Names

    def registry_path(self, registry_id: str, region: Optional[str] = None) -> str:
        return f"projects/{self.project_id}/locations/{region or self.region}/registries/{registry_id}"

    def device_path(self, registry_id: str, device_id: str, region: Optional[str] = None) -> str:
        return f"{self.registry_path(registry_id, region)}/devices/{device_id}"

    # Provisioning

    def create_registry(self, registry_path: str, event_topics: Optional[List[str]] = None) -> dict:
        if registry_path in self.registries:
            raise HTTPException(status_code=409, detail=f"Registry {registry_path} already exists")
        registry = {
            "id": registry_path.rsplit("/", 1)[-1],
            "name": registry_path,
            "eventNotificationConfigs": [{"pubsubTopicName": t} for t in event_topics or []],
        }
        self.registries[registry_path] = registry
        return registry

    def create_device(self, registry_path: str, device_id: str, public_keys: List[str]) -> dict:
        if registry_path not in self.registries:
            raise HTTPException(status_code=404, detail=f"Registry {registry_path} not found")
        path = f"{registry_path}/devices/{device_id}"
        if path in self.devices:
            raise HTTPException(status_code=409, detail=f"Device {path} already exists")
        try:
            keys = [_load_public_key(pem) for pem in public_keys]
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid public key: {e}")

        device = {
            "id": device_id,
            "name": path,
            "numId": self._new_id(),
            "public_keys": keys,
            "blocked": False,
            "states": [],
        }
        self.devices[path] = device
        return device

    def register_device(
        self,
        registry_id: str,
        device_id: str,
        public_key_pem: str,
        event_topics: Optional[List[str]] = None
    ) -> str:
        """Create the registry if needed and add a device; returns the device path."""
        registry_path = self.registry_path(registry_id)
        if registry_path not in self.registries:
            self.create_registry(registry_path, event_topics)
        return self.create_device(registry_path, device_id, [public_key_pem])["name"]

    def allow_impersonation(self, service_account: str, principal: str) -> None:
        """Let *principal* (a device path) mint tokens for *service_account*."""
        self.impersonation.setdefault(service_account, set()).add(principal)

    # Tokens

    def issue_token(
        self,
        kind: str,
        principal: str,
        scopes: List[str],
        lifetime: Optional[int]
    ) -> str:
        token = secrets.token_urlsafe(32)
        self.tokens[token] = {
            "kind": kind,
            "principal": principal,
            "scopes": set(scopes),
            "expires_at": None if lifetime is None else self.now() + timedelta(seconds=lifetime),
        }
        return token

    def authenticate(self, authorization: Optional[str], *accepted_scopes: str) -> dict:
        """Resolve a bearer header to its token record or raise 401/403."""
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Missing or invalid authorization header")
        record = self.tokens.get(authorization[7:])
        if record is None:
            raise HTTPException(status_code=401, detail="Invalid access token")
        if record["expires_at"] is not None and self.now() >= record["expires_at"]:
            raise HTTPException(
                status_code=401,
                detail="Access token expired",
                headers={"WWW-Authenticate": _EXPIRED_CHALLENGE}
            )
        granted = record["scopes"]
        if CLOUD_PLATFORM_SCOPE not in granted and not granted.intersection(accepted_scopes):
            raise HTTPException(status_code=403, detail="Request had insufficient authentication scopes")
        return record

    def require_manager(self, authorization: Optional[str]) -> dict:
        """Device manager calls need a service account or management token."""
        record = self.authenticate(authorization, CLOUD_PLATFORM_SCOPE)
        if record["kind"] == "device":
            raise HTTPException(
                status_code=403,
                detail=f"Permission denied for device principal {record['principal']}"
            )
        return record

    def verify_device_assertion(self, device_path: str, assertion: str) -> dict:
        """
        Check *assertion* against the keys registered for *device_path*.

        Raises HTTPException 400 for a bad assertion and 403 for an unknown
        or blocked device.
        """
        device = self.devices.get(device_path)
        if device is None or device["blocked"]:
            raise HTTPException(status_code=403, detail=f"Device {device_path} is not allowed to connect")

        try:
            algorithm = jwt.get_unverified_header(assertion).get("alg")
        except jwt.InvalidTokenError as e:
            raise HTTPException(status_code=400, detail=f"Malformed assertion: {e}")

        claims = None
        for key in device["public_keys"]:
            if not _key_fits(key, algorithm):
                continue
            try:
                claims = jwt.decode(
                    assertion,
                    key,
                    algorithms=[algorithm],
                    audience=self.project_id,
                    options={"verify_exp": False, "verify_iat": False, "require": ["iat", "exp", "aud"]}
                )
                break
            except jwt.InvalidTokenError:
                continue
        if claims is None:
            raise HTTPException(status_code=400, detail="Assertion signature or audience is invalid")

        # Expiry is judged on the mock clock, not wall time
        now = self.now().timestamp()
        if claims["exp"] <= now:
            raise HTTPException(status_code=400, detail="Assertion expired")
        if claims["exp"] - claims["iat"] > MAX_ASSERTION_LIFETIME.total_seconds():
            raise HTTPException(status_code=400, detail="Assertion lifetime exceeds 24 hours")
        return claims

    # Device bridge side

    def add_command_listener(self, device_path: str, listener: CommandListener) -> Callable[[], None]:
        """Register a connected device's command sink; returns a remover."""
        listeners = self.command_listeners.setdefault(device_path, [])
        listeners.append(listener)

        def remove() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return remove

    def report_state(self, device_path: str, data: bytes) -> None:
        device = self.devices.get(device_path)
        if device is None:
            raise KeyError(device_path)
        device["states"].insert(0, {
            "updateTime": self.now().isoformat(),
            "binaryData": base64.b64encode(data).decode("ascii"),
        })
        del device["states"][MAX_DEVICE_STATES:]

    def publish_event(self, device_path: str, data: bytes, subfolder: Optional[str] = None) -> Optional[str]:
        """Route device telemetry to the first matching registry topic."""
        registry = self.registries.get(device_path.rsplit("/devices/", 1)[0])
        if registry is None:
            return None
        for config in registry["eventNotificationConfigs"]:
            match = config.get("subfolderMatches")
            if match is None or match == subfolder:
                topic = config["pubsubTopicName"]
                if topic in self.topics:
                    return self.publish(topic, data, {"deviceId": device_path.rsplit("/", 1)[-1]})
                return None
        return None

    # Pub/Sub

    def publish(self, topic_path: str, data: bytes, attributes: Optional[Dict[str, str]] = None) -> str:
        message_id = self._new_id()
        message = {
            "data": base64.b64encode(data).decode("ascii"),
            "attributes": attributes or {},
            "messageId": message_id,
            "publishTime": self.now().isoformat(),
        }
        for subscription in self.topics[topic_path]:
            self.subscriptions[subscription]["pending"].append(dict(message))
        return message_id


def create_mock_cloud_app(cloud: Optional[MockCloud] = None) -> FastAPI:
    """Create a FastAPI app serving the mock cloud endpoints."""
    app = FastAPI(title="Mock IoT Cloud")
    cloud = cloud or MockCloud()
    app.state.cloud = cloud

    device_prefix = "/projects/{project}/locations/{region}/registries/{registry}/devices/{device}"

    # Device token service

    @app.post("/v1beta1" + device_prefix + ":generateAccessToken")
    async def generate_device_token(
        project: str,
        region: str,
        registry: str,
        device: str,
        body: DeviceTokenRequest,
        authorization: Optional[str] = Header(None)
    ):
        path = f"projects/{project}/locations/{region}/registries/{registry}/devices/{device}"
        if body.device != path:
            raise HTTPException(status_code=400, detail="Device in body does not match the URL")
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Missing device assertion")

        cloud.verify_device_assertion(path, authorization[7:])
        scopes = body.scope.split()
        token = cloud.issue_token("device", path, scopes, cloud.device_token_lifetime)
        logger.info("Issued device token for %s", path)
        return {
            "access_token": token,
            "expires_in": cloud.device_token_lifetime,
            "token_type": "Bearer",
        }

    # IAM credentials

    @app.post("/v1/projects/-/serviceAccounts/{email}:generateAccessToken")
    async def generate_service_account_token(
        email: str,
        body: ServiceAccountTokenRequest,
        authorization: Optional[str] = Header(None)
    ):
        record = cloud.authenticate(authorization, CLOUD_PLATFORM_SCOPE)
        if record["principal"] not in cloud.impersonation.get(email, set()):
            raise HTTPException(
                status_code=403,
                detail=f"Permission 'iam.serviceAccounts.getAccessToken' denied on {email}"
            )
        lifetime = body.lifetime_seconds
        token = cloud.issue_token("service_account", email, body.scope, lifetime)
        expire_time = cloud.now() + timedelta(seconds=lifetime)
        logger.info("Issued service account token for %s to %s", email, record["principal"])
        return {
            "accessToken": token,
            "expireTime": expire_time.strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

    # Device manager

    @app.post("/v1" + device_prefix + ":sendCommandToDevice")
    async def send_command_to_device(
        project: str,
        region: str,
        registry: str,
        device: str,
        body: SendCommandRequest,
        authorization: Optional[str] = Header(None)
    ):
        cloud.require_manager(authorization)
        path = f"projects/{project}/locations/{region}/registries/{registry}/devices/{device}"
        if path not in cloud.devices:
            raise HTTPException(status_code=404, detail=f"Device {path} not found")
        listeners = list(cloud.command_listeners.get(path, []))
        if not listeners:
            raise HTTPException(status_code=400, detail=f"Device {path} is not connected")

        payload = base64.b64decode(body.binary_data)
        for listener in listeners:
            listener(payload, body.subfolder)
        return {}

    @app.get("/v1" + device_prefix + "/states")
    async def list_device_states(
        project: str,
        region: str,
        registry: str,
        device: str,
        num_states: Optional[int] = Query(None, alias="numStates"),
        authorization: Optional[str] = Header(None)
    ):
        cloud.require_manager(authorization)
        path = f"projects/{project}/locations/{region}/registries/{registry}/devices/{device}"
        if path not in cloud.devices:
            raise HTTPException(status_code=404, detail=f"Device {path} not found")
        states = cloud.devices[path]["states"]
        if num_states:
            states = states[:num_states]
        return {"deviceStates": states}

    @app.post("/v1/projects/{project}/locations/{region}/registries")
    async def create_registry(
        project: str,
        region: str,
        body: DeviceRegistryModel,
        authorization: Optional[str] = Header(None)
    ):
        cloud.require_manager(authorization)
        topics = [c.pubsub_topic_name for c in body.event_notification_configs or []]
        path = f"projects/{project}/locations/{region}/registries/{body.id}"
        return cloud.create_registry(path, topics)

    @app.delete("/v1/projects/{project}/locations/{region}/registries/{registry}")
    async def delete_registry(
        project: str,
        region: str,
        registry: str,
        authorization: Optional[str] = Header(None)
    ):
        cloud.require_manager(authorization)
        path = f"projects/{project}/locations/{region}/registries/{registry}"
        if path not in cloud.registries:
            raise HTTPException(status_code=404, detail=f"Registry {path} not found")
        if any(name.startswith(path + "/devices/") for name in cloud.devices):
            raise HTTPException(status_code=400, detail=f"Registry {path} still has devices")
        del cloud.registries[path]
        return {}

    @app.post("/v1/projects/{project}/locations/{region}/registries/{registry}/devices")
    async def create_device(
        project: str,
        region: str,
        registry: str,
        body: DeviceModel,
        authorization: Optional[str] = Header(None)
    ):
        cloud.require_manager(authorization)
        registry_path = f"projects/{project}/locations/{region}/registries/{registry}"
        device = cloud.create_device(
            registry_path, body.id, [c.public_key.key for c in body.credentials]
        )
        return {
            "id": device["id"],
            "name": device["name"],
            "numId": device["numId"],
            "credentials": [c.to_wire() for c in body.credentials],
        }

    @app.delete("/v1" + device_prefix)
    async def delete_device(
        project: str,
        region: str,
        registry: str,
        device: str,
        authorization: Optional[str] = Header(None)
    ):
        cloud.require_manager(authorization)
        path = f"projects/{project}/locations/{region}/registries/{registry}/devices/{device}"
        if cloud.devices.pop(path, None) is None:
            raise HTTPException(status_code=404, detail=f"Device {path} not found")
        cloud.command_listeners.pop(path, None)
        return {}

    # Pub/Sub

    @app.post("/v1/projects/{project}/topics/{topic}:publish")
    async def publish(
        project: str,
        topic: str,
        body: PublishRequest,
        authorization: Optional[str] = Header(None)
    ):
        cloud.authenticate(authorization, PUBSUB_SCOPE)
        path = f"projects/{project}/topics/{topic}"
        if path not in cloud.topics:
            raise HTTPException(status_code=404, detail=f"Topic {path} not found")
        ids = [cloud.publish(path, m.decoded(), m.attributes) for m in body.messages]
        return {"messageIds": ids}

    @app.put("/v1/projects/{project}/topics/{topic}")
    async def create_topic(project: str, topic: str, authorization: Optional[str] = Header(None)):
        cloud.authenticate(authorization, PUBSUB_SCOPE)
        path = f"projects/{project}/topics/{topic}"
        if path in cloud.topics:
            raise HTTPException(status_code=409, detail=f"Topic {path} already exists")
        cloud.topics[path] = set()
        return {"name": path}

    @app.delete("/v1/projects/{project}/topics/{topic}")
    async def delete_topic(project: str, topic: str, authorization: Optional[str] = Header(None)):
        cloud.authenticate(authorization, PUBSUB_SCOPE)
        path = f"projects/{project}/topics/{topic}"
        if cloud.topics.pop(path, None) is None:
            raise HTTPException(status_code=404, detail=f"Topic {path} not found")
        return {}

    @app.post("/v1/projects/{project}/subscriptions/{subscription}:pull")
    async def pull(
        project: str,
        subscription: str,
        body: PullRequest,
        authorization: Optional[str] = Header(None)
    ):
        cloud.authenticate(authorization, PUBSUB_SCOPE)
        sub = cloud.subscriptions.get(f"projects/{project}/subscriptions/{subscription}")
        if sub is None:
            raise HTTPException(status_code=404, detail=f"Subscription {subscription} not found")
        batch = sub["pending"][:body.max_messages]
        del sub["pending"][:body.max_messages]
        received = []
        for message in batch:
            ack_id = secrets.token_hex(8)
            sub["outstanding"][ack_id] = message
            received.append({"ackId": ack_id, "message": message})
        return {"receivedMessages": received}

    @app.post("/v1/projects/{project}/subscriptions/{subscription}:acknowledge")
    async def acknowledge(
        project: str,
        subscription: str,
        body: AcknowledgeRequest,
        authorization: Optional[str] = Header(None)
    ):
        cloud.authenticate(authorization, PUBSUB_SCOPE)
        sub = cloud.subscriptions.get(f"projects/{project}/subscriptions/{subscription}")
        if sub is None:
            raise HTTPException(status_code=404, detail=f"Subscription {subscription} not found")
        for ack_id in body.ack_ids:
            sub["outstanding"].pop(ack_id, None)
        return {}

    @app.put("/v1/projects/{project}/subscriptions/{subscription}")
    async def create_subscription(
        project: str,
        subscription: str,
        body: SubscriptionModel,
        authorization: Optional[str] = Header(None)
    ):
        cloud.authenticate(authorization, PUBSUB_SCOPE)
        path = f"projects/{project}/subscriptions/{subscription}"
        if path in cloud.subscriptions:
            raise HTTPException(status_code=409, detail=f"Subscription {path} already exists")
        if body.topic not in cloud.topics:
            raise HTTPException(status_code=404, detail=f"Topic {body.topic} not found")
        cloud.topics[body.topic].add(path)
        cloud.subscriptions[path] = {"topic": body.topic, "pending": [], "outstanding": {}}
        return {"name": path, "topic": body.topic, "ackDeadlineSeconds": body.ack_deadline_seconds}

    @app.delete("/v1/projects/{project}/subscriptions/{subscription}")
    async def delete_subscription(project: str, subscription: str, authorization: Optional[str] = Header(None)):
        cloud.authenticate(authorization, PUBSUB_SCOPE)
        path = f"projects/{project}/subscriptions/{subscription}"
        sub = cloud.subscriptions.pop(path, None)
        if sub is None:
            raise HTTPException(status_code=404, detail=f"Subscription {path} not found")
        cloud.topics.get(sub["topic"], set()).discard(path)
        return {}

    # Object storage

    @app.post("/storage/v1/b")
    async def create_bucket(
        request: Request,
        project: str = Query(...),
        authorization: Optional[str] = Header(None)
    ):
        cloud.authenticate(authorization, STORAGE_SCOPE)
        name = (await request.json()).get("name")
        if not name:
            raise HTTPException(status_code=400, detail="Bucket name is required")
        if name in cloud.buckets:
            raise HTTPException(status_code=409, detail=f"Bucket {name} already exists")
        cloud.buckets[name] = {}
        return {"name": name, "projectNumber": project}

    @app.delete("/storage/v1/b/{bucket}")
    async def delete_bucket(bucket: str, authorization: Optional[str] = Header(None)):
        cloud.authenticate(authorization, STORAGE_SCOPE)
        objects = cloud.buckets.get(bucket)
        if objects is None:
            raise HTTPException(status_code=404, detail=f"Bucket {bucket} not found")
        if objects:
            raise HTTPException(status_code=409, detail=f"Bucket {bucket} is not empty")
        del cloud.buckets[bucket]
        return {}

    @app.post("/upload/storage/v1/b/{bucket}/o")
    async def upload_object(
        bucket: str,
        request: Request,
        name: str = Query(...),
        upload_type: str = Query("media", alias="uploadType"),
        authorization: Optional[str] = Header(None)
    ):
        cloud.authenticate(authorization, STORAGE_SCOPE)
        if upload_type != "media":
            raise HTTPException(status_code=400, detail=f"Unsupported uploadType {upload_type}")
        objects = cloud.buckets.get(bucket)
        if objects is None:
            raise HTTPException(status_code=404, detail=f"Bucket {bucket} not found")
        data = await request.body()
        content_type = request.headers.get("content-type", "application/octet-stream")
        objects[name] = {"data": data, "contentType": content_type}
        return {"name": name, "bucket": bucket, "size": str(len(data)), "contentType": content_type}

    @app.get("/storage/v1/b/{bucket}/o/{name:path}")
    async def download_object(
        bucket: str,
        name: str,
        alt: Optional[str] = Query(None),
        authorization: Optional[str] = Header(None)
    ):
        cloud.authenticate(authorization, STORAGE_SCOPE)
        stored = cloud.buckets.get(bucket, {}).get(name)
        if stored is None:
            raise HTTPException(status_code=404, detail=f"Object {bucket}/{name} not found")
        if alt == "media":
            return Response(content=stored["data"], media_type=stored["contentType"])
        return {
            "name": name,
            "bucket": bucket,
            "size": str(len(stored["data"])),
            "contentType": stored["contentType"],
        }

    @app.delete("/storage/v1/b/{bucket}/o/{name:path}")
    async def delete_object(bucket: str, name: str, authorization: Optional[str] = Header(None)):
        cloud.authenticate(authorization, STORAGE_SCOPE)
        if cloud.buckets.get(bucket, {}).pop(name, None) is None:
            raise HTTPException(status_code=404, detail=f"Object {bucket}/{name} not found")
        return {}

    return app
