"""
Pub/Sub calls made with a device or service-account token.

Includes a pull-based Subscription so a published message can be observed
within a bounded window.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Optional

from ..api.models import (
    AcknowledgeRequest,
    PublishRequest,
    PublishResponse,
    PubsubMessage,
    PullRequest,
    PullResponse,
    ReceivedPubsubMessage,
    SubscriptionModel,
    TopicModel,
)
from ..credentials.tokens import BearerToken
from ..messaging.subscription import ReceivedMessage, Subscription
from ..transport import parse_model
from .base import BearerResource

logger = logging.getLogger(__name__)


class PubSubResource(BearerResource):
    """Topic, subscription and publish operations against Pub/Sub v1."""

    @staticmethod
    def topic_path(project_id: str, topic: str) -> str:
        return f"projects/{project_id}/topics/{topic}"

    @staticmethod
    def subscription_path(project_id: str, subscription: str) -> str:
        return f"projects/{project_id}/subscriptions/{subscription}"

    def _url(self, path: str) -> str:
        return f"{self.base_url}/v1/{path}"

    async def create_topic(self, token: BearerToken, project_id: str, topic: str) -> TopicModel:
        path = self.topic_path(project_id, topic)
        response = await self._call("PUT", self._url(path), token, f"Create topic {topic}", json={})
        logger.info("Created topic %s", path)
        return parse_model(response, TopicModel, f"Create topic {topic}")

    async def delete_topic(self, token: BearerToken, project_id: str, topic: str) -> None:
        path = self.topic_path(project_id, topic)
        await self._call("DELETE", self._url(path), token, f"Delete topic {topic}")
        logger.info("Deleted topic %s", path)

    async def publish(
        self,
        token: BearerToken,
        project_id: str,
        topic: str,
        data: bytes,
        attributes: Optional[Dict[str, str]] = None
    ) -> List[str]:
        """
        Publish one message.

        Returns:
            Server-assigned message ids
        """
        operation = f"Publish to {topic}"
        request = PublishRequest(messages=[PubsubMessage.from_bytes(data, attributes)])
        response = await self._call(
            "POST",
            self._url(f"{self.topic_path(project_id, topic)}:publish"),
            token,
            operation,
            json=request.to_wire(),
        )
        body = parse_model(response, PublishResponse, operation)
        logger.info("Published message %s to %s", ",".join(body.message_ids), topic)
        return body.message_ids

    async def create_subscription(
        self,
        token: BearerToken,
        project_id: str,
        subscription: str,
        topic: str,
        ack_deadline_seconds: int = 10
    ) -> SubscriptionModel:
        operation = f"Create subscription {subscription}"
        request = SubscriptionModel(
            topic=self.topic_path(project_id, topic),
            ack_deadline_seconds=ack_deadline_seconds,
        )
        response = await self._call(
            "PUT",
            self._url(self.subscription_path(project_id, subscription)),
            token,
            operation,
            json=request.to_wire(),
        )
        return parse_model(response, SubscriptionModel, operation)

    async def delete_subscription(self, token: BearerToken, project_id: str, subscription: str) -> None:
        await self._call(
            "DELETE",
            self._url(self.subscription_path(project_id, subscription)),
            token,
            f"Delete subscription {subscription}",
        )

    async def pull(
        self,
        token: BearerToken,
        project_id: str,
        subscription: str,
        max_messages: int = 10
    ) -> List[ReceivedPubsubMessage]:
        operation = f"Pull {subscription}"
        response = await self._call(
            "POST",
            self._url(f"{self.subscription_path(project_id, subscription)}:pull"),
            token,
            operation,
            json=PullRequest(max_messages=max_messages).to_wire(),
        )
        return parse_model(response, PullResponse, operation).received_messages

    async def acknowledge(
        self,
        token: BearerToken,
        project_id: str,
        subscription: str,
        ack_ids: List[str]
    ) -> None:
        await self._call(
            "POST",
            self._url(f"{self.subscription_path(project_id, subscription)}:acknowledge"),
            token,
            f"Acknowledge {subscription}",
            json=AcknowledgeRequest(ack_ids=ack_ids).to_wire(),
        )

    def subscribe(
        self,
        token: BearerToken,
        project_id: str,
        subscription: str,
        poll_interval: float = 1.0,
        delete_on_close: bool = False
    ) -> "PullSubscription":
        """Wrap an existing subscription in a bounded async iterator."""
        return PullSubscription(
            self, token, project_id, subscription,
            poll_interval=poll_interval, delete_on_close=delete_on_close
        )


class PullSubscription(Subscription):
    """
    Polls a Pub/Sub subscription and acknowledges what it yields.

    Pulled messages wait in a local buffer and are acknowledged one at a time
    as they are handed out, so a reader that stops early leaves the rest for
    the next read.
    """

    def __init__(
        self,
        resource: PubSubResource,
        token: BearerToken,
        project_id: str,
        subscription: str,
        poll_interval: float = 1.0,
        delete_on_close: bool = False,
        batch_size: int = 10
    ):
        super().__init__(PubSubResource.subscription_path(project_id, subscription))
        self._resource = resource
        self._token = token
        self._project_id = project_id
        self._subscription = subscription
        self.poll_interval = poll_interval
        self.delete_on_close = delete_on_close
        self.batch_size = batch_size
        self._buffer: Deque[ReceivedPubsubMessage] = deque()

    async def _receive(self, timeout: float) -> List[ReceivedMessage]:
        if not self._buffer:
            received = await self._resource.pull(
                self._token, self._project_id, self._subscription, self.batch_size
            )
            if not received:
                await asyncio.sleep(min(self.poll_interval, timeout))
                return []
            self._buffer.extend(received)

        r = self._buffer.popleft()
        await self._resource.acknowledge(
            self._token, self._project_id, self._subscription, [r.ack_id]
        )
        return [
            ReceivedMessage(
                source=self.name,
                data=r.message.decoded(),
                attributes=dict(r.message.attributes or {}),
                message_id=r.message.message_id,
            )
        ]

    async def _unsubscribe(self) -> None:
        if self.delete_on_close:
            await self._resource.delete_subscription(self._token, self._project_id, self._subscription)
