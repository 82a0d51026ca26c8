"""
Resources Module - Black Box Interface

Purpose: Call downstream services with an obtained bearer token
Interface: StorageResource, PubSubResource, CommandResource
Hidden: URL layout, payload encoding, rejection mapping

Tokens are attached, never refreshed; a rejected token means the caller
starts a new flow.
"""

from .base import BearerResource
from .commands import CommandResource
from .pubsub import PubSubResource, PullSubscription
from .storage import StorageResource

__all__ = [
    "BearerResource",
    "CommandResource",
    "PubSubResource",
    "PullSubscription",
    "StorageResource",
]
