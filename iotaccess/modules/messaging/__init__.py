"""
Messaging Module - Black Box Interface

Purpose: Receive messages through explicit, bounded subscriptions
Interface: Subscription.messages(), Subscription.first(), MqttBridgeClient
Hidden: paho network thread, thread-to-loop handoff, topic matching
"""

from .mqtt import MqttBridgeClient, default_client_factory
from .subscription import QueueSubscription, ReceivedMessage, Subscription

__all__ = [
    "MqttBridgeClient",
    "QueueSubscription",
    "ReceivedMessage",
    "Subscription",
    "default_client_factory",
]
