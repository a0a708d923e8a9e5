"""Delivery sinks: the outbound side of a broadcast."""
from channels.base import (
    ChannelError,
    DeliveryError,
    DeliveryMetrics,
    DeliverySink,
    PermanentDeliveryError,
    RateLimitedError,
    RecipientUnreachable,
    TransientDeliveryError,
)
from channels.discord_sink import DiscordDeliverySink
from channels.memory_sink import InMemoryDeliverySink
from channels.factory import create_delivery_sink

__all__ = [
    "ChannelError", "DeliveryError", "DeliveryMetrics", "DeliverySink",
    "PermanentDeliveryError", "RateLimitedError", "RecipientUnreachable",
    "TransientDeliveryError",
    "DiscordDeliverySink", "InMemoryDeliverySink", "create_delivery_sink",
]
