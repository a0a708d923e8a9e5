"""
Delivery Sink Factory — instantiates the right sink from config.

Configuration in settings.yaml:
    delivery:
      backend: "discord"      # "discord" | "memory"
      bot_token: ${DISCORD_BOT_TOKEN}
      api_base_url: "https://discord.com/api/v10"
      timeout_s: 15

The memory backend is the default so the service can start without
credentials during development.
"""
from __future__ import annotations

import structlog

from channels.base import DeliverySink
from config.settings import DeliveryConfig

logger = structlog.get_logger()


def create_delivery_sink(config: DeliveryConfig = None) -> DeliverySink:
    config = config or DeliveryConfig()

    if config.backend == "discord":
        from channels.discord_sink import DiscordDeliverySink
        if not config.bot_token or config.bot_token.startswith("${"):
            raise ValueError("Discord delivery requires delivery.bot_token to be set")
        sink = DiscordDeliverySink(
            bot_token=config.bot_token,
            api_base_url=config.api_base_url,
            timeout_s=config.timeout_s,
        )
        logger.info("delivery_sink_created", backend="discord")
        return sink

    from channels.memory_sink import InMemoryDeliverySink
    logger.info("delivery_sink_created", backend="memory")
    return InMemoryDeliverySink()
