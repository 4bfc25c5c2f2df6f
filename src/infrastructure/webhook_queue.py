"""
Webhook event queue.

The webhook route only verifies a delivery and pushes the normalised event
onto a Redis list; the reconciliation worker pops events in arrival order
(``RPUSH`` / ``LPOP``).  Events that fail to apply are pushed back to the
tail so a poison event cannot stall the queue.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

from .gateway import GatewayEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "webhooks:payments"


class WebhookQueue:
    def __init__(self, client: aioredis.Redis, key: str = DEFAULT_QUEUE_KEY):
        self.redis = client
        self.key = key

    async def push(self, event: GatewayEvent) -> None:
        await self.redis.rpush(self.key, event.to_json())

    async def requeue(self, event: GatewayEvent) -> None:
        await self.push(event)

    async def pop_batch(self, limit: int) -> list[GatewayEvent]:
        events: list[GatewayEvent] = []
        for _ in range(limit):
            raw = await self.redis.lpop(self.key)
            if raw is None:
                break
            try:
                events.append(GatewayEvent.from_json(raw))
            except (ValueError, KeyError):
                logger.error("Dropping malformed webhook payload: %r", raw)
        return events
