"""
Background Reconciliation Worker
================================

Runs every ``RECONCILIATION_INTERVAL_SECONDS`` (default 5 s).

Each cycle drains up to ``RECONCILIATION_BATCH_SIZE`` verified gateway
events from the webhook queue and applies them to the payments table via
``BookingOrchestrator.reconcile``.

Concurrency safety
------------------
* **Redis distributed lock**: only one API process drains the queue per
  cycle, so events for one intent are applied in delivery order.
* **Conditional updates**: reconciliation only moves AUTHORIZED payments,
  so replays and events racing a saga's own write are no-ops.
"""

from __future__ import annotations

import asyncio
import logging

from src.config import settings
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.infrastructure.webhook_queue import WebhookQueue
from src.services.orchestrator import BookingOrchestrator

logger = logging.getLogger(__name__)

LOCK_NAME = "payment_reconciler"

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_reconciliation_loop(orchestrator: BookingOrchestrator) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(orchestrator))
    logger.info(
        "Reconciliation worker started (interval=%ds)",
        settings.reconciliation_interval_seconds,
    )


async def stop_reconciliation_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Reconciliation worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(orchestrator: BookingOrchestrator) -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_reconciliation_cycle(orchestrator)
        except Exception:
            logger.exception("Unhandled error in reconciliation cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.reconciliation_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def run_reconciliation_cycle(
    orchestrator: BookingOrchestrator, redis=None
) -> int:
    """Execute one cycle.  Returns the number of payments updated."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, LOCK_NAME, ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return 0

    applied = 0
    queue = WebhookQueue(redis)
    try:
        events = await queue.pop_batch(settings.reconciliation_batch_size)
        for event in events:
            try:
                if await orchestrator.reconcile(event):
                    applied += 1
            except Exception:
                logger.exception(
                    "Failed to reconcile %s for %s; requeueing",
                    event.kind.value,
                    event.intent_id,
                )
                await queue.requeue(event)
        if events:
            logger.info(
                "Reconciliation cycle: %d event(s), %d payment(s) updated",
                len(events),
                applied,
            )
    finally:
        await lock.release()

    return applied
