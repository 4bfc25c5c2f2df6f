"""
Payment gateway webhook
=======================

POST /api/v1/payments/webhook -- verify, normalise and queue a gateway event

The route acknowledges as soon as the event is queued; the reconciliation
worker applies it to the payments table.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Request

from src.api.dependencies import get_gateway, get_webhook_queue
from src.api.schemas import WebhookAck
from src.infrastructure.gateway import PaymentGatewayAdapter
from src.infrastructure.webhook_queue import WebhookQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook", response_model=WebhookAck, summary="Gateway webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
    gateway: PaymentGatewayAdapter = Depends(get_gateway),
    queue: WebhookQueue = Depends(get_webhook_queue),
):
    payload = await request.body()
    event = gateway.construct_event(payload, stripe_signature)
    if event is None:
        return WebhookAck(queued=False)

    await queue.push(event)
    logger.info("Queued %s webhook for %s", event.kind.value, event.intent_id)
    return WebhookAck(queued=True)
