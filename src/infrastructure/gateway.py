"""
Payment gateway adapter.

``PaymentGatewayAdapter`` is the contract the booking sagas consume;
``StripeGatewayAdapter`` implements it on top of Stripe manual-capture
PaymentIntents.

Timeouts
--------
Every Stripe call runs in a worker thread bounded by
``GatewayConfig.timeout_seconds``.  A timeout surfaces as
``GatewayTimeout`` (``outcome_unknown=True``): the gateway may still have
applied the call, so callers must reconcile through webhooks instead of
assuming failure.

Configuration is injected at construction; the adapter never mutates
module-level ``stripe`` state (``api_key`` is passed per request).
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Mapping, Optional, TypeVar

import stripe

from src.config import Settings
from src.domain.enums import WebhookKind
from src.domain.exceptions import (
    GatewayTimeout,
    GatewayUnavailable,
    InvalidWebhook,
    PaymentDeclined,
    PaymentError,
    PaymentMethodMissing,
)
from src.domain.pricing import CommissionCalculator

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUIRES_CAPTURE = "requires_capture"

# Gateway event type -> normalised webhook kind
STRIPE_EVENT_KINDS: dict[str, WebhookKind] = {
    "payment_intent.succeeded": WebhookKind.SUCCEEDED,
    "payment_intent.payment_failed": WebhookKind.FAILED,
    "payment_intent.canceled": WebhookKind.CANCELED,
}


# ── Results ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuthorizationResult:
    id: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == REQUIRES_CAPTURE


@dataclass(frozen=True)
class CaptureResult:
    status: str


@dataclass(frozen=True)
class RefundResult:
    id: str


@dataclass(frozen=True)
class GatewayEvent:
    """A webhook notification normalised to what reconciliation needs."""

    kind: WebhookKind
    intent_id: str
    event_id: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps({**asdict(self), "kind": self.kind.value})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "GatewayEvent":
        data = json.loads(raw)
        return cls(
            kind=WebhookKind(data["kind"]),
            intent_id=data["intent_id"],
            event_id=data.get("event_id"),
        )


# ── Contract ─────────────────────────────────────────────────────────


class PaymentGatewayAdapter(ABC):
    @abstractmethod
    async def authorize(
        self,
        amount: Decimal,
        payment_method_ref: str,
        payer_ref: str,
        metadata: Mapping[str, str],
        payout_account_ref: Optional[str] = None,
        *,
        currency: str,
        idempotency_key: Optional[str] = None,
    ) -> AuthorizationResult: ...

    @abstractmethod
    async def capture(
        self, intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> CaptureResult: ...

    @abstractmethod
    async def cancel_authorization(self, intent_id: str) -> None: ...

    @abstractmethod
    async def refund(
        self,
        intent_id: str,
        amount: Decimal,
        *,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult: ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> Optional[GatewayEvent]:
        """Verify a raw webhook delivery and normalise it."""

    def ingest_webhook(
        self, event_type: str, payload: Mapping[str, Any]
    ) -> Optional[GatewayEvent]:
        """
        Map a gateway event onto a reconciliation event.

        *payload* is the event's ``data.object``.  Returns ``None`` for event
        types reconciliation does not care about.
        """
        kind = STRIPE_EVENT_KINDS.get(event_type)
        if kind is None:
            logger.info("Ignoring webhook event type %s", event_type)
            return None
        return GatewayEvent(kind=kind, intent_id=payload["id"])


# ── Stripe implementation ────────────────────────────────────────────


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class GatewayConfig:
    secret_key: Optional[str]
    webhook_secret: Optional[str]
    currency: str = "eur"
    platform_fee_percent: Decimal = Decimal("15")
    timeout_seconds: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        return cls(
            secret_key=(
                settings.stripe_secret_key.get_secret_value()
                if settings.stripe_secret_key
                else None
            ),
            webhook_secret=(
                settings.stripe_webhook_secret.get_secret_value()
                if settings.stripe_webhook_secret
                else None
            ),
            currency=settings.currency,
            platform_fee_percent=settings.platform_fee_percent,
            timeout_seconds=settings.gateway_timeout_seconds,
        )


class StripeGatewayAdapter(PaymentGatewayAdapter):
    def __init__(self, config: GatewayConfig):
        self.config = config
        self.commission = CommissionCalculator(config.platform_fee_percent)

    @property
    def enabled(self) -> bool:
        return bool(self.config.secret_key)

    async def authorize(
        self,
        amount: Decimal,
        payment_method_ref: str,
        payer_ref: str,
        metadata: Mapping[str, str],
        payout_account_ref: Optional[str] = None,
        *,
        currency: str,
        idempotency_key: Optional[str] = None,
    ) -> AuthorizationResult:
        if not (payment_method_ref and payer_ref):
            raise PaymentMethodMissing("Passenger has no payment method on file")
        params: dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "customer": payer_ref,
            "payment_method": payment_method_ref,
            "off_session": True,
            "confirm": True,
            "capture_method": "manual",
            "metadata": dict(metadata),
        }
        if payout_account_ref:
            split = self.commission.split(amount)
            params["transfer_data"] = {"destination": payout_account_ref}
            params["application_fee_amount"] = to_minor_units(split.platform_fee)

        intent = await self._call(
            "authorize",
            lambda: stripe.PaymentIntent.create(
                api_key=self.config.secret_key,
                idempotency_key=idempotency_key,
                **params,
            ),
        )
        logger.info("Created PaymentIntent %s for amount %s", intent.id, amount)
        return AuthorizationResult(id=intent.id, status=intent.status)

    async def capture(
        self, intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> CaptureResult:
        intent = await self._call(
            "capture",
            lambda: stripe.PaymentIntent.capture(
                intent_id,
                api_key=self.config.secret_key,
                idempotency_key=idempotency_key,
            ),
        )
        logger.info("Captured PaymentIntent %s", intent_id)
        return CaptureResult(status=intent.status)

    async def cancel_authorization(self, intent_id: str) -> None:
        await self._call(
            "cancel",
            lambda: stripe.PaymentIntent.cancel(intent_id, api_key=self.config.secret_key),
        )
        logger.info("Cancelled PaymentIntent %s", intent_id)

    async def refund(
        self,
        intent_id: str,
        amount: Decimal,
        *,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        refund = await self._call(
            "refund",
            lambda: stripe.Refund.create(
                api_key=self.config.secret_key,
                idempotency_key=idempotency_key,
                payment_intent=intent_id,
                amount=to_minor_units(amount),
            ),
        )
        logger.info("Created refund %s for PaymentIntent %s", refund.id, intent_id)
        return RefundResult(id=refund.id)

    def construct_event(self, payload: bytes, signature: str) -> Optional[GatewayEvent]:
        if not self.config.webhook_secret:
            raise GatewayUnavailable("Webhook secret not configured")
        try:
            event = stripe.Webhook.construct_event(
                payload, signature, self.config.webhook_secret
            )
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise InvalidWebhook(f"Invalid webhook: {exc}") from exc

        normalised = self.ingest_webhook(event.type, event.data.object)
        if normalised is None:
            return None
        return GatewayEvent(
            kind=normalised.kind,
            intent_id=normalised.intent_id,
            event_id=event.id,
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _call(self, operation: str, fn: Callable[[], T]) -> T:
        if not self.enabled:
            raise GatewayUnavailable("Payment gateway is not configured")
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn), timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            logger.error("Gateway %s timed out after %ss", operation, self.config.timeout_seconds)
            raise GatewayTimeout(f"Payment gateway {operation} timed out") from exc
        except stripe.CardError as exc:
            logger.warning("Gateway %s declined: %s", operation, exc.user_message or exc)
            raise PaymentDeclined(exc.user_message or str(exc)) from exc
        except stripe.APIConnectionError as exc:
            logger.error("Gateway %s unreachable: %s", operation, exc)
            raise GatewayUnavailable(f"Payment gateway unreachable during {operation}") from exc
        except stripe.StripeError as exc:
            logger.error("Gateway %s failed: %s", operation, exc)
            raise PaymentError(f"Failed to {operation} payment: {exc}") from exc


def build_gateway(settings: Settings) -> StripeGatewayAdapter:
    return StripeGatewayAdapter(GatewayConfig.from_settings(settings))
