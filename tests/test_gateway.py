"""Stripe adapter tests (``stripe`` SDK mocked)."""

from __future__ import annotations

import time
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from src.domain.enums import WebhookKind
from src.domain.exceptions import (
    GatewayTimeout,
    GatewayUnavailable,
    InvalidWebhook,
    PaymentDeclined,
    PaymentError,
    PaymentMethodMissing,
)
from src.infrastructure.gateway import (
    GatewayConfig,
    GatewayEvent,
    StripeGatewayAdapter,
    to_minor_units,
)


@pytest.fixture
def adapter() -> StripeGatewayAdapter:
    return StripeGatewayAdapter(
        GatewayConfig(secret_key="sk_test_123", webhook_secret="whsec_test", timeout_seconds=1)
    )


def test_minor_units_round_half_up():
    assert to_minor_units(Decimal("19.125")) == 1913
    assert to_minor_units(Decimal("20")) == 2000


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_manual_capture_with_destination_charge(self, adapter):
        intent = SimpleNamespace(id="pi_123", status="requires_capture")
        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            result = await adapter.authorize(
                Decimal("20.00"),
                "pm_card_visa",
                "cus_1",
                {"booking_id": "7"},
                "acct_driver",
                currency="eur",
                idempotency_key="booking-7-authorize",
            )

        assert result.succeeded
        assert result.id == "pi_123"
        kwargs = create.call_args.kwargs
        assert kwargs["amount"] == 2000
        assert kwargs["capture_method"] == "manual"
        assert kwargs["transfer_data"] == {"destination": "acct_driver"}
        assert kwargs["application_fee_amount"] == 300
        assert kwargs["idempotency_key"] == "booking-7-authorize"
        assert kwargs["api_key"] == "sk_test_123"

    @pytest.mark.asyncio
    async def test_no_transfer_without_payout_account(self, adapter):
        intent = SimpleNamespace(id="pi_124", status="requires_capture")
        with patch("stripe.PaymentIntent.create", return_value=intent) as create:
            await adapter.authorize(
                Decimal("5.00"), "pm_card_visa", "cus_1", {}, currency="eur"
            )
        assert "transfer_data" not in create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_card_error_is_a_decline(self, adapter):
        error = stripe.CardError("Your card was declined.", None, "card_declined")
        with patch("stripe.PaymentIntent.create", side_effect=error):
            with pytest.raises(PaymentDeclined):
                await adapter.authorize(
                    Decimal("5.00"), "pm_card_visa", "cus_1", {}, currency="eur"
                )


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self, adapter):
        with patch(
            "stripe.PaymentIntent.capture",
            side_effect=stripe.APIConnectionError("connection reset"),
        ):
            with pytest.raises(GatewayUnavailable):
                await adapter.capture("pi_123")

    @pytest.mark.asyncio
    async def test_other_stripe_errors_are_payment_errors(self, adapter):
        with patch(
            "stripe.Refund.create",
            side_effect=stripe.InvalidRequestError("already refunded", "charge"),
        ):
            with pytest.raises(PaymentError) as exc_info:
                await adapter.refund("pi_123", Decimal("1.00"))
        assert not exc_info.value.outcome_unknown

    @pytest.mark.asyncio
    async def test_timeout_has_unknown_outcome(self):
        adapter = StripeGatewayAdapter(
            GatewayConfig(secret_key="sk_test_123", webhook_secret=None, timeout_seconds=0.05)
        )

        def _slow(*args, **kwargs):
            time.sleep(0.3)

        with patch("stripe.PaymentIntent.capture", side_effect=_slow):
            with pytest.raises(GatewayTimeout) as exc_info:
                await adapter.capture("pi_123")
        assert exc_info.value.outcome_unknown

    @pytest.mark.asyncio
    async def test_unconfigured_adapter_refuses_calls(self):
        adapter = StripeGatewayAdapter(GatewayConfig(secret_key=None, webhook_secret=None))
        with patch("stripe.PaymentIntent.cancel") as cancel:
            with pytest.raises(GatewayUnavailable):
                await adapter.cancel_authorization("pi_123")
        cancel.assert_not_called()

    @pytest.mark.asyncio
    async def test_refund_sends_minor_units(self, adapter):
        with patch(
            "stripe.Refund.create", return_value=SimpleNamespace(id="re_1")
        ) as create:
            result = await adapter.refund(
                "pi_123", Decimal("19.12"), idempotency_key="payment-3-refund"
            )
        assert result.id == "re_1"
        assert create.call_args.kwargs["amount"] == 1912
        assert create.call_args.kwargs["payment_intent"] == "pi_123"


class TestWebhooks:
    def test_verified_event_is_normalised(self, adapter):
        event = SimpleNamespace(
            id="evt_1",
            type="payment_intent.payment_failed",
            data=SimpleNamespace(object={"id": "pi_123"}),
        )
        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            result = adapter.construct_event(b"{}", "t=1,v1=sig")

        construct.assert_called_once_with(b"{}", "t=1,v1=sig", "whsec_test")
        assert result.kind is WebhookKind.FAILED
        assert result.intent_id == "pi_123"
        assert result.event_id == "evt_1"

    def test_bad_signature_is_rejected(self, adapter):
        with patch(
            "stripe.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("bad sig", "t=1,v1=sig"),
        ):
            with pytest.raises(InvalidWebhook):
                adapter.construct_event(b"{}", "t=1,v1=sig")

    def test_unrelated_event_types_are_ignored(self, adapter):
        assert adapter.ingest_webhook("charge.refunded", {"id": "ch_1"}) is None

    def test_missing_secret_is_unavailable(self):
        adapter = StripeGatewayAdapter(GatewayConfig(secret_key="sk", webhook_secret=None))
        with pytest.raises(GatewayUnavailable):
            adapter.construct_event(b"{}", "sig")


def test_gateway_event_survives_queue_encoding():
    event = GatewayEvent(WebhookKind.CANCELED, "pi_9", "evt_9")
    assert GatewayEvent.from_json(event.to_json()) == event


@pytest.mark.asyncio
async def test_missing_payment_method_is_refused(adapter):
    with patch("stripe.PaymentIntent.create") as create:
        with pytest.raises(PaymentMethodMissing):
            await adapter.authorize(Decimal("5.00"), "", "cus_1", {}, currency="eur")
    create.assert_not_called()
