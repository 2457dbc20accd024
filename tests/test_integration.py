"""
Integration tests for the order payment flows across service, adapters and webhooks.
"""
import json
from typing import Any, Callable

import pytest

from payment_orchestrator.core.checkout_service import CheckoutService
from payment_orchestrator.core.ledger import InMemoryLedger
from payment_orchestrator.core.provider import ProviderSelector
from payment_orchestrator.integrations.paypal_client import ORDERS_PATH, PayPalProvider
from payment_orchestrator.integrations.stripe_client import StripeProvider
from payment_orchestrator.integrations.webhook_handler import WebhookDispatcher


@pytest.fixture
def service(
    stripe_provider: StripeProvider,
    paypal_provider: PayPalProvider,
    ledger: InMemoryLedger,
    test_settings: Any,
) -> CheckoutService:
    return CheckoutService(
        ProviderSelector(stripe_provider, paypal_provider), ledger, settings=test_settings
    )


class TestCardOrderFlow:
    """Card checkout settled through a signed webhook."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_card_checkout_settled_by_webhook(
        self,
        service: CheckoutService,
        stripe_provider: StripeProvider,
        ledger: InMemoryLedger,
        stripe_signer: Callable[..., str],
    ) -> None:
        """Test a $29.00 card order goes from checkout to paid exactly once."""
        session = await service.create_checkout("card", "order-1", 29.00, "Pro Plan")
        assert session.redirect_url.startswith("https://checkout.stripe.com/")

        body = json.dumps(
            {
                "id": "evt_1NG8Du2eZvKYlo2CUI79vXWy",
                "type": "checkout.session.completed",
                "data": {
                    "object": {
                        "id": session.provider_session_id,
                        "mode": "payment",
                        "payment_intent": "pi_3MtwBwLkdIwHu7ix28a3tqPa",
                        "metadata": {"order_id": "order-1"},
                    }
                },
            }
        ).encode("utf-8")
        headers = {"Stripe-Signature": stripe_signer(body)}
        dispatcher = WebhookDispatcher(stripe_provider, ledger)

        first = await dispatcher.handle_incoming_event(headers, body)
        second = await dispatcher.handle_incoming_event(headers, body)

        assert first.status == "processed"
        assert second.status == "duplicate"
        paid = ledger.paid_orders["order-1"]
        assert paid.provider_payment_id == "pi_3MtwBwLkdIwHu7ix28a3tqPa"
        assert paid.provider_order_id == session.provider_session_id


class TestPeerOrderFlow:
    """PayPal order created, approved and captured."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_peer_checkout_captured_after_retry(
        self, service: CheckoutService, ledger: InMemoryLedger, paypal_stub: Any
    ) -> None:
        """Test a PayPal order is captured despite one transient failure."""
        paypal_stub.add(
            "POST",
            ORDERS_PATH,
            201,
            json={
                "id": "5O190127TN364715T",
                "links": [{"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow"}],
            },
        )
        capture_path = f"{ORDERS_PATH}/5O190127TN364715T/capture"
        paypal_stub.add("POST", capture_path, 503, json={"name": "SERVICE_UNAVAILABLE"})
        paypal_stub.add(
            "POST",
            capture_path,
            201,
            json={
                "id": "5O190127TN364715T",
                "purchase_units": [{"payments": {"captures": [{"id": "3C679366HH908993F"}]}}],
            },
        )

        session = await service.create_checkout("peer", "order-7", 9.99, "Basic Plan")
        again = await service.create_checkout("peer", "order-7", 9.99, "Basic Plan")
        capture_id = await service.confirm_peer_order("order-7")

        assert again == session
        assert capture_id == "3C679366HH908993F"
        assert paypal_stub.paths().count(ORDERS_PATH) == 1
        assert paypal_stub.paths().count(capture_path) == 2
        assert paypal_stub.token_calls == 1
        assert ledger.paid_orders["order-7"].provider_order_id == "5O190127TN364715T"
