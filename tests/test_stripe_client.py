"""
Unit tests for the Stripe adapter.
"""
import json
from decimal import Decimal
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
import stripe

from payment_orchestrator.config import Settings
from payment_orchestrator.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DecodingError,
    NotFoundError,
    PaymentValidationError,
    ProviderAPIError,
)
from payment_orchestrator.integrations.stripe_client import STRIPE_CHECKOUT_PAY_URL, StripeProvider


def sent_params(mock_stripe_client: MagicMock) -> dict:
    return mock_stripe_client.checkout.sessions.create.call_args.kwargs["params"]


class TestStripeCheckout:
    """Test suite for Stripe checkout sessions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_checkout_success(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test a one-time checkout for a $29.00 order."""
        session = await stripe_provider.create_checkout("order-1", 29.0, "Pro Plan")

        assert session.provider == "stripe"
        assert session.provider_session_id == "cs_test_123"
        assert session.redirect_url == "https://checkout.stripe.com/c/pay/cs_test_123"
        assert session.order_id == "order-1"

        params = sent_params(mock_stripe_client)
        assert params["mode"] == "payment"
        assert params["payment_method_types"] == ["card"]
        assert params["metadata"] == {"order_id": "order-1"}
        line_item = params["line_items"][0]
        assert line_item["quantity"] == 1
        assert line_item["price_data"]["currency"] == "usd"
        assert line_item["price_data"]["product_data"] == {"name": "Pro Plan"}
        assert line_item["price_data"]["unit_amount"] == 2900

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "amount, cents",
        [(12.34, 1234), (0.10, 10), (9.99, 999), (99.0, 9900), (Decimal("19.995"), 2000)],
    )
    async def test_amount_converted_to_cents(
        self,
        stripe_provider: StripeProvider,
        mock_stripe_client: MagicMock,
        amount: Any,
        cents: int,
    ) -> None:
        """Test dollar amounts become exact cents without float noise."""
        await stripe_provider.create_checkout("order-1", amount, "Order")

        assert sent_params(mock_stripe_client)["line_items"][0]["price_data"]["unit_amount"] == cents

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redirect_url_fallback(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test a session without a hosted URL falls back to the pay URL."""
        mock_stripe_client.checkout.sessions.create.return_value.url = None

        session = await stripe_provider.create_checkout("order-1", 29.0, "Pro Plan")

        assert session.redirect_url == STRIPE_CHECKOUT_PAY_URL + "cs_test_123"

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "order_id, amount", [("", 29.0), ("order-1", 0), ("order-1", -1), ("order-1", 0.004)]
    )
    async def test_create_checkout_validation(
        self,
        stripe_provider: StripeProvider,
        mock_stripe_client: MagicMock,
        order_id: str,
        amount: float,
    ) -> None:
        """Test invalid input never reaches Stripe."""
        with pytest.raises(PaymentValidationError):
            await stripe_provider.create_checkout(order_id, amount, "Pro Plan")

        mock_stripe_client.checkout.sessions.create.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stripe_error_is_wrapped(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test SDK errors surface as ProviderAPIError with status and code."""
        mock_stripe_client.checkout.sessions.create.side_effect = stripe.InvalidRequestError(
            "Amount must be at least 50 cents",
            param="line_items[0][price_data][unit_amount]",
            code="amount_too_small",
            http_status=400,
        )

        with pytest.raises(ProviderAPIError) as exc_info:
            await stripe_provider.create_checkout("order-1", 0.10, "Tiny")

        error = exc_info.value
        assert error.provider == "stripe"
        assert error.operation == "create_checkout_session"
        assert error.status_code == 400
        assert error.code == "amount_too_small"
        assert not error.retryable
        assert isinstance(error.__cause__, stripe.InvalidRequestError)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test transport failures are marked retryable."""
        mock_stripe_client.checkout.sessions.create.side_effect = stripe.APIConnectionError(
            "Connection reset"
        )

        with pytest.raises(ProviderAPIError) as exc_info:
            await stripe_provider.create_checkout("order-1", 29.0, "Pro Plan")

        assert exc_info.value.status_code is None
        assert exc_info.value.retryable

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_secret_key(self) -> None:
        """Test a missing secret key fails the call with ConfigurationError."""
        provider = StripeProvider(settings=Settings(stripe_secret_key=None))

        with pytest.raises(ConfigurationError):
            await provider.create_checkout("order-1", 29.0, "Pro Plan")


class TestStripeSubscriptions:
    """Test suite for Stripe subscriptions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_subscription(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test a monthly subscription checkout priced from the catalog."""
        session_id, url = await stripe_provider.create_subscription("user-42", "pro")

        assert session_id == "cs_test_123"
        assert url == "https://checkout.stripe.com/c/pay/cs_test_123"

        params = sent_params(mock_stripe_client)
        assert params["mode"] == "subscription"
        assert params["metadata"] == {"user_id": "user-42", "plan_type": "pro"}
        assert params["subscription_data"]["metadata"] == {"user_id": "user-42", "plan_type": "pro"}
        price_data = params["line_items"][0]["price_data"]
        assert price_data["recurring"] == {"interval": "month"}
        assert price_data["unit_amount"] == 2900
        assert price_data["product_data"] == {"name": "Pro"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_plan(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test an unknown plan type raises NotFoundError without calling Stripe."""
        with pytest.raises(NotFoundError):
            await stripe_provider.create_subscription("user-42", "platinum")

        mock_stripe_client.checkout.sessions.create.assert_not_called()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_subscription(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test cancellation calls the subscriptions API."""
        await stripe_provider.cancel_subscription("sub_123")

        mock_stripe_client.subscriptions.cancel.assert_called_once_with("sub_123")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_missing_subscription(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test a missing subscription surfaces an already-canceled error."""
        mock_stripe_client.subscriptions.cancel.side_effect = stripe.InvalidRequestError(
            "No such subscription: 'sub_123'",
            param="id",
            code="resource_missing",
            http_status=404,
        )

        with pytest.raises(ProviderAPIError) as exc_info:
            await stripe_provider.cancel_subscription("sub_123")

        assert exc_info.value.is_already_canceled


class TestStripePayments:
    """Test suite for payment intents and session lookups."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_payment_intent(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test payment intents are created in cents."""
        mock_stripe_client.payment_intents.create.return_value = MagicMock(id="pi_test_123")

        intent_id = await stripe_provider.create_payment_intent(12.34, "USD")

        assert intent_id == "pi_test_123"
        mock_stripe_client.payment_intents.create.assert_called_once_with(
            params={"amount": 1234, "currency": "usd"}
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, expected", [("succeeded", True), ("requires_payment_method", False)]
    )
    async def test_verify_payment(
        self,
        stripe_provider: StripeProvider,
        mock_stripe_client: MagicMock,
        status: str,
        expected: bool,
    ) -> None:
        """Test only succeeded intents count as paid."""
        mock_stripe_client.payment_intents.retrieve.return_value = MagicMock(status=status)

        assert await stripe_provider.verify_payment("pi_test_123") is expected

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_session_order_id(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test the order ID is read from session metadata."""
        mock_stripe_client.checkout.sessions.retrieve.return_value = MagicMock(
            metadata={"order_id": "order-1"}
        )

        assert await stripe_provider.get_session_order_id("cs_test_123") == "order-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_session_order_id_missing(
        self, stripe_provider: StripeProvider, mock_stripe_client: MagicMock
    ) -> None:
        """Test a session without order metadata raises DecodingError."""
        mock_stripe_client.checkout.sessions.retrieve.return_value = MagicMock(metadata={})

        with pytest.raises(DecodingError):
            await stripe_provider.get_session_order_id("cs_test_123")


class TestStripeWebhooks:
    """Test suite for Stripe webhook verification."""

    @staticmethod
    def event_body() -> bytes:
        return json.dumps(
            {
                "id": "evt_test_123",
                "object": "event",
                "type": "checkout.session.completed",
                "data": {"object": {"id": "cs_test_123", "metadata": {"order_id": "order-1"}}},
            }
        ).encode("utf-8")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_valid_signature(
        self, stripe_provider: StripeProvider, stripe_signer: Callable[..., str]
    ) -> None:
        """Test a correctly signed event is decoded."""
        body = self.event_body()

        event = await stripe_provider.parse_webhook({"stripe-signature": stripe_signer(body)}, body)

        assert event.provider == "stripe"
        assert event.event_id == "evt_test_123"
        assert event.event_type == "checkout.session.completed"
        assert event.resource["metadata"] == {"order_id": "order-1"}
        assert event.raw_payload == body

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_signature(
        self, stripe_provider: StripeProvider, stripe_signer: Callable[..., str]
    ) -> None:
        """Test an event signed with another secret is rejected."""
        body = self.event_body()
        header = stripe_signer(body, secret="whsec_someone_else")

        with pytest.raises(AuthenticationError):
            await stripe_provider.parse_webhook({"Stripe-Signature": header}, body)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tampered_body(
        self, stripe_provider: StripeProvider, stripe_signer: Callable[..., str]
    ) -> None:
        """Test a body changed after signing is rejected."""
        header = stripe_signer(self.event_body())
        tampered = self.event_body().replace(b"order-1", b"order-2")

        with pytest.raises(AuthenticationError):
            await stripe_provider.parse_webhook({"Stripe-Signature": header}, tampered)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_signature_header(self, stripe_provider: StripeProvider) -> None:
        """Test a delivery without a signature header is rejected."""
        with pytest.raises(AuthenticationError):
            await stripe_provider.parse_webhook({}, self.event_body())

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_webhook_secret(self, mock_stripe_client: MagicMock) -> None:
        """Test verification requires a configured signing secret."""
        provider = StripeProvider(
            settings=Settings(stripe_secret_key="sk_test_fake", stripe_webhook_secret=None),
            client=mock_stripe_client,
        )

        with pytest.raises(ConfigurationError):
            await provider.parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, self.event_body())
