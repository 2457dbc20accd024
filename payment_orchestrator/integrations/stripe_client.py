"""
Stripe card-network adapter.

Implements:
- One-time checkout sessions priced in cents
- Monthly subscription checkout sessions priced from the pricing catalog
- Subscription cancellation
- Payment intent creation and verification
- Webhook signature verification
"""
import json
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import stripe
import structlog

from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.models import (
    CheckoutSession,
    WebhookEvent,
    to_minor_units,
)
from payment_orchestrator.core.pricing import PricingCatalog, StaticPricingCatalog
from payment_orchestrator.core.provider import PaymentProvider
from payment_orchestrator.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DecodingError,
    ProviderAPIError,
)
from payment_orchestrator.monitoring.metrics import track_provider_call
from payment_orchestrator.utils import get_header

logger = structlog.get_logger(__name__)

STRIPE_CHECKOUT_PAY_URL = "https://checkout.stripe.com/pay/"
SIGNATURE_HEADER = "Stripe-Signature"


class StripeProvider(PaymentProvider):
    """
    Card-network adapter backed by a dependency-injected ``stripe.StripeClient``.

    The client is built lazily from settings on first use so a missing secret
    key fails that call with ConfigurationError instead of failing at import.
    """

    name = "stripe"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        pricing: Optional[PricingCatalog] = None,
        client: Optional[stripe.StripeClient] = None,
    ):
        """
        Initialize Stripe adapter.

        Args:
            settings: Optional settings (uses cached settings if not provided)
            pricing: Optional pricing catalog (default plans if not provided)
            client: Optional pre-built Stripe client
        """
        self.settings = settings or get_settings()
        self.pricing = pricing or StaticPricingCatalog()
        self._client = client

    @property
    def client(self) -> stripe.StripeClient:
        """Return the Stripe client, building it on first use."""
        if self._client is None:
            secret_key = self.settings.stripe_secret_key
            if not secret_key:
                raise ConfigurationError("STRIPE_SECRET_KEY environment variable is not set")
            self._client = stripe.StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=self.settings.http_timeout_seconds),
                max_network_retries=0,
            )
            logger.info("stripe_client_initialized", test_mode=self.settings.is_test_mode)
        return self._client

    def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run one SDK call, wrapping every Stripe failure as ProviderAPIError."""
        try:
            with track_provider_call(self.name, operation):
                return func(*args, **kwargs)
        except stripe.StripeError as e:
            logger.error(
                "stripe_api_error",
                operation=operation,
                status_code=e.http_status,
                error_code=e.code,
                error_message=str(e),
            )
            raise ProviderAPIError(
                e.user_message or str(e) or "Stripe request failed",
                provider=self.name,
                operation=operation,
                status_code=e.http_status,
                body=e.http_body,
                code=e.code,
            ) from e

    async def create_checkout(
        self, order_id: str, amount_usd: Union[float, Decimal], description: str
    ) -> CheckoutSession:
        """Create a one-time payment checkout session for an order."""
        amount = self.validate_checkout_request(order_id, amount_usd)
        unit_amount = to_minor_units(amount)

        logger.info(
            "creating_checkout_session",
            order_id=order_id,
            amount_cents=unit_amount,
        )

        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {"name": description},
                        "unit_amount": unit_amount,
                    },
                    "quantity": 1,
                }
            ],
            "mode": "payment",
            "success_url": self.settings.stripe_success_url,
            "cancel_url": self.settings.stripe_cancel_url,
            "metadata": {"order_id": order_id},
        }
        session = self._call(
            "create_checkout_session",
            self.client.checkout.sessions.create,
            params=params,
        )

        logger.info("checkout_session_created", order_id=order_id, session_id=session.id)

        return CheckoutSession(
            provider=self.name,
            provider_session_id=session.id,
            redirect_url=self._redirect_url(session),
            order_id=order_id,
            amount_usd=amount,
            description=description,
        )

    async def create_subscription(self, user_id: str, plan_type: str) -> Tuple[str, str]:
        """Create a monthly subscription checkout session."""
        plan = self.pricing.get_plan(plan_type)

        logger.info("creating_subscription_checkout", user_id=user_id, plan_type=plan_type)

        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": "usd",
                        "recurring": {"interval": "month"},
                        "product_data": {"name": plan.name},
                        "unit_amount": to_minor_units(plan.monthly_price_usd),
                    },
                    "quantity": 1,
                }
            ],
            "mode": "subscription",
            "success_url": self.settings.stripe_subscription_success_url,
            "cancel_url": self.settings.stripe_subscription_cancel_url,
            "metadata": {"user_id": user_id, "plan_type": plan_type},
            "subscription_data": {"metadata": {"user_id": user_id, "plan_type": plan_type}},
        }
        session = self._call(
            "create_subscription_checkout",
            self.client.checkout.sessions.create,
            params=params,
        )

        logger.info(
            "subscription_checkout_created",
            user_id=user_id,
            plan_type=plan_type,
            session_id=session.id,
        )
        return session.id, self._redirect_url(session)

    async def cancel_subscription(self, provider_subscription_id: str) -> None:
        logger.info("canceling_subscription", subscription_id=provider_subscription_id)
        self._call(
            "cancel_subscription",
            self.client.subscriptions.cancel,
            provider_subscription_id,
        )
        logger.info("subscription_canceled", subscription_id=provider_subscription_id)

    async def create_payment_intent(
        self, amount_usd: Union[float, Decimal], currency: str = "usd"
    ) -> str:
        """Create a payment intent and return its ID."""
        amount = self.validate_checkout_request("payment_intent", amount_usd)
        intent = self._call(
            "create_payment_intent",
            self.client.payment_intents.create,
            params={"amount": to_minor_units(amount), "currency": currency.lower()},
        )
        logger.info("payment_intent_created", payment_intent_id=intent.id)
        return intent.id

    async def verify_payment(self, payment_intent_id: str) -> bool:
        """Return True when the payment intent has succeeded."""
        intent = self._call(
            "retrieve_payment_intent",
            self.client.payment_intents.retrieve,
            payment_intent_id,
        )
        return intent.status == "succeeded"

    async def get_session_order_id(self, session_id: str) -> str:
        """
        Return the order ID stored on a checkout session.

        Raises:
            DecodingError: If the session carries no order ID
        """
        session = self._call(
            "retrieve_checkout_session",
            self.client.checkout.sessions.retrieve,
            session_id,
        )
        metadata = getattr(session, "metadata", None) or {}
        order_id = metadata.get("order_id")
        if not order_id:
            raise DecodingError(f"Checkout session {session_id} has no order_id metadata")
        return order_id

    async def parse_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookEvent:
        """
        Verify a Stripe webhook signature and decode the event.

        Raises:
            ConfigurationError: If no webhook secret is configured
            AuthenticationError: If the signature is missing or invalid
            DecodingError: If the payload is not a Stripe event
        """
        secret = self.settings.stripe_webhook_secret
        if not secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET environment variable is not set")

        signature = get_header(headers, SIGNATURE_HEADER)
        if not signature:
            raise AuthenticationError("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(
                payload=raw_body,
                sig_header=signature,
                secret=secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.error("webhook_signature_verification_failed", provider=self.name, error=str(e))
            raise AuthenticationError(f"Invalid webhook signature: {e}") from e
        except ValueError as e:
            raise DecodingError(f"Invalid Stripe webhook payload: {e}") from e

        try:
            payload = json.loads(raw_body)
            event_id = payload["id"]
            event_type = payload["type"]
            resource = payload["data"]["object"]
        except (ValueError, KeyError, TypeError) as e:
            raise DecodingError(f"Invalid Stripe webhook payload: {e}") from e

        logger.info("webhook_signature_verified", provider=self.name, event_id=event_id)
        return WebhookEvent(
            provider=self.name,
            event_id=event_id,
            event_type=event_type,
            resource=resource,
            raw_payload=raw_body,
        )

    @staticmethod
    def _redirect_url(session: Any) -> str:
        url = getattr(session, "url", None)
        if isinstance(url, str) and url:
            return url
        return STRIPE_CHECKOUT_PAY_URL + session.id
