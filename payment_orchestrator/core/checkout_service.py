"""
Checkout orchestration on the caller side of the provider adapters.

Orchestrates the order payment flow:
1. Return the checkout already recorded for the order, if any
2. Create the checkout through the selected adapter
3. Record it in the Ledger
4. Capture (peer network) or verify (card network) once the buyer returns
5. Reconcile the order in the Ledger

Adapters never retry; transient capture failures are retried here.
"""
from decimal import Decimal
from typing import Optional, Tuple, Union

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.ledger import Ledger
from payment_orchestrator.core.models import CheckoutSession, PaymentMethod
from payment_orchestrator.core.provider import ProviderSelector
from payment_orchestrator.exceptions import (
    NotFoundError,
    PaymentValidationError,
    ProviderAPIError,
)
from payment_orchestrator.monitoring.logging import payment_log_context

logger = structlog.get_logger(__name__)


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, ProviderAPIError) and error.retryable


class CheckoutService:
    """
    Order checkout use case over the card and peer network adapters.

    Handles checkout creation with Ledger deduplication, subscription
    lifecycle calls and post-approval confirmation.
    """

    def __init__(
        self,
        selector: ProviderSelector,
        ledger: Ledger,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize checkout service.

        Args:
            selector: Maps payment methods to adapters
            ledger: Ledger holding checkouts and paid orders
            settings: Optional settings (uses cached settings if not provided)
        """
        self.selector = selector
        self.ledger = ledger
        self.settings = settings or get_settings()

    async def create_checkout(
        self,
        payment_method: Union[str, PaymentMethod],
        order_id: str,
        amount_usd: Union[float, Decimal],
        description: str,
    ) -> CheckoutSession:
        """
        Create a checkout for an order, reusing one already recorded.

        Args:
            payment_method: "card" or "peer"
            order_id: Order identifier
            amount_usd: Order total in USD
            description: Line item description

        Returns:
            CheckoutSession: Existing or newly created checkout

        Raises:
            UnsupportedMethodError: If the payment method is unknown
            PaymentValidationError: If amount or order ID are invalid
            ProviderAPIError: If the provider rejects the checkout
        """
        with payment_log_context(order_id=order_id):
            provider = self.selector.select(payment_method)

            existing = await self.ledger.find_checkout(order_id)
            if existing is not None:
                logger.info(
                    "checkout_already_exists",
                    order_id=order_id,
                    provider=existing.provider,
                    provider_session_id=existing.provider_session_id,
                )
                return existing

            session = await provider.create_checkout(order_id, amount_usd, description)
            await self.ledger.record_checkout(session)

            logger.info(
                "checkout_created",
                order_id=order_id,
                provider=session.provider,
                provider_session_id=session.provider_session_id,
            )
            return session

    async def create_subscription(
        self, payment_method: Union[str, PaymentMethod], user_id: str, plan_type: str
    ) -> Tuple[str, str]:
        """Start a subscription; returns the provider reference and redirect URL."""
        provider = self.selector.select(payment_method)
        return await provider.create_subscription(user_id, plan_type)

    async def cancel_subscription(
        self,
        payment_method: Union[str, PaymentMethod],
        provider_subscription_id: str,
        tolerate_already_canceled: bool = True,
    ) -> bool:
        """
        Cancel a subscription.

        Returns:
            bool: True if canceled now, False if it was already gone

        Raises:
            ProviderAPIError: On any other remote failure
        """
        provider = self.selector.select(payment_method)
        try:
            await provider.cancel_subscription(provider_subscription_id)
        except ProviderAPIError as e:
            if tolerate_already_canceled and e.is_already_canceled:
                logger.info(
                    "subscription_already_canceled",
                    provider=provider.get_provider_name(),
                    subscription_id=provider_subscription_id,
                )
                return False
            raise
        return True

    async def confirm_peer_order(self, order_id: str) -> str:
        """
        Capture the approved PayPal order for an order and reconcile it.

        Returns:
            str: Capture ID

        Raises:
            NotFoundError: If no PayPal checkout is recorded for the order
            ProviderAPIError: If capture still fails after retries
        """
        with payment_log_context(order_id=order_id):
            session = await self.ledger.find_checkout(order_id)
            provider = self.selector.select(PaymentMethod.PEER)
            if session is None or session.provider != provider.get_provider_name():
                raise NotFoundError(f"No PayPal checkout recorded for order {order_id}")

            attempts = 0
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_transient),
                stop=stop_after_attempt(self.settings.capture_retry_max_attempts),
                wait=wait_exponential(multiplier=self.settings.capture_retry_base_delay, max=10),
                reraise=True,
            ):
                with attempt:
                    attempts += 1
                    if attempts > 1:
                        logger.warning(
                            "retrying_paypal_capture",
                            order_id=order_id,
                            attempt=attempts,
                        )
                    capture_id = await provider.capture_order(session.provider_session_id)

            await self.ledger.reconcile_order(
                order_id,
                provider=session.provider,
                provider_payment_id=capture_id,
                provider_order_id=session.provider_session_id,
            )
            logger.info("peer_order_confirmed", order_id=order_id, capture_id=capture_id)
            return capture_id

    async def verify_card_session(self, session_id: str) -> str:
        """
        Resolve the order ID a completed Stripe checkout session belongs to.

        Raises:
            PaymentValidationError: If the session ID is empty
            DecodingError: If the session carries no order ID
        """
        if not session_id:
            raise PaymentValidationError("Session ID is required")
        provider = self.selector.select(PaymentMethod.CARD)
        return await provider.get_session_order_id(session_id)
