"""Provider-agnostic payment contract and the adapter selector."""
import abc
from decimal import Decimal
from typing import Mapping, Tuple, Union

from payment_orchestrator.core.models import (
    CheckoutSession,
    PaymentMethod,
    WebhookEvent,
    to_minor_units,
)
from payment_orchestrator.exceptions import PaymentValidationError, UnsupportedMethodError


class PaymentProvider(abc.ABC):
    """Contract implemented identically by every payment network adapter."""

    name: str = ""

    def get_provider_name(self) -> str:
        """Static provider identifier."""
        return self.name

    @abc.abstractmethod
    async def create_checkout(
        self, order_id: str, amount_usd: Union[float, Decimal], description: str
    ) -> CheckoutSession:
        """
        Create a one-time checkout for an order.

        Raises:
            PaymentValidationError: If amount or order ID are invalid
            ConfigurationError: If the provider credentials are absent
            ProviderAPIError: If the remote call is rejected
        """

    @abc.abstractmethod
    async def create_subscription(self, user_id: str, plan_type: str) -> Tuple[str, str]:
        """
        Start a monthly subscription.

        Returns:
            Tuple[str, str]: Provider reference ID and redirect URL

        Raises:
            NotFoundError: If the plan type is unknown
        """

    @abc.abstractmethod
    async def cancel_subscription(self, provider_subscription_id: str) -> None:
        """Cancel a provider subscription; remote errors are surfaced."""

    @abc.abstractmethod
    async def parse_webhook(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookEvent:
        """
        Verify and decode an incoming notification.

        Raises:
            AuthenticationError: If the notification is not authentic
            DecodingError: If the body cannot be decoded
        """

    @staticmethod
    def validate_checkout_request(order_id: str, amount_usd: Union[float, Decimal]) -> Decimal:
        """Validate checkout input and return the amount as a Decimal."""
        if not order_id:
            raise PaymentValidationError("Order ID is required")
        try:
            amount = Decimal(str(amount_usd))
        except ArithmeticError as e:
            raise PaymentValidationError(f"Invalid amount: {amount_usd!r}") from e
        if not amount.is_finite() or amount <= 0:
            raise PaymentValidationError("Amount must be positive")
        if to_minor_units(amount) < 1:
            raise PaymentValidationError("Amount must be at least one cent")
        return amount


class ProviderSelector:
    """Maps a payment method to its adapter."""

    def __init__(self, card: PaymentProvider, peer: PaymentProvider):
        self._providers = {
            PaymentMethod.CARD: card,
            PaymentMethod.PEER: peer,
        }

    def select(self, payment_method: Union[str, PaymentMethod]) -> PaymentProvider:
        """
        Return the adapter for a payment method.

        Raises:
            UnsupportedMethodError: For anything but "card" or "peer"
        """
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise UnsupportedMethodError(f"Unsupported payment method: {payment_method}") from None
        return self._providers[method]

    def default(self) -> PaymentProvider:
        return self._providers[PaymentMethod.CARD]
