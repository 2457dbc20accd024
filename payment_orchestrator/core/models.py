"""Value objects passed between the provider adapters and their callers."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

DEFAULT_CURRENCY = "USD"

_CENT = Decimal("0.01")


class PaymentMethod(str, Enum):
    """Payment method tag selecting a provider adapter."""

    CARD = "card"
    PEER = "peer"


def to_minor_units(amount_usd: Union[float, Decimal]) -> int:
    """
    Convert a dollar amount into cents, rounding half up to the nearest cent.

    The amount goes through its decimal string form so binary float noise
    (``0.1 * 100 == 10.000000000000002``) never leaks into the result.
    """
    amount = amount_usd if isinstance(amount_usd, Decimal) else Decimal(str(amount_usd))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(amount_usd: Union[float, Decimal]) -> str:
    """Format a dollar amount with exactly two decimals ("29.00")."""
    amount = amount_usd if isinstance(amount_usd, Decimal) else Decimal(str(amount_usd))
    return str(amount.quantize(_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CheckoutSession:
    """Provider-hosted checkout the end user is redirected to."""

    provider: str
    provider_session_id: str
    redirect_url: str
    order_id: str
    amount_usd: Decimal
    description: str
    currency: str = DEFAULT_CURRENCY


@dataclass(frozen=True)
class SubscriptionPlanRef:
    """Pricing catalog entry a subscription is created from."""

    plan_type: str
    name: str
    monthly_price_usd: Decimal
    limits: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PeerNetworkCredential:
    """Cached PayPal access token; replaced as a whole on refresh."""

    access_token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return bool(self.access_token) and now < self.expires_at


@dataclass
class ProvisionedBillingResources:
    """Remote resources created by one subscription provisioning saga."""

    product_id: Optional[str] = None
    plan_id: Optional[str] = None
    subscription_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "product_id": self.product_id,
            "plan_id": self.plan_id,
            "subscription_id": self.subscription_id,
        }


@dataclass(frozen=True)
class WebhookEvent:
    """A verified, decoded payment network notification."""

    provider: str
    event_id: str
    event_type: str
    resource: Dict[str, Any]
    raw_payload: bytes
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class WebhookResult:
    """
    Outcome of one webhook delivery.

    ``handled`` is True whenever the network should stop redelivering, which
    includes duplicates and event types this layer does not act on.
    """

    handled: bool
    status: str  # processed, duplicate, ignored
    event_id: str
    event_type: str
