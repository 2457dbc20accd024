"""Payment network adapters and webhook processing."""
from .event_store import RedisProcessedEventSet
from .paypal_auth import PayPalTokenManager
from .paypal_client import PayPalProvider
from .stripe_client import StripeProvider
from .webhook_handler import WebhookDispatcher

__all__ = [
    "PayPalProvider",
    "PayPalTokenManager",
    "RedisProcessedEventSet",
    "StripeProvider",
    "WebhookDispatcher",
]
