"""Payment orchestration over the Stripe card network and the PayPal peer network."""

__version__ = "0.1.0"
