"""Payment-order reconciliation service for Stripe and PayPal."""

__version__ = "0.1.0"
