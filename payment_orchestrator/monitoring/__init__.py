"""Logging and metrics for the payment orchestrator."""
from .logging import payment_log_context, setup_logging

__all__ = ["payment_log_context", "setup_logging"]
