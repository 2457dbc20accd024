"""
Error taxonomy shared by every payment provider adapter.

Adapters never swallow remote failures; they wrap them in one of these
exceptions with enough context (provider, operation, status, body) for the
caller to log and decide on retries and user-facing messaging.
"""
from typing import Any, Optional


class PaymentError(Exception):
    """Base exception for payment orchestration errors."""

    pass


class PaymentValidationError(PaymentError):
    """Raised when request input validation fails."""

    pass


class ConfigurationError(PaymentError):
    """Raised when provider credentials or settings are missing or invalid."""

    pass


class NotFoundError(PaymentError):
    """Raised when a plan type does not resolve in the pricing catalog."""

    pass


class UnsupportedMethodError(PaymentError):
    """Raised when no adapter exists for a payment method."""

    pass


class DecodingError(PaymentError):
    """Raised when a provider response has an unexpected shape."""

    pass


class AuthenticationError(PaymentError):
    """Raised when a webhook signature is missing or invalid."""

    pass


class WebhookProcessingError(PaymentError):
    """Raised when a webhook event handler fails."""

    def __init__(self, message: str, event_id: str, event_type: str):
        super().__init__(message)
        self.event_id = event_id
        self.event_type = event_type


# Statuses the networks answer with when a subscription is already gone.
_ALREADY_CANCELED_STATUSES = {404, 422}
_ALREADY_CANCELED_CODES = {"resource_missing", "SUBSCRIPTION_STATUS_INVALID"}


class ProviderAPIError(PaymentError):
    """Raised when a remote payment network rejects or fails a call."""

    def __init__(
        self,
        message: str,
        provider: str,
        operation: str,
        status_code: Optional[int] = None,
        body: Any = None,
        code: Optional[str] = None,
    ):
        """
        Initialize provider error.

        Args:
            message: Error message
            provider: Provider name ("stripe" or "paypal")
            operation: Operation that failed (e.g. "create_order")
            status_code: HTTP status of the remote response, None for transport errors
            body: Raw response body, if any
            code: Provider-specific error code, if any
        """
        super().__init__(message)
        self.provider = provider
        self.operation = operation
        self.status_code = status_code
        self.body = body
        self.code = code

    @property
    def retryable(self) -> bool:
        """Transport failures, rate limits and server errors may succeed later."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

    @property
    def is_already_canceled(self) -> bool:
        """True when the remote answer means the subscription is already inactive."""
        if self.code in _ALREADY_CANCELED_CODES:
            return True
        if self.status_code in _ALREADY_CANCELED_STATUSES:
            return True
        return isinstance(self.body, str) and "SUBSCRIPTION_STATUS_INVALID" in self.body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return f"[{self.provider}:{self.operation}] {base}"
        return f"[{self.provider}:{self.operation}] {base} (status {self.status_code})"


class SubscriptionProvisioningError(ProviderAPIError):
    """
    Raised when the subscription provisioning saga fails part way.

    Carries the identifiers of remote resources created before the failure so
    they can be reconciled (the product created in step one can never be
    removed from the peer network).
    """

    def __init__(
        self,
        message: str,
        failed_step: str,
        resources: Any,
        cause: Optional[PaymentError] = None,
    ):
        status_code = getattr(cause, "status_code", None)
        super().__init__(
            message,
            provider="paypal",
            operation=failed_step,
            status_code=status_code,
            body=getattr(cause, "body", None),
            code=getattr(cause, "code", None),
        )
        self.failed_step = failed_step
        self.resources = resources
        self.cause = cause

    @property
    def retryable(self) -> bool:
        """Only a transient remote failure makes the whole saga worth retrying."""
        return isinstance(self.cause, ProviderAPIError) and self.cause.retryable
