"""
Webhook dispatcher with signature verification and event deduplication.

Implements:
- Provider-specific verification and decoding
- Event deduplication against the processed-event set
- Event type routing to Ledger updates
- Per-event failure isolation (a failed event releases its claim)
"""
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from payment_orchestrator.core.ledger import Ledger, ProcessedEventSet
from payment_orchestrator.core.models import WebhookEvent, WebhookResult
from payment_orchestrator.core.provider import PaymentProvider
from payment_orchestrator.exceptions import WebhookProcessingError
from payment_orchestrator.monitoring.logging import payment_log_context
from payment_orchestrator.monitoring.metrics import (
    webhook_events_processed_total,
    webhook_events_received_total,
    webhook_processing_duration_seconds,
)

logger = structlog.get_logger(__name__)

EventHandler = Callable[[WebhookEvent], Awaitable[Any]]

# PayPal event types
PAYPAL_CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
PAYPAL_SUBSCRIPTION_CREATED = "BILLING.SUBSCRIPTION.CREATED"
PAYPAL_SUBSCRIPTION_ACTIVATED = "BILLING.SUBSCRIPTION.ACTIVATED"
PAYPAL_SUBSCRIPTION_CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
PAYPAL_SUBSCRIPTION_EXPIRED = "BILLING.SUBSCRIPTION.EXPIRED"

# Stripe event types
STRIPE_CHECKOUT_COMPLETED = "checkout.session.completed"
STRIPE_SUBSCRIPTION_CREATED = "customer.subscription.created"
STRIPE_SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class WebhookDispatcher:
    """
    Handles one provider's webhook events with deduplication and routing.

    Unrecognised event types are accepted and recorded without side effects
    so newer notification types never cause redelivery storms.
    """

    def __init__(
        self,
        provider: PaymentProvider,
        ledger: Ledger,
        processed_events: Optional[ProcessedEventSet] = None,
        register_defaults: bool = True,
    ):
        """
        Initialize webhook dispatcher.

        Args:
            provider: Adapter that verifies and decodes this provider's events
            ledger: Ledger updated by the event handlers
            processed_events: Optional processed-event set (the ledger's if not provided)
            register_defaults: Register the built-in routes for the provider
        """
        self.provider = provider
        self.ledger = ledger
        self.processed_events = processed_events or ledger
        self.event_handlers: Dict[str, EventHandler] = {}

        if register_defaults:
            self._register_default_handlers()

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Example:
            async def handle_refund(event: WebhookEvent) -> None:
                ...

            dispatcher.register_handler("PAYMENT.CAPTURE.REFUNDED", handle_refund)
        """
        self.event_handlers[event_type] = handler
        logger.info(
            "webhook_handler_registered",
            provider=self.provider.get_provider_name(),
            event_type=event_type,
        )

    def _register_default_handlers(self) -> None:
        name = self.provider.get_provider_name()
        if name == "paypal":
            self.register_handler(PAYPAL_CAPTURE_COMPLETED, self.handle_paypal_capture_completed)
            for event_type in (PAYPAL_SUBSCRIPTION_CREATED, PAYPAL_SUBSCRIPTION_ACTIVATED):
                self.register_handler(event_type, self.handle_paypal_subscription_activated)
            for event_type in (PAYPAL_SUBSCRIPTION_CANCELLED, PAYPAL_SUBSCRIPTION_EXPIRED):
                self.register_handler(event_type, self.handle_paypal_subscription_deactivated)
        elif name == "stripe":
            self.register_handler(STRIPE_CHECKOUT_COMPLETED, self.handle_stripe_checkout_completed)
            self.register_handler(
                STRIPE_SUBSCRIPTION_CREATED, self.handle_stripe_subscription_created
            )
            self.register_handler(
                STRIPE_SUBSCRIPTION_DELETED, self.handle_stripe_subscription_deleted
            )

    async def handle_incoming_event(
        self, headers: Mapping[str, str], raw_body: bytes
    ) -> WebhookResult:
        """
        Verify, deduplicate and dispatch one webhook delivery.

        Raises:
            AuthenticationError: If the event is not authentic
            DecodingError: If the body cannot be decoded
            WebhookProcessingError: If the event handler fails
        """
        event = await self.provider.parse_webhook(headers, raw_body)
        webhook_events_received_total.labels(
            provider=event.provider, event_type=event.event_type
        ).inc()
        return await self.process_event(event)

    async def process_event(self, event: WebhookEvent) -> WebhookResult:
        """Deduplicate and dispatch an already verified event."""
        start = time.perf_counter()
        try:
            with payment_log_context(webhook_event_id=event.event_id):
                return await self._process_event(event)
        finally:
            webhook_processing_duration_seconds.labels(provider=event.provider).observe(
                time.perf_counter() - start
            )

    async def _process_event(self, event: WebhookEvent) -> WebhookResult:
        logger.info(
            "processing_webhook_event",
            provider=event.provider,
            event_id=event.event_id,
            event_type=event.event_type,
        )

        if not await self.processed_events.claim_event(event.provider, event.event_id):
            logger.info(
                "webhook_event_already_processed",
                provider=event.provider,
                event_id=event.event_id,
                event_type=event.event_type,
            )
            return self._result(event, "duplicate")

        handler = self.event_handlers.get(event.event_type)
        if handler is None:
            logger.info(
                "webhook_no_handler",
                provider=event.provider,
                event_id=event.event_id,
                event_type=event.event_type,
            )
            await self.processed_events.complete_event(event.provider, event.event_id)
            return self._result(event, "ignored")

        try:
            await handler(event)
        except Exception as e:
            logger.error(
                "webhook_event_processing_failed",
                provider=event.provider,
                event_id=event.event_id,
                event_type=event.event_type,
                error=str(e),
            )
            try:
                await self.processed_events.release_event(event.provider, event.event_id)
            except Exception as release_error:
                # Left to expire after processing_claim_ttl_seconds.
                logger.error(
                    "webhook_release_failed",
                    provider=event.provider,
                    event_id=event.event_id,
                    error=str(release_error),
                )
            webhook_events_processed_total.labels(
                provider=event.provider, event_type=event.event_type, status="failed"
            ).inc()
            raise WebhookProcessingError(
                f"Failed to process event {event.event_id}: {e}",
                event_id=event.event_id,
                event_type=event.event_type,
            ) from e

        await self.processed_events.complete_event(event.provider, event.event_id)
        logger.info(
            "webhook_event_processed_successfully",
            provider=event.provider,
            event_id=event.event_id,
            event_type=event.event_type,
        )
        return self._result(event, "processed")

    @staticmethod
    def _result(event: WebhookEvent, status: str) -> WebhookResult:
        webhook_events_processed_total.labels(
            provider=event.provider, event_type=event.event_type, status=status
        ).inc()
        return WebhookResult(
            handled=True,
            status=status,
            event_id=event.event_id,
            event_type=event.event_type,
        )

    async def handle_paypal_capture_completed(self, event: WebhookEvent) -> None:
        """
        Reconcile the order paid by a completed capture.

        Accepts both an order resource (``purchase_units[0].reference_id``)
        and a bare capture resource (``custom_id`` plus related order ID).
        """
        resource = event.resource
        purchase_units = resource.get("purchase_units") or []

        if purchase_units:
            unit = purchase_units[0] or {}
            order_id = unit.get("reference_id")
            payments = unit.get("payments") or resource.get("payments") or {}
            captures = payments.get("captures") or []
            capture_id = captures[0].get("id") if captures else None
            paypal_order_id = resource.get("id")
        else:
            order_id = resource.get("custom_id")
            capture_id = resource.get("id")
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            paypal_order_id = related.get("order_id")

        if not order_id or not capture_id:
            logger.warning(
                "paypal_capture_missing_references",
                event_id=event.event_id,
                order_id=order_id,
                capture_id=capture_id,
            )
            return

        await self.ledger.reconcile_order(
            order_id,
            provider=event.provider,
            provider_payment_id=capture_id,
            provider_order_id=paypal_order_id,
        )

    async def handle_paypal_subscription_activated(self, event: WebhookEvent) -> None:
        subscription_id = event.resource.get("id")
        if not subscription_id:
            logger.warning("paypal_subscription_missing_id", event_id=event.event_id)
            return

        user_id, _, plan_type = (event.resource.get("custom_id") or "").partition("|")
        await self.ledger.activate_subscription(
            event.provider,
            subscription_id,
            {
                "user_id": user_id or None,
                "plan_type": plan_type or None,
                "plan_id": event.resource.get("plan_id"),
                "status": event.resource.get("status"),
            },
        )

    async def handle_paypal_subscription_deactivated(self, event: WebhookEvent) -> None:
        subscription_id = event.resource.get("id")
        if not subscription_id:
            logger.warning("paypal_subscription_missing_id", event_id=event.event_id)
            return

        await self.ledger.deactivate_subscription(
            event.provider,
            subscription_id,
            reason=event.resource.get("status") or event.event_type,
        )

    async def handle_stripe_checkout_completed(self, event: WebhookEvent) -> None:
        session = event.resource
        metadata = session.get("metadata") or {}

        order_id = metadata.get("order_id")
        if order_id:
            await self.ledger.reconcile_order(
                order_id,
                provider=event.provider,
                provider_payment_id=session.get("payment_intent") or session.get("id"),
                provider_order_id=session.get("id"),
            )

        subscription_id = session.get("subscription")
        if session.get("mode") == "subscription" and subscription_id:
            await self.ledger.activate_subscription(
                event.provider,
                subscription_id,
                {
                    "user_id": metadata.get("user_id"),
                    "plan_type": metadata.get("plan_type"),
                    "checkout_session_id": session.get("id"),
                },
            )

    async def handle_stripe_subscription_created(self, event: WebhookEvent) -> None:
        subscription = event.resource
        metadata = subscription.get("metadata") or {}
        await self.ledger.activate_subscription(
            event.provider,
            subscription["id"],
            {
                "user_id": metadata.get("user_id"),
                "plan_type": metadata.get("plan_type"),
                "status": subscription.get("status"),
            },
        )

    async def handle_stripe_subscription_deleted(self, event: WebhookEvent) -> None:
        subscription = event.resource
        await self.ledger.deactivate_subscription(
            event.provider,
            subscription["id"],
            reason=subscription.get("status") or "canceled",
        )
