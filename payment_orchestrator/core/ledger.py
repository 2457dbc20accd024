"""
Ledger interfaces consumed by the orchestration layer.

The Ledger (orders, subscriptions, credits) is owned by the host application;
this module only describes what the payment layer needs from it, plus an
in-memory implementation used in development and tests.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

import structlog

from payment_orchestrator.core.models import CheckoutSession

logger = structlog.get_logger(__name__)


class ProcessedEventSet(Protocol):
    """
    Record of webhook events already acted upon.

    ``claim_event`` must be atomic: of several concurrent claims for the same
    event exactly one returns True.
    """

    async def claim_event(self, provider: str, event_id: str) -> bool:
        """Claim an event for processing; False if it was seen before."""

    async def complete_event(self, provider: str, event_id: str) -> None:
        """Mark a claimed event as successfully processed."""

    async def release_event(self, provider: str, event_id: str) -> None:
        """Drop a claim after a failed handler so redelivery can retry."""


class Ledger(ProcessedEventSet, Protocol):
    """Persistence collaborator updated from checkouts and webhooks."""

    async def find_checkout(self, order_id: str) -> Optional[CheckoutSession]:
        """Return the checkout previously created for an order, if any."""

    async def record_checkout(self, session: CheckoutSession) -> None:
        """Remember the checkout created for an order."""

    async def reconcile_order(
        self,
        order_id: str,
        provider: str,
        provider_payment_id: str,
        provider_order_id: Optional[str] = None,
    ) -> None:
        """Mark an order paid."""

    async def activate_subscription(
        self, provider: str, provider_subscription_id: str, metadata: Dict[str, Any]
    ) -> None:
        """Activate the subscription record for a provider subscription."""

    async def deactivate_subscription(
        self, provider: str, provider_subscription_id: str, reason: str
    ) -> None:
        """Deactivate the subscription record for a provider subscription."""


@dataclass
class PaidOrder:
    """Settlement recorded against an order."""

    order_id: str
    provider: str
    provider_payment_id: str
    provider_order_id: Optional[str]
    paid_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SubscriptionRecord:
    """Provider subscription and its activation state."""

    provider: str
    provider_subscription_id: str
    active: bool
    metadata: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None


class InMemoryLedger:
    """Process-local Ledger; the event set is guarded by an asyncio lock."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._events: Dict[Tuple[str, str], str] = {}
        self.checkouts: Dict[str, CheckoutSession] = {}
        self.paid_orders: Dict[str, PaidOrder] = {}
        self.subscriptions: Dict[Tuple[str, str], SubscriptionRecord] = {}

    async def claim_event(self, provider: str, event_id: str) -> bool:
        async with self._lock:
            key = (provider, event_id)
            if key in self._events:
                return False
            self._events[key] = "processing"
            return True

    async def complete_event(self, provider: str, event_id: str) -> None:
        async with self._lock:
            self._events[(provider, event_id)] = "done"

    async def release_event(self, provider: str, event_id: str) -> None:
        async with self._lock:
            self._events.pop((provider, event_id), None)

    def processed_event_ids(self) -> List[str]:
        return [event_id for (_, event_id), state in self._events.items() if state == "done"]

    async def find_checkout(self, order_id: str) -> Optional[CheckoutSession]:
        return self.checkouts.get(order_id)

    async def record_checkout(self, session: CheckoutSession) -> None:
        self.checkouts[session.order_id] = session

    async def reconcile_order(
        self,
        order_id: str,
        provider: str,
        provider_payment_id: str,
        provider_order_id: Optional[str] = None,
    ) -> None:
        self.paid_orders[order_id] = PaidOrder(
            order_id=order_id,
            provider=provider,
            provider_payment_id=provider_payment_id,
            provider_order_id=provider_order_id,
        )
        logger.info("ledger_order_reconciled", order_id=order_id, provider=provider)

    async def activate_subscription(
        self, provider: str, provider_subscription_id: str, metadata: Dict[str, Any]
    ) -> None:
        self.subscriptions[(provider, provider_subscription_id)] = SubscriptionRecord(
            provider=provider,
            provider_subscription_id=provider_subscription_id,
            active=True,
            metadata=dict(metadata),
        )

    async def deactivate_subscription(
        self, provider: str, provider_subscription_id: str, reason: str
    ) -> None:
        record = self.subscriptions.get((provider, provider_subscription_id))
        if record is None:
            record = SubscriptionRecord(
                provider=provider,
                provider_subscription_id=provider_subscription_id,
                active=False,
            )
            self.subscriptions[(provider, provider_subscription_id)] = record
        record.active = False
        record.reason = reason
