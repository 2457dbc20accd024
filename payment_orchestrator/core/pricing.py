"""Pricing catalog lookup consumed by subscription creation."""
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Protocol

from payment_orchestrator.core.models import SubscriptionPlanRef
from payment_orchestrator.exceptions import NotFoundError


class PricingCatalog(Protocol):
    """Read-only plan lookup keyed by plan type."""

    def get_plan(self, plan_type: str) -> SubscriptionPlanRef:
        """Return the plan or raise NotFoundError."""


# Monthly USD plans; 1 USD buys 100 credits.
DEFAULT_PLANS = (
    SubscriptionPlanRef(
        plan_type="basic",
        name="Basic",
        monthly_price_usd=Decimal("9.00"),
        limits={
            "basic_scans": 50,
            "monthly_credits": 900,
            "task_history_days": 30,
            "api_access": None,
        },
    ),
    SubscriptionPlanRef(
        plan_type="pro",
        name="Pro",
        monthly_price_usd=Decimal("29.00"),
        limits={
            "basic_scans": 200,
            "monthly_credits": 2900,
            "task_history_days": 90,
            "api_access": 1000,
        },
    ),
    SubscriptionPlanRef(
        plan_type="enterprise",
        name="Enterprise",
        monthly_price_usd=Decimal("99.00"),
        limits={
            "basic_scans": 1000,
            "monthly_credits": 9900,
            "task_history_days": -1,  # forever
            "api_access": 10000,
        },
    ),
)


class StaticPricingCatalog:
    """In-process pricing catalog backed by a fixed list of plans."""

    def __init__(self, plans: Optional[Iterable[SubscriptionPlanRef]] = None):
        self._plans: Dict[str, SubscriptionPlanRef] = {
            plan.plan_type: plan for plan in (plans if plans is not None else DEFAULT_PLANS)
        }

    def get_plan(self, plan_type: str) -> SubscriptionPlanRef:
        plan = self._plans.get(plan_type)
        if plan is None:
            raise NotFoundError(f"Unknown plan type: {plan_type}")
        return plan

    def list_plans(self) -> List[SubscriptionPlanRef]:
        return list(self._plans.values())
