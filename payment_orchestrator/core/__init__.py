"""Provider-agnostic payment contract and orchestration logic."""
from .checkout_service import CheckoutService
from .ledger import InMemoryLedger, Ledger, ProcessedEventSet
from .pricing import StaticPricingCatalog
from .provider import PaymentProvider, ProviderSelector
from .saga import Saga, SagaExecutionError

__all__ = [
    "CheckoutService",
    "InMemoryLedger",
    "Ledger",
    "PaymentProvider",
    "ProcessedEventSet",
    "ProviderSelector",
    "Saga",
    "SagaExecutionError",
    "StaticPricingCatalog",
]
