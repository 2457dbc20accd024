"""
Pytest configuration and fixtures.
"""
import asyncio
import hashlib
import hmac
import json
import time
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from payment_orchestrator.config import Settings
from payment_orchestrator.config.settings import PAYPAL_SANDBOX_BASE_URL
from payment_orchestrator.core.ledger import InMemoryLedger
from payment_orchestrator.integrations.paypal_auth import TOKEN_PATH, PayPalTokenManager
from payment_orchestrator.integrations.paypal_client import PayPalProvider
from payment_orchestrator.integrations.stripe_client import StripeProvider


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests with every network faked")
    config.addinivalue_line("markers", "integration: tests spanning several components")


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class PayPalStub:
    """
    In-process stand-in for the PayPal REST API.

    Responses are queued per (method, path); the last queued response for a
    route is reused once the queue is down to one entry.
    """

    access_token = "A21AAFake-access-token"
    expires_in = 32400

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Tuple[int, Any, Optional[bytes]]]] = {}
        self.requests: List[httpx.Request] = []
        self.token_calls = 0
        self.token_delay = 0.01
        self.add(
            "POST",
            TOKEN_PATH,
            json={"access_token": self.access_token, "expires_in": self.expires_in},
        )

    def add(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json: Optional[Any] = None,
        content: Optional[bytes] = None,
    ) -> "PayPalStub":
        self.routes.setdefault((method, path), []).append((status_code, json, content))
        return self

    def replace(self, method: str, path: str, status_code: int = 200, **kwargs: Any) -> "PayPalStub":
        self.routes.pop((method, path), None)
        return self.add(method, path, status_code, **kwargs)

    def paths(self, exclude_token: bool = True) -> List[str]:
        return [
            request.url.path
            for request in self.requests
            if not (exclude_token and request.url.path == TOKEN_PATH)
        ]

    def last_json(self, path: str) -> Dict[str, Any]:
        for request in reversed(self.requests):
            if request.url.path == path:
                return json.loads(request.content)
        raise AssertionError(f"No request sent to {path}")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == TOKEN_PATH:
            self.token_calls += 1
            await asyncio.sleep(self.token_delay)

        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
        status_code, body, content = queue.pop(0) if len(queue) > 1 else queue[0]
        if body is not None:
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, content=content or b"")


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        stripe_webhook_secret="whsec_test_fake_secret",
        paypal_client_id="paypal-client-id",
        paypal_client_secret="paypal-client-secret",
        paypal_mode="sandbox",
        paypal_webhook_id=None,
        redis_url="redis://localhost:6379/1",
        capture_retry_max_attempts=3,
        capture_retry_base_delay=0,
        app_name="payment-orchestrator-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def paypal_stub() -> PayPalStub:
    return PayPalStub()


@pytest_asyncio.fixture
async def paypal_http_client(paypal_stub: PayPalStub) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """HTTP client routed to the PayPal stub."""
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(paypal_stub.handler),
        base_url=PAYPAL_SANDBOX_BASE_URL,
    ) as client:
        yield client


@pytest.fixture
def token_manager(
    test_settings: Settings, paypal_http_client: httpx.AsyncClient, clock: FakeClock
) -> PayPalTokenManager:
    return PayPalTokenManager(settings=test_settings, http_client=paypal_http_client, clock=clock)


@pytest.fixture
def paypal_provider(
    test_settings: Settings, token_manager: PayPalTokenManager
) -> PayPalProvider:
    return PayPalProvider(settings=test_settings, token_manager=token_manager)


@pytest.fixture
def mock_stripe_client() -> MagicMock:
    """Stand-in for stripe.StripeClient with a hosted checkout session."""
    client = MagicMock()
    session = MagicMock()
    session.id = "cs_test_123"
    session.url = "https://checkout.stripe.com/c/pay/cs_test_123"
    client.checkout.sessions.create.return_value = session
    return client


@pytest.fixture
def stripe_provider(test_settings: Settings, mock_stripe_client: MagicMock) -> StripeProvider:
    return StripeProvider(settings=test_settings, client=mock_stripe_client)


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def stripe_signer(test_settings: Settings) -> Callable[[bytes], str]:
    """Build a valid Stripe-Signature header for a payload."""

    def sign(payload: bytes, secret: Optional[str] = None, timestamp: Optional[int] = None) -> str:
        timestamp = timestamp or int(time.time())
        secret = secret or test_settings.stripe_webhook_secret
        signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
        signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return sign
