"""
PayPal OAuth2 client-credentials token manager.

Owns one cached access token per instance. The token is refreshed before it
expires and refreshes are serialised, so concurrent callers never issue two
grants at once nor observe a token without its matching expiry.
"""
import asyncio
import time
from typing import Callable, Optional

import httpx
import structlog

from payment_orchestrator.config import Settings, get_settings
from payment_orchestrator.core.models import PeerNetworkCredential
from payment_orchestrator.exceptions import (
    ConfigurationError,
    DecodingError,
    ProviderAPIError,
)
from payment_orchestrator.monitoring.metrics import paypal_token_refreshes_total

logger = structlog.get_logger(__name__)

TOKEN_PATH = "/v1/oauth2/token"


class PayPalTokenManager:
    """
    Caches a PayPal access token and refreshes it on demand.

    States: uninitialized -> valid -> (near expiry) -> refreshing -> valid.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize token manager.

        Args:
            settings: Optional settings (uses cached settings if not provided)
            http_client: Optional HTTP client; must target the PayPal base URL
            clock: Monotonic time source in seconds
        """
        self.settings = settings or get_settings()
        self._client = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._credential: Optional[PeerNetworkCredential] = None
        self._lock = asyncio.Lock()
        self._client_id: Optional[str] = None
        self._client_secret: Optional[str] = None
        self.base_url: Optional[str] = None

    @property
    def initialized(self) -> bool:
        return self._client_id is not None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Shared HTTP client for every PayPal call."""
        self.ensure_initialized()
        return self._client

    @property
    def credential(self) -> Optional[PeerNetworkCredential]:
        return self._credential

    def ensure_initialized(self) -> None:
        """
        Load credentials and select the REST endpoint.

        Raises:
            ConfigurationError: If the client ID or secret is missing
        """
        if self.initialized:
            return

        client_id = self.settings.paypal_client_id
        client_secret = self.settings.paypal_client_secret
        if not client_id or not client_secret:
            raise ConfigurationError(
                "PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET environment variables are not set"
            )

        self.base_url = self.settings.paypal_base_url
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.settings.http_timeout_seconds),
            )
        self._client_id = client_id
        self._client_secret = client_secret

        logger.info(
            "paypal_token_manager_initialized",
            mode=self.settings.paypal_mode,
            base_url=self.base_url,
        )

    async def ensure_fresh_token(self) -> str:
        """
        Return a usable access token, refreshing it first when needed.

        Returns:
            str: Bearer token

        Raises:
            ConfigurationError: If credentials are missing
            ProviderAPIError: If the token endpoint rejects the grant
            DecodingError: If the token response is malformed
        """
        self.ensure_initialized()

        credential = self._credential
        if credential is not None and credential.is_valid(self._clock()):
            return credential.access_token

        async with self._lock:
            # Another caller may have refreshed while we waited.
            credential = self._credential
            if credential is not None and credential.is_valid(self._clock()):
                return credential.access_token

            self._credential = await self._refresh()
            return self._credential.access_token

    def invalidate(self) -> None:
        """Forget the cached token so the next call refreshes it."""
        self._credential = None

    async def _refresh(self) -> PeerNetworkCredential:
        """Perform one client-credentials grant."""
        logger.info("paypal_token_refreshing")
        requested_at = self._clock()

        try:
            response = await self._client.post(
                TOKEN_PATH,
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            paypal_token_refreshes_total.labels(result="failed").inc()
            logger.error("paypal_token_request_failed", error=str(e))
            raise ProviderAPIError(
                f"Failed to send token request: {e}",
                provider="paypal",
                operation="refresh_token",
            ) from e

        if response.status_code != 200:
            paypal_token_refreshes_total.labels(result="failed").inc()
            logger.error(
                "paypal_token_rejected",
                status_code=response.status_code,
                body=response.text,
            )
            raise ProviderAPIError(
                "Failed to get access token",
                provider="paypal",
                operation="refresh_token",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
            access_token = payload["access_token"]
            expires_in = int(payload["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            paypal_token_refreshes_total.labels(result="failed").inc()
            raise DecodingError(f"Malformed token response: {e}") from e

        expires_at = requested_at + expires_in - self.settings.token_refresh_skew_seconds
        paypal_token_refreshes_total.labels(result="success").inc()
        logger.info("paypal_token_refreshed", expires_in=expires_in)
        return PeerNetworkCredential(access_token=access_token, expires_at=expires_at)

    async def aclose(self) -> None:
        """Close the HTTP client if this manager created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
