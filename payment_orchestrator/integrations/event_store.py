"""
Redis-backed set of processed webhook events.

A claim is a single ``SET NX``, so of several concurrent deliveries of one
event exactly one wins. The claim is short-lived so an event whose worker
died is processed on redelivery; completed events are kept for the
configured retention.
"""
from typing import Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from payment_orchestrator.config import Settings, get_settings

logger = structlog.get_logger(__name__)

PROCESSING = "processing"
DONE = "done"


class RedisProcessedEventSet:
    """Processed-event set keyed by ``webhook:processed:{provider}:{event_id}``."""

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the event set.

        Args:
            redis_client: Optional Redis client (created from REDIS_URL if not provided)
            settings: Optional settings (uses cached settings if not provided)
        """
        self.settings = settings or get_settings()
        self.redis_client = redis_client
        self._owns_client = redis_client is None

    async def _ensure_redis(self) -> aioredis.Redis:
        """Ensure Redis client is initialized."""
        if self.redis_client is None:
            self.redis_client = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self.redis_client

    @staticmethod
    def _key(provider: str, event_id: str) -> str:
        return f"webhook:processed:{provider}:{event_id}"

    async def claim_event(self, provider: str, event_id: str) -> bool:
        redis = await self._ensure_redis()
        claimed = await redis.set(
            self._key(provider, event_id),
            PROCESSING,
            nx=True,
            ex=self.settings.processing_claim_ttl_seconds,
        )
        return bool(claimed)

    async def complete_event(self, provider: str, event_id: str) -> None:
        redis = await self._ensure_redis()
        try:
            await redis.set(
                self._key(provider, event_id),
                DONE,
                ex=self.settings.processed_event_ttl_seconds,
            )
        except RedisError as e:
            # Redeliveries stay deduplicated until the claim key expires.
            logger.warning("webhook_mark_processed_error", error=str(e), event_id=event_id)
            return
        logger.info("webhook_marked_processed", provider=provider, event_id=event_id)

    async def release_event(self, provider: str, event_id: str) -> None:
        redis = await self._ensure_redis()
        await redis.delete(self._key(provider, event_id))
        logger.info("webhook_claim_released", provider=provider, event_id=event_id)

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client is not None and self._owns_client:
            await self.redis_client.aclose()
            self.redis_client = None
