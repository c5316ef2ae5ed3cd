# ─────────────────────────────────────────────────────────────────────────────
# Upload Quota — fixed-window per-client limit on the expensive provider call
# ─────────────────────────────────────────────────────────────────────────────
# Built on `limits` (the engine under slowapi) so the counter can live in
# Redis and be shared by every instance, or in memory for a single process.
#
# Policy:
#   - Fixed window, default "3/day": 3 generations per client identity.
#   - One atomic increment per call (storage INCR). Concurrent requests from
#     the same identity cannot both slip past the boundary.
#   - Store unset          → quota disabled, every request allowed.
#   - Store errors at call → fail open, logged as a warning.
#   - Identity unknown     → fail open, logged as a warning.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from limits import parse
from limits.aio.storage import MemoryStorage, RedisStorage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string

if TYPE_CHECKING:
    from limits.aio.storage import Storage

    from ps2cam.config import Settings

logger = structlog.get_logger(__name__)

_NAMESPACE = "ps2cam-generate"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one quota check. ``enforced`` is False when the limiter was bypassed."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float | None = None
    enforced: bool = True

    @classmethod
    def bypass(cls) -> RateLimitDecision:
        return cls(allowed=True, limit=0, remaining=0, enforced=False)

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* telemetry; empty when nothing was enforced."""
        if not self.enforced:
            return {}
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }


def async_storage_uri(uri: str) -> str:
    """``redis://…`` → ``async+redis://…``; limits picks async storages by prefix."""
    uri = uri.strip()
    return uri if uri.startswith("async+") else f"async+{uri}"


class UploadQuota:
    """Per-identity generation quota backed by a `limits` async storage."""

    def __init__(self, storage: Storage | None, quota: str = "3/day") -> None:
        self._storage = storage
        self._item = parse(quota)
        self._limiter = FixedWindowRateLimiter(storage) if storage is not None else None

    @classmethod
    def from_settings(cls, settings: Settings) -> UploadQuota:
        uri = settings.rate_limit_storage_uri.strip()
        if not uri:
            logger.warning(
                "rate_limiter_disabled",
                reason="RATE_LIMIT_STORAGE_URI not set; every request is allowed",
            )
            return cls(None, settings.upload_quota)

        try:
            storage = storage_from_string(async_storage_uri(uri))
        except Exception as e:
            logger.warning("rate_limiter_storage_unavailable", error=str(e), uri_scheme=uri.split(":", 1)[0])
            return cls(None, settings.upload_quota)

        logger.info("rate_limiter_enabled", quota=settings.upload_quota, uri_scheme=uri.split(":", 1)[0])
        return cls(storage, settings.upload_quota)  # type: ignore[arg-type]

    @property
    def enabled(self) -> bool:
        return self._limiter is not None

    @property
    def limit(self) -> int:
        return self._item.amount

    async def check_and_consume(self, identity: str | None) -> RateLimitDecision:
        """Count one generation against ``identity`` and report what is left."""
        if self._limiter is None:
            return RateLimitDecision.bypass()
        if not identity:
            logger.warning("rate_limit_identity_missing", policy="fail_open")
            return RateLimitDecision.bypass()

        try:
            allowed = await self._limiter.hit(self._item, _NAMESPACE, identity)
            stats = await self._limiter.get_window_stats(self._item, _NAMESPACE, identity)
        except Exception as e:
            logger.warning(
                "rate_limit_store_error",
                policy="fail_open",
                error=str(e),
                error_type=type(e).__name__,
            )
            return RateLimitDecision.bypass()

        return RateLimitDecision(
            allowed=allowed,
            limit=self._item.amount,
            remaining=stats.remaining,
            reset_at=stats.reset_time,
        )

    async def is_healthy(self) -> bool:
        """Whether the backing store answers. A disabled quota is trivially healthy."""
        if self._storage is None:
            return True
        try:
            return bool(await self._storage.check())
        except Exception:
            logger.warning("rate_limit_store_check_failed", exc_info=True)
            return False

    async def aclose(self) -> None:
        """Release the store's connections at shutdown. Counters are left intact."""
        storage = self._storage
        if isinstance(storage, RedisStorage):
            storage.bridge.storage.connection_pool.disconnect()
            logger.info("rate_limiter_closed", backend="redis")
        elif isinstance(storage, MemoryStorage) and storage.timer is not None:
            storage.timer.cancel()
