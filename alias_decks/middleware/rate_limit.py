"""Rate limiting for uploads and public reads.

Uploads use a fixed-window limiter from ``limits`` (the library SlowAPI is
built on) so the pipeline can report limit/remaining/reset. Read endpoints
use the SlowAPI decorator.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.errors import ConfigurationError, StorageError
from limits.storage import MemoryStorage, Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter
from redis.exceptions import RedisError
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool

from alias_decks.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def resolve_client_ip(request: Request) -> Optional[str]:
    """
    Client address from the proxy chain.

    The last ``X-Forwarded-For`` entry is the one appended by our own proxy,
    so it is preferred over earlier, client-controlled entries.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        entries = [entry.strip() for entry in forwarded.split(",") if entry.strip()]
        if entries:
            return entries[-1]

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client:
        return request.client.host
    return None


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float  # epoch seconds

    def retry_after(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(1, math.ceil(self.reset - now))


class UploadRateLimiter:
    """Fixed-window limiter with a shared backend and a local fallback."""

    def __init__(
        self,
        limit: int,
        window: int,
        storage: Optional[Storage] = None,
        prefix: Optional[str] = None,
    ):
        self.limit = limit
        self.window = window
        self.prefix = prefix
        self._item = RateLimitItemPerSecond(max(limit, 1), max(window, 1))
        self._primary = FixedWindowRateLimiter(storage) if storage is not None else None
        self._fallback = FixedWindowRateLimiter(MemoryStorage())

    @property
    def enabled(self) -> bool:
        return self.limit > 0 and self.window > 0

    def _key(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}" if self.prefix else identifier

    def _hit(self, limiter: FixedWindowRateLimiter, key: str) -> RateLimitResult:
        allowed = limiter.hit(self._item, key)
        reset_time, remaining = limiter.get_window_stats(self._item, key)
        return RateLimitResult(
            success=allowed,
            limit=self.limit,
            remaining=max(0, remaining) if allowed else 0,
            reset=reset_time,
        )

    def check_sync(self, identifier: str) -> RateLimitResult:
        if not self.enabled:
            return RateLimitResult(
                success=True,
                limit=self.limit,
                remaining=self.limit,
                reset=time.time() + max(self.window, 0),
            )

        key = self._key(identifier)
        if self._primary is not None:
            try:
                return self._hit(self._primary, key)
            except (RedisError, StorageError, OSError) as e:
                logger.warning(f"Shared rate limiter failed; falling back to memory: {e}")
        return self._hit(self._fallback, key)

    async def check(self, identifier: str) -> RateLimitResult:
        return await run_in_threadpool(self.check_sync, identifier)


def build_storage(uri: str) -> Storage:
    if uri.startswith(("redis://", "rediss://")):
        return storage_from_string(
            uri,
            socket_timeout=settings.rate_limit_socket_timeout,
            socket_connect_timeout=settings.rate_limit_socket_timeout,
        )
    return storage_from_string(uri)


_upload_limiter: Optional[UploadRateLimiter] = None


def get_upload_rate_limiter() -> UploadRateLimiter:
    """Process-wide upload limiter, created on first use."""
    global _upload_limiter
    if _upload_limiter is None:
        storage = None
        if settings.upload_rate_limit > 0 and settings.upload_rate_window_seconds > 0:
            try:
                storage = build_storage(settings.rate_limit_storage_uri)
            except (ConfigurationError, RedisError, ValueError) as e:
                logger.warning(f"Rate limit storage unavailable, using memory: {e}")
        _upload_limiter = UploadRateLimiter(
            limit=settings.upload_rate_limit,
            window=settings.upload_rate_window_seconds,
            storage=storage,
            prefix=f"{settings.rate_limit_prefix}:upload",
        )
    return _upload_limiter


def reset_upload_rate_limiter() -> None:
    global _upload_limiter
    _upload_limiter = None


def get_client_key(request: Request) -> str:
    return f"ip:{resolve_client_ip(request) or get_remote_address(request)}"


limiter = Limiter(
    key_func=get_client_key,
    storage_uri=settings.rate_limit_storage_uri,
    strategy="fixed-window",
    in_memory_fallback_enabled=True,
)


def rate_limit_general():
    """Rate limit for public read endpoints."""
    return limiter.limit(
        f"{settings.rate_limit_per_minute}/minute",
        key_func=get_client_key,
    )
