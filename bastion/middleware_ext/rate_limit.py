"""
Rate Limiting Stage - Fixed-window request rate limiting.

Features:
- Shared fixed-window counter store with atomic hit (threading.Lock)
- Identifier strategies: client IP, user id, route name
- Optional per-tier limits (guest, user, admin, api_key)
- 429 JSON + Retry-After on rejection
- X-RateLimit-Limit / -Remaining / -Reset on allowed responses
"""

from __future__ import annotations

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from ..faults import RateLimitExceededFault
from ..middleware import ExclusionPolicy, Handler, Stage
from ..request import Request
from ..response import Response

Clock = Callable[[], float]
IdentifierResolver = Callable[[Request], str]


# ─── Identifier resolvers ────────────────────────────────────────────────────

def ip_identifier(request: Request) -> str:
    """Client IP as rate-limit identifier."""
    return f"ip_{request.client_ip()}"


def user_identifier(request: Request, session_key: str = "principal_id") -> str:
    """
    Authenticated user id, falling back to the client IP.

    Before the authentication stage has run, the principal id stored in the
    session is used.
    """
    if request.principal is not None:
        return f"user_{request.principal.identifier}"
    if request.session is not None:
        principal_id = request.session.get(session_key)
        if principal_id:
            return f"user_{principal_id}"
    return ip_identifier(request)


def route_identifier(request: Request) -> str:
    """Route name (or method and path when the route is unnamed)."""
    return f"route_{request.route_name or f'{request.method}:{request.path}'}"


IDENTIFIER_RESOLVERS: Dict[str, IdentifierResolver] = {
    "ip": ip_identifier,
    "user": user_identifier,
    "route": route_identifier,
}


def resolve_tier(request: Request, session_key: str = "principal_id") -> str:
    """Classify the requester as ``api_key``, ``admin``, ``user`` or ``guest``."""
    if request.header("x-api-key"):
        return "api_key"
    principal = request.principal
    if principal is not None:
        if principal.has_role("admin") or principal.has_role("super_admin"):
            return "admin"
        return "user"
    if request.session is not None and request.session.get(session_key):
        return "user"
    return "guest"


# ─── Fixed-window store ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class HitResult:
    """Outcome of one counted request."""
    key: str
    attempts: int
    max_attempts: int
    reset_at: float

    @property
    def allowed(self) -> bool:
        return self.attempts <= self.max_attempts

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)


class _Bucket:
    """Per-key fixed-window counter."""

    __slots__ = ("key", "attempts", "window_start", "max_attempts", "decay")

    def __init__(self, key: str, window_start: float, max_attempts: int, decay: float):
        self.key = key
        self.attempts = 0
        self.window_start = window_start
        self.max_attempts = max_attempts
        self.decay = decay

    @property
    def reset_at(self) -> float:
        return self.window_start + self.decay

    def expired(self, now: float) -> bool:
        return now > self.reset_at


class RateLimitStore(ABC):
    """Shared fixed-window counter keyed by identifier."""

    @abstractmethod
    async def hit(self, key: str, max_attempts: int, decay_seconds: float) -> HitResult:
        """Atomically count one request for ``key`` and report the window state."""
        ...

    @abstractmethod
    async def reset(self, key: str) -> None:
        ...

    @abstractmethod
    async def attempts(self, key: str) -> int:
        ...


class MemoryRateLimitStore(RateLimitStore):
    """
    In-memory store.

    The whole look-up/expire/increment sequence runs under one
    ``threading.Lock`` with no ``await`` inside. Expired buckets are swept
    lazily every ``cleanup_interval`` seconds.

    Args:
        clock: Wall-clock source in epoch seconds (injectable for tests)
        cleanup_interval: Seconds between sweeps of expired buckets
    """

    def __init__(self, clock: Optional[Clock] = None, cleanup_interval: float = 60.0):
        self._clock = clock or time.time
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = threading.Lock()
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = self._clock()

    async def hit(self, key: str, max_attempts: int, decay_seconds: float) -> HitResult:
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None or bucket.expired(now):
                bucket = _Bucket(key, now, max_attempts, decay_seconds)
                self._buckets[key] = bucket
            bucket.attempts += 1
            result = HitResult(key, bucket.attempts, bucket.max_attempts, bucket.reset_at)

            if now - self._last_cleanup > self._cleanup_interval:
                self._cleanup(now)
            return result

    async def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    async def attempts(self, key: str) -> int:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or bucket.expired(self._clock()):
                return 0
            return bucket.attempts

    def _cleanup(self, now: float) -> None:
        self._last_cleanup = now
        expired = [key for key, bucket in self._buckets.items() if bucket.expired(now)]
        for key in expired:
            del self._buckets[key]

    def __len__(self) -> int:
        return len(self._buckets)


# ─── Stage ───────────────────────────────────────────────────────────────────

class RateLimitStage(Stage):
    """
    Fixed-window rate limiting stage.

    Args:
        store: Shared counter store
        max_attempts: Requests allowed per window
        decay_seconds: Window length
        identifier: Strategy name (``ip``, ``user``, ``route``) or a resolver
        tiers: Optional per-tier limits, e.g. ``{"guest": 30, "admin": 600}``
        exclusion: Requests that bypass limiting (no counting, no headers)
        clock: Wall clock used for Retry-After (share it with the store)
        logger: Logger (``bastion.security`` by default)
    """

    name = "rate_limit"

    def __init__(
        self,
        store: RateLimitStore,
        max_attempts: int = 60,
        decay_seconds: float = 60.0,
        *,
        identifier: str | IdentifierResolver = "ip",
        tiers: Optional[Mapping[str, int]] = None,
        exclusion: Optional[ExclusionPolicy] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(exclusion=exclusion)
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if decay_seconds <= 0:
            raise ValueError("decay_seconds must be > 0")
        if isinstance(identifier, str):
            if identifier not in IDENTIFIER_RESOLVERS:
                raise ValueError(f"Unknown identifier strategy {identifier!r}")
            identifier = IDENTIFIER_RESOLVERS[identifier]
        self.store = store
        self.max_attempts = max_attempts
        self.decay_seconds = decay_seconds
        self.identifier = identifier
        self.tiers: Dict[str, int] = dict(tiers or {})
        self._clock = clock or time.time
        self.logger = logger or logging.getLogger("bastion.security")

    def _limit_for(self, request: Request) -> tuple[str, int]:
        identifier = self.identifier(request)
        if not self.tiers:
            return identifier, self.max_attempts
        tier = resolve_tier(request)
        return f"{tier}:{identifier}", self.tiers.get(tier, self.max_attempts)

    async def process(self, request: Request, next_handler: Handler) -> Response:
        key, limit = self._limit_for(request)
        result = await self.store.hit(key, limit, self.decay_seconds)

        if not result.allowed:
            return self._rate_limited_response(request, result)

        response = await next_handler(request)
        self._apply_headers(response, result)
        return response

    def _rate_limited_response(self, request: Request, result: HitResult) -> Response:
        retry_after = max(1, int(math.ceil(result.reset_at - self._clock())))
        fault = RateLimitExceededFault(
            limit=result.max_attempts,
            window=self.decay_seconds,
            retry_after=retry_after,
        )
        self.logger.warning(
            "Rate limit exceeded for %s",
            result.key,
            extra={"context": {**request.context(), "identifier": result.key, "attempts": result.attempts}},
        )
        return Response.from_fault(fault, headers={
            "retry-after": str(retry_after),
            "x-ratelimit-limit": str(result.max_attempts),
            "x-ratelimit-remaining": "0",
            "x-ratelimit-reset": str(int(math.ceil(result.reset_at))),
        })

    @staticmethod
    def _apply_headers(response: Response, result: HitResult) -> None:
        response.set_header("x-ratelimit-limit", str(result.max_attempts))
        response.set_header("x-ratelimit-remaining", str(result.remaining))
        response.set_header("x-ratelimit-reset", str(int(math.ceil(result.reset_at))))


__all__ = [
    "HitResult",
    "RateLimitStore",
    "MemoryRateLimitStore",
    "RateLimitStage",
    "ip_identifier",
    "user_identifier",
    "route_identifier",
    "resolve_tier",
    "IDENTIFIER_RESOLVERS",
]
