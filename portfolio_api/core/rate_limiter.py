"""
=============================================================================
PORTFOLIO CONTACT API - RATE LIMITER MODULE
=============================================================================
Rolling-window rate limiting with Redis backend and in-memory fallback.

Features:
- Sliding window of request timestamps per key (default 5 per hour)
- Atomic check-and-record so concurrent requests from one address cannot
  both slip past the ceiling
- Per-key locking in memory: different addresses never wait on each other
- Redis sorted sets (WATCH/MULTI) for multi-instance consistency
- Trusted-proxy validation for X-Forwarded-For

Usage:
    from portfolio_api.core.rate_limiter import get_rate_limiter

    decision = get_rate_limiter().hit(f"contact:{ip}", limit=5, window_seconds=3600)
    if not decision.allowed:
        ...  # decision.retry_after seconds
=============================================================================
"""

import ipaddress
import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from typing import Deque, Dict, Iterator, List, Optional

from fastapi import Request

from portfolio_api.core.config import settings

logger = logging.getLogger(__name__)

# Empty/expired in-memory windows are swept every N hits
SWEEP_EVERY = 1000

# Parsed trusted proxy networks (built once at import)
_trusted_networks: List[ipaddress.IPv4Network | ipaddress.IPv6Network] = []


def _build_trusted_networks() -> None:
    """Parse TRUSTED_PROXIES setting into network objects."""
    global _trusted_networks
    nets = []
    for entry in settings.TRUSTED_PROXIES:
        try:
            nets.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Invalid TRUSTED_PROXIES entry ignored: %s", entry)
    _trusted_networks = nets


_build_trusted_networks()


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int = 0


def _seconds_until(oldest: float, window_seconds: int, now: float) -> int:
    return max(1, math.ceil(oldest + window_seconds - now))


# =============================================================================
# BACKEND ABSTRACTION
# =============================================================================


class _RateLimitBackend(ABC):
    """Abstract rate-limit storage backend."""

    @abstractmethod
    def hit(
        self, key: str, limit: int, window_seconds: int, now: Optional[float] = None
    ) -> RateLimitDecision:
        """Record a request unless the key is already at ``limit`` in the window."""

    @abstractmethod
    def increment(
        self, key: str, window_seconds: int, now: Optional[float] = None
    ) -> int:
        """Record a request unconditionally and return the in-window count."""

    @abstractmethod
    def retry_after(
        self, key: str, limit: int, window_seconds: int, now: Optional[float] = None
    ) -> int:
        """Seconds until ``key`` may submit again; 0 when not blocked."""

    @abstractmethod
    def reset(self) -> None:
        """Clear all state (for tests)."""

    @abstractmethod
    def stats(self) -> dict:
        """Return debugging stats."""


class _InMemoryBackend(_RateLimitBackend):
    """Thread-safe in-memory backend (single-instance only)."""

    def __init__(self) -> None:
        # Guards the two dicts only, never held while a window is evaluated
        self._registry_lock = Lock()
        self._key_locks: Dict[str, Lock] = {}
        self._windows: Dict[str, Deque[float]] = {}
        self._hits_since_sweep = 0

    @contextmanager
    def _locked_window(self, key: str) -> Iterator[Deque[float]]:
        """Hold the key's lock and yield its window.

        A sweep may retire the lock between lookup and acquisition; in that
        case the stale lock is dropped and the lookup repeated.
        """
        while True:
            with self._registry_lock:
                lock = self._key_locks.get(key)
                if lock is None:
                    lock = self._key_locks[key] = Lock()
                    self._windows[key] = deque()
                window = self._windows[key]
            lock.acquire()
            if self._key_locks.get(key) is lock:
                break
            lock.release()
        try:
            yield window
        finally:
            lock.release()

    @staticmethod
    def _prune(window: Deque[float], window_seconds: int, now: float) -> None:
        cutoff = now - window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def _maybe_sweep(self, window_seconds: int, now: float) -> None:
        with self._registry_lock:
            self._hits_since_sweep += 1
            if self._hits_since_sweep < SWEEP_EVERY:
                return
            self._hits_since_sweep = 0
        self.sweep(window_seconds, now)

    def sweep(self, window_seconds: int, now: Optional[float] = None) -> int:
        """Drop keys whose windows hold no live timestamps. Returns how many."""
        now = time.time() if now is None else now
        with self._registry_lock:
            candidates = list(self._key_locks.items())
        removed = 0
        for key, lock in candidates:
            # Busy keys are live by definition
            if not lock.acquire(blocking=False):
                continue
            try:
                window = self._windows.get(key)
                if window is not None:
                    self._prune(window, window_seconds, now)
                if not window:
                    with self._registry_lock:
                        if self._key_locks.get(key) is lock:
                            del self._key_locks[key]
                            self._windows.pop(key, None)
                            removed += 1
            finally:
                lock.release()
        return removed

    def hit(self, key, limit, window_seconds, now=None):
        now = time.time() if now is None else now
        with self._locked_window(key) as window:
            self._prune(window, window_seconds, now)
            if len(window) >= limit:
                return RateLimitDecision(
                    allowed=False,
                    count=len(window),
                    retry_after=_seconds_until(window[0], window_seconds, now),
                )
            window.append(now)
            count = len(window)
        self._maybe_sweep(window_seconds, now)
        return RateLimitDecision(allowed=True, count=count)

    def increment(self, key, window_seconds, now=None):
        now = time.time() if now is None else now
        with self._locked_window(key) as window:
            self._prune(window, window_seconds, now)
            window.append(now)
            return len(window)

    def retry_after(self, key, limit, window_seconds, now=None):
        now = time.time() if now is None else now
        with self._locked_window(key) as window:
            self._prune(window, window_seconds, now)
            if len(window) < limit:
                return 0
            return _seconds_until(window[0], window_seconds, now)

    def reset(self) -> None:
        with self._registry_lock:
            self._key_locks.clear()
            self._windows.clear()
            self._hits_since_sweep = 0

    def stats(self) -> dict:
        with self._registry_lock:
            counts = {key: len(window) for key, window in self._windows.items()}
        return {"backend": "in_memory", "tracked_keys": len(counts), "counts": counts}


class _RedisBackend(_RateLimitBackend):
    """Redis-backed sliding windows (one sorted set per key)."""

    PREFIX = "rl:"

    def __init__(self, redis_client) -> None:  # type: ignore[type-arg]
        self._redis = redis_client

    def _key(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    @staticmethod
    def _member(now: float) -> str:
        return f"{now:.6f}:{uuid.uuid4().hex}"

    def hit(self, key, limit, window_seconds, now=None):
        now = time.time() if now is None else now
        rkey = self._key(key)
        cutoff = now - window_seconds
        outcome: Dict[str, RateLimitDecision] = {}

        def _txn(pipe) -> None:
            # Reads run before MULTI so the WATCH stays intact
            live = pipe.zrangebyscore(rkey, f"({cutoff}", "+inf", withscores=True)
            pipe.multi()
            pipe.zremrangebyscore(rkey, "-inf", cutoff)
            if len(live) >= limit:
                oldest = float(live[0][1])
                outcome["decision"] = RateLimitDecision(
                    allowed=False,
                    count=len(live),
                    retry_after=_seconds_until(oldest, window_seconds, now),
                )
                return
            pipe.zadd(rkey, {self._member(now): now})
            pipe.expire(rkey, window_seconds)
            outcome["decision"] = RateLimitDecision(allowed=True, count=len(live) + 1)

        self._redis.transaction(_txn, rkey)
        return outcome["decision"]

    def increment(self, key, window_seconds, now=None):
        now = time.time() if now is None else now
        rkey = self._key(key)
        pipe = self._redis.pipeline(transaction=True)
        pipe.zremrangebyscore(rkey, "-inf", now - window_seconds)
        pipe.zadd(rkey, {self._member(now): now})
        pipe.expire(rkey, window_seconds)
        pipe.zcard(rkey)
        results = pipe.execute()
        return int(results[-1])

    def retry_after(self, key, limit, window_seconds, now=None):
        now = time.time() if now is None else now
        live = self._redis.zrangebyscore(
            self._key(key), f"({now - window_seconds}", "+inf", withscores=True
        )
        if len(live) < limit:
            return 0
        return _seconds_until(float(live[0][1]), window_seconds, now)

    def reset(self) -> None:
        cursor = 0
        while True:
            cursor, keys = self._redis.scan(cursor, match=f"{self.PREFIX}*", count=500)
            if keys:
                self._redis.delete(*keys)
            if cursor == 0:
                break

    def stats(self) -> dict:
        counts = {}
        cursor = 0
        while True:
            cursor, keys = self._redis.scan(cursor, match=f"{self.PREFIX}*", count=500)
            for k in keys:
                key_str = k if isinstance(k, str) else k.decode()
                counts[key_str] = int(self._redis.zcard(k))
            if cursor == 0:
                break
        return {"backend": "redis", "tracked_keys": len(counts), "counts": counts}


# =============================================================================
# BACKEND INITIALIZATION
# =============================================================================


def _init_backend() -> _RateLimitBackend:
    """Pick the backend from RATE_LIMIT_BACKEND, falling back to memory."""
    choice = settings.RATE_LIMIT_BACKEND
    if choice == "memory" or (choice == "auto" and not settings.REDIS_URL):
        logger.info("Rate limiter using in-memory backend")
        return _InMemoryBackend()

    try:
        import redis as _redis_lib

        client = _redis_lib.Redis.from_url(
            settings.REDIS_URL, decode_responses=True, socket_connect_timeout=2
        )
        client.ping()
        logger.info("Rate limiter using Redis backend")
        return _RedisBackend(client)
    except Exception as exc:
        if choice == "redis":
            raise
        logger.warning(
            "Redis unavailable for rate limiter, using in-memory fallback: %s", exc
        )
        return _InMemoryBackend()


_backend: _RateLimitBackend = _init_backend()


def get_rate_limiter() -> _RateLimitBackend:
    return _backend


# =============================================================================
# IP EXTRACTION
# =============================================================================


def _is_trusted_proxy(ip_str: str) -> bool:
    """Check if an IP belongs to the configured trusted proxy ranges."""
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in net for net in _trusted_networks)


def get_client_ip(request: Request) -> str:
    """Extract client IP, trusting X-Forwarded-For only from trusted proxies."""
    direct_ip = request.client.host if request.client else "unknown"

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and _is_trusted_proxy(direct_ip):
        parts = [p.strip() for p in forwarded.split(",") if p.strip()]
        # Rightmost untrusted hop is the real client
        for ip in reversed(parts):
            if not _is_trusted_proxy(ip):
                return ip
        if parts:
            return parts[0]

    return direct_ip


# =============================================================================
# TEST / DEBUG HELPERS
# =============================================================================


def reset_rate_limiter_state() -> None:
    """Clear rate limiter state. Intended for tests."""
    _backend.reset()


def get_rate_limit_stats() -> dict:
    """Get current rate limiting statistics (for debugging)."""
    return _backend.stats()
