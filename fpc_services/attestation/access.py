"""
AccessGate: authentication and per-identity rate limiting for /quote.

Authentication modes:
    disabled                     every request passes
    api_key                      shared secret in a configurable header
    trusted_header               marker header injected by a trusted proxy
    api_key_or_trusted_header    either of the above
    api_key_and_trusted_header   both of the above

Secrets are compared as SHA-256 digests with hmac.compare_digest, so the
comparison time depends on neither the candidate's length nor its content.

Rate limiting:
    Fixed windows aligned to multiples of window_seconds. Identity is the
    API key digest when the caller authenticated with the key, otherwise the
    remote address. The bucket table is bounded: at capacity, expired buckets
    are purged first, then the oldest remaining bucket is evicted.

Thread Safety:
    All limiter operations are synchronous and never await, so concurrent
    requests on one event loop cannot interleave inside an increment.
"""

from __future__ import annotations

import hashlib
import hmac
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Optional


class QuoteAuthMode(str, Enum):
    DISABLED = "disabled"
    API_KEY = "api_key"
    TRUSTED_HEADER = "trusted_header"
    API_KEY_OR_TRUSTED_HEADER = "api_key_or_trusted_header"
    API_KEY_AND_TRUSTED_HEADER = "api_key_and_trusted_header"

    @property
    def uses_api_key(self) -> bool:
        return self in (
            QuoteAuthMode.API_KEY,
            QuoteAuthMode.API_KEY_OR_TRUSTED_HEADER,
            QuoteAuthMode.API_KEY_AND_TRUSTED_HEADER,
        )

    @property
    def uses_trusted_header(self) -> bool:
        return self in (
            QuoteAuthMode.TRUSTED_HEADER,
            QuoteAuthMode.API_KEY_OR_TRUSTED_HEADER,
            QuoteAuthMode.API_KEY_AND_TRUSTED_HEADER,
        )


@dataclass(frozen=True)
class QuoteAuthConfig:
    mode: QuoteAuthMode = QuoteAuthMode.DISABLED
    api_key: Optional[str] = None
    api_key_header: str = "x-api-key"
    trusted_header_name: Optional[str] = None
    trusted_header_value: Optional[str] = None


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = True
    max_requests: int = 60
    window_seconds: int = 60
    max_tracked_keys: int = 10_000


@dataclass
class RateLimitBucket:
    identity_key: str
    window_start: int
    count: int = 0


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of AccessGate.check(); `outcome` is ok, unauthorized or rate_limited."""
    outcome: str
    identity: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.outcome == "ok"


def secret_digest(value: str) -> bytes:
    return hashlib.sha256(value.encode("utf-8")).digest()


def header_matches_secret(candidate: Optional[str], expected: Optional[str]) -> bool:
    if not expected or candidate is None:
        return False
    return hmac.compare_digest(secret_digest(candidate), secret_digest(expected))


class FixedWindowRateLimiter:
    """Bounded table of per-identity fixed-window counters."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.time) -> None:
        self.config = config
        self._clock = clock
        # insertion order doubles as age order for eviction
        self._buckets: Dict[str, RateLimitBucket] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def bucket(self, identity: str) -> Optional[RateLimitBucket]:
        return self._buckets.get(identity)

    def hit(self, identity: str) -> Optional[int]:
        """
        Count one request for `identity`.

        Returns None when the request is allowed, otherwise the number of
        seconds until the current window ends.
        """
        now = self._clock()
        window = self.config.window_seconds
        window_start = int(now - (now % window))

        bucket = self._buckets.get(identity)
        if bucket is None or bucket.window_start != window_start:
            if bucket is not None:
                del self._buckets[identity]
            self._make_room(window_start)
            bucket = RateLimitBucket(identity_key=identity, window_start=window_start)
            self._buckets[identity] = bucket

        if bucket.count >= self.config.max_requests:
            remaining = window_start + window - now
            return max(1, math.ceil(remaining))

        bucket.count += 1
        return None

    def _make_room(self, current_window_start: int) -> None:
        if len(self._buckets) < self.config.max_tracked_keys:
            return
        expired = [k for k, b in self._buckets.items() if b.window_start < current_window_start]
        for key in expired:
            del self._buckets[key]
        while len(self._buckets) >= self.config.max_tracked_keys:
            oldest = next(iter(self._buckets))
            del self._buckets[oldest]

    def reset(self) -> None:
        self._buckets.clear()


class AccessGate:
    """Authenticates quote requests and applies the rate limit."""

    def __init__(self, auth: QuoteAuthConfig, limiter: Optional[FixedWindowRateLimiter] = None) -> None:
        self.auth = auth
        self.limiter = limiter if limiter is not None and limiter.config.enabled else None

    def _authenticate(self, headers: Mapping[str, str]) -> tuple[bool, bool]:
        """Returns (authorized, authenticated_by_api_key)."""
        mode = self.auth.mode
        if mode is QuoteAuthMode.DISABLED:
            return True, False

        api_key_ok = header_matches_secret(headers.get(self.auth.api_key_header), self.auth.api_key)
        trusted_ok = header_matches_secret(
            headers.get(self.auth.trusted_header_name) if self.auth.trusted_header_name else None,
            self.auth.trusted_header_value,
        )

        if mode is QuoteAuthMode.API_KEY:
            return api_key_ok, api_key_ok
        if mode is QuoteAuthMode.TRUSTED_HEADER:
            return trusted_ok, False
        if mode is QuoteAuthMode.API_KEY_OR_TRUSTED_HEADER:
            return api_key_ok or trusted_ok, api_key_ok
        if mode is QuoteAuthMode.API_KEY_AND_TRUSTED_HEADER:
            return api_key_ok and trusted_ok, api_key_ok
        return False, False

    def identity_for(self, headers: Mapping[str, str], remote_addr: Optional[str], by_api_key: bool) -> str:
        if by_api_key:
            return "api_key:" + secret_digest(headers[self.auth.api_key_header]).hex()
        return f"ip:{remote_addr or 'unknown'}"

    def check(self, headers: Mapping[str, str], remote_addr: Optional[str]) -> AccessDecision:
        authorized, by_api_key = self._authenticate(headers)
        if not authorized:
            return AccessDecision(outcome="unauthorized")

        identity = self.identity_for(headers, remote_addr, by_api_key)
        if self.limiter is not None:
            retry_after = self.limiter.hit(identity)
            if retry_after is not None:
                return AccessDecision(outcome="rate_limited", identity=identity, retry_after_seconds=retry_after)
        return AccessDecision(outcome="ok", identity=identity)
