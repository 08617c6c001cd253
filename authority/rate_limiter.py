"""
Fixed-window rate limiter keyed by (route class, principal).

The principal is the caller's IP for anonymous routes and the client or user
id for authenticated ones; the HTTP layer decides which. Each route class
states explicitly whether it fails open or closed when the fast store cannot
be reached.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from authority.errors import RateLimited, StoreUnavailable
from authority.store import FastStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int
    fail_open: bool = False

    @classmethod
    def from_config(cls, raw: Mapping) -> "RateLimitPolicy":
        return cls(
            limit=int(raw["limit"]),
            window_seconds=int(raw["window_seconds"]),
            fail_open=bool(raw.get("fail_open", False)),
        )


@dataclass(frozen=True)
class Admission:
    allowed: bool
    retry_after_seconds: int = 0
    remaining: int = 0


class RateLimiter:
    def __init__(self, store: FastStore, policies: Mapping[str, RateLimitPolicy], enabled: bool = True):
        self._store = store
        self._policies = dict(policies)
        self._enabled = enabled

    def policy(self, route_class: str) -> RateLimitPolicy:
        try:
            return self._policies[route_class]
        except KeyError:
            raise ValueError(f"No rate limit policy for route class {route_class!r}") from None

    def admit(self, principal: str, route_class: str) -> Admission:
        """Count one request for `principal` on `route_class` and decide."""
        policy = self.policy(route_class)
        if not self._enabled:
            return Admission(allowed=True, remaining=policy.limit)

        key = f"rl:{route_class}:{principal}"
        try:
            count, ttl = self._store.incr_window(key, policy.window_seconds)
        except StoreUnavailable:
            if policy.fail_open:
                logger.warning("Rate limit store unavailable, admitting %s request (fail open)", route_class)
                return Admission(allowed=True)
            logger.error("Rate limit store unavailable, rejecting %s request (fail closed)", route_class)
            raise

        if count > policy.limit:
            logger.warning("Rate limit exceeded: class=%s principal=%s count=%d", route_class, principal, count)
            return Admission(allowed=False, retry_after_seconds=max(1, ttl))
        return Admission(allowed=True, remaining=policy.limit - count)

    def check(self, principal: str, route_class: str) -> Admission:
        """Like admit(), but raise RateLimited when the request is rejected."""
        admission = self.admit(principal, route_class)
        if not admission.allowed:
            raise RateLimited(admission.retry_after_seconds)
        return admission
