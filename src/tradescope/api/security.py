from __future__ import annotations

import os
import threading
import time
from typing import Dict, Optional, Tuple

from fastapi import Header, HTTPException, Request

from tradescope.quota.organizations import Organization


class RateLimiter:
    """In-process fixed-window request counter keyed by (organization, route).

    The per-minute allowance comes from the organization's tier unless
    ``TS_RATE_LIMIT_PER_MINUTE`` overrides it.
    """

    def __init__(self, rate_per_minute: Optional[int] = None, window_seconds: Optional[int] = None) -> None:
        self.rate_per_minute = max(1, rate_per_minute) if rate_per_minute else None
        self.window_seconds = max(1, window_seconds or int(os.getenv("TS_RATE_WINDOW_SEC", "60")))
        self._lock = threading.Lock()
        self._counters: Dict[Tuple[str, str], Tuple[int, int]] = {}

    def _current_window(self) -> int:
        return int(time.time() // self.window_seconds)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()

    def check(self, org_id: str, route: str, limit: int) -> None:
        limit = self.rate_per_minute or max(1, limit)
        window = self._current_window()
        key = (org_id, route)
        with self._lock:
            count, active_window = self._counters.get(key, (0, window))
            if active_window != window:
                count = 0
                active_window = window

            if count >= limit:
                raise HTTPException(
                    status_code=429,
                    detail={
                        "message": "Rate limit exceeded",
                        "limit_per_minute": limit,
                        "route": route,
                    },
                )

            self._counters[key] = (count + 1, active_window)


def _limit_from_env() -> Optional[int]:
    raw = os.getenv("TS_RATE_LIMIT_PER_MINUTE")
    return int(raw) if raw else None


rate_limiter = RateLimiter(rate_per_minute=_limit_from_env())


def set_rate_limit(limit: Optional[int]) -> None:
    """Utility hook for tests to reconfigure the limiter."""

    global rate_limiter
    rate_limiter = RateLimiter(
        rate_per_minute=int(limit) if limit else None,
        window_seconds=int(os.getenv("TS_RATE_WINDOW_SEC", "60")),
    )


def require_organization(request: Request, x_api_key: Optional[str] = Header(None)) -> Organization:
    """Resolve the calling organization from ``X-API-Key`` and apply its request quota."""

    if not x_api_key:
        raise HTTPException(status_code=401, detail={"message": "Missing API key"})
    services = request.app.state.services
    org = services.organizations.resolve(x_api_key)
    if org is None:
        raise HTTPException(status_code=401, detail={"message": "Invalid API key"})

    route = request.scope.get("route")
    route_path = getattr(route, "path", request.url.path)
    rate_limiter.check(org.org_id, route_path, org.api_requests_per_minute)
    return org
