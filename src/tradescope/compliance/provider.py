"""Screening provider contract and implementations.

The matching algorithm itself lives with an external provider; this module
only defines the call contract, an HTTP client for it, and a static provider
for development and tests.
"""

from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Optional

import httpx

from tradescope.compliance.models import (
    DEFAULT_LISTS,
    CheckKind,
    CheckStatus,
    ScreeningHit,
    ScreeningOutcome,
)
from tradescope.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

SCREENING_SERVICE = "screening-provider"


class ScreeningProvider(ABC):
    @abstractmethod
    def screen(self, kind: CheckKind, company_id: str, company_name: Optional[str] = None) -> ScreeningOutcome:
        """Screen one company; raises ``UpstreamUnavailable`` if the provider fails."""


class StaticScreeningProvider(ScreeningProvider):
    """Matches against a fixed watchlist of company ids and names."""

    def __init__(self, watchlist: Optional[Dict[str, Iterable[ScreeningHit]]] = None) -> None:
        self._watchlist = {key.lower(): tuple(hits) for key, hits in (watchlist or {}).items()}

    def screen(self, kind: CheckKind, company_id: str, company_name: Optional[str] = None) -> ScreeningOutcome:
        kind = CheckKind(kind)
        lists = DEFAULT_LISTS[kind.value]
        hits = self._watchlist.get(company_id.lower())
        if hits is None and company_name:
            hits = self._watchlist.get(company_name.lower())
        if not hits:
            return ScreeningOutcome(status=CheckStatus.CLEAR, lists_checked=lists)
        status = CheckStatus.MATCH if max(hit.score for hit in hits) >= 0.9 else CheckStatus.REVIEW_REQUIRED
        return ScreeningOutcome(status=status, hits=tuple(hits), lists_checked=lists)


class HttpScreeningProvider(ScreeningProvider):
    """Client for a JSON screening API: ``POST {base_url}/screen``.

    Transport errors and 5xx responses are retried with exponential backoff;
    once attempts are exhausted the failure surfaces as ``UpstreamUnavailable``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_attempts: int = 3,
        backoff_sec: float = 0.5,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max(1, max_attempts)
        self.backoff_sec = backoff_sec
        self._sleep = sleep
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.Client(
            timeout=timeout if timeout is not None else float(os.getenv("TS_SCREENING_TIMEOUT_SEC", "10")),
            headers=headers,
        )

    @classmethod
    def from_env(cls) -> "HttpScreeningProvider":
        return cls(os.environ["TS_SCREENING_URL"], os.getenv("TS_SCREENING_API_KEY"))

    def screen(self, kind: CheckKind, company_id: str, company_name: Optional[str] = None) -> ScreeningOutcome:
        kind = CheckKind(kind)
        payload = {"kind": kind.value, "companyId": company_id, "companyName": company_name}
        last_reason = ""
        for attempt in range(self.max_attempts):
            try:
                response = self._client.post(f"{self.base_url}/screen", json=payload)
                if response.status_code >= 500:
                    last_reason = f"HTTP {response.status_code}"
                else:
                    response.raise_for_status()
                    return _parse_outcome(response.json(), kind)
            except httpx.TransportError as exc:
                last_reason = str(exc) or type(exc).__name__
            except httpx.HTTPStatusError as exc:
                raise UpstreamUnavailable(
                    SCREENING_SERVICE, attempts=attempt + 1, reason=f"HTTP {exc.response.status_code}"
                ) from exc
            except (TypeError, ValueError) as exc:
                raise UpstreamUnavailable(
                    SCREENING_SERVICE, attempts=attempt + 1, reason="malformed response"
                ) from exc
            if attempt + 1 < self.max_attempts:
                wait = self.backoff_sec * (2 ** attempt)
                logger.warning(
                    "Screening attempt %d failed: %s (retrying in %.2fs)", attempt + 1, last_reason, wait
                )
                self._sleep(wait)
        raise UpstreamUnavailable(SCREENING_SERVICE, attempts=self.max_attempts, reason=last_reason)

    def close(self) -> None:
        self._client.close()


def _parse_outcome(data: Dict, kind: CheckKind) -> ScreeningOutcome:
    if not isinstance(data, dict):
        raise ValueError("screening response must be a JSON object")
    status = CheckStatus(str(data.get("status", "")).upper())
    raw_hits = data.get("hits") or []
    if not isinstance(raw_hits, list) or not all(isinstance(hit, dict) for hit in raw_hits):
        raise ValueError("screening hits must be a list of objects")
    hits = tuple(ScreeningHit.from_dict(hit) for hit in raw_hits)
    raw_lists = data.get("listsChecked", DEFAULT_LISTS[kind.value])
    if not isinstance(raw_lists, (list, tuple)):
        raise ValueError("listsChecked must be a list")
    lists = tuple(str(name) for name in raw_lists)
    return ScreeningOutcome(status=status, hits=hits, lists_checked=lists)


def provider_from_env() -> ScreeningProvider:
    if os.getenv("TS_SCREENING_URL"):
        return HttpScreeningProvider.from_env()
    logger.info("TS_SCREENING_URL not set; using static screening provider")
    return StaticScreeningProvider()
