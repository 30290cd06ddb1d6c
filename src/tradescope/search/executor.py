"""Translate canonical queries into index queries and run them robustly.

Every call into the index is bounded by a request timeout and retried with
exponential backoff. After the last attempt the failure surfaces as
``UpstreamUnavailable``; partial results are never returned.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional, TypeVar

from tradescope.errors import UpstreamUnavailable
from tradescope.search.index import (
    INDEX_SERVICE,
    IndexPage,
    IndexQuery,
    Match,
    Prefix,
    Range,
    ShipmentIndex,
    Term,
)
from tradescope.search.models import SORT_FIELDS, SearchQuery

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SEC = 10.0
MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SEC = 0.2
POOL_SIZE = 8


def build_index_query(query: SearchQuery) -> IndexQuery:
    """AND of all set filters; exclusions as must-not on both party ids."""
    must: List = []
    if query.hs_code:
        if query.hs_code_is_prefix:
            must.append(Prefix("hs_code", query.hs_code))
        else:
            must.append(Term("hs_code", (query.hs_code,)))
    if query.product_keyword:
        must.append(Match("product_description", query.product_keyword))
    if query.shipper_name:
        must.append(Match("shipper_name", query.shipper_name))
    if query.consignee_name:
        must.append(Match("consignee_name", query.consignee_name))
    if query.shipper_id:
        must.append(Term("shipper_id", (query.shipper_id,)))
    if query.consignee_id:
        must.append(Term("consignee_id", (query.consignee_id,)))
    if query.origin_countries:
        must.append(Term("origin_country", query.origin_countries))
    if query.destination_countries:
        must.append(Term("destination_country", query.destination_countries))
    if query.ports_of_loading:
        must.append(Term("port_of_loading", query.ports_of_loading))
    if query.ports_of_discharge:
        must.append(Term("port_of_discharge", query.ports_of_discharge))
    if query.date_from is not None or query.date_to is not None:
        must.append(Range("shipment_date", gte=query.date_from, lte=query.date_to))
    for field, low, high in (
        ("quantity", query.min_quantity, query.max_quantity),
        ("declared_value_usd", query.min_value_usd, query.max_value_usd),
        ("unit_price_usd", query.min_unit_price, query.max_unit_price),
    ):
        if low is not None or high is not None:
            must.append(Range(field, gte=low, lte=high))
    if query.transport_mode:
        must.append(Term("transport_mode", (query.transport_mode,)))
    if query.carrier:
        must.append(Match("carrier", query.carrier))

    must_not: List = []
    if query.exclude_company_ids:
        must_not.append(Term("shipper_id", query.exclude_company_ids))
        must_not.append(Term("consignee_id", query.exclude_company_ids))

    return IndexQuery(
        must=tuple(must),
        must_not=tuple(must_not),
        sort_field=SORT_FIELDS[query.sort_by],
        sort_desc=query.sort_order == "desc",
    )


def with_window(base: IndexQuery, offset: int, limit: Optional[int]) -> IndexQuery:
    return IndexQuery(
        must=base.must,
        must_not=base.must_not,
        sort_field=base.sort_field,
        sort_desc=base.sort_desc,
        offset=offset,
        limit=limit,
    )


class SearchExecutor:
    """Runs index operations with a per-attempt timeout and bounded retries."""

    def __init__(
        self,
        index: ShipmentIndex,
        *,
        timeout_sec: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_sec: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.index = index
        self.timeout_sec = (
            timeout_sec
            if timeout_sec is not None
            else float(os.getenv("TS_SEARCH_TIMEOUT_SEC", str(DEFAULT_TIMEOUT_SEC)))
        )
        # attempts can be lowered for tests but never raised above MAX_ATTEMPTS
        self.max_attempts = min(MAX_ATTEMPTS, max(1, max_attempts or MAX_ATTEMPTS))
        self.backoff_sec = (
            backoff_sec
            if backoff_sec is not None
            else float(os.getenv("TS_SEARCH_BACKOFF_SEC", str(DEFAULT_BACKOFF_SEC)))
        )
        self._sleep = sleep
        self._pool = ThreadPoolExecutor(max_workers=POOL_SIZE, thread_name_prefix="index-call")
        self._stuck = 0
        self._stuck_lock = threading.Lock()

    def _abandon(self, future) -> None:
        """Count a timed-out call against the pool until its worker returns."""
        if future.cancel():
            return
        with self._stuck_lock:
            self._stuck += 1
        future.add_done_callback(self._reclaim)

    def _reclaim(self, _future) -> None:
        with self._stuck_lock:
            self._stuck -= 1

    @property
    def stuck_calls(self) -> int:
        return self._stuck

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Invoke ``fn`` against the index with timeout and retry."""
        last_reason = ""
        for attempt in range(self.max_attempts):
            if self._stuck >= POOL_SIZE:
                logger.error("All %d index workers are blocked on timed-out calls", POOL_SIZE)
                raise UpstreamUnavailable(INDEX_SERVICE, attempts=attempt, reason="index workers exhausted")
            future = self._pool.submit(fn, *args, **kwargs)
            try:
                return future.result(timeout=self.timeout_sec)
            except FutureTimeoutError:
                self._abandon(future)
                last_reason = f"timed out after {self.timeout_sec}s"
            except UpstreamUnavailable as exc:
                last_reason = exc.reason or str(exc)
            except (ConnectionError, OSError) as exc:
                last_reason = str(exc)
            if attempt + 1 < self.max_attempts:
                wait = self.backoff_sec * (2 ** attempt)
                logger.warning(
                    "Index call attempt %d/%d failed: %s (retrying in %.2fs)",
                    attempt + 1,
                    self.max_attempts,
                    last_reason,
                    wait,
                )
                self._sleep(wait)
        logger.error("Index unavailable after %d attempts: %s", self.max_attempts, last_reason)
        raise UpstreamUnavailable(INDEX_SERVICE, attempts=self.max_attempts, reason=last_reason)

    def execute(self, query: SearchQuery) -> IndexPage:
        """Fetch the requested page plus the total match count."""
        base = build_index_query(query)
        offset = (query.page - 1) * query.page_size
        return self.call(self.index.search, with_window(base, offset, query.page_size))

    def fetch_first(self, query: SearchQuery, limit: int) -> IndexPage:
        """First ``limit`` rows in the query's sort order (exports)."""
        base = build_index_query(query)
        return self.call(self.index.search, with_window(base, 0, limit))

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)
