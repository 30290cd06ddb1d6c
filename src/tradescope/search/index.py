"""Read contract to the indexed shipment store, plus two backends.

The executor never talks to storage directly: it builds an ``IndexQuery``
(boolean AND of clauses, optional must-not clauses, sort, window) and hands
it to a ``ShipmentIndex``. Field names in clauses are ``Shipment`` attribute
names.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy import and_, func, not_, nulls_last, or_
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from tradescope.db.models import ShipmentRecord
from tradescope.errors import UpstreamUnavailable
from tradescope.search.models import Shipment

logger = logging.getLogger(__name__)

INDEX_SERVICE = "shipment-index"


# ---------------------------------------------------------------------------
# Query clauses
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Term:
    """Exact match against any of ``values``."""

    field: str
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class Prefix:
    field: str
    prefix: str


@dataclass(frozen=True)
class Match:
    """Case-insensitive full-text match: every token of ``text`` must occur."""

    field: str
    text: str

    @property
    def tokens(self) -> Tuple[str, ...]:
        return tuple(token for token in self.text.lower().split() if token)


@dataclass(frozen=True)
class Range:
    field: str
    gte: Any = None
    lte: Any = None


@dataclass(frozen=True)
class AnyOf:
    """Boolean OR of clauses."""

    clauses: Tuple["Clause", ...]


Clause = Union[Term, Prefix, Match, Range, AnyOf]


@dataclass(frozen=True)
class IndexQuery:
    must: Tuple[Clause, ...] = ()
    must_not: Tuple[Clause, ...] = ()
    sort_field: str = "shipment_date"
    sort_desc: bool = True
    offset: int = 0
    limit: Optional[int] = None


@dataclass(frozen=True)
class IndexPage:
    items: Tuple[Shipment, ...]
    total: int


@dataclass(frozen=True)
class FieldStats:
    min: Optional[float]
    max: Optional[float]
    avg: Optional[float]
    count: int


class ShipmentIndex(ABC):
    """Abstract read-only shipment store."""

    @abstractmethod
    def search(self, query: IndexQuery) -> IndexPage:
        """Return the sorted ``[offset, offset+limit)`` window and the full match count."""

    @abstractmethod
    def terms(self, query: IndexQuery, field: str) -> Dict[str, int]:
        """Count matches per non-null value of ``field``."""

    @abstractmethod
    def stats(self, query: IndexQuery, field: str) -> FieldStats:
        """min/max/avg/count over non-null values of ``field``."""

    @abstractmethod
    def values(self, query: IndexQuery, field: str) -> List[float]:
        """All non-null values of ``field`` across the match set."""

    @abstractmethod
    def scan(self, query: IndexQuery) -> Iterator[Shipment]:
        """Iterate the match set in sort order, honoring offset/limit."""

    @abstractmethod
    def get(self, shipment_id: str) -> Optional[Shipment]:
        ...

    def ping(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------
def _clause_matches(clause: Clause, shipment: Shipment) -> bool:
    if isinstance(clause, AnyOf):
        return any(_clause_matches(inner, shipment) for inner in clause.clauses)
    value = getattr(shipment, clause.field)
    if isinstance(clause, Term):
        return value is not None and value in clause.values
    if isinstance(clause, Prefix):
        return value is not None and str(value).startswith(clause.prefix)
    if isinstance(clause, Match):
        if value is None:
            return False
        haystack = str(value).lower()
        return all(token in haystack for token in clause.tokens)
    if isinstance(clause, Range):
        if value is None:
            return False
        if clause.gte is not None and value < clause.gte:
            return False
        if clause.lte is not None and value > clause.lte:
            return False
        return True
    raise TypeError(f"Unsupported clause: {clause!r}")


class InMemoryShipmentIndex(ShipmentIndex):
    """Process-local index over a list of shipments (dev, tests, fixtures)."""

    def __init__(self, shipments: Iterable[Shipment] = ()) -> None:
        self._lock = threading.Lock()
        self._by_id: Dict[str, Shipment] = {}
        self.add_all(shipments)

    @classmethod
    def from_jsonl(cls, path: Path) -> "InMemoryShipmentIndex":
        shipments = []
        with Path(path).open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if line:
                    shipments.append(Shipment.from_dict(json.loads(line)))
        logger.info("Loaded %d shipments from %s", len(shipments), path)
        return cls(shipments)

    def add_all(self, shipments: Iterable[Shipment]) -> None:
        with self._lock:
            for shipment in shipments:
                self._by_id[shipment.id] = shipment

    def __len__(self) -> int:
        return len(self._by_id)

    def _matching(self, query: IndexQuery) -> List[Shipment]:
        with self._lock:
            records = list(self._by_id.values())
        return [
            shipment
            for shipment in records
            if all(_clause_matches(c, shipment) for c in query.must)
            and not any(_clause_matches(c, shipment) for c in query.must_not)
        ]

    def _sorted(self, query: IndexQuery) -> List[Shipment]:
        matches = sorted(self._matching(query), key=lambda s: s.id)
        present = [s for s in matches if getattr(s, query.sort_field) is not None]
        missing = [s for s in matches if getattr(s, query.sort_field) is None]
        present.sort(key=lambda s: getattr(s, query.sort_field), reverse=query.sort_desc)
        return present + missing

    @staticmethod
    def _window(rows: Sequence[Shipment], query: IndexQuery) -> Sequence[Shipment]:
        end = None if query.limit is None else query.offset + query.limit
        return rows[query.offset:end]

    def search(self, query: IndexQuery) -> IndexPage:
        rows = self._sorted(query)
        return IndexPage(items=tuple(self._window(rows, query)), total=len(rows))

    def terms(self, query: IndexQuery, field: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for shipment in self._matching(query):
            value = getattr(shipment, field)
            if value is None or value == "":
                continue
            counts[str(value)] = counts.get(str(value), 0) + 1
        return counts

    def values(self, query: IndexQuery, field: str) -> List[float]:
        return [
            float(getattr(s, field))
            for s in self._matching(query)
            if getattr(s, field) is not None
        ]

    def stats(self, query: IndexQuery, field: str) -> FieldStats:
        values = self.values(query, field)
        if not values:
            return FieldStats(min=None, max=None, avg=None, count=0)
        return FieldStats(min=min(values), max=max(values), avg=sum(values) / len(values), count=len(values))

    def scan(self, query: IndexQuery) -> Iterator[Shipment]:
        yield from self._window(self._sorted(query), query)

    def get(self, shipment_id: str) -> Optional[Shipment]:
        with self._lock:
            return self._by_id.get(shipment_id)


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------
def record_to_shipment(record: ShipmentRecord) -> Shipment:
    return Shipment(
        id=record.id,
        shipper_id=record.shipper_id,
        shipper_name=record.shipper_name,
        consignee_id=record.consignee_id,
        consignee_name=record.consignee_name,
        hs_code=record.hs_code,
        product_description=record.product_description or "",
        shipment_date=record.shipment_date,
        origin_country=record.origin_country,
        destination_country=record.destination_country,
        shipper_country=record.shipper_country,
        consignee_country=record.consignee_country,
        port_of_loading=record.port_of_loading,
        port_of_loading_name=record.port_of_loading_name,
        port_of_discharge=record.port_of_discharge,
        port_of_discharge_name=record.port_of_discharge_name,
        quantity=record.quantity,
        quantity_unit=record.quantity_unit,
        declared_value_usd=record.declared_value_usd,
        unit_price_usd=record.unit_price_usd,
        transport_mode=record.transport_mode,
        carrier=record.carrier,
    )


def shipment_to_record(shipment: Shipment) -> ShipmentRecord:
    return ShipmentRecord(
        id=shipment.id,
        shipper_id=shipment.shipper_id,
        shipper_name=shipment.shipper_name,
        shipper_country=shipment.shipper_country,
        consignee_id=shipment.consignee_id,
        consignee_name=shipment.consignee_name,
        consignee_country=shipment.consignee_country,
        origin_country=shipment.origin_country,
        destination_country=shipment.destination_country,
        port_of_loading=shipment.port_of_loading,
        port_of_loading_name=shipment.port_of_loading_name,
        port_of_discharge=shipment.port_of_discharge,
        port_of_discharge_name=shipment.port_of_discharge_name,
        hs_code=shipment.hs_code,
        hs_chapter=shipment.hs_chapter,
        product_description=shipment.product_description,
        quantity=shipment.quantity,
        quantity_unit=shipment.quantity_unit,
        declared_value_usd=shipment.declared_value_usd,
        unit_price_usd=shipment.unit_price_usd,
        transport_mode=shipment.transport_mode,
        carrier=shipment.carrier,
        shipment_date=shipment.shipment_date,
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _sql_clause(clause: Clause):
    if isinstance(clause, AnyOf):
        return or_(*[_sql_clause(inner) for inner in clause.clauses])
    column = getattr(ShipmentRecord, clause.field)
    if isinstance(clause, Term):
        return column.in_(list(clause.values))
    if isinstance(clause, Prefix):
        return column.like(f"{_escape_like(clause.prefix)}%", escape="\\")
    if isinstance(clause, Match):
        return and_(
            *[func.lower(column).like(f"%{_escape_like(token)}%", escape="\\") for token in clause.tokens]
        )
    if isinstance(clause, Range):
        parts = []
        if clause.gte is not None:
            parts.append(column >= clause.gte)
        if clause.lte is not None:
            parts.append(column <= clause.lte)
        parts.append(column.isnot(None))
        return and_(*parts)
    raise TypeError(f"Unsupported clause: {clause!r}")


class SqlShipmentIndex(ShipmentIndex):
    """Shipment index backed by the ``shipments`` table."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def _filtered(self, session: Session, query: IndexQuery, *entities):
        q = session.query(*entities) if entities else session.query(ShipmentRecord)
        for clause in query.must:
            q = q.filter(_sql_clause(clause))
        for clause in query.must_not:
            if isinstance(clause, AnyOf):
                q = q.filter(not_(_sql_clause(clause)))
                continue
            column = getattr(ShipmentRecord, clause.field)
            # NULL never matches a must-not clause.
            q = q.filter(or_(column.is_(None), not_(_sql_clause(clause))))
        return q

    def _ordered(self, session: Session, query: IndexQuery):
        column = getattr(ShipmentRecord, query.sort_field)
        primary = column.desc() if query.sort_desc else column.asc()
        q = self._filtered(session, query).order_by(nulls_last(primary), ShipmentRecord.id.asc())
        if query.offset:
            q = q.offset(query.offset)
        if query.limit is not None:
            q = q.limit(query.limit)
        return q

    def _run(self, action):
        session = self._session_factory()
        try:
            return action(session)
        except OperationalError as exc:
            logger.warning("Shipment index query failed: %s", exc)
            raise UpstreamUnavailable(INDEX_SERVICE, reason=str(exc.orig or exc)) from exc
        finally:
            session.close()

    def search(self, query: IndexQuery) -> IndexPage:
        def action(session: Session) -> IndexPage:
            total = self._filtered(session, query).count()
            items = tuple(record_to_shipment(r) for r in self._ordered(session, query).all())
            return IndexPage(items=items, total=total)

        return self._run(action)

    def terms(self, query: IndexQuery, field: str) -> Dict[str, int]:
        column = getattr(ShipmentRecord, field)

        def action(session: Session) -> Dict[str, int]:
            rows = (
                self._filtered(session, query, column, func.count(ShipmentRecord.id))
                .filter(column.isnot(None))
                .group_by(column)
                .all()
            )
            return {str(key): int(count) for key, count in rows if key != ""}

        return self._run(action)

    def stats(self, query: IndexQuery, field: str) -> FieldStats:
        column = getattr(ShipmentRecord, field)

        def action(session: Session) -> FieldStats:
            low, high, mean, count = self._filtered(
                session, query, func.min(column), func.max(column), func.avg(column), func.count(column)
            ).one()
            if not count:
                return FieldStats(min=None, max=None, avg=None, count=0)
            return FieldStats(min=float(low), max=float(high), avg=float(mean), count=int(count))

        return self._run(action)

    def values(self, query: IndexQuery, field: str) -> List[float]:
        column = getattr(ShipmentRecord, field)

        def action(session: Session) -> List[float]:
            rows = self._filtered(session, query, column).filter(column.isnot(None)).all()
            return [float(value) for (value,) in rows]

        return self._run(action)

    def scan(self, query: IndexQuery) -> Iterator[Shipment]:
        def action(session: Session) -> List[Shipment]:
            return [record_to_shipment(r) for r in self._ordered(session, query).yield_per(500)]

        yield from self._run(action)

    def get(self, shipment_id: str) -> Optional[Shipment]:
        def action(session: Session) -> Optional[Shipment]:
            record = session.query(ShipmentRecord).filter_by(id=shipment_id).first()
            return record_to_shipment(record) if record is not None else None

        return self._run(action)

    def ping(self) -> bool:
        try:
            self._run(lambda session: session.query(func.count(ShipmentRecord.id)).limit(1).scalar())
        except UpstreamUnavailable:
            return False
        return True
