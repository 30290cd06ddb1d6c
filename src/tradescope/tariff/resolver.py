"""Layered tariff resolution: MFN, preferential programs, trade measures.

    effectiveTotalRate = min(mfn, best preferential) + sum(active non-quota measure rates)

QUOTA measures contribute nothing to the rate and are surfaced separately in
``binding_quotas``. A well-formed code with no MFN data resolves to the
configured unknown-code rate (``TS_UNKNOWN_HS_MFN_RATE``, default 0) and is
flagged ``dataQuality=LOW``.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import date
from typing import Any, Callable, List, Mapping, Optional

from tradescope.errors import ValidationError
from tradescope.tariff.fta_engine import FtaEngine, FtaProgram
from tradescope.tariff.hs_codes import HsNomenclature, normalize_hs_code
from tradescope.tariff.measures import MeasureRegistry
from tradescope.tariff.models import DataQuality, MeasureType, TariffQuote, TradeMeasure
from tradescope.tariff.rate_store import MfnRateStore

logger = logging.getLogger(__name__)

_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")


def normalize_country(value: Optional[str], field: str, *, required: bool = True) -> Optional[str]:
    if value is None or not str(value).strip():
        if required:
            raise ValidationError(field, "is required")
        return None
    code = str(value).strip().upper()
    if not _COUNTRY_RE.match(code):
        raise ValidationError(field, "must be an ISO 3166-1 alpha-2 country code")
    return code


def unknown_code_mfn_rate() -> float:
    return float(os.getenv("TS_UNKNOWN_HS_MFN_RATE", "0"))


class TariffResolver:
    def __init__(
        self,
        rate_store: MfnRateStore,
        fta_engine: FtaEngine,
        measures: MeasureRegistry,
        nomenclature: Optional[HsNomenclature] = None,
        *,
        clock: Callable[[], date] = date.today,
        unknown_mfn_rate: Optional[float] = None,
    ) -> None:
        self.rate_store = rate_store
        self.fta_engine = fta_engine
        self.measures = measures
        self.nomenclature = nomenclature or HsNomenclature()
        self._clock = clock
        self._unknown_mfn_rate = unknown_mfn_rate

    @classmethod
    def default(cls, *, clock: Callable[[], date] = date.today) -> "TariffResolver":
        """Resolver over the bundled reference data."""
        return cls(
            MfnRateStore.load(),
            FtaEngine.load(),
            MeasureRegistry.load(),
            HsNomenclature.load(),
            clock=clock,
        )

    def quote(
        self,
        hs_code: str,
        origin: Optional[str],
        destination: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> TariffQuote:
        digits = normalize_hs_code(hs_code)
        origin = normalize_country(origin, "originCountry", required=False)
        destination = normalize_country(destination, "destinationCountry")

        match = self.rate_store.lookup(destination, digits)
        if match is not None:
            mfn_rate, matched, quality = match.rate, match.matched_code, DataQuality.HIGH
        else:
            mfn_rate = (
                self._unknown_mfn_rate if self._unknown_mfn_rate is not None else unknown_code_mfn_rate()
            )
            matched, quality = None, DataQuality.LOW
            logger.info("No MFN data for %s into %s; using unknown-code rate %.2f", digits, destination, mfn_rate)

        preferential = self.fta_engine.preferential_rates(digits, origin, destination, context)
        active = self.measures.matching(destination, digits, origin, self._clock())
        rate_measures = tuple(m for m in active if m.type is not MeasureType.QUOTA)
        quotas = tuple(m for m in active if m.type is MeasureType.QUOTA)

        base = min([mfn_rate] + [p.rate for p in preferential])
        surcharge = sum(m.rate or 0.0 for m in rate_measures)
        effective = round(base + surcharge, 4)

        return TariffQuote(
            hs_code=digits,
            origin=origin,
            destination=destination,
            mfn_rate=mfn_rate,
            preferential_rates=preferential,
            measures=rate_measures,
            effective_total_rate=effective,
            data_quality=quality,
            binding_quotas=quotas,
            mfn_matched_code=matched,
            description=self.nomenclature.describe(digits),
        )

    def today(self) -> date:
        """The date measure windows are evaluated against."""
        return self._clock()

    def effective_rate(self, hs_code: str, origin: Optional[str], destination: str) -> float:
        return self.quote(hs_code, origin, destination).effective_total_rate

    def trade_measures(
        self, destination: str, hs_code: Optional[str] = None, origin: Optional[str] = None
    ) -> List[TradeMeasure]:
        """Active measures for a destination, optionally narrowed by code and origin."""
        destination = normalize_country(destination, "destinationCountry")
        origin = normalize_country(origin, "originCountry", required=False)
        digits = normalize_hs_code(hs_code) if hs_code else None
        return self.measures.matching(
            destination, digits, origin, self._clock(), any_origin=origin is None
        )

    def ftas_for_route(self, origin: str, destination: str) -> List[FtaProgram]:
        origin = normalize_country(origin, "originCountry")
        destination = normalize_country(destination, "destinationCountry")
        return self.fta_engine.programs_for_route(origin, destination)
