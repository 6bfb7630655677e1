from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from functools import lru_cache
from typing import Mapping, Optional, Protocol
from urllib.error import URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import FXRateUnavailable, InvalidFxRate
from models import FxRateSnapshot, utcnow
from money import check_minor_range, currency_exponent, normalize_currency_code

logger = logging.getLogger(__name__)

FRANKFURTER_PROVIDER = "frankfurter"
FRANKFURTER_BASE_URL = "https://api.frankfurter.app"


class RateKind(str, Enum):
    authoritative = "authoritative"
    estimate = "estimate"


@dataclass(frozen=True)
class FxQuote:
    provider: str
    base: str
    quote: str
    rate: Decimal  # quote per 1 base
    rate_date: date
    fetched_at: datetime


@dataclass(frozen=True)
class AppliedRate:
    base_currency: str
    quote_currency: str
    rate: str
    rate_date: date
    kind: RateKind


@dataclass
class ConversionResult:
    target_currency: str
    amount_minor: int
    used_estimate_rate: bool
    rates: list[AppliedRate] = field(default_factory=list)


class RateSource(Protocol):
    name: str

    def historical(self, base: str, quote: str, on_date: date) -> FxQuote: ...

    def latest(self, base: str, quote: str) -> FxQuote: ...


def parse_rate(value: str) -> Decimal:
    try:
        rate = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidFxRate(f"Invalid FX rate: {value!r}") from exc
    if not rate.is_finite() or rate <= 0:
        raise InvalidFxRate(f"FX rate must be positive, got {value!r}")
    return rate


def convert_minor(amount_minor: int, rate: Decimal, from_code: str, to_code: str) -> int:
    """Convert minor units, adjusting for the two currencies' exponents."""
    shift = currency_exponent(to_code) - currency_exponent(from_code)
    scaled = Decimal(amount_minor) * rate * (Decimal(10) ** shift)
    return check_minor_range(int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


class FxSnapshotStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_key(
        self, provider: str, base: str, quote: str, rate_date: date, kind: RateKind
    ) -> Optional[FxRateSnapshot]:
        stmt = select(FxRateSnapshot).where(
            FxRateSnapshot.provider == provider,
            FxRateSnapshot.base_currency == base,
            FxRateSnapshot.quote_currency == quote,
            FxRateSnapshot.rate_date == rate_date,
            FxRateSnapshot.is_estimate.is_(kind == RateKind.estimate),
        )
        return self.session.scalar(stmt)

    def latest_estimate(
        self, provider: str, base: str, quote: str, on_or_before: date
    ) -> Optional[FxRateSnapshot]:
        stmt = (
            select(FxRateSnapshot)
            .where(
                FxRateSnapshot.provider == provider,
                FxRateSnapshot.base_currency == base,
                FxRateSnapshot.quote_currency == quote,
                FxRateSnapshot.is_estimate.is_(True),
                FxRateSnapshot.rate_date <= on_or_before,
            )
            .order_by(FxRateSnapshot.rate_date.desc(), FxRateSnapshot.id.desc())
            .limit(1)
        )
        return self.session.scalar(stmt)

    def earliest_estimate_after(
        self, provider: str, base: str, quote: str, after: date
    ) -> Optional[FxRateSnapshot]:
        stmt = (
            select(FxRateSnapshot)
            .where(
                FxRateSnapshot.provider == provider,
                FxRateSnapshot.base_currency == base,
                FxRateSnapshot.quote_currency == quote,
                FxRateSnapshot.is_estimate.is_(True),
                FxRateSnapshot.rate_date > after,
            )
            .order_by(FxRateSnapshot.rate_date, FxRateSnapshot.id)
            .limit(1)
        )
        return self.session.scalar(stmt)

    def save(
        self,
        provider: str,
        base: str,
        quote: str,
        rate: str,
        rate_date: date,
        kind: RateKind,
        fetched_at: Optional[datetime] = None,
    ) -> FxRateSnapshot:
        base = normalize_currency_code(base)
        quote = normalize_currency_code(quote)
        parse_rate(rate)
        existing = self.get_by_key(provider, base, quote, rate_date, kind)
        if existing is not None:
            return existing
        snapshot = FxRateSnapshot(
            provider=provider,
            base_currency=base,
            quote_currency=quote,
            rate=str(rate).strip(),
            rate_date=rate_date,
            is_estimate=kind == RateKind.estimate,
            fetched_at=fetched_at or utcnow(),
        )
        self.session.add(snapshot)
        self.session.commit()
        self.session.refresh(snapshot)
        return snapshot


class FrankfurterRateSource:
    name = FRANKFURTER_PROVIDER

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout

    def historical(self, base: str, quote: str, on_date: date) -> FxQuote:
        return _fetch_historical_quote(
            on_date.isoformat(), base, quote, timeout=self.timeout
        )

    def latest(self, base: str, quote: str) -> FxQuote:
        # Not cached: the latest rate moves from one day to the next.
        return _request_frankfurter_quote("latest", base, quote, timeout=self.timeout)


@lru_cache(maxsize=2048)
def _fetch_historical_quote(
    path: str, base: str, quote: str, *, timeout: float
) -> FxQuote:
    return _request_frankfurter_quote(path, base, quote, timeout=timeout)


def _request_frankfurter_quote(
    path: str, base: str, quote: str, *, timeout: float
) -> FxQuote:
    query = urlencode({"from": base, "to": quote})
    url = f"{FRANKFURTER_BASE_URL}/{path}?{query}"
    req = Request(url, headers={"Accept": "application/json"})
    fetched_at = datetime.now(timezone.utc).replace(tzinfo=None)
    try:
        with urlopen(req, timeout=timeout) as resp:
            payload = json.loads(resp.read().decode("utf-8"))
    except (URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise RuntimeError(
            f"Failed to fetch FX rate from Frankfurter for {base}->{quote} ({path})"
        ) from exc

    try:
        rate_value = payload["rates"][quote]
        effective_date = date.fromisoformat(payload["date"])
    except (KeyError, TypeError, ValueError) as exc:
        raise RuntimeError("Unexpected FX provider response") from exc

    return FxQuote(
        provider=FRANKFURTER_PROVIDER,
        base=base,
        quote=quote,
        rate=Decimal(str(rate_value)),
        rate_date=effective_date,
        fetched_at=fetched_at,
    )


class FxConverter:
    """Converts per-currency minor totals into one target currency.

    Rates are looked up in stored snapshots first: an authoritative rate for
    the exact date, then an estimate for that date, then the newest estimate
    on or before it. A configured rate source is consulted next, and whatever
    it returns is stored for later reads. The closest estimate dated after
    the requested day is the last resort.
    """

    def __init__(
        self,
        store: FxSnapshotStore,
        provider: str = FRANKFURTER_PROVIDER,
        rate_source: Optional[RateSource] = None,
        today: Optional[date] = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.rate_source = rate_source
        self.today = today

    @classmethod
    def from_settings(cls, session: Session) -> "FxConverter":
        settings = get_settings()
        provider = (settings.fx_provider or FRANKFURTER_PROVIDER).lower()
        rate_source = None
        if settings.fx_fetch_enabled:
            if provider != FRANKFURTER_PROVIDER:
                raise ValueError(f"Unsupported FX provider: {provider}")
            rate_source = FrankfurterRateSource(timeout=settings.fx_timeout_secs)
        return cls(FxSnapshotStore(session), provider=provider, rate_source=rate_source)

    def _today(self) -> date:
        return self.today or utcnow().date()

    def _stored_rate(self, base: str, quote: str, as_of: date) -> Optional[AppliedRate]:
        lookups = (
            (RateKind.authoritative, lambda: self.store.get_by_key(
                self.provider, base, quote, as_of, RateKind.authoritative
            )),
            (RateKind.estimate, lambda: self.store.get_by_key(
                self.provider, base, quote, as_of, RateKind.estimate
            )),
            (RateKind.estimate, lambda: self.store.latest_estimate(
                self.provider, base, quote, as_of
            )),
        )
        for kind, lookup in lookups:
            snapshot = lookup()
            if snapshot is not None:
                return AppliedRate(base, quote, snapshot.rate, snapshot.rate_date, kind)
        return None

    def _fetched_rate(self, base: str, quote: str, as_of: date) -> Optional[AppliedRate]:
        if self.rate_source is None:
            return None
        is_estimate = as_of > self._today()
        kind = RateKind.estimate if is_estimate else RateKind.authoritative
        try:
            if is_estimate:
                fetched = self.rate_source.latest(base, quote)
            else:
                fetched = self.rate_source.historical(base, quote, as_of)
        except RuntimeError as exc:
            logger.warning(f"fx_fetch_failed: base={base} quote={quote} as_of={as_of} error={exc}")
            return None

        # Snapshots are keyed by the requested date so later reads hit the cache.
        snapshot = self.store.save(
            self.provider,
            base,
            quote,
            str(fetched.rate),
            as_of,
            kind,
            fetched_at=fetched.fetched_at,
        )
        return AppliedRate(base, quote, snapshot.rate, snapshot.rate_date, kind)

    def _later_estimate(self, base: str, quote: str, as_of: date) -> Optional[AppliedRate]:
        snapshot = self.store.earliest_estimate_after(self.provider, base, quote, as_of)
        if snapshot is None:
            return None
        return AppliedRate(base, quote, snapshot.rate, snapshot.rate_date, RateKind.estimate)

    def resolve_rate(self, base: str, quote: str, as_of: date) -> AppliedRate:
        base = normalize_currency_code(base)
        quote = normalize_currency_code(quote)
        applied = (
            self._stored_rate(base, quote, as_of)
            or self._fetched_rate(base, quote, as_of)
            or self._later_estimate(base, quote, as_of)
        )
        if applied is None:
            raise FXRateUnavailable(f"No FX rate available for {base}->{quote} on {as_of}")
        if applied.kind == RateKind.estimate:
            logger.info(
                f"fx_estimate_used: base={base} quote={quote} as_of={as_of} "
                f"rate_date={applied.rate_date}"
            )
        return applied

    def convert(
        self, amounts_by_currency: Mapping[str, int], target: str, as_of: date
    ) -> ConversionResult:
        target = normalize_currency_code(target)
        total = 0
        rates: list[AppliedRate] = []
        for code in sorted(amounts_by_currency):
            amount = amounts_by_currency[code]
            source = normalize_currency_code(code)
            if source == target:
                total = check_minor_range(total + amount)
                continue
            if amount == 0:
                continue
            applied = self.resolve_rate(source, target, as_of)
            rates.append(applied)
            converted = convert_minor(amount, parse_rate(applied.rate), source, target)
            total = check_minor_range(total + converted)
        return ConversionResult(
            target_currency=target,
            amount_minor=total,
            used_estimate_rate=any(r.kind == RateKind.estimate for r in rates),
            rates=rates,
        )
