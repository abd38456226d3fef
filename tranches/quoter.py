"""
quoter.py - Conversion rates between tranche units and NAV units

A market's accounting runs in NAV units (a common denomination, e.g. USD),
while LPs deposit and receive tranche units (the underlying asset). The quoter
converts between the two using an oracle-style rate feed.

Classes:
- RateRound: One oracle answer with its round metadata
- RateFeed: Protocol defining the feed interface
- StaticRateFeed: Time-independent rates, always fresh
- TimeSeriesRateFeed: Time-varying rates with historical observations
- RateQuoter: Validates rounds, converts amounts, caches rates per operation

Every round is validated before use: a stale, non-positive, or incomplete round
raises instead of silently pricing an operation.
"""

from __future__ import annotations
import logging
from bisect import bisect_right
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Protocol, Tuple, runtime_checkable

from .core import LedgerView, TrancheError, to_decimal

logger = logging.getLogger(__name__)


class QuoterError(TrancheError):
    """Base exception for rate validation failures."""
    code = "QUOTER_ERROR"


class StaleRate(QuoterError):
    """Raised when the latest round is older than the quoter's staleness bound."""
    code = "STALE_RATE"


class InvalidRate(QuoterError):
    """Raised when a round's answer is zero or negative."""
    code = "INVALID_RATE"


class IncompleteRound(QuoterError):
    """Raised when a round was never completed, or no round exists at all."""
    code = "INCOMPLETE_ROUND"


@dataclass(frozen=True, slots=True)
class RateRound:
    """
    One answer of a rate feed, in NAV units per tranche unit.

    Attributes:
        round_id: Monotonic identifier of the round.
        answer: The rate.
        updated_at: When the answer was written (None if never completed).
        answered_in_round: Round in which the answer was computed. An answer
            carried over from an earlier round is incomplete.
    """
    round_id: int
    answer: Decimal
    updated_at: Optional[datetime]
    answered_in_round: int


@runtime_checkable
class RateFeed(Protocol):
    """Source of rate rounds for tranche-unit symbols."""

    def latest_round(self, unit_symbol: str, as_of: datetime) -> Optional[RateRound]:
        """Return the latest round at or before as_of, or None if there is none."""
        ...


class StaticRateFeed:
    """
    Rate feed with fixed rates (time-independent).

    A static rate never ages: every round is reported as updated at the
    requested time. Updating a rate opens a new round.
    """

    def __init__(self, rates: Dict[str, Decimal]):
        self.rates = {symbol: to_decimal(rate) for symbol, rate in rates.items()}
        self._round_ids = {symbol: 1 for symbol in self.rates}

    def latest_round(self, unit_symbol: str, as_of: datetime) -> Optional[RateRound]:
        if unit_symbol not in self.rates:
            return None
        round_id = self._round_ids[unit_symbol]
        return RateRound(round_id, self.rates[unit_symbol], as_of, round_id)

    def update_rate(self, unit_symbol: str, rate: Decimal) -> None:
        self.rates[unit_symbol] = to_decimal(rate)
        self._round_ids[unit_symbol] = self._round_ids.get(unit_symbol, 0) + 1

    def __repr__(self):
        return f"StaticRateFeed({len(self.rates)} rates)"


class TimeSeriesRateFeed:
    """
    Rate feed with time-varying rates.

    Uses the most recent observation at or before the requested time; the
    observation's position in the history is its round id.

    Example:
        feed = TimeSeriesRateFeed({
            'stETH': [(t0, Decimal("2000")), (t1, Decimal("2100"))],
        })
        feed.latest_round('stETH', t1).answer  # Decimal("2100")
    """

    def __init__(self, rate_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None):
        self.rate_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        if rate_paths:
            for symbol, path in rate_paths.items():
                if path:
                    self.rate_history[symbol] = sorted(
                        ((ts, to_decimal(rate)) for ts, rate in path), key=lambda x: x[0]
                    )

    def add_rate(self, unit_symbol: str, timestamp: datetime, rate: Decimal) -> None:
        """Add a rate observation for a unit at a specific time."""
        history = self.rate_history.setdefault(unit_symbol, [])
        history.append((timestamp, to_decimal(rate)))
        history.sort(key=lambda x: x[0])

    def latest_round(self, unit_symbol: str, as_of: datetime) -> Optional[RateRound]:
        history = self.rate_history.get(unit_symbol)
        if not history:
            return None
        idx = bisect_right([ts for ts, _ in history], as_of)
        if idx == 0:
            return None
        updated_at, rate = history[idx - 1]
        return RateRound(idx, rate, updated_at, idx)

    def __repr__(self):
        total = sum(len(h) for h in self.rate_history.values())
        return f"TimeSeriesRateFeed({len(self.rate_history)} units, {total} observations)"


class RateQuoter:
    """
    Converts between tranche units and NAV units.

    The NAV unit itself always converts at 1. Any other symbol is priced from
    the feed's latest round, validated on every fetch.

    Inside a `cached()` block each symbol's rate is fetched once and reused,
    so a multi-step operation prices every leg with the same rate even if the
    feed moves mid-operation.
    """

    def __init__(
        self,
        feed: RateFeed,
        clock: LedgerView,
        nav_unit: str = "USD",
        max_staleness: timedelta = timedelta(days=1),
    ):
        self.feed = feed
        self.clock = clock
        self.nav_unit = nav_unit
        self.max_staleness = max_staleness
        self._cache: Optional[Dict[str, Decimal]] = None
        self._cache_depth = 0

    def get_rate(self, unit_symbol: str) -> Decimal:
        """
        Return the validated rate for a tranche unit, in NAV units per unit.

        Raises:
            IncompleteRound: no round, an unfinished round, or a carried-over answer
            InvalidRate: the answer is zero or negative
            StaleRate: the round is older than max_staleness
        """
        if unit_symbol == self.nav_unit:
            return Decimal("1")
        if self._cache is not None and unit_symbol in self._cache:
            return self._cache[unit_symbol]

        now = self.clock.current_time
        rnd = self.feed.latest_round(unit_symbol, now)
        if rnd is None or rnd.updated_at is None:
            raise IncompleteRound(f"No completed round for {unit_symbol}")
        if rnd.answered_in_round < rnd.round_id:
            raise IncompleteRound(
                f"{unit_symbol} round {rnd.round_id} answered in earlier round {rnd.answered_in_round}"
            )
        if rnd.answer <= 0:
            raise InvalidRate(f"{unit_symbol} rate must be positive, got {rnd.answer}")
        if now - rnd.updated_at > self.max_staleness:
            raise StaleRate(f"{unit_symbol} rate updated at {rnd.updated_at} is stale at {now}")

        if self._cache is not None:
            self._cache[unit_symbol] = rnd.answer
        return rnd.answer

    def to_nav_units(self, unit_symbol: str, units: Decimal) -> Decimal:
        """Value of tranche units in NAV units."""
        return to_decimal(units) * self.get_rate(unit_symbol)

    def to_tranche_units(self, unit_symbol: str, nav: Decimal) -> Decimal:
        """Tranche units worth the given NAV."""
        return to_decimal(nav) / self.get_rate(unit_symbol)

    @contextmanager
    def cached(self) -> Iterator[RateQuoter]:
        """
        Fix every rate for the duration of the block.

        Nested blocks share the outermost cache, which is invalidated when the
        outermost block exits.
        """
        if self._cache_depth == 0:
            self._cache = {}
        self._cache_depth += 1
        try:
            yield self
        finally:
            self._cache_depth -= 1
            if self._cache_depth == 0:
                logger.debug("rate cache invalidated", extra={"cached_rates": dict(self._cache)})
                self._cache = None

    def __repr__(self):
        return f"RateQuoter(nav_unit={self.nav_unit}, max_staleness={self.max_staleness})"
