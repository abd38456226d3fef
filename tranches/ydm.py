"""
ydm.py - Yield Distribution Models

A YDM decides which fraction of Senior-side yield is paid to the Junior
tranche, as a function of utilization:

    utilization = (raw_ST + beta * raw_JT) * coverage / effective_JT

The more of its buffer Junior has committed to covering Senior, the larger the
share of yield it earns.

Two curves:
- StaticCurveYDM: piecewise-linear through three fixed control points
- AdaptiveCurveYDM: the control point at the target utilization drifts over
  time so realized utilization is pulled back toward the target

A model is just a value object plus an explicit per-market state:
- junior_share(state, ...) -> fraction in [0, 1]   (pure)
- advance(state, ...) -> new state                  (pure)

The static curve has no state (None). The adaptive curve's state is an
AdaptiveCurveState kept by the Accountant next to the market it belongs to.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol, runtime_checkable

from .core import (
    ZERO, ONE,
    Misconfiguration,
    clamp, compute_utilization, elapsed_seconds, to_decimal,
)


# ============================================================================
# PROTOCOL
# ============================================================================

@runtime_checkable
class YieldDistributionModel(Protocol):
    """
    Pluggable yield split curve.

    Implementations must be monotonic non-decreasing in utilization and
    bounded to [0, 1] for every state they can produce.
    """

    def initial_state(self) -> Any:
        """State for a freshly registered market."""
        ...

    def junior_share(
        self,
        state: Any,
        raw_st: Decimal,
        raw_jt: Decimal,
        beta: Decimal,
        coverage: Decimal,
        effective_jt: Decimal,
        now: datetime,
    ) -> Decimal:
        """Instantaneous Junior yield share."""
        ...

    def advance(
        self,
        state: Any,
        raw_st: Decimal,
        raw_jt: Decimal,
        beta: Decimal,
        coverage: Decimal,
        effective_jt: Decimal,
        now: datetime,
    ) -> Any:
        """State after observing the market at `now`."""
        ...


# ============================================================================
# PURE FUNCTIONS - The math, nothing else
# ============================================================================

def interpolate_curve(
    utilization: Decimal,
    share_at_zero: Decimal,
    target_utilization: Decimal,
    share_at_target: Decimal,
    share_at_full: Decimal,
) -> Decimal:
    """
    Piecewise-linear curve through (0, y0), (u_t, y_t) and (1, y1).

    Utilization at or above 1 (including +Infinity) returns y1.
    """
    if utilization <= 0:
        return share_at_zero
    if utilization >= ONE:
        return share_at_full
    if utilization <= target_utilization:
        slope = (share_at_target - share_at_zero) / target_utilization
        return share_at_zero + slope * utilization
    slope = (share_at_full - share_at_target) / (ONE - target_utilization)
    return share_at_target + slope * (utilization - target_utilization)


def utilization_error(utilization: Decimal, target_utilization: Decimal) -> Decimal:
    """
    Normalized distance from target, in [-1, 1].

    Below target the error is scaled by the target; above it by the room left
    up to full utilization.
    """
    if utilization > target_utilization:
        if utilization >= ONE:
            return ONE
        return (utilization - target_utilization) / (ONE - target_utilization)
    return (utilization - target_utilization) / target_utilization


def _validate_target_utilization(target_utilization: Decimal) -> None:
    if not (ZERO < target_utilization < ONE):
        raise Misconfiguration(
            f"target_utilization must be strictly between 0 and 1, got {target_utilization}"
        )


# ============================================================================
# STATIC CURVE
# ============================================================================

@dataclass(frozen=True, slots=True)
class StaticCurveYDM:
    """
    Three-point static curve.

    Attributes:
        share_at_zero: Junior share at 0% utilization.
        target_utilization: Utilization of the middle control point.
        share_at_target: Junior share at target utilization.
        share_at_full: Junior share at (and beyond) 100% utilization.

    Example:
        ydm = StaticCurveYDM(
            share_at_zero=Decimal("0.05"),
            target_utilization=Decimal("0.8"),
            share_at_target=Decimal("0.2"),
            share_at_full=Decimal("0.6"),
        )
    """
    share_at_zero: Decimal
    target_utilization: Decimal
    share_at_target: Decimal
    share_at_full: Decimal

    def __post_init__(self):
        for name in ("share_at_zero", "target_utilization", "share_at_target", "share_at_full"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        _validate_target_utilization(self.target_utilization)
        if not (ZERO <= self.share_at_zero <= self.share_at_target <= self.share_at_full <= ONE):
            raise Misconfiguration(
                "Curve must satisfy 0 <= share_at_zero <= share_at_target <= share_at_full <= 1, "
                f"got {self.share_at_zero}, {self.share_at_target}, {self.share_at_full}"
            )

    def initial_state(self) -> None:
        return None

    def junior_share(self, state, raw_st, raw_jt, beta, coverage, effective_jt, now) -> Decimal:
        utilization = compute_utilization(raw_st, raw_jt, beta, coverage, effective_jt)
        return interpolate_curve(
            utilization,
            self.share_at_zero,
            self.target_utilization,
            self.share_at_target,
            self.share_at_full,
        )

    def advance(self, state, raw_st, raw_jt, beta, coverage, effective_jt, now) -> None:
        return state


# ============================================================================
# ADAPTIVE CURVE
# ============================================================================

@dataclass(frozen=True, slots=True)
class AdaptiveCurveState:
    """Per-market state of an adaptive curve."""
    target_share: Decimal
    last_utilization: Decimal
    last_adjustment: Optional[datetime]


@dataclass(frozen=True, slots=True)
class AdaptiveCurveYDM:
    """
    Curve whose target control point adapts to realized utilization.

    Between observations the Junior share at target drifts exponentially:

        target_share(t) = target_share * exp(adjustment_speed * err * dt)

    where err is the normalized utilization error of the last observation and
    dt is seconds since then. The result is clamped to
    [min_target_share, max_target_share]. Steepness k fixes the other two
    control points relative to the target:

        share_at_zero = target_share / k
        share_at_full = min(1, target_share * k)

    so the curve stays monotonic and inside [0, 1] wherever the target moves.

    Attributes:
        target_utilization: Utilization the curve steers toward.
        initial_target_share: Junior share at target for a new market.
        min_target_share / max_target_share: Bounds of the drifting target.
        steepness: Ratio between neighbouring control points (>= 1).
        adjustment_speed: Drift rate per second per unit of error.
    """
    target_utilization: Decimal
    initial_target_share: Decimal
    min_target_share: Decimal
    max_target_share: Decimal
    steepness: Decimal = Decimal("4")
    adjustment_speed: Decimal = Decimal("50") / Decimal(365 * 24 * 3600)

    def __post_init__(self):
        for name in ("target_utilization", "initial_target_share", "min_target_share",
                     "max_target_share", "steepness", "adjustment_speed"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        _validate_target_utilization(self.target_utilization)
        if not (ZERO < self.min_target_share <= self.initial_target_share
                <= self.max_target_share <= ONE):
            raise Misconfiguration(
                "Adaptive curve must satisfy 0 < min_target_share <= initial_target_share "
                f"<= max_target_share <= 1, got {self.min_target_share}, "
                f"{self.initial_target_share}, {self.max_target_share}"
            )
        if self.steepness < ONE:
            raise Misconfiguration(f"steepness must be >= 1, got {self.steepness}")
        if self.adjustment_speed < 0:
            raise Misconfiguration(f"adjustment_speed must be >= 0, got {self.adjustment_speed}")

    def initial_state(self) -> AdaptiveCurveState:
        return AdaptiveCurveState(
            target_share=self.initial_target_share,
            last_utilization=self.target_utilization,
            last_adjustment=None,
        )

    def target_share_at(self, state: AdaptiveCurveState, now: datetime) -> Decimal:
        """Target share after drifting from the last observation until `now`."""
        dt = elapsed_seconds(state.last_adjustment, now)
        if dt == 0:
            return state.target_share
        err = utilization_error(state.last_utilization, self.target_utilization)
        drifted = state.target_share * (self.adjustment_speed * err * dt).exp()
        return clamp(drifted, self.min_target_share, self.max_target_share)

    def curve_points(self, target_share: Decimal) -> tuple[Decimal, Decimal, Decimal]:
        """(share_at_zero, share_at_target, share_at_full) for a target share."""
        return target_share / self.steepness, target_share, min(ONE, target_share * self.steepness)

    def junior_share(self, state, raw_st, raw_jt, beta, coverage, effective_jt, now) -> Decimal:
        state = state or self.initial_state()
        y0, yt, y1 = self.curve_points(self.target_share_at(state, now))
        utilization = compute_utilization(raw_st, raw_jt, beta, coverage, effective_jt)
        return interpolate_curve(utilization, y0, self.target_utilization, yt, y1)

    def advance(self, state, raw_st, raw_jt, beta, coverage, effective_jt, now) -> AdaptiveCurveState:
        state = state or self.initial_state()
        return AdaptiveCurveState(
            target_share=self.target_share_at(state, now),
            last_utilization=compute_utilization(raw_st, raw_jt, beta, coverage, effective_jt),
            last_adjustment=now,
        )
