"""
accountant.py - Tranche NAV Synchronization & Coverage

The Accountant owns the accounting state of every market and keeps the
effective NAVs of the two tranches in step with the raw NAV of the strategy.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs and outputs):
   - AccountantState: a market's parameters and checkpoints
   - SyncedState: the result of one synchronization
   - AssetClaims: a tranche's effective NAV split across the two asset pools

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - calculate_sync: realize yield/loss since the last checkpoint
   - calculate_post_op: apply the known deltas of an executed operation
   - calculate_asset_claims, calculate_max_st_deposit,
     calculate_max_jt_withdraw_fraction: coverage headroom

3. THE ARENA (Accountant):
   - markets: Dict[market_id, AccountantState]
   - Every mutation replaces the market's frozen state in one assignment, so a
     failed step never leaves a half-updated market behind.

Key Formulas:
    NAV conservation:  raw_ST + raw_JT == effective_ST + effective_JT
    utilization = (raw_ST + beta * raw_JT) * coverage / effective_JT  <= 1
    avg JT share = accumulated (share * seconds) / seconds since distribution

Pre-operation sync, in order:
    1. accrue the YDM's instantaneous Junior share x elapsed seconds
    2. deltas of both raw NAVs against the checkpoints
    3. Junior PnL: losses hit effective JT first, gains stay with JT
    4-5. Senior loss: Junior covers it up to its whole effective NAV
    6. Senior gain: repay impermanent losses, then split by the average share
    7. checkpoint raw and effective NAVs, update the market state
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from .core import (
    ZERO, ONE, INFINITY,
    TrancheType, MarketState, Operation,
    InsufficientCoverage, Misconfiguration, UnknownMarket,
    ReentrantCall, SyncOrderViolation,
    clamp, compute_utilization, elapsed_seconds, saturating_sub, to_decimal,
)
from .ydm import YieldDistributionModel

logger = logging.getLogger(__name__)


# Relative slack allowed on the coverage post-check.
UTILIZATION_TOLERANCE = Decimal("1e-18")


# ============================================================================
# STATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class InFlightOperation:
    """The operation between its pre-op and post-op sync, and the raw NAVs it started from."""
    operation: Operation
    raw_st: Decimal
    raw_jt: Decimal


@dataclass(frozen=True, slots=True)
class AccountantState:
    """
    Accounting state of one market.

    Parameters:
        coverage: Fraction of covered exposure Junior must be able to absorb.
        beta: Junior's sensitivity to Senior's downside stress.
        st_protocol_fee_rate / jt_protocol_fee_rate: Share of yield taken as fee.
        lltv: Utilization above which a realized Senior loss starts a fixed term.
        fixed_term_duration: Length of a fixed term in seconds (0 disables it).
        ydm / ydm_state: The curve and its explicit per-market state.

    Checkpoints:
        last_raw_st / last_raw_jt: Raw NAVs accounted for so far.
        last_effective_st / last_effective_jt: Effective NAVs at the checkpoint.
        last_accrual: When the YDM share was last accrued.
        last_distribution: When Senior yield was last split.
        jt_share_accumulator: Sum of Junior share x seconds since last_distribution.
        market_state / fixed_term_end: The market-state machine.
        st_impermanent_loss: Senior loss not covered by Junior.
        jt_coverage_impermanent_loss: Coverage Junior paid to Senior, not yet recovered.
        in_flight: Set between pre_op_sync and post_op_sync.
    """
    coverage: Decimal
    beta: Decimal
    ydm: YieldDistributionModel
    st_protocol_fee_rate: Decimal = ZERO
    jt_protocol_fee_rate: Decimal = ZERO
    lltv: Decimal = ONE
    fixed_term_duration: int = 0
    ydm_state: Any = None
    last_raw_st: Decimal = ZERO
    last_raw_jt: Decimal = ZERO
    last_effective_st: Decimal = ZERO
    last_effective_jt: Decimal = ZERO
    last_accrual: Optional[datetime] = None
    last_distribution: Optional[datetime] = None
    jt_share_accumulator: Decimal = ZERO
    market_state: MarketState = MarketState.PERPETUAL
    fixed_term_end: Optional[datetime] = None
    st_impermanent_loss: Decimal = ZERO
    jt_coverage_impermanent_loss: Decimal = ZERO
    in_flight: Optional[InFlightOperation] = None

    def __post_init__(self):
        for name in ("coverage", "beta", "st_protocol_fee_rate", "jt_protocol_fee_rate", "lltv"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        validate_parameters(
            self.coverage, self.beta, self.st_protocol_fee_rate,
            self.jt_protocol_fee_rate, self.lltv, self.fixed_term_duration,
        )


@dataclass(frozen=True, slots=True)
class SyncedState:
    """
    Result of a synchronization.

    raw_st / raw_jt are the raw NAVs as checkpointed. A deferred Senior gain is
    not part of raw_st until the sync that distributes it.
    """
    market_state: MarketState
    raw_st: Decimal
    raw_jt: Decimal
    effective_st: Decimal
    effective_jt: Decimal
    st_impermanent_loss: Decimal
    jt_coverage_impermanent_loss: Decimal
    st_protocol_fee: Decimal
    jt_protocol_fee: Decimal
    utilization: Decimal
    jt_yield_share: Optional[Decimal]
    yield_distributed: bool
    fixed_term_end: Optional[datetime]
    timestamp: datetime

    @property
    def total_raw(self) -> Decimal:
        return self.raw_st + self.raw_jt

    @property
    def total_effective(self) -> Decimal:
        return self.effective_st + self.effective_jt

    def raw_nav(self, tranche: TrancheType) -> Decimal:
        return self.raw_st if tranche is TrancheType.SENIOR else self.raw_jt

    def effective_nav(self, tranche: TrancheType) -> Decimal:
        return self.effective_st if tranche is TrancheType.SENIOR else self.effective_jt

    def protocol_fee(self, tranche: TrancheType) -> Decimal:
        return self.st_protocol_fee if tranche is TrancheType.SENIOR else self.jt_protocol_fee


@dataclass(frozen=True, slots=True)
class AssetClaims:
    """
    A tranche's effective NAV decomposed by asset pool, in NAV units.

    st_assets is the claim on the Senior pool, jt_assets the claim on the
    Junior pool.
    """
    st_assets: Decimal
    jt_assets: Decimal

    @property
    def nav(self) -> Decimal:
        return self.st_assets + self.jt_assets

    def pool(self, tranche: TrancheType) -> Decimal:
        return self.st_assets if tranche is TrancheType.SENIOR else self.jt_assets

    def scaled(self, fraction: Decimal) -> AssetClaims:
        return AssetClaims(self.st_assets * fraction, self.jt_assets * fraction)


# ============================================================================
# VALIDATION
# ============================================================================

def validate_parameters(
    coverage: Decimal,
    beta: Decimal,
    st_protocol_fee_rate: Decimal,
    jt_protocol_fee_rate: Decimal,
    lltv: Decimal,
    fixed_term_duration: int,
) -> None:
    """
    Raises:
        Misconfiguration: if any parameter is outside its domain
    """
    if not (ZERO < coverage <= ONE):
        raise Misconfiguration(f"coverage must be in (0, 1], got {coverage}")
    if not (ZERO <= beta <= ONE):
        raise Misconfiguration(f"beta must be in [0, 1], got {beta}")
    for name, rate in (("st_protocol_fee_rate", st_protocol_fee_rate),
                       ("jt_protocol_fee_rate", jt_protocol_fee_rate)):
        if not (ZERO <= rate < ONE):
            raise Misconfiguration(f"{name} must be in [0, 1), got {rate}")
    if not (ZERO < lltv <= ONE):
        raise Misconfiguration(f"lltv must be in (0, 1], got {lltv}")
    if int(fixed_term_duration) < 0:
        raise Misconfiguration(f"fixed_term_duration must be >= 0, got {fixed_term_duration}")


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_sync(
    state: AccountantState,
    raw_st: Decimal,
    raw_jt: Decimal,
    now: datetime,
) -> tuple[AccountantState, SyncedState]:
    """
    Realize the yield and loss accrued since the last checkpoint.

    Pure: returns the new state and the sync result, mutates nothing.

    Args:
        state: The market's current state
        raw_st: Senior raw NAV observed now
        raw_jt: Junior raw NAV observed now
        now: Current time

    Returns:
        (new_state, synced)
    """
    raw_st = to_decimal(raw_st)
    raw_jt = to_decimal(raw_jt)

    # First sync of a market: start both clocks here.
    last_accrual = state.last_accrual or now
    last_distribution = state.last_distribution or now

    # 1. Time-weighted accrual of the Junior share at the last checkpoint.
    accumulator = state.jt_share_accumulator
    ydm_state = state.ydm_state
    elapsed = elapsed_seconds(last_accrual, now)
    if elapsed > 0:
        last_accrual = last_accrual + timedelta(seconds=int(elapsed))
        checkpoint = (state.last_raw_st, state.last_raw_jt, state.beta,
                      state.coverage, state.last_effective_jt, last_accrual)
        share = clamp(state.ydm.junior_share(ydm_state, *checkpoint), ZERO, ONE)
        accumulator += share * elapsed
        ydm_state = state.ydm.advance(ydm_state, *checkpoint)

    # 2. Raw PnL since the checkpoint.
    delta_st = raw_st - state.last_raw_st
    delta_jt = raw_jt - state.last_raw_jt

    eff_st = state.last_effective_st
    eff_jt = state.last_effective_jt
    st_il = state.st_impermanent_loss
    jt_il = state.jt_coverage_impermanent_loss

    # 3. Junior PnL. A loss beyond Junior's effective NAV falls on Senior's
    # claim on the Junior pool.
    jt_own_gain = ZERO
    if delta_jt < 0:
        loss = -delta_jt
        absorbed = min(loss, eff_jt)
        eff_jt -= absorbed
        spill = min(loss - absorbed, eff_st)
        eff_st -= spill
        st_il += spill
    elif delta_jt > 0:
        jt_own_gain = delta_jt
        eff_jt += delta_jt

    # 4-6. Senior PnL.
    checkpoint_raw_st = raw_st
    st_yield = ZERO
    jt_yield = ZERO
    applied_share: Optional[Decimal] = None
    distributed = False
    if delta_st < 0:
        loss = -delta_st
        st_loss = min(loss, eff_st)
        eff_st -= st_loss
        # Loss beyond Senior's claim was Junior's part of the Senior pool.
        eff_jt = saturating_sub(eff_jt, loss - st_loss)
        covered = min(st_loss, eff_jt)
        eff_jt -= covered
        eff_st += covered
        st_il += st_loss - covered
        jt_il += covered
    elif delta_st > 0:
        since_distribution = elapsed_seconds(last_distribution, last_accrual)
        if since_distribution == 0:
            # Deferred: the gain stays out of the checkpoint until time has passed.
            checkpoint_raw_st = state.last_raw_st
        else:
            gain = delta_st
            repay_st = min(gain, st_il)
            eff_st += repay_st
            st_il -= repay_st
            gain -= repay_st

            repay_jt = min(gain, jt_il)
            eff_jt += repay_jt
            jt_il -= repay_jt
            gain -= repay_jt

            applied_share = clamp(accumulator / since_distribution, ZERO, ONE)
            jt_yield = gain * applied_share
            st_yield = gain - jt_yield
            eff_jt += jt_yield
            eff_st += st_yield

            accumulator = ZERO
            last_distribution = last_accrual
            distributed = True

    st_fee = st_yield * state.st_protocol_fee_rate
    jt_fee = (jt_yield + jt_own_gain) * state.jt_protocol_fee_rate

    # 7. Market state.
    utilization = compute_utilization(checkpoint_raw_st, raw_jt, state.beta, state.coverage, eff_jt)
    market_state = state.market_state
    fixed_term_end = state.fixed_term_end
    if market_state is MarketState.FIXED_TERM and (fixed_term_end is None or now >= fixed_term_end):
        market_state = MarketState.PERPETUAL
        fixed_term_end = None
    if delta_st < 0 and state.fixed_term_duration > 0 and utilization > state.lltv:
        market_state = MarketState.FIXED_TERM
        fixed_term_end = now + timedelta(seconds=int(state.fixed_term_duration))

    new_state = replace(
        state,
        ydm_state=ydm_state,
        last_raw_st=checkpoint_raw_st,
        last_raw_jt=raw_jt,
        last_effective_st=eff_st,
        last_effective_jt=eff_jt,
        last_accrual=last_accrual,
        last_distribution=last_distribution,
        jt_share_accumulator=accumulator,
        market_state=market_state,
        fixed_term_end=fixed_term_end,
        st_impermanent_loss=st_il,
        jt_coverage_impermanent_loss=jt_il,
    )
    synced = SyncedState(
        market_state=market_state,
        raw_st=checkpoint_raw_st,
        raw_jt=raw_jt,
        effective_st=eff_st,
        effective_jt=eff_jt,
        st_impermanent_loss=st_il,
        jt_coverage_impermanent_loss=jt_il,
        st_protocol_fee=st_fee,
        jt_protocol_fee=jt_fee,
        utilization=utilization,
        jt_yield_share=applied_share,
        yield_distributed=distributed,
        fixed_term_end=fixed_term_end,
        timestamp=now,
    )
    return new_state, synced


def calculate_post_op(
    state: AccountantState,
    raw_st: Decimal,
    raw_jt: Decimal,
    now: datetime,
    st_deposit: Decimal = ZERO,
    jt_deposit: Decimal = ZERO,
    st_redeem: Decimal = ZERO,
    jt_redeem: Decimal = ZERO,
) -> tuple[AccountantState, SyncedState]:
    """
    Apply the deltas of an executed operation. No yield or loss is inferred.

    Raw checkpoints move by the raw change observed since pre_op_sync, so a
    Senior gain deferred at pre-op stays unrealized. Effective NAVs move by the
    deposit and redemption deltas, which are in NAV units.

    Raises:
        SyncOrderViolation: if no operation is in flight
    """
    in_flight = state.in_flight
    if in_flight is None:
        raise SyncOrderViolation("post-operation sync without a matching pre-operation sync")

    new_raw_st = state.last_raw_st + (to_decimal(raw_st) - in_flight.raw_st)
    new_raw_jt = state.last_raw_jt + (to_decimal(raw_jt) - in_flight.raw_jt)
    eff_st = max(ZERO, state.last_effective_st + to_decimal(st_deposit) - to_decimal(st_redeem))
    eff_jt = max(ZERO, state.last_effective_jt + to_decimal(jt_deposit) - to_decimal(jt_redeem))

    utilization = compute_utilization(new_raw_st, new_raw_jt, state.beta, state.coverage, eff_jt)
    new_state = replace(
        state,
        last_raw_st=new_raw_st,
        last_raw_jt=new_raw_jt,
        last_effective_st=eff_st,
        last_effective_jt=eff_jt,
        in_flight=None,
    )
    synced = SyncedState(
        market_state=state.market_state,
        raw_st=new_raw_st,
        raw_jt=new_raw_jt,
        effective_st=eff_st,
        effective_jt=eff_jt,
        st_impermanent_loss=state.st_impermanent_loss,
        jt_coverage_impermanent_loss=state.jt_coverage_impermanent_loss,
        st_protocol_fee=ZERO,
        jt_protocol_fee=ZERO,
        utilization=utilization,
        jt_yield_share=None,
        yield_distributed=False,
        fixed_term_end=state.fixed_term_end,
        timestamp=now,
    )
    return new_state, synced


def calculate_asset_claims(
    tranche: TrancheType,
    raw_st: Decimal,
    raw_jt: Decimal,
    effective_st: Decimal,
    effective_jt: Decimal,
) -> AssetClaims:
    """
    Decompose a tranche's effective NAV into claims on the two asset pools.

    Senior's claim comes out of the Senior pool first. If Senior is owed more
    than its pool holds, the excess is a claim on the Junior pool; otherwise
    Junior owns what is left of the Senior pool.
    """
    if effective_st <= raw_st:
        if tranche is TrancheType.SENIOR:
            return AssetClaims(max(ZERO, effective_st), ZERO)
        return AssetClaims(max(ZERO, raw_st - effective_st), max(ZERO, raw_jt))
    if tranche is TrancheType.SENIOR:
        return AssetClaims(max(ZERO, raw_st), effective_st - raw_st)
    return AssetClaims(ZERO, max(ZERO, raw_jt - (effective_st - raw_st)))


def calculate_max_st_deposit(
    raw_st: Decimal,
    raw_jt: Decimal,
    beta: Decimal,
    coverage: Decimal,
    effective_jt: Decimal,
) -> Decimal:
    """
    Largest Senior deposit (NAV) that keeps utilization <= 1.

        (raw_ST + d + beta * raw_JT) * coverage <= effective_JT
    """
    if coverage <= 0:
        return INFINITY
    return saturating_sub(effective_jt / coverage, raw_st + beta * raw_jt)


def calculate_max_jt_withdraw_fraction(
    raw_st: Decimal,
    raw_jt: Decimal,
    beta: Decimal,
    coverage: Decimal,
    effective_jt: Decimal,
    jt_claims: AssetClaims,
) -> Decimal:
    """
    Largest fraction f of Junior's effective NAV that can leave the market.

    Withdrawing f takes f of Junior's claim on each pool:

        (raw_ST - f*c_ST + beta*(raw_JT - f*c_JT)) * coverage <= effective_JT * (1 - f)

    With A = (raw_ST + beta*raw_JT) * coverage and
    B = (c_ST + beta*c_JT) * coverage this is f * (E - B) <= E - A.
    """
    exposure = (raw_st + beta * raw_jt) * coverage
    released = (jt_claims.st_assets + beta * jt_claims.jt_assets) * coverage
    if effective_jt <= 0 or effective_jt < exposure:
        return ZERO
    if effective_jt <= released:
        return ONE
    return min(ONE, (effective_jt - exposure) / (effective_jt - released))


def coverage_satisfied(utilization: Decimal) -> bool:
    return utilization <= ONE + UTILIZATION_TOLERANCE


# ============================================================================
# ARENA
# ============================================================================

class Accountant:
    """
    Per-market accounting state, indexed by market id.

    Every state-changing tranche operation must be bracketed by exactly one
    pre_op_sync and one post_op_sync (or its coverage-enforcing variant).

    Example:
        accountant = Accountant()
        accountant.register_market("senior-1", coverage=Decimal("0.2"),
                                   beta=Decimal("0"), ydm=ydm)
        synced = accountant.pre_op_sync("senior-1", raw_st, raw_jt, now, Operation.ST_DEPOSIT)
        ...move assets...
        accountant.post_op_sync_and_enforce_coverage(
            "senior-1", Operation.ST_DEPOSIT, raw_st_after, raw_jt, now, st_deposit=nav)
    """

    def __init__(self):
        self.markets: Dict[str, AccountantState] = {}

    def register_market(
        self,
        market_id: str,
        *,
        coverage: Decimal,
        beta: Decimal,
        ydm: YieldDistributionModel,
        st_protocol_fee_rate: Decimal = ZERO,
        jt_protocol_fee_rate: Decimal = ZERO,
        lltv: Decimal = ONE,
        fixed_term_duration: int = 0,
    ) -> AccountantState:
        """
        Raises:
            ValueError: if the market is already registered
            Misconfiguration: if a parameter is invalid
        """
        if not market_id:
            raise Misconfiguration("market_id cannot be empty")
        if market_id in self.markets:
            raise ValueError(f"Market {market_id} already registered")
        if not isinstance(ydm, YieldDistributionModel):
            raise Misconfiguration(f"{ydm!r} is not a yield distribution model")
        state = AccountantState(
            coverage=coverage,
            beta=beta,
            ydm=ydm,
            st_protocol_fee_rate=st_protocol_fee_rate,
            jt_protocol_fee_rate=jt_protocol_fee_rate,
            lltv=lltv,
            fixed_term_duration=int(fixed_term_duration),
            ydm_state=ydm.initial_state(),
        )
        self.markets[market_id] = state
        logger.info("market registered", extra={"market_id": market_id, "coverage": state.coverage,
                                                 "beta": state.beta, "lltv": state.lltv})
        return state

    def get_state(self, market_id: str) -> AccountantState:
        if market_id not in self.markets:
            raise UnknownMarket(f"Market {market_id} not registered")
        return self.markets[market_id]

    # ------------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------------

    def preview_sync(self, market_id: str, raw_st: Decimal, raw_jt: Decimal, now: datetime) -> SyncedState:
        """What pre_op_sync would return now, without persisting anything."""
        _, synced = calculate_sync(self.get_state(market_id), raw_st, raw_jt, now)
        return synced

    def pre_op_sync(
        self,
        market_id: str,
        raw_st: Decimal,
        raw_jt: Decimal,
        now: datetime,
        operation: Operation,
    ) -> SyncedState:
        """
        Realize accrued yield and loss, persist the checkpoints, and open the
        operation. Fees accrued by this sync are carried on the returned state.

        Raises:
            ReentrantCall: if another operation on this market is still in flight
        """
        state = self.get_state(market_id)
        if state.in_flight is not None:
            raise ReentrantCall(
                f"{operation.value} entered while {state.in_flight.operation.value} "
                f"is in flight on {market_id}"
            )
        new_state, synced = calculate_sync(state, raw_st, raw_jt, now)
        self.markets[market_id] = replace(
            new_state,
            in_flight=InFlightOperation(operation, to_decimal(raw_st), to_decimal(raw_jt)),
        )
        if synced.market_state is not state.market_state:
            logger.warning("market state changed", extra={
                "market_id": market_id,
                "from_state": state.market_state.value,
                "to_state": synced.market_state.value,
                "fixed_term_end": synced.fixed_term_end,
            })
        logger.debug("pre-op sync", extra={
            "market_id": market_id,
            "operation": operation.value,
            "effective_st": synced.effective_st,
            "effective_jt": synced.effective_jt,
            "utilization": synced.utilization,
            "yield_distributed": synced.yield_distributed,
        })
        return synced

    def post_op_sync(
        self,
        market_id: str,
        operation: Operation,
        raw_st: Decimal,
        raw_jt: Decimal,
        now: datetime,
        st_deposit: Decimal = ZERO,
        jt_deposit: Decimal = ZERO,
        st_redeem: Decimal = ZERO,
        jt_redeem: Decimal = ZERO,
    ) -> SyncedState:
        """
        Apply the deltas of the just-executed operation and close it.

        Raises:
            SyncOrderViolation: if `operation` is not the one opened by pre_op_sync
        """
        return self._post_op(market_id, operation, raw_st, raw_jt, now, st_deposit,
                             jt_deposit, st_redeem, jt_redeem, enforce_coverage=False)

    def post_op_sync_and_enforce_coverage(
        self,
        market_id: str,
        operation: Operation,
        raw_st: Decimal,
        raw_jt: Decimal,
        now: datetime,
        st_deposit: Decimal = ZERO,
        jt_deposit: Decimal = ZERO,
        st_redeem: Decimal = ZERO,
        jt_redeem: Decimal = ZERO,
    ) -> SyncedState:
        """
        As post_op_sync, then require utilization <= 1. On failure nothing is
        persisted and the operation stays open for the caller to roll back.

        Raises:
            InsufficientCoverage: if utilization would exceed 1
        """
        return self._post_op(market_id, operation, raw_st, raw_jt, now, st_deposit,
                             jt_deposit, st_redeem, jt_redeem, enforce_coverage=True)

    def _post_op(self, market_id, operation, raw_st, raw_jt, now, st_deposit, jt_deposit,
                 st_redeem, jt_redeem, enforce_coverage: bool) -> SyncedState:
        state = self.get_state(market_id)
        if state.in_flight is None or state.in_flight.operation is not operation:
            opened = state.in_flight.operation.value if state.in_flight else None
            raise SyncOrderViolation(
                f"post-op sync for {operation.value} on {market_id}, but in flight: {opened}"
            )
        new_state, synced = calculate_post_op(
            state, raw_st, raw_jt, now, st_deposit, jt_deposit, st_redeem, jt_redeem,
        )
        if enforce_coverage and not coverage_satisfied(synced.utilization):
            logger.info("coverage check failed", extra={
                "market_id": market_id,
                "operation": operation.value,
                "utilization": synced.utilization,
            })
            raise InsufficientCoverage(
                f"{operation.value} would leave utilization at {synced.utilization} on {market_id}"
            )
        self.markets[market_id] = new_state
        return synced

    # ------------------------------------------------------------------------
    # Coverage views
    # ------------------------------------------------------------------------

    def utilization(self, market_id: str) -> Decimal:
        """Utilization at the last checkpoint."""
        s = self.get_state(market_id)
        return compute_utilization(s.last_raw_st, s.last_raw_jt, s.beta, s.coverage, s.last_effective_jt)

    def max_st_deposit_nav(self, market_id: str, synced: SyncedState) -> Decimal:
        s = self.get_state(market_id)
        return calculate_max_st_deposit(synced.raw_st, synced.raw_jt, s.beta, s.coverage, synced.effective_jt)

    def max_jt_withdraw_fraction(self, market_id: str, synced: SyncedState) -> Decimal:
        s = self.get_state(market_id)
        claims = calculate_asset_claims(
            TrancheType.JUNIOR, synced.raw_st, synced.raw_jt, synced.effective_st, synced.effective_jt,
        )
        return calculate_max_jt_withdraw_fraction(
            synced.raw_st, synced.raw_jt, s.beta, s.coverage, synced.effective_jt, claims,
        )

    # ------------------------------------------------------------------------
    # Parameter setters (callers sync first)
    # ------------------------------------------------------------------------

    def _update(self, market_id: str, **changes) -> AccountantState:
        new_state = replace(self.get_state(market_id), **changes)
        self.markets[market_id] = new_state
        logger.info("market parameters updated", extra={"market_id": market_id,
                                                        "changes": {k: str(v) for k, v in changes.items()}})
        return new_state

    def set_coverage(self, market_id: str, coverage: Decimal) -> AccountantState:
        return self._update(market_id, coverage=to_decimal(coverage))

    def set_beta(self, market_id: str, beta: Decimal) -> AccountantState:
        return self._update(market_id, beta=to_decimal(beta))

    def set_lltv(self, market_id: str, lltv: Decimal) -> AccountantState:
        return self._update(market_id, lltv=to_decimal(lltv))

    def set_fixed_term_duration(self, market_id: str, seconds: int) -> AccountantState:
        return self._update(market_id, fixed_term_duration=int(seconds))

    def set_protocol_fee_rates(self, market_id: str, st_rate: Decimal, jt_rate: Decimal) -> AccountantState:
        return self._update(market_id, st_protocol_fee_rate=to_decimal(st_rate),
                            jt_protocol_fee_rate=to_decimal(jt_rate))

    def set_ydm(self, market_id: str, ydm: YieldDistributionModel) -> AccountantState:
        if not isinstance(ydm, YieldDistributionModel):
            raise Misconfiguration(f"{ydm!r} is not a yield distribution model")
        return self._update(market_id, ydm=ydm, ydm_state=ydm.initial_state())

    # ------------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------------

    def snapshot(self, market_id: str) -> AccountantState:
        """States are immutable, so the current one is its own snapshot."""
        return self.get_state(market_id)

    def restore(self, market_id: str, state: AccountantState) -> None:
        self.markets[market_id] = state
