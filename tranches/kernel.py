"""
kernel.py - Market orchestration and the redemption queue

The Kernel is the user-facing surface of one market. Every state-changing
entry point runs the same sequence:

    1. pre-op sync        (Accountant realizes accrued yield and loss)
    2. market-state gate  (operations blocked while FIXED_TERM)
    3. asset movement     (StrategyAdapter, TrancheShareLedger)
    4. post-op sync       (coverage-enforcing for coverage-gated operations)
    5. protocol fee shares minted for the fees accrued at step 1, priced
       against the share supply before step 3

and runs it atomically: the asset ledger, the market's accounting state and the
request table are snapshotted on entry and restored if anything raises.
Quoted rates are fixed for the duration of the operation.

Redemption is tagged per tranche with an ExecutionModel. SYNC redeems shares
directly. ASYNC goes through the request table:

    request_redeem -> (delay) -> redeem            (partial or full)
    request_redeem -> cancel_redeem_request -> claim_cancel_redeem_request

An asynchronous redemption pays min(value now, value at request) for the
shares redeemed. A Junior request can only be claimed up to the coverage
headroom available now, so claimable shares can shrink again after a new
Senior deposit. Claimable shares are reported per request: each request is
measured against the whole headroom, so the claimable amounts of several
requests can add up to more than the headroom, and a claim on one request
shrinks what the others can claim.
"""

from __future__ import annotations
import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from typing import Iterator, Optional, Tuple

from .core import (
    ZERO, ONE, INFINITY,
    TrancheType, MarketState, Operation, ExecutionModel,
    InvalidMarketState, InvalidRequestId, InsufficientRedeemableShares,
    RedemptionRequestCanceled, NullAddress, Misconfiguration,
    asset_unit, to_decimal,
)
from .accountant import (
    Accountant, AssetClaims, SyncedState,
    calculate_asset_claims,
)
from .adapters import LedgerStrategyAdapter, StrategyAdapter
from .config import MarketConfig
from .ledger import Ledger
from .quoter import RateFeed, RateQuoter, StaticRateFeed
from .redemption import RedemptionQueue, RedemptionRequest
from .shares import TrancheShareLedger, calculate_fee_shares
from .ydm import YieldDistributionModel

logger = logging.getLogger(__name__)

# Slack for Decimal rounding in per-share prices when a request fits the headroom.
HEADROOM_TOLERANCE = Decimal("1e-30")


@dataclass(frozen=True, slots=True)
class Payout:
    """
    What a redemption paid.

    Attributes:
        shares: Shares burned.
        nav: NAV paid out.
        st_assets: Units of the Senior pool's asset sent to the receiver.
        jt_assets: Units of the Junior pool's asset sent to the receiver.
    """
    shares: Decimal
    nav: Decimal
    st_assets: Decimal
    jt_assets: Decimal


class Kernel:
    """
    One market: deposits, redemptions and the request table of both tranches.

    Example:
        kernel = create_market("senior-1", MarketConfig(
            st_asset="USD", jt_asset="USD", coverage=Decimal("0.2"), beta=Decimal("0"),
        ))
        kernel.ledger.issue("bob", "USD", Decimal("10000"))
        kernel.jt_deposit(Decimal("10000"), "bob")
        request_id = kernel.jt_request_redeem(kernel.jt_max_redeem("bob"), "bob")
    """

    def __init__(
        self,
        market_id: str,
        config: MarketConfig,
        accountant: Accountant,
        adapter: StrategyAdapter,
        shares: TrancheShareLedger,
        quoter: RateQuoter,
        ledger: Ledger,
    ):
        if not isinstance(adapter, StrategyAdapter):
            raise Misconfiguration(f"{adapter!r} does not implement the strategy adapter interface")
        self.market_id = market_id
        self.config = config
        self.accountant = accountant
        self.adapter = adapter
        self.shares = shares
        self.quoter = quoter
        self.ledger = ledger
        self.requests = RedemptionQueue(market_id)
        self._fee_basis = {tranche: ZERO for tranche in TrancheType}
        accountant.get_state(market_id)

    @property
    def now(self):
        return self.ledger.current_time

    # ========================================================================
    # OPERATION FRAME
    # ========================================================================

    @contextmanager
    def _atomic(self, operation: Operation) -> Iterator[None]:
        ledger_snap = self.ledger.snapshot()
        accountant_snap = self.accountant.snapshot(self.market_id)
        requests_snap = self.requests.snapshot()
        config = self.config
        try:
            with self.quoter.cached():
                yield
        except Exception as exc:
            self.ledger.restore(ledger_snap)
            self.accountant.restore(self.market_id, accountant_snap)
            self.requests.restore(requests_snap)
            self.config = config
            logger.info("operation rolled back", extra={
                "market_id": self.market_id,
                "operation": operation.value,
                "error_code": getattr(exc, "code", type(exc).__name__),
            })
            raise

    def _raw_navs(self) -> Tuple[Decimal, Decimal]:
        return (self.adapter.get_raw_nav(TrancheType.SENIOR),
                self.adapter.get_raw_nav(TrancheType.JUNIOR))

    def _is_blocked(self, operation: Operation, synced: SyncedState) -> bool:
        return (synced.market_state is MarketState.FIXED_TERM
                and operation in self.config.fixed_term_blocked_operations)

    def _begin(self, operation: Operation) -> SyncedState:
        raw_st, raw_jt = self._raw_navs()
        synced = self.accountant.pre_op_sync(self.market_id, raw_st, raw_jt, self.now, operation)
        if self._is_blocked(operation, synced):
            raise InvalidMarketState(
                f"{operation.value} is not permitted while {self.market_id} is in "
                f"{synced.market_state.value} until {synced.fixed_term_end}"
            )
        # fee shares are priced against the supply before this operation burns or mints any
        self._fee_basis = {tranche: self.shares.total_supply(tranche) for tranche in TrancheType}
        return synced

    def _commit(self, operation: Operation, pre: SyncedState, fee_recipient: Optional[str] = None,
                **deltas: Decimal) -> SyncedState:
        fee_recipient = fee_recipient or self.config.protocol_fee_recipient
        raw_st, raw_jt = self._raw_navs()
        if operation.is_coverage_gated:
            post = self.accountant.post_op_sync_and_enforce_coverage(
                self.market_id, operation, raw_st, raw_jt, self.now, **deltas)
        else:
            post = self.accountant.post_op_sync(
                self.market_id, operation, raw_st, raw_jt, self.now, **deltas)
        for tranche in TrancheType:
            fee = pre.protocol_fee(tranche)
            if fee > 0:
                self.shares.mint_protocol_fee_shares(
                    tranche, fee, pre.effective_nav(tranche), fee_recipient,
                    supply=self._fee_basis[tranche],
                )
        return post

    @staticmethod
    def _require_address(value: Optional[str], role: str) -> str:
        if not value or not str(value).strip():
            raise NullAddress(f"{role} cannot be empty")
        return value

    @staticmethod
    def _require_positive(amount, what: str) -> Decimal:
        amount = to_decimal(amount)
        if not amount.is_finite() or amount <= 0:
            raise ValueError(f"{what} must be positive and finite, got {amount}")
        return amount

    # ========================================================================
    # SHARE PRICING
    # ========================================================================

    def _total_shares(self, tranche: TrancheType, synced: SyncedState) -> Decimal:
        """Supply including the fee shares the sync has accrued but not yet minted."""
        supply = self.shares.total_supply(tranche)
        return supply + calculate_fee_shares(
            synced.protocol_fee(tranche), synced.effective_nav(tranche), supply,
        )

    def _nav_per_share(self, tranche: TrancheType, synced: SyncedState) -> Decimal:
        total = self._total_shares(tranche, synced)
        if total <= 0:
            return ONE
        return synced.effective_nav(tranche) / total

    def _nav_to_shares(self, tranche: TrancheType, nav: Decimal, synced: SyncedState) -> Decimal:
        total = self._total_shares(tranche, synced)
        effective = synced.effective_nav(tranche)
        if total <= 0:
            return nav
        if effective <= 0:
            # outstanding shares are worth nothing; the virtual offset hands the deposit to its depositor
            return nav * (total + ONE) / (max(effective, ZERO) + ONE)
        return nav * total / effective

    def _asset_claims(self, tranche: TrancheType, synced: SyncedState) -> AssetClaims:
        return calculate_asset_claims(
            tranche, synced.raw_st, synced.raw_jt, synced.effective_st, synced.effective_jt,
        )

    def _pay_out(self, tranche: TrancheType, nav: Decimal, receiver: str,
                 synced: SyncedState) -> Tuple[Decimal, Decimal, Decimal]:
        """
        Send `nav` of the tranche's claims to the receiver, pro rata across pools.

        Returns:
            (nav_paid, st_pool_units, jt_pool_units)
        """
        claims = self._asset_claims(tranche, synced)
        if nav <= 0 or claims.nav <= 0:
            return ZERO, ZERO, ZERO
        part = claims.scaled(min(ONE, nav / claims.nav))
        paid = ZERO
        units = {}
        for pool in TrancheType:
            symbol = self.adapter.asset_symbol(pool)
            sent = self.adapter.withdraw_assets(
                pool, self.quoter.to_tranche_units(symbol, part.pool(pool)), receiver,
            )
            units[pool] = sent
            paid += self.quoter.to_nav_units(symbol, sent)
        return paid, units[TrancheType.SENIOR], units[TrancheType.JUNIOR]

    def _preview(self) -> SyncedState:
        raw_st, raw_jt = self._raw_navs()
        return self.accountant.preview_sync(self.market_id, raw_st, raw_jt, self.now)

    # ========================================================================
    # DEPOSIT / REDEEM
    # ========================================================================

    def deposit(self, tranche: TrancheType, assets: Decimal, receiver: str,
                depositor: Optional[str] = None) -> Decimal:
        """
        Deposit tranche units and mint shares to the receiver.

        Returns:
            Shares minted

        Raises:
            InvalidMarketState: if the deposit is blocked in the current state
            InsufficientCoverage: if a Senior deposit would exceed coverage
            InsufficientFunds: if the depositor lacks the assets
        """
        receiver = self._require_address(receiver, "receiver")
        depositor = self._require_address(depositor or receiver, "depositor")
        assets = self._require_positive(assets, "assets")
        operation = Operation.of(tranche, "deposit")
        with self._atomic(operation):
            pre = self._begin(operation)
            nav = self.adapter.deposit_assets(tranche, assets, depositor)
            minted = self.shares.mint(tranche, receiver, self._nav_to_shares(tranche, nav, pre),
                                      reason="deposit")
            delta = "st_deposit" if tranche is TrancheType.SENIOR else "jt_deposit"
            self._commit(operation, pre, **{delta: nav})
        logger.info("deposit", extra={"market_id": self.market_id, "tranche": tranche.value,
                                      "receiver": receiver, "nav": nav, "shares": minted})
        return minted

    def redeem(self, tranche: TrancheType, shares: Decimal, receiver: str, controller: str,
               request_id: Optional[int] = None) -> Payout:
        """
        Redeem shares for assets.

        SYNC tranches burn the controller's shares directly. ASYNC tranches
        redeem out of a claimable request.

        Raises:
            InvalidRequestId: if an ASYNC redeem names no live request
            RedemptionRequestCanceled: if the request was canceled
            InsufficientRedeemableShares: if shares exceed what is redeemable now
            InsufficientCoverage: if a Junior redemption would exceed coverage
        """
        receiver = self._require_address(receiver, "receiver")
        controller = self._require_address(controller, "controller")
        shares = self.shares.round_shares(tranche, self._require_positive(shares, "shares"))
        model = self.config.redemption_model(tranche)
        if model is ExecutionModel.ASYNC and request_id is None:
            raise InvalidRequestId(f"{tranche.value} redemptions on {self.market_id} require a request id")
        operation = Operation.of(tranche, "redeem")
        with self._atomic(operation):
            pre = self._begin(operation)
            if model is ExecutionModel.ASYNC:
                request = self._live_request(tranche, controller, request_id)
                claimable = self._claimable_shares(request, pre)
                if shares > claimable:
                    raise InsufficientRedeemableShares(
                        f"Request {request_id} has {claimable} claimable shares, {shares} requested"
                    )
                per_share = min(self._nav_per_share(tranche, pre), request.value_per_share)
                source = self.shares.escrow
            else:
                held = self.shares.balance_of(tranche, controller)
                if shares > held:
                    raise InsufficientRedeemableShares(f"{controller} holds {held} shares, {shares} requested")
                per_share = self._nav_per_share(tranche, pre)
                source = controller
            nav, st_units, jt_units = self._pay_out(tranche, shares * per_share, receiver, pre)
            self.shares.burn(tranche, source, shares, reason="redeem")
            if model is ExecutionModel.ASYNC:
                self.requests.reduce(request, shares)
            delta = "st_redeem" if tranche is TrancheType.SENIOR else "jt_redeem"
            self._commit(operation, pre, **{delta: nav})
        logger.info("redeem", extra={"market_id": self.market_id, "tranche": tranche.value,
                                     "controller": controller, "shares": shares, "nav": nav})
        return Payout(shares=shares, nav=nav, st_assets=st_units, jt_assets=jt_units)

    # ========================================================================
    # REDEMPTION REQUESTS
    # ========================================================================

    def _require_async(self, tranche: TrancheType) -> None:
        if self.config.redemption_model(tranche) is not ExecutionModel.ASYNC:
            raise Misconfiguration(f"{tranche.value} redemptions on {self.market_id} are synchronous")

    def _request(self, tranche: TrancheType, controller: str, request_id: int) -> RedemptionRequest:
        request = self.requests.get(controller, request_id)
        if request.tranche is not tranche:
            raise InvalidRequestId(f"Request {request_id} of {controller} is not a {tranche.value} request")
        return request

    def _live_request(self, tranche: TrancheType, controller: str, request_id: int) -> RedemptionRequest:
        request = self._request(tranche, controller, request_id)
        if request.canceled:
            raise RedemptionRequestCanceled(f"Request {request_id} of {controller} is canceled")
        return request

    def _claimable_shares(self, request: RedemptionRequest, synced: SyncedState) -> Decimal:
        """
        Shares of a request redeemable right now, given current coverage headroom.

        The headroom is not reserved across requests; see the module docstring.
        """
        if not request.is_mature(self.now):
            return ZERO
        if request.tranche is TrancheType.SENIOR:
            return request.shares
        per_share = min(self._nav_per_share(TrancheType.JUNIOR, synced), request.value_per_share)
        if per_share <= 0:
            return request.shares
        headroom_nav = self.accountant.max_jt_withdraw_fraction(self.market_id, synced) * synced.effective_jt
        if request.shares * per_share <= headroom_nav * (ONE + HEADROOM_TOLERANCE):
            return request.shares
        return self.shares.round_shares(TrancheType.JUNIOR, headroom_nav / per_share)

    def request_redeem(self, tranche: TrancheType, shares: Decimal, controller: str,
                       owner: Optional[str] = None) -> int:
        """
        Move shares into escrow and open a redemption request.

        Returns:
            The new request id

        Raises:
            InvalidMarketState: if requests are blocked in the current state
            InsufficientRedeemableShares: if the owner holds fewer shares
        """
        self._require_async(tranche)
        controller = self._require_address(controller, "controller")
        owner = self._require_address(owner or controller, "owner")
        shares = self.shares.round_shares(tranche, self._require_positive(shares, "shares"))
        operation = Operation.of(tranche, "request_redeem")
        with self._atomic(operation):
            pre = self._begin(operation)
            held = self.shares.balance_of(tranche, owner)
            if shares > held:
                raise InsufficientRedeemableShares(f"{owner} holds {held} shares, {shares} requested")
            value = shares * self._nav_per_share(tranche, pre)
            self.shares.transfer(tranche, owner, self.shares.escrow, shares, reason="redeem_request")
            request = self.requests.create(
                controller, tranche, shares, value, self.now,
                timedelta(seconds=int(self.config.redemption_delay(tranche))),
            )
            self._commit(operation, pre)
        return request.request_id

    def cancel_redeem_request(self, tranche: TrancheType, request_id: int, controller: str) -> None:
        """
        Raises:
            InvalidRequestId: if the request does not exist
            RedemptionRequestCanceled: if it is already canceled
        """
        operation = Operation.of(tranche, "cancel_redeem_request")
        with self._atomic(operation):
            pre = self._begin(operation)
            self._request(tranche, controller, request_id)
            self.requests.cancel(controller, request_id)
            self._commit(operation, pre)

    def claim_cancel_redeem_request(self, tranche: TrancheType, request_id: int, controller: str,
                                    receiver: Optional[str] = None) -> Decimal:
        """
        Return a canceled request's shares and delete the request.

        Raises:
            InvalidRequestId: if the request does not exist
            RedemptionRequestNotCanceled: if it was never canceled
        """
        receiver = self._require_address(receiver or controller, "receiver")
        operation = Operation.of(tranche, "claim_cancel_redeem_request")
        with self._atomic(operation):
            pre = self._begin(operation)
            self._request(tranche, controller, request_id)
            request = self.requests.claim_cancel(controller, request_id)
            returned = self.shares.transfer(tranche, self.shares.escrow, receiver, request.shares,
                                            reason="redeem_cancel")
            self._commit(operation, pre)
        return returned

    def claimable_redeem_request(self, tranche: TrancheType, request_id: int, controller: str) -> Decimal:
        """
        Shares redeemable now; zero for unknown, canceled or immature requests.

        Each request is measured against the whole coverage headroom.
        """
        request = self.requests.find(controller, request_id)
        if request is None or request.tranche is not tranche or request.canceled:
            return ZERO
        return self._claimable_shares(request, self._preview())

    def pending_redeem_request(self, tranche: TrancheType, request_id: int, controller: str) -> Decimal:
        """Outstanding shares not yet redeemable; pending + claimable == outstanding."""
        request = self.requests.find(controller, request_id)
        if request is None or request.tranche is not tranche or request.canceled:
            return ZERO
        return request.shares - self._claimable_shares(request, self._preview())

    def claimable_cancel_redeem_request(self, tranche: TrancheType, request_id: int,
                                        controller: str) -> Decimal:
        request = self.requests.find(controller, request_id)
        if request is None or request.tranche is not tranche or not request.canceled:
            return ZERO
        return request.shares

    # ========================================================================
    # ACCOUNTING
    # ========================================================================

    def sync_tranche_accounting(self) -> SyncedState:
        """Realize accrued yield and loss now and mint the protocol fee shares."""
        with self._atomic(Operation.SYNC):
            pre = self._begin(Operation.SYNC)
            self._commit(Operation.SYNC, pre)
        return pre

    def preview_sync_tranche_accounting(self, tranche: TrancheType) -> Tuple[SyncedState, AssetClaims, Decimal]:
        """
        Returns:
            (synced state, the tranche's asset claims, total shares including
            the fee shares a sync would mint)
        """
        synced = self._preview()
        return synced, self._asset_claims(tranche, synced), self._total_shares(tranche, synced)

    # ========================================================================
    # VIEWS
    # ========================================================================

    def max_deposit(self, tranche: TrancheType) -> Decimal:
        """Tranche units that can be deposited now (Infinity if unbounded)."""
        synced = self._preview()
        if self._is_blocked(Operation.of(tranche, "deposit"), synced):
            return ZERO
        if tranche is TrancheType.JUNIOR:
            return INFINITY
        nav = self.accountant.max_st_deposit_nav(self.market_id, synced)
        if nav.is_infinite():
            return nav
        symbol = self.adapter.asset_symbol(tranche)
        return self.ledger.get_unit(symbol).round_down(self.quoter.to_tranche_units(symbol, nav))

    def max_redeem(self, tranche: TrancheType, owner: str) -> Decimal:
        """Shares the owner can redeem (or request to redeem) now."""
        synced = self._preview()
        action = "request_redeem" if self.config.redemption_model(tranche) is ExecutionModel.ASYNC else "redeem"
        if self._is_blocked(Operation.of(tranche, action), synced):
            return ZERO
        held = self.shares.balance_of(tranche, owner)
        if tranche is TrancheType.SENIOR:
            return held
        fraction = self.accountant.max_jt_withdraw_fraction(self.market_id, synced)
        headroom = self.shares.round_shares(tranche, fraction * self._total_shares(tranche, synced))
        return min(held, headroom)

    def convert_to_shares(self, tranche: TrancheType, assets: Decimal) -> Decimal:
        nav = self.quoter.to_nav_units(self.adapter.asset_symbol(tranche), to_decimal(assets))
        return self._nav_to_shares(tranche, nav, self._preview())

    def convert_to_assets(self, tranche: TrancheType, shares: Decimal) -> Decimal:
        nav = to_decimal(shares) * self._nav_per_share(tranche, self._preview())
        return self.quoter.to_tranche_units(self.adapter.asset_symbol(tranche), nav)

    # ========================================================================
    # ADMIN SETTERS
    # ========================================================================

    def _set_parameter(self, name: str, value, apply) -> None:
        with self._atomic(Operation.SET_PARAMETER):
            pre = self._begin(Operation.SET_PARAMETER)
            # fees accrued up to now belong to the recipient in place before the change
            recipient = self.config.protocol_fee_recipient
            apply()
            self._commit(Operation.SET_PARAMETER, pre, fee_recipient=recipient)
        logger.info("parameter set", extra={"market_id": self.market_id, "parameter": name, "value": str(value)})

    def set_coverage(self, coverage: Decimal) -> None:
        def apply():
            state = self.accountant.set_coverage(self.market_id, coverage)
            self.config = replace(self.config, coverage=state.coverage)
        self._set_parameter("coverage", coverage, apply)

    def set_beta(self, beta: Decimal) -> None:
        def apply():
            state = self.accountant.set_beta(self.market_id, beta)
            self.config = replace(self.config, beta=state.beta)
        self._set_parameter("beta", beta, apply)

    def set_lltv(self, lltv: Decimal) -> None:
        def apply():
            state = self.accountant.set_lltv(self.market_id, lltv)
            self.config = replace(self.config, lltv=state.lltv)
        self._set_parameter("lltv", lltv, apply)

    def set_fixed_term_duration(self, seconds: int) -> None:
        def apply():
            state = self.accountant.set_fixed_term_duration(self.market_id, seconds)
            self.config = replace(self.config, fixed_term_duration=state.fixed_term_duration)
        self._set_parameter("fixed_term_duration", seconds, apply)

    def set_protocol_fee_rates(self, st_rate: Decimal, jt_rate: Decimal) -> None:
        def apply():
            state = self.accountant.set_protocol_fee_rates(self.market_id, st_rate, jt_rate)
            self.config = replace(self.config, st_protocol_fee_rate=state.st_protocol_fee_rate,
                                  jt_protocol_fee_rate=state.jt_protocol_fee_rate)
        self._set_parameter("protocol_fee_rates", (st_rate, jt_rate), apply)

    def set_ydm(self, ydm: YieldDistributionModel) -> None:
        def apply():
            self.accountant.set_ydm(self.market_id, ydm)
            self.config = replace(self.config, ydm=ydm)
        self._set_parameter("ydm", ydm, apply)

    def set_protocol_fee_recipient(self, recipient: str) -> None:
        recipient = self._require_address(recipient, "protocol_fee_recipient")

        def apply():
            self.ledger.ensure_wallet(recipient)
            self.config = replace(self.config, protocol_fee_recipient=recipient)
        self._set_parameter("protocol_fee_recipient", recipient, apply)

    def set_junior_tranche_redemption_delay(self, seconds: int) -> None:
        """Applies to requests made from now on."""
        if int(seconds) < 0:
            raise Misconfiguration(f"redemption delay must be >= 0, got {seconds}")

        def apply():
            self.config = replace(self.config, junior_redemption_delay=int(seconds))
        self._set_parameter("junior_redemption_delay", seconds, apply)

    # ========================================================================
    # TRANCHE-SPECIFIC ENTRY POINTS
    # ========================================================================

    def st_deposit(self, assets: Decimal, receiver: str, depositor: Optional[str] = None) -> Decimal:
        return self.deposit(TrancheType.SENIOR, assets, receiver, depositor)

    def st_redeem(self, shares: Decimal, receiver: str, controller: str,
                  request_id: Optional[int] = None) -> Payout:
        return self.redeem(TrancheType.SENIOR, shares, receiver, controller, request_id)

    def jt_deposit(self, assets: Decimal, receiver: str, depositor: Optional[str] = None) -> Decimal:
        return self.deposit(TrancheType.JUNIOR, assets, receiver, depositor)

    def jt_request_redeem(self, shares: Decimal, controller: str, owner: Optional[str] = None) -> int:
        return self.request_redeem(TrancheType.JUNIOR, shares, controller, owner)

    def jt_redeem(self, shares: Decimal, receiver: str, controller: str,
                  request_id: Optional[int] = None) -> Payout:
        return self.redeem(TrancheType.JUNIOR, shares, receiver, controller, request_id)

    def jt_cancel_redeem_request(self, request_id: int, controller: str) -> None:
        self.cancel_redeem_request(TrancheType.JUNIOR, request_id, controller)

    def jt_claim_cancel_redeem_request(self, request_id: int, controller: str,
                                       receiver: Optional[str] = None) -> Decimal:
        return self.claim_cancel_redeem_request(TrancheType.JUNIOR, request_id, controller, receiver)

    def jt_pending_redeem_request(self, request_id: int, controller: str) -> Decimal:
        return self.pending_redeem_request(TrancheType.JUNIOR, request_id, controller)

    def jt_claimable_redeem_request(self, request_id: int, controller: str) -> Decimal:
        return self.claimable_redeem_request(TrancheType.JUNIOR, request_id, controller)

    def jt_claimable_cancel_redeem_request(self, request_id: int, controller: str) -> Decimal:
        return self.claimable_cancel_redeem_request(TrancheType.JUNIOR, request_id, controller)

    def st_max_deposit(self) -> Decimal:
        return self.max_deposit(TrancheType.SENIOR)

    def st_max_redeem(self, owner: str) -> Decimal:
        return self.max_redeem(TrancheType.SENIOR, owner)

    def jt_max_deposit(self) -> Decimal:
        return self.max_deposit(TrancheType.JUNIOR)

    def jt_max_redeem(self, owner: str) -> Decimal:
        return self.max_redeem(TrancheType.JUNIOR, owner)


# ============================================================================
# FACTORY
# ============================================================================

def create_market(
    market_id: str,
    config: MarketConfig,
    ledger: Optional[Ledger] = None,
    accountant: Optional[Accountant] = None,
    rate_feed: Optional[RateFeed] = None,
    verbose: bool = False,
) -> Kernel:
    """
    Wire a market: asset units, quoter, accounting state, strategy adapter,
    share ledger and kernel.

    Assets not yet registered on the ledger are registered with 18 decimals.
    Without a rate feed every asset other than the NAV unit quotes at 1.

    Example:
        kernel = create_market("senior-1", MarketConfig(
            st_asset="USDC", jt_asset="USDC", coverage=Decimal("0.2"), beta=Decimal("0"),
        ))
    """
    if not market_id:
        raise Misconfiguration("market_id cannot be empty")
    ledger = ledger or Ledger(f"{market_id}-env", verbose=verbose)
    assets = sorted({config.st_asset, config.jt_asset})
    for symbol in assets:
        if symbol not in ledger.units:
            ledger.register_unit(asset_unit(symbol, symbol))
    if rate_feed is None:
        rate_feed = StaticRateFeed({symbol: ONE for symbol in assets if symbol != config.nav_unit})
    quoter = RateQuoter(rate_feed, ledger, nav_unit=config.nav_unit,
                        max_staleness=timedelta(seconds=int(config.max_rate_staleness)))

    accountant = accountant if accountant is not None else Accountant()
    accountant.register_market(
        market_id,
        coverage=config.coverage,
        beta=config.beta,
        ydm=config.ydm,
        st_protocol_fee_rate=config.st_protocol_fee_rate,
        jt_protocol_fee_rate=config.jt_protocol_fee_rate,
        lltv=config.lltv,
        fixed_term_duration=config.fixed_term_duration,
    )
    adapter = LedgerStrategyAdapter(ledger, quoter, market_id, config.st_asset, config.jt_asset)
    shares = TrancheShareLedger(ledger, market_id)
    ledger.ensure_wallet(config.protocol_fee_recipient)
    return Kernel(market_id, config, accountant, adapter, shares, quoter, ledger)
