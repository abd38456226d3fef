"""
Atomicity Conformance Tests

INVARIANT: Kernel operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ asset moves, share moves and accounting are all applied
        O fails ⟹ the ledger, the accounting state and the request table
                   are exactly as they were before O

A failure after the pre-operation sync also discards the sync.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from tranches import (
    InsufficientCoverage, InsufficientRedeemableShares, RedemptionRequestCanceled,
    Ledger, TrancheType, create_market,
)
from tranches.adapters import vault_wallet

from tests.market_helpers import T0, ONE_DAY, advance, make_config


SENIOR = TrancheType.SENIOR
JUNIOR = TrancheType.JUNIOR


class PoolFailure(RuntimeError):
    pass


class FailingWithdrawAdapter:
    """Adapter whose Junior pool refuses withdrawals."""

    def __init__(self, inner):
        self.inner = inner

    def asset_symbol(self, tranche):
        return self.inner.asset_symbol(tranche)

    def get_raw_nav(self, tranche):
        return self.inner.get_raw_nav(tranche)

    def deposit_assets(self, tranche, units, depositor):
        return self.inner.deposit_assets(tranche, units, depositor)

    def withdraw_assets(self, tranche, units, receiver):
        if tranche is JUNIOR and units > 0:
            raise PoolFailure("junior pool is frozen")
        return self.inner.withdraw_assets(tranche, units, receiver)


def seeded(jt="10000", st_amount="15000"):
    kernel = create_market("senior-1", make_config(), ledger=Ledger("env", T0, verbose=False))
    kernel.ledger.issue("alice", "USD", Decimal("1000000"))
    kernel.ledger.issue("bob", "USD", Decimal("1000000"))
    kernel.jt_deposit(Decimal(jt), "bob")
    kernel.st_deposit(Decimal(st_amount), "alice")
    return kernel


def fingerprint(kernel):
    """Everything an operation may touch."""
    ledger = kernel.ledger
    balances = {
        (wallet, unit): ledger.get_balance(wallet, unit)
        for wallet in ledger.registered_wallets
        for unit in ledger.units
    }
    return (
        balances,
        len(ledger.transaction_log),
        kernel.accountant.get_state(kernel.market_id),
        kernel.requests.snapshot(),
        kernel.config,
    )


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(st.decimals(min_value=Decimal("0.01"), max_value=Decimal("100000"), places=2))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_rejected_senior_deposit_changes_nothing(self, excess):
        """
        PROPERTY: A Senior deposit beyond coverage leaves no trace, even
        when yield accrued since the last sync.
        """
        kernel = seeded()
        kernel.adapter.accrue_yield(SENIOR, Decimal("100"))
        advance(kernel, ONE_DAY)
        before = fingerprint(kernel)
        with pytest.raises(InsufficientCoverage):
            kernel.st_deposit(kernel.st_max_deposit() + excess, "alice")
        assert fingerprint(kernel) == before

    @given(st.decimals(min_value=Decimal("0.01"), max_value=Decimal("5000"), places=2))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_over_claim_changes_nothing(self, excess):
        """
        PROPERTY: Redeeming more than is claimable leaves the request intact.
        """
        kernel = seeded()
        request_id = kernel.jt_request_redeem(Decimal("5000"), "bob")
        advance(kernel, timedelta(days=7, seconds=1))
        before = fingerprint(kernel)
        with pytest.raises(InsufficientRedeemableShares):
            kernel.jt_redeem(Decimal("5000") + excess, "bob", "bob", request_id)
        assert fingerprint(kernel) == before


class TestAtomicityExamples:
    """Explicit atomicity examples."""

    def test_failure_mid_payout_rolls_back_first_pool(self):
        kernel = seeded(jt="10000", st_amount="40000")
        kernel.adapter.realize_loss(SENIOR, Decimal("12000"))
        advance(kernel, ONE_DAY)
        kernel.sync_tranche_accounting()
        kernel.adapter = FailingWithdrawAdapter(kernel.adapter)
        before = fingerprint(kernel)

        # Senior's claim spans both pools: the Senior pool pays first, then the Junior pool fails
        with pytest.raises(PoolFailure):
            kernel.st_redeem(Decimal("40000"), "alice", "alice")

        assert fingerprint(kernel) == before
        assert kernel.ledger.get_balance(vault_wallet("senior-1", SENIOR), "USD") == Decimal("28000")
        assert kernel.shares.balance_of(SENIOR, "alice") == Decimal("40000")

    def test_failed_operation_discards_pre_sync(self):
        kernel = seeded()
        kernel.adapter.accrue_yield(SENIOR, Decimal("1500"))
        advance(kernel, ONE_DAY)
        state = kernel.accountant.get_state("senior-1")
        with pytest.raises(InsufficientCoverage):
            kernel.st_deposit(Decimal("1000000"), "alice")
        assert kernel.accountant.get_state("senior-1") == state
        assert kernel.accountant.get_state("senior-1").last_raw_st == Decimal("15000")

    def test_failed_cancel_keeps_request(self):
        kernel = seeded()
        request_id = kernel.jt_request_redeem(Decimal("100"), "bob")
        kernel.jt_cancel_redeem_request(request_id, "bob")
        before = fingerprint(kernel)
        with pytest.raises(RedemptionRequestCanceled):
            kernel.jt_cancel_redeem_request(request_id, "bob")
        assert fingerprint(kernel) == before

    def test_success_after_failure(self):
        kernel = seeded()
        with pytest.raises(InsufficientCoverage):
            kernel.st_deposit(Decimal("1000000"), "alice")
        kernel.st_deposit(Decimal("1000"), "alice")
        assert kernel.shares.balance_of(SENIOR, "alice") == Decimal("16000")
        assert kernel.accountant.get_state("senior-1").in_flight is None
