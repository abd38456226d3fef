"""
test_accountant.py - Unit tests for NAV synchronization and coverage

Tests:
- Market registration and parameter validation
- Pre-op sync: Junior PnL, Senior loss coverage, Senior gain distribution
- Deferred Senior gains and whole-second accrual
- Protocol fees
- Fixed-term market state
- Post-op sync and coverage enforcement
- Pre/post-op pairing (reentrancy, ordering)
- Coverage views (max Senior deposit, max Junior withdrawal)
"""

import logging
import pytest
from datetime import timedelta
from decimal import Decimal

from tranches import (
    Accountant, AccountantState, MarketState, Operation, TrancheType,
    InsufficientCoverage, Misconfiguration, ReentrantCall, SyncOrderViolation, UnknownMarket,
    calculate_asset_claims, calculate_max_jt_withdraw_fraction, calculate_max_st_deposit,
    calculate_post_op, calculate_sync,
)
from tranches.core import INFINITY

from tests.fake_ydm import ConstantShareYDM
from tests.market_helpers import T0, ONE_DAY, assert_conserved


# =============================================================================
# HELPERS
# =============================================================================

def open_market(acct, market_id="m1", jt=Decimal("1000"), st=Decimal("3000"), now=T0):
    """Junior deposit followed by a Senior deposit, both at `now`."""
    acct.pre_op_sync(market_id, Decimal("0"), Decimal("0"), now, Operation.JT_DEPOSIT)
    acct.post_op_sync(market_id, Operation.JT_DEPOSIT, Decimal("0"), jt, now, jt_deposit=jt)
    acct.pre_op_sync(market_id, Decimal("0"), jt, now, Operation.ST_DEPOSIT)
    acct.post_op_sync_and_enforce_coverage(market_id, Operation.ST_DEPOSIT, st, jt, now, st_deposit=st)


def sync(acct, raw_st, raw_jt, now, market_id="m1"):
    """A bare sync: pre-op sync and an empty post-op."""
    synced = acct.pre_op_sync(market_id, raw_st, raw_jt, now, Operation.SYNC)
    acct.post_op_sync(market_id, Operation.SYNC, raw_st, raw_jt, now)
    return synced


# =============================================================================
# REGISTRATION
# =============================================================================

class TestRegistration:
    """Tests for market registration and parameter domains."""

    def test_register_market(self, accountant, constant_ydm):
        state = accountant.get_state("m1")
        assert state.coverage == Decimal("0.2")
        assert state.market_state is MarketState.PERPETUAL
        assert state.ydm is constant_ydm
        assert state.in_flight is None

    def test_duplicate_market_raises(self, accountant, constant_ydm):
        with pytest.raises(ValueError, match="already registered"):
            accountant.register_market("m1", coverage=Decimal("0.2"), beta=Decimal("0"), ydm=constant_ydm)

    def test_unknown_market_raises(self, accountant):
        with pytest.raises(UnknownMarket):
            accountant.get_state("nope")

    def test_rejects_non_ydm(self):
        with pytest.raises(Misconfiguration):
            Accountant().register_market("m1", coverage=Decimal("0.2"), beta=Decimal("0"), ydm=object())

    @pytest.mark.parametrize("overrides", [
        {"coverage": Decimal("0")},
        {"coverage": Decimal("1.1")},
        {"beta": Decimal("-0.1")},
        {"beta": Decimal("1.5")},
        {"st_protocol_fee_rate": Decimal("1")},
        {"jt_protocol_fee_rate": Decimal("-0.01")},
        {"lltv": Decimal("0")},
        {"fixed_term_duration": -1},
    ])
    def test_rejects_out_of_domain_parameters(self, constant_ydm, overrides):
        params = dict(coverage=Decimal("0.2"), beta=Decimal("0"), ydm=constant_ydm)
        params.update(overrides)
        with pytest.raises(Misconfiguration):
            Accountant().register_market("m1", **params)


# =============================================================================
# PRE-OP SYNC
# =============================================================================

class TestSeniorGain:
    """Senior yield is split by the time-weighted Junior share."""

    def test_gain_split_by_average_share(self, accountant):
        open_market(accountant)
        synced = sync(accountant, Decimal("3100"), Decimal("1000"), T0 + ONE_DAY)

        assert synced.yield_distributed
        assert synced.jt_yield_share == Decimal("0.25")
        assert synced.effective_st == Decimal("3075")
        assert synced.effective_jt == Decimal("1025")
        assert_conserved(synced)

    def test_share_evaluated_at_checkpoint(self, accountant, constant_ydm):
        open_market(accountant)
        sync(accountant, Decimal("3100"), Decimal("1000"), T0 + ONE_DAY)
        # Accrual sees the NAVs as of the last checkpoint, not the new raw NAV.
        assert constant_ydm.calls == [(Decimal("3000"), Decimal("1000"), Decimal("1000"))]

    def test_gain_deferred_without_elapsed_time(self, accountant):
        open_market(accountant)
        synced = sync(accountant, Decimal("3100"), Decimal("1000"), T0)

        assert not synced.yield_distributed
        assert synced.raw_st == Decimal("3000")
        assert synced.effective_st == Decimal("3000")
        assert accountant.get_state("m1").last_raw_st == Decimal("3000")

        later = sync(accountant, Decimal("3100"), Decimal("1000"), T0 + ONE_DAY)
        assert later.yield_distributed
        assert later.effective_st == Decimal("3075")
        assert later.effective_jt == Decimal("1025")

    def test_accrual_counts_whole_seconds(self, accountant):
        open_market(accountant)
        sync(accountant, Decimal("3000"), Decimal("1000"), T0 + timedelta(seconds=1.5))
        state = accountant.get_state("m1")
        assert state.last_accrual == T0 + timedelta(seconds=1)
        assert state.jt_share_accumulator == Decimal("0.25")

    def test_gain_repays_coverage_before_split(self, accountant):
        open_market(accountant)
        loss = sync(accountant, Decimal("2900"), Decimal("1000"), T0 + ONE_DAY)
        assert loss.jt_coverage_impermanent_loss == Decimal("100")

        gain = sync(accountant, Decimal("3050"), Decimal("1000"), T0 + 2 * ONE_DAY)
        # 100 repays Junior's coverage, the remaining 50 is split 25/75.
        assert gain.jt_coverage_impermanent_loss == Decimal("0")
        assert gain.effective_jt == Decimal("1012.5")
        assert gain.effective_st == Decimal("3037.5")
        assert_conserved(gain)


class TestSeniorLoss:
    """Junior covers Senior losses up to its whole effective NAV."""

    def test_loss_covered_by_junior(self, accountant):
        open_market(accountant)
        synced = sync(accountant, Decimal("2900"), Decimal("1000"), T0 + ONE_DAY)

        assert synced.effective_st == Decimal("3000")
        assert synced.effective_jt == Decimal("900")
        assert synced.st_impermanent_loss == Decimal("0")
        assert synced.jt_coverage_impermanent_loss == Decimal("100")
        assert_conserved(synced)

    def test_loss_beyond_junior_buffer(self, accountant):
        open_market(accountant)
        synced = sync(accountant, Decimal("1000"), Decimal("1000"), T0 + ONE_DAY)

        assert synced.effective_jt == Decimal("0")
        assert synced.effective_st == Decimal("2000")
        assert synced.st_impermanent_loss == Decimal("1000")
        assert synced.utilization == INFINITY
        assert_conserved(synced)

    def test_st_impermanent_loss_repaid_first(self, accountant):
        open_market(accountant)
        sync(accountant, Decimal("1000"), Decimal("1000"), T0 + ONE_DAY)
        synced = sync(accountant, Decimal("1400"), Decimal("1000"), T0 + 2 * ONE_DAY)
        assert synced.st_impermanent_loss == Decimal("600")
        assert synced.effective_st == Decimal("2400")
        assert synced.effective_jt == Decimal("0")
        assert_conserved(synced)


class TestJuniorPnL:
    """Junior PnL stays with Junior."""

    def test_junior_loss(self, accountant):
        open_market(accountant)
        synced = sync(accountant, Decimal("3000"), Decimal("900"), T0 + ONE_DAY)
        assert synced.effective_jt == Decimal("900")
        assert synced.effective_st == Decimal("3000")
        assert_conserved(synced)

    def test_junior_gain(self, accountant):
        open_market(accountant)
        synced = sync(accountant, Decimal("3000"), Decimal("1040"), T0 + ONE_DAY)
        assert synced.effective_jt == Decimal("1040")
        assert synced.effective_st == Decimal("3000")

    def test_junior_loss_spills_onto_senior_claim(self, constant_ydm):
        # Senior holds a 500 claim on the Junior pool.
        state = AccountantState(
            coverage=Decimal("0.2"), beta=Decimal("0"), ydm=constant_ydm,
            last_raw_st=Decimal("3000"), last_raw_jt=Decimal("1000"),
            last_effective_st=Decimal("3500"), last_effective_jt=Decimal("500"),
            last_accrual=T0, last_distribution=T0,
        )
        _, synced = calculate_sync(state, Decimal("3000"), Decimal("200"), T0)
        assert synced.effective_jt == Decimal("0")
        assert synced.effective_st == Decimal("3200")
        assert synced.st_impermanent_loss == Decimal("300")
        assert_conserved(synced)


class TestProtocolFees:
    """Fees are a rate on each tranche's realized yield."""

    def test_fees_on_yield(self, constant_ydm):
        acct = Accountant()
        acct.register_market("m1", coverage=Decimal("0.2"), beta=Decimal("0"), ydm=constant_ydm,
                             st_protocol_fee_rate=Decimal("0.1"), jt_protocol_fee_rate=Decimal("0.2"))
        open_market(acct)
        synced = sync(acct, Decimal("3100"), Decimal("1040"), T0 + ONE_DAY)
        assert synced.st_protocol_fee == Decimal("7.5")
        # Junior pays on its share of Senior yield and on its own gain.
        assert synced.jt_protocol_fee == Decimal("13")
        assert synced.protocol_fee(TrancheType.JUNIOR) == Decimal("13")

    def test_no_fee_on_losses(self, constant_ydm):
        acct = Accountant()
        acct.register_market("m1", coverage=Decimal("0.2"), beta=Decimal("0"), ydm=constant_ydm,
                             st_protocol_fee_rate=Decimal("0.1"), jt_protocol_fee_rate=Decimal("0.2"))
        open_market(acct)
        synced = sync(acct, Decimal("2900"), Decimal("950"), T0 + ONE_DAY)
        assert synced.st_protocol_fee == 0
        assert synced.jt_protocol_fee == 0


class TestFixedTerm:
    """A Senior loss above LLTV starts a fixed term."""

    @pytest.fixture
    def fixed_term_accountant(self, constant_ydm):
        acct = Accountant()
        acct.register_market("m1", coverage=Decimal("0.2"), beta=Decimal("0"), ydm=constant_ydm,
                             lltv=Decimal("0.5"), fixed_term_duration=86400)
        open_market(acct)
        return acct

    def test_enters_fixed_term(self, fixed_term_accountant, caplog):
        with caplog.at_level(logging.WARNING, logger="tranches.accountant"):
            synced = sync(fixed_term_accountant, Decimal("2900"), Decimal("1000"), T0 + ONE_DAY)
        assert synced.market_state is MarketState.FIXED_TERM
        assert synced.fixed_term_end == T0 + 2 * ONE_DAY
        assert "market state changed" in caplog.text

    def test_returns_to_perpetual_after_term(self, fixed_term_accountant):
        sync(fixed_term_accountant, Decimal("2900"), Decimal("1000"), T0 + ONE_DAY)
        synced = sync(fixed_term_accountant, Decimal("2900"), Decimal("1000"), T0 + 2 * ONE_DAY)
        assert synced.market_state is MarketState.PERPETUAL
        assert synced.fixed_term_end is None

    def test_gain_does_not_start_term(self, fixed_term_accountant):
        synced = sync(fixed_term_accountant, Decimal("3100"), Decimal("1000"), T0 + ONE_DAY)
        assert synced.market_state is MarketState.PERPETUAL

    def test_disabled_without_duration(self, accountant):
        open_market(accountant)
        synced = sync(accountant, Decimal("1000"), Decimal("1000"), T0 + ONE_DAY)
        assert synced.market_state is MarketState.PERPETUAL


class TestPreview:
    """preview_sync computes without persisting."""

    def test_preview_does_not_mutate(self, accountant):
        open_market(accountant)
        before = accountant.get_state("m1")
        synced = accountant.preview_sync("m1", Decimal("3100"), Decimal("1000"), T0 + ONE_DAY)
        assert synced.effective_st == Decimal("3075")
        assert accountant.get_state("m1") is before


# =============================================================================
# POST-OP SYNC
# =============================================================================

class TestPostOpSync:
    """Post-op applies deposit and redemption deltas only."""

    def test_deposit_deltas(self, accountant):
        open_market(accountant)
        state = accountant.get_state("m1")
        assert state.last_raw_st == Decimal("3000")
        assert state.last_effective_st == Decimal("3000")
        assert state.last_effective_jt == Decimal("1000")
        assert accountant.utilization("m1") == Decimal("0.6")

    def test_redeem_deltas(self, accountant):
        open_market(accountant)
        accountant.pre_op_sync("m1", Decimal("3000"), Decimal("1000"), T0, Operation.ST_REDEEM)
        synced = accountant.post_op_sync("m1", Operation.ST_REDEEM, Decimal("2000"), Decimal("1000"), T0,
                                         st_redeem=Decimal("1000"))
        assert synced.raw_st == Decimal("2000")
        assert synced.effective_st == Decimal("2000")
        assert_conserved(synced)

    def test_deferred_gain_stays_deferred(self, accountant):
        open_market(accountant)
        # 100 of unrealized Senior gain, then a Junior deposit in the same second.
        accountant.pre_op_sync("m1", Decimal("3100"), Decimal("1000"), T0, Operation.JT_DEPOSIT)
        synced = accountant.post_op_sync("m1", Operation.JT_DEPOSIT, Decimal("3100"), Decimal("1500"), T0,
                                         jt_deposit=Decimal("500"))
        assert synced.raw_st == Decimal("3000")
        assert synced.effective_jt == Decimal("1500")

    def test_coverage_enforced(self, accountant):
        accountant.pre_op_sync("m1", Decimal("0"), Decimal("0"), T0, Operation.JT_DEPOSIT)
        accountant.post_op_sync("m1", Operation.JT_DEPOSIT, Decimal("0"), Decimal("1000"), T0,
                                jt_deposit=Decimal("1000"))
        accountant.pre_op_sync("m1", Decimal("0"), Decimal("1000"), T0, Operation.ST_DEPOSIT)
        before = accountant.get_state("m1")
        with pytest.raises(InsufficientCoverage):
            accountant.post_op_sync_and_enforce_coverage(
                "m1", Operation.ST_DEPOSIT, Decimal("6000"), Decimal("1000"), T0, st_deposit=Decimal("6000"),
            )
        assert accountant.get_state("m1") is before

    def test_coverage_boundary_is_allowed(self, accountant):
        accountant.pre_op_sync("m1", Decimal("0"), Decimal("0"), T0, Operation.JT_DEPOSIT)
        accountant.post_op_sync("m1", Operation.JT_DEPOSIT, Decimal("0"), Decimal("1000"), T0,
                                jt_deposit=Decimal("1000"))
        accountant.pre_op_sync("m1", Decimal("0"), Decimal("1000"), T0, Operation.ST_DEPOSIT)
        synced = accountant.post_op_sync_and_enforce_coverage(
            "m1", Operation.ST_DEPOSIT, Decimal("5000"), Decimal("1000"), T0, st_deposit=Decimal("5000"),
        )
        assert synced.utilization == Decimal("1")

    def test_calculate_post_op_requires_in_flight(self, accountant):
        with pytest.raises(SyncOrderViolation):
            calculate_post_op(accountant.get_state("m1"), Decimal("0"), Decimal("0"), T0)


class TestOperationPairing:
    """Every operation is bracketed by exactly one pre-op and one post-op sync."""

    def test_reentrant_pre_op_raises(self, accountant):
        accountant.pre_op_sync("m1", Decimal("0"), Decimal("0"), T0, Operation.JT_DEPOSIT)
        with pytest.raises(ReentrantCall):
            accountant.pre_op_sync("m1", Decimal("0"), Decimal("0"), T0, Operation.ST_DEPOSIT)

    def test_post_op_without_pre_op_raises(self, accountant):
        with pytest.raises(SyncOrderViolation):
            accountant.post_op_sync("m1", Operation.JT_DEPOSIT, Decimal("0"), Decimal("0"), T0)

    def test_post_op_for_other_operation_raises(self, accountant):
        accountant.pre_op_sync("m1", Decimal("0"), Decimal("0"), T0, Operation.JT_DEPOSIT)
        with pytest.raises(SyncOrderViolation):
            accountant.post_op_sync("m1", Operation.ST_DEPOSIT, Decimal("0"), Decimal("0"), T0)

    def test_post_op_closes_operation(self, accountant):
        open_market(accountant)
        assert accountant.get_state("m1").in_flight is None

    def test_restore_reopens_nothing(self, accountant):
        snap = accountant.snapshot("m1")
        accountant.pre_op_sync("m1", Decimal("0"), Decimal("0"), T0, Operation.JT_DEPOSIT)
        accountant.restore("m1", snap)
        assert accountant.get_state("m1").in_flight is None


# =============================================================================
# COVERAGE VIEWS
# =============================================================================

class TestCoverageViews:
    """Headroom for Senior deposits and Junior withdrawals."""

    def test_max_st_deposit(self, accountant):
        open_market(accountant)
        synced = accountant.preview_sync("m1", Decimal("3000"), Decimal("1000"), T0)
        assert accountant.max_st_deposit_nav("m1", synced) == Decimal("2000")

    def test_max_st_deposit_saturates(self):
        assert calculate_max_st_deposit(Decimal("6000"), Decimal("0"), Decimal("0"),
                                        Decimal("0.2"), Decimal("1000")) == 0

    def test_max_st_deposit_with_beta(self):
        # 1000 / 0.2 - (3000 + 0.5 * 1000) = 1500
        assert calculate_max_st_deposit(Decimal("3000"), Decimal("1000"), Decimal("0.5"),
                                        Decimal("0.2"), Decimal("1000")) == Decimal("1500")

    def test_max_jt_withdraw_fraction(self, accountant):
        open_market(accountant)
        synced = accountant.preview_sync("m1", Decimal("3000"), Decimal("1000"), T0)
        # (1000 - 600) / 1000
        assert accountant.max_jt_withdraw_fraction("m1", synced) == Decimal("0.4")

    def test_withdraw_fraction_without_senior(self):
        claims = calculate_asset_claims(TrancheType.JUNIOR, Decimal("0"), Decimal("1000"),
                                        Decimal("0"), Decimal("1000"))
        assert calculate_max_jt_withdraw_fraction(Decimal("0"), Decimal("1000"), Decimal("0"),
                                                  Decimal("0.2"), Decimal("1000"), claims) == 1

    def test_withdraw_fraction_when_undercovered(self):
        claims = calculate_asset_claims(TrancheType.JUNIOR, Decimal("6000"), Decimal("1000"),
                                        Decimal("6000"), Decimal("1000"))
        assert calculate_max_jt_withdraw_fraction(Decimal("6000"), Decimal("1000"), Decimal("0"),
                                                  Decimal("0.2"), Decimal("1000"), claims) == 0


class TestAssetClaims:
    """Effective NAVs decomposed by asset pool."""

    def test_senior_within_its_pool(self):
        st = calculate_asset_claims(TrancheType.SENIOR, Decimal("3000"), Decimal("1000"),
                                    Decimal("2900"), Decimal("1100"))
        jt = calculate_asset_claims(TrancheType.JUNIOR, Decimal("3000"), Decimal("1000"),
                                    Decimal("2900"), Decimal("1100"))
        assert (st.st_assets, st.jt_assets) == (Decimal("2900"), Decimal("0"))
        assert (jt.st_assets, jt.jt_assets) == (Decimal("100"), Decimal("1000"))

    def test_senior_claims_junior_pool(self):
        st = calculate_asset_claims(TrancheType.SENIOR, Decimal("3000"), Decimal("1000"),
                                    Decimal("3200"), Decimal("800"))
        jt = calculate_asset_claims(TrancheType.JUNIOR, Decimal("3000"), Decimal("1000"),
                                    Decimal("3200"), Decimal("800"))
        assert (st.st_assets, st.jt_assets) == (Decimal("3000"), Decimal("200"))
        assert (jt.st_assets, jt.jt_assets) == (Decimal("0"), Decimal("800"))
        assert st.nav + jt.nav == Decimal("4000")


# =============================================================================
# PARAMETER SETTERS
# =============================================================================

class TestSetters:
    """Setters replace the state and revalidate."""

    def test_set_coverage(self, accountant):
        accountant.set_coverage("m1", Decimal("0.3"))
        assert accountant.get_state("m1").coverage == Decimal("0.3")

    def test_set_invalid_coverage_raises(self, accountant):
        with pytest.raises(Misconfiguration):
            accountant.set_coverage("m1", Decimal("0"))
        assert accountant.get_state("m1").coverage == Decimal("0.2")

    def test_set_protocol_fee_rates(self, accountant):
        accountant.set_protocol_fee_rates("m1", Decimal("0.1"), Decimal("0.05"))
        state = accountant.get_state("m1")
        assert (state.st_protocol_fee_rate, state.jt_protocol_fee_rate) == (Decimal("0.1"), Decimal("0.05"))

    def test_set_ydm_resets_state(self, accountant, static_ydm):
        accountant.set_ydm("m1", static_ydm)
        state = accountant.get_state("m1")
        assert state.ydm is static_ydm
        assert state.ydm_state is None

    def test_set_ydm_rejects_non_ydm(self, accountant):
        with pytest.raises(Misconfiguration):
            accountant.set_ydm("m1", "curve")

    def test_set_lltv_and_duration(self, accountant):
        accountant.set_lltv("m1", Decimal("0.9"))
        accountant.set_fixed_term_duration("m1", 3600)
        state = accountant.get_state("m1")
        assert state.lltv == Decimal("0.9")
        assert state.fixed_term_duration == 3600
