"""
conftest.py - Shared pytest fixtures for tranche engine tests

Provides common fixtures used across unit, functional and conformance tests:
- Asset ledgers (empty, funded)
- Accountant with a registered market
- Wired markets (Kernel via create_market), empty and seeded
"""

import pytest
from decimal import Decimal

from tranches import (
    Accountant,
    Ledger,
    StaticCurveYDM,
    asset_unit,
    create_market,
)

from tests.fake_ydm import ConstantShareYDM
from tests.market_helpers import T0, make_config


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", T0, verbose=False)


@pytest.fixture
def usd_ledger():
    """Ledger with USD and two funded wallets."""
    ledger = Ledger("test", T0, verbose=False)
    ledger.register_unit(asset_unit("USD", "US Dollar", decimal_places=2))
    ledger.issue("alice", "USD", Decimal("10000"))
    ledger.issue("bob", "USD", Decimal("5000"))
    return ledger


# =============================================================================
# ACCOUNTANT FIXTURES
# =============================================================================

@pytest.fixture
def constant_ydm():
    """Junior always earns 25% of Senior yield."""
    return ConstantShareYDM(Decimal("0.25"))


@pytest.fixture
def static_ydm():
    return StaticCurveYDM(
        share_at_zero=Decimal("0.05"),
        target_utilization=Decimal("0.8"),
        share_at_target=Decimal("0.2"),
        share_at_full=Decimal("0.6"),
    )


@pytest.fixture
def accountant(constant_ydm):
    """Accountant with market "m1": coverage 20%, beta 0, no fees."""
    acct = Accountant()
    acct.register_market("m1", coverage=Decimal("0.2"), beta=Decimal("0"), ydm=constant_ydm)
    return acct


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def market():
    """Empty market "senior-1" with funded LPs alice (Senior) and bob (Junior)."""
    kernel = create_market("senior-1", make_config(), ledger=Ledger("env", T0, verbose=False))
    kernel.ledger.issue("alice", "USD", Decimal("100000"))
    kernel.ledger.issue("bob", "USD", Decimal("100000"))
    return kernel


@pytest.fixture
def seeded_market(market):
    """Market with 10,000 Junior (bob) and 15,000 Senior (alice) deposited at T0."""
    market.jt_deposit(Decimal("10000"), "bob")
    market.st_deposit(Decimal("15000"), "alice")
    return market
