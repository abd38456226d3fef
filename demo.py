#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Two-Tranche Vault Step by Step

This is a pedagogical walkthrough of one market: a Senior tranche protected
by a Junior tranche that absorbs losses first and earns part of Senior's
yield in return. Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation    - Markets, the Junior buffer, coverage and utilization
  4-7:   Accounting    - Yield distribution, Junior loss, covered Senior loss, recovery
  8-9:   Safety        - Atomic rollback, delayed Junior redemptions
  10:    Finale        - Conservation of NAV

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from tranches import (
    InsufficientCoverage, Kernel, Ledger, MarketConfig, TrancheType,
    create_market,
)


SENIOR = TrancheType.SENIOR
JUNIOR = TrancheType.JUNIOR


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Market
    coverage: Decimal = Decimal("0.2")
    beta: Decimal = Decimal("0")

    # Liquidity providers
    alice_initial_usd: Decimal = Decimal("100000")
    bob_initial_usd: Decimal = Decimal("100000")
    junior_deposit: Decimal = Decimal("10000")
    senior_deposit: Decimal = Decimal("15000")

    # Strategy PnL
    senior_yield: Decimal = Decimal("1500")
    junior_yield: Decimal = Decimal("1000")
    junior_loss: Decimal = Decimal("557.96875")
    senior_loss: Decimal = Decimal("300")
    senior_recovery: Decimal = Decimal("1000")


CONFIG = DemoConfig()

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def advance(kernel: Kernel, delta: timedelta):
    kernel.ledger.advance_time(kernel.ledger.current_time + delta)


def show_market(kernel: Kernel):
    synced, _, _ = kernel.preview_sync_tranche_accounting(SENIOR)
    print(f"Raw NAV:        ST {synced.raw_st:,.6f}   JT {synced.raw_jt:,.6f}")
    print(f"Effective NAV:  ST {synced.effective_st:,.6f}   JT {synced.effective_jt:,.6f}")
    print(f"Utilization:    {synced.utilization:.6f}")
    print(f"Impermanent loss:  Senior {synced.st_impermanent_loss:,.6f}   "
          f"Junior coverage {synced.jt_coverage_impermanent_loss:,.6f}")
    print(f"Market state:   {synced.market_state.value}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_create_market() -> Kernel:
    """Wire a market: ledger, accountant, adapter, shares, kernel."""
    step_header(1, "Creating a Market",
        "A market is two tranches sharing one accounting state.")

    print("""
    A market has:

    - a Senior tranche (ST): protected, earns most of the strategy's yield
    - a Junior tranche (JT): first-loss buffer, earns a share of Senior yield
    - a coverage requirement: Junior must cover `coverage` of Senior exposure

    Both tranches here deposit USD, which is also the NAV unit.
    """)

    wait_for_enter()

    print('>>> config = MarketConfig(st_asset="USD", jt_asset="USD", coverage=0.2, beta=0)')
    config = MarketConfig(st_asset="USD", jt_asset="USD", coverage=CONFIG.coverage, beta=CONFIG.beta)
    print('>>> kernel = create_market("senior-1", config)')
    kernel = create_market("senior-1", config,
                           ledger=Ledger("tutorial", initial_time=CONFIG.start_time, verbose=False))
    kernel.ledger.issue("alice", "USD", CONFIG.alice_initial_usd)
    kernel.ledger.issue("bob", "USD", CONFIG.bob_initial_usd)

    section_header("Initial State")
    print(f"Current time:       {kernel.now}")
    print(f"Registered units:   {kernel.ledger.list_units()}")
    print(f"Senior max deposit: {kernel.st_max_deposit()}")

    section_header("Key Insight")
    print("""
    With no Junior capital there is nothing to protect Senior deposits,
    so Senior cannot deposit at all yet.
    """)
    return kernel


def step_02_junior_buffer(kernel: Kernel) -> Kernel:
    step_header(2, "The Junior Buffer",
        "Junior capital opens Senior capacity.")

    print(f">>> kernel.jt_deposit({CONFIG.junior_deposit}, 'bob')")
    shares = kernel.jt_deposit(CONFIG.junior_deposit, "bob")
    print(f"Bob received {shares:,.2f} JT shares")
    print(f"Senior max deposit: {kernel.st_max_deposit():,.2f}")

    section_header("Key Insight")
    print("""
    Utilization = (raw_ST + beta * raw_JT) * coverage / effective_JT.
    Senior deposits are allowed while utilization stays at or below 1,
    so 10,000 of Junior supports 50,000 of Senior at 20% coverage.
    """)
    return kernel


def step_03_senior_deposit(kernel: Kernel) -> Kernel:
    step_header(3, "Senior Deposits",
        "Senior deposits consume coverage; Junior exits are bounded by it.")

    print(f">>> kernel.st_deposit({CONFIG.senior_deposit}, 'alice')")
    kernel.st_deposit(CONFIG.senior_deposit, "alice")
    show_market(kernel)
    print(f"\nBob can request to redeem up to {kernel.jt_max_redeem('bob'):,.2f} JT shares")
    return kernel


# ============================================================================
# PHASE 2: ACCOUNTING (Steps 4-7)
# ============================================================================

def step_04_yield(kernel: Kernel) -> Kernel:
    step_header(4, "Yield Distribution",
        "Junior earns a utilization-dependent share of Senior yield.")

    print(f">>> adapter.accrue_yield(SENIOR, {CONFIG.senior_yield})")
    print(f">>> adapter.accrue_yield(JUNIOR, {CONFIG.junior_yield})")
    kernel.adapter.accrue_yield(SENIOR, CONFIG.senior_yield)
    kernel.adapter.accrue_yield(JUNIOR, CONFIG.junior_yield)
    print(">>> (one day passes)")
    advance(kernel, timedelta(days=1))

    synced = kernel.sync_tranche_accounting()
    print(f"Junior share of Senior yield: {synced.jt_yield_share}")
    show_market(kernel)

    section_header("Key Insight")
    print("""
    The share comes from the yield distribution curve, evaluated at the
    utilization of each elapsed second and averaged over the period.
    Junior keeps all of its own pool's yield.
    """)
    return kernel


def step_05_junior_loss(kernel: Kernel) -> Kernel:
    step_header(5, "Junior Loss",
        "Junior's own losses stay in Junior.")

    kernel.adapter.realize_loss(JUNIOR, CONFIG.junior_loss)
    advance(kernel, timedelta(hours=1))
    kernel.sync_tranche_accounting()
    show_market(kernel)
    return kernel


def step_06_senior_loss(kernel: Kernel) -> Kernel:
    step_header(6, "Covered Senior Loss",
        "Junior absorbs Senior losses and records what it is owed.")

    kernel.adapter.realize_loss(SENIOR, CONFIG.senior_loss)
    advance(kernel, timedelta(hours=1))
    kernel.sync_tranche_accounting()
    show_market(kernel)

    section_header("Key Insight")
    print("""
    Senior's effective NAV did not move. Junior paid for the loss and
    tracks it as coverage impermanent loss, repaid from future Senior gains.
    """)
    return kernel


def step_07_recovery(kernel: Kernel) -> Kernel:
    step_header(7, "Recovery",
        "Senior gains repay impermanent losses before they are shared.")

    kernel.adapter.accrue_yield(SENIOR, CONFIG.senior_recovery)
    advance(kernel, timedelta(days=1))
    kernel.sync_tranche_accounting()
    show_market(kernel)
    return kernel


# ============================================================================
# PHASE 3: SAFETY (Steps 8-9)
# ============================================================================

def step_08_rollback(kernel: Kernel) -> Kernel:
    step_header(8, "Atomic Rollback",
        "A rejected operation leaves no trace.")

    too_much = kernel.st_max_deposit() + 1
    log_length = len(kernel.ledger.transaction_log)
    print(f">>> kernel.st_deposit({too_much:,.2f}, 'alice')")
    try:
        kernel.st_deposit(too_much, "alice")
    except InsufficientCoverage as exc:
        print(f"Rejected: [{exc.code}] {exc}")
    print(f"Transaction log unchanged: {len(kernel.ledger.transaction_log) == log_length}")
    return kernel


def step_09_redemption(kernel: Kernel) -> Kernel:
    step_header(9, "Delayed Junior Redemption",
        "Junior exits through a request that matures after a delay.")

    shares = kernel.jt_max_redeem("bob")
    print(f">>> request_id = kernel.jt_request_redeem({shares:,.6f}, 'bob')")
    request_id = kernel.jt_request_redeem(shares, "bob")
    print(f"Pending:   {kernel.jt_pending_redeem_request(request_id, 'bob'):,.6f}")
    print(f"Claimable: {kernel.jt_claimable_redeem_request(request_id, 'bob'):,.6f}")

    print(">>> (the redemption delay passes)")
    advance(kernel, timedelta(seconds=kernel.config.junior_redemption_delay + 1))
    claimable = kernel.jt_claimable_redeem_request(request_id, "bob")
    print(f"Claimable: {claimable:,.6f}")

    payout = kernel.jt_redeem(claimable, "bob", "bob", request_id)
    print(f"Bob redeemed {payout.shares:,.6f} shares for {payout.nav:,.6f} USD")
    show_market(kernel)

    section_header("Key Insight")
    print("""
    The request pays the lower of its value at request time and its value
    now, and only up to the coverage headroom available at claim time.
    """)
    return kernel


# ============================================================================
# PHASE 4: FINALE (Step 10)
# ============================================================================

def step_10_conservation(kernel: Kernel):
    step_header(10, "Conservation",
        "Accounting moves value between tranches but never creates it.")

    synced = kernel.sync_tranche_accounting()
    print(f"raw_ST + raw_JT             = {synced.total_raw:,.6f}")
    print(f"effective_ST + effective_JT = {synced.total_effective:,.6f}")
    print(f"Difference: {synced.total_raw - synced.total_effective}")


def main():
    print("=" * 70)
    print("       TWO-TRANCHE VAULT TUTORIAL")
    print("=" * 70)

    kernel = step_01_create_market()
    wait_for_enter()
    kernel = step_02_junior_buffer(kernel)
    wait_for_enter()
    kernel = step_03_senior_deposit(kernel)
    wait_for_enter()

    kernel = step_04_yield(kernel)
    wait_for_enter()
    kernel = step_05_junior_loss(kernel)
    wait_for_enter()
    kernel = step_06_senior_loss(kernel)
    wait_for_enter()
    kernel = step_07_recovery(kernel)
    wait_for_enter()

    kernel = step_08_rollback(kernel)
    wait_for_enter()
    kernel = step_09_redemption(kernel)
    wait_for_enter()

    step_10_conservation(kernel)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See tranches/accountant.py for the sync algorithm
      - See tranches/ydm.py for the yield distribution curves
      - Run tests: pytest tests/
    """)
    return kernel


if __name__ == "__main__":
    main()
