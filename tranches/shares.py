"""
shares.py - Tranche share ledger

Tranche shares are units on the asset ledger ("{market_id}.ST" and
"{market_id}.JT"), minted out of and burned into SYSTEM_WALLET. Shares under
an asynchronous redemption request sit in the market's escrow wallet and stay
part of the total supply until they are redeemed.

Protocol fees are paid by dilution:

    shares = fee * supply / (effective_nav - fee)

after which the recipient's shares are worth exactly `fee` at the post-mint
NAV per share.
"""

from __future__ import annotations
import logging
from decimal import Decimal
from typing import Optional, Tuple

from .core import (
    ZERO, SYSTEM_WALLET, TrancheType, Move, NullAddress,
    share_symbol, share_unit, to_decimal,
)
from .ledger import Ledger

logger = logging.getLogger(__name__)


def escrow_wallet(market_id: str) -> str:
    return f"{market_id}:redemption_escrow"


def calculate_fee_shares(fee_nav: Decimal, effective_nav: Decimal, supply: Decimal) -> Decimal:
    """
    Shares worth `fee_nav` once minted on top of `supply`.

    Zero when there is no fee, no supply to dilute, or the fee would consume
    the whole effective NAV.
    """
    if fee_nav <= 0 or supply <= 0 or effective_nav - fee_nav <= 0:
        return ZERO
    return fee_nav * supply / (effective_nav - fee_nav)


class TrancheShareLedger:
    """
    Share balances of both tranches of one market.

    Example:
        shares = TrancheShareLedger(ledger, "senior-1")
        shares.mint(TrancheType.SENIOR, "alice", Decimal("100"))
        shares.balance_of(TrancheType.SENIOR, "alice")  # Decimal("100")
    """

    def __init__(self, ledger: Ledger, market_id: str):
        self.ledger = ledger
        self.market_id = market_id
        for tranche in TrancheType:
            if share_symbol(market_id, tranche) not in ledger.units:
                ledger.register_unit(share_unit(market_id, tranche))
        self.escrow = ledger.ensure_wallet(escrow_wallet(market_id))

    def symbol(self, tranche: TrancheType) -> str:
        return share_symbol(self.market_id, tranche)

    def round_shares(self, tranche: TrancheType, shares: Decimal) -> Decimal:
        """Truncate to share precision; rounding never creates ownership."""
        return self.ledger.get_unit(self.symbol(tranche)).round_down(to_decimal(shares))

    def total_supply(self, tranche: TrancheType) -> Decimal:
        return self.ledger.total_supply(self.symbol(tranche))

    def balance_of(self, tranche: TrancheType, owner: str) -> Decimal:
        if not self.ledger.is_registered(owner):
            return ZERO
        return self.ledger.get_balance(owner, self.symbol(tranche))

    def mint(self, tranche: TrancheType, to: str, shares: Decimal, reason: str = "mint") -> Decimal:
        """Mint shares (rounded down); returns the shares actually minted."""
        if not to:
            raise NullAddress("share recipient cannot be empty")
        shares = self.round_shares(tranche, shares)
        if shares <= 0:
            return ZERO
        self.ledger.ensure_wallet(to)
        self.ledger.transact(
            [Move(shares, self.symbol(tranche), SYSTEM_WALLET, to, reason)],
            memo=f"{self.market_id}:{tranche.value}:{reason}",
        )
        return shares

    def burn(self, tranche: TrancheType, owner: str, shares: Decimal, reason: str = "burn") -> Decimal:
        """
        Raises:
            InsufficientFunds: if the owner holds fewer shares
        """
        shares = self.round_shares(tranche, shares)
        if shares <= 0:
            return ZERO
        self.ledger.transact(
            [Move(shares, self.symbol(tranche), owner, SYSTEM_WALLET, reason)],
            memo=f"{self.market_id}:{tranche.value}:{reason}",
        )
        return shares

    def transfer(self, tranche: TrancheType, source: str, dest: str, shares: Decimal,
                 reason: str = "transfer") -> Decimal:
        if not dest:
            raise NullAddress("share recipient cannot be empty")
        shares = self.round_shares(tranche, shares)
        if shares <= 0:
            return ZERO
        self.ledger.ensure_wallet(dest)
        self.ledger.transact(
            [Move(shares, self.symbol(tranche), source, dest, reason)],
            memo=f"{self.market_id}:{tranche.value}:{reason}",
        )
        return shares

    def mint_protocol_fee_shares(
        self,
        tranche: TrancheType,
        fee_nav: Decimal,
        effective_nav: Decimal,
        recipient: str,
        supply: Optional[Decimal] = None,
    ) -> Tuple[Decimal, Decimal]:
        """
        Dilute holders so that `recipient` owns `fee_nav` of the tranche.

        `effective_nav` and `supply` must describe the same moment. `supply`
        defaults to the current total supply; pass the supply the fee accrued
        against when shares have been burned or minted since.

        Returns:
            (shares_minted, total_supply_after)
        """
        fee_shares = calculate_fee_shares(
            to_decimal(fee_nav), to_decimal(effective_nav),
            self.total_supply(tranche) if supply is None else to_decimal(supply),
        )
        minted = self.mint(tranche, recipient, fee_shares, reason="protocol_fee") if fee_shares > 0 else ZERO
        supply_after = self.total_supply(tranche)
        if minted > 0:
            logger.info("protocol fee shares minted", extra={
                "market_id": self.market_id,
                "tranche": tranche.value,
                "fee_nav": fee_nav,
                "shares_minted": minted,
                "total_supply": supply_after,
            })
        return minted, supply_after
