"""
adapters.py - Strategy adapters

The Kernel depends only on the capability set below; where the assets actually
sit (a lending pool, a vault, a yield-bearing token) is the adapter's concern.

LedgerStrategyAdapter keeps each tranche's assets in a vault wallet on the
asset ledger and marks them to market through the quoter. Strategy PnL is
modelled as units issued into, or retired from, a vault wallet, or as a move in
the quoted rate.
"""

from __future__ import annotations
import logging
from decimal import Decimal
from typing import Dict, Protocol, runtime_checkable

from .core import (
    ZERO, TrancheType, Move, NullAddress,
    to_decimal,
)
from .ledger import Ledger
from .quoter import RateQuoter

logger = logging.getLogger(__name__)


@runtime_checkable
class StrategyAdapter(Protocol):
    """Capability set the Kernel needs from a strategy."""

    def asset_symbol(self, tranche: TrancheType) -> str:
        """Tranche unit deposited into and paid out of a tranche's pool."""
        ...

    def get_raw_nav(self, tranche: TrancheType) -> Decimal:
        """Mark-to-market value of a tranche's pool in NAV units."""
        ...

    def deposit_assets(self, tranche: TrancheType, units: Decimal, depositor: str) -> Decimal:
        """Pull tranche units from the depositor into the pool; return the NAV deposited."""
        ...

    def withdraw_assets(self, tranche: TrancheType, units: Decimal, receiver: str) -> Decimal:
        """Send tranche units from the pool to the receiver; return the units sent."""
        ...


def vault_wallet(market_id: str, tranche: TrancheType) -> str:
    return f"{market_id}:{tranche.value.lower()}_vault"


class LedgerStrategyAdapter:
    """
    Strategy adapter over vault wallets on an asset ledger.

    Example:
        adapter = LedgerStrategyAdapter(ledger, quoter, "senior-1",
                                        st_asset="USDC", jt_asset="USDC")
        nav = adapter.deposit_assets(TrancheType.SENIOR, Decimal("100"), "alice")
        adapter.accrue_yield(TrancheType.SENIOR, Decimal("10"))
    """

    def __init__(self, ledger: Ledger, quoter: RateQuoter, market_id: str, st_asset: str, jt_asset: str):
        self.ledger = ledger
        self.quoter = quoter
        self.market_id = market_id
        self.assets: Dict[TrancheType, str] = {
            TrancheType.SENIOR: st_asset,
            TrancheType.JUNIOR: jt_asset,
        }
        self.vaults: Dict[TrancheType, str] = {
            tranche: ledger.ensure_wallet(vault_wallet(market_id, tranche))
            for tranche in TrancheType
        }
        for symbol in self.assets.values():
            ledger.get_unit(symbol)

    def asset_symbol(self, tranche: TrancheType) -> str:
        return self.assets[tranche]

    def pool_units(self, tranche: TrancheType) -> Decimal:
        return self.ledger.get_balance(self.vaults[tranche], self.assets[tranche])

    def get_raw_nav(self, tranche: TrancheType) -> Decimal:
        return self.quoter.to_nav_units(self.assets[tranche], self.pool_units(tranche))

    def deposit_assets(self, tranche: TrancheType, units: Decimal, depositor: str) -> Decimal:
        """
        Raises:
            NullAddress: if depositor is empty
            InsufficientFunds: if the depositor holds fewer units
        """
        if not depositor:
            raise NullAddress("depositor cannot be empty")
        symbol = self.assets[tranche]
        units = self.ledger.get_unit(symbol).round_down(to_decimal(units))
        if units <= 0:
            return ZERO
        self.ledger.transact(
            [Move(units, symbol, depositor, self.vaults[tranche], "deposit")],
            memo=f"{self.market_id}:{tranche.value}:deposit",
        )
        return self.quoter.to_nav_units(symbol, units)

    def withdraw_assets(self, tranche: TrancheType, units: Decimal, receiver: str) -> Decimal:
        """
        Raises:
            NullAddress: if receiver is empty
            InsufficientFunds: if the pool holds fewer units
        """
        if not receiver:
            raise NullAddress("receiver cannot be empty")
        symbol = self.assets[tranche]
        units = self.ledger.get_unit(symbol).round_down(to_decimal(units))
        if units <= 0:
            return ZERO
        self.ledger.ensure_wallet(receiver)
        self.ledger.transact(
            [Move(units, symbol, self.vaults[tranche], receiver, "withdraw")],
            memo=f"{self.market_id}:{tranche.value}:withdraw",
        )
        return units

    def accrue_yield(self, tranche: TrancheType, units: Decimal) -> None:
        """Strategy income: new units appear in the tranche's pool."""
        symbol = self.assets[tranche]
        units = self.ledger.get_unit(symbol).round_down(to_decimal(units))
        self.ledger.issue(self.vaults[tranche], symbol, units, reason="strategy_yield")
        logger.info("strategy yield", extra={"market_id": self.market_id,
                                             "tranche": tranche.value, "units": units})

    def realize_loss(self, tranche: TrancheType, units: Decimal) -> None:
        """Strategy loss: units leave the tranche's pool."""
        symbol = self.assets[tranche]
        units = self.ledger.get_unit(symbol).round_down(to_decimal(units))
        self.ledger.retire(self.vaults[tranche], symbol, units, reason="strategy_loss")
        logger.info("strategy loss", extra={"market_id": self.market_id,
                                            "tranche": tranche.value, "units": units})
