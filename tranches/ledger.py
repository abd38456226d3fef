"""
ledger.py - In-memory Double-Entry Asset Ledger

The Ledger is the execution environment the engine runs against: it holds the
underlying assets of every market's vault wallets, the LPs' wallets, and the
tranche share balances. It also owns the logical clock.

Key responsibilities:
    - Implements the LedgerView protocol for read-only access
    - Executes transactions atomically (all moves succeed or all fail)
    - Issues and burns units through SYSTEM_WALLET, so every unit's balances
      (system wallet included) always sum to zero
    - Snapshots and restores its full state, which the Kernel uses to discard
      every mutation of a failed operation
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Set, Tuple, Type

from .core import (
    # Types
    Move, Transaction, Unit, PendingTransaction,
    build_transaction,
    # Constants
    SYSTEM_WALLET, NAV_TOLERANCE,
    # Exceptions
    LedgerError, InsufficientFunds, UnitNotRegistered, WalletNotRegistered,
)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Frozen copy of everything a Ledger mutates while executing transactions."""
    balances: Mapping[str, Mapping[str, Decimal]]
    registered_wallets: frozenset
    units: Mapping[str, Unit]
    log_length: int
    next_sequence: int
    current_time: datetime


class Ledger:
    """
    Double-entry asset ledger with atomic execution and an audit trail.

    Design Principles:
        - Always validates: every transaction is checked against unit and wallet
          registration and balance constraints before anything is applied.
        - Always logs: every applied transaction is appended to transaction_log.

    Thread Safety:
        Not thread-safe. Operations are expected to be serialized by the caller.

    Example:
        ledger = Ledger("env", verbose=False)
        ledger.register_unit(asset_unit("USDC", "USD Coin", 6))
        ledger.register_wallet("alice")
        ledger.issue("alice", "USDC", Decimal("1000"))
        ledger.transact([Move(Decimal("100"), "USDC", "alice", "bob", "payment")])
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print every applied or rejected transaction (default: True)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._next_sequence: int = 0

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Get the balance of a specific unit in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def list_units(self) -> List[str]:
        """List all registered unit symbols."""
        return sorted(self.units.keys())

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Outstanding supply of a unit: the sum over every wallet except SYSTEM_WALLET.

        Wallets are sorted before summation to ensure deterministic
        accumulation order.
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0"))
             for w in sorted(self.registered_wallets) if w != SYSTEM_WALLET),
            Decimal("0"),
        )

    def verify_double_entry(self, tolerance: Decimal = NAV_TOLERANCE) -> Dict[str, object]:
        """
        Verify that every unit's balances, system wallet included, sum to zero.

        Units only enter circulation through SYSTEM_WALLET, so the system
        wallet's (negative) balance mirrors the outstanding supply exactly.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'supplies': Dict[str, Decimal] - Outstanding supply per unit
            - 'discrepancies': List[Dict] - unit, imbalance for each violation
        """
        supplies = {}
        discrepancies = []
        for unit_symbol in sorted(self.units):
            outstanding = self.total_supply(unit_symbol)
            supplies[unit_symbol] = outstanding
            imbalance = outstanding + self.balances[SYSTEM_WALLET].get(unit_symbol, Decimal("0"))
            if abs(imbalance) > tolerance:
                discrepancies.append({'unit': unit_symbol, 'imbalance': imbalance})
        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet in the ledger.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit in the ledger.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"📝 Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{ledger_name}:{sequence:012d}"""
        return f"exec:{self.name}:{sequence:012d}"

    def transact(self, moves: List[Move], memo: str = "") -> Optional[Transaction]:
        """
        Build and apply a transaction atomically, raising on rejection.

        All moves succeed together or all fail together.

        Raises:
            UnitNotRegistered / WalletNotRegistered: if a move references an
                unknown unit or wallet
            InsufficientFunds: if a balance constraint would be violated
        """
        pending = build_transaction(self, moves, memo)
        if pending.is_empty():
            return None
        valid, reason, error_type = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            raise error_type(reason)
        return self._apply(pending)

    def issue(self, wallet_id: str, unit_symbol: str, quantity: Decimal, reason: str = "issue") -> None:
        """Create units out of SYSTEM_WALLET into a wallet, registering it if needed."""
        self.ensure_wallet(wallet_id)
        if quantity > 0:
            self.transact([Move(quantity, unit_symbol, SYSTEM_WALLET, wallet_id, reason)], memo=reason)

    def retire(self, wallet_id: str, unit_symbol: str, quantity: Decimal, reason: str = "retire") -> None:
        """Destroy units by returning them from a wallet to SYSTEM_WALLET."""
        if quantity > 0:
            self.transact([Move(quantity, unit_symbol, wallet_id, SYSTEM_WALLET, reason)], memo=reason)

    def _apply(self, pending: PendingTransaction) -> Transaction:
        sequence = self._next_sequence
        self._next_sequence += 1
        tx = Transaction(
            moves=pending.moves,
            memo=pending.memo,
            timestamp=pending.timestamp,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            sequence_number=sequence,
        )
        self._execute_moves(tx.moves)
        self.transaction_log.append(tx)
        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return tx

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print transaction details followed by a result line."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(
        self, pending: PendingTransaction
    ) -> Tuple[bool, str, Type[LedgerError]]:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Unit and wallet registration
        3. Balance constraint validation (min/max balance limits)

        Returns:
            Tuple of (success, reason, exception type to raise on failure)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp", LedgerError

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}", UnitNotRegistered
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}", WalletNotRegistered
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}", WalletNotRegistered

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is exempt: it is the issuer of every unit.
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            current = self.balances[wallet][unit_sym]
            unit = self.units[unit_sym]
            proposed = unit.round(current + delta)
            if proposed < unit.min_balance:
                return False, f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}", InsufficientFunds
            if proposed > unit.max_balance:
                return False, f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}", InsufficientFunds

        return True, "", LedgerError

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances with unit-specific rounding."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            self.balances[move.source][move.unit_symbol] = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )

    # ========================================================================
    # SNAPSHOT / RESTORE
    # ========================================================================

    def snapshot(self) -> LedgerSnapshot:
        """
        Capture the ledger's mutable state.

        Balances are copied wallet by wallet; Unit objects are immutable and
        shared. The transaction log is append-only, so only its length is kept.
        """
        return LedgerSnapshot(
            balances={wallet: dict(bals) for wallet, bals in self.balances.items()},
            registered_wallets=frozenset(self.registered_wallets),
            units=dict(self.units),
            log_length=len(self.transaction_log),
            next_sequence=self._next_sequence,
            current_time=self._current_time,
        )

    def restore(self, snap: LedgerSnapshot) -> None:
        """Roll the ledger back to a snapshot taken earlier on this instance."""
        self.balances = {
            wallet: defaultdict(lambda: Decimal("0"), bals)
            for wallet, bals in snap.balances.items()
        }
        self.registered_wallets = set(snap.registered_wallets)
        self.units = dict(snap.units)
        del self.transaction_log[snap.log_length:]
        self._next_sequence = snap.next_sequence
        self._current_time = snap.current_time
