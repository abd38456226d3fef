"""
Core types and pure helpers for the tranche vault engine.

This module provides the foundational data structures shared by every other module:
1. Enums: TrancheType, MarketState, ExecutionModel, Operation
2. Exceptions: TrancheError and the typed error kinds raised by the engine
3. Fixed-point helpers: WAD/RAY scaling, saturating arithmetic, ratio helpers
4. Ledger primitives: Move, PendingTransaction, Transaction, Unit, LedgerView
5. Unit factories: asset and tranche-share units

All functions in this module are pure. Nothing here mutates engine state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import Any, FrozenSet, List, Optional, Protocol, Set, Tuple, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All accounting runs on Decimal with one global context, configured once at
# import time.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
#   - prec=50: enough headroom for WAD-scaled products of NAV amounts
#   - rounding=ROUND_HALF_EVEN: unbiased rounding of intermediate results
#
_TRANCHE_DECIMAL_CONTEXT = getcontext()
_TRANCHE_DECIMAL_CONTEXT.prec = 50
_TRANCHE_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for share issuance/burning and simulated asset flows.
# The system wallet is exempt from balance validation.
SYSTEM_WALLET = "system"

UNIT_TYPE_ASSET = "ASSET"
UNIT_TYPE_TRANCHE_SHARE = "TRANCHE_SHARE"

ZERO = Decimal("0")
ONE = Decimal("1")
INFINITY = Decimal("Infinity")

# Fixed-point scales used by on-chain style configuration values.
WAD = Decimal(10) ** 18
RAY = Decimal(10) ** 27

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

# Absolute tolerance for NAV conservation checks.
NAV_TOLERANCE = Decimal("1e-9")

# Default decimal places for asset and share units (WAD precision).
DEFAULT_DECIMAL_PLACES = 18


# ============================================================================
# ENUMS
# ============================================================================

class TrancheType(Enum):
    """The two tranches of a market."""
    SENIOR = "ST"
    JUNIOR = "JT"

    @property
    def other(self) -> TrancheType:
        return TrancheType.JUNIOR if self is TrancheType.SENIOR else TrancheType.SENIOR


class MarketState(Enum):
    """
    Lifecycle state of a market.

    PERPETUAL: steady state.
    FIXED_TERM: entered after a realized Senior loss leaves utilization above
                LLTV; returns to PERPETUAL once the fixed term elapses without a
                further disqualifying loss.
    """
    PERPETUAL = "perpetual"
    FIXED_TERM = "fixed_term"


class ExecutionModel(Enum):
    """How a redemption is executed: immediately, or through a request queue."""
    SYNC = "sync"
    ASYNC = "async"


class Operation(Enum):
    """Every state-changing entry point of a market, tagged by tranche."""
    ST_DEPOSIT = "st_deposit"
    ST_REDEEM = "st_redeem"
    ST_REQUEST_REDEEM = "st_request_redeem"
    ST_CANCEL_REDEEM_REQUEST = "st_cancel_redeem_request"
    ST_CLAIM_CANCEL_REDEEM_REQUEST = "st_claim_cancel_redeem_request"
    JT_DEPOSIT = "jt_deposit"
    JT_REDEEM = "jt_redeem"
    JT_REQUEST_REDEEM = "jt_request_redeem"
    JT_CANCEL_REDEEM_REQUEST = "jt_cancel_redeem_request"
    JT_CLAIM_CANCEL_REDEEM_REQUEST = "jt_claim_cancel_redeem_request"
    SYNC = "sync"
    SET_PARAMETER = "set_parameter"

    @property
    def tranche(self) -> Optional[TrancheType]:
        if self.value.startswith("st_"):
            return TrancheType.SENIOR
        if self.value.startswith("jt_"):
            return TrancheType.JUNIOR
        return None

    @property
    def is_coverage_gated(self) -> bool:
        """Operations that can raise exposure or shrink the Junior buffer."""
        return self in COVERAGE_GATED_OPERATIONS

    @classmethod
    def of(cls, tranche: TrancheType, action: str) -> Operation:
        """Look up the operation for a tranche, e.g. Operation.of(JUNIOR, "redeem")."""
        return cls(f"{tranche.value.lower()}_{action}")


COVERAGE_GATED_OPERATIONS: FrozenSet[Operation] = frozenset({
    Operation.ST_DEPOSIT,
    Operation.JT_REDEEM,
})


# ============================================================================
# EXCEPTIONS
# ============================================================================

class TrancheError(Exception):
    """Base exception for all engine errors. `code` is stable and machine-readable."""
    code = "TRANCHE_ERROR"


class InsufficientCoverage(TrancheError):
    """Raised when a coverage-gated operation would leave utilization above 1."""
    code = "INSUFFICIENT_COVERAGE"


class InvalidMarketState(TrancheError):
    """Raised when an operation is not permitted in the current market state."""
    code = "INVALID_MARKET_STATE"


class InvalidRequestId(TrancheError):
    """Raised when a redemption-queue operation references a nonexistent request."""
    code = "INVALID_REQUEST_ID"


class InsufficientRedeemableShares(TrancheError):
    """Raised when a redemption exceeds the shares currently claimable."""
    code = "INSUFFICIENT_REDEEMABLE_SHARES"


class RedemptionRequestCanceled(TrancheError):
    """Raised when acting on a request that has already been canceled."""
    code = "REDEMPTION_REQUEST_CANCELED"


class RedemptionRequestNotCanceled(TrancheError):
    """Raised when claiming a cancellation on a request that was never canceled."""
    code = "REDEMPTION_REQUEST_NOT_CANCELED"


class NullAddress(TrancheError):
    """Raised when a required wallet or identifier is empty."""
    code = "NULL_ADDRESS"


class Misconfiguration(TrancheError):
    """Raised when market, curve, or collaborator parameters are invalid."""
    code = "MISCONFIGURATION"


class UnknownMarket(TrancheError):
    """Raised when a market id has not been registered with the accountant."""
    code = "UNKNOWN_MARKET"


class ReentrantCall(TrancheError):
    """Raised when a mutating entry point is re-entered before its sync pair commits."""
    code = "REENTRANT_CALL"


class SyncOrderViolation(TrancheError):
    """Raised when post-operation sync runs without a matching pre-operation sync."""
    code = "SYNC_ORDER_VIOLATION"


class LedgerError(TrancheError):
    """Base exception for asset-ledger errors."""
    code = "LEDGER_ERROR"


class InsufficientFunds(LedgerError):
    """Raised when a transaction would push a wallet below the unit's minimum balance."""
    code = "INSUFFICIENT_FUNDS"


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered with the ledger."""
    code = "UNIT_NOT_REGISTERED"


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered with the ledger."""
    code = "WALLET_NOT_REGISTERED"


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """Convert ints, floats and strings to Decimal via str() to avoid binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a numeric amount")
    return Decimal(str(value))


def from_wad(value: int) -> Decimal:
    """Convert a WAD-scaled integer (1e18 == 1.0) to a Decimal fraction."""
    return Decimal(int(value)) / WAD


def to_wad(value: Decimal) -> int:
    """Convert a Decimal fraction to a WAD-scaled integer, rounding down."""
    return int((to_decimal(value) * WAD).to_integral_value(rounding=ROUND_DOWN))


def saturating_sub(a: Decimal, b: Decimal) -> Decimal:
    """a - b, floored at zero."""
    return a - b if a > b else ZERO


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


def is_zero(value: Decimal) -> bool:
    return abs(value) < QUANTITY_EPSILON


def elapsed_seconds(start: Optional[datetime], end: datetime) -> Decimal:
    """
    Whole seconds between two timestamps, never negative.

    Whole-second granularity mirrors block timestamps: two syncs inside the
    same second observe zero elapsed time.
    """
    if start is None or end <= start:
        return ZERO
    return Decimal(int((end - start).total_seconds()))


# ============================================================================
# COVERAGE MATH
# ============================================================================

def compute_utilization(
    raw_st: Decimal,
    raw_jt: Decimal,
    beta: Decimal,
    coverage: Decimal,
    effective_jt: Decimal,
) -> Decimal:
    """
    Covered exposure divided by the Junior buffer.

        utilization = (raw_ST + beta * raw_JT) * coverage / effective_JT

    Saturating: zero exposure is 0 utilization whatever the buffer, and any
    positive exposure over an empty buffer is +Infinity.
    """
    exposure = (raw_st + beta * raw_jt) * coverage
    if exposure <= 0:
        return ZERO
    if effective_jt <= 0:
        return INFINITY
    return exposure / effective_jt


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to the asset ledger.

    Collaborators that only need to observe balances and the clock accept a
    LedgerView and thereby declare their read-only intent.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (zero if none)."""
        ...

    def total_supply(self, unit_symbol: str) -> Decimal:
        """Return the sum of a unit's balances across non-system wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# LEDGER DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be finite and positive).
        unit_symbol: The unit being transferred (an asset or a tranche share).
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        reason: Short tag describing why the move happens ("deposit", "fee_mint", ...).
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    reason: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.reason or not self.reason.strip():
            raise ValueError("Move reason cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A batch of moves to be applied atomically.

    Attributes:
        moves: Value transfers between wallets.
        memo: Free-form description for the audit log (e.g. "senior-1:st_deposit").
        timestamp: When the transaction was built.
    """
    moves: Tuple[Move, ...]
    memo: str
    timestamp: datetime

    def is_empty(self) -> bool:
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {self.memo})"


def build_transaction(view: LedgerView, moves: List[Move], memo: str = "") -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the ledger's current time.

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "USDC", "alice", "vault", "deposit")
        ], memo="senior-1:st_deposit")
        tx.timestamp == ledger.current_time  # True
    """
    return PendingTransaction(moves=tuple(moves), memo=memo, timestamp=view.current_time)


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger changes.

    Attributes:
        moves: Tuple of value transfers between wallets
        memo: Description carried over from the PendingTransaction
        timestamp: When the PendingTransaction was created
        exec_id: Unique execution identifier (ledger + sequence)
        ledger_name: Name of the ledger that executed this
        sequence_number: Monotonic sequence within the ledger
    """
    moves: Tuple[Move, ...]
    memo: str
    timestamp: datetime
    exec_id: str
    ledger_name: str
    sequence_number: int

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   memo           : ' + self.memo)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"├{bar}┤",
            f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│",
        ]
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest} ({move.reason})"
            lines.append(f"│{pad(move_str)}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit held on the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "USDC", "senior-1.ST").
        name: Human-readable name for the unit.
        unit_type: UNIT_TYPE_ASSET or UNIT_TYPE_TRANCHE_SHARE.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any non-system wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None

    def round(self, value: Decimal) -> Decimal:
        """
        Round a value to this unit's decimal precision.

        Returns the value unchanged if decimal_places is None. Share balances
        round down so rounding never creates ownership.
        """
        if self.decimal_places is None:
            return value
        value = to_decimal(value)
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = ROUND_DOWN if self.unit_type == UNIT_TYPE_TRANCHE_SHARE else ROUND_HALF_EVEN
        return value.quantize(quantizer, rounding=rounding_mode)

    def round_down(self, value: Decimal) -> Decimal:
        """Truncate a quantity to this unit's precision before it is moved."""
        if self.decimal_places is None:
            return value
        return to_decimal(value).quantize(Decimal(10) ** -self.decimal_places, rounding=ROUND_DOWN)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def asset_unit(symbol: str, name: str, decimal_places: int = DEFAULT_DECIMAL_PLACES) -> Unit:
    """
    Create an underlying asset unit (the "tranche unit" deposited by LPs).

    Args:
        symbol: Asset code (e.g., "USDC").
        name: Full name of the asset.
        decimal_places: Smallest representable unit is 10**-decimal_places.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_ASSET,
        decimal_places=decimal_places,
    )


def share_unit(market_id: str, tranche: TrancheType) -> Unit:
    """Create the share unit of one tranche of a market, e.g. "senior-1.JT"."""
    return Unit(
        symbol=share_symbol(market_id, tranche),
        name=f"{market_id} {tranche.name.title()} Tranche",
        unit_type=UNIT_TYPE_TRANCHE_SHARE,
        decimal_places=DEFAULT_DECIMAL_PLACES,
    )


def share_symbol(market_id: str, tranche: TrancheType) -> str:
    return f"{market_id}.{tranche.value}"
