"""
tranches - Two-tranche yield vault accounting engine

Senior (ST) and Junior (JT) tranches share one strategy. Junior absorbs losses
first and earns a utilization-dependent share of Senior's yield, decided by a
pluggable Yield Distribution Model.

Usage:
    from decimal import Decimal
    from tranches import MarketConfig, create_market

    kernel = create_market("senior-1", MarketConfig(
        st_asset="USDC", jt_asset="USDC",
        coverage=Decimal("0.2"), beta=Decimal("0"),
    ))
    kernel.ledger.issue("bob", "USDC", Decimal("10000"))
    kernel.ledger.issue("alice", "USDC", Decimal("10000"))

    kernel.jt_deposit(Decimal("10000"), "bob")
    kernel.st_deposit(kernel.st_max_deposit() / 5, "alice")

    # Junior redemptions are asynchronous
    request_id = kernel.jt_request_redeem(kernel.jt_max_redeem("bob"), "bob")
    ...  # after the redemption delay
    kernel.jt_redeem(kernel.jt_claimable_redeem_request(request_id, "bob"),
                     "bob", "bob", request_id)
"""

# Core types
from .core import (
    TrancheType,
    MarketState,
    ExecutionModel,
    Operation,
    COVERAGE_GATED_OPERATIONS,
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    build_transaction,
    Unit,
    asset_unit,
    share_unit,
    share_symbol,
    compute_utilization,
    from_wad,
    to_wad,
    SYSTEM_WALLET,
    WAD,
    RAY,
    NAV_TOLERANCE,
    TrancheError,
    InsufficientCoverage,
    InvalidMarketState,
    InvalidRequestId,
    InsufficientRedeemableShares,
    RedemptionRequestCanceled,
    RedemptionRequestNotCanceled,
    NullAddress,
    Misconfiguration,
    UnknownMarket,
    ReentrantCall,
    SyncOrderViolation,
    LedgerError,
    InsufficientFunds,
    UnitNotRegistered,
    WalletNotRegistered,
)

# Asset ledger
from .ledger import Ledger, LedgerSnapshot

# Quoter
from .quoter import (
    RateRound,
    RateFeed,
    StaticRateFeed,
    TimeSeriesRateFeed,
    RateQuoter,
    QuoterError,
    StaleRate,
    InvalidRate,
    IncompleteRound,
)

# Yield distribution models
from .ydm import (
    YieldDistributionModel,
    StaticCurveYDM,
    AdaptiveCurveYDM,
    AdaptiveCurveState,
    interpolate_curve,
)

# Accountant
from .accountant import (
    Accountant,
    AccountantState,
    SyncedState,
    AssetClaims,
    calculate_sync,
    calculate_post_op,
    calculate_asset_claims,
    calculate_max_st_deposit,
    calculate_max_jt_withdraw_fraction,
)

# Redemption requests
from .redemption import RedemptionRequest, RedemptionQueue

# Collaborators
from .adapters import StrategyAdapter, LedgerStrategyAdapter
from .shares import TrancheShareLedger, calculate_fee_shares

# Configuration
from .config import (
    MarketConfig,
    build_ydm,
    load_market_config,
    load_market_configs,
    parse_market_config,
)

# Kernel
from .kernel import Kernel, Payout, create_market

# Logging
from .logging_config import configure_logging, get_logger


__all__ = [
    # Core
    'TrancheType', 'MarketState', 'ExecutionModel', 'Operation',
    'COVERAGE_GATED_OPERATIONS', 'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'build_transaction', 'Unit', 'asset_unit', 'share_unit', 'share_symbol',
    'compute_utilization', 'from_wad', 'to_wad',
    'SYSTEM_WALLET', 'WAD', 'RAY', 'NAV_TOLERANCE',

    # Errors
    'TrancheError', 'InsufficientCoverage', 'InvalidMarketState', 'InvalidRequestId',
    'InsufficientRedeemableShares', 'RedemptionRequestCanceled', 'RedemptionRequestNotCanceled',
    'NullAddress', 'Misconfiguration', 'UnknownMarket', 'ReentrantCall', 'SyncOrderViolation',
    'LedgerError', 'InsufficientFunds', 'UnitNotRegistered', 'WalletNotRegistered',
    'QuoterError', 'StaleRate', 'InvalidRate', 'IncompleteRound',

    # Ledger
    'Ledger', 'LedgerSnapshot',

    # Quoter
    'RateRound', 'RateFeed', 'StaticRateFeed', 'TimeSeriesRateFeed', 'RateQuoter',

    # YDM
    'YieldDistributionModel', 'StaticCurveYDM', 'AdaptiveCurveYDM', 'AdaptiveCurveState',
    'interpolate_curve',

    # Accountant
    'Accountant', 'AccountantState', 'SyncedState', 'AssetClaims',
    'calculate_sync', 'calculate_post_op', 'calculate_asset_claims',
    'calculate_max_st_deposit', 'calculate_max_jt_withdraw_fraction',

    # Redemption
    'RedemptionRequest', 'RedemptionQueue',

    # Collaborators
    'StrategyAdapter', 'LedgerStrategyAdapter', 'TrancheShareLedger', 'calculate_fee_shares',

    # Config
    'MarketConfig', 'build_ydm', 'load_market_config', 'load_market_configs', 'parse_market_config',

    # Kernel
    'Kernel', 'Payout', 'create_market',

    # Logging
    'configure_logging', 'get_logger',
]

__version__ = '1.0.0'
