"""
config.py - Market configuration

MarketConfig is the frozen, validated parameter set of one market. It can be
built in code or loaded from YAML:

    markets:
      senior-1:
        st_asset: USDC
        jt_asset: USDC
        coverage: "0.2"
        beta_wad: 0                  # fractions may be given as WAD integers
        jt_protocol_fee_rate: "0.1"
        junior_redemption_delay: 604800
        fixed_term_blocked_operations: [st_deposit, jt_request_redeem]
        ydm:
          type: static
          share_at_zero: "0.05"
          target_utilization: "0.8"
          share_at_target: "0.2"
          share_at_full: "0.6"

Failure modes:
    * Missing YAML file  -> FileNotFoundError propagates.
    * Malformed YAML  -> yaml.YAMLError propagates.
    * Missing required keys  -> KeyError propagates.
    * Out-of-domain values  -> Misconfiguration / NullAddress.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Union

import yaml

from .core import (
    ONE, ZERO,
    ExecutionModel, Operation, TrancheType,
    Misconfiguration, NullAddress,
    from_wad, to_decimal,
)
from .accountant import validate_parameters
from .ydm import AdaptiveCurveYDM, StaticCurveYDM, YieldDistributionModel


DEFAULT_FIXED_TERM_BLOCKED_OPERATIONS: FrozenSet[Operation] = frozenset({
    Operation.ST_DEPOSIT,
    Operation.JT_REQUEST_REDEEM,
})

DEFAULT_JUNIOR_REDEMPTION_DELAY = 7 * 24 * 3600
DEFAULT_MAX_RATE_STALENESS = 24 * 3600


def default_ydm() -> StaticCurveYDM:
    return StaticCurveYDM(
        share_at_zero=Decimal("0.05"),
        target_utilization=Decimal("0.8"),
        share_at_target=Decimal("0.2"),
        share_at_full=Decimal("0.6"),
    )


@dataclass(frozen=True)
class MarketConfig:
    """
    Parameters of one market.

    Attributes:
        st_asset / jt_asset: Tranche units deposited into each tranche.
        coverage, beta, lltv, fee rates: Fractions, see AccountantState.
        ydm: Yield distribution model.
        protocol_fee_recipient: Wallet receiving protocol fee shares.
        fixed_term_duration: Seconds; 0 disables the fixed-term state.
        junior_redemption_delay / senior_redemption_delay: Seconds between an
            asynchronous redemption request and the time it can be claimed.
        st_redemption_model / jt_redemption_model: SYNC redeems directly,
            ASYNC goes through the request table.
        fixed_term_blocked_operations: Operations rejected in FIXED_TERM.
        nav_unit: Accounting denomination; a tranche unit equal to it converts at 1.
        max_rate_staleness: Seconds after which a quoted rate is stale.
    """
    st_asset: str
    jt_asset: str
    coverage: Decimal
    beta: Decimal
    ydm: YieldDistributionModel = field(default_factory=default_ydm)
    protocol_fee_recipient: str = "protocol_treasury"
    st_protocol_fee_rate: Decimal = ZERO
    jt_protocol_fee_rate: Decimal = ZERO
    lltv: Decimal = ONE
    fixed_term_duration: int = 0
    junior_redemption_delay: int = DEFAULT_JUNIOR_REDEMPTION_DELAY
    senior_redemption_delay: int = 0
    st_redemption_model: ExecutionModel = ExecutionModel.SYNC
    jt_redemption_model: ExecutionModel = ExecutionModel.ASYNC
    fixed_term_blocked_operations: FrozenSet[Operation] = DEFAULT_FIXED_TERM_BLOCKED_OPERATIONS
    nav_unit: str = "USD"
    max_rate_staleness: int = DEFAULT_MAX_RATE_STALENESS

    def __post_init__(self):
        for name in ("coverage", "beta", "st_protocol_fee_rate", "jt_protocol_fee_rate", "lltv"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        object.__setattr__(self, "fixed_term_blocked_operations",
                           frozenset(self.fixed_term_blocked_operations))
        if not self.st_asset or not self.jt_asset:
            raise NullAddress("st_asset and jt_asset are required")
        if not self.protocol_fee_recipient:
            raise NullAddress("protocol_fee_recipient cannot be empty")
        validate_parameters(self.coverage, self.beta, self.st_protocol_fee_rate,
                            self.jt_protocol_fee_rate, self.lltv, self.fixed_term_duration)
        for name in ("junior_redemption_delay", "senior_redemption_delay", "max_rate_staleness"):
            if int(getattr(self, name)) < 0:
                raise Misconfiguration(f"{name} must be >= 0, got {getattr(self, name)}")

    def asset(self, tranche: TrancheType) -> str:
        return self.st_asset if tranche is TrancheType.SENIOR else self.jt_asset

    def redemption_model(self, tranche: TrancheType) -> ExecutionModel:
        return self.st_redemption_model if tranche is TrancheType.SENIOR else self.jt_redemption_model

    def redemption_delay(self, tranche: TrancheType) -> int:
        return self.senior_redemption_delay if tranche is TrancheType.SENIOR else self.junior_redemption_delay


# ============================================================================
# PARSING
# ============================================================================

def load_yaml_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_fraction(data: Mapping[str, Any], key: str, default: Any = None) -> Decimal:
    """
    Read a fraction given either as a decimal (`key`) or a WAD integer (`key_wad`).

    Raises:
        KeyError: if neither form is present and there is no default
        Misconfiguration: if both forms are present
    """
    wad_key = f"{key}_wad"
    if key in data and wad_key in data:
        raise Misconfiguration(f"Give either {key} or {wad_key}, not both")
    if wad_key in data:
        return from_wad(int(data[wad_key]))
    if key in data:
        return to_decimal(data[key])
    if default is None:
        raise KeyError(key)
    return to_decimal(default)


def build_ydm(data: Mapping[str, Any]) -> YieldDistributionModel:
    """
    Build a yield distribution model from its config mapping.

    Raises:
        Misconfiguration: if the type is unknown or a parameter is out of domain
    """
    kind = str(data.get("type", "static")).lower()
    if kind == "static":
        return StaticCurveYDM(
            share_at_zero=parse_fraction(data, "share_at_zero"),
            target_utilization=parse_fraction(data, "target_utilization"),
            share_at_target=parse_fraction(data, "share_at_target"),
            share_at_full=parse_fraction(data, "share_at_full"),
        )
    if kind == "adaptive":
        kwargs = dict(
            target_utilization=parse_fraction(data, "target_utilization"),
            initial_target_share=parse_fraction(data, "initial_target_share"),
            min_target_share=parse_fraction(data, "min_target_share"),
            max_target_share=parse_fraction(data, "max_target_share"),
        )
        if "steepness" in data:
            kwargs["steepness"] = to_decimal(data["steepness"])
        if "adjustment_speed" in data:
            kwargs["adjustment_speed"] = to_decimal(data["adjustment_speed"])
        return AdaptiveCurveYDM(**kwargs)
    raise Misconfiguration(f"Unknown yield distribution model type {kind!r}")


def parse_operations(values) -> FrozenSet[Operation]:
    try:
        return frozenset(Operation(str(v).lower()) for v in values)
    except ValueError as exc:
        raise Misconfiguration(f"Unknown operation in {values!r}") from exc


def parse_execution_model(value: Any) -> ExecutionModel:
    try:
        return ExecutionModel(str(value).lower())
    except ValueError as exc:
        raise Misconfiguration(f"Unknown execution model {value!r}") from exc


def parse_market_config(data: Mapping[str, Any]) -> MarketConfig:
    """Parse a MarketConfig from a dict."""
    kwargs: Dict[str, Any] = dict(
        st_asset=data["st_asset"],
        jt_asset=data["jt_asset"],
        coverage=parse_fraction(data, "coverage"),
        beta=parse_fraction(data, "beta", ZERO),
        st_protocol_fee_rate=parse_fraction(data, "st_protocol_fee_rate", ZERO),
        jt_protocol_fee_rate=parse_fraction(data, "jt_protocol_fee_rate", ZERO),
        lltv=parse_fraction(data, "lltv", ONE),
    )
    if "ydm" in data:
        kwargs["ydm"] = build_ydm(data["ydm"])
    for key in ("fixed_term_duration", "junior_redemption_delay",
                "senior_redemption_delay", "max_rate_staleness"):
        if key in data:
            kwargs[key] = int(data[key])
    for key in ("protocol_fee_recipient", "nav_unit"):
        if key in data:
            kwargs[key] = str(data[key])
    for key in ("st_redemption_model", "jt_redemption_model"):
        if key in data:
            kwargs[key] = parse_execution_model(data[key])
    if "fixed_term_blocked_operations" in data:
        kwargs["fixed_term_blocked_operations"] = parse_operations(
            data["fixed_term_blocked_operations"] or []
        )
    return MarketConfig(**kwargs)


def load_market_configs(path: Union[str, Path]) -> Dict[str, MarketConfig]:
    """Load every market under the top-level `markets` key."""
    data = load_yaml_file(Path(path))
    return {str(market_id): parse_market_config(body)
            for market_id, body in (data.get("markets") or {}).items()}


def load_market_config(path: Union[str, Path], market_id: str) -> MarketConfig:
    """
    Raises:
        KeyError: if the file has no such market
    """
    markets = load_market_configs(path)
    if market_id not in markets:
        raise KeyError(f"Market {market_id} not found in {path}")
    return markets[market_id]
