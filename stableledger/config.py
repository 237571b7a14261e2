"""Configuration loader: reads engine YAML, interpolates env vars, validates, builds engines."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .core import FEED_DECIMALS, ORACLE_TIMEOUT, UNIT_TYPE_DEBT, to_units
from .engine import CollateralEngine
from .ledger import Ledger
from .pricing_source import StaticPriceFeed
from .tokens import LedgerDebtToken, LedgerToken, token_unit

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CollateralConfig:
    symbol: str
    name: str = ""
    decimals: int = 18
    price: Decimal = Decimal("0")  # USD per whole token
    feed_decimals: int = FEED_DECIMALS


@dataclass(frozen=True)
class DebtTokenConfig:
    symbol: str = "DSC"
    name: str = "Decentralized Stable Coin"
    decimals: int = 18


@dataclass(frozen=True)
class EngineSettings:
    address: str = "engine"
    oracle_timeout_seconds: int = int(ORACLE_TIMEOUT.total_seconds())
    ledger_name: str = "chain"

    @property
    def oracle_timeout(self) -> timedelta:
        return timedelta(seconds=self.oracle_timeout_seconds)


@dataclass(frozen=True)
class EngineConfig:
    engine: EngineSettings = field(default_factory=EngineSettings)
    debt_token: DebtTokenConfig = field(default_factory=DebtTokenConfig)
    collateral: Tuple[CollateralConfig, ...] = ()


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _to_decimal(raw: Any, what: str) -> Decimal:
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"{what} is not a number: {raw!r}") from None


def _build_engine_settings(raw: Dict[str, Any]) -> EngineSettings:
    return EngineSettings(
        address=str(raw.get("address", "engine")),
        oracle_timeout_seconds=int(raw.get("oracle_timeout_seconds", int(ORACLE_TIMEOUT.total_seconds()))),
        ledger_name=str(raw.get("ledger_name", "chain")),
    )


def _build_debt_token(raw: Dict[str, Any]) -> DebtTokenConfig:
    return DebtTokenConfig(
        symbol=str(raw.get("symbol", "DSC")),
        name=str(raw.get("name", "Decentralized Stable Coin")),
        decimals=int(raw.get("decimals", 18)),
    )


def _build_collateral(raw: list) -> Tuple[CollateralConfig, ...]:
    entries = []
    for c in raw:
        symbol = str(c.get("symbol", ""))
        entries.append(
            CollateralConfig(
                symbol=symbol,
                name=str(c.get("name", symbol)),
                decimals=int(c.get("decimals", 18)),
                price=_to_decimal(c.get("price", "0"), f"price of {symbol}"),
                feed_decimals=int(c.get("feed_decimals", FEED_DECIMALS)),
            )
        )
    return tuple(entries)


def config_from_dict(raw: Optional[Dict[str, Any]]) -> EngineConfig:
    """Build and validate an EngineConfig from already-parsed YAML."""
    raw = _interpolate_env(raw or {})
    cfg = EngineConfig(
        engine=_build_engine_settings(raw.get("engine") or {}),
        debt_token=_build_debt_token(raw.get("debt_token") or {}),
        collateral=_build_collateral(raw.get("collateral") or []),
    )
    _validate(cfg)
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path) -> EngineConfig:
    """Load and validate engine configuration from YAML + .env.

    Args:
        config_path: Path to the YAML file.
    """
    load_dotenv()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    cfg = config_from_dict(raw)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: EngineConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.collateral:
        raise ValueError("At least one collateral asset must be configured")
    if not cfg.engine.address:
        raise ValueError("Engine address cannot be empty")
    if cfg.engine.oracle_timeout_seconds <= 0:
        raise ValueError("oracle_timeout_seconds must be positive")

    seen = {cfg.debt_token.symbol}
    for c in cfg.collateral:
        if not c.symbol:
            raise ValueError("Collateral entry has no symbol")
        if c.symbol in seen:
            raise ValueError(f"Symbol '{c.symbol}' is configured twice")
        seen.add(c.symbol)
        if c.price <= 0:
            raise ValueError(f"Collateral '{c.symbol}' needs a positive price")
        if c.decimals < 0 or c.feed_decimals < 0:
            raise ValueError(f"Collateral '{c.symbol}' has negative decimals")


def build_engine(cfg: EngineConfig, ledger: Optional[Ledger] = None) -> CollateralEngine:
    """Register tokens on a ledger, create static feeds at the configured
    prices and construct the engine."""
    if ledger is None:
        ledger = Ledger(cfg.engine.ledger_name)

    tokens = []
    feeds = []
    for c in cfg.collateral:
        ledger.register_unit(token_unit(c.symbol, c.name, c.decimals))
        tokens.append(LedgerToken(ledger, c.symbol))
        feeds.append(StaticPriceFeed(to_units(c.price, c.feed_decimals), ledger.current_time, c.feed_decimals))

    debt = cfg.debt_token
    ledger.register_unit(token_unit(debt.symbol, debt.name, debt.decimals, unit_type=UNIT_TYPE_DEBT))
    debt_token = LedgerDebtToken(ledger, debt.symbol, minter=cfg.engine.address)

    engine = CollateralEngine(
        ledger, tokens, feeds, debt_token,
        address=cfg.engine.address,
        oracle_timeout=cfg.engine.oracle_timeout,
    )
    logger.info("Built %r", engine)
    return engine
