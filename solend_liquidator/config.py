"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .constants import (
    DEFAULT_TIP_LAMPORTS,
    PRICE_STALENESS_THRESHOLD_SECONDS,
    PROGRAM_IDS,
    SWITCHBOARD_CROSSBAR_URL,
)

logger = logging.getLogger(__name__)

SOLEND_MARKETS_API_URL = (
    "https://api.solend.fi/v1/markets/configs?scope=all&deployment=production"
)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LiquidatorConfig:
    environment: str = "production"
    throttle_ms: int = 0
    epoch_delay_seconds: float = 0.0
    max_attempts_per_obligation: int = 20
    dry_run: bool = False
    tip_lamports: int = DEFAULT_TIP_LAMPORTS
    tip_account: str = ""
    compute_unit_price: int = 0
    lookup_table_address: str = ""


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    commitment: str = "confirmed"


@dataclass(frozen=True)
class WalletConfig:
    keypair_path: str = "/run/secrets/keypair"
    keypair_env: str = "LIQUIDATOR_KEYPAIR"


@dataclass(frozen=True)
class MarketsConfig:
    source: str = "api"
    api_url: str = SOLEND_MARKETS_API_URL
    names: tuple[str, ...] = ()
    markets: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network"
    staleness_threshold_seconds: int = PRICE_STALENESS_THRESHOLD_SECONDS
    shard_id: int = 0
    treasury_id: int = 0


@dataclass(frozen=True)
class SwitchboardConfig:
    crossbar_url: str = SWITCHBOARD_CROSSBAR_URL
    network: str = "mainnet"


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    liquidator: LiquidatorConfig = field(default_factory=LiquidatorConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    markets: MarketsConfig = field(default_factory=MarketsConfig)
    pyth: PythConfig = field(default_factory=PythConfig)
    switchboard: SwitchboardConfig = field(default_factory=SwitchboardConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


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


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_liquidator(raw: dict[str, Any]) -> LiquidatorConfig:
    return LiquidatorConfig(
        environment=raw.get("environment", "production"),
        throttle_ms=int(raw.get("throttle_ms", 0) or 0),
        epoch_delay_seconds=float(raw.get("epoch_delay_seconds", 0.0) or 0.0),
        max_attempts_per_obligation=int(raw.get("max_attempts_per_obligation", 20)),
        dry_run=_as_bool(raw.get("dry_run", False)),
        tip_lamports=int(raw.get("tip_lamports", DEFAULT_TIP_LAMPORTS)),
        tip_account=raw.get("tip_account", "") or "",
        compute_unit_price=int(raw.get("compute_unit_price", 0) or 0),
        lookup_table_address=raw.get("lookup_table_address", "") or "",
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    endpoints = [e for e in raw.get("rpc_endpoints", []) if e]
    return ChainConfig(
        rpc_endpoints=tuple(endpoints),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        commitment=raw.get("commitment", "confirmed"),
    )


def _build_wallet(raw: dict[str, Any]) -> WalletConfig:
    return WalletConfig(
        keypair_path=raw.get("keypair_path", WalletConfig.keypair_path) or "",
        keypair_env=raw.get("keypair_env", WalletConfig.keypair_env) or "",
    )


def _build_markets(raw: dict[str, Any]) -> MarketsConfig:
    return MarketsConfig(
        source=raw.get("source", "api"),
        api_url=raw.get("api_url", SOLEND_MARKETS_API_URL),
        names=tuple(raw.get("names", [])),
        markets=tuple(raw.get("markets", [])),
    )


def _build_pyth(raw: dict[str, Any]) -> PythConfig:
    return PythConfig(
        hermes_url=raw.get("hermes_url", PythConfig.hermes_url),
        staleness_threshold_seconds=int(
            raw.get("staleness_threshold_seconds", PRICE_STALENESS_THRESHOLD_SECONDS)
        ),
        shard_id=int(raw.get("shard_id", 0) or 0),
        treasury_id=int(raw.get("treasury_id", 0) or 0),
    )


def _build_switchboard(raw: dict[str, Any]) -> SwitchboardConfig:
    return SwitchboardConfig(
        crossbar_url=raw.get("crossbar_url", SWITCHBOARD_CROSSBAR_URL),
        network=raw.get("network", "mainnet"),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=_as_bool(tg.get("enabled", False)),
            bot_token=tg.get("bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        liquidator=_build_liquidator(raw.get("liquidator", {})),
        chain=_build_chain(raw.get("chain", {})),
        wallet=_build_wallet(raw.get("wallet", {})),
        markets=_build_markets(raw.get("markets", {})),
        pyth=_build_pyth(raw.get("pyth", {})),
        switchboard=_build_switchboard(raw.get("switchboard", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")

    if cfg.liquidator.environment not in PROGRAM_IDS:
        raise ValueError(
            f"Unknown environment '{cfg.liquidator.environment}'"
        )

    if cfg.liquidator.max_attempts_per_obligation < 1:
        raise ValueError("max_attempts_per_obligation must be at least 1")

    if cfg.markets.source not in ("api", "file"):
        raise ValueError(f"Unknown markets source '{cfg.markets.source}'")

    if cfg.markets.source == "file" and not cfg.markets.markets:
        raise ValueError("Markets source is 'file' but no markets are listed")

    if not cfg.wallet.keypair_path and not cfg.wallet.keypair_env:
        raise ValueError("Wallet needs a keypair_path or keypair_env")

    if cfg.switchboard.network not in ("mainnet", "devnet"):
        raise ValueError(f"Unknown Switchboard network '{cfg.switchboard.network}'")

    if not 0 <= cfg.pyth.shard_id <= 0xFFFF:
        raise ValueError("pyth.shard_id must fit in 16 bits")

    if not 0 <= cfg.pyth.treasury_id <= 0xFF:
        raise ValueError("pyth.treasury_id must fit in 8 bits")
