"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .assets import AssetInfo, AssetRegistry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ("https://fullnode.mainnet.sui.io:443",)
    rpc_timeout: int = 30


@dataclass(frozen=True)
class WalletConfig:
    address: str = ""


@dataclass(frozen=True)
class SuilendConfig:
    package_id: str = ""
    lending_market_id: str = ""
    lending_market_type: str = ""
    price_info_objects: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NaviConfig:
    package_id: str = ""
    storage_id: str = ""
    incentive_v2_id: str = ""
    incentive_v3_id: str = ""
    oracle_package_id: str = ""
    price_oracle_id: str = ""
    api_url: str = "https://open-api.naviprotocol.io/api/navi"
    pools: dict[str, str] = field(default_factory=dict)
    price_feed_objects: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProtocolsConfig:
    suilend: SuilendConfig = field(default_factory=SuilendConfig)
    navi: NaviConfig = field(default_factory=NaviConfig)


@dataclass(frozen=True)
class FlashLoanConfig:
    package_id: str = ""
    version_id: str = ""
    market_id: str = ""
    fee_bps: int = 0
    asset_tags: dict[str, str] = field(
        default_factory=lambda: {"USDC": "usdc", "SUI": "sui", "USDT": "usdt"}
    )


@dataclass(frozen=True)
class SwapConfig:
    api_url: str = "https://api.7k.ag"
    partner: str = ""
    slippage_bps: int = 100


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "pyth"
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class StrategyConfig:
    funding_asset: str = "USDC"
    leverage_flash_buffer_bps: int = 200
    deleverage_flash_buffer_bps: int = 50
    deleverage_swap_margin_bps: int = 200
    withdraw_safety_factor: float = 0.95
    gas_budget: int = 100_000_000


@dataclass(frozen=True)
class AppConfig:
    chain: ChainConfig = field(default_factory=ChainConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    assets: tuple[AssetInfo, ...] = ()
    protocols: ProtocolsConfig = field(default_factory=ProtocolsConfig)
    flash_loan: FlashLoanConfig = field(default_factory=FlashLoanConfig)
    swap: SwapConfig = field(default_factory=SwapConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)

    def asset_registry(self) -> AssetRegistry:
        """Built-in assets extended (or overridden) by configured ones."""
        registry = AssetRegistry()
        for asset in self.assets:
            registry.add(asset)
        return registry


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


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    endpoints = raw.get("rpc_endpoints", list(ChainConfig.rpc_endpoints))
    return ChainConfig(
        rpc_endpoints=tuple(endpoints),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
    )


def _build_assets(raw: dict[str, Any]) -> tuple[AssetInfo, ...]:
    assets: list[AssetInfo] = []
    for symbol, cfg in raw.items():
        assets.append(
            AssetInfo(
                symbol=symbol,
                coin_type=cfg.get("coin_type", ""),
                decimals=int(cfg.get("decimals", 9)),
            )
        )
    return tuple(assets)


def _build_protocols(raw: dict[str, Any]) -> ProtocolsConfig:
    sl = raw.get("suilend", {})
    nv = raw.get("navi", {})
    return ProtocolsConfig(
        suilend=SuilendConfig(
            package_id=sl.get("package_id", ""),
            lending_market_id=sl.get("lending_market_id", ""),
            lending_market_type=sl.get("lending_market_type", ""),
            price_info_objects=dict(sl.get("price_info_objects", {})),
        ),
        navi=NaviConfig(
            package_id=nv.get("package_id", ""),
            storage_id=nv.get("storage_id", ""),
            incentive_v2_id=nv.get("incentive_v2_id", ""),
            incentive_v3_id=nv.get("incentive_v3_id", ""),
            oracle_package_id=nv.get("oracle_package_id", ""),
            price_oracle_id=nv.get("price_oracle_id", ""),
            api_url=nv.get("api_url", NaviConfig.api_url),
            pools=dict(nv.get("pools", {})),
            price_feed_objects=dict(nv.get("price_feed_objects", {})),
        ),
    )


def _build_flash_loan(raw: dict[str, Any]) -> FlashLoanConfig:
    tags = raw.get("asset_tags")
    return FlashLoanConfig(
        package_id=raw.get("package_id", ""),
        version_id=raw.get("version_id", ""),
        market_id=raw.get("market_id", ""),
        fee_bps=int(raw.get("fee_bps", 0)),
        asset_tags=dict(tags) if tags else FlashLoanConfig().asset_tags,
    )


def _build_swap(raw: dict[str, Any]) -> SwapConfig:
    return SwapConfig(
        api_url=raw.get("api_url", SwapConfig.api_url),
        partner=raw.get("partner", ""),
        slippage_bps=int(raw.get("slippage_bps", 100)),
    )


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "pyth"),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
    )


def _build_strategy(raw: dict[str, Any]) -> StrategyConfig:
    return StrategyConfig(
        funding_asset=raw.get("funding_asset", "USDC"),
        leverage_flash_buffer_bps=int(raw.get("leverage_flash_buffer_bps", 200)),
        deleverage_flash_buffer_bps=int(raw.get("deleverage_flash_buffer_bps", 50)),
        deleverage_swap_margin_bps=int(raw.get("deleverage_swap_margin_bps", 200)),
        withdraw_safety_factor=float(raw.get("withdraw_safety_factor", 0.95)),
        gas_budget=int(raw.get("gas_budget", 100_000_000)),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate configuration from YAML + .env.

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
        chain=_build_chain(raw.get("chain", {})),
        wallet=WalletConfig(address=raw.get("wallet", {}).get("address", "")),
        assets=_build_assets(raw.get("assets", {})),
        protocols=_build_protocols(raw.get("protocols", {})),
        flash_loan=_build_flash_loan(raw.get("flash_loan", {})),
        swap=_build_swap(raw.get("swap", {})),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
        strategy=_build_strategy(raw.get("strategy", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")

    if not cfg.protocols.suilend.package_id and not cfg.protocols.navi.package_id:
        raise ValueError("At least one lending protocol must have a package_id")

    strategy = cfg.strategy
    for name in (
        "leverage_flash_buffer_bps",
        "deleverage_flash_buffer_bps",
        "deleverage_swap_margin_bps",
    ):
        if getattr(strategy, name) <= 0:
            raise ValueError(f"strategy.{name} must be positive")

    if not 0 < strategy.withdraw_safety_factor < 1:
        raise ValueError("strategy.withdraw_safety_factor must be between 0 and 1")

    if cfg.asset_registry().by_symbol(strategy.funding_asset) is None:
        raise ValueError(f"Unknown funding asset '{strategy.funding_asset}'")

    for asset in cfg.assets:
        if "::" not in asset.coin_type:
            raise ValueError(f"Asset '{asset.symbol}' has no valid coin_type")
