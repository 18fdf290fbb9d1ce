"""Application settings and configuration management."""

from pathlib import Path
from typing import Literal

import structlog
import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

PROFILES = ("dev", "prod")


class AppSettings(BaseSettings):
    """Application settings with environment variable support."""

    env: Literal["dev", "prod"] = Field(default="dev", description="Environment")

    # Chain
    chain_id: int = Field(default=8453, description="Chain id (Base)")
    rpc_url: str = Field(
        default="https://mainnet.base.org", description="EVM JSON-RPC URL"
    )
    wallet_address: str | None = Field(
        default=None, description="Wallet address used as sender and receiver"
    )

    # External services
    pendle_api_base: str = Field(
        default="https://api-v2.pendle.finance", description="Pendle market API"
    )
    pendle_sdk_base: str = Field(
        default="https://api-v2.pendle.finance/core",
        description="Pendle hosted SDK base URL",
    )
    oneinch_base: str = Field(
        default="https://api.1inch.dev/swap/v6.0", description="1inch swap API base"
    )
    oneinch_api_key: str | None = Field(default=None, description="1inch API key")
    octav_base: str = Field(
        default="https://api.octav.fi", description="Octav portfolio API base"
    )
    octav_api_key: str | None = Field(default=None, description="Octav API key")

    # Market data
    market_cache_ttl: int = Field(default=300, description="Market cache TTL (s)")
    stablecoin_only: bool = Field(
        default=False, description="Only keep stablecoin markets"
    )

    # Execution
    mint_slippage: float = Field(default=0.02, description="Mint/redeem slippage")
    conversion_slippage_pct: float = Field(
        default=2.0, description="Conversion slippage in percent"
    )
    slippage_buffer: float = Field(
        default=0.98, description="Fraction of converted amount forwarded to mint"
    )
    approval_settle_seconds: float = Field(
        default=2.0, description="Delay after approval confirmation"
    )
    swap_settle_seconds: float = Field(
        default=2.5, description="Delay after conversion confirmation"
    )
    refresh_delay_seconds: float = Field(
        default=3.0, description="Delay before balance refresh after completion"
    )
    bridge_token_address: str = Field(
        default="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        description="Bridging asset (USDC on Base)",
    )
    bridge_token_decimals: int = Field(default=6, description="Bridging decimals")
    receipt_timeout_seconds: float = Field(
        default=120.0, description="Receipt polling timeout"
    )

    # Strategy
    risk_profile: Literal["conservative", "neutral", "moderate", "aggressive"] = (
        Field(default="neutral", description="Default risk label")
    )

    # Notifications
    telegram_bot_token: str | None = Field(
        default=None, description="Telegram bot token"
    )
    telegram_admin_ids: list[int] = Field(
        default_factory=list, description="Telegram admin user IDs"
    )

    # Data storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./yieldnav.sqlite",
        description="Database connection URL",
    )

    # Execution mode
    dry_run: bool = Field(default=True, description="Build but never submit txs")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("mint_slippage")
    @classmethod
    def _check_mint_slippage(cls, v: float) -> float:
        if not 0.001 <= v <= 0.1:
            raise ValueError(f"mint_slippage {v} outside [0.001, 0.1]")
        return v

    @field_validator("slippage_buffer")
    @classmethod
    def _check_slippage_buffer(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError(f"slippage_buffer {v} outside (0, 1]")
        return v


def load_settings(profile: str, yaml_path: str) -> AppSettings:
    """Load settings from YAML file and environment variables.

    Args:
        profile: Configuration profile name (dev, prod)
        yaml_path: Path to YAML configuration file

    Returns:
        AppSettings instance with loaded configuration

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValidationError: If configuration is invalid
        ValueError: If profile is invalid
    """
    if profile not in PROFILES:
        raise ValueError(f"Invalid profile: {profile}. Must be one of: dev, prod")

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    try:
        with open(yaml_file, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        yaml_config["env"] = profile

        # prod submits transactions; dev follows the YAML
        if profile == "prod":
            yaml_config["dry_run"] = False

        logger.info("Loading configuration", profile=profile, yaml_path=yaml_path)

        settings = AppSettings(**yaml_config)

        logger.info(
            "Configuration loaded successfully",
            profile=profile,
            dry_run=settings.dry_run,
            chain_id=settings.chain_id,
        )

        return settings

    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML configuration", error=str(e))
        raise ValueError(f"Invalid YAML configuration: {e}") from e
    except ValidationError as e:
        logger.error("Configuration validation failed", error=str(e))
        raise
