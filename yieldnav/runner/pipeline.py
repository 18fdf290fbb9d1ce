"""Navigator pipeline: component assembly and command-line entry point."""

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal
from typing import Any

import structlog

from ..alerts.telegram import AlertFlowEvents, FanoutFlowEvents, TelegramAlertSink
from ..config.settings import PROFILES, AppSettings, load_settings
from ..core.errors import InvalidInputError, YieldNavError
from ..core.interfaces import AlertSink, ChainClient
from ..core.types import (
    Pool,
    RankedPool,
    RecommendationSummary,
    SimulatorInput,
    SimulatorOutput,
)
from ..data.octav import OctavPortfolioSource
from ..data.pendle import PendleMarketSource
from ..exec.erc20 import require_address
from ..exec.invest import InvestFlow
from ..exec.mint import MintFlow
from ..exec.oneinch import OneInchClient
from ..exec.pendle_sdk import PendleSdkClient
from ..exec.redeem import RedeemFlow
from ..exec.rpc import DryRunChainClient, JsonRpcChainClient
from ..exec.swap import SwapFlow, SwapSide
from ..persist.storage import SQLiteStorage
from ..strategy.recommender import get_recommendations_for_portfolio, map_risk_level
from ..strategy.simulator import (
    calculate_optimal_allocation,
    calculate_risk_score,
    risk_level_label,
    run_simulation,
)
from ..strategy.suggester import rank_pools_by_strategy

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog console rendering at the given level."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


class NoopAlertSink(AlertSink):
    """No-operation alert sink for when Telegram is not configured."""

    async def push(self, message: str) -> None:
        logger.info("Alert (noop)", message=message)


class NavigatorPipeline:
    """Wires data sources, strategy and transaction flows from settings."""

    def __init__(self, settings: AppSettings) -> None:
        self.settings = settings
        self.components = self._assemble(settings)
        self._storage_ready = False

        logger.info(
            "Navigator pipeline initialized",
            chain_id=settings.chain_id,
            dry_run=settings.dry_run,
            alerts=type(self.components["alerts"]).__name__,
        )

    def _assemble(self, settings: AppSettings) -> dict[str, Any]:
        """Assemble all components from settings.

        Args:
            settings: Application settings

        Returns:
            Dictionary of assembled components
        """
        components: dict[str, Any] = {}

        components["market"] = PendleMarketSource(
            base_url=settings.pendle_api_base,
            cache_ttl=settings.market_cache_ttl,
            stablecoin_only=settings.stablecoin_only,
        )
        components["portfolio"] = OctavPortfolioSource(
            base_url=settings.octav_base,
            api_key=settings.octav_api_key,
            chain_id=settings.chain_id,
        )
        components["sdk"] = PendleSdkClient(
            base_url=settings.pendle_sdk_base, chain_id=settings.chain_id
        )
        components["router"] = OneInchClient(
            base_url=settings.oneinch_base,
            api_key=settings.oneinch_api_key,
            chain_id=settings.chain_id,
        )

        rpc = JsonRpcChainClient(
            rpc_url=settings.rpc_url,
            receipt_timeout=settings.receipt_timeout_seconds,
        )
        components["rpc"] = rpc
        chain: ChainClient
        if settings.dry_run:
            chain = DryRunChainClient(rpc)
            logger.info("Using dry-run chain client")
        else:
            chain = rpc
            logger.warning("Live submission enabled", rpc_url=settings.rpc_url)
        components["chain"] = chain

        if settings.telegram_bot_token and settings.telegram_admin_ids:
            components["alerts"] = TelegramAlertSink(
                bot_token=settings.telegram_bot_token,
                admin_user_ids=settings.telegram_admin_ids,
            )
            logger.info("Using Telegram alert sink")
        else:
            components["alerts"] = NoopAlertSink()
            logger.info("Using noop alert sink (no Telegram config)")

        storage = SQLiteStorage(
            db_path=settings.database_url.replace("sqlite+aiosqlite:///", "")
        )
        components["storage"] = storage

        events = FanoutFlowEvents([storage, AlertFlowEvents(components["alerts"])])
        components["events"] = events

        wallet = settings.wallet_address or ""
        mint = MintFlow(
            components["sdk"],
            chain,
            wallet,
            slippage=settings.mint_slippage,
            events=events,
            store=storage,
            approval_settle_seconds=settings.approval_settle_seconds,
            chain_id=settings.chain_id,
        )
        components["mint"] = mint
        components["invest"] = InvestFlow(
            mint,
            components["router"],
            chain,
            wallet,
            bridge_token=settings.bridge_token_address,
            bridge_decimals=settings.bridge_token_decimals,
            slippage_pct=settings.conversion_slippage_pct,
            slippage_buffer=settings.slippage_buffer,
            approval_settle_seconds=settings.approval_settle_seconds,
            swap_settle_seconds=settings.swap_settle_seconds,
            refresh_delay_seconds=settings.refresh_delay_seconds,
            events=events,
            chain_id=settings.chain_id,
        )
        components["redeem"] = RedeemFlow(
            components["sdk"],
            chain,
            wallet,
            slippage=settings.mint_slippage,
            events=events,
            approval_settle_seconds=settings.approval_settle_seconds,
            chain_id=settings.chain_id,
        )
        components["swap"] = SwapFlow(
            components["sdk"],
            chain,
            wallet,
            slippage=settings.mint_slippage,
            events=events,
            approval_settle_seconds=settings.approval_settle_seconds,
            chain_id=settings.chain_id,
        )

        return components

    async def _ensure_storage(self) -> None:
        if not self._storage_ready:
            await self.components["storage"].initialize()
            self._storage_ready = True

    async def pools(self) -> list[Pool]:
        return await self.components["market"].fetch_pools(self.settings.chain_id)

    async def find_pool(self, address: str) -> Pool:
        """Look up an active pool by market address.

        Raises:
            InvalidInputError: If no active pool has that address
        """
        wanted = address.lower()
        for pool in await self.pools():
            if pool.address.lower() == wanted:
                return pool
        raise InvalidInputError(f"Unknown pool: {address}")

    async def recommend(
        self, wallet: str, risk: str | None = None
    ) -> RecommendationSummary:
        """Build portfolio recommendations for a wallet.

        Args:
            wallet: Wallet address to read holdings for
            risk: Risk label; defaults to the configured profile

        Returns:
            Recommendation summary across the wallet's assets
        """
        address = require_address(wallet, "wallet")
        assets = await self.components["portfolio"].fetch_assets(address)
        pools = await self.pools()
        return get_recommendations_for_portfolio(
            assets, pools, risk or self.settings.risk_profile
        )

    async def rank(self, risk: str | None = None, limit: int = 5) -> list[RankedPool]:
        profile = map_risk_level(risk or self.settings.risk_profile)
        return rank_pools_by_strategy(await self.pools(), profile)[:limit]

    async def invest(self, pool_address: str, amount: Decimal) -> str:
        await self._ensure_storage()
        pool = await self.find_pool(pool_address)
        return await self.components["invest"].execute(pool, amount)

    async def redeem(self, pool_address: str, amount: Decimal) -> str:
        await self._ensure_storage()
        pool = await self.find_pool(pool_address)
        return await self.components["redeem"].execute(pool, amount)

    async def swap(self, pool_address: str, side: SwapSide, amount: Decimal) -> str:
        await self._ensure_storage()
        pool = await self.find_pool(pool_address)
        return await self.components["swap"].execute(pool, side, amount)

    def simulate(
        self, sim: SimulatorInput, risk: str | None = None
    ) -> tuple[SimulatorOutput, dict[str, Any]]:
        """Project a single-leg position and the split for its market.

        Returns:
            Simulation output and a summary with risk label and allocation
        """
        output = run_simulation(sim)
        score = calculate_risk_score(sim)
        allocation = calculate_optimal_allocation(
            sim, map_risk_level(risk or self.settings.risk_profile)
        )
        summary = {
            "risk_score": score,
            "risk_level": risk_level_label(score),
            "allocation": allocation.model_dump(),
        }
        return output, summary

    async def stop(self) -> None:
        """Close network sessions and storage."""
        logger.info("Stopping navigator pipeline")
        for name in ("market", "portfolio", "sdk", "router", "alerts"):
            close = getattr(self.components[name], "close", None)
            if close is not None:
                await close()
        await self.components["rpc"].client.aclose()
        await self.components["storage"].close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pendle PT/YT yield navigator")
    parser.add_argument(
        "--config", default="configs/dev.yaml", help="Configuration file path"
    )
    parser.add_argument(
        "--profile", default="dev", choices=list(PROFILES), help="Configuration profile"
    )
    parser.add_argument("--log-level", default="INFO", help="Log level")

    sub = parser.add_subparsers(dest="command", required=True)

    recommend = sub.add_parser("recommend", help="Recommend pools for a wallet")
    recommend.add_argument("--wallet", required=True, help="Wallet address")
    recommend.add_argument(
        "--risk",
        choices=["conservative", "neutral", "moderate", "aggressive"],
        help="Risk level",
    )

    rank = sub.add_parser("pools", help="Rank active pools")
    rank.add_argument("--risk", help="Risk level")
    rank.add_argument("--limit", type=int, default=5, help="Number of pools")

    for name in ("invest", "redeem"):
        cmd = sub.add_parser(name, help=f"{name.capitalize()} into a pool")
        cmd.add_argument("--pool", required=True, help="Pool (market) address")
        cmd.add_argument("--amount", required=True, type=Decimal, help="Amount")

    swap = sub.add_parser("swap", help="Sell one pool leg for the other")
    swap.add_argument("--pool", required=True, help="Pool (market) address")
    swap.add_argument("--side", required=True, choices=["yt-to-pt", "pt-to-yt"])
    swap.add_argument("--amount", required=True, type=Decimal, help="Amount sold")

    simulate = sub.add_parser("simulate", help="Project a PT or YT position")
    simulate.add_argument("--type", required=True, choices=["PT", "YT"])
    simulate.add_argument("--amount", required=True, type=float, help="USD amount")
    simulate.add_argument("--duration", required=True, type=float, help="Days held")
    simulate.add_argument("--apy", required=True, type=float, help="Expected APY (%%)")
    simulate.add_argument("--realized-apy", type=float, help="Realized APY (%%)")
    simulate.add_argument("--risk", help="Risk level for the allocation")

    return parser


async def run_command(pipeline: NavigatorPipeline, args: argparse.Namespace) -> str:
    """Run one CLI command and return its printable output."""
    if args.command == "recommend":
        summary = await pipeline.recommend(args.wallet, args.risk)
        return summary.model_dump_json(indent=2)
    if args.command == "pools":
        ranked = await pipeline.rank(args.risk, args.limit)
        return "\n".join(r.model_dump_json() for r in ranked)
    if args.command == "invest":
        return await pipeline.invest(args.pool, args.amount)
    if args.command == "redeem":
        return await pipeline.redeem(args.pool, args.amount)
    if args.command == "swap":
        return await pipeline.swap(args.pool, args.side, args.amount)
    if args.command == "simulate":
        sim = SimulatorInput(
            amount=args.amount,
            type=args.type,
            duration=args.duration,
            expected_apy=args.apy,
            realized_apy=args.realized_apy,
        )
        output, summary = pipeline.simulate(sim, args.risk)
        return json.dumps({**output.model_dump(), **summary}, indent=2)
    raise InvalidInputError(f"Unknown command: {args.command}")


async def main(argv: list[str] | None = None) -> int:
    """Main entry point for the navigator CLI."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        settings = load_settings(args.profile, args.config)
    except (FileNotFoundError, ValueError) as e:
        logger.error("Failed to load settings", config=args.config, error=str(e))
        return 2

    pipeline = NavigatorPipeline(settings)
    try:
        output = await run_command(pipeline, args)
    except YieldNavError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        return 1
    finally:
        await pipeline.stop()

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
