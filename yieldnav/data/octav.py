"""Octav portfolio source with a sample-data fallback."""

import time
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.interfaces import PortfolioSource
from ..core.types import BASE_CHAIN_ID, Token, WalletAsset
from ..exec.erc20 import to_base_units

logger = structlog.get_logger(__name__)

# Octav omits decimals; these differ from the 18-decimal default
KNOWN_DECIMALS = {"USDC": 6, "USDT": 6, "USDBC": 6}


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def map_octav_asset(
    asset: dict[str, Any],
    chain_id: int = BASE_CHAIN_ID,
    captured_at: float | None = None,
    decimals: int = 18,
) -> WalletAsset:
    """Map one Octav wallet asset onto WalletAsset.

    Args:
        asset: Raw asset with symbol, balance, value, price, contractAddress
        chain_id: Chain the wallet is on
        captured_at: Capture timestamp (defaults to now)
        decimals: Token decimals; Octav does not report them

    Returns:
        WalletAsset snapshot
    """
    symbol = asset.get("symbol", "")
    decimals = KNOWN_DECIMALS.get(symbol.upper(), decimals)
    balance = _to_float(asset.get("balance"))
    token = Token(
        address=asset.get("contractAddress") or "",
        symbol=symbol,
        name=symbol,
        decimals=decimals,
        chain_id=chain_id,
        price_usd=_to_float(asset.get("price")),
    )
    return WalletAsset(
        token=token,
        balance_raw=to_base_units(asset.get("balance") or 0, decimals),
        balance=balance,
        value_usd=_to_float(asset.get("value")),
        captured_at=captured_at if captured_at is not None else time.time(),
    )


def extract_wallet_assets(portfolio: dict[str, Any]) -> list[dict[str, Any]]:
    """Assets held directly in the wallet (the "wallet" protocol entry)."""
    protocols = portfolio.get("assetByProtocols")
    if not isinstance(protocols, dict):
        return []
    wallet = protocols.get("wallet") or {}
    return wallet.get("assets") or []


SAMPLE_ASSETS: list[dict[str, Any]] = [
    {
        "symbol": "USDC",
        "balance": "5000",
        "price": "1.0",
        "value": "5000",
        "contractAddress": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    },
    {
        "symbol": "sUSDe",
        "balance": "10000",
        "price": "1.0",
        "value": "10000",
        "contractAddress": "",
    },
    {
        "symbol": "USD0++",
        "balance": "2500",
        "price": "0.98",
        "value": "2450",
        "contractAddress": "",
    },
]


def sample_assets(chain_id: int = BASE_CHAIN_ID) -> list[WalletAsset]:
    """Small fixed dataset used when no live portfolio is available."""
    return [map_octav_asset(a, chain_id) for a in SAMPLE_ASSETS]


class OctavPortfolioSource(PortfolioSource):
    """Octav portfolio API source."""

    def __init__(
        self,
        base_url: str = "https://api.octav.fi",
        api_key: str | None = None,
        chain_id: int = BASE_CHAIN_ID,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Octav portfolio source.

        Args:
            base_url: Octav API base URL
            api_key: Bearer API key; without it sample data is served
            chain_id: Chain assigned to returned assets
            session: Optional httpx client session
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.chain_id = chain_id
        self.session = session

        self.retry_config = AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
            reraise=True,
        )

    async def _get_portfolio(self, address: str) -> Any:
        url = f"{self.base_url}/v1/portfolio"
        params = {"addresses": address, "includeImages": "false", "waitForSync": "false"}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async for attempt in self.retry_config:
            with attempt:
                if self.session:
                    response = await self.session.get(url, params=params, headers=headers)
                else:
                    async with httpx.AsyncClient(timeout=30.0) as client:
                        response = await client.get(url, params=params, headers=headers)
                response.raise_for_status()
                return response.json()

    async def fetch_assets(self, address: str) -> list[WalletAsset]:
        """Fetch wallet assets; degrade to sample data on any failure."""
        if not self.api_key:
            logger.warning("Octav API key not set, using sample portfolio")
            return sample_assets(self.chain_id)

        try:
            data = await self._get_portfolio(address)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Octav portfolio fetch failed, using sample portfolio",
                address=address,
                error=str(e),
            )
            return sample_assets(self.chain_id)

        # One address requested; a list response carries one portfolio
        portfolio = data[0] if isinstance(data, list) and data else data
        if not isinstance(portfolio, dict):
            logger.warning("Malformed Octav response, using sample portfolio")
            return sample_assets(self.chain_id)

        captured_at = time.time()
        assets = [
            map_octav_asset(a, self.chain_id, captured_at)
            for a in extract_wallet_assets(portfolio)
            if isinstance(a, dict)
        ]
        logger.info(
            "Portfolio fetched",
            address=address,
            assets=len(assets),
            networth=portfolio.get("networth"),
        )
        return assets

    async def close(self) -> None:
        if self.session:
            await self.session.aclose()
