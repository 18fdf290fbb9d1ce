"""Pendle market data source and market ingestion adapter."""

import math
import time
from datetime import datetime
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import TransportError
from ..core.interfaces import MarketDataSource
from ..core.types import BASE_CHAIN_ID, Pool, Token

logger = structlog.get_logger(__name__)

SUPPORTED_STABLECOINS = ("USDC", "sUSDe", "cUSD", "USD0++", "fUSD", "sKAITO")

DEFAULT_APY = 0.10
IMPLIED_APY_MARKUP = 1.05
DEFAULT_PT_PRICE = 0.95
DEFAULT_YT_PRICE = 0.05


class AsyncLRUCache:
    """Simple async LRU cache with TTL."""

    def __init__(self, maxsize: int = 128, ttl: int = 300) -> None:
        """Initialize LRU cache.

        Args:
            maxsize: Maximum number of cached items
            ttl: Time to live in seconds
        """
        self.maxsize = maxsize
        self.ttl = ttl
        self.cache: dict[str, tuple[Any, float]] = {}
        self.access_order: list[str] = []

    def get(self, key: str) -> Any | None:
        """Get item from cache."""
        if key not in self.cache:
            return None

        value, timestamp = self.cache[key]

        if time.time() - timestamp > self.ttl:
            del self.cache[key]
            self.access_order.remove(key)
            return None

        self.access_order.remove(key)
        self.access_order.append(key)
        return value

    def set(self, key: str, value: Any) -> None:
        """Set item in cache."""
        if key in self.cache:
            self.access_order.remove(key)

        if len(self.cache) >= self.maxsize and self.access_order:
            oldest_key = self.access_order.pop(0)
            del self.cache[oldest_key]

        self.cache[key] = (value, time.time())
        self.access_order.append(key)

    def clear(self, key: str | None = None) -> None:
        """Drop one key or everything."""
        if key is None:
            self.cache.clear()
            self.access_order.clear()
        elif key in self.cache:
            del self.cache[key]
            self.access_order.remove(key)


class TokenBucket:
    """Simple in-memory token bucket rate limiter."""

    def __init__(self, capacity: int, refill_rate: float) -> None:
        """Initialize token bucket.

        Args:
            capacity: Maximum tokens in bucket
            refill_rate: Tokens per second refill rate
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = capacity
        self.last_refill = time.time()

    async def acquire(self) -> bool:
        """Try to acquire a token, return True if successful."""
        now = time.time()
        time_passed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + time_passed * self.refill_rate)
        self.last_refill = now

        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False


def strip_chain_prefix(value: str) -> str:
    """Turn "8453-0xabc" into "0xabc"; plain addresses pass through."""
    return value.split("-")[-1] if value else value


def _symbol_from_name(name: str) -> str:
    parts = name.split("-")
    if len(parts) > 1 and parts[0] == "PT":
        return parts[1]
    return parts[0] or "UNKNOWN"


def _as_token(raw: Any, chain_id: int, fallback_symbol: str = "") -> Token | None:
    """Accept a token object, a chain-prefixed address, or a bare address."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, dict):
        return Token(
            address=strip_chain_prefix(raw.get("address", "")),
            symbol=raw.get("symbol", fallback_symbol),
            name=raw.get("name", raw.get("symbol", fallback_symbol)),
            decimals=int(raw.get("decimals", 18)),
            chain_id=int(raw.get("chainId", chain_id)),
            price_usd=raw.get("priceUSD"),
        )
    return Token(
        address=strip_chain_prefix(str(raw)),
        symbol=fallback_symbol,
        name=fallback_symbol,
        chain_id=chain_id,
    )


def _parse_maturity(raw: dict[str, Any]) -> int:
    maturity = raw.get("maturity")
    if isinstance(maturity, (int, float)) and maturity > 0:
        return int(maturity)
    expiry = raw.get("expiry")
    if expiry:
        try:
            return int(datetime.fromisoformat(expiry.replace("Z", "+00:00")).timestamp())
        except ValueError:
            logger.warning("Unparseable market expiry", expiry=expiry)
    return 0


def _fraction(value: Any) -> float:
    """Legacy flat shapes carry APYs in percent; fractions stay as-is."""
    v = float(value or 0)
    return v / 100 if v > 1 else v


def normalize_pool(
    raw: dict[str, Any], chain_id: int = BASE_CHAIN_ID, now: float | None = None
) -> Pool | None:
    """Map a raw market record onto the canonical Pool.

    Handles the structured shape returned by the active-markets endpoint
    (chain-prefixed pt/yt/sy/underlyingAsset strings, optional details block)
    and the legacy flat shape (underlyingAsset symbol string, percent APYs,
    explicit ptPrice/ytPrice).

    Args:
        raw: Raw market record
        chain_id: Chain the market lives on
        now: Optional clock override

    Returns:
        Pool, or None when the record has no address or maturity
    """
    address = raw.get("address")
    maturity = _parse_maturity(raw)
    if not address or not maturity:
        return None

    now = time.time() if now is None else now
    name = raw.get("name") or raw.get("symbol") or ""
    days = math.ceil((maturity - now) / 86400) if maturity > now else 0

    underlying_raw = raw.get("underlyingAsset")
    symbol = _symbol_from_name(name) if name else "UNKNOWN"
    if isinstance(underlying_raw, dict):
        underlying = _as_token(underlying_raw, chain_id, symbol)
    elif isinstance(underlying_raw, str) and underlying_raw.startswith(
        (f"{chain_id}-", "0x")
    ):
        underlying = _as_token(underlying_raw, chain_id, symbol)
    else:
        # Legacy shape: the field is the symbol itself
        symbol = underlying_raw or symbol
        underlying = Token(address="", symbol=symbol, name=symbol, chain_id=chain_id)

    details = raw.get("details") or {}
    if details or "apy" not in raw:
        underlying_apy = float(details.get("underlyingApy") or 0)
        implied_apy = float(details.get("impliedApy") or 0)
        aggregated_apy = float(details.get("aggregatedApy") or underlying_apy)
        apy = aggregated_apy if aggregated_apy > 0 else (underlying_apy or DEFAULT_APY)
        implied = implied_apy if implied_apy > 0 else apy * IMPLIED_APY_MARKUP
        tvl = float(details.get("totalTvl") or details.get("liquidity") or 0)
    else:
        apy = _fraction(raw.get("apy"))
        implied = _fraction(raw.get("impliedYield")) or apy * IMPLIED_APY_MARKUP
        tvl = float(raw.get("tvl") or 0)

    if "ptPrice" in raw:
        pt_price = float(raw["ptPrice"])
        yt_price = float(raw.get("ytPrice", 1 - pt_price))
    elif implied > 0 and days > 0:
        time_factor = days / 365
        pt_price = max(0.5, min(1.0, 1 - implied * time_factor))
        yt_price = max(0.0, min(0.5, implied * time_factor))
    else:
        pt_price, yt_price = DEFAULT_PT_PRICE, DEFAULT_YT_PRICE

    pt_symbol = f"PT-{underlying.symbol}"
    yt_symbol = f"YT-{underlying.symbol}"

    return Pool(
        address=address,
        name=name or pt_symbol,
        underlying=underlying,
        pt=_as_token(raw.get("pt") or raw.get("ptAddress"), chain_id, pt_symbol),
        yt=_as_token(raw.get("yt") or raw.get("ytAddress"), chain_id, yt_symbol),
        sy=_as_token(
            raw.get("sy") or raw.get("syAddress"), chain_id, f"SY-{underlying.symbol}"
        ),
        maturity=maturity,
        tvl=tvl,
        apy=apy,
        implied_yield=implied,
        pt_price=pt_price,
        yt_price=yt_price,
        chain_id=chain_id,
    )


def is_stablecoin_pool(pool: Pool) -> bool:
    return pool.underlying.symbol in SUPPORTED_STABLECOINS


def _fallback_markets() -> list[dict[str, Any]]:
    # Maturities are relative so the sample set never expires
    now = int(time.time())
    day = 86400
    rows = [
        ("sUSDe", 52_000_000, 15.8, 16.5, 0.973, 34),
        ("USDC", 38_500_000, 12.3, 13.1, 0.985, 68),
        ("USD0++", 15_200_000, 22.5, 24.8, 0.945, 97),
        ("fUSD", 8_900_000, 18.7, 19.2, 0.962, 128),
        ("cUSD", 6_200_000, 28.3, 31.5, 0.912, 154),
        ("sKAITO", 3_800_000, 35.6, 38.9, 0.889, 174),
    ]
    return [
        {
            "address": "0x" + f"{i + 1:x}" * 40,
            "name": f"PT-{symbol}",
            "underlyingAsset": symbol,
            "maturity": now + days * day,
            "tvl": tvl,
            "apy": apy,
            "impliedYield": implied,
            "ptPrice": pt_price,
            "ytPrice": round(1 - pt_price, 6),
        }
        for i, (symbol, tvl, apy, implied, pt_price, days) in enumerate(rows)
    ]


def fallback_pools(chain_id: int = BASE_CHAIN_ID) -> list[Pool]:
    """Fixed sample markets served when the live API is unavailable."""
    pools = [normalize_pool(m, chain_id) for m in _fallback_markets()]
    return [p for p in pools if p is not None]


class PendleMarketSource(MarketDataSource):
    """Pendle API market data source."""

    def __init__(
        self,
        base_url: str = "https://api-v2.pendle.finance",
        cache_ttl: int = 300,
        stablecoin_only: bool = False,
        use_fallback: bool = True,
        session: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Pendle market source.

        Args:
            base_url: Pendle API base URL
            cache_ttl: Market cache TTL in seconds
            stablecoin_only: Keep only supported stablecoin markets
            use_fallback: Serve sample markets when the API fails
            session: Optional httpx client session
        """
        self.base_url = base_url.rstrip("/")
        self.stablecoin_only = stablecoin_only
        self.use_fallback = use_fallback
        self.session = session

        self.cache = AsyncLRUCache(maxsize=32, ttl=cache_ttl)
        self.rate_limiter = TokenBucket(capacity=30, refill_rate=30 / 60)

        self.retry_config = AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
            reraise=True,
        )

    async def _make_request(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Make HTTP request with rate limiting and retries.

        Raises:
            TransportError: On non-success status, rate limiting or network failure
        """
        if not await self.rate_limiter.acquire():
            raise TransportError("pendle", "rate limit exceeded")

        url = f"{self.base_url}{endpoint}"
        headers = {"Accept": "application/json"}

        try:
            async for attempt in self.retry_config:
                with attempt:
                    if self.session:
                        response = await self.session.get(
                            url, params=params, headers=headers
                        )
                    else:
                        async with httpx.AsyncClient(timeout=30.0) as client:
                            response = await client.get(
                                url, params=params, headers=headers
                            )
                    response.raise_for_status()
                    return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Pendle API error",
                endpoint=endpoint,
                status=e.response.status_code,
                error=e.response.text[:200],
            )
            raise TransportError(
                "pendle", e.response.text or "HTTP error", e.response.status_code
            ) from e
        except httpx.RequestError as e:
            logger.error("Pendle API request failed", endpoint=endpoint, error=str(e))
            raise TransportError("pendle", str(e)) from e

    async def fetch_markets(self, chain_id: int = BASE_CHAIN_ID) -> list[dict]:
        """Fetch raw active markets for a chain, cached."""
        cache_key = f"markets-{chain_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Using cached markets", chain_id=chain_id)
            return cached

        data = await self._make_request(f"/v1/{chain_id}/markets/active")
        if isinstance(data, dict):
            markets = data.get("markets") or []
        elif isinstance(data, list):
            markets = data
        else:
            markets = []

        self.cache.set(cache_key, markets)
        logger.info("Markets fetched", chain_id=chain_id, count=len(markets))
        return markets

    async def fetch_pools(self, chain_id: int = BASE_CHAIN_ID) -> list[Pool]:
        """Fetch and normalize active pools.

        Falls back to the sample market set when the API fails or returns
        nothing and use_fallback is set.
        """
        try:
            markets = await self.fetch_markets(chain_id)
        except TransportError as e:
            if not self.use_fallback:
                raise
            logger.warning("Serving fallback pools", chain_id=chain_id, error=str(e))
            markets = []

        pools = [p for p in (normalize_pool(m, chain_id) for m in markets) if p]
        if not pools and self.use_fallback:
            pools = fallback_pools(chain_id)

        if self.stablecoin_only:
            pools = [p for p in pools if is_stablecoin_pool(p)]

        return pools

    async def close(self) -> None:
        if self.session:
            await self.session.aclose()
