"""Pendle hosted SDK client for mint, redeem and swap transaction data."""

from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import TransportError
from ..core.types import (
    BASE_CHAIN_ID,
    PendingTransaction,
    PreparedTransaction,
    TokenApproval,
)
from .erc20 import MAX_UINT256, encode_approve, normalize_address

logger = structlog.get_logger(__name__)


def build_approval_tx(
    token: str,
    spender: str,
    amount: int = MAX_UINT256,
    chain_id: int = BASE_CHAIN_ID,
    sender: str | None = None,
) -> PendingTransaction:
    """ERC-20 approve transaction for the given spender."""
    return PendingTransaction(
        chain_id=chain_id,
        to=normalize_address(token),
        data=encode_approve(spender, amount),
        sender=sender,
    )


def parse_convert_response(
    data: dict[str, Any], chain_id: int = BASE_CHAIN_ID
) -> PreparedTransaction:
    """Take the first route of a convert response.

    Raises:
        TransportError: If the response carries no routes
    """
    routes = data.get("routes") or []
    if not routes:
        raise TransportError("pendle-sdk", "No routes found in SDK response")

    route = routes[0]
    tx = route.get("tx") or {}
    spender = tx.get("to")

    approvals = [
        TokenApproval(
            token=normalize_address(a.get("token", "")),
            amount=int(a.get("amount") or 0),
            spender=spender,
        )
        for a in data.get("requiredApprovals") or []
    ]

    return PreparedTransaction(
        tx=PendingTransaction(
            chain_id=chain_id,
            to=tx.get("to", ""),
            data=tx.get("data", "0x"),
            sender=tx.get("from"),
            value=int(tx.get("value") or 0),
        ),
        required_approvals=approvals,
        price_impact=float((route.get("data") or {}).get("priceImpact") or 0),
        outputs=route.get("outputs") or [],
    )


class PendleSdkClient:
    """Client for the Pendle hosted SDK convert endpoint."""

    def __init__(
        self,
        base_url: str = "https://api-v2.pendle.finance/core",
        chain_id: int = BASE_CHAIN_ID,
        session: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize Pendle SDK client.

        Args:
            base_url: Hosted SDK base URL
            chain_id: Chain to build transactions for
            session: Optional httpx client
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self.session = session or httpx.AsyncClient(timeout=timeout)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        clean = {k: v for k, v in params.items() if v is not None}
        response = await self.session.get(
            url, params=clean, headers={"Accept": "application/json"}
        )
        if response.status_code >= 400:
            logger.error(
                "Pendle SDK error",
                path=path,
                status=response.status_code,
                error=response.text[:200],
            )
            raise TransportError(
                "pendle-sdk", response.text or "HTTP error", response.status_code
            )
        return response.json()

    async def convert(
        self,
        tokens_in: list[str],
        amounts_in: list[int],
        tokens_out: list[str],
        receiver: str,
        slippage: float = 0.02,
        enable_aggregator: bool | None = None,
        aggregators: str | None = None,
        additional_data: str | None = None,
    ) -> PreparedTransaction:
        """Request transaction data for a convert action.

        Args:
            tokens_in: Input token addresses
            amounts_in: Input amounts in smallest units
            tokens_out: Output token addresses
            receiver: Receiver address
            slippage: Slippage tolerance (0.02 = 2%)
            enable_aggregator: Allow aggregator routing for token swaps
            aggregators: Comma-separated aggregator names, e.g. kyberswap
            additional_data: Extra route fields, e.g. impliedApy,effectiveApy

        Returns:
            PreparedTransaction from the first route
        """
        params = {
            "tokensIn": ",".join(tokens_in),
            "amountsIn": ",".join(str(a) for a in amounts_in),
            "tokensOut": ",".join(tokens_out),
            "receiver": receiver,
            "slippage": slippage,
            "enableAggregator": (
                str(enable_aggregator).lower() if enable_aggregator is not None else None
            ),
            "aggregators": aggregators,
            "additionalData": additional_data,
        }
        logger.info(
            "Requesting convert",
            chain_id=self.chain_id,
            tokens_in=params["tokensIn"],
            tokens_out=params["tokensOut"],
        )
        try:
            data = await self._get(f"/v2/sdk/{self.chain_id}/convert", params)
        except httpx.RequestError as e:
            raise TransportError("pendle-sdk", str(e)) from e
        return parse_convert_response(data, self.chain_id)

    async def mint_py(
        self,
        token_in: str,
        amount_in: int,
        pt: str,
        yt: str,
        receiver: str,
        slippage: float = 0.02,
    ) -> PreparedTransaction:
        """Mint PT + YT from an underlying (or SY) token."""
        return await self.convert([token_in], [amount_in], [pt, yt], receiver, slippage)

    async def redeem_py(
        self,
        pt: str,
        yt: str,
        amount: int,
        token_out: str,
        receiver: str,
        slippage: float = 0.02,
    ) -> PreparedTransaction:
        """Redeem equal PT + YT amounts into token_out."""
        return await self.convert(
            [pt, yt], [amount, amount], [token_out], receiver, slippage
        )

    async def redeem_sy(
        self,
        sy: str,
        amount: int,
        token_out: str,
        receiver: str,
        slippage: float = 0.02,
    ) -> PreparedTransaction:
        """Redeem SY into token_out."""
        return await self.convert([sy], [amount], [token_out], receiver, slippage)

    async def swap(
        self,
        token_in: str,
        amount_in: int,
        token_out: str,
        receiver: str,
        slippage: float = 0.02,
        enable_aggregator: bool | None = None,
        aggregators: str | None = None,
    ) -> PreparedTransaction:
        """Swap one token for another through the market.

        Covers PT, YT and SY legs as well as the underlying asset. Aggregator
        routing is only needed when one side is not a market token.
        """
        return await self.convert(
            [token_in],
            [amount_in],
            [token_out],
            receiver,
            slippage,
            enable_aggregator=enable_aggregator,
            aggregators=aggregators,
        )

    async def close(self) -> None:
        await self.session.aclose()
