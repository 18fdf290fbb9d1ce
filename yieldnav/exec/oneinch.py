"""1inch conversion router client: allowance, approval and swap payloads."""

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
from ..core.types import BASE_CHAIN_ID, PendingTransaction

logger = structlog.get_logger(__name__)


def build_swap_params(
    src: str,
    dst: str,
    amount: int,
    from_address: str,
    slippage_pct: float,
    receiver: str | None = None,
    disable_estimate: bool = True,
) -> dict[str, Any]:
    """Build query parameters for the swap endpoint.

    Args:
        src: Source token address
        dst: Destination token address
        amount: Amount in smallest units of src
        from_address: Wallet executing the swap
        slippage_pct: Slippage tolerance in percent (2 = 2%)
        receiver: Optional different receiver
        disable_estimate: Skip on-chain balance/allowance estimation

    Returns:
        Dictionary of query parameters
    """
    params: dict[str, Any] = {
        "src": src,
        "dst": dst,
        "amount": str(amount),
        "from": from_address,
        "slippage": slippage_pct,
        "disableEstimate": str(disable_estimate).lower(),
    }
    if receiver:
        params["receiver"] = receiver
    return params


def _tx_from_payload(payload: dict[str, Any], chain_id: int) -> PendingTransaction:
    gas = payload.get("gas")
    return PendingTransaction(
        chain_id=chain_id,
        to=payload["to"],
        data=payload.get("data", "0x"),
        sender=payload.get("from"),
        value=int(payload.get("value") or 0),
        gas=int(gas) if gas else None,
    )


class OneInchClient:
    """1inch swap API client."""

    def __init__(
        self,
        base_url: str = "https://api.1inch.dev/swap/v6.0",
        api_key: str | None = None,
        chain_id: int = BASE_CHAIN_ID,
        session: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize 1inch client.

        Args:
            base_url: Swap API base URL without chain id
            api_key: Bearer API key
            chain_id: Chain id appended to the base URL
            session: Optional httpx client
            timeout: Request timeout in seconds
        """
        self.base_url = f"{base_url.rstrip('/')}/{chain_id}"
        self.api_key = api_key
        self.chain_id = chain_id
        self.session = session or httpx.AsyncClient(timeout=timeout)

        if not api_key:
            logger.warning("1inch API key not configured", base_url=self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _request(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        logger.debug("1inch request", endpoint=endpoint, params=params)

        response = await self.session.get(url, params=params, headers=self._headers())
        if response.status_code >= 400:
            try:
                body = response.json()
                message = body.get("description") or body.get("error") or response.text
            except ValueError:
                message = response.text
            logger.error(
                "1inch API error",
                endpoint=endpoint,
                status=response.status_code,
                error=message,
            )
            raise TransportError("1inch", message, response.status_code)
        return response.json()

    async def _make_request(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            return await self._request(endpoint, params or {})
        except httpx.RequestError as e:
            logger.error("1inch request failed", endpoint=endpoint, error=str(e))
            raise TransportError("1inch", str(e)) from e

    async def get_allowance(self, token: str, wallet: str) -> int:
        """Allowance granted by wallet to the 1inch router."""
        data = await self._make_request(
            "/approve/allowance", {"tokenAddress": token, "walletAddress": wallet}
        )
        return int(data.get("allowance") or 0)

    async def build_approval(
        self, token: str, amount: int | None = None
    ) -> PendingTransaction:
        """Approval transaction for the router; unlimited when amount is None."""
        params: dict[str, Any] = {"tokenAddress": token}
        if amount is not None:
            params["amount"] = str(amount)
        data = await self._make_request("/approve/transaction", params)
        return _tx_from_payload(data, self.chain_id)

    async def build_swap(
        self,
        src: str,
        dst: str,
        amount: int,
        from_address: str,
        slippage_pct: float = 2.0,
    ) -> PendingTransaction:
        """Swap transaction converting src into dst.

        Raises:
            TransportError: If the API fails or omits the transaction
        """
        data = await self._make_request(
            "/swap", build_swap_params(src, dst, amount, from_address, slippage_pct)
        )
        tx = data.get("tx")
        if not tx:
            raise TransportError("1inch", "Swap response missing tx")

        logger.info(
            "Swap built",
            src=src,
            dst=dst,
            amount=amount,
            dst_amount=data.get("dstAmount"),
        )
        return _tx_from_payload(tx, self.chain_id)

    async def close(self) -> None:
        await self.session.aclose()
