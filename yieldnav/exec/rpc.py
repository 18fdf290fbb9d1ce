"""EVM JSON-RPC chain client: submission, receipts and ERC-20 reads."""

import asyncio
import hashlib
import time
from typing import Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import RpcError
from ..core.interfaces import ChainClient
from ..core.types import PendingTransaction, TxReceipt
from .erc20 import (
    decode_approve,
    decode_uint,
    encode_allowance,
    encode_balance_of,
)

logger = structlog.get_logger(__name__)

RETRYABLE_RPC_CODES = {
    -32603,  # Internal error
    -32005,  # Limit exceeded
    429,  # Too many requests
}


def _is_retryable_error(exception: BaseException) -> bool:
    """Check if an exception is retryable."""
    if isinstance(exception, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exception, RpcError):
        return exception.code in RETRYABLE_RPC_CODES
    return False


def tx_to_rpc(tx: PendingTransaction) -> dict[str, Any]:
    """Shape a pending transaction as an eth_sendTransaction object."""
    payload: dict[str, Any] = {"to": tx.to, "data": tx.data, "value": hex(tx.value)}
    if tx.sender:
        payload["from"] = tx.sender
    if tx.gas:
        payload["gas"] = hex(tx.gas)
    return payload


class JsonRpcChainClient(ChainClient):
    """JSON-RPC chain client for an unlocked or wallet-backed node."""

    def __init__(
        self,
        rpc_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        receipt_timeout: float = 120.0,
        poll_interval: float = 2.0,
    ) -> None:
        """Initialize the chain client.

        Args:
            rpc_url: EVM JSON-RPC endpoint URL
            client: Optional httpx client (will create one if not provided)
            timeout: Request timeout in seconds
            receipt_timeout: Maximum time to wait for a receipt
            poll_interval: Time between receipt polls
        """
        self.rpc_url = rpc_url
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self._request_id = 0
        logger.info("Chain client initialized", rpc_url=rpc_url)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    def _get_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_retryable_error),
        reraise=True,
    )
    async def _make_rpc_request(self, method: str, params: list[Any]) -> Any:
        """Make a JSON-RPC request with retries.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            RPC response result

        Raises:
            RpcError: For RPC-specific errors
            httpx.HTTPError: For HTTP errors
        """
        request_id = self._get_request_id()
        payload = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params,
        }

        start_time = time.time()
        try:
            response = await self.client.post(
                self.rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(
                "RPC request failed",
                method=method,
                request_id=request_id,
                duration=time.time() - start_time,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.debug(
            "RPC request completed",
            method=method,
            request_id=request_id,
            duration=time.time() - start_time,
        )

        if "error" in data:
            error = data["error"]
            raise RpcError(
                code=error.get("code", -1),
                message=error.get("message", "Unknown RPC error"),
                data=error.get("data"),
            )
        return data.get("result")

    async def send_transaction(self, tx: PendingTransaction) -> str:
        """Submit a transaction and return its hash."""
        tx_hash = await self._make_rpc_request("eth_sendTransaction", [tx_to_rpc(tx)])
        logger.info("Transaction sent", tx_hash=tx_hash, to=tx.to)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        """Poll for the receipt until mined or timed out.

        Raises:
            TimeoutError: If no receipt arrives within receipt_timeout
        """
        deadline = time.time() + self.receipt_timeout

        while time.time() < deadline:
            try:
                receipt = await self._make_rpc_request(
                    "eth_getTransactionReceipt", [tx_hash]
                )
            except (RpcError, httpx.HTTPError) as e:
                logger.warning("Error polling receipt", tx_hash=tx_hash, error=str(e))
                receipt = None

            if receipt:
                success = int(receipt.get("status", "0x0"), 16) == 1
                block = receipt.get("blockNumber")
                result = TxReceipt(
                    tx_hash=tx_hash,
                    success=success,
                    block_number=int(block, 16) if block else None,
                )
                logger.info(
                    "Transaction mined",
                    tx_hash=tx_hash,
                    success=success,
                    block_number=result.block_number,
                )
                return result

            await asyncio.sleep(self.poll_interval)

        logger.error(
            "Receipt timeout", tx_hash=tx_hash, timeout=self.receipt_timeout
        )
        raise TimeoutError(
            f"Transaction receipt timeout after {self.receipt_timeout}s: {tx_hash}"
        )

    async def _call(self, to: str, data: str) -> str:
        return await self._make_rpc_request(
            "eth_call", [{"to": to, "data": data}, "latest"]
        )

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return decode_uint(await self._call(token, encode_allowance(owner, spender)))

    async def get_balance(self, token: str, owner: str) -> int:
        return decode_uint(await self._call(token, encode_balance_of(owner)))


class DryRunChainClient(ChainClient):
    """Chain client that reads through to a node but never submits.

    Submitted transactions are recorded and given a deterministic synthetic
    hash; their receipts always report success. Recorded approvals are
    served back from get_allowance.
    """

    def __init__(self, reader: ChainClient) -> None:
        self.reader = reader
        self.sent: list[PendingTransaction] = []
        self.approvals: dict[tuple[str, str], int] = {}

    async def send_transaction(self, tx: PendingTransaction) -> str:
        self.sent.append(tx)
        approval = decode_approve(tx.data)
        if approval is not None:
            spender, amount = approval
            self.approvals[(tx.to.lower(), spender)] = amount
        digest = hashlib.sha256(
            f"{len(self.sent)}:{tx.to}:{tx.data}:{tx.value}".encode()
        ).hexdigest()
        tx_hash = f"0x{digest}"
        logger.info("Dry run: transaction not submitted", tx_hash=tx_hash, to=tx.to)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        return TxReceipt(tx_hash=tx_hash, success=True)

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        recorded = self.approvals.get((token.lower(), spender.lower()))
        if recorded is not None:
            return recorded
        return await self.reader.get_allowance(token, owner, spender)

    async def get_balance(self, token: str, owner: str) -> int:
        return await self.reader.get_balance(token, owner)
