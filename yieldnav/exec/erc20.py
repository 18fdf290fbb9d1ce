"""ERC-20 calldata helpers and address/amount utilities."""

import re
from decimal import Decimal, InvalidOperation

from ..core.errors import InvalidInputError

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
MAX_UINT256 = 2**256 - 1

APPROVE_SELECTOR = "0x095ea7b3"
ALLOWANCE_SELECTOR = "0xdd62ed3e"
BALANCE_OF_SELECTOR = "0x70a08231"


def normalize_address(value: str | None) -> str:
    """Strip a "chainId-" prefix and whitespace."""
    if not value:
        return ""
    return value.strip().split("-")[-1]


def is_valid_address(value: str | None) -> bool:
    return bool(value) and ADDRESS_RE.match(normalize_address(value)) is not None


def require_address(value: str | None, label: str) -> str:
    """Return the normalized address or raise InvalidInputError."""
    address = normalize_address(value)
    if not ADDRESS_RE.match(address):
        raise InvalidInputError(f"Invalid {label} address: {value!r}")
    return address


def to_base_units(amount: float | str | Decimal, decimals: int) -> int:
    """Decimal amount to integer smallest units, truncating excess digits."""
    try:
        scaled = Decimal(str(amount)).scaleb(decimals)
    except InvalidOperation:
        return 0
    return int(scaled)


def from_base_units(amount: int, decimals: int) -> Decimal:
    return Decimal(amount).scaleb(-decimals)


def _word(hex_body: str) -> str:
    return hex_body.lower().rjust(64, "0")


def encode_address(address: str) -> str:
    return _word(normalize_address(address)[2:])


def encode_uint(value: int) -> str:
    if value < 0 or value > MAX_UINT256:
        raise InvalidInputError(f"uint256 out of range: {value}")
    return _word(f"{value:x}")


def encode_approve(spender: str, amount: int = MAX_UINT256) -> str:
    """Calldata for approve(spender, amount); unlimited by default."""
    return APPROVE_SELECTOR + encode_address(spender) + encode_uint(amount)


def encode_allowance(owner: str, spender: str) -> str:
    return ALLOWANCE_SELECTOR + encode_address(owner) + encode_address(spender)


def encode_balance_of(owner: str) -> str:
    return BALANCE_OF_SELECTOR + encode_address(owner)


def decode_uint(result: str | None) -> int:
    """Decode an eth_call uint256 result; empty results read as 0."""
    if not result or result == "0x":
        return 0
    return int(result, 16)


def decode_approve(data: str | None) -> tuple[str, int] | None:
    """Spender and amount of approve calldata, or None for any other call."""
    if not data or not data.lower().startswith(APPROVE_SELECTOR):
        return None
    body = data[len(APPROVE_SELECTOR):]
    if len(body) < 128:
        return None
    return "0x" + body[24:64].lower(), int(body[64:128], 16)
