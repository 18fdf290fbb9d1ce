"""Exception hierarchy for the yield navigator."""


class YieldNavError(Exception):
    """Base class for all yield navigator errors."""


class InvalidInputError(YieldNavError):
    """Malformed address, non-positive amount or empty inputs."""


class InsufficientBalanceError(YieldNavError):
    """Wallet balance below what the action requires."""


class InsufficientAllowanceError(YieldNavError):
    """Token allowance below what the action requires."""


class TransportError(YieldNavError):
    """External service unreachable or returned a non-success response."""

    def __init__(self, service: str, message: str, status_code: int | None = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} error ({status_code}): {message}")


class OnChainError(YieldNavError):
    """Submitted transaction reverted or was rejected by the node."""

    def __init__(self, step: str, message: str, tx_hash: str | None = None):
        self.step = step
        self.tx_hash = tx_hash
        super().__init__(f"{step} failed: {message}")


class FlowBusyError(YieldNavError):
    """A flow was invoked while already in flight."""


class InvalidTransitionError(YieldNavError):
    """State change not allowed by the flow's transition table."""


class RpcError(YieldNavError):
    """JSON-RPC error returned by the node."""

    def __init__(self, code: int, message: str, data: object | None = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")
