"""Failure taxonomy for the copy-trade pipeline."""


class CopyTradeError(Exception):
    """Base class for every pipeline failure."""


class TransientExternalFailure(CopyTradeError):
    """Network/API failure; retried up to the attempt bound."""


class RpcError(TransientExternalFailure):
    """JSON-RPC transport failure or error response."""

    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.code = code


class OnChainRevert(TransientExternalFailure):
    """Transaction landed but reverted; treated like any other transient failure."""


class ConfirmationTimeout(TransientExternalFailure):
    """A broadcast transaction was not seen as confirmed in time. It may still land."""

    def __init__(self, tx_id: str, message: str) -> None:
        super().__init__(message)
        self.tx_id = tx_id


class NoRouteOrLiquidity(CopyTradeError):
    """The aggregator has no route for the pair at this size."""


class InsufficientFunds(CopyTradeError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"required {required}, available {available}")
        self.required = required
        self.available = available


class LedgerUnavailable(CopyTradeError):
    """The holdings store could not be read or written."""


class NotificationFailure(CopyTradeError):
    """Operator message could not be delivered."""


class ConfigError(Exception):
    """Startup configuration is incomplete or invalid."""
