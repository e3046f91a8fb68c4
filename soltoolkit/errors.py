"""
Exceptions raised by the toolkit.
"""

from typing import Any, Optional


class ToolkitError(Exception):
    """Base exception for toolkit operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(ToolkitError, ValueError):
    """Invalid or missing configuration. Never retried."""


class NoReachableEndpoints(ToolkitError):
    """Every probed endpoint failed to answer."""


class MissingFeePayer(ToolkitError, ValueError):
    """No fee payer was given and the pipeline has no default."""


class EmptyInstructionList(ToolkitError, ValueError):
    """Transaction has no instructions."""


class InvalidTransactionState(ToolkitError):
    """Pipeline stage called out of order or on the wrong transaction kind."""


class SigningError(ToolkitError):
    """Signer or wallet missing, or the wallet declined to sign."""


class TransportError(ToolkitError):
    """Network-level failure talking to an endpoint. Retryable."""

    def __init__(self, message: str, endpoint: Optional[str] = None, details: Optional[dict] = None):
        self.endpoint = endpoint
        super().__init__(message, details)


class OperationTimeout(TransportError, TimeoutError):
    """An operation lost its race against the timer."""

    def __init__(self, elapsed_ms: float, endpoint: Optional[str] = None):
        self.elapsed_ms = elapsed_ms
        super().__init__(f"Timeout of {elapsed_ms:.0f}ms exceeded", endpoint=endpoint)


class LedgerRejection(ToolkitError):
    """The ledger judged the transaction invalid. Terminal."""

    def __init__(self, err: Any, signature: Optional[str] = None):
        self.err = err
        self.signature = signature
        super().__init__(f"Transaction rejected on-chain: {err}", {"signature": signature})


class SubmissionExhausted(ToolkitError):
    """Retries ran out without a confirmed signature."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Transaction failed after {attempts} tries: {last_error}",
            {"attempts": attempts},
        )


class RelayError(ToolkitError):
    """The bundle relay answered with a JSON-RPC error."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message, {"code": code})
