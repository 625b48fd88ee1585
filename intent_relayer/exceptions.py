"""
Exceptions for the intent relayer, and the single place where raw
web3/requests failures are classified into the relay's error taxonomy.
"""
from enum import Enum
from typing import Optional

import requests
from web3 import Web3
from web3.exceptions import TimeExhausted


class ErrorKind(str, Enum):
    """
    How a failed chain interaction should be treated.

    TRANSIENT_* errors are retried; PERMANENT_DUPLICATE counts as success for
    idempotency purposes; PERMANENT_LOGIC stops automatic retries for that
    transfer.
    """
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    TRANSIENT_CHAIN = "TRANSIENT_CHAIN"
    PERMANENT_DUPLICATE = "PERMANENT_DUPLICATE"
    PERMANENT_LOGIC = "PERMANENT_LOGIC"


class RelayError(Exception):
    """Base exception for all relay errors."""
    pass


class ConfigError(RelayError):
    """Raised when configuration is missing or invalid. Fatal at startup."""
    pass


class LedgerError(RelayError):
    """Raised when the durable transfer ledger or state store cannot be used."""
    pass


class ConfirmationTimeoutError(RelayError):
    """Raised when a source event has not reached its confirmation depth in time."""

    def __init__(self, message: str, intent_hash: Optional[str] = None):
        self.intent_hash = intent_hash
        super().__init__(message)


class ChainError(RelayError):
    """Base class for failed chain interactions."""

    kind: ErrorKind = ErrorKind.TRANSIENT_NETWORK

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return self.kind in (ErrorKind.TRANSIENT_NETWORK, ErrorKind.TRANSIENT_CHAIN)


class ChainConnectionError(ChainError):
    """Raised at startup when an RPC endpoint is unreachable or serves the wrong chain."""
    pass


class TransientError(ChainError):
    """A failure that is expected to succeed when retried."""
    pass


class TransientNetworkError(TransientError):
    kind = ErrorKind.TRANSIENT_NETWORK


class TransientChainError(TransientError):
    kind = ErrorKind.TRANSIENT_CHAIN


class TransactionRevertedError(TransientError):
    """A transaction was mined with status 0 after a successful gas estimate."""
    kind = ErrorKind.TRANSIENT_CHAIN

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class PermanentChainError(ChainError):
    """A failure that will not go away on retry."""
    kind = ErrorKind.PERMANENT_LOGIC


class DuplicateMessageError(PermanentChainError):
    """The destination contract reports the message or intent already exists."""
    kind = ErrorKind.PERMANENT_DUPLICATE


def _selector(signature: str) -> str:
    return "0x" + bytes(Web3.keccak(text=signature))[:4].hex()


# Custom error selectors emitted by the inbox and settlement contracts
ERROR_SELECTORS = {
    _selector("MessageAlreadyExists()"): ErrorKind.PERMANENT_DUPLICATE,
    _selector("IntentAlreadyProcessed()"): ErrorKind.PERMANENT_DUPLICATE,
    _selector("AlreadyFinalized()"): ErrorKind.PERMANENT_DUPLICATE,
    _selector("AlreadyMinted()"): ErrorKind.PERMANENT_DUPLICATE,
    _selector("IntentExpired()"): ErrorKind.PERMANENT_LOGIC,
    _selector("InvalidSignature()"): ErrorKind.PERMANENT_LOGIC,
    _selector("Unauthorized()"): ErrorKind.PERMANENT_LOGIC,
}

DUPLICATE_PATTERNS = (
    "already processed",
    "already exists",
    "already submitted",
    "already finalized",
    "already minted",
    "already executed",
)

TRANSIENT_CHAIN_PATTERNS = (
    "nonce too low",
    "nonce too high",
    "replacement transaction underpriced",
    "transaction underpriced",
    "already known",
    "insufficient funds",
    "max fee per gas less than block base fee",
)

PERMANENT_LOGIC_PATTERNS = (
    "expired",
    "unauthorized",
    "invalid signature",
    "invalid tss",
    "not tss",
    "accesscontrol",
    "caller is not",
    "invalid amount",
    "invalid recipient",
)

NETWORK_EXCEPTIONS = (
    requests.ConnectionError,
    requests.Timeout,
    TimeExhausted,
    ConnectionError,
    TimeoutError,
)


def _revert_data(exc: BaseException) -> Optional[str]:
    data = getattr(exc, "data", None)
    if isinstance(data, bytes):
        data = "0x" + data.hex()
    if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
        return data[:10].lower()
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Classify an exception raised by a chain interaction.

    Structured custom-error selectors are matched first, then revert message
    patterns, then exception types. Anything unrecognised is treated as a
    transient chain error so that it is retried rather than dropped.

    Args:
        exc: The exception to classify

    Returns:
        The ErrorKind for the exception
    """
    if isinstance(exc, ChainError):
        return exc.kind

    selector = _revert_data(exc)
    if selector and selector in ERROR_SELECTORS:
        return ERROR_SELECTORS[selector]

    message = str(exc).lower()
    if any(pattern in message for pattern in DUPLICATE_PATTERNS):
        return ErrorKind.PERMANENT_DUPLICATE
    if any(pattern in message for pattern in TRANSIENT_CHAIN_PATTERNS):
        return ErrorKind.TRANSIENT_CHAIN
    if any(pattern in message for pattern in PERMANENT_LOGIC_PATTERNS):
        return ErrorKind.PERMANENT_LOGIC

    if isinstance(exc, NETWORK_EXCEPTIONS):
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.TRANSIENT_CHAIN


_KIND_TO_EXCEPTION = {
    ErrorKind.TRANSIENT_NETWORK: TransientNetworkError,
    ErrorKind.TRANSIENT_CHAIN: TransientChainError,
    ErrorKind.PERMANENT_DUPLICATE: DuplicateMessageError,
    ErrorKind.PERMANENT_LOGIC: PermanentChainError,
}


def wrap_error(exc: BaseException, context: str = "") -> ChainError:
    """
    Convert a raw exception into the matching ChainError subclass.

    Already-classified errors are returned unchanged.

    Args:
        exc: The exception to wrap
        context: Short description of the failed operation, used as a prefix

    Returns:
        A ChainError instance; the caller raises it ``from exc``
    """
    if isinstance(exc, ChainError):
        return exc
    kind = classify_error(exc)
    prefix = f"{context}: " if context else ""
    return _KIND_TO_EXCEPTION[kind](f"{prefix}{exc}")
