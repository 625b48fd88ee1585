"""
intent-relayer: off-chain relay for cross-chain transfer intents under
optimistic finality.
"""
from .attestation import IntentSigner, digest, message_hash
from .backlog import BacklogReconciler, BacklogSummary
from .chain import ChainClient
from .config import RelayConfig, load_config
from .director import RelayDirector
from .exceptions import (
    ChainConnectionError, ChainError, ConfigError, ConfirmationTimeoutError,
    DuplicateMessageError, ErrorKind, LedgerError, PermanentChainError,
    RelayError, TransientError, classify_error
)
from .finalizer import Finalizer
from .ledger import JsonTransferLedger, TransferLedger
from .models import (
    Intent, Message, MessageState, SubmissionOutcome, SubmissionResult,
    TransferRecord, TransferStatus, TxReceipt
)
from .relayer import DirectionalRelayer
from .signer import LocalSigner, Signer
from .state import ProcessedSet, RelayStateStore
from .submitter import Submitter
from .version import __version__
from .watcher import Watcher

__all__ = [
    "BacklogReconciler",
    "BacklogSummary",
    "ChainClient",
    "ChainConnectionError",
    "ChainError",
    "ConfigError",
    "ConfirmationTimeoutError",
    "DirectionalRelayer",
    "DuplicateMessageError",
    "ErrorKind",
    "Finalizer",
    "Intent",
    "IntentSigner",
    "JsonTransferLedger",
    "LedgerError",
    "LocalSigner",
    "Message",
    "MessageState",
    "PermanentChainError",
    "ProcessedSet",
    "RelayConfig",
    "RelayDirector",
    "RelayError",
    "RelayStateStore",
    "Signer",
    "SubmissionOutcome",
    "SubmissionResult",
    "Submitter",
    "TransferLedger",
    "TransferRecord",
    "TransferStatus",
    "TransientError",
    "TxReceipt",
    "Watcher",
    "classify_error",
    "digest",
    "load_config",
    "message_hash",
    "__version__",
]
