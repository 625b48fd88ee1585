"""
Tests for the relay error taxonomy and classification.
"""
import pytest
import requests
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from intent_relayer.exceptions import (
    ChainError, DuplicateMessageError, ErrorKind, PermanentChainError,
    TransactionRevertedError, TransientChainError, TransientNetworkError,
    classify_error, wrap_error
)


def _selector(signature):
    return "0x" + bytes(Web3.keccak(text=signature))[:4].hex()


class RevertWithData(Exception):
    def __init__(self, message, data):
        super().__init__(message)
        self.data = data


@pytest.mark.parametrize("signature,kind", [
    ("MessageAlreadyExists()", ErrorKind.PERMANENT_DUPLICATE),
    ("AlreadyMinted()", ErrorKind.PERMANENT_DUPLICATE),
    ("InvalidSignature()", ErrorKind.PERMANENT_LOGIC),
    ("IntentExpired()", ErrorKind.PERMANENT_LOGIC),
])
def test_custom_error_selectors_take_precedence(signature, kind):
    # message text would otherwise classify as transient
    exc = RevertWithData("execution reverted: nonce too low", _selector(signature))
    assert classify_error(exc) == kind


def test_selector_in_bytes_data():
    exc = RevertWithData("execution reverted", bytes.fromhex(_selector("AlreadyFinalized()")[2:]))
    assert classify_error(exc) == ErrorKind.PERMANENT_DUPLICATE


@pytest.mark.parametrize("message,kind", [
    ("execution reverted: Intent already processed", ErrorKind.PERMANENT_DUPLICATE),
    ("execution reverted: message already exists", ErrorKind.PERMANENT_DUPLICATE),
    ("execution reverted: Already finalized", ErrorKind.PERMANENT_DUPLICATE),
    ("nonce too low", ErrorKind.TRANSIENT_CHAIN),
    ("replacement transaction underpriced", ErrorKind.TRANSIENT_CHAIN),
    ("insufficient funds for gas * price + value", ErrorKind.TRANSIENT_CHAIN),
    ("execution reverted: Intent expired", ErrorKind.PERMANENT_LOGIC),
    ("execution reverted: Invalid signature", ErrorKind.PERMANENT_LOGIC),
    ("AccessControl: account is missing role", ErrorKind.PERMANENT_LOGIC),
    ("execution reverted: Not TSS", ErrorKind.PERMANENT_LOGIC),
])
def test_message_patterns(message, kind):
    assert classify_error(Exception(message)) == kind


@pytest.mark.parametrize("exc", [
    requests.ConnectionError("connection refused"),
    requests.Timeout("read timed out"),
    TimeExhausted("not mined"),
    ConnectionResetError("reset by peer"),
])
def test_network_errors_are_transient(exc):
    assert classify_error(exc) == ErrorKind.TRANSIENT_NETWORK


def test_unknown_errors_default_to_transient_chain():
    assert classify_error(RuntimeError("something odd")) == ErrorKind.TRANSIENT_CHAIN


def test_contract_logic_error_message():
    exc = ContractLogicError("execution reverted: Unauthorized")
    assert classify_error(exc) == ErrorKind.PERMANENT_LOGIC


def test_chain_errors_keep_their_kind():
    assert classify_error(DuplicateMessageError("dup")) == ErrorKind.PERMANENT_DUPLICATE
    assert classify_error(TransientNetworkError("net")) == ErrorKind.TRANSIENT_NETWORK
    assert classify_error(TransactionRevertedError("reverted", tx_hash="0x01")) == ErrorKind.TRANSIENT_CHAIN
    assert classify_error(ChainError("custom", kind=ErrorKind.PERMANENT_LOGIC)) == ErrorKind.PERMANENT_LOGIC


@pytest.mark.parametrize("message,cls", [
    ("already minted", DuplicateMessageError),
    ("unauthorized", PermanentChainError),
    ("nonce too low", TransientChainError),
])
def test_wrap_error(message, cls):
    wrapped = wrap_error(Exception(message), "executeMint")
    assert type(wrapped) is cls
    assert str(wrapped).startswith("executeMint: ")


def test_wrap_error_returns_chain_errors_unchanged():
    original = TransientChainError("nonce too low")
    assert wrap_error(original, "ctx") is original


def test_duplicate_is_permanent():
    error = DuplicateMessageError("dup")
    assert isinstance(error, PermanentChainError)
    assert not error.is_transient
    assert TransientNetworkError("x").is_transient
