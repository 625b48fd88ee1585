"""
Key-management abstraction used for transaction signing and attestations.
"""
import logging
from typing import Any, Dict, Protocol

from eth_account import Account
from eth_account.messages import encode_defunct

logger = logging.getLogger(__name__)


class Signer(Protocol):
    """Protocol for custom signers (local keys, KMS, MPC/TSS services)"""
    address: str

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return signed tx object"""
        ...

    def sign_message(self, message: bytes) -> bytes:
        """Return an EIP-191 personal-message signature over raw bytes"""
        ...


class LocalSigner:
    """
    Signer backed by a private key held in process memory.

    Production deployments can replace this with any object implementing
    the Signer protocol.
    """

    def __init__(self, private_key: str):
        """
        Args:
            private_key: Hex-encoded secp256k1 private key

        Raises:
            ValueError: If the key is empty or malformed
        """
        if not private_key:
            raise ValueError("private_key must be provided")
        self._account = Account.from_key(private_key)
        self.address = self._account.address

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        return self._account.sign_transaction(transaction_dict)

    def sign_message(self, message: bytes) -> bytes:
        signed = self._account.sign_message(encode_defunct(primitive=message))
        return bytes(signed.signature)

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address})"


def raw_transaction(signed_tx: Any) -> bytes:
    """
    Extract the raw bytes from a signed transaction.

    eth-account renamed ``rawTransaction`` to ``raw_transaction``; both are
    accepted.

    Raises:
        ValueError: If the signed transaction carries neither attribute
    """
    raw = getattr(signed_tx, "raw_transaction", None) or getattr(signed_tx, "rawTransaction", None)
    if raw is None:
        raise ValueError("Signed transaction is missing raw transaction bytes")
    return raw
