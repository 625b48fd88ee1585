"""
Canonical intent digest and TSS attestation.

The digest is the wire contract shared with the on-chain verifier and is
also the destination message hash, so both relay directions must produce
byte-identical output for the same six fields.
"""
import logging
from typing import Tuple

from eth_abi import encode
from web3 import Web3

from .models import Intent, hash_bytes, normalize_address
from .signer import Signer

logger = logging.getLogger(__name__)

DIGEST_TYPES = ["uint256", "uint256", "address", "uint256", "address", "bytes32"]


def digest_fields(
    src_chain_id: int,
    dst_chain_id: int,
    token: str,
    amount: int,
    recipient: str,
    intent_hash: str,
) -> bytes:
    """
    Compute keccak256(abi.encode(srcChainId, dstChainId, token, amount,
    recipient, intentHash)).

    Returns:
        32-byte digest
    """
    encoded = encode(
        DIGEST_TYPES,
        [
            int(src_chain_id),
            int(dst_chain_id),
            normalize_address(token),
            int(amount),
            normalize_address(recipient),
            hash_bytes(intent_hash),
        ],
    )
    return bytes(Web3.keccak(encoded))


def digest(intent: Intent) -> bytes:
    """Digest of an intent's six core fields"""
    return digest_fields(
        intent.src_chain_id,
        intent.dst_chain_id,
        intent.token,
        intent.amount,
        intent.recipient,
        intent.intent_hash,
    )


def message_hash(intent: Intent) -> str:
    """Hex form of the digest, as used to key messages on the destination inbox"""
    return "0x" + digest(intent).hex()


class IntentSigner:
    """Produces attestation signatures over intent digests"""

    def __init__(self, signer: Signer):
        self.signer = signer

    @property
    def address(self) -> str:
        return self.signer.address

    def digest(self, intent: Intent) -> bytes:
        return digest(intent)

    def sign(self, intent_digest: bytes) -> bytes:
        """
        Sign a 32-byte digest as an EIP-191 personal message.

        Raises:
            ValueError: If the digest is not 32 bytes
        """
        if len(intent_digest) != 32:
            raise ValueError(f"Digest must be 32 bytes, got {len(intent_digest)}")
        return self.signer.sign_message(intent_digest)

    def attest(self, intent: Intent) -> Tuple[bytes, bytes]:
        """
        Returns:
            (digest, signature) for the intent
        """
        intent_digest = self.digest(intent)
        signature = self.sign(intent_digest)
        logger.debug(f"Attested intent {intent.intent_hash} as 0x{intent_digest.hex()}")
        return intent_digest, signature
