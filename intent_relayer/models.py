"""
Data models for the intent relayer.
"""
import time
from decimal import Decimal, InvalidOperation
from enum import Enum, IntEnum
from typing import Dict, Any, Optional, List, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_HASH = "0x" + "00" * 32


def normalize_hash(value: Any) -> str:
    """
    Normalize a 32-byte hash to a lowercase 0x-prefixed hex string.

    Args:
        value: bytes, HexBytes or hex string (with or without 0x prefix)

    Returns:
        0x-prefixed lowercase hex string of 64 characters

    Raises:
        ValueError: If the value is not 32 bytes of hex
    """
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).hex()
    if not isinstance(value, str):
        raise ValueError(f"Hash must be bytes or hex string, got {type(value).__name__}")
    raw = value[2:] if value.lower().startswith("0x") else value
    raw = raw.lower()
    if len(raw) != 64 or not all(c in "0123456789abcdef" for c in raw):
        raise ValueError(f"Hash must be exactly 32 bytes of hex, got: {value}")
    return "0x" + raw


def hash_bytes(value: Any) -> bytes:
    """Return a 32-byte hash as raw bytes, for bytes32 contract arguments"""
    return bytes.fromhex(normalize_hash(value)[2:])


def normalize_address(value: Any) -> str:
    """Return the checksummed form of an address, raising ValueError if invalid."""
    if isinstance(value, (bytes, bytearray)):
        value = "0x" + bytes(value).hex()
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"Invalid address: {value}")
    return Web3.to_checksum_address(value)


def short_hash(value: str) -> str:
    """Shorten a hash for human-facing log lines."""
    return f"{value[:10]}..."


class LogEntry(BaseModel):
    """A decoded contract event log"""
    event: str
    args: Dict[str, Any]
    block_number: int
    tx_hash: str
    log_index: int = 0
    address: Optional[str] = None


class Intent(BaseModel):
    """
    A user-authorized request to move value cross-chain.

    ``intent_hash`` is assigned by the source ledger and is never recomputed
    locally.
    """
    intent_hash: str
    user: str
    src_chain_id: int
    dst_chain_id: int
    token: str
    amount: int = Field(..., ge=0)
    recipient: str
    nonce: int = 0
    expiry: int = 0
    block_number: Optional[int] = None
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("intent_hash", mode="before")
    @classmethod
    def _check_hash(cls, value):
        return normalize_hash(value)

    @field_validator("user", "token", "recipient", mode="before")
    @classmethod
    def _check_address(cls, value):
        return normalize_address(value)

    @classmethod
    def from_event(cls, entry: LogEntry) -> "Intent":
        """
        Build an Intent from a decoded IntentCommitted event.

        Args:
            entry: The decoded log entry

        Returns:
            Intent populated from the event arguments
        """
        args = entry.args
        return cls(
            intent_hash=args["intentHash"],
            user=args["user"],
            src_chain_id=int(args["srcChainId"]),
            dst_chain_id=int(args["dstChainId"]),
            token=args["token"],
            amount=int(args["amount"]),
            recipient=args["recipient"],
            nonce=int(args["nonce"]),
            expiry=int(args["expiry"]),
            block_number=entry.block_number,
            tx_hash=entry.tx_hash,
            log_index=entry.log_index,
        )

    def is_expired(self, now: Optional[float] = None) -> bool:
        """An expiry of 0 means the intent never expires."""
        if not self.expiry:
            return False
        now = time.time() if now is None else now
        return self.expiry <= now


class MessageState(IntEnum):
    """Message states as stored by the destination inbox"""
    NONE = 0
    PENDING = 1
    CHALLENGED = 2
    FINALIZED = 3
    REJECTED = 4


class Message(BaseModel):
    """Destination-chain record of a relayed intent"""
    message_hash: str
    src_chain_id: int
    dst_chain_id: int
    token: str
    amount: int
    recipient: str
    intent_hash: str
    submitted_at: int
    challenge_period_end: int
    state: MessageState
    challenger: Optional[str] = None
    challenge_id: Optional[str] = None

    @classmethod
    def from_tuple(cls, message_hash: str, raw: Sequence[Any]) -> "Message":
        """
        Decode the tuple returned by ``getMessage``.

        Args:
            message_hash: Hash the message was looked up by
            raw: (srcChainId, dstChainId, token, amount, recipient, intentHash,
                submittedAt, challengePeriodEnd, state, challenger, challengeId)

        Returns:
            Message instance
        """
        challenger = raw[9] if len(raw) > 9 else None
        if challenger == ZERO_ADDRESS:
            challenger = None
        challenge_id = normalize_hash(raw[10]) if len(raw) > 10 else None
        if challenge_id == ZERO_HASH:
            challenge_id = None
        return cls(
            message_hash=normalize_hash(message_hash),
            src_chain_id=int(raw[0]),
            dst_chain_id=int(raw[1]),
            token=raw[2],
            amount=int(raw[3]),
            recipient=raw[4],
            intent_hash=normalize_hash(raw[5]),
            submitted_at=int(raw[6]),
            challenge_period_end=int(raw[7]),
            state=MessageState(int(raw[8])),
            challenger=challenger,
            challenge_id=challenge_id,
        )


class TransferStatus(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TransferRecord(BaseModel):
    """Durable ledger entry tracking a transfer's real-world status"""
    tx_id: str
    type: str = "Bridge"
    from_addr: str
    intent_hash: Optional[str] = Field(None, alias="intentHash")
    bridge_status: TransferStatus = Field(TransferStatus.PENDING, alias="bridgeStatus")
    value: str = "0"
    relay_tx_hash: Optional[str] = Field(None, alias="relayTxHash")
    relayed_at: Optional[int] = Field(None, alias="relayedAt")
    note: Optional[str] = None
    last_error: Optional[str] = Field(None, alias="lastError")
    src_chain_id: Optional[int] = Field(None, alias="srcChainId")
    dst_chain_id: Optional[int] = Field(None, alias="dstChainId")
    recipient: Optional[str] = None
    token: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("value", mode="before")
    @classmethod
    def _value_to_str(cls, value):
        return str(value)

    def amount_wei(self) -> int:
        """
        Convert ``value`` (whole-token decimal string) to the smallest unit.

        Raises:
            ValueError: If value is not a valid decimal amount
        """
        try:
            amount = Decimal(self.value)
        except InvalidOperation:
            raise ValueError(f"Invalid transfer value: {self.value!r}")
        return int(Web3.to_wei(amount, "ether"))

    def to_document(self) -> Dict[str, Any]:
        """Serialize using the ledger's field names"""
        return self.model_dump(by_alias=True, mode="json")


class TxReceipt(BaseModel):
    """Transaction receipt from the blockchain"""
    tx_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    block_hash: str = Field(..., alias="blockHash")
    status: int
    gas_used: int = Field(..., alias="gasUsed")
    from_address: Optional[str] = Field(None, alias="from")
    to_address: Optional[str] = Field(None, alias="to")
    logs: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class SubmissionOutcome(str, Enum):
    SUBMITTED = "SUBMITTED"
    DUPLICATE = "DUPLICATE"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    REJECTED = "REJECTED"


class SubmissionResult(BaseModel):
    """Result of handing one intent to the Submitter"""
    outcome: SubmissionOutcome
    intent_hash: str
    message_hash: str
    tx_hash: Optional[str] = None
    existing_state: Optional[MessageState] = None
    note: Optional[str] = None
