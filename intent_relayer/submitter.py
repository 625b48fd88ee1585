"""
Submitter - hands confirmed intents to the destination inbox.

Idempotency is layered: the durable ProcessedSet, then the transfer
ledger's status, then a pre-flight read of the inbox, and finally the
contract's own duplicate rejection. Every duplicate signal is treated as
success.
"""
import logging
import time
from typing import Optional

from .abi import MESSAGE_INBOX_ABI
from .attestation import IntentSigner, message_hash
from .chain import ChainClient
from .exceptions import ChainError, DuplicateMessageError, PermanentChainError
from .ledger import TransferLedger
from .models import (
    Intent, Message, MessageState, SubmissionOutcome, SubmissionResult,
    TransferRecord, TransferStatus, hash_bytes, short_hash
)
from .state import ProcessedOutcome, ProcessedSet

logger = logging.getLogger(__name__)

NOTE_ALREADY_PROCESSED = "Already processed on destination chain"
NOTE_ALREADY_PENDING = "Message already pending on destination chain"
NOTE_ALREADY_FINALIZED = "Already finalized on destination chain"
NOTE_PREVIOUSLY_REJECTED = "Previously rejected by the relay"


def _now_ms() -> int:
    return int(time.time() * 1000)


class Submitter:
    """Signs intents and submits them to one destination inbox"""

    def __init__(
        self,
        chain: ChainClient,
        inbox_address: str,
        intent_signer: IntentSigner,
        processed: ProcessedSet,
        ledger: Optional[TransferLedger] = None,
        gas_limit: int = 500_000,
    ):
        """
        Args:
            chain: Client for the destination chain
            inbox_address: MessageInbox contract on the destination chain
            intent_signer: Produces the TSS attestation
            processed: Dedup set for this direction
            ledger: Durable transfer ledger, if transfers are tracked
            gas_limit: Gas limit used when estimation fails
        """
        self.chain = chain
        self.inbox_address = inbox_address
        self.intent_signer = intent_signer
        self.processed = processed
        self.ledger = ledger
        self.gas_limit = gas_limit

    def _ledger_record(self, intent: Intent, record_id: Optional[str]) -> Optional[TransferRecord]:
        if self.ledger is None:
            return None
        if record_id:
            return self.ledger.get(record_id)
        return self.ledger.find_by_intent_hash(intent.intent_hash)

    def _update_ledger(self, record: Optional[TransferRecord], expected, **updates) -> None:
        if self.ledger is None or record is None:
            return
        updated = self.ledger.compare_and_set(record.tx_id, expected, updates)
        if updated is not None:
            logger.info(f"Ledger record {record.tx_id} -> {updated.bridge_status.value}")

    def fetch_message(self, msg_hash: str) -> Optional[Message]:
        """Read a message from the inbox; None if it does not exist"""
        raw = self.chain.call(self.inbox_address, MESSAGE_INBOX_ABI, "getMessage", [hash_bytes(msg_hash)])
        message = Message.from_tuple(msg_hash, raw)
        if message.state == MessageState.NONE:
            return None
        return message

    def submit(self, intent: Intent, record_id: Optional[str] = None) -> SubmissionResult:
        """
        Relay one confirmed intent.

        Args:
            intent: The confirmed intent
            record_id: Ledger transaction id, when the caller already knows it

        Returns:
            SubmissionResult describing what happened

        Raises:
            PermanentChainError: The inbox rejected the intent for good
            ChainError: Transient failure, to be retried by the caller
        """
        msg_hash = message_hash(intent)
        record = self._ledger_record(intent, record_id)

        outcome = self.processed.outcome(intent.intent_hash)
        if outcome == ProcessedOutcome.REJECTED:
            self._update_ledger(
                record,
                [TransferStatus.PENDING],
                bridge_status=TransferStatus.FAILED,
                note=NOTE_PREVIOUSLY_REJECTED,
            )
            return SubmissionResult(
                outcome=SubmissionOutcome.REJECTED,
                intent_hash=intent.intent_hash,
                message_hash=msg_hash,
                note=NOTE_PREVIOUSLY_REJECTED,
            )
        if outcome is not None and (record is None or record.bridge_status != TransferStatus.PENDING):
            logger.debug(f"Intent {short_hash(intent.intent_hash)} already processed")
            return SubmissionResult(
                outcome=SubmissionOutcome.ALREADY_PROCESSED,
                intent_hash=intent.intent_hash,
                message_hash=msg_hash,
            )

        if record is not None and record.bridge_status in (TransferStatus.SUBMITTED, TransferStatus.COMPLETED):
            self.processed.add_if_absent(intent.intent_hash, ProcessedOutcome.SUBMITTED)
            logger.info(
                f"Intent {short_hash(intent.intent_hash)} already {record.bridge_status.value} "
                f"in ledger record {record.tx_id}"
            )
            return SubmissionResult(
                outcome=SubmissionOutcome.ALREADY_PROCESSED,
                intent_hash=intent.intent_hash,
                message_hash=msg_hash,
                tx_hash=record.relay_tx_hash,
            )

        existing = self.fetch_message(msg_hash)
        if existing is not None:
            return self._existing_message(intent, msg_hash, existing, record)

        intent_digest, signature = self.intent_signer.attest(intent)
        args = [
            intent.src_chain_id,
            intent.dst_chain_id,
            intent.token,
            intent.amount,
            intent.recipient,
            hash_bytes(intent.intent_hash),
            signature,
        ]
        logger.info(
            f"Submitting intent {short_hash(intent.intent_hash)} "
            f"({intent.src_chain_id} -> {intent.dst_chain_id}, amount {intent.amount})"
        )

        try:
            receipt = self.chain.send(
                self.inbox_address,
                MESSAGE_INBOX_ABI,
                "submitPending",
                args,
                self.intent_signer.signer,
                gas=self.gas_limit,
            )
        except DuplicateMessageError as e:
            logger.info(f"Intent {short_hash(intent.intent_hash)}: {NOTE_ALREADY_PROCESSED} ({e})")
            self.processed.add(intent.intent_hash, ProcessedOutcome.DUPLICATE)
            self._update_ledger(
                record,
                [TransferStatus.PENDING],
                bridge_status=TransferStatus.COMPLETED,
                note=NOTE_ALREADY_PROCESSED,
            )
            return SubmissionResult(
                outcome=SubmissionOutcome.DUPLICATE,
                intent_hash=intent.intent_hash,
                message_hash=msg_hash,
                note=NOTE_ALREADY_PROCESSED,
            )
        except PermanentChainError as e:
            logger.error(f"Intent {intent.intent_hash} permanently rejected: {e}")
            self.processed.add(intent.intent_hash, ProcessedOutcome.REJECTED)
            self._update_ledger(
                record,
                [TransferStatus.PENDING],
                bridge_status=TransferStatus.FAILED,
                note=str(e),
                last_error=str(e),
            )
            raise
        except ChainError as e:
            logger.warning(f"Intent {intent.intent_hash} submission failed, will retry: {e}")
            if self.ledger is not None and record is not None:
                self.ledger.record_error(record.tx_id, str(e))
            raise

        self.processed.add(intent.intent_hash, ProcessedOutcome.SUBMITTED)
        self._update_ledger(
            record,
            [TransferStatus.PENDING],
            bridge_status=TransferStatus.SUBMITTED,
            relay_tx_hash=receipt.tx_hash,
            relayed_at=_now_ms(),
            last_error=None,
        )
        logger.info(
            f"Intent {short_hash(intent.intent_hash)} submitted as message "
            f"{short_hash('0x' + intent_digest.hex())} in tx {receipt.tx_hash}"
        )
        return SubmissionResult(
            outcome=SubmissionOutcome.SUBMITTED,
            intent_hash=intent.intent_hash,
            message_hash=msg_hash,
            tx_hash=receipt.tx_hash,
        )

    def _existing_message(
        self,
        intent: Intent,
        msg_hash: str,
        message: Message,
        record: Optional[TransferRecord],
    ) -> SubmissionResult:
        logger.info(
            f"Intent {short_hash(intent.intent_hash)} already on destination inbox "
            f"as {message.state.name}, not resubmitting"
        )
        if message.state == MessageState.REJECTED:
            note = "Message rejected on destination chain"
            self.processed.add(intent.intent_hash, ProcessedOutcome.REJECTED)
            self._update_ledger(
                record,
                [TransferStatus.PENDING, TransferStatus.SUBMITTED],
                bridge_status=TransferStatus.FAILED,
                note=note,
            )
            return SubmissionResult(
                outcome=SubmissionOutcome.REJECTED,
                intent_hash=intent.intent_hash,
                message_hash=msg_hash,
                existing_state=message.state,
                note=note,
            )

        self.processed.add(intent.intent_hash, ProcessedOutcome.DUPLICATE)
        if message.state == MessageState.FINALIZED:
            note = NOTE_ALREADY_FINALIZED
            self._update_ledger(
                record,
                [TransferStatus.PENDING, TransferStatus.SUBMITTED],
                bridge_status=TransferStatus.COMPLETED,
                note=note,
            )
        else:
            note = NOTE_ALREADY_PENDING
            self._update_ledger(
                record,
                [TransferStatus.PENDING],
                bridge_status=TransferStatus.SUBMITTED,
                note=note,
            )
        return SubmissionResult(
            outcome=SubmissionOutcome.DUPLICATE,
            intent_hash=intent.intent_hash,
            message_hash=msg_hash,
            existing_state=message.state,
            note=note,
        )

    def reject(self, intent: Intent, reason: str, record_id: Optional[str] = None) -> SubmissionResult:
        """Mark an intent as permanently rejected without sending anything"""
        logger.error(f"Intent {intent.intent_hash} rejected: {reason}")
        self.processed.add(intent.intent_hash, ProcessedOutcome.REJECTED)
        record = self._ledger_record(intent, record_id)
        self._update_ledger(
            record,
            [TransferStatus.PENDING],
            bridge_status=TransferStatus.FAILED,
            note=reason,
            last_error=reason,
        )
        return SubmissionResult(
            outcome=SubmissionOutcome.REJECTED,
            intent_hash=intent.intent_hash,
            message_hash=message_hash(intent),
            note=reason,
        )
