"""
BacklogReconciler - repairs transfers stuck PENDING in the durable ledger.

A transfer can be left PENDING when the relay was down, or when a
submission failed mid-flight. The reconciler rebuilds the intent from the
ledger record and resubmits it through the same Submitter the live relay
uses; the inbox rejects anything that already landed.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from .exceptions import ChainError, PermanentChainError
from .ledger import TransferLedger
from .models import (
    ZERO_ADDRESS, Intent, SubmissionOutcome, TransferRecord, TransferStatus, short_hash
)
from .scheduler import sleep
from .submitter import Submitter

logger = logging.getLogger(__name__)

BRIDGE_TYPE = "Bridge"


@dataclass
class BacklogSummary:
    total: int = 0
    processed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    would_submit: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"total={self.total} processed={self.processed} completed={self.completed} "
            f"failed={self.failed} skipped={self.skipped} errors={self.errors}"
        )


class BacklogReconciler:
    """Resubmits PENDING Bridge records for one relay direction"""

    def __init__(
        self,
        ledger: TransferLedger,
        submitter: Submitter,
        src_chain_id: int,
        dst_chain_id: int,
        rate_limit_seconds: float = 2.0,
        stop_event: Optional[threading.Event] = None,
    ):
        self.ledger = ledger
        self.submitter = submitter
        self.src_chain_id = src_chain_id
        self.dst_chain_id = dst_chain_id
        self.rate_limit_seconds = rate_limit_seconds
        self.stop_event = stop_event or threading.Event()

    def pending_records(self) -> List[TransferRecord]:
        return self.ledger.query(type=BRIDGE_TYPE, status=TransferStatus.PENDING)

    def _matches_direction(self, record: TransferRecord) -> bool:
        if record.src_chain_id is not None and record.src_chain_id != self.src_chain_id:
            return False
        if record.dst_chain_id is not None and record.dst_chain_id != self.dst_chain_id:
            return False
        return True

    def build_intent(self, record: TransferRecord) -> Intent:
        """
        Rebuild an Intent from a ledger record.

        Raises:
            ValueError: If the record's hash, addresses or value are invalid
        """
        return Intent(
            intent_hash=record.intent_hash,
            user=record.from_addr,
            src_chain_id=record.src_chain_id or self.src_chain_id,
            dst_chain_id=record.dst_chain_id or self.dst_chain_id,
            token=record.token or ZERO_ADDRESS,
            amount=record.amount_wei(),
            recipient=record.recipient or record.from_addr,
        )

    def run_once(self, dry_run: bool = False) -> BacklogSummary:
        """
        One reconciliation pass over every PENDING Bridge record.

        Args:
            dry_run: Only report which records would be resubmitted

        Returns:
            BacklogSummary counts for the pass
        """
        records = self.pending_records()
        summary = BacklogSummary(total=len(records))
        logger.info(f"Backlog: {len(records)} pending bridge transfers")

        first = True
        for record in records:
            if self.stop_event.is_set():
                logger.info("Backlog pass interrupted by shutdown")
                break

            if not record.intent_hash:
                logger.warning(f"Skipping {record.tx_id}: no intentHash")
                summary.skipped += 1
                continue
            if not self._matches_direction(record):
                logger.debug(f"Skipping {record.tx_id}: belongs to another direction")
                summary.skipped += 1
                continue

            try:
                intent = self.build_intent(record)
            except ValueError as e:
                logger.error(f"Record {record.tx_id} cannot be relayed: {e}")
                self.ledger.compare_and_set(
                    record.tx_id,
                    [TransferStatus.PENDING],
                    {"bridge_status": TransferStatus.FAILED, "note": f"Invalid record: {e}", "last_error": str(e)},
                )
                summary.failed += 1
                continue

            if dry_run:
                logger.info(f"[dry run] Would resubmit {record.tx_id} (intent {short_hash(intent.intent_hash)})")
                summary.would_submit.append(record.tx_id)
                continue

            if not first and sleep(self.rate_limit_seconds, self.stop_event):
                logger.info("Backlog pass interrupted by shutdown")
                break
            first = False

            self._reconcile(record, intent, summary)

        logger.info(f"Backlog pass done: {summary}")
        return summary

    def _reconcile(self, record: TransferRecord, intent: Intent, summary: BacklogSummary) -> None:
        logger.info(f"Processing {record.tx_id}: intent {short_hash(intent.intent_hash)}, amount {record.value}")
        try:
            result = self.submitter.submit(intent, record_id=record.tx_id)
        except PermanentChainError as e:
            logger.error(f"Record {record.tx_id} failed permanently: {e}")
            summary.failed += 1
            return
        except ChainError as e:
            logger.error(f"Record {record.tx_id} failed, left PENDING: {e}")
            summary.errors += 1
            return
        except Exception as e:
            logger.exception(f"Unexpected error reconciling {record.tx_id}")
            self.ledger.record_error(record.tx_id, str(e))
            summary.errors += 1
            return

        if result.outcome == SubmissionOutcome.SUBMITTED:
            summary.processed += 1
        elif result.outcome == SubmissionOutcome.REJECTED:
            summary.failed += 1
        else:
            summary.completed += 1
