"""
Watcher - observes IntentCommitted events on a source chain.

One tick scans ``(watermark, min(head, watermark + max_block_range)]``,
hands confirmed intents to the Submitter and only moves the watermark when
every event in the range is finished. Unfinished intents are picked up
again on the next tick; the ProcessedSet keeps rescans cheap.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ._rate_limited_log import rate_limited_log
from .abi import INTENT_COMMITMENT_ABI, INTENT_COMMITTED_EVENT
from .chain import ChainClient
from .config import DirectionConfig
from .exceptions import ChainError, ConfirmationTimeoutError, PermanentChainError
from .models import Intent, LogEntry, SubmissionOutcome, short_hash
from .state import ProcessedSet, RelayStateStore
from .submitter import Submitter

logger = logging.getLogger(__name__)


@dataclass
class WatcherTickReport:
    """What one Watcher tick did"""
    head: int
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    events: int = 0
    submitted: int = 0
    duplicates: int = 0
    skipped: int = 0
    rejected: int = 0
    awaiting: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    watermark: Optional[int] = None
    advanced: bool = False


class Watcher:
    """Polls one source chain for intents bound to one destination"""

    def __init__(
        self,
        chain: ChainClient,
        direction: DirectionConfig,
        source_address: str,
        src_chain_id: int,
        dst_chain_id: int,
        submitter: Submitter,
        processed: ProcessedSet,
        state: RelayStateStore,
        clock: Callable[[], float] = time.time,
        stop_event: Optional[threading.Event] = None,
    ):
        self.chain = chain
        self.direction = direction
        self.source_address = source_address
        self.src_chain_id = src_chain_id
        self.dst_chain_id = dst_chain_id
        self.submitter = submitter
        self.processed = processed
        self.state = state
        self.clock = clock
        self.stop_event = stop_event or threading.Event()
        # intent hash -> first time it was seen unconfirmed
        self._awaiting: Dict[str, float] = {}

    @property
    def name(self) -> str:
        return self.direction.name

    def watermark(self, head: Optional[int] = None) -> int:
        """
        Last fully processed source block.

        On first start the watermark is initialised to
        ``head - start_block_lookback`` and persisted.
        """
        stored = self.state.get_watermark(self.name)
        if stored is not None:
            return stored
        if head is None:
            head = self.chain.get_block_number()
        start = max(head - self.direction.start_block_lookback, 0)
        self.state.set_watermark(self.name, start)
        logger.info(f"[{self.name}] No checkpoint found, starting from block {start}")
        return start

    def tick(self) -> WatcherTickReport:
        head = self.chain.get_block_number()
        last = self.watermark(head)
        report = WatcherTickReport(head=head, watermark=last)

        if head <= last:
            rate_limited_log(
                f"[{self.name}] No new blocks (head {head}, watermark {last})",
                level="debug",
                logger_instance=logger,
                key=f"no-blocks:{self.name}",
            )
            return report

        from_block = last + 1
        to_block = min(head, last + self.direction.max_block_range)
        report.from_block, report.to_block = from_block, to_block

        entries = self.chain.get_logs(
            self.source_address,
            INTENT_COMMITMENT_ABI,
            INTENT_COMMITTED_EVENT,
            from_block,
            to_block,
        )
        report.events = len(entries)
        if entries:
            logger.info(f"[{self.name}] Found {len(entries)} intents in blocks {from_block}-{to_block}")

        all_finished = True
        for entry in entries:
            if self.stop_event.is_set():
                all_finished = False
                break
            if not self._handle(entry, head, report):
                all_finished = False

        if all_finished:
            self.state.set_watermark(self.name, to_block)
            report.watermark = to_block
            report.advanced = True
            logger.debug(f"[{self.name}] Watermark advanced to {to_block}")
        elif report.failed or report.awaiting:
            logger.info(
                f"[{self.name}] Holding watermark at {last}: "
                f"{len(report.awaiting)} awaiting confirmation, {len(report.failed)} failed"
            )
        return report

    def _handle(self, entry: LogEntry, head: int, report: WatcherTickReport) -> bool:
        """
        Process one event.

        Returns:
            True if the event is finished and need not be seen again
        """
        try:
            intent = Intent.from_event(entry)
        except (KeyError, ValueError) as e:
            logger.error(f"[{self.name}] Skipping malformed IntentCommitted log in tx {entry.tx_hash}: {e}")
            report.skipped += 1
            return True

        if intent.src_chain_id != self.src_chain_id or intent.dst_chain_id != self.dst_chain_id:
            logger.debug(
                f"[{self.name}] Skipping intent {short_hash(intent.intent_hash)} for "
                f"{intent.src_chain_id}->{intent.dst_chain_id}"
            )
            report.skipped += 1
            return True

        if intent.intent_hash in self.processed:
            self._awaiting.pop(intent.intent_hash, None)
            report.skipped += 1
            return True

        confirmations = head - entry.block_number
        if confirmations < self.direction.required_confirmations:
            self._await(intent, confirmations)
            report.awaiting.append(intent.intent_hash)
            return False
        self._awaiting.pop(intent.intent_hash, None)

        if intent.is_expired(self.clock()):
            self.submitter.reject(intent, f"Intent expired at {intent.expiry}")
            report.rejected += 1
            return True

        try:
            result = self.submitter.submit(intent)
        except PermanentChainError:
            report.rejected += 1
            return True
        except ChainError as e:
            logger.error(f"[{self.name}] Failed to relay intent {intent.intent_hash}: {e}")
            report.failed.append(intent.intent_hash)
            return False
        except Exception:
            logger.exception(f"[{self.name}] Unexpected error relaying intent {intent.intent_hash}")
            report.failed.append(intent.intent_hash)
            return False

        if result.outcome == SubmissionOutcome.SUBMITTED:
            report.submitted += 1
        elif result.outcome == SubmissionOutcome.REJECTED:
            report.rejected += 1
        elif result.outcome == SubmissionOutcome.DUPLICATE:
            report.duplicates += 1
        else:
            report.skipped += 1
        return True

    def _await(self, intent: Intent, confirmations: int) -> None:
        now = self.clock()
        first_seen = self._awaiting.setdefault(intent.intent_hash, now)
        waited = now - first_seen
        if waited > self.direction.confirmation_timeout:
            error = ConfirmationTimeoutError(
                f"Intent {intent.intent_hash} still has {confirmations}/"
                f"{self.direction.required_confirmations} confirmations after {int(waited)}s",
                intent_hash=intent.intent_hash,
            )
            rate_limited_log(
                str(error),
                level="error",
                logger_instance=logger,
                key=f"confirmation-timeout:{intent.intent_hash}",
            )
            return
        rate_limited_log(
            f"[{self.name}] Intent {short_hash(intent.intent_hash)} awaiting confirmations "
            f"({confirmations}/{self.direction.required_confirmations})",
            level="info",
            interval=30,
            logger_instance=logger,
            key=f"awaiting:{intent.intent_hash}",
        )
