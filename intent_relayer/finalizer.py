"""
Finalizer - moves PENDING messages on one destination chain past their
challenge period and triggers the mint.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ._rate_limited_log import rate_limited_log
from .abi import MESSAGE_INBOX_ABI, SETTLEMENT_ABI
from .chain import ChainClient
from .config import ChainConfig
from .exceptions import ChainError, DuplicateMessageError
from .models import Message, MessageState, hash_bytes, normalize_hash, short_hash
from .signer import Signer
from .state import RelayStateStore

logger = logging.getLogger(__name__)


@dataclass
class FinalizerTickReport:
    """What one Finalizer tick did"""
    pending: int = 0
    finalized: List[str] = field(default_factory=list)
    minted: List[str] = field(default_factory=list)
    waiting: List[str] = field(default_factory=list)
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


class Finalizer:
    """
    Finalizes messages whose challenge period has elapsed and executes the
    matching mint on the settlement contract.

    A message whose ``finalize`` succeeded but whose mint did not is kept in
    the state store's outstanding-mint list and retried first on every tick.
    """

    def __init__(
        self,
        chain: ChainClient,
        chain_config: ChainConfig,
        signer: Signer,
        state: RelayStateStore,
        on_finalized: Optional[Callable[[Message], None]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.chain = chain
        self.chain_config = chain_config
        self.inbox_address = chain_config.message_inbox
        self.settlement_address = chain_config.settlement
        self.signer = signer
        self.state = state
        self.on_finalized = on_finalized
        self.stop_event = stop_event or threading.Event()

    @property
    def name(self) -> str:
        return f"finalizer:{self.chain_config.name}"

    @property
    def state_key(self) -> str:
        return self.chain_config.name

    def get_message(self, msg_hash: str) -> Message:
        raw = self.chain.call(self.inbox_address, MESSAGE_INBOX_ABI, "getMessage", [hash_bytes(msg_hash)])
        return Message.from_tuple(msg_hash, raw)

    def pending_hashes(self) -> List[str]:
        count = int(self.chain.call(self.inbox_address, MESSAGE_INBOX_ABI, "getPendingCount"))
        hashes = []
        for index in range(count):
            raw = self.chain.call(self.inbox_address, MESSAGE_INBOX_ABI, "pendingMessages", [index])
            hashes.append(normalize_hash(raw))
        return hashes

    def time_remaining(self, msg_hash: str) -> int:
        return int(self.chain.call(self.inbox_address, MESSAGE_INBOX_ABI, "getTimeRemaining", [hash_bytes(msg_hash)]))

    def tick(self) -> FinalizerTickReport:
        report = FinalizerTickReport()
        self._retry_outstanding_mints(report)

        hashes = self.pending_hashes()
        report.pending = len(hashes)
        if hashes:
            logger.debug(f"[{self.name}] {len(hashes)} pending messages")

        for msg_hash in hashes:
            if self.stop_event.is_set():
                break
            try:
                self._process(msg_hash, report)
            except ChainError as e:
                logger.error(f"[{self.name}] Error processing message {msg_hash}: {e}")
                report.errors.append(msg_hash)
            except Exception:
                logger.exception(f"[{self.name}] Unexpected error processing message {msg_hash}")
                report.errors.append(msg_hash)
        return report

    def _process(self, msg_hash: str, report: FinalizerTickReport) -> None:
        message = self.get_message(msg_hash)
        if message.state != MessageState.PENDING:
            logger.debug(f"[{self.name}] Skipping {short_hash(msg_hash)} in state {message.state.name}")
            report.skipped += 1
            return

        remaining = self.time_remaining(msg_hash)
        if remaining > 0:
            rate_limited_log(
                f"[{self.name}] Message {short_hash(msg_hash)}: {remaining}s remaining in challenge period",
                level="info",
                interval=60,
                logger_instance=logger,
                key=f"remaining:{msg_hash}",
            )
            report.waiting.append(msg_hash)
            return

        # must precede finalize; a finalize whose receipt is lost still needs its mint
        self.state.add_outstanding_mint(self.state_key, msg_hash)
        logger.info(f"[{self.name}] Finalizing message {short_hash(msg_hash)}")
        self._send_once(
            self.inbox_address, MESSAGE_INBOX_ABI, "finalize", msg_hash,
            self.chain_config.gas_limits.finalize,
        )
        report.finalized.append(msg_hash)
        self._mint(message, report)

    def _send_once(self, address: str, abi, method: str, msg_hash: str, gas: int) -> None:
        """Send a per-message transaction; an "already done" revert counts as success"""
        try:
            self.chain.send(address, abi, method, [hash_bytes(msg_hash)], self.signer, gas=gas)
        except DuplicateMessageError as e:
            logger.info(f"[{self.name}] {method} for {short_hash(msg_hash)} already done: {e}")

    def _mint(self, message: Message, report: FinalizerTickReport) -> None:
        msg_hash = message.message_hash
        logger.info(f"[{self.name}] Executing mint for {short_hash(msg_hash)}")
        self._send_once(
            self.settlement_address, SETTLEMENT_ABI, "executeMint", msg_hash,
            self.chain_config.gas_limits.mint,
        )
        self.state.remove_outstanding_mint(self.state_key, msg_hash)
        report.minted.append(msg_hash)
        logger.info(
            f"[{self.name}] Message {short_hash(msg_hash)} finalized and minted "
            f"({message.amount} to {message.recipient})"
        )
        if self.on_finalized is not None:
            try:
                self.on_finalized(message)
            except Exception:
                logger.exception(f"[{self.name}] on_finalized callback failed for {msg_hash}")

    def _retry_outstanding_mints(self, report: FinalizerTickReport) -> None:
        for msg_hash in self.state.outstanding_mints(self.state_key):
            if self.stop_event.is_set():
                return
            try:
                message = self.get_message(msg_hash)
                if message.state != MessageState.FINALIZED:
                    # finalize never landed; the pending scan picks it up again
                    logger.info(
                        f"[{self.name}] Message {short_hash(msg_hash)} is {message.state.name}, "
                        f"not finalized: dropping outstanding mint"
                    )
                    self.state.remove_outstanding_mint(self.state_key, msg_hash)
                    continue
                logger.info(f"[{self.name}] Retrying outstanding mint for {short_hash(msg_hash)}")
                self._mint(message, report)
            except ChainError as e:
                logger.error(f"[{self.name}] Mint retry failed for {msg_hash}: {e}")
                report.errors.append(msg_hash)
            except Exception:
                logger.exception(f"[{self.name}] Unexpected error retrying mint for {msg_hash}")
                report.errors.append(msg_hash)
