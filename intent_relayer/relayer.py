"""
DirectionalRelayer - the Watcher/Submitter pair for one relay direction.

Both directions of a bridge are instances of this class with different
configuration; nothing about the pipeline is direction-specific.
"""
import logging
import threading
from typing import Optional

from .attestation import IntentSigner
from .chain import ChainClient
from .config import ChainConfig, DirectionConfig
from .ledger import TransferLedger
from .scheduler import PeriodicTask
from .state import ProcessedSet, RelayStateStore
from .submitter import Submitter
from .watcher import Watcher, WatcherTickReport

logger = logging.getLogger(__name__)


class DirectionalRelayer:
    """Relays intents from ``direction.source`` to ``direction.destination``"""

    def __init__(
        self,
        direction: DirectionConfig,
        source_config: ChainConfig,
        destination_config: ChainConfig,
        source_chain: ChainClient,
        destination_chain: ChainClient,
        intent_signer: IntentSigner,
        state: RelayStateStore,
        ledger: Optional[TransferLedger] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.direction = direction
        self.stop_event = stop_event or threading.Event()
        self.processed = ProcessedSet(state, direction.name)
        self.submitter = Submitter(
            chain=destination_chain,
            inbox_address=destination_config.message_inbox,
            intent_signer=intent_signer,
            processed=self.processed,
            ledger=ledger,
            gas_limit=destination_config.gas_limits.submit,
        )
        self.watcher = Watcher(
            chain=source_chain,
            direction=direction,
            source_address=source_config.intent_commitment,
            src_chain_id=source_config.chain_id,
            dst_chain_id=destination_config.chain_id,
            submitter=self.submitter,
            processed=self.processed,
            state=state,
            stop_event=self.stop_event,
        )

    @property
    def name(self) -> str:
        return self.direction.name

    def tick(self) -> WatcherTickReport:
        return self.watcher.tick()

    def task(self) -> PeriodicTask:
        """PeriodicTask polling the source chain every ``poll_interval``"""
        return PeriodicTask(
            name=f"relay:{self.name}",
            fn=self.tick,
            interval=self.direction.poll_interval,
            stop_event=self.stop_event,
        )
