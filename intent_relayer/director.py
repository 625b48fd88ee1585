"""
RelayDirector - builds the relay from configuration and owns its lifecycle.
"""
import logging
import signal
import threading
from typing import Dict, List, Mapping, Optional

from .attestation import IntentSigner
from .backlog import BacklogReconciler
from .chain import ChainClient, build_client
from .config import RelayConfig, resolve_keys
from .finalizer import Finalizer
from .ledger import JsonTransferLedger, TransferLedger
from .models import Message, TransferStatus, short_hash
from .relayer import DirectionalRelayer
from .scheduler import PeriodicTask
from .signer import LocalSigner, Signer
from .state import RelayStateStore

logger = logging.getLogger(__name__)

NOTE_FINALIZED = "Finalized and minted on destination chain"


class RelayDirector:
    """
    Owns every loop of one relay process.

    One DirectionalRelayer per enabled direction, one Finalizer per
    destination chain and, when ``backlog.interval`` is set, a scheduled
    BacklogReconciler. All of them share one stop event.
    """

    def __init__(
        self,
        config: RelayConfig,
        clients: Dict[str, ChainClient],
        tss_signer: Signer,
        finalizer_signer: Signer,
        state: RelayStateStore,
        ledger: Optional[TransferLedger] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.clients = clients
        self.tss_signer = tss_signer
        self.finalizer_signer = finalizer_signer
        self.intent_signer = IntentSigner(tss_signer)
        self.state = state
        self.ledger = ledger
        self.stop_event = stop_event or threading.Event()

        self.relayers: Dict[str, DirectionalRelayer] = {
            direction.name: self._build_relayer(direction.name)
            for direction in config.enabled_directions()
        }
        self.finalizers: Dict[str, Finalizer] = {
            chain_config.name: Finalizer(
                chain=self.clients[chain_config.name],
                chain_config=chain_config,
                signer=self.finalizer_signer,
                state=self.state,
                on_finalized=self.mark_completed,
                stop_event=self.stop_event,
            )
            for chain_config in config.destination_chains()
        }
        self.tasks: List[PeriodicTask] = []

    @classmethod
    def from_config(cls, config: RelayConfig, env: Optional[Mapping[str, str]] = None) -> "RelayDirector":
        """
        Build a director with ChainClients, local signers and JSON stores.

        Raises:
            ConfigError: If a signing key is missing
        """
        tss_key, finalizer_key = resolve_keys(config, env)
        stop_event = threading.Event()
        clients = {
            name: build_client(chain_config, config.rpc, stop_event)
            for name, chain_config in config.chains.items()
        }
        return cls(
            config=config,
            clients=clients,
            tss_signer=LocalSigner(tss_key),
            finalizer_signer=LocalSigner(finalizer_key),
            state=RelayStateStore(config.storage.state_path),
            ledger=JsonTransferLedger(config.storage.ledger_path),
            stop_event=stop_event,
        )

    def _build_relayer(self, direction_name: str) -> DirectionalRelayer:
        direction = self.config.direction(direction_name)
        return DirectionalRelayer(
            direction=direction,
            source_config=self.config.chain(direction.source),
            destination_config=self.config.chain(direction.destination),
            source_chain=self.clients[direction.source],
            destination_chain=self.clients[direction.destination],
            intent_signer=self.intent_signer,
            state=self.state,
            ledger=self.ledger,
            stop_event=self.stop_event,
        )

    def relayer(self, direction_name: str) -> DirectionalRelayer:
        """The relayer for a direction, built on demand for disabled directions"""
        if direction_name not in self.relayers:
            return self._build_relayer(direction_name)
        return self.relayers[direction_name]

    def backlog_reconciler(self, direction_name: str) -> BacklogReconciler:
        """
        Build a BacklogReconciler for one direction.

        Raises:
            ConfigError: If the direction is unknown
            ValueError: If the director has no ledger
        """
        if self.ledger is None:
            raise ValueError("Backlog reconciliation requires a transfer ledger")
        relayer = self.relayer(direction_name)
        direction = relayer.direction
        return BacklogReconciler(
            ledger=self.ledger,
            submitter=relayer.submitter,
            src_chain_id=self.config.chain(direction.source).chain_id,
            dst_chain_id=self.config.chain(direction.destination).chain_id,
            rate_limit_seconds=self.config.backlog.rate_limit_seconds,
            stop_event=self.stop_event,
        )

    def mark_completed(self, message: Message) -> None:
        """Finalizer callback: mark the transfer's ledger record COMPLETED"""
        if self.ledger is None:
            return
        record = self.ledger.find_by_intent_hash(message.intent_hash)
        if record is None:
            logger.debug(f"No ledger record for intent {short_hash(message.intent_hash)}")
            return
        updated = self.ledger.compare_and_set(
            record.tx_id,
            [TransferStatus.PENDING, TransferStatus.SUBMITTED],
            {"bridge_status": TransferStatus.COMPLETED, "note": NOTE_FINALIZED, "last_error": None},
        )
        if updated is not None:
            logger.info(f"Ledger record {record.tx_id} -> COMPLETED")

    def preflight(self) -> None:
        """
        Check every chain's RPC endpoint before starting.

        Raises:
            ChainConnectionError: If an endpoint is unreachable or on the wrong chain
        """
        used = set()
        for direction in self.config.enabled_directions():
            used.update((direction.source, direction.destination))
        for name in sorted(used):
            self.clients[name].check_connection(self.config.chain(name).chain_id)
        logger.info(f"TSS signer: {self.tss_signer.address}")
        logger.info(f"Finalizer signer: {self.finalizer_signer.address}")

    def build_tasks(self) -> List[PeriodicTask]:
        tasks = [relayer.task() for relayer in self.relayers.values()]
        for name, finalizer in self.finalizers.items():
            tasks.append(PeriodicTask(
                name=finalizer.name,
                fn=finalizer.tick,
                interval=self.config.chain(name).finalize_interval,
                stop_event=self.stop_event,
            ))

        backlog = self.config.backlog
        if backlog.interval and self.ledger is not None:
            names = [backlog.direction] if backlog.direction else list(self.relayers)
            for direction_name in names:
                reconciler = self.backlog_reconciler(direction_name)
                tasks.append(PeriodicTask(
                    name=f"backlog:{direction_name}",
                    fn=reconciler.run_once,
                    interval=backlog.interval,
                    stop_event=self.stop_event,
                ))
        return tasks

    def start(self) -> None:
        if self.tasks:
            raise RuntimeError("Relay already started")
        self.tasks = self.build_tasks()
        for task in self.tasks:
            task.start()
        logger.info(f"Relay started with {len(self.tasks)} tasks: {', '.join(t.name for t in self.tasks)}")

    def stop(self) -> None:
        """Signal every task to stop; in-flight ticks run to completion"""
        if not self.stop_event.is_set():
            logger.info("Stopping relay")
        self.stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        for task in self.tasks:
            task.join(timeout)

    def run_forever(self) -> None:
        """Start every task and block until SIGINT/SIGTERM"""

        def _handle_signal(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
            self.stop()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        self.start()
        while not self.stop_event.wait(1.0):
            pass
        self.join()
        logger.info("Relay stopped")
