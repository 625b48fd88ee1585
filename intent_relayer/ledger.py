"""
Durable transfer ledger.

The ledger is the system of record for transfers. The relay only ever moves
a record's ``bridgeStatus`` forward and does so with compare-and-set, so the
live relayer and the backlog reconciler can update it concurrently.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import LedgerError
from .models import TransferRecord, TransferStatus, normalize_hash
from .state import LockedJsonFile

logger = logging.getLogger(__name__)


class TransferLedger(ABC):
    """Abstract store of TransferRecords keyed by transaction id"""

    @abstractmethod
    def get(self, tx_id: str) -> Optional[TransferRecord]:
        """Fetch a record by id, or None"""

    @abstractmethod
    def put(self, record: TransferRecord) -> None:
        """Insert or replace a record"""

    @abstractmethod
    def query(self, type: Optional[str] = None, status: Optional[TransferStatus] = None) -> List[TransferRecord]:
        """Records matching ``type`` and ``bridgeStatus`` (None matches all)"""

    @abstractmethod
    def compare_and_set(
        self,
        tx_id: str,
        expected_statuses: Iterable[TransferStatus],
        updates: Dict[str, Any],
    ) -> Optional[TransferRecord]:
        """
        Apply ``updates`` only if the record's status is one of
        ``expected_statuses``.

        Returns:
            The updated record, or None if the record is missing or its
            status did not match
        """

    def find_by_intent_hash(self, intent_hash: str) -> Optional[TransferRecord]:
        intent_hash = normalize_hash(intent_hash)
        for record in self.query():
            if record.intent_hash and normalize_hash(record.intent_hash) == intent_hash:
                return record
        return None

    def record_error(self, tx_id: str, error: str) -> Optional[TransferRecord]:
        """Store the last error on a record that is still PENDING"""
        return self.compare_and_set(tx_id, [TransferStatus.PENDING], {"last_error": error})


def _apply_updates(document: Dict[str, Any], updates: Dict[str, Any]) -> TransferRecord:
    record = TransferRecord.model_validate(document)
    return record.model_copy(update=updates)


class JsonTransferLedger(TransferLedger):
    """
    TransferLedger backed by a single JSON document, locked with portalocker.

    File layout: ``{"transactions": {tx_id: {...record document...}}}``
    """

    EMPTY = {"transactions": {}}

    def __init__(self, path: str):
        self.file = LockedJsonFile(path, self.EMPTY)
        self.path = self.file.path

    def _parse(self, tx_id: str, document: Dict[str, Any]) -> TransferRecord:
        document = dict(document)
        document.setdefault("tx_id", tx_id)
        try:
            return TransferRecord.model_validate(document)
        except ValueError as e:
            raise LedgerError(f"Ledger record {tx_id} is malformed: {e}") from e

    def get(self, tx_id: str) -> Optional[TransferRecord]:
        document = self.file.read()["transactions"].get(tx_id)
        return self._parse(tx_id, document) if document is not None else None

    def put(self, record: TransferRecord) -> None:
        def _put(data):
            data["transactions"][record.tx_id] = record.to_document()
        self.file.update(_put)

    def query(self, type: Optional[str] = None, status: Optional[TransferStatus] = None) -> List[TransferRecord]:
        records = []
        for tx_id, document in self.file.read()["transactions"].items():
            if type is not None and document.get("type") != type:
                continue
            if status is not None and document.get("bridgeStatus") != TransferStatus(status).value:
                continue
            try:
                records.append(self._parse(tx_id, document))
            except LedgerError as e:
                logger.warning(f"Skipping ledger record: {e}")
        return records

    def compare_and_set(
        self,
        tx_id: str,
        expected_statuses: Iterable[TransferStatus],
        updates: Dict[str, Any],
    ) -> Optional[TransferRecord]:
        expected = {TransferStatus(status).value for status in expected_statuses}

        def _cas(data):
            document = data["transactions"].get(tx_id)
            if document is None or document.get("bridgeStatus") not in expected:
                return None
            document = dict(document, tx_id=tx_id)
            updated = _apply_updates(document, updates)
            data["transactions"][tx_id] = updated.to_document()
            return updated

        updated = self.file.update(_cas)
        if updated is None:
            logger.debug(f"Ledger record {tx_id} not updated: status not in {sorted(expected)}")
        return updated
