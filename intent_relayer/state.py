"""
Durable relay state.

Holds, per relay direction, the processed-intent set and the source-chain
watermark, and per destination chain the finalized messages whose mint is
still outstanding. Everything lives in one JSON document guarded by a
``portalocker`` file lock, so it survives restarts and concurrent readers.
"""
import os
import json
import stat
import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

# Import portalocker for file locking
try:
    import portalocker
except ImportError:
    raise ImportError(
        "portalocker package is required for the relay state store. "
        "Install with: pip install portalocker"
    )

from .exceptions import LedgerError
from .models import normalize_hash

logger = logging.getLogger(__name__)

T = TypeVar('T')


class LockedJsonFile:
    """Thread-safe and process-safe JSON document on disk"""

    def __init__(self, path: str, empty: Dict[str, Any], lock_timeout: float = 10):
        """
        Args:
            path: Location of the JSON document
            empty: Document contents to start from when the file does not exist
            lock_timeout: Seconds to wait for the file lock
        """
        self.path = Path(os.path.expanduser(str(path)))
        self.empty = empty
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self._ensure_file()

    def _ensure_file(self):
        """Ensure the document's directory and file exist with proper permissions"""
        directory = self.path.parent
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            # Set secure permissions on directory (Unix/Linux/Mac only)
            if os.name == 'posix':
                os.chmod(directory, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR)  # 0700

        if not self.path.exists():
            with portalocker.Lock(self._get_lock_path(), timeout=self.lock_timeout):
                if not self.path.exists():
                    self._write_unlocked(self.empty)

        if os.name == 'posix':
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)  # 0600

    def _get_lock_path(self) -> str:
        """Get path for the lock file"""
        return str(self.path) + '.lock'

    def _read_unlocked(self) -> Dict[str, Any]:
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return json.loads(json.dumps(self.empty))
        except json.JSONDecodeError as e:
            raise LedgerError(f"{self.path} is corrupt: {e}") from e
        for key, value in self.empty.items():
            data.setdefault(key, json.loads(json.dumps(value)))
        return data

    def _write_unlocked(self, data: Dict[str, Any]):
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)

    def read(self) -> Dict[str, Any]:
        """
        Read the document with proper locking.

        Returns:
            Dictionary with document contents
        """
        with self._lock, portalocker.Lock(self._get_lock_path(), timeout=self.lock_timeout):
            return self._read_unlocked()

    def update(self, fn: Callable[[Dict[str, Any]], T]) -> T:
        """
        Atomic read-modify-write.

        ``fn`` mutates the document in place; it is written back only if
        ``fn`` returns without raising.

        Returns:
            Whatever ``fn`` returns
        """
        with self._lock, portalocker.Lock(self._get_lock_path(), timeout=self.lock_timeout):
            data = self._read_unlocked()
            result = fn(data)
            self._write_unlocked(data)
            return result


class ProcessedOutcome(str, Enum):
    SUBMITTED = "submitted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class RelayStateStore:
    """Durable state shared by the relay loops of one process"""

    EMPTY = {"processed": {}, "watermarks": {}, "outstanding_mints": {}}

    def __init__(self, path: str):
        self.file = LockedJsonFile(path, self.EMPTY)
        self.path = self.file.path

    # Processed intents

    def processed_outcome(self, partition: str, intent_hash: str) -> Optional[ProcessedOutcome]:
        entry = self.file.read()["processed"].get(partition, {}).get(normalize_hash(intent_hash))
        return ProcessedOutcome(entry["outcome"]) if entry else None

    def mark_processed(
        self,
        partition: str,
        intent_hash: str,
        outcome: ProcessedOutcome,
        only_if_absent: bool = False,
    ) -> bool:
        """
        Record an intent as processed.

        Returns:
            False if ``only_if_absent`` and the intent was already recorded
        """
        intent_hash = normalize_hash(intent_hash)

        def _mark(data):
            entries = data["processed"].setdefault(partition, {})
            if only_if_absent and intent_hash in entries:
                return False
            entries[intent_hash] = {"outcome": ProcessedOutcome(outcome).value, "at": int(time.time())}
            return True

        return self.file.update(_mark)

    def processed_hashes(self, partition: str) -> Dict[str, ProcessedOutcome]:
        entries = self.file.read()["processed"].get(partition, {})
        return {h: ProcessedOutcome(entry["outcome"]) for h, entry in entries.items()}

    # Watermarks

    def get_watermark(self, key: str) -> Optional[int]:
        value = self.file.read()["watermarks"].get(key)
        return int(value) if value is not None else None

    def set_watermark(self, key: str, block: int) -> None:
        def _set(data):
            data["watermarks"][key] = int(block)
        self.file.update(_set)

    def watermarks(self) -> Dict[str, int]:
        return dict(self.file.read()["watermarks"])

    # Outstanding mints

    def outstanding_mints(self, key: str) -> List[str]:
        return list(self.file.read()["outstanding_mints"].get(key, []))

    def add_outstanding_mint(self, key: str, message_hash: str) -> None:
        message_hash = normalize_hash(message_hash)

        def _add(data):
            hashes = data["outstanding_mints"].setdefault(key, [])
            if message_hash not in hashes:
                hashes.append(message_hash)
        self.file.update(_add)

    def remove_outstanding_mint(self, key: str, message_hash: str) -> None:
        message_hash = normalize_hash(message_hash)

        def _remove(data):
            hashes = data["outstanding_mints"].get(key, [])
            if message_hash in hashes:
                hashes.remove(message_hash)
        self.file.update(_remove)


class ProcessedSet:
    """
    Dedup set of intents already handed downstream, for one direction.

    Reads are served from memory after the first load; every insert goes
    through the durable store so the set survives restarts.
    """

    def __init__(self, store: RelayStateStore, partition: str):
        self.store = store
        self.partition = partition
        self._lock = threading.RLock()
        self._cache: Dict[str, ProcessedOutcome] = store.processed_hashes(partition)
        logger.debug(f"Loaded {len(self._cache)} processed intents for {partition}")

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, intent_hash: str) -> bool:
        return self.contains(intent_hash)

    def contains(self, intent_hash: str) -> bool:
        return self.outcome(intent_hash) is not None

    def outcome(self, intent_hash: str) -> Optional[ProcessedOutcome]:
        intent_hash = normalize_hash(intent_hash)
        with self._lock:
            if intent_hash in self._cache:
                return self._cache[intent_hash]
            outcome = self.store.processed_outcome(self.partition, intent_hash)
            if outcome is not None:
                self._cache[intent_hash] = outcome
            return outcome

    def add_if_absent(self, intent_hash: str, outcome: ProcessedOutcome) -> bool:
        """
        Atomic check-then-insert.

        Returns:
            True if the intent was inserted, False if it was already present
        """
        intent_hash = normalize_hash(intent_hash)
        with self._lock:
            inserted = self.store.mark_processed(self.partition, intent_hash, outcome, only_if_absent=True)
            if inserted:
                self._cache[intent_hash] = ProcessedOutcome(outcome)
            else:
                self._cache.setdefault(intent_hash, self.store.processed_outcome(self.partition, intent_hash))
            return inserted

    def add(self, intent_hash: str, outcome: ProcessedOutcome) -> None:
        intent_hash = normalize_hash(intent_hash)
        with self._lock:
            self.store.mark_processed(self.partition, intent_hash, outcome)
            self._cache[intent_hash] = ProcessedOutcome(outcome)
