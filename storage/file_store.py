"""Flat-file dedup store, one event id per line."""
import logging
import os
import tempfile
from typing import Iterable, Set

from filelock import FileLock, Timeout

from processor.errors import StorageError
from storage.dedup_store import DedupStore

logger = logging.getLogger(__name__)


class FileDedupStore(DedupStore):
    """
    Dedup store backed by a text file.

    The whole id set is loaded when the store is opened. Each call to
    record() takes an exclusive lock on a sidecar ``.lock`` file, merges
    the batch with the ids currently on disk, and rewrites the file through
    a temporary file and an atomic rename. Concurrent writers therefore
    never drop each other's ids, and a batch is either fully on disk or
    not at all.
    """

    LOCK_TIMEOUT = 30  # seconds

    def __init__(self, path: str):
        """
        Open the store, creating parent directories as needed.

        Args:
            path: Path of the id file; a missing file is an empty store

        Raises:
            StorageError: If the file cannot be read
        """
        self.path = path
        self.lock = FileLock(path + '.lock', timeout=self.LOCK_TIMEOUT)

        try:
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, mode=0o700, exist_ok=True)
            self._ids = self._read_ids()
        except OSError as e:
            raise StorageError(f"Can't open storage file {path}: {e}") from e

        logger.info(f"Loaded {len(self._ids)} seen event ids from {path}")

    def exists(self, event_id: str) -> bool:
        return event_id in self._ids

    def record(self, event_ids: Iterable[str]) -> None:
        batch = set(event_ids)
        if not batch:
            return

        for event_id in batch:
            if '\n' in event_id or '\r' in event_id:
                raise StorageError(
                    f"Event id {event_id!r} can't be stored in a line-based file",
                    event_id=event_id
                )

        try:
            with self.lock:
                on_disk = self._read_ids()
                new_ids = batch - on_disk
                if new_ids:
                    self._write_ids(on_disk | new_ids)
        except Timeout as e:
            raise StorageError(f"Can't lock {self.path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Can't add ids to {self.path}: {e}") from e

        self._ids = self._ids | on_disk | batch
        if new_ids:
            logger.info(f"Recorded {len(new_ids)} new event ids in {self.path}")

    def _read_ids(self) -> Set[str]:
        if not os.path.exists(self.path):
            return set()
        with open(self.path, encoding='utf-8') as f:
            return {line.rstrip('\n') for line in f if line.strip()}

    def _write_ids(self, ids: Set[str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.seen-')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                for event_id in sorted(ids):
                    f.write(event_id + '\n')
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
