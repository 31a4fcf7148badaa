"""Dedup store contract and the no-op fallback store."""
import logging
from abc import ABC, abstractmethod
from typing import Iterable

logger = logging.getLogger(__name__)


# Value stored against every seen event id; only presence is meaningful
SEEN_SENTINEL = '!'


class DedupStore(ABC):
    """Persisted set of event ids that have already been processed."""

    @abstractmethod
    def exists(self, event_id: str) -> bool:
        """
        Check whether an event id has been recorded.

        Args:
            event_id: Source event id

        Returns:
            True if the id was recorded by an earlier call to record()

        Raises:
            StorageError: If the underlying storage cannot be read
        """

    @abstractmethod
    def record(self, event_ids: Iterable[str]) -> None:
        """
        Mark every id in the batch as seen.

        Recording an id that is already present is a no-op. Either the whole
        batch becomes visible to exists() or StorageError is raised.

        Args:
            event_ids: Source event ids

        Raises:
            StorageError: If the batch could not be written
        """

    def close(self) -> None:
        """Release the storage handle."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False


class NoopDedupStore(DedupStore):
    """Store that remembers nothing; every event is reported as new."""

    def exists(self, event_id: str) -> bool:
        return False

    def record(self, event_ids: Iterable[str]) -> None:
        logger.warning(
            f"No-op dedup store in use, {len(list(event_ids))} ids not persisted"
        )
