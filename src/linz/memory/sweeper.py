"""Retention sweep for consolidated short-term records."""

import logging
from datetime import datetime, timedelta

from ..errors import PurgeError, StorageError
from .store import RecordStore

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Deletes consolidated conversation records older than the retention window.

    Pending records are never touched, whatever their age; memory records
    are not part of the sweep.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    @staticmethod
    def cutoff(retention_hours: float, now: datetime) -> datetime:
        return now - timedelta(hours=retention_hours)

    def purge(self, retention_hours: float, now: datetime) -> int:
        """Delete consolidated records created at or before ``now - retention_hours``.

        Returns:
            Number of records deleted.

        Raises:
            PurgeError: If the delete fails.
        """
        cutoff = self.cutoff(retention_hours, now)
        try:
            purged = self.store.delete_consolidated_before(cutoff)
        except StorageError as e:
            raise PurgeError(f"Failed to purge consolidated records: {e}") from e

        logger.info("Purged %d old consolidated short-term records", purged)
        return purged
