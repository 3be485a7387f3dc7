"""Grouping of short-term records into per-(family, user) batches."""

import logging
from datetime import datetime, timedelta

from .models import ConsolidationBatch, ShortTermRecord
from .store import RecordStore

logger = logging.getLogger(__name__)


class BatchSelector:
    """Loads consolidation candidates and groups them by (family, user).

    Eligible records are the pending conversations created inside the
    lookback window, plus every standing memory record regardless of age.
    A null user is its own group and never merges with a named user of
    the same family.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def select(
        self,
        now: datetime,
        window_hours: float,
        limit: int,
    ) -> list[ConsolidationBatch]:
        """Build the batches for one job cycle.

        Args:
            now: Reference time of the run.
            window_hours: Lookback window for pending conversations.
            limit: Maximum number of conversation records to load.

        Returns:
            One batch per (family, user) pair with at least one record,
            records sorted by creation time. Storage errors propagate.
        """
        since = now - timedelta(hours=window_hours)
        conversations = self.store.find_unconsolidated(since, limit)
        memories = self.store.find_all_memory_records()

        batches = group_records([*conversations, *memories])
        logger.info(
            "Selected %d batches from %d conversations and %d memory records",
            len(batches),
            len(conversations),
            len(memories),
        )
        return batches


def group_records(records: list[ShortTermRecord]) -> list[ConsolidationBatch]:
    """Group records by (family_id, user_id), keeping first-seen group order."""
    batches: dict[tuple[int, str | None], ConsolidationBatch] = {}
    for record in records:
        key = (record.family_id, record.user_id)
        batch = batches.get(key)
        if batch is None:
            batch = batches[key] = ConsolidationBatch(
                family_id=record.family_id,
                user_id=record.user_id,
            )
        batch.records.append(record)

    for batch in batches.values():
        batch.records.sort(key=lambda r: (r.created_at, r.kind.value, r.id))
    return list(batches.values())
