"""Merging of extraction results into the long-term fact store."""

import logging
from datetime import datetime

from ..errors import StaleBatchError
from .models import (
    CONSOLIDATION_SOURCE,
    ConsolidationBatch,
    ConsolidationSummary,
    ExtractedFact,
    ExtractionResult,
    ReconcileStats,
)
from .store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.9

# Tag -> words that mark a summary as being about that topic.
TAG_KEYWORDS: dict[str, tuple[str, ...]] = {
    "family_setup": ("family",),
    "meals": ("meal", "food", "recipe", "dinner", "lunch", "breakfast", "grocery"),
    "chores": ("chore", "task", "gig"),
    "budget": ("budget", "money", "allowance", "saving", "spend", "wallet"),
    "schedule": ("calendar", "schedule", "appointment"),
    "health": ("allerg", "health", "doctor", "medic"),
    "screen_time": ("screen time", "screen-time", "device"),
}


def infer_tags(summary: str) -> tuple[str, ...]:
    """Derive topic tags from the model's summary sentence."""
    text = summary.lower()
    return tuple(
        tag for tag, keywords in TAG_KEYWORDS.items() if any(kw in text for kw in keywords)
    )


class FactReconciler:
    """Commits one batch's extraction result atomically.

    Fact upserts, the summary row and the consolidation marking of the
    batch's records happen in a single transaction; any failure rolls all
    of them back and leaves the records pending for the next cycle.
    """

    def __init__(self, store: RecordStore, default_confidence: float = DEFAULT_CONFIDENCE) -> None:
        self.store = store
        self.default_confidence = default_confidence

    def _confidence(self, fact: ExtractedFact) -> float:
        if fact.confidence is None:
            return self.default_confidence
        if not 0 <= fact.confidence <= 1:
            logger.warning(
                "Clamping out-of-range confidence %s for fact %s", fact.confidence, fact.key
            )
        return min(1.0, max(0.0, fact.confidence))

    def reconcile(
        self,
        batch: ConsolidationBatch,
        result: ExtractionResult,
        run_id: str,
        now: datetime,
    ) -> ReconcileStats:
        """Apply a validated extraction result for its originating batch.

        New and updated facts are both upserts on (family, user, key). A
        fact's own ``userId`` picks the user when the model supplied one,
        otherwise the batch's user is used.

        Args:
            batch: The batch the result was extracted from.
            result: Validated model output.
            run_id: Identifier of the current job run.
            now: Reference time of the run.

        Returns:
            Counts of what was written.

        Raises:
            StaleBatchError: If another run consolidated any of the records first.
            StorageError: If any write fails; nothing is committed then.
        """
        created = 0
        pending_ids = batch.pending_ids
        with self.store.transaction():
            if self.store.count_pending(pending_ids) != len(pending_ids):
                raise StaleBatchError(
                    f"Records of family {batch.family_id}, user {batch.user_id} "
                    "were already consolidated by another run"
                )

            for fact in result.all_facts:
                user_id = fact.user_id if fact.has_user else batch.user_id
                if self.store.upsert_fact(
                    family_id=batch.family_id,
                    user_id=user_id,
                    key=fact.key,
                    value=fact.value,
                    confidence=self._confidence(fact),
                    source=CONSOLIDATION_SOURCE,
                    now=now,
                ):
                    created += 1

            summary_id = self.store.insert_summary(
                ConsolidationSummary(
                    run_id=run_id,
                    family_id=batch.family_id,
                    user_id=batch.user_id,
                    summary=result.summary,
                    tags=infer_tags(result.summary),
                    occurred_at=batch.newest_timestamp() or now,
                    created_at=now,
                )
            )

            consolidated = self.store.mark_consolidated(pending_ids, now)

        return ReconcileStats(
            facts_upserted=len(result.all_facts),
            facts_created=created,
            records_consolidated=consolidated,
            summary_id=summary_id,
        )
