"""The consolidation job: select, extract, reconcile, sweep.

One call to ``ConsolidationJob.run`` is one cycle. Batches are processed
one after another and are independent: a failed batch is logged and
skipped, and since its conversation records stay pending they are picked
up again by the next cycle as long as they are inside the lookback
window. The retention sweep runs last and its failure never undoes
batches that already committed.
"""

import logging
import time
import uuid
from datetime import datetime, timezone

from ..config import ConsolidationConfig
from ..errors import LinzError, PurgeError
from ..logging import JSONLLogger
from .extractor import ConsolidationExtractor
from .models import BatchOutcome, ConsolidationBatch, RunReport
from .prompt import build_consolidation_prompt
from .reconciler import FactReconciler
from .selector import BatchSelector
from .store import RecordStore, utcnow
from .sweeper import RetentionSweeper

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


class ConsolidationJob:
    """Runs consolidation cycles against one store and one extractor."""

    def __init__(
        self,
        store: RecordStore,
        extractor: ConsolidationExtractor,
        config: ConsolidationConfig,
        event_log: JSONLLogger | None = None,
    ) -> None:
        """Initialize the job.

        Args:
            store: Record store holding short-term records and facts.
            extractor: Client for the extraction model.
            config: Window, limit and retention settings.
            event_log: Optional JSONL log for run and batch events.
        """
        self.store = store
        self.extractor = extractor
        self.config = config
        self.event_log = event_log
        self.selector = BatchSelector(store)
        self.reconciler = FactReconciler(store, default_confidence=config.default_confidence)
        self.sweeper = RetentionSweeper(store)

    async def run(self, now: datetime | None = None) -> RunReport:
        """Run one consolidation cycle.

        Args:
            now: Reference time of the run; defaults to the current time.

        Returns:
            Report with one outcome per batch and the purge result.

        Raises:
            ConfigurationError: No model credential; nothing is processed.
            StorageError: Batches could not be loaded.
        """
        now = now or utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        self.extractor.require_client()

        run_id = str(uuid.uuid4())
        started = time.monotonic()
        report = RunReport(run_id=run_id, started_at=now)
        logger.info("Starting LinZ memory consolidation run %s at %s", run_id, now.isoformat())

        batches = self.selector.select(
            now,
            window_hours=self.config.window_hours,
            limit=self.config.batch_limit,
        )
        if self.event_log:
            self.event_log.set_run_id(run_id)
            self.event_log.log_run_start(run_id, now, len(batches))

        for batch in batches:
            report.outcomes.append(await self._process_batch(batch, run_id, now))

        logger.info(
            "Finished consolidation run %s: %d consolidated, %d failed",
            run_id,
            len(report.consolidated),
            len(report.failed),
        )

        self._sweep(report, now)

        if self.event_log:
            self.event_log.log_run_end(
                run_id,
                consolidated=len(report.consolidated),
                failed=len(report.failed),
                duration_ms=_elapsed_ms(started),
            )
            self.event_log.set_run_id(None)
        return report

    async def _process_batch(
        self,
        batch: ConsolidationBatch,
        run_id: str,
        now: datetime,
    ) -> BatchOutcome:
        family_id, user_id = batch.key
        started = time.monotonic()
        logger.info(
            "Processing batch for family %s, user %s with %d records",
            family_id,
            user_id or "N/A",
            len(batch.records),
        )
        if self.event_log:
            self.event_log.log_batch_start(family_id, user_id, len(batch.records))

        try:
            existing_facts = self.store.find_facts(family_id, user_id)
            prompt = build_consolidation_prompt(batch.records, existing_facts)
            result = await self.extractor.extract(prompt)
            stats = self.reconciler.reconcile(batch, result, run_id, now)
        except LinzError as e:
            logger.warning(
                "Skipping batch for family %s, user %s: %s: %s",
                family_id,
                user_id or "N/A",
                type(e).__name__,
                e,
            )
            return self._failed(batch, e, started)
        except Exception as e:
            logger.exception(
                "Unexpected error processing batch for family %s, user %s",
                family_id,
                user_id or "N/A",
            )
            return self._failed(batch, e, started)

        logger.info(
            "Consolidated family %s, user %s: %d new, %d updated facts, %d records",
            family_id,
            user_id or "N/A",
            len(result.new_facts),
            len(result.updated_facts),
            stats.records_consolidated,
        )
        if self.event_log:
            self.event_log.log_batch_consolidated(
                family_id,
                user_id,
                new_facts=len(result.new_facts),
                updated_facts=len(result.updated_facts),
                records_consolidated=stats.records_consolidated,
                duration_ms=_elapsed_ms(started),
            )
        return BatchOutcome(family_id=family_id, user_id=user_id, stats=stats)

    def _failed(self, batch: ConsolidationBatch, error: Exception, started: float) -> BatchOutcome:
        if self.event_log:
            self.event_log.log_batch_failed(
                batch.family_id, batch.user_id, error, duration_ms=_elapsed_ms(started)
            )
        return BatchOutcome(family_id=batch.family_id, user_id=batch.user_id, error=error)

    def _sweep(self, report: RunReport, now: datetime) -> None:
        try:
            report.purged = self.sweeper.purge(self.config.retention_hours, now)
        except PurgeError as e:
            logger.warning("Failed to purge old short-term records after run %s: %s", report.run_id, e)
            report.purge_error = e
            if self.event_log:
                self.event_log.log_purge_failed(e)
            return

        if self.event_log:
            self.event_log.log_purge(report.purged, self.sweeper.cutoff(self.config.retention_hours, now))


async def run_consolidation_job(
    config: ConsolidationConfig,
    now: datetime | None = None,
) -> None:
    """Job entry point for schedulers: one full cycle built from ``config``.

    Raises:
        ConfigurationError: No model credential is configured.
        StorageError: The store could not be opened or batches not loaded.
    """
    extractor = ConsolidationExtractor.from_config(config)
    extractor.require_client()

    assert config.db_path is not None
    assert config.log_dir is not None
    store = RecordStore(config.db_path)
    try:
        store.init_db()
        job = ConsolidationJob(store, extractor, config, event_log=JSONLLogger(config.log_dir))
        await job.run(now)
    finally:
        store.close()
        await extractor.close()
