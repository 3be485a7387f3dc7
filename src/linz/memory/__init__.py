"""Memory consolidation pipeline."""

from .extractor import ConsolidationExtractor, parse_response, validate_result
from .job import ConsolidationJob, run_consolidation_job
from .migrate import migrate_memories_to_facts
from .models import (
    BatchOutcome,
    ConsolidationBatch,
    ConsolidationSummary,
    ExtractedFact,
    ExtractionResult,
    LongTermFact,
    RecordKind,
    ReconcileStats,
    RunReport,
    ShortTermRecord,
)
from .prompt import build_consolidation_prompt
from .reconciler import FactReconciler, infer_tags
from .selector import BatchSelector
from .store import RecordStore
from .sweeper import RetentionSweeper

__all__ = [
    "BatchOutcome",
    "BatchSelector",
    "ConsolidationBatch",
    "ConsolidationExtractor",
    "ConsolidationJob",
    "ConsolidationSummary",
    "ExtractedFact",
    "ExtractionResult",
    "FactReconciler",
    "LongTermFact",
    "RecordKind",
    "RecordStore",
    "ReconcileStats",
    "RetentionSweeper",
    "RunReport",
    "ShortTermRecord",
    "build_consolidation_prompt",
    "infer_tags",
    "migrate_memories_to_facts",
    "parse_response",
    "run_consolidation_job",
    "validate_result",
]
