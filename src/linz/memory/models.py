"""Data models for the consolidation pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

CONSOLIDATION_SOURCE = "model_consolidation"
MIGRATION_SOURCE = "migration_from_memory"


class RecordKind(Enum):
    """Where a short-term record came from."""

    CONVERSATION = "conversation"
    MEMORY = "memory"


@dataclass(frozen=True)
class ShortTermRecord:
    """A timestamped note tied to a family and optionally a user.

    Conversation records move PENDING -> CONSOLIDATED -> PURGED. Memory
    records are standing notes: they are fed to every cycle as context
    and never change state.

    Attributes:
        id: Row id within its own table.
        family_id: Owning family.
        user_id: Owning user, None for family-wide records.
        content: Opaque text or JSON payload.
        created_at: When the record was written.
        kind: Conversation or memory record.
        consolidated_at: When the record was consolidated, None while pending.
        key: Memory key, only set for memory records.
    """

    id: int
    family_id: int
    user_id: str | None
    content: str
    created_at: datetime
    kind: RecordKind = RecordKind.CONVERSATION
    consolidated_at: datetime | None = None
    key: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.kind is RecordKind.CONVERSATION and self.consolidated_at is None


@dataclass(frozen=True)
class LongTermFact:
    """A durable fact, unique per (family_id, user_id, key)."""

    family_id: int
    user_id: str | None
    key: str
    value: Any
    confidence: float
    source: str
    last_confirmed_at: datetime | None = None
    id: int | None = None
    created_at: datetime | None = None

    def to_prompt_dict(self) -> dict[str, Any]:
        """Serialize the fact the way it is shown to the extraction model."""
        return {
            "id": self.id,
            "familyId": self.family_id,
            "userId": self.user_id,
            "key": self.key,
            "value": self.value,
            "confidence": self.confidence,
            "source": self.source,
            "lastConfirmedAt": (
                self.last_confirmed_at.isoformat() if self.last_confirmed_at else None
            ),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class ConsolidationSummary:
    """Append-only audit row written once per (run, family, user)."""

    run_id: str
    family_id: int
    user_id: str | None
    summary: str
    tags: tuple[str, ...]
    occurred_at: datetime
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class ConsolidationBatch:
    """Records for one (family, user) pair feeding one extraction call."""

    family_id: int
    user_id: str | None
    records: list[ShortTermRecord] = field(default_factory=list)

    @property
    def key(self) -> tuple[int, str | None]:
        return (self.family_id, self.user_id)

    @property
    def pending_ids(self) -> list[int]:
        """Ids of the conversation records this batch will consolidate."""
        return [r.id for r in self.records if r.is_pending]

    def newest_timestamp(self) -> datetime | None:
        if not self.records:
            return None
        return max(r.created_at for r in self.records)


@dataclass(frozen=True)
class ExtractedFact:
    """A fact returned by the extraction model.

    ``has_user`` records whether the model named a user at all, since an
    explicit null (family-wide) differs from an omitted field.
    """

    key: str
    value: Any
    confidence: float | None = None
    user_id: str | None = None
    has_user: bool = False


@dataclass(frozen=True)
class ExtractionResult:
    """Validated output of the extraction model.

    Only built by ``validate_result``, so holding one means the payload
    already passed the structural checks.
    """

    new_facts: tuple[ExtractedFact, ...]
    updated_facts: tuple[ExtractedFact, ...]
    summary: str

    @property
    def all_facts(self) -> tuple[ExtractedFact, ...]:
        return self.new_facts + self.updated_facts


@dataclass(frozen=True)
class ReconcileStats:
    """What a committed reconciliation wrote."""

    facts_upserted: int
    facts_created: int
    records_consolidated: int
    summary_id: int


@dataclass(frozen=True)
class BatchOutcome:
    """Result of processing one batch: either stats or the error that stopped it."""

    family_id: int
    user_id: str | None
    stats: ReconcileStats | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunReport:
    """Summary of one job invocation."""

    run_id: str
    started_at: datetime
    outcomes: list[BatchOutcome] = field(default_factory=list)
    purged: int | None = None
    purge_error: Exception | None = None

    @property
    def consolidated(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[BatchOutcome]:
        return [o for o in self.outcomes if not o.ok]
