"""One-off copy of standing memory records into long-term facts."""

import json
import logging
from typing import Any

from .models import MIGRATION_SOURCE
from .store import RecordStore

logger = logging.getLogger(__name__)

MIGRATION_CONFIDENCE = 0.9


def _decode(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def migrate_memories_to_facts(store: RecordStore) -> int:
    """Create a fact for every memory record whose key has no fact yet.

    Existing facts are left untouched, so running the migration twice
    creates nothing the second time.

    Args:
        store: The record store to migrate in place.

    Returns:
        Number of facts created.
    """
    created = 0
    with store.transaction():
        for memory in store.find_all_memory_records():
            if store.create_fact_if_absent(
                family_id=memory.family_id,
                user_id=memory.user_id,
                key=memory.key or "",
                value=_decode(memory.content),
                confidence=MIGRATION_CONFIDENCE,
                source=MIGRATION_SOURCE,
            ):
                created += 1

    logger.info("Migrated %d memory records to facts", created)
    return created
