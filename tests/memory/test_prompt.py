"""Tests for consolidation prompt building."""

import json
from datetime import datetime, timezone

from linz.memory import (
    LongTermFact,
    RecordKind,
    ShortTermRecord,
    build_consolidation_prompt,
)
from linz.memory.prompt import RESPONSE_SCHEMA, format_transcript

T1 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
T2 = datetime(2026, 3, 1, 10, 5, tzinfo=timezone.utc)


def make_record(record_id: int, content: str, created_at: datetime, user_id: str | None = "u1"):
    return ShortTermRecord(
        id=record_id,
        family_id=42,
        user_id=user_id,
        content=content,
        created_at=created_at,
    )


class TestFormatTranscript:
    """Tests for transcript serialization."""

    def test_structured_content_is_parsed(self):
        """JSON payloads are embedded as data."""
        entries = format_transcript([make_record(1, '{"text": "likes pizza"}', T1)])
        assert entries == [
            {"time": T1.isoformat(), "speaker": "u1", "entries": {"text": "likes pizza"}}
        ]

    def test_plain_text_is_kept(self):
        """Non-JSON payloads are embedded as raw text."""
        entries = format_transcript([make_record(1, "allergic to peanuts", T1)])
        assert entries[0]["entries"] == "allergic to peanuts"

    def test_family_wide_speaker_is_system(self):
        """Records without a user are spoken by 'system'."""
        entries = format_transcript([make_record(1, "x", T1, user_id=None)])
        assert entries[0]["speaker"] == "system"

    def test_keeps_given_order(self):
        """Records are serialized in the order given."""
        entries = format_transcript([make_record(1, "a", T1), make_record(2, "b", T2)])
        assert [e["entries"] for e in entries] == ["a", "b"]


class TestBuildConsolidationPrompt:
    """Tests for the full prompt."""

    def test_contains_rules(self):
        """The output contract is spelled out."""
        prompt = build_consolidation_prompt([], [])
        assert "STRICT JSON only" in prompt
        assert "new_facts, updated_facts, summary" in prompt
        assert "stable, atomic keys" in prompt
        assert "Do NOT duplicate facts" in prompt
        assert "If uncertain, omit the fact or lower confidence." in prompt

    def test_embeds_transcript_and_facts(self):
        """Transcript and existing facts appear as JSON."""
        fact = LongTermFact(
            family_id=42,
            user_id="u1",
            key="food.likes",
            value="pizza",
            confidence=0.8,
            source="model_consolidation",
            last_confirmed_at=T1,
            id=5,
            created_at=T1,
        )
        prompt = build_consolidation_prompt([make_record(1, "hello", T1)], [fact])

        transcript = json.dumps(format_transcript([make_record(1, "hello", T1)]), indent=2)
        assert transcript in prompt
        assert '"key": "food.likes"' in prompt
        assert '"userId": "u1"' in prompt

    def test_existing_fact_is_full_row(self):
        """Existing facts carry their id, family and creation time."""
        fact = LongTermFact(
            family_id=42,
            user_id=None,
            key="family.name",
            value="Smith",
            confidence=0.9,
            source="migration_from_memory",
            id=5,
            created_at=T1,
        )
        assert fact.to_prompt_dict() == {
            "id": 5,
            "familyId": 42,
            "userId": None,
            "key": "family.name",
            "value": "Smith",
            "confidence": 0.9,
            "source": "migration_from_memory",
            "lastConfirmedAt": None,
            "createdAt": T1.isoformat(),
        }

    def test_deterministic(self):
        """Identical inputs give identical prompts."""
        records = [make_record(1, '{"a": 1}', T1), make_record(2, "b", T2)]
        assert build_consolidation_prompt(records, []) == build_consolidation_prompt(records, [])

    def test_memory_records_included(self):
        """Memory records are part of the transcript."""
        memory = ShortTermRecord(
            id=9,
            family_id=42,
            user_id="u1",
            content="Smith",
            created_at=T1,
            kind=RecordKind.MEMORY,
            key="family.name",
        )
        assert '"entries": "Smith"' in build_consolidation_prompt([memory], [])

    def test_schema_requires_all_keys(self):
        """The response schema lists the three result keys."""
        assert RESPONSE_SCHEMA["required"] == ["new_facts", "updated_facts", "summary"]
