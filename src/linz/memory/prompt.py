"""Prompt construction for memory consolidation."""

import json
from typing import Any

from .models import LongTermFact, ShortTermRecord

SYSTEM_MESSAGE = (
    "You are a service that returns only valid JSON responses "
    "conforming to the requested schema."
)

CONSOLIDATION_PROMPT = """SYSTEM:
You are a memory consolidation AI.

TASK:
Given a recent conversation transcript and the current long-term facts, produce three things:
1) new_facts: facts/preferences/relationships not already present.
2) updated_facts: existing facts that need changes based on the new conversation.
3) summary: a single concise sentence capturing the primary topic.

RULES:
- Output STRICT JSON only with keys: new_facts, updated_facts, summary.
- Each fact must be {{ "key": string, "value": any, "confidence": number (0..1), "userId": string|null }}.
- Prefer stable, atomic keys, e.g., "family.name", "child.Ava.favorite_color".
- Do NOT duplicate facts; treat case and synonyms carefully.
- If uncertain, omit the fact or lower confidence.

INPUT:
- conversation (ISO time, speaker, text): {conversation}
- current_facts: {facts}"""

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "new_facts": {"type": "array", "items": {"type": "object"}},
        "updated_facts": {"type": "array", "items": {"type": "object"}},
        "summary": {"type": "string"},
    },
    "required": ["new_facts", "updated_facts", "summary"],
}


def _parse_entries(content: str) -> Any:
    """Return the payload as structured data when it is valid JSON, else the raw text."""
    try:
        return json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return content


def format_transcript(records: list[ShortTermRecord]) -> list[dict[str, Any]]:
    """Re-serialize records as {time, speaker, entries} entries in the given order."""
    return [
        {
            "time": record.created_at.isoformat(),
            "speaker": record.user_id or "system",
            "entries": _parse_entries(record.content),
        }
        for record in records
    ]


def build_consolidation_prompt(
    records: list[ShortTermRecord],
    existing_facts: list[LongTermFact],
) -> str:
    """Build the instruction sent to the extraction model.

    Pure and deterministic: the same records and facts always give the
    same string.

    Args:
        records: The batch's records, already in chronological order.
        existing_facts: Current long-term facts of the batch's (family, user).

    Returns:
        Complete prompt string.
    """
    conversation_json = json.dumps(
        format_transcript(records), indent=2, ensure_ascii=False, default=str
    )
    facts_json = json.dumps(
        [fact.to_prompt_dict() for fact in existing_facts],
        indent=2,
        ensure_ascii=False,
        default=str,
    )
    return CONSOLIDATION_PROMPT.format(conversation=conversation_json, facts=facts_json)
