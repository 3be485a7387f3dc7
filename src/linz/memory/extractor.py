"""Fact extraction through the consolidation model."""

import asyncio
import json
import logging
import math
from numbers import Real
from typing import Any

from groq import AsyncGroq, GroqError

from ..config import DEFAULT_MODEL, ConsolidationConfig
from ..errors import (
    ConfigurationError,
    ExtractionError,
    ExtractionTimeoutError,
    MalformedResponseError,
    ValidationError,
)
from .models import ExtractedFact, ExtractionResult
from .prompt import SYSTEM_MESSAGE

logger = logging.getLogger(__name__)


class ConsolidationExtractor:
    """Sends consolidation prompts to the model and validates the answer.

    The model output is untrusted: nothing it returns reaches the record
    store unless it passed ``validate_result``.
    """

    def __init__(
        self,
        llm_client: AsyncGroq | None,
        model: str = DEFAULT_MODEL,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the extractor.

        Args:
            llm_client: The Groq client, or None when no credential is configured.
            model: The model to use for extraction.
            timeout: Seconds to wait for one completion.
        """
        self.client = llm_client
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: ConsolidationConfig) -> "ConsolidationExtractor":
        """Create an extractor from config; no client is built without an API key."""
        client = AsyncGroq(api_key=config.api_key) if config.api_key else None
        return cls(client, model=config.model, timeout=config.request_timeout)

    def require_client(self) -> AsyncGroq:
        """Return the model client or raise ConfigurationError."""
        if self.client is None:
            raise ConfigurationError(
                "GROQ_API_KEY is not configured; unable to run consolidation."
            )
        return self.client

    async def close(self) -> None:
        """Close the underlying HTTP client, if any."""
        if self.client is not None:
            await self.client.close()

    async def extract(self, prompt: str) -> ExtractionResult:
        """Run one extraction call.

        Args:
            prompt: Instruction built by ``build_consolidation_prompt``.

        Returns:
            The validated extraction result.

        Raises:
            ConfigurationError: No model credential is configured.
            ExtractionTimeoutError: The model did not answer in time.
            ExtractionError: The model API call failed.
            MalformedResponseError: The answer was empty or not JSON.
            ValidationError: The answer does not match the result contract.
        """
        client = self.require_client()

        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_MESSAGE},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=0,
                    response_format={"type": "json_object"},
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExtractionTimeoutError(
                f"Consolidation model did not respond within {self.timeout}s"
            ) from e
        except GroqError as e:
            raise ExtractionError(f"Consolidation model call failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        return validate_result(parse_response(content))


def parse_response(content: str | None) -> Any:
    """Decode the raw model answer as JSON.

    Markdown code fences around the JSON are removed first.

    Raises:
        MalformedResponseError: If the content is empty or not valid JSON.
    """
    if content is None or not content.strip():
        raise MalformedResponseError("Consolidation model returned empty content.")

    json_str = content.strip()
    if json_str.startswith("```"):
        lines = [line for line in json_str.split("\n") if not line.startswith("```")]
        json_str = "\n".join(lines).strip()

    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Failed to parse consolidation JSON: {e}") from e


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _validate_fact(entry: Any, field: str, index: int) -> ExtractedFact:
    where = f"{field}[{index}]"
    if not isinstance(entry, dict):
        raise ValidationError(f"Fact entry {where} must be an object.")

    key = entry.get("key")
    if not isinstance(key, str) or not key.strip():
        raise ValidationError(f"Fact entry {where} missing key.")
    if "value" not in entry:
        raise ValidationError(f"Fact {key} in {field} is missing value.")

    confidence = entry.get("confidence")
    if "confidence" in entry:
        if not _is_number(confidence):
            raise ValidationError(f"Fact {key} in {field} has non-numeric confidence.")
        try:
            confidence = float(confidence)
        except OverflowError as e:
            raise ValidationError(f"Fact {key} in {field} has non-numeric confidence.") from e
        if not math.isfinite(confidence):
            raise ValidationError(f"Fact {key} in {field} has non-numeric confidence.")

    user_id = entry.get("userId")
    if "userId" in entry and user_id is not None and not isinstance(user_id, str):
        raise ValidationError(f"Fact {key} in {field} has invalid userId.")

    return ExtractedFact(
        key=key.strip(),
        value=entry["value"],
        confidence=confidence,
        user_id=user_id,
        has_user="userId" in entry,
    )


def validate_result(payload: Any) -> ExtractionResult:
    """Check a decoded model answer against the result contract.

    The payload must be an object with ``new_facts`` and ``updated_facts``
    arrays and a ``summary`` string. Every fact needs a non-empty string
    ``key`` and a ``value``; ``confidence`` must be numeric and ``userId``
    a string or null when present.

    Raises:
        ValidationError: Naming the first offending field or fact.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Consolidation payload is not an object.")

    for field in ("new_facts", "updated_facts"):
        if not isinstance(payload.get(field), list):
            raise ValidationError(f"Consolidation payload missing {field} array.")
    if not isinstance(payload.get("summary"), str):
        raise ValidationError("Consolidation payload missing summary string.")

    new_facts = tuple(
        _validate_fact(entry, "new_facts", i) for i, entry in enumerate(payload["new_facts"])
    )
    updated_facts = tuple(
        _validate_fact(entry, "updated_facts", i)
        for i, entry in enumerate(payload["updated_facts"])
    )

    return ExtractionResult(
        new_facts=new_facts,
        updated_facts=updated_facts,
        summary=payload["summary"],
    )
