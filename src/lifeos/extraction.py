"""Summary: Extraction orchestrator turning free text into structured entries.

Importance: Maps one utterance to zero or more records shaped by the live taxonomy.
Alternatives: Ask users to fill structured forms for every event.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from lifeos.ai import AiProvider, AiProviderError, CancellationToken, TurnCancelled
from lifeos.audit import STATUS_CANCELLED, STATUS_FAILED, STATUS_OK, AiAuditService
from lifeos.entries import new_record_id
from lifeos.models import Entry, FieldType
from lifeos.prompts import DEFAULT_ORGANIZER_INSTRUCTIONS, RELATIVE_DATE_GUIDANCE
from lifeos.taxonomy import TaxonomySnapshot


logger = logging.getLogger(__name__)

ORGANIZE_PURPOSE = "organize"

_JSON_TYPES: dict[FieldType, dict[str, Any]] = {
    FieldType.TEXT: {"type": "string"},
    FieldType.NUMBER: {"type": "number"},
    FieldType.SELECT: {"type": "string"},
    FieldType.MULTISELECT: {"type": "array", "items": {"type": "string"}},
    FieldType.DATE: {"type": "string"},
    FieldType.RATING: {"type": "number"},
}

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)


class ExtractedDetails(BaseModel):
    """Summary: Details block of one extracted event.

    Importance: Summary and time are mandatory; category-specific keys pass through.
    Alternatives: Accept any mapping without checks.
    """

    model_config = ConfigDict(extra="allow")

    summary: str
    time: str
    duration: str | None = None
    notes: str | None = None


class ExtractedEvent(BaseModel):
    """Summary: One candidate event returned by the organizer call."""

    date: str | None = None
    category: str
    event: str
    details: ExtractedDetails


def render_taxonomy(taxonomy: TaxonomySnapshot) -> str:
    """Summary: Render every category key with its field list for the prompt.

    Importance: The model sees the user's current schema, not a fixed default.
    Alternatives: Send only category names and let the model guess fields.
    """

    blocks = []
    for key in taxonomy.category_keys():
        fields = ", ".join(
            f"- {item.key} ({item.type.value}): {item.label}" for item in taxonomy.fields_for(key)
        )
        blocks.append(f"Table: {key}\nFields: {fields}")
    return "\n\n".join(blocks)


def build_response_schema(taxonomy: TaxonomySnapshot) -> dict[str, Any]:
    """Summary: Derive the JSON response schema from the taxonomy snapshot.

    Importance: The category enum and detail keys always match the live registry.
    Alternatives: Cache one schema at startup.
    """

    detail_properties: dict[str, Any] = {}
    for key in taxonomy.category_keys():
        for item in taxonomy.fields_for(key):
            detail_properties.setdefault(item.key, dict(_JSON_TYPES[item.type]))
    detail_properties["summary"] = {"type": "string"}
    detail_properties["time"] = {"type": "string"}
    return {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "YYYY-MM-DD"},
                "category": {"type": "string", "enum": taxonomy.category_keys()},
                "event": {"type": "string", "description": "1-2 words Title"},
                "details": {
                    "type": "object",
                    "properties": detail_properties,
                    "required": ["summary", "time"],
                },
            },
            "required": ["date", "category", "event", "details"],
        },
    }


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def decode_candidates(text: str) -> list[Any]:
    """Summary: Decode the organizer response into a list of raw candidates.

    Importance: Non-array or unparsable output degrades to no candidates.
    Alternatives: Raise and let the caller decide.
    """

    cleaned = text.strip()
    if not cleaned:
        return []
    decoded = _loads(cleaned)
    if decoded is None and cleaned.startswith("```"):
        match = _FENCE_PATTERN.match(cleaned)
        if match:
            decoded = _loads(match.group(1).strip())
    if decoded is None:
        logger.warning("Organizer returned unparsable output.")
        return []
    if not isinstance(decoded, list):
        logger.warning("Organizer returned %s instead of an array.", type(decoded).__name__)
        return []
    return decoded


def _valid_date(value: str | None, fallback: str) -> str:
    if not value:
        return fallback
    try:
        date.fromisoformat(value)
    except ValueError:
        return fallback
    return value


@dataclass(frozen=True)
class ExtractionOrchestrator:
    """Summary: Builds organizer requests and validates their results into entries.

    Importance: Extraction is advisory; failures yield zero entries instead of errors.
    Alternatives: Trust the provider's schema-guided output without re-validation.
    """

    ai_provider: AiProvider
    audit: AiAuditService | None = None

    def build_prompt(
        self, text: str, current_date: str, taxonomy: TaxonomySnapshot, now: datetime, instructions: str
    ) -> str:
        """Summary: Compose the single organizer prompt.

        Importance: Embeds the current date and time so relative dates resolve correctly.
        Alternatives: Resolve relative dates in a post-processing pass.
        """

        return (
            f"{instructions}\n\n"
            f"Current Date: {current_date}\n"
            f"Current Time: {now.strftime('%H:%M')}\n"
            f"{RELATIVE_DATE_GUIDANCE}\n\n"
            f"Defined Schemas:\n{render_taxonomy(taxonomy)}\n\n"
            f'User Input: "{text}"\n'
        )

    async def extract(
        self,
        text: str,
        current_date: str,
        taxonomy: TaxonomySnapshot,
        cancel: CancellationToken | None = None,
        now: datetime | None = None,
        instructions: str = DEFAULT_ORGANIZER_INSTRUCTIONS,
    ) -> list[Entry]:
        """Summary: Extract candidate entries from one utterance.

        Importance: Never raises; transport, parse, and cancel outcomes all yield an empty list.
        Alternatives: Propagate provider errors to the session controller.
        """

        if not text or not text.strip():
            return []
        now = now or datetime.now()
        prompt = self.build_prompt(text, current_date, taxonomy, now, instructions)
        schema = build_response_schema(taxonomy)
        try:
            result = await self.ai_provider.generate_json(
                prompt, schema, purpose=ORGANIZE_PURPOSE, cancel=cancel
            )
        except TurnCancelled:
            logger.info("Extraction cancelled.")
            self._audit(prompt, "", STATUS_CANCELLED, 0)
            return []
        except AiProviderError as exc:
            logger.warning("Extraction failed: %s", exc)
            self._audit(prompt, str(exc), STATUS_FAILED, 0)
            return []
        self._audit(prompt, result.text, STATUS_OK, result.latency_ms)
        entries = self.materialize(decode_candidates(result.text), current_date, taxonomy)
        logger.info("Extracted %s entries.", len(entries))
        return entries

    def materialize(
        self, candidates: list[Any], current_date: str, taxonomy: TaxonomySnapshot
    ) -> list[Entry]:
        """Summary: Validate raw candidates and turn survivors into entries.

        Importance: Each candidate stands alone; one bad element never drops its siblings.
        Alternatives: Reject the whole batch when any element is malformed.
        """

        known = set(taxonomy.category_keys())
        entries: list[Entry] = []
        for candidate in candidates:
            try:
                event = ExtractedEvent.model_validate(candidate)
            except ValidationError as exc:
                logger.debug("Discarded malformed candidate: %s", exc.errors())
                continue
            if event.category not in known:
                logger.debug("Discarded candidate with unknown category %s.", event.category)
                continue
            entries.append(
                Entry(
                    id=new_record_id(),
                    date=_valid_date(event.date, current_date),
                    category=event.category,
                    event=event.event,
                    details=event.details.model_dump(exclude_none=True),
                )
            )
        return entries

    def _audit(self, prompt: str, response_text: str, status: str, latency_ms: int) -> None:
        if self.audit:
            self.audit.record(ORGANIZE_PURPOSE, prompt, response_text, status, latency_ms)
