"""Summary: Tests for the extraction orchestrator.

Importance: Ensures free text becomes validated entries and failures never raise.
Alternatives: Rely on manual review of extracted records.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any

from lifeos.ai import AiProvider, AiProviderError, CancellationToken, MockAiProvider
from lifeos.audit import AiAuditService
from lifeos.extraction import ExtractionOrchestrator, build_response_schema, decode_candidates
from lifeos.storage.sqlite_store import SqliteStore
from lifeos.taxonomy import TaxonomyRegistry


NOW = datetime(2024, 5, 15, 12, 30)

LUNCH_AND_MOVIE = [
    {
        "date": "2024-05-15",
        "category": "finance_tracking",
        "event": "午餐",
        "details": {
            "summary": "午饭花了30块",
            "time": "12:00",
            "amount": -30,
            "currency": "CNY",
            "tags": ["餐饮"],
            "notes": "吃了午饭花了30块",
        },
    },
    {
        "date": "2024-05-15",
        "category": "movie",
        "event": "看电影",
        "details": {"summary": "看了场电影", "time": "14:00", "notes": "然后看了场电影"},
    },
]


class FailingProvider(AiProvider):
    """Summary: Provider whose calls always fail."""

    name = "failing"
    model = "failing"

    async def _generate_text(self, prompt: str, purpose: str) -> str:
        raise AiProviderError("boom")

    async def _generate_json(self, prompt: str, schema: dict[str, Any], purpose: str) -> str:
        raise AiProviderError("boom")


def _extract(provider: AiProvider, text: str, **kwargs: Any) -> list:
    orchestrator = ExtractionOrchestrator(ai_provider=provider, audit=kwargs.pop("audit", None))
    snapshot = TaxonomyRegistry().snapshot()
    return asyncio.run(orchestrator.extract(text, "2024-05-15", snapshot, now=NOW, **kwargs))


def test_lunch_and_movie_become_two_entries() -> None:
    """Summary: Verify a compound utterance yields one finance and one movie entry.

    Importance: Atomic splitting is the core value of the organizer.
    Alternatives: Store the utterance as a single diary entry.
    """

    provider = MockAiProvider(json_response=json.dumps(LUNCH_AND_MOVIE, ensure_ascii=False))
    entries = _extract(provider, "吃了午饭花了30块然后看了场电影")
    assert [entry.category for entry in entries] == ["finance_tracking", "movie"]
    assert entries[0].details["amount"] < 0
    assert entries[1].event == "看电影"
    assert len({entry.id for entry in entries}) == 2
    purpose, prompt = provider.prompts[0]
    assert purpose == "organize"
    assert "Current Date: 2024-05-15" in prompt
    assert "Current Time: 12:30" in prompt
    assert "Table: finance_tracking" in prompt
    assert "吃了午饭花了30块然后看了场电影" in prompt


def test_invalid_candidates_are_dropped_individually() -> None:
    """Summary: Ensure malformed elements never discard valid siblings.

    Importance: One bad element should not lose the rest of the batch.
    Alternatives: Reject the whole response.
    """

    candidates = [
        {"category": "unknown_table", "event": "x", "details": {"summary": "x", "time": "09:00"}},
        {"category": "movie", "event": "no details"},
        "not an object",
        {"date": "yesterday", "category": "diary", "event": "日记", "details": {"summary": "s", "time": "21:00"}},
    ]
    provider = MockAiProvider(json_response=json.dumps(candidates))
    entries = _extract(provider, "some text")
    assert len(entries) == 1
    assert entries[0].category == "diary"
    assert entries[0].date == "2024-05-15"


def test_fenced_json_is_accepted() -> None:
    fenced = "```json\n" + json.dumps(LUNCH_AND_MOVIE[1:]) + "\n```"
    assert decode_candidates(fenced) == LUNCH_AND_MOVIE[1:]
    assert decode_candidates('{"category": "movie"}') == []
    assert decode_candidates("not json at all") == []


def test_fence_inside_string_values_is_kept() -> None:
    """Summary: Verify a valid array whose text quotes a code fence keeps its entries.

    Importance: Users log snippets of code; the fence belongs to the summary, not the envelope.
    Alternatives: Strip fences before every parse.
    """

    summary = "记下代码 ```json\n1\n``` 片段"
    candidates = [
        {
            "date": "2024-05-15",
            "category": "diary",
            "event": "记代码",
            "details": {"summary": summary, "time": "10:00", "notes": ""},
        }
    ]
    entries = _extract(MockAiProvider(json_response=json.dumps(candidates, ensure_ascii=False)), "记下代码")
    assert len(entries) == 1
    assert entries[0].details["summary"] == summary


def test_deeply_nested_output_yields_no_entries(tmp_path: Path) -> None:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    provider = MockAiProvider(json_response="[" * 100000 + "]" * 100000)
    audit = AiAuditService(store=store, provider=provider)
    assert _extract(provider, "吃了午饭", audit=audit) == []
    assert audit.list_calls()[0]["status"] == "ok"


def test_failures_yield_no_entries(tmp_path: Path) -> None:
    """Summary: Verify provider errors and blank input return empty lists.

    Importance: Extraction must never unwind a chat turn.
    Alternatives: Propagate errors to the session.
    """

    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    provider = FailingProvider()
    audit = AiAuditService(store=store, provider=provider)
    assert _extract(provider, "吃了午饭", audit=audit) == []
    assert _extract(MockAiProvider(json_response="oops"), "吃了午饭") == []
    assert _extract(MockAiProvider(json_response="[]"), "   ") == []
    calls = audit.list_calls()
    assert calls[0]["status"] == "failed"


def test_cancelled_extraction_returns_empty() -> None:
    async def scenario() -> list:
        token = CancellationToken()
        token.cancel()
        orchestrator = ExtractionOrchestrator(ai_provider=MockAiProvider(json.dumps(LUNCH_AND_MOVIE)))
        return await orchestrator.extract(
            "吃了午饭", "2024-05-15", TaxonomyRegistry().snapshot(), cancel=token, now=NOW
        )

    assert asyncio.run(scenario()) == []


def test_response_schema_tracks_live_taxonomy() -> None:
    """Summary: Ensure the schema enum and detail keys follow taxonomy edits.

    Importance: New categories and fields must be extractable right away.
    Alternatives: Cache one schema at startup.
    """

    registry = TaxonomyRegistry()
    meta = registry.add_category("life", "Gardening")
    created = registry.add_field(meta.key)
    assert created is not None
    schema = build_response_schema(registry.snapshot())
    item = schema["items"]
    assert meta.key in item["properties"]["category"]["enum"]
    details = item["properties"]["details"]
    assert created.key in details["properties"]
    assert details["properties"]["tags"] == {"type": "array", "items": {"type": "string"}}
    assert details["required"] == ["summary", "time"]
