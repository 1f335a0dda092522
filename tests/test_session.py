"""Summary: Tests for the conversation session controller.

Importance: Ensures turns, cancellation, regeneration, and undo keep state consistent.
Alternatives: Exercise the session only through the HTTP API.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from lifeos.ai import AiProvider, AiProviderError, MockAiProvider
from lifeos.entries import EntryStore
from lifeos.models import ChatMessage, Entry, MessageRole
from lifeos.prompts import CHAT_FAILURE_TEXT
from lifeos.session import ConversationSession, TurnStatus
from lifeos.storage.sqlite_store import SqliteStore


START = datetime(2024, 5, 15, 12, 0)

EXTRACTED = [
    {
        "date": "2024-05-15",
        "category": "finance_tracking",
        "event": "午餐",
        "details": {"summary": "午饭30块", "time": "12:00", "amount": -30, "notes": "吃了午饭花了30块"},
    },
    {
        "date": "2024-05-15",
        "category": "movie",
        "event": "看电影",
        "details": {"summary": "看了场电影", "time": "14:00", "notes": "看了场电影"},
    },
]


class SteppingClock:
    """Summary: Deterministic clock that advances one second per reading."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


class GatedProvider(AiProvider):
    """Summary: Provider that blocks one kind of call until released.

    Importance: Lets tests act while a turn is suspended at an AI call.
    Alternatives: Sleep for a fixed duration.
    """

    name = "gated"
    model = "gated"

    def __init__(self, gate_text: bool = True, json_response: str = "[]") -> None:
        self.gate_text = gate_text
        self.json_response = json_response
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def _wait(self) -> None:
        self.started.set()
        await self.release.wait()

    async def _generate_text(self, prompt: str, purpose: str) -> str:
        if self.gate_text:
            await self._wait()
        return "reply"

    async def _generate_json(self, prompt: str, schema: dict[str, Any], purpose: str) -> str:
        if not self.gate_text:
            await self._wait()
        return self.json_response


class FailingProvider(AiProvider):
    name = "failing"
    model = "failing"

    async def _generate_text(self, prompt: str, purpose: str) -> str:
        raise AiProviderError("offline")

    async def _generate_json(self, prompt: str, schema: dict[str, Any], purpose: str) -> str:
        raise AiProviderError("offline")


def _build_store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


def _message(message_id: str, role: MessageRole, text: str, offset: int) -> ChatMessage:
    return ChatMessage(id=message_id, role=role, text=text, timestamp=START + timedelta(minutes=offset))


def _entry(entry_id: str) -> Entry:
    return Entry(id=entry_id, date="2024-05-15", category="diary", event="日记", details={"summary": "s"})


def test_submit_runs_chat_and_extraction(tmp_path: Path) -> None:
    """Summary: Verify a turn appends user, model, and system messages plus entries.

    Importance: This is the main workflow of the assistant.
    Alternatives: Run chat and extraction separately.
    """

    store = _build_store(tmp_path)
    provider = MockAiProvider(json_response=json.dumps(EXTRACTED, ensure_ascii=False), text_response="好的")
    session = ConversationSession.load(store, provider, clock=SteppingClock())
    result = asyncio.run(session.submit("吃了午饭花了30块然后看了场电影"))

    assert result.status == TurnStatus.COMPLETED
    assert [message.role for message in session.messages] == [
        MessageRole.USER,
        MessageRole.MODEL,
        MessageRole.SYSTEM,
    ]
    assert result.reply is not None and result.reply.text == "好的"
    assert result.notice is not None
    assert result.notice.text == "Saved: [2024-05-15] 午餐, [2024-05-15] 看电影"
    assert set(result.notice.related_entry_ids) == {entry.id for entry in session.entries.all()}
    assert len(session.entries) == 2
    assert [log.text for log in session.raw_logs.all()] == ["吃了午饭花了30块然后看了场电影"]
    assert session.busy is False

    reloaded = ConversationSession.load(store, provider, clock=SteppingClock())
    assert reloaded.messages == session.messages
    assert len(reloaded.entries) == 2


def test_chat_prompt_uses_prior_user_turns(tmp_path: Path) -> None:
    """Summary: Ensure the chat prompt lists earlier user turns and then the new text.

    Importance: Model replies are never fed back into the prompt.
    Alternatives: Send the full transcript.
    """

    provider = MockAiProvider(text_response="ok")
    session = ConversationSession(provider, clock=SteppingClock())
    asyncio.run(session.submit("first"))
    asyncio.run(session.submit("second"))
    chat_prompts = [prompt for purpose, prompt in provider.prompts if purpose == "chat"]
    assert chat_prompts[0].endswith("Chat History:\nUser: first\n")
    assert chat_prompts[1].endswith("Chat History:\nUser: first\nUser: second\n")


def test_submit_rejected_while_busy_and_cancel_clears_busy() -> None:
    """Summary: Verify a second submit is rejected mid-flight and cancel drops the reply.

    Importance: Only one turn may be in flight; cancel leaves no model message behind.
    Alternatives: Queue the second submit.
    """

    async def scenario() -> None:
        provider = GatedProvider()
        session = ConversationSession(provider, clock=SteppingClock())
        task = asyncio.create_task(session.submit("hello"))
        await provider.started.wait()
        assert session.busy is True

        rejected = await session.submit("again")
        assert rejected.status == TurnStatus.REJECTED
        assert rejected.reason == "busy"
        assert len(session.messages) == 1
        assert len(session.raw_logs.all()) == 1

        assert session.cancel() is True
        assert session.busy is False
        result = await task
        assert result.status == TurnStatus.CANCELLED
        assert [message.role for message in session.messages] == [MessageRole.USER]
        assert session.cancel() is False

        provider.release.set()
        follow_up = await session.submit("next")
        assert follow_up.status == TurnStatus.COMPLETED
        assert session.messages[-1].role == MessageRole.MODEL

    asyncio.run(scenario())


def test_cancel_during_extraction_stores_nothing() -> None:
    async def scenario() -> None:
        provider = GatedProvider(gate_text=False, json_response=json.dumps(EXTRACTED))
        session = ConversationSession(provider, clock=SteppingClock())
        task = asyncio.create_task(session.submit("吃了午饭"))
        await provider.started.wait()
        session.cancel()
        result = await task
        assert result.status == TurnStatus.CANCELLED
        assert len(session.entries) == 0
        assert [message.role for message in session.messages] == [MessageRole.USER, MessageRole.MODEL]

    asyncio.run(scenario())


def test_blank_submit_is_rejected() -> None:
    session = ConversationSession(MockAiProvider(), clock=SteppingClock())
    result = asyncio.run(session.submit("   "))
    assert result.status == TurnStatus.REJECTED
    assert session.messages == []
    assert session.raw_logs.all() == []


def test_chat_failure_degrades_to_fixed_text() -> None:
    """Summary: Ensure provider failures produce the failure reply and no entries.

    Importance: Transport errors must not corrupt the conversation log.
    Alternatives: Surface the error to the caller.
    """

    session = ConversationSession(FailingProvider(), clock=SteppingClock())
    result = asyncio.run(session.submit("hello"))
    assert result.status == TurnStatus.COMPLETED
    assert session.messages[-1].text == CHAT_FAILURE_TEXT
    assert len(session.entries) == 0


def test_disabled_modules_are_skipped() -> None:
    provider = MockAiProvider(json_response=json.dumps(EXTRACTED))
    session = ConversationSession(provider, clock=SteppingClock())
    session.update_chat_settings(chat_enabled=False)
    asyncio.run(session.submit("吃了午饭"))
    assert [purpose for purpose, _ in provider.prompts] == ["organize"]
    session.update_chat_settings(chat_enabled=True, organizer_enabled=False)
    asyncio.run(session.submit("你好"))
    assert [purpose for purpose, _ in provider.prompts] == ["organize", "chat"]


def test_revoke_removes_related_entries_once(tmp_path: Path) -> None:
    """Summary: Verify revoke deletes both linked entries and is idempotent.

    Importance: Undo must not double-apply or touch unrelated entries.
    Alternatives: Delete entries one by one from the dashboard.
    """

    store = _build_store(tmp_path)
    entries = EntryStore(store=store)
    entries.insert_many([_entry("a1"), _entry("b2"), _entry("c3")])
    notice = ChatMessage(
        id="sys",
        role=MessageRole.SYSTEM,
        text="Saved: [2024-05-15] 日记, [2024-05-15] 日记",
        timestamp=START,
        related_entry_ids=("a1", "b2"),
    )
    session = ConversationSession(
        MockAiProvider(), entries=entries, messages=[notice], store=store, clock=SteppingClock()
    )
    assert session.revoke("sys") is True
    assert [entry.id for entry in session.entries.all()] == ["c3"]
    revoked = session.get_message("sys")
    assert revoked is not None and revoked.revoked is True
    assert revoked.text.endswith(" (Revoked)")

    assert session.revoke("sys") is False
    assert session.get_message("sys") == revoked
    assert [entry.id for entry in EntryStore.load(store).all()] == ["c3"]


def test_revoke_rejects_non_system_messages() -> None:
    user = _message("u1", MessageRole.USER, "hi", 0)
    session = ConversationSession(MockAiProvider(), messages=[user], clock=SteppingClock())
    assert session.revoke("u1") is False
    assert session.revoke("missing") is False


def test_regenerate_replaces_reply_in_place() -> None:
    """Summary: Verify regenerate rewrites the reply using only earlier user turns.

    Importance: Later turns must not influence a regenerated answer.
    Alternatives: Append a new reply instead of replacing.
    """

    messages = [
        _message("u1", MessageRole.USER, "first", 0),
        _message("m1", MessageRole.MODEL, "reply one", 1),
        _message("u2", MessageRole.USER, "second", 2),
        _message("m2", MessageRole.MODEL, "reply two", 3),
        _message("u3", MessageRole.USER, "third", 4),
        _message("m3", MessageRole.MODEL, "reply three", 5),
    ]
    provider = MockAiProvider(text_response="fresh")
    session = ConversationSession(provider, messages=messages, clock=SteppingClock(START + timedelta(hours=1)))
    result = asyncio.run(session.regenerate("m2"))

    assert result.status == TurnStatus.COMPLETED
    assert [message.id for message in session.messages] == ["u1", "m1", "u2", "m2", "u3", "m3"]
    assert session.get_message("m2").text == "fresh"
    prompt = provider.prompts[-1][1]
    assert prompt.endswith("Chat History:\nUser: first\nUser: second\n")
    assert "third" not in prompt

    assert asyncio.run(session.regenerate("u1")).status == TurnStatus.REJECTED


def test_edit_and_replay_truncates_later_messages() -> None:
    messages = [
        _message("u1", MessageRole.USER, "first", 0),
        _message("m1", MessageRole.MODEL, "reply one", 1),
        _message("u2", MessageRole.USER, "second", 2),
        _message("m2", MessageRole.MODEL, "reply two", 3),
    ]
    provider = MockAiProvider(text_response="again")
    session = ConversationSession(provider, messages=messages, clock=SteppingClock(START + timedelta(hours=1)))
    result = asyncio.run(session.edit_and_replay("u1", "edited"))

    assert result.status == TurnStatus.COMPLETED
    assert [message.text for message in session.messages] == ["edited", "again"]
    assert session.messages[0].id == "u1"
    assert provider.prompts[-1][1].endswith("Chat History:\nUser: edited\n")
    assert asyncio.run(session.edit_and_replay("m1", "nope")).status == TurnStatus.REJECTED


def test_cancel_during_regenerate_leaves_reply_unchanged() -> None:
    """Summary: Verify a cancelled regeneration keeps the original reply text.

    Importance: Abandoning a regeneration must not blank or reorder the history.
    Alternatives: Replace the reply with a placeholder on cancel.
    """

    async def scenario() -> None:
        messages = [
            _message("u1", MessageRole.USER, "first", 0),
            _message("m1", MessageRole.MODEL, "reply one", 1),
            _message("u2", MessageRole.USER, "second", 2),
            _message("m2", MessageRole.MODEL, "reply two", 3),
        ]
        provider = GatedProvider()
        session = ConversationSession(provider, messages=messages, clock=SteppingClock(START + timedelta(hours=1)))
        task = asyncio.create_task(session.regenerate("m2"))
        await provider.started.wait()
        assert session.busy is True
        assert session.cancel() is True
        result = await task

        assert result.status == TurnStatus.CANCELLED
        assert session.busy is False
        assert [message.id for message in session.messages] == ["u1", "m1", "u2", "m2"]
        assert session.get_message("m2").text == "reply two"

    asyncio.run(scenario())


def test_cancel_during_edit_and_replay_appends_no_reply() -> None:
    async def scenario() -> None:
        messages = [
            _message("u1", MessageRole.USER, "first", 0),
            _message("m1", MessageRole.MODEL, "reply one", 1),
            _message("u2", MessageRole.USER, "second", 2),
            _message("m2", MessageRole.MODEL, "reply two", 3),
        ]
        provider = GatedProvider()
        session = ConversationSession(provider, messages=messages, clock=SteppingClock(START + timedelta(hours=1)))
        task = asyncio.create_task(session.edit_and_replay("u1", "edited"))
        await provider.started.wait()
        assert session.cancel() is True
        result = await task

        assert result.status == TurnStatus.CANCELLED
        assert session.busy is False
        assert [(message.id, message.text) for message in session.messages] == [("u1", "edited")]
        assert session.messages[0].role == MessageRole.USER

    asyncio.run(scenario())


def test_quick_add_creates_placeholder_entry() -> None:
    session = ConversationSession(MockAiProvider(), clock=SteppingClock(datetime(2024, 5, 15, 9, 5)))
    entry = session.quick_add("movie")
    assert entry is not None
    assert entry.event == "New Event"
    assert entry.details == {"summary": "New entry", "time": "09:05", "notes": ""}
    assert entry.date == "2024-05-15"
    assert session.quick_add("no_such_category") is None


def test_digest_saves_revocable_diary_entry() -> None:
    """Summary: Verify the digest turns recent chatter into one diary entry.

    Importance: The entry is announced like extracted ones so it can be undone.
    Alternatives: Write the digest as a plain chat reply.
    """

    provider = MockAiProvider(text_response="今天聊了工作和天气")
    messages = [
        _message("u1", MessageRole.USER, "工作好累", 0),
        _message("m1", MessageRole.MODEL, "辛苦了", 1),
        _message("u2", MessageRole.USER, "下雨了", 2),
    ]
    session = ConversationSession(provider, messages=messages, clock=SteppingClock())
    result = asyncio.run(session.digest())

    assert result.status == TurnStatus.COMPLETED
    (entry,) = result.entries
    assert entry.category == "diary"
    assert entry.event == "闲聊速记"
    assert entry.details["notes"] == "今天聊了工作和天气"
    purpose, prompt = provider.prompts[-1]
    assert purpose == "digest"
    assert "工作好累" in prompt and "下雨了" in prompt and "辛苦了" not in prompt
    assert result.notice is not None
    assert session.revoke(result.notice.id) is True
    assert len(session.entries) == 0


def test_digest_without_user_messages_is_rejected() -> None:
    session = ConversationSession(MockAiProvider(), clock=SteppingClock())
    assert asyncio.run(session.digest()).status == TurnStatus.REJECTED


def test_settings_updates_persist(tmp_path: Path) -> None:
    store = _build_store(tmp_path)
    session = ConversationSession.load(store, MockAiProvider(), clock=SteppingClock())
    session.update_ai_settings(batch_size=5, chat_instructions="Be brief.")
    session.update_chat_settings(context_mode="today", context_rounds=3)
    with pytest.raises(ValueError):
        session.update_chat_settings(volume=11)

    reloaded = ConversationSession.load(store, MockAiProvider(), clock=SteppingClock())
    assert reloaded.ai_settings.batch_size == 5
    assert reloaded.ai_settings.chat_instructions == "Be brief."
    assert reloaded.chat_settings.context_mode.value == "today"
    assert reloaded.chat_settings.context_rounds == 3
    assert reloaded.chat_settings.custom_start_date == "2024-05-15"
