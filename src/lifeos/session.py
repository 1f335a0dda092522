"""Summary: Conversation session controller for LifeOS.

Importance: Sequences chat and organizer calls, cancellation, regeneration, and undo.
Alternatives: Let the UI drive AI calls and state updates directly.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterable

from lifeos.ai import AiProvider, AiProviderError, CancellationToken, TurnCancelled
from lifeos.audit import STATUS_CANCELLED, STATUS_FAILED, STATUS_OK, AiAuditService
from lifeos.context import select_context
from lifeos.entries import EntryStore, RawLogJournal, new_record_id
from lifeos.extraction import ExtractionOrchestrator
from lifeos.models import (
    AiSettings,
    ChatMessage,
    ChatSettings,
    ContextMode,
    Entry,
    MessageRole,
    ai_settings_from_dict,
    ai_settings_to_dict,
    chat_settings_from_dict,
    chat_settings_to_dict,
    message_from_dict,
    message_to_dict,
)
from lifeos.prompts import CHAT_FAILURE_TEXT, default_ai_settings
from lifeos.storage.sqlite_store import AI_SETTINGS_KEY, CHAT_SETTINGS_KEY, MESSAGES_KEY, SqliteStore
from lifeos.taxonomy import TaxonomyRegistry


logger = logging.getLogger(__name__)

CHAT_PURPOSE = "chat"
DIGEST_PURPOSE = "digest"
DIGEST_TITLE = "闲聊速记"
DIGEST_CATEGORY = "diary"
REVOKED_SUFFIX = " (Revoked)"
EMPTY_REPLY = "..."


class TurnStatus(str, Enum):
    """Summary: Outcome of one session operation."""

    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TurnResult:
    """Summary: What a turn appended or changed.

    Importance: Callers can tell a user abort from a rejection or a failure.
    Alternatives: Return the updated message list and let callers diff it.
    """

    status: TurnStatus
    reply: ChatMessage | None = None
    entries: tuple[Entry, ...] = ()
    notice: ChatMessage | None = None
    reason: str | None = None


def default_chat_settings(today: date) -> ChatSettings:
    return ChatSettings(custom_start_date=today.isoformat(), custom_end_date=today.isoformat())


def new_message_id() -> str:
    return uuid.uuid4().hex


class ConversationSession:
    """Summary: Single-writer owner of the message log, entries, taxonomy, and settings.

    Importance: Enforces one in-flight turn at a time through a single busy flag.
    Alternatives: Queue turns and process them sequentially.
    """

    def __init__(
        self,
        ai_provider: AiProvider,
        taxonomy: TaxonomyRegistry | None = None,
        entries: EntryStore | None = None,
        raw_logs: RawLogJournal | None = None,
        messages: Iterable[ChatMessage] = (),
        ai_settings: AiSettings | None = None,
        chat_settings: ChatSettings | None = None,
        store: SqliteStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Summary: Wire the session from explicit components.

        Importance: Tests build sessions in memory; load() builds them from storage.
        Alternatives: Read module-level globals for settings and state.
        """

        self.ai_provider = ai_provider
        self.taxonomy = taxonomy if taxonomy is not None else TaxonomyRegistry(store=store)
        self.entries = entries if entries is not None else EntryStore(store=store)
        self.raw_logs = raw_logs if raw_logs is not None else RawLogJournal(store=store)
        self._messages: list[ChatMessage] = list(messages)
        self._clock = clock
        self._ai_settings = ai_settings or default_ai_settings()
        self._chat_settings = chat_settings or default_chat_settings(clock().date())
        self._store = store
        self.audit = AiAuditService(store=store, provider=ai_provider)
        self.extractor = ExtractionOrchestrator(ai_provider=ai_provider, audit=self.audit)
        self._busy = False
        self._token: CancellationToken | None = None

    @classmethod
    def load(
        cls,
        store: SqliteStore,
        ai_provider: AiProvider,
        clock: Callable[[], datetime] = datetime.now,
    ) -> "ConversationSession":
        """Summary: Restore a session from storage, defaulting absent collections.

        Importance: Settings and history survive restarts.
        Alternatives: Start with an empty session every launch.
        """

        defaults_ai = default_ai_settings()
        defaults_chat = default_chat_settings(clock().date())
        raw_ai = store.load(AI_SETTINGS_KEY)
        raw_chat = store.load(CHAT_SETTINGS_KEY)
        return cls(
            ai_provider=ai_provider,
            taxonomy=TaxonomyRegistry.load(store),
            entries=EntryStore.load(store),
            raw_logs=RawLogJournal.load(store),
            messages=[message_from_dict(item) for item in store.load(MESSAGES_KEY, [])],
            ai_settings=ai_settings_from_dict(raw_ai, defaults_ai) if raw_ai else defaults_ai,
            chat_settings=chat_settings_from_dict(raw_chat, defaults_chat) if raw_chat else defaults_chat,
            store=store,
            clock=clock,
        )

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def ai_settings(self) -> AiSettings:
        return self._ai_settings

    @property
    def chat_settings(self) -> ChatSettings:
        return self._chat_settings

    def get_message(self, message_id: str) -> ChatMessage | None:
        index = self._index_of(message_id)
        return None if index is None else self._messages[index]

    async def submit(self, text: str) -> TurnResult:
        """Summary: Run one full turn for a new user utterance.

        Importance: Appends the user message and raw log, then the reply and extracted entries.
        Alternatives: Run chat and extraction as independent requests from the UI.
        """

        if self._busy:
            logger.warning("Rejected submit while another turn is in flight.")
            return TurnResult(TurnStatus.REJECTED, reason="busy")
        if not text or not text.strip():
            return TurnResult(TurnStatus.REJECTED, reason="empty")
        token = self._begin()
        try:
            now = self._clock()
            history = select_context(self._messages, self._chat_settings.policy(), now)
            self._append(ChatMessage(id=new_message_id(), role=MessageRole.USER, text=text, timestamp=now))
            self.raw_logs.append(text, now)

            reply = None
            if self._chat_settings.chat_enabled:
                reply_text = await self._chat(history, text, token)
                reply = ChatMessage(
                    id=new_message_id(),
                    role=MessageRole.MODEL,
                    text=reply_text or EMPTY_REPLY,
                    timestamp=self._clock(),
                )
                self._append(reply)

            extracted: list[Entry] = []
            notice = None
            if self._chat_settings.organizer_enabled:
                extracted = await self.extractor.extract(
                    text,
                    now.date().isoformat(),
                    self.taxonomy.snapshot(),
                    cancel=token,
                    now=now,
                    instructions=self._ai_settings.organizer_instructions,
                )
                token.check()
                if extracted:
                    notice = self._store_batch(extracted)
            logger.info("Turn completed with %s new entries.", len(extracted))
            return TurnResult(TurnStatus.COMPLETED, reply=reply, entries=tuple(extracted), notice=notice)
        except TurnCancelled:
            logger.info("Turn cancelled by user.")
            return TurnResult(TurnStatus.CANCELLED)
        finally:
            self._finish(token)

    def cancel(self) -> bool:
        """Summary: Abort the in-flight turn.

        Importance: Stops waiting without rolling back what was already appended.
        Alternatives: Undo the user message on cancel.
        """

        if self._token is None:
            return False
        self._token.cancel()
        self._token = None
        self._busy = False
        logger.info("Cancelled in-flight turn.")
        return True

    async def regenerate(self, message_id: str) -> TurnResult:
        """Summary: Re-issue the chat call behind one model reply and replace its text.

        Importance: Context is limited to turns strictly before the reply being regenerated.
        Alternatives: Append a second reply instead of replacing the first.
        """

        if self._busy:
            return TurnResult(TurnStatus.REJECTED, reason="busy")
        index = self._index_of(message_id)
        if index is None or self._messages[index].role != MessageRole.MODEL:
            return TurnResult(TurnStatus.REJECTED, reason="not_found")
        target = self._messages[index]
        user_index = next(
            (i for i in range(index, -1, -1) if self._messages[i].role == MessageRole.USER), None
        )
        if user_index is None:
            return TurnResult(TurnStatus.REJECTED, reason="no_user_message")
        user_message = self._messages[user_index]
        token = self._begin()
        try:
            pool = [item for item in self._messages[:user_index] if item.timestamp < target.timestamp]
            history = select_context(pool, self._chat_settings.policy(), self._clock())
            reply_text = await self._chat(history, user_message.text, token)
            current = self._index_of(message_id)
            if current is None:
                return TurnResult(TurnStatus.REJECTED, reason="not_found")
            reply = replace(self._messages[current], text=reply_text or EMPTY_REPLY)
            self._messages[current] = reply
            self._save_messages()
            logger.info("Regenerated reply %s.", message_id)
            return TurnResult(TurnStatus.COMPLETED, reply=reply)
        except TurnCancelled:
            logger.info("Regeneration cancelled by user.")
            return TurnResult(TurnStatus.CANCELLED)
        finally:
            self._finish(token)

    async def edit_and_replay(self, message_id: str, new_text: str) -> TurnResult:
        """Summary: Rewrite a past user message, drop everything after it, and reply again.

        Importance: Destructive on call; confirming with the user is the caller's job.
        Alternatives: Fork the conversation and keep the discarded branch.
        """

        if self._busy:
            return TurnResult(TurnStatus.REJECTED, reason="busy")
        if not new_text or not new_text.strip():
            return TurnResult(TurnStatus.REJECTED, reason="empty")
        index = self._index_of(message_id)
        if index is None or self._messages[index].role != MessageRole.USER:
            return TurnResult(TurnStatus.REJECTED, reason="not_found")
        discarded = len(self._messages) - index - 1
        edited = replace(self._messages[index], text=new_text)
        self._messages = [*self._messages[:index], edited]
        self._save_messages()
        logger.info("Edited message %s and discarded %s later messages.", message_id, discarded)
        if not self._chat_settings.chat_enabled:
            return TurnResult(TurnStatus.COMPLETED)
        token = self._begin()
        try:
            history = select_context(self._messages[:index], self._chat_settings.policy(), self._clock())
            reply_text = await self._chat(history, new_text, token)
            reply = ChatMessage(
                id=new_message_id(),
                role=MessageRole.MODEL,
                text=reply_text or EMPTY_REPLY,
                timestamp=self._clock(),
            )
            self._append(reply)
            return TurnResult(TurnStatus.COMPLETED, reply=reply)
        except TurnCancelled:
            logger.info("Replay cancelled by user.")
            return TurnResult(TurnStatus.CANCELLED)
        finally:
            self._finish(token)

    def revoke(self, message_id: str, entry_ids: Iterable[str] | None = None) -> bool:
        """Summary: Undo the entries a system message announced and flag the message.

        Importance: One-way and idempotent; a second call changes nothing.
        Alternatives: Allow re-applying revoked entries.
        """

        index = self._index_of(message_id)
        if index is None:
            return False
        message = self._messages[index]
        if message.role != MessageRole.SYSTEM or message.revoked:
            return False
        targets = list(entry_ids) if entry_ids is not None else list(message.related_entry_ids)
        removed = self.entries.delete_by_ids(targets)
        self._messages[index] = replace(message, revoked=True, text=message.text + REVOKED_SUFFIX)
        self._save_messages()
        logger.info("Revoked message %s and removed %s entries.", message_id, removed)
        return True

    def update_message(self, message_id: str, text: str) -> bool:
        """Summary: Rewrite one message without regenerating anything."""

        index = self._index_of(message_id)
        if index is None:
            return False
        self._messages[index] = replace(self._messages[index], text=text)
        self._save_messages()
        return True

    def delete_message(self, message_id: str) -> bool:
        """Summary: Remove one message; entries it announced stay in the store."""

        index = self._index_of(message_id)
        if index is None:
            return False
        del self._messages[index]
        self._save_messages()
        return True

    def quick_add(self, category: str, on_date: date | None = None) -> Entry | None:
        """Summary: Create a placeholder entry for manual editing.

        Importance: Lets users log events without going through chat.
        Alternatives: Require a complete entry payload up front.
        """

        if category not in self.taxonomy.categories:
            logger.warning("Rejected quick add for unknown category %s.", category)
            return None
        now = self._clock()
        entry = Entry(
            id=new_record_id(),
            date=(on_date or now.date()).isoformat(),
            category=category,
            event="New Event",
            details={"summary": "New entry", "time": now.strftime("%H:%M"), "notes": ""},
        )
        self.entries.insert(entry)
        return entry

    def update_entry(self, entry: Entry) -> bool:
        return self.entries.patch_by_id(entry)

    def delete_entry(self, entry_id: str) -> bool:
        return self.entries.delete_by_id(entry_id)

    def edit_raw_log(self, log_id: str, text: str) -> bool:
        return self.raw_logs.edit(log_id, text)

    def delete_raw_log(self, log_id: str) -> bool:
        return self.raw_logs.delete(log_id)

    def update_ai_settings(self, **changes: Any) -> AiSettings:
        """Summary: Apply and persist changes to the AI settings.

        Importance: Prompt edits take effect on the next call.
        Alternatives: Require a restart for settings changes.
        """

        _check_settings_keys(AiSettings, changes)
        self._ai_settings = replace(self._ai_settings, **changes)
        if self._store:
            self._store.save(AI_SETTINGS_KEY, ai_settings_to_dict(self._ai_settings))
        return self._ai_settings

    def update_chat_settings(self, **changes: Any) -> ChatSettings:
        """Summary: Apply and persist changes to module toggles and context policy."""

        _check_settings_keys(ChatSettings, changes)
        if "context_mode" in changes:
            changes["context_mode"] = ContextMode(changes["context_mode"])
        self._chat_settings = replace(self._chat_settings, **changes)
        if self._store:
            self._store.save(CHAT_SETTINGS_KEY, chat_settings_to_dict(self._chat_settings))
        return self._chat_settings

    async def digest(self) -> TurnResult:
        """Summary: Summarize recent user chatter into one diary entry.

        Importance: Casual conversation still leaves a trace on the dashboard.
        Alternatives: Extract entries only from explicit event descriptions.
        """

        if self._busy:
            return TurnResult(TurnStatus.REJECTED, reason="busy")
        recent = [item for item in self._messages if item.role == MessageRole.USER]
        recent = recent[-self._ai_settings.batch_size :] if self._ai_settings.batch_size > 0 else []
        if not recent:
            return TurnResult(TurnStatus.REJECTED, reason="empty")
        categories = self.taxonomy.categories
        category = DIGEST_CATEGORY if DIGEST_CATEGORY in categories else next(iter(categories), None)
        if category is None:
            return TurnResult(TurnStatus.REJECTED, reason="no_category")
        token = self._begin()
        prompt = self._ai_settings.logger_instructions + "\n\nMessages:\n" + "".join(
            f"[{item.timestamp.strftime('%H:%M')}] {item.text}\n" for item in recent
        )
        try:
            try:
                result = await self.ai_provider.generate_text(prompt, DIGEST_PURPOSE, cancel=token)
            except TurnCancelled:
                self.audit.record(DIGEST_PURPOSE, prompt, "", STATUS_CANCELLED)
                raise
            except AiProviderError as exc:
                logger.warning("Digest failed: %s", exc)
                self.audit.record(DIGEST_PURPOSE, prompt, str(exc), STATUS_FAILED)
                return TurnResult(TurnStatus.FAILED, reason="provider_error")
            self.audit.record(DIGEST_PURPOSE, prompt, result.text, STATUS_OK, result.latency_ms)
            token.check()
            if not result.text.strip():
                return TurnResult(TurnStatus.FAILED, reason="empty_response")
            now = self._clock()
            entry = Entry(
                id=new_record_id(),
                date=now.date().isoformat(),
                category=category,
                event=DIGEST_TITLE,
                details={"summary": DIGEST_TITLE, "time": now.strftime("%H:%M"), "notes": result.text.strip()},
            )
            notice = self._store_batch([entry])
            return TurnResult(TurnStatus.COMPLETED, entries=(entry,), notice=notice)
        except TurnCancelled:
            logger.info("Digest cancelled by user.")
            return TurnResult(TurnStatus.CANCELLED)
        finally:
            self._finish(token)

    async def _chat(self, history: list[ChatMessage], new_text: str, token: CancellationToken) -> str:
        """Summary: Issue the conversational call and degrade failures to a fixed text.

        Importance: Provider errors never corrupt the log; cancellation propagates.
        Alternatives: Surface provider exceptions to the caller.
        """

        prompt = self._ai_settings.chat_instructions + "\n\nChat History:\n"
        prompt += "".join(f"User: {item.text}\n" for item in history)
        prompt += f"User: {new_text}\n"
        try:
            result = await self.ai_provider.generate_text(prompt, CHAT_PURPOSE, cancel=token)
        except TurnCancelled:
            self.audit.record(CHAT_PURPOSE, prompt, "", STATUS_CANCELLED)
            raise
        except AiProviderError as exc:
            logger.warning("Chat call failed: %s", exc)
            self.audit.record(CHAT_PURPOSE, prompt, str(exc), STATUS_FAILED)
            return CHAT_FAILURE_TEXT
        self.audit.record(CHAT_PURPOSE, prompt, result.text, STATUS_OK, result.latency_ms)
        token.check()
        return result.text

    def _store_batch(self, batch: list[Entry]) -> ChatMessage:
        """Summary: Insert one batch of entries, then announce it.

        Importance: The system message is appended only after every insert succeeded.
        Alternatives: Announce entries one by one.
        """

        entry_ids = self.entries.insert_many(batch)
        notice = ChatMessage(
            id=new_message_id(),
            role=MessageRole.SYSTEM,
            text="Saved: " + ", ".join(f"[{entry.date}] {entry.event}" for entry in batch),
            timestamp=self._clock(),
            related_entry_ids=tuple(entry_ids),
        )
        self._append(notice)
        return notice

    def _begin(self) -> CancellationToken:
        token = CancellationToken()
        self._token = token
        self._busy = True
        return token

    def _finish(self, token: CancellationToken) -> None:
        if self._token is token:
            self._token = None
            self._busy = False

    def _index_of(self, message_id: str) -> int | None:
        return next((i for i, item in enumerate(self._messages) if item.id == message_id), None)

    def _append(self, message: ChatMessage) -> None:
        self._messages = [*self._messages, message]
        self._save_messages()

    def _save_messages(self) -> None:
        if self._store:
            self._store.save(MESSAGES_KEY, [message_to_dict(item) for item in self._messages])


def _check_settings_keys(settings_type: type, changes: dict[str, Any]) -> None:
    known = {item.name for item in fields(settings_type)}
    unknown = set(changes) - known
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
