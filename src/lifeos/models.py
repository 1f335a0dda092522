"""Summary: Domain model dataclasses for LifeOS.

Importance: Defines the taxonomy, record, and conversation entities shared across services.
Alternatives: Use Pydantic models or loosely typed dictionaries everywhere.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


UNBOUNDED_ROUNDS = 9999


class FieldType(str, Enum):
    """Summary: Supported value types for category fields.

    Importance: Drives both the edit form and the extraction response schema.
    Alternatives: Store free-form type strings and validate ad hoc.
    """

    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    MULTISELECT = "multiselect"
    DATE = "date"
    RATING = "rating"


class MessageRole(str, Enum):
    """Summary: Author of a chat message."""

    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


class ContextMode(str, Enum):
    """Summary: Date window applied to conversational history."""

    GLOBAL = "global"
    TODAY = "today"
    WEEK = "week"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Group:
    """Summary: Display bucket for categories.

    Importance: Orders categories into sections such as daily life, body, and work.
    Alternatives: Use a flat category list with no grouping.
    """

    id: str
    label: str


@dataclass(frozen=True)
class CategoryMeta:
    """Summary: Presentation metadata for one category.

    Importance: The key ties entries and field schemas to a category.
    Alternatives: Derive labels and colors from the key at render time.
    """

    key: str
    group: str
    label: str
    color: str = "bg-gray-600"
    icon: str = "Hash"


@dataclass(frozen=True)
class FieldSchema:
    """Summary: Definition of one field in a category record.

    Importance: User-defined fields shape both editing and AI extraction.
    Alternatives: Hardcode per-category record classes.
    """

    key: str
    label: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    options: tuple[str, ...] | None = None
    unit: str | None = None
    placeholder: str | None = None


@dataclass(frozen=True)
class Entry:
    """Summary: A single structured life-event record.

    Importance: Core unit stored by extraction, quick-add, and user edits.
    Alternatives: Store raw chat text only and extract on demand.
    """

    id: str
    date: str
    category: str
    event: str
    details: dict[str, Any] = field(default_factory=dict)
    image: str | None = None


@dataclass(frozen=True)
class ChatMessage:
    """Summary: One turn in the conversation log.

    Importance: System messages carry the only link to the entries a turn produced.
    Alternatives: Address messages by list position.
    """

    id: str
    role: MessageRole
    text: str
    timestamp: datetime
    related_entry_ids: tuple[str, ...] = ()
    revoked: bool = False


@dataclass(frozen=True)
class RawLog:
    """Summary: Verbatim capture of a user utterance.

    Importance: Keeps an audit trail independent of extraction success.
    Alternatives: Rely on the chat log, which users can truncate.
    """

    id: str
    timestamp: datetime
    text: str


@dataclass(frozen=True)
class ContextPolicy:
    """Summary: Rules for which prior user turns an AI call may see.

    Importance: Keeps prompts bounded by date window and depth.
    Alternatives: Always send the full history.
    """

    mode: ContextMode = ContextMode.GLOBAL
    rounds: int = 10
    custom_start: date | None = None
    custom_end: date | None = None

    @property
    def unbounded(self) -> bool:
        return self.rounds >= UNBOUNDED_ROUNDS


@dataclass(frozen=True)
class AiSettings:
    """Summary: Prompt templates and batch sizing for AI calls.

    Importance: Lets users tune persona and extraction rules without code changes.
    Alternatives: Ship fixed prompts with the application.
    """

    chat_instructions: str
    organizer_instructions: str
    logger_instructions: str
    batch_size: int = 30


@dataclass(frozen=True)
class ChatSettings:
    """Summary: Module toggles and context policy for the chat session.

    Importance: Allows running chat-only, organizer-only, or both.
    Alternatives: Split settings into separate feature flags.
    """

    chat_enabled: bool = True
    organizer_enabled: bool = True
    context_rounds: int = 10
    context_mode: ContextMode = ContextMode.GLOBAL
    custom_start_date: str = ""
    custom_end_date: str = ""

    def policy(self) -> ContextPolicy:
        """Summary: Build the context policy described by these settings.

        Importance: Keeps the selector independent of settings storage.
        Alternatives: Pass ChatSettings straight into the selector.
        """

        return ContextPolicy(
            mode=self.context_mode,
            rounds=self.context_rounds,
            custom_start=_parse_date(self.custom_start_date),
            custom_end=_parse_date(self.custom_end_date),
        )


def _parse_date(value: str) -> date | None:
    if not value:
        return None
    return date.fromisoformat(value)


def field_to_dict(schema: FieldSchema) -> dict[str, Any]:
    """Summary: Serialize a field schema for persistence or HTTP responses.

    Importance: Omits unset optional attributes to keep stored JSON compact.
    Alternatives: Store every attribute including nulls.
    """

    data: dict[str, Any] = {
        "key": schema.key,
        "label": schema.label,
        "type": schema.type.value,
        "required": schema.required,
    }
    if schema.options is not None:
        data["options"] = list(schema.options)
    if schema.unit is not None:
        data["unit"] = schema.unit
    if schema.placeholder is not None:
        data["placeholder"] = schema.placeholder
    return data


def field_from_dict(data: dict[str, Any]) -> FieldSchema:
    """Summary: Parse a stored field schema.

    Importance: Restores typed fields from JSON persisted by earlier sessions.
    Alternatives: Keep schemas as raw dictionaries.
    """

    options = data.get("options")
    return FieldSchema(
        key=data["key"],
        label=data.get("label", data["key"]),
        type=FieldType(data.get("type", FieldType.TEXT.value)),
        required=bool(data.get("required", False)),
        options=tuple(options) if options is not None else None,
        unit=data.get("unit"),
        placeholder=data.get("placeholder"),
    )


def entry_to_dict(entry: Entry) -> dict[str, Any]:
    """Summary: Serialize an entry to a JSON-compatible dictionary."""

    data = asdict(entry)
    if entry.image is None:
        data.pop("image")
    return data


def entry_from_dict(data: dict[str, Any]) -> Entry:
    """Summary: Parse a stored entry."""

    return Entry(
        id=data["id"],
        date=data["date"],
        category=data["category"],
        event=data.get("event", ""),
        details=dict(data.get("details") or {}),
        image=data.get("image"),
    )


def message_to_dict(message: ChatMessage) -> dict[str, Any]:
    """Summary: Serialize a chat message with an ISO timestamp."""

    data: dict[str, Any] = {
        "id": message.id,
        "role": message.role.value,
        "text": message.text,
        "timestamp": message.timestamp.isoformat(),
    }
    if message.related_entry_ids:
        data["related_entry_ids"] = list(message.related_entry_ids)
    if message.revoked:
        data["revoked"] = True
    return data


def message_from_dict(data: dict[str, Any]) -> ChatMessage:
    """Summary: Parse a stored chat message."""

    return ChatMessage(
        id=data["id"],
        role=MessageRole(data["role"]),
        text=data.get("text", ""),
        timestamp=datetime.fromisoformat(data["timestamp"]),
        related_entry_ids=tuple(data.get("related_entry_ids") or ()),
        revoked=bool(data.get("revoked", False)),
    )


def raw_log_to_dict(log: RawLog) -> dict[str, Any]:
    return {"id": log.id, "timestamp": log.timestamp.isoformat(), "text": log.text}


def raw_log_from_dict(data: dict[str, Any]) -> RawLog:
    return RawLog(
        id=data["id"],
        timestamp=datetime.fromisoformat(data["timestamp"]),
        text=data.get("text", ""),
    )


def chat_settings_to_dict(settings: ChatSettings) -> dict[str, Any]:
    data = asdict(settings)
    data["context_mode"] = settings.context_mode.value
    return data


def chat_settings_from_dict(data: dict[str, Any], defaults: ChatSettings) -> ChatSettings:
    """Summary: Parse stored chat settings over defaults.

    Importance: Tolerates settings saved before a key existed.
    Alternatives: Require every key to be present.
    """

    merged = {**chat_settings_to_dict(defaults), **data}
    return ChatSettings(
        chat_enabled=bool(merged["chat_enabled"]),
        organizer_enabled=bool(merged["organizer_enabled"]),
        context_rounds=int(merged["context_rounds"]),
        context_mode=ContextMode(merged["context_mode"]),
        custom_start_date=merged["custom_start_date"] or "",
        custom_end_date=merged["custom_end_date"] or "",
    )


def ai_settings_from_dict(data: dict[str, Any], defaults: AiSettings) -> AiSettings:
    merged = {**asdict(defaults), **data}
    return AiSettings(
        chat_instructions=merged["chat_instructions"],
        organizer_instructions=merged["organizer_instructions"],
        logger_instructions=merged["logger_instructions"],
        batch_size=int(merged["batch_size"]),
    )


def ai_settings_to_dict(settings: AiSettings) -> dict[str, Any]:
    return asdict(settings)
