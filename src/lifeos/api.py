"""Summary: FastAPI application for LifeOS.

Importance: Exposes the session, taxonomy, and records to UI clients over HTTP.
Alternatives: Embed the services in a desktop UI process.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from lifeos.ai import AiProvider
from lifeos.app import build_services
from lifeos.config import AppConfig
from lifeos.models import (
    ContextMode,
    Entry,
    FieldType,
    ai_settings_to_dict,
    chat_settings_to_dict,
    entry_to_dict,
    field_to_dict,
    message_to_dict,
    raw_log_to_dict,
)
from lifeos.session import TurnResult, TurnStatus


logger = logging.getLogger(__name__)


class LabelRequest(BaseModel):
    """Summary: Request payload carrying a display label."""

    label: str = Field(min_length=1)


class GroupMoveRequest(BaseModel):
    """Summary: Request payload for moving a group one slot.

    Importance: Array order is display order, so moves are single steps.
    Alternatives: Accept a full ordering of group ids.
    """

    direction: int = Field(ge=-1, le=1)


class CategoryCreateRequest(BaseModel):
    """Summary: Request payload for category creation.

    Importance: New categories are seeded with the standard fields server-side.
    Alternatives: Let clients submit the full field list.
    """

    group_id: str
    label: str = Field(min_length=1)


class CategoryUpdateRequest(BaseModel):
    label: str | None = None
    color: str | None = None
    icon: str | None = None
    group: str | None = None


class FieldUpdateRequest(BaseModel):
    """Summary: Partial update for one field definition.

    Importance: Only provided attributes are applied.
    Alternatives: Replace the full field definition.
    """

    label: str | None = None
    type: FieldType | None = None
    required: bool | None = None
    options: list[str] | None = None
    unit: str | None = None
    placeholder: str | None = None


class QuickAddRequest(BaseModel):
    category: str
    date: dt.date | None = None


class EntryUpdateRequest(BaseModel):
    """Summary: Full replacement payload for one entry.

    Importance: The client merges edits; the store replaces by id.
    Alternatives: Patch individual detail keys server-side.
    """

    date: dt.date
    category: str
    event: str
    details: dict[str, Any] = Field(default_factory=dict)
    image: str | None = None


class TextRequest(BaseModel):
    text: str


class RevokeRequest(BaseModel):
    entry_ids: list[str] | None = None


class AiSettingsRequest(BaseModel):
    """Summary: Partial update for prompt templates and batch sizing."""

    chat_instructions: str | None = None
    organizer_instructions: str | None = None
    logger_instructions: str | None = None
    batch_size: int | None = Field(default=None, ge=1, le=500)


class ChatSettingsRequest(BaseModel):
    """Summary: Partial update for module toggles and the context policy.

    Importance: Custom dates are validated before they reach the selector.
    Alternatives: Store raw strings and fail at selection time.
    """

    chat_enabled: bool | None = None
    organizer_enabled: bool | None = None
    context_rounds: int | None = Field(default=None, ge=0)
    context_mode: ContextMode | None = None
    custom_start_date: dt.date | None = None
    custom_end_date: dt.date | None = None


_REJECTION_CODES = {"busy": 409, "not_found": 404}


def _turn_payload(result: TurnResult) -> dict[str, Any]:
    """Summary: Map a turn result to a response body, raising for rejections.

    Importance: Cancelled turns are a normal outcome, not an error.
    Alternatives: Return every outcome with status 200.
    """

    if result.status == TurnStatus.REJECTED:
        raise HTTPException(status_code=_REJECTION_CODES.get(result.reason or "", 400), detail=result.reason)
    if result.status == TurnStatus.FAILED:
        raise HTTPException(status_code=502, detail=result.reason)
    return {
        "status": result.status.value,
        "reply": message_to_dict(result.reply) if result.reply else None,
        "entries": [entry_to_dict(entry) for entry in result.entries],
        "notice": message_to_dict(result.notice) if result.notice else None,
    }


def _provided(payload: BaseModel) -> dict[str, Any]:
    return payload.model_dump(exclude_unset=True)


def create_app(config: AppConfig, ai_provider: AiProvider | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to LifeOS services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="LifeOS API", version="0.1.0")
    services = build_services(config, ai_provider=ai_provider)
    session = services.session

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    guarded = [Depends(require_api_key)]

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint."""

        return {"status": "ok", "provider": services.ai_provider.name}

    @app.get("/taxonomy", dependencies=guarded)
    def taxonomy() -> dict[str, Any]:
        """Summary: Return groups, category metadata, and field schemas.

        Importance: Clients render dashboards and edit forms from this one payload.
        Alternatives: Expose each collection under its own endpoint.
        """

        registry = services.taxonomy
        return {
            "groups": [asdict(group) for group in registry.groups],
            "categories": {key: asdict(meta) for key, meta in registry.categories.items()},
            "schemas": {
                key: [field_to_dict(item) for item in registry.fields_for(key)] for key in registry.categories
            },
        }

    @app.post("/groups", dependencies=guarded)
    def add_group(payload: LabelRequest) -> dict[str, Any]:
        return asdict(services.taxonomy.add_group(payload.label))

    @app.patch("/groups/{group_id}", dependencies=guarded)
    def rename_group(group_id: str, payload: LabelRequest) -> dict[str, bool]:
        if not services.taxonomy.rename_group(group_id, payload.label):
            raise HTTPException(status_code=404, detail="Group not found")
        return {"updated": True}

    @app.delete("/groups/{group_id}", dependencies=guarded)
    def delete_group(group_id: str) -> dict[str, bool]:
        """Summary: Delete a non-core group.

        Importance: Core groups are rejected with a client error.
        """

        if not services.taxonomy.delete_group(group_id):
            raise HTTPException(status_code=400, detail="Group cannot be deleted")
        return {"deleted": True}

    @app.post("/groups/{group_id}/move", dependencies=guarded)
    def move_group(group_id: str, payload: GroupMoveRequest) -> dict[str, bool]:
        return {"moved": services.taxonomy.reorder_group(group_id, payload.direction)}

    @app.post("/categories", dependencies=guarded)
    def add_category(payload: CategoryCreateRequest) -> dict[str, Any]:
        if not any(group.id == payload.group_id for group in services.taxonomy.groups):
            raise HTTPException(status_code=404, detail="Group not found")
        return asdict(services.taxonomy.add_category(payload.group_id, payload.label))

    @app.patch("/categories/{key}", dependencies=guarded)
    def update_category(key: str, payload: CategoryUpdateRequest) -> dict[str, bool]:
        if not services.taxonomy.update_category(key, **_provided(payload)):
            raise HTTPException(status_code=404, detail="Category not found")
        return {"updated": True}

    @app.delete("/categories/{key}", dependencies=guarded)
    def delete_category(key: str) -> dict[str, bool]:
        if not services.taxonomy.delete_category(key):
            raise HTTPException(status_code=404, detail="Category not found")
        return {"deleted": True}

    @app.post("/categories/{key}/fields", dependencies=guarded)
    def add_field(key: str) -> dict[str, Any]:
        created = services.taxonomy.add_field(key)
        if created is None:
            raise HTTPException(status_code=404, detail="Category not found")
        return field_to_dict(created)

    @app.patch("/categories/{key}/fields/{field_key}", dependencies=guarded)
    def update_field(key: str, field_key: str, payload: FieldUpdateRequest) -> dict[str, bool]:
        """Summary: Apply a partial field change.

        Importance: Forbidden changes to standard fields surface as client errors.
        """

        patch = _provided(payload)
        if "type" in patch and patch["type"] is not None:
            patch["type"] = FieldType(patch["type"]).value
        if not services.taxonomy.update_field(key, field_key, patch):
            raise HTTPException(status_code=400, detail="Field update rejected")
        return {"updated": True}

    @app.delete("/categories/{key}/fields/{field_key}", dependencies=guarded)
    def remove_field(key: str, field_key: str) -> dict[str, bool]:
        if not services.taxonomy.remove_field(key, field_key):
            raise HTTPException(status_code=400, detail="Field cannot be removed")
        return {"deleted": True}

    @app.get("/entries", dependencies=guarded)
    def list_entries(on: dt.date | None = None, category: str | None = None) -> list[dict[str, Any]]:
        """Summary: List entries, optionally for one day or category.

        Importance: Supports the per-day dashboard and per-category tables.
        Alternatives: Always return the full collection.
        """

        items = services.entries.all()
        if on is not None:
            items = [entry for entry in items if entry.date == on.isoformat()]
        if category is not None:
            items = [entry for entry in items if entry.category == category]
        return [entry_to_dict(entry) for entry in items]

    @app.post("/entries/quick", dependencies=guarded)
    def quick_add(payload: QuickAddRequest) -> dict[str, Any]:
        created = session.quick_add(payload.category, payload.date)
        if created is None:
            raise HTTPException(status_code=404, detail="Category not found")
        return entry_to_dict(created)

    @app.put("/entries/{entry_id}", dependencies=guarded)
    def update_entry(entry_id: str, payload: EntryUpdateRequest) -> dict[str, Any]:
        entry = Entry(
            id=entry_id,
            date=payload.date.isoformat(),
            category=payload.category,
            event=payload.event,
            details=payload.details,
            image=payload.image,
        )
        if not session.update_entry(entry):
            raise HTTPException(status_code=404, detail="Entry not found")
        return entry_to_dict(entry)

    @app.delete("/entries/{entry_id}", dependencies=guarded)
    def delete_entry(entry_id: str) -> dict[str, bool]:
        if not session.delete_entry(entry_id):
            raise HTTPException(status_code=404, detail="Entry not found")
        return {"deleted": True}

    @app.get("/messages", dependencies=guarded)
    def list_messages() -> list[dict[str, Any]]:
        return [message_to_dict(message) for message in session.messages]

    @app.patch("/messages/{message_id}", dependencies=guarded)
    def update_message(message_id: str, payload: TextRequest) -> dict[str, bool]:
        if not session.update_message(message_id, payload.text):
            raise HTTPException(status_code=404, detail="Message not found")
        return {"updated": True}

    @app.delete("/messages/{message_id}", dependencies=guarded)
    def delete_message(message_id: str) -> dict[str, bool]:
        if not session.delete_message(message_id):
            raise HTTPException(status_code=404, detail="Message not found")
        return {"deleted": True}

    @app.post("/chat", dependencies=guarded)
    async def chat(payload: TextRequest) -> dict[str, Any]:
        """Summary: Submit one user utterance and run the full turn.

        Importance: Central workflow that produces replies and entries.
        Alternatives: Separate chat and extraction endpoints.
        """

        return _turn_payload(await session.submit(payload.text))

    @app.post("/chat/cancel", dependencies=guarded)
    def cancel() -> dict[str, bool]:
        return {"cancelled": session.cancel()}

    @app.post("/chat/digest", dependencies=guarded)
    async def digest() -> dict[str, Any]:
        return _turn_payload(await session.digest())

    @app.post("/messages/{message_id}/regenerate", dependencies=guarded)
    async def regenerate(message_id: str) -> dict[str, Any]:
        return _turn_payload(await session.regenerate(message_id))

    @app.post("/messages/{message_id}/edit", dependencies=guarded)
    async def edit_and_replay(message_id: str, payload: TextRequest) -> dict[str, Any]:
        """Summary: Rewrite a user message and replay the conversation from it.

        Importance: Later messages are discarded; clients confirm before calling.
        """

        return _turn_payload(await session.edit_and_replay(message_id, payload.text))

    @app.post("/messages/{message_id}/revoke", dependencies=guarded)
    def revoke(message_id: str, payload: RevokeRequest | None = None) -> dict[str, bool]:
        if session.get_message(message_id) is None:
            raise HTTPException(status_code=404, detail="Message not found")
        entry_ids = payload.entry_ids if payload else None
        return {"revoked": session.revoke(message_id, entry_ids)}

    @app.get("/raw-logs", dependencies=guarded)
    def list_raw_logs() -> list[dict[str, Any]]:
        return [raw_log_to_dict(log) for log in services.raw_logs.all()]

    @app.patch("/raw-logs/{log_id}", dependencies=guarded)
    def edit_raw_log(log_id: str, payload: TextRequest) -> dict[str, bool]:
        if not session.edit_raw_log(log_id, payload.text):
            raise HTTPException(status_code=404, detail="Log not found")
        return {"updated": True}

    @app.delete("/raw-logs/{log_id}", dependencies=guarded)
    def delete_raw_log(log_id: str) -> dict[str, bool]:
        if not session.delete_raw_log(log_id):
            raise HTTPException(status_code=404, detail="Log not found")
        return {"deleted": True}

    @app.get("/settings/ai", dependencies=guarded)
    def get_ai_settings() -> dict[str, Any]:
        return ai_settings_to_dict(session.ai_settings)

    @app.patch("/settings/ai", dependencies=guarded)
    def update_ai_settings(payload: AiSettingsRequest) -> dict[str, Any]:
        changes = {key: value for key, value in _provided(payload).items() if value is not None}
        return ai_settings_to_dict(session.update_ai_settings(**changes))

    @app.get("/settings/chat", dependencies=guarded)
    def get_chat_settings() -> dict[str, Any]:
        return chat_settings_to_dict(session.chat_settings)

    @app.patch("/settings/chat", dependencies=guarded)
    def update_chat_settings(payload: ChatSettingsRequest) -> dict[str, Any]:
        changes = {key: value for key, value in _provided(payload).items() if value is not None}
        for key in ("custom_start_date", "custom_end_date"):
            if key in changes:
                changes[key] = changes[key].isoformat()
        return chat_settings_to_dict(session.update_chat_settings(**changes))

    @app.get("/ai-audit", dependencies=guarded)
    def ai_audit(limit: int = 20) -> list[dict[str, Any]]:
        """Summary: List recent AI calls with status and latency."""

        return services.audit.list_calls(limit=limit)

    return app
