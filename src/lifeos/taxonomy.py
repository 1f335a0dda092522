"""Summary: Taxonomy registry for groups, categories, and field schemas.

Importance: Defines what a valid record looks like for extraction and editing.
Alternatives: Hardcode categories and accept that users cannot customize them.
"""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Mapping

from lifeos.category_templates import (
    CORE_GROUP_IDS,
    NOTES_FIELD_KEY,
    STANDARD_FIELD_KEYS,
    build_schema,
    default_category_meta,
    default_groups,
    default_schemas,
    leading_standard_fields,
    notes_field,
)
from lifeos.models import CategoryMeta, FieldSchema, FieldType, Group, field_from_dict, field_to_dict
from lifeos.storage.sqlite_store import CATEGORY_META_KEY, GROUPS_KEY, SCHEMAS_KEY, SqliteStore


logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits

EDITABLE_FIELD_ATTRIBUTES = frozenset({"label", "type", "required", "options", "unit", "placeholder"})


def short_id(length: int) -> str:
    """Summary: Generate a short random lowercase identifier."""

    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def is_standard_field(field_key: str) -> bool:
    return field_key in STANDARD_FIELD_KEYS


def ensure_standard_fields(fields: list[FieldSchema]) -> list[FieldSchema]:
    """Summary: Re-impose the standard fields on a loaded schema.

    Importance: Keeps summary, time, duration, and notes present with fixed key and type.
    Alternatives: Trust persisted schemas to be well formed.
    """

    defaults = {item.key: item for item in [*leading_standard_fields(), notes_field()]}
    present = {item.key for item in fields}
    repaired: list[FieldSchema] = []
    for item in fields:
        if item.key in defaults:
            repaired.append(replace(item, type=defaults[item.key].type))
        else:
            repaired.append(item)
    missing_leading = [item for item in leading_standard_fields() if item.key not in present]
    repaired = missing_leading + repaired
    if NOTES_FIELD_KEY not in present:
        repaired.append(notes_field())
    return repaired


@dataclass(frozen=True)
class TaxonomySnapshot:
    """Summary: Immutable view of the taxonomy at one point in time.

    Importance: Lets extraction read a consistent schema while the registry keeps changing.
    Alternatives: Pass the live registry into every consumer.
    """

    groups: tuple[Group, ...]
    categories: Mapping[str, CategoryMeta]
    schemas: Mapping[str, tuple[FieldSchema, ...]]

    def category_keys(self) -> list[str]:
        return list(self.categories)

    def fields_for(self, category_key: str) -> tuple[FieldSchema, ...]:
        return self.schemas.get(category_key, ())


class TaxonomyRegistry:
    """Summary: Owns groups, category metadata, and per-category field schemas.

    Importance: Enforces the core-group and standard-field invariants on every edit.
    Alternatives: Let the UI validate edits and store raw dictionaries.
    """

    def __init__(
        self,
        groups: list[Group] | None = None,
        categories: dict[str, CategoryMeta] | None = None,
        schemas: dict[str, list[FieldSchema]] | None = None,
        store: SqliteStore | None = None,
    ) -> None:
        """Summary: Build a registry from explicit collections or the defaults.

        Importance: Tests and loaders share one construction path.
        Alternatives: Always load from storage.
        """

        self._groups: list[Group] = list(groups) if groups is not None else default_groups()
        self._categories: dict[str, CategoryMeta] = (
            dict(categories) if categories is not None else default_category_meta()
        )
        merged = default_schemas()
        if schemas is not None:
            merged.update(schemas)
        for key in self._categories:
            merged.setdefault(key, build_schema([]))
        self._schemas: dict[str, list[FieldSchema]] = {
            key: ensure_standard_fields(list(fields)) for key, fields in merged.items()
        }
        self._store = store

    @classmethod
    def load(cls, store: SqliteStore) -> "TaxonomyRegistry":
        """Summary: Load the taxonomy from storage, defaulting absent collections.

        Importance: Persisted schemas are shallow-merged over the bundled defaults.
        Alternatives: Replace defaults wholesale with whatever was stored.
        """

        raw_groups = store.load(GROUPS_KEY)
        raw_meta = store.load(CATEGORY_META_KEY)
        raw_schemas = store.load(SCHEMAS_KEY)
        groups = (
            [Group(id=item["id"], label=item["label"]) for item in raw_groups]
            if raw_groups is not None
            else None
        )
        categories = (
            {
                key: CategoryMeta(
                    key=key,
                    group=item.get("group", ""),
                    label=item.get("label", key),
                    color=item.get("color", "bg-gray-600"),
                    icon=item.get("icon", "Hash"),
                )
                for key, item in raw_meta.items()
            }
            if raw_meta is not None
            else None
        )
        schemas = (
            {key: [field_from_dict(item) for item in fields] for key, fields in raw_schemas.items()}
            if raw_schemas is not None
            else None
        )
        return cls(groups=groups, categories=categories, schemas=schemas, store=store)

    @property
    def groups(self) -> list[Group]:
        return list(self._groups)

    @property
    def categories(self) -> dict[str, CategoryMeta]:
        return dict(self._categories)

    def fields_for(self, category_key: str) -> list[FieldSchema]:
        return list(self._schemas.get(category_key, []))

    def categories_in(self, group_id: str) -> list[CategoryMeta]:
        """Summary: List categories rendered under a group.

        Importance: Categories pointing at a missing group are hidden, not errors.
        Alternatives: Reassign orphaned categories to a fallback group.
        """

        return [meta for meta in self._categories.values() if meta.group == group_id]

    def snapshot(self) -> TaxonomySnapshot:
        """Summary: Freeze the current taxonomy for a single extraction call."""

        return TaxonomySnapshot(
            groups=tuple(self._groups),
            categories=MappingProxyType(dict(self._categories)),
            schemas=MappingProxyType(
                {
                    key: tuple(fields)
                    for key, fields in self._schemas.items()
                    if key in self._categories
                }
            ),
        )

    def add_group(self, label: str) -> Group:
        """Summary: Append a new group.

        Importance: Lets users create their own display sections.
        Alternatives: Restrict users to the core groups.
        """

        group_id = short_id(6)
        while any(group.id == group_id for group in self._groups):
            group_id = short_id(6)
        group = Group(id=group_id, label=label)
        self._groups = [*self._groups, group]
        self._save_groups()
        logger.info("Added group %s (%s).", group.id, label)
        return group

    def rename_group(self, group_id: str, label: str) -> bool:
        if not any(group.id == group_id for group in self._groups):
            return False
        self._groups = [
            replace(group, label=label) if group.id == group_id else group for group in self._groups
        ]
        self._save_groups()
        return True

    def delete_group(self, group_id: str) -> bool:
        """Summary: Delete a non-core group.

        Importance: Core groups anchor the default taxonomy and must survive.
        Alternatives: Allow deletion and re-create core groups on next load.
        """

        if group_id in CORE_GROUP_IDS:
            logger.warning("Rejected deleting core group %s.", group_id)
            return False
        if not any(group.id == group_id for group in self._groups):
            logger.warning("Group %s not found.", group_id)
            return False
        self._groups = [group for group in self._groups if group.id != group_id]
        self._save_groups()
        logger.info("Deleted group %s.", group_id)
        return True

    def reorder_group(self, group_id: str, direction: int) -> bool:
        """Summary: Move a group one slot up (-1) or down (+1).

        Importance: Array order is the display order.
        Alternatives: Store an explicit sort index per group.
        """

        if direction not in (-1, 1):
            return False
        index = next((i for i, group in enumerate(self._groups) if group.id == group_id), None)
        if index is None:
            return False
        target = index + direction
        if target < 0 or target >= len(self._groups):
            return False
        reordered = list(self._groups)
        reordered[index], reordered[target] = reordered[target], reordered[index]
        self._groups = reordered
        self._save_groups()
        return True

    def add_category(self, group_id: str, label: str) -> CategoryMeta:
        """Summary: Create a category seeded with the standard fields only.

        Importance: New categories are immediately valid extraction targets.
        Alternatives: Require users to define fields before saving a category.
        """

        key = f"cat_{short_id(8)}"
        while key in self._categories:
            key = f"cat_{short_id(8)}"
        meta = CategoryMeta(key=key, group=group_id, label=label)
        self._categories = {**self._categories, key: meta}
        self._schemas = {**self._schemas, key: build_schema([])}
        self._save_categories()
        self._save_schemas()
        logger.info("Added category %s (%s) to group %s.", key, label, group_id)
        return meta

    def update_category(self, key: str, **changes: Any) -> bool:
        """Summary: Rename, recolor, re-icon, or move a category.

        Importance: The key stays stable so existing entries keep their category.
        Alternatives: Delete and re-create the category under a new key.
        """

        meta = self._categories.get(key)
        if meta is None:
            return False
        allowed = {name: value for name, value in changes.items() if name in {"label", "color", "icon", "group"}}
        if len(allowed) != len(changes):
            logger.warning("Rejected category update for %s: %s.", key, sorted(changes))
            return False
        self._categories = {**self._categories, key: replace(meta, **allowed)}
        self._save_categories()
        return True

    def delete_category(self, key: str) -> bool:
        """Summary: Remove a category and its field schema.

        Importance: Deleted categories disappear from the extraction target.
        Alternatives: Hide the category but keep its schema around.
        """

        if key not in self._categories:
            return False
        self._categories = {name: meta for name, meta in self._categories.items() if name != key}
        self._schemas = {name: fields for name, fields in self._schemas.items() if name != key}
        self._save_categories()
        self._save_schemas()
        logger.info("Deleted category %s.", key)
        return True

    def add_field(self, category_key: str) -> FieldSchema | None:
        """Summary: Insert a blank text field before the notes field.

        Importance: Keeps the catch-all notes field last in the form.
        Alternatives: Always append new fields at the end.
        """

        if category_key not in self._schemas:
            return None
        fields = list(self._schemas[category_key])
        existing = {item.key for item in fields}
        key = f"field_{short_id(6)}"
        while key in existing:
            key = f"field_{short_id(6)}"
        new_field = FieldSchema(key=key, label="New Field", type=FieldType.TEXT, required=False)
        notes_index = next((i for i, item in enumerate(fields) if item.key == NOTES_FIELD_KEY), None)
        if notes_index is None:
            fields.append(new_field)
        else:
            fields.insert(notes_index, new_field)
        self._schemas = {**self._schemas, category_key: fields}
        self._save_schemas()
        return new_field

    def update_field(self, category_key: str, field_key: str, patch: dict[str, Any]) -> bool:
        """Summary: Apply a partial change to one field definition.

        Importance: Standard fields keep their key and type; only notes may toggle required.
        Alternatives: Let users edit standard fields freely and repair on load.
        """

        fields = self._schemas.get(category_key)
        if fields is None:
            return False
        index = next((i for i, item in enumerate(fields) if item.key == field_key), None)
        if index is None:
            return False
        unknown = set(patch) - EDITABLE_FIELD_ATTRIBUTES
        if unknown:
            logger.warning("Rejected field update with attributes %s.", sorted(unknown))
            return False
        if "type" in patch and patch["type"] not in {item.value for item in FieldType}:
            logger.warning("Rejected unknown field type %s.", patch["type"])
            return False
        if is_standard_field(field_key):
            if "type" in patch and FieldType(patch["type"]) != fields[index].type:
                logger.warning("Rejected type change on standard field %s.", field_key)
                return False
            if "required" in patch and field_key != NOTES_FIELD_KEY:
                logger.warning("Rejected required change on standard field %s.", field_key)
                return False
        changes = dict(patch)
        if "type" in changes:
            changes["type"] = FieldType(changes["type"])
        if changes.get("options") is not None:
            changes["options"] = tuple(changes["options"])
        updated = list(fields)
        updated[index] = replace(fields[index], **changes)
        self._schemas = {**self._schemas, category_key: updated}
        self._save_schemas()
        return True

    def remove_field(self, category_key: str, field_key: str) -> bool:
        """Summary: Remove a user-defined field.

        Importance: Standard fields are never removable.
        Alternatives: Allow removal and re-add the field on load.
        """

        if is_standard_field(field_key):
            logger.warning("Rejected removing standard field %s from %s.", field_key, category_key)
            return False
        fields = self._schemas.get(category_key)
        if fields is None or not any(item.key == field_key for item in fields):
            return False
        self._schemas = {
            **self._schemas,
            category_key: [item for item in fields if item.key != field_key],
        }
        self._save_schemas()
        return True

    def _save_groups(self) -> None:
        if self._store:
            self._store.save(
                GROUPS_KEY, [{"id": group.id, "label": group.label} for group in self._groups]
            )

    def _save_categories(self) -> None:
        if self._store:
            self._store.save(
                CATEGORY_META_KEY,
                {
                    key: {"group": meta.group, "label": meta.label, "color": meta.color, "icon": meta.icon}
                    for key, meta in self._categories.items()
                },
            )

    def _save_schemas(self) -> None:
        if self._store:
            self._store.save(
                SCHEMAS_KEY,
                {key: [field_to_dict(item) for item in fields] for key, fields in self._schemas.items()},
            )
