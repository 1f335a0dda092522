"""Summary: Tests for the taxonomy registry.

Importance: Ensures core groups and standard fields survive every edit.
Alternatives: Validate taxonomy edits manually in the UI.
"""

from __future__ import annotations

from pathlib import Path

from lifeos.category_templates import STANDARD_FIELD_KEYS
from lifeos.models import FieldSchema, FieldType
from lifeos.storage.sqlite_store import SCHEMAS_KEY, SqliteStore
from lifeos.taxonomy import TaxonomyRegistry


def _build_store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


def test_defaults_carry_standard_fields() -> None:
    """Summary: Verify every default category opens with summary/time/duration and ends with notes.

    Importance: Extraction relies on these fields existing everywhere.
    Alternatives: Check a single category only.
    """

    registry = TaxonomyRegistry()
    for key in registry.categories:
        fields = [item.key for item in registry.fields_for(key)]
        assert fields[:3] == ["summary", "time", "duration"]
        assert fields[-1] == "notes"
    assert "other" in registry.categories


def test_core_groups_cannot_be_deleted() -> None:
    """Summary: Ensure life, body, and work reject deletion.

    Importance: Core groups anchor the default taxonomy.
    Alternatives: Re-create core groups when missing.
    """

    registry = TaxonomyRegistry()
    for group_id in ("life", "body", "work"):
        assert registry.delete_group(group_id) is False
    custom = registry.add_group("Hobbies")
    assert registry.delete_group(custom.id) is True
    assert all(group.id != custom.id for group in registry.groups)


def test_reorder_group_swaps_neighbours() -> None:
    registry = TaxonomyRegistry()
    first, second = registry.groups[0].id, registry.groups[1].id
    assert registry.reorder_group(second, -1) is True
    assert [group.id for group in registry.groups[:2]] == [second, first]
    assert registry.reorder_group(second, -1) is False


def test_add_category_seeds_standard_fields(tmp_path: Path) -> None:
    """Summary: Verify new categories are persisted with the standard fields only.

    Importance: New categories must be valid extraction targets immediately.
    Alternatives: Require fields before saving a category.
    """

    store = _build_store(tmp_path)
    registry = TaxonomyRegistry.load(store)
    meta = registry.add_category("life", "Gardening")
    assert meta.key.startswith("cat_")
    assert [item.key for item in registry.fields_for(meta.key)] == list(STANDARD_FIELD_KEYS)
    reloaded = TaxonomyRegistry.load(store)
    assert reloaded.categories[meta.key].label == "Gardening"


def test_add_field_inserts_before_notes() -> None:
    registry = TaxonomyRegistry()
    created = registry.add_field("movie")
    assert created is not None
    keys = [item.key for item in registry.fields_for("movie")]
    assert keys[-1] == "notes"
    assert keys[-2] == created.key
    assert created.label == "New Field"


def test_standard_fields_reject_forbidden_edits() -> None:
    """Summary: Ensure standard fields keep their type and cannot be removed.

    Importance: Only notes may toggle required; other attributes stay editable.
    Alternatives: Repair broken standard fields on the next load.
    """

    registry = TaxonomyRegistry()
    assert registry.remove_field("diary", "summary") is False
    assert registry.update_field("diary", "time", {"type": "number"}) is False
    assert registry.update_field("diary", "summary", {"required": False}) is False
    assert registry.update_field("diary", "notes", {"required": False}) is True
    assert registry.update_field("diary", "summary", {"label": "Title"}) is True
    fields = {item.key: item for item in registry.fields_for("diary")}
    assert fields["notes"].required is False
    assert fields["summary"].label == "Title"


def test_update_field_changes_custom_type() -> None:
    registry = TaxonomyRegistry()
    created = registry.add_field("reading")
    assert created is not None
    assert registry.update_field("reading", created.key, {"type": "select", "options": ["a", "b"]})
    updated = next(item for item in registry.fields_for("reading") if item.key == created.key)
    assert updated.type == FieldType.SELECT
    assert updated.options == ("a", "b")
    assert registry.update_field("reading", created.key, {"type": "colour"}) is False
    assert registry.remove_field("reading", created.key) is True


def test_load_repairs_persisted_schemas(tmp_path: Path) -> None:
    """Summary: Verify stored schemas missing standard fields are repaired on load.

    Importance: Older or hand-edited data must not break extraction.
    Alternatives: Reject malformed schemas at load time.
    """

    store = _build_store(tmp_path)
    store.save(SCHEMAS_KEY, {"movie": [{"key": "title", "label": "片名", "type": "text"}]})
    registry = TaxonomyRegistry.load(store)
    keys = [item.key for item in registry.fields_for("movie")]
    assert keys[:3] == ["summary", "time", "duration"]
    assert "title" in keys
    assert keys[-1] == "notes"
    # Categories absent from the stored schemas keep their defaults.
    assert len(registry.fields_for("finance_tracking")) > len(STANDARD_FIELD_KEYS)


def test_delete_category_drops_schema() -> None:
    registry = TaxonomyRegistry()
    assert registry.delete_category("movie") is True
    assert "movie" not in registry.categories
    assert "movie" not in registry.snapshot().schemas
    assert registry.delete_category("movie") is False


def test_snapshot_is_isolated_from_later_edits() -> None:
    registry = TaxonomyRegistry()
    snapshot = registry.snapshot()
    registry.add_category("work", "Meetings")
    assert len(snapshot.category_keys()) == len(registry.categories) - 1
    assert all(isinstance(item, FieldSchema) for item in snapshot.fields_for("movie"))


def test_update_category_moves_between_groups() -> None:
    """Summary: Verify a category can be relabelled and moved while keeping its key.

    Importance: Existing entries keep pointing at the same category.
    Alternatives: Re-create the category under a new key.
    """

    registry = TaxonomyRegistry()
    assert registry.update_category("idea", label="Ideas", group="life") is True
    assert registry.categories["idea"].label == "Ideas"
    assert "idea" in [meta.key for meta in registry.categories_in("life")]
    assert "idea" not in [meta.key for meta in registry.categories_in("work")]
    assert registry.update_category("idea", emoji="bulb") is False
    assert registry.update_category("missing", label="x") is False
    assert registry.rename_group("work", "Career") is True
    assert registry.rename_group("missing", "x") is False


def test_add_group_skips_existing_ids(monkeypatch) -> None:
    ids = iter(["life", "hobby1"])
    monkeypatch.setattr("lifeos.taxonomy.short_id", lambda length: next(ids))
    registry = TaxonomyRegistry()
    group = registry.add_group("Hobbies")
    assert group.id == "hobby1"
    assert [item.id for item in registry.groups].count("life") == 1
