"""Tests for field configuration persistence and merging."""

from __future__ import annotations

import json
import os
import sys
import time
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fieldsync.catalogue import FieldEntry  # noqa: E402
from fieldsync.errors import ConfigParseError, FileWriteFailed, TemplateExists  # noqa: E402
from fieldsync.field_config import FieldConfigStore, merge, merge_with_store  # noqa: E402


def _entry(field_id: str, **kwargs) -> FieldEntry:
    return FieldEntry.from_dict(dict(kwargs), field_id=field_id)


def _write(path: Path, data) -> None:
    path.write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture(name="store")
def fixture_store(tmp_path: Path) -> FieldConfigStore:
    return FieldConfigStore(tmp_path / "fields.json", tmp_path / "template.json", retries=2, backoff=0)


def test_template_only_seeds_discovered_fields() -> None:
    discovered = {"cf.2": _entry("cf.2", example="b")}
    template = {"cf.1": _entry("cf.1", label="Eins"), "cf.2": _entry("cf.2", label="Zwei", area="above")}

    merged = merge(discovered, {}, template)

    assert list(merged) == ["cf.2"]
    assert merged["cf.2"].label == "Zwei"
    assert merged["cf.2"].area == "above"
    assert merged["cf.2"].example == "b"


def test_persisted_configuration_overrides_template() -> None:
    discovered = {"cf.2": _entry("cf.2", example="b")}
    persisted = {"cf.9": _entry("cf.9", label="Neun")}
    template = {"cf.2": _entry("cf.2", label="Zwei")}

    merged = merge(discovered, persisted, template)

    assert merged["cf.2"].label is None
    assert list(merged) == ["cf.2", "cf.9"]
    assert merged["cf.9"] == persisted["cf.9"]


def test_discovered_example_and_type_replace_stored_ones() -> None:
    discovered = {"cf.2": FieldEntry(id="cf.2", type="cf", example="new")}
    persisted = {"cf.2": FieldEntry(id="cf.2", type="member", label="Zwei", example="old", order=3)}

    merged = merge(discovered, persisted)

    assert merged["cf.2"] == FieldEntry(id="cf.2", type="cf", label="Zwei", example="new", order=3)


@pytest.mark.parametrize("use_template", [False, True])
def test_merge_is_idempotent(use_template: bool) -> None:
    discovered = {"cf.1": _entry("cf.1", example="a"), "member.id": _entry("member.id", example="5")}
    persisted = {} if use_template else {"cf.1": _entry("cf.1", label="Eins"), "cf.7": _entry("cf.7")}
    template = {"cf.1": _entry("cf.1", label="Vorlage")} if use_template else None

    once = merge(discovered, persisted, template)

    assert merge(discovered, once, template) == once


def test_load_missing_or_empty_file(store: FieldConfigStore) -> None:
    assert store.load() == {}
    store.path.write_text("", encoding="utf-8")
    assert store.load() == {}


def test_load_rejects_malformed_json(store: FieldConfigStore) -> None:
    store.path.write_text("{broken", encoding="utf-8")

    with pytest.raises(ConfigParseError):
        store.load()


def test_merge_with_store_never_falls_back_to_template_on_parse_error(store: FieldConfigStore) -> None:
    store.path.write_text("[{", encoding="utf-8")
    _write(store.template_path, {"cf.1": {"label": "Eins"}})

    with pytest.raises(ConfigParseError):
        merge_with_store({"cf.1": _entry("cf.1")}, store)


def test_merge_with_store_uses_template_on_fresh_install(store: FieldConfigStore) -> None:
    _write(store.template_path, {"cf.1": {"label": "Eins"}, "cf.3": {"label": "Drei"}})

    merged = merge_with_store({"cf.1": _entry("cf.1", example="x")}, store)

    assert list(merged) == ["cf.1"]
    assert merged["cf.1"].label == "Eins"


def test_legacy_list_is_migrated_on_load(store: FieldConfigStore) -> None:
    _write(store.path, [{"id": "cf.1", "label": "Eins"}, {"label": "no id"}])

    catalogue = store.load()

    assert catalogue["cf.1"].label == "Eins"
    assert json.loads(store.path.read_text(encoding="utf-8")) == {"cf.1": {"id": "cf.1", "label": "Eins"}}


def test_save_writes_json_without_leftovers(store: FieldConfigStore) -> None:
    store.save({"contact.street": FieldEntry(id="contact.street", type="contact", label="Straße")})

    text = store.path.read_text(encoding="utf-8")
    assert "Straße" in text
    assert json.loads(text)["contact.street"]["area"] == "unused"
    assert sorted(path.name for path in store.path.parent.iterdir()) == ["fields.json"]


def test_save_fails_while_lock_is_held(store: FieldConfigStore) -> None:
    lock_path = store.path.with_name("fields.json.lock")
    lock_path.write_text("123", encoding="utf-8")

    with pytest.raises(FileWriteFailed):
        store.save({"cf.1": _entry("cf.1")})
    assert not store.path.exists()


def test_stale_lock_is_removed(store: FieldConfigStore) -> None:
    lock_path = store.path.with_name("fields.json.lock")
    lock_path.write_text("123", encoding="utf-8")
    stale = time.time() - 120
    os.utime(lock_path, (stale, stale))

    store.save({"cf.1": _entry("cf.1")})

    assert store.load()["cf.1"].id == "cf.1"
    assert not lock_path.exists()


def test_save_user_config_sanitises_and_keeps_scan_data(store: FieldConfigStore) -> None:
    store.save({"cf.1": FieldEntry(id="cf.1", type="cf", example="Yoga")})

    saved = store.save_user_config([
        {"id": "cf.1", "label": "<b>Kurs </b>  Angebot", "area": "sidebar", "example": "ignored"},
        {"label": "no id"},
    ])

    assert list(saved) == ["cf.1"]
    assert saved["cf.1"].label == "Kurs Angebot"
    assert saved["cf.1"].area == "unused"
    assert saved["cf.1"].example == "Yoga"
    assert store.load() == saved


def test_save_user_config_requires_entries(store: FieldConfigStore) -> None:
    with pytest.raises(ValueError):
        store.save_user_config([{"label": "no id"}])


def test_import_template_only_on_fresh_install(store: FieldConfigStore) -> None:
    _write(store.template_path, {"cf.1": {"label": "Eins"}})

    assert store.import_template() is True
    assert store.load()["cf.1"].label == "Eins"
    assert store.import_template() is False


def test_export_template_requires_force_to_overwrite(store: FieldConfigStore) -> None:
    _write(store.path, {"cf.1": {"id": "cf.1", "label": "Eins"}})
    _write(store.template_path, {"cf.0": {"label": "Alt"}})

    with pytest.raises(TemplateExists):
        store.export_template()

    assert store.export_template(force=True) is True
    assert json.loads(store.template_path.read_text(encoding="utf-8")) == {"cf.1": {"id": "cf.1", "label": "Eins"}}


def test_cleanup_raw_duplicates(store: FieldConfigStore) -> None:
    _write(store.path, {
        "cf.1": {"id": "cf.1", "type": "cf", "example": "a"},
        "cfraw.1": {"id": "cfraw.1", "type": "cfraw", "label": "Kurs", "area": "above", "example": "1"},
        "cf.2": {"id": "cf.2", "type": "cf", "label": "Zwei"},
        "cfraw.2": {"id": "cfraw.2", "type": "cfraw", "label": "Anders"},
        "cfraw.3": {"id": "cfraw.3", "type": "cfraw", "label": "Einzeln"},
    })

    report = store.cleanup_raw_duplicates()

    config = store.load()
    assert sorted(config) == ["cf.1", "cf.2", "cfraw.3"]
    assert config["cf.1"].label == "Kurs"
    assert config["cf.1"].area == "above"
    assert config["cf.1"].example == "a"
    assert config["cf.2"].label == "Zwei"
    assert [item["id"] for item in report["removed"]] == ["cfraw.1", "cfraw.2"]
    assert report["migrated"] == [{"from": "cfraw.1", "to": "cf.1", "keys": ["area", "label"]}]
    assert report["kept"] == [{"raw": "cfraw.2", "twin": "cf.2"}]
