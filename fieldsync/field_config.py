"""Persisted field configuration and its reconciliation with scanned fields."""
from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from .catalogue import (
    Catalogue,
    FieldEntry,
    catalogue_from_mapping,
    catalogue_to_mapping,
    migrate_legacy_list,
)
from .errors import ConfigParseError, FileWriteFailed, TemplateExists

LOGGER = logging.getLogger(__name__)

LOCK_STALE_SECONDS = 30
SCAN_KEYS = frozenset({"id", "type", "example"})
RAW_TWINS = (("cfraw.", "cf."), ("contactcfraw.", "contactcf."))

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


def merge(
    discovered: Mapping[str, FieldEntry],
    persisted: Mapping[str, FieldEntry],
    template: Optional[Mapping[str, FieldEntry]] = None,
) -> Catalogue:
    """Reconcile freshly discovered fields with stored configuration.

    A non-empty ``persisted`` configuration always wins and the template is
    ignored. Without one, template entries seed the fields that were
    discovered in this pass. ``example`` and ``type`` always come from the
    discovered entry. Persisted entries that were not discovered are kept
    unchanged after the discovered ones.
    """
    if persisted:
        source: Mapping[str, FieldEntry] = persisted
    else:
        source = {field_id: entry for field_id, entry in (template or {}).items() if field_id in discovered}

    merged: Catalogue = {}
    for field_id, found in discovered.items():
        configured = source.get(field_id)
        if configured is None:
            merged[field_id] = FieldEntry(id=field_id, type=found.type, example=found.example)
        else:
            merged[field_id] = replace(configured, id=field_id, type=found.type, example=found.example)

    for field_id, entry in persisted.items():
        if field_id not in merged:
            merged[field_id] = entry
    return merged


class _LockBusy(OSError):
    pass


def _has_user_settings(field_id: str, payload: Mapping[str, Any]) -> bool:
    entry = FieldEntry.from_dict(payload, field_id=field_id)
    return entry != FieldEntry(id=entry.id, type=entry.type, example=entry.example)


def _sanitize_text(value: Any) -> str:
    text = _TAG_RE.sub("", str(value))
    return _WHITESPACE_RE.sub(" ", text).strip()


class FieldConfigStore:
    """Read and write the field configuration JSON file.

    Writes take an exclusive lock file next to the target, write a temporary
    file and rename it over the target. Transient ``OSError`` failures are
    retried; when retries are exhausted :class:`FileWriteFailed` is raised.
    """

    def __init__(
        self,
        path: Path,
        template_path: Optional[Path] = None,
        *,
        retries: int = 3,
        backoff: float = 0.2,
        lock_stale_seconds: float = LOCK_STALE_SECONDS,
    ) -> None:
        self.path = Path(path)
        self.template_path = Path(template_path) if template_path else None
        self.retries = max(1, retries)
        self.backoff = backoff
        self.lock_stale_seconds = lock_stale_seconds

    # -- Reading -------------------------------------------------------------------
    def exists(self) -> bool:
        return self.path.exists() and self.path.stat().st_size > 0

    def template_exists(self) -> bool:
        return bool(self.template_path and self.template_path.exists() and self.template_path.stat().st_size > 0)

    def load_raw(self) -> Dict[str, Any]:
        if not self.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.error("Field configuration %s is not valid JSON: %s", self.path, exc)
            raise ConfigParseError(f"Field configuration {self.path} is not valid JSON") from exc

        if isinstance(data, list):
            migrated = migrate_legacy_list(data)
            LOGGER.info("Migrating legacy field configuration %s (%s entries)", self.path, len(migrated))
            self.save_raw(migrated)
            return migrated
        if not isinstance(data, dict):
            raise ConfigParseError(f"Field configuration {self.path} must contain an object")
        return data

    def load(self) -> Catalogue:
        return catalogue_from_mapping(self.load_raw())

    def load_template(self) -> Catalogue:
        if not self.template_exists():
            return {}
        try:
            data = json.loads(self.template_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring unreadable field template %s", self.template_path)
            return {}
        if isinstance(data, list):
            data = migrate_legacy_list(data)
        if not isinstance(data, dict):
            return {}
        return catalogue_from_mapping(data)

    # -- Writing -------------------------------------------------------------------
    def save(self, catalogue: Mapping[str, FieldEntry]) -> None:
        self.save_raw(catalogue_to_mapping(catalogue))

    def save_raw(self, data: Mapping[str, Any]) -> None:
        self._write_json(self.path, data)
        LOGGER.info("Saved field configuration with %s entries to %s", len(data), self.path)

    def _write_json(self, path: Path, data: Mapping[str, Any]) -> None:
        content = json.dumps(data, ensure_ascii=False, indent=2)
        retrying = Retrying(
            retry=retry_if_exception_type(OSError),
            stop=stop_after_attempt(self.retries),
            wait=wait_fixed(self.backoff),
        )
        try:
            retrying(self._write_once, path, content)
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            LOGGER.error("Writing %s failed after %s attempts: %s", path, self.retries, cause)
            raise FileWriteFailed(f"Could not write {path}") from cause

    def _write_once(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        lock_path = path.with_name(path.name + ".lock")
        self._acquire_lock(lock_path)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        finally:
            lock_path.unlink(missing_ok=True)

    def _acquire_lock(self, lock_path: Path) -> None:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            age = time.time() - lock_path.stat().st_mtime
            if age < self.lock_stale_seconds:
                raise _LockBusy(f"{lock_path} is held by another writer")
            LOGGER.warning("Removing stale lock file %s (%.0fs old)", lock_path, age)
            lock_path.unlink(missing_ok=True)
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
        finally:
            os.close(fd)

    # -- Operations ----------------------------------------------------------------
    def save_user_config(self, items: Iterable[Mapping[str, Any]]) -> Catalogue:
        """Store field settings submitted from an editor.

        Scan attributes (``type``/``example``) of existing entries are kept.
        """
        existing = self.load()
        config: Catalogue = {}
        for item in items:
            if not isinstance(item, Mapping) or item.get("id") in (None, ""):
                continue
            field_id = str(item["id"])
            cleaned = dict(item)
            for key in ("label", "area", "inline_group"):
                if cleaned.get(key) is not None:
                    cleaned[key] = _sanitize_text(cleaned[key])
            entry = FieldEntry.from_dict(cleaned, field_id=field_id)
            previous = existing.get(field_id)
            if previous is not None:
                entry = replace(entry, type=previous.type, example=previous.example)
            config[field_id] = entry
        if not config:
            raise ValueError("No valid field entries submitted")
        self.save(config)
        return config

    def import_template(self) -> bool:
        """Initialise the configuration from the template on a fresh install."""
        if self.exists():
            LOGGER.warning("Field configuration %s already exists; template not imported", self.path)
            return False
        template = self.load_template()
        if not template:
            LOGGER.info("No field template available; writing an empty configuration")
            self.save_raw({})
            return False
        self.save(template)
        LOGGER.info("Imported %s template entries", len(template))
        return True

    def export_template(self, force: bool = False) -> bool:
        """Write the current configuration as the bootstrap template."""
        if self.template_path is None:
            raise ValueError("No template path configured")
        config = self.load_raw()
        if not config:
            LOGGER.warning("Nothing to export; field configuration is empty")
            return False
        if self.template_exists() and not force:
            raise TemplateExists(f"Template {self.template_path} already exists")
        self._write_json(self.template_path, config)
        LOGGER.info("Exported %s entries to template %s", len(config), self.template_path)
        return True

    def cleanup_raw_duplicates(self) -> Dict[str, List[Dict[str, Any]]]:
        """Drop raw custom field entries whose extracted twin is configured.

        Settings of the raw entry move to the twin when the twin carries only
        scan attributes.
        """
        config = self.load_raw()
        report: Dict[str, List[Dict[str, Any]]] = {"removed": [], "migrated": [], "kept": []}
        for raw_prefix, twin_prefix in RAW_TWINS:
            for field_id in [key for key in config if key.startswith(raw_prefix)]:
                twin_id = twin_prefix + field_id[len(raw_prefix):]
                twin = config.get(twin_id)
                if not isinstance(twin, dict):
                    continue
                raw_entry = config.pop(field_id)
                report["removed"].append({"id": field_id})
                if _has_user_settings(twin_id, twin):
                    report["kept"].append({"raw": field_id, "twin": twin_id})
                    continue
                settings = {
                    key: value
                    for key, value in (raw_entry.items() if isinstance(raw_entry, dict) else [])
                    if key not in SCAN_KEYS
                }
                twin.update(settings)
                report["migrated"].append({"from": field_id, "to": twin_id, "keys": sorted(settings)})
        if report["removed"]:
            self.save_raw(config)
        LOGGER.info(
            "Duplicate cleanup removed %s entries, migrated %s",
            len(report["removed"]),
            len(report["migrated"]),
        )
        return report


def merge_with_store(discovered: Mapping[str, FieldEntry], store: FieldConfigStore) -> Catalogue:
    """Merge ``discovered`` with the stored configuration.

    :class:`ConfigParseError` propagates so that a damaged configuration is
    never silently replaced by the template.
    """
    persisted = store.load()
    template = store.load_template() if not persisted else {}
    return merge(discovered, persisted, template)
