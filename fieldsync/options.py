"""Resolve selected option references of custom fields into labels."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlparse

from .errors import OptionLookupFailed, ResolutionAmbiguous
from .ratelimit import RateLimiter
from .store import KeyValueStore

LOGGER = logging.getLogger(__name__)

CACHE_PREFIX = "fieldsync_cf_options_"
OPTION_LABEL_KEYS = ("value", "displayName", "label", "name", "title")
OPTIONS_QUERY = "{id,selectOptions{id,value,displayName,label,name,title}}"
LOOKUP_ENDPOINT = "custom-field-options"


def option_id_from_ref(ref: Any) -> Optional[int]:
    """Return the numeric option id referenced by ``ref`` if there is one.

    Accepts integers, numeric strings, URLs whose last path segment is the id
    and mappings carrying an ``id`` key.
    """
    if isinstance(ref, bool) or ref is None:
        return None
    if isinstance(ref, int):
        return ref
    if isinstance(ref, Mapping):
        return option_id_from_ref(ref.get("id"))
    if isinstance(ref, str):
        text = ref.strip()
        if text.isdigit():
            return int(text)
        parsed = urlparse(text)
        if parsed.scheme in ("http", "https"):
            segment = parsed.path.rstrip("/").rsplit("/", 1)[-1]
            if segment.isdigit():
                return int(segment)
    return None


def option_label(payload: Mapping[str, Any]) -> Optional[str]:
    for key in OPTION_LABEL_KEYS:
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def is_numeric_label(label: str) -> bool:
    return label.strip().isdigit()


def cache_key(field_id: int) -> str:
    return f"{CACHE_PREFIX}{field_id}"


class OptionLabelResolver:
    """Turn option references into human readable labels.

    Labels are cached per custom field id. A cache miss triggers a single
    lookup of the field definition, which answers for every option of that
    field at once.
    """

    def __init__(
        self,
        client: Any,
        store: KeyValueStore,
        rate_limiter: Optional[RateLimiter] = None,
        *,
        actor_key: str = "fieldsync",
        cache_ttl: Optional[float] = None,
        max_requests: int = 60,
        window_seconds: int = 60,
    ) -> None:
        self.client = client
        self.store = store
        self.rate_limiter = rate_limiter
        self.actor_key = actor_key
        self.cache_ttl = cache_ttl
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def resolve_option_labels(self, field_id: int, options: Sequence[Any], token: str) -> Optional[List[str]]:
        """Return one label per option or ``None`` when resolution failed."""
        try:
            return self._resolve(field_id, options, token)
        except ResolutionAmbiguous as exc:
            LOGGER.debug("Options of custom field %s resolved without text: %s", field_id, exc)
        except OptionLookupFailed as exc:
            LOGGER.warning("Option lookup for custom field %s failed: %s", field_id, exc)
        return None

    def _resolve(self, field_id: int, options: Sequence[Any], token: str) -> List[str]:
        if not options:
            raise OptionLookupFailed("No options to resolve")

        option_ids = [option_id_from_ref(ref) for ref in options]
        inline_labels = [option_label(ref) if isinstance(ref, Mapping) else None for ref in options]
        labels_by_id: Dict[str, str] = dict(self.store.get(cache_key(field_id)) or {})
        missing = [
            oid
            for oid, inline in zip(option_ids, inline_labels)
            if oid is not None and not inline and str(oid) not in labels_by_id
        ]
        if missing:
            LOGGER.debug("Option cache miss for custom field %s (options %s)", field_id, missing)
            labels_by_id.update(self.lookup_field_options(field_id, token))
            for oid in missing:
                # Ids the field definition does not know keep their id as label.
                labels_by_id.setdefault(str(oid), str(oid))
            self.store.set(cache_key(field_id), labels_by_id, ttl=self.cache_ttl)

        labels: List[str] = []
        for ref, oid, inline in zip(options, option_ids, inline_labels):
            if inline:
                labels.append(inline)
            elif oid is not None:
                labels.append(labels_by_id.get(str(oid), str(oid)))
            else:
                labels.append(str(ref))

        if all(is_numeric_label(label) for label in labels):
            raise ResolutionAmbiguous(f"Only numeric labels for custom field {field_id}")
        return labels

    def _admit(self, field_id: int) -> None:
        if self.rate_limiter is None:
            return
        if not self.rate_limiter.allow(LOOKUP_ENDPOINT, self.actor_key, self.max_requests, self.window_seconds):
            raise OptionLookupFailed(f"Rate limit reached while resolving options of field {field_id}")

    def lookup_field_options(self, field_id: int, token: str) -> Dict[str, str]:
        """Fetch ``{option_id: label}`` for every option of ``field_id``."""
        self._admit(field_id)
        status, data = self.client.get_with_query_fallback(
            f"custom-field/{field_id}", {"query": OPTIONS_QUERY}, token
        )
        if status != 200:
            raise OptionLookupFailed(f"custom-field/{field_id} answered with status {status}")
        if not isinstance(data, Mapping) or not isinstance(data.get("selectOptions"), list):
            raise OptionLookupFailed(f"custom-field/{field_id} returned no selectOptions list")

        labels: Dict[str, str] = {}
        for item in data["selectOptions"]:
            oid = option_id_from_ref(item)
            if oid is None:
                continue
            payload = item if isinstance(item, Mapping) else self._fetch_option(field_id, item, oid, token)
            label = option_label(payload) if payload else None
            if label:
                labels[str(oid)] = label
        LOGGER.info("Resolved %s option labels for custom field %s", len(labels), field_id)
        return labels

    def _fetch_option(self, field_id: int, ref: Any, option_id: int, token: str) -> Optional[Mapping[str, Any]]:
        self._admit(field_id)
        if isinstance(ref, str) and ref.lower().startswith(("http://", "https://")):
            path = ref
        else:
            path = f"custom-field/{field_id}/select-options/{option_id}"
        status, data = self.client.get(path, {}, token)
        if status != 200 or not isinstance(data, Mapping):
            LOGGER.warning("Select option %s of custom field %s unavailable (status %s)", option_id, field_id, status)
            return None
        return data
