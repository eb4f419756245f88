"""Flatten member and contact payloads into catalogue entries."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Container, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .catalogue import Catalogue, FieldEntry, normalise_example
from .config import DEFAULT_CONSENT_FIELD_ID
from .options import OptionLabelResolver, option_id_from_ref
from .vault import TokenStore

LOGGER = logging.getLogger(__name__)

SCOPE_PREFIXES = {
    "member": ("cf", "cfraw"),
    "contact": ("contactcf", "contactcfraw"),
}


@dataclass(frozen=True)
class RawCustomField:
    """A custom field value as attached to a member or contact."""

    custom_field_id: int
    value: Optional[str] = None
    selected_options: Tuple[Any, ...] = ()

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Optional["RawCustomField"]:
        field_id = option_id_from_ref(payload.get("customField"))
        if field_id is None:
            return None
        options = payload.get("selectedOptions") or ()
        if not isinstance(options, (list, tuple)):
            options = (options,)
        return cls(
            custom_field_id=field_id,
            value=_value_text(payload.get("value")),
            selected_options=tuple(options),
        )


def _value_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def parse_custom_fields(payloads: Iterable[Any]) -> List[RawCustomField]:
    """Build :class:`RawCustomField` records, skipping entries without a field id."""
    fields: List[RawCustomField] = []
    for payload in payloads or []:
        if not isinstance(payload, Mapping):
            continue
        raw = RawCustomField.from_api(payload)
        if raw is None:
            LOGGER.debug("Skipping custom field payload without field id: %s", payload.get("customField"))
            continue
        fields.append(raw)
    return fields


def option_fallback_id(ref: Any) -> str:
    """Map an option reference to its plain id string."""
    option_id = option_id_from_ref(ref)
    if option_id is not None:
        return str(option_id)
    if isinstance(ref, str) and ref.lower().startswith(("http://", "https://")):
        return urlparse(ref).path.rstrip("/").rsplit("/", 1)[-1]
    return str(ref)


def effective_value(
    raw_field: RawCustomField,
    resolver: Optional[OptionLabelResolver],
    token: str,
) -> Any:
    if not raw_field.selected_options:
        return raw_field.value
    labels = None
    if resolver is not None:
        labels = resolver.resolve_option_labels(raw_field.custom_field_id, raw_field.selected_options, token)
    if labels:
        return labels
    return [option_fallback_id(ref) for ref in raw_field.selected_options]


def has_consent(raw_fields: Iterable[RawCustomField], consent_field_id: int = DEFAULT_CONSENT_FIELD_ID) -> bool:
    """Return True when the consent field is ticked or has a selection."""
    needle = str(consent_field_id)
    for raw in raw_fields:
        if needle not in str(raw.custom_field_id):
            continue
        if raw.value is not None and raw.value.strip().lower() == "true":
            return True
        if raw.selected_options:
            return True
    return False


class CustomFieldExtractor:
    """Produce catalogue fragments from raw custom field lists."""

    def __init__(self, resolver: Optional[OptionLabelResolver], token_store: Optional[TokenStore]) -> None:
        self.resolver = resolver
        self.token_store = token_store

    @property
    def token(self) -> str:
        # Read on every use; the API client may have stored a rotated token.
        return self.token_store.load() if self.token_store else ""

    def extract_fields(
        self,
        raw_member_fields: Sequence[RawCustomField],
        target_definitions: Optional[Iterable[Any]] = None,
        scope: str = "member",
        *,
        known: Optional[Container[str]] = None,
    ) -> Catalogue:
        """Return catalogue entries for ``raw_member_fields``.

        Target fields become ``cf.<id>`` (``contactcf.<id>`` for contacts)
        with their effective value. All other fields become raw entries unless
        the extracted entry is already known.
        """
        extracted_type, raw_type = SCOPE_PREFIXES[scope]
        targets = None if target_definitions is None else {int(item) for item in target_definitions}
        fragment: Catalogue = {}

        for raw in raw_member_fields:
            field_id = raw.custom_field_id
            extracted_id = f"{extracted_type}.{field_id}"
            if targets is None or field_id in targets:
                value = effective_value(raw, self.resolver, self.token)
                fragment[extracted_id] = FieldEntry(
                    id=extracted_id, type=extracted_type, example=normalise_example(value)
                )
                continue

            if extracted_id in fragment or (known is not None and extracted_id in known):
                continue
            raw_id = f"{raw_type}.{field_id}"
            if raw.selected_options:
                value = [option_fallback_id(ref) for ref in raw.selected_options]
            else:
                value = raw.value
            fragment[raw_id] = FieldEntry(id=raw_id, type=raw_type, example=normalise_example(value))

        if targets:
            missing = targets - {raw.custom_field_id for raw in raw_member_fields}
            if missing:
                LOGGER.debug("Target fields missing in %s payload: %s", scope, sorted(missing))
        return fragment

    def extract_record(
        self,
        member: Mapping[str, Any],
        contact: Optional[Mapping[str, Any]],
        member_fields: Sequence[RawCustomField],
        contact_fields: Sequence[RawCustomField] = (),
        targets: Optional[Iterable[Any]] = None,
        *,
        known: Optional[Container[str]] = None,
    ) -> Catalogue:
        """Collect every field of one member including its contact details."""
        record: Catalogue = {}
        record.update(_scalar_entries("member", member))
        if contact:
            record.update(_scalar_entries("contact", contact))
        target_list = list(targets) if targets is not None else None
        record.update(self.extract_fields(member_fields, target_list, "member", known=known))
        record.update(self.extract_fields(contact_fields, target_list, "contact", known=known))
        return record


def _scalar_entries(prefix: str, payload: Mapping[str, Any]) -> Dict[str, FieldEntry]:
    entries: Dict[str, FieldEntry] = {}
    for key, value in payload.items():
        if key.startswith("_") or isinstance(value, (dict, list, tuple)):
            continue
        field_id = f"{prefix}.{key}"
        entries[field_id] = FieldEntry(id=field_id, type=prefix, example=normalise_example(value))
    return entries


def build_catalogue(records: Iterable[Mapping[str, FieldEntry]]) -> Catalogue:
    """Combine per-member fragments; the first sighting of an id wins."""
    catalogue: Catalogue = {}
    for record in records:
        for field_id, entry in record.items():
            current = catalogue.get(field_id)
            if current is None:
                catalogue[field_id] = entry
            elif not current.example and entry.example:
                catalogue[field_id] = current.with_example(entry.example)
    return catalogue
