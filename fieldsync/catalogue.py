"""Field catalogue records."""
from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

FIELD_TYPES = ("member", "contact", "cf", "cfraw", "contactcf", "contactcfraw", "consent")
CUSTOM_FIELD_TYPES = frozenset({"cf", "cfraw", "contactcf", "contactcfraw"})
AREAS = ("above", "below", "unused")
PLACED_AREAS = frozenset({"above", "below"})

# Longest prefixes first so "contactcfraw." is not mistaken for "contact.".
_PREFIX_TYPES = (
    ("contactcfraw.", "contactcfraw"),
    ("contact_cf.", "contactcf"),
    ("contact.cf.", "contactcf"),
    ("contactcf.", "contactcf"),
    ("contact.", "contact"),
    ("consent.", "consent"),
    ("member.", "member"),
    ("cfraw.", "cfraw"),
    ("cf.", "cf"),
)

Example = Union[str, List[str], None]


def infer_field_type(field_id: str) -> str:
    for prefix, field_type in _PREFIX_TYPES:
        if field_id.startswith(prefix):
            return field_type
    return "member"


def normalise_example(value: Any) -> Example:
    """Coerce an API value into the catalogue's example representation."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    if isinstance(value, dict):
        return None
    return str(value)


def example_text(example: Example) -> str:
    if example is None:
        return ""
    if isinstance(example, list):
        return ", ".join(example)
    return str(example)


@dataclass
class FieldEntry:
    id: str
    type: str
    label: Optional[str] = None
    example: Example = None
    area: str = "unused"
    show: bool = False
    ignored: bool = False
    order: int = 999
    show_label: bool = True
    filterable: bool = False
    inline_group: str = ""
    favorite: bool = False

    @property
    def has_label(self) -> bool:
        return bool(self.label) and self.label != self.id

    @property
    def is_custom(self) -> bool:
        return self.type in CUSTOM_FIELD_TYPES

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, field_id: Optional[str] = None) -> "FieldEntry":
        entry_id = str(field_id if field_id is not None else payload.get("id", ""))
        if not entry_id:
            raise ValueError("Field entries require an id")
        field_type = payload.get("type")
        if field_type not in FIELD_TYPES:
            field_type = infer_field_type(entry_id)
        label = payload.get("label")
        label = str(label).strip() if label not in (None, "") else None
        if label == entry_id:
            label = None
        area = payload.get("area", "unused")
        if area not in AREAS:
            area = "unused"
        try:
            order = int(payload.get("order", 999))
        except (TypeError, ValueError):
            order = 999
        return cls(
            id=entry_id,
            type=field_type,
            label=label or None,
            example=normalise_example(payload.get("example")),
            area=area,
            show=bool(payload.get("show", False)),
            ignored=bool(payload.get("ignored", False)),
            order=order,
            show_label=bool(payload.get("show_label", True)),
            filterable=bool(payload.get("filterable", False)),
            inline_group=str(payload.get("inline_group") or ""),
            favorite=bool(payload.get("favorite", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def with_example(self, example: Example, field_type: Optional[str] = None) -> "FieldEntry":
        return replace(self, example=example, type=field_type or self.type)


Catalogue = Dict[str, FieldEntry]


def catalogue_from_mapping(data: Mapping[str, Any]) -> Catalogue:
    """Build a catalogue from the persisted ``{id: {...}}`` JSON shape."""
    catalogue: Catalogue = {}
    for key, item in data.items():
        if not isinstance(item, Mapping):
            continue
        entry = FieldEntry.from_dict(item, field_id=str(item.get("id") or key))
        catalogue[entry.id] = entry
    return catalogue


def migrate_legacy_list(data: Sequence[Any]) -> Dict[str, Any]:
    """Turn the legacy array-of-objects shape into the keyed object shape."""
    migrated: Dict[str, Any] = {}
    for item in data:
        if isinstance(item, Mapping) and item.get("id") is not None:
            migrated[str(item["id"])] = dict(item)
    return migrated


def catalogue_to_mapping(catalogue: Mapping[str, FieldEntry]) -> Dict[str, Dict[str, Any]]:
    return {field_id: entry.to_dict() for field_id, entry in catalogue.items()}


def display_order(entries: Iterable[FieldEntry]) -> List[FieldEntry]:
    """Sort entries for display: area, then configured order, then label."""
    return sorted(entries, key=lambda entry: (entry.area, entry.order, entry.label or entry.id))
