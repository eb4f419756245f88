"""Human readable labels for catalogue entries.

Label inference is expressed as ordered rule tables. Each :class:`LabelRule`
pairs a predicate over ``(field_id, example_text)`` with the label it
proposes and the confidence weight it contributes when it corroborates a
suggestion.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable, Dict, Mapping, Optional, Sequence

from .catalogue import Catalogue, Example, FieldEntry, example_text

KNOWN_LABELS: Dict[str, str] = {
    "member.id": "Mitglieds-ID",
    "member.membershipNumber": "Mitgliedsnummer",
    "member.membershipStatus": "Mitgliedsstatus",
    "member.membershipType": "Mitgliedstyp",
    "member.joinDate": "Beitrittsdatum",
    "member.exitDate": "Austrittsdatum",
    "contact.firstName": "Vorname",
    "contact.familyName": "Nachname",
    "contact.name": "Name",
    "contact.email": "E-Mail",
    "contact.companyEmail": "E-Mail (Firma)",
    "contact.privateEmail": "E-Mail (privat)",
    "contact.phone": "Telefon",
    "contact.mobilePhone": "Mobil",
    "contact.street": "Straße",
    "contact.zip": "PLZ",
    "contact.city": "Ort",
    "contact.country": "Land",
    "contact.bio": "Biografie",
    "contact.birthday": "Geburtstag",
    "contact.gender": "Geschlecht",
    "cf.50359307": "Online Angebote",
    "cf.50697357": "Bereitschaftsdienst",
}

ID_PREFIXES = ("member.", "contact.", "cf.", "cfraw.", "contactcf.", "contactcfraw.", "consent.")

TYPE_LABELS = {
    "member": "Member: ",
    "contact": "Contact: ",
    "cf": "Custom Field: ",
    "cfraw": "Custom Field (raw): ",
    "contactcf": "Contact Custom Field: ",
    "contactcfraw": "Contact Custom Field (raw): ",
    "consent": "Consent: ",
}

ABBREVIATIONS = {
    "Id": "ID",
    "Url": "URL",
    "Email": "E-Mail",
    "Zip": "PLZ",
    "Cf": "Custom Field",
}

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
STRICT_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
URL_RE = re.compile(r"^(https?://|www\.)", re.IGNORECASE)
PHONE_RE = re.compile(r"^[\d\s+\-()]+$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
BOOLEAN_RE = re.compile(r"^(ja|nein|yes|no|true|false|1|0)$", re.IGNORECASE)
POSTAL_CODE_RE = re.compile(r"^\d{5}$")
LABEL_LIKE_RE = re.compile(r"^[A-ZÄÖÜ][a-zäöüß\s]+$")
CAMEL_BOUNDARY_RE = re.compile(r"([a-z])([A-Z])")

Predicate = Callable[[str, str], bool]


@dataclass(frozen=True)
class LabelRule:
    predicate: Predicate
    label: str
    weight: int = 0

    def matches(self, field_id: str, example: str) -> bool:
        return self.predicate(field_id, example)


def _id_has(*needles: str) -> Predicate:
    lowered = tuple(needle.lower() for needle in needles)
    return lambda field_id, _example: any(needle in field_id.lower() for needle in lowered)


def _id_has_all(first: Predicate, *needles: str) -> Predicate:
    lowered = tuple(needle.lower() for needle in needles)
    return lambda field_id, example: first(field_id, example) and all(
        needle in field_id.lower() for needle in lowered
    )


def _example_matches(pattern: re.Pattern[str], *, min_length: int = 0) -> Predicate:
    return lambda _field_id, example: len(example) > min_length and bool(pattern.search(example))


# Labels derived while generating display labels, most specific pattern first.
EXAMPLE_PATTERN_RULES: Sequence[LabelRule] = (
    LabelRule(_example_matches(STRICT_EMAIL_RE), "E-Mail"),
    LabelRule(_example_matches(URL_RE), "Website"),
    LabelRule(_example_matches(DATE_RE), "Datum"),
    LabelRule(_example_matches(POSTAL_CODE_RE), "PLZ"),
    LabelRule(_example_matches(BOOLEAN_RE), "Ja/Nein"),
    LabelRule(_example_matches(PHONE_RE), "Telefon"),
)

EXAMPLE_ID_HINTS: Sequence[LabelRule] = (
    LabelRule(_id_has("email"), "E-Mail"),
    LabelRule(_id_has("phone", "tel"), "Telefon"),
    LabelRule(_id_has("zip", "plz"), "PLZ"),
)

# Suggestions for the intelligence report. Id hints outrank content patterns.
_email_id = _id_has("email")
_phone_id = _id_has("phone", "tel")

ID_HINT_RULES: Sequence[LabelRule] = (
    LabelRule(_id_has("street", "straße"), "Straße", 70),
    LabelRule(_id_has("familyName", "nachname"), "Nachname", 70),
    LabelRule(_id_has("city", "stadt"), "Stadt", 70),
    LabelRule(_id_has("zip", "plz"), "PLZ", 70),
    LabelRule(_id_has_all(_email_id, "private"), "E-Mail (privat)", 70),
    LabelRule(_email_id, "E-Mail", 70),
    LabelRule(_id_has_all(_phone_id, "mobile"), "Mobil", 70),
    LabelRule(_phone_id, "Telefon", 70),
)

CONTENT_RULES: Sequence[LabelRule] = (
    LabelRule(_example_matches(EMAIL_RE), "E-Mail", 90),
    LabelRule(_example_matches(URL_RE), "Website", 90),
    LabelRule(_example_matches(PHONE_RE, min_length=5), "Telefon"),
    LabelRule(_example_matches(POSTAL_CODE_RE), "PLZ", 85),
    LabelRule(_example_matches(DATE_RE), "Datum"),
)


def _first_match(rules: Sequence[LabelRule], field_id: str, example: str) -> Optional[LabelRule]:
    for rule in rules:
        if rule.matches(field_id, example):
            return rule
    return None


def _same_family(suggestion: str, label: str) -> bool:
    return suggestion == label or suggestion.startswith(label + " ")


# -- Label generation ---------------------------------------------------------------

def generate_label(field: FieldEntry) -> str:
    """Return a display label for ``field``; the same entry always yields the same label."""
    known = KNOWN_LABELS.get(field.id)
    if known:
        return known
    if field.example:
        from_example = label_from_example(field.example, field.id)
        if from_example:
            return from_example
    return label_from_id(field.id, field.type)


def label_from_example(example: Example, field_id: str) -> Optional[str]:
    text = example_text(example).strip()
    if not text:
        return None
    pattern = _first_match(EXAMPLE_PATTERN_RULES, field_id, text)
    if pattern is not None:
        hint = _first_match(EXAMPLE_ID_HINTS, field_id, text)
        return hint.label if hint else pattern.label
    if len(text) < 50 and LABEL_LIKE_RE.match(text):
        return text
    return None


def camelcase_to_label(value: str) -> str:
    spaced = CAMEL_BOUNDARY_RE.sub(r"\1 \2", value).replace("_", " ")
    words = [word.capitalize() for word in spaced.split()]
    return " ".join(ABBREVIATIONS.get(word, word) for word in words)


def label_from_id(field_id: str, field_type: str) -> str:
    remainder = field_id
    for prefix in ID_PREFIXES:
        if field_id.startswith(prefix):
            remainder = field_id[len(prefix):]
            break
    type_label = TYPE_LABELS.get(field_type, "")
    if remainder.isdigit():
        return f"{type_label}Field {remainder}"
    return f"{type_label}{camelcase_to_label(remainder)}"


def auto_generate_labels(catalogue: Mapping[str, FieldEntry]) -> Catalogue:
    """Return a copy of ``catalogue`` where every unlabelled entry has a label."""
    labelled: Catalogue = {}
    for field_id, entry in catalogue.items():
        labelled[field_id] = entry if entry.has_label else replace(entry, label=generate_label(entry))
    return labelled


# -- Suggestions --------------------------------------------------------------------

def suggest_label_from_content(field: FieldEntry) -> Optional[str]:
    text = example_text(field.example).strip()
    if not text:
        return None
    rule = _first_match(ID_HINT_RULES, field.id, text) or _first_match(CONTENT_RULES, field.id, text)
    return rule.label if rule else None


def label_confidence(field: FieldEntry, suggestion: str) -> int:
    """Score ``suggestion`` between 0 and 100 from corroborating rules."""
    text = example_text(field.example).strip()
    confidence = 0
    id_rule = _first_match(ID_HINT_RULES, field.id, text)
    if id_rule is not None and id_rule.label == suggestion:
        confidence += id_rule.weight
    for rule in CONTENT_RULES:
        if rule.weight and _same_family(suggestion, rule.label) and rule.matches(field.id, text):
            confidence += rule.weight
    return min(100, confidence)


def explain_label_suggestion(field: FieldEntry, suggestion: str) -> str:
    text = example_text(field.example).strip()
    id_rule = _first_match(ID_HINT_RULES, field.id, text)
    if id_rule is not None and id_rule.label == suggestion:
        return f'Field id hints at "{suggestion}"'
    if EMAIL_RE.match(text):
        return "Example value is an e-mail address"
    if URL_RE.match(text):
        return "Example value is a URL"
    if POSTAL_CODE_RE.match(text):
        return "Example value is a five digit number (postal code)"
    return "Based on field analysis"
