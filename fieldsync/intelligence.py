"""Statistics and suggestions derived from a merged field catalogue."""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from .catalogue import AREAS, FieldEntry, PLACED_AREAS, example_text
from .labels import EMAIL_RE, URL_RE, explain_label_suggestion, label_confidence, suggest_label_from_content

LOGGER = logging.getLogger(__name__)

GROUPABLE_ID_RE = re.compile(r"^(cf\.|cfraw\.|contactcf\.|contactcfraw\.)(\d+)")
GROUP_DIGITS = 6

CATEGORY_ID_HINTS = (
    ("contact_info", ("email", "phone", "tel")),
    ("address", ("street", "city", "zip", "plz")),
    ("web_presence", ("url", "website", "internet")),
)


@dataclass
class FieldIntelligenceReport:
    stats: Dict[str, Any]
    suggestions: Dict[str, List[Dict[str, Any]]]
    recommendations: List[Dict[str, Any]]
    duplicates: List[Dict[str, Any]]
    groupings: List[Dict[str, Any]]
    total_fields: int
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _field_summary(entry: FieldEntry) -> Dict[str, Any]:
    return {"id": entry.id, "label": entry.label or entry.id, "type": entry.type}


def suggest_category(entry: FieldEntry) -> Optional[str]:
    lowered = entry.id.lower()
    for category, hints in CATEGORY_ID_HINTS:
        if any(hint in lowered for hint in hints):
            return category
    text = example_text(entry.example).strip()
    if text and URL_RE.match(text):
        return "web_presence"
    if text and EMAIL_RE.match(text):
        return "contact_info"
    return None


class FieldIntelligenceAnalyzer:
    """Analyse a catalogue without side effects.

    Only the report timestamp depends on something other than the input; it
    comes from ``clock`` which defaults to the current UTC time.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def analyze(self, catalogue: Mapping[str, FieldEntry]) -> FieldIntelligenceReport:
        entries = list(catalogue.values())
        LOGGER.debug("Analysing %s catalogue entries", len(entries))
        return FieldIntelligenceReport(
            stats=self.statistics(entries),
            suggestions=self.suggestions(entries),
            recommendations=self.recommendations(entries),
            duplicates=self.duplicates(entries),
            groupings=self.groupings(entries),
            total_fields=len(entries),
            timestamp=self.clock().strftime("%Y-%m-%d %H:%M:%S"),
        )

    @staticmethod
    def statistics(entries: List[FieldEntry]) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "by_type": {},
            "by_area": {area: 0 for area in AREAS},
            "by_status": {"configured": 0, "unconfigured": 0, "ignored": 0, "in_use": 0},
            "without_label": 0,
            "without_example": 0,
            "with_example": 0,
            "custom_fields": 0,
            "standard_fields": 0,
        }
        for entry in entries:
            stats["by_type"][entry.type] = stats["by_type"].get(entry.type, 0) + 1
            stats["by_area"][entry.area] += 1

            configured = entry.has_label or entry.area != "unused" or entry.show
            stats["by_status"]["configured" if configured else "unconfigured"] += 1
            if entry.ignored:
                stats["by_status"]["ignored"] += 1
            if entry.area in PLACED_AREAS:
                stats["by_status"]["in_use"] += 1

            if not entry.has_label:
                stats["without_label"] += 1
            if entry.example:
                stats["with_example"] += 1
            else:
                stats["without_example"] += 1

            if entry.is_custom:
                stats["custom_fields"] += 1
            else:
                stats["standard_fields"] += 1
        return stats

    @staticmethod
    def suggestions(entries: List[FieldEntry]) -> Dict[str, List[Dict[str, Any]]]:
        labels: List[Dict[str, Any]] = []
        categories: List[Dict[str, Any]] = []
        activation: List[Dict[str, Any]] = []
        for entry in entries:
            if not entry.has_label and entry.example:
                suggestion = suggest_label_from_content(entry)
                if suggestion:
                    labels.append({
                        "field_id": entry.id,
                        "current_label": entry.label or "",
                        "suggested_label": suggestion,
                        "confidence": label_confidence(entry, suggestion),
                        "reason": explain_label_suggestion(entry, suggestion),
                    })

            category = suggest_category(entry)
            if category:
                categories.append({"field_id": entry.id, "suggested_category": category})

            if entry.area == "unused" and entry.ignored and entry.example:
                activation.append({
                    "field_id": entry.id,
                    "reason": "Field has example values and may be useful",
                    "example": entry.example,
                })

        # sorted() is stable, so equal confidences keep discovery order.
        labels = sorted(labels, key=lambda item: item["confidence"], reverse=True)
        return {"labels": labels, "categories": categories, "activation": activation}

    @staticmethod
    def recommendations(entries: List[FieldEntry]) -> List[Dict[str, Any]]:
        recommendations: List[Dict[str, Any]] = []
        for entry in entries:
            if entry.area == "unused" and entry.example and not entry.ignored:
                recommendations.append({
                    "type": "activate",
                    "field_id": entry.id,
                    "field_label": entry.label or entry.id,
                    "message": "This field has example values and could be displayed",
                    "example": entry.example,
                })
        for entry in entries:
            if entry.area in PLACED_AREAS and not entry.has_label:
                recommendations.append({
                    "type": "label",
                    "field_id": entry.id,
                    "field_label": entry.id,
                    "message": "This field is displayed but has no readable label",
                })
        return recommendations

    @staticmethod
    def duplicates(entries: List[FieldEntry]) -> List[Dict[str, Any]]:
        groups: Dict[str, List[FieldEntry]] = {}
        for entry in entries:
            if not entry.example:
                continue
            normalised = example_text(entry.example).strip().lower()
            groups.setdefault(normalised, []).append(entry)

        duplicates = []
        for normalised in sorted(groups):
            members = groups[normalised]
            if len(members) < 2:
                continue
            duplicates.append({
                "fields": [_field_summary(entry) for entry in sorted(members, key=lambda item: item.id)],
                "example": normalised,
                "message": "These fields share the same example value",
            })
        return duplicates

    @staticmethod
    def groupings(entries: List[FieldEntry]) -> List[Dict[str, Any]]:
        patterns: Dict[str, List[FieldEntry]] = {}
        for entry in entries:
            match = GROUPABLE_ID_RE.match(entry.id)
            if match:
                prefix, number = match.groups()
                patterns.setdefault(prefix + number[:GROUP_DIGITS], []).append(entry)

        groupings = []
        for pattern, members in patterns.items():
            if len(members) < 2:
                continue
            groupings.append({
                "pattern": pattern,
                "fields": [_field_summary(entry) for entry in members],
                "similar_labels": _has_similar_labels(members),
                "suggested_group_name": "Similar fields",
                "message": "These fields may belong together",
            })
        return groupings


def _has_similar_labels(members: List[FieldEntry]) -> bool:
    labels = [entry.label.lower() for entry in members if entry.label]
    for index, first in enumerate(labels):
        for second in labels[index + 1:]:
            if first in second or second in first:
                return True
    return False
