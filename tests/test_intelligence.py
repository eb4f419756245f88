"""Tests for the field intelligence analyzer."""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fieldsync.catalogue import FieldEntry  # noqa: E402
from fieldsync.intelligence import FieldIntelligenceAnalyzer, suggest_category  # noqa: E402


def _field(field_id: str, **kwargs) -> FieldEntry:
    return FieldEntry.from_dict(dict(kwargs), field_id=field_id)


def _catalogue(*entries: FieldEntry):
    return {entry.id: entry for entry in entries}


@pytest.fixture(name="analyzer")
def fixture_analyzer() -> FieldIntelligenceAnalyzer:
    return FieldIntelligenceAnalyzer(clock=lambda: datetime(2026, 1, 2, 3, 4, 5))


def test_statistics(analyzer: FieldIntelligenceAnalyzer) -> None:
    report = analyzer.analyze(_catalogue(
        _field("cf.1", example="a"),
        _field("member.x", label="X", area="above"),
        _field("contact.y", show=True, ignored=True),
    ))

    assert report.total_fields == 3
    assert report.stats == {
        "by_type": {"cf": 1, "member": 1, "contact": 1},
        "by_area": {"above": 1, "below": 0, "unused": 2},
        "by_status": {"configured": 2, "unconfigured": 1, "ignored": 1, "in_use": 1},
        "without_label": 2,
        "without_example": 2,
        "with_example": 1,
        "custom_fields": 1,
        "standard_fields": 2,
    }


def test_empty_catalogue(analyzer: FieldIntelligenceAnalyzer) -> None:
    report = analyzer.analyze({})

    assert report.total_fields == 0
    assert report.duplicates == []
    assert report.suggestions == {"labels": [], "categories": [], "activation": []}


def test_report_timestamp_and_dict(analyzer: FieldIntelligenceAnalyzer) -> None:
    data = analyzer.analyze({}).to_dict()

    assert data["timestamp"] == "2026-01-02 03:04:05"
    assert set(data) == {
        "stats",
        "suggestions",
        "recommendations",
        "duplicates",
        "groupings",
        "total_fields",
        "timestamp",
    }


def test_label_suggestions_sorted_by_confidence(analyzer: FieldIntelligenceAnalyzer) -> None:
    report = analyzer.analyze(_catalogue(
        _field("cf.10", example="+49 30 1234567"),
        _field("contact.privateEmail", example="anna@example.com"),
        _field("cf.11", example="https://example.org"),
        _field("cf.12", example="0171 1234567"),
        _field("cf.13", label="Schon benannt", example="b@example.com"),
    ))

    labels = report.suggestions["labels"]
    assert [item["field_id"] for item in labels] == ["contact.privateEmail", "cf.11", "cf.10", "cf.12"]
    assert [item["confidence"] for item in labels] == [100, 90, 0, 0]
    assert labels[0]["suggested_label"] == "E-Mail (privat)"
    assert labels[0]["current_label"] == ""


def test_activation_and_recommendations(analyzer: FieldIntelligenceAnalyzer) -> None:
    report = analyzer.analyze(_catalogue(
        _field("cf.1", example="a", ignored=True),
        _field("cf.2", example="b"),
        _field("cf.3", area="below"),
        _field("cf.4", area="above", label="Benannt"),
    ))

    assert [item["field_id"] for item in report.suggestions["activation"]] == ["cf.1"]
    assert [(item["type"], item["field_id"]) for item in report.recommendations] == [
        ("activate", "cf.2"),
        ("label", "cf.3"),
    ]


@pytest.mark.parametrize(
    "entry, expected",
    [
        (_field("contact.email"), "contact_info"),
        (_field("contact.mobilePhone"), "contact_info"),
        (_field("contact.street"), "address"),
        (_field("cf.9", example="www.example.org"), "web_presence"),
        (_field("cf.9", example="info@example.org"), "contact_info"),
        (_field("cf.8", example="foo"), None),
    ],
)
def test_suggest_category(entry: FieldEntry, expected) -> None:
    assert suggest_category(entry) == expected


def test_duplicates_are_symmetric(analyzer: FieldIntelligenceAnalyzer) -> None:
    first = _field("contact.z", example="foo")
    second = _field("cf.1", example="Foo ")
    other = _field("cf.3", example="bar")

    forward = analyzer.analyze(_catalogue(first, second, other)).duplicates
    backward = analyzer.analyze(_catalogue(other, second, first)).duplicates

    assert forward == backward
    assert len(forward) == 1
    assert forward[0]["example"] == "foo"
    assert [item["id"] for item in forward[0]["fields"]] == ["cf.1", "contact.z"]


def test_list_examples_are_compared_as_text(analyzer: FieldIntelligenceAnalyzer) -> None:
    report = analyzer.analyze(_catalogue(
        _field("cf.1", example=["Yoga", "Chor"]),
        _field("cf.2", example="yoga, chor"),
    ))

    assert report.duplicates[0]["example"] == "yoga, chor"


def test_groupings(analyzer: FieldIntelligenceAnalyzer) -> None:
    report = analyzer.analyze(_catalogue(
        _field("cf.50359301", label="Internet 1"),
        _field("cf.50359302", label="Internet"),
        _field("cf.50697357", label="Dienst"),
        _field("cfraw.12345601", label="Yoga"),
        _field("cfraw.12345602", label="Chor"),
        _field("member.id"),
    ))

    groups = {group["pattern"]: group for group in report.groupings}
    assert set(groups) == {"cf.503593", "cfraw.123456"}
    assert groups["cf.503593"]["similar_labels"] is True
    assert groups["cfraw.123456"]["similar_labels"] is False
    assert [item["id"] for item in groups["cf.503593"]["fields"]] == ["cf.50359301", "cf.50359302"]


def test_single_label_is_not_similar_to_itself(analyzer: FieldIntelligenceAnalyzer) -> None:
    report = analyzer.analyze(_catalogue(_field("cf.50359301", label="Yoga"), _field("cf.50359302")))

    assert report.groupings[0]["similar_labels"] is False
