import pytest
from pydantic import ValidationError

from app.models.abstract import AbstractRecord, AbstractStatus, count_words, normalize_status


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("pending", "submitted"),
        ("under_review", "under-review"),
        ("REVISION_REQUESTED", "revision-requested"),
        (" approved ", "approved"),
        ("revised", "revised-pending-review"),
        ("unknown", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_record_normalizes_legacy_status_and_dedupes_reviewers():
    record = AbstractRecord(
        id="A1",
        event_id="E1",
        registration_id="reg",
        status="pending",
        assigned_reviewers=["R1", "R2", "R1"],
    )
    assert record.status == AbstractStatus.SUBMITTED.value
    assert record.assigned_reviewers == ["R1", "R2"]
    assert record.version == 1


def test_record_rejects_unknown_status():
    with pytest.raises(ValidationError):
        AbstractRecord(id="A1", event_id="E1", registration_id="reg", status="archived")


def test_count_words():
    assert count_words("  one two\nthree\tfour ") == 4
    assert count_words("") == 0
    assert count_words(None) == 0


def test_record_word_count_follows_content():
    record = AbstractRecord(
        id="A1",
        event_id="E1",
        registration_id="reg",
        content="Protein folding with\n graph networks",
        word_count=999,
    )
    assert record.word_count == 5

    empty = AbstractRecord(id="A2", event_id="E1", registration_id="reg", word_count=3)
    assert empty.word_count == 0


def test_review_for_and_is_assigned():
    record = AbstractRecord(
        id="A1",
        event_id="E1",
        registration_id="reg",
        assigned_reviewers=["R1"],
        reviews=[{"reviewer_id": "R1", "score": 3, "is_complete": True}],
    )
    assert record.is_assigned("R1")
    assert not record.is_assigned("R2")
    assert record.review_for("R1").score == 3
    assert record.review_for("R2") is None
