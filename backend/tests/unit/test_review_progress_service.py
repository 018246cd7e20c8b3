from datetime import datetime, timedelta, timezone


def test_list_pending_review_orders_by_last_update(workflow, seed_abstract):
    base = datetime(2026, 4, 1, tzinfo=timezone.utc)
    seed_abstract(
        "A1",
        status="under-review",
        assigned_reviewers=["R1", "R2"],
        reviews=[{"reviewer_id": "R1", "score": 8, "decision": "accept", "is_complete": True}],
        updated_at=base,
    )
    seed_abstract("A2", status="revised-pending-review", updated_at=base + timedelta(hours=1))
    seed_abstract("A3", status="approved", updated_at=base + timedelta(hours=2))

    items = workflow.progress.list_pending_review("evt-1")

    assert [i.id for i in items] == ["A2", "A1"]
    a1 = items[1]
    assert a1.review_progress.total_assigned == 2
    assert a1.review_progress.completed_reviews == 1
    assert a1.review_progress.completion_percentage == 50.0


def test_statistics_by_status_and_reviewer(workflow, seed_abstract):
    seed_abstract(
        "A1",
        status="approved",
        reviews=[
            {"reviewer_id": "R1", "score": 8, "decision": "accept", "is_complete": True},
            {"reviewer_id": "ghost", "score": None, "decision": "undecided", "is_complete": True},
        ],
    )
    seed_abstract(
        "A2",
        status="under-review",
        reviews=[{"reviewer_id": "R1", "score": 5, "decision": "revise", "is_complete": True}],
    )
    seed_abstract("A3", status="submitted")

    stats = workflow.progress.get_statistics("evt-1")

    assert stats.total_abstracts == 3
    assert stats.by_status == {"approved": 1, "under-review": 1, "submitted": 1}
    first, second = stats.reviewer_performance
    assert first.reviewer_id == "R1"
    assert first.review_count == 2
    assert first.average_score == 6.5
    assert first.email == "r1@example.com"
    assert second.name == "Unknown Reviewer"
    assert second.email == "N/A"
    assert second.average_score is None


def test_statistics_for_empty_event(workflow):
    stats = workflow.progress.get_statistics("no-such-event")
    assert stats.total_abstracts == 0
    assert stats.reviewer_performance == []
