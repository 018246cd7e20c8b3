from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_missing_token_rejected(client: AsyncClient, seed_abstract):
    """缺少认证令牌时应拒绝访问"""
    seed_abstract("A1")
    response = await client.post("/api/v1/abstracts/A1/assign-reviewers", json={"reviewer_ids": ["R1"]})
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_expired_token_rejected(client: AsyncClient, token_factory, seed_abstract):
    seed_abstract("A1")
    token = token_factory("admin-1", roles=["admin"], expires_in=timedelta(seconds=-30))
    response = await client.post(
        "/api/v1/abstracts/A1/assign-reviewers",
        json={"reviewer_ids": ["R1"]},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_assign_requires_admin(client: AsyncClient, reviewer_headers, seed_abstract):
    seed_abstract("A1")
    response = await client.post(
        "/api/v1/abstracts/A1/assign-reviewers",
        json={"reviewer_ids": ["R2"]},
        headers=reviewer_headers("R1"),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_assign_reviewers(client: AsyncClient, admin_headers, seed_abstract, store, recorder):
    seed_abstract("A1")

    response = await client.post(
        "/api/v1/abstracts/A1/assign-reviewers",
        json={"reviewer_ids": [" R1 ", "R2", "ghost"]},
        headers=admin_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["abstract"]["status"] == "under-review"
    assert body["data"]["newly_assigned"] == ["R1", "R2"]
    assert body["data"]["invalid"] == [{"id": "ghost", "reason": "User not found"}]
    assert store.get_reviewer("R1").assigned_abstracts_count == 1
    assert recorder.kinds() == ["reviewer_assigned", "reviewer_assigned"]

    again = await client.post(
        "/api/v1/abstracts/A1/assign-reviewers",
        json={"reviewer_ids": ["R1"]},
        headers=admin_headers,
    )
    assert again.status_code == 200
    assert again.json()["data"]["already_assigned"] == ["R1"]
    assert store.get_reviewer("R1").assigned_abstracts_count == 1


@pytest.mark.asyncio
async def test_assign_validation_errors(client: AsyncClient, admin_headers, seed_abstract):
    seed_abstract("A1")

    empty = await client.post(
        "/api/v1/abstracts/A1/assign-reviewers", json={"reviewer_ids": []}, headers=admin_headers
    )
    assert empty.status_code == 400
    assert empty.json()["code"] == "validation_error"

    only_invalid = await client.post(
        "/api/v1/abstracts/A1/assign-reviewers", json={"reviewer_ids": ["ghost"]}, headers=admin_headers
    )
    assert only_invalid.status_code == 400
    assert only_invalid.json()["details"]["invalid"][0]["id"] == "ghost"

    missing = await client.post(
        "/api/v1/abstracts/nope/assign-reviewers", json={"reviewer_ids": ["R1"]}, headers=admin_headers
    )
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Abstract not found"


@pytest.mark.asyncio
async def test_bulk_assign_partial_failure_returns_207(client: AsyncClient, admin_headers, seed_abstract):
    seed_abstract("A1")
    seed_abstract("A2", status="revision-requested")

    response = await client.post(
        "/api/v1/events/evt-1/abstracts/assign-reviewers",
        json={"abstract_ids": ["A1", "A2", "missing"], "reviewer_ids": ["R1"]},
        headers=admin_headers,
    )

    assert response.status_code == 207
    body = response.json()
    assert body["success"] is False
    assert body["data"]["successful"] == 2
    assert body["data"]["failed"] == 1


@pytest.mark.asyncio
async def test_bulk_assign_all_ok(client: AsyncClient, admin_headers, seed_abstract):
    seed_abstract("A1")
    response = await client.post(
        "/api/v1/events/evt-1/abstracts/assign-reviewers",
        json={"abstract_ids": ["A1"], "reviewer_ids": ["R1", "R2"]},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["success"] is True


@pytest.mark.asyncio
async def test_submit_review_flow(client: AsyncClient, reviewer_headers, seed_abstract):
    seed_abstract("A1", status="under-review", assigned_reviewers=["R1", "R2"])

    first = await client.post(
        "/api/v1/abstracts/A1/reviews",
        json={"decision": "accept", "score": 9, "comments": "Strong"},
        headers=reviewer_headers("R1"),
    )
    assert first.status_code == 200
    assert first.json()["data"]["status"] == "approved"
    assert first.json()["data"]["average_score"] == 9

    second = await client.post(
        "/api/v1/abstracts/A1/reviews",
        json={"decision": "revise", "score": 4},
        headers=reviewer_headers("R2"),
    )
    assert second.json()["data"]["status"] == "revision-requested"
    assert second.json()["data"]["average_score"] == 6.5


@pytest.mark.asyncio
async def test_submit_review_rejects_unassigned_and_bad_payload(
    client: AsyncClient, reviewer_headers, seed_abstract
):
    seed_abstract("A1", status="under-review", assigned_reviewers=["R1"])

    forbidden = await client.post(
        "/api/v1/abstracts/A1/reviews",
        json={"decision": "accept", "score": 9},
        headers=reviewer_headers("R2"),
    )
    assert forbidden.status_code == 403

    bad = await client.post(
        "/api/v1/abstracts/A1/reviews",
        json={"decision": "maybe"},
        headers=reviewer_headers("R1"),
    )
    assert bad.status_code == 400
    body = bad.json()
    assert body["code"] == "validation_error"
    assert body["detail"] == "Invalid request payload"
    assert body["details"][0]["loc"][-1] == "decision"


@pytest.mark.asyncio
async def test_bulk_assign_empty_lists_are_validation_errors(
    client: AsyncClient, admin_headers, seed_abstract
):
    seed_abstract("A1")
    response = await client.post(
        "/api/v1/events/evt-1/abstracts/assign-reviewers",
        json={"abstract_ids": ["A1"], "reviewer_ids": []},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_get_abstract_visibility(
    client: AsyncClient, author_headers, reviewer_headers, token_factory, seed_abstract
):
    seed_abstract("A1")

    own = await client.get("/api/v1/abstracts/A1", headers=author_headers)
    assert own.status_code == 200
    assert own.json()["data"]["id"] == "A1"
    assert own.json()["data"]["word_count"] == 5

    as_reviewer = await client.get("/api/v1/abstracts/A1", headers=reviewer_headers("R2"))
    assert as_reviewer.status_code == 200

    # 非作者与不存在的摘要同样返回 404
    token = token_factory("other-user", roles=["author"], registration_id="reg-2")
    other = await client.get("/api/v1/abstracts/A1", headers={"Authorization": f"Bearer {token}"})
    assert other.status_code == 404
    assert other.json()["detail"] == "Abstract not found"

    missing = await client.get("/api/v1/abstracts/nope", headers=author_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_add_review_comment(
    client: AsyncClient, admin_headers, author_headers, reviewer_headers, seed_abstract, store
):
    seed_abstract("A1", status="under-review", assigned_reviewers=["R1"])

    response = await client.post(
        "/api/v1/abstracts/A1/comments",
        json={"comment": "Please clarify the dataset"},
        headers=reviewer_headers("R1"),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Comment added successfully"
    assert body["data"][0]["user_id"] == "R1"
    assert body["data"][0]["comment"] == "Please clarify the dataset"
    assert len(store.find_abstract_by_id("A1").review_comments) == 1

    blank = await client.post(
        "/api/v1/abstracts/A1/comments", json={"comment": " "}, headers=admin_headers
    )
    assert blank.status_code == 400
    assert blank.json()["detail"] == "Please provide a comment"

    by_author = await client.post(
        "/api/v1/abstracts/A1/comments", json={"comment": "hi"}, headers=author_headers
    )
    assert by_author.status_code == 403


@pytest.mark.asyncio
async def test_admin_decisions(client: AsyncClient, admin_headers, author_headers, seed_abstract):
    seed_abstract("A1", status="under-review")

    denied = await client.put("/api/v1/abstracts/A1/approve", headers=author_headers)
    assert denied.status_code == 403

    approved = await client.put("/api/v1/abstracts/A1/approve", headers=admin_headers)
    assert approved.status_code == 200
    assert approved.json()["data"]["final_decision"] == "approved"
    assert approved.json()["data"]["decision_reason"] == "Approved by admin."

    rejected = await client.put(
        "/api/v1/abstracts/A1/reject", json={"reason": "Out of scope"}, headers=admin_headers
    )
    assert rejected.json()["data"]["status"] == "rejected"
    assert rejected.json()["data"]["decision_reason"] == "Out of scope"


@pytest.mark.asyncio
async def test_status_correction(client: AsyncClient, admin_headers, seed_abstract):
    seed_abstract("A1", status="approved")

    ok = await client.put(
        "/api/v1/abstracts/A1/status", json={"status": "under_review"}, headers=admin_headers
    )
    assert ok.status_code == 200
    assert ok.json()["data"]["status"] == "under-review"

    bad = await client.put(
        "/api/v1/abstracts/A1/status", json={"status": "revision-requested"}, headers=admin_headers
    )
    assert bad.status_code == 400
    assert "allowed" in bad.json()["details"]


@pytest.mark.asyncio
async def test_revision_round_trip(client: AsyncClient, admin_headers, author_headers, seed_abstract):
    seed_abstract("A1", status="under-review", assigned_reviewers=["R1"])
    deadline = (datetime.now(timezone.utc) + timedelta(days=3)).isoformat()

    requested = await client.put(
        "/api/v1/abstracts/A1/request-revision",
        json={"reason": "Add methods", "deadline": deadline},
        headers=admin_headers,
    )
    assert requested.status_code == 200
    assert requested.json()["data"]["status"] == "revision-requested"

    resubmitted = await client.post("/api/v1/abstracts/A1/resubmit-revision", headers=author_headers)
    assert resubmitted.status_code == 200
    assert resubmitted.json()["data"]["status"] == "revised-pending-review"

    again = await client.post("/api/v1/abstracts/A1/resubmit-revision", headers=author_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_resubmit_after_deadline(client: AsyncClient, author_headers, seed_abstract):
    seed_abstract(
        "A1",
        status="revision-requested",
        revision_deadline=datetime.now(timezone.utc) - timedelta(days=1),
    )
    response = await client.post("/api/v1/abstracts/A1/resubmit-revision", headers=author_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_resubmit_by_other_author(client: AsyncClient, token_factory, seed_abstract):
    seed_abstract("A1", status="revision-requested")
    token = token_factory("someone", roles=["author"], registration_id="reg-9")
    response = await client.post(
        "/api/v1/abstracts/A1/resubmit-revision", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_progress_and_statistics(client: AsyncClient, admin_headers, seed_abstract):
    seed_abstract(
        "A1",
        status="under-review",
        assigned_reviewers=["R1", "R2"],
        reviews=[{"reviewer_id": "R1", "score": 8, "decision": "accept", "is_complete": True}],
    )
    seed_abstract("A2", status="approved")

    progress = await client.get(
        "/api/v1/events/evt-1/abstracts/pending-review-progress", headers=admin_headers
    )
    assert progress.status_code == 200
    assert progress.json()["count"] == 1
    assert progress.json()["data"][0]["review_progress"]["completion_percentage"] == 50.0

    stats = await client.get("/api/v1/events/evt-1/abstracts/statistics", headers=admin_headers)
    data = stats.json()["data"]
    assert data["total_abstracts"] == 2
    assert data["by_status"] == {"under-review": 1, "approved": 1}
    assert data["reviewer_performance"][0]["reviewer_id"] == "R1"


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert "AbstractFlow" in response.json()["message"]
