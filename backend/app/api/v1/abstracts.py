import asyncio
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse

from app.core.roles import get_current_actor, require_admin
from app.models.user import Actor
from app.schemas.abstract import (
    AdminDecisionPayload,
    AssignReviewersRequest,
    BulkAssignRequest,
    ReviewSubmission,
    ReviewCommentPayload,
    RevisionRequestPayload,
    StatusUpdatePayload,
)
from app.services.workflow import Workflow, get_workflow

router = APIRouter(tags=["Abstracts"])


def get_request_workflow(
    background_tasks: BackgroundTasks,
    workflow: Workflow = Depends(get_workflow),
) -> Workflow:
    """写操作使用请求级工作流：通知挂到 BackgroundTasks，响应发出后投递"""
    return workflow.for_request(background_tasks)


def _record(record) -> dict:
    return record.model_dump(mode="json")


@router.get("/abstracts/{abstract_id}")
async def get_abstract(
    abstract_id: str,
    actor: Actor = Depends(get_current_actor),
    workflow: Workflow = Depends(get_workflow),
):
    record = await asyncio.to_thread(workflow.abstracts.get_abstract, abstract_id, actor)
    return {"success": True, "data": _record(record)}


@router.post("/abstracts/{abstract_id}/comments")
async def add_review_comment(
    abstract_id: str,
    payload: ReviewCommentPayload,
    actor: Actor = Depends(get_current_actor),
    workflow: Workflow = Depends(get_request_workflow),
):
    record = await asyncio.to_thread(
        workflow.abstracts.add_review_comment, abstract_id, actor, payload.comment or ""
    )
    return {
        "success": True,
        "message": "Comment added successfully",
        "data": [c.model_dump(mode="json") for c in record.review_comments],
    }


@router.post("/abstracts/{abstract_id}/assign-reviewers")
async def assign_reviewers(
    abstract_id: str,
    payload: AssignReviewersRequest,
    _admin: Actor = Depends(require_admin),
    workflow: Workflow = Depends(get_request_workflow),
):
    """
    为摘要分配审稿人（幂等；已分配的审稿人不会重复计数）
    """
    result = await asyncio.to_thread(
        workflow.assignment.assign_reviewers, abstract_id, payload.reviewer_ids
    )
    return {
        "success": True,
        "message": result.message,
        "data": {
            "abstract": _record(result.abstract),
            "newly_assigned": result.newly_assigned,
            "already_assigned": result.already_assigned,
            "invalid": [i.model_dump() for i in result.invalid],
        },
    }


@router.post("/events/{event_id}/abstracts/assign-reviewers")
async def bulk_assign_reviewers(
    event_id: str,
    payload: BulkAssignRequest,
    _admin: Actor = Depends(require_admin),
    workflow: Workflow = Depends(get_request_workflow),
):
    """
    批量分配：存在失败项时返回 207（Multi-Status）
    """
    result = await asyncio.to_thread(
        workflow.assignment.assign_reviewers_to_abstracts,
        payload.abstract_ids,
        payload.reviewer_ids,
        event_id=event_id,
    )
    if result.failed:
        return JSONResponse(
            status_code=207,
            content={
                "success": False,
                "message": (
                    f"Assignment completed with {result.successful} successes "
                    f"and {result.failed} failures."
                ),
                "data": result.model_dump(mode="json"),
            },
        )
    return {
        "success": True,
        "message": f"Successfully assigned reviewers to {result.successful} abstract(s).",
        "data": result.model_dump(mode="json"),
    }


@router.post("/abstracts/{abstract_id}/reviews")
async def submit_review(
    abstract_id: str,
    payload: ReviewSubmission,
    actor: Actor = Depends(get_current_actor),
    workflow: Workflow = Depends(get_request_workflow),
):
    record = await asyncio.to_thread(workflow.submission.submit_review, abstract_id, actor, payload)
    return {"success": True, "message": "Review submitted successfully", "data": _record(record)}


@router.put("/abstracts/{abstract_id}/approve")
async def approve_abstract(
    abstract_id: str,
    payload: Optional[AdminDecisionPayload] = None,
    actor: Actor = Depends(get_current_actor),
    workflow: Workflow = Depends(get_request_workflow),
):
    record = await asyncio.to_thread(
        workflow.decision.approve_abstract, abstract_id, actor, payload.reason if payload else None
    )
    return {"success": True, "message": "Abstract approved successfully", "data": _record(record)}


@router.put("/abstracts/{abstract_id}/reject")
async def reject_abstract(
    abstract_id: str,
    payload: Optional[AdminDecisionPayload] = None,
    actor: Actor = Depends(get_current_actor),
    workflow: Workflow = Depends(get_request_workflow),
):
    record = await asyncio.to_thread(
        workflow.decision.reject_abstract, abstract_id, actor, payload.reason if payload else None
    )
    return {"success": True, "message": "Abstract rejected successfully", "data": _record(record)}


@router.put("/abstracts/{abstract_id}/request-revision")
async def request_revision(
    abstract_id: str,
    payload: Optional[RevisionRequestPayload] = None,
    actor: Actor = Depends(get_current_actor),
    workflow: Workflow = Depends(get_request_workflow),
):
    payload = payload or RevisionRequestPayload()
    record = await asyncio.to_thread(
        workflow.revision.request_revision, abstract_id, actor, payload.reason, payload.deadline
    )
    return {"success": True, "message": "Revision requested successfully", "data": _record(record)}


@router.put("/abstracts/{abstract_id}/status")
async def update_abstract_status(
    abstract_id: str,
    payload: StatusUpdatePayload,
    actor: Actor = Depends(get_current_actor),
    workflow: Workflow = Depends(get_request_workflow),
):
    record = await asyncio.to_thread(
        workflow.decision.update_status, abstract_id, actor, payload.status
    )
    return {"success": True, "message": "Abstract status updated", "data": _record(record)}


@router.post("/abstracts/{abstract_id}/resubmit-revision")
async def resubmit_revision(
    abstract_id: str,
    actor: Actor = Depends(get_current_actor),
    workflow: Workflow = Depends(get_request_workflow),
):
    """
    作者提交修回稿

    中文注释: 作者身份以 token 中的 registration_id 为准；缺省时回退到用户 id。
    """
    author_id = actor.registration_id or actor.id
    record = await asyncio.to_thread(workflow.revision.resubmit_revision, abstract_id, author_id)
    return {
        "success": True,
        "message": "Revision submitted successfully",
        "data": _record(record),
    }


@router.get("/events/{event_id}/abstracts/pending-review-progress")
async def pending_review_progress(
    event_id: str,
    _admin: Actor = Depends(require_admin),
    workflow: Workflow = Depends(get_workflow),
):
    items = await asyncio.to_thread(workflow.progress.list_pending_review, event_id)
    return {
        "success": True,
        "count": len(items),
        "data": [i.model_dump(mode="json") for i in items],
    }


@router.get("/events/{event_id}/abstracts/statistics")
async def review_statistics(
    event_id: str,
    _admin: Actor = Depends(require_admin),
    workflow: Workflow = Depends(get_workflow),
):
    stats = await asyncio.to_thread(workflow.progress.get_statistics, event_id)
    return {"success": True, "data": stats.model_dump(mode="json")}
