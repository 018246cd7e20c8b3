"""
Review Decision Policy: 纯函数，无 I/O

中文注释:
1. 所有聚合（平均分 / 全局状态）都在写事务内调用这里的函数重新计算，保证可单测。
2. 状态规则为“最后写入者生效”（last writer wins）：不做 quorum，单个 reviewer 的决定直接覆盖全局状态。
"""

from __future__ import annotations

from datetime import datetime
from numbers import Real
from typing import Any, Iterable, Optional

from app.models.abstract import AbstractStatus, ReviewDecision, ReviewEntry


_DECISION_TARGETS: dict[str, str] = {
    ReviewDecision.REVISE.value: AbstractStatus.REVISION_REQUESTED.value,
    ReviewDecision.ACCEPT.value: AbstractStatus.APPROVED.value,
    ReviewDecision.REJECT.value: AbstractStatus.REJECTED.value,
}


def _is_numeric_score(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def compute_average_score(reviews: Iterable[ReviewEntry]) -> Optional[float]:
    scores = [
        float(r.score)
        for r in reviews
        if r.is_complete and _is_numeric_score(r.score)
    ]
    if not scores:
        return None
    return sum(scores) / len(scores)


def next_status_for_decision(current_status: str, decision: str) -> Optional[str]:
    """
    返回单个 reviewer 决定触发的新全局状态；None 表示不变。

    - revise    -> revision-requested
    - accept    -> approved
    - reject    -> rejected
    - undecided -> 不变
    """
    target = _DECISION_TARGETS.get(str(decision))
    if target is None:
        return None
    if str(current_status) == target:
        return None
    return target


def upsert_review(
    reviews: list[ReviewEntry],
    *,
    reviewer_id: str,
    decision: str,
    score: Optional[float] = None,
    comments: Optional[str] = None,
    now: datetime,
) -> tuple[list[ReviewEntry], bool]:
    """
    按 reviewer 幂等写入评审记录。

    中文注释:
    - 已存在则原位更新（score / comments 仅在提供时覆盖），否则追加。
    - 返回 (新列表, 是否为新增)；不修改入参列表。
    """
    out: list[ReviewEntry] = []
    created = True
    for entry in reviews:
        if entry.reviewer_id == reviewer_id:
            created = False
            entry = entry.model_copy(
                update={
                    "score": score if score is not None else entry.score,
                    "comments": comments if comments is not None else entry.comments,
                    "decision": str(decision),
                    "is_complete": True,
                    "reviewed_at": now,
                }
            )
        out.append(entry)

    if created:
        out.append(
            ReviewEntry(
                reviewer_id=reviewer_id,
                score=score,
                comments=comments,
                decision=decision,
                is_complete=True,
                reviewed_at=now,
            )
        )
    return out, created


def review_progress(assigned_reviewers: list[str], reviews: list[ReviewEntry]) -> dict[str, Any]:
    total_assigned = len(assigned_reviewers)
    completed = sum(1 for r in reviews if r.is_complete)
    percentage = round(completed / total_assigned * 100, 1) if total_assigned > 0 else 0
    return {
        "total_assigned": total_assigned,
        "completed_reviews": completed,
        "pending_reviews": total_assigned - completed,
        "completion_percentage": percentage,
    }
