from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Optional

from app.models.abstract import AbstractStatus
from app.schemas.abstract import (
    EventReviewStatistics,
    PendingReviewItem,
    ReviewerPerformance,
    ReviewProgress,
)
from app.services.abstract_store import AbstractStore
from app.services.review_decision_policy import compute_average_score, review_progress
from app.services.reviewer_directory import ReviewerDirectory

logger = logging.getLogger("abstractflow.progress")


class ReviewProgressService:
    """只读：待审进度与活动级评审统计"""

    def __init__(self, *, store: AbstractStore, directory: ReviewerDirectory) -> None:
        self.store = store
        self.directory = directory

    def list_pending_review(self, event_id: str) -> list[PendingReviewItem]:
        records = self.store.list_abstracts(
            event_id=event_id, statuses=sorted(AbstractStatus.awaiting_review())
        )
        return [
            PendingReviewItem(
                id=r.id,
                title=r.title,
                status=r.status,
                category_id=r.category_id,
                assigned_reviewers=list(r.assigned_reviewers),
                average_score=r.average_score,
                updated_at=r.updated_at,
                review_progress=ReviewProgress(**review_progress(r.assigned_reviewers, r.reviews)),
            )
            for r in records
        ]

    def get_statistics(self, event_id: str) -> EventReviewStatistics:
        records = self.store.list_abstracts(event_id=event_id)
        by_status = Counter(r.status for r in records)

        per_reviewer: dict[str, list] = defaultdict(list)
        for record in records:
            for entry in record.reviews:
                per_reviewer[entry.reviewer_id].append(entry)

        performance: list[ReviewerPerformance] = []
        for reviewer_id, entries in per_reviewer.items():
            profile = self.directory.find_reviewer_by_id(reviewer_id)
            avg: Optional[float] = compute_average_score(entries)
            performance.append(
                ReviewerPerformance(
                    reviewer_id=reviewer_id,
                    name=profile.name if profile else "Unknown Reviewer",
                    email=(profile.email if profile and profile.email else "N/A"),
                    review_count=len(entries),
                    completed_reviews=sum(1 for e in entries if e.is_complete),
                    average_score=round(avg, 1) if avg is not None else None,
                )
            )
        performance.sort(key=lambda p: p.review_count, reverse=True)

        logger.info(
            "[Progress] statistics for event %s: %s abstract(s), %s reviewer(s)",
            event_id,
            len(records),
            len(performance),
        )
        return EventReviewStatistics(
            event_id=str(event_id),
            total_abstracts=len(records),
            by_status=dict(by_status),
            reviewer_performance=performance,
        )
