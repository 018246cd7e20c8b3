from app.models.user import Actor
from app.schemas.abstract import ReviewSubmission


def test_assign_review_revise_resubmit_cycle(workflow, store, seed_abstract, recorder):
    """
    A1: 分配 R1/R2 -> R1 accept(9) -> R2 revise(4) -> 作者修回
    """
    seed_abstract("A1", status="submitted")

    assigned = workflow.assignment.assign_reviewers("A1", ["R1", "R2"])
    assert assigned.abstract.status == "under-review"
    assert set(assigned.abstract.assigned_reviewers) == {"R1", "R2"}
    assert store.get_reviewer("R1").assigned_abstracts_count == 1
    assert store.get_reviewer("R2").assigned_abstracts_count == 1

    after_r1 = workflow.submission.submit_review(
        "A1", Actor(id="R1", roles=["reviewer"]), ReviewSubmission(decision="accept", score=9)
    )
    assert after_r1.status == "approved"
    assert after_r1.average_score == 9

    after_r2 = workflow.submission.submit_review(
        "A1", Actor(id="R2", roles=["reviewer"]), ReviewSubmission(decision="revise", score=4)
    )
    assert after_r2.status == "revision-requested"
    assert after_r2.average_score == 6.5

    resubmitted = workflow.revision.resubmit_revision("A1", "reg-1")
    assert resubmitted.status == "revised-pending-review"

    assert recorder.kinds() == [
        "reviewer_assigned",
        "reviewer_assigned",
        "abstract_approved",
        "abstract_approved_staff",
        "revision_resubmitted",
    ]


def test_request_workflow_defers_notifications(store, directory, event_config, seed_abstract):
    from unittest.mock import MagicMock

    from fastapi import BackgroundTasks

    from app.services.notification_service import BackgroundTaskDispatcher
    from app.services.workflow import build_workflow

    email = MagicMock()
    email.deliver.return_value = True
    base = build_workflow(
        store=store, directory=directory, event_config=event_config, email_service=email
    )
    seed_abstract("A1")
    background_tasks = BackgroundTasks()

    scoped = base.for_request(background_tasks)
    scoped.assignment.assign_reviewers("A1", ["R1"])

    assert isinstance(scoped.assignment.dispatcher, BackgroundTaskDispatcher)
    assert scoped.store is base.store
    email.deliver.assert_not_called()
    assert len(background_tasks.tasks) == 1

    task = background_tasks.tasks[0]
    task.func(*task.args, **task.kwargs)
    assert email.deliver.call_args.kwargs["to_email"] == "r1@example.com"


def test_injected_dispatcher_is_kept_per_request(workflow):
    from fastapi import BackgroundTasks

    assert workflow.for_request(BackgroundTasks()) is workflow
