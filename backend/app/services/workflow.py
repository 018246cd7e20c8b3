"""
工作流装配：根据 WorkflowConfig 构建 store / 目录 / 活动配置 / 通知 dispatcher 与各 service

中文注释:
- memory：进程内存储 + 内存目录（本地开发 / 测试）。
- postgres：psycopg2 直连数据库做事务；目录与活动配置通过 Supabase PostgREST 只读访问。
- API 层通过 get_workflow() 获取进程级单例，测试可用 set_workflow() 注入。
- 每个请求通过 for_request(background_tasks) 换成请求级 dispatcher，通知在响应发出后投递。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from fastapi import BackgroundTasks

from app.core.config import WorkflowConfig
from app.core.mail import EmailService
from app.lib.api_client import supabase_admin
from app.services.abstract_service import AbstractService
from app.services.abstract_store import AbstractStore, InMemoryAbstractStore, PostgresAbstractStore
from app.services.decision_service import AbstractDecisionService
from app.services.event_config import (
    EventConfigProvider,
    StaticEventConfigProvider,
    SupabaseEventConfigProvider,
)
from app.services.notification_service import (
    BackgroundTaskDispatcher,
    InlineNotificationDispatcher,
    NotificationDeliveryService,
    NotificationDispatcher,
    NotificationService,
)
from app.services.review_progress_service import ReviewProgressService
from app.services.review_submission_service import ReviewSubmissionService
from app.services.reviewer_assignment_service import ReviewerAssignmentService
from app.services.reviewer_directory import (
    InMemoryReviewerDirectory,
    ReviewerDirectory,
    SupabaseReviewerDirectory,
)
from app.services.revision_service import RevisionCycleService

logger = logging.getLogger("abstractflow.workflow")


@dataclass
class Workflow:
    store: AbstractStore
    directory: ReviewerDirectory
    event_config: EventConfigProvider
    dispatcher: NotificationDispatcher
    abstracts: AbstractService
    assignment: ReviewerAssignmentService
    submission: ReviewSubmissionService
    revision: RevisionCycleService
    decision: AbstractDecisionService
    progress: ReviewProgressService
    delivery: Optional[NotificationDeliveryService] = None

    def with_dispatcher(self, dispatcher: NotificationDispatcher) -> "Workflow":
        return _assemble(
            store=self.store,
            directory=self.directory,
            event_config=self.event_config,
            dispatcher=dispatcher,
            delivery=self.delivery,
        )

    def for_request(self, background_tasks: BackgroundTasks) -> "Workflow":
        # 显式注入的 dispatcher（单测）保持不变
        if self.delivery is None:
            return self
        return self.with_dispatcher(BackgroundTaskDispatcher(background_tasks, self.delivery))

    def close(self) -> None:
        self.store.close()


def _assemble(
    *,
    store: AbstractStore,
    directory: ReviewerDirectory,
    event_config: EventConfigProvider,
    dispatcher: NotificationDispatcher,
    delivery: Optional[NotificationDeliveryService],
) -> Workflow:
    deps = {"store": store, "event_config": event_config, "dispatcher": dispatcher}
    return Workflow(
        store=store,
        directory=directory,
        event_config=event_config,
        dispatcher=dispatcher,
        abstracts=AbstractService(**deps),
        assignment=ReviewerAssignmentService(**deps),
        submission=ReviewSubmissionService(**deps),
        revision=RevisionCycleService(**deps),
        decision=AbstractDecisionService(**deps),
        progress=ReviewProgressService(store=store, directory=directory),
        delivery=delivery,
    )


def build_workflow(
    config: Optional[WorkflowConfig] = None,
    *,
    store: Optional[AbstractStore] = None,
    directory: Optional[ReviewerDirectory] = None,
    event_config: Optional[EventConfigProvider] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    email_service: Optional[EmailService] = None,
) -> Workflow:
    cfg = config or WorkflowConfig.from_env()

    if store is None:
        if cfg.store_backend == "postgres":
            store = PostgresAbstractStore(
                cfg.database_url,
                max_retries=cfg.max_retries,
                timeout_seconds=cfg.transaction_timeout_seconds,
            )
        else:
            store = InMemoryAbstractStore(
                max_retries=cfg.max_retries, timeout_seconds=cfg.transaction_timeout_seconds
            )

    if directory is None:
        if isinstance(store, InMemoryAbstractStore):
            directory = InMemoryReviewerDirectory(store=store)
        else:
            directory = SupabaseReviewerDirectory()

    if event_config is None:
        if isinstance(store, InMemoryAbstractStore):
            event_config = StaticEventConfigProvider()
        else:
            event_config = SupabaseEventConfigProvider()

    delivery: Optional[NotificationDeliveryService] = None
    if dispatcher is None:
        log_client = None if isinstance(store, InMemoryAbstractStore) else supabase_admin
        delivery = NotificationDeliveryService(
            directory=directory,
            event_config=event_config,
            email_service=email_service or EmailService(log_client=log_client),
            inbox=NotificationService(),
        )
        dispatcher = InlineNotificationDispatcher(delivery)

    logger.info("[Workflow] built with %s store", type(store).__name__)
    return _assemble(
        store=store,
        directory=directory,
        event_config=event_config,
        dispatcher=dispatcher,
        delivery=delivery,
    )


_workflow: Optional[Workflow] = None
_workflow_lock = threading.Lock()


def get_workflow() -> Workflow:
    """进程级单例（延迟构建，避免 import 时读取数据库配置）"""
    global _workflow
    if _workflow is None:
        with _workflow_lock:
            if _workflow is None:
                _workflow = build_workflow()
    return _workflow


def set_workflow(workflow: Optional[Workflow]) -> None:
    global _workflow
    with _workflow_lock:
        _workflow = workflow
