"""
Abstract Store: 摘要与审稿人工作量计数器的事务边界

中文注释:
1. 所有对 AbstractRecord / 审稿人计数器的写操作必须通过 `store.execute(fn)`：
   fn 正常返回即提交，抛异常即整体回滚。
2. 同一套接口同时支持真实 ACID 事务（PostgreSQL，行锁 + version 校验）
   与内存实现（进程内锁 + 暂存写入，测试/本地开发使用）。
3. version 不匹配抛 ConflictError，execute 会按配置自动重试整个读-改-写函数。
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.errors import ConflictError, DependencyError, NotFoundError, WorkflowError
from app.models.abstract import AbstractRecord, ReviewerProfile

logger = logging.getLogger("abstractflow.store")

T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UnitOfWork(ABC):
    """单次事务内可用的读写操作"""

    @abstractmethod
    def get_abstract(self, abstract_id: str) -> Optional[AbstractRecord]:
        """读取并锁定摘要（事务结束前其他写入方需等待）"""

    @abstractmethod
    def get_reviewer(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        """读取并锁定审稿人档案（含工作量计数器）"""

    @abstractmethod
    def save_abstract(self, record: AbstractRecord, *, expected_version: int) -> AbstractRecord:
        """
        写入整条摘要记录。

        expected_version 与存储中的 version 不一致时抛 ConflictError；
        成功时返回 version + 1 后的记录。
        """

    @abstractmethod
    def increment_reviewer_workload(self, reviewer_id: str) -> int:
        """assigned_abstracts_count + 1，返回新值"""


class AbstractStore(ABC):
    def __init__(self, *, max_retries: int = 3, timeout_seconds: float = 10.0) -> None:
        self.max_retries = max(1, int(max_retries))
        self.timeout_seconds = float(timeout_seconds)

    @abstractmethod
    def find_abstract_by_id(self, abstract_id: str) -> Optional[AbstractRecord]:
        """非事务读取（快照）"""

    @abstractmethod
    def list_abstracts(
        self,
        *,
        event_id: str,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[AbstractRecord]:
        """按活动列出摘要，按 updated_at 倒序"""

    @abstractmethod
    def _unit_of_work(self) -> Any:
        """返回 UnitOfWork 的上下文管理器：正常退出提交，异常退出回滚"""

    def execute(self, fn: Callable[[UnitOfWork], T]) -> T:
        """
        在单个事务内执行 fn。

        中文注释:
        - WorkflowError（校验/状态/权限等）原样抛出，事务回滚。
        - ConflictError 自动重试（有上限），超过次数后抛给调用方。
        - 其他异常视为基础设施故障，包装为可重试的 DependencyError。
        """
        retrying = Retrying(
            retry=retry_if_exception_type(ConflictError),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        result: T
        for attempt in retrying:
            with attempt:
                result = self._execute_once(fn)
        return result

    def _execute_once(self, fn: Callable[[UnitOfWork], T]) -> T:
        try:
            with self._unit_of_work() as uow:
                return fn(uow)
        except WorkflowError:
            raise
        except Exception as e:
            logger.error("[Store] transaction aborted: %s", e, exc_info=True)
            raise DependencyError(
                "Storage transaction aborted due to a server error. Please try again."
            ) from e

    def close(self) -> None:
        """
        释放资源（连接池等）。默认 no-op，调用方可无条件调用。
        """


# === 内存实现 ===


class _InMemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: "InMemoryAbstractStore") -> None:
        self._store = store
        self._staged_abstracts: dict[str, AbstractRecord] = {}
        self._staged_counters: dict[str, int] = {}

    def get_abstract(self, abstract_id: str) -> Optional[AbstractRecord]:
        key = str(abstract_id)
        record = self._staged_abstracts.get(key)
        if record is None:
            record = self._store._abstracts.get(key)
        return record.model_copy(deep=True) if record else None

    def get_reviewer(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        key = str(reviewer_id)
        profile = self._store._reviewers.get(key)
        if profile is None:
            return None
        count = self._staged_counters.get(key, profile.assigned_abstracts_count)
        return profile.model_copy(update={"assigned_abstracts_count": count})

    def save_abstract(self, record: AbstractRecord, *, expected_version: int) -> AbstractRecord:
        current = self._staged_abstracts.get(record.id)
        if current is None:
            current = self._store._abstracts.get(record.id)
        if current is None:
            raise NotFoundError(f"Abstract not found with id of {record.id}")
        if current.version != expected_version:
            raise ConflictError(
                f"Abstract {record.id} was modified concurrently "
                f"(expected version {expected_version}, found {current.version})"
            )
        saved = record.model_copy(
            deep=True,
            update={"version": expected_version + 1, "updated_at": _utc_now()},
        )
        self._staged_abstracts[record.id] = saved
        return saved.model_copy(deep=True)

    def increment_reviewer_workload(self, reviewer_id: str) -> int:
        key = str(reviewer_id)
        profile = self._store._reviewers.get(key)
        if profile is None:
            raise NotFoundError(f"Reviewer not found with id of {key}")
        count = self._staged_counters.get(key, profile.assigned_abstracts_count) + 1
        self._staged_counters[key] = count
        return count

    def _commit(self) -> None:
        for key, record in self._staged_abstracts.items():
            self._store._abstracts[key] = record
        for key, count in self._staged_counters.items():
            profile = self._store._reviewers[key]
            self._store._reviewers[key] = profile.model_copy(
                update={"assigned_abstracts_count": count}
            )


class InMemoryAbstractStore(AbstractStore):
    """
    进程内存储（测试 / 本地开发）

    中文注释:
    - 所有事务串行执行（单把可重入锁），等价于“文档级锁”。
    - 写入先暂存在 UnitOfWork 中，fn 成功返回后一次性落盘；失败则丢弃，天然回滚。
    """

    def __init__(self, *, max_retries: int = 3, timeout_seconds: float = 10.0) -> None:
        super().__init__(max_retries=max_retries, timeout_seconds=timeout_seconds)
        self._abstracts: dict[str, AbstractRecord] = {}
        self._reviewers: dict[str, ReviewerProfile] = {}
        self._lock = threading.RLock()

    def add_abstract(self, record: AbstractRecord) -> AbstractRecord:
        with self._lock:
            self._abstracts[record.id] = record.model_copy(deep=True)
        return record

    def add_reviewer(self, profile: ReviewerProfile) -> ReviewerProfile:
        with self._lock:
            self._reviewers[profile.id] = profile.model_copy()
        return profile

    def get_reviewer(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        with self._lock:
            profile = self._reviewers.get(str(reviewer_id))
            return profile.model_copy() if profile else None

    def list_reviewers(self) -> list[ReviewerProfile]:
        with self._lock:
            return [p.model_copy() for p in self._reviewers.values()]

    def find_abstract_by_id(self, abstract_id: str) -> Optional[AbstractRecord]:
        with self._lock:
            record = self._abstracts.get(str(abstract_id))
            return record.model_copy(deep=True) if record else None

    def list_abstracts(
        self,
        *,
        event_id: str,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[AbstractRecord]:
        wanted = {str(s) for s in statuses} if statuses is not None else None
        with self._lock:
            rows = [
                r.model_copy(deep=True)
                for r in self._abstracts.values()
                if r.event_id == str(event_id) and (wanted is None or r.status in wanted)
            ]
        rows.sort(key=lambda r: r.updated_at, reverse=True)
        return rows

    @contextmanager
    def _unit_of_work(self) -> Iterator[UnitOfWork]:
        if not self._lock.acquire(timeout=self.timeout_seconds):
            raise DependencyError("Timed out waiting for the abstract lock. Please try again.")
        try:
            uow = _InMemoryUnitOfWork(self)
            yield uow
            uow._commit()
        finally:
            self._lock.release()


# === PostgreSQL 实现 ===

_ABSTRACT_COLUMNS = (
    "id, event_id, registration_id, category_id, title, content, word_count, status, "
    "assigned_reviewers, reviews, review_comments, average_score, final_decision, decision_by, "
    "decision_date, decision_reason, revision_deadline, version, created_at, updated_at"
)


def _row_to_record(row: dict[str, Any]) -> AbstractRecord:
    data = dict(row)
    for key in ("id", "event_id", "registration_id", "category_id", "decision_by"):
        if data.get(key) is not None:
            data[key] = str(data[key])
    data["assigned_reviewers"] = [str(x) for x in (data.get("assigned_reviewers") or [])]
    data["reviews"] = list(data.get("reviews") or [])
    data["review_comments"] = list(data.get("review_comments") or [])
    if data.get("average_score") is not None:
        data["average_score"] = float(data["average_score"])
    return AbstractRecord.model_validate(data)


def _row_to_reviewer(row: dict[str, Any]) -> ReviewerProfile:
    return ReviewerProfile(
        id=str(row["id"]),
        email=row.get("email"),
        name=row.get("full_name") or "Reviewer",
        roles=list(row.get("roles") or []),
        assigned_abstracts_count=int(row.get("assigned_abstracts_count") or 0),
    )


class _PostgresUnitOfWork(UnitOfWork):
    def __init__(self, conn: Any) -> None:
        self._conn = conn

    def get_abstract(self, abstract_id: str) -> Optional[AbstractRecord]:
        with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"select {_ABSTRACT_COLUMNS} from abstracts where id::text = %s for update",
                (str(abstract_id),),
            )
            row = cur.fetchone()
        return _row_to_record(row) if row else None

    def get_reviewer(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                "select id, email, full_name, roles, assigned_abstracts_count "
                "from user_profiles where id::text = %s for update",
                (str(reviewer_id),),
            )
            row = cur.fetchone()
        return _row_to_reviewer(row) if row else None

    def save_abstract(self, record: AbstractRecord, *, expected_version: int) -> AbstractRecord:
        reviews = [r.model_dump(mode="json") for r in record.reviews]
        comments = [c.model_dump(mode="json") for c in record.review_comments]
        with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                f"""
                update abstracts set
                    category_id = %s,
                    title = %s,
                    content = %s,
                    word_count = %s,
                    status = %s,
                    assigned_reviewers = %s,
                    reviews = %s,
                    review_comments = %s,
                    average_score = %s,
                    final_decision = %s,
                    decision_by = %s,
                    decision_date = %s,
                    decision_reason = %s,
                    revision_deadline = %s,
                    version = version + 1,
                    updated_at = now()
                where id::text = %s and version = %s
                returning {_ABSTRACT_COLUMNS}
                """,
                (
                    record.category_id,
                    record.title,
                    record.content,
                    record.word_count,
                    record.status,
                    list(record.assigned_reviewers),
                    Json(reviews),
                    Json(comments),
                    record.average_score,
                    record.final_decision,
                    record.decision_by,
                    record.decision_date,
                    record.decision_reason,
                    record.revision_deadline,
                    record.id,
                    expected_version,
                ),
            )
            row = cur.fetchone()
        if not row:
            raise ConflictError(
                f"Abstract {record.id} was modified concurrently (expected version {expected_version})"
            )
        return _row_to_record(row)

    def increment_reviewer_workload(self, reviewer_id: str) -> int:
        with self._conn.cursor() as cur:
            cur.execute(
                "update user_profiles "
                "set assigned_abstracts_count = coalesce(assigned_abstracts_count, 0) + 1 "
                "where id::text = %s returning assigned_abstracts_count",
                (str(reviewer_id),),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Reviewer not found with id of {reviewer_id}")
        return int(row[0])


class PostgresAbstractStore(AbstractStore):
    """
    直连 Supabase Postgres 的事务实现（psycopg2）

    中文注释:
    - PostgREST 不支持跨表事务，因此工作流写入直接走数据库连接。
    - 每个事务设置 statement_timeout / lock_timeout，超时即中止并返回可重试错误。
    - 行锁（FOR UPDATE）保证同一摘要上的写入串行；version 条件更新作为第二道防线。
    """

    def __init__(
        self,
        dsn: str,
        *,
        max_retries: int = 3,
        timeout_seconds: float = 10.0,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(max_retries=max_retries, timeout_seconds=timeout_seconds)
        if not dsn:
            raise RuntimeError("DATABASE_URL (or SUPABASE_DB_URL) is required for the postgres store")
        self._dsn = dsn
        self._connect_fn = connect or psycopg2.connect

    def _connect(self) -> Any:
        return self._connect_fn(self._dsn)

    def find_abstract_by_id(self, abstract_id: str) -> Optional[AbstractRecord]:
        conn = self._connect()
        try:
            conn.set_session(autocommit=True)
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"select {_ABSTRACT_COLUMNS} from abstracts where id::text = %s",
                    (str(abstract_id),),
                )
                row = cur.fetchone()
            return _row_to_record(row) if row else None
        finally:
            conn.close()

    def list_abstracts(
        self,
        *,
        event_id: str,
        statuses: Optional[Iterable[str]] = None,
    ) -> list[AbstractRecord]:
        query = f"select {_ABSTRACT_COLUMNS} from abstracts where event_id::text = %s"
        params: list[Any] = [str(event_id)]
        if statuses is not None:
            query += " and status = any(%s)"
            params.append([str(s) for s in statuses])
        query += " order by updated_at desc"

        conn = self._connect()
        try:
            conn.set_session(autocommit=True)
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, tuple(params))
                rows = cur.fetchall() or []
            return [_row_to_record(r) for r in rows]
        finally:
            conn.close()

    @contextmanager
    def _unit_of_work(self) -> Iterator[UnitOfWork]:
        conn = self._connect()
        try:
            timeout_ms = int(self.timeout_seconds * 1000)
            with conn.cursor() as cur:
                cur.execute("set local statement_timeout = %s", (timeout_ms,))
                cur.execute("set local lock_timeout = %s", (timeout_ms,))
            yield _PostgresUnitOfWork(conn)
            conn.commit()
        except (pg_errors.SerializationFailure, pg_errors.DeadlockDetected) as e:
            conn.rollback()
            raise ConflictError("Concurrent modification detected. Please try again.") from e
        except (pg_errors.LockNotAvailable, pg_errors.QueryCanceled) as e:
            conn.rollback()
            raise DependencyError("Storage transaction timed out. Please try again.") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
