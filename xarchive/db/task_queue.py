"""
任务队列持久化层。

所有状态迁移都是带条件的 UPDATE（WHERE status = ...），
因此状态只会单向前进：pending -> processing -> completed/failed/cancelled，
pending 也可以直接 -> cancelled。
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from xarchive.db.pool import DbPool
from xarchive.exceptions import UnknownTaskTypeError, ValidationError
from xarchive.models import (
    TERMINAL_STATUSES,
    ExtractParams,
    QueueStatus,
    TaskInfo,
    TaskStatus,
    TaskType,
    parse_params,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, task_id, type, url, scroll_times, params, status, priority, worker_id, "
    "progress, progress_message, created_at, started_at, completed_at, "
    "error_message, result_id, user_id"
)

_STATUS_FILTERS = ("all",) + tuple(s.value for s in TaskStatus)

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL_STATUSES)

_QUEUE_PREVIEW_LIMIT = 10
_RECENT_LIMIT = 5


def generate_task_id() -> str:
    """生成对外任务 ID：task_<毫秒时间戳>_<9 位随机串>。"""
    ms = int(datetime.now().timestamp() * 1000)
    return f"task_{ms}_{uuid.uuid4().hex[:9]}"


class TaskQueue:
    """任务队列数据访问层。"""

    def __init__(self, db_pool: DbPool, eta_seconds_per_task: int = 30):
        self._db = db_pool
        self._eta_seconds = eta_seconds_per_task

    # ========== 入队 ==========

    def enqueue(
        self,
        task_type: Any,
        params: Dict[str, Any],
        priority: int = 0,
        user_id: Optional[str] = None,
    ) -> str:
        """
        添加任务到队列，立即返回任务 ID（不等待执行）。

        Args:
            task_type: 任务类型（TaskType 或其字符串值）
            params: 任务参数（JSON 对象）
            priority: 优先级，数字越小越优先
            user_id: 可选的用户标识

        Returns:
            任务 ID

        Raises:
            ValidationError: 类型或参数不合法，此时不会创建任务行
        """
        try:
            ttype = TaskType.parse(task_type)
        except UnknownTaskTypeError as e:
            raise ValidationError(str(e), field="type") from e
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ValidationError("priority 必须是整数", field="priority")
        if user_id is not None and (not isinstance(user_id, str) or len(user_id) > 128):
            raise ValidationError("user_id 必须是不超过 128 字符的字符串", field="user_id")

        parsed = parse_params(ttype, params)

        # extract 任务同时写旧列，保持对旧数据/旧调用方的兼容
        url, scroll_times = "", 0
        if isinstance(parsed, ExtractParams):
            url, scroll_times = parsed.url, parsed.scroll_times

        task_id = generate_task_id()
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO task_queue (
                        task_id, type, url, scroll_times, params, status, priority,
                        progress, created_at, user_id
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        task_id,
                        ttype.value,
                        url,
                        scroll_times,
                        parsed.to_json(),
                        TaskStatus.PENDING.value,
                        priority,
                        0,
                        datetime.now(),
                        user_id,
                    ),
                )
        logger.info("任务已入队：task_id=%s type=%s priority=%s", task_id, ttype.value, priority)
        return task_id

    def add_extract_task(
        self,
        url: str,
        scroll_times: int = 10,
        user_id: Optional[str] = None,
        priority: int = 0,
    ) -> str:
        """旧接口：添加 extract 任务。"""
        return self.enqueue(
            TaskType.EXTRACT,
            {"url": url, "scroll_times": scroll_times},
            priority=priority,
            user_id=user_id,
        )

    # ========== 认领与状态迁移 ==========

    def claim(self, worker_id: str) -> Optional[TaskInfo]:
        """
        认领下一个待处理任务（优先级数字最小、创建最早），并标记为 processing。

        每次尝试在独立事务中执行：先读出候选行，再用带 status 条件的 UPDATE 抢占。
        并发认领同一行时只有一个 UPDATE 命中，其余重新选择；
        每次落败都意味着另一个 worker 成功认领了一行，所以循环必然结束。
        """
        while True:
            with self._db.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        SELECT {_COLUMNS} FROM task_queue
                        WHERE status = %s
                        ORDER BY priority ASC, created_at ASC, id ASC
                        LIMIT 1
                        """,
                        (TaskStatus.PENDING.value,),
                    )
                    row = cur.fetchone()
                    if row is None:
                        return None

                    now = datetime.now()
                    cur.execute(
                        """
                        UPDATE task_queue
                        SET status = %s, started_at = %s, worker_id = %s
                        WHERE id = %s AND status = %s
                        """,
                        (
                            TaskStatus.PROCESSING.value,
                            now,
                            worker_id,
                            row["id"],
                            TaskStatus.PENDING.value,
                        ),
                    )
                    if cur.rowcount == 1:
                        row.update(status=TaskStatus.PROCESSING.value, started_at=now, worker_id=worker_id)
                        logger.info("任务已认领：task_id=%s worker_id=%s", row["task_id"], worker_id)
                        return TaskInfo.from_row(row)

            logger.debug("认领冲突，重新选择：task_id=%s worker_id=%s", row["task_id"], worker_id)

    def update_progress(self, task_id: str, progress: int, message: Optional[str] = None) -> bool:
        """更新进度（仅 processing 状态生效），progress 限制在 0-100。"""
        progress = max(0, min(int(progress), 100))
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE task_queue
                    SET progress = %s, progress_message = %s
                    WHERE task_id = %s AND status = %s
                    """,
                    (progress, message, task_id, TaskStatus.PROCESSING.value),
                )
                return cur.rowcount == 1

    def complete(
        self,
        task_id: str,
        result_id: Optional[int] = None,
        result: Optional[Dict[str, Any]] = None,
        result_kind: Optional[str] = None,
    ) -> bool:
        """
        标记任务完成。

        Args:
            task_id: 任务 ID
            result_id: 结果引用（extract 任务为提取记录 ID）
            result: 非 extract 任务的完整结果，写入 task_results
            result_kind: 结果类型（translate/tag/summary）

        Returns:
            是否发生了 processing -> completed 迁移（任务已被取消时为 False）
        """
        now = datetime.now()
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE task_queue
                    SET status = %s, completed_at = %s, progress = 100, result_id = %s
                    WHERE task_id = %s AND status = %s
                    """,
                    (TaskStatus.COMPLETED.value, now, result_id, task_id, TaskStatus.PROCESSING.value),
                )
                if cur.rowcount != 1:
                    logger.warning("任务不在 processing 状态，忽略完成：task_id=%s", task_id)
                    return False
                if result is not None:
                    cur.execute(
                        """
                        INSERT INTO task_results (task_id, kind, payload, created_at)
                        VALUES (%s, %s, %s, %s)
                        """,
                        (task_id, result_kind or "", json.dumps(result, ensure_ascii=False), now),
                    )
        logger.info("任务完成：task_id=%s result_id=%s", task_id, result_id)
        return True

    def fail(self, task_id: str, error: str) -> bool:
        """标记任务失败（不自动重试）。"""
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE task_queue
                    SET status = %s, completed_at = %s, error_message = %s
                    WHERE task_id = %s AND status = %s
                    """,
                    (TaskStatus.FAILED.value, datetime.now(), error, task_id, TaskStatus.PROCESSING.value),
                )
                changed = cur.rowcount == 1
        if changed:
            logger.warning("任务失败：task_id=%s error=%s", task_id, error)
        else:
            logger.warning("任务不在 processing 状态，忽略失败：task_id=%s", task_id)
        return changed

    def cancel(self, task_id: str) -> bool:
        """取消任务（仅 pending/processing；协作式，不打断正在执行的处理器）。"""
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE task_queue
                    SET status = %s, completed_at = %s
                    WHERE task_id = %s AND status IN (%s, %s)
                    """,
                    (
                        TaskStatus.CANCELLED.value,
                        datetime.now(),
                        task_id,
                        TaskStatus.PENDING.value,
                        TaskStatus.PROCESSING.value,
                    ),
                )
                changed = cur.rowcount == 1
        if changed:
            logger.info("任务已取消：task_id=%s", task_id)
        return changed

    # ========== 查询 ==========

    def get_task(self, task_id: str) -> Optional[TaskInfo]:
        """获取任务详情。"""
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM task_queue WHERE task_id = %s", (task_id,))
                row = cur.fetchone()
        return TaskInfo.from_row(row) if row else None

    def get_result(self, task_id: str) -> Optional[Dict[str, Any]]:
        """获取非 extract 任务的结果。"""
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT kind, payload FROM task_results WHERE task_id = %s", (task_id,))
                row = cur.fetchone()
        if not row:
            return None
        return {"kind": row["kind"], "payload": json.loads(row["payload"])}

    def status(
        self,
        page: int = 1,
        page_size: int = 10,
        status_filter: str = "all",
        now: Optional[datetime] = None,
    ) -> QueueStatus:
        """
        队列概览（支持分页）。

        Args:
            page: 页码（从 1 开始）
            page_size: 每页条数（1-100）
            status_filter: all 或某个状态名
            now: 当前时间（测试用）
        """
        if status_filter not in _STATUS_FILTERS:
            raise ValidationError(f"filter 只支持 {', '.join(_STATUS_FILTERS)}", field="filter")
        page = max(int(page), 1)
        page_size = max(1, min(int(page_size), 100))
        now = now or datetime.now()
        since = now - timedelta(hours=24)

        where = "created_at > %s"
        where_params: List[Any] = [since]
        if status_filter != "all":
            where += " AND status = %s"
            where_params.append(status_filter)

        with self._db.connection() as conn:
            with conn.cursor() as cur:
                # 统计最近 24 小时各状态任务数
                cur.execute(
                    "SELECT status, COUNT(*) AS cnt FROM task_queue WHERE created_at > %s GROUP BY status",
                    (since,),
                )
                summary = {s.value: 0 for s in TaskStatus}
                for r in cur.fetchall():
                    summary[r["status"]] = int(r["cnt"])

                cur.execute(f"SELECT COUNT(*) AS cnt FROM task_queue WHERE {where}", tuple(where_params))
                total = int(cur.fetchone()["cnt"])

                # processing 优先，其次 pending，终态按结束时间倒序
                cur.execute(
                    f"""
                    SELECT {_COLUMNS} FROM task_queue
                    WHERE {where}
                    ORDER BY
                        CASE WHEN status = 'processing' THEN 0
                             WHEN status = 'pending' THEN 1
                             ELSE 2 END,
                        COALESCE(completed_at, created_at) DESC,
                        id DESC
                    LIMIT %s OFFSET %s
                    """,
                    tuple(where_params) + (page_size, (page - 1) * page_size),
                )
                tasks = [TaskInfo.from_row(r) for r in cur.fetchall()]

                cur.execute(
                    f"""
                    SELECT {_COLUMNS} FROM task_queue
                    WHERE status = %s
                    ORDER BY started_at DESC
                    LIMIT 1
                    """,
                    (TaskStatus.PROCESSING.value,),
                )
                current_row = cur.fetchone()

                cur.execute(
                    """
                    SELECT task_id, type, url FROM task_queue
                    WHERE status = %s
                    ORDER BY priority ASC, created_at ASC, id ASC
                    LIMIT %s
                    """,
                    (TaskStatus.PENDING.value, _QUEUE_PREVIEW_LIMIT),
                )
                pending_rows = cur.fetchall()

                cur.execute(
                    """
                    SELECT task_id, type, url, status, completed_at, error_message
                    FROM task_queue
                    WHERE status IN (%s, %s, %s)
                    ORDER BY completed_at DESC
                    LIMIT %s
                    """,
                    _TERMINAL_VALUES + (_RECENT_LIMIT,),
                )
                recent_rows = cur.fetchall()

        current_task = None
        if current_row:
            current = TaskInfo.from_row(current_row)
            current_task = {
                "task_id": current.task_id,
                "type": current.type,
                "url": current.url,
                "progress": current.progress,
                "message": current.progress_message or "处理中...",
                "elapsed": current.elapsed_seconds(now) or 0,
            }

        # 简单估算：每个任务固定耗时
        queue = []
        for position, r in enumerate(pending_rows, start=1):
            seconds = position * self._eta_seconds
            queue.append({
                "position": position,
                "task_id": r["task_id"],
                "type": r["type"],
                "url": r["url"],
                "estimatedSeconds": seconds,
                "estimatedTime": f"{seconds}秒后",
            })

        recent = [
            {
                "task_id": r["task_id"],
                "type": r["type"],
                "url": r["url"],
                "status": r["status"],
                "completedAt": r["completed_at"].isoformat() if r["completed_at"] else None,
                "error": r["error_message"],
            }
            for r in recent_rows
        ]

        return QueueStatus(
            summary=summary,
            current_task=current_task,
            queue=queue,
            recent=recent,
            tasks=tasks,
            page=page,
            page_size=page_size,
            total=total,
        )

    # ========== 清理 ==========

    def sweep(self, retention_days: int = 7, now: Optional[datetime] = None) -> int:
        """删除结束时间早于保留期的终态任务（及其结果），返回删除的任务数。"""
        cutoff = (now or datetime.now()) - timedelta(days=retention_days)
        terminal_in = "status IN (%s, %s, %s)"
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    DELETE FROM task_results WHERE task_id IN (
                        SELECT task_id FROM task_queue
                        WHERE {terminal_in} AND completed_at < %s
                    )
                    """,
                    _TERMINAL_VALUES + (cutoff,),
                )
                cur.execute(
                    f"DELETE FROM task_queue WHERE {terminal_in} AND completed_at < %s",
                    _TERMINAL_VALUES + (cutoff,),
                )
                deleted = cur.rowcount
        logger.info("清理旧任务：deleted=%s retention_days=%s", deleted, retention_days)
        return deleted
