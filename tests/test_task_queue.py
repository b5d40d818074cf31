from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import List

import pytest

from xarchive.db.task_queue import TaskQueue, generate_task_id
from xarchive.exceptions import ValidationError
from xarchive.models import TaskStatus, TaskType

URL = "https://x.com/alice/status/1001"


def _extract(queue: TaskQueue, priority: int = 0) -> str:
    return queue.enqueue("extract", {"url": URL, "scroll_times": 3}, priority=priority)


def test_generate_task_id_format() -> None:
    task_id = generate_task_id()
    prefix, ms, suffix = task_id.split("_")
    assert prefix == "task"
    assert ms.isdigit()
    assert len(suffix) == 9
    assert generate_task_id() != task_id


def test_enqueue_then_status_shows_pending(task_queue: TaskQueue) -> None:
    task_id = _extract(task_queue)

    status = task_queue.status()
    assert status.summary["pending"] == 1
    assert status.queue == [{
        "position": 1,
        "task_id": task_id,
        "type": "extract",
        "url": URL,
        "estimatedSeconds": 30,
        "estimatedTime": "30秒后",
    }]
    assert status.current_task is None

    data = status.to_dict()
    assert set(data) == {"summary", "currentTask", "queue", "recent", "allTasks", "pagination"}
    assert data["allTasks"][0]["task_id"] == task_id
    assert data["allTasks"][0]["params"] == {"url": URL, "scroll_times": 3, "max_items": None}
    assert data["pagination"] == {"page": 1, "pageSize": 10, "total": 1, "totalPages": 1}


def test_enqueue_accepts_camel_case_params(task_queue: TaskQueue) -> None:
    task_id = task_queue.enqueue("translate", {"extractionId": 7, "targetLang": "English"})
    task = task_queue.get_task(task_id)
    assert task is not None
    assert task.type == "translate"
    assert task.status is TaskStatus.PENDING


@pytest.mark.parametrize(
    "task_type,params,field",
    [
        ("bogus", {}, "type"),
        ("extract", {"url": "not a url"}, "url"),
        ("extract", {}, "url"),
        ("translate", {}, "extractionId"),
        ("tag", {"extractionId": 0}, "extractionId"),
        ("tag", ["not", "an", "object"], "params"),
    ],
)
def test_enqueue_validation_creates_no_row(task_queue: TaskQueue, task_type, params, field) -> None:
    with pytest.raises(ValidationError) as exc:
        task_queue.enqueue(task_type, params)
    assert exc.value.field == field
    assert task_queue.status().total == 0


def test_enqueue_rejects_bad_priority_and_user(task_queue: TaskQueue) -> None:
    with pytest.raises(ValidationError):
        task_queue.enqueue("tag", {"extraction_id": 1}, priority="high")
    with pytest.raises(ValidationError):
        task_queue.enqueue("tag", {"extraction_id": 1}, user_id="x" * 200)
    assert task_queue.status().total == 0


def test_add_extract_task_writes_legacy_columns(task_queue: TaskQueue) -> None:
    task_id = task_queue.add_extract_task(URL, scroll_times=5, user_id="u1")
    task = task_queue.get_task(task_id)
    assert task.url == URL
    assert task.scroll_times == 5
    assert task.user_id == "u1"


def test_claim_orders_by_priority_then_age(task_queue: TaskQueue) -> None:
    low = _extract(task_queue, priority=5)
    first = _extract(task_queue, priority=0)
    second = _extract(task_queue, priority=0)

    claimed = [task_queue.claim("w1").task_id for _ in range(3)]
    assert claimed == [first, second, low]
    assert task_queue.claim("w1") is None


def test_claim_marks_processing(task_queue: TaskQueue) -> None:
    task_id = _extract(task_queue)
    task = task_queue.claim("w1")

    assert task.task_id == task_id
    assert task.status is TaskStatus.PROCESSING
    assert task.worker_id == "w1"
    assert task.started_at is not None

    stored = task_queue.get_task(task_id)
    assert stored.status is TaskStatus.PROCESSING
    assert stored.worker_id == "w1"


def test_complete_only_from_processing(task_queue: TaskQueue) -> None:
    task_id = _extract(task_queue)
    assert task_queue.complete(task_id, result_id=1) is False

    task_queue.claim("w1")
    assert task_queue.complete(task_id, result_id=42) is True

    task = task_queue.get_task(task_id)
    assert task.status is TaskStatus.COMPLETED
    assert task.progress == 100
    assert task.result_id == 42
    assert task.completed_at is not None

    # 终态不再变化
    assert task_queue.fail(task_id, "late") is False
    assert task_queue.cancel(task_id) is False
    assert task_queue.get_task(task_id).status is TaskStatus.COMPLETED


def test_fail_records_error(task_queue: TaskQueue) -> None:
    task_id = _extract(task_queue)
    task_queue.claim("w1")
    assert task_queue.fail(task_id, "boom") is True

    task = task_queue.get_task(task_id)
    assert task.status is TaskStatus.FAILED
    assert task.error == "boom"

    recent = task_queue.status().recent
    assert recent[0]["task_id"] == task_id
    assert recent[0]["status"] == "failed"
    assert recent[0]["error"] == "boom"
    assert recent[0]["completedAt"]


def test_cancel_pending_task_is_never_claimed(task_queue: TaskQueue) -> None:
    task_id = _extract(task_queue)
    assert task_queue.cancel(task_id) is True
    assert task_queue.get_task(task_id).status is TaskStatus.CANCELLED
    assert task_queue.claim("w1") is None


def test_cancel_while_processing_wins_over_completion(task_queue: TaskQueue) -> None:
    task_id = _extract(task_queue)
    task_queue.claim("w1")
    assert task_queue.cancel(task_id) is True

    assert task_queue.complete(task_id, result_id=1) is False
    assert task_queue.get_task(task_id).status is TaskStatus.CANCELLED


def test_cancel_unknown_task(task_queue: TaskQueue) -> None:
    assert task_queue.cancel("task_0_missing") is False


def test_update_progress_clamped_and_only_when_processing(task_queue: TaskQueue) -> None:
    task_id = _extract(task_queue)
    assert task_queue.update_progress(task_id, 50) is False

    task_queue.claim("w1")
    assert task_queue.update_progress(task_id, 150, "快好了") is True
    task = task_queue.get_task(task_id)
    assert task.progress == 100
    assert task.progress_message == "快好了"

    task_queue.update_progress(task_id, -5)
    assert task_queue.get_task(task_id).progress == 0


def test_current_task_in_status(task_queue: TaskQueue) -> None:
    task_id = _extract(task_queue)
    task_queue.claim("w1")
    task_queue.update_progress(task_id, 10, "正在处理 extract 任务...")

    current = task_queue.status().current_task
    assert current["task_id"] == task_id
    assert current["progress"] == 10
    assert current["message"] == "正在处理 extract 任务..."
    assert current["elapsed"] >= 0


def test_result_stored_with_completion(task_queue: TaskQueue) -> None:
    task_id = task_queue.enqueue(TaskType.TAG, {"extraction_id": 3})
    task_queue.claim("w1")
    payload = {"extraction_id": 3, "tags": ["tech"], "reasons": {"tech": "科技话题"}}
    assert task_queue.complete(task_id, result=payload, result_kind="tag") is True

    assert task_queue.get_result(task_id) == {"kind": "tag", "payload": payload}
    assert task_queue.get_result("task_0_missing") is None


def test_status_ordering_and_pagination(task_queue: TaskQueue) -> None:
    t1, t2, t3, t4 = (_extract(task_queue) for _ in range(4))
    task_queue.claim("w1")
    task_queue.complete(t1, result_id=1)
    task_queue.claim("w1")

    status = task_queue.status()
    assert [t.task_id for t in status.tasks] == [t2, t4, t3, t1]
    assert status.summary == {
        "pending": 2,
        "processing": 1,
        "completed": 1,
        "failed": 0,
        "cancelled": 0,
    }
    assert [q["estimatedSeconds"] for q in status.queue] == [30, 60]

    page2 = task_queue.status(page=2, page_size=2)
    assert [t.task_id for t in page2.tasks] == [t3, t1]
    assert page2.total_pages == 2

    pending_only = task_queue.status(status_filter="pending")
    assert [t.task_id for t in pending_only.tasks] == [t4, t3]
    assert pending_only.total == 2


def test_status_rejects_unknown_filter(task_queue: TaskQueue) -> None:
    with pytest.raises(ValidationError):
        task_queue.status(status_filter="done")


def test_status_window_is_24_hours(task_queue: TaskQueue) -> None:
    _extract(task_queue)
    later = datetime.now() + timedelta(hours=25)
    status = task_queue.status(now=later)
    assert status.total == 0
    assert status.summary["pending"] == 0
    # 排队预估不受时间窗口限制
    assert len(status.queue) == 1


def test_sweep_deletes_old_terminal_tasks_only(task_queue: TaskQueue) -> None:
    done = task_queue.enqueue("tag", {"extraction_id": 1})
    pending = _extract(task_queue)
    task_queue.claim("w1")
    task_queue.complete(done, result={"tags": ["tech"]}, result_kind="tag")

    assert task_queue.sweep(retention_days=7) == 0

    deleted = task_queue.sweep(retention_days=7, now=datetime.now() + timedelta(days=8))
    assert deleted == 1
    assert task_queue.get_task(done) is None
    assert task_queue.get_result(done) is None
    assert task_queue.get_task(pending).status is TaskStatus.PENDING


def test_concurrent_claims_never_share_a_task(task_queue: TaskQueue) -> None:
    expected = {_extract(task_queue) for _ in range(40)}
    claimed: List[str] = []
    lock = threading.Lock()
    errors: List[BaseException] = []

    def worker(n: int) -> None:
        try:
            while True:
                task = task_queue.claim(f"w{n}")
                if task is None:
                    return
                with lock:
                    claimed.append(task.task_id)
        except BaseException as e:  # 记录后在主线程断言
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert errors == []
    assert len(claimed) == len(expected)
    assert set(claimed) == expected
