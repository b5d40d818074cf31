"""
队列处理器：每个周期认领一个任务，分发给对应处理器，记录结果。

- 同一进程内同一时间只处理一个任务（调度器 max_instances=1，上一周期未结束则跳过）；
- 多实例横向扩展时，靠 TaskQueue.claim 的原子认领保证不重复处理；
- 任务失败不自动重试，重新入队由调用方决定。
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from xarchive.db.task_queue import TaskQueue
from xarchive.exceptions import UnknownTaskTypeError, ValidationError
from xarchive.handlers import TaskHandler
from xarchive.models import TaskInfo, TaskParams, TaskType, parse_params
from xarchive.scheduler import JobConfig, SchedulerHandle, start_scheduler

logger = logging.getLogger(__name__)

# 开始执行前上报的粗粒度进度
START_PROGRESS = 10

LEGACY_DEFAULT_SCROLL_TIMES = 10


def default_worker_id() -> str:
    return f"worker_{int(datetime.now().timestamp() * 1000)}"


def decode_params(task: TaskInfo) -> Tuple[TaskType, TaskParams]:
    """
    解析任务类型与参数。

    旧数据没有 params 列：视为 extract 任务，参数取旧的 url / scroll_times 列。
    """
    if not task.params:
        raw: Any = {
            "url": task.url,
            "scroll_times": task.scroll_times or LEGACY_DEFAULT_SCROLL_TIMES,
        }
        return TaskType.EXTRACT, parse_params(TaskType.EXTRACT, raw)

    task_type = TaskType.parse(task.type)
    try:
        raw = json.loads(task.params)
    except ValueError as e:
        raise ValidationError(f"params 不是合法 JSON：{e}", field="params") from e
    return task_type, parse_params(task_type, raw)


class QueueProcessor:
    """单实例轮询处理器。"""

    def __init__(
        self,
        queue: TaskQueue,
        handlers: Mapping[TaskType, TaskHandler],
        worker_id: Optional[str] = None,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        :param on_stop: 停止时在轮询线程上执行的收尾函数（释放与该线程绑定的资源）
        """
        self._queue = queue
        self._handlers: Dict[TaskType, TaskHandler] = dict(handlers)
        self.worker_id = worker_id or default_worker_id()
        self._on_stop = on_stop
        self._handle: Optional[SchedulerHandle] = None

    def start(self, interval_ms: int = 2000, sweep_job: Optional[JobConfig] = None) -> None:
        """启动后台轮询（重复调用无副作用）。"""
        if self._handle is not None:
            return
        self._handle = start_scheduler(self.tick, interval_ms, sweep_job=sweep_job)
        logger.info("队列处理器已启动：worker_id=%s interval_ms=%s", self.worker_id, interval_ms)

    def stop(self, wait: bool = True) -> None:
        """
        停止轮询；wait=True 时等待当前任务执行完。

        on_stop 在当前任务结束后于轮询线程上执行；它抛出的异常在 scheduler 关闭后再抛出。
        """
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            if self._on_stop is not None:
                handle.run_on_worker(self._on_stop)
        finally:
            handle.shutdown(wait=wait)
            logger.info("队列处理器已停止：worker_id=%s", self.worker_id)

    def tick(self) -> Optional[str]:
        """
        执行一个周期。

        Returns:
            本周期处理的任务 ID；队列为空或存储不可用时为 None
        """
        try:
            task = self._queue.claim(self.worker_id)
        except Exception:
            logger.exception("认领任务失败，下个周期重试：worker_id=%s", self.worker_id)
            return None
        if task is None:
            return None

        try:
            self._process(task)
        except Exception:
            # 这里只会是记录结果时的存储异常，任务本身的异常已在 _process 内转为失败
            logger.exception("记录任务结果失败：task_id=%s", task.task_id)
        return task.task_id

    def _process(self, task: TaskInfo) -> None:
        task_id = task.task_id
        try:
            task_type, params = decode_params(task)
        except UnknownTaskTypeError as e:
            logger.error("未知任务类型，直接失败：task_id=%s type=%s", task_id, task.type)
            self._queue.fail(task_id, str(e))
            return
        except ValidationError as e:
            logger.error("任务参数不合法：task_id=%s err=%s", task_id, e)
            self._queue.fail(task_id, str(e))
            return

        handler = self._handlers.get(task_type)
        if handler is None:
            self._queue.fail(task_id, f"不支持的任务类型: {task_type.value}")
            return

        logger.info("开始处理任务：task_id=%s type=%s worker_id=%s", task_id, task_type.value, self.worker_id)
        self._queue.update_progress(task_id, START_PROGRESS, f"正在处理 {task_type.value} 任务...")

        try:
            result = handler.execute(params)
        except Exception as e:
            logger.exception("任务执行失败：task_id=%s type=%s", task_id, task_type.value)
            self._queue.fail(task_id, str(e) or e.__class__.__name__)
            return

        if task_type is TaskType.EXTRACT:
            completed = self._queue.complete(task_id, result_id=result["extraction_id"])
            if not completed:
                # 执行期间任务被取消：提取记录已写入但没有 completed 任务指向它
                logger.warning(
                    "任务已不在 processing 状态，提取记录成为孤立记录：task_id=%s extraction_id=%s",
                    task_id,
                    result["extraction_id"],
                )
                return
        elif not self._queue.complete(task_id, result=result, result_kind=task_type.value):
            logger.info("任务已不在 processing 状态，丢弃结果：task_id=%s type=%s", task_id, task_type.value)
            return
        logger.info("任务处理完成：task_id=%s type=%s", task_id, task_type.value)
