"""
调度模块：APScheduler 常驻调度（队列轮询 + 可选的定时清理）。
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


TICK_JOB_ID = "queue_processor_tick"


@dataclass(frozen=True)
class SchedulerHandle:
    """对外暴露 scheduler 句柄，便于优雅停止。"""

    scheduler: BackgroundScheduler

    def run_on_worker(self, func: Callable[[], None], timeout: float = 600.0) -> bool:
        """
        停止轮询后，在执行器线程上跑一次 func 并等待其结束。

        单线程执行器下 func 排在当前周期之后执行，和轮询共用同一个线程，
        用于释放只能在创建线程上使用的资源（如 Playwright sync API）。

        :return: 超时未执行完时为 False；func 抛出的异常原样抛出
        """
        done = threading.Event()
        errors: List[BaseException] = []

        def _job() -> None:
            try:
                func()
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        self.scheduler.pause_job(TICK_JOB_ID)
        self.scheduler.add_job(
            func=_job,
            trigger="date",
            id="worker_final_job",
            name="执行器线程收尾",
            replace_existing=True,
            misfire_grace_time=None,
        )
        if not done.wait(timeout):
            logger.warning("执行器线程收尾超时：timeout=%ss", timeout)
            return False
        if errors:
            raise errors[0]
        return True

    def shutdown(self, wait: bool = True) -> None:
        self.scheduler.shutdown(wait=wait)


@dataclass
class JobConfig:
    """定时任务配置。"""
    cron_expr: str
    job_func: Callable[[], None]
    job_id: str
    job_name: str
    misfire_grace_time: int = 300


def _parse_cron(cron_expr: str) -> CronTrigger:
    """
    解析五段式 cron：min hour day month day_of_week

    例："30 3 * * *" => 每天 03:30
    """
    parts = (cron_expr or "").split()
    if len(parts) != 5:
        raise ValueError(f"CRON 格式错误，期望 5 段(min hour day month day_of_week)，实际：{cron_expr!r}")

    minute, hour, day, month, day_of_week = parts
    return CronTrigger(minute=minute, hour=hour, day=day, month=month, day_of_week=day_of_week)


def _make_wrapped_job(job_func: Callable[[], None], job_name: str) -> Callable[[], None]:
    """包装任务函数，添加日志和计时。"""
    def _wrapped_job() -> None:
        start = time.time()
        logger.info("定时任务开始执行：%s", job_name)
        try:
            job_func()
        finally:
            cost_ms = int((time.time() - start) * 1000)
            logger.info("定时任务执行结束：%s，耗时=%sms", job_name, cost_ms)
    return _wrapped_job


def start_scheduler(
    tick_func: Callable[[], object],
    interval_ms: int,
    sweep_job: Optional[JobConfig] = None,
) -> SchedulerHandle:
    """
    启动 APScheduler。

    :param tick_func: 队列轮询函数（无参，每个周期调用一次）
    :param interval_ms: 轮询间隔（毫秒）
    :param sweep_job: 旧任务清理配置（可选；不传则只能手动 sweep）
    """
    scheduler = BackgroundScheduler(
        # 单线程执行器：同一个线程跑所有周期（Playwright sync API 要求同线程）
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults={
            # 上一周期未结束时跳过，避免任务堆积
            "coalesce": True,
            "max_instances": 1,
        },
    )

    # 轮询周期很短，不加计时包装，避免刷屏
    scheduler.add_job(
        func=tick_func,
        trigger=IntervalTrigger(seconds=max(interval_ms, 100) / 1000.0),
        id=TICK_JOB_ID,
        name="任务队列轮询",
        replace_existing=True,
        misfire_grace_time=None,
    )

    if sweep_job is not None:
        scheduler.add_job(
            func=_make_wrapped_job(sweep_job.job_func, sweep_job.job_name),
            trigger=_parse_cron(sweep_job.cron_expr),
            id=sweep_job.job_id,
            name=sweep_job.job_name,
            replace_existing=True,
            misfire_grace_time=sweep_job.misfire_grace_time,
        )
        logger.info("已添加旧任务清理任务：cron=%s", sweep_job.cron_expr)

    scheduler.start()
    logger.info("APScheduler 已启动，轮询间隔=%sms", interval_ms)
    return SchedulerHandle(scheduler=scheduler)
