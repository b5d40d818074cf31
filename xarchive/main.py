"""
程序入口：常驻队列处理器 + 运维命令。

运行：
    xarchive serve
    python -m xarchive.main enqueue extract '{"url": "https://x.com/a/status/1"}'
"""

from __future__ import annotations

import json
import logging
import signal
import threading
import time

import click

from xarchive.config import Settings, settings
from xarchive.crawler.automation import create_automation_client
from xarchive.crawler.following_scraper import FollowingScraper
from xarchive.crawler.scraper_base import ScrapeOptions
from xarchive.db.extraction_repository import ExtractionRepository
from xarchive.db.pool import DbPool, create_pool, init_schema
from xarchive.db.task_queue import TaskQueue
from xarchive.exceptions import ValidationError, XArchiveError
from xarchive.handlers import build_handler_registry
from xarchive.llm_client import CompletionClient
from xarchive.logging_config import setup_logging
from xarchive.processor import QueueProcessor
from xarchive.scheduler import JobConfig
from xarchive.web.app import create_flask_app, run_flask_in_thread

logger = logging.getLogger(__name__)


def _wait_forever(stop_event: threading.Event) -> None:
    """保持主线程常驻，直到收到退出信号。"""
    while not stop_event.is_set():
        time.sleep(1)


def _shutdown_services(processor: QueueProcessor, completion: CompletionClient) -> None:
    """依次释放资源；某一步失败只记日志，不影响后面的步骤。"""
    # 等当前任务结束；自动化客户端由 processor 在轮询线程上关闭
    try:
        processor.stop(wait=True)
    except Exception:
        logger.exception("队列处理器/自动化客户端关闭失败")
    try:
        completion.close()
    except Exception:
        logger.exception("补全客户端关闭失败")


def _queue(ctx: click.Context) -> TaskQueue:
    cfg: Settings = ctx.obj["settings"]
    return TaskQueue(ctx.obj["pool"], eta_seconds_per_task=cfg.eta_seconds_per_task)


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, ensure_ascii=False, indent=2, default=str))


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """推文归档服务：任务队列 + 增量抓取。"""
    setup_logging(settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    pool: DbPool = create_pool(settings)
    init_schema(pool)
    ctx.obj["pool"] = pool
    ctx.call_on_close(pool.close)


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """启动常驻队列处理器和 HTTP 接口（SIGTERM/SIGINT 退出）。"""
    cfg: Settings = ctx.obj["settings"]
    pool: DbPool = ctx.obj["pool"]
    queue = _queue(ctx)

    automation = create_automation_client(cfg)
    completion = CompletionClient(
        api_url=cfg.llm_api_url,
        api_key=cfg.llm_api_key,
        model_map=cfg.model_map(),
        timeout_seconds=cfg.llm_timeout_seconds,
    )
    repo = ExtractionRepository(pool)
    handlers = build_handler_registry(
        automation,
        repo,
        completion,
        ScrapeOptions.from_settings(cfg),
        tag_max_content_chars=cfg.tag_max_content_chars,
        default_target_lang=cfg.default_target_lang,
    )
    # 浏览器在轮询线程上启动，也必须在轮询线程上关闭
    processor = QueueProcessor(queue, handlers, worker_id=cfg.worker_id or None, on_stop=automation.shutdown)

    sweep_job = None
    if cfg.sweep_cron.strip():
        sweep_job = JobConfig(
            cron_expr=cfg.sweep_cron,
            job_func=lambda: queue.sweep(cfg.retention_days),
            job_id="task_queue_sweep_job",
            job_name="旧任务清理任务",
        )

    stop_event = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("收到退出信号：%s，准备退出", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    logger.info("服务启动：worker_id=%s backend=%s", processor.worker_id, pool.dialect)
    processor.start(cfg.poll_interval_ms, sweep_job=sweep_job)

    if cfg.flask_enabled:
        app = create_flask_app(queue, repo, default_target_lang=cfg.default_target_lang)
        threading.Thread(
            target=run_flask_in_thread,
            args=(app, cfg.flask_host, cfg.flask_port, bool(cfg.flask_debug)),
            daemon=True,
            name="FlaskServer",
        ).start()
        logger.info("HTTP 接口已启动：host=%s port=%s", cfg.flask_host, cfg.flask_port)

    try:
        _wait_forever(stop_event)
    finally:
        _shutdown_services(processor, completion)
        logger.info("服务已退出")


@cli.command()
@click.argument("task_type")
@click.argument("params_json")
@click.option("--priority", type=int, default=0, show_default=True, help="数字越小越优先")
@click.option("--user-id", default=None, help="可选的用户标识")
@click.pass_context
def enqueue(ctx: click.Context, task_type: str, params_json: str, priority: int, user_id: str) -> None:
    """入队一个任务，输出任务 ID。

    \b
    示例：
      xarchive enqueue extract '{"url": "https://x.com/a/status/1", "scroll_times": 5}'
      xarchive enqueue translate '{"extraction_id": 12, "target_lang": "English"}'
      xarchive enqueue tag '{"extractionId": 12}'
    """
    try:
        params = json.loads(params_json)
    except ValueError as e:
        raise click.BadParameter(f"不是合法 JSON：{e}", param_hint="PARAMS_JSON") from e
    try:
        task_id = _queue(ctx).enqueue(task_type, params, priority=priority, user_id=user_id)
    except ValidationError as e:
        raise click.UsageError(str(e)) from e
    click.echo(task_id)


@cli.command()
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--page-size", type=int, default=10, show_default=True)
@click.option("--filter", "status_filter", default="all", show_default=True, help="all 或状态名")
@click.option("--task-id", default=None, help="只看单个任务（含结果）")
@click.pass_context
def status(ctx: click.Context, page: int, page_size: int, status_filter: str, task_id: str) -> None:
    """队列概览（JSON）。"""
    queue = _queue(ctx)
    if task_id:
        task = queue.get_task(task_id)
        if task is None:
            raise click.ClickException(f"任务不存在：{task_id}")
        data = task.to_dict()
        data["result"] = queue.get_result(task_id)
        _echo_json(data)
        return
    try:
        _echo_json(queue.status(page=page, page_size=page_size, status_filter=status_filter).to_dict())
    except ValidationError as e:
        raise click.UsageError(str(e)) from e


@cli.command()
@click.argument("task_id")
@click.pass_context
def cancel(ctx: click.Context, task_id: str) -> None:
    """取消 pending/processing 任务（不打断正在执行的处理器）。"""
    if not _queue(ctx).cancel(task_id):
        raise click.ClickException(f"任务不存在或已结束：{task_id}")
    click.echo(f"已取消：{task_id}")


@cli.command()
@click.option("--days", type=int, default=None, help="保留天数（默认 RETENTION_DAYS）")
@click.pass_context
def sweep(ctx: click.Context, days: int) -> None:
    """删除超过保留期的已结束任务。"""
    cfg: Settings = ctx.obj["settings"]
    deleted = _queue(ctx).sweep(cfg.retention_days if days is None else days)
    click.echo(f"已删除 {deleted} 个任务")


@cli.command()
@click.argument("username")
@click.option("--scroll-times", type=int, default=None, help="最大滚动次数（默认 DEFAULT_SCROLL_TIMES）")
@click.option("--max-items", type=int, default=None, help="最多收集的用户数")
@click.pass_context
def followings(ctx: click.Context, username: str, scroll_times: int, max_items: int) -> None:
    """抓取某个用户的关注列表（直接执行，不经过队列）。"""
    cfg: Settings = ctx.obj["settings"]
    client = create_automation_client(cfg)
    try:
        options = ScrapeOptions.from_settings(cfg, scroll_times=scroll_times, max_items=max_items)
        result = FollowingScraper(client, options).scrape_user(username)
    except XArchiveError as e:
        raise click.ClickException(str(e)) from e
    finally:
        client.shutdown()
    _echo_json(result)


if __name__ == "__main__":
    cli()
