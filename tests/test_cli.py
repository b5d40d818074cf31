from __future__ import annotations

import json
import logging
import threading

import pytest
from click.testing import CliRunner

import xarchive.main as main_module
from xarchive.config import Settings
from xarchive.exceptions import AutomationError
from xarchive.logging_config import NOISY_LOGGERS, resolve_level, setup_logging
from xarchive.processor import QueueProcessor
from xarchive.scheduler import JobConfig, _parse_cron, start_scheduler


@pytest.fixture
def runner(tmp_path, monkeypatch) -> CliRunner:
    cfg = Settings(DB_BACKEND="sqlite", SQLITE_PATH=str(tmp_path / "cli.db"), DB_POOL_SIZE=1)
    monkeypatch.setattr(main_module, "settings", cfg)
    return CliRunner()


def test_enqueue_status_cancel(runner: CliRunner) -> None:
    res = runner.invoke(main_module.cli, ["enqueue", "extract", '{"url": "https://x.com/a/status/1"}', "--priority", "2"])
    assert res.exit_code == 0, res.output
    task_id = res.output.strip().splitlines()[-1]
    assert task_id.startswith("task_")

    res = runner.invoke(main_module.cli, ["status", "--task-id", task_id])
    assert res.exit_code == 0, res.output
    data = json.loads(res.output[res.output.index("{"):])
    assert data["status"] == "pending"
    assert data["priority"] == 2
    assert data["result"] is None

    res = runner.invoke(main_module.cli, ["cancel", task_id])
    assert res.exit_code == 0
    res = runner.invoke(main_module.cli, ["cancel", task_id])
    assert res.exit_code != 0


def test_enqueue_rejects_invalid_params(runner: CliRunner) -> None:
    res = runner.invoke(main_module.cli, ["enqueue", "tag", "{}"])
    assert res.exit_code == 2
    res = runner.invoke(main_module.cli, ["enqueue", "tag", "not json"])
    assert res.exit_code == 2


def test_status_rejects_unknown_filter(runner: CliRunner) -> None:
    res = runner.invoke(main_module.cli, ["status", "--filter", "done"])
    assert res.exit_code == 2


def test_sweep_command(runner: CliRunner) -> None:
    res = runner.invoke(main_module.cli, ["sweep", "--days", "1"])
    assert res.exit_code == 0
    assert "已删除 0 个任务" in res.output


def test_parse_cron() -> None:
    trigger = _parse_cron("30 3 * * *")
    assert "hour='3'" in str(trigger)
    with pytest.raises(ValueError):
        _parse_cron("30 3 * *")


def test_scheduler_runs_tick_until_shutdown() -> None:
    ticked = threading.Event()
    handle = start_scheduler(ticked.set, 100, sweep_job=JobConfig("0 4 * * *", lambda: None, "sweep", "清理"))
    try:
        assert ticked.wait(timeout=5)
        assert {job.id for job in handle.scheduler.get_jobs()} == {"queue_processor_tick", "sweep"}
    finally:
        handle.shutdown(wait=True)


class EmptyQueue:
    """记录认领发生在哪个线程；队列始终为空。"""

    def __init__(self) -> None:
        self.claim_threads = []
        self.claimed = threading.Event()

    def claim(self, worker_id: str):
        self.claim_threads.append(threading.get_ident())
        self.claimed.set()
        return None


def test_processor_stop_runs_cleanup_on_tick_thread() -> None:
    queue = EmptyQueue()
    cleanup_threads = []
    processor = QueueProcessor(
        queue, {}, worker_id="w", on_stop=lambda: cleanup_threads.append(threading.get_ident())
    )

    processor.start(interval_ms=100)
    assert queue.claimed.wait(timeout=5)
    processor.stop(wait=True)

    # 浏览器这类资源必须在创建它的轮询线程上释放
    assert cleanup_threads == [queue.claim_threads[0]]
    assert cleanup_threads[0] != threading.get_ident()


def test_processor_stop_reraises_cleanup_error() -> None:
    queue = EmptyQueue()

    def _broken_cleanup() -> None:
        raise AutomationError("cannot switch to a different thread")

    processor = QueueProcessor(queue, {}, worker_id="w", on_stop=_broken_cleanup)
    processor.start(interval_ms=100)
    assert queue.claimed.wait(timeout=5)

    with pytest.raises(AutomationError):
        processor.stop(wait=True)
    # 已经停止，再次调用无副作用
    processor.stop(wait=True)


def test_shutdown_services_closes_completion_when_processor_stop_fails() -> None:
    class BrokenProcessor:
        def stop(self, wait: bool = True) -> None:
            raise AutomationError("cannot switch to a different thread")

    class Completion:
        closed = False

        def close(self) -> None:
            self.closed = True

    completion = Completion()
    main_module._shutdown_services(BrokenProcessor(), completion)
    assert completion.closed


def test_resolve_level() -> None:
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(" WARNING ") == logging.WARNING
    assert resolve_level("verbose") == logging.INFO
    assert resolve_level("") == logging.INFO


def test_setup_logging_quiets_third_party_loggers() -> None:
    assert setup_logging("DEBUG") == logging.DEBUG
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING

    setup_logging("ERROR")
    assert logging.getLogger("werkzeug").level == logging.ERROR
