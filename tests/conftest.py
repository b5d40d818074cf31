from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from xarchive.crawler.automation import AutomationClient
from xarchive.db.extraction_repository import ExtractionRepository
from xarchive.db.pool import SqlitePool, init_schema
from xarchive.db.task_queue import TaskQueue
from xarchive.exceptions import AutomationError

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


class FakeAutomationClient(AutomationClient):
    """按顺序返回预设快照；超出后重复最后一个。"""

    def __init__(self, snapshots: List[str], fail_at_snapshot: Optional[int] = None) -> None:
        self.snapshots = list(snapshots)
        self.fail_at_snapshot = fail_at_snapshot
        self.opened: List[str] = []
        self.closed: List[str] = []
        self.keys: List[Any] = []
        self.waits: List[int] = []
        self.snapshot_count = 0

    def open_page(self, url: str) -> str:
        self.opened.append(url)
        return f"page-{len(self.opened)}"

    def snapshot(self, handle: str) -> str:
        idx = self.snapshot_count
        self.snapshot_count += 1
        if self.fail_at_snapshot is not None and idx == self.fail_at_snapshot:
            raise AutomationError("snapshot failed", handle=handle)
        return self.snapshots[min(idx, len(self.snapshots) - 1)]

    def press_key(self, handle: str, key: str, delay_ms: int = 0) -> None:
        self.keys.append((key, delay_ms))

    def wait(self, handle: str, ms: int) -> None:
        self.waits.append(ms)

    def close(self, handle: str) -> None:
        self.closed.append(handle)


class FakeCompletion:
    """记录 prompt，返回预设回复。"""

    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls: List[Dict[str, str]] = []

    def complete(self, model_hint: str, prompt: str) -> str:
        self.calls.append({"model": model_hint, "prompt": prompt})
        return self.reply


def make_tweet(handle: str, status_id: int, text: str, html: Optional[str] = None) -> Dict[str, Any]:
    return {
        "author": {"name": handle.title(), "handle": f"@{handle}", "avatar": ""},
        "content": {"text": text, "html": html if html is not None else text, "has_more": False},
        "media": [],
        "card": None,
        "time": "上午4:11 · 2025年8月20日",
        "datetime": None,
        "status_link": f"/{handle}/status/{status_id}",
        "stats": {"replies": "0", "retweets": "0", "likes": "0", "bookmarks": "0", "views": "0"},
    }


@pytest.fixture
def sample_result() -> Dict[str, Any]:
    tweets = [
        make_tweet("alice", 1, "First part about Rust"),
        make_tweet("alice", 2, "Second part"),
        make_tweet("bob", 3, "Nice thread"),
    ]
    return {
        "url": "https://x.com/alice/status/1",
        "tweets": tweets,
        "main_thread": tweets[:2],
        "replies": tweets[2:],
        "count": 3,
        "filtered_count": 1,
        "scroll_steps": 2,
    }


@pytest.fixture
def db_pool(tmp_path):
    pool = SqlitePool(str(tmp_path / "xarchive.db"), pool_size=4)
    init_schema(pool)
    yield pool
    pool.close()


@pytest.fixture
def task_queue(db_pool) -> TaskQueue:
    return TaskQueue(db_pool, eta_seconds_per_task=30)


@pytest.fixture
def extraction_repo(db_pool) -> ExtractionRepository:
    return ExtractionRepository(db_pool)
