"""
任务相关的数据模型：状态/类型枚举、任务参数校验、任务记录与队列概览。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type
from urllib.parse import urlparse

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from xarchive.exceptions import UnknownTaskTypeError, ValidationError


class TaskStatus(Enum):
    """任务状态枚举。"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskType(Enum):
    """任务类型枚举。"""
    EXTRACT = "extract"
    TRANSLATE = "translate"
    TAG = "tag"
    SUMMARY = "summary"

    @classmethod
    def parse(cls, value: Any) -> "TaskType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownTaskTypeError(f"不支持的任务类型: {value}") from None


# ---------- 任务参数 ----------


class TaskParams(BaseModel):
    """任务参数基类：同时接受 snake_case 与旧版 camelCase 键。"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json"), ensure_ascii=False)


class ExtractParams(TaskParams):
    url: str
    scroll_times: int = Field(default=10, ge=0, le=200, alias="scrollTimes")
    max_items: Optional[int] = Field(default=None, gt=0, alias="maxItems")

    @field_validator("url")
    @classmethod
    def _check_url(cls, v: str) -> str:
        v = (v or "").strip()
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("url 必须是 http(s) 链接")
        return v


class ExtractionRefParams(TaskParams):
    extraction_id: int = Field(gt=0, alias="extractionId")


class TranslateParams(ExtractionRefParams):
    target_lang: Optional[str] = Field(default=None, min_length=1, max_length=32, alias="targetLang")


class TagParams(ExtractionRefParams):
    pass


class SummaryParams(ExtractionRefParams):
    pass


PARAMS_MODELS: Dict[TaskType, Type[TaskParams]] = {
    TaskType.EXTRACT: ExtractParams,
    TaskType.TRANSLATE: TranslateParams,
    TaskType.TAG: TagParams,
    TaskType.SUMMARY: SummaryParams,
}


def parse_params(task_type: TaskType, raw: Any) -> TaskParams:
    """
    校验并构造任务参数。

    Raises:
        ValidationError: 参数缺失或不合法
    """
    if not isinstance(raw, dict):
        raise ValidationError("params 必须是 JSON 对象", field="params")
    model = PARAMS_MODELS[task_type]
    try:
        return model.model_validate(raw)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(x) for x in first.get("loc", ())) or None
        raise ValidationError(f"{task_type.value} 参数不合法：{first.get('msg')}", field=loc) from e


# ---------- 任务记录 ----------


def _decode_params(raw: Optional[str]) -> Any:
    """params 列可能是历史脏数据：解析失败时原样返回字符串，不影响状态查询。"""
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass
class TaskInfo:
    """任务信息（task_queue 表的一行）。"""
    task_id: str
    type: str
    status: TaskStatus
    params: Optional[str]
    url: str = ""
    scroll_times: int = 0
    priority: int = 0
    worker_id: Optional[str] = None
    progress: int = 0
    progress_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result_id: Optional[int] = None
    user_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TaskInfo":
        return cls(
            task_id=row["task_id"],
            type=row.get("type") or TaskType.EXTRACT.value,
            status=TaskStatus(row["status"]),
            params=row.get("params"),
            url=row.get("url") or "",
            scroll_times=int(row.get("scroll_times") or 0),
            priority=int(row.get("priority") or 0),
            worker_id=row.get("worker_id"),
            progress=int(row.get("progress") or 0),
            progress_message=row.get("progress_message"),
            created_at=row.get("created_at"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            error=row.get("error_message"),
            result_id=row.get("result_id"),
            user_id=row.get("user_id"),
        )

    def elapsed_seconds(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.status != TaskStatus.PROCESSING or self.started_at is None:
            return None
        return max(int(((now or datetime.now()) - self.started_at).total_seconds()), 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "type": self.type,
            "status": self.status.value,
            "url": self.url,
            "params": _decode_params(self.params),
            "priority": self.priority,
            "worker_id": self.worker_id,
            "progress": self.progress,
            "message": self.progress_message,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "error": self.error,
            "result_id": self.result_id,
            "user_id": self.user_id,
            "elapsed": self.elapsed_seconds(),
        }


@dataclass
class QueueStatus:
    """队列概览（24 小时统计 + 当前任务 + 排队预估 + 最近结束 + 分页列表）。"""
    summary: Dict[str, int]
    current_task: Optional[Dict[str, Any]]
    queue: List[Dict[str, Any]] = field(default_factory=list)
    recent: List[Dict[str, Any]] = field(default_factory=list)
    tasks: List[TaskInfo] = field(default_factory=list)
    page: int = 1
    page_size: int = 10
    total: int = 0

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "currentTask": self.current_task,
            "queue": self.queue,
            "recent": self.recent,
            "allTasks": [t.to_dict() for t in self.tasks],
            "pagination": {
                "page": self.page,
                "pageSize": self.page_size,
                "total": self.total,
                "totalPages": self.total_pages,
            },
        }
