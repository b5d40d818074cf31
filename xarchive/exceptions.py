"""
异常体系。

所有业务异常继承 XArchiveError，便于处理器统一捕获并记录为任务失败：

    XArchiveError
    ├── ValidationError          入队参数非法（任务行尚未创建）
    ├── TransientExternalError   外部调用失败（不自动重试）
    │   ├── AutomationError      浏览器自动化服务
    │   └── CompletionError      文本补全接口
    ├── DataIntegrityError       引用的数据不存在/不完整
    │   └── MissingNaturalKeyError
    ├── MalformedResponseError   LLM 输出不符合约定
    ├── UnknownTaskTypeError
    └── StoreError               存储不可用
"""

from __future__ import annotations

from typing import Optional


class XArchiveError(Exception):
    """所有业务异常的基类。"""


class ValidationError(XArchiveError):
    """入队参数校验失败。"""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class TransientExternalError(XArchiveError):
    """外部服务调用失败（自动化服务 / 文本补全）。"""


class AutomationError(TransientExternalError):
    """浏览器自动化服务调用失败。"""

    def __init__(self, message: str, handle: Optional[str] = None) -> None:
        super().__init__(message)
        self.handle = handle


class CompletionError(TransientExternalError):
    """文本补全接口调用失败。"""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DataIntegrityError(XArchiveError):
    """处理器引用的提取记录不存在或没有内容。"""


class MissingNaturalKeyError(DataIntegrityError):
    """抓取到的条目缺少自然键（仅在 fail 策略下抛出）。"""


class MalformedResponseError(XArchiveError):
    """LLM 响应不符合约定的格式。"""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


class UnknownTaskTypeError(XArchiveError):
    """不支持的任务类型。"""


class StoreError(XArchiveError):
    """存储层不可用。"""
