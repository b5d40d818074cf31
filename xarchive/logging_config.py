"""
日志配置。

服务进程里有三类线程同时写日志：主线程（信号/退出）、APScheduler 轮询线程（任务处理）、
FlaskServer 线程（HTTP 接口），所以格式里带上线程名，便于把同一任务的日志串起来。
具体日志以 key=value 方式补充 task_id/worker_id/url 等字段，统一输出到 stdout。
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# 第三方库至少 WARNING 才输出；werkzeug 每个请求一行访问日志
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler", "werkzeug")


def resolve_level(level: str) -> int:
    """LOG_LEVEL 名称转数值；无法识别时回退到 INFO。"""
    # 已注册的级别名返回数值，未知名称返回 "Level xxx" 字符串
    value = logging.getLevelName((level or "").strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: str = "INFO") -> int:
    """
    初始化全局日志配置。

    :return: 实际生效的日志级别
    """
    numeric_level = resolve_level(level)

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))
    return numeric_level
