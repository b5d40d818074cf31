"""
浏览器自动化客户端接口。

抓取引擎只依赖下面 5 个操作；具体实现可以是远程自动化服务（HTTP）
或本机 Playwright。每个 open_page 得到的 handle 都必须最终 close。
"""

from __future__ import annotations

import logging

from xarchive.config import Settings

logger = logging.getLogger(__name__)


class AutomationClient:
    """自动化客户端基类。"""

    def open_page(self, url: str) -> str:
        """打开页面，返回页面句柄。"""
        raise NotImplementedError

    def snapshot(self, handle: str) -> str:
        """获取页面当前渲染后的 HTML。"""
        raise NotImplementedError

    def press_key(self, handle: str, key: str, delay_ms: int = 0) -> None:
        raise NotImplementedError

    def wait(self, handle: str, ms: int) -> None:
        raise NotImplementedError

    def close(self, handle: str) -> None:
        raise NotImplementedError

    def shutdown(self) -> None:
        """释放客户端自身资源（服务退出时调用）。"""


def create_automation_client(settings: Settings) -> AutomationClient:
    """按配置创建自动化客户端。"""
    backend = (settings.automation_backend or "").strip().lower()
    if backend == "remote":
        from xarchive.crawler.remote_client import RemoteAutomationClient

        return RemoteAutomationClient(
            base_url=settings.automation_url,
            timeout_seconds=settings.automation_timeout_seconds,
        )
    if backend == "playwright":
        from xarchive.crawler.playwright_client import PlaywrightAutomationClient

        return PlaywrightAutomationClient(headless=bool(settings.playwright_headless))
    raise ValueError(f"AUTOMATION_BACKEND 只支持 remote/playwright，实际：{settings.automation_backend!r}")
