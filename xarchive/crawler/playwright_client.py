"""
本机 Playwright 自动化客户端（不依赖远程自动化服务时使用）。

注意：
- Playwright 依赖浏览器安装（chromium）：`playwright install chromium`。
- 无人值守场景下建议 PLAYWRIGHT_HEADLESS=1。
- sync API 不是线程安全的：同一个客户端只能在创建它的线程里使用。
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, Optional, Tuple

from xarchive.crawler.automation import AutomationClient
from xarchive.exceptions import AutomationError

logger = logging.getLogger(__name__)


class PlaywrightAutomationClient(AutomationClient):
    """复用 Playwright/Browser 实例；每个句柄对应一个独立的 context + page。"""

    def __init__(self, headless: bool = True, nav_timeout_ms: int = 30000) -> None:
        self._headless = headless
        self._nav_timeout_ms = nav_timeout_ms
        self._playwright = None
        self._browser = None
        self._pages: Dict[str, Tuple[Any, Any]] = {}
        # 启动浏览器的线程；之后所有调用都必须在这个线程上
        self._owner_thread: Optional[int] = None

    def _ensure_started(self) -> None:
        if self._browser is not None:
            return
        try:
            from playwright.sync_api import sync_playwright
        except ImportError as e:
            raise AutomationError("Playwright 未安装或不可用，请先安装依赖与浏览器") from e

        self._playwright = sync_playwright().start()
        self._owner_thread = threading.get_ident()
        self._browser = self._playwright.chromium.launch(headless=self._headless)

    def _check_thread(self) -> None:
        if self._owner_thread is not None and self._owner_thread != threading.get_ident():
            raise AutomationError("Playwright 客户端只能在启动浏览器的线程上使用")

    def _page(self, handle: str) -> Any:
        try:
            return self._pages[handle][1]
        except KeyError:
            raise AutomationError(f"页面句柄不存在：{handle}", handle=handle) from None

    def open_page(self, url: str) -> str:
        self._ensure_started()
        context = self._browser.new_context()

        # 拦截字体/音视频，图片保留（需要媒体 URL）
        def _route(route):
            if route.request.resource_type in ("media", "font"):
                return route.abort()
            return route.continue_()

        context.route("**/*", _route)
        page = context.new_page()
        handle = uuid.uuid4().hex
        self._pages[handle] = (context, page)
        try:
            page.goto(url, wait_until="domcontentloaded", timeout=self._nav_timeout_ms)
        except Exception as e:
            self.close(handle)
            raise AutomationError(f"页面打开失败：url={url} err={e!r}") from e
        return handle

    def snapshot(self, handle: str) -> str:
        try:
            return self._page(handle).content() or ""
        except AutomationError:
            raise
        except Exception as e:
            raise AutomationError(f"获取页面 HTML 失败：{e!r}", handle=handle) from e

    def press_key(self, handle: str, key: str, delay_ms: int = 0) -> None:
        page = self._page(handle)
        try:
            page.keyboard.press(key)
            if delay_ms > 0:
                page.wait_for_timeout(delay_ms)
        except Exception as e:
            raise AutomationError(f"按键失败：key={key} err={e!r}", handle=handle) from e

    def wait(self, handle: str, ms: int) -> None:
        try:
            self._page(handle).wait_for_timeout(ms)
        except AutomationError:
            raise
        except Exception as e:
            raise AutomationError(f"等待失败：{e!r}", handle=handle) from e

    def close(self, handle: str) -> None:
        context, page = self._pages.pop(handle, (None, None))
        if page is None:
            return
        try:
            page.close()
        finally:
            context.close()

    def shutdown(self) -> None:
        """关闭所有页面与浏览器（服务退出时调用）。"""
        if self._playwright is None:
            return
        self._check_thread()
        for handle in list(self._pages):
            try:
                self.close(handle)
            except Exception:
                logger.warning("关闭页面失败：handle=%s", handle, exc_info=True)
        try:
            if self._browser is not None:
                self._browser.close()
        finally:
            self._browser = None
            if self._playwright is not None:
                self._playwright.stop()
            self._playwright = None
            self._owner_thread = None
