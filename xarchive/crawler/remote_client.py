"""
远程浏览器自动化服务客户端（HTTP + JSON）。

服务端接口：
- POST   /api/pages                 {"url": ...}               -> {"pageId": ...}
- GET    /api/pages/{id}/html                                  -> {"html": ...}
- POST   /api/pages/{id}/press-key  {"key": ..., "delay": ms}
- POST   /api/pages/{id}/wait       {"timeout": ms}
- DELETE /api/pages/{id}

传输异常与非 2xx 响应统一转换为 AutomationError，不做重试
（任务失败后由调用方决定是否重新入队）。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from xarchive.crawler.automation import AutomationClient
from xarchive.exceptions import AutomationError

logger = logging.getLogger(__name__)


class RemoteAutomationClient(AutomationClient):
    """复用一个 httpx.Client，连接自动化服务。"""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: int = 60,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json"},
        )

    def _request(
        self,
        method: str,
        path: str,
        handle: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            resp = self._client.request(method, path, json=json)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AutomationError(
                f"自动化服务返回错误：{method} {path} status={e.response.status_code} body={e.response.text[:200]!r}",
                handle=handle,
            ) from e
        except httpx.HTTPError as e:
            raise AutomationError(f"自动化服务请求失败：{method} {path} err={e!r}", handle=handle) from e

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise AutomationError(f"自动化服务响应不是 JSON：{method} {path}", handle=handle) from e
        return data if isinstance(data, dict) else {}

    def open_page(self, url: str) -> str:
        data = self._request("POST", "/api/pages", json={"url": url, "name": "xarchive"})
        handle = data.get("pageId")
        if not handle:
            raise AutomationError(f"自动化服务未返回 pageId：url={url}")
        logger.debug("页面已打开：handle=%s url=%s", handle, url)
        return str(handle)

    def snapshot(self, handle: str) -> str:
        data = self._request("GET", f"/api/pages/{handle}/html", handle=handle)
        return data.get("html") or ""

    def press_key(self, handle: str, key: str, delay_ms: int = 0) -> None:
        self._request("POST", f"/api/pages/{handle}/press-key", handle=handle, json={"key": key, "delay": delay_ms})

    def wait(self, handle: str, ms: int) -> None:
        self._request("POST", f"/api/pages/{handle}/wait", handle=handle, json={"timeout": ms})

    def close(self, handle: str) -> None:
        self._request("DELETE", f"/api/pages/{handle}", handle=handle)
        logger.debug("页面已关闭：handle=%s", handle)

    def shutdown(self) -> None:
        self._client.close()
