"""
文本补全客户端（OpenAI 兼容的 chat-completions 接口，默认 OpenRouter）。

一次调用 = 一个模型提示（opus/sonnet）+ 一段完整 prompt，返回纯文本。
模型返回的内容一律视为不可信文本，需要 JSON 时用 extract_json_object 提取。
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from xarchive.exceptions import CompletionError, MalformedResponseError

logger = logging.getLogger(__name__)


class CompletionClient:
    """同步补全客户端，复用一个 httpx.Client。"""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model_map: Dict[str, str],
        timeout_seconds: int = 300,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._model_map = dict(model_map)
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds))

    def resolve_model(self, hint: str) -> str:
        # 未登记的提示按原样当作模型名
        return self._model_map.get(hint, hint)

    def complete(self, model_hint: str, prompt: str) -> str:
        """
        发起一次补全。

        Raises:
            CompletionError: 网络错误、非 2xx 响应或响应结构不对
        """
        model = self.resolve_model(model_hint)
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        started = time.monotonic()
        try:
            resp = self._client.post(self._api_url, json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            raise CompletionError(
                f"补全接口返回错误：model={model} status={code} body={e.response.text[:200]!r}",
                status_code=code,
            ) from e
        except httpx.HTTPError as e:
            raise CompletionError(f"补全接口请求失败：model={model} err={e!r}") from e

        try:
            data = resp.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CompletionError(f"补全接口响应结构不对：model={model}") from e

        logger.info(
            "补全完成：model=%s prompt_chars=%s reply_chars=%s cost=%.1fs",
            model,
            len(prompt),
            len(text or ""),
            time.monotonic() - started,
        )
        return text or ""

    def close(self) -> None:
        self._client.close()


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    从模型回复中取第一个括号配平的 {...} 块并解析。

    字符串字面量里的括号不参与配平；第一个块解析失败时继续尝试后面的块。

    Raises:
        MalformedResponseError: 找不到可解析的 JSON 对象
    """
    src = text or ""
    start = src.find("{")
    while start != -1:
        depth = 0
        in_str = False
        escaped = False
        end = -1
        for i in range(start, len(src)):
            ch = src[i]
            if in_str:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_str = False
                continue
            if ch == '"':
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end == -1:
            break
        try:
            obj = json.loads(src[start:end + 1])
        except ValueError:
            obj = None
        if isinstance(obj, dict):
            return obj
        start = src.find("{", start + 1)

    raise MalformedResponseError("响应中没有找到有效的 JSON 对象", raw=src[:500])
