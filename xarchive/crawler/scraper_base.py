"""
增量滚动抓取引擎（通用模板）。

流程：
1. 打开页面，等待首屏渲染，快照并收集；
2. 每个滚动步 = 连续按 N 次滚动键（每次带短延迟）+ 固定等待，再快照并收集；
3. 连续 2 个滚动步没有新增条目、达到最大滚动步数或条目上限时停止；
4. 无论成功失败，页面句柄都会关闭。

子类实现 3 个扩展点：parse_snapshot / natural_key_of / build_result。

去重以自然键为准，同一个键第一次出现时的条目生效，之后的重复一律丢弃。
推荐区边界（"发现更多"）一旦出现就不再撤销：此后新出现的键全部计入排除集合，
即使它们仍然显示在页面上。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, Set, TypeVar

from xarchive.config import Settings
from xarchive.crawler.automation import AutomationClient
from xarchive.exceptions import MissingNaturalKeyError

logger = logging.getLogger(__name__)

TItem = TypeVar("TItem")
TResult = TypeVar("TResult")

# 连续多少个滚动步没有新增条目视为到底
IDLE_STEPS_TO_STOP = 2


class MissingKeyPolicy(Enum):
    """条目缺少自然键时的处理策略。"""
    DROP = "drop"
    FAIL = "fail"


@dataclass(frozen=True)
class ScrapeOptions:
    scroll_times: int = 10
    max_items: Optional[int] = None
    scroll_key: str = "PageDown"
    key_presses: int = 3
    key_delay_ms: int = 300
    settle_ms: int = 1000
    initial_wait_ms: int = 3000
    missing_key_policy: MissingKeyPolicy = MissingKeyPolicy.DROP

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        scroll_times: Optional[int] = None,
        max_items: Optional[int] = None,
    ) -> "ScrapeOptions":
        return cls(
            scroll_times=settings.default_scroll_times if scroll_times is None else scroll_times,
            max_items=max_items,
            scroll_key=settings.scroll_key,
            key_presses=settings.scroll_key_presses,
            key_delay_ms=settings.key_press_delay_ms,
            settle_ms=settings.settle_delay_ms,
            initial_wait_ms=settings.initial_wait_ms,
            missing_key_policy=MissingKeyPolicy(settings.missing_key_policy.strip().lower()),
        )


@dataclass(frozen=True)
class ParsedSnapshot(Generic[TItem]):
    """
    一次快照的解析结果。

    boundary_at：推荐区标题之前的条目数；None 表示快照中没有推荐区标题。
    """

    items: List[TItem]
    boundary_at: Optional[int] = None


@dataclass
class ScrapeSession(Generic[TItem]):
    """单次 scrape 调用的状态，只属于当前调用，不跨调用复用。"""

    url: str
    options: ScrapeOptions
    seen_keys: Set[str] = field(default_factory=set)
    excluded_keys: Set[str] = field(default_factory=set)
    items: List[TItem] = field(default_factory=list)
    boundary_reached: bool = False
    steps: int = 0
    dropped_without_key: int = 0

    @property
    def filtered_count(self) -> int:
        return len(self.excluded_keys)

    @property
    def is_full(self) -> bool:
        cap = self.options.max_items
        return cap is not None and len(self.items) >= cap


class ScraperBase(Generic[TItem, TResult]):
    """通用滚动抓取器。"""

    def __init__(self, client: AutomationClient, options: Optional[ScrapeOptions] = None) -> None:
        self._client = client
        self._options = options or ScrapeOptions()

    # ========== 扩展点 ==========

    def parse_snapshot(self, html: str) -> ParsedSnapshot[TItem]:
        raise NotImplementedError

    def natural_key_of(self, item: TItem) -> Optional[str]:
        raise NotImplementedError

    def build_result(self, session: ScrapeSession[TItem]) -> TResult:
        raise NotImplementedError

    # ========== 主流程 ==========

    def scrape(self, url: str, options: Optional[ScrapeOptions] = None) -> TResult:
        """
        抓取一个页面。

        Raises:
            AutomationError: 自动化服务调用失败（原样向上抛出）
            MissingNaturalKeyError: fail 策略下遇到缺少自然键的条目
        """
        opts = options or self._options
        session: ScrapeSession[TItem] = ScrapeSession(url=url, options=opts)

        logger.info("打开页面：url=%s scroll_times=%s max_items=%s", url, opts.scroll_times, opts.max_items)
        handle = self._client.open_page(url)
        try:
            self._client.wait(handle, opts.initial_wait_ms)
            added = self.collect(session, self.parse_snapshot(self._client.snapshot(handle)))
            logger.info("首屏收集：url=%s added=%s", url, added)

            idle_steps = 0
            for step in range(1, opts.scroll_times + 1):
                if session.is_full:
                    logger.info("已达到条目上限，停止滚动：url=%s max_items=%s", url, opts.max_items)
                    break

                self._scroll(handle, opts)
                session.steps = step
                added = self.collect(session, self.parse_snapshot(self._client.snapshot(handle)))
                logger.debug("滚动收集：url=%s step=%s added=%s total=%s", url, step, added, len(session.items))

                if added == 0:
                    idle_steps += 1
                    if idle_steps >= IDLE_STEPS_TO_STOP:
                        logger.info("连续 %s 次无新内容，停止滚动：url=%s step=%s", idle_steps, url, step)
                        break
                else:
                    idle_steps = 0

            logger.info(
                "抓取完成：url=%s items=%s filtered=%s steps=%s",
                url,
                len(session.items),
                session.filtered_count,
                session.steps,
            )
            return self.build_result(session)
        finally:
            self._release(handle)

    def collect(self, session: ScrapeSession[TItem], snapshot: ParsedSnapshot[TItem]) -> int:
        """
        把一次快照的条目合并进会话，返回本次真正加入结果的条目数。

        对同一快照重复调用不会再加入任何条目。
        """
        added = 0
        for idx, item in enumerate(snapshot.items):
            if snapshot.boundary_at is not None and idx >= snapshot.boundary_at:
                if not session.boundary_reached:
                    logger.info("遇到推荐区边界，之后的新条目将被排除：url=%s", session.url)
                session.boundary_reached = True

            key = self.natural_key_of(item)
            if not key:
                if session.options.missing_key_policy is MissingKeyPolicy.FAIL:
                    raise MissingNaturalKeyError(f"条目缺少自然键：url={session.url} index={idx}")
                session.dropped_without_key += 1
                logger.debug("跳过无自然键条目：url=%s index=%s", session.url, idx)
                continue

            if key in session.seen_keys:
                continue
            session.seen_keys.add(key)

            if session.boundary_reached:
                session.excluded_keys.add(key)
                continue
            if session.is_full:
                continue

            session.items.append(item)
            added += 1

        if snapshot.boundary_at is not None:
            session.boundary_reached = True
        return added

    def _scroll(self, handle: str, opts: ScrapeOptions) -> None:
        for _ in range(opts.key_presses):
            self._client.press_key(handle, opts.scroll_key, opts.key_delay_ms)
        self._client.wait(handle, opts.settle_ms)

    def _release(self, handle: str) -> None:
        try:
            self._client.close(handle)
        except Exception:
            # 关闭失败不能覆盖抓取本身的结果/异常
            logger.warning("关闭页面失败：handle=%s", handle, exc_info=True)
