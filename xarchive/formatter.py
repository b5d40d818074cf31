"""
推文内容 HTML -> Markdown。

只处理推文正文里实际会出现的标记：
- emoji `<img>` 取 alt；
- 文本以 @ / # 开头的链接（提及/话题）保留原文，其余链接转为 [text](href)；
- 其他标签去掉，HTML 实体还原；
- 行重排：`•` 开头的行转为 `- ` 列表项，空行为段落分隔，连续的普通行用硬换行（行尾两个空格）。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from xarchive.parser.tweet_parser import main_thread_length

logger = logging.getLogger(__name__)

ITEM_SEPARATOR = "\n\n---\n\n"

_BLOCK_TAGS = ("p", "div", "li")
_SKIP_TAGS = ("script", "style")
_BULLET = "•"


@dataclass(frozen=True)
class ExtractionMarkdown:
    """提取记录的主线程文章（Markdown）。"""

    url: str
    author: Dict[str, Any]
    content: str
    tweet_count: int
    first_tweet_time: str = ""
    last_tweet_time: Optional[str] = None
    media_urls: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "author": self.author,
            "content": self.content,
            "tweetCount": self.tweet_count,
            "firstTweetTime": self.first_tweet_time,
            "lastTweetTime": self.last_tweet_time,
            "mediaUrls": self.media_urls,
        }


def _render(node: Any) -> str:
    if isinstance(node, Comment):
        return ""
    if isinstance(node, NavigableString):
        return str(node)
    if not isinstance(node, Tag):
        return ""

    name = node.name
    if name in _SKIP_TAGS:
        return ""
    if name == "img":
        return node.get("alt", "")
    if name == "br":
        return "\n"

    inner = "".join(_render(c) for c in node.children)
    if name == "a":
        text = inner.strip()
        href = node.get("href", "")
        if not text or text.startswith(("@", "#")) or not href:
            return inner
        return f"[{text}]({href})"
    if name in _BLOCK_TAGS:
        return inner + "\n"
    return inner


def reflow(text: str) -> str:
    """按行重排为 Markdown 段落/列表。"""
    out: List[str] = []
    prev_kind: Optional[str] = None
    blank_pending = False

    for raw in text.split("\n"):
        line = raw.strip()
        if not line:
            if prev_kind is not None:
                blank_pending = True
            continue

        if line.startswith(_BULLET):
            kind = "list"
            line = "- " + line[len(_BULLET):].lstrip()
        else:
            kind = "text"

        if prev_kind is None:
            pass
        elif blank_pending or kind != prev_kind:
            out.append("\n\n")
        elif kind == "list":
            out.append("\n")
        else:
            out.append("  \n")
        out.append(line)
        prev_kind = kind
        blank_pending = False

    return "".join(out)


def html_to_markdown(html: str) -> str:
    """推文正文 HTML -> Markdown（确定性、无状态）。"""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    return reflow(_render(soup))


def _media_lines(tweet: Dict[str, Any]) -> List[str]:
    lines = []
    for m in tweet.get("media") or []:
        if m.get("type") == "video":
            lines.append(f"![video]({m.get('thumbnail') or m.get('url')})")
        elif m.get("url"):
            lines.append(f"![image]({m['url']})")
    return lines


def tweet_to_markdown(tweet: Dict[str, Any]) -> str:
    """单条推文：正文 + 媒体 + 链接卡片。"""
    content = tweet.get("content") or {}
    if content.get("html"):
        body = html_to_markdown(content["html"])
    else:
        body = reflow(content.get("text") or "")

    parts = [body] if body else []
    parts.extend(_media_lines(tweet))

    card = tweet.get("card")
    if card and card.get("url"):
        block = f"**[{card.get('title') or card['url']}]({card['url']})**"
        if card.get("description"):
            block += f"\n{card['description']}"
        parts.append(block)

    return "\n\n".join(parts)


def join_items(markdowns: Iterable[str]) -> str:
    return ITEM_SEPARATOR.join(m for m in markdowns if m)


def article_markdown(result: Dict[str, Any]) -> Optional[ExtractionMarkdown]:
    """
    把提取结果的主线程合并为一篇 Markdown 文章。

    旧记录没有 main_thread 字段时，按开头连续同作者推文重新计算。
    没有推文时返回 None。
    """
    tweets = result.get("tweets") or []
    main = result.get("main_thread") or tweets[: main_thread_length(tweets)]
    if not main:
        return None

    first = main[0]
    media_urls = [m["url"] for t in main for m in (t.get("media") or []) if m.get("type") == "image" and m.get("url")]
    return ExtractionMarkdown(
        url=result.get("url") or "",
        author=dict(first.get("author") or {}),
        content=join_items(tweet_to_markdown(t) for t in main),
        tweet_count=len(main),
        first_tweet_time=first.get("time") or "",
        last_tweet_time=main[-1].get("time") if len(main) > 1 else None,
        media_urls=media_urls,
    )
