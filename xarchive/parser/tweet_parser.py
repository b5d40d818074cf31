"""
推文页面解析器（渲染后的 HTML 快照）。

说明：
- 每个 `article` 元素是一条推文（主帖、作者续帖、回复、推荐内容都一样）；
- 正文取 `[data-testid="tweetText"]` 的内部 HTML，交给 formatter 转 Markdown；
- "发现更多 / Discover more" 标题之后的 article 是平台推荐内容，不属于本线程，
  parse_tweet_page 会返回标题在 article 序列中的位置，由抓取引擎负责过滤。
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)


# 推荐区标题关键词
BOUNDARY_MARKERS = (
    "Discover more",
    "发现更多",
)

_SHOW_MORE_TEXT = ("显示更多", "Show more")

_VIDEO_THUMB_HINTS = ("amplify_video_thumb", "ext_tw_video_thumb", "tweet_video_thumb")

# aria-label 示例："351 回复、1704 次转帖、9799 喜欢、12034 书签、1279922 次观看"
#                 "351 replies, 1704 reposts, 9799 likes, 12034 bookmarks, 1279922 views"
_STAT_PATTERNS = {
    "replies": re.compile(r"(\d[\d,]*)\s*(?:回复|repl(?:y|ies))", re.I),
    "retweets": re.compile(r"(\d[\d,]*)\s*次?(?:转帖|转推|reposts?|retweets?)", re.I),
    "likes": re.compile(r"(\d[\d,]*)\s*(?:喜欢|likes?)", re.I),
    "bookmarks": re.compile(r"(\d[\d,]*)\s*(?:书签|bookmarks?)", re.I),
    "views": re.compile(r"(\d[\d,]*)\s*次?(?:观看|views?)", re.I),
}

_DOMAIN_RE = re.compile(r"^[\w.-]+\.[a-z]{2,}$", re.I)


@dataclass(frozen=True)
class Author:
    name: str
    handle: str
    avatar: str


@dataclass(frozen=True)
class MediaItem:
    """推文附带的媒体（按页面出现顺序）。"""

    type: str  # image / video
    url: str
    thumbnail: Optional[str] = None


@dataclass(frozen=True)
class Card:
    """链接预览卡片。"""

    url: str
    title: str
    description: str = ""
    domain: str = ""
    image: str = ""


@dataclass(frozen=True)
class Stats:
    replies: str = "0"
    retweets: str = "0"
    likes: str = "0"
    bookmarks: str = "0"
    views: str = "0"


@dataclass(frozen=True)
class Tweet:
    """解析后的推文（还未入库）。"""

    author: Author
    text: str
    html: str
    has_more: bool
    time: str
    datetime: Optional[str]
    status_link: str
    stats: Stats
    media: Tuple[MediaItem, ...] = field(default_factory=tuple)
    card: Optional[Card] = None

    def to_dict(self) -> Dict[str, Any]:
        """转换为入库/JSON 结构。"""
        return {
            "author": asdict(self.author),
            "content": {"text": self.text, "html": self.html, "has_more": self.has_more},
            "media": [asdict(m) for m in self.media],
            "card": asdict(self.card) if self.card else None,
            "time": self.time,
            "datetime": self.datetime,
            "status_link": self.status_link,
            "stats": asdict(self.stats),
        }


def parse_stats(label: str) -> Stats:
    """从互动栏 aria-label 中解析统计数据（中英文）。"""
    values = {}
    for key, pattern in _STAT_PATTERNS.items():
        m = pattern.search(label or "")
        values[key] = m.group(1) if m else "0"
    return Stats(**values)


def _is_boundary_marker(tag: Tag) -> bool:
    if tag.name != "h2" and tag.get("role") != "heading":
        return False
    text = tag.get_text(" ", strip=True)
    if not any(m in text for m in BOUNDARY_MARKERS):
        return False
    return tag.find_parent("article") is None


def _parse_author(article: Tag) -> Author:
    links = article.select('a[href^="/"]')

    name = ""
    user_name = article.select_one('[data-testid="User-Name"]')
    if user_name is not None:
        first_link = user_name.select_one("a")
        if first_link is not None:
            name = first_link.get_text(strip=True)
    if not name and links:
        name = (links[1] if len(links) > 1 else links[0]).get_text(strip=True)

    handle = ""
    for a in links:
        text = a.get_text(strip=True)
        if text.startswith("@"):
            handle = text
            break

    first_img = article.select_one("img")
    avatar = first_img.get("src", "") if first_img is not None else ""
    return Author(name=name, handle=handle, avatar=avatar)


def _parse_content(article: Tag) -> Tuple[str, str]:
    text_el = article.select_one('[data-testid="tweetText"]')
    if text_el is not None:
        return text_el.get_text(), text_el.decode_contents()

    # 兜底：取第一段较长的 span 文本
    for span in article.select("span"):
        text = span.get_text()
        if len(text) > 30:
            return text, html_lib.escape(text, quote=False)
    return "", ""


def _has_more(article: Tag) -> bool:
    if article.select_one('[data-testid="tweet-text-show-more-link"]') is not None:
        return True
    for el in article.select("button, a, span"):
        if el.get_text(strip=True) in _SHOW_MORE_TEXT:
            return True
    return False


def _parse_media(article: Tag) -> Tuple[MediaItem, ...]:
    media: List[MediaItem] = []
    seen = set()
    for img in article.select("img"):
        src = img.get("src", "")
        if not src or src in seen:
            continue
        if img.find_parent(attrs={"data-testid": "card.wrapper"}) is not None:
            continue
        if any(h in src for h in _VIDEO_THUMB_HINTS):
            seen.add(src)
            media.append(MediaItem(type="video", url=src, thumbnail=src))
        elif "/media/" in src:
            seen.add(src)
            media.append(MediaItem(type="image", url=src))
    return tuple(media)


def _parse_card(article: Tag) -> Optional[Card]:
    wrapper = article.select_one('[data-testid="card.wrapper"]')
    if wrapper is None:
        return None
    link = wrapper.select_one("a[href]")
    if link is None:
        return None

    domain = ""
    texts: List[str] = []
    for span in wrapper.select("span"):
        # 只取叶子 span，避免嵌套 span 重复文本
        if span.find("span") is not None:
            continue
        text = span.get_text(strip=True)
        if not text or text in texts or text == domain:
            continue
        if not domain and _DOMAIN_RE.match(text):
            domain = text
            continue
        texts.append(text)

    img = wrapper.select_one("img")
    return Card(
        url=link.get("href", ""),
        title=texts[0] if texts else domain or link.get("href", ""),
        description=texts[1] if len(texts) > 1 else "",
        domain=domain,
        image=img.get("src", "") if img is not None else "",
    )


def _parse_status_link(article: Tag) -> str:
    links = [a.get("href", "") for a in article.select('a[href*="/status/"]')]
    for href in links:
        if "/photo/" not in href and "/analytics" not in href:
            return href
    return links[0] if links else ""


def parse_article(article: Tag) -> Tweet:
    """解析单个 article 元素。"""
    text, content_html = _parse_content(article)

    group = article.select_one('div[role="group"]')
    stats = parse_stats(group.get("aria-label", "") if group is not None else "")

    time_el = article.select_one("time")
    return Tweet(
        author=_parse_author(article),
        text=text,
        html=content_html,
        has_more=_has_more(article),
        time=time_el.get_text(strip=True) if time_el is not None else "",
        datetime=time_el.get("datetime") if time_el is not None else None,
        status_link=_parse_status_link(article),
        stats=stats,
        media=_parse_media(article),
        card=_parse_card(article),
    )


def parse_tweet_page(html: str) -> Tuple[List[Tweet], Optional[int]]:
    """
    解析推文页面快照。

    :param html: 页面 HTML 文本
    :return: (推文列表, 推荐区标题之前的 article 数量；没有推荐区标题时为 None)
    """
    if not html:
        return [], None

    soup = BeautifulSoup(html, "lxml")
    tweets: List[Tweet] = []
    boundary_at: Optional[int] = None

    # find_all 按文档顺序返回，article 与推荐区标题的相对位置即为边界
    for el in soup.find_all(lambda t: t.name == "article" or _is_boundary_marker(t)):
        if el.name == "article" and el.find_parent("article") is None:
            tweets.append(parse_article(el))
        elif boundary_at is None and el.name != "article":
            boundary_at = len(tweets)
            logger.debug("发现推荐区标题：boundary_at=%s", boundary_at)

    return tweets, boundary_at


def main_thread_length(tweets: List[Dict[str, Any]]) -> int:
    """返回开头连续属于第一条推文作者的推文数量（主线程长度）。"""
    if not tweets:
        return 0
    handle = (tweets[0].get("author") or {}).get("handle")
    n = 1
    for t in tweets[1:]:
        if (t.get("author") or {}).get("handle") != handle:
            break
        n += 1
    return n
