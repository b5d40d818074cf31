"""
关注列表页面解析器。

每个用户条目都带一个关注按钮，`data-testid` 形如 `<userId>-follow`（未关注）
或 `<userId>-unfollow`（已关注）。从按钮向上找到包含主页链接的容器，再取用户信息。
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

_FOLLOW_SUFFIX_RE = re.compile(r"-(un)?follow$")
_PROFILE_HREF_RE = re.compile(r"^/[A-Za-z0-9_]+$")
_BUTTON_TEXT = ("关注", "正在关注", "Follow", "Following")

# 向上查找容器的最大层数
_MAX_CONTAINER_LEVELS = 10


@dataclass(frozen=True)
class FollowingUser:
    user_id: str
    username: str
    handle: str
    display_name: str
    bio: str
    avatar_url: str
    profile_url: str
    is_verified: bool
    is_organization: bool
    is_following: bool
    follow_button_testid: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _find_container(button: Tag) -> Optional[Tag]:
    container = button.parent
    levels = _MAX_CONTAINER_LEVELS
    while levels > 0 and container is not None:
        if container.select_one('a[href^="/"][role="link"]') is not None:
            return container
        container = container.parent
        levels -= 1
    return None


def _display_name(container: Tag, username: str) -> str:
    name_link = container.select_one(f'a[href="/{username}"]')
    if name_link is not None:
        first_span = name_link.select_one("span")
        text = first_span.get_text(strip=True) if first_span is not None else ""
        if text and not text.startswith("@"):
            return text
        if name_link.parent is not None:
            for span in name_link.parent.select("span"):
                text = span.get_text(strip=True)
                if text and not text.startswith("@"):
                    return text

    for span in container.select("span"):
        text = span.get_text(strip=True)
        if text and not text.startswith("@") and text not in _BUTTON_TEXT:
            return text
    return ""


def _bio(container: Tag, display_name: str) -> str:
    for span in container.select("span"):
        text = span.get_text(strip=True)
        if len(text) <= 20 or text.startswith("@") or text == display_name:
            continue
        if span.parent is not None and span.parent.name == "a":
            continue
        return text
    return ""


def parse_user_cell(button: Tag) -> Optional[FollowingUser]:
    """从关注按钮解析单个用户；结构不完整时返回 None。"""
    testid = button.get("data-testid", "")
    if not testid:
        return None

    container = _find_container(button)
    if container is None:
        logger.debug("关注按钮附近没有主页链接：testid=%s", testid)
        return None

    username = ""
    for a in container.select('a[href^="/"][role="link"]'):
        href = a.get("href", "")
        if _PROFILE_HREF_RE.match(href) and "/i/" not in href:
            username = href[1:]
            break
    if not username:
        return None

    display_name = _display_name(container, username) or username

    avatar_url = ""
    for img in container.select("img"):
        src = img.get("src", "")
        if "profile_images" in src or "pbs.twimg.com" in src:
            avatar_url = src
            break

    badge = container.select_one('svg[aria-label*="Verified"], svg[aria-label*="verified"]')
    badge_label = (badge.get("aria-label", "") if badge is not None else "").lower()

    return FollowingUser(
        user_id=_FOLLOW_SUFFIX_RE.sub("", testid),
        username=username,
        handle=f"@{username}",
        display_name=display_name,
        bio=_bio(container, display_name),
        avatar_url=avatar_url,
        profile_url=f"/{username}",
        is_verified=badge is not None,
        is_organization="organization" in badge_label,
        is_following=testid.endswith("-unfollow"),
        follow_button_testid=testid,
    )


def parse_following_page(html: str) -> List[FollowingUser]:
    """
    解析关注列表快照。

    :param html: 页面 HTML 文本
    :return: FollowingUser 列表（页面顺序）
    """
    if not html:
        return []
    soup = BeautifulSoup(html, "lxml")
    users: List[FollowingUser] = []
    for button in soup.select('[data-testid$="-follow"], [data-testid$="-unfollow"]'):
        user = parse_user_cell(button)
        if user is not None:
            users.append(user)
    return users
