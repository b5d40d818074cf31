"""
关注列表抓取器。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from xarchive.crawler.scraper_base import ParsedSnapshot, ScraperBase, ScrapeOptions, ScrapeSession
from xarchive.parser.following_parser import FollowingUser, parse_following_page


def following_url(username: str) -> str:
    return f"https://x.com/{username.lstrip('@')}/following"


class FollowingScraper(ScraperBase[FollowingUser, Dict[str, Any]]):
    """以用户 ID 作为自然键；关注列表没有推荐区边界。"""

    def parse_snapshot(self, html: str) -> ParsedSnapshot[FollowingUser]:
        return ParsedSnapshot(items=parse_following_page(html))

    def natural_key_of(self, item: FollowingUser) -> Optional[str]:
        return item.user_id or None

    def build_result(self, session: ScrapeSession[FollowingUser]) -> Dict[str, Any]:
        users = session.items
        username = session.url.rstrip("/").split("/")[-2] if session.url.endswith("/following") else ""
        return {
            "url": session.url,
            "username": username,
            "users": [u.to_dict() for u in users],
            # 已关注按钮（-unfollow）= 互相关注，其余为单向
            "mutual": [u.username for u in users if u.is_following],
            "one_way": [u.username for u in users if not u.is_following],
            "count": len(users),
            "verified_count": sum(1 for u in users if u.is_verified),
            "scroll_steps": session.steps,
            "extracted_at": datetime.now().isoformat(),
        }

    def scrape_user(self, username: str, options: Optional[ScrapeOptions] = None) -> Dict[str, Any]:
        return self.scrape(following_url(username), options)
