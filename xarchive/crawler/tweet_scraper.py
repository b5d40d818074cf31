"""
推文线程抓取器：主帖 + 作者续帖 + 回复。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from xarchive.crawler.scraper_base import ParsedSnapshot, ScraperBase, ScrapeSession
from xarchive.parser.tweet_parser import Tweet, main_thread_length, parse_tweet_page


class TweetThreadScraper(ScraperBase[Tweet, Dict[str, Any]]):
    """以状态链接作为自然键的推文抓取器。"""

    def parse_snapshot(self, html: str) -> ParsedSnapshot[Tweet]:
        tweets, boundary_at = parse_tweet_page(html)
        return ParsedSnapshot(items=tweets, boundary_at=boundary_at)

    def natural_key_of(self, item: Tweet) -> Optional[str]:
        return item.status_link or None

    def build_result(self, session: ScrapeSession[Tweet]) -> Dict[str, Any]:
        tweets = [t.to_dict() for t in session.items]
        n_main = main_thread_length(tweets)
        return {
            "url": session.url,
            "tweets": tweets,
            "main_thread": tweets[:n_main],
            "replies": tweets[n_main:],
            "count": len(tweets),
            "filtered_count": session.filtered_count,
            "scroll_steps": session.steps,
        }
