"""
提取记录（extractions）数据访问层。

提取记录只由成功的 extract 任务创建一次，之后只读：
翻译/标签等结果写入 task_results，不修改这里的记录。
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from xarchive.db.pool import DbPool
from xarchive.exceptions import DataIntegrityError

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 500

_FULL_CN_DATE_RE = re.compile(r"(\d{4})年(\d{1,2})月(\d{1,2})日")
_CN_MONTH_DAY_RE = re.compile(r"(\d{1,2})月(\d{1,2})日")
_FULL_EN_DATE_RE = re.compile(r"\b([A-Z][a-z]{2})\s+(\d{1,2}),\s*(\d{4})\b")
_EN_MONTH_DAY_RE = re.compile(r"^\s*([A-Z][a-z]{2})\s+(\d{1,2})\s*$")

_META_COLUMNS = (
    "id, url, author_name, author_handle, author_avatar, tweet_count, scroll_times, "
    "filtered_count, main_tweet_text, post_time, post_date, extract_time"
)


def parse_post_date(time_text: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    从推文显示时间中解析日期。

    示例：
    - "上午4:11 · 2025年8月20日" => 2025-08-20
    - "8月20日" => 当年 08-20
    - "Aug 20, 2025" / "Aug 20"
    - "16小时" / "3h"（相对时间）=> None
    """
    text = (time_text or "").strip()
    if not text:
        return None
    year_now = (today or date.today()).year

    try:
        m = _FULL_CN_DATE_RE.search(text)
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        m = _CN_MONTH_DAY_RE.search(text)
        if m:
            return date(year_now, int(m.group(1)), int(m.group(2)))
        m = _FULL_EN_DATE_RE.search(text)
        if m:
            return datetime.strptime(f"{m.group(1)} {m.group(2)} {m.group(3)}", "%b %d %Y").date()
        m = _EN_MONTH_DAY_RE.match(text)
        if m:
            return datetime.strptime(f"{m.group(1)} {m.group(2)} {year_now}", "%b %d %Y").date()
    except ValueError:
        # 2月30日 这类非法日期
        logger.debug("日期不合法：time=%r", text)
        return None
    return None


def _iso_date(value: Any) -> Optional[str]:
    # MySQL 返回 date，SQLite 返回 TEXT
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class ExtractionRepository:
    """提取记录数据访问层（只增不改）。"""

    def __init__(self, db_pool: DbPool):
        self._db = db_pool

    def save_extraction(self, result: Dict[str, Any], scroll_times: int = 0, filtered_count: int = 0) -> int:
        """
        保存一次提取结果，返回新记录 ID。

        Args:
            result: 推文线程抓取结果（见 TweetThreadScraper.build_result）
            scroll_times: 本次请求的最大滚动次数
            filtered_count: 被边界过滤掉的条目数

        Raises:
            DataIntegrityError: 结果中没有任何推文
        """
        tweets = result.get("tweets") or []
        if not tweets:
            raise DataIntegrityError(f"提取结果为空，拒绝保存：url={result.get('url')}")

        main = tweets[0]
        author = main.get("author") or {}
        text = (main.get("content") or {}).get("text") or ""
        post_time = main.get("time") or ""

        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO extractions (
                        url, author_name, author_handle, author_avatar,
                        tweet_count, scroll_times, filtered_count,
                        main_tweet_text, post_time, post_date, extract_time, data
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        result.get("url") or "",
                        author.get("name"),
                        author.get("handle"),
                        author.get("avatar"),
                        int(result.get("count") or len(tweets)),
                        scroll_times,
                        filtered_count,
                        text[:_PREVIEW_CHARS],
                        post_time,
                        _iso_date(parse_post_date(post_time)),
                        datetime.now(),
                        json.dumps(result, ensure_ascii=False),
                    ),
                )
                extraction_id = int(cur.lastrowid)

        logger.info("提取记录已保存：id=%s url=%s tweets=%s", extraction_id, result.get("url"), len(tweets))
        return extraction_id

    def get_extraction(self, extraction_id: int) -> Optional[Dict[str, Any]]:
        """获取完整提取结果（JSON 解码后）。"""
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT data FROM extractions WHERE id = %s", (extraction_id,))
                row = cur.fetchone()
        return json.loads(row["data"]) if row else None

    def get_extraction_meta(self, extraction_id: int) -> Optional[Dict[str, Any]]:
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {_META_COLUMNS} FROM extractions WHERE id = %s", (extraction_id,))
                row = cur.fetchone()
        return self._meta(row) if row else None

    def list_extractions(self, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        """按提取时间倒序列出记录元数据。"""
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_META_COLUMNS} FROM extractions ORDER BY extract_time DESC, id DESC LIMIT %s OFFSET %s",
                    (limit, offset),
                )
                rows = cur.fetchall()
        return [self._meta(r) for r in rows]

    def exists(self, extraction_id: int) -> bool:
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok FROM extractions WHERE id = %s", (extraction_id,))
                return cur.fetchone() is not None

    @staticmethod
    def _meta(row: Dict[str, Any]) -> Dict[str, Any]:
        meta = dict(row)
        meta["post_date"] = _iso_date(meta.get("post_date"))
        if isinstance(meta.get("extract_time"), datetime):
            meta["extract_time"] = meta["extract_time"].isoformat()
        return meta
