"""
任务处理器：每种任务类型一个 execute(params) -> result。

处理器只抛异常、不吞异常；捕获并记录为任务失败是 QueueProcessor 的事。
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

from xarchive.crawler.automation import AutomationClient
from xarchive.crawler.scraper_base import ScrapeOptions
from xarchive.crawler.tweet_scraper import TweetThreadScraper
from xarchive.db.extraction_repository import ExtractionRepository
from xarchive.exceptions import DataIntegrityError, MalformedResponseError
from xarchive.formatter import ExtractionMarkdown, article_markdown
from xarchive.llm_client import CompletionClient, extract_json_object
from xarchive.models import (
    ExtractParams,
    SummaryParams,
    TagParams,
    TaskParams,
    TaskType,
    TranslateParams,
)
from xarchive.tags import all_tags, format_tags_for_prompt

logger = logging.getLogger(__name__)

SUMMARY_PLACEHOLDER = "功能待实现"

TRANSLATE_PROMPT = """任务：将下面的内容翻译成地道的{target_lang}。
重要：直接输出翻译结果，不要加任何开场白、说明或评论。

翻译风格：
1. 用口语，别用书面语
2. 语气要自然，能省略的就省略
3. 意思到位就行，不用每个词都翻译
4. 保持原文的感觉：炫耀就炫耀，吐槽就吐槽
5. 大家都知道的专有名词直接用译名，不常见的保留原文
6. Markdown 格式必须原样保留：链接 [text](url)、图片 ![alt](url)、列表 `- `、分隔线 `---` 都不要改动

待翻译内容：
{content}"""

TAG_PROMPT = """分析以下内容并打上合适的标签。

可用标签列表（你只能从这些标签中选择）：
{tag_list}

严格要求：
1. 【重要】只能从上述列表中选择标签，绝对不能创造新标签
2. 【重要】返回的每个标签必须完全匹配列表中的 key（英文），不能有任何修改
3. 每个类别最多选择 2 个最相关的标签
4. 总共选择 4-10 个标签
5. 只返回 JSON，tags 数组只包含上述列表中存在的标签 key，reasons 给出每个标签的理由

返回格式示例：
{{
  "tags": ["thread", "tech", "informative", "objective", "with_media"],
  "reasons": {{
    "thread": "内容是连续的推文讨论",
    "tech": "讨论科技相关话题",
    "informative": "提供了有价值的信息",
    "objective": "观点客观中立",
    "with_media": "包含图片或视频"
  }}
}}

待分析内容：
{content}"""


class TaskHandler:
    """处理器基类。"""

    task_type: TaskType

    def execute(self, params: TaskParams) -> Dict[str, Any]:
        raise NotImplementedError


def load_article(repo: ExtractionRepository, extraction_id: int) -> ExtractionMarkdown:
    """读取提取记录并生成主线程 Markdown；记录不存在或没有内容时抛 DataIntegrityError。"""
    data = repo.get_extraction(extraction_id)
    if data is None:
        raise DataIntegrityError(f"提取记录 #{extraction_id} 不存在")
    article = article_markdown(data)
    if article is None or not article.content.strip():
        raise DataIntegrityError(f"提取记录 #{extraction_id} 没有内容")
    return article


class ExtractTaskHandler(TaskHandler):
    """抓取推文线程并保存为新的提取记录。"""

    task_type = TaskType.EXTRACT

    def __init__(
        self,
        client: AutomationClient,
        repo: ExtractionRepository,
        options: ScrapeOptions,
    ) -> None:
        self._client = client
        self._repo = repo
        self._options = options

    def execute(self, params: ExtractParams) -> Dict[str, Any]:
        opts = dataclasses.replace(self._options, scroll_times=params.scroll_times, max_items=params.max_items)
        result = TweetThreadScraper(self._client, opts).scrape(params.url)
        if not result["count"]:
            raise DataIntegrityError(f"页面没有提取到任何推文：url={params.url}")

        extraction_id = self._repo.save_extraction(
            result,
            scroll_times=params.scroll_times,
            filtered_count=result["filtered_count"],
        )
        return {
            "extraction_id": extraction_id,
            "tweet_count": result["count"],
            "filtered_count": result["filtered_count"],
            "url": params.url,
        }


class TranslateTaskHandler(TaskHandler):
    task_type = TaskType.TRANSLATE

    def __init__(
        self,
        repo: ExtractionRepository,
        completion: CompletionClient,
        default_target_lang: str = "中文",
    ) -> None:
        self._repo = repo
        self._completion = completion
        self._default_lang = default_target_lang

    def execute(self, params: TranslateParams) -> Dict[str, Any]:
        target_lang = params.target_lang or self._default_lang
        article = load_article(self._repo, params.extraction_id)
        prompt = TRANSLATE_PROMPT.format(target_lang=target_lang, content=article.content)

        translated = self._completion.complete("opus", prompt).strip()
        if not translated:
            raise MalformedResponseError("翻译结果为空")

        return {
            "extraction_id": params.extraction_id,
            "target_lang": target_lang,
            "translated_markdown": translated,
            "original_chars": len(article.content),
            "translated_chars": len(translated),
            "translated_at": datetime.now().isoformat(),
        }


class TagTaskHandler(TaskHandler):
    """
    AI 自动标签。

    响应必须是 {"tags": [...], "reasons": {...}}，且 tags 非空、全部在受控词表内，
    否则整个响应作废（任务失败），不做部分接受。
    """

    task_type = TaskType.TAG

    def __init__(
        self,
        repo: ExtractionRepository,
        completion: CompletionClient,
        max_content_chars: int = 8000,
    ) -> None:
        self._repo = repo
        self._completion = completion
        self._max_chars = max_content_chars

    def execute(self, params: TagParams) -> Dict[str, Any]:
        article = load_article(self._repo, params.extraction_id)
        content = article.content
        if len(content) > self._max_chars:
            content = content[: self._max_chars] + "..."

        prompt = TAG_PROMPT.format(tag_list=format_tags_for_prompt(), content=content)
        reply = self._completion.complete("sonnet", prompt)
        tags, reasons = validate_tag_response(extract_json_object(reply), raw=reply)

        vocabulary = all_tags()
        logger.info("标签分析完成：extraction_id=%s tags=%s", params.extraction_id, ",".join(tags))
        return {
            "extraction_id": params.extraction_id,
            "tags": tags,
            "labels": {t: vocabulary[t] for t in tags},
            "reasons": reasons,
            "tagged_at": datetime.now().isoformat(),
        }


def validate_tag_response(obj: Dict[str, Any], raw: str = "") -> Tuple[List[str], Dict[str, str]]:
    """校验标签响应结构与词表，返回 (去重后的 tags, reasons)。"""
    tags = obj.get("tags")
    reasons = obj.get("reasons")
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise MalformedResponseError("标签响应缺少 tags 字符串数组", raw=raw[:500])
    if not isinstance(reasons, dict):
        raise MalformedResponseError("标签响应缺少 reasons 对象", raw=raw[:500])

    unique: List[str] = []
    for t in tags:
        t = t.strip()
        if t and t not in unique:
            unique.append(t)
    if not unique:
        raise MalformedResponseError("标签响应没有任何标签", raw=raw[:500])

    vocabulary = all_tags()
    unknown = [t for t in unique if t not in vocabulary]
    if unknown:
        raise MalformedResponseError(f"标签不在词表中：{', '.join(unknown)}", raw=raw[:500])

    return unique, {t: str(reasons.get(t, "")) for t in unique}


class SummaryTaskHandler(TaskHandler):
    task_type = TaskType.SUMMARY

    def execute(self, params: SummaryParams) -> Dict[str, Any]:
        # TODO: 接入补全接口生成摘要（复用 load_article + CompletionClient，模型用 sonnet）
        return {"extraction_id": params.extraction_id, "summary": SUMMARY_PLACEHOLDER}


def build_handler_registry(
    client: AutomationClient,
    repo: ExtractionRepository,
    completion: CompletionClient,
    scrape_options: ScrapeOptions,
    tag_max_content_chars: int = 8000,
    default_target_lang: str = "中文",
) -> Dict[TaskType, TaskHandler]:
    """按任务类型注册处理器；每个 TaskType 都必须有对应处理器。"""
    handlers: List[TaskHandler] = [
        ExtractTaskHandler(client, repo, scrape_options),
        TranslateTaskHandler(repo, completion, default_target_lang=default_target_lang),
        TagTaskHandler(repo, completion, max_content_chars=tag_max_content_chars),
        SummaryTaskHandler(),
    ]
    registry = {h.task_type: h for h in handlers}
    missing = [t.value for t in TaskType if t not in registry]
    if missing:
        raise ValueError(f"缺少任务处理器：{', '.join(missing)}")
    return registry
