"""
预定义标签（受控词表）。

tag 任务只能从这里选择标签；LLM 返回词表之外的 key 时整个响应作废。
"""

from __future__ import annotations

from typing import Dict

PREDEFINED_TAGS: Dict[str, Dict[str, str]] = {
    # 内容形式
    "format": {
        "thread": "连续推文",
        "single": "单条推文",
        "with_media": "包含图片/视频",
        "with_link": "包含外链",
    },
    # 内容类型
    "content_types": {
        "tech_share": "技术分享",
        "news": "新闻资讯",
        "tutorial": "教程指南",
        "opinion": "观点评论",
        "announcement": "产品发布",
        "discussion": "讨论交流",
        "resource": "资源分享",
        "case_study": "案例分析",
    },
    # 内容领域
    "topics": {
        "tech": "科技",
        "business": "商业",
        "finance": "金融投资",
        "startup": "创业",
        "career": "职场",
        "life": "生活",
        "culture": "文化",
        "politics": "时政",
    },
    # 技术领域
    "tech_domains": {
        "ai_ml": "AI/机器学习",
        "frontend": "前端开发",
        "backend": "后端开发",
        "devops": "DevOps",
        "database": "数据库",
        "security": "安全",
        "blockchain": "区块链",
        "mobile": "移动开发",
        "cloud": "云计算",
        "data_science": "数据科学",
    },
    # 内容价值
    "value": {
        "informative": "信息量大",
        "insightful": "有洞见",
        "practical": "实用",
        "entertaining": "有趣",
    },
    # 内容深度
    "depth": {
        "beginner": "入门级",
        "intermediate": "进阶",
        "advanced": "高级",
        "expert": "专家级",
    },
    # 立场/情感
    "stance": {
        "objective": "客观中立",
        "positive": "积极正面",
        "negative": "消极负面",
        "controversial": "争议性",
        "humorous": "幽默调侃",
    },
    # 内容特征
    "features": {
        "with_code": "包含代码",
        "with_demo": "包含演示",
        "with_data": "包含数据",
        "breaking_news": "突发新闻",
        "trending": "热门话题",
    },
}


def all_tags() -> Dict[str, str]:
    """所有标签的平面映射 key -> 中文名。"""
    merged: Dict[str, str] = {}
    for tags in PREDEFINED_TAGS.values():
        merged.update(tags)
    return merged


def format_tags_for_prompt() -> str:
    """
    渲染为 prompt 中的标签列表：

        【Content Types】
          - tech_share: 技术分享
    """
    blocks = []
    for category, tags in PREDEFINED_TAGS.items():
        title = category.replace("_", " ").title()
        lines = "\n".join(f"  - {key}: {label}" for key, label in tags.items())
        blocks.append(f"【{title}】\n{lines}")
    return "\n\n".join(blocks)
