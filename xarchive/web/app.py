"""
Flask 应用工厂。

HTTP 接口只负责入队和查询；任务由 QueueProcessor 在后台执行。
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify

from xarchive.db.extraction_repository import ExtractionRepository
from xarchive.db.task_queue import TaskQueue

logger = logging.getLogger(__name__)


def create_flask_app(queue: TaskQueue, repo: ExtractionRepository, default_target_lang: str = "中文") -> Flask:
    """
    创建 Flask 应用实例。

    Args:
        queue: 任务队列
        repo: 提取记录仓库
        default_target_lang: 翻译接口未指定语言时的默认值

    Returns:
        Flask 应用实例
    """
    app = Flask(__name__)
    app.config["JSON_AS_ASCII"] = False  # 支持中文 JSON
    app.json.ensure_ascii = False

    from xarchive.web import routes

    routes.init_routes(app, queue, repo, default_target_lang=default_target_lang)

    @app.route("/health")
    def health_check():
        return jsonify({"status": "ok", "service": "xarchive"})

    logger.info("Flask 应用创建成功")
    return app


def run_flask_in_thread(app: Flask, host: str, port: int, debug: bool = False) -> None:
    """在后台线程中运行 Flask 应用（禁用重载器）。"""
    app.run(host=host, port=port, debug=debug, use_reloader=False)
