"""
Flask 路由定义。

- /api/fetch-tweet、/api/task：入队（立即返回任务 ID）
- /api/task/<task_id>：查询 / 取消
- /api/queue/status：队列概览（分页）
- /api/extractions：提取记录查询，以及基于记录创建翻译/标签任务
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, jsonify, request

from xarchive.db.extraction_repository import ExtractionRepository
from xarchive.db.task_queue import TaskQueue
from xarchive.exceptions import ValidationError
from xarchive.formatter import article_markdown
from xarchive.models import TaskStatus, TaskType

logger = logging.getLogger(__name__)


def _queued(task_id: str, message: str):
    return jsonify({"taskId": task_id, "status": "queued", "message": message}), 200


def _bad_request(e: ValidationError):
    return jsonify({"error": str(e), "field": e.field}), 400


def init_routes(
    app: Any,
    queue: TaskQueue,
    repo: ExtractionRepository,
    default_target_lang: str = "中文",
) -> None:
    """注册所有 API 路由。"""
    api_bp = Blueprint("api", __name__, url_prefix="/api")

    # ========== API: 任务 ==========

    @api_bp.route("/fetch-tweet", methods=["POST"])
    def fetch_tweet():
        """
        添加提取任务（旧接口）。

        Request Body:
            {"url": "...", "scrollTimes": 10}
        """
        data = request.get_json(silent=True) or {}
        if not data.get("url"):
            return jsonify({"error": "请提供推文URL"}), 400
        try:
            task_id = queue.enqueue(
                TaskType.EXTRACT,
                {"url": data["url"], "scroll_times": data.get("scrollTimes", 10)},
            )
        except ValidationError as e:
            return _bad_request(e)
        except Exception as e:
            logger.exception("添加任务失败：url=%s", data.get("url"))
            return jsonify({"error": f"服务器错误: {str(e)}"}), 500
        return _queued(task_id, "任务已加入队列")

    @api_bp.route("/task", methods=["POST"])
    def create_task():
        """
        创建通用任务。

        Request Body:
            {"type": "translate", "params": {"extractionId": 1}, "priority": 0}
        """
        data = request.get_json(silent=True) or {}
        task_type = data.get("type")
        params = data.get("params")
        if not task_type or params is None:
            return jsonify({"error": "请提供任务类型和参数"}), 400
        try:
            task_id = queue.enqueue(task_type, params, priority=data.get("priority", 0), user_id=data.get("userId"))
        except ValidationError as e:
            if e.field == "type":
                return jsonify({"error": str(e), "supportedTypes": [t.value for t in TaskType]}), 400
            return _bad_request(e)
        except Exception as e:
            logger.exception("创建任务失败：type=%s", task_type)
            return jsonify({"error": f"服务器错误: {str(e)}"}), 500
        return _queued(task_id, f"{task_type} 任务已加入队列")

    @api_bp.route("/task/<task_id>", methods=["GET"])
    def get_task(task_id: str):
        """查询任务状态；已完成的任务附带结果。"""
        try:
            task = queue.get_task(task_id)
            if task is None:
                return jsonify({"error": "任务不存在"}), 404

            result: Optional[Dict[str, Any]] = None
            if task.status is TaskStatus.COMPLETED:
                if task.result_id is not None:
                    result = repo.get_extraction(task.result_id)
                else:
                    stored = queue.get_result(task_id)
                    result = stored["payload"] if stored else None

            data = task.to_dict()
            data["result"] = result
            return jsonify(data), 200
        except Exception as e:
            logger.exception("查询任务失败：task_id=%s", task_id)
            return jsonify({"error": f"服务器错误: {str(e)}"}), 500

    @api_bp.route("/task/<task_id>", methods=["DELETE"])
    def cancel_task(task_id: str):
        """取消任务（只标记状态，不中断正在执行的处理器）。"""
        if not queue.cancel(task_id):
            return jsonify({"error": "无法取消该任务"}), 400
        return jsonify({"message": "任务已取消"}), 200

    @api_bp.route("/queue/status", methods=["GET"])
    def queue_status():
        """
        队列概览。

        Query Params:
            page / pageSize / filter(all|pending|processing|completed|failed|cancelled)
        """
        page = request.args.get("page", 1, type=int)
        page_size = request.args.get("pageSize", 10, type=int)
        status_filter = request.args.get("filter", "all")
        try:
            status = queue.status(page=page, page_size=page_size, status_filter=status_filter)
        except ValidationError as e:
            return _bad_request(e)
        return jsonify(status.to_dict()), 200

    # ========== API: 提取记录 ==========

    @api_bp.route("/extractions", methods=["GET"])
    def list_extractions():
        limit = min(max(1, request.args.get("limit", 20, type=int)), 100)
        offset = max(0, request.args.get("offset", 0, type=int))
        return jsonify({"extractions": repo.list_extractions(limit=limit, offset=offset)}), 200

    @api_bp.route("/extractions/<int:extraction_id>", methods=["GET"])
    def get_extraction(extraction_id: int):
        data = repo.get_extraction(extraction_id)
        if data is None:
            return jsonify({"error": "记录不存在"}), 404
        return jsonify(data), 200

    @api_bp.route("/extractions/<int:extraction_id>/article-markdown", methods=["GET"])
    def get_article_markdown(extraction_id: int):
        data = repo.get_extraction(extraction_id)
        article = article_markdown(data) if data is not None else None
        if article is None:
            return jsonify({"error": "记录不存在或无法生成 Markdown 文章"}), 404
        return jsonify(article.to_dict()), 200

    @api_bp.route("/extractions/<int:extraction_id>/<action>", methods=["POST"])
    def create_extraction_task(extraction_id: int, action: str):
        """基于提取记录创建 translate / tag / summary 任务。"""
        if action not in (TaskType.TRANSLATE.value, TaskType.TAG.value, TaskType.SUMMARY.value):
            return jsonify({"error": f"不支持的操作: {action}"}), 404
        if not repo.exists(extraction_id):
            return jsonify({"error": "记录不存在"}), 404

        params: Dict[str, Any] = {"extraction_id": extraction_id}
        if action == TaskType.TRANSLATE.value:
            data = request.get_json(silent=True) or {}
            params["target_lang"] = data.get("targetLang") or default_target_lang
        try:
            task_id = queue.enqueue(action, params)
        except ValidationError as e:
            return _bad_request(e)
        logger.info("创建任务：type=%s extraction_id=%s task_id=%s", action, extraction_id, task_id)
        return _queued(task_id, f"{action} 任务已加入队列")

    app.register_blueprint(api_bp)
    logger.info("路由注册完成")
