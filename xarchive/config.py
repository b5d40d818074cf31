"""
配置模块：从环境变量读取运行参数。

说明：
- 优先读取 .env（若存在），便于本地/容器化部署；
- 生产环境推荐直接注入环境变量，避免在镜像/服务器落盘敏感信息。
"""

from __future__ import annotations

from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置（Pydantic v2）。"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # ---------- 存储 ----------
    db_backend: str = Field(default="sqlite", alias="DB_BACKEND")
    sqlite_path: str = Field(default="data/xarchive.db", alias="SQLITE_PATH")
    mysql_host: str = Field(default="127.0.0.1", alias="MYSQL_HOST")
    mysql_port: int = Field(default=3306, alias="MYSQL_PORT")
    mysql_user: str = Field(default="root", alias="MYSQL_USER")
    mysql_password: str = Field(default="", alias="MYSQL_PASSWORD")
    mysql_database: str = Field(default="xarchive", alias="MYSQL_DATABASE")
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE")

    # ---------- 队列处理器 ----------
    worker_id: str = Field(default="", alias="WORKER_ID")
    poll_interval_ms: int = Field(default=2000, alias="POLL_INTERVAL_MS")
    eta_seconds_per_task: int = Field(default=30, alias="ETA_SECONDS_PER_TASK")
    retention_days: int = Field(default=7, alias="RETENTION_DAYS")
    # Cron（五段式）；为空表示不自动清理，只能手动 sweep
    sweep_cron: str = Field(default="", alias="SWEEP_CRON")

    # ---------- 浏览器自动化 ----------
    automation_backend: str = Field(default="remote", alias="AUTOMATION_BACKEND")
    automation_url: str = Field(default="http://localhost:3103", alias="AUTOMATION_URL")
    automation_timeout_seconds: int = Field(default=60, alias="AUTOMATION_TIMEOUT_SECONDS")
    playwright_headless: int = Field(default=1, alias="PLAYWRIGHT_HEADLESS")

    # ---------- 滚动抓取 ----------
    default_scroll_times: int = Field(default=10, alias="DEFAULT_SCROLL_TIMES")
    scroll_key: str = Field(default="PageDown", alias="SCROLL_KEY")
    scroll_key_presses: int = Field(default=3, alias="SCROLL_KEY_PRESSES")
    key_press_delay_ms: int = Field(default=300, alias="KEY_PRESS_DELAY_MS")
    settle_delay_ms: int = Field(default=1000, alias="SETTLE_DELAY_MS")
    initial_wait_ms: int = Field(default=3000, alias="INITIAL_WAIT_MS")
    missing_key_policy: str = Field(default="drop", alias="MISSING_KEY_POLICY")

    # ---------- 文本补全（LLM） ----------
    llm_api_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", alias="LLM_API_URL")
    llm_api_key: str = Field(default="", alias="LLM_API_KEY")
    llm_timeout_seconds: int = Field(default=300, alias="LLM_TIMEOUT_SECONDS")
    llm_model_opus: str = Field(default="anthropic/claude-opus-4", alias="LLM_MODEL_OPUS")
    llm_model_sonnet: str = Field(default="anthropic/claude-sonnet-4", alias="LLM_MODEL_SONNET")

    # ---------- 任务处理器 ----------
    tag_max_content_chars: int = Field(default=8000, alias="TAG_MAX_CONTENT_CHARS")
    default_target_lang: str = Field(default="中文", alias="DEFAULT_TARGET_LANG")

    # ---------- Flask Web Server ----------
    flask_enabled: int = Field(default=1, alias="FLASK_ENABLED")
    flask_host: str = Field(default="0.0.0.0", alias="FLASK_HOST")
    flask_port: int = Field(default=3001, alias="FLASK_PORT")
    flask_debug: int = Field(default=0, alias="FLASK_DEBUG")

    # ---------- 日志 ----------
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    def model_map(self) -> Dict[str, str]:
        """模型提示（opus/sonnet）到实际模型名的映射。"""
        return {"opus": self.llm_model_opus, "sonnet": self.llm_model_sonnet}


settings = Settings()
