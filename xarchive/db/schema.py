"""
任务队列 / 任务结果 / 提取记录的表结构（MySQL 与 SQLite 各一份）。
"""

from __future__ import annotations

from typing import List

MYSQL_SCHEMA = """
-- 任务队列
CREATE TABLE IF NOT EXISTS task_queue (
  id BIGINT AUTO_INCREMENT PRIMARY KEY,
  task_id VARCHAR(64) NOT NULL UNIQUE COMMENT '对外任务 ID',
  type VARCHAR(20) NOT NULL DEFAULT 'extract' COMMENT 'extract/translate/tag/summary',
  url VARCHAR(2048) NOT NULL DEFAULT '' COMMENT '旧格式 extract 参数',
  scroll_times INT NOT NULL DEFAULT 0 COMMENT '旧格式 extract 参数',
  params TEXT NULL COMMENT 'JSON 参数',
  status VARCHAR(20) NOT NULL DEFAULT 'pending' COMMENT 'pending/processing/completed/failed/cancelled',
  priority INT NOT NULL DEFAULT 0 COMMENT '数字越小越优先',
  retry_count INT NOT NULL DEFAULT 0,
  worker_id VARCHAR(128) NULL,
  progress INT NOT NULL DEFAULT 0 COMMENT '0-100',
  progress_message TEXT NULL,
  created_at DATETIME(6) NOT NULL,
  started_at DATETIME(6) NULL,
  completed_at DATETIME(6) NULL,
  error_message TEXT NULL,
  result_id BIGINT NULL COMMENT 'extract 任务关联的 extractions.id',
  user_id VARCHAR(128) NULL,

  KEY idx_task_status (status),
  KEY idx_task_priority (status, priority, created_at),
  KEY idx_task_created (created_at)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COMMENT='任务队列';

-- 非 extract 任务的结果
CREATE TABLE IF NOT EXISTS task_results (
  task_id VARCHAR(64) PRIMARY KEY,
  kind VARCHAR(20) NOT NULL COMMENT 'translate/tag/summary',
  payload LONGTEXT NOT NULL COMMENT 'JSON 结果',
  created_at DATETIME(6) NOT NULL,

  KEY idx_result_kind (kind),
  FOREIGN KEY (task_id) REFERENCES task_queue(task_id) ON DELETE CASCADE
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COMMENT='任务结果';

-- 提取记录
CREATE TABLE IF NOT EXISTS extractions (
  id BIGINT AUTO_INCREMENT PRIMARY KEY,
  url VARCHAR(2048) NOT NULL,
  author_name VARCHAR(255) NULL,
  author_handle VARCHAR(255) NULL,
  author_avatar VARCHAR(2048) NULL,
  tweet_count INT NOT NULL DEFAULT 0,
  scroll_times INT NOT NULL DEFAULT 0,
  filtered_count INT NOT NULL DEFAULT 0,
  main_tweet_text TEXT NULL COMMENT '主推文预览（前 500 字符）',
  post_time VARCHAR(128) NULL COMMENT '原始时间文本',
  post_date DATE NULL,
  extract_time DATETIME(6) NOT NULL,
  data LONGTEXT NOT NULL COMMENT '完整 JSON',

  KEY idx_extract_time (extract_time),
  KEY idx_post_date (post_date),
  KEY idx_author_handle (author_handle)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COMMENT='推文提取记录';
"""

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS task_queue (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  task_id TEXT NOT NULL UNIQUE,
  type TEXT NOT NULL DEFAULT 'extract',
  url TEXT NOT NULL DEFAULT '',
  scroll_times INTEGER NOT NULL DEFAULT 0,
  params TEXT,
  status TEXT NOT NULL DEFAULT 'pending',
  priority INTEGER NOT NULL DEFAULT 0,
  retry_count INTEGER NOT NULL DEFAULT 0,
  worker_id TEXT,
  progress INTEGER NOT NULL DEFAULT 0,
  progress_message TEXT,
  created_at DATETIME NOT NULL,
  started_at DATETIME,
  completed_at DATETIME,
  error_message TEXT,
  result_id INTEGER,
  user_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_task_status ON task_queue(status);
CREATE INDEX IF NOT EXISTS idx_task_priority ON task_queue(status, priority, created_at);
CREATE INDEX IF NOT EXISTS idx_task_created ON task_queue(created_at);

CREATE TABLE IF NOT EXISTS task_results (
  task_id TEXT PRIMARY KEY REFERENCES task_queue(task_id) ON DELETE CASCADE,
  kind TEXT NOT NULL,
  payload TEXT NOT NULL,
  created_at DATETIME NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_result_kind ON task_results(kind);

CREATE TABLE IF NOT EXISTS extractions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  url TEXT NOT NULL,
  author_name TEXT,
  author_handle TEXT,
  author_avatar TEXT,
  tweet_count INTEGER NOT NULL DEFAULT 0,
  scroll_times INTEGER NOT NULL DEFAULT 0,
  filtered_count INTEGER NOT NULL DEFAULT 0,
  main_tweet_text TEXT,
  post_time TEXT,
  post_date TEXT,
  extract_time DATETIME NOT NULL,
  data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_extract_time ON extractions(extract_time);
CREATE INDEX IF NOT EXISTS idx_post_date ON extractions(post_date);
CREATE INDEX IF NOT EXISTS idx_author_handle ON extractions(author_handle);
"""


def schema_statements(dialect: str) -> List[str]:
    """按方言返回建表语句列表（按分号切分，去掉纯注释片段）。"""
    if dialect == "mysql":
        sql = MYSQL_SCHEMA
    elif dialect == "sqlite":
        sql = SQLITE_SCHEMA
    else:
        raise ValueError(f"未知数据库方言：{dialect!r}")

    statements = []
    for chunk in sql.split(";"):
        lines = [ln for ln in chunk.strip().splitlines() if not ln.strip().startswith("--")]
        stmt = "\n".join(lines).strip()
        if stmt:
            statements.append(stmt)
    return statements
