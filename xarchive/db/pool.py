"""
数据库连接池（MySQL / SQLite 两种后端，同一套调用约定）。

设计目标：
- 连接复用（简易连接池）
- 参数化 SQL（统一使用 %s 占位符，SQLite 侧自动转换）
- connection() 上下文：正常退出提交，异常回滚
"""

from __future__ import annotations

import logging
import queue
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pymysql
from pymysql.cursors import DictCursor

from xarchive.config import Settings
from xarchive.exceptions import StoreError

logger = logging.getLogger(__name__)

_SQLITE_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

# 显式注册 datetime 的存取方式（不依赖 sqlite3 的默认适配器）
sqlite3.register_adapter(datetime, lambda v: v.strftime(_SQLITE_TS_FORMAT))
sqlite3.register_converter("DATETIME", lambda b: datetime.fromisoformat(b.decode("utf-8")))


class DbPool:
    """
    简易连接池。

    子类只需实现 _new_conn()；需要探活的后端再覆盖 _revive()。
    """

    dialect = ""

    def __init__(self, pool_size: int = 5) -> None:
        self._pool: "queue.Queue[Any]" = queue.Queue(maxsize=max(pool_size, 1))

    def _prewarm(self) -> None:
        # 预热：创建连接（可减少首次延迟）
        for _ in range(self._pool.maxsize):
            self._pool.put(self._new_conn())

    def _new_conn(self) -> Any:
        raise NotImplementedError

    def _revive(self, conn: Any) -> Any:
        return conn

    @contextmanager
    def connection(self) -> Iterator[Any]:
        conn: Optional[Any] = None
        try:
            try:
                conn = self._pool.get(timeout=30)
            except queue.Empty as e:
                raise StoreError(f"{self.dialect} 连接池耗尽") from e
            conn = self._revive(conn)
            yield conn
            conn.commit()
        except Exception:
            if conn is not None:
                try:
                    conn.rollback()
                except Exception:
                    logger.exception("%s rollback 失败", self.dialect)
            raise
        finally:
            if conn is not None:
                try:
                    self._pool.put(conn, timeout=30)
                except queue.Full:
                    # 连接池满了，直接关闭连接避免泄漏
                    conn.close()

    def close(self) -> None:
        """关闭池中所有空闲连接（服务退出时调用）。"""
        while True:
            try:
                conn = self._pool.get_nowait()
            except queue.Empty:
                return
            try:
                conn.close()
            except Exception:
                logger.exception("%s 连接关闭失败", self.dialect)


class MySqlPool(DbPool):
    """MySQL 连接池（PyMySQL + DictCursor）。"""

    dialect = "mysql"

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        database: str,
        pool_size: int = 5,
    ) -> None:
        super().__init__(pool_size)
        self._dsn = dict(
            host=host,
            port=port,
            user=user,
            password=password,
            database=database,
            charset="utf8mb4",
            cursorclass=DictCursor,
            autocommit=False,
            connect_timeout=10,
            read_timeout=30,
            write_timeout=30,
        )
        self._prewarm()

    def _new_conn(self) -> Any:
        try:
            return pymysql.connect(**self._dsn)
        except pymysql.MySQLError as e:
            raise StoreError(f"MySQL 连接失败：{e}") from e

    def _revive(self, conn: Any) -> Any:
        # 避免复用到已断开的连接
        try:
            conn.ping(reconnect=True)
            return conn
        except pymysql.MySQLError:
            logger.warning("MySQL ping 失败，重建连接")
            conn.close()
            return self._new_conn()


class _SqliteCursor:
    """让 sqlite3 游标的用法与 PyMySQL DictCursor 一致（上下文管理、%s 占位符、dict 行）。"""

    def __init__(self, cur: sqlite3.Cursor) -> None:
        self._cur = cur

    def __enter__(self) -> "_SqliteCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self._cur.close()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        self._cur.execute(sql.replace("%s", "?"), tuple(params))
        return self._cur.rowcount

    def executemany(self, sql: str, seq_of_params: Sequence[Sequence[Any]]) -> int:
        self._cur.executemany(sql.replace("%s", "?"), [tuple(p) for p in seq_of_params])
        return self._cur.rowcount

    def fetchone(self) -> Optional[Dict[str, Any]]:
        row = self._cur.fetchone()
        return dict(row) if row is not None else None

    def fetchall(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._cur.fetchall()]

    @property
    def rowcount(self) -> int:
        return self._cur.rowcount

    @property
    def lastrowid(self) -> Optional[int]:
        return self._cur.lastrowid


class _SqliteConnection:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def cursor(self) -> _SqliteCursor:
        return _SqliteCursor(self._conn.cursor())

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


class SqlitePool(DbPool):
    """
    SQLite 连接池（单机部署默认后端）。

    说明：
    - WAL 模式，读写互不阻塞；写入由 SQLite 串行化；
    - busy timeout 30 秒，并发写入时等待而不是立即报错。
    """

    dialect = "sqlite"

    def __init__(self, path: str, pool_size: int = 5) -> None:
        super().__init__(pool_size)
        self._path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._prewarm()

    def _new_conn(self) -> _SqliteConnection:
        try:
            raw = sqlite3.connect(
                self._path,
                timeout=30,
                check_same_thread=False,
                detect_types=sqlite3.PARSE_DECLTYPES,
            )
        except sqlite3.Error as e:
            raise StoreError(f"SQLite 打开失败：path={self._path} err={e}") from e
        raw.row_factory = sqlite3.Row
        raw.execute("PRAGMA journal_mode = WAL")
        raw.execute("PRAGMA foreign_keys = ON")
        return _SqliteConnection(raw)


def create_pool(settings: Settings) -> DbPool:
    """按配置创建连接池。"""
    backend = (settings.db_backend or "").strip().lower()
    if backend == "mysql":
        return MySqlPool(
            host=settings.mysql_host,
            port=settings.mysql_port,
            user=settings.mysql_user,
            password=settings.mysql_password,
            database=settings.mysql_database,
            pool_size=settings.db_pool_size,
        )
    if backend == "sqlite":
        return SqlitePool(settings.sqlite_path, pool_size=settings.db_pool_size)
    raise ValueError(f"DB_BACKEND 只支持 mysql/sqlite，实际：{settings.db_backend!r}")


def init_schema(pool: DbPool) -> None:
    """初始化表结构（幂等）。"""
    from xarchive.db.schema import schema_statements

    with pool.connection() as conn:
        with conn.cursor() as cur:
            for stmt in schema_statements(pool.dialect):
                cur.execute(stmt)
    logger.info("数据库表结构初始化完成：dialect=%s", pool.dialect)
