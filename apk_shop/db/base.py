"""Metadata Store - SQLAlchemy engine、会话与事务管理"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

WRITE_OPTION = "apk_shop_write"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    # Let SQLAlchemy emit BEGIN itself so we can make it IMMEDIATE.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn) -> None:
    # 只有写事务在开始时获取写锁，只读会话使用普通的 BEGIN
    if conn.get_execution_options().get(WRITE_OPTION):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        conn.exec_driver_sql("BEGIN")


class Database:
    """关系型元数据存储。

    每个写事务都是可串行化的：
    - SQLite: ``transaction()`` 以 ``BEGIN IMMEDIATE`` 开启，写锁在事务开始时获取（单写者）；
      ``session()`` 以普通 ``BEGIN`` 开启，读取不与上传争抢写锁
    - 其他引擎: 使用 ``SERIALIZABLE`` 隔离级别，链上的行以 ``FOR UPDATE`` 读取
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.is_sqlite = url.startswith("sqlite")

        if self.is_sqlite:
            database = make_url(url).database
            in_memory = not database or database == ":memory:"
            if not in_memory:
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            engine_kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
            if in_memory:
                engine_kwargs["poolclass"] = StaticPool
            self.engine = create_engine(url, **engine_kwargs)
            event.listen(self.engine, "connect", _sqlite_on_connect)
            event.listen(self.engine, "begin", _sqlite_on_begin)
        else:
            self.engine = create_engine(
                url,
                pool_pre_ping=True,
                isolation_level="SERIALIZABLE",
            )

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._write_engine = self.engine.execution_options(**{WRITE_OPTION: True})

    def create_all(self) -> None:
        """创建所有数据表（幂等）"""
        from apk_shop.db import models  # noqa: F401  register tables

        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """只读会话：退出时回滚未提交的内容"""
        with self.SessionLocal() as session:
            yield session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """单个原子事务：正常退出时提交，异常时回滚并重新抛出"""
        with self.SessionLocal(bind=self._write_engine) as session:
            with session.begin():
                yield session
