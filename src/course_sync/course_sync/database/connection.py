from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import mysql.connector
from mysql.connector import pooling

from ..core.constants import DEFAULT_DB_POOL_SIZE


@dataclass(frozen=True)
class DBConfig:
    host: str
    port: int
    user: str
    password: str
    database: str
    pool_size: int = DEFAULT_DB_POOL_SIZE

    @classmethod
    def from_dict(cls, db_config: dict) -> "DBConfig":
        return cls(
            host=str(db_config.get("host", "localhost")),
            port=int(db_config.get("port", 3306)),
            user=str(db_config.get("user", "root")),
            password=str(db_config.get("password", "")),
            database=str(db_config.get("database", "course_sync_db")),
            pool_size=int(db_config.get("pool_size", DEFAULT_DB_POOL_SIZE)),
        )

    def connect_kwargs(self, *, with_database: bool = True) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = dict(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            charset="utf8mb4",
            collation="utf8mb4_unicode_ci",
        )
        if with_database:
            kwargs["database"] = self.database
        return kwargs


class DatabaseConnection:
    """Process-wide connection factory.

    Repositories call `connect` from worker threads (asyncio.to_thread); with
    pool_size > 0 connections come from a mysql-connector pool and `close()`
    hands them back. The pool is created lazily on first use.
    """

    _instance: Optional["DatabaseConnection"] = None
    _instance_lock = threading.Lock()

    def __init__(self, config: DBConfig):
        self._config = config
        self._pool: Optional[pooling.MySQLConnectionPool] = None
        self._pool_lock = threading.Lock()

    @property
    def config(self) -> DBConfig:
        return self._config

    @classmethod
    def get_instance(cls, config: DBConfig) -> "DatabaseConnection":
        with cls._instance_lock:
            if cls._instance is None or cls._instance.config != config:
                cls._instance = DatabaseConnection(config)
            return cls._instance

    def connect(self):
        if self._config.pool_size <= 0:
            return mysql.connector.connect(**self._config.connect_kwargs())

        with self._pool_lock:
            if self._pool is None:
                self._pool = pooling.MySQLConnectionPool(
                    pool_name=f"course_sync_{self._config.database}",
                    pool_size=self._config.pool_size,
                    **self._config.connect_kwargs(),
                )
        return self._pool.get_connection()
