"""
MySQL, PostgreSQL and Redshift back ends
Drivers are imported when a connection is made, so an unused engine never loads its driver.
"""
from contextlib import closing
from typing import Any, Optional

import structlog

from biggie.backends.base import Backend
from biggie.config import DatabaseConfig

logger = structlog.get_logger(__name__)

TEST_TABLE = "biggie_test_table"
READ_QUERY = "SELECT 1"
WRITE_QUERY = f"INSERT INTO {TEST_TABLE}(value) VALUES('stress')"

TEST_TABLE_DDL = {
    "mysql": (
        f"CREATE TABLE IF NOT EXISTS {TEST_TABLE} ("
        "id INT AUTO_INCREMENT PRIMARY KEY, "
        "value VARCHAR(255) NOT NULL, "
        "created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
    ),
    "postgres": (
        f"CREATE TABLE IF NOT EXISTS {TEST_TABLE} ("
        "id SERIAL PRIMARY KEY, "
        "value VARCHAR(255) NOT NULL, "
        "created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
    ),
    "redshift": (
        f"CREATE TABLE IF NOT EXISTS {TEST_TABLE} ("
        "id INT IDENTITY(1,1), "
        "value VARCHAR(255) NOT NULL, "
        "created_at TIMESTAMP DEFAULT GETDATE())"
    ),
}

CONNECT_TIMEOUT = 10


class SqlBackend(Backend):
    error_code = "DB_ERROR"

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.name = config.engine

    def connect(self) -> Any:
        cfg = self.config
        if cfg.engine == "mysql":
            import pymysql

            return pymysql.connect(
                host=cfg.host,
                port=cfg.port,
                user=cfg.username,
                password=cfg.password,
                database=cfg.dbname or None,
                connect_timeout=CONNECT_TIMEOUT,
                autocommit=True,
            )

        if cfg.engine == "postgres":
            import psycopg2

            conn = psycopg2.connect(
                host=cfg.host,
                port=cfg.port,
                user=cfg.username,
                password=cfg.password,
                dbname=cfg.dbname,
                sslmode="disable",
                connect_timeout=CONNECT_TIMEOUT,
            )
            conn.autocommit = True
            return conn

        if cfg.engine == "redshift":
            import redshift_connector

            conn = redshift_connector.connect(
                host=cfg.host,
                port=cfg.port,
                user=cfg.username,
                password=cfg.password,
                database=cfg.dbname,
                timeout=CONNECT_TIMEOUT,
            )
            conn.autocommit = True
            return conn

        raise ValueError(f"unsupported engine: {cfg.engine}")

    def _execute(self, conn: Any, statement: str, fetch: bool = False) -> Any:
        with closing(conn.cursor()) as cursor:
            cursor.execute(statement)
            if fetch:
                return cursor.fetchall()
        return None

    def ping(self, resource: Any) -> None:
        self._execute(resource, READ_QUERY, fetch=True)

    def read(self, resource: Any) -> Any:
        return self._execute(resource, READ_QUERY, fetch=True)

    def write(self, resource: Any, payload: Optional[Any] = None) -> Any:
        return self._execute(resource, WRITE_QUERY)

    def prepare(self, resource: Any) -> None:
        self._execute(resource, TEST_TABLE_DDL[self.config.engine])
        logger.info("test table ready", engine=self.name, table=TEST_TABLE)

    def close(self, resource: Any) -> None:
        resource.close()

    def describe(self) -> str:
        return f"{self.name}://{self.config.host}:{self.config.port}/{self.config.dbname}"
