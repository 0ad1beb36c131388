from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from importlib import resources

import psycopg
from psycopg import Connection

from .config import DbConfig

logger = logging.getLogger(__name__)


class DbError(Exception):
    pass


def load_schema_sql() -> str:
    return resources.files("motoshop").joinpath("schema.sql").read_text(encoding="utf-8")


@dataclass(frozen=True)
class Db:
    cfg: DbConfig

    def connect(self) -> Connection:
        try:
            return psycopg.connect(
                host=self.cfg.host,
                port=self.cfg.port,
                dbname=self.cfg.name,
                user=self.cfg.user,
                password=self.cfg.password,
                sslmode=self.cfg.sslmode,
            )
        except psycopg.Error as e:
            raise DbError(
                "Cannot connect to database. Check config.toml [db] and that PostgreSQL is running."
            ) from e

    @contextmanager
    def session(self) -> Connection:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Connection:
        conn = self.connect()
        try:
            conn.execute("BEGIN;")
            yield conn
            conn.execute("COMMIT;")
        except Exception:
            logger.warning("Rolling back transaction")
            conn.execute("ROLLBACK;")
            raise
        finally:
            conn.close()

    def apply_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(load_schema_sql())
        logger.info("Schema applied to database %s", self.cfg.name)
