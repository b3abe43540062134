# pg_db.py
from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2.extensions import connection as pg_connection
from psycopg2.extras import RealDictCursor


class PgDB:
    """
    Тонкий слой над psycopg2 для хранилища ключей (без ORM).
    На каждую операцию открывается своё соединение и закрывается по выходу.
    Экземпляр принадлежит PgStorage; общего процесса-синглтона нет.
    """

    def __init__(self, **conn_params: Any) -> None:
        self._conn_params = dict(conn_params)

    def connect(self, *, autocommit: bool = True) -> pg_connection:
        conn: pg_connection = psycopg2.connect(**self._conn_params)  # type: ignore[call-arg]
        conn.autocommit = autocommit
        return conn

    @contextmanager
    def _cursor(self, *, in_transaction: bool) -> Iterator[Any]:
        conn = self.connect(autocommit=not in_transaction)
        try:
            if in_transaction:
                with conn:  # COMMIT при выходе, ROLLBACK при исключении
                    cur = conn.cursor(cursor_factory=RealDictCursor)
                    try:
                        yield cur
                    finally:
                        cur.close()
            else:
                cur = conn.cursor(cursor_factory=RealDictCursor)
                try:
                    yield cur
                finally:
                    cur.close()
        finally:
            conn.close()

    # ===== запросы =====

    def fetch_one(self, sql: str, params: Iterable[Any] | None = None) -> dict[str, Any] | None:
        with self._cursor(in_transaction=False) as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        return None if row is None else dict(row)

    def execute(self, sql: str, params: Iterable[Any] | None = None) -> int:
        with self._cursor(in_transaction=False) as cur:
            cur.execute(sql, params)
            return cur.rowcount

    def transaction(self) -> Any:
        """
        Курсор одной транзакции для нескольких запросов:

            with db.transaction() as cur:
                cur.execute(...)
                cur.execute(...)
        """
        return self._cursor(in_transaction=True)
