# storage_pg.py
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

import psycopg2
from loguru import logger

from base_storage import BaseStorage
from errors import StorageFailure
from pg_db import PgDB

_UPSERT_SQL = """
INSERT INTO app_storage(key, value, updated_at)
VALUES (%s, %s, now())
ON CONFLICT (key) DO UPDATE
    SET value = EXCLUDED.value,
        updated_at = EXCLUDED.updated_at;
"""


class PgStorage(BaseStorage):
    """
    Ключи хранятся строками таблицы app_storage (значение - JSON-текст).
    Несколько ключей записываются одной транзакцией.
    """

    _parse_errors = (ValueError,)
    _storage_errors = (psycopg2.Error, OSError)

    def __init__(
        self,
        *,
        host: str = "127.0.0.1",
        port: int = 5432,
        dbname: str = "maintenance_db",
        user: str = "postgres",
        password: str = "",
        auto_migrate: bool = True,
    ) -> None:
        super().__init__(location=f"postgresql://{user}@{host}:{port}/{dbname}")
        self.db = PgDB(host=host, port=port, dbname=dbname, user=user, password=password)
        if auto_migrate:
            self.ensure_schema()

    def ensure_schema(self) -> None:
        """
        Создаёт таблицу, если её ещё нет.
        """
        ddl_table = """
        CREATE TABLE IF NOT EXISTS app_storage (
            key         TEXT PRIMARY KEY,
            value       TEXT NOT NULL,
            updated_at  TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """
        self.db.execute(ddl_table)

    def _read_blob(self, key: str) -> str | None:
        row = self.db.fetch_one("SELECT value FROM app_storage WHERE key = %s;", (key,))
        return None if row is None else str(row["value"])

    def _write_blob(self, key: str, text: str) -> None:
        with self.db.transaction() as cur:
            cur.execute(_UPSERT_SQL, (key, text))

    def _remove_blob(self, key: str) -> None:
        self.db.execute("DELETE FROM app_storage WHERE key = %s;", (key,))

    def _dumps(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=False)

    def _loads(self, text: str) -> Any:
        return json.loads(text)

    def write_many(self, values: Mapping[str, Any]) -> None:
        """Все ключи - в одной транзакции: либо записаны все, либо ни один."""
        texts: dict[str, str] = {}
        for key, value in values.items():
            try:
                texts[key] = self._dumps(value)
            except (TypeError, ValueError) as exc:
                raise StorageFailure(key, exc) from exc

        key = ""
        try:
            with self.db.transaction() as cur:
                for key, text in texts.items():
                    cur.execute(_UPSERT_SQL, (key, text))
        except self._storage_errors as exc:
            raise StorageFailure(key, exc) from exc
        logger.debug("Транзакцией сохранены ключи: {}", ", ".join(texts))
