from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from base_storage import CONTRACTS_KEY, ENGINEERS_KEY, TASKS_KEY
from errors import MalformedPersisted, StorageFailure
from storage_json import JsonDirStorage
from storage_pg import PgStorage
from storage_yaml import YamlDirStorage


class TestJsonDirStorage:
    def test_missing_key_reads_none(self, tmp_path):
        s = JsonDirStorage(str(tmp_path))
        assert s.read_array(CONTRACTS_KEY) is None
        assert not s.exists(CONTRACTS_KEY)

    def test_write_and_read_unicode(self, tmp_path):
        s = JsonDirStorage(str(tmp_path))
        s.write_array(ENGINEERS_KEY, [{"id": "1", "name": "Інженер 1"}])
        with open(s.path_for(ENGINEERS_KEY), encoding="utf-8") as f:
            assert "Інженер 1" in f.read()
        assert s.read_array(ENGINEERS_KEY) == [{"id": "1", "name": "Інженер 1"}]

    def test_write_leaves_no_temp_file(self, tmp_path):
        s = JsonDirStorage(str(tmp_path))
        s.write_array(TASKS_KEY, [])
        assert sorted(os.listdir(tmp_path)) == ["tasks.json"]

    def test_malformed_json(self, tmp_path):
        s = JsonDirStorage(str(tmp_path))
        with open(s.path_for(CONTRACTS_KEY), "w", encoding="utf-8") as f:
            f.write("{oops")
        with pytest.raises(MalformedPersisted) as exc_info:
            s.read_array(CONTRACTS_KEY)
        assert exc_info.value.key == CONTRACTS_KEY

    def test_top_level_must_be_array(self, tmp_path):
        s = JsonDirStorage(str(tmp_path))
        s.write_value(CONTRACTS_KEY, {"id": "1"})
        with pytest.raises(MalformedPersisted):
            s.read_array(CONTRACTS_KEY)

    def test_non_dict_items_wrapped(self, tmp_path):
        s = JsonDirStorage(str(tmp_path))
        s.write_value(CONTRACTS_KEY, [1, {"id": "2"}])
        assert s.read_array(CONTRACTS_KEY) == [{"__raw__": 1}, {"id": "2"}]

    def test_unserializable_value_is_storage_failure(self, tmp_path):
        s = JsonDirStorage(str(tmp_path))
        with pytest.raises(StorageFailure):
            s.write_value(CONTRACTS_KEY, [object()])

    def test_remove_and_clear(self, tmp_path):
        s = JsonDirStorage(str(tmp_path))
        s.write_array(CONTRACTS_KEY, [])
        s.remove(CONTRACTS_KEY)
        s.remove(CONTRACTS_KEY)  # повторное удаление не ошибка
        s.write_array(TASKS_KEY, [])
        s.clear()
        assert os.listdir(tmp_path) == []


class TestYamlDirStorage:
    def test_round_trip(self, tmp_path):
        s = YamlDirStorage(str(tmp_path))
        s.write_array(ENGINEERS_KEY, [{"id": "1", "specialization": ["КОНД", "ДБЖ"]}])
        assert os.path.exists(tmp_path / "engineers.yaml")
        assert s.read_array(ENGINEERS_KEY) == [{"id": "1", "specialization": ["КОНД", "ДБЖ"]}]

    def test_empty_file_is_empty_array(self, tmp_path):
        s = YamlDirStorage(str(tmp_path))
        (tmp_path / "tasks.yaml").write_text("", encoding="utf-8")
        assert s.read_array(TASKS_KEY) == []

    def test_malformed_yaml(self, tmp_path):
        s = YamlDirStorage(str(tmp_path))
        (tmp_path / "tasks.yaml").write_text("a: [1, 2\n", encoding="utf-8")
        with pytest.raises(MalformedPersisted):
            s.read_array(TASKS_KEY)


class TestPgStorage:
    @staticmethod
    def _connect_mock() -> tuple[MagicMock, MagicMock]:
        conn = MagicMock()
        cur = MagicMock()
        conn.cursor.return_value = cur
        return conn, cur

    @patch("pg_db.psycopg2.connect")
    def test_ensure_schema_on_init(self, mock_connect: MagicMock):
        conn, cur = self._connect_mock()
        mock_connect.return_value = conn
        PgStorage(dbname="test_db")
        sql = cur.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS app_storage" in sql
        assert mock_connect.call_args.kwargs["dbname"] == "test_db"

    @patch("pg_db.psycopg2.connect")
    def test_read_value(self, mock_connect: MagicMock):
        conn, cur = self._connect_mock()
        mock_connect.return_value = conn
        cur.fetchone.return_value = {"value": '[{"id": "1"}]'}
        s = PgStorage(auto_migrate=False)
        assert s.read_array(CONTRACTS_KEY) == [{"id": "1"}]
        assert cur.execute.call_args[0][1] == (CONTRACTS_KEY,)

    @patch("pg_db.psycopg2.connect")
    def test_missing_row_is_none(self, mock_connect: MagicMock):
        conn, cur = self._connect_mock()
        mock_connect.return_value = conn
        cur.fetchone.return_value = None
        assert PgStorage(auto_migrate=False).read_value(CONTRACTS_KEY) is None

    @patch("pg_db.psycopg2.connect")
    def test_write_many_single_transaction(self, mock_connect: MagicMock):
        conn, cur = self._connect_mock()
        mock_connect.return_value = conn
        s = PgStorage(auto_migrate=False)
        s.write_many({CONTRACTS_KEY: [], TASKS_KEY: [{"id": "t"}]})
        assert mock_connect.call_count == 1
        keys = [c[0][1][0] for c in cur.execute.call_args_list]
        assert keys == [CONTRACTS_KEY, TASKS_KEY]

    @patch("pg_db.psycopg2.connect")
    def test_driver_error_becomes_storage_failure(self, mock_connect: MagicMock):
        mock_connect.side_effect = psycopg2.OperationalError("connection refused")
        s = PgStorage(auto_migrate=False)
        with pytest.raises(StorageFailure) as exc_info:
            s.write_array(CONTRACTS_KEY, [])
        assert isinstance(exc_info.value.cause, psycopg2.OperationalError)
