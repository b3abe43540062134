from __future__ import annotations

import pytest

from config import DB_CONFIG, ENV_BACKEND, ENV_DATA_DIR, ENV_LOG_LEVEL, StoreConfig, load_config


def test_defaults_without_file():
    cfg = load_config(None, env={})
    assert cfg == StoreConfig()
    assert cfg.data_backend == "json"
    assert cfg.db["dbname"] == "maintenance_db"


def test_missing_file_is_not_an_error(tmp_path):
    cfg = load_config(str(tmp_path / "nope.yaml"), env={})
    assert cfg.data_dir == "data"


def test_yaml_file(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "data_backend: yaml\n"
        "data_dir: /srv/maint\n"
        "history_capacity: 5\n"
        "task_status_policy: period\n"
        "db:\n"
        "  host: db.local\n",
        encoding="utf-8",
    )
    cfg = load_config(str(path), env={})
    assert cfg.data_backend == "yaml"
    assert cfg.data_dir == "/srv/maint"
    assert cfg.history_capacity == 5
    assert cfg.task_status_policy == "period"
    assert cfg.db == {**DB_CONFIG, "host": "db.local"}


def test_env_overrides_file(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("data_backend: yaml\n", encoding="utf-8")
    env = {ENV_BACKEND: "json", ENV_DATA_DIR: "/tmp/x", ENV_LOG_LEVEL: "DEBUG"}
    cfg = load_config(str(path), env=env)
    assert cfg.data_backend == "json"
    assert cfg.data_dir == "/tmp/x"
    assert cfg.log_level == "DEBUG"


def test_empty_file(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(str(path), env={}) == StoreConfig()


@pytest.mark.parametrize(
    "text",
    [
        "unknown_option: 1\n",
        "data_backend: sqlite\n",
        "task_status_policy: random\n",
        "history_capacity: 0\n",
        "db:\n  sslmode: require\n",
        "- just\n- a list\n",
        "data_dir: [unclosed\n",
    ],
)
def test_invalid_files(tmp_path, text):
    path = tmp_path / "cfg.yaml"
    path.write_text(text, encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path), env={})


def test_db_options_match_pg_storage():
    import inspect

    import config
    from storage_pg import PgStorage

    # config не тянет драйвер PostgreSQL при выборе файловых хранилищ
    assert not hasattr(config, "PgStorage")
    params = set(inspect.signature(PgStorage.__init__).parameters) - {"self"}
    assert set(DB_CONFIG) == params
