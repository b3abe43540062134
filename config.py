# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Any, Optional

import yaml  # type: ignore[import-untyped]

from derivation_engine import STATUS_POLICIES

# Источник данных
DATA_BACKEND = "json"  # 'json' | 'yaml' | 'db'
DATA_BACKENDS = ("json", "yaml", "db")

DATA_DIR = "data"

# ключи DB_CONFIG - это и есть допустимые параметры PgStorage
DB_CONFIG: dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 5432,
    "dbname": "maintenance_db",
    "user": "postgres",
    "password": "",
    "auto_migrate": True,
}

LOG_LEVEL = "INFO"

# Переменные окружения перекрывают файл конфигурации
ENV_BACKEND = "MAINT_DATA_BACKEND"
ENV_DATA_DIR = "MAINT_DATA_DIR"
ENV_LOG_LEVEL = "MAINT_LOG_LEVEL"


@dataclass
class StoreConfig:
    data_backend: str = DATA_BACKEND
    data_dir: str = DATA_DIR
    db: dict[str, Any] = field(default_factory=lambda: dict(DB_CONFIG))
    log_level: str = LOG_LEVEL
    seed_demo_data: bool = False
    task_status_policy: str = "placeholder"
    history_capacity: int = 20
    import_settle_delay: float = 0.1
    autosave_quiet_window: float = 2.0
    autosave_min_gap: float = 3.0
    pretty_files: bool = True

    def validate(self) -> StoreConfig:
        if self.data_backend not in DATA_BACKENDS:
            raise ValueError(
                f"data_backend должен быть одним из: {', '.join(DATA_BACKENDS)} (получено '{self.data_backend}')."
            )
        if self.task_status_policy not in STATUS_POLICIES:
            raise ValueError(
                f"task_status_policy должен быть одним из: {', '.join(STATUS_POLICIES)}."
            )
        if self.history_capacity < 1:
            raise ValueError("history_capacity должен быть >= 1.")
        unknown = set(self.db) - set(DB_CONFIG)
        if unknown:
            raise ValueError(f"Неизвестные параметры db: {', '.join(sorted(unknown))}.")
        return self


def load_config(path: Optional[str] = None, env: Optional[dict[str, str]] = None) -> StoreConfig:
    """
    Конфигурация = значения по умолчанию <- YAML-файл (если задан) <- переменные окружения.
    Отсутствующий файл - не ошибка; файл с мусором - ValueError.
    """
    env = dict(os.environ if env is None else env)
    raw: dict[str, Any] = {}
    if path and os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            try:
                loaded = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ValueError(f"Файл конфигурации '{path}' не разбирается: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Файл конфигурации '{path}' должен содержать объект.")
        raw = loaded

    known = {f.name for f in fields(StoreConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Неизвестные ключи конфигурации: {', '.join(sorted(unknown))}.")

    cfg = StoreConfig(**raw)
    if isinstance(raw.get("db"), dict):
        cfg.db = {**DB_CONFIG, **raw["db"]}

    if env.get(ENV_BACKEND):
        cfg.data_backend = env[ENV_BACKEND]
    if env.get(ENV_DATA_DIR):
        cfg.data_dir = env[ENV_DATA_DIR]
    if env.get(ENV_LOG_LEVEL):
        cfg.log_level = env[ENV_LOG_LEVEL]
    return cfg.validate()
