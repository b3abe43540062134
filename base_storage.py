# base_storage.py
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from errors import MalformedPersisted, StorageFailure

# Фиксированные ключи хранилища: один сериализованный массив на коллекцию.
CONTRACTS_KEY = "contracts"
OBJECTS_KEY = "objects"
ENGINEERS_KEY = "engineers"
TASKS_KEY = "tasks"
KANBAN_KEY = "kanban"
CONTRACT_KANBAN_KEY = "contract_kanban"
REPORTS_KEY = "maintenance_reports"
HISTORY_KEY = "app_history"
NOTIFICATIONS_KEY = "notifications"
NOTIFICATION_SETTINGS_KEY = "notification_settings"

# Коллекции, которыми владеет EntityStore (и которые входят в снимок истории).
STORE_KEYS: tuple[str, ...] = (
    CONTRACTS_KEY,
    OBJECTS_KEY,
    ENGINEERS_KEY,
    TASKS_KEY,
    KANBAN_KEY,
    CONTRACT_KANBAN_KEY,
    REPORTS_KEY,
)

ALL_KEYS: tuple[str, ...] = STORE_KEYS + (
    HISTORY_KEY,
    NOTIFICATIONS_KEY,
    NOTIFICATION_SETTINGS_KEY,
)


class BaseStorage(ABC):
    """
    Базовое хранилище ключ -> значение с общей логикой (чтение/запись массивов записей).
    Конкретные реализации (JSON/YAML-каталог, PostgreSQL) переопределяют
    методы _read_blob/_write_blob/_remove_blob и формат _dumps/_loads.

    Запись одного ключа обязана быть атомарной: либо старое значение, либо новое.
    """

    # Ошибки разбора формата -> MalformedPersisted
    _parse_errors: tuple[type[BaseException], ...] = (ValueError,)
    # Ошибки носителя -> StorageFailure
    _storage_errors: tuple[type[BaseException], ...] = (OSError,)

    def __init__(self, location: str) -> None:
        self.location = location

    # ---------- НИЗКИЙ УРОВЕНЬ: абстракции формата/хранилища ----------

    @abstractmethod
    def _read_blob(self, key: str) -> str | None:
        """Вернуть сырой текст по ключу или None, если ключа нет."""
        raise NotImplementedError

    @abstractmethod
    def _write_blob(self, key: str, text: str) -> None:
        """Атомарно заменить значение ключа."""
        raise NotImplementedError

    @abstractmethod
    def _remove_blob(self, key: str) -> None:
        """Удалить ключ. Отсутствие ключа ошибкой не считается."""
        raise NotImplementedError

    @abstractmethod
    def _dumps(self, value: Any) -> str:
        raise NotImplementedError

    @abstractmethod
    def _loads(self, text: str) -> Any:
        raise NotImplementedError

    # -------------------------- Операции чтения ------------------------

    def exists(self, key: str) -> bool:
        try:
            return self._read_blob(key) is not None
        except self._storage_errors as exc:
            raise StorageFailure(key, exc) from exc

    def read_value(self, key: str) -> Any | None:
        """
        Прочитать и разобрать значение ключа.
        None - ключа нет; MalformedPersisted - значение есть, но не разбирается.
        """
        try:
            text = self._read_blob(key)
        except self._storage_errors as exc:
            raise StorageFailure(key, exc) from exc
        if text is None:
            return None
        try:
            return self._loads(text)
        except self._parse_errors as exc:
            raise MalformedPersisted(key, exc) from exc

    def read_array(self, key: str) -> list[dict[str, Any]] | None:
        """
        Массив записей (list[dict]) по ключу или None, если ключа нет.
        Верхний уровень не массив -> MalformedPersisted.
        """
        data = self.read_value(key)
        if data is None:
            return None
        if not isinstance(data, list):
            raise MalformedPersisted(key, ValueError("значение должно быть массивом объектов"))
        result: list[dict[str, Any]] = []
        for item in data:
            if isinstance(item, dict):
                result.append(item)
            else:
                # допустим негладкие данные - загрузчик пометит запись как ошибочную
                result.append({"__raw__": item})
        return result

    # ------------------------------ Запись ------------------------------

    def write_value(self, key: str, value: Any) -> None:
        try:
            text = self._dumps(value)
            self._write_blob(key, text)
        except (TypeError, ValueError) as exc:
            raise StorageFailure(key, exc) from exc
        except self._storage_errors as exc:
            raise StorageFailure(key, exc) from exc
        logger.debug("Сохранён ключ '{}' ({} символов)", key, len(text))

    def write_array(self, key: str, records: list[dict[str, Any]]) -> None:
        self.write_value(key, list(records))

    def write_many(self, values: Mapping[str, Any]) -> None:
        """
        Записать несколько ключей. Базовая реализация пишет по одному;
        при ошибке часть ключей уже может быть записана (см. StorageFailure.key).
        """
        for key, value in values.items():
            self.write_value(key, value)

    def remove(self, key: str) -> None:
        try:
            self._remove_blob(key)
        except self._storage_errors as exc:
            raise StorageFailure(key, exc) from exc
        logger.debug("Удалён ключ '{}'", key)

    def clear(self, keys: Iterable[str] = ALL_KEYS) -> None:
        for key in keys:
            self.remove(key)

    def close(self) -> None:
        """Освободить ресурсы носителя. Файловым хранилищам закрывать нечего."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.location!r})"
