# errors.py
from __future__ import annotations

from typing import Any


class StoreError(Exception):
    """Базовое исключение слоя данных."""


class DuplicateKey(StoreError, ValueError):
    """Номер договора уже занят не архивным договором."""

    def __init__(self, contract_number: str, existing_id: str | None = None) -> None:
        self.contract_number = contract_number
        self.existing_id = existing_id
        super().__init__(f"DuplicateKey: договор с номером '{contract_number}' уже существует")


class NotFound(StoreError, ValueError):
    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"NotFound: {entity} id={entity_id} не найден")


class ReferentialConstraint(StoreError, ValueError):
    """Удаление запрещено: на сущность ссылаются живые записи."""

    def __init__(self, message: str, referenced_by: list[str] | None = None) -> None:
        self.referenced_by = list(referenced_by or [])
        super().__init__(f"ReferentialConstraint: {message}")


class StorageFailure(StoreError):
    """
    Запись в хранилище не удалась. Состояние в памяти к моменту,
    когда исключение дошло до вызывающего, уже откатено.
    """

    def __init__(self, key: str, cause: BaseException | None = None) -> None:
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"StorageFailure: не удалось сохранить '{key}'{detail}")


class MalformedPersisted(StoreError):
    """Сохранённое значение не разбирается. Обрабатывается при загрузке, наружу не выходит."""

    def __init__(self, key: str, cause: BaseException | None = None) -> None:
        self.key = key
        self.cause = cause
        super().__init__(f"MalformedPersisted: ключ '{key}' повреждён: {cause}")


class InvalidImportEnvelope(StoreError, ValueError):
    def __init__(self, message: str = "Невірний формат файлу даних") -> None:
        super().__init__(f"InvalidImportEnvelope: {message}")
