# data_transfer.py
from __future__ import annotations

import copy
import json
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

import yaml  # type: ignore[import-untyped]
from loguru import logger

from base_storage import (
    CONTRACT_KANBAN_KEY,
    CONTRACTS_KEY,
    ENGINEERS_KEY,
    KANBAN_KEY,
    NOTIFICATIONS_KEY,
    OBJECTS_KEY,
    REPORTS_KEY,
    STORE_KEYS,
    TASKS_KEY,
)
from dates import now_iso
from entity_store import EntityStore
from errors import InvalidImportEnvelope
from maintenance_domain import StoreData
from migration_loader import MigrationLoader
from validators import Validator as V

EXPORT_VERSION = "1.0"
IMPORT_SETTLE_DELAY = 0.1

DataType = Literal["all", "contracts", "engineers"]
ExportFormat = Literal["json", "yaml"]
RepairMode = Literal["auto", "always", "never"]

DATA_TYPES = ("all", "contracts", "engineers")
EXPORT_FORMATS = ("json", "yaml")
REPAIR_MODES = ("auto", "always", "never")

# имя коллекции в файле обмена -> ключ хранилища
ENVELOPE_KEYS: dict[str, str] = {
    "contracts": CONTRACTS_KEY,
    "objects": OBJECTS_KEY,
    "engineers": ENGINEERS_KEY,
    "tasks": TASKS_KEY,
    "kanbanTasks": KANBAN_KEY,
    "contractKanbanTasks": CONTRACT_KANBAN_KEY,
    "reports": REPORTS_KEY,
}
STORE_TO_ENVELOPE = {v: k for k, v in ENVELOPE_KEYS.items()}

# области экспорта/импорта -> ключи хранилища
SCOPE_KEYS: dict[str, tuple[str, ...]] = {
    "contracts": (CONTRACTS_KEY, OBJECTS_KEY, TASKS_KEY, KANBAN_KEY, CONTRACT_KANBAN_KEY, REPORTS_KEY),
    "engineers": (ENGINEERS_KEY,),
}

# при полном импорте уведомления старых договоров теряют смысл; настройки и история остаются
FULL_IMPORT_CLEAR_KEYS: tuple[str, ...] = STORE_KEYS + (NOTIFICATIONS_KEY,)


@dataclass
class ImportResult:
    keys: tuple[str, ...]
    full: bool
    skipped: list[dict[str, Any]] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)
    repaired: bool = False


def scope_keys(data_types: Iterable[str]) -> tuple[str, ...]:
    """Ключи хранилища для набора областей, в порядке STORE_KEYS."""
    types = V.subset_of("dataTypes", data_types, DATA_TYPES)
    if not types:
        raise ValueError("Поле 'dataTypes' не может быть пустым.")
    if "all" in types:
        return STORE_KEYS
    wanted = {k for t in types for k in SCOPE_KEYS[t]}
    return tuple(k for k in STORE_KEYS if k in wanted)


class DataTransfer:
    """
    Экспорт и импорт коллекций хранилища в файл обмена (JSON или YAML):

        {"exportDate": ..., "version": "1.0", "dataTypes": [...],
         "contracts": [...], "objects": [...], "engineers": [...], "tasks": [...],
         "kanbanTasks": [...], "contractKanbanTasks": [...], "reports": [...]}
    """

    def __init__(
        self,
        store: EntityStore,
        *,
        settle_delay: float = IMPORT_SETTLE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.settle_delay = settle_delay
        self._sleep = sleep

    # ============================== Экспорт ==============================

    def export_data(
        self,
        data_types: Iterable[DataType] = ("all",),
        fmt: ExportFormat = "json",
    ) -> str:
        types = list(data_types)
        keys = scope_keys(types)
        fmt = V.one_of("fmt", fmt, EXPORT_FORMATS)  # type: ignore[assignment]

        envelope: dict[str, Any] = {
            "exportDate": now_iso(),
            "version": EXPORT_VERSION,
            "dataTypes": types,
        }
        for key in keys:
            envelope[STORE_TO_ENVELOPE[key]] = self.store.data.records(key)

        if fmt == "yaml":
            text = yaml.safe_dump(envelope, allow_unicode=True, sort_keys=False, indent=2)
        else:
            text = json.dumps(envelope, ensure_ascii=False, indent=2)
        logger.info("Экспорт {} ({}): {} символов", ", ".join(types), fmt, len(text))
        return text

    # ============================== Импорт ==============================

    def import_data(
        self,
        text: str,
        data_types: Iterable[DataType] = ("all",),
        repair: RepairMode = "auto",
    ) -> ImportResult:
        types = list(data_types)
        keys = scope_keys(types)
        repair = V.one_of("repair", repair, REPAIR_MODES)  # type: ignore[assignment]
        collections = self.parse_envelope(text)

        full = "all" in types
        if full:
            target_keys = STORE_KEYS
            raw = {key: copy.deepcopy(collections.get(key, [])) for key in STORE_KEYS}
        else:
            target_keys = tuple(k for k in keys if k in collections)
            logger.info("Выборочный импорт ({}): ключи {}", ", ".join(types), ", ".join(target_keys) or "-")
            if not target_keys:
                return ImportResult(keys=(), full=False)
            raw = {key: copy.deepcopy(collections[key]) for key in target_keys}

        # разбор и проверка целиком до первой записи в хранилище
        payload, skipped = self.prepare_records(raw)

        if full:
            logger.info(
                "Полный импорт: договоров {}, объектов {}, исполнителей {}",
                len(payload[CONTRACTS_KEY]), len(payload[OBJECTS_KEY]), len(payload[ENGINEERS_KEY]),
            )
            self.store.storage.clear(FULL_IMPORT_CLEAR_KEYS)
            if self.settle_delay > 0:
                self._sleep(self.settle_delay)

        skipped += self.store.replace_collections(payload, target_keys, "store_imported")
        result = ImportResult(keys=target_keys, full=full, skipped=skipped)

        result.problems = self.store.check_integrity()
        if repair == "always" or (repair == "auto" and result.problems):
            if result.problems:
                logger.warning("После импорта найдено нарушений: {}, полный ремонт", len(result.problems))
            self.store.regenerate_all_tasks()
            result.repaired = True
        elif result.problems:
            logger.warning("После импорта остались нарушения ({}), ремонт отключён", len(result.problems))
        return result

    @staticmethod
    def prepare_records(
        raw: dict[str, list[dict[str, Any]]],
    ) -> tuple[dict[str, list[dict[str, Any]]], list[dict[str, Any]]]:
        """
        Миграции старых форм, разбор и проверка договоров без записи в хранилище.
        Возвращает (чистые записи по ключам, описания отброшенных записей).
        """
        if CONTRACTS_KEY in raw:
            MigrationLoader.migrate_contracts(raw[CONTRACTS_KEY])
        if ENGINEERS_KEY in raw:
            MigrationLoader.migrate_engineers(raw[ENGINEERS_KEY])

        skipped: list[dict[str, Any]] = []
        scratch = StoreData()
        for key, records in raw.items():
            scratch.set_records(key, records, skipped)

        if CONTRACTS_KEY in raw:
            valid = []
            for idx, contract in enumerate(scratch.contracts):
                try:
                    valid.append(contract.validate())
                except ValueError as exc:
                    skipped.append(
                        {
                            "key": CONTRACTS_KEY,
                            "index": idx,
                            "id": contract.id,
                            "error_type": type(exc).__name__,
                            "message": str(exc),
                        }
                    )
            scratch.contracts = valid

        for err in skipped:
            logger.warning("Импорт: запись {} id={} отброшена: {}", err["key"], err["id"], err["message"])
        return {key: scratch.records(key) for key in raw}, skipped

    @staticmethod
    def parse_envelope(text: str) -> dict[str, list[dict[str, Any]]]:
        """
        Разобрать файл обмена (JSON, иначе YAML) в {ключ хранилища: записи}.
        Понимает и имена из файла обмена (kanbanTasks), и ключи хранилища (kanban).
        """
        try:
            data = json.loads(text)
        except ValueError:
            try:
                data = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise InvalidImportEnvelope() from exc

        if not isinstance(data, dict):
            raise InvalidImportEnvelope()

        collections: dict[str, list[dict[str, Any]]] = {}
        for name, value in data.items():
            key = ENVELOPE_KEYS.get(name) or (name if name in STORE_KEYS else None)
            if key is None or value is None:
                continue
            if not isinstance(value, list):
                raise InvalidImportEnvelope(f"колекція '{name}' має бути масивом")
            collections[key] = [v if isinstance(v, dict) else {"__raw__": v} for v in value]

        if not collections:
            raise InvalidImportEnvelope()
        return collections
