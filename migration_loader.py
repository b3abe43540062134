# migration_loader.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from base_storage import (
    CONTRACT_KANBAN_KEY,
    CONTRACTS_KEY,
    ENGINEERS_KEY,
    OBJECTS_KEY,
    STORE_KEYS,
    BaseStorage,
)
from derivation_engine import DerivationEngine
from errors import MalformedPersisted, StorageFailure
from maintenance_domain import StoreData

DEFAULT_ENGINEERS: list[dict[str, Any]] = [
    {"id": "1", "name": "Інженер 1", "phone": "", "email": "", "specialization": ["КОНД"], "color": "#3B82F6"},
    {"id": "2", "name": "Інженер 2", "phone": "", "email": "", "specialization": ["КОНД", "ДБЖ"], "color": "#10B981"},
    {"id": "3", "name": "Інженер 3", "phone": "", "email": "", "specialization": ["ДГУ"], "color": "#F59E0B"},
]

DEMO_OBJECT: dict[str, Any] = {
    "id": "1",
    "name": "Головний офіс",
    "address": "м. Київ, вул. Академіка Туполєва, 1",
    "clientName": "АТ «Антонов»",
    "clientContact": "+380 44 206-8000",
    "equipmentCount": 15,
    "notes": "VRF система Daikin, ДБЖ APC Smart-UPS 3000VA",
    "contactPersonName": "Іванов Іван Іванович",
    "contactPersonPhone": "+380 44 206-8001",
}

DEMO_CONTRACT: dict[str, Any] = {
    "id": "1",
    "contractNumber": "АТ-001/2024",
    "clientName": "АТ «Антонов»",
    "objectId": "1",
    "address": "м. Київ, вул. Академіка Туполєва, 1",
    "startDate": "2024-01-01",
    "endDate": "2024-12-31",
    "serviceFrequency": 3,
    "workTypes": ["КОНД", "ДБЖ"],
    "assignedEngineerIds": ["1", "2"],
    "status": "active",
    "maintenancePeriods": [
        {"id": "1", "startDate": "2024-03-01", "endDate": "2024-03-15", "status": "planned"},
        {"id": "2", "startDate": "2024-06-01", "endDate": "2024-06-15", "status": "planned"},
        {"id": "3", "startDate": "2024-09-01", "endDate": "2024-09-15", "status": "planned"},
        {"id": "4", "startDate": "2024-12-01", "endDate": "2024-12-15", "status": "planned"},
    ],
}

# Старые строковые частоты ТО -> интервал в месяцах
FREQUENCY_MONTHS = {"quarterly": 3, "biannual": 6, "triannual": 4, "annual": 12}
DEFAULT_FREQUENCY_MONTHS = 3

# Старые текстовые специализации -> список подразделений
SPECIALIZATION_MAP: dict[str, list[str]] = {
    "VRF системи": ["КОНД"],
    "Чилери": ["КОНД"],
    "Спліт-системи": ["КОНД"],
    "КОНД": ["КОНД"],
    "ДБЖ": ["ДБЖ"],
    "ДГУ": ["ДГУ"],
}
DEFAULT_SPECIALIZATION = ["КОНД"]


@dataclass
class LoadResult:
    data: StoreData
    seeded: bool = False
    healed_keys: list[str] = field(default_factory=list)
    migrated_keys: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)


class MigrationLoader:
    """
    Холодный старт хранилища.

    Каждый ключ читается отдельно:
      - ключей нет совсем -> засеваем данные по умолчанию;
      - значение не разбирается -> ключ удаляем, коллекция начинается пустой;
      - значение разобрано -> применяем миграции старых форм записей.
    Загрузка никогда не падает: все ошибки носителя только логируются.
    """

    def __init__(
        self,
        storage: BaseStorage,
        engine: DerivationEngine,
        *,
        seed_demo_data: bool = False,
    ) -> None:
        self.storage = storage
        self.engine = engine
        self.seed_demo_data = seed_demo_data

    def load(self) -> LoadResult:
        result = LoadResult(data=StoreData())
        raw: dict[str, list[dict[str, Any]] | None] = {}
        present = False

        for key in STORE_KEYS:
            records, existed = self._read_key(key, result)
            raw[key] = records
            present = present or existed

        if not present:
            return self._seed(result)

        if raw[CONTRACTS_KEY]:
            if self.migrate_contracts(raw[CONTRACTS_KEY] or []):
                result.migrated_keys.append(CONTRACTS_KEY)

        engineers = raw[ENGINEERS_KEY]
        if not engineers:
            logger.info("Исполнителей нет, восстанавливаю список по умолчанию")
            raw[ENGINEERS_KEY] = copy.deepcopy(DEFAULT_ENGINEERS)
            result.migrated_keys.append(ENGINEERS_KEY)
        elif self.migrate_engineers(engineers):
            result.migrated_keys.append(ENGINEERS_KEY)

        result.data = StoreData.from_collections(raw, result.errors)
        for err in result.errors:
            logger.warning(
                "Запись пропущена при загрузке: {} #{} (id={}): {}: {}",
                err["key"], err["index"] + 1, err["id"], err["error_type"], err["message"],
            )

        data = result.data
        with_rows = {r.contract_id for r in data.contract_kanban}
        if any(c.id not in with_rows for c in data.contracts):
            logger.info("Восстанавливаю канбан договоров для договоров без карточек")
            data.contract_kanban = self.engine.sync_contract_kanban(data.contracts, data.contract_kanban)
            result.migrated_keys.append(CONTRACT_KANBAN_KEY)

        self._write_back(data, result.migrated_keys)
        logger.info(
            "Загрузка завершена: договоров {}, исполнителей {}, задач {}; восстановлено ключей {}, мигрировано {}",
            len(data.contracts), len(data.engineers), len(data.tasks),
            len(result.healed_keys), len(result.migrated_keys),
        )
        return result

    # -------------------------- Чтение с самолечением --------------------------

    def _read_key(self, key: str, result: LoadResult) -> tuple[list[dict[str, Any]] | None, bool]:
        try:
            records = self.storage.read_array(key)
        except MalformedPersisted as exc:
            logger.warning("Повреждённые данные '{}', ключ очищается: {}", key, exc.cause)
            result.healed_keys.append(key)
            try:
                self.storage.remove(key)
            except StorageFailure as rm_exc:
                logger.error("Не удалось удалить повреждённый ключ '{}': {}", key, rm_exc)
            return [], True
        except StorageFailure as exc:
            logger.error("Не удалось прочитать '{}': {}", key, exc)
            return [], False
        return records, records is not None

    # -------------------------------- Миграции --------------------------------

    @staticmethod
    def migrate_contracts(contracts: list[dict[str, Any]]) -> bool:
        changed = False
        for contract in contracts:
            if not isinstance(contract, dict):
                continue  # такую запись отбросит разбор, с описанием в errors
            freq = contract.get("serviceFrequency")
            if isinstance(freq, str):
                contract["serviceFrequency"] = FREQUENCY_MONTHS.get(freq, DEFAULT_FREQUENCY_MONTHS)
                changed = True

            if (
                not contract.get("maintenancePeriods")
                and contract.get("maintenanceStartDate")
                and contract.get("maintenanceEndDate")
            ):
                contract["maintenancePeriods"] = [
                    {
                        "id": "1",
                        "startDate": contract["maintenanceStartDate"],
                        "endDate": contract["maintenanceEndDate"],
                        "status": "planned",
                    }
                ]
                changed = True

            periods = contract.get("maintenancePeriods")
            for period in periods if isinstance(periods, list) else []:
                if not isinstance(period, dict):
                    continue
                if not period.get("status"):
                    period["status"] = "planned"
                    changed = True
                elif period["status"] == "in_progress":
                    # в новой схеме периода нет in_progress; adjusted не даёт статусу откатиться
                    period["status"] = "adjusted"
                    changed = True
                if period.get("department") and not period.get("departments"):
                    period["departments"] = [period["department"]]
                    changed = True

            if contract.get("assignedEngineerId") and not contract.get("assignedEngineerIds"):
                contract["assignedEngineerIds"] = [contract["assignedEngineerId"]]
                changed = True
        return changed

    @staticmethod
    def migrate_engineers(engineers: list[dict[str, Any]]) -> bool:
        changed = False
        for engineer in engineers:
            if not isinstance(engineer, dict):
                continue
            spec = engineer.get("specialization")
            if isinstance(spec, str):
                engineer["specialization"] = list(SPECIALIZATION_MAP.get(spec, DEFAULT_SPECIALIZATION))
                changed = True
        return changed

    # ------------------------------ Засев/запись ------------------------------

    def _seed(self, result: LoadResult) -> LoadResult:
        logger.info("Хранилище пустое, засеваю данные по умолчанию (демо: {})", self.seed_demo_data)
        data = StoreData()
        data.set_records(ENGINEERS_KEY, copy.deepcopy(DEFAULT_ENGINEERS))
        if self.seed_demo_data:
            data.set_records(OBJECTS_KEY, [copy.deepcopy(DEMO_OBJECT)])
            data.set_records(CONTRACTS_KEY, [copy.deepcopy(DEMO_CONTRACT)])
            data.tasks, data.kanban = self.engine.regenerate_all(data.contracts)
            data.contract_kanban = self.engine.sync_contract_kanban(data.contracts, [])

        result.data = data
        result.seeded = True
        self._write_back(data, list(STORE_KEYS))
        return result

    def _write_back(self, data: StoreData, keys: list[str]) -> None:
        for key in keys:
            try:
                self.storage.write_array(key, data.records(key))
            except StorageFailure as exc:
                # загрузка не падает: в памяти данные уже есть, запишутся при следующей мутации
                logger.error("Не удалось сохранить '{}' после загрузки: {}", key, exc)
