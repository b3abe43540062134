# entity_store.py
from __future__ import annotations

import copy
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional

from loguru import logger

from base_storage import (
    CONTRACT_KANBAN_KEY,
    CONTRACTS_KEY,
    ENGINEERS_KEY,
    KANBAN_KEY,
    OBJECTS_KEY,
    REPORTS_KEY,
    STORE_KEYS,
    TASKS_KEY,
    BaseStorage,
)
from dates import now_iso, to_iso
from derivation_engine import DerivationEngine, NextMaintenance, next_maintenance
from errors import DuplicateKey, NotFound, ReferentialConstraint, StorageFailure
from ids import IdGenerator
from maintenance_domain import (
    COLUMN_TASK_STATUS,
    Contract,
    ContractStatus,
    KanbanColumn,
    MaintenanceReport,
    MaintenanceTask,
    PeriodStatus,
    ServiceEngineer,
    ServiceObject,
    StoreData,
    TaskStatus,
    advance_period_status,
)
from migration_loader import LoadResult, MigrationLoader
from observer import Subject
from validators import Validator as V

DEFAULT_ADJUSTED_BY = "Начальник"

# Задачи и канбан задач всегда перестраиваются вместе с периодами договора.
_REGEN_KEYS = (CONTRACTS_KEY, TASKS_KEY, KANBAN_KEY)


@dataclass
class Snapshot:
    """
    Глубокая копия всех семи коллекций (в виде dict-записей) и счётчиков версий.
    versions = None - снимок восстановлен из хранилища, быстрый путь сравнения недоступен.
    """

    collections: dict[str, list[dict[str, Any]]]
    versions: Optional[dict[str, int]] = None

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.collections)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Snapshot:
        return Snapshot({key: list(data.get(key) or []) for key in STORE_KEYS})


@dataclass(frozen=True)
class StoreEvent:
    name: str
    keys: tuple[str, ...]
    entity: Any = None
    extra: dict[str, Any] = field(default_factory=dict)


class EntityStore(Subject):
    """
    Авторитетное хранилище коллекций в памяти.

    Каждая мутация:
      1) делает копию затронутых коллекций;
      2) меняет данные в памяти (включая производные задачи/канбан);
      3) пишет все затронутые ключи.
    Если шаг 2 или 3 падает, память возвращается к копии; при ошибке записи
    уже записанные ключи восстанавливаются по возможности и выбрасывается StorageFailure.

    События (payload - StoreEvent): contract_added, contract_updated, contract_archived,
    object_added, object_updated, engineer_added, engineer_updated, engineer_deleted,
    task_added, task_updated, task_moved, report_created, duplicates_removed,
    tasks_regenerated, data_reset, store_restored, store_imported.
    """

    def __init__(
        self,
        storage: BaseStorage,
        engine: DerivationEngine,
        data: StoreData | None = None,
        *,
        seed_demo_data: bool = False,
    ) -> None:
        super().__init__()
        self.storage = storage
        self.engine = engine
        self.data = data or StoreData()
        self.seed_demo_data = seed_demo_data
        self.last_load: LoadResult | None = None
        self._revision = 0
        self.versions: dict[str, int] = {key: 0 for key in STORE_KEYS}
        self._closed = False
        self._observe_ids()

    # ============================ Жизненный цикл ============================

    @classmethod
    def open(
        cls,
        storage: BaseStorage,
        *,
        engine: DerivationEngine | None = None,
        seed_demo_data: bool = False,
    ) -> EntityStore:
        engine = engine or DerivationEngine()
        store = cls(storage, engine, seed_demo_data=seed_demo_data)
        store.reload()
        logger.info("Хранилище открыто: {}", storage)
        return store

    def reload(self) -> LoadResult:
        result = MigrationLoader(self.storage, self.engine, seed_demo_data=self.seed_demo_data).load()
        self.data = result.data
        self.last_load = result
        self._bump(STORE_KEYS)
        self._observe_ids()
        return result

    def close(self) -> None:
        if self._closed:
            return
        self.detach_all()
        self.storage.close()
        self._closed = True
        logger.info("Хранилище закрыто: {}", self.storage)

    @property
    def ids(self) -> IdGenerator:
        return self.engine.ids

    def today(self) -> date:
        return self.engine.today()

    # ============================== Договоры ==============================

    def add_contract(self, data: dict[str, Any] | Contract) -> Contract:
        payload = data.to_dict() if isinstance(data, Contract) else dict(data)
        payload["id"] = self.ids.next_id()
        _fill_period_ids(payload)
        contract = Contract.from_dict(payload).validate()
        if contract.status != ContractStatus.ARCHIVED:
            self._ensure_unique_number(contract.contract_number)

        keys = _REGEN_KEYS + (CONTRACT_KANBAN_KEY,)
        with self._mutation(keys):
            d = self.data
            d.contracts.append(contract)
            d.tasks, d.kanban = self.engine.regenerate_for_contract(contract, d.tasks, d.kanban)
            d.contract_kanban = self.engine.sync_contract_kanban(d.contracts, d.contract_kanban)

        logger.info("Договор {} добавлен (id={})", contract.contract_number, contract.id)
        self._emit("contract_added", keys, contract)
        return contract

    def update_contract(self, contract_id: str, patch: dict[str, Any]) -> Contract:
        return self._update_contract(contract_id, patch, "contract_updated")

    def archive_contract(self, contract_id: str) -> Contract:
        return self._update_contract(
            contract_id, {"status": ContractStatus.ARCHIVED.value}, "contract_archived"
        )

    def _update_contract(
        self,
        contract_id: str,
        patch: dict[str, Any],
        event: str,
        *,
        after: Callable[[Contract], None] | None = None,
        extra_keys: tuple[str, ...] = (),
    ) -> Contract:
        current = self._contract_or_raise(contract_id)
        merged = current.to_dict()
        merged.update(patch)
        merged["id"] = current.id
        if "maintenancePeriods" in patch:
            _fill_period_ids(merged)
        updated = Contract.from_dict(merged).validate()

        reactivated = current.status == ContractStatus.ARCHIVED
        if updated.status != ContractStatus.ARCHIVED and (
            updated.contract_number != current.contract_number or reactivated
        ):
            self._ensure_unique_number(updated.contract_number, exclude_id=current.id)

        periods_changed = "maintenancePeriods" in patch
        status_changed = updated.status != current.status
        keys: tuple[str, ...] = (CONTRACTS_KEY,)
        if periods_changed:
            keys = _REGEN_KEYS
        if status_changed:
            keys += (CONTRACT_KANBAN_KEY,)
        keys += tuple(k for k in extra_keys if k not in keys)

        with self._mutation(keys):
            d = self.data
            d.contracts = [updated if c.id == current.id else c for c in d.contracts]
            if periods_changed:
                d.tasks, d.kanban = self.engine.regenerate_for_contract(updated, d.tasks, d.kanban)
            if status_changed:
                d.contract_kanban = self.engine.sync_contract_kanban(d.contracts, d.contract_kanban)
            if after is not None:
                after(updated)

        logger.info(
            "Договор {} обновлён (поля: {})", updated.contract_number, ", ".join(sorted(patch)) or "-"
        )
        self._emit(event, keys, updated)
        return updated

    def move_contract_kanban(self, contract_id: str, column: ContractStatus | str) -> Contract:
        status = ContractStatus(column)
        event = "contract_archived" if status == ContractStatus.ARCHIVED else "contract_updated"
        return self._update_contract(contract_id, {"status": status.value}, event)

    def adjust_maintenance_period(
        self,
        contract_id: str,
        period_id: str,
        start: str,
        end: str,
        adjusted_by: str = DEFAULT_ADJUSTED_BY,
    ) -> Contract:
        contract = self._contract_or_raise(contract_id)
        if contract.period_by_id(period_id) is None:
            raise NotFound("период ТО", period_id)
        start_iso = V.iso_date("adjustedStartDate", start)
        end_iso = V.iso_date("adjustedEndDate", end)
        V.date_range("adjustedStartDate", start_iso, "adjustedEndDate", end_iso)

        periods = []
        for p in contract.maintenance_periods:
            rec = p.to_dict()
            if p.id == period_id:
                rec.update(
                    adjustedStartDate=start_iso,
                    adjustedEndDate=end_iso,
                    adjustedDate=to_iso(self.today()),
                    adjustedBy=adjusted_by,
                    status=advance_period_status(p.status, PeriodStatus.ADJUSTED).value,
                )
            periods.append(rec)
        logger.info(
            "Период {} договора {} скорректирован: {}..{} ({})",
            period_id, contract.contract_number, start_iso, end_iso, adjusted_by,
        )
        return self.update_contract(contract_id, {"maintenancePeriods": periods})

    # ============================ Исполнители ============================

    def add_engineer(self, data: dict[str, Any]) -> ServiceEngineer:
        payload = dict(data)
        payload["id"] = self.ids.next_id()
        engineer = ServiceEngineer.from_dict(payload).validate()
        with self._mutation((ENGINEERS_KEY,)):
            self.data.engineers.append(engineer)
        logger.info("Исполнитель '{}' добавлен (id={})", engineer.name, engineer.id)
        self._emit("engineer_added", (ENGINEERS_KEY,), engineer)
        return engineer

    def update_engineer(self, engineer_id: str, patch: dict[str, Any]) -> ServiceEngineer:
        current = self._find_or_raise(self.data.engineers, engineer_id, "исполнитель")
        merged = current.to_dict()
        merged.update(patch)
        merged["id"] = current.id
        updated = ServiceEngineer.from_dict(merged).validate()
        with self._mutation((ENGINEERS_KEY,)):
            self.data.engineers = [updated if e.id == current.id else e for e in self.data.engineers]
        logger.info("Исполнитель id={} обновлён", engineer_id)
        self._emit("engineer_updated", (ENGINEERS_KEY,), updated)
        return updated

    def delete_engineer(self, engineer_id: str) -> None:
        engineer = self._find_or_raise(self.data.engineers, engineer_id, "исполнитель")
        blocking = [
            c.contract_number
            for c in self.data.contracts
            if c.status == ContractStatus.ACTIVE and c.assigns_engineer(engineer_id)
        ]
        if blocking:
            raise ReferentialConstraint(
                "неможливо видалити інженера, він призначений до активних договорів: "
                + ", ".join(blocking),
                referenced_by=blocking,
            )
        with self._mutation((ENGINEERS_KEY,)):
            self.data.engineers = [e for e in self.data.engineers if e.id != engineer_id]
        logger.info("Исполнитель '{}' удалён (id={})", engineer.name, engineer_id)
        self._emit("engineer_deleted", (ENGINEERS_KEY,), engineer)

    # ============================== Объекты ==============================

    def add_object(self, data: dict[str, Any]) -> ServiceObject:
        payload = dict(data)
        payload["id"] = self.ids.next_id()
        obj = ServiceObject.from_dict(payload).validate()
        with self._mutation((OBJECTS_KEY,)):
            self.data.objects.append(obj)
        logger.info("Объект '{}' добавлен (id={})", obj.name, obj.id)
        self._emit("object_added", (OBJECTS_KEY,), obj)
        return obj

    def update_object(self, object_id: str, patch: dict[str, Any]) -> ServiceObject:
        current = self._find_or_raise(self.data.objects, object_id, "объект")
        merged = current.to_dict()
        merged.update(patch)
        merged["id"] = current.id
        updated = ServiceObject.from_dict(merged).validate()
        with self._mutation((OBJECTS_KEY,)):
            self.data.objects = [updated if o.id == current.id else o for o in self.data.objects]
        logger.info("Объект id={} обновлён", object_id)
        self._emit("object_updated", (OBJECTS_KEY,), updated)
        return updated

    # =============================== Задачи ===============================

    def add_task(self, data: dict[str, Any]) -> MaintenanceTask:
        """Ручная задача: карточка встаёт в конец колонки своего статуса (обычно todo)."""
        payload = dict(data)
        payload["id"] = self.ids.next_id()
        task = MaintenanceTask.from_dict(payload)
        self._check_task_refs(task)

        keys = (TASKS_KEY, KANBAN_KEY)
        with self._mutation(keys):
            d = self.data
            d.tasks.append(task)
            d.kanban = self.engine.sync_task_kanban(d.tasks, d.kanban)
        logger.info("Задача добавлена (id={}, договор {})", task.id, task.contract_id)
        self._emit("task_added", keys, task)
        return task

    def update_task(self, task_id: str, patch: dict[str, Any]) -> MaintenanceTask:
        return self._update_task(task_id, patch, "task_updated")

    def move_kanban_task(self, task_id: str, column: KanbanColumn | str) -> MaintenanceTask:
        """
        Перетаскивание карточки: статус задачи берётся из колонки,
        а колонка затем пересчитывается из статуса (review -> in_progress).
        """
        target = KanbanColumn(column)
        task = self._find_or_raise(self.data.tasks, task_id, "задача")
        if task.status == COLUMN_TASK_STATUS[target]:
            # статус не меняется, но карточку всё равно переносим в конец колонки
            keys = (KANBAN_KEY,)
            with self._mutation(keys):
                d = self.data
                d.kanban = [r for r in d.kanban if r.task_id != task_id]
                d.kanban = self.engine.sync_task_kanban(d.tasks, d.kanban)
            self._emit("task_moved", keys, task)
            return task
        return self._update_task(task_id, {"status": COLUMN_TASK_STATUS[target].value}, "task_moved")

    def _update_task(self, task_id: str, patch: dict[str, Any], event: str) -> MaintenanceTask:
        current = self._find_or_raise(self.data.tasks, task_id, "задача")
        merged = current.to_dict()
        merged.update(patch)
        merged["id"] = current.id
        updated = MaintenanceTask.from_dict(merged)
        self._check_task_refs(updated)
        status_changed = updated.status != current.status

        keys: tuple[str, ...] = (TASKS_KEY, KANBAN_KEY) if status_changed else (TASKS_KEY,)
        with self._mutation(keys):
            d = self.data
            d.tasks = [updated if t.id == current.id else t for t in d.tasks]
            if status_changed:
                # карточка со старой колонкой уходит в конец новой
                d.kanban = self.engine.sync_task_kanban(d.tasks, d.kanban)
        logger.info("Задача id={} обновлена (поля: {})", task_id, ", ".join(sorted(patch)) or "-")
        self._emit(event, keys, updated)
        return updated

    # =============================== Отчёты ===============================

    def create_maintenance_report(self, data: dict[str, Any]) -> MaintenanceReport:
        """
        Сохранить отчёт о ТО. Если указан taskId: период задачи становится completed,
        задачи договора перестраиваются, и новая задача этого периода получает
        отчёт, статус archived и дату выполнения.
        """
        stamp = now_iso()
        payload = dict(data)
        payload.update(id=self.ids.next_id(), createdAt=stamp, updatedAt=stamp)
        report = MaintenanceReport.from_dict(payload).validate()

        task = None
        if report.task_id is not None:
            task = self._find_or_raise(self.data.tasks, report.task_id, "задача")
            if report.maintenance_period_id is None:
                report.maintenance_period_id = task.maintenance_period_id

        contract = self._contract_or_raise(task.contract_id) if task else None
        if task is None or contract is None or task.maintenance_period_id is None:
            keys = (REPORTS_KEY, TASKS_KEY, KANBAN_KEY) if task else (REPORTS_KEY,)
            with self._mutation(keys):
                self.data.reports.append(report)
                if task is not None:
                    self._close_task(task.id, report)
            logger.info("Отчёт о ТО создан (id={}, договор {})", report.id, report.contract_id)
            self._emit("report_created", keys, report)
            return report

        period_id = task.maintenance_period_id
        periods = [
            {**p.to_dict(), "status": advance_period_status(p.status, PeriodStatus.COMPLETED).value}
            if p.id == period_id
            else p.to_dict()
            for p in contract.maintenance_periods
        ]

        def attach_report(updated: Contract) -> None:
            new_task = next(
                (t for t in self.data.tasks
                 if t.contract_id == updated.id and t.maintenance_period_id == period_id),
                None,
            )
            if new_task is not None:
                report.task_id = new_task.id
                self._close_task(new_task.id, report)
            self.data.reports.append(report)

        self._update_contract(
            contract.id,
            {"maintenancePeriods": periods},
            "contract_updated",
            after=attach_report,
            extra_keys=(REPORTS_KEY,),
        )
        logger.info(
            "Отчёт о ТО создан (id={}, договор {}, период {})",
            report.id, contract.contract_number, period_id,
        )
        self._emit("report_created", _REGEN_KEYS + (REPORTS_KEY,), report)
        return report

    def _close_task(self, task_id: str, report: MaintenanceReport) -> None:
        d = self.data
        for t in d.tasks:
            if t.id == task_id:
                t.completion_report = report.to_dict()
                t.status = TaskStatus.ARCHIVED
                t.completed_date = report.completed_date
        d.kanban = self.engine.sync_task_kanban(d.tasks, d.kanban)

    # =============================== Запросы ===============================

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        return _find(self.data.contracts, contract_id)

    def find_contract_by_number(self, number: str) -> Optional[Contract]:
        """Не архивный договор с таким номером; если такого нет - любой."""
        number = number.strip()
        matches = [c for c in self.data.contracts if c.contract_number == number]
        live = [c for c in matches if c.status != ContractStatus.ARCHIVED]
        return (live or matches or [None])[0]

    def list_active_contracts(self) -> list[Contract]:
        """Все не архивные договоры."""
        return [c for c in self.data.contracts if c.status != ContractStatus.ARCHIVED]

    def tasks_for_contract(self, contract_id: str) -> list[MaintenanceTask]:
        return [t for t in self.data.tasks if t.contract_id == contract_id]

    def reports_by_contract(self, contract_id: str) -> list[MaintenanceReport]:
        return _newest_first(r for r in self.data.reports if r.contract_id == contract_id)

    def last_report_by_contract(self, contract_id: str) -> Optional[MaintenanceReport]:
        reports = self.reports_by_contract(contract_id)
        return reports[0] if reports else None

    def reports_by_engineer(self, engineer_id: str) -> list[MaintenanceReport]:
        return _newest_first(r for r in self.data.reports if r.engineer_id == engineer_id)

    def next_maintenance(self, contract: Contract | str, today: date | None = None) -> NextMaintenance:
        if isinstance(contract, str):
            contract = self._contract_or_raise(contract)
        return next_maintenance(contract, today or self.today())

    def check_integrity(self) -> list[str]:
        d = self.data
        return self.engine.check_integrity(d.contracts, d.tasks, d.kanban, d.contract_kanban)

    # ============================ Обслуживание ============================

    def remove_duplicate_contracts(self) -> int:
        """
        Оставить первый договор с каждым номером. Задачи и карточки удалённых
        договоров уходят вместе с ними. Возвращает число оставшихся договоров
        или 0, если дублей не было.
        """
        seen: set[str] = set()
        kept: list[Contract] = []
        for c in self.data.contracts:
            if c.contract_number not in seen:
                seen.add(c.contract_number)
                kept.append(c)
        removed = len(self.data.contracts) - len(kept)
        if not removed:
            return 0

        keys = (CONTRACTS_KEY, TASKS_KEY, KANBAN_KEY, CONTRACT_KANBAN_KEY)
        kept_ids = {c.id for c in kept}
        with self._mutation(keys):
            d = self.data
            d.contracts = kept
            d.tasks = [t for t in d.tasks if t.contract_id in kept_ids]
            d.kanban = self.engine.sync_task_kanban(d.tasks, d.kanban)
            d.contract_kanban = self.engine.sync_contract_kanban(d.contracts, d.contract_kanban)
        logger.warning("Удалено дублей договоров: {}", removed)
        self._emit("duplicates_removed", keys, None, removed=removed)
        return len(kept)

    def regenerate_all_tasks(self) -> int:
        keys = (TASKS_KEY, KANBAN_KEY, CONTRACT_KANBAN_KEY)
        with self._mutation(keys):
            d = self.data
            d.tasks, d.kanban = self.engine.regenerate_all(d.contracts)
            d.contract_kanban = self.engine.sync_contract_kanban(d.contracts, d.contract_kanban)
        self._emit("tasks_regenerated", keys, None, count=len(self.data.tasks))
        return len(self.data.tasks)

    def reset_data(self) -> LoadResult:
        """Стереть все ключи хранилища и загрузиться заново (с засевом по умолчанию)."""
        logger.warning("Полный сброс данных")
        self.storage.clear(STORE_KEYS)
        result = self.reload()
        self._emit("data_reset", STORE_KEYS, None)
        return result

    def reset_contracts_only(self) -> None:
        keys = tuple(k for k in STORE_KEYS if k != ENGINEERS_KEY)
        with self._mutation(keys):
            for key in keys:
                setattr(self.data, StoreData.attr_for(key), [])
        logger.warning("Данные договоров очищены, исполнители сохранены")
        self._emit("data_reset", keys, None)

    # ========================== Снимки и замена ==========================

    def snapshot(self) -> Snapshot:
        return Snapshot(copy.deepcopy(self.data.to_collections()), dict(self.versions))

    def restore(self, snapshot: Snapshot) -> None:
        """Заменить все коллекции снимком и сохранить их (undo/redo)."""
        self.replace_collections(
            snapshot.collections, STORE_KEYS, "store_restored", versions=snapshot.versions
        )

    def replace_collections(
        self,
        collections: dict[str, list[dict[str, Any]]],
        keys: tuple[str, ...],
        event: str,
        *,
        versions: Optional[dict[str, int]] = None,
    ) -> list[dict[str, Any]]:
        """
        Заменить указанные коллекции записями из dict и сохранить их.
        Нечитаемые записи пропускаются; возвращается список их описаний.
        """
        errors: list[dict[str, Any]] = []
        with self._mutation(keys):
            for key in keys:
                self.data.set_records(key, copy.deepcopy(list(collections.get(key) or [])), errors)
        if versions is not None and keys == STORE_KEYS:
            # содержимое совпадает со снимком, поэтому и версии его
            self.versions = dict(versions)
        for err in errors:
            logger.warning("Запись {} #{} пропущена: {}", err["key"], err["index"] + 1, err["message"])
        self._observe_ids()
        self._emit(event, keys, None, skipped=len(errors))
        return errors

    # ============================== Внутреннее ==============================

    @contextmanager
    def _mutation(self, keys: tuple[str, ...]) -> Iterator[None]:
        before = {key: copy.deepcopy(getattr(self.data, StoreData.attr_for(key))) for key in keys}
        try:
            yield
        except Exception:
            self._rollback_memory(before)
            raise

        try:
            self.storage.write_many({key: self.data.records(key) for key in keys})
        except StorageFailure as exc:
            logger.error("Ошибка записи '{}', откат изменений: {}", exc.key, exc.cause)
            self._rollback_memory(before)
            self._restore_persisted(keys)
            raise
        self._bump(keys)

    def _rollback_memory(self, before: dict[str, list[Any]]) -> None:
        for key, items in before.items():
            setattr(self.data, StoreData.attr_for(key), items)

    def _restore_persisted(self, keys: tuple[str, ...]) -> None:
        for key in keys:
            try:
                self.storage.write_array(key, self.data.records(key))
            except StorageFailure as exc:
                logger.error("Не удалось вернуть прежнее значение '{}': {}", key, exc.cause)

    def _bump(self, keys: tuple[str, ...]) -> None:
        # ревизия глобальная и только растёт: равные версии -> одинаковое содержимое
        self._revision += 1
        for key in keys:
            self.versions[key] = self._revision

    def _emit(self, name: str, keys: tuple[str, ...], entity: Any, **extra: Any) -> None:
        self.notify(name, StoreEvent(name, tuple(keys), entity, extra))

    def _observe_ids(self) -> None:
        d = self.data
        for items in (d.contracts, d.objects, d.engineers, d.tasks, d.kanban, d.contract_kanban, d.reports):
            for item in items:
                self.ids.observe(item.id)

    def _ensure_unique_number(self, number: str, *, exclude_id: str | None = None) -> None:
        for c in self.data.contracts:
            if c.id != exclude_id and c.status != ContractStatus.ARCHIVED and c.contract_number == number:
                raise DuplicateKey(number, c.id)

    def _contract_or_raise(self, contract_id: str) -> Contract:
        return self._find_or_raise(self.data.contracts, contract_id, "договор")

    def _check_task_refs(self, task: MaintenanceTask) -> None:
        """Договор задачи существует, период (если указан) есть в договоре, дата в ISO."""
        contract = self._contract_or_raise(task.contract_id)
        if task.maintenance_period_id is not None and contract.period_by_id(task.maintenance_period_id) is None:
            raise NotFound("период ТО", task.maintenance_period_id)
        task.scheduled_date = V.iso_date("scheduledDate", task.scheduled_date)

    @staticmethod
    def _find_or_raise(items: list[Any], item_id: str, entity: str) -> Any:
        item = _find(items, item_id)
        if item is None:
            raise NotFound(entity, item_id)
        return item


def _find(items: list[Any], item_id: str) -> Any:
    for item in items:
        if item.id == item_id:
            return item
    return None


def _newest_first(reports: Any) -> list[MaintenanceReport]:
    return sorted(reports, key=lambda r: r.completed_date, reverse=True)


def _fill_period_ids(payload: dict[str, Any]) -> None:
    """Периоды без id получают порядковый номер, не занятый в договоре."""
    periods = [dict(p) if isinstance(p, dict) else p for p in payload.get("maintenancePeriods") or []]
    payload["maintenancePeriods"] = periods
    used = {str(p["id"]) for p in periods if isinstance(p, dict) and p.get("id")}
    n = 0
    for p in periods:
        if isinstance(p, dict) and not p.get("id"):
            n += 1
            while str(n) in used:
                n += 1
            p["id"] = str(n)
            used.add(p["id"])
