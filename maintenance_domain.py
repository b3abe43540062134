from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from base_storage import (
    CONTRACT_KANBAN_KEY,
    CONTRACTS_KEY,
    ENGINEERS_KEY,
    KANBAN_KEY,
    OBJECTS_KEY,
    REPORTS_KEY,
    STORE_KEYS,
    TASKS_KEY,
)
from validators import Validator as V


class ContractStatus(str, Enum):
    ACTIVE = "active"
    FINAL_WORKS = "final_works"
    EXTENSION = "extension"
    COMPLETED = "completed"
    ARCHIVED = "archived"


# Колонка канбана договоров совпадает со статусом договора.
ContractKanbanColumn = ContractStatus


class PeriodStatus(str, Enum):
    PLANNED = "planned"
    ADJUSTED = "adjusted"
    COMPLETED = "completed"


class TaskStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    ARCHIVED = "archived"


class TaskType(str, Enum):
    ROUTINE = "routine"
    EMERGENCY = "emergency"
    SEASONAL = "seasonal"
    DIAGNOSTIC = "diagnostic"


class KanbanColumn(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"


class Department(str, Enum):
    CONDITIONING = "КОНД"
    UPS = "ДБЖ"
    GENERATOR = "ДГУ"


class EquipmentType(str, Enum):
    CONDITIONING = "КОНД"
    UPS = "ДБЖ"
    GENERATOR = "ДГУ"
    COMPLEX = "КОМПЛЕКСНЕ"


# Единственная таблица статус задачи -> колонка. tests/test_domain.py проверяет полноту.
TASK_STATUS_COLUMN: dict[TaskStatus, KanbanColumn] = {
    TaskStatus.PLANNED: KanbanColumn.TODO,
    TaskStatus.IN_PROGRESS: KanbanColumn.IN_PROGRESS,
    TaskStatus.COMPLETED: KanbanColumn.COMPLETED,
    TaskStatus.OVERDUE: KanbanColumn.TODO,
    TaskStatus.ARCHIVED: KanbanColumn.TODO,
}

# Обратное отображение для перетаскивания карточки по доске.
COLUMN_TASK_STATUS: dict[KanbanColumn, TaskStatus] = {
    KanbanColumn.TODO: TaskStatus.PLANNED,
    KanbanColumn.IN_PROGRESS: TaskStatus.IN_PROGRESS,
    KanbanColumn.REVIEW: TaskStatus.IN_PROGRESS,
    KanbanColumn.COMPLETED: TaskStatus.COMPLETED,
}

_PERIOD_STATUS_RANK: dict[PeriodStatus, int] = {
    PeriodStatus.PLANNED: 0,
    PeriodStatus.ADJUSTED: 1,
    PeriodStatus.COMPLETED: 2,
}


def task_column(status: TaskStatus | str) -> KanbanColumn:
    return TASK_STATUS_COLUMN[TaskStatus(status)]


def contract_column(status: ContractStatus | str) -> ContractStatus:
    return ContractStatus(status)


def advance_period_status(current: PeriodStatus | str, target: PeriodStatus | str) -> PeriodStatus:
    """Статус периода только растёт: planned -> adjusted -> completed."""
    cur, tgt = PeriodStatus(current), PeriodStatus(target)
    return tgt if _PERIOD_STATUS_RANK[tgt] > _PERIOD_STATUS_RANK[cur] else cur


# ---------------------- Утилиты (де)сериализации ----------------------


def _extra(data: dict[str, Any], known: set[str]) -> dict[str, Any]:
    """Неизвестные ключи записи сохраняем как есть, чтобы не терять чужие данные."""
    return {k: v for k, v in data.items() if k not in known}


def _put(out: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        out[key] = value


def _str_or_none(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    return [str(value)]


# =========================== Период ТО ===========================


@dataclass(slots=True)
class MaintenancePeriod:
    id: str
    start_date: str
    end_date: str
    status: PeriodStatus = PeriodStatus.PLANNED
    adjusted_start_date: Optional[str] = None
    adjusted_end_date: Optional[str] = None
    adjusted_date: Optional[str] = None
    adjusted_by: Optional[str] = None
    departments: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "id", "startDate", "endDate", "status", "adjustedStartDate",
        "adjustedEndDate", "adjustedDate", "adjustedBy", "departments",
    }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MaintenancePeriod:
        return MaintenancePeriod(
            id=str(data["id"]),
            start_date=str(data["startDate"]),
            end_date=str(data["endDate"]),
            status=PeriodStatus(data.get("status") or PeriodStatus.PLANNED),
            adjusted_start_date=_str_or_none(data.get("adjustedStartDate")),
            adjusted_end_date=_str_or_none(data.get("adjustedEndDate")),
            adjusted_date=_str_or_none(data.get("adjustedDate")),
            adjusted_by=_str_or_none(data.get("adjustedBy")),
            departments=_str_list(data.get("departments")),
            extra=_extra(data, MaintenancePeriod._KNOWN),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "startDate": self.start_date,
                "endDate": self.end_date,
                "status": self.status.value,
            }
        )
        _put(out, "adjustedStartDate", self.adjusted_start_date)
        _put(out, "adjustedEndDate", self.adjusted_end_date)
        _put(out, "adjustedDate", self.adjusted_date)
        _put(out, "adjustedBy", self.adjusted_by)
        if self.departments:
            out["departments"] = list(self.departments)
        return out

    def validate(self) -> MaintenancePeriod:
        self.id = V.require_non_empty("period.id", self.id)
        self.start_date = V.iso_date("period.startDate", self.start_date)
        self.end_date = V.iso_date("period.endDate", self.end_date)
        V.date_range("period.startDate", self.start_date, "period.endDate", self.end_date)
        if self.adjusted_start_date or self.adjusted_end_date:
            self.adjusted_start_date = V.iso_date("period.adjustedStartDate", self.adjusted_start_date)
            self.adjusted_end_date = V.iso_date("period.adjustedEndDate", self.adjusted_end_date)
            V.date_range(
                "period.adjustedStartDate", self.adjusted_start_date,
                "period.adjustedEndDate", self.adjusted_end_date,
            )
        self.departments = V.subset_of(
            "period.departments", self.departments, [d.value for d in Department]
        )
        return self


# ============================ Договор ============================


@dataclass(slots=True)
class Contract:
    id: str
    contract_number: str
    client_name: str
    object_id: str
    start_date: str
    end_date: str
    status: ContractStatus = ContractStatus.ACTIVE
    maintenance_periods: list[MaintenancePeriod] = field(default_factory=list)
    assigned_engineer_ids: list[str] = field(default_factory=list)
    work_types: list[str] = field(default_factory=list)
    equipment_type: Optional[str] = None
    address: Optional[str] = None
    map_link: Optional[str] = None
    notes: Optional[str] = None
    contact_person: Optional[str] = None
    contract_value: Optional[float] = None
    service_frequency: Optional[int] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "id", "contractNumber", "clientName", "objectId", "startDate", "endDate",
        "status", "maintenancePeriods", "assignedEngineerIds", "workTypes",
        "equipmentType", "address", "mapLink", "notes", "contactPerson",
        "contractValue", "serviceFrequency",
    }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Contract:
        value = data.get("contractValue")
        freq = data.get("serviceFrequency")
        return Contract(
            id=str(data["id"]),
            contract_number=str(data.get("contractNumber", "")),
            client_name=str(data.get("clientName", "")),
            object_id=str(data.get("objectId", "")),
            start_date=str(data.get("startDate", "")),
            end_date=str(data.get("endDate", "")),
            status=ContractStatus(data.get("status") or ContractStatus.ACTIVE),
            maintenance_periods=[
                MaintenancePeriod.from_dict(p) for p in (data.get("maintenancePeriods") or [])
            ],
            assigned_engineer_ids=_str_list(data.get("assignedEngineerIds")),
            work_types=_str_list(data.get("workTypes")),
            equipment_type=_str_or_none(data.get("equipmentType")),
            address=_str_or_none(data.get("address")),
            map_link=_str_or_none(data.get("mapLink")),
            notes=_str_or_none(data.get("notes")),
            contact_person=_str_or_none(data.get("contactPerson")),
            contract_value=float(value) if value is not None else None,
            service_frequency=int(freq) if isinstance(freq, (int, float)) else None,
            extra=_extra(data, Contract._KNOWN),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "contractNumber": self.contract_number,
                "clientName": self.client_name,
                "objectId": self.object_id,
                "startDate": self.start_date,
                "endDate": self.end_date,
                "status": self.status.value,
                "maintenancePeriods": [p.to_dict() for p in self.maintenance_periods],
                "assignedEngineerIds": list(self.assigned_engineer_ids),
                "workTypes": list(self.work_types),
            }
        )
        _put(out, "equipmentType", self.equipment_type)
        _put(out, "address", self.address)
        _put(out, "mapLink", self.map_link)
        _put(out, "notes", self.notes)
        _put(out, "contactPerson", self.contact_person)
        _put(out, "contractValue", self.contract_value)
        _put(out, "serviceFrequency", self.service_frequency)
        return out

    def validate(self) -> Contract:
        """Проверка перед записью: номер, даты, уникальность id периодов, наборы."""
        self.contract_number = V.contract_number(self.contract_number)
        self.client_name = V.require_non_empty("clientName", self.client_name)
        self.start_date = V.iso_date("startDate", self.start_date)
        self.end_date = V.iso_date("endDate", self.end_date)
        V.date_range("startDate", self.start_date, "endDate", self.end_date)

        seen: set[str] = set()
        for period in self.maintenance_periods:
            period.validate()
            if period.id in seen:
                raise ValueError(f"Период ТО с id={period.id} повторяется в договоре.")
            seen.add(period.id)

        self.assigned_engineer_ids = V.unique_ids("assignedEngineerIds", self.assigned_engineer_ids)
        self.work_types = V.unique_ids("workTypes", self.work_types)
        if self.equipment_type is not None:
            self.equipment_type = V.one_of(
                "equipmentType", self.equipment_type, [e.value for e in EquipmentType]
            )
        if self.contract_value is not None:
            self.contract_value = V.non_negative_number("contractValue", self.contract_value)
        return self

    def period_by_id(self, period_id: str) -> Optional[MaintenancePeriod]:
        for period in self.maintenance_periods:
            if period.id == period_id:
                return period
        return None

    def assigns_engineer(self, engineer_id: str) -> bool:
        # assignedEngineerId - одиночное назначение из старых данных
        return engineer_id in self.assigned_engineer_ids or self.extra.get("assignedEngineerId") == engineer_id


# ============================ Задача ТО ============================


@dataclass(slots=True)
class MaintenanceTask:
    id: str
    contract_id: str
    object_id: str
    engineer_id: str
    scheduled_date: str
    status: TaskStatus = TaskStatus.PLANNED
    duration: int = 4
    type: TaskType = TaskType.ROUTINE
    completed_date: Optional[str] = None
    notes: Optional[str] = None
    completion_report: Optional[dict[str, Any]] = None
    maintenance_period_id: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "id", "contractId", "objectId", "engineerId", "scheduledDate", "status",
        "duration", "type", "completedDate", "notes", "completionReport",
        "maintenancePeriodId",
    }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MaintenanceTask:
        return MaintenanceTask(
            id=str(data["id"]),
            contract_id=str(data.get("contractId", "")),
            object_id=str(data.get("objectId", "")),
            engineer_id=str(data.get("engineerId", "")),
            scheduled_date=str(data.get("scheduledDate", "")),
            status=TaskStatus(data.get("status") or TaskStatus.PLANNED),
            duration=int(data.get("duration") or 0),
            type=TaskType(data.get("type") or TaskType.ROUTINE),
            completed_date=_str_or_none(data.get("completedDate")),
            notes=_str_or_none(data.get("notes")),
            completion_report=data.get("completionReport"),
            maintenance_period_id=_str_or_none(data.get("maintenancePeriodId")),
            extra=_extra(data, MaintenanceTask._KNOWN),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "contractId": self.contract_id,
                "objectId": self.object_id,
                "engineerId": self.engineer_id,
                "scheduledDate": self.scheduled_date,
                "type": self.type.value,
                "status": self.status.value,
                "duration": self.duration,
            }
        )
        _put(out, "completedDate", self.completed_date)
        _put(out, "notes", self.notes)
        _put(out, "completionReport", self.completion_report)
        _put(out, "maintenancePeriodId", self.maintenance_period_id)
        return out


# ============================ Канбан ============================


@dataclass(slots=True)
class TaskKanbanRow:
    id: str
    task_id: str
    column: KanbanColumn
    order: int

    @staticmethod
    def from_dict(data: dict[str, Any]) -> TaskKanbanRow:
        return TaskKanbanRow(
            id=str(data["id"]),
            task_id=str(data["taskId"]),
            column=KanbanColumn(data.get("column") or KanbanColumn.TODO),
            order=int(data.get("order") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "taskId": self.task_id, "column": self.column.value, "order": self.order}


@dataclass(slots=True)
class ContractKanbanRow:
    id: str
    contract_id: str
    column: ContractStatus
    order: int

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ContractKanbanRow:
        return ContractKanbanRow(
            id=str(data["id"]),
            contract_id=str(data["contractId"]),
            column=ContractStatus(data.get("column") or ContractStatus.ACTIVE),
            order=int(data.get("order") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contractId": self.contract_id,
            "column": self.column.value,
            "order": self.order,
        }


# ==================== Исполнители, объекты, отчёты ====================


@dataclass(slots=True)
class ServiceEngineer:
    id: str
    name: str
    phone: str = ""
    email: str = ""
    specialization: list[str] = field(default_factory=list)
    color: str = "#3B82F6"
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {"id", "name", "phone", "email", "specialization", "color"}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ServiceEngineer:
        return ServiceEngineer(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            phone=str(data.get("phone") or ""),
            email=str(data.get("email") or ""),
            specialization=_str_list(data.get("specialization")),
            color=str(data.get("color") or "#3B82F6"),
            extra=_extra(data, ServiceEngineer._KNOWN),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "name": self.name,
                "phone": self.phone,
                "email": self.email,
                "specialization": list(self.specialization),
                "color": self.color,
            }
        )
        return out

    def validate(self) -> ServiceEngineer:
        self.name = V.require_non_empty("name", self.name)
        self.specialization = V.subset_of(
            "specialization", self.specialization, [d.value for d in Department]
        )
        return self


@dataclass(slots=True)
class ServiceObject:
    id: str
    name: str
    address: str = ""
    client_name: str = ""
    client_contact: str = ""
    equipment_count: int = 0
    notes: Optional[str] = None
    map_link: Optional[str] = None
    contact_person_name: Optional[str] = None
    contact_person_phone: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "id", "name", "address", "clientName", "clientContact", "equipmentCount",
        "notes", "mapLink", "contactPersonName", "contactPersonPhone",
    }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ServiceObject:
        return ServiceObject(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            address=str(data.get("address") or ""),
            client_name=str(data.get("clientName") or ""),
            client_contact=str(data.get("clientContact") or ""),
            equipment_count=int(data.get("equipmentCount") or 0),
            notes=_str_or_none(data.get("notes")),
            map_link=_str_or_none(data.get("mapLink")),
            contact_person_name=_str_or_none(data.get("contactPersonName")),
            contact_person_phone=_str_or_none(data.get("contactPersonPhone")),
            extra=_extra(data, ServiceObject._KNOWN),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "name": self.name,
                "address": self.address,
                "clientName": self.client_name,
                "clientContact": self.client_contact,
                "equipmentCount": self.equipment_count,
            }
        )
        _put(out, "notes", self.notes)
        _put(out, "mapLink", self.map_link)
        _put(out, "contactPersonName", self.contact_person_name)
        _put(out, "contactPersonPhone", self.contact_person_phone)
        return out

    def validate(self) -> ServiceObject:
        self.name = V.require_non_empty("name", self.name)
        if self.equipment_count < 0:
            raise ValueError("Поле 'equipmentCount' не может быть отрицательным.")
        return self


@dataclass(slots=True)
class MaintenanceReport:
    """Отчёт о выполненном ТО. Если указан task_id - закрывает задачу."""

    id: str
    contract_id: str
    engineer_id: str
    completed_date: str
    department: str
    actual_start_time: str = ""
    actual_end_time: str = ""
    work_description: str = ""
    issues: str = ""
    recommendations: str = ""
    task_id: Optional[str] = None
    materials_used: Optional[str] = None
    photos: list[str] = field(default_factory=list)
    next_maintenance_notes: Optional[str] = None
    equipment_type: Optional[str] = None
    maintenance_period_id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN = {
        "id", "taskId", "contractId", "engineerId", "completedDate",
        "actualStartTime", "actualEndTime", "workDescription", "issues",
        "recommendations", "materialsUsed", "photos", "nextMaintenanceNotes",
        "equipmentType", "maintenancePeriodId", "department", "createdAt", "updatedAt",
    }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MaintenanceReport:
        return MaintenanceReport(
            id=str(data["id"]),
            contract_id=str(data.get("contractId", "")),
            engineer_id=str(data.get("engineerId", "")),
            completed_date=str(data.get("completedDate", "")),
            department=str(data.get("department", "")),
            actual_start_time=str(data.get("actualStartTime") or ""),
            actual_end_time=str(data.get("actualEndTime") or ""),
            work_description=str(data.get("workDescription") or ""),
            issues=str(data.get("issues") or ""),
            recommendations=str(data.get("recommendations") or ""),
            task_id=_str_or_none(data.get("taskId")),
            materials_used=_str_or_none(data.get("materialsUsed")),
            photos=_str_list(data.get("photos")),
            next_maintenance_notes=_str_or_none(data.get("nextMaintenanceNotes")),
            equipment_type=_str_or_none(data.get("equipmentType")),
            maintenance_period_id=_str_or_none(data.get("maintenancePeriodId")),
            created_at=str(data.get("createdAt") or ""),
            updated_at=str(data.get("updatedAt") or ""),
            extra=_extra(data, MaintenanceReport._KNOWN),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out.update(
            {
                "id": self.id,
                "contractId": self.contract_id,
                "engineerId": self.engineer_id,
                "completedDate": self.completed_date,
                "actualStartTime": self.actual_start_time,
                "actualEndTime": self.actual_end_time,
                "workDescription": self.work_description,
                "issues": self.issues,
                "recommendations": self.recommendations,
                "department": self.department,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )
        _put(out, "taskId", self.task_id)
        _put(out, "materialsUsed", self.materials_used)
        if self.photos:
            out["photos"] = list(self.photos)
        _put(out, "nextMaintenanceNotes", self.next_maintenance_notes)
        _put(out, "equipmentType", self.equipment_type)
        _put(out, "maintenancePeriodId", self.maintenance_period_id)
        return out

    def validate(self) -> MaintenanceReport:
        self.contract_id = V.require_non_empty("contractId", self.contract_id)
        self.engineer_id = V.require_non_empty("engineerId", self.engineer_id)
        self.completed_date = V.iso_date("completedDate", self.completed_date)
        self.department = V.one_of("department", self.department, [d.value for d in Department])
        return self


# ====================== Набор коллекций хранилища ======================

# ключ хранилища -> (атрибут StoreData, тип записи)
_COLLECTION_TYPES: dict[str, tuple[str, Any]] = {
    CONTRACTS_KEY: ("contracts", Contract),
    OBJECTS_KEY: ("objects", ServiceObject),
    ENGINEERS_KEY: ("engineers", ServiceEngineer),
    TASKS_KEY: ("tasks", MaintenanceTask),
    KANBAN_KEY: ("kanban", TaskKanbanRow),
    CONTRACT_KANBAN_KEY: ("contract_kanban", ContractKanbanRow),
    REPORTS_KEY: ("reports", MaintenanceReport),
}


@dataclass
class StoreData:
    """Все семь коллекций хранилища в типизированном виде."""

    contracts: list[Contract] = field(default_factory=list)
    objects: list[ServiceObject] = field(default_factory=list)
    engineers: list[ServiceEngineer] = field(default_factory=list)
    tasks: list[MaintenanceTask] = field(default_factory=list)
    kanban: list[TaskKanbanRow] = field(default_factory=list)
    contract_kanban: list[ContractKanbanRow] = field(default_factory=list)
    reports: list[MaintenanceReport] = field(default_factory=list)

    @staticmethod
    def attr_for(key: str) -> str:
        return _COLLECTION_TYPES[key][0]

    def records(self, key: str) -> list[dict[str, Any]]:
        return [item.to_dict() for item in getattr(self, self.attr_for(key))]

    def to_collections(self) -> dict[str, list[dict[str, Any]]]:
        return {key: self.records(key) for key in STORE_KEYS}

    def set_records(
        self,
        key: str,
        records: list[dict[str, Any]],
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        """
        Заменить коллекцию записями из dict. Запись, которая не разбирается,
        пропускается; если передан errors - туда попадает описание ошибки,
        иначе кидаем ValueError на первой же ошибке.
        """
        attr, cls = _COLLECTION_TYPES[key]
        items: list[Any] = []
        for idx, rec in enumerate(records):
            try:
                items.append(cls.from_dict(rec))
            except (KeyError, TypeError, ValueError) as exc:
                err: dict[str, Any] = {
                    "key": key,
                    "index": idx,
                    "id": rec.get("id") if isinstance(rec, dict) else None,
                    "error_type": type(exc).__name__,
                    "message": str(exc),
                }
                if errors is None:
                    raise ValueError(
                        f"Ошибка чтения '{key}': элемент #{idx + 1}: {err['message']}"
                    ) from exc
                errors.append(err)
        setattr(self, attr, items)

    @staticmethod
    def from_collections(
        raw: Mapping[str, list[dict[str, Any]] | None],
        errors: list[dict[str, Any]] | None = None,
    ) -> StoreData:
        data = StoreData()
        for key in STORE_KEYS:
            data.set_records(key, list(raw.get(key) or []), errors)
        return data
