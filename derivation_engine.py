# derivation_engine.py
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable, Optional, Protocol

from loguru import logger

from dates import from_iso, midpoint, to_iso
from ids import IdGenerator
from maintenance_domain import (
    Contract,
    ContractKanbanRow,
    ContractStatus,
    KanbanColumn,
    MaintenancePeriod,
    MaintenanceTask,
    PeriodStatus,
    TaskKanbanRow,
    TaskStatus,
    TaskType,
    contract_column,
    task_column,
)

# Исполнитель по умолчанию, если в договоре никто не назначен.
FALLBACK_ENGINEER_ID = "1"


# ======================= Политики статуса задач =======================


class StatusPolicy(Protocol):
    def status_for(
        self,
        index: int,
        period: MaintenancePeriod,
        scheduled: date,
        today: date,
    ) -> tuple[TaskStatus, Optional[str]]:
        """Вернуть (статус, completedDate) для сгенерированной задачи."""
        ...


class PlaceholderStatusPolicy:
    """
    Демонстрационное правило первой версии: для уже прошедших дат каждый 3-й
    период (по индексу) считается выполненным, каждый оставшийся 2-й - в работе.
    Реального учёта выполнения за этим нет.
    """

    def status_for(
        self,
        index: int,
        period: MaintenancePeriod,
        scheduled: date,
        today: date,
    ) -> tuple[TaskStatus, Optional[str]]:
        if scheduled < today:
            if index % 3 == 0:
                return TaskStatus.COMPLETED, to_iso(scheduled)
            if index % 2 == 0:
                return TaskStatus.IN_PROGRESS, None
        return TaskStatus.PLANNED, None


class PeriodStatusPolicy:
    """Статус задачи берётся из статуса периода: выполнен -> completed, прошёл -> overdue."""

    def status_for(
        self,
        index: int,
        period: MaintenancePeriod,
        scheduled: date,
        today: date,
    ) -> tuple[TaskStatus, Optional[str]]:
        if period.status == PeriodStatus.COMPLETED:
            return TaskStatus.COMPLETED, to_iso(scheduled)
        if from_iso(period.end_date) < today:
            return TaskStatus.OVERDUE, None
        return TaskStatus.PLANNED, None


STATUS_POLICIES: dict[str, Callable[[], StatusPolicy]] = {
    "placeholder": PlaceholderStatusPolicy,
    "period": PeriodStatusPolicy,
}


def make_status_policy(name: str) -> StatusPolicy:
    try:
        return STATUS_POLICIES[name]()
    except KeyError:
        raise ValueError(
            f"Неизвестная политика статусов '{name}' (допустимо: {', '.join(STATUS_POLICIES)})."
        ) from None


# ============================ Движок ============================


class DerivationEngine:
    """
    Детерминированно строит производные коллекции из договоров:
      - задачи ТО (по одной на период ТО договора);
      - канбан задач (колонка = f(статус задачи));
      - канбан договоров (колонка = статус договора).

    Производные записи никогда не правятся точечно: при смене периодов
    все задачи договора удаляются и генерируются заново.
    """

    def __init__(
        self,
        *,
        status_policy: StatusPolicy | None = None,
        today: Callable[[], date] = date.today,
        ids: IdGenerator | None = None,
    ) -> None:
        self.status_policy = status_policy or PlaceholderStatusPolicy()
        self.today = today
        self.ids = ids or IdGenerator()

    # ------------------------- Генерация задач -------------------------

    def generate_tasks(self, contract: Contract) -> list[MaintenanceTask]:
        if not contract.maintenance_periods:
            logger.debug("У договора {} нет периодов ТО", contract.contract_number)
            return []

        today = self.today()
        engineer_id = contract.assigned_engineer_ids[0] if contract.assigned_engineer_ids else FALLBACK_ENGINEER_ID
        # пустой список видов работ считается как один вид
        duration = max(len(contract.work_types), 1) * 2 + 2

        tasks: list[MaintenanceTask] = []
        for index, period in enumerate(contract.maintenance_periods):
            scheduled = midpoint(from_iso(period.start_date), from_iso(period.end_date))
            status, completed_date = self.status_policy.status_for(index, period, scheduled, today)
            tasks.append(
                MaintenanceTask(
                    id=self.ids.next_id(),
                    contract_id=contract.id,
                    object_id=contract.object_id,
                    engineer_id=engineer_id,
                    scheduled_date=to_iso(scheduled),
                    status=status,
                    duration=duration,
                    type=TaskType.SEASONAL if index == 0 else TaskType.ROUTINE,
                    completed_date=completed_date,
                    maintenance_period_id=period.id,
                )
            )
        logger.debug(
            "Договор {}: сгенерировано задач {}", contract.contract_number, len(tasks)
        )
        return tasks

    def regenerate_for_contract(
        self,
        contract: Contract,
        tasks: Sequence[MaintenanceTask],
        kanban: Sequence[TaskKanbanRow],
    ) -> tuple[list[MaintenanceTask], list[TaskKanbanRow]]:
        """
        Удалить все задачи и карточки договора и построить их заново.
        Правки задач, сделанные вне этого конвейера, теряются.
        """
        kept = [t for t in tasks if t.contract_id != contract.id]
        new_tasks = kept + self.generate_tasks(contract)
        return new_tasks, self.sync_task_kanban(new_tasks, kanban)

    def regenerate_all(
        self, contracts: Iterable[Contract]
    ) -> tuple[list[MaintenanceTask], list[TaskKanbanRow]]:
        """Полный ремонт: все задачи и весь канбан задач с нуля."""
        tasks: list[MaintenanceTask] = []
        for contract in contracts:
            tasks.extend(self.generate_tasks(contract))
        kanban = self.sync_task_kanban(tasks, [])
        logger.info("Полная регенерация: задач {}, карточек {}", len(tasks), len(kanban))
        return tasks, kanban

    # ------------------------- Синхронизация канбана -------------------------

    def sync_task_kanban(
        self, tasks: Sequence[MaintenanceTask], rows: Sequence[TaskKanbanRow]
    ) -> list[TaskKanbanRow]:
        expected = {t.id: task_column(t.status) for t in tasks}
        synced = _sync_rows(
            expected,
            rows,
            entity_of=lambda r: r.task_id,
            make=lambda entity_id, column, order: TaskKanbanRow(
                id=self.ids.next_id(), task_id=entity_id, column=column, order=order
            ),
        )
        return synced  # type: ignore[return-value]

    def sync_contract_kanban(
        self, contracts: Sequence[Contract], rows: Sequence[ContractKanbanRow]
    ) -> list[ContractKanbanRow]:
        expected = {c.id: contract_column(c.status) for c in contracts}
        synced = _sync_rows(
            expected,
            rows,
            entity_of=lambda r: r.contract_id,
            make=lambda entity_id, column, order: ContractKanbanRow(
                id=self.ids.next_id(), contract_id=entity_id, column=column, order=order
            ),
        )
        return synced  # type: ignore[return-value]

    # ------------------------- Проверка целостности -------------------------

    def check_integrity(
        self,
        contracts: Sequence[Contract],
        tasks: Sequence[MaintenanceTask],
        kanban: Sequence[TaskKanbanRow],
        contract_kanban: Sequence[ContractKanbanRow],
    ) -> list[str]:
        """Список нарушений инвариантов; пустой список - всё согласовано."""
        problems: list[str] = []
        by_id = {c.id: c for c in contracts}

        for task in tasks:
            if task.maintenance_period_id is None:
                continue  # задача создана вручную, период не нужен
            contract = by_id.get(task.contract_id)
            if contract is None:
                problems.append(f"задача {task.id}: договор {task.contract_id} не существует")
            elif contract.period_by_id(task.maintenance_period_id) is None:
                problems.append(
                    f"задача {task.id}: период {task.maintenance_period_id} "
                    f"отсутствует в договоре {contract.contract_number}"
                )

        problems += _row_problems(
            "канбан задач",
            {t.id: task_column(t.status) for t in tasks},
            [(r.task_id, r.column, r.order) for r in kanban],
        )
        problems += _row_problems(
            "канбан договоров",
            {c.id: contract_column(c.status) for c in contracts},
            [(r.contract_id, r.column, r.order) for r in contract_kanban],
        )
        return problems


# ============================ Ближайшее ТО ============================


@dataclass(frozen=True)
class NextMaintenance:
    start_date: Optional[str]
    end_date: Optional[str]
    # upcoming | due | overdue | none (периодов нет) | finished (все прошли)
    status: str


def next_maintenance(contract: Contract, today: date) -> NextMaintenance:
    """
    Ближайший период ТО, который ещё не закончился.
    due - начинается в пределах 7 дней или уже идёт.
    """
    if not contract.maintenance_periods:
        return NextMaintenance(None, None, "none")

    upcoming = sorted(
        (p for p in contract.maintenance_periods if from_iso(p.end_date) >= today),
        key=lambda p: from_iso(p.start_date),
    )
    if not upcoming:
        return NextMaintenance(None, None, "finished")

    nxt = upcoming[0]
    start, end = from_iso(nxt.start_date), from_iso(nxt.end_date)
    days_until_start = (start - today).days
    if days_until_start < 0:
        status = "overdue" if (end - today).days < 0 else "due"
    elif days_until_start <= 7:
        status = "due"
    else:
        status = "upcoming"
    return NextMaintenance(nxt.start_date, nxt.end_date, status)


# ============================ Внутреннее ============================


def _sync_rows(
    expected: dict[str, KanbanColumn | ContractStatus],
    rows: Sequence[TaskKanbanRow | ContractKanbanRow],
    *,
    entity_of: Callable[[object], str],
    make: Callable[[str, object, int], TaskKanbanRow | ContractKanbanRow],
) -> list[TaskKanbanRow | ContractKanbanRow]:
    """
    Ровно одна карточка на сущность, колонка = ожидаемая, order уникален в колонке.
    Правильные карточки не трогаем; перемещённые, новые и дубли по order
    встают в конец своей колонки. Повторный вызов ничего не меняет.
    """
    used: dict[object, set[int]] = {}
    kept: list[TaskKanbanRow | ContractKanbanRow] = []
    pending: list[TaskKanbanRow | ContractKanbanRow] = []
    seen: set[str] = set()

    for row in rows:
        entity_id = entity_of(row)
        if entity_id not in expected or entity_id in seen:
            continue  # сирота или дубль
        seen.add(entity_id)
        column = expected[entity_id]
        orders = used.setdefault(column, set())
        if row.column == column and row.order not in orders:
            orders.add(row.order)
            kept.append(row)
        else:
            pending.append(row)

    for entity_id, column in expected.items():
        if entity_id not in seen:
            pending.append(make(entity_id, column, -1))

    for row in pending:
        column = expected[entity_of(row)]
        orders = used.setdefault(column, set())
        order = max(orders, default=-1) + 1
        orders.add(order)
        kept.append(replace(row, column=column, order=order))
    return kept


def _row_problems(
    label: str,
    expected: dict[str, object],
    rows: list[tuple[str, object, int]],
) -> list[str]:
    problems: list[str] = []
    counts: dict[str, int] = {}
    orders: dict[object, set[int]] = {}
    for entity_id, column, order in rows:
        counts[entity_id] = counts.get(entity_id, 0) + 1
        if entity_id not in expected:
            problems.append(f"{label}: карточка ссылается на несуществующую запись {entity_id}")
            continue
        if column != expected[entity_id]:
            problems.append(
                f"{label}: запись {entity_id} в колонке {_value(column)}, "
                f"ожидается {_value(expected[entity_id])}"
            )
        col_orders = orders.setdefault(column, set())
        if order in col_orders:
            problems.append(f"{label}: order {order} повторяется в колонке {_value(column)}")
        col_orders.add(order)

    for entity_id in expected:
        n = counts.get(entity_id, 0)
        if n == 0:
            problems.append(f"{label}: у записи {entity_id} нет карточки")
        elif n > 1:
            problems.append(f"{label}: у записи {entity_id} карточек {n}")
    return problems


def _value(v: object) -> str:
    return str(getattr(v, "value", v))
