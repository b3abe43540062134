from __future__ import annotations

from datetime import date

import pytest

from derivation_engine import (
    FALLBACK_ENGINEER_ID,
    DerivationEngine,
    PeriodStatusPolicy,
    make_status_policy,
    next_maintenance,
)
from ids import IdGenerator
from maintenance_domain import (
    Contract,
    ContractKanbanRow,
    ContractStatus,
    KanbanColumn,
    MaintenanceTask,
    TaskKanbanRow,
    TaskStatus,
    TaskType,
)

from conftest import TODAY, FakeClock, make_contract


def _contract(**overrides) -> Contract:
    data = make_contract(**overrides)
    data.setdefault("id", "c1")
    return Contract.from_dict(data)


def _task(task_id: str, status: str = "planned", contract_id: str = "c1") -> MaintenanceTask:
    return MaintenanceTask(
        id=task_id,
        contract_id=contract_id,
        object_id="o",
        engineer_id="1",
        scheduled_date="2024-03-08",
        status=TaskStatus(status),
    )


class TestGenerateTasks:
    def test_reference_contract(self, engine: DerivationEngine):
        tasks = engine.generate_tasks(_contract())
        assert len(tasks) == 2
        assert [t.scheduled_date for t in tasks] == ["2024-03-08", "2024-06-08"]
        assert all(t.duration == 6 for t in tasks)
        assert [t.maintenance_period_id for t in tasks] == ["p1", "p2"]
        assert [t.type for t in tasks] == [TaskType.SEASONAL, TaskType.ROUTINE]
        assert all(t.engineer_id == "2" for t in tasks)
        assert all(t.status == TaskStatus.PLANNED for t in tasks)

    def test_ids_strictly_increase(self, engine: DerivationEngine):
        tasks = engine.generate_tasks(_contract())
        assert int(tasks[0].id) < int(tasks[1].id)

    def test_empty_work_types_count_as_one(self, engine: DerivationEngine):
        tasks = engine.generate_tasks(_contract(workTypes=[]))
        assert tasks[0].duration == 4

    def test_fallback_engineer(self, engine: DerivationEngine):
        tasks = engine.generate_tasks(_contract(assignedEngineerIds=[]))
        assert tasks[0].engineer_id == FALLBACK_ENGINEER_ID

    def test_no_periods(self, engine: DerivationEngine):
        assert engine.generate_tasks(_contract(maintenancePeriods=[])) == []

    def test_placeholder_rule_for_past_dates(self, clock: FakeClock):
        engine = DerivationEngine(today=lambda: date(2025, 1, 1), ids=IdGenerator(clock))
        periods = [
            {"id": str(i), "startDate": f"2024-0{i + 1}-01", "endDate": f"2024-0{i + 1}-11"}
            for i in range(4)
        ]
        tasks = engine.generate_tasks(_contract(maintenancePeriods=periods))
        assert [t.status for t in tasks] == [
            TaskStatus.COMPLETED,
            TaskStatus.PLANNED,
            TaskStatus.IN_PROGRESS,
            TaskStatus.COMPLETED,
        ]
        assert tasks[0].completed_date == tasks[0].scheduled_date
        assert tasks[2].completed_date is None

    def test_period_policy(self, clock: FakeClock):
        engine = DerivationEngine(
            status_policy=PeriodStatusPolicy(), today=lambda: date(2024, 4, 1), ids=IdGenerator(clock)
        )
        periods = [
            {"id": "a", "startDate": "2024-01-01", "endDate": "2024-01-10", "status": "completed"},
            {"id": "b", "startDate": "2024-02-01", "endDate": "2024-02-10"},
            {"id": "c", "startDate": "2024-05-01", "endDate": "2024-05-10"},
        ]
        tasks = engine.generate_tasks(_contract(maintenancePeriods=periods))
        assert [t.status for t in tasks] == [TaskStatus.COMPLETED, TaskStatus.OVERDUE, TaskStatus.PLANNED]

    def test_make_status_policy_unknown(self):
        with pytest.raises(ValueError, match="random"):
            make_status_policy("random")


class TestRegeneration:
    def test_regenerate_replaces_only_that_contract(self, engine: DerivationEngine):
        other = [_task("x1", contract_id="other")]
        kanban = engine.sync_task_kanban(other, [])
        contract = _contract()
        tasks, kanban = engine.regenerate_for_contract(contract, other, kanban)
        assert [t.id for t in tasks][0] == "x1"
        assert len(tasks) == 3

        contract.maintenance_periods = contract.maintenance_periods[:1]
        tasks, kanban = engine.regenerate_for_contract(contract, tasks, kanban)
        assert len(tasks) == 2
        assert {t.maintenance_period_id for t in tasks if t.contract_id == "c1"} == {"p1"}
        assert {r.task_id for r in kanban} == {t.id for t in tasks}
        assert engine.check_integrity([contract], tasks, kanban, engine.sync_contract_kanban([contract], [])) == []

    def test_regenerate_all(self, engine: DerivationEngine):
        tasks, kanban = engine.regenerate_all([_contract(), _contract(id="c2")])
        assert len(tasks) == 4
        assert len(kanban) == 4
        assert sorted(r.order for r in kanban) == [0, 1, 2, 3]


class TestKanbanSync:
    def test_missing_rows_appended(self, engine: DerivationEngine):
        tasks = [_task("1"), _task("2", "completed")]
        rows = engine.sync_task_kanban(tasks, [])
        assert {(r.task_id, r.column, r.order) for r in rows} == {
            ("1", KanbanColumn.TODO, 0),
            ("2", KanbanColumn.COMPLETED, 0),
        }

    def test_orphans_and_duplicates_dropped(self, engine: DerivationEngine):
        tasks = [_task("1")]
        rows = [
            TaskKanbanRow("k1", "1", KanbanColumn.TODO, 0),
            TaskKanbanRow("k2", "1", KanbanColumn.TODO, 1),
            TaskKanbanRow("k3", "gone", KanbanColumn.TODO, 2),
        ]
        assert engine.sync_task_kanban(tasks, rows) == [TaskKanbanRow("k1", "1", KanbanColumn.TODO, 0)]

    def test_wrong_column_moved_to_end(self, engine: DerivationEngine):
        tasks = [_task("1"), _task("2", "in_progress")]
        rows = [
            TaskKanbanRow("k1", "1", KanbanColumn.TODO, 0),
            TaskKanbanRow("k2", "2", KanbanColumn.TODO, 1),
        ]
        synced = engine.sync_task_kanban(tasks, rows)
        assert TaskKanbanRow("k2", "2", KanbanColumn.IN_PROGRESS, 0) in synced
        assert rows[1].column == KanbanColumn.TODO  # входные строки не меняются

    def test_duplicate_order_fixed(self, engine: DerivationEngine):
        tasks = [_task("1"), _task("2")]
        rows = [
            TaskKanbanRow("k1", "1", KanbanColumn.TODO, 0),
            TaskKanbanRow("k2", "2", KanbanColumn.TODO, 0),
        ]
        synced = engine.sync_task_kanban(tasks, rows)
        assert sorted(r.order for r in synced) == [0, 1]

    def test_idempotent(self, engine: DerivationEngine):
        tasks = [_task("1"), _task("2", "completed"), _task("3", "overdue")]
        once = engine.sync_task_kanban(tasks, [TaskKanbanRow("k", "2", KanbanColumn.TODO, 5)])
        assert engine.sync_task_kanban(tasks, once) == once

    def test_contract_rows_follow_status(self, engine: DerivationEngine):
        contracts = [_contract(), _contract(id="c2", status="archived")]
        rows = engine.sync_contract_kanban(
            contracts, [ContractKanbanRow("r1", "c2", ContractStatus.ACTIVE, 0)]
        )
        by_contract = {r.contract_id: r.column for r in rows}
        assert by_contract == {"c1": ContractStatus.ACTIVE, "c2": ContractStatus.ARCHIVED}


class TestIntegrity:
    def test_reports_problems(self, engine: DerivationEngine):
        contract = _contract()
        task = _task("t1")
        task.maintenance_period_id = "removed"
        problems = engine.check_integrity(
            [contract],
            [task],
            [TaskKanbanRow("k", "t1", KanbanColumn.COMPLETED, 0), TaskKanbanRow("k2", "ghost", KanbanColumn.TODO, 0)],
            [],
        )
        text = "\n".join(problems)
        assert "removed" in text
        assert "ghost" in text
        assert "ожидается todo" in text
        assert "c1" in text  # нет карточки договора


class TestNextMaintenance:
    def test_statuses(self):
        contract = _contract()
        assert next_maintenance(contract, date(2024, 1, 1)).status == "upcoming"
        assert next_maintenance(contract, date(2024, 2, 25)).status == "due"
        assert next_maintenance(contract, date(2024, 3, 5)).status == "due"
        nxt = next_maintenance(contract, date(2024, 3, 20))
        assert (nxt.start_date, nxt.status) == ("2024-06-01", "upcoming")
        assert next_maintenance(contract, date(2025, 1, 1)).status == "finished"
        assert next_maintenance(_contract(maintenancePeriods=[]), TODAY).status == "none"
