from __future__ import annotations

import pytest

from base_storage import CONTRACTS_KEY, ENGINEERS_KEY, STORE_KEYS, TASKS_KEY
from maintenance_domain import (
    COLUMN_TASK_STATUS,
    TASK_STATUS_COLUMN,
    Contract,
    ContractStatus,
    KanbanColumn,
    MaintenanceTask,
    PeriodStatus,
    StoreData,
    TaskStatus,
    advance_period_status,
    contract_column,
    task_column,
)


class TestStatusTables:
    def test_every_task_status_has_a_column(self):
        assert set(TASK_STATUS_COLUMN) == set(TaskStatus)

    def test_every_column_maps_back_to_a_status(self):
        assert set(COLUMN_TASK_STATUS) == set(KanbanColumn)

    def test_task_column_mapping(self):
        assert task_column("completed") == KanbanColumn.COMPLETED
        assert task_column(TaskStatus.IN_PROGRESS) == KanbanColumn.IN_PROGRESS
        assert task_column("planned") == KanbanColumn.TODO
        assert task_column("overdue") == KanbanColumn.TODO
        assert task_column("archived") == KanbanColumn.TODO

    def test_contract_column_is_status(self):
        for status in ContractStatus:
            assert contract_column(status.value) == status

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            task_column("done")


class TestPeriodStatus:
    def test_advances(self):
        assert advance_period_status("planned", "adjusted") == PeriodStatus.ADJUSTED
        assert advance_period_status("adjusted", "completed") == PeriodStatus.COMPLETED

    def test_never_regresses(self):
        assert advance_period_status("completed", "adjusted") == PeriodStatus.COMPLETED
        assert advance_period_status("adjusted", "planned") == PeriodStatus.ADJUSTED


class TestContract:
    def test_round_trip_keeps_unknown_fields(self, contract_data):
        contract_data["id"] = "7"
        contract_data["customFlag"] = {"a": 1}
        c = Contract.from_dict(contract_data)
        out = c.to_dict()
        assert out["customFlag"] == {"a": 1}
        assert out["maintenancePeriods"][0]["id"] == "p1"
        assert c.maintenance_periods[1].start_date == "2024-06-01"

    def test_validate_normalizes_dates(self, contract_data):
        contract_data.update(id="1", startDate="01.01.2024", endDate="31.12.24")
        c = Contract.from_dict(contract_data).validate()
        assert c.start_date == "2024-01-01"
        assert c.end_date == "2024-12-31"

    def test_validate_rejects_reversed_range(self, contract_data):
        contract_data.update(id="1", startDate="2024-05-01", endDate="2024-01-01")
        with pytest.raises(ValueError, match="startDate"):
            Contract.from_dict(contract_data).validate()

    def test_validate_rejects_duplicate_period_ids(self, contract_data):
        contract_data["id"] = "1"
        contract_data["maintenancePeriods"][1]["id"] = "p1"
        with pytest.raises(ValueError, match="повторяется"):
            Contract.from_dict(contract_data).validate()

    def test_validate_rejects_unknown_department(self, contract_data):
        contract_data["id"] = "1"
        contract_data["maintenancePeriods"][0]["departments"] = ["ЕЛЕКТРО"]
        with pytest.raises(ValueError, match="departments"):
            Contract.from_dict(contract_data).validate()

    def test_assigned_engineers_deduplicated(self, contract_data):
        contract_data.update(id="1", assignedEngineerIds=["1", "2", "1"])
        assert Contract.from_dict(contract_data).validate().assigned_engineer_ids == ["1", "2"]

    def test_assigns_engineer_reads_legacy_field(self, contract_data):
        contract_data.update(id="1", assignedEngineerIds=[], assignedEngineerId="9")
        c = Contract.from_dict(contract_data)
        assert c.assigns_engineer("9")
        assert not c.assigns_engineer("2")


class TestStoreData:
    def test_tolerant_load_collects_errors(self):
        errors: list[dict] = []
        data = StoreData.from_collections(
            {
                CONTRACTS_KEY: [{"contractNumber": "без id"}],
                TASKS_KEY: [{"id": "t1", "contractId": "1", "status": "planned"}],
            },
            errors,
        )
        assert data.contracts == []
        assert [t.id for t in data.tasks] == ["t1"]
        assert errors[0]["key"] == CONTRACTS_KEY
        assert errors[0]["error_type"] == "KeyError"

    def test_strict_load_raises(self):
        with pytest.raises(ValueError, match="engineers"):
            StoreData().set_records(ENGINEERS_KEY, [{"name": "без id"}])

    def test_to_collections_has_all_keys(self):
        assert set(StoreData().to_collections()) == set(STORE_KEYS)

    def test_task_optional_fields_omitted(self):
        task = MaintenanceTask(
            id="1", contract_id="c", object_id="o", engineer_id="e", scheduled_date="2024-01-01"
        )
        out = task.to_dict()
        assert "completedDate" not in out
        assert "notes" not in out
        assert out["status"] == "planned"
