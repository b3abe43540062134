from __future__ import annotations

import os

from base_storage import (
    CONTRACT_KANBAN_KEY,
    CONTRACTS_KEY,
    ENGINEERS_KEY,
    KANBAN_KEY,
    OBJECTS_KEY,
    STORE_KEYS,
    TASKS_KEY,
)
from entity_store import EntityStore
from maintenance_domain import ContractStatus, PeriodStatus
from migration_loader import MigrationLoader

from conftest import FlakyStorage, make_contract


class TestSeeding:
    def test_defaults_without_demo(self, storage: FlakyStorage, engine):
        result = MigrationLoader(storage, engine).load()
        assert result.seeded
        assert [e.id for e in result.data.engineers] == ["1", "2", "3"]
        assert result.data.engineers[1].specialization == ["КОНД", "ДБЖ"]
        assert result.data.contracts == []
        for key in STORE_KEYS:
            assert storage.exists(key)

    def test_demo_data(self, storage: FlakyStorage, engine):
        result = MigrationLoader(storage, engine, seed_demo_data=True).load()
        data = result.data
        assert [c.contract_number for c in data.contracts] == ["АТ-001/2024"]
        assert data.objects[0].name == "Головний офіс"
        assert len(data.tasks) == 4
        assert len(data.kanban) == 4
        assert data.contract_kanban[0].column == ContractStatus.ACTIVE
        assert engine.check_integrity(data.contracts, data.tasks, data.kanban, data.contract_kanban) == []
        assert len(storage.read_array(TASKS_KEY)) == 4

    def test_no_seed_when_any_key_present(self, storage: FlakyStorage, engine):
        storage.write_array(OBJECTS_KEY, [])
        result = MigrationLoader(storage, engine, seed_demo_data=True).load()
        assert not result.seeded
        assert result.data.contracts == []
        # пустой список исполнителей восстанавливается
        assert len(result.data.engineers) == 3
        assert ENGINEERS_KEY in result.migrated_keys


class TestSelfHealing:
    def test_corrupted_key_removed(self, storage: FlakyStorage, engine):
        storage.write_array(ENGINEERS_KEY, [{"id": "9", "name": "Свій"}])
        with open(storage.path_for(CONTRACTS_KEY), "w", encoding="utf-8") as f:
            f.write("[{не json")

        result = MigrationLoader(storage, engine).load()
        assert result.healed_keys == [CONTRACTS_KEY]
        assert result.data.contracts == []
        assert not os.path.exists(storage.path_for(CONTRACTS_KEY))
        assert [e.name for e in result.data.engineers] == ["Свій"]

    def test_non_array_top_level(self, storage: FlakyStorage, engine):
        storage.write_value(TASKS_KEY, {"oops": True})
        storage.write_array(ENGINEERS_KEY, [{"id": "1", "name": "Інженер 1"}])
        result = MigrationLoader(storage, engine).load()
        assert result.healed_keys == [TASKS_KEY]
        assert result.data.tasks == []

    def test_bad_records_skipped(self, storage: FlakyStorage, engine):
        storage.write_value(ENGINEERS_KEY, [{"id": "1", "name": "Ок"}, "мусор", {"name": "без id"}])
        result = MigrationLoader(storage, engine).load()
        assert [e.id for e in result.data.engineers] == ["1"]
        assert len(result.errors) == 2

    def test_write_back_failure_does_not_raise(self, storage: FlakyStorage, engine):
        storage.fail_keys = set(STORE_KEYS)
        result = MigrationLoader(storage, engine).load()
        assert result.seeded
        assert len(result.data.engineers) == 3


class TestMigrations:
    def test_legacy_contract_shape(self, storage: FlakyStorage, engine):
        legacy = make_contract(id="1", serviceFrequency="biannual", maintenancePeriods=[])
        legacy.pop("assignedEngineerIds")
        legacy.update(
            maintenanceStartDate="2024-04-01",
            maintenanceEndDate="2024-04-10",
            assignedEngineerId="3",
        )
        storage.write_array(CONTRACTS_KEY, [legacy])

        result = MigrationLoader(storage, engine).load()
        contract = result.data.contracts[0]
        assert contract.service_frequency == 6
        assert [(p.id, p.start_date, p.end_date, p.status) for p in contract.maintenance_periods] == [
            ("1", "2024-04-01", "2024-04-10", PeriodStatus.PLANNED)
        ]
        assert contract.assigned_engineer_ids == ["3"]
        assert CONTRACTS_KEY in result.migrated_keys
        assert storage.read_array(CONTRACTS_KEY)[0]["serviceFrequency"] == 6

    def test_unknown_frequency_defaults_to_quarter(self, storage: FlakyStorage, engine):
        storage.write_array(CONTRACTS_KEY, [make_contract(id="1", serviceFrequency="weekly")])
        contract = MigrationLoader(storage, engine).load().data.contracts[0]
        assert contract.service_frequency == 3

    def test_period_fields(self, storage: FlakyStorage, engine):
        data = make_contract(id="1")
        data["maintenancePeriods"][0].pop("status")
        data["maintenancePeriods"][0]["department"] = "ДГУ"
        data["maintenancePeriods"][1]["status"] = "in_progress"
        storage.write_array(CONTRACTS_KEY, [data])

        periods = MigrationLoader(storage, engine).load().data.contracts[0].maintenance_periods
        assert periods[0].status == PeriodStatus.PLANNED
        assert periods[0].departments == ["ДГУ"]
        assert periods[1].status == PeriodStatus.ADJUSTED

    def test_engineer_specialization_strings(self, storage: FlakyStorage, engine):
        storage.write_array(
            ENGINEERS_KEY,
            [
                {"id": "1", "name": "А", "specialization": "Чилери"},
                {"id": "2", "name": "Б", "specialization": "ДБЖ"},
                {"id": "3", "name": "В", "specialization": "Щось інше"},
                {"id": "4", "name": "Г", "specialization": ["ДГУ"]},
            ],
        )
        result = MigrationLoader(storage, engine).load()
        assert [e.specialization for e in result.data.engineers] == [["КОНД"], ["ДБЖ"], ["КОНД"], ["ДГУ"]]
        assert storage.read_array(ENGINEERS_KEY)[0]["specialization"] == ["КОНД"]

    def test_contract_kanban_rebuilt(self, storage: FlakyStorage, engine):
        storage.write_array(CONTRACTS_KEY, [make_contract(id="1"), make_contract(id="2", status="completed")])
        storage.write_array(CONTRACT_KANBAN_KEY, [{"id": "k", "contractId": "1", "column": "active", "order": 0}])
        result = MigrationLoader(storage, engine).load()
        rows = {r.contract_id: r.column for r in result.data.contract_kanban}
        assert rows == {"1": ContractStatus.ACTIVE, "2": ContractStatus.COMPLETED}
        assert CONTRACT_KANBAN_KEY in result.migrated_keys
        assert KANBAN_KEY not in result.migrated_keys

    def test_malformed_contract_records_skipped(self, storage: FlakyStorage, engine):
        storage.write_array(ENGINEERS_KEY, [{"id": "1", "name": "Інженер 1"}])
        storage.write_value(
            CONTRACTS_KEY,
            [make_contract(id="1"), make_contract(id="2", maintenancePeriods=5), "мусор"],
        )
        result = MigrationLoader(storage, engine).load()
        assert [c.id for c in result.data.contracts] == ["1"]
        assert len(result.errors) == 2
        assert {e["key"] for e in result.errors} == {CONTRACTS_KEY}

    def test_store_opens_with_malformed_contracts(self, storage: FlakyStorage, engine):
        storage.write_value(CONTRACTS_KEY, [make_contract(id="2", maintenancePeriods=5)])
        store = EntityStore.open(storage, engine=engine)
        assert store.data.contracts == []
        store.close()
