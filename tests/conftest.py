from __future__ import annotations

from datetime import date
from typing import Any

import pytest

from derivation_engine import DerivationEngine
from entity_store import EntityStore
from ids import IdGenerator
from storage_json import JsonDirStorage

TODAY = date(2024, 1, 10)


class FakeClock:
    """Управляемое время в секундах epoch."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyStorage(JsonDirStorage):
    """JSON-каталог, в котором запись выбранных ключей падает с OSError."""

    def __init__(self, location: str) -> None:
        super().__init__(location)
        self.fail_keys: set[str] = set()
        self.writes: list[str] = []

    def _write_blob(self, key: str, text: str) -> None:
        if key in self.fail_keys:
            raise OSError(f"диск недоступен для {key}")
        self.writes.append(key)
        super()._write_blob(key, text)


def make_contract(**overrides: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "contractNumber": "ТО-100/2024",
        "clientName": "ТОВ «Клієнт»",
        "objectId": "obj-1",
        "startDate": "2024-01-01",
        "endDate": "2024-12-31",
        "status": "active",
        "workTypes": ["КОНД", "ДБЖ"],
        "assignedEngineerIds": ["2"],
        "maintenancePeriods": [
            {"id": "p1", "startDate": "2024-03-01", "endDate": "2024-03-15", "status": "planned"},
            {"id": "p2", "startDate": "2024-06-01", "endDate": "2024-06-15", "status": "planned"},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock: FakeClock) -> DerivationEngine:
    return DerivationEngine(today=lambda: TODAY, ids=IdGenerator(clock))


@pytest.fixture
def storage(tmp_path) -> FlakyStorage:
    return FlakyStorage(str(tmp_path / "data"))


@pytest.fixture
def store(storage: FlakyStorage, engine: DerivationEngine) -> EntityStore:
    s = EntityStore.open(storage, engine=engine)
    yield s
    s.close()


@pytest.fixture
def contract_data() -> dict[str, Any]:
    return make_contract()
