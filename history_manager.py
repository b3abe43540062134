# history_manager.py
from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from loguru import logger

from base_storage import HISTORY_KEY, STORE_KEYS, BaseStorage
from entity_store import Snapshot
from errors import MalformedPersisted, StorageFailure

MAX_HISTORY_SIZE = 20
MAX_DESCRIPTION_LENGTH = 200


@dataclass(slots=True)
class HistoryEntry:
    id: str
    timestamp: int  # мс epoch
    description: str
    snapshot: Snapshot

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "description": self.description,
            "state": self.snapshot.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            id=str(data["id"]),
            timestamp=int(data.get("timestamp") or 0),
            description=str(data.get("description") or ""),
            snapshot=Snapshot.from_dict(data.get("state") or {}),
        )


def snapshots_equal(a: Snapshot, b: Snapshot) -> bool:
    """
    Равные версии коллекций -> снимки равны без сравнения содержимого.
    Иначе сравниваем длины коллекций и, если они совпали, всё содержимое.
    """
    if a.versions is not None and a.versions == b.versions:
        return True
    for key in STORE_KEYS:
        if len(a.collections.get(key) or []) != len(b.collections.get(key) or []):
            return False
    return all(
        (a.collections.get(key) or []) == (b.collections.get(key) or []) for key in STORE_KEYS
    )


class HistoryManager:
    """
    Ограниченный журнал снимков всего хранилища для undo/redo.
    Хранится под ключом app_history как {"history": [...], "currentIndex": n}.
    """

    def __init__(
        self,
        storage: BaseStorage,
        *,
        capacity: int = MAX_HISTORY_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity должна быть >= 1")
        self.storage = storage
        self.capacity = capacity
        self._clock = clock
        self.entries: list[HistoryEntry] = []
        self.current_index = -1
        self._seq = 0

    # ----------------------------- Загрузка -----------------------------

    def load(self) -> None:
        try:
            raw = self.storage.read_value(HISTORY_KEY)
        except (MalformedPersisted, StorageFailure) as exc:
            logger.warning("История не читается, начинаю с пустой: {}", exc)
            raw = None

        self.entries, self.current_index = [], -1
        if raw is None:
            return
        try:
            if not isinstance(raw, dict):
                raise ValueError("ожидался объект {history, currentIndex}")
            entries = [HistoryEntry.from_dict(e) for e in raw.get("history") or []]
            index = int(raw.get("currentIndex", len(entries) - 1))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("История повреждена, начинаю с пустой: {}", exc)
            return

        self.entries = entries[-self.capacity:]
        dropped = len(entries) - len(self.entries)
        if index >= 0 and dropped:
            # индекс считался по полному журналу; указатель на отброшенную запись -> самая старая
            index = max(index - dropped, 0)
        self.current_index = min(max(index, -1), len(self.entries) - 1)
        if self.entries and self.current_index < 0:
            self.current_index = len(self.entries) - 1
        logger.debug("История загружена: записей {}, индекс {}", len(self.entries), self.current_index)

    # ----------------------------- Запись -----------------------------

    def save_state(self, snapshot: Snapshot, description: str) -> Optional[HistoryEntry]:
        if not description or not description.strip():
            logger.warning("Для записи в историю нужно описание, запись пропущена")
            return None
        description = description.strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            logger.warning("Описание длиннее {} символов, обрезаю", MAX_DESCRIPTION_LENGTH)
            description = description[:MAX_DESCRIPTION_LENGTH]

        current = self.current()
        if current is not None and snapshots_equal(current.snapshot, snapshot):
            logger.debug("Состояние не изменилось, запись '{}' пропущена", description)
            return None

        now_ms = int(self._clock() * 1000)
        self._seq += 1
        entry = HistoryEntry(
            id=f"{now_ms}_{self._seq}",
            timestamp=now_ms,
            description=description,
            snapshot=Snapshot(
                copy.deepcopy(snapshot.collections),
                dict(snapshot.versions) if snapshot.versions is not None else None,
            ),
        )

        # после undo ветка "вперёд" отбрасывается
        self.entries = self.entries[: self.current_index + 1]
        self.entries.append(entry)
        if len(self.entries) > self.capacity:
            del self.entries[: len(self.entries) - self.capacity]
        self.current_index = len(self.entries) - 1
        logger.info("В историю добавлено: '{}' (записей {})", description, len(self.entries))
        self._persist()
        return entry

    # ----------------------------- Навигация -----------------------------

    def undo(self) -> Optional[HistoryEntry]:
        if not self.can_undo:
            return None
        self.current_index -= 1
        entry = self.entries[self.current_index]
        logger.info("Отмена до: '{}'", entry.description)
        self._persist()
        return entry

    def redo(self) -> Optional[HistoryEntry]:
        if not self.can_redo:
            return None
        self.current_index += 1
        entry = self.entries[self.current_index]
        logger.info("Повтор до: '{}'", entry.description)
        self._persist()
        return entry

    def clear(self) -> None:
        self.entries, self.current_index = [], -1
        try:
            self.storage.remove(HISTORY_KEY)
        except StorageFailure as exc:
            logger.error("Не удалось очистить историю в хранилище: {}", exc)

    def current(self) -> Optional[HistoryEntry]:
        if 0 <= self.current_index < len(self.entries):
            return self.entries[self.current_index]
        return None

    @property
    def can_undo(self) -> bool:
        return self.current_index > 0

    @property
    def can_redo(self) -> bool:
        return self.current_index < len(self.entries) - 1

    def recent_actions(self, count: int = 5) -> list[HistoryEntry]:
        """Последние записи, новые первыми."""
        return list(reversed(self.entries))[:count]

    def __len__(self) -> int:
        return len(self.entries)

    # ----------------------------- Внутреннее -----------------------------

    def _persist(self) -> None:
        payload = {
            "history": [e.to_dict() for e in self.entries],
            "currentIndex": self.current_index,
        }
        try:
            self.storage.write_value(HISTORY_KEY, payload)
        except StorageFailure as exc:
            # история в памяти остаётся рабочей до следующей удачной записи
            logger.error("Не удалось сохранить историю: {}", exc)
