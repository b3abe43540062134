# auto_save.py
from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger

from entity_store import EntityStore
from history_manager import HistoryEntry, HistoryManager

QUIET_WINDOW = 2.0
MIN_GAP = 3.0

# undo/redo сами двигают историю; их результат заново не сохраняем
_IGNORED_EVENTS = {"store_restored"}


class HistoryAutoSaver:
    """
    Наблюдатель EntityStore: копит события и сохраняет снимок в историю,
    когда изменения затихли (quiet_window) и с прошлого сохранения прошло
    не меньше min_gap секунд. Таймеров нет: владелец вызывает poll().
    """

    def __init__(
        self,
        store: EntityStore,
        history: HistoryManager,
        *,
        quiet_window: float = QUIET_WINDOW,
        min_gap: float = MIN_GAP,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.history = history
        self.quiet_window = quiet_window
        self.min_gap = min_gap
        self._clock = clock
        self._last_change: Optional[float] = None
        self._last_save: Optional[float] = None
        self.pending_events: list[str] = []

    def update(self, event: str, payload: Any) -> None:
        if event in _IGNORED_EVENTS:
            return
        self.pending_events.append(event)
        self._last_change = self._clock()

    @property
    def pending(self) -> bool:
        return bool(self.pending_events)

    def poll(self) -> Optional[HistoryEntry]:
        """Сохранить, если окно тишины прошло и минимальный интервал выдержан."""
        if not self.pending or self._last_change is None:
            return None
        now = self._clock()
        if now - self._last_change < self.quiet_window:
            return None
        if self._last_save is not None and now - self._last_save < self.min_gap:
            logger.debug("Автосохранение отложено: прошло {:.1f} с", now - self._last_save)
            return None
        return self.flush()

    def flush(self) -> Optional[HistoryEntry]:
        """Сохранить накопленные изменения сейчас, без ожидания."""
        if not self.pending:
            return None
        events, self.pending_events = self.pending_events, []
        data = self.store.data
        if not data.contracts:
            logger.debug("Договоров нет, автосохранение пропущено ({} событий)", len(events))
            return None

        now = self._clock()
        stamp = datetime.fromtimestamp(now).strftime("%d.%m.%Y, %H:%M:%S")
        description = (
            f"Автозбереження {stamp} "
            f"({len(data.contracts)} договорів, {len(data.engineers)} виконавців)"
        )
        entry = self.history.save_state(self.store.snapshot(), description)
        self._last_save = now
        return entry
