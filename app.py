# app.py
from __future__ import annotations

from typing import Optional

from loguru import logger

from auto_save import HistoryAutoSaver
from base_storage import BaseStorage
from config import StoreConfig
from data_transfer import DataTransfer
from derivation_engine import DerivationEngine, make_status_policy
from entity_store import EntityStore
from errors import StorageFailure
from history_manager import HistoryEntry, HistoryManager


# ---------- фабрика хранилища ----------
def make_storage(cfg: StoreConfig) -> BaseStorage:
    """
    Возвращает одно из хранилищ согласно cfg.data_backend.
    """
    if cfg.data_backend == "db":
        from storage_pg import PgStorage

        return PgStorage(**cfg.db)

    if cfg.data_backend == "yaml":
        from storage_yaml import YamlDirStorage

        return YamlDirStorage(cfg.data_dir, pretty=cfg.pretty_files)

    # по умолчанию json
    from storage_json import JsonDirStorage

    return JsonDirStorage(cfg.data_dir, pretty=cfg.pretty_files)


class MaintenanceApp:
    """
    Корень приложения: владеет хранилищем, историей и автосохранением.

        with MaintenanceApp(load_config()) as app:
            app.store.add_contract({...})
            app.autosaver.flush()
            app.undo()
    """

    def __init__(self, cfg: StoreConfig, *, storage: Optional[BaseStorage] = None) -> None:
        self.cfg = cfg
        self._storage = storage
        self.store: Optional[EntityStore] = None
        self.history: Optional[HistoryManager] = None
        self.transfer: Optional[DataTransfer] = None
        self.autosaver: Optional[HistoryAutoSaver] = None

    def open(self) -> MaintenanceApp:
        if self.store is not None:
            return self
        storage = self._storage or make_storage(self.cfg)
        engine = DerivationEngine(status_policy=make_status_policy(self.cfg.task_status_policy))
        self.store = EntityStore.open(storage, engine=engine, seed_demo_data=self.cfg.seed_demo_data)

        self.history = HistoryManager(storage, capacity=self.cfg.history_capacity)
        self.history.load()
        self.transfer = DataTransfer(self.store, settle_delay=self.cfg.import_settle_delay)
        self.autosaver = HistoryAutoSaver(
            self.store,
            self.history,
            quiet_window=self.cfg.autosave_quiet_window,
            min_gap=self.cfg.autosave_min_gap,
        )
        self.store.attach(self.autosaver)
        logger.debug("Приложение открыто ({})", self.cfg.data_backend)
        return self

    def close(self) -> None:
        if self.store is None:
            return
        if self.autosaver is not None:
            self.autosaver.flush()
        self.store.close()
        self.store = self.history = self.transfer = self.autosaver = None

    def __enter__(self) -> MaintenanceApp:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ===== undo/redo поверх истории =====

    def save_state(self, description: str) -> Optional[HistoryEntry]:
        store, history = self._require()
        return history.save_state(store.snapshot(), description)

    def undo(self) -> Optional[HistoryEntry]:
        store, history = self._require()
        entry = history.undo()
        if entry is not None:
            try:
                store.restore(entry.snapshot)
            except StorageFailure:
                history.redo()  # индекс истории возвращается вместе с данными
                raise
        return entry

    def redo(self) -> Optional[HistoryEntry]:
        store, history = self._require()
        entry = history.redo()
        if entry is not None:
            try:
                store.restore(entry.snapshot)
            except StorageFailure:
                history.undo()
                raise
        return entry

    def _require(self) -> tuple[EntityStore, HistoryManager]:
        if self.store is None or self.history is None:
            raise RuntimeError("Приложение не открыто: вызовите open().")
        return self.store, self.history
