# observer.py
from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Optional, Protocol


class Observer(Protocol):
    def update(self, event: str, payload: Any) -> None: ...


class Subject:
    """
    Рассылка событий хранилища наблюдателям (история, уведомления, интерфейс).
    Наблюдатель может подписаться только на часть событий; вызовы синхронные,
    в порядке подписки.
    """

    def __init__(self) -> None:
        self._subscriptions: list[tuple[Observer, Optional[frozenset[str]]]] = []

    @property
    def observers(self) -> list[Observer]:
        return [obs for obs, _ in self._subscriptions]

    def attach(self, obs: Observer, events: Optional[Iterable[str]] = None) -> None:
        """events=None - все события; повторная подписка меняет фильтр."""
        wanted = None if events is None else frozenset(events)
        for i, (existing, _) in enumerate(self._subscriptions):
            if existing is obs:
                self._subscriptions[i] = (obs, wanted)
                return
        self._subscriptions.append((obs, wanted))

    def detach(self, obs: Observer) -> None:
        self._subscriptions = [(o, e) for o, e in self._subscriptions if o is not obs]

    def detach_all(self) -> None:
        self._subscriptions.clear()

    def notify(self, event: str, payload: Any) -> None:
        for obs, wanted in list(self._subscriptions):
            if wanted is None or event in wanted:
                obs.update(event, payload)
