# ids.py
from __future__ import annotations

import time
from typing import Callable


class IdGenerator:
    """
    Id по времени: миллисекунды epoch строкой. Внутри процесса строго возрастают,
    даже если несколько id выдаются в одну миллисекунду.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0

    def next_id(self) -> str:
        now = int(self._clock() * 1000)
        self._last = max(now, self._last + 1)
        return str(self._last)

    def observe(self, existing_id: str) -> None:
        """Учесть уже существующий числовой id, чтобы новые были больше него."""
        if existing_id.isdigit():
            self._last = max(self._last, int(existing_id))
