# storage_json.py
from __future__ import annotations

import json
import os
from typing import Any

from base_storage import BaseStorage


class JsonDirStorage(BaseStorage):
    """
    Каталог с файлами <key>.json. Запись идёт во временный файл рядом
    с целевым и затем заменяет его через os.replace.
    """

    extension = ".json"
    _parse_errors = (ValueError,)  # json.JSONDecodeError - наследник ValueError

    def __init__(self, location: str, *, pretty: bool = True) -> None:
        super().__init__(location)
        self.pretty = pretty
        os.makedirs(location, exist_ok=True)

    def path_for(self, key: str) -> str:
        return os.path.join(self.location, f"{key}{self.extension}")

    def _read_blob(self, key: str) -> str | None:
        try:
            with open(self.path_for(key), encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def _write_blob(self, key: str, text: str) -> None:
        path = self.path_for(key)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)

    def _remove_blob(self, key: str) -> None:
        try:
            os.remove(self.path_for(key))
        except FileNotFoundError:
            pass

    def _dumps(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, indent=2 if self.pretty else None)

    def _loads(self, text: str) -> Any:
        return json.loads(text)
