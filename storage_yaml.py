# storage_yaml.py
from __future__ import annotations

from typing import Any

import yaml  # type: ignore[import-untyped]

from storage_json import JsonDirStorage


class YamlDirStorage(JsonDirStorage):
    """Тот же каталог ключей, но каждый ключ хранится в <key>.yaml."""

    extension = ".yaml"
    _parse_errors = (yaml.YAMLError, ValueError)

    def _dumps(self, value: Any) -> str:
        return yaml.safe_dump(
            value,
            allow_unicode=True,
            sort_keys=False,
            indent=2,
            default_flow_style=not self.pretty,
        )

    def _loads(self, text: str) -> Any:
        data = yaml.safe_load(text)
        # пустой файл - пустой массив
        if data is None:
            return []
        return data
