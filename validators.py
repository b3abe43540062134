from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date

from dates import from_iso, parse_date


class Validator:
    """Общий класс валидации полей договоров, периодов ТО и исполнителей."""

    # Валидация

    @staticmethod
    def require_non_empty(name: str, value: object) -> str:
        """Требуем, чтобы не было пустых полей."""
        v = "" if value is None else str(value).strip()
        if not v:
            raise ValueError(f"Поле '{name}' обязательно и не может быть пустым.")
        return v

    @staticmethod
    def iso_date(name: str, value: object) -> str:
        """
        Дата в любом понятном формате (ISO, 'ДД.ММ.ГГГГ', длинная украинская форма)
        превращается в ISO. Несуществующая дата (31.02) -> ValueError.
        """
        v = parse_date(Validator.require_non_empty(name, value))
        if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", v):
            raise ValueError(f"Поле '{name}' должно быть датой (ГГГГ-ММ-ДД или ДД.ММ.ГГГГ): {value}.")
        try:
            from_iso(v)
        except ValueError:
            raise ValueError(f"Поле '{name}' содержит несуществующую дату: {value}.") from None
        return v

    @staticmethod
    def date_range(start_name: str, start: str, end_name: str, end: str) -> tuple[date, date]:
        """Начало не позже конца. Даты уже должны быть в ISO."""
        d_start, d_end = from_iso(start), from_iso(end)
        if d_start > d_end:
            raise ValueError(f"Поле '{start_name}' ({start}) позже поля '{end_name}' ({end}).")
        return d_start, d_end

    @staticmethod
    def contract_number(value: object) -> str:
        """Номер договора: непустой, без переводов строк. Например 'АТ-001/2024'."""
        v = Validator.require_non_empty("contractNumber", value)
        if any(ch in v for ch in "\r\n\t"):
            raise ValueError("Поле 'contractNumber' не может содержать переводы строк и табуляцию.")
        return v

    @staticmethod
    def one_of(name: str, value: object, allowed: Iterable[str]) -> str:
        allowed_list = list(allowed)
        v = Validator.require_non_empty(name, value)
        if v not in allowed_list:
            raise ValueError(f"Поле '{name}' должно быть одним из: {', '.join(allowed_list)}.")
        return v

    @staticmethod
    def subset_of(name: str, values: Iterable[object], allowed: Iterable[str]) -> list[str]:
        """Список без повторов, порядок сохраняется; неизвестное значение -> ValueError."""
        allowed_set = set(allowed)
        out: list[str] = []
        for raw in values:
            v = str(raw).strip()
            if v not in allowed_set:
                raise ValueError(
                    f"Поле '{name}' содержит недопустимое значение '{v}' "
                    f"(допустимо: {', '.join(sorted(allowed_set))})."
                )
            if v not in out:
                out.append(v)
        return out

    @staticmethod
    def unique_ids(name: str, values: Iterable[object]) -> list[str]:
        """Набор id: строки, без пустых и без повторов."""
        out: list[str] = []
        for raw in values:
            v = Validator.require_non_empty(name, raw)
            if v not in out:
                out.append(v)
        return out

    @staticmethod
    def non_negative_number(name: str, value: object) -> float:
        try:
            v = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise ValueError(f"Поле '{name}' должно быть числом.") from None
        if v < 0:
            raise ValueError(f"Поле '{name}' не может быть отрицательным.")
        return v
