# dates.py
from __future__ import annotations

import re
from datetime import date, datetime, timedelta

# Хранилище держит даты только в ISO (YYYY-MM-DD); остальные формы приходят
# из интерфейса и старых данных.

UKRAINIAN_MONTHS = {
    "січня": 1,
    "лютого": 2,
    "березня": 3,
    "квітня": 4,
    "травня": 5,
    "червня": 6,
    "липня": 7,
    "серпня": 8,
    "вересня": 9,
    "жовтня": 10,
    "листопада": 11,
    "грудня": 12,
}

_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LONG_UA_RE = re.compile(r"(\d{1,2})\s+(\w+)\s+(\d{4})\s*р?\.?")
_DOTTED_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{2}|\d{4})$")


def parse_date(value: str | None) -> str:
    """
    Приводит дату к ISO-строке.

    Понимает:
      - '2025-09-01' (возвращается как есть)
      - '1 вересня 2025 р.' (длинная украинская форма)
      - '01.09.2025' и '1.9.25' (короткий год: <= 50 -> 20yy, иначе 19yy)

    Нераспознанная строка возвращается без изменений, пустая -> ''.
    """
    if not value:
        return ""
    v = str(value).strip()

    if _ISO_RE.fullmatch(v):
        return v

    m = _LONG_UA_RE.search(v)
    if m:
        day, month_name, year = m.groups()
        month = UKRAINIAN_MONTHS.get(month_name.lower())
        if month:
            return f"{int(year):04d}-{month:02d}-{int(day):02d}"

    m = _DOTTED_RE.fullmatch(v)
    if m:
        day, month, year = m.groups()
        if len(year) == 2:
            short = int(year)
            year = f"20{year}" if short <= 50 else f"19{year}"
        return f"{int(year):04d}-{int(month):02d}-{int(day):02d}"

    return v


def format_date_display(value: str | None) -> str:
    """ISO (или любая понятная parse_date форма) -> 'ДД.ММ.ГГГГ'."""
    if not value:
        return ""
    iso = parse_date(value)
    try:
        d = from_iso(iso)
    except ValueError:
        return str(value)
    return d.strftime("%d.%m.%Y")


def from_iso(value: str) -> date:
    # допускаем и полный ISO timestamp: берём только дату
    return date.fromisoformat(str(value)[:10])


def to_iso(d: date) -> str:
    return d.isoformat()


def midpoint(start: date, end: date) -> date:
    """Середина периода с точностью до дня: start + floor((end - start) / 2)."""
    return start + timedelta(days=(end - start).days // 2)


def now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="milliseconds")
