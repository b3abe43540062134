# cli.py
from __future__ import annotations

import argparse
import sys
from typing import Optional

from loguru import logger

from app import MaintenanceApp
from config import DATA_BACKENDS, load_config
from data_transfer import DATA_TYPES, EXPORT_FORMATS, REPAIR_MODES
from errors import StoreError
from logging_setup import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="maint-store",
        description="Хранилище договоров ТО: экспорт/импорт, ремонт производных данных, история",
    )
    parser.add_argument("--config", default=None, help="YAML-файл конфигурации")
    parser.add_argument("--backend", choices=DATA_BACKENDS, default=None, help="Источник данных")
    parser.add_argument("--data-dir", default=None, help="Каталог файлов (json/yaml)")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Уровень логирования",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_export = sub.add_parser("export", help="Выгрузить данные в файл обмена")
    p_export.add_argument("--types", nargs="+", choices=DATA_TYPES, default=["all"])
    p_export.add_argument("--format", dest="fmt", choices=EXPORT_FORMATS, default="json")
    p_export.add_argument("-o", "--output", default=None, help="Файл (по умолчанию stdout)")

    p_import = sub.add_parser("import", help="Загрузить данные из файла обмена")
    p_import.add_argument("file")
    p_import.add_argument("--types", nargs="+", choices=DATA_TYPES, default=["all"])
    p_import.add_argument("--repair", choices=REPAIR_MODES, default="auto")

    sub.add_parser("regenerate", help="Перестроить все задачи и канбан")
    sub.add_parser("check", help="Проверить согласованность производных данных")
    sub.add_parser("undo", help="Откатить на шаг назад по истории")
    sub.add_parser("redo", help="Вернуть шаг вперёд по истории")

    p_hist = sub.add_parser("history", help="Последние записи истории")
    p_hist.add_argument("--count", type=int, default=5)
    return parser


def _run(app: MaintenanceApp, args: argparse.Namespace) -> int:
    store, history, transfer = app.store, app.history, app.transfer
    assert store is not None and history is not None and transfer is not None

    if args.command == "export":
        text = transfer.export_data(args.types, args.fmt)
        if args.output:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(text)
            print(f"Экспортировано в {args.output}")
        else:
            print(text)
        return 0

    if args.command == "import":
        with open(args.file, encoding="utf-8") as f:
            text = f.read()
        result = transfer.import_data(text, args.types, args.repair)
        print(f"Импортировано ключей: {len(result.keys)}; пропущено записей: {len(result.skipped)}")
        if result.repaired:
            print("Производные данные перестроены")
        app.save_state("Імпорт даних")
        return 0

    if args.command == "regenerate":
        count = store.regenerate_all_tasks()
        print(f"Задач после регенерации: {count}")
        app.save_state("Регенерація задач")
        return 0

    if args.command == "check":
        problems = store.check_integrity()
        for problem in problems:
            print(f"- {problem}")
        print("Нарушений нет" if not problems else f"Нарушений: {len(problems)}")
        return 1 if problems else 0

    if args.command in ("undo", "redo"):
        entry = app.undo() if args.command == "undo" else app.redo()
        if entry is None:
            print("Нечего " + ("откатывать" if args.command == "undo" else "возвращать"))
            return 1
        print(f"Текущее состояние: {entry.description}")
        return 0

    if args.command == "history":
        current = history.current()
        for entry in history.recent_actions(args.count):
            mark = "*" if current is not None and entry.id == current.id else " "
            print(f"{mark} {entry.id}  {entry.description}")
        return 0

    raise ValueError(f"Неизвестная команда: {args.command}")


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    cfg = load_config(args.config)
    if args.backend:
        cfg.data_backend = args.backend
    if args.data_dir:
        cfg.data_dir = args.data_dir
    if args.log_level:
        cfg.log_level = args.log_level
    configure_logging(cfg.log_level)

    try:
        with MaintenanceApp(cfg) as app:
            return _run(app, args)
    except (StoreError, ValueError, OSError) as exc:
        logger.error("{}", exc)
        print(f"Ошибка: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
