"""CLI 入口模块 -- python -m chronos.core <command>

每个变更命令执行后立即保存 Ledger。终端仪表盘不在此实现。
"""

import argparse
import sys
from datetime import date, datetime
from pathlib import Path

import structlog

from .aggregate import format_duration
from .config import ChronosConfig, load_config, resolve_ledger_path
from .exceptions import LedgerError
from .ledger import Ledger
from .logging_config import setup_logging
from .models.summary import UNCATEGORIZED
from .recent import recent_ledgers, remember_ledger

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chronos", description="Terminal-first time tracker")
    parser.add_argument("--ledger", type=Path, default=None, help="Ledger 文件路径")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="创建空 Ledger 文件")

    p = sub.add_parser("add-project", help="新建项目")
    p.add_argument("--name", required=True)
    p.add_argument("--color")

    p = sub.add_parser("add-category", help="新建分类")
    p.add_argument("--name", required=True)
    p.add_argument("--description")

    p = sub.add_parser("add-task", help="新建任务")
    p.add_argument("--project", required=True)
    p.add_argument("--description", required=True)
    p.add_argument("--category")

    for name in ("activate-task", "deactivate-task", "cancel"):
        p = sub.add_parser(name)
        p.add_argument("--task", required=True)

    for name in ("start", "stop"):
        p = sub.add_parser(name)
        p.add_argument("--task", required=True)
        p.add_argument("--note")

    p = sub.add_parser("log", help="补录一段会话")
    p.add_argument("--task", required=True)
    p.add_argument("--start", required=True, help="RFC 3339，必须带时区偏移")
    p.add_argument("--stop", required=True, help="RFC 3339，必须带时区偏移")
    p.add_argument("--note")
    p.add_argument("--strict", action="store_true", help="会引入诊断时拒绝")

    sub.add_parser("list-tasks")

    for name in ("summary", "week"):
        p = sub.add_parser(name)
        p.add_argument("--day", help="YYYY-MM-DD，默认今天")

    p = sub.add_parser("events")
    p.add_argument("--limit", type=int, default=20)

    sub.add_parser("diagnostics")

    p = sub.add_parser("ledgers", help="最近使用的 Ledger")
    p.add_argument("--limit", type=int, default=20)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI 主入口"""
    args = build_parser().parse_args(argv)
    config = load_config()
    setup_logging(config.log_format, config.log_level)

    try:
        return run(args, config)
    except LedgerError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


def run(args: argparse.Namespace, config: ChronosConfig) -> int:
    if args.command == "ledgers":
        print_recent_ledgers(config, args.limit)
        return 0

    path = resolve_ledger_path(args.ledger, config)
    ledger = Ledger.open(path, tz=config.tz())
    try:
        remember_ledger(config.state_dir, path)
    except OSError as e:
        log.warning("remember_ledger_failed", path=str(path), error=str(e))

    command = args.command
    if command == "init":
        ledger.save()
        print(f"initialized ledger at {path}")
    elif command == "add-project":
        project = ledger.create_project(args.name, args.color)
        ledger.save()
        print(f"created project {project.id}")
    elif command == "add-category":
        category = ledger.create_category(args.name, args.description)
        ledger.save()
        print(f"created category {category.id}")
    elif command == "add-task":
        task = ledger.create_task(args.project, args.description, args.category)
        ledger.save()
        print(f"created task {task.id}")
    elif command == "activate-task":
        ledger.activate_task(args.task)
        ledger.save()
        print(f"activated {args.task}")
    elif command == "deactivate-task":
        ledger.deactivate_task(args.task)
        ledger.save()
        print(f"deactivated {args.task}")
    elif command == "start":
        ledger.start_task(args.task, note=args.note)
        ledger.save()
        print(f"started {args.task}")
    elif command == "stop":
        ledger.stop_task(args.task, note=args.note)
        ledger.save()
        print(f"stopped {args.task}")
    elif command == "cancel":
        ledger.cancel_task(args.task)
        ledger.save()
        print(f"cancelled {args.task}")
    elif command == "log":
        start = parse_datetime(args.start)
        stop = parse_datetime(args.stop)
        ledger.manual_entry(args.task, start, stop, args.note, strict=args.strict)
        ledger.save()
        print(f"recorded manual session for {args.task}")
    elif command == "list-tasks":
        print_tasks(ledger)
    elif command == "summary":
        print_summary(ledger, parse_day(args.day, ledger))
    elif command == "week":
        print_week(ledger, parse_day(args.day, ledger))
    elif command == "events":
        print_events(ledger, args.limit)
    elif command == "diagnostics":
        print_diagnostics(ledger)
    return 0


def parse_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise LedgerError(f"invalid timestamp: {value}") from e
    if parsed.tzinfo is None:
        raise LedgerError(f"timestamp must carry a UTC offset: {value}")
    return parsed


def parse_day(value: str | None, ledger: Ledger) -> date:
    if value is None:
        return ledger.today()
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise LedgerError(f"invalid day (expected YYYY-MM-DD): {value}") from e


def task_label(ledger: Ledger, task_id: str) -> str:
    task = ledger.task(task_id)
    if task is None:
        return f"{task_id} (unknown task)"
    project = ledger.project(task.project_id)
    project_name = project.name if project else "Unknown project"
    return f"{project_name} / {task.title}"


def project_name(ledger: Ledger, project_id: str) -> str:
    project = ledger.project(project_id)
    return project.name if project else "Unknown project"


def category_name(ledger: Ledger, category_id: str) -> str:
    if category_id == UNCATEGORIZED:
        return "Uncategorized"
    category = ledger.category(category_id)
    return category.name if category else "Unknown category"


def print_recent_ledgers(config: ChronosConfig, limit: int) -> None:
    rows = recent_ledgers(config.state_dir, limit)
    if not rows:
        print("no recent ledgers")
        return
    for index, path in enumerate(rows, start=1):
        print(f"{index:>2}. {path}")


def print_tasks(ledger: Ledger) -> None:
    tasks = ledger.entities.tasks
    if not tasks:
        print("no tasks yet")
        return
    for task in tasks:
        category = category_name(ledger, task.category_id or UNCATEGORIZED)
        marker = "" if task.active else " (inactive)"
        running = " [running]" if ledger.snapshot.is_running(task.id) else ""
        print(
            f"{task.id} | {project_name(ledger, task.project_id)} | {category} | "
            f"{task.title}{marker}{running}"
        )


def print_summary(ledger: Ledger, day: date) -> None:
    summary = ledger.summary(since=day, until=day, include_running=True)
    print(f"summary for {day.isoformat()}")
    rows = summary.totals_for_day(day)
    if not rows:
        print("no tracked sessions for this day")
        return

    print("\nby task:")
    for task_id, duration in rows:
        print(f"{format_duration(duration)} | {task_id} | {task_label(ledger, task_id)}")

    print("\nby project:")
    for project_id, duration in _sorted_totals(summary.by_project):
        print(f"{format_duration(duration)} | {project_name(ledger, project_id)}")

    print("\nby category:")
    for category_id, duration in _sorted_totals(summary.by_category):
        print(f"{format_duration(duration)} | {category_name(ledger, category_id)}")

    print(f"\ntotal: {format_duration(summary.total)}")


def print_week(ledger: Ledger, day: date) -> None:
    stats = ledger.week_stats(day, include_running=True)
    print(f"week of {stats.week_start.isoformat()}")
    for current, duration in stats.daily:
        print(f"{current.isoformat()} {current.strftime('%a')} | {format_duration(duration)}")
    print(
        f"\ntotal: {format_duration(stats.total)} | avg/day: {format_duration(stats.avg_per_day)}"
        f" | max day: {format_duration(stats.max_day)} | active days: {stats.active_days}"
    )
    if stats.project_totals:
        print("\nby project:")
        for project_id, duration in stats.project_totals.items():
            print(f"{format_duration(duration)} | {project_name(ledger, project_id)}")


def print_events(ledger: Ledger, limit: int) -> None:
    for event in ledger.recent_events(limit):
        note = f" note={event.note}" if event.note else ""
        print(
            f"#{event.sequence_no} {event.timestamp.isoformat()} {event.kind.value} "
            f"{task_label(ledger, event.task_id)}{note}"
        )


def print_diagnostics(ledger: Ledger) -> None:
    if not ledger.diagnostics:
        print("no diagnostics")
        return
    for issue in ledger.diagnostics:
        where = []
        if issue.line_no is not None:
            where.append(f"line {issue.line_no}")
        if issue.sequence_no is not None:
            where.append(f"event #{issue.sequence_no}")
        if issue.task_id is not None:
            where.append(f"task {issue.task_id}")
        print(f"{issue.kind.value} | {', '.join(where)} | {issue.message}")


def _sorted_totals(totals: dict) -> list:
    return sorted(totals.items(), key=lambda row: (-row[1], row[0]))


if __name__ == "__main__":
    sys.exit(main())
