#!/usr/bin/env python3
"""
todocal — interactive task tracker.

Modes:
- TODO mode: create/list/complete/delete/rename projects and tasks.
- Calendar mode: month-by-month completion history grouped by week category.

Data lives in flat CSV files under the data directory ($TODOCAL_DATA or
`data_dir` in todocal.toml); every mode exit and quit rewrites them.
"""

from __future__ import annotations

import argparse
import os
import sys
from datetime import date
from typing import Callable, Optional

from dateutil.relativedelta import relativedelta

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich import box

from prompt_toolkit import prompt
from prompt_toolkit.completion import WordCompleter

import todocal_core as core


# ──────────────────────────────────────────────────────────────────────────────
# Constants / styling
# ──────────────────────────────────────────────────────────────────────────────
console = Console()

COLORS = {
    'primary': 'bright_cyan',
    'secondary': 'bright_blue',
    'success': 'green',
    'warning': 'bright_yellow',
    'error': 'bright_red',
    'muted': 'grey58',
    'header': 'cyan',
}

PRIORITY_COLORS = {
    'high': 'red',
    'medium': 'yellow',
    'low': 'green',
}

MAIN_CHOICES = ["t", "c", "q"]
TODO_CHOICES = ["p", "t", "pl", "tl", "f", "pd", "td", "rm", "cp", "cr", "r", "q"]
CALENDAR_CHOICES = ["1", "2", "3", "r", "q"]

TODO_MENU = """\
p.  create project        t.  create task
pl. list projects         tl. list tasks
                          f.  complete task
pd. delete project        td. delete task
----------------------------------------------------
rm. rename
cp. change priority
cr. change repeat
r.  back
q.  save and quit
----------------------------------------------------"""


class QuitRequested(Exception):
    """Raised from any menu to save and leave the application."""


def _prompt_input(message: str, choices: Optional[list[str]] = None) -> str:
    completer = WordCompleter(choices) if choices else None
    return prompt(message, completer=completer)


def priority_color(priority: str) -> str:
    return PRIORITY_COLORS.get(priority, 'white')


def _parse_month(value: str) -> tuple[int, int]:
    """Parse YYYY-MM (or YYYY/MM) into (year, month)."""
    raw = (value or "").strip().replace("/", "-")
    parts = raw.split("-")
    if len(parts) != 2:
        raise core.ValidationError(f"expected YYYY-MM, got {value!r}")
    try:
        year, month = int(parts[0]), int(parts[1])
    except ValueError:
        raise core.ValidationError(f"expected YYYY-MM, got {value!r}") from None
    if year <= 0 or not 1 <= month <= 12:
        raise core.ValidationError(f"invalid date {value!r}")
    return year, month


# ──────────────────────────────────────────────────────────────────────────────
# Navigator
# ──────────────────────────────────────────────────────────────────────────────
class TodoNavigator:
    """Menu loop over one AppState; every action is rejected or applied whole."""

    def __init__(
        self,
        state: core.AppState,
        ask: Callable[..., str] = _prompt_input,
        out: Console | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.state = state
        self.store = state.store
        self._ask = ask
        self.console = out or console
        self._today = today

    # ── I/O helpers ─────────────────────────────────────────────────────────
    def ask(self, message: str, choices: Optional[list[str]] = None) -> str:
        return (self._ask(message, choices) or "").strip()

    def say(self, message: str, color: str | None = None) -> None:
        if color:
            self.console.print(f"[{color}]{message}[/]")
        else:
            self.console.print(message)

    def error(self, message: str) -> None:
        self.say(escape(str(message)), COLORS['error'])

    def ask_id(self, message: str) -> Optional[int]:
        raw = self.ask(f"{message} (q=back): ")
        if raw.lower() == "q":
            return None
        try:
            return int(raw)
        except ValueError:
            raise core.ValidationError(f"not a number: {raw!r}") from None

    def ask_name(self, message: str) -> Optional[str]:
        name = self.ask(f"{message} (q=back): ")
        if name.lower() == "q":
            return None
        return name

    def confirm(self, message: str) -> bool:
        self.say(escape(message), COLORS['warning'])
        answer = self.ask("Really delete? (y/N): ", ["y", "n"]).lower()
        return answer in ("y", "yes")

    def save(self) -> None:
        self.state.flush()

    # ── Main loop ───────────────────────────────────────────────────────────
    def run(self) -> int:
        self.say("Starting todocal...", COLORS['primary'])
        try:
            while True:
                self.say("\n=== todocal ===", COLORS['success'])
                self.say("t. TODO mode\nc. Calendar mode\nq. quit")
                choice = self.ask("Choose a mode [t,c,q]: ", MAIN_CHOICES).lower()
                if choice == "t":
                    self.todo_mode()
                elif choice == "c":
                    self.calendar_mode()
                elif choice == "q":
                    raise QuitRequested()
                else:
                    self.error("Invalid choice")
        except (QuitRequested, KeyboardInterrupt, EOFError):
            self.save()
            self.say("Saved. Bye.", COLORS['success'])
        return 0

    def todo_mode(self) -> None:
        actions = {
            "p": self.create_project,
            "t": self.create_task,
            "pl": self.show_projects,
            "tl": self.show_tasks,
            "f": self.complete_task,
            "pd": self.delete_project,
            "td": self.delete_task,
            "rm": self.rename_item,
            "cp": self.change_priority,
            "cr": self.change_repeat,
        }
        try:
            while True:
                self.say("\n=== TODO mode ===", COLORS['secondary'])
                self.say(TODO_MENU)
                choice = self.ask("Choose [p,t,pl,tl,f,pd,td,rm,cp,cr,r,q]: ", TODO_CHOICES).lower()
                if choice == "r":
                    break
                if choice == "q":
                    raise QuitRequested()
                action = actions.get(choice)
                if action is None:
                    self.error("Invalid choice")
                    continue
                try:
                    action()
                except core.TodoError as e:
                    self.error(e)
        finally:
            self.save()

    def calendar_mode(self) -> None:
        try:
            while True:
                self.say("=== Calendar (completion history) ===", COLORS['secondary'])
                choice = self.ask(
                    "Month (1: this month, 2: last month, 3: pick, r: back, q: quit) [1]: ",
                    CALENDAR_CHOICES,
                ).lower()
                today = self._today()
                try:
                    if choice in ("", "1"):
                        self.show_month(today.year, today.month)
                    elif choice == "2":
                        prev = today + relativedelta(months=-1)
                        self.show_month(prev.year, prev.month)
                    elif choice == "3":
                        year = self.ask("Year (YYYY): ")
                        if year.lower() == "q":
                            break
                        month = self.ask("Month (MM): ")
                        if month.lower() == "q":
                            break
                        self.show_month(*_parse_month(f"{year}-{month}"))
                    elif choice == "r":
                        break
                    elif choice == "q":
                        raise QuitRequested()
                    else:
                        self.error("Invalid choice")
                except core.TodoError as e:
                    self.error(e)
        finally:
            self.save()

    # ── Listings ────────────────────────────────────────────────────────────
    def show_projects(self) -> None:
        self.say("=== Projects ===", COLORS['secondary'])
        for index, project in enumerate(self.store.list_projects(), 1):
            color = priority_color(project.priority)
            self.console.print(
                f"[{color}]\\[{index}] {escape(project.name)}[/] (priority: {project.priority})"
            )

    def show_tasks(self) -> None:
        self.say("=== Tasks ===", COLORS['secondary'])
        for pnode in self.store.list_active_tree(self.state.sort_order):
            project = pnode.project
            color = priority_color(project.priority)
            self.console.print(
                f"\n[{color}]\\[{pnode.number}] (id:{project.id})   {escape(project.name)}[/]"
            )
            for node, depth in core.walk_tree(pnode.tasks):
                indent = "  " * (depth + 1)
                tcolor = priority_color(node.task.priority)
                self.console.print(
                    f"{indent}[{tcolor}]{escape(node.label)} (id:{node.task.id})   {escape(node.task.name)}[/]"
                )

    def show_month(self, year: int, month: int) -> None:
        entries = self.state.calendar.entries_for_month(year, month)
        groups = core.build_month_report(year, month, entries)
        self.say(f"\n{year}/{month} completion history (all days)", COLORS['warning'])
        lines = core.render_month(groups)
        self.console.print(lines[0], style=COLORS['header'], markup=False, highlight=False, soft_wrap=True)
        for line in lines[1:]:
            self.console.print(line, markup=False, highlight=False, soft_wrap=True)

    # ── Actions ─────────────────────────────────────────────────────────────
    def _ask_priority(self, default: str | None) -> str:
        suffix = " [m]" if default else ""
        return core.priority_from_key(
            self.ask(f"Priority (h: high, m: medium, l: low){suffix}: ", ["h", "m", "l"]), default
        )

    def _ask_repeat(self, default: str | None) -> str:
        suffix = " [n]" if default else ""
        return core.repeat_from_key(
            self.ask(f"Repeat (n: none, d: daily, w: weekly, m: monthly){suffix}: ", ["n", "d", "w", "m"]),
            default,
        )

    def create_project(self) -> None:
        self.say("Create a new project", COLORS['primary'])
        name = self.ask_name("Project name")
        if name is None:
            return
        core.require_name(name, "project")
        priority = self._ask_priority("medium")
        project = self.store.create_project(name, priority)
        self.say(f"Created project '{escape(project.name)}' (id: {project.id})", COLORS['success'])

    def create_task(self) -> None:
        self.say("Create a new task", COLORS['primary'])
        self.show_tasks()
        parent_id = self.ask_id("Parent project/task id")
        if parent_id is None:
            return
        self.store.resolve_parent(parent_id)
        name = self.ask_name("Task name")
        if name is None:
            return
        core.require_name(name, "task")
        priority = self._ask_priority("medium")
        repeat_type = self._ask_repeat("none")
        task = self.store.create_task(parent_id, name, priority, repeat_type)
        self.say(f"Created task '{escape(task.name)}' (id: {task.id})", COLORS['success'])

    def complete_task(self) -> None:
        self.say("Complete a task", COLORS['primary'])
        self.show_tasks()
        task_id = self.ask_id("Task id to complete")
        if task_id is None:
            return
        task, _entry = self.store.complete_task(task_id)
        self.say(f"Completed task '{escape(task.name)}'", COLORS['success'])

    def delete_project(self) -> None:
        self.say("Delete a project", COLORS['primary'])
        self.show_projects()
        project_id = self.ask_id("Project id to delete")
        if project_id is None:
            return
        project = self.store.get_project(project_id)
        try:
            self.store.delete_project(project_id)
        except core.ConfirmationRequired as e:
            if not self.confirm(f"Warning: this project contains {e.count} task(s)"):
                self.say("Deletion cancelled", COLORS['warning'])
                return
            self.store.delete_project(project_id, cascade_confirmed=True)
        self.say(f"Deleted project '{escape(project.name)}'", COLORS['success'])

    def delete_task(self) -> None:
        self.say("Delete a task", COLORS['primary'])
        self.show_tasks()
        task_id = self.ask_id("Task id to delete")
        if task_id is None:
            return
        task = self.store.get_task(task_id)
        try:
            self.store.delete_task(task_id)
        except core.ConfirmationRequired as e:
            if not self.confirm(f"Warning: this task has {e.count} subtask(s)"):
                self.say("Deletion cancelled", COLORS['warning'])
                return
            self.store.delete_task(task_id, cascade_confirmed=True)
        self.say(f"Deleted task '{escape(task.name)}'", COLORS['success'])

    def rename_item(self) -> None:
        self.say("Rename a project/task", COLORS['primary'])
        self.show_tasks()
        entity_id = self.ask_id("Project/task id to rename")
        if entity_id is None:
            return
        item = self.store.find_entity(entity_id)
        if item is None:
            raise core.NotFoundError(f"no project or task with id {entity_id}")
        old_name = item.name
        new_name = self.ask_name(f"New name for '{old_name}'")
        if new_name is None:
            return
        self.store.rename(entity_id, new_name)
        self.say(f"Renamed '{escape(old_name)}' to '{escape(new_name)}'", COLORS['success'])

    def change_priority(self) -> None:
        self.say("Change priority", COLORS['primary'])
        self.show_tasks()
        entity_id = self.ask_id("Project/task id")
        if entity_id is None:
            return
        if self.store.find_entity(entity_id) is None:
            raise core.NotFoundError(f"no project or task with id {entity_id}")
        item = self.store.set_priority(entity_id, self._ask_priority(None))
        kind = "project" if isinstance(item, core.Project) else "task"
        self.say(f"Set {kind} '{escape(item.name)}' priority to {item.priority}", COLORS['success'])

    def change_repeat(self) -> None:
        self.say("Change repeat setting", COLORS['primary'])
        self.show_tasks()
        task_id = self.ask_id("Task id")
        if task_id is None:
            return
        if self.store.get_task(task_id) is None:
            raise core.NotFoundError(f"no task with id {task_id}")
        task = self.store.set_repeat_type(task_id, self._ask_repeat(None))
        self.say(f"Set task '{escape(task.name)}' repeat to {task.repeat_type}", COLORS['success'])


# ──────────────────────────────────────────────────────────────────────────────
# Self-check
# ──────────────────────────────────────────────────────────────────────────────
def _emit_check(status: str, label: str, detail: str) -> None:
    color = {
        "OK": COLORS["success"],
        "WARN": COLORS["warning"],
        "FAIL": COLORS["error"],
    }.get(status, COLORS["muted"])
    console.print(f"[{color}]{status:>4}[/] {label}: {escape(detail)}")


def _self_check(paths: core.DataPaths) -> int:
    console.print("[bold]todocal self-check[/bold]")
    ok = True

    src = core.config_source()
    if src:
        _emit_check("OK", "config", f"found {src}")
    elif core.tomllib is None:
        _emit_check("WARN", "config", "TOML parser unavailable; defaults in use")
    else:
        _emit_check("WARN", "config", "no config file found; defaults in use")

    root = paths.root
    if root.is_dir() and os.access(root, os.W_OK):
        _emit_check("OK", "data dir", str(root))
    else:
        ok = False
        _emit_check("FAIL", "data dir", f"missing or not writable: {root}")

    for label, path in (("todo file", paths.todo), ("calendar file", paths.calendar), ("settings file", paths.settings)):
        if path.exists():
            _emit_check("OK", label, str(path))
        else:
            _emit_check("WARN", label, f"missing (created on first run): {path}")

    try:
        projects = core.load_projects(paths.todo)
        tasks = core.load_tasks(paths.todo)
        entries = core.load_calendar_entries(paths.calendar)
        _emit_check(
            "OK", "load",
            f"{len(projects)} projects, {len(tasks)} tasks, {len(entries)} calendar entries; "
            f"next id {core.next_id(projects, tasks)}",
        )
    except core.StorageError as e:
        ok = False
        _emit_check("FAIL", "load", str(e))

    try:
        settings = core.load_settings(paths.settings)
        core.resolve_sort_order(settings.get("sort_order") or core._conf_str("sort_order", "priority"))
        _emit_check("OK", "sort order", settings.get("sort_order") or "(default)")
    except core.TodoError as e:
        ok = False
        _emit_check("FAIL", "settings", str(e))

    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    for k in ("TODOCAL_CONFIG", "TODOCAL_DATA", "TODOCAL_DIAG", "TODOCAL_DIAG_LOG"):
        table.add_row(k, os.environ.get(k, "—"))
    console.print(Panel(table, title="Environment", border_style=COLORS["secondary"], expand=False))

    return 0 if ok else 1


# ──────────────────────────────────────────────────────────────────────────────
# CLI
# ──────────────────────────────────────────────────────────────────────────────
def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="todocal — projects, nested tasks and a completion calendar",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--data-dir", metavar="DIR", help="Directory holding the CSV data files")
    parser.add_argument("--month", metavar="YYYY-MM", help="Print the calendar report for a month and exit")
    parser.add_argument("--self-check", action="store_true", help="Run self-check diagnostics")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    args = parser.parse_args(argv)

    global console
    if args.no_color or not core._conf_bool("color", True) or os.environ.get("NO_COLOR"):
        console = Console(no_color=True, highlight=False)

    paths = core.DataPaths.in_dir(args.data_dir)
    if args.self_check:
        return _self_check(paths)

    try:
        state = core.AppState.open(paths)
    except core.StorageError as e:
        console.print(f"[{COLORS['error']}]Error: {escape(str(e))}[/]")
        return 1

    nav = TodoNavigator(state, out=console)
    if args.month:
        try:
            nav.show_month(*_parse_month(args.month))
        except core.ValidationError as e:
            console.print(f"[{COLORS['error']}]Error: {escape(str(e))}[/]")
            return 2
        return 0

    if not sys.stdin.isatty():
        core.diag("stdin is not a tty; prompts read from pipe")
    try:
        return nav.run()
    except core.StorageError as e:
        console.print(f"[{COLORS['error']}]Error: {escape(str(e))}[/]")
        return 1


if __name__ == '__main__':
    sys.exit(main())
