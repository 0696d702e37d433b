#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared core for the todocal task tracker.

Projects own trees of tasks; completing a task appends a calendar entry,
and the calendar report groups a month's days into week categories.
"""
from __future__ import annotations
import os, sys
import csv
import json, tempfile, time
import dataclasses
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Callable, Iterable

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


# ==============================================================================
# TABLE OF CONTENTS (major sections)
# 1) Config & defaults
# 2) Diagnostics
# 3) Records & errors
# 4) Identity allocator
# 5) Calendar log & month report
# 6) Table renderer
# 7) Hierarchy store
# 8) Storage adapters
# 9) Application state
# ==============================================================================


# ==============================================================================
# SECTION: Config & defaults
# ==============================================================================
# --- TOML loading helpers ---


try:
    import tomllib  # Python 3.11+
except Exception:
    try:
        import tomli as tomllib  # Python 3.10 and earlier (pip install tomli)
    except Exception:
        tomllib = None


# --- Defaults ---
_DEFAULTS = {
    "data_dir": "~",
    "todo_file": ".todo_data.csv",
    "calendar_file": ".todo_calendar.csv",
    "settings_file": ".todo_config.csv",
    "sort_order": "priority",
    "color": True,
}

# --- Config cache ---
_CONF_CACHE = None


def _read_toml(path: str) -> dict:
    try:
        if not path or not os.path.exists(path) or os.path.isdir(path):
            return {}
    except Exception:
        return {}

    env_path = os.environ.get("TODOCAL_CONFIG") or ""
    env_abs = os.path.abspath(os.path.expanduser(env_path)) if env_path else ""
    is_env_path = bool(env_abs and path == env_abs)

    if tomllib is None:
        if is_env_path:
            raise RuntimeError(
                f"TODOCAL_CONFIG is set but TOML parser is unavailable for {path}. "
                "Install tomli or upgrade to Python 3.11+."
            )
        _warn_once_per_day("missing_toml_parser", f"[todocal] TOML parser unavailable; ignoring {path}")
        return {}

    try:
        with open(path, "rb") as f:
            return tomllib.load(f) or {}
    except Exception as e:
        if is_env_path:
            raise RuntimeError(f"TODOCAL_CONFIG parse failed for {path}: {e}")
        _warn_once_per_day("toml_parse_error", f"[todocal] Config parse failed ({path}): {e}; using defaults.")
        return {}


def _config_paths() -> list[str]:
    env_path = os.environ.get("TODOCAL_CONFIG")
    if env_path:
        return [os.path.abspath(os.path.expanduser(env_path))]

    def _candidates_in_dir(d: str) -> list[str]:
        d = os.path.abspath(os.path.expanduser(d))
        return [
            os.path.join(d, "config-todocal.toml"),
            os.path.join(d, "todocal.toml"),
        ]

    paths: list[str] = []
    moddir = os.path.dirname(os.path.abspath(__file__))
    paths.extend(_candidates_in_dir(moddir))

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        paths.extend(_candidates_in_dir(os.path.join(xdg, "todocal")))
    paths.extend(_candidates_in_dir("~/.config/todocal"))
    paths.extend(_candidates_in_dir("~"))

    seen = set()
    out = []
    for p in paths:
        if p in seen:
            continue
        seen.add(p)
        out.append(p)
    return out


def _normalize_keys(d: dict) -> dict:
    # allow users to write keys in any case
    out = {}
    for k, v in (d or {}).items():
        out[str(k).strip().lower()] = v
    return out


def _load_config() -> dict:
    cfg = dict(_DEFAULTS)
    chosen = None
    paths = _config_paths()
    for p in paths:
        data = _read_toml(p)
        if data:
            cfg.update(_normalize_keys(data))
            chosen = p
            break
    if os.environ.get("TODOCAL_DIAG") == "1":
        try:
            if chosen:
                print(f"[todocal] Using config: {chosen}", file=sys.stderr)
            else:
                print("[todocal] No config file found; using defaults.", file=sys.stderr)
        except Exception:
            pass
    cfg["_source"] = chosen or ""
    return cfg


def _get_config() -> dict:
    global _CONF_CACHE
    if _CONF_CACHE is None:
        _CONF_CACHE = _load_config()
    return _CONF_CACHE


def _reset_config() -> None:
    global _CONF_CACHE
    _CONF_CACHE = None


def _conf_raw(key: str):
    return _get_config().get(key)


def _conf_str(key: str, default: str) -> str:
    v = _conf_raw(key)
    if v is None:
        return str(default)
    s = str(v).strip()
    return s if s else str(default)


def _conf_bool(key: str, default: bool = False) -> bool:
    v = _conf_raw(key)
    if v is None:
        return bool(default)
    s = str(v).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off", "none"):
        return False
    return bool(default)


def config_source() -> str:
    return str(_conf_raw("_source") or "")


def data_dir() -> Path:
    """Resolve the data directory ($TODOCAL_DATA wins over the config file)."""
    raw = os.environ.get("TODOCAL_DATA") or _conf_str("data_dir", _DEFAULTS["data_dir"])
    return Path(raw).expanduser()


def _cache_dir() -> str:
    base = os.environ.get("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(base, "todocal")


def _warn_once_per_day(key: str, message: str) -> None:
    """Persist a tiny sentinel so we do not repeat the same warning all day."""
    try:
        d = _cache_dir()
        os.makedirs(d, exist_ok=True)
        stamp_path = os.path.join(d, f".diag_{key}.stamp")
        today = date.today().isoformat()
        if os.path.exists(stamp_path):
            with open(stamp_path, "r", encoding="utf-8") as f:
                if f.read().strip() == today:
                    return
        with open(stamp_path, "w", encoding="utf-8") as f:
            f.write(today)
        print(message, file=sys.stderr)
    except Exception:
        pass


# ==============================================================================
# SECTION: Diagnostics
# ==============================================================================
_DIAG_LOG_REDACT_KEYS = frozenset({"name", "old_name", "new_name", "project_name", "completed_task"})


def diag_log_redact(msg, redact_keys: frozenset | None = None):
    """Redact user-entered names from a dict (or JSON string) payload."""
    keys = redact_keys or _DIAG_LOG_REDACT_KEYS
    if isinstance(msg, dict):
        return {k: ("[redacted]" if k in keys else v) for k, v in msg.items()}
    try:
        data = json.loads(msg)
        if isinstance(data, dict):
            for k in list(data.keys()):
                if k in keys:
                    data[k] = "[redacted]"
            return json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    except Exception:
        pass
    return msg


def _diag_log_path(base: str | os.PathLike | None = None) -> str:
    root = Path(base).expanduser() if base else data_dir()
    return str(root / ".todocal_diag.jsonl")


def diag_log(msg, source: str = "todocal", base: str | os.PathLike | None = None) -> None:
    """Append a JSONL diagnostic record (when TODOCAL_DIAG_LOG=1)."""
    if os.environ.get("TODOCAL_DIAG_LOG") != "1":
        return
    path = _diag_log_path(base)
    max_bytes = int(os.environ.get("TODOCAL_DIAG_LOG_MAX_BYTES") or 262144)
    try:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        if max_bytes > 0 and os.path.exists(path) and os.stat(path).st_size > max_bytes:
            os.replace(path, path.replace(".jsonl", f".overflow.{int(time.time())}.jsonl"))
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "source": source,
            "pid": os.getpid(),
        }
        if isinstance(msg, dict):
            red = diag_log_redact(msg)
            payload["msg"] = str(red.get("msg") or "")
            payload["data"] = red
        else:
            payload["msg"] = diag_log_redact(str(msg))
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n")
    except Exception:
        pass


def diag(msg, source: str = "todocal", base: str | os.PathLike | None = None) -> None:
    """Write diagnostics to stderr when TODOCAL_DIAG=1 and to the diag log when TODOCAL_DIAG_LOG=1."""
    if os.environ.get("TODOCAL_DIAG") == "1":
        try:
            text = msg.get("msg") if isinstance(msg, dict) else msg
            sys.stderr.write(f"[todocal] {text}\n")
        except Exception:
            pass
    diag_log(msg, source, base)


# ==============================================================================
# SECTION: Records & errors
# ==============================================================================
PRIORITIES = ("high", "medium", "low")
REPEAT_TYPES = ("none", "daily", "weekly", "monthly")

_PRIORITY_KEYS = {"h": "high", "m": "medium", "l": "low"}
_REPEAT_KEYS = {"n": "none", "d": "daily", "w": "weekly", "m": "monthly"}

# date.weekday() order; strftime("%A") would follow the process locale
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass
class Project:
    id: int
    name: str
    priority: str
    created_date: date


@dataclass
class Task:
    id: int
    project_id: int
    project_name: str
    task_id: int
    name: str
    level: int
    priority: str
    repeat_type: str
    created_date: date
    completed_date: date | None = None
    parent_id: int | None = None


@dataclass
class CalendarEntry:
    date: str
    month: str
    week: str
    weekday: str
    day: str
    completed_task: str
    project_name: str


class TodoError(Exception):
    """Base class for recoverable, per-action failures."""


class ValidationError(TodoError):
    pass


class NotFoundError(TodoError):
    pass


class ConfirmationRequired(TodoError):
    """A cascading delete needs an explicit go-ahead; nothing was changed."""

    def __init__(self, message: str, count: int, children: int | None = None):
        super().__init__(message)
        self.count = count
        self.children = count if children is None else children


class StorageError(TodoError):
    pass


def require_name(name: str | None, what: str) -> str:
    if name is None or not str(name):
        raise ValidationError(f"{what} name is empty")
    return str(name)


def _check_priority(priority: str) -> str:
    if priority not in PRIORITIES:
        raise ValidationError(f"invalid priority {priority!r} (expected one of {', '.join(PRIORITIES)})")
    return priority


def _check_repeat(repeat_type: str) -> str:
    if repeat_type not in REPEAT_TYPES:
        raise ValidationError(f"invalid repeat type {repeat_type!r} (expected one of {', '.join(REPEAT_TYPES)})")
    return repeat_type


def priority_from_key(key: str, default: str | None = None) -> str:
    """Map menu shorthand (h/m/l) to a priority; empty input yields default when given."""
    k = (key or "").strip().lower()
    if not k and default is not None:
        return default
    if k in _PRIORITY_KEYS:
        return _PRIORITY_KEYS[k]
    if k in PRIORITIES:
        return k
    raise ValidationError(f"invalid priority selection {key!r}")


def repeat_from_key(key: str, default: str | None = None) -> str:
    """Map menu shorthand (n/d/w/m) to a repeat type."""
    k = (key or "").strip().lower()
    if not k and default is not None:
        return default
    if k in _REPEAT_KEYS:
        return _REPEAT_KEYS[k]
    if k in REPEAT_TYPES:
        return k
    raise ValidationError(f"invalid repeat selection {key!r}")


def quarter_label(d: date) -> str:
    return f"{d.year}-Q{(d.month - 1) // 3 + 1}"


# ==============================================================================
# SECTION: Identity allocator
# ==============================================================================
def next_id(projects: Iterable[Project], tasks: Iterable[Task]) -> int:
    # recomputed from current state so hand-edited data files stay safe
    ids = [p.id for p in projects] + [t.id for t in tasks]
    return max(ids) + 1 if ids else 1


# ==============================================================================
# SECTION: Calendar log & month report
# ==============================================================================
WEEK_CATEGORIES = {
    "Saturday": "SatSunMon",
    "Sunday": "SatSunMon",
    "Monday": "SatSunMon",
    "Tuesday": "TueWed",
    "Wednesday": "TueWed",
    "Thursday": "ThuFri",
    "Friday": "ThuFri",
}

PLACEHOLDER_PAIR = ("-", "-")


def weekday_category(weekday_name: str) -> str:
    try:
        return WEEK_CATEGORIES[weekday_name]
    except KeyError:
        raise ValueError(f"unknown weekday name: {weekday_name!r}") from None


def category_for(d: date) -> str:
    return weekday_category(WEEKDAY_NAMES[d.weekday()])


class CalendarLog:
    """
    Append-only log of completion events.

    Entries are linked to tasks and projects by name only; rename and delete
    propagate by exact string match, so two tasks sharing a name share history.
    """

    def __init__(self, entries: Iterable[CalendarEntry] | None = None):
        self.entries: list[CalendarEntry] = list(entries or [])

    def __len__(self) -> int:
        return len(self.entries)

    def record_completion(self, task: Task, when: date) -> CalendarEntry:
        weekday = WEEKDAY_NAMES[when.weekday()]
        entry = CalendarEntry(
            date=when.isoformat(),
            month=f"{when.month:02d}",
            week=weekday_category(weekday),
            weekday=weekday,
            day=str(when.day),
            completed_task=task.name,
            project_name=task.project_name,
        )
        self.entries.append(entry)
        return entry

    def rename_task(self, old_name: str, new_name: str) -> int:
        n = 0
        for entry in self.entries:
            if entry.completed_task == old_name:
                entry.completed_task = new_name
                n += 1
        return n

    def rename_project(self, old_name: str, new_name: str) -> int:
        n = 0
        for entry in self.entries:
            if entry.project_name == old_name:
                entry.project_name = new_name
                n += 1
        return n

    def purge_task(self, task_name: str) -> int:
        before = len(self.entries)
        self.entries[:] = [e for e in self.entries if e.completed_task != task_name]
        return before - len(self.entries)

    def purge_project(self, project_name: str) -> int:
        before = len(self.entries)
        self.entries[:] = [e for e in self.entries if e.project_name != project_name]
        return before - len(self.entries)

    def entries_for_month(self, year: int, month: int) -> list[CalendarEntry]:
        prefix = f"{year:04d}-{month:02d}"
        return [e for e in self.entries if (e.date or "").startswith(prefix)]


@dataclass
class WeekGroup:
    number: int
    category: str
    days: list[date] = field(default_factory=list)
    pairs: list[tuple[str, str]] = field(default_factory=list)

    @property
    def day_numbers(self) -> list[int]:
        return [d.day for d in self.days]


def build_month_report(year: int, month: int, entries: Iterable[CalendarEntry]) -> list[WeekGroup]:
    """
    Split the month into runs of consecutive days sharing a week category.

    Runs are numbered from 1 in chronological order. Each run lists the
    (task, project) pairs completed on its days, or a single placeholder.
    """
    first = date(year, month, 1)
    last = first + relativedelta(day=31)

    by_date: dict[str, list[tuple[str, str]]] = {}
    for e in entries:
        by_date.setdefault(e.date, []).append((e.completed_task, e.project_name))

    groups: list[WeekGroup] = []
    current: WeekGroup | None = None
    day = first
    while day <= last:
        cat = category_for(day)
        if current is None or cat != current.category:
            current = WeekGroup(number=len(groups) + 1, category=cat)
            groups.append(current)
        current.days.append(day)
        day += timedelta(days=1)

    for group in groups:
        for d in group.days:
            group.pairs.extend(by_date.get(d.isoformat(), []))
        if not group.pairs:
            group.pairs.append(PLACEHOLDER_PAIR)
    return groups


# ==============================================================================
# SECTION: Table renderer
# ==============================================================================
WEEK_WIDTH = 4
CATEGORY_WIDTH = 9
DATES_WIDTH = 12
TASK_WIDTH = 22
PROJECT_WIDTH = 22

ELLIPSIS = "..."
CALENDAR_SEPARATOR = "----+----------+-------------+-----------------------+------------------------"
CALENDAR_HEADINGS = ("Week", "Category", "Days", "Completed task", "Project")


def char_width(ch: str) -> int:
    return 1 if len(ch.encode("utf-8", "surrogatepass")) == 1 else 2


def display_width(text: str) -> int:
    return sum(char_width(ch) for ch in text)


def format_cell(text: str, width: int) -> str:
    """Pad (or truncate with an ellipsis) so the cell spans exactly `width` columns."""
    text = str(text)
    shown = display_width(text)
    if shown > width:
        kept = []
        used = 0
        for ch in text:
            w = char_width(ch)
            if used + w > width - len(ELLIPSIS):
                break
            kept.append(ch)
            used += w
        text = "".join(kept) + ELLIPSIS
        shown = used + len(ELLIPSIS)
    return text + " " * max(0, width - shown)


def _row(week: str, category: str, dates: str, task: str, project: str) -> str:
    return (
        f"{format_cell(week, WEEK_WIDTH)}| "
        f"{format_cell(category, CATEGORY_WIDTH)}| "
        f"{format_cell(dates, DATES_WIDTH)}| "
        f"{format_cell(task, TASK_WIDTH)}| "
        f"{format_cell(project, PROJECT_WIDTH)}"
    )


def render_header() -> list[str]:
    return [_row(*CALENDAR_HEADINGS), CALENDAR_SEPARATOR]


def render_week_group(group: WeekGroup) -> list[str]:
    lines = []
    day_list = ", ".join(str(n) for n in group.day_numbers)
    for index, (task, project) in enumerate(group.pairs):
        if index == 0:
            lines.append(_row(str(group.number), group.category, day_list, task, project))
        else:
            lines.append(_row("", "", "", task, project))
    lines.append(CALENDAR_SEPARATOR)
    return lines


def render_month(groups: Iterable[WeekGroup]) -> list[str]:
    lines = render_header()
    for group in groups:
        lines.extend(render_week_group(group))
    return lines


# ==============================================================================
# SECTION: Hierarchy store
# ==============================================================================
PRIORITY_RANK = {p: i for i, p in enumerate(PRIORITIES)}


def _order_none(items):
    return list(items)


def _order_priority(items):
    return sorted(items, key=lambda x: PRIORITY_RANK.get(x.priority, len(PRIORITY_RANK)))


def _order_created(items):
    return sorted(items, key=lambda x: x.created_date or date.min)


SORT_ORDERS: dict[str, Callable] = {
    "none": _order_none,
    "manual": _order_none,
    "priority": _order_priority,
    "created": _order_created,
}


def resolve_sort_order(name: str | None) -> Callable:
    key = (name or "none").strip().lower()
    try:
        return SORT_ORDERS[key]
    except KeyError:
        raise ValidationError(f"unknown sort order {name!r} (known: {', '.join(sorted(SORT_ORDERS))})") from None


@dataclass
class TaskNode:
    task: Task
    label: str
    children: list[TaskNode] = field(default_factory=list)


@dataclass
class ProjectNode:
    project: Project
    number: int
    tasks: list[TaskNode] = field(default_factory=list)


class HierarchyStore:
    """Projects and their task trees, kept as two flat lists keyed by id."""

    def __init__(
        self,
        projects: Iterable[Project] | None = None,
        tasks: Iterable[Task] | None = None,
        calendar: CalendarLog | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.projects: list[Project] = list(projects or [])
        self.tasks: list[Task] = list(tasks or [])
        self.calendar = calendar if calendar is not None else CalendarLog()
        self._today = today

    # ── Lookups ─────────────────────────────────────────────────────────────
    def next_id(self) -> int:
        return next_id(self.projects, self.tasks)

    def get_project(self, project_id: int) -> Project | None:
        for p in self.projects:
            if p.id == project_id:
                return p
        return None

    def get_task(self, task_id: int) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def _active_task(self, task_id: int) -> Task | None:
        for t in self.tasks:
            if t.id == task_id and t.completed_date is None:
                return t
        return None

    def find_entity(self, entity_id: int) -> Project | Task | None:
        return self.get_project(entity_id) or self.get_task(entity_id)

    def children_of(self, task_id: int) -> list[Task]:
        return [t for t in self.tasks if t.parent_id == task_id]

    def descendants_of(self, task_id: int) -> list[Task]:
        """All transitive children, depth-first, deepest first within each branch."""
        out: list[Task] = []
        for child in self.children_of(task_id):
            out.extend(self.descendants_of(child.id))
            out.append(child)
        return out

    def list_projects(self) -> list[Project]:
        return list(self.projects)

    def resolve_parent(self, parent_id: int) -> tuple[Project, Task | None]:
        """Owning project and parent task for a new task; projects win over tasks."""
        project = self.get_project(parent_id)
        if project is not None:
            return project, None
        parent_task = self._active_task(parent_id)
        if parent_task is None:
            raise NotFoundError(f"no project or open task with id {parent_id}")
        project = self.get_project(parent_task.project_id)
        if project is None:
            raise NotFoundError(f"task {parent_task.id} refers to missing project {parent_task.project_id}")
        return project, parent_task

    # ── Creation ────────────────────────────────────────────────────────────
    def create_project(self, name: str, priority: str = "medium") -> Project:
        name = require_name(name, "project")
        _check_priority(priority)
        project = Project(id=self.next_id(), name=name, priority=priority, created_date=self._today())
        self.projects.append(project)
        diag({"msg": f"create_project id={project.id}", "id": project.id, "name": name})
        return project

    def create_task(
        self,
        parent_id: int,
        name: str,
        priority: str = "medium",
        repeat_type: str = "none",
    ) -> Task:
        project, parent_task = self.resolve_parent(parent_id)
        name = require_name(name, "task")
        _check_priority(priority)
        _check_repeat(repeat_type)

        if parent_task is not None:
            siblings = self.children_of(parent_task.id)
            level = parent_task.level + 1
        else:
            siblings = [t for t in self.tasks if t.project_id == project.id and t.parent_id is None]
            level = 1
        seq = max((t.task_id for t in siblings), default=0) + 1

        task = Task(
            id=self.next_id(),
            project_id=project.id,
            project_name=project.name,
            task_id=seq,
            name=name,
            level=level,
            priority=priority,
            repeat_type=repeat_type,
            created_date=self._today(),
            completed_date=None,
            parent_id=parent_task.id if parent_task is not None else None,
        )
        self.tasks.append(task)
        diag({"msg": f"create_task id={task.id} parent={parent_id} level={level}", "id": task.id, "name": name})
        return task

    # ── Completion ──────────────────────────────────────────────────────────
    def complete_task(self, task_id: int) -> tuple[Task, CalendarEntry]:
        task = self._active_task(task_id)
        if task is None:
            raise NotFoundError(f"no open task with id {task_id}")
        today = self._today()
        task.completed_date = today
        entry = self.calendar.record_completion(task, today)
        diag(f"complete_task id={task.id} date={entry.date} week={entry.week}")
        return task, entry

    # ── Deletion ────────────────────────────────────────────────────────────
    def delete_project(self, project_id: int, cascade_confirmed: bool = False) -> list[Task]:
        project = self.get_project(project_id)
        if project is None:
            raise NotFoundError(f"no project with id {project_id}")
        related = [t for t in self.tasks if t.project_id == project.id]
        if related and not cascade_confirmed:
            raise ConfirmationRequired(
                f"project {project.name!r} contains {len(related)} task(s)", count=len(related)
            )
        self.tasks[:] = [t for t in self.tasks if t.project_id != project.id]
        self.projects[:] = [p for p in self.projects if p.id != project.id]
        purged = self.calendar.purge_project(project.name)
        diag(f"delete_project id={project.id} tasks={len(related)} calendar={purged}")
        return related

    def delete_task(self, task_id: int, cascade_confirmed: bool = False) -> list[Task]:
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"no task with id {task_id}")
        children = self.children_of(task.id)
        if children and not cascade_confirmed:
            descendants = self.descendants_of(task.id)
            raise ConfirmationRequired(
                f"task {task.name!r} has {len(descendants)} subtask(s)",
                count=len(descendants),
                children=len(children),
            )
        removed: list[Task] = []
        self._delete_recursive(task.id, removed)
        diag(f"delete_task id={task.id} removed={len(removed)}")
        return removed

    def _delete_recursive(self, task_id: int, removed: list[Task]) -> None:
        for child in self.children_of(task_id):
            self._delete_recursive(child.id, removed)
        task = self.get_task(task_id)
        if task is None:
            return
        self.tasks[:] = [t for t in self.tasks if t.id != task_id]
        self.calendar.purge_task(task.name)
        removed.append(task)

    # ── Edits ───────────────────────────────────────────────────────────────
    def rename_project(self, project_id: int, new_name: str) -> Project:
        new_name = require_name(new_name, "project")
        project = self.get_project(project_id)
        if project is None:
            raise NotFoundError(f"no project with id {project_id}")
        old_name = project.name
        project.name = new_name
        for t in self.tasks:
            if t.project_id == project.id:
                t.project_name = new_name
        moved = self.calendar.rename_project(old_name, new_name)
        diag({"msg": f"rename_project id={project.id} calendar={moved}", "old_name": old_name, "new_name": new_name})
        return project

    def rename_task(self, task_id: int, new_name: str) -> Task:
        new_name = require_name(new_name, "task")
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"no task with id {task_id}")
        old_name = task.name
        task.name = new_name
        moved = self.calendar.rename_task(old_name, new_name)
        diag({"msg": f"rename_task id={task.id} calendar={moved}", "old_name": old_name, "new_name": new_name})
        return task

    def rename(self, entity_id: int, new_name: str) -> Project | Task:
        if self.get_project(entity_id) is not None:
            return self.rename_project(entity_id, new_name)
        if self.get_task(entity_id) is not None:
            return self.rename_task(entity_id, new_name)
        raise NotFoundError(f"no project or task with id {entity_id}")

    def set_priority(self, entity_id: int, priority: str) -> Project | Task:
        _check_priority(priority)
        item = self.find_entity(entity_id)
        if item is None:
            raise NotFoundError(f"no project or task with id {entity_id}")
        item.priority = priority
        diag(f"set_priority id={entity_id} priority={priority}")
        return item

    def set_repeat_type(self, task_id: int, repeat_type: str) -> Task:
        _check_repeat(repeat_type)
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"no task with id {task_id}")
        task.repeat_type = repeat_type
        diag(f"set_repeat_type id={task_id} repeat={repeat_type}")
        return task

    # ── Listing ─────────────────────────────────────────────────────────────
    def list_active_tree(self, sort_order: str | None = None) -> list[ProjectNode]:
        """Open tasks per project, nested by parent; sort_order=None keeps collection order."""
        order = resolve_sort_order(sort_order)
        forest = []
        for number, project in enumerate(self.projects, 1):
            top = [
                t for t in self.tasks
                if t.project_id == project.id and t.parent_id is None and t.completed_date is None
            ]
            node = ProjectNode(project=project, number=number)
            node.tasks = [self._active_node(t, number, order) for t in order(top)]
            forest.append(node)
        return forest

    def _active_node(self, task: Task, number: int, order: Callable) -> TaskNode:
        kids = [t for t in self.tasks if t.parent_id == task.id and t.completed_date is None]
        return TaskNode(
            task=task,
            label=f"[{number}.{task.task_id}]",
            children=[self._active_node(k, number, order) for k in order(kids)],
        )


def walk_tree(nodes: Iterable[TaskNode], depth: int = 0):
    """Yield (node, depth) pairs depth-first."""
    for node in nodes:
        yield node, depth
        yield from walk_tree(node.children, depth + 1)


# ==============================================================================
# SECTION: Storage adapters
# ==============================================================================
TODO_HEADERS = [
    "id", "project_id", "project_name", "task_id", "task_name", "level",
    "priority", "repeat_type", "created_date", "completed_date", "parent_id",
]
CALENDAR_HEADERS = ["date", "month", "week", "weekday", "day", "completed_task", "project_name"]
SETTINGS_HEADERS = ["key", "value"]


def _blank(v) -> bool:
    return v is None or str(v).strip() == ""


def _int(row: dict, key: str, path) -> int:
    try:
        return int(str(row.get(key)).strip())
    except (TypeError, ValueError) as e:
        raise StorageError(f"{path}: bad integer in column {key!r}: {row.get(key)!r}") from e


def _opt_int(row: dict, key: str, path) -> int | None:
    return None if _blank(row.get(key)) else _int(row, key, path)


def _date(row: dict, key: str, path) -> date:
    try:
        return date_parser.isoparse(str(row.get(key)).strip()).date()
    except (TypeError, ValueError, OverflowError) as e:
        raise StorageError(f"{path}: bad date in column {key!r}: {row.get(key)!r}") from e


def _opt_date(row: dict, key: str, path) -> date | None:
    return None if _blank(row.get(key)) else _date(row, key, path)


def _iso(d: date | None) -> str:
    return d.isoformat() if d else ""


def _read_rows(path) -> list[dict]:
    path = Path(path)
    if not path.exists():
        return []
    try:
        with open(path, "r", encoding="utf-8", newline="") as f:
            return list(csv.DictReader(f))
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise StorageError(f"cannot read {path}: {e}") from e


def _write_rows(path, headers: list[str], rows: Iterable[list]) -> None:
    """Rewrite the whole file atomically (temp file + os.replace)."""
    path = Path(path)
    tmpf = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmpf = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(headers)
            for row in rows:
                writer.writerow(["" if v is None else v for v in row])
        os.replace(tmpf, path)
        tmpf = None
    except OSError as e:
        raise StorageError(f"cannot write {path}: {e}") from e
    finally:
        if tmpf and os.path.exists(tmpf):
            try:
                os.unlink(tmpf)
            except OSError:
                pass


def default_settings(today: date | None = None) -> dict:
    today = today or date.today()
    return {
        "sort_order": _conf_str("sort_order", _DEFAULTS["sort_order"]),
        "current_quarter": quarter_label(today),
    }


def load_projects(path) -> list[Project]:
    out = []
    for row in _read_rows(path):
        if _int(row, "task_id", path) != 0:
            continue
        out.append(Project(
            id=_int(row, "id", path),
            name=row.get("project_name") or "",
            priority=row.get("priority") or "medium",
            created_date=_date(row, "created_date", path),
        ))
    return out


def load_tasks(path) -> list[Task]:
    out = []
    for row in _read_rows(path):
        if _int(row, "task_id", path) == 0:
            continue
        out.append(Task(
            id=_int(row, "id", path),
            project_id=_int(row, "project_id", path),
            project_name=row.get("project_name") or "",
            task_id=_int(row, "task_id", path),
            name=row.get("task_name") or "",
            level=_int(row, "level", path),
            priority=row.get("priority") or "medium",
            repeat_type=row.get("repeat_type") or "none",
            created_date=_date(row, "created_date", path),
            completed_date=_opt_date(row, "completed_date", path),
            parent_id=_opt_int(row, "parent_id", path),
        ))
    return out


def load_calendar_entries(path) -> list[CalendarEntry]:
    return [
        CalendarEntry(**{k: (row.get(k) or "") for k in CALENDAR_HEADERS})
        for row in _read_rows(path)
    ]


def load_settings(path) -> dict:
    out = {}
    for row in _read_rows(path):
        key = (row.get("key") or "").strip()
        if key:
            out[key] = row.get("value") or ""
    return out


def save_todo_data(path, projects: Iterable[Project], tasks: Iterable[Task]) -> None:
    rows = []
    for p in projects:
        # projects share the file with tasks; task_id 0 marks them
        rows.append([p.id, p.id, p.name, 0, "", 0, p.priority, "none", _iso(p.created_date), "", ""])
    for t in tasks:
        rows.append([
            t.id, t.project_id, t.project_name, t.task_id, t.name, t.level,
            t.priority, t.repeat_type, _iso(t.created_date), _iso(t.completed_date), t.parent_id,
        ])
    _write_rows(path, TODO_HEADERS, rows)


def save_calendar_entries(path, entries: Iterable[CalendarEntry]) -> None:
    _write_rows(path, CALENDAR_HEADERS, ([getattr(e, k) for k in CALENDAR_HEADERS] for e in entries))


def save_settings(path, settings: dict) -> None:
    _write_rows(path, SETTINGS_HEADERS, ([k, v] for k, v in settings.items()))


# ==============================================================================
# SECTION: Application state
# ==============================================================================
@dataclass
class DataPaths:
    todo: Path
    calendar: Path
    settings: Path

    @classmethod
    def in_dir(cls, base: str | os.PathLike | None = None) -> DataPaths:
        root = Path(base).expanduser() if base else data_dir()
        return cls(
            todo=root / _conf_str("todo_file", _DEFAULTS["todo_file"]),
            calendar=root / _conf_str("calendar_file", _DEFAULTS["calendar_file"]),
            settings=root / _conf_str("settings_file", _DEFAULTS["settings_file"]),
        )

    @property
    def root(self) -> Path:
        return self.todo.parent


def init_files(paths: DataPaths, today: date | None = None) -> list[Path]:
    """Create any missing data file with its header row (settings get defaults)."""
    created = []
    if not paths.todo.exists():
        _write_rows(paths.todo, TODO_HEADERS, [])
        created.append(paths.todo)
    if not paths.calendar.exists():
        _write_rows(paths.calendar, CALENDAR_HEADERS, [])
        created.append(paths.calendar)
    if not paths.settings.exists():
        save_settings(paths.settings, default_settings(today))
        created.append(paths.settings)
    for p in created:
        diag(f"initialised {p}", base=paths.root)
    return created


class AppState:
    """One interactive session: the store, its calendar log, and the settings map."""

    def __init__(
        self,
        store: HierarchyStore | None = None,
        config: dict | None = None,
        paths: DataPaths | None = None,
    ):
        self.store = store if store is not None else HierarchyStore()
        self.config = dict(config) if config is not None else default_settings()
        self.paths = paths

    @property
    def calendar(self) -> CalendarLog:
        return self.store.calendar

    @property
    def sort_order(self) -> str:
        return self.config.get("sort_order") or _conf_str("sort_order", _DEFAULTS["sort_order"])

    @classmethod
    def open(cls, paths: DataPaths | None = None, today: Callable[[], date] = date.today) -> AppState:
        paths = paths or DataPaths.in_dir()
        init_files(paths, today())
        projects = load_projects(paths.todo)
        tasks = load_tasks(paths.todo)
        entries = load_calendar_entries(paths.calendar)
        settings = load_settings(paths.settings)
        store = HierarchyStore(projects, tasks, CalendarLog(entries), today=today)
        diag(
            f"loaded projects={len(projects)} tasks={len(tasks)} entries={len(entries)}",
            base=paths.root,
        )
        return cls(store, settings, paths)

    def export(self) -> dict:
        """Snapshot copies of every collection."""
        return {
            "projects": [dataclasses.replace(p) for p in self.store.projects],
            "tasks": [dataclasses.replace(t) for t in self.store.tasks],
            "calendar": [dataclasses.replace(e) for e in self.calendar.entries],
            "config": dict(self.config),
        }

    def replace(
        self,
        projects: Iterable[Project],
        tasks: Iterable[Task],
        entries: Iterable[CalendarEntry],
        config: dict | None = None,
    ) -> None:
        self.store.projects[:] = list(projects)
        self.store.tasks[:] = list(tasks)
        self.calendar.entries[:] = list(entries)
        if config is not None:
            self.config = dict(config)

    def flush(self) -> None:
        if self.paths is None:
            raise StorageError("no data paths configured for this session")
        save_todo_data(self.paths.todo, self.store.projects, self.store.tasks)
        save_calendar_entries(self.paths.calendar, self.calendar.entries)
        save_settings(self.paths.settings, self.config)
        diag(
            f"saved projects={len(self.store.projects)} tasks={len(self.store.tasks)} "
            f"entries={len(self.calendar.entries)}",
            base=self.paths.root,
        )
