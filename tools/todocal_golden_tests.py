#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
todocal Golden Tests
 - Imports local todocal_core.py / todocal_navigator.py
 - Verifies id allocation, tree invariants, cascading deletes, name
   propagation into the calendar log, week-category runs and cell layout
 - Storage, config and health-check checks run against temp directories

Run:
  python3 todocal_golden_tests.py
Optional:
  python3 todocal_golden_tests.py --only calendar --verbose
"""

import importlib
import io
import os
import sys
import tempfile
from contextlib import contextmanager
from datetime import date
from pathlib import Path

HERE = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, HERE)
sys.path.insert(0, os.path.dirname(HERE))

core = importlib.import_module("todocal_core")

FIXED_DAY = date(2026, 10, 14)  # a Wednesday

# -------- Helpers -------------------------------------------------------------

def expect(cond, msg):
    if not cond:
        raise AssertionError(msg)

def raises(exc_type, fn, *args, **kwargs):
    try:
        fn(*args, **kwargs)
    except exc_type as e:
        return e
    raise AssertionError(f"{getattr(fn, '__name__', fn)} did not raise {exc_type.__name__}")

def new_store(day=FIXED_DAY):
    return core.HierarchyStore(today=lambda: day)

def sample_tree():
    """Project 'Launch' with Design(-> Mockups -> Icons) and Build."""
    store = new_store()
    launch = store.create_project("Launch", "high")
    design = store.create_task(launch.id, "Design", "medium")
    mockups = store.create_task(design.id, "Mockups")
    icons = store.create_task(mockups.id, "Icons")
    build = store.create_task(launch.id, "Build", "low")
    return store, launch, design, mockups, icons, build

@contextmanager
def env(**values):
    old = {k: os.environ.get(k) for k in values}
    try:
        for k, v in values.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
        yield
    finally:
        for k, v in old.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v

def data_paths(tmp):
    return core.DataPaths(
        todo=Path(tmp) / ".todo_data.csv",
        calendar=Path(tmp) / ".todo_calendar.csv",
        settings=Path(tmp) / ".todo_config.csv",
    )

# -------- Identity allocation -------------------------------------------------

def test_next_id_empty_is_one():
    expect(core.next_id([], []) == 1, "empty collections start at 1")

def test_next_id_spans_projects_and_tasks():
    projects = [core.Project(7, "P", "low", FIXED_DAY)]
    tasks = [core.Task(12, 7, "P", 1, "T", 1, "low", "none", FIXED_DAY)]
    expect(core.next_id(projects, tasks) == 13, "max over both collections + 1")
    expect(core.next_id(projects, []) == 8, "projects alone")

def test_next_id_strictly_increasing_over_creates():
    store = new_store()
    seen = []
    p = store.create_project("A", "high")
    seen.append(p.id)
    parent = p.id
    for i in range(6):
        if i % 2:
            item = store.create_project(f"P{i}", "low")
        else:
            item = store.create_task(parent, f"T{i}")
            parent = item.id
        expect(item.id > max(seen), f"id {item.id} not above {max(seen)}")
        seen.append(item.id)
    expect(len(set(seen)) == len(seen), "ids must be unique")

# -------- Creation ------------------------------------------------------------

def test_create_project_validation():
    store = new_store()
    raises(core.ValidationError, store.create_project, "", "high")
    raises(core.ValidationError, store.create_project, "X", "urgent")
    expect(store.projects == [], "rejected creates must not mutate")
    p = store.create_project("Launch", "high")
    expect(p.created_date == FIXED_DAY and p.id == 1, "project fields")

def test_create_task_levels_and_links():
    store, launch, design, mockups, icons, build = sample_tree()
    expect(design.level == 1 and design.parent_id is None, "level-1 task has no parent_id")
    expect(mockups.level == 2 and mockups.parent_id == design.id, "level 2 under design")
    expect(icons.level == 3 and icons.parent_id == mockups.id, "level 3 under mockups")
    for t in (design, mockups, icons, build):
        expect(t.project_id == launch.id, "owning project inherited through the tree")
        expect(t.project_name == "Launch", "project name mirrored")
        expect(t.repeat_type == "none" and t.completed_date is None, "defaults")

def test_create_task_under_completed_task_fails():
    store = new_store()
    p = store.create_project("Launch", "high")
    t = store.create_task(p.id, "Design")
    child = store.create_task(t.id, "Sketch")
    expect(child.parent_id == t.id, "open task is an eligible parent")
    store.complete_task(t.id)
    raises(core.NotFoundError, store.create_task, t.id, "Late child")
    expect(len(store.tasks) == 2, "no task added on failure")

def test_create_task_unknown_parent_and_empty_name():
    store = new_store()
    p = store.create_project("Launch", "high")
    raises(core.NotFoundError, store.create_task, 999, "Orphan")
    raises(core.ValidationError, store.create_task, p.id, "")
    raises(core.ValidationError, store.create_task, p.id, "X", "medium", "yearly")
    expect(store.tasks == [], "nothing created")

def test_sibling_task_ids_not_reused_after_middle_delete():
    store = new_store()
    p = store.create_project("Launch", "high")
    a = store.create_task(p.id, "one")
    b = store.create_task(p.id, "two")
    c = store.create_task(p.id, "three")
    expect([a.task_id, b.task_id, c.task_id] == [1, 2, 3], "siblings numbered from 1")
    store.delete_task(b.id)
    d = store.create_task(p.id, "four")
    expect(d.task_id == 4, f"expected task_id 4, got {d.task_id}")

def test_sibling_sequence_scoped_to_parent():
    store, launch, design, mockups, icons, build = sample_tree()
    expect((design.task_id, build.task_id) == (1, 2), "level-1 siblings share the project scope")
    expect(mockups.task_id == 1 and icons.task_id == 1, "each parent starts its own sequence")
    extra = store.create_task(design.id, "Copy")
    expect(extra.task_id == 2, "second child of design")
    other = store.create_project("Other", "low")
    expect(store.create_task(other.id, "first").task_id == 1, "new project starts at 1")

# -------- Completion ----------------------------------------------------------

def test_complete_twice_fails_and_logs_once():
    store, launch, design, *_ = sample_tree()
    task, entry = store.complete_task(design.id)
    expect(task.completed_date == FIXED_DAY, "completed today")
    raises(core.NotFoundError, store.complete_task, design.id)
    expect(len(store.calendar) == 1, "exactly one entry per completion")
    raises(core.NotFoundError, store.complete_task, launch.id)

def test_calendar_entry_fields():
    store, launch, design, *_ = sample_tree()
    _, entry = store.complete_task(design.id)
    expect(entry.date == "2026-10-14", entry.date)
    expect(entry.month == "10" and entry.day == "14", "month zero-padded, day not")
    expect(entry.weekday == "Wednesday" and entry.week == "TueWed", "weekday/category")
    expect((entry.completed_task, entry.project_name) == ("Design", "Launch"), "name copies")

# -------- Rename / priority / repeat ------------------------------------------

def test_rename_project_propagates_to_tasks_and_history():
    store, launch, design, mockups, icons, build = sample_tree()
    store.complete_task(build.id)
    store.rename_project(launch.id, "Go-Live")
    expect(all(t.project_name == "Go-Live" for t in store.tasks), "every task mirror updated")
    expect(store.calendar.entries[0].project_name == "Go-Live", "history follows old name")

def test_rename_task_propagates_to_history():
    store, launch, design, *_ = sample_tree()
    store.complete_task(design.id)
    store.rename_task(design.id, "UX")
    expect(store.get_task(design.id).name == "UX", "task renamed")
    expect(store.calendar.entries[0].completed_task == "UX", "history renamed")

def test_rename_dispatch_and_validation():
    store, launch, design, *_ = sample_tree()
    expect(isinstance(store.rename(launch.id, "L2"), core.Project), "project first")
    expect(isinstance(store.rename(design.id, "D2"), core.Task), "then task")
    raises(core.NotFoundError, store.rename, 999, "x")
    raises(core.ValidationError, store.rename_project, launch.id, "")
    expect(store.get_project(launch.id).name == "L2", "empty rename leaves name")

def test_set_priority_and_repeat():
    store, launch, design, mockups, *_ = sample_tree()
    store.complete_task(design.id)
    store.set_priority(design.id, "low")
    expect(store.get_task(design.id).priority == "low", "completed task still editable")
    store.set_priority(launch.id, "medium")
    expect(launch.priority == "medium", "project priority")
    raises(core.NotFoundError, store.set_priority, 999, "low")
    raises(core.ValidationError, store.set_priority, launch.id, "urgent")
    store.set_repeat_type(mockups.id, "weekly")
    expect(mockups.repeat_type == "weekly", "repeat stored")
    raises(core.NotFoundError, store.set_repeat_type, launch.id, "daily")

def test_menu_shorthand_keys():
    expect(core.priority_from_key("h") == "high", "h")
    expect(core.priority_from_key("", "medium") == "medium", "default on empty")
    expect(core.repeat_from_key("m") == "monthly", "m is monthly for repeats")
    raises(core.ValidationError, core.priority_from_key, "x")
    raises(core.ValidationError, core.repeat_from_key, "")

# -------- Deletion ------------------------------------------------------------

def test_delete_task_requires_confirmation():
    store, launch, design, mockups, icons, build = sample_tree()
    before = list(store.tasks)
    err = raises(core.ConfirmationRequired, store.delete_task, design.id)
    expect(err.count == 2 and err.children == 1, f"count={err.count} children={err.children}")
    expect(store.tasks == before, "unconfirmed delete must not mutate")

def test_delete_task_cascade_removes_descendants_and_history():
    store, launch, design, mockups, icons, build = sample_tree()
    store.complete_task(icons.id)
    store.complete_task(build.id)
    removed = store.delete_task(design.id, cascade_confirmed=True)
    expect({t.id for t in removed} == {design.id, mockups.id, icons.id}, "whole subtree removed")
    for t in removed:
        expect(store.get_task(t.id) is None, f"task {t.id} still resolvable")
    expect([e.completed_task for e in store.calendar.entries] == ["Build"], "only subtree history purged")
    expect(store.get_task(build.id) is not None, "sibling survives")

def test_delete_leaf_task_purges_history_by_name():
    store = new_store()
    p = store.create_project("Launch", "high")
    a = store.create_task(p.id, "Review")
    b = store.create_task(p.id, "Review")
    store.complete_task(b.id)
    store.delete_task(a.id)
    expect(len(store.calendar) == 0, "name match purges history of a same-named task")
    raises(core.NotFoundError, store.delete_task, a.id)

def test_delete_project_confirmation_and_cascade():
    store, launch, design, *_ = sample_tree()
    store.complete_task(design.id)
    err = raises(core.ConfirmationRequired, store.delete_project, launch.id)
    expect(err.count == 4, f"all tasks counted regardless of state, got {err.count}")
    expect(len(store.projects) == 1 and len(store.tasks) == 4, "no mutation")
    store.delete_project(launch.id, cascade_confirmed=True)
    expect(store.projects == [] and store.tasks == [], "project and tasks removed")
    expect(len(store.calendar) == 0, "project history removed")

def test_delete_project_purges_history_by_name_only():
    store = new_store()
    alpha = store.create_project("Alpha", "high")
    beta = store.create_project("Beta", "low")
    a = store.create_task(alpha.id, "a")
    b = store.create_task(beta.id, "b")
    store.complete_task(a.id)
    store.complete_task(b.id)
    store.rename_project(beta.id, "Alpha")
    store.delete_project(alpha.id, cascade_confirmed=True)
    expect(len(store.calendar) == 0, "same-named project history goes too")
    expect(store.get_task(b.id) is not None, "other project's tasks untouched")

def test_delete_empty_project_without_confirmation():
    store = new_store()
    p = store.create_project("Empty", "low")
    store.calendar.entries.append(core.CalendarEntry(
        date="2026-10-01", month="10", week="ThuFri", weekday="Thursday",
        day="1", completed_task="old chore", project_name="Empty",
    ))
    store.delete_project(p.id)
    expect(store.projects == [], "removed")
    expect(len(store.calendar) == 0, "history under the project name purged even without tasks")
    raises(core.NotFoundError, store.delete_project, p.id)

# -------- Listing -------------------------------------------------------------

def test_list_active_tree_order_and_filter():
    store, launch, design, mockups, icons, build = sample_tree()
    other = store.create_project("Other", "low")
    done = store.create_task(other.id, "done")
    store.complete_task(done.id)
    store.complete_task(icons.id)
    forest = store.list_active_tree()
    expect([n.project.name for n in forest] == ["Launch", "Other"], "projects in order")
    expect([n.number for n in forest] == [1, 2], "1-based numbering")
    flat = [(node.task.name, depth) for node, depth in core.walk_tree(forest[0].tasks)]
    expect(flat == [("Design", 0), ("Mockups", 1), ("Build", 0)], f"depth-first, got {flat}")
    expect(forest[1].tasks == [], "completed tasks hidden")
    expect(forest[0].tasks[1].label == "[1.2]", forest[0].tasks[1].label)

def test_list_active_tree_priority_sort():
    store = new_store()
    p = store.create_project("P", "high")
    store.create_task(p.id, "low one", "low")
    store.create_task(p.id, "high one", "high")
    store.create_task(p.id, "medium one", "medium")
    store.create_task(p.id, "high two", "high")
    names = [n.task.name for n in store.list_active_tree("priority")[0].tasks]
    expect(names == ["high one", "high two", "medium one", "low one"], f"stable priority sort: {names}")
    names = [n.task.name for n in store.list_active_tree()[0].tasks]
    expect(names[0] == "low one", "default keeps collection order")
    raises(core.ValidationError, store.list_active_tree, "alphabetical")

# -------- Calendar ------------------------------------------------------------

def test_weekday_category_mapping_for_every_day():
    cats = {}
    for day in range(1, 32):
        d = date(2026, 10, day)
        cats.setdefault(core.WEEKDAY_NAMES[d.weekday()], set()).add(core.category_for(d))
    expect(all(len(v) == 1 for v in cats.values()), "a weekday always maps to one category")
    a = cats["Saturday"] | cats["Sunday"] | cats["Monday"]
    b = cats["Tuesday"] | cats["Wednesday"]
    c = cats["Thursday"] | cats["Friday"]
    expect(len(a) == len(b) == len(c) == 1 and len(a | b | c) == 3, "three distinct groups")
    raises(ValueError, core.weekday_category, "Funday")

def test_month_report_runs():
    groups = core.build_month_report(2026, 10, [])
    expect(len(groups) == 14, f"14 runs in Oct 2026, got {len(groups)}")
    expect([g.number for g in groups] == list(range(1, 15)), "numbered in order")
    expect(groups[0].category == "ThuFri" and groups[0].day_numbers == [1, 2], "Oct 1 is a Thursday")
    expect(groups[1].day_numbers == [3, 4, 5], "Sat/Sun/Mon run")
    expect(groups[-1].category == "SatSunMon" and groups[-1].day_numbers == [31], "single-day tail run")
    expect(sum(len(g.days) for g in groups) == 31, "every day covered once")
    expect(all(g.pairs == [core.PLACEHOLDER_PAIR] for g in groups), "placeholders when empty")

def test_month_report_february_leap_year():
    groups = core.build_month_report(2024, 2, [])
    expect(groups[-1].days[-1] == date(2024, 2, 29), "last day of a leap February")

def test_end_to_end_launch_design():
    store = new_store()
    launch = store.create_project("Launch", "high")
    design = store.create_task(launch.id, "Design", "medium")
    store.complete_task(design.id)
    groups = core.build_month_report(2026, 10, store.calendar.entries_for_month(2026, 10))
    real = [(g.number, pair) for g in groups for pair in g.pairs if pair != core.PLACEHOLDER_PAIR]
    expect(real == [(6, ("Design", "Launch"))], f"one pair in the run covering the 14th: {real}")
    for g in groups:
        if 14 not in g.day_numbers:
            expect(g.pairs == [("-", "-")], f"run {g.number} should be empty")
    expect(store.calendar.entries_for_month(2026, 9) == [], "other months filtered out")

# -------- Table renderer ------------------------------------------------------

def test_format_cell_double_width():
    cell = core.format_cell("アプリ開発", 10)
    expect(cell == "アプリ開発", repr(cell))
    expect(core.display_width(cell) == 10, "exact width")
    expect(core.format_cell("abc", 5) == "abc  ", "ascii padding")

def test_format_cell_truncation():
    cell = core.format_cell("アプリケーション開発", 10)
    expect(cell == "アプリ... ", repr(cell))
    expect(core.display_width(cell) == 10, "truncated cell still exact width")
    expect(core.format_cell("abcdefghijkl", 10) == "abcdefg...", "ascii truncation")

def test_char_width_lone_surrogate():
    expect(core.char_width("\ud800") == 2, "surrogate counts as wide")
    cell = core.format_cell("a\ud800b", 6)
    expect(core.display_width(cell) == 6, repr(cell))

def test_require_name_public():
    raises(core.ValidationError, core.require_name, "", "task")
    raises(core.ValidationError, core.require_name, None, "project")
    expect(core.require_name("Write", "task") == "Write", "passes through")

def test_render_week_group_rows():
    group = core.WeekGroup(
        number=3,
        category="TueWed",
        days=[date(2026, 10, 6), date(2026, 10, 7)],
        pairs=[("A", "P"), ("B", "Q")],
    )
    lines = core.render_week_group(group)
    expect(len(lines) == 3 and lines[-1] == core.CALENDAR_SEPARATOR, "rows + separator")
    expect(lines[0].startswith("3   | TueWed   | 6, 7        | A"), repr(lines[0]))
    expect(lines[1].startswith("    |          |             | B"), repr(lines[1]))
    widths = {core.display_width(line) for line in lines[:2]}
    expect(widths == {core.display_width(core.CALENDAR_SEPARATOR) - 1}, f"aligned rows: {widths}")

def test_render_month_has_header():
    lines = core.render_month(core.build_month_report(2026, 10, []))
    expect(lines[0].startswith("Week| Category "), repr(lines[0]))
    expect(lines[1] == core.CALENDAR_SEPARATOR, "separator under header")

# -------- Storage / state -----------------------------------------------------

def test_storage_round_trip_fidelity():
    store, launch, design, mockups, icons, build = sample_tree()
    store.complete_task(icons.id)
    with tempfile.TemporaryDirectory() as tmp:
        paths = data_paths(tmp)
        core.save_todo_data(paths.todo, store.projects, store.tasks)
        core.save_calendar_entries(paths.calendar, store.calendar.entries)
        expect(core.load_projects(paths.todo) == store.projects, "projects survive")
        expect(core.load_tasks(paths.todo) == store.tasks, "tasks survive (None markers kept)")
        expect(core.load_calendar_entries(paths.calendar) == store.calendar.entries, "entries survive")
        header = paths.todo.read_text(encoding="utf-8").splitlines()[0]
        expect(header == ",".join(core.TODO_HEADERS), header)
        row = paths.todo.read_text(encoding="utf-8").splitlines()[1]
        expect(row == f"{launch.id},{launch.id},Launch,0,,0,high,none,2026-10-14,,", row)

def test_storage_malformed_row_raises():
    with tempfile.TemporaryDirectory() as tmp:
        paths = data_paths(tmp)
        paths.todo.write_text(
            ",".join(core.TODO_HEADERS) + "\n" + "x,1,P,0,,0,high,none,2026-10-14,,\n",
            encoding="utf-8",
        )
        raises(core.StorageError, core.load_projects, paths.todo)

def test_app_state_open_initialises_and_flushes():
    with tempfile.TemporaryDirectory() as tmp:
        paths = data_paths(tmp)
        state = core.AppState.open(paths, today=lambda: FIXED_DAY)
        expect(paths.todo.exists() and paths.calendar.exists(), "files initialised")
        expect(state.config["current_quarter"] == "2026-Q4", state.config)
        expect(state.sort_order in core.SORT_ORDERS, state.sort_order)
        p = state.store.create_project("Launch", "high")
        t = state.store.create_task(p.id, "Design")
        state.store.complete_task(t.id)
        state.config["custom"] = "kept"
        state.flush()
        again = core.AppState.open(paths, today=lambda: FIXED_DAY)
        expect(len(again.store.tasks) == 1 and len(again.calendar) == 1, "reloaded")
        expect(again.config["custom"] == "kept", "unknown settings preserved")
        expect(again.store.next_id() == 3, "next id from loaded data")

def test_app_state_export_is_snapshot_and_replace_swaps():
    store, launch, *_ = sample_tree()
    state = core.AppState(store, {"sort_order": "none"})
    snap = state.export()
    snap["projects"][0].name = "Changed"
    expect(launch.name == "Launch", "export returns copies")
    state.replace([], [], [])
    expect(store.projects == [] and store.tasks == [], "replace swaps collections")
    raises(core.StorageError, state.flush)

def test_load_config_from_env_toml():
    with tempfile.TemporaryDirectory() as tmp:
        cfg_path = os.path.join(tmp, "todocal.toml")
        with open(cfg_path, "w", encoding="utf-8") as f:
            f.write('SORT_ORDER = "created"\ndata_dir = "/srv/todo"\n')
        with env(TODOCAL_CONFIG=cfg_path, TODOCAL_DIAG=None):
            cfg = core._load_config()
        expect(cfg["sort_order"] == "created", "keys are case-insensitive")
        expect(cfg["data_dir"] == "/srv/todo" and cfg["_source"] == os.path.abspath(cfg_path), cfg)
        expect(cfg["calendar_file"] == ".todo_calendar.csv", "defaults fill the rest")
        with open(cfg_path, "w", encoding="utf-8") as f:
            f.write("sort_order = = 1\n")
        with env(TODOCAL_CONFIG=cfg_path):
            raises(RuntimeError, core._load_config)

def test_diag_log_redacts_names():
    with tempfile.TemporaryDirectory() as tmp:
        with env(TODOCAL_DIAG_LOG="1", TODOCAL_DIAG=None):
            core.diag({"msg": "rename_task id=3", "old_name": "Secret", "id": 3}, base=tmp)
        log = Path(tmp) / ".todocal_diag.jsonl"
        text = log.read_text(encoding="utf-8")
        expect("Secret" not in text and "[redacted]" in text, text)
        expect('"msg":"rename_task id=3"' in text, text)

# -------- Navigator / tools ---------------------------------------------------

def test_navigator_scripted_session():
    from rich.console import Console
    nav_mod = importlib.import_module("todocal_navigator")
    answers = iter(["t", "p", "Launch", "h", "t", "1", "Design", "", "", "f", "2", "r",
                    "c", "1", "r", "q"])

    def ask(message, choices=None):
        try:
            return next(answers)
        except StopIteration:
            raise EOFError()

    with tempfile.TemporaryDirectory() as tmp:
        paths = data_paths(tmp)
        state = core.AppState.open(paths, today=lambda: FIXED_DAY)
        buf = io.StringIO()
        out = Console(file=buf, width=200, color_system=None)
        nav = nav_mod.TodoNavigator(state, ask=ask, out=out, today=lambda: FIXED_DAY)
        expect(nav.run() == 0, "clean exit")
        tasks = core.load_tasks(paths.todo)
        expect(len(tasks) == 1 and tasks[0].completed_date == FIXED_DAY, "completion saved")
        entries = core.load_calendar_entries(paths.calendar)
        expect([(e.completed_task, e.project_name) for e in entries] == [("Design", "Launch")], "history saved")
        printed = buf.getvalue()
        expect("2026/10 completion history" in printed, "calendar shown")
        expect(any(line.startswith("6   | TueWed") and "Design" in line for line in printed.splitlines()),
               "completed pair rendered in its run")

def _scripted_navigator(tmp, script, asked):
    from rich.console import Console
    nav_mod = importlib.import_module("todocal_navigator")
    answers = iter(script)

    def ask(message, choices=None):
        asked.append(message)
        try:
            return next(answers)
        except StopIteration:
            raise EOFError()

    state = core.AppState.open(data_paths(tmp), today=lambda: FIXED_DAY)
    out = Console(file=io.StringIO(), width=200, color_system=None)
    return nav_mod.TodoNavigator(state, ask=ask, out=out, today=lambda: FIXED_DAY)

def test_navigator_calendar_pick_q_leaves_calendar():
    asked = []
    with tempfile.TemporaryDirectory() as tmp:
        nav = _scripted_navigator(tmp, ["c", "3", "q", "q"], asked)
        expect(nav.run() == 0, "clean exit")
    month_menus = [m for m in asked if m.startswith("Month (1:")]
    expect(len(month_menus) == 1, f"q at the year prompt returns to the main menu: {asked}")
    expect(asked[-1].startswith("Choose a mode"), asked[-1])

def test_navigator_rename_prompt_shows_raw_name():
    asked = []
    with tempfile.TemporaryDirectory() as tmp:
        nav = _scripted_navigator(tmp, ["t", "rm", "1", "Plan", "q"], asked)
        nav.store.create_project("Plan [v2]", "low")
        expect(nav.run() == 0, "clean exit")
        expect(nav.store.projects[0].name == "Plan", "renamed")
    expect(any(m.startswith("New name for 'Plan [v2]'") for m in asked), asked)

def test_navigator_parse_month():
    nav_mod = importlib.import_module("todocal_navigator")
    expect(nav_mod._parse_month("2026-03") == (2026, 3), "YYYY-MM")
    expect(nav_mod._parse_month("2026/12") == (2026, 12), "YYYY/MM")
    raises(core.ValidationError, nav_mod._parse_month, "2026-13")
    raises(core.ValidationError, nav_mod._parse_month, "march")

def test_health_check_flags_drift_and_orphans():
    hc = importlib.import_module("todocal_health_check")
    with tempfile.TemporaryDirectory() as tmp:
        paths = data_paths(tmp)
        store, *_ = sample_tree()
        core.save_todo_data(paths.todo, store.projects, store.tasks)
        status, _checks = hc.evaluate(hc.collect_metrics(paths))
        expect(status == "ok", f"clean tree should be ok, got {status}")

        project = core.Project(1, "Alpha", "high", FIXED_DAY)
        drifted = core.Task(2, 1, "Old", 1, "a", 1, "low", "none", FIXED_DAY)
        orphan = core.Task(3, 1, "Alpha", 1, "b", 2, "low", "none", FIXED_DAY, None, 99)
        core.save_todo_data(paths.todo, [project], [drifted, orphan])
        metrics = hc.collect_metrics(paths)
        expect(metrics["mirror_drift"] == 1 and metrics["orphan_parents"] == 1, metrics)
        status, _checks = hc.evaluate(metrics)
        expect(status == "crit", status)


TESTS = [
    test_next_id_empty_is_one,
    test_next_id_spans_projects_and_tasks,
    test_next_id_strictly_increasing_over_creates,
    test_create_project_validation,
    test_create_task_levels_and_links,
    test_create_task_under_completed_task_fails,
    test_create_task_unknown_parent_and_empty_name,
    test_sibling_task_ids_not_reused_after_middle_delete,
    test_sibling_sequence_scoped_to_parent,
    test_complete_twice_fails_and_logs_once,
    test_calendar_entry_fields,
    test_rename_project_propagates_to_tasks_and_history,
    test_rename_task_propagates_to_history,
    test_rename_dispatch_and_validation,
    test_set_priority_and_repeat,
    test_menu_shorthand_keys,
    test_delete_task_requires_confirmation,
    test_delete_task_cascade_removes_descendants_and_history,
    test_delete_leaf_task_purges_history_by_name,
    test_delete_project_confirmation_and_cascade,
    test_delete_project_purges_history_by_name_only,
    test_delete_empty_project_without_confirmation,
    test_list_active_tree_order_and_filter,
    test_list_active_tree_priority_sort,
    test_weekday_category_mapping_for_every_day,
    test_month_report_runs,
    test_month_report_february_leap_year,
    test_end_to_end_launch_design,
    test_format_cell_double_width,
    test_format_cell_truncation,
    test_char_width_lone_surrogate,
    test_require_name_public,
    test_render_week_group_rows,
    test_render_month_has_header,
    test_storage_round_trip_fidelity,
    test_storage_malformed_row_raises,
    test_app_state_open_initialises_and_flushes,
    test_app_state_export_is_snapshot_and_replace_swaps,
    test_load_config_from_env_toml,
    test_diag_log_redacts_names,
    test_navigator_scripted_session,
    test_navigator_calendar_pick_q_leaves_calendar,
    test_navigator_rename_prompt_shows_raw_name,
    test_navigator_parse_month,
    test_health_check_flags_drift_and_orphans,
]

def main():
    import argparse
    ap = argparse.ArgumentParser()
    ap.add_argument("--only", help="substring filter for test names")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()

    selected = TESTS
    if args.only:
        selected = [fn for fn in TESTS if args.only.lower() in fn.__name__.lower()]

    fails = 0
    for fn in selected:
        try:
            fn()
            if args.verbose:
                print(f"✓ {fn.__name__}")
        except AssertionError as e:
            fails += 1
            print(f"✗ {fn.__name__}: {e}")
        except Exception as e:
            fails += 1
            print(f"✗ {fn.__name__}: unexpected error {e}")

    total = len(selected)
    print(f"\nDone: {total - fails}/{total} passing")
    sys.exit(1 if fails else 0)

if __name__ == "__main__":
    main()
