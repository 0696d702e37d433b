#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Integrity health check for a todocal data directory."""

from __future__ import annotations

import argparse
import importlib
import json
import os
import sys
import time
from pathlib import Path

HERE = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(HERE))

core = importlib.import_module("todocal_core")


def _safe_stat(path: Path) -> tuple[int, float]:
    try:
        if not path.exists():
            return 0, 0.0
        st = path.stat()
        return int(st.st_size), float(st.st_mtime)
    except OSError:
        return -1, 0.0


def collect_metrics(paths) -> dict:
    """Count rows and relational defects; raises core.StorageError on unreadable files."""
    projects = core.load_projects(paths.todo)
    tasks = core.load_tasks(paths.todo)
    entries = core.load_calendar_entries(paths.calendar)

    by_project = {p.id: p for p in projects}
    by_task = {t.id: t for t in tasks}
    ids = [p.id for p in projects] + [t.id for t in tasks]
    project_names = {p.name for p in projects}

    orphan_tasks = [t for t in tasks if t.project_id not in by_project]
    mirror_drift = [
        t for t in tasks
        if t.project_id in by_project and t.project_name != by_project[t.project_id].name
    ]
    orphan_parents = [t for t in tasks if t.parent_id is not None and t.parent_id not in by_task]
    level_mismatch = []
    for t in tasks:
        if t.parent_id is None:
            if t.level != 1:
                level_mismatch.append(t)
        elif t.parent_id in by_task and t.level != by_task[t.parent_id].level + 1:
            level_mismatch.append(t)
    orphan_entries = [e for e in entries if e.project_name not in project_names]

    todo_bytes, todo_mtime = _safe_stat(paths.todo)
    return {
        "projects": len(projects),
        "tasks": len(tasks),
        "active_tasks": sum(1 for t in tasks if t.completed_date is None),
        "calendar_entries": len(entries),
        "next_id": core.next_id(projects, tasks),
        "duplicate_ids": len(ids) - len(set(ids)),
        "orphan_tasks": len(orphan_tasks),
        "orphan_parents": len(orphan_parents),
        "level_mismatch": len(level_mismatch),
        "mirror_drift": len(mirror_drift),
        "orphan_calendar_entries": len(orphan_entries),
        "todo_bytes": todo_bytes,
        "todo_age_s": max(0, int(time.time() - todo_mtime)) if todo_mtime > 0 else 0,
    }


def _add_check(checks: list[dict], name: str, value: int | float, warn: int | float, crit: int | float) -> None:
    if value < 0:
        checks.append({"name": name, "value": value, "status": "warn", "message": "unreadable"})
        return
    if value >= crit:
        status = "crit"
    elif value >= warn:
        status = "warn"
    else:
        status = "ok"
    checks.append({"name": name, "value": value, "status": status, "warn": warn, "crit": crit})


def evaluate(metrics: dict, orphan_entry_warn: int = 1) -> tuple[str, list[dict]]:
    checks: list[dict] = []
    # structural defects break tree operations; drift only affects display
    _add_check(checks, "duplicate_ids", metrics["duplicate_ids"], 1, 1)
    _add_check(checks, "orphan_tasks", metrics["orphan_tasks"], 1, 1)
    _add_check(checks, "orphan_parents", metrics["orphan_parents"], 1, 1)
    _add_check(checks, "level_mismatch", metrics["level_mismatch"], 1, 10)
    _add_check(checks, "mirror_drift", metrics["mirror_drift"], 1, 10)
    _add_check(checks, "orphan_calendar_entries", metrics["orphan_calendar_entries"], orphan_entry_warn, 10 ** 9)

    status = "ok"
    for chk in checks:
        st = chk.get("status")
        if st == "crit":
            status = "crit"
            break
        if st == "warn" and status == "ok":
            status = "warn"
    return status, checks


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="todocal data directory health check")
    ap.add_argument("--data-dir", default=None, help="todocal data dir (default: $TODOCAL_DATA or config)")
    ap.add_argument("--json", action="store_true", help="emit JSON only")
    ap.add_argument("--orphan-entry-warn", type=int, default=1,
                    help="calendar entries with no matching project before warning")
    args = ap.parse_args(argv)

    paths = core.DataPaths.in_dir(args.data_dir)
    try:
        metrics = collect_metrics(paths)
    except core.StorageError as e:
        payload = {"status": "crit", "data_dir": str(paths.root), "error": str(e)}
        print(json.dumps(payload, ensure_ascii=False, separators=(",", ":")) if args.json
              else f"status=crit data_dir={paths.root} error={e}")
        return 2

    status, checks = evaluate(metrics, args.orphan_entry_warn)
    payload = {
        "status": status,
        "data_dir": str(paths.root),
        "metrics": metrics,
        "checks": checks,
        "diag_log_enabled_hint": "set TODOCAL_DIAG_LOG=1 to persist diagnostics",
    }

    if args.json:
        print(json.dumps(payload, ensure_ascii=False, separators=(",", ":")))
    else:
        print(f"status={payload['status']} data_dir={payload['data_dir']}")
        for k, v in metrics.items():
            print(f"{k}={v}")
        print("checks:")
        for chk in checks:
            print(f"  - {chk.get('name')}: {chk.get('status')} (value={chk.get('value')})")

    if status == "crit":
        return 2
    if status == "warn":
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
