"""
Team Task Scheduler
Projects task durations against each person's daily capacity, detects circular
dependencies, proposes dates for unscheduled work, packs timeline lanes and
rolls up capacity utilisation. Reads resources, tasks and capacity exceptions
from Excel and outputs timeline and utilisation charts as PNGs.

Features:
  - Capacity profiles: daily limit x OKR allocation share, plus dated exceptions
  - Duration projection that skips weekends, vacations and zero-capacity days
  - Explicit-stack cycle detection over task dependencies
  - Deterministic auto-scheduling (topological order + per-person free dates)
  - Two-phase propose/commit: nothing is written until a proposal is applied
  - Non-overlapping timeline lanes and day/week/month utilisation rollups
"""

import argparse
import difflib
import heapq
import io
import math
import os
import re
import sys
from calendar import monthrange
from collections import namedtuple
from datetime import date, datetime, timedelta

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
import matplotlib.dates as mdates
from matplotlib.patches import FancyBboxPatch
import numpy as np
import pandas as pd
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, PatternFill, Alignment, Border, Side
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.formatting.rule import CellIsRule


# ── Constants ────────────────────────────────────────────────────────────────

_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_INPUT = os.path.join(_DIR, "schedule_data.xlsx")
DEFAULT_OUTDIR = os.path.join(_DIR, "output")

# Used for any resource without saved capacity settings
DEFAULT_DAILY_LIMIT = 8
DEFAULT_OKR_ALLOCATION = 20
DEFAULT_WEEKLY_CAPACITY = 40

MAX_PROJECTION_DAYS = 365
MIN_PROGRESS_HOURS = 0.1   # loop bound only, never reported as capacity

SAFE_THRESHOLD = 75        # percent, inclusive
OPTIMAL_THRESHOLD = 100    # percent, inclusive

STATUS_SAFE = "safe"
STATUS_OPTIMAL = "optimal"
STATUS_OVERLOADED = "overloaded"
STATUS_OFF = "exception/off"

# Per-day heat map bands (hours)
HEAT_SAFE_BELOW = 6
HEAT_OPTIMAL_UP_TO = 8
HEATMAP_MAX_DAYS = 62

GRANULARITIES = ["day", "week", "month"]

CYCLE_DETECTED = "CycleDetected"
SCHEDULING_OVERFLOW = "SchedulingOverflow"
DEPENDENCY_UNPLACED = "DependencyUnplaced"

EXCEPTION_REASONS = ["Vacation", "Sick", "Training", "Overtime", "Public Holiday", "Other"]

RESOURCE_COLUMNS = {"ID", "Name", "Daily Limit", "OKR Allocation", "Weekly Capacity"}
TASK_COLUMNS = {"ID", "Title", "Owner", "Estimated Hours", "Start Date", "End Date",
                "Depends On", "Team"}
EXCEPTION_COLUMNS = {"Resource", "Date", "Hours", "Reason"}

STATUS_COLORS = {
    STATUS_SAFE: "#43A047",
    STATUS_OPTIMAL: "#FBC02D",
    STATUS_OVERLOADED: "#E53935",
    STATUS_OFF: "#B0BEC5",
}

LANE_COLORS = ["#2196F3", "#4CAF50", "#9C27B0", "#FF9800", "#00BCD4", "#795548"]

STYLE = {
    "font_family": "DejaVu Sans",
    "title_size": 18,
    "subtitle_size": 13,
    "label_size": 9.5,
    "tick_size": 8.5,
    "small_size": 7.5,
    "bg_color": "#FAFAFA",
    "panel_bg": "#FFFFFF",
    "text_primary": "#1A1A2E",
    "text_secondary": "#555555",
    "text_muted": "#999999",
    "grid_color": "#E0E0E0",
    "today_color": "#D32F2F",
    "capacity_line_color": "#1A1A2E",
    "row_shade_even": "#F5F5F5",
    "row_shade_odd": "#FFFFFF",
    "bar_height": 0.6,
    "dpi": 180,
    "fig_width": 20,
    "exception_color": "#FFF9C4",      # Pale yellow for zero-hour exception days
}


# ── Result Types ─────────────────────────────────────────────────────────────

Placement = namedtuple("Placement", ["task_id", "start_date", "end_date", "owner"])
SchedulingIssue = namedtuple("SchedulingIssue", ["kind", "message", "task_ids", "resource_id"])
ScheduleProposal = namedtuple("ScheduleProposal", ["placements", "issues"])
NoEligibleTasks = namedtuple("NoEligibleTasks", ["reason", "issues"])
LaneLayout = namedtuple("LaneLayout", ["lanes", "lane_count"])
UtilizationBucket = namedtuple("UtilizationBucket", [
    "bucket_start", "bucket_end", "load_hours", "capacity_hours", "percent", "status",
])


class SchedulingOverflow(ValueError):
    """Required hours cannot be met within MAX_PROJECTION_DAYS."""

    def __init__(self, message, resource_id=None, required_hours=None):
        super().__init__(message)
        self.resource_id = resource_id
        self.required_hours = required_hours


# ── Style Helpers ────────────────────────────────────────────────────────────

def apply_style():
    """Configure matplotlib rcParams for consistent styling."""
    plt.rcParams.update({
        "font.family": STYLE["font_family"],
        "font.size": STYLE["label_size"],
        "axes.facecolor": STYLE["panel_bg"],
        "figure.facecolor": STYLE["bg_color"],
        "axes.edgecolor": STYLE["grid_color"],
        "axes.linewidth": 0.8,
        "axes.grid": False,
        "xtick.color": STYLE["text_secondary"],
        "ytick.color": STYLE["text_secondary"],
        "text.color": STYLE["text_primary"],
    })


def style_axes(ax, title="", ylabel="", show_grid_x=False, show_grid_y=False):
    """Apply consistent axis styling to any subplot."""
    if title:
        ax.set_title(title, fontsize=STYLE["subtitle_size"], fontweight="bold",
                     color=STYLE["text_primary"], pad=12, loc="left")
    if ylabel:
        ax.set_ylabel(ylabel, fontsize=STYLE["label_size"], color=STYLE["text_secondary"])
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    ax.spines["left"].set_linewidth(0.6)
    ax.spines["bottom"].set_linewidth(0.6)
    if show_grid_x:
        ax.grid(axis="x", alpha=0.15, linewidth=0.5, color=STYLE["grid_color"])
    if show_grid_y:
        ax.grid(axis="y", alpha=0.15, linewidth=0.5, color=STYLE["grid_color"])
    ax.set_axisbelow(True)


def add_header_footer(fig, title, subtitle=""):
    """Add a title block and generation timestamp footer."""
    fig.suptitle(title, fontsize=STYLE["title_size"], fontweight="bold",
                 color=STYLE["text_primary"], y=0.98, x=0.04, ha="left")
    if subtitle:
        fig.text(0.04, 0.948, subtitle, fontsize=STYLE["small_size"] + 1,
                 color=STYLE["text_muted"], ha="left")
    fig.text(0.98, 0.008, f"Generated {datetime.now().strftime('%d %b %Y %H:%M')}",
             ha="right", fontsize=STYLE["small_size"], color=STYLE["text_muted"])
    fig.text(0.04, 0.008, "Team Task Scheduler",
             ha="left", fontsize=STYLE["small_size"], color=STYLE["text_muted"])


def date_num(d):
    """Matplotlib date number for a calendar date."""
    d = norm_date(d)
    return mdates.date2num(datetime(d.year, d.month, d.day))


def draw_today_line(ax, today, date_min, date_max, y_top):
    """Draw a 'Today' marker if today falls within the date range."""
    today_num = date_num(today)
    if date_num(date_min) <= today_num <= date_num(date_max):
        ax.axvline(today_num, color=STYLE["today_color"], linewidth=2,
                   linestyle="-", alpha=0.7, zorder=10)
        ax.text(today_num + 0.3, y_top, "Today", fontsize=STYLE["small_size"] + 0.5,
                color=STYLE["today_color"], fontweight="bold", va="bottom",
                ha="left", style="italic")


def draw_rounded_bar(ax, x, y, width, height, color, alpha=1.0,
                     edgecolor=None, linewidth=1.2, zorder=3):
    """Draw a horizontal bar with rounded corners using FancyBboxPatch."""
    if width <= 0:
        return None
    rounding = min(0.12, height * 0.3, width * 0.05)
    fancy = FancyBboxPatch(
        (x, y - height / 2), width, height,
        boxstyle=f"round,pad=0,rounding_size={rounding}",
        facecolor=color, alpha=alpha,
        edgecolor=edgecolor or color, linewidth=linewidth, zorder=zorder,
    )
    ax.add_patch(fancy)
    return fancy


# ── Parsing Helpers ──────────────────────────────────────────────────────────

def norm_date(d):
    """Normalise a date, datetime or Timestamp to a calendar date."""
    if isinstance(d, datetime):  # includes pd.Timestamp
        return date(d.year, d.month, d.day)
    if isinstance(d, date):
        return d
    raise TypeError(f"norm_date expected a date, got {type(d).__name__}: {d!r}")


def clean_str(val):
    """Return stripped string or empty string for NaN/None."""
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return ""
    if val is pd.NaT:
        return ""
    return str(val).strip()


def clean_id(val):
    """Identifier cell as text; Excel hands integer ids back as floats (3.0)."""
    if isinstance(val, float) and not math.isnan(val) and val.is_integer():
        return str(int(val))
    return clean_str(val)


def parse_date(val, context=""):
    """Parse date from Excel cell (handles date, datetime, Timestamp and string)."""
    ctx = f" ({context})" if context else ""
    if val is None or (not isinstance(val, str) and pd.isna(val)):
        raise ValueError(f"Date is blank{ctx}")
    if isinstance(val, (date, datetime)):
        return norm_date(val)
    if isinstance(val, str):
        val = val.strip()
        if not val:
            raise ValueError(f"Date is blank{ctx}")
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
            try:
                return datetime.strptime(val, fmt).date()
            except ValueError:
                pass
        raise ValueError(f"Cannot parse date{ctx}: {val!r}. Expected YYYY-MM-DD or DD/MM/YYYY")
    raise ValueError(f"Cannot parse date{ctx}: {val!r}")


def parse_id_list(val):
    """Split a 'Depends On' cell ('3, 5;7') into a list of ids, order kept."""
    text = clean_id(val)
    if not text:
        return []
    ids = []
    for part in re.split(r"[,;]", text):
        part = part.strip()
        if part.endswith(".0") and part[:-2].isdigit():
            part = part[:-2]
        if part and part not in ids:
            ids.append(part)
    return ids


def normalize_columns(df, expected):
    """Rename DataFrame columns to their canonical spelling, ignoring case and
    surrounding whitespace. Returns the set of expected names still missing."""
    df.columns = [str(c).strip() for c in df.columns]
    lookup = {name.lower(): name for name in expected}
    df.rename(columns={c: lookup[c.lower()] for c in df.columns if c.lower() in lookup},
              inplace=True)
    return set(expected) - set(df.columns)


def iter_days(start, end):
    """Yield each calendar day from start to end inclusive."""
    d = norm_date(start)
    end_d = norm_date(end)
    while d <= end_d:
        yield d
        d += timedelta(days=1)


class _TeeWriter:
    """Write to two streams simultaneously (for summary.txt capture)."""
    def __init__(self, a, b):
        self.a, self.b = a, b
    def write(self, data):
        self.a.write(data)
        self.b.write(data)
    def flush(self):
        self.a.flush()
        self.b.flush()


# ── Capacity Model ───────────────────────────────────────────────────────────

def make_profile(daily_limit=DEFAULT_DAILY_LIMIT, okr_allocation=DEFAULT_OKR_ALLOCATION,
                 exceptions=None, weekly_capacity=DEFAULT_WEEKLY_CAPACITY):
    """Build a capacity profile.

    exceptions: iterable of {"date", "hours", "reason"} dicts. A later entry for
    the same date replaces an earlier one.
    """
    daily_limit = float(daily_limit)
    okr_allocation = float(okr_allocation)
    if daily_limit < 0:
        raise ValueError(f"Daily limit must be >= 0, got {daily_limit}")
    if not 0 <= okr_allocation <= 100:
        raise ValueError(f"OKR allocation must be between 0 and 100, got {okr_allocation}")
    by_date = {}
    for entry in exceptions or []:
        day = parse_date(entry["date"], context="exception date")
        hours = float(entry["hours"])
        if hours < 0:
            raise ValueError(f"Exception on {day.isoformat()} has negative hours ({hours})")
        by_date[day] = {"hours": hours, "reason": entry.get("reason", "") or ""}
    return {
        "daily_limit": daily_limit,
        "okr_allocation": okr_allocation,
        "weekly_capacity": float(weekly_capacity),
        "exceptions": dict(sorted(by_date.items())),
    }


DEFAULT_PROFILE = make_profile()


def get_profile(profiles, resource_id):
    """Profile for a resource, or the default when it has no settings yet."""
    if profiles and resource_id in profiles:
        return profiles[resource_id]
    return DEFAULT_PROFILE


def effective_capacity(profiles, resource_id, day):
    """Hours the resource can give to scheduled work on this date.

    An exception for the date always wins (including on weekends). Otherwise
    weekends are 0 and weekdays are daily_limit x okr_allocation / 100.
    """
    profile = get_profile(profiles, resource_id)
    day = norm_date(day)
    exception = profile["exceptions"].get(day)
    if exception is not None:
        return exception["hours"]
    if day.weekday() >= 5:
        return 0.0
    return profile["daily_limit"] * profile["okr_allocation"] / 100


def is_working_day(profiles, resource_id, day):
    """A day counts as working when the resource has any capacity on it."""
    return effective_capacity(profiles, resource_id, day) > 0


def count_working_days(profiles, resource_id, start, end):
    """Count working days between start and end (inclusive)."""
    return sum(1 for d in iter_days(start, end) if is_working_day(profiles, resource_id, d))


def next_working_day(profiles, resource_id, day):
    """First working day on or after day."""
    day = norm_date(day)
    for offset in range(MAX_PROJECTION_DAYS):
        candidate = day + timedelta(days=offset)
        if is_working_day(profiles, resource_id, candidate):
            return candidate
    raise SchedulingOverflow(
        f"Resource '{resource_id}' has no working day within {MAX_PROJECTION_DAYS} days "
        f"of {day.isoformat()}",
        resource_id=resource_id)


def add_working_days(profiles, resource_id, start, working_days):
    """Last day of a run of working_days working days beginning at start
    (itself snapped to a working day)."""
    end = next_working_day(profiles, resource_id, start)
    for _ in range(max(int(working_days), 1) - 1):
        end = next_working_day(profiles, resource_id, end + timedelta(days=1))
    return end


# ── Duration Projection ──────────────────────────────────────────────────────

def project_end(start_date, required_hours, resource_id, profiles=None):
    """Walk forward from start_date, consuming each working day's capacity,
    and return the day on which the remaining hours reach zero.

    Zero-capacity days (weekends, 0h exceptions) are skipped, so zero hours
    end on the first working day on or after start_date. Raises
    SchedulingOverflow if the hours are not covered within MAX_PROJECTION_DAYS.
    """
    start = norm_date(start_date)
    if required_hours <= 0:
        return next_working_day(profiles, resource_id, start)
    remaining = float(required_hours)
    for offset in range(MAX_PROJECTION_DAYS):
        day = start + timedelta(days=offset)
        capacity = effective_capacity(profiles, resource_id, day)
        if capacity <= 0:
            continue
        remaining -= max(capacity, MIN_PROGRESS_HOURS)
        if remaining <= 1e-9:
            return day
    raise SchedulingOverflow(
        f"{required_hours:g}h cannot be completed by '{resource_id}' within "
        f"{MAX_PROJECTION_DAYS} days of {start.isoformat()}",
        resource_id=resource_id, required_hours=required_hours)


# ── Dependency Graph ─────────────────────────────────────────────────────────

def find_cycle(tasks):
    """Return one dependency cycle as a list of task ids ([A, B, C, A]), or None.

    Edges run task -> dependency. Dependencies on ids outside `tasks` are
    ignored. Depth-first search with an explicit stack, so deep chains do not
    hit the recursion limit.
    """
    ids = [t["id"] for t in tasks]
    index = {tid: i for i, tid in enumerate(ids)}
    adjacency = [[index[d] for d in (t.get("dependencies") or []) if d in index]
                 for t in tasks]

    visited = [False] * len(ids)
    active = [False] * len(ids)
    for root in range(len(ids)):
        if visited[root]:
            continue
        visited[root] = active[root] = True
        path = [root]
        cursor = [0]  # next neighbour to try, per path entry
        while path:
            node = path[-1]
            if cursor[-1] < len(adjacency[node]):
                neigh = adjacency[node][cursor[-1]]
                cursor[-1] += 1
                if active[neigh]:
                    first = path.index(neigh)
                    return [ids[i] for i in path[first:]] + [ids[neigh]]
                if not visited[neigh]:
                    visited[neigh] = active[neigh] = True
                    path.append(neigh)
                    cursor.append(0)
            else:
                active[node] = False
                path.pop()
                cursor.pop()
    return None


def find_dependency_violations(tasks):
    """Scheduled tasks that start on or before a scheduled dependency ends.
    Returns a list of (task_id, dependency_id)."""
    by_id = {t["id"]: t for t in tasks}
    violations = []
    for task in tasks:
        if not is_scheduled(task):
            continue
        start = norm_date(task["start_date"])
        for dep_id in task.get("dependencies") or []:
            dep = by_id.get(dep_id)
            if dep is None or dep.get("end_date") is None:
                continue
            if start <= norm_date(dep["end_date"]):
                violations.append((task["id"], dep_id))
    return violations


# ── Auto Scheduling ──────────────────────────────────────────────────────────

def is_scheduled(task):
    """True when both start and end dates are set."""
    return task.get("start_date") is not None and task.get("end_date") is not None


def is_eligible(task):
    """Eligible for auto-scheduling: has an owner, positive hours, and is
    missing a start or end date."""
    return (bool(task.get("owner"))
            and (task.get("estimated_hours") or 0) > 0
            and not is_scheduled(task))


def _topological_order(eligible):
    """Kahn's sort over the eligible tasks only. Ready tasks are taken in
    input order. Returns (ordered_tasks, stuck_tasks)."""
    position = {t["id"]: i for i, t in enumerate(eligible)}
    in_degree = {t["id"]: 0 for t in eligible}
    dependents = {t["id"]: [] for t in eligible}
    for task in eligible:
        for dep_id in dict.fromkeys(task.get("dependencies") or []):
            if dep_id in position:
                dependents[dep_id].append(task["id"])
                in_degree[task["id"]] += 1

    ready = [position[tid] for tid, n in in_degree.items() if n == 0]
    heapq.heapify(ready)
    ordered = []
    while ready:
        task = eligible[heapq.heappop(ready)]
        ordered.append(task)
        for child in dependents[task["id"]]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                heapq.heappush(ready, position[child])

    emitted = {t["id"] for t in ordered}
    stuck = [t for t in eligible if t["id"] not in emitted]
    return ordered, stuck


def propose_schedule(tasks, profiles=None, today=None):
    """Compute dates for every eligible task without changing anything.

    Returns a ScheduleProposal (placements in scheduling order plus any
    issues) or NoEligibleTasks when nothing could be placed.
    """
    today = norm_date(today) if today is not None else date.today()
    by_id = {t["id"]: t for t in tasks}
    eligible = [t for t in tasks if is_eligible(t)]
    issues = []

    ordered, stuck = _topological_order(eligible)
    if stuck:
        path = find_cycle(stuck) or []
        issues.append(SchedulingIssue(
            CYCLE_DETECTED,
            f"Circular dependency: {' -> '.join(str(p) for p in path)}. "
            f"{len(stuck)} task(s) left unscheduled.",
            tuple(t["id"] for t in stuck), None))

    # Latest committed end date per resource
    free_until = {}
    for task in tasks:
        owner = task.get("owner")
        if owner and is_scheduled(task):
            end = norm_date(task["end_date"])
            if owner not in free_until or end > free_until[owner]:
                free_until[owner] = end

    planned_end = {}
    unplaced = set()
    placements = []
    for task in ordered:
        tid = task["id"]
        owner = task["owner"]
        deps = task.get("dependencies") or []

        blocked = [d for d in deps if d in unplaced]
        if blocked:
            unplaced.add(tid)
            issues.append(SchedulingIssue(
                DEPENDENCY_UNPLACED,
                f"Task '{tid}' depends on {', '.join(repr(b) for b in blocked)}, "
                f"which could not be placed.",
                (tid,) + tuple(blocked), owner))
            continue

        earliest = today
        for dep_id in deps:
            dep_end = planned_end.get(dep_id)
            if dep_end is None and dep_id in by_id and by_id[dep_id].get("end_date") is not None:
                dep_end = norm_date(by_id[dep_id]["end_date"])
            if dep_end is not None:
                earliest = max(earliest, dep_end + timedelta(days=1))
        if owner in free_until:
            earliest = max(earliest, free_until[owner] + timedelta(days=1))

        try:
            start = next_working_day(profiles, owner, earliest)
            end = project_end(start, task["estimated_hours"], owner, profiles)
        except SchedulingOverflow as e:
            unplaced.add(tid)
            issues.append(SchedulingIssue(
                SCHEDULING_OVERFLOW, f"Task '{tid}': {e}", (tid,), owner))
            continue

        placements.append(Placement(tid, start, end, owner))
        planned_end[tid] = end
        free_until[owner] = end

    if not placements:
        if eligible:
            reason = f"None of the {len(eligible)} eligible task(s) could be placed."
        else:
            reason = ("No eligible tasks: auto-scheduling needs unscheduled tasks "
                      "with an owner and positive estimated hours.")
        return NoEligibleTasks(reason, tuple(issues))
    return ScheduleProposal(tuple(placements), tuple(issues))


def propose_placement(task, resource_id, day, profiles=None):
    """Place a single task for resource_id starting at (or after) day.

    Positive hours are projected against the resource's capacity. Without
    hours the task's current span (inclusive calendar days, at least one)
    becomes that many working days from the new start, or one day when it
    has no dates.
    """
    try:
        start = next_working_day(profiles, resource_id, day)
        hours = task.get("estimated_hours") or 0
        if hours > 0:
            end = project_end(start, hours, resource_id, profiles)
        else:
            span = 1
            if is_scheduled(task):
                span = (norm_date(task["end_date"]) - norm_date(task["start_date"])).days + 1
            end = add_working_days(profiles, resource_id, start, span)
    except SchedulingOverflow as e:
        issue = SchedulingIssue(SCHEDULING_OVERFLOW, f"Task '{task['id']}': {e}",
                                (task["id"],), resource_id)
        return ScheduleProposal((), (issue,))
    return ScheduleProposal((Placement(task["id"], start, end, resource_id),), ())


def unschedule_changes():
    """Change set that moves a task back to the unscheduled list."""
    return {"start_date": None, "end_date": None}


def apply_proposal(tasks, proposal):
    """Return copies of tasks with the proposal's dates and owners applied."""
    if isinstance(proposal, NoEligibleTasks):
        return [dict(t) for t in tasks]
    updates = {p.task_id: p for p in proposal.placements}
    result = []
    for task in tasks:
        task = dict(task)
        p = updates.get(task["id"])
        if p is not None:
            task["start_date"] = p.start_date
            task["end_date"] = p.end_date
            task["owner"] = p.owner
        result.append(task)
    return result


def commit_proposal(proposal, update_task):
    """Write each placement through update_task(task_id, changes).

    Each write is independent: a failed write is reported and the rest
    continue. Returns (applied_ids, failed_ids); calling again with the same
    proposal retries safely.
    """
    applied, failed = [], []
    if isinstance(proposal, NoEligibleTasks):
        return applied, failed
    for p in proposal.placements:
        changes = {"start_date": p.start_date, "end_date": p.end_date, "owner": p.owner}
        try:
            update_task(p.task_id, changes)
        except Exception as e:
            print(f"  WARNING: Could not update task '{p.task_id}': {e}")
            failed.append(p.task_id)
        else:
            applied.append(p.task_id)
    return applied, failed


# ── Lane Packing ─────────────────────────────────────────────────────────────

def pack_lanes(tasks):
    """Assign each scheduled task to the first lane that is free before it
    starts. Ties on start date are broken by task id.
    Returns LaneLayout(lanes={task_id: lane_index}, lane_count)."""
    ordered = sorted((t for t in tasks if is_scheduled(t)),
                     key=lambda t: (norm_date(t["start_date"]), str(t["id"])))
    lane_ends = []
    lanes = {}
    for task in ordered:
        start = norm_date(task["start_date"])
        end = norm_date(task["end_date"])
        for idx, lane_end in enumerate(lane_ends):
            if lane_end < start:
                lane_ends[idx] = end
                lanes[task["id"]] = idx
                break
        else:
            lanes[task["id"]] = len(lane_ends)
            lane_ends.append(end)
    return LaneLayout(lanes, len(lane_ends))


# ── Capacity Aggregation ─────────────────────────────────────────────────────

def utilization_status(load_hours, capacity_hours):
    """Presentation band for a load/capacity pair (thresholds inclusive)."""
    if capacity_hours <= 0:
        return STATUS_OFF
    if load_hours <= capacity_hours * SAFE_THRESHOLD / 100:
        return STATUS_SAFE
    if load_hours <= capacity_hours * OPTIMAL_THRESHOLD / 100:
        return STATUS_OPTIMAL
    return STATUS_OVERLOADED


def heat_status(hours):
    """Band for a single day's absolute load in the heat map (None when idle)."""
    if hours <= 0:
        return None
    if hours < HEAT_SAFE_BELOW:
        return STATUS_SAFE
    if hours <= HEAT_OPTIMAL_UP_TO:
        return STATUS_OPTIMAL
    return STATUS_OVERLOADED


def daily_load(resource_id, start, end, tasks, profiles=None):
    """Hours of scheduled work per working day for one resource.

    Each task's estimate is spread evenly over the working days of its own
    [start, end]; only days inside [start, end] of the query are returned.
    """
    start = norm_date(start)
    end = norm_date(end)
    load = {}
    for task in tasks:
        if task.get("owner") != resource_id or not is_scheduled(task):
            continue
        t_start = norm_date(task["start_date"])
        t_end = norm_date(task["end_date"])
        if t_end < start or t_start > end:
            continue
        working = [d for d in iter_days(t_start, t_end)
                   if is_working_day(profiles, resource_id, d)]
        if not working:
            continue
        per_day = (task.get("estimated_hours") or 0) / len(working)
        for d in working:
            if start <= d <= end:
                load[d] = load.get(d, 0.0) + per_day
    return load


def bucket_start(day, granularity):
    """First day of the day/week (Monday)/month bucket containing day."""
    day = norm_date(day)
    if granularity == "day":
        return day
    if granularity == "week":
        return day - timedelta(days=day.weekday())
    if granularity == "month":
        return day.replace(day=1)
    raise ValueError(f"Unknown granularity '{granularity}'. Valid: {', '.join(GRANULARITIES)}")


def bucket_end(first_day, granularity):
    """Last day of the bucket that starts on first_day."""
    if granularity == "day":
        return first_day
    if granularity == "week":
        return first_day + timedelta(days=6)
    if granularity == "month":
        return first_day.replace(day=monthrange(first_day.year, first_day.month)[1])
    raise ValueError(f"Unknown granularity '{granularity}'. Valid: {', '.join(GRANULARITIES)}")


def utilization(resource_id, date_range, tasks, profiles=None, granularity="week"):
    """Roll up scheduled load against available capacity for one resource.

    date_range is an inclusive (start, end) pair; buckets are clipped to it.
    Zero-capacity days add nothing to either load or capacity.
    Returns a list of UtilizationBucket in date order.
    """
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown granularity '{granularity}'. Valid: {', '.join(GRANULARITIES)}")
    start, end = (norm_date(d) for d in date_range)
    load = daily_load(resource_id, start, end, tasks, profiles)

    totals = {}
    for day in iter_days(start, end):
        entry = totals.setdefault(bucket_start(day, granularity), [0.0, 0.0])
        capacity = effective_capacity(profiles, resource_id, day)
        if capacity <= 0:
            continue
        entry[0] += load.get(day, 0.0)
        entry[1] += capacity

    buckets = []
    for first_day, (load_hours, capacity_hours) in totals.items():
        percent = load_hours / capacity_hours * 100 if capacity_hours > 0 else 0
        buckets.append(UtilizationBucket(
            max(first_day, start), min(bucket_end(first_day, granularity), end),
            load_hours, capacity_hours, percent,
            utilization_status(load_hours, capacity_hours)))
    return buckets


def team_utilization(resource_ids, date_range, tasks, profiles=None, granularity="week"):
    """utilization() for several resources: {resource_id: [UtilizationBucket]}."""
    return {rid: utilization(rid, date_range, tasks, profiles, granularity)
            for rid in resource_ids}


def schedule_span(tasks):
    """(earliest start, latest end) over scheduled tasks, or None."""
    scheduled = [t for t in tasks if is_scheduled(t)]
    if not scheduled:
        return None
    return (min(norm_date(t["start_date"]) for t in scheduled),
            max(norm_date(t["end_date"]) for t in scheduled))


# ── Template Generation ─────────────────────────────────────────────────────

def generate_template(output_path):
    """Create an Excel template with 3 sheets (Resources, Tasks, Exceptions),
    example data and dropdowns."""
    wb = Workbook()

    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color="2E3B4E", end_color="2E3B4E", fill_type="solid")
    header_alignment = Alignment(horizontal="center", vertical="center")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    def style_header(ws, row=1):
        for cell in ws[row]:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = header_alignment
            cell.border = thin_border

    def style_data_rows(ws, start_row=2):
        for row in ws.iter_rows(min_row=start_row, max_row=ws.max_row):
            for cell in row:
                cell.border = thin_border
                cell.alignment = Alignment(vertical="center")

    # ── Sheet 1: Resources ──
    ws_res = wb.active
    ws_res.title = "Resources"
    ws_res.append(["ID", "Name", "Daily Limit", "OKR Allocation", "Weekly Capacity"])
    ws_res.append(["alice", "Alice Moreno", 8, 50, 40])
    ws_res.append(["bob", "Bob Chen", 8, 25, 40])
    ws_res.append(["carol", "Carol Singh", 6, 100, 30])
    for col, width in zip("ABCDE", (14, 22, 13, 16, 17)):
        ws_res.column_dimensions[col].width = width
    style_header(ws_res)
    style_data_rows(ws_res)
    ws_res.freeze_panes = "A2"

    dv_alloc = DataValidation(type="decimal", operator="between", formula1="0", formula2="100")
    dv_alloc.error = "OKR Allocation is a percentage between 0 and 100"
    dv_alloc.errorTitle = "Invalid Allocation"
    ws_res.add_data_validation(dv_alloc)
    dv_alloc.add("D2:D50")

    # ── Sheet 2: Tasks ──
    ws_tasks = wb.create_sheet("Tasks")
    ws_tasks.append(["ID", "Title", "Owner", "Estimated Hours", "Start Date", "End Date",
                     "Depends On", "Team"])
    example_tasks = [
        ["T1", "Draft Q3 objectives", "alice", 12, "2026-03-02", "2026-03-04", "", "core"],
        ["T2", "Stakeholder interviews", "bob", 16, "", "", "T1", "core"],
        ["T3", "Synthesise findings", "alice", 10, "", "", "T2", "core"],
        ["T4", "Metrics baseline", "carol", 18, "", "", "", "data"],
        ["T5", "Dashboard mock-ups", "carol", 12, "", "", "T4", "data"],
        ["T6", "Review with leadership", "alice", 4, "", "", "T3, T5", "core"],
        ["T7", "Backlog grooming", "", 6, "", "", "", "core"],
    ]
    for row in example_tasks:
        ws_tasks.append([parse_date(v) if i in (4, 5) and v else (v if v != "" else None)
                         for i, v in enumerate(row)])
    for col, width in zip("ABCDEFGH", (8, 32, 12, 16, 13, 13, 14, 10)):
        ws_tasks.column_dimensions[col].width = width
    style_header(ws_tasks)
    style_data_rows(ws_tasks)
    ws_tasks.freeze_panes = "A2"
    for row_idx in range(2, 201):
        for col in (5, 6):
            ws_tasks.cell(row=row_idx, column=col).number_format = "yyyy-mm-dd"

    dv_owner = DataValidation(type="list", formula1="=Resources!$A$2:$A$50", allow_blank=True)
    dv_owner.error = "Please select a resource ID from the Resources sheet"
    dv_owner.errorTitle = "Invalid Owner"
    ws_tasks.add_data_validation(dv_owner)
    dv_owner.add("C2:C200")

    dv_hours = DataValidation(type="decimal", operator="greaterThanOrEqual", formula1="0",
                              allow_blank=True)
    dv_hours.error = "Estimated Hours must be zero or positive"
    dv_hours.errorTitle = "Invalid Hours"
    ws_tasks.add_data_validation(dv_hours)
    dv_hours.add("D2:D200")

    # ── Sheet 3: Exceptions ──
    ws_exc = wb.create_sheet("Exceptions")
    ws_exc.append(["Resource", "Date", "Hours", "Reason"])
    ws_exc.append(["bob", date(2026, 3, 5), 0, "Vacation"])
    ws_exc.append(["bob", date(2026, 3, 6), 0, "Vacation"])
    ws_exc.append(["carol", date(2026, 3, 7), 4, "Overtime"])
    for col, width in zip("ABCD", (14, 13, 8, 18)):
        ws_exc.column_dimensions[col].width = width
    style_header(ws_exc)
    style_data_rows(ws_exc)
    ws_exc.freeze_panes = "A2"
    for row_idx in range(2, 101):
        ws_exc.cell(row=row_idx, column=2).number_format = "yyyy-mm-dd"

    dv_exc_res = DataValidation(type="list", formula1="=Resources!$A$2:$A$50", allow_blank=False)
    dv_exc_res.error = "Please select a resource ID"
    dv_exc_res.errorTitle = "Invalid Resource"
    ws_exc.add_data_validation(dv_exc_res)
    dv_exc_res.add("A2:A100")

    reason_str = ",".join(EXCEPTION_REASONS)
    dv_reason = DataValidation(type="list", formula1=f'"{reason_str}"', allow_blank=True)
    ws_exc.add_data_validation(dv_reason)
    dv_reason.add("D2:D100")

    ws_exc.conditional_formatting.add(
        "C2:C100",
        CellIsRule(operator="equal", formula=["0"],
                   font=Font(bold=True, color="B71C1C"), fill=PatternFill(bgColor="FFCDD2")))

    wb.save(output_path)
    print(f"Template created: {output_path}")
    print("  - Sheet 'Resources': people, daily hour limit and OKR allocation %")
    print("  - Sheet 'Tasks': estimates, optional dates, comma-separated dependencies")
    print("  - Sheet 'Exceptions': per-date capacity overrides (0 hours = day off)")
    print(f"\nEdit the file, then run again without --template to schedule and chart.")


# ── Data Loading ─────────────────────────────────────────────────────────────

def _read_sheet(filepath, sheet_name, expected, required, optional_sheet=False):
    """Read a sheet into a DataFrame with canonical column names, or None."""
    try:
        df = pd.read_excel(filepath, sheet_name=sheet_name)
    except ValueError:
        # Sheet doesn't exist
        if not optional_sheet:
            print(f"  WARNING: Could not read {sheet_name} sheet: sheet not found")
        return None
    except Exception as e:
        print(f"  WARNING: Could not read {sheet_name} sheet: {e}")
        return None
    if df.empty:
        return None
    missing = normalize_columns(df, expected) & set(required)
    if missing:
        print(f"  ERROR: {sheet_name} sheet is missing column(s): {', '.join(sorted(missing))}. "
              f"Found: {', '.join(df.columns)}")
        return None
    return df


def _optional_number(row, column, default):
    val = row.get(column)
    if val is None or (isinstance(val, float) and math.isnan(val)) or clean_str(val) == "":
        return default
    return float(val)


def load_resources(filepath):
    """Load resources and their capacity settings from the 'Resources' sheet.
    Returns dict id -> {id, name, daily_limit, okr_allocation, weekly_capacity}."""
    df = _read_sheet(filepath, "Resources", RESOURCE_COLUMNS, {"ID"})
    if df is None:
        return {}
    resources = {}
    for idx, row in df.iterrows():
        row_num = idx + 2
        rid = clean_id(row["ID"])
        if not rid:
            continue  # skip blank rows
        if rid in resources:
            print(f"  WARNING: Resources row {row_num}: duplicate ID '{rid}', using first.")
            continue
        try:
            resources[rid] = {
                "id": rid,
                "name": clean_str(row.get("Name")) or rid,
                "daily_limit": _optional_number(row, "Daily Limit", DEFAULT_DAILY_LIMIT),
                "okr_allocation": _optional_number(row, "OKR Allocation", DEFAULT_OKR_ALLOCATION),
                "weekly_capacity": _optional_number(row, "Weekly Capacity", DEFAULT_WEEKLY_CAPACITY),
            }
        except (ValueError, TypeError) as e:
            print(f"  WARNING: Resources row {row_num}: invalid number for '{rid}' ({e}), skipping.")
    return resources


def load_exceptions(filepath):
    """Load capacity exceptions. Returns dict resource_id -> [exception dicts]."""
    df = _read_sheet(filepath, "Exceptions", EXCEPTION_COLUMNS, {"Resource", "Date", "Hours"},
                     optional_sheet=True)
    if df is None:
        return {}
    exceptions = {}
    for idx, row in df.iterrows():
        row_num = idx + 2
        try:
            rid = clean_id(row["Resource"])
            if not rid:
                continue
            day = parse_date(row["Date"], context=f"Exceptions row {row_num}, 'Date'")
            hours = float(row["Hours"])
            if math.isnan(hours) or hours < 0:
                raise ValueError(f"Hours must be zero or positive, got {row['Hours']!r}")
            exceptions.setdefault(rid, []).append({
                "date": day,
                "hours": hours,
                "reason": clean_str(row.get("Reason")) or "Other",
            })
        except Exception as e:
            print(f"  WARNING: Could not parse exception row {row_num}: {e}")
    return exceptions


def load_profiles(resources, exceptions=None):
    """Build capacity profiles from resource settings and exceptions."""
    profiles = {}
    for rid, res in resources.items():
        try:
            profiles[rid] = make_profile(
                res["daily_limit"], res["okr_allocation"],
                (exceptions or {}).get(rid), res["weekly_capacity"])
        except ValueError as e:
            print(f"  WARNING: Resource '{rid}': {e}. Using default capacity.")
            profiles[rid] = make_profile(exceptions=(exceptions or {}).get(rid))
    return profiles


def load_tasks(filepath):
    """Load tasks from the 'Tasks' sheet."""
    df = _read_sheet(filepath, "Tasks", TASK_COLUMNS, {"ID", "Title"})
    if df is None:
        return []
    tasks = []
    seen = set()
    for idx, row in df.iterrows():
        row_num = idx + 2
        try:
            tid = clean_id(row["ID"])
            if not tid:
                continue  # skip blank rows
            if tid in seen:
                print(f"  WARNING: Tasks row {row_num}: duplicate ID '{tid}', skipping.")
                continue

            hours = _optional_number(row, "Estimated Hours", 0.0)

            dates = {}
            for column, key in (("Start Date", "start_date"), ("End Date", "end_date")):
                val = row.get(column)
                dates[key] = None
                if val is not None and clean_str(val):
                    try:
                        dates[key] = parse_date(val, context=f"Tasks row {row_num}, '{column}'")
                    except ValueError as e:
                        print(f"  WARNING: {e}. Treating as blank.")

            tasks.append({
                "id": tid,
                "title": clean_str(row.get("Title")) or tid,
                "owner": clean_id(row.get("Owner")) or None,
                "estimated_hours": hours,
                "start_date": dates["start_date"],
                "end_date": dates["end_date"],
                "dependencies": parse_id_list(row.get("Depends On")),
                "team_id": clean_id(row.get("Team")) or None,
                "_row": row_num,
            })
            seen.add(tid)
        except Exception as e:
            print(f"  WARNING: Could not parse row {row_num}: {e}")
    return tasks


def load_data(filepath):
    """Load resources, capacity profiles and tasks from the Excel file."""
    resources = load_resources(filepath)
    exceptions = load_exceptions(filepath)
    profiles = load_profiles(resources, exceptions)
    tasks = load_tasks(filepath)

    if exceptions:
        total = sum(len(v) for v in exceptions.values())
        people = len(exceptions)
        print(f"  Capacity exceptions: {total} across {people} {'person' if people == 1 else 'people'}")

    return resources, profiles, tasks, exceptions


class ExcelTaskStore:
    """Task store backed by the 'Tasks' sheet of a workbook."""

    _COLUMNS = {"start_date": "start date", "end_date": "end date", "owner": "owner"}

    def __init__(self, filepath):
        self.filepath = filepath

    def tasks(self):
        return load_tasks(self.filepath)

    def update_task(self, task_id, changes):
        """Overwrite Start Date / End Date / Owner for one task row and save."""
        wb = load_workbook(self.filepath)
        ws = wb["Tasks"]
        headers = {clean_str(c.value).lower(): c.column for c in ws[1] if c.value is not None}
        if "id" not in headers:
            raise KeyError("Tasks sheet has no 'ID' column")

        target = None
        for row_idx in range(2, ws.max_row + 1):
            if clean_id(ws.cell(row=row_idx, column=headers["id"]).value) == str(task_id):
                target = row_idx
                break
        if target is None:
            raise KeyError(f"Task '{task_id}' not found in Tasks sheet")

        for key, header in self._COLUMNS.items():
            if key not in changes:
                continue
            if header not in headers:
                raise KeyError(f"Tasks sheet has no '{header.title()}' column")
            cell = ws.cell(row=target, column=headers[header], value=changes[key])
            if key != "owner" and changes[key] is not None:
                cell.number_format = "yyyy-mm-dd"
        wb.save(self.filepath)


# ── Data Validation ──────────────────────────────────────────────────────────

def validate_data(resources, tasks, profiles=None, exceptions=None):
    """Validate loaded data. Returns (errors, warnings) lists."""
    errors = []
    warnings = []

    if not resources:
        errors.append("Resources sheet is empty. Add at least one resource.")
    if not tasks:
        errors.append("Tasks sheet is empty. Add at least one task.")
        return errors, warnings

    resource_ids = set(resources.keys())
    task_ids = {t["id"] for t in tasks}

    for task in tasks:
        row = task.get("_row", "?")
        label = f"Row {row}: Task '{task['id']}'"

        owner = task.get("owner")
        if owner and owner not in resource_ids:
            close = difflib.get_close_matches(owner, list(resource_ids), n=1, cutoff=0.4)
            hint = f" Did you mean: '{close[0]}'?" if close else ""
            errors.append(f"{label}: owner '{owner}' not in Resources sheet.{hint}")

        if (task.get("estimated_hours") or 0) < 0:
            errors.append(f"{label} has {task['estimated_hours']} estimated hours (must be >= 0).")

        start, end = task.get("start_date"), task.get("end_date")
        if start is not None and end is not None and start > end:
            errors.append(f"{label}: start {start.isoformat()} is after end {end.isoformat()}.")
        elif (start is None) != (end is None):
            warnings.append(f"{label} has only one of Start/End Date; it will be treated as unscheduled.")

        for dep_id in task.get("dependencies") or []:
            if dep_id == task["id"]:
                warnings.append(f"{label} depends on itself.")
            elif dep_id not in task_ids:
                warnings.append(f"{label} depends on unknown task '{dep_id}' (ignored).")

    if profiles:
        for rid in profiles:
            if rid not in resource_ids:
                warnings.append(f"Capacity profile for unknown resource '{rid}'.")
    if exceptions:
        for rid in exceptions:
            if rid not in resource_ids:
                warnings.append(f"Exceptions: '{rid}' not found in Resources sheet.")

    return errors, warnings


# ── Reports ──────────────────────────────────────────────────────────────────

def _title(task_by_id, tid):
    task = task_by_id.get(tid)
    return task["title"] if task else str(tid)


def print_proposal(result, tasks, resources=None):
    """Print a proposal (or NoEligibleTasks) with task titles resolved."""
    task_by_id = {t["id"]: t for t in tasks}
    print()
    print("SCHEDULE PROPOSAL:")
    if isinstance(result, NoEligibleTasks):
        print(f"  {result.reason}")
    else:
        for p in result.placements:
            owner = resources[p.owner]["name"] if resources and p.owner in resources else p.owner
            hours = task_by_id.get(p.task_id, {}).get("estimated_hours", 0)
            print(f"  {_title(task_by_id, p.task_id):<36} {owner:<16} "
                  f"{p.start_date.strftime('%a %d %b')} -> {p.end_date.strftime('%a %d %b %Y')} "
                  f"({hours:g}h)")
    for issue in result.issues:
        titles = ", ".join(_title(task_by_id, tid) for tid in issue.task_ids)
        print(f"  WARNING: {issue.kind}: {issue.message}")
        if titles:
            print(f"    Tasks: {titles}")
    print()


def print_utilization_summary(report, resources, granularity):
    """Print a per-resource utilisation table and flag overloaded buckets."""
    print()
    print(f"CAPACITY UTILISATION ({granularity}):")
    overloaded = []
    for rid, buckets in report.items():
        name = resources[rid]["name"] if rid in resources else rid
        print(f"  {name}")
        for b in buckets:
            if b.status == STATUS_OFF:
                print(f"    {b.bucket_start.strftime('%d %b')}  off")
                continue
            print(f"    {b.bucket_start.strftime('%d %b')}  {b.load_hours:6.1f}h / "
                  f"{b.capacity_hours:6.1f}h  {b.percent:5.0f}%  {b.status}")
            if b.status == STATUS_OVERLOADED:
                overloaded.append((name, b))
    if overloaded:
        print()
        for name, b in overloaded:
            print(f"  WARNING: {name} is overloaded from {b.bucket_start.strftime('%d %b')} "
                  f"({b.load_hours:.1f}h planned, {b.capacity_hours:.1f}h available)")
    print()


# ── Chart: Timeline ──────────────────────────────────────────────────────────

def _draw_weekend_shading(ax, date_min, date_max):
    """Draw light grey vertical bands for weekend days on a date-axis chart."""
    for d in iter_days(date_min, date_max):
        if d.weekday() == 5:  # Saturday
            sat_num = date_num(d)
            ax.axvspan(sat_num, sat_num + 2, color="#E0E0E0", alpha=0.15, zorder=0)


def render_timeline(tasks, resources, output_path, profiles=None, today=None):
    """Render the per-resource timeline with tasks stacked into lanes."""
    apply_style()

    scheduled = [t for t in tasks if is_scheduled(t) and t.get("owner")]
    if not scheduled:
        print("  No timeline data. Check: tasks have both Start and End Date and an Owner.")
        return None

    owners = [rid for rid in resources if any(t["owner"] == rid for t in scheduled)]
    owners += sorted({t["owner"] for t in scheduled} - set(owners))

    layouts = {rid: pack_lanes([t for t in scheduled if t["owner"] == rid]) for rid in owners}
    total_rows = sum(max(layouts[rid].lane_count, 1) for rid in owners)

    date_min, date_max = schedule_span(scheduled)
    date_min -= timedelta(days=2)
    date_max += timedelta(days=3)

    fig_height = max(5, total_rows * 0.55 + 2.5)
    fig = plt.figure(figsize=(STYLE["fig_width"], fig_height), facecolor=STYLE["bg_color"])
    ax = fig.add_axes([0.14, 0.10, 0.82, 0.78])

    _draw_weekend_shading(ax, date_min, date_max)

    y_top = total_rows - 1
    y_ticks, y_labels = [], []
    for r_idx, rid in enumerate(owners):
        layout = layouts[rid]
        rows = max(layout.lane_count, 1)
        block_bottom = y_top - rows + 1

        shade = STYLE["row_shade_even"] if r_idx % 2 == 0 else STYLE["row_shade_odd"]
        ax.axhspan(block_bottom - 0.5, y_top + 0.5, color=shade, alpha=0.6, zorder=0)

        # Zero-hour exception days for this person
        profile = get_profile(profiles, rid)
        for day, exc in profile["exceptions"].items():
            if exc["hours"] <= 0 and date_min <= day <= date_max:
                ax.fill_between([date_num(day), date_num(day) + 1],
                                block_bottom - 0.5, y_top + 0.5,
                                color=STYLE["exception_color"], alpha=0.8, zorder=1)

        for task in scheduled:
            if task["owner"] != rid:
                continue
            lane = layout.lanes[task["id"]]
            y = y_top - lane
            start_num = date_num(task["start_date"])
            duration = date_num(task["end_date"]) - start_num + 1
            color = LANE_COLORS[lane % len(LANE_COLORS)]
            draw_rounded_bar(ax, start_num, y, duration, STYLE["bar_height"], color, alpha=0.85)
            label = task["title"]
            if len(label) > 32:
                label = label[:29] + "..."
            ax.text(start_num + 0.15, y, f"{label} ({task.get('estimated_hours', 0):g}h)",
                    fontsize=STYLE["small_size"], color="white", fontweight="bold",
                    va="center", ha="left", zorder=6, clip_on=True)

        name = resources[rid]["name"] if rid in resources else rid
        y_ticks.append((y_top + block_bottom) / 2)
        y_labels.append(f"{name}\n{layout.lane_count} lane{'s' if layout.lane_count != 1 else ''}")
        y_top = block_bottom - 1

    ax.set_xlim(date_num(date_min), date_num(date_max))
    ax.set_ylim(-0.7, total_rows - 0.3)
    ax.set_yticks(y_ticks)
    ax.set_yticklabels(y_labels, fontsize=STYLE["label_size"])
    ax.xaxis.set_major_locator(mdates.WeekdayLocator(byweekday=mdates.MO))
    ax.xaxis.set_major_formatter(mdates.DateFormatter("%d %b"))
    ax.tick_params(axis="x", labelsize=STYLE["tick_size"])
    draw_today_line(ax, today or date.today(), date_min, date_max, total_rows - 0.45)
    style_axes(ax, title="Schedule by Resource", show_grid_x=True)

    legend = [mpatches.Patch(color=STYLE["exception_color"], label="Capacity exception (0h)")]
    ax.legend(handles=legend, loc="upper right", fontsize=STYLE["small_size"], framealpha=0.9)

    subtitle = f"{(date_min + timedelta(days=2)).strftime('%d %b %Y')} \u2014 " \
               f"{(date_max - timedelta(days=3)).strftime('%d %b %Y')}"
    add_header_footer(fig, "Team Schedule", subtitle)

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  Timeline chart saved: {output_path}")
    return output_path


# ── Chart: Utilisation ───────────────────────────────────────────────────────

def render_utilization(report, resources, output_path, granularity="week"):
    """Render grouped load bars per bucket, coloured by utilisation status."""
    apply_style()

    people = [rid for rid, buckets in report.items() if buckets]
    if not people:
        print("  No utilisation data. Check: the date range covers at least one day.")
        return None

    periods = sorted({b.bucket_start for rid in people for b in report[rid]})
    n_people = len(people)
    x = np.arange(len(periods))
    bar_width = 0.7 / n_people

    fig, ax = plt.subplots(figsize=(max(12, len(periods) * 1.2), 7), facecolor=STYLE["bg_color"])

    capacity_totals = np.zeros(len(periods))
    load_totals = np.zeros(len(periods))
    for pidx, rid in enumerate(people):
        by_start = {b.bucket_start: b for b in report[rid]}
        offset = (pidx - (n_people - 1) / 2) * bar_width
        loads, colors = [], []
        for i, p in enumerate(periods):
            b = by_start.get(p)
            if b is None:
                loads.append(0)
                colors.append(STATUS_COLORS[STATUS_OFF])
                continue
            loads.append(b.load_hours)
            colors.append(STATUS_COLORS[b.status])
            capacity_totals[i] += b.capacity_hours
            load_totals[i] += b.load_hours
        ax.bar(x + offset, loads, bar_width * 0.88, color=colors, alpha=0.85,
               edgecolor="white", linewidth=0.5)
        for i, value in enumerate(loads):
            if value > 0:
                name = resources[rid]["name"] if rid in resources else rid
                ax.text(x[i] + offset, value, name.split()[0], rotation=90,
                        ha="center", va="bottom", fontsize=6, color=STYLE["text_secondary"])

    ax.plot(x, capacity_totals, color=STYLE["capacity_line_color"], linewidth=2,
            linestyle="--", marker="o", markersize=4, label="Team capacity", zorder=5)

    for i in range(len(periods)):
        if capacity_totals[i] <= 0:
            continue
        pct = load_totals[i] / capacity_totals[i] * 100
        status = utilization_status(load_totals[i], capacity_totals[i])
        color = STATUS_COLORS[STATUS_OVERLOADED] if status == STATUS_OVERLOADED else STYLE["text_secondary"]
        ax.text(x[i], max(load_totals[i], capacity_totals[i]) * 1.04, f"{pct:.0f}%",
                ha="center", fontsize=STYLE["small_size"], color=color,
                fontweight="bold" if status == STATUS_OVERLOADED else "normal")

    fmt = {"day": "%d %b", "week": "w/c %d %b", "month": "%b %Y"}[granularity]
    ax.set_xticks(x)
    ax.set_xticklabels([p.strftime(fmt) for p in periods], fontsize=STYLE["tick_size"],
                       rotation=45 if len(periods) > 12 else 0)
    handles = [mpatches.Patch(color=STATUS_COLORS[s], label=label) for s, label in (
        (STATUS_SAFE, f"Safe (≤{SAFE_THRESHOLD}%)"),
        (STATUS_OPTIMAL, f"Optimal (≤{OPTIMAL_THRESHOLD}%)"),
        (STATUS_OVERLOADED, f"Overloaded (>{OPTIMAL_THRESHOLD}%)"),
        (STATUS_OFF, "Exception / off"),
    )]
    handles.append(ax.get_lines()[0])
    ax.legend(handles=handles, loc="upper right", fontsize=STYLE["small_size"], framealpha=0.9)
    top = max(load_totals.max(initial=0), capacity_totals.max(initial=0))
    ax.set_ylim(0, max(top * 1.2, 1))
    style_axes(ax, title=f"Capacity Utilisation by {granularity.title()}",
               ylabel="Hours", show_grid_y=True)

    subtitle = f"{periods[0].strftime('%d %b %Y')} \u2014 {periods[-1].strftime('%d %b %Y')}"
    add_header_footer(fig, "Capacity Overview", subtitle)

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  Utilisation chart saved: {output_path}")
    return output_path


# ── Chart: Daily Heat Map ────────────────────────────────────────────────────

def render_heatmap(tasks, resources, output_path, date_range, profiles=None, today=None):
    """Render a resource x day grid of scheduled hours, each cell coloured by
    its absolute-hours heat band. Days off are shaded, idle days show '-'."""
    apply_style()

    start, end = (norm_date(d) for d in date_range)
    days = list(iter_days(start, end))
    people = list(resources)
    if not people or not days:
        print("  No heat map data. Check: resources exist and the date range covers at least one day.")
        return None
    if len(days) > HEATMAP_MAX_DAYS:
        print(f"  Heat map limited to the first {HEATMAP_MAX_DAYS} days of the window.")
        days = days[:HEATMAP_MAX_DAYS]

    fig_width = max(10, len(days) * 0.55 + 3)
    fig_height = max(3.5, len(people) * 0.7 + 2.2)
    fig, ax = plt.subplots(figsize=(fig_width, fig_height), facecolor=STYLE["bg_color"])

    n_rows = len(people)
    for r_idx, rid in enumerate(people):
        y = n_rows - 1 - r_idx
        load = daily_load(rid, days[0], days[-1], tasks, profiles)
        exceptions = get_profile(profiles, rid)["exceptions"]
        for c_idx, day in enumerate(days):
            if not is_working_day(profiles, rid, day):
                shade = STYLE["exception_color"] if day in exceptions else STYLE["row_shade_even"]
                ax.add_patch(mpatches.Rectangle((c_idx, y), 1, 1, facecolor=shade,
                                                edgecolor="white", linewidth=1, zorder=1))
                continue
            hours = load.get(day, 0.0)
            status = heat_status(hours)
            if status is None:
                ax.text(c_idx + 0.5, y + 0.5, "-", ha="center", va="center",
                        fontsize=STYLE["small_size"], color=STYLE["text_muted"])
                continue
            color = STATUS_COLORS[status]
            ax.add_patch(mpatches.Rectangle((c_idx + 0.06, y + 0.15), 0.88, 0.7,
                                            facecolor=color, alpha=0.35, edgecolor=color,
                                            linewidth=0.8, zorder=2))
            ax.text(c_idx + 0.5, y + 0.5, f"{hours:.1f}", ha="center", va="center",
                    fontsize=STYLE["small_size"], color=STYLE["text_primary"],
                    fontweight="bold" if status == STATUS_OVERLOADED else "normal", zorder=3)

    today = norm_date(today) if today is not None else date.today()
    if days[0] <= today <= days[-1]:
        t_idx = (today - days[0]).days
        ax.axvspan(t_idx, t_idx + 1, color=STYLE["today_color"], alpha=0.08, zorder=0)

    ax.set_xlim(0, len(days))
    ax.set_ylim(0, n_rows)
    ax.set_xticks(np.arange(len(days)) + 0.5)
    ax.set_xticklabels([d.strftime("%a\n%d") for d in days], fontsize=STYLE["small_size"])
    ax.set_yticks(np.arange(n_rows) + 0.5)
    ax.set_yticklabels([resources[rid]["name"] for rid in reversed(people)],
                       fontsize=STYLE["label_size"])
    ax.tick_params(length=0)
    style_axes(ax, title="Daily Load by Resource")

    handles = [mpatches.Patch(color=STATUS_COLORS[s], alpha=0.5, label=label) for s, label in (
        (STATUS_SAFE, f"Safe (<{HEAT_SAFE_BELOW}h)"),
        (STATUS_OPTIMAL, f"Optimal ({HEAT_SAFE_BELOW}-{HEAT_OPTIMAL_UP_TO}h)"),
        (STATUS_OVERLOADED, f"Overloaded (>{HEAT_OPTIMAL_UP_TO}h)"),
    )]
    handles.append(mpatches.Patch(color=STYLE["exception_color"], label="Capacity exception (0h)"))
    ax.legend(handles=handles, loc="upper center", bbox_to_anchor=(0.5, -0.18), ncol=4,
              fontsize=STYLE["small_size"], frameon=False)

    subtitle = f"{days[0].strftime('%d %b %Y')} \u2014 {days[-1].strftime('%d %b %Y')}"
    add_header_footer(fig, "Capacity Heat Map", subtitle)

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    fig.savefig(output_path, dpi=STYLE["dpi"], bbox_inches="tight", facecolor=STYLE["bg_color"])
    plt.close(fig)
    print(f"  Heat map saved: {output_path}")
    return output_path


# ── Main ─────────────────────────────────────────────────────────────────────

def _parse_cli_date(value, flag):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        print(f"  ERROR: Invalid {flag} date '{value}'. Use YYYY-MM-DD format.")
        sys.exit(1)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Team Task Scheduler \u2014 auto-schedule tasks against capacity and chart the result"
    )
    parser.add_argument(
        "--template", action="store_true",
        help="Generate a blank Excel template with example data"
    )
    parser.add_argument(
        "--input", default=DEFAULT_INPUT,
        help="Path to Excel input file (default: schedule_data.xlsx)"
    )
    parser.add_argument(
        "--outdir", default=DEFAULT_OUTDIR,
        help="Output directory for charts and summary (default: output/)"
    )
    parser.add_argument(
        "--today", default=None,
        help="Treat this date as today (YYYY-MM-DD); defaults to the current date"
    )
    parser.add_argument(
        "--auto-schedule", action="store_true",
        help="Propose dates for unscheduled tasks that have an owner and estimated hours"
    )
    parser.add_argument(
        "--apply", action="store_true",
        help="With --auto-schedule: write the proposal back to the input workbook"
    )
    parser.add_argument(
        "--granularity", default="week", choices=GRANULARITIES,
        help="Utilisation bucket size (default: week)"
    )
    parser.add_argument(
        "--charts", default=["all"], nargs="+",
        choices=["all", "timeline", "utilization", "heatmap", "none"],
        help="Which charts to generate (default: all)"
    )
    parser.add_argument(
        "--from", dest="date_from", default=None,
        help="Utilisation window start (YYYY-MM-DD); defaults to the earliest task start"
    )
    parser.add_argument(
        "--to", dest="date_to", default=None,
        help="Utilisation window end (YYYY-MM-DD); defaults to the latest task end"
    )
    args = parser.parse_args(argv)

    if args.template:
        generate_template(args.input)
        return

    if not os.path.exists(args.input):
        print(f"Error: Input file not found: {args.input}")
        print("Run with --template first to create a template.")
        sys.exit(1)

    today = _parse_cli_date(args.today, "--today") if args.today else date.today()
    date_from = _parse_cli_date(args.date_from, "--from") if args.date_from else None
    date_to = _parse_cli_date(args.date_to, "--to") if args.date_to else None

    # Load
    print(f"Loading data from: {args.input}")
    resources, profiles, tasks, exceptions = load_data(args.input)
    print(f"  Resources: {', '.join(r['name'] for r in resources.values())}")
    print(f"  Tasks: {len(tasks)} ({sum(1 for t in tasks if is_scheduled(t))} scheduled)")

    # Validate
    errors, warnings = validate_data(resources, tasks, profiles, exceptions)
    for w in warnings:
        print(f"  WARNING: {w}")
    if errors:
        for e in errors:
            print(f"  ERROR: {e}")
        sys.exit(1)

    task_by_id = {t["id"]: t for t in tasks}
    cycle = find_cycle(tasks)
    if cycle:
        print(f"  WARNING: Circular dependency: "
              f"{' -> '.join(_title(task_by_id, tid) for tid in cycle)}")
    for tid, dep_id in find_dependency_violations(tasks):
        print(f"  WARNING: '{_title(task_by_id, tid)}' starts before its dependency "
              f"'{_title(task_by_id, dep_id)}' ends.")

    os.makedirs(args.outdir, exist_ok=True)
    summary_capture = io.StringIO()
    _orig_stdout = sys.stdout
    sys.stdout = _TeeWriter(_orig_stdout, summary_capture)
    try:
        if args.auto_schedule:
            result = propose_schedule(tasks, profiles, today)
            print_proposal(result, tasks, resources)
            if args.apply and not isinstance(result, NoEligibleTasks):
                store = ExcelTaskStore(args.input)
                applied, failed = commit_proposal(result, store.update_task)
                print(f"  Applied {len(applied)} of {len(result.placements)} placement(s) to {args.input}")
                if failed:
                    print(f"  WARNING: {len(failed)} write(s) failed; re-run with --apply to retry.")
                tasks = store.tasks()
            elif not isinstance(result, NoEligibleTasks):
                print("  Proposal not applied (run with --apply to write it to the workbook).")

        span = schedule_span(tasks)
        report = {}
        window = None
        if span or (date_from and date_to):
            window = (date_from or span[0], date_to or span[1])
            if window[0] > window[1]:
                print("  WARNING: --from is after --to; no utilisation computed.")
                window = None
            else:
                report = team_utilization(list(resources), window, tasks, profiles, args.granularity)
                print_utilization_summary(report, resources, args.granularity)
        else:
            print("  No scheduled tasks; nothing to roll up.")
    finally:
        sys.stdout = _orig_stdout
    summary_text = summary_capture.getvalue()

    charts = args.charts
    gen_all = "all" in charts
    output_files = []
    if gen_all or "timeline" in charts:
        output_files.append(render_timeline(
            tasks, resources, os.path.join(args.outdir, "timeline.png"), profiles, today))
    if (gen_all or "utilization" in charts) and report:
        output_files.append(render_utilization(
            report, resources, os.path.join(args.outdir, f"utilization_{args.granularity}.png"),
            args.granularity))
    if (gen_all or "heatmap" in charts) and window:
        output_files.append(render_heatmap(
            tasks, resources, os.path.join(args.outdir, "heatmap.png"), window, profiles, today))
    output_files = [f for f in output_files if f]

    summary_path = os.path.join(args.outdir, "summary.txt")
    with open(summary_path, "w", encoding="utf-8") as sf:
        sf.write(summary_text)
    output_files.append(summary_path)

    print()
    print("  Output:")
    for f in output_files:
        print(f"    {os.path.abspath(f)}")
    print("\nDone.")


if __name__ == "__main__":
    main()
