"""
Per-editor and per-team metrics built from normalised tasks and their phase time.

Hours stay in milliseconds until the final dict is built; team numbers are
computed over the union of tasks, not from rounded editor results.
"""
from __future__ import annotations

from collections import Counter, defaultdict

import pandas as pd

from phase_time import has_phase_activity

MS_PER_HOUR = 60 * 60 * 1000

COMPLETED = "COMPLETED"
IN_PROGRESS = "IN PROGRESS"
REVIEW = "REVIEW"

COMPLETED_STATES = frozenset({COMPLETED, "CLOSED", "DONE"})

_RAW_COMPLETED = frozenset({
    "APROVADO", "CONCLUÍDO", "CONCLUIDO", "FINALIZADO", "ENTREGUE",
    "CLOSED", "COMPLETE", "COMPLETED", "DONE",
})
_RAW_IN_PROGRESS = frozenset({"EM ANDAMENTO", "ANDAMENTO", "FAZENDO", "DOING", "IN PROGRESS", "RUNNING"})
_RAW_REVIEW = frozenset({"REVISÃO", "REVISAO", "REVIEW", "QA", "APROVAÇÃO"})

_HOURS_FIELD_KEYS = ("horas", "tempo", "duração", "time", "duration", "hours")
_TYPE_FIELD_KEYS = ("tipo", "type", "categoria", "category", "formato")

UNASSIGNED = "Unassigned"
DEFAULT_VIDEO_TYPE = "Other"


def _to_ms(value):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _hours(ms):
    return round(ms / MS_PER_HOUR, 2)


def _rate(count, total):
    return round(count / total * 100, 1) if total else 0


# ----------------------------
# Task normalisation
# ----------------------------
def normalize_status(raw_status):
    upper = (raw_status or "").strip().upper()
    if upper in _RAW_COMPLETED:
        return COMPLETED
    if upper in _RAW_IN_PROGRESS:
        return IN_PROGRESS
    if upper in _RAW_REVIEW:
        return REVIEW
    return upper


def is_completed(status) -> bool:
    return status in COMPLETED_STATES


def _find_field(custom_fields, keys):
    for f in custom_fields or []:
        name = (f.get("name") or "").lower()
        if any(k in name for k in keys):
            return f
    return None


def _custom_hours_ms(custom_fields):
    field = _find_field(custom_fields, _HOURS_FIELD_KEYS)
    if not field or field.get("value") in (None, ""):
        return 0
    try:
        val = float(field["value"])
    except (TypeError, ValueError):
        return 0
    # Large values are already milliseconds; anything else is hours.
    return int(val) if val > 10000 else int(val * MS_PER_HOUR)


def _video_type(custom_fields):
    field = _find_field(custom_fields, _TYPE_FIELD_KEYS)
    if not field:
        return DEFAULT_VIDEO_TYPE
    value = field.get("value")
    options = (field.get("type_config") or {}).get("options")
    if options and isinstance(value, int) and not isinstance(value, bool):
        if 0 <= value < len(options):
            return options[value].get("name") or DEFAULT_VIDEO_TYPE
        return DEFAULT_VIDEO_TYPE
    if isinstance(value, str) and value:
        return value
    return DEFAULT_VIDEO_TYPE


def normalize_task(task, phase_time=None):
    created = _to_ms(task.get("date_created"))
    updated = _to_ms(task.get("date_updated"))
    closed = _to_ms(task.get("date_closed"))
    raw_status = ((task.get("status") or {}).get("status")) or ""
    status = normalize_status(raw_status)
    if status == COMPLETED and closed is None and updated is not None:
        closed = updated

    assignees = task.get("assignees") or []
    assignee = assignees[0] if assignees else None
    custom_fields = task.get("custom_fields") or []

    tracked_ms = 0
    if phase_time and phase_time["editing_time_ms"] > 0:
        tracked_ms = phase_time["editing_time_ms"]
    if not tracked_ms and task.get("time_spent"):
        tracked_ms = _to_ms(task["time_spent"]) or 0
    if not tracked_ms:
        tracked_ms = _custom_hours_ms(custom_fields)
    if not tracked_ms and closed is not None and created is not None:
        tracked_ms = max(0, closed - created)

    if assignee:
        editor_name = assignee.get("username") or f"User {assignee.get('id')}"
    else:
        editor_name = UNASSIGNED

    return {
        "id": task.get("id"),
        "title": task.get("name") or "",
        "status": status,
        "raw_status": raw_status,
        "editor_name": editor_name,
        "editor_id": assignee.get("id") if assignee else None,
        "date_created": created,
        "date_closed": closed,
        "time_tracked_hours": _hours(tracked_ms),
        "video_type": _video_type(custom_fields),
        "tags": [t.get("name") for t in task.get("tags") or [] if t.get("name")],
        "phase_time": phase_time,
    }


def normalize_tasks(tasks, phase_time_map=None):
    phase_time_map = phase_time_map or {}
    return [normalize_task(t, phase_time_map.get(t.get("id"))) for t in tasks]


# ----------------------------
# Aggregation
# ----------------------------
def aggregate_group(tasks):
    """
    Metrics for any set of tasks (one editor, one team, one window).

    Only completed tasks with a phase-time record feed the phase averages and
    rates; volume counts every task, and non-completed tasks are counted as
    in progress.
    """
    total_videos = len(tasks)
    completed = [t for t in tasks if is_completed(t.get("status"))]
    with_phase = [t for t in completed if t.get("phase_time")]

    sums = Counter()
    videos_with_revision = 0
    videos_with_alteration = 0
    for t in with_phase:
        pt = t["phase_time"]
        for field in ("editing_time_ms", "revision_time_ms", "alteration_time_ms", "approval_time_ms", "total_time_ms"):
            sums[field] += pt.get(field) or 0
        if (pt.get("revision_time_ms") or 0) > 0:
            videos_with_revision += 1
        if (pt.get("alteration_time_ms") or 0) > 0:
            videos_with_alteration += 1

    n = len(with_phase)

    def avg_hours(field):
        return _hours(sums[field] / n) if n else 0

    tracked_hours = sum(t.get("time_tracked_hours") or 0 for t in completed)
    lead_times = [
        t["date_closed"] - t["date_created"]
        for t in completed
        if t.get("date_closed") is not None and t.get("date_created") is not None
    ]

    return {
        "total_videos": total_videos,
        "completed_videos": len(completed),
        "in_progress": total_videos - len(completed),
        "videos_with_phase_time": n,
        "avg_editing_time_hours": avg_hours("editing_time_ms"),
        "avg_revision_time_hours": avg_hours("revision_time_ms"),
        "avg_alteration_time_hours": avg_hours("alteration_time_ms"),
        "avg_approval_time_hours": avg_hours("approval_time_ms"),
        "avg_total_time_hours": avg_hours("total_time_ms"),
        "total_editing_time_hours": _hours(sums["editing_time_ms"]),
        "total_revision_time_hours": _hours(sums["revision_time_ms"]),
        "total_alteration_time_hours": _hours(sums["alteration_time_ms"]),
        "videos_with_revision": videos_with_revision,
        "videos_with_alteration": videos_with_alteration,
        "revision_rate": _rate(videos_with_revision, n),
        "alteration_rate": _rate(videos_with_alteration, n),
        "total_hours": round(tracked_hours, 2),
        "avg_hours_per_video": round(tracked_hours / len(completed), 2) if completed else 0,
        "avg_lead_time_hours": _hours(sum(lead_times) / len(lead_times)) if lead_times else 0,
    }


def group_by_editor(tasks):
    grouped = defaultdict(list)
    for t in tasks:
        grouped[t.get("editor_name") or UNASSIGNED].append(t)
    return grouped


def editor_phase_metrics(tasks):
    """{editor_name: metrics}."""
    return {name: aggregate_group(items) for name, items in group_by_editor(tasks).items()}


def build_editor_team_map(teams, include_leaders=False):
    """{editor name: team id} from the configured teams."""
    mapping = {}
    for team in teams or []:
        for member in team.get("members") or []:
            if member.get("role") == "leader" and not include_leaders:
                continue
            mapping[member["name"]] = team["id"]
    return mapping


def team_member_ids(teams):
    return {m["id"] for team in teams or [] for m in team.get("members") or [] if m.get("id") is not None}


def team_metrics(tasks, editor_team_map):
    """Re-run the aggregation over the union of each team's tasks."""
    by_team = defaultdict(list)
    for t in tasks:
        team_id = editor_team_map.get(t.get("editor_name"))
        if team_id:
            by_team[team_id].append(t)
    team_ids = sorted(set(editor_team_map.values()))
    return {team_id: aggregate_group(by_team.get(team_id, [])) for team_id in team_ids}


# ----------------------------
# Windows and trend
# ----------------------------
def _reference_ts(task):
    closed = task.get("date_closed")
    return closed if closed is not None else task.get("date_created")


def tasks_in_window(tasks, start_ms, end_ms):
    """Tasks whose close (or creation) time falls in [start_ms, end_ms)."""
    out = []
    for t in tasks:
        ref = _reference_ts(t)
        if ref is not None and start_ms <= ref < end_ms:
            out.append(t)
    return out


def trend(current_rate, previous_rate, dead_zone=5):
    diff = (current_rate or 0) - (previous_rate or 0)
    if diff < -dead_zone:
        label = "improving"
    elif diff > dead_zone:
        label = "worsening"
    else:
        label = "stable"
    return {"trend_value": round(diff, 1), "trend": label}


def compare_periods(current_tasks, previous_tasks, dead_zone=5):
    """Alteration-rate trend per editor between two independently aggregated windows."""
    current = editor_phase_metrics(current_tasks)
    previous = editor_phase_metrics(previous_tasks)
    out = {}
    for name in sorted(set(current) | set(previous)):
        cur_rate = current.get(name, {}).get("alteration_rate", 0)
        prev_rate = previous.get(name, {}).get("alteration_rate", 0)
        out[name] = {
            "current_rate": cur_rate,
            "previous_rate": prev_rate,
            "current_videos": current.get(name, {}).get("total_videos", 0),
            "previous_videos": previous.get(name, {}).get("total_videos", 0),
            **trend(cur_rate, prev_rate, dead_zone),
        }
    return out


# ----------------------------
# Dashboard KPIs
# ----------------------------
def dashboard_kpis(tasks):
    tasks_by_status = Counter(t.get("status") for t in tasks)
    tasks_by_type = Counter(t.get("video_type") for t in tasks if t.get("video_type"))

    editors = []
    for name, items in group_by_editor(tasks).items():
        metrics = aggregate_group(items)
        editor_id = next((t.get("editor_id") for t in items if t.get("editor_id") is not None), None)
        editors.append({"editor_name": name, "editor_id": editor_id, **metrics})
    editors.sort(key=lambda e: (-e["completed_videos"], e["editor_name"]))

    total = aggregate_group(tasks)
    top = editors[0] if editors else None
    return {
        "total_videos": total["completed_videos"],
        "total_hours": total["total_hours"],
        "avg_hours_per_video": total["avg_hours_per_video"],
        "top_performer": {"name": top["editor_name"], "count": top["completed_videos"]} if top else None,
        "editors": editors,
        "tasks_by_status": dict(tasks_by_status),
        "tasks_by_type": dict(tasks_by_type),
    }


def tasks_missing_phase_time(tasks):
    """Ids of tasks whose phase-time record is absent or shows no editing/revision."""
    return [t["id"] for t in tasks if not has_phase_activity(t.get("phase_time"))]


# ----------------------------
# Weekly evolution
# ----------------------------
_EVOLUTION_COLUMNS = ["ref", "completed", "has_phase", "altered", "editing_ms"]


def weekly_evolution(tasks, now_ms, weeks=8):
    """Sunday-based weekly series for the last `weeks` weeks, oldest first."""
    now = pd.Timestamp(now_ms, unit="ms", tz="UTC")
    current_start = (now - pd.Timedelta(days=(now.dayofweek + 1) % 7)).normalize()
    starts = [current_start - pd.Timedelta(weeks=i) for i in range(weeks - 1, -1, -1)]

    rows = []
    for t in tasks:
        ref = _reference_ts(t)
        if ref is None:
            continue
        pt = t.get("phase_time") or {}
        rows.append({
            "ref": ref,
            "completed": is_completed(t.get("status")),
            "has_phase": bool(t.get("phase_time")),
            "altered": (pt.get("alteration_time_ms") or 0) > 0,
            "editing_ms": pt.get("editing_time_ms") or 0,
        })
    df = pd.DataFrame(rows, columns=_EVOLUTION_COLUMNS)
    if not df.empty:
        df["ref"] = pd.to_datetime(df["ref"].astype("int64"), unit="ms", utc=True)

    series = []
    for start in starts:
        end = start + pd.Timedelta(weeks=1)
        if df.empty:
            week = df
        else:
            week = df[(df["ref"] >= start) & (df["ref"] < end)]
        done = week[week["completed"].astype(bool)]
        with_phase = done[done["has_phase"].astype(bool)]
        altered = int(with_phase["altered"].astype(bool).sum())
        editing = done.loc[done["editing_ms"] > 0, "editing_ms"]
        avg_editing = float(editing.mean()) / MS_PER_HOUR if len(editing) else 0
        series.append({
            "week_start": start.strftime("%Y-%m-%d"),
            "week_label": f"{start.day}/{start.month}",
            "total_videos": int(len(week)),
            "completed_videos": int(len(done)),
            "alteration_rate": _rate(altered, len(with_phase)),
            "avg_editing_time_hours": round(avg_editing, 1),
        })
    return series
