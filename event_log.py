"""
Status-event source: turns ClickUp webhook payloads and time_in_status
responses into status events, and keeps them in a JSON-lines log.

Each line of the log is one event:
  {"task_id", "task_name", "previous_status", "new_status", "editor_id", "editor_name", "event_ts"}
"""
from __future__ import annotations

import json
import math
import os

import pandas as pd
from dateutil import parser as dtparser

EVENT_FIELDS = ["task_id", "task_name", "previous_status", "new_status", "editor_id", "editor_name", "event_ts"]

STATUS_UPDATED_EVENT = "taskStatusUpdated"


def to_epoch_ms(value):
    """Epoch ms from an int, a numeric string, or an ISO-8601 string. None if unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return None if isinstance(value, float) and math.isnan(value) else int(value)
    s = str(value).strip()
    if s.lstrip("-").isdigit():
        return int(s)
    try:
        return int(dtparser.isoparse(s).timestamp() * 1000)
    except (TypeError, ValueError):
        return None


def _upper(s):
    return s.strip().upper() if isinstance(s, str) and s.strip() else None


# ----------------------------
# Producers
# ----------------------------
def event_from_webhook(payload, received_at_ms=None):
    """Status event from a ClickUp taskStatusUpdated webhook, or None for anything else."""
    if not isinstance(payload, dict) or payload.get("event") != STATUS_UPDATED_EVENT:
        return None
    items = payload.get("history_items") or []
    change = next((it for it in items if isinstance(it, dict) and it.get("field") == "status"), None)
    if change is None or not payload.get("task_id"):
        return None

    before = (change.get("before") or {}).get("status")
    after = (change.get("after") or {}).get("status")
    user = change.get("user") or payload.get("user") or {}
    ts = to_epoch_ms(change.get("date")) or to_epoch_ms(payload.get("date")) or received_at_ms
    if ts is None:
        return None
    return {
        "task_id": str(payload["task_id"]),
        "task_name": (payload.get("task") or {}).get("name"),
        "previous_status": _upper(before),
        "new_status": _upper(after) or "UNKNOWN",
        "editor_id": str(user["id"]) if user.get("id") is not None else None,
        "editor_name": user.get("username") or user.get("email"),
        "event_ts": ts,
    }


def events_from_time_in_status(task_id, payload):
    """
    Synthesize an ordered status log from a /task/{id}/time_in_status response.

    Every status the task visited carries total_time.since (entry time); the
    current status is appended when it is not already the last entry.
    """
    payload = payload or {}
    entries = []
    for item in payload.get("status_history") or []:
        since = to_epoch_ms((item.get("total_time") or {}).get("since"))
        status = _upper(item.get("status"))
        if since is not None and status:
            entries.append((since, status))
    current = payload.get("current_status") or {}
    current_since = to_epoch_ms((current.get("total_time") or {}).get("since"))
    current_status = _upper(current.get("status"))
    if current_status and current_since is not None and (current_since, current_status) not in entries:
        entries.append((current_since, current_status))
    entries.sort(key=lambda e: e[0])

    events = []
    prev = None
    for since, status in entries:
        events.append({
            "task_id": str(task_id),
            "task_name": None,
            "previous_status": prev,
            "new_status": status,
            "editor_id": None,
            "editor_name": None,
            "event_ts": since,
        })
        prev = status
    return events


# ----------------------------
# JSON-lines log
# ----------------------------
def append_event(path, event):
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps({k: event.get(k) for k in EVENT_FIELDS}, ensure_ascii=False) + "\n")


def _clean(value):
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return value


def load_event_log(path, task_ids=None):
    """{task_id: [events ascending by event_ts]} from a JSON-lines log; {} if the file is missing."""
    if not path or not os.path.exists(path) or os.path.getsize(path) == 0:
        return {}
    df = pd.read_json(path, lines=True, dtype=False, convert_dates=False)
    if df.empty or "task_id" not in df.columns or "event_ts" not in df.columns:
        return {}
    df["task_id"] = df["task_id"].astype(str)
    for col in EVENT_FIELDS:
        if col not in df.columns:
            df[col] = None
    df = df[df["event_ts"].notna()]
    if task_ids is not None:
        df = df[df["task_id"].isin({str(t) for t in task_ids})]
    df = df.sort_values(["task_id", "event_ts"], kind="stable")

    history = {}
    for task_id, group in df.groupby("task_id", sort=False):
        events = []
        for row in group[EVENT_FIELDS].to_dict("records"):
            ev = {k: _clean(row[k]) for k in EVENT_FIELDS}
            ev["task_id"] = str(task_id)
            ev["event_ts"] = int(ev["event_ts"])
            if ev["editor_id"] is not None:
                ev["editor_id"] = str(ev["editor_id"])
            events.append(ev)
        history[str(task_id)] = events
    return history
