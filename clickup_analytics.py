#!/usr/bin/env python3
"""
Pull video tasks from ClickUp, rebuild per-phase timing from the status event
log, and write editor/team metrics, trends and insights to
clickup_analytics_latest.json.

Run: python clickup_analytics.py [path/to/analytics_config.json]
Env: CLICKUP_API_KEY, CLICKUP_LIST_ID (see .env.example)
"""
import os
import sys
import copy
import math
import time
import json as _json
from datetime import datetime, timezone

import requests
import pandas as pd
from dateutil import parser as dtparser
from dotenv import load_dotenv

import editor_metrics
import insights
from event_log import events_from_time_in_status, load_event_log
from phase_time import DEFAULT_STATUS_PHASES, GAP_EXCLUDE, current_ms, is_chronological, phase_time_for_tasks
from response_cache import TTLCache, cache_key

# Load .env if present
load_dotenv()


# ----------------------------
# Config
# ----------------------------
CLICKUP_API_URL = "https://api.clickup.com/api/v2"
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "analytics_config.json")
DEFAULT_START_DATE = "2026-01-01T00:00:00Z"
DAY_MS = 24 * 60 * 60 * 1000

DEFAULT_CONFIG = {
    "status_phases": DEFAULT_STATUS_PHASES,
    "gap_policy": GAP_EXCLUDE,
    "teams": [],
    "excluded_user_ids": [],
    "audiovisual_tag": "AUDIOVISUAL",
    "period_days": 14,
    "evolution_weeks": 8,
    "trend_dead_zone": 5,
    "alert_margin": 10,
    "urgency_rules": insights.URGENCY_RULES,
    "urgency_levels": insights.URGENCY_LEVELS,
    "cache_ttl_seconds": 300,
    "max_pages": 10,
    "time_in_status_batch": 10,
    "event_log_path": "status_events.jsonl",
    "feedback_categories_path": None,
}


def load_config(path=None):
    """Built-in defaults overlaid with the JSON config file, if present."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    path = path or os.environ.get("ANALYTICS_CONFIG") or DEFAULT_CONFIG_PATH
    if path and os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            config.update(_json.load(f))
    return config


def parse_ms(s):
    """Epoch ms from an ISO date string, or None."""
    if not s:
        return None
    try:
        dt = dtparser.isoparse(s)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _resolve(path, base_dir):
    if not path:
        return None
    return path if os.path.isabs(path) else os.path.join(base_dir, path)


# ----------------------------
# ClickUp client
# ----------------------------
class ClickUpClient:
    def __init__(self, cache=None):
        self.api_key = os.environ.get("CLICKUP_API_KEY")
        self.list_id = os.environ.get("CLICKUP_LIST_ID")
        if not self.api_key or not self.list_id:
            raise RuntimeError("Missing env vars. Set CLICKUP_API_KEY, CLICKUP_LIST_ID.")

        self.cache = cache
        self.session = requests.Session()
        self.session.headers.update({"Authorization": self.api_key, "Content-Type": "application/json"})

    def _fetch(self, path, params=None, timeout=60):
        url = CLICKUP_API_URL + path
        r = self.session.get(url, params=params or {}, timeout=timeout)
        if r.status_code >= 400:
            raise RuntimeError(f"GET {url} failed {r.status_code}: {r.text[:500]}")
        return r.json()

    def _get(self, path, params=None, timeout=60):
        if self.cache is None:
            return self._fetch(path, params, timeout)
        return self.cache.get_or_compute(cache_key(path, params), lambda: self._fetch(path, params, timeout))

    def fetch_tasks(self, created_after_ms=None, max_pages=10):
        """Paginated list tasks (closed and subtasks included). Stops at an empty page or max_pages."""
        all_tasks = []
        for page in range(max_pages):
            params = {"page": page, "include_closed": "true", "subtasks": "true"}
            if created_after_ms is not None:
                params["date_created_gt"] = created_after_ms
            data = self._get(f"/list/{self.list_id}/task", params=params)
            tasks = data.get("tasks") or []
            if not tasks:
                break
            all_tasks.extend(tasks)
            time.sleep(0.1)
        return all_tasks

    def time_in_status(self, task_id):
        return self._get(f"/task/{task_id}/time_in_status")


def filter_audiovisual_tasks(tasks, member_ids, excluded_ids=(), tag="AUDIOVISUAL"):
    """Keep tasks tagged audiovisual or assigned to a team member; drop excluded users' tasks."""
    member_ids = set(member_ids or [])
    excluded_ids = set(excluded_ids or [])
    tag = (tag or "").upper()
    kept = []
    for task in tasks:
        assignee_ids = {a.get("id") for a in task.get("assignees") or []}
        if assignee_ids & excluded_ids:
            continue
        has_tag = any((t.get("name") or "").upper() == tag for t in task.get("tags") or [])
        if has_tag or assignee_ids & member_ids:
            kept.append(task)
    return kept


def collect_status_history(client, task_ids, event_log_path, batch_size=10):
    """
    Status events per task: the webhook event log first, then ClickUp's
    time_in_status for tasks the log has never seen.
    """
    history = load_event_log(event_log_path, task_ids=task_ids)
    missing = [tid for tid in task_ids if tid not in history]
    if missing:
        print(f"  {len(missing)} tasks without logged events; asking ClickUp time_in_status...")
    for i in range(0, len(missing), batch_size):
        for tid in missing[i:i + batch_size]:
            try:
                events = events_from_time_in_status(tid, client.time_in_status(tid))
            except (RuntimeError, requests.RequestException) as e:
                print(f"  {tid}: time_in_status failed ({e})", file=sys.stderr)
                continue
            if events:
                history[tid] = events
        if i + batch_size < len(missing):
            time.sleep(0.1)
    return history


def load_feedback_categories(path):
    """{editor name: {category: count}} from a JSON export of categorised review feedback."""
    if not path or not os.path.exists(path):
        return {}
    with open(path, encoding="utf-8") as f:
        return _json.load(f)


# ----------------------------
# Main
# ----------------------------
def main():
    config_path = sys.argv[1] if len(sys.argv) > 1 else None
    config = load_config(config_path)
    base_dir = os.path.dirname(os.path.abspath(config_path or DEFAULT_CONFIG_PATH))

    now = current_ms()
    run_ts = datetime.fromtimestamp(now / 1000, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    teams = config["teams"]
    results = {"run_iso_ts": run_ts, "now_ms": now, "teams": [t["id"] for t in teams]}

    cache = TTLCache(ttl_seconds=config["cache_ttl_seconds"])
    client = ClickUpClient(cache=cache)

    start_ms = parse_ms(os.environ.get("CLICKUP_START_DATE") or DEFAULT_START_DATE)
    print(f"Pulling ClickUp tasks created after {datetime.fromtimestamp(start_ms / 1000, tz=timezone.utc):%Y-%m-%d}...")
    raw_tasks = client.fetch_tasks(created_after_ms=start_ms, max_pages=config["max_pages"])
    print(f"Raw tasks pulled: {len(raw_tasks)}")
    tasks = filter_audiovisual_tasks(
        raw_tasks,
        editor_metrics.team_member_ids(teams),
        config["excluded_user_ids"],
        config["audiovisual_tag"],
    )
    print(f"Audiovisual tasks after filter: {len(tasks)}")

    # ---------
    # 1) Status history -> phase time
    # ---------
    print("\nLoading status history...")
    task_ids = [t["id"] for t in tasks]
    event_log_path = _resolve(os.environ.get("STATUS_EVENT_LOG") or config["event_log_path"], base_dir)
    history = collect_status_history(client, task_ids, event_log_path, batch_size=config["time_in_status_batch"])
    unordered = [tid for tid, events in history.items() if not is_chronological(events)]
    if unordered:
        print(f"  WARNING: {len(unordered)} tasks had out-of-order events (re-sorted by timestamp)", file=sys.stderr)
    results["tasks_with_history"] = len(history)
    results["tasks_with_unordered_events"] = unordered

    cache_status = cache.status()
    results["response_cache"] = cache_status
    print(f"  response cache: {cache_status['entries']} entries, oldest {cache_status['oldest_age_seconds']}s")

    # Tasks with no history get no record, which keeps them out of phase averages.
    phase_time_map = phase_time_for_tasks(
        history, now=now,
        status_phases=config["status_phases"], gap_policy=config["gap_policy"],
    )
    normalized = editor_metrics.normalize_tasks(tasks, phase_time_map)
    no_activity = editor_metrics.tasks_missing_phase_time(normalized)
    print(f"Tasks with history: {len(history)}, without editing/revision time: {len(no_activity)}")

    # ---------
    # 2) KPIs, editors, teams
    # ---------
    kpis = editor_metrics.dashboard_kpis(normalized)
    editors = editor_metrics.editor_phase_metrics(normalized)
    team_map = editor_metrics.build_editor_team_map(teams)
    results["kpis"] = kpis
    results["editor_metrics"] = editors
    results["team_metrics"] = editor_metrics.team_metrics(normalized, team_map)
    results["alteration_alerts"] = insights.alteration_alerts(editors, margin=config["alert_margin"])
    print(f"\nCompleted videos: {kpis['total_videos']}, hours: {kpis['total_hours']}, "
          f"hours/video: {kpis['avg_hours_per_video']}")
    if kpis["top_performer"]:
        print(f"Top performer: {kpis['top_performer']['name']} ({kpis['top_performer']['count']} videos)")

    if kpis["editors"]:
        df = pd.DataFrame(kpis["editors"])
        view_cols = ["editor_name", "completed_videos", "in_progress", "avg_editing_time_hours",
                     "avg_alteration_time_hours", "alteration_rate", "avg_lead_time_hours"]
        print("\nEditors:")
        print(df[[c for c in view_cols if c in df.columns]].to_string(index=False))

    # ---------
    # 3) Trend between windows + insights
    # ---------
    period_ms = config["period_days"] * DAY_MS
    current = editor_metrics.tasks_in_window(normalized, now - period_ms, now + 1)
    previous = editor_metrics.tasks_in_window(normalized, now - 2 * period_ms, now - period_ms)
    dead_zone = config["trend_dead_zone"]
    results["period_days"] = config["period_days"]
    results["trends"] = editor_metrics.compare_periods(current, previous, dead_zone=dead_zone)

    feedback_path = _resolve(config["feedback_categories_path"], base_dir)
    results["insights"] = insights.all_insights(
        current, previous, teams,
        feedback_by_editor=load_feedback_categories(feedback_path),
        dead_zone=dead_zone,
        rules=config["urgency_rules"],
        levels=config["urgency_levels"],
    )
    summary = results["insights"]["summary"]
    print(f"\nEditors needing help: {summary['editors_needing_help']}/{summary['total_editors']}, "
          f"avg alteration rate: {summary['avg_alteration_rate']}%")
    for level in ("critical", "attention"):
        for i in results["insights"][level]:
            print(f"  [{level}] {i['editor_name']}: score {i['urgency_score']}, "
                  f"alteration {i['alteration_rate']}% ({i['trend']}) - {i['recommendation']}")

    results["weekly_evolution"] = editor_metrics.weekly_evolution(normalized, now, weeks=config["evolution_weeks"])

    def _json_default(obj):
        if isinstance(obj, float) and math.isnan(obj):
            return None
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
    out_dir = os.environ.get("ANALYTICS_OUTPUT_DIR") or os.path.dirname(os.path.abspath(__file__))
    os.makedirs(out_dir, exist_ok=True)
    latest_path = os.path.join(out_dir, "clickup_analytics_latest.json")
    ts_path = os.path.join(out_dir, f"clickup_analytics_{run_ts.replace(':', '-')}.json")
    for path in (latest_path, ts_path):
        with open(path, "w", encoding="utf-8") as f:
            _json.dump(results, f, indent=2, ensure_ascii=False, default=_json_default)
    print(f"\nResults saved to: {latest_path}")
    print(f"              and: {ts_path}")
    print("\nDone.")


if __name__ == "__main__":
    main()
