"""
Phase-time derivation: rebuild how long a video spent in each workflow phase
from its ordered status-change log, and sum the intervals per task.

Events are dicts: {"task_id", "previous_status", "new_status", "event_ts"}
with event_ts in epoch milliseconds.
"""
from __future__ import annotations

import time
from typing import Any

# ----------------------------
# Phases
# ----------------------------
EDITING = "editing"
REVISION = "revision"
ALTERATION = "alteration"
APPROVAL = "approval"
OTHER = "other"
TERMINAL = "terminal"

TRACKED_PHASES = (EDITING, REVISION, ALTERATION, APPROVAL)

# Approval is the delivery state: it only accrues time once a later event
# moves the task on (e.g. APROVADO -> CONCLUIDO).
RESTING_PHASES = frozenset({APPROVAL, TERMINAL})

# What to do with the time between a terminal status and a later reopen.
GAP_EXCLUDE = "exclude"
GAP_COUNT = "count"

PHASE_FIELDS = {
    EDITING: "editing_time_ms",
    REVISION: "revision_time_ms",
    ALTERATION: "alteration_time_ms",
    APPROVAL: "approval_time_ms",
}

# Workflow status names are governed by the ClickUp space; keep them exact.
DEFAULT_STATUS_PHASES = {
    EDITING: ["VIDEO: EDITANDO"],
    REVISION: ["PARA REVISÃO", "PARA REVISAO", "REVISANDO"],
    ALTERATION: ["ALTERAÇÃO", "ALTERACAO"],
    APPROVAL: ["APROVADO"],
    TERMINAL: [
        "CONCLUÍDO", "CONCLUIDO", "COMPLETED", "DONE", "CLOSED",
        "FINALIZADO", "ENTREGUE", "DISCARTADO",
    ],
}


def _normalize_label(status):
    return (status or "").strip().upper()


def build_status_lookup(status_phases=None):
    """Flatten {phase: [labels]} into {LABEL: phase}. First phase listed wins on duplicates."""
    status_phases = status_phases or DEFAULT_STATUS_PHASES
    lookup = {}
    for phase in (*TRACKED_PHASES, TERMINAL):
        for label in status_phases.get(phase) or []:
            lookup.setdefault(_normalize_label(label), phase)
    return lookup


_DEFAULT_LOOKUP = build_status_lookup()


def classify(status, lookup=None) -> str:
    """Phase for a raw status label; anything outside the vocabulary is OTHER."""
    lookup = _DEFAULT_LOOKUP if lookup is None else lookup
    return lookup.get(_normalize_label(status), OTHER)


# ----------------------------
# Interval reconstruction
# ----------------------------
_EMPTY_STATE = {"phase": None, "start": None, "status": None}


def _interval(task_id, phase, status, start_ts, end_ts, now_ms=None):
    end = end_ts if end_ts is not None else now_ms
    return {
        "task_id": task_id,
        "phase": phase,
        "status": status,
        "start_ts": start_ts,
        "end_ts": end_ts,
        "duration_ms": max(0, end - start_ts),
    }


def _step(state, event, lookup, gap_policy):
    """One transition of the scan. Returns (next_state, closed_interval_or_None)."""
    status = _normalize_label(event.get("new_status"))
    phase = classify(status, lookup)
    ts = int(event["event_ts"])

    current = state["phase"]
    if phase == current:
        return state, None

    closed = None
    if current is not None:
        closed = _interval(event.get("task_id"), current, state["status"], state["start"], ts)

    if phase == TERMINAL and gap_policy != GAP_COUNT:
        return _EMPTY_STATE, closed
    return {"phase": phase, "start": ts, "status": status}, closed


def is_chronological(events) -> bool:
    """True when event_ts never decreases along the sequence."""
    prev = None
    for ev in events:
        ts = ev.get("event_ts")
        if prev is not None and ts is not None and ts < prev:
            return False
        prev = ts
    return True


def reconstruct(events, now_ms, lookup=None, gap_policy=GAP_EXCLUDE) -> list[dict[str, Any]]:
    """
    Fold one task's status log into phase intervals.

    Out-of-order input is stably re-sorted by event_ts first, so durations are
    never negative. A phase still open at the end of the log is emitted with
    end_ts=None and its duration measured against now_ms, unless it is a
    resting phase (approval / terminal).
    """
    ordered = sorted(
        (ev for ev in events or [] if ev.get("event_ts") is not None),
        key=lambda ev: int(ev["event_ts"]),
    )
    intervals = []
    state = _EMPTY_STATE
    for ev in ordered:
        state, closed = _step(state, ev, lookup, gap_policy)
        if closed is not None:
            intervals.append(closed)

    if state["phase"] is not None and state["phase"] not in RESTING_PHASES:
        task_id = ordered[-1].get("task_id")
        intervals.append(_interval(task_id, state["phase"], state["status"], state["start"], None, now_ms=now_ms))
    return intervals


# ----------------------------
# Aggregation
# ----------------------------
def empty_phase_time(task_id=None):
    return {
        "task_id": task_id,
        "editing_time_ms": 0,
        "revision_time_ms": 0,
        "alteration_time_ms": 0,
        "approval_time_ms": 0,
        "total_time_ms": 0,
    }


def aggregate_phase_time(intervals, task_id=None):
    """Sum interval durations per tracked phase; total covers every interval."""
    result = empty_phase_time(task_id)
    for iv in intervals or []:
        duration = int(iv.get("duration_ms") or 0)
        if result["task_id"] is None:
            result["task_id"] = iv.get("task_id")
        field = PHASE_FIELDS.get(iv.get("phase"))
        if field:
            result[field] += duration
        result["total_time_ms"] += duration
    return result


def calculate_phase_time(events, now_ms, lookup=None, gap_policy=GAP_EXCLUDE):
    task_id = events[0].get("task_id") if events else None
    return aggregate_phase_time(reconstruct(events, now_ms, lookup, gap_policy), task_id=task_id)


def current_ms() -> int:
    return int(time.time() * 1000)


def phase_time_for_tasks(history, task_ids=None, now=None, status_phases=None, gap_policy=GAP_EXCLUDE):
    """
    Phase time for many tasks in one pass.

    history: {task_id: [events]}. Every id in task_ids gets an entry; tasks with
    no history get a zero record. "now" is read once for the whole pass.
    """
    now = current_ms() if now is None else now
    lookup = build_status_lookup(status_phases) if status_phases else None
    result = {}
    for task_id, events in (history or {}).items():
        pt = aggregate_phase_time(reconstruct(events, now, lookup, gap_policy), task_id=task_id)
        pt["task_id"] = task_id
        result[task_id] = pt
    for task_id in task_ids or []:
        if task_id not in result:
            result[task_id] = empty_phase_time(task_id)
    return result


def has_phase_activity(phase_time) -> bool:
    """False for a missing record or one with no editing or revision time."""
    if not phase_time:
        return False
    return phase_time["editing_time_ms"] > 0 or phase_time["revision_time_ms"] > 0
