import os
import sys
import json
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

HOUR = 60 * 60 * 1000


def ev(status, ts, task_id="t1", previous=None):
    return {"task_id": task_id, "previous_status": previous, "new_status": status, "event_ts": ts}


def pt(editing=0, revision=0, alteration=0, approval=0, total=None, task_id=None):
    if total is None:
        total = editing + revision + alteration + approval
    return {
        "task_id": task_id,
        "editing_time_ms": editing,
        "revision_time_ms": revision,
        "alteration_time_ms": alteration,
        "approval_time_ms": approval,
        "total_time_ms": total,
    }


def task(editor="Ana", status="COMPLETED", phase_time=None, created=0, closed=None, hours=0, video_type="Other", editor_id=1, task_id=None):
    return {
        "id": task_id,
        "title": "",
        "status": status,
        "raw_status": status,
        "editor_name": editor,
        "editor_id": editor_id,
        "date_created": created,
        "date_closed": closed,
        "time_tracked_hours": hours,
        "video_type": video_type,
        "tags": [],
        "phase_time": phase_time,
    }


@pytest.fixture()
def teams():
    return [
        {
            "id": "vsl",
            "name": "VSL",
            "members": [
                {"id": 1, "name": "Lead", "role": "leader"},
                {"id": 2, "name": "Ana", "role": "editor"},
                {"id": 3, "name": "Bruno", "role": "editor"},
            ],
        },
        {
            "id": "ads",
            "name": "Ads",
            "members": [{"id": 4, "name": "Caio", "role": "editor"}],
        },
    ]


@pytest.fixture()
def raw_task():
    def _make(task_id="abc", status="aprovado", assignee=None, **extra):
        data = {
            "id": task_id,
            "name": f"Video {task_id}",
            "status": {"status": status},
            "date_created": "1000",
            "date_updated": "5000",
            "date_closed": None,
            "assignees": [assignee] if assignee else [],
            "tags": [],
            "custom_fields": [],
            "time_spent": None,
        }
        data.update(extra)
        return data
    return _make


@pytest.fixture()
def clickup_env(monkeypatch):
    monkeypatch.setenv("CLICKUP_API_KEY", "pk_test")
    monkeypatch.setenv("CLICKUP_LIST_ID", "42")
    return True


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload

    @property
    def text(self):
        return json.dumps(self._payload)


@pytest.fixture()
def fake_get(mocker):
    """Patch requests.Session.get; responses maps (url, sorted-params-json) -> (status, payload)."""
    import requests

    def _install(responses):
        calls = []

        def _fake(self, url, params=None, timeout=None):
            calls.append((url, params))
            key = (url, json.dumps(params or {}, sort_keys=True))
            if key in responses:
                status, payload = responses[key]
                return FakeResponse(status, payload)
            return FakeResponse(404, {"err": "not found"})

        mocker.patch.object(requests.Session, "get", _fake)
        return calls
    return _install


@pytest.fixture()
def event_log_file(tmp_path):
    return str(tmp_path / "events" / "status_events.jsonl")


@pytest.fixture(autouse=True)
def _no_dotenv_leak(monkeypatch):
    for name in ("CLICKUP_API_KEY", "CLICKUP_LIST_ID", "ANALYTICS_CONFIG", "STATUS_EVENT_LOG"):
        if name in os.environ:
            monkeypatch.delenv(name, raising=False)
