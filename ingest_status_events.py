#!/usr/bin/env python3
"""
Append ClickUp status-change webhooks to the status event log.
Run with one or more saved payload files (a JSON object, a JSON array of
objects, or JSON lines); with no arguments the payload is read from stdin.
- taskStatusUpdated payloads become one event each.
- Anything else is skipped and counted.
"""
from __future__ import annotations

import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from event_log import append_event, event_from_webhook
from phase_time import current_ms

REPO_ROOT = Path(__file__).resolve().parent
DEFAULT_EVENT_LOG = REPO_ROOT / "status_events.jsonl"


def read_payloads(text: str) -> list[dict]:
    text = text.strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return [json.loads(ln) for ln in text.splitlines() if ln.strip()]
    return data if isinstance(data, list) else [data]


def ingest(payloads, log_path, received_at_ms=None) -> tuple[int, int]:
    """Append every status event found; returns (saved, skipped)."""
    received_at_ms = received_at_ms or current_ms()
    saved = skipped = 0
    for payload in payloads:
        event = event_from_webhook(payload, received_at_ms=received_at_ms)
        if event is None:
            skipped += 1
            continue
        append_event(log_path, event)
        saved += 1
    return saved, skipped


def main(argv=None) -> int:
    load_dotenv()
    argv = sys.argv[1:] if argv is None else argv
    log_path = Path(os.environ.get("STATUS_EVENT_LOG") or DEFAULT_EVENT_LOG)

    payloads = []
    try:
        if argv:
            for name in argv:
                payloads.extend(read_payloads(Path(name).read_text(encoding="utf-8")))
        else:
            payloads = read_payloads(sys.stdin.read())
    except (OSError, json.JSONDecodeError) as e:
        print(f"Could not read webhook payloads: {e}", file=sys.stderr)
        return 1

    if not payloads:
        print("No webhook payloads given.", file=sys.stderr)
        return 0

    saved, skipped = ingest(payloads, log_path)
    print(f"Saved {saved} status events to {log_path.name} ({skipped} payloads skipped).", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
