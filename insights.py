"""
Editor insights: who needs help and why.

Urgency is a fixed business rule table over three inputs: the alteration rate,
how concentrated the editor's review feedback is in one category, and the
alteration-rate trend against the previous window.
"""
from __future__ import annotations

import math
from collections import Counter

from editor_metrics import aggregate_group, group_by_editor, trend

# ----------------------------
# Urgency rule table
# ----------------------------
# Each band is (threshold, points); the first matching band wins, else the floor.
URGENCY_RULES = {
    "alteration_rate": {"bands": [[35, 40], [20, 25]], "floor": 10, "strict": False},
    "error_concentration": {"bands": [[50, 30], [35, 20]], "floor": 10, "strict": False},
    "trend": {"bands": [[10, 30], [5, 20], [0, 10]], "floor": 0, "strict": True},
}

URGENCY_LEVELS = [[70, "critical"], [40, "attention"]]
DEFAULT_LEVEL = "ok"

LEVELS = ("critical", "attention", "ok")


def _points(value, rule):
    for threshold, points in rule["bands"]:
        hit = value > threshold if rule.get("strict") else value >= threshold
        if hit:
            return points
    return rule["floor"]


def urgency_level(value, levels=None) -> str:
    for threshold, level in levels or URGENCY_LEVELS:
        if value >= threshold:
            return level
    return DEFAULT_LEVEL


def urgency_score(alteration_rate, top_error_concentration, trend_value, rules=None, levels=None):
    """0-100 score and level; higher means the editor needs help sooner."""
    rules = rules or URGENCY_RULES
    value = (
        _points(alteration_rate or 0, rules["alteration_rate"])
        + _points(top_error_concentration or 0, rules["error_concentration"])
        + _points(trend_value or 0, rules["trend"])
    )
    value = int(min(100, max(0, value)))
    return {"value": value, "level": urgency_level(value, levels)}


# ----------------------------
# Feedback patterns and recommendations
# ----------------------------
ERROR_RECOMMENDATIONS = {
    "Audio/Voice": "Talk through mixing and audio levels",
    "Subtitles/Text": "Review the subtitling process and timing",
    "Cuts/Transitions": "Practise transitions and editing rhythm",
    "Font/Typography": "Standardise typography against the guidelines",
    "Color/Image": "Review the colour grading workflow",
    "Timing/Sync": "Focus on audio/video synchronisation",
    "Logo/Brand": "Check brand placement",
    "CTA/Price": "Review the CTA and price templates",
    "Footage/Video": "Improve footage selection",
    "Other": "Schedule a 1:1 to understand the difficulties",
}


def _round_half_up(x):
    return int(math.floor(x + 0.5))


def error_patterns(category_counts):
    """[{category, count, percentage}] sorted by count, percentages rounded."""
    counts = {k: v for k, v in (category_counts or {}).items() if v}
    total = sum(counts.values())
    if not total:
        return []
    patterns = [
        {"category": cat, "count": n, "percentage": _round_half_up(n * 100 / total)}
        for cat, n in counts.items()
    ]
    return sorted(patterns, key=lambda p: -p["count"])


def recommendation(trend_label, top_error, alteration_rate) -> str:
    if trend_label == "improving" and alteration_rate < 20:
        return "Improving well, keep following up"
    if alteration_rate < 10:
        return "Excellent performance, consider as a mentor"
    if top_error and top_error["percentage"] >= 30:
        text = ERROR_RECOMMENDATIONS.get(top_error["category"])
        if text:
            return text
    if alteration_rate >= 35:
        return "Schedule an urgent meeting to understand blockers"
    return "Follow closely over the next weeks"


# ----------------------------
# Editor insights
# ----------------------------
def editor_insight(member, team, current_tasks, previous_tasks, feedback_categories=None,
                   dead_zone=5, rules=None, levels=None):
    current = aggregate_group(current_tasks)
    previous = aggregate_group(previous_tasks)
    t = trend(current["alteration_rate"], previous["alteration_rate"], dead_zone)

    patterns = error_patterns(feedback_categories)
    top_error = patterns[0] if patterns else None
    score = urgency_score(
        current["alteration_rate"],
        top_error["percentage"] if top_error else 0,
        t["trend_value"],
        rules=rules,
        levels=levels,
    )
    return {
        "editor_id": member.get("id"),
        "editor_name": member["name"],
        "team_id": team["id"],
        "team_name": team.get("name") or team["id"],
        "total_videos": current["total_videos"],
        "videos_with_alteration": current["videos_with_alteration"],
        "alteration_rate": current["alteration_rate"],
        "previous_videos": previous["total_videos"],
        "previous_alteration_rate": previous["alteration_rate"],
        "trend": t["trend"],
        "trend_value": t["trend_value"],
        "error_patterns": patterns,
        "top_error": top_error,
        "urgency_score": score["value"],
        "urgency_level": score["level"],
        "recommendation": recommendation(t["trend"], top_error, current["alteration_rate"]),
    }


def all_insights(current_tasks, previous_tasks, teams, feedback_by_editor=None,
                 dead_zone=5, rules=None, levels=None):
    """Insights for every non-leader team member, grouped by urgency level."""
    current_by_editor = group_by_editor(current_tasks)
    previous_by_editor = group_by_editor(previous_tasks)
    feedback_by_editor = feedback_by_editor or {}

    insights = []
    for team in teams or []:
        for member in team.get("members") or []:
            if member.get("role") == "leader":
                continue
            name = member["name"]
            insights.append(editor_insight(
                member, team,
                current_by_editor.get(name, []),
                previous_by_editor.get(name, []),
                feedback_by_editor.get(name),
                dead_zone=dead_zone, rules=rules, levels=levels,
            ))
    insights.sort(key=lambda i: -i["urgency_score"])

    grouped = {level: [i for i in insights if i["urgency_level"] == level] for level in LEVELS}

    all_errors = Counter()
    for i in insights:
        for p in i["error_patterns"]:
            all_errors[p["category"]] += p["count"]
    most_common = all_errors.most_common(1)

    rates = [i["alteration_rate"] for i in insights]
    return {
        **grouped,
        "summary": {
            "total_editors": len(insights),
            "editors_needing_help": len(grouped["critical"]) + len(grouped["attention"]),
            "avg_alteration_rate": _round_half_up(sum(rates) / len(rates)) if rates else 0,
            "most_common_error": most_common[0][0] if most_common else "N/A",
        },
    }


def alteration_alerts(editor_metrics, margin=10):
    """Editors whose alteration rate is more than `margin` points above the group average."""
    rates = [m["alteration_rate"] for m in editor_metrics.values()]
    if not rates:
        return []
    avg = sum(rates) / len(rates)
    alerts = [
        {"editor_name": name, "value": m["alteration_rate"], "threshold": round(avg, 1)}
        for name, m in editor_metrics.items()
        if m["alteration_rate"] > avg + margin
    ]
    return sorted(alerts, key=lambda a: -a["value"])
