import pytest

from conftest import HOUR, pt, task
from insights import (
    ERROR_RECOMMENDATIONS,
    URGENCY_RULES,
    all_insights,
    alteration_alerts,
    error_patterns,
    recommendation,
    urgency_level,
    urgency_score,
)


def test_alteration_breakpoint_adds_fifteen_points():
    below = urgency_score(34, 0, 0)
    at = urgency_score(35, 0, 0)
    assert below == {"value": 35, "level": "ok"}
    assert at == {"value": 50, "level": "attention"}
    assert at["value"] - below["value"] == 15


@pytest.mark.parametrize("trend_value,points", [(-3, 0), (0, 0), (0.1, 10), (5, 10), (5.1, 20), (10, 20), (10.1, 30)])
def test_trend_bands_are_strict(trend_value, points):
    # alteration 0 -> 10 and no feedback -> 10
    assert urgency_score(0, 0, trend_value)["value"] == 20 + points


@pytest.mark.parametrize("concentration,points", [(0, 10), (34, 10), (35, 20), (49, 20), (50, 30), (100, 30)])
def test_error_concentration_bands(concentration, points):
    assert urgency_score(0, concentration, 0)["value"] == 10 + points


def test_worst_case_is_critical():
    assert urgency_score(60, 80, 25) == {"value": 100, "level": "critical"}


def test_score_is_clamped():
    high = {k: {**v, "bands": [[0, 90]], "floor": 90} for k, v in URGENCY_RULES.items()}
    low = {k: {**v, "bands": [], "floor": -50} for k, v in URGENCY_RULES.items()}
    assert urgency_score(10, 10, 10, rules=high)["value"] == 100
    assert urgency_score(10, 10, 10, rules=low) == {"value": 0, "level": "ok"}


@pytest.mark.parametrize("value,level", [(100, "critical"), (70, "critical"), (69, "attention"), (40, "attention"), (39, "ok"), (0, "ok")])
def test_urgency_levels(value, level):
    assert urgency_level(value) == level


def test_custom_levels():
    assert urgency_level(50, [[50, "critical"]]) == "critical"
    assert urgency_level(49, [[50, "critical"]]) == "ok"


def test_error_patterns():
    patterns = error_patterns({"Other": 1, "Audio/Voice": 3, "Logo/Brand": 0})
    assert patterns == [
        {"category": "Audio/Voice", "count": 3, "percentage": 75},
        {"category": "Other", "count": 1, "percentage": 25},
    ]
    assert error_patterns({}) == []
    assert error_patterns(None) == []


@pytest.mark.parametrize("counts,percentage", [
    ({"Audio/Voice": 69, "Other": 131}, 35),
    ({"Other": 7, "Audio/Voice": 1}, 13),
    ({"Audio/Voice": 1, "Other": 1}, 50),
])
def test_error_percentages_round_halves_up(counts, percentage):
    shares = {p["category"]: p["percentage"] for p in error_patterns(counts)}
    assert shares["Audio/Voice"] == percentage


def test_half_percent_share_reaches_concentration_band():
    top = error_patterns({"Audio/Voice": 69, "Other": 131})[1]
    assert top["category"] == "Audio/Voice"
    assert urgency_score(0, top["percentage"], 0)["value"] == 30


@pytest.mark.parametrize("trend_label,top_error,rate,expected", [
    ("improving", None, 15, "Improving well, keep following up"),
    ("improving", None, 25, "Follow closely over the next weeks"),
    ("stable", None, 5, "Excellent performance, consider as a mentor"),
    ("stable", {"category": "Audio/Voice", "percentage": 40}, 25, ERROR_RECOMMENDATIONS["Audio/Voice"]),
    ("stable", {"category": "Audio/Voice", "percentage": 20}, 25, "Follow closely over the next weeks"),
    ("worsening", {"category": "Unlisted", "percentage": 60}, 40, "Schedule an urgent meeting to understand blockers"),
    ("worsening", None, 35, "Schedule an urgent meeting to understand blockers"),
])
def test_recommendation(trend_label, top_error, rate, expected):
    assert recommendation(trend_label, top_error, rate) == expected


def _tasks(editor, altered, clean):
    return (
        [task(editor, phase_time=pt(editing=HOUR, alteration=HOUR)) for _ in range(altered)]
        + [task(editor, phase_time=pt(editing=HOUR)) for _ in range(clean)]
    )


def test_all_insights_groups_by_level(teams):
    current = _tasks("Ana", 2, 2) + _tasks("Bruno", 0, 2) + _tasks("Lead", 3, 0)
    previous = _tasks("Ana", 0, 2)
    feedback = {"Ana": {"Audio/Voice": 3, "Other": 1}}

    result = all_insights(current, previous, teams, feedback_by_editor=feedback)

    assert [i["editor_name"] for i in result["critical"]] == ["Ana"]
    assert result["attention"] == []
    assert [i["editor_name"] for i in result["ok"]] == ["Bruno", "Caio"]

    ana = result["critical"][0]
    assert ana["team_id"] == "vsl"
    assert ana["team_name"] == "VSL"
    assert ana["alteration_rate"] == 50.0
    assert ana["previous_alteration_rate"] == 0
    assert ana["trend"] == "worsening"
    assert ana["trend_value"] == 50.0
    assert ana["top_error"]["category"] == "Audio/Voice"
    assert ana["urgency_score"] == 100
    assert ana["recommendation"] == ERROR_RECOMMENDATIONS["Audio/Voice"]

    assert result["ok"][0]["urgency_score"] == 20
    assert result["ok"][1]["total_videos"] == 0

    assert result["summary"] == {
        "total_editors": 3,
        "editors_needing_help": 1,
        "avg_alteration_rate": 17,
        "most_common_error": "Audio/Voice",
    }


def test_summary_average_rounds_halves_up(teams):
    # 25.0, 12.5 and 0 average to 12.5
    current = _tasks("Ana", 1, 3) + _tasks("Bruno", 1, 7)
    result = all_insights(current, [], teams)
    assert [i["alteration_rate"] for i in result["ok"] + result["attention"] + result["critical"]
            if i["editor_name"] == "Bruno"] == [12.5]
    assert result["summary"]["avg_alteration_rate"] == 13


def test_all_insights_without_feedback(teams):
    result = all_insights([], [], teams)
    assert result["summary"]["most_common_error"] == "N/A"
    assert result["summary"]["total_editors"] == 3
    assert result["summary"]["avg_alteration_rate"] == 0
    assert result["critical"] == result["attention"] == []


def test_alteration_alerts():
    metrics = {
        "Ana": {"alteration_rate": 50.0},
        "Bruno": {"alteration_rate": 10.0},
        "Caio": {"alteration_rate": 0},
    }
    alerts = alteration_alerts(metrics)
    assert alerts == [{"editor_name": "Ana", "value": 50.0, "threshold": 20.0}]
    assert alteration_alerts(metrics, margin=40) == []
    assert alteration_alerts({}) == []
