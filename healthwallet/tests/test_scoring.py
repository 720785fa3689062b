import pytest

from healthwallet.schemas.records import Biomarker
from healthwallet.services import scoring


def _b(name, value, unit, status):
    return Biomarker(name=name, value=value, unit=unit, status=status)


@pytest.fixture
def panel():
    return [
        _b("Vitamin D", 24, "ng/mL", "low"),
        _b("LDL Cholesterol", 150, "mg/dL", "high"),
        _b("HDL Cholesterol", 65, "mg/dL", "optimal"),
    ]


def test_wellness_score_for_mixed_panel(panel):
    # 30 + 70 * 1/3 = 53.33
    assert scoring.wellness_score(panel) == 53


def test_wellness_score_bounds():
    assert scoring.wellness_score([]) == 0
    assert scoring.wellness_score([_b("Omega-3", 8, "%", None)]) == 0
    assert scoring.wellness_score([_b("Glucose", 150, "mg/dL", "high")]) == 30
    assert scoring.wellness_score([_b("Glucose", 90, "mg/dL", "optimal")]) == 100


def test_wellness_score_is_monotonic_in_optimal_count():
    scores = []
    for optimal in range(0, 5):
        markers = [_b(f"m{i}", 1, "", "optimal") for i in range(optimal)]
        markers += [_b(f"x{i}", 1, "", "low") for i in range(4 - optimal)]
        scores.append(scoring.wellness_score(markers))
    assert scores == sorted(scores)
    assert scores[0] == 30 and scores[-1] == 100


def test_unscored_markers_do_not_dilute_score(panel):
    with_unknown = panel + [_b("Omega-3 Index", 8, "%", None)]
    assert scoring.wellness_score(with_unknown) == scoring.wellness_score(panel)


def test_health_age_for_mixed_panel(panel):
    # vitamin D 24: no rule; LDL 150: +1; HDL 65: -2
    assert scoring.health_age(panel, 40) == 39


def test_health_age_needs_markers_and_age(panel):
    assert scoring.health_age([], 40) is None
    assert scoring.health_age(panel, None) is None


def test_health_age_first_matching_rule_wins():
    assert scoring.marker_age_modifier("ldl cholesterol", 170) == 3
    assert scoring.marker_age_modifier("ldl cholesterol", 140) == 1
    assert scoring.marker_age_modifier("ldl cholesterol", 110) == 0
    assert scoring.marker_age_modifier("ldl cholesterol", 90) == -1
    assert scoring.marker_age_modifier("vitamin d", 40) == -1
    assert scoring.marker_age_modifier("vitamin d", 10) == 2
    assert scoring.marker_age_modifier("hba1c", 6.5) == 3


def test_markers_without_rules_have_no_age_effect():
    markers = [_b("TSH", 9.0, "mIU/L", "high"), _b("Omega-3 Index", 2, "%", None)]
    assert scoring.health_age(markers, 50) == 50


def test_foreign_unit_reading_has_no_age_effect():
    markers = [_b("Glucose", 5.0, "mmol/L", None)]
    assert scoring.health_age(markers, 50) == 50


def test_scoring_is_deterministic(panel):
    assert [scoring.wellness_score(panel) for _ in range(3)] == [53, 53, 53]
    assert len({scoring.health_age(panel, 33) for _ in range(3)}) == 1


def test_unknown_operator_is_rejected():
    with pytest.raises(ValueError):
        scoring.marker_age_modifier("glucose", 100, {"glucose": [{"op": "approx", "value": 1, "modifier": 1}]})
