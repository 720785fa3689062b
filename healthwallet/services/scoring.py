"""Wellness score and health-age estimation.

Both functions are pure: the same biomarker list and age always produce the
same result. The marker thresholds live in ``config/scoring_rules.yaml``.
"""
from __future__ import annotations

import math
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from healthwallet.schemas.records import Biomarker
from healthwallet.services import reference_ranges

CONFIG_PATH = Path(__file__).parent.parent / "config" / "scoring_rules.yaml"

SCORED_STATUSES = ("low", "optimal", "high")


@lru_cache(maxsize=1)
def load_rules() -> Dict[str, Any]:
    with open(CONFIG_PATH, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def wellness_score(biomarkers: Iterable[Biomarker]) -> int:
    """0 with nothing scorable, otherwise floor + span * optimal fraction in [floor, 100]."""
    cfg = load_rules()["wellness"]
    floor, span = cfg["floor"], cfg["span"]
    scored = [b for b in biomarkers if b.status in SCORED_STATUSES]
    if not scored:
        return 0
    optimal = sum(1 for b in scored if b.status == "optimal")
    score = _round_half_up(floor + span * (optimal / len(scored)))
    return max(floor, min(100, score))


def _rule_matches(rule: Dict[str, Any], value: float) -> bool:
    op = rule["op"]
    if op == "gt":
        return value > rule["value"]
    if op == "gte":
        return value >= rule["value"]
    if op == "lt":
        return value < rule["value"]
    if op == "lte":
        return value <= rule["value"]
    if op == "between":
        return rule["min"] <= value <= rule["max"]
    raise ValueError(f"Unknown health-age operator: {op!r}")


def marker_age_modifier(key: str, value: float, rules: Optional[Dict[str, List[dict]]] = None) -> int:
    """Modifier contributed by one marker; 0 when no rule matches or the marker has no rules."""
    table = rules if rules is not None else load_rules()["health_age"]
    for rule in table.get(key, []):
        if _rule_matches(rule, value):
            return int(rule["modifier"])
    return 0


def health_age(biomarkers: Iterable[Biomarker], chronological_age: Optional[int]) -> Optional[int]:
    markers = list(biomarkers)
    if not markers or chronological_age is None:
        return None
    table = load_rules()["health_age"]
    modifier = 0
    seen: set[str] = set()
    for b in markers:
        key = reference_ranges.normalize_name(b.name)
        if key in seen or key not in table:
            continue
        # A reading in foreign units would be compared against the wrong thresholds
        if b.unit and reference_ranges.get_range(b.name, b.unit) is None:
            continue
        seen.add(key)
        modifier += marker_age_modifier(key, b.value, table)
    return int(chronological_age) + modifier


__all__ = ["load_rules", "wellness_score", "health_age", "marker_age_modifier"]
