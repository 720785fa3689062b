"""Longitudinal biomarker comparison across a user's completed records."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Optional

from healthwallet.schemas.records import BiomarkerTrend, DateRange, TrendPoint
from healthwallet.services import reference_ranges
from healthwallet.services.scoring import load_rules


@dataclass
class ComparisonResult:
    biomarker_trends: List[BiomarkerTrend]
    records_compared: int
    date_range: Optional[DateRange]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def record_timestamp(record: Any) -> datetime:
    """When a record was taken: its lab date if known, else its upload time."""
    record_date = getattr(record, "record_date", None)
    if isinstance(record_date, datetime):
        return _as_utc(record_date)
    if isinstance(record_date, date):
        return datetime.combine(record_date, time.min, tzinfo=timezone.utc)
    return _as_utc(record.created_at)


def sort_records(records: Iterable[Any]) -> List[Any]:
    return sorted(records, key=lambda r: (record_timestamp(r), _as_utc(r.created_at)))


def percent_change(earliest: float, latest: float) -> Optional[float]:
    if earliest == 0:
        return None
    return (latest - earliest) * 100 / abs(earliest)


def _distance_to_band(key: str, value: float) -> Optional[float]:
    spec = reference_ranges.lookup(key)
    if spec is None:
        return None
    lo, hi = spec.get("min"), spec.get("max")
    if lo is not None and value < lo:
        return lo - value
    if hi is not None and value > hi:
        return value - hi
    return 0.0


def label_trend(key: str, earliest: float, latest: float, change: Optional[float]) -> str:
    cfg = load_rules()["trends"]
    direction = cfg["direction"].get(key)
    if direction is None or change is None or abs(change) < cfg["deadband_percent"]:
        return "stable"
    if direction == "higher":
        return "improving" if latest > earliest else "declining"
    if direction == "lower":
        return "improving" if latest < earliest else "declining"
    if direction == "band":
        before, after = _distance_to_band(key, earliest), _distance_to_band(key, latest)
        if before is None or after is None or before == after:
            return "stable"
        return "improving" if after < before else "declining"
    raise ValueError(f"Unknown trend direction for {key!r}: {direction!r}")


def _unit_fits(key: str, unit: str, series_unit: Optional[str]) -> bool:
    # Catalog markers must be in the catalog unit; others must match the series' first reading
    if reference_ranges.lookup(key) is not None:
        return not unit or reference_ranges.get_range(key, unit) is not None
    if series_unit is None:
        return True
    return reference_ranges.normalize_unit(unit) == reference_ranges.normalize_unit(series_unit)


def compare(records: Iterable[Any]) -> ComparisonResult:
    """Group every biomarker by canonical name and label its movement over time.

    Records are expected to be ``completed``; callers filter. A marker seen in
    only one record still gets a series, with no percent change. Readings in a
    unit that cannot be compared with the rest of the series are left out.
    """
    ordered = sort_records(records)
    series: Dict[str, List[TrendPoint]] = {}
    names: Dict[str, str] = {}
    units: Dict[str, str] = {}

    for record in ordered:
        when = record_timestamp(record)
        seen_here: set[str] = set()
        for raw in record.biomarkers or []:
            key = reference_ranges.normalize_name(raw.get("name"))
            unit = raw.get("unit") or ""
            if not key or key in seen_here or not _unit_fits(key, unit, units.get(key)):
                continue
            seen_here.add(key)
            series.setdefault(key, []).append(
                TrendPoint(date=when, value=float(raw["value"]), status=raw.get("status"))
            )
            names.setdefault(key, raw.get("name") or key)
            if not units.get(key):
                units[key] = unit

    trends: List[BiomarkerTrend] = []
    for key, points in series.items():
        change = None
        label = "stable"
        if len(points) > 1:
            earliest, latest = points[0].value, points[-1].value
            change = percent_change(earliest, latest)
            label = label_trend(key, earliest, latest, change)
        trends.append(
            BiomarkerTrend(
                name=names[key],
                unit=units[key],
                data_points=points,
                change_percent=change,
                trend=label,
            )
        )

    date_range = None
    if ordered:
        date_range = DateRange(start=record_timestamp(ordered[0]), end=record_timestamp(ordered[-1]))
    return ComparisonResult(biomarker_trends=trends, records_compared=len(ordered), date_range=date_range)


__all__ = ["ComparisonResult", "compare", "label_trend", "percent_change", "record_timestamp", "sort_records"]
