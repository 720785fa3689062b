"""Read-side views over a user's completed records: dashboard and clinician brief."""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from healthwallet.services import reference_ranges, trends

SPARKLINE_POINTS = 6
_CATEGORY_SCORE = {"optimal": 100, "low": 70, "high": 70}


def score_breakdown(biomarkers: Sequence[dict]) -> Dict[str, int]:
    """Average per category: 100 for an optimal marker, 70 otherwise. Unscored markers are skipped."""
    buckets: Dict[str, List[int]] = defaultdict(list)
    for b in biomarkers:
        status = b.get("status")
        if status not in _CATEGORY_SCORE:
            continue
        buckets[b.get("category") or "other"].append(_CATEGORY_SCORE[status])
    return {cat: round(sum(vals) / len(vals)) for cat, vals in sorted(buckets.items())}


def sparklines(ordered: Sequence[Any], limit: int = SPARKLINE_POINTS) -> List[dict]:
    """Recent values for every marker on the newest record, oldest first."""
    if not ordered:
        return []
    latest = ordered[-1]
    history: Dict[str, List[float]] = defaultdict(list)
    for record in ordered:
        for b in record.biomarkers or []:
            history[reference_ranges.normalize_name(b.get("name"))].append(float(b["value"]))
    lines = []
    for b in latest.biomarkers or []:
        key = reference_ranges.normalize_name(b.get("name"))
        lines.append({
            "name": b.get("name"),
            "unit": b.get("unit") or "",
            "status": b.get("status"),
            "latest": b.get("value"),
            "values": history[key][-limit:],
        })
    return lines


def dashboard_summary(records: Sequence[Any], chronological_age: Optional[int], total_records: int) -> dict:
    ordered = trends.sort_records(records)
    if not ordered:
        return {
            "wellness_score": 0,
            "chronological_age": chronological_age,
            "total_records": total_records,
        }
    latest = ordered[-1]
    return {
        "wellness_score": latest.wellness_score or 0,
        "health_age": latest.health_age,
        "chronological_age": chronological_age,
        "last_sync": latest.updated_at,
        "summary": latest.summary,
        "score_breakdown": score_breakdown(latest.biomarkers or []),
        "biomarker_trends": sparklines(ordered),
        "key_findings": latest.key_findings or [],
        "correlations": latest.correlations or [],
        "supplement_protocol": latest.supplement_protocol or [],
        "total_records": total_records,
    }


def _format_range(ref: Optional[dict]) -> str:
    if not ref:
        return ""
    lo, hi = ref.get("min"), ref.get("max")
    if lo is not None and hi is not None:
        return f" (optimal {lo:g}-{hi:g})"
    if lo is not None:
        return f" (optimal >= {lo:g})"
    if hi is not None:
        return f" (optimal <= {hi:g})"
    return ""


def doctor_brief(
    records: Sequence[Any],
    chronological_age: Optional[int] = None,
    sex: Optional[str] = None,
    include_trends: bool = True,
    include_correlations: bool = True,
    generated_at: Optional[datetime] = None,
) -> str:
    """Plain-text summary a clinician can read in a minute. Newest record first."""
    ordered = trends.sort_records(records)
    generated_at = generated_at or datetime.now(timezone.utc)
    lines = [
        "HEALTH RECORD SUMMARY FOR CLINICIAN",
        f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M UTC')}",
        f"Age: {chronological_age if chronological_age is not None else 'unknown'}"
        + (f" | Sex: {sex}" if sex else ""),
        f"Records included: {len(ordered)}",
        "",
    ]

    for record in reversed(ordered):
        taken = trends.record_timestamp(record).date().isoformat()
        lines.append(f"== {record.original_filename} ({taken}) ==")
        if record.lab_provider:
            lines.append(f"Lab: {record.lab_provider}")
        lines.append(
            f"Wellness score: {record.wellness_score if record.wellness_score is not None else '-'}/100"
            f" | Health age: {record.health_age if record.health_age is not None else '-'}"
        )
        lines.append("Biomarkers:")
        for b in record.biomarkers or []:
            flag = f" [{b['status'].upper()}]" if b.get("status") else ""
            edited = " (patient-corrected)" if b.get("original_value") is not None else ""
            lines.append(
                f"  - {b['name']}: {b['value']:g} {b.get('unit') or ''}".rstrip()
                + flag
                + _format_range(b.get("reference_range"))
                + edited
            )
        if record.key_findings:
            lines.append("Key findings:")
            lines.extend(f"  - {f}" for f in record.key_findings)
        if include_correlations and record.correlations:
            lines.append("Patterns:")
            for c in record.correlations:
                lines.append(f"  - [{c.get('severity', 'info').upper()}] {c.get('condition') or ', '.join(c['markers'])}: {c['insight']}")
        lines.append("")

    if include_trends and len(ordered) > 1:
        result = trends.compare(ordered)
        changed = [t for t in result.biomarker_trends if t.change_percent is not None]
        if changed:
            lines.append("== Trends ==")
            for t in changed:
                sign = "+" if t.change_percent > 0 else ""
                lines.append(f"  - {t.name}: {sign}{round(t.change_percent, 1):g}% ({t.trend})")
            lines.append("")

    lines.append("Generated from patient-uploaded lab reports. Not a diagnosis.")
    return "\n".join(lines)


__all__ = ["dashboard_summary", "doctor_brief", "score_breakdown", "sparklines"]
