"""Turn raw extracted measurements into classified Biomarker records."""
from __future__ import annotations

from typing import Iterable, List, Optional

from healthwallet.schemas.records import Biomarker, BiomarkerCandidate, ReferenceRange
from healthwallet.services import reference_ranges


def classify_value(name: str, value: float, unit: Optional[str]) -> Optional[str]:
    """Status for one reading, or ``None`` when the marker cannot be scored."""
    spec = reference_ranges.get_range(name, unit)
    if spec is None:
        return None
    return reference_ranges.compare_to_range(value, spec)


def classify(candidate: BiomarkerCandidate) -> Biomarker:
    spec = reference_ranges.lookup(candidate.name)
    unit = candidate.unit
    if spec and not unit:
        unit = spec["unit"]
    status = classify_value(candidate.name, candidate.value, unit)
    if spec is None:
        return Biomarker(
            name=candidate.name,
            value=candidate.value,
            unit=unit,
            confidence=candidate.confidence,
        )
    return Biomarker(
        name=spec["display"],
        value=candidate.value,
        unit=unit,
        reference_range=ReferenceRange(min=spec.get("min"), max=spec.get("max")),
        status=status,
        category=spec.get("category"),
        confidence=candidate.confidence,
    )


def reclassify(biomarker: Biomarker) -> Biomarker:
    """Recompute status after a value or unit edit, keeping verification fields."""
    status = classify_value(biomarker.name, biomarker.value, biomarker.unit)
    return biomarker.model_copy(update={"status": status})


def classify_all(candidates: Iterable[BiomarkerCandidate]) -> List[Biomarker]:
    """Classify in extraction order; a repeated marker keeps its first reading."""
    seen: set[str] = set()
    out: List[Biomarker] = []
    for candidate in candidates:
        key = reference_ranges.normalize_name(candidate.name)
        if key in seen:
            continue
        seen.add(key)
        out.append(classify(candidate))
    return out


__all__ = ["classify", "classify_all", "classify_value", "reclassify"]
