"""Optimal reference ranges for the biomarkers the service knows how to score."""
from __future__ import annotations

import re
from typing import Any, Dict, Optional

RangeSpec = Dict[str, Any]


# Keys are the canonical (normalized) biomarker names used everywhere else:
# scoring rules, trend directions, correlations and supplement tables.
_CATALOG: Dict[str, RangeSpec] = {
    # vitamins & minerals
    "vitamin d": {"display": "Vitamin D", "unit": "ng/mL", "min": 40.0, "max": 60.0, "category": "vitamins"},
    "vitamin b12": {"display": "Vitamin B12", "unit": "pg/mL", "min": 200.0, "max": 900.0, "category": "vitamins"},
    "folate": {"display": "Folate", "unit": "ng/mL", "min": 3.0, "max": 20.0, "category": "vitamins"},
    "iron": {"display": "Iron", "unit": "ug/dL", "min": 60.0, "max": 170.0, "category": "vitamins"},
    "ferritin": {"display": "Ferritin", "unit": "ng/mL", "min": 20.0, "max": 200.0, "category": "vitamins"},
    "magnesium": {"display": "Magnesium", "unit": "mg/dL", "min": 1.7, "max": 2.2, "category": "vitamins"},
    "zinc": {"display": "Zinc", "unit": "ug/dL", "min": 60.0, "max": 120.0, "category": "vitamins"},
    "calcium": {"display": "Calcium", "unit": "mg/dL", "min": 8.5, "max": 10.5, "category": "vitamins"},
    # lipids
    "total cholesterol": {"display": "Total Cholesterol", "unit": "mg/dL", "min": 125.0, "max": 200.0, "category": "lipids"},
    "ldl cholesterol": {"display": "LDL Cholesterol", "unit": "mg/dL", "min": None, "max": 130.0, "category": "lipids"},
    "hdl cholesterol": {"display": "HDL Cholesterol", "unit": "mg/dL", "min": 60.0, "max": None, "category": "lipids"},
    "triglycerides": {"display": "Triglycerides", "unit": "mg/dL", "min": None, "max": 150.0, "category": "lipids"},
    # metabolic
    "glucose": {"display": "Fasting Glucose", "unit": "mg/dL", "min": 70.0, "max": 100.0, "category": "metabolic"},
    "hba1c": {"display": "HbA1c", "unit": "%", "min": 4.0, "max": 5.6, "category": "metabolic"},
    # thyroid
    "tsh": {"display": "TSH", "unit": "mIU/L", "min": 0.4, "max": 4.0, "category": "thyroid"},
    "free t3": {"display": "Free T3", "unit": "pg/mL", "min": 2.3, "max": 4.2, "category": "thyroid"},
    "free t4": {"display": "Free T4", "unit": "ng/dL", "min": 0.8, "max": 1.8, "category": "thyroid"},
    # inflammatory
    "crp": {"display": "CRP", "unit": "mg/L", "min": None, "max": 3.0, "category": "inflammatory"},
    "homocysteine": {"display": "Homocysteine", "unit": "umol/L", "min": None, "max": 15.0, "category": "inflammatory"},
    # blood
    "hemoglobin": {"display": "Hemoglobin", "unit": "g/dL", "min": 12.0, "max": 17.0, "category": "blood"},
    "wbc": {"display": "WBC", "unit": "x10^3/uL", "min": 4.0, "max": 11.0, "category": "blood"},
    "platelets": {"display": "Platelets", "unit": "x10^3/uL", "min": 150.0, "max": 450.0, "category": "blood"},
    # kidney & liver
    "creatinine": {"display": "Creatinine", "unit": "mg/dL", "min": 0.6, "max": 1.2, "category": "kidney"},
    "alt": {"display": "ALT", "unit": "U/L", "min": 7.0, "max": 56.0, "category": "liver"},
    "ast": {"display": "AST", "unit": "U/L", "min": 10.0, "max": 40.0, "category": "liver"},
}

_NAME_ALIASES = {
    "25-hydroxy vitamin d": "vitamin d",
    "25-hydroxyvitamin d": "vitamin d",
    "25(oh)d": "vitamin d",
    "vitamin d 25-hydroxy": "vitamin d",
    "vitamin d3": "vitamin d",
    "vit d": "vitamin d",
    "b12": "vitamin b12",
    "cobalamin": "vitamin b12",
    "folic acid": "folate",
    "serum iron": "iron",
    "ldl": "ldl cholesterol",
    "ldl-c": "ldl cholesterol",
    "ldl c": "ldl cholesterol",
    "hdl": "hdl cholesterol",
    "hdl-c": "hdl cholesterol",
    "hdl c": "hdl cholesterol",
    "cholesterol": "total cholesterol",
    "cholesterol total": "total cholesterol",
    "fasting glucose": "glucose",
    "blood glucose": "glucose",
    "fbs": "glucose",
    "hemoglobin a1c": "hba1c",
    "haemoglobin a1c": "hba1c",
    "a1c": "hba1c",
    "glycated hemoglobin": "hba1c",
    "thyroid stimulating hormone": "tsh",
    "ft3": "free t3",
    "ft4": "free t4",
    "c-reactive protein": "crp",
    "c reactive protein": "crp",
    "hs-crp": "crp",
    "hscrp": "crp",
    "haemoglobin": "hemoglobin",
    "hgb": "hemoglobin",
    "white blood cells": "wbc",
    "white blood cell count": "wbc",
    "leukocytes": "wbc",
    "platelet": "platelets",
    "plt": "platelets",
    "alanine aminotransferase": "alt",
    "aspartate aminotransferase": "ast",
}

_UNIT_ALIASES = {
    "x10^3/ul": "x10^3/ul",
    "10^3/ul": "x10^3/ul",
    "x10^9/l": "x10^3/ul",
    "10^9/l": "x10^3/ul",
    "k/ul": "x10^3/ul",
    "mcg/dl": "ug/dl",
    "µg/dl": "ug/dl",
    "μmol/l": "umol/l",
    "µmol/l": "umol/l",
    "uiu/ml": "miu/l",
    "mu/l": "miu/l",
    "iu/l": "u/l",
}

_WS = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    """Canonical key for a biomarker name.

    Case-folds, trims, collapses whitespace and resolves known aliases.
    Unknown names come back cleaned but otherwise unchanged so they can still
    be grouped across records.
    """
    cleaned = _WS.sub(" ", (name or "").strip().casefold())
    if not cleaned:
        return ""
    if cleaned in _CATALOG:
        return cleaned
    if cleaned in _NAME_ALIASES:
        return _NAME_ALIASES[cleaned]
    # "LDL-Cholesterol" / "Vitamin-D" style spellings
    spaced = _WS.sub(" ", cleaned.replace("-", " ").replace("_", " ")).strip()
    if spaced in _CATALOG:
        return spaced
    return _NAME_ALIASES.get(spaced, cleaned)


def normalize_unit(unit: Optional[str]) -> str:
    cleaned = (unit or "").strip().lower().replace(" ", "")
    return _UNIT_ALIASES.get(cleaned, cleaned)


def lookup(name: str) -> Optional[RangeSpec]:
    """Catalog entry for ``name`` (any spelling), or ``None`` for unknown markers."""
    return _CATALOG.get(normalize_name(name))


def get_range(name: str, unit: Optional[str]) -> Optional[RangeSpec]:
    """Catalog entry usable for classification.

    A reading whose unit differs from the catalog unit cannot be compared
    against the range, so it is treated as unknown.
    """
    spec = lookup(name)
    if not spec:
        return None
    if unit:
        unit_norm = normalize_unit(unit)
        spec_unit = normalize_unit(spec.get("unit", ""))
        if unit_norm and spec_unit and unit_norm != spec_unit:
            return None
    return spec


def compare_to_range(value: float, spec: RangeSpec) -> str:
    """``low`` / ``optimal`` / ``high``; both bounds belong to the optimal band."""
    lo, hi = spec.get("min"), spec.get("max")
    if lo is not None and value < lo:
        return "low"
    if hi is not None and value > hi:
        return "high"
    return "optimal"


def known_markers() -> list[str]:
    return sorted(_CATALOG)


def aliases_for(key: str) -> list[str]:
    """Every spelling that resolves to ``key``, canonical name first."""
    return [key] + sorted(alias for alias, target in _NAME_ALIASES.items() if target == key)


__all__ = [
    "normalize_name",
    "normalize_unit",
    "lookup",
    "get_range",
    "compare_to_range",
    "known_markers",
    "aliases_for",
]
