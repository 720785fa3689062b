"""Rule-based analysis attached to a record at finalization."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from healthwallet.schemas.records import (
    Biomarker,
    Correlation,
    FoodRecommendation,
    SupplementRecommendation,
)
from healthwallet.services import reference_ranges, scoring


# (required marker statuses, finding)
CORRELATION_RULES: List[Tuple[Dict[str, str], Correlation]] = [
    (
        {"ferritin": "low", "hemoglobin": "low"},
        Correlation(
            markers=["Ferritin", "Hemoglobin"],
            insight="Both iron storage (ferritin) and oxygen-carrying capacity (hemoglobin) are low. "
                    "This pattern strongly suggests iron deficiency anemia.",
            severity="warning",
            condition="Iron Deficiency Anemia",
        ),
    ),
    (
        {"glucose": "high", "triglycerides": "high", "hdl cholesterol": "low"},
        Correlation(
            markers=["Glucose", "Triglycerides", "HDL"],
            insight="High blood sugar combined with high triglycerides and low HDL is a classic pattern "
                    "of insulin resistance and metabolic syndrome.",
            severity="critical",
            condition="Metabolic Syndrome",
        ),
    ),
    (
        {"tsh": "high", "free t3": "low"},
        Correlation(
            markers=["TSH", "Free T3"],
            insight="High TSH with low Free T3 suggests an underperforming thyroid or poor T4 to T3 conversion.",
            severity="warning",
            condition="Hypothyroidism",
        ),
    ),
    (
        {"ldl cholesterol": "high", "crp": "high"},
        Correlation(
            markers=["LDL Cholesterol", "CRP"],
            insight="Elevated LDL combined with high inflammation (CRP) significantly increases cardiovascular risk.",
            severity="critical",
            condition="Elevated Cardiovascular Risk",
        ),
    ),
    (
        {"vitamin d": "low", "crp": "high"},
        Correlation(
            markers=["Vitamin D", "CRP"],
            insight="Low vitamin D alongside elevated CRP is often seen with chronic low-grade inflammation.",
            severity="warning",
            condition="Chronic Inflammation",
        ),
    ),
    (
        {"vitamin b12": "low", "homocysteine": "high"},
        Correlation(
            markers=["Vitamin B12", "Homocysteine"],
            insight="Low B12 with elevated homocysteine indicates B12 deficiency affecting methylation pathways.",
            severity="warning",
            condition="B12 Deficiency / Methylation Issues",
        ),
    ),
]

# (marker, status) -> protocol
SUPPLEMENT_PROTOCOLS: Dict[Tuple[str, str], dict] = {
    ("vitamin d", "low"): {
        "name": "Vitamin D3 + K2",
        "dosage": "5000 IU D3 + 100mcg K2 daily with fatty meal",
        "reason": "D3 is better absorbed than D2. K2 ensures calcium goes to bones, not arteries.",
        "priority": "essential",
    },
    ("iron", "low"): {
        "name": "Iron Bisglycinate",
        "dosage": "25-50mg every other day with vitamin C",
        "reason": "Bisglycinate form is gentle on stomach. Take with 500mg vitamin C for absorption.",
        "priority": "essential",
    },
    ("ferritin", "low"): {
        "name": "Iron Bisglycinate",
        "dosage": "25-50mg every other day with vitamin C",
        "reason": "Low ferritin indicates depleted iron stores. Bisglycinate is gentle on stomach.",
        "priority": "essential",
    },
    ("vitamin b12", "low"): {
        "name": "Methylcobalamin B12",
        "dosage": "1000-2000mcg sublingual daily",
        "reason": "Methylcobalamin is the active form. Sublingual bypasses digestion issues.",
        "priority": "essential",
    },
    ("folate", "low"): {
        "name": "Methylfolate (5-MTHF)",
        "dosage": "400-800mcg daily",
        "reason": "Active form of folate, no conversion needed. Supports DNA synthesis and methylation.",
        "priority": "essential",
    },
    ("homocysteine", "high"): {
        "name": "Methylated B-Complex",
        "dosage": "1 capsule daily with food",
        "reason": "Contains methylfolate and methylcobalamin to support homocysteine metabolism.",
        "priority": "essential",
    },
    ("magnesium", "low"): {
        "name": "Magnesium Glycinate",
        "dosage": "300-400mg before bed",
        "reason": "Glycinate form supports sleep and is well-absorbed. Avoid oxide form.",
        "priority": "recommended",
    },
    ("hdl cholesterol", "low"): {
        "name": "Omega-3 Fish Oil",
        "dosage": "2-3g EPA+DHA daily with food",
        "reason": "High-dose omega-3s raise HDL and lower triglycerides.",
        "priority": "recommended",
    },
    ("zinc", "low"): {
        "name": "Zinc Picolinate",
        "dosage": "15-30mg daily with food",
        "reason": "Picolinate form is well-absorbed. Supports immune function and hormone production.",
        "priority": "recommended",
    },
    ("calcium", "low"): {
        "name": "Calcium Citrate + D3",
        "dosage": "500mg calcium + 1000 IU D3, 2x daily",
        "reason": "Citrate form absorbed without food. D3 needed for calcium absorption.",
        "priority": "recommended",
    },
}

_PRIORITY_ORDER = {"essential": 0, "recommended": 1, "optional": 2}

# (marker, status) -> diet -> [(food, portion, reason)]
FOOD_RECOMMENDATIONS: Dict[Tuple[str, str], Dict[str, List[Tuple[str, str, str]]]] = {
    ("vitamin d", "low"): {
        "omnivore": [
            ("Salmon", "4 oz, 2x/week", "Rich in D3 and Omega-3s"),
            ("Egg Yolks", "2-3 daily", "Natural vitamin D source"),
            ("Cod Liver Oil", "1 tbsp daily", "Highest food source of D3"),
        ],
        "vegetarian": [
            ("Egg Yolks", "2-3 daily", "Natural vitamin D source"),
            ("Fortified Milk", "2 cups daily", "Vitamin D fortified"),
            ("UV-Exposed Mushrooms", "1 cup daily", "Plant-based D2"),
        ],
        "vegan": [
            ("UV-Exposed Mushrooms", "1 cup daily", "Plant-based vitamin D2"),
            ("Fortified Plant Milk", "2 cups daily", "Vitamin D fortified"),
            ("Fortified Orange Juice", "1 cup daily", "D-fortified option"),
        ],
        "keto": [
            ("Salmon", "6 oz, 3x/week", "High fat, high D3"),
            ("Egg Yolks", "4-6 daily", "Keto-friendly D source"),
            ("Sardines", "1 can, 3x/week", "Vitamin D + healthy fats"),
        ],
        "paleo": [
            ("Wild-Caught Salmon", "4 oz, 3x/week", "Paleo-approved, high D3"),
            ("Pasture-Raised Eggs", "3 daily", "Higher D than conventional"),
            ("Liver", "3 oz, 2x/week", "Nutrient-dense D source"),
        ],
        "pescatarian": [
            ("Salmon", "4 oz, 3x/week", "Best food source of D3"),
            ("Mackerel", "4 oz, 2x/week", "Excellent D3 content"),
            ("Sardines", "1 can, 2x/week", "Affordable D source"),
        ],
    },
    ("iron", "low"): {
        "omnivore": [
            ("Beef Liver", "3 oz, 2x/week", "Highest heme iron"),
            ("Grass-Fed Beef", "4 oz, 3x/week", "Highly absorbable iron"),
            ("Oysters", "6 oysters, 2x/week", "Iron + zinc combo"),
        ],
        "vegetarian": [
            ("Eggs + Spinach", "2 eggs + 2 cups spinach", "Iron with absorption helpers"),
            ("Lentils with Lemon", "1 cup + lemon juice", "Vitamin C boosts iron absorption"),
            ("Fortified Cereals", "1 serving daily", "Iron-fortified breakfast"),
        ],
        "vegan": [
            ("Lentils + Bell Pepper", "1 cup + 1 pepper", "Vitamin C boosts plant iron absorption"),
            ("Spinach + Citrus Dressing", "3 cups salad", "Maximize iron uptake"),
            ("Pumpkin Seeds", "1/4 cup daily", "Iron-rich snack"),
        ],
        "keto": [
            ("Beef Liver", "3 oz, 2x/week", "Keto-friendly, iron-rich"),
            ("Grass-Fed Steak", "6 oz, 3x/week", "High fat + high iron"),
            ("Sardines", "1 can daily", "Low-carb iron source"),
        ],
        "paleo": [
            ("Grass-Fed Beef", "4 oz, 4x/week", "Paleo staple, high iron"),
            ("Liver Pate", "2 oz, 3x/week", "Organ meat = nutrient dense"),
            ("Lamb", "4 oz, 2x/week", "Red meat variety"),
        ],
        "pescatarian": [
            ("Oysters", "6, 2x/week", "Highest seafood iron"),
            ("Clams", "3 oz, 2x/week", "Excellent iron content"),
            ("Mussels", "3 oz, 2x/week", "Shellfish iron source"),
        ],
    },
    ("ldl cholesterol", "high"): {
        "omnivore": [
            ("Oatmeal", "1 cup daily", "Soluble fiber lowers LDL"),
            ("Salmon", "4 oz, 2x/week", "Omega-3s improve lipid profile"),
            ("Almonds", "1 oz daily", "Plant sterols reduce absorption"),
        ],
        "vegetarian": [
            ("Oatmeal", "1 cup daily", "Soluble fiber lowers LDL"),
            ("Walnuts", "1 oz daily", "ALA omega-3s for heart health"),
            ("Avocado", "1/2 daily", "Monounsaturated fats improve ratio"),
        ],
        "vegan": [
            ("Oatmeal", "1 cup daily", "Soluble fiber lowers LDL"),
            ("Ground Flaxseed", "2 tbsp daily", "Fiber + omega-3s"),
            ("Beans/Lentils", "1 cup daily", "Soluble fiber powerhouse"),
        ],
        "keto": [
            ("Avocado", "1 daily", "Healthy fats, fiber"),
            ("Macadamia Nuts", "1 oz daily", "Best nut for lipids on keto"),
            ("Olive Oil", "3 tbsp daily", "Monounsaturated fats"),
        ],
        "paleo": [
            ("Avocado", "1 daily", "Paleo-approved healthy fat"),
            ("Wild Salmon", "4 oz, 3x/week", "Omega-3s improve lipids"),
            ("Walnuts", "1 oz daily", "ALA for heart health"),
        ],
        "pescatarian": [
            ("Salmon", "4 oz, 3x/week", "EPA/DHA lower triglycerides"),
            ("Oatmeal", "1 cup daily", "Soluble fiber lowers LDL"),
            ("Sardines", "1 can, 2x/week", "Omega-3 rich"),
        ],
    },
}
FOOD_RECOMMENDATIONS[("ferritin", "low")] = FOOD_RECOMMENDATIONS[("iron", "low")]


@dataclass
class Analysis:
    """Every derived field written onto a record at finalization."""

    wellness_score: int
    health_age: Optional[int]
    summary: str
    correlations: List[Correlation] = field(default_factory=list)
    key_findings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    food_recommendations: List[FoodRecommendation] = field(default_factory=list)
    supplement_protocol: List[SupplementRecommendation] = field(default_factory=list)

    def as_columns(self) -> dict:
        return {
            "wellness_score": self.wellness_score,
            "health_age": self.health_age,
            "summary": self.summary,
            "correlations": [c.model_dump() for c in self.correlations],
            "key_findings": list(self.key_findings),
            "recommendations": list(self.recommendations),
            "food_recommendations": [f.model_dump() for f in self.food_recommendations],
            "supplement_protocol": [s.model_dump() for s in self.supplement_protocol],
        }


def _status_by_key(biomarkers: List[Biomarker]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for b in biomarkers:
        key = reference_ranges.normalize_name(b.name)
        if b.status and key not in out:
            out[key] = b.status
    return out


def detect_correlations(biomarkers: List[Biomarker]) -> List[Correlation]:
    statuses = _status_by_key(biomarkers)
    return [
        finding.model_copy()
        for required, finding in CORRELATION_RULES
        if all(statuses.get(marker) == status for marker, status in required.items())
    ]


def supplement_protocol(biomarkers: List[Biomarker]) -> List[SupplementRecommendation]:
    protocols: List[SupplementRecommendation] = []
    linked: set[str] = set()
    for b in biomarkers:
        if b.status in (None, "optimal"):
            continue
        key = reference_ranges.normalize_name(b.name)
        protocol = SUPPLEMENT_PROTOCOLS.get((key, b.status))
        if protocol and protocol["name"] not in linked:
            linked.add(protocol["name"])
            protocols.append(SupplementRecommendation(biomarker_link=b.name, **protocol))
    # stable sort keeps biomarker order within a priority tier
    protocols.sort(key=lambda p: _PRIORITY_ORDER.get(p.priority, 2))
    return protocols


def food_recommendations(biomarkers: List[Biomarker], dietary_preference: str = "omnivore") -> List[FoodRecommendation]:
    recs: List[FoodRecommendation] = []
    for b in biomarkers:
        if b.status in (None, "optimal"):
            continue
        by_diet = FOOD_RECOMMENDATIONS.get((reference_ranges.normalize_name(b.name), b.status))
        if not by_diet:
            continue
        for food, portion, reason in by_diet.get(dietary_preference) or by_diet["omnivore"]:
            recs.append(FoodRecommendation(food=food, portion=portion, reason=reason, targets=[b.name]))
    return recs


def summarize(biomarkers: List[Biomarker]) -> str:
    low = [b.name for b in biomarkers if b.status == "low"]
    high = [b.name for b in biomarkers if b.status == "high"]
    parts: List[str] = []
    if low:
        parts.append(f"Low levels detected: {', '.join(low)}.")
    if high:
        parts.append(f"Elevated levels detected: {', '.join(high)}.")
    if not parts:
        if any(b.status == "optimal" for b in biomarkers):
            parts.append("All scored biomarkers are within the optimal range.")
        else:
            parts.append("None of the extracted biomarkers have a reference range on file.")
    return " ".join(parts)


def analyze(
    biomarkers: List[Biomarker],
    chronological_age: Optional[int] = None,
    dietary_preference: str = "omnivore",
) -> Analysis:
    correlations = detect_correlations(biomarkers)
    off_range = [b for b in biomarkers if b.status in ("low", "high")]
    recommendations = [f"Address {b.name} levels" for b in off_range]
    recommendations += [
        f"Discuss possible {c.condition} with your clinician" for c in correlations if c.condition
    ]
    return Analysis(
        wellness_score=scoring.wellness_score(biomarkers),
        health_age=scoring.health_age(biomarkers, chronological_age),
        summary=summarize(biomarkers),
        correlations=correlations,
        key_findings=[f"{b.name} is {b.status}" for b in off_range],
        recommendations=recommendations,
        food_recommendations=food_recommendations(biomarkers, dietary_preference),
        supplement_protocol=supplement_protocol(biomarkers),
    )


__all__ = [
    "Analysis",
    "analyze",
    "detect_correlations",
    "supplement_protocol",
    "food_recommendations",
    "summarize",
]
