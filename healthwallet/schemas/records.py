# healthwallet/schemas/records.py
import math
from datetime import date, datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

BiomarkerStatus = Literal["low", "optimal", "high"]


# ---------- Biomarkers ----------
class ReferenceRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class BiomarkerCandidate(BaseModel):
    """One measurement as returned by the extraction provider."""

    name: str = Field(..., min_length=1, max_length=120)
    value: float
    unit: str = ""
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("value")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("value must be a finite number")
        return v

    @field_validator("unit", mode="before")
    @classmethod
    def _unit_or_blank(cls, v: Any) -> str:
        return (v or "").strip() if isinstance(v, str) or v is None else str(v)


class Biomarker(BaseModel):
    name: str
    value: float
    unit: str = ""
    reference_range: Optional[ReferenceRange] = None
    status: Optional[BiomarkerStatus] = None
    category: Optional[str] = None
    confidence: Optional[float] = None
    verified: bool = False
    original_value: Optional[float] = None


# ---------- Derived analysis ----------
class Correlation(BaseModel):
    markers: List[str]
    insight: str
    severity: Literal["info", "warning", "critical"] = "info"
    condition: Optional[str] = None


class SupplementRecommendation(BaseModel):
    name: str
    dosage: str
    reason: str
    biomarker_link: str
    priority: Literal["essential", "recommended", "optional"] = "optional"


class FoodRecommendation(BaseModel):
    food: str
    portion: str
    reason: str
    targets: List[str] = Field(default_factory=list)


# ---------- Records ----------
class UploadOut(BaseModel):
    record_id: str
    status: str
    message: str = "File uploaded successfully. Processing started."


class HealthRecordOut(BaseModel):
    id: str
    status: str
    version: int
    original_filename: str
    record_date: Optional[date] = None
    lab_provider: Optional[str] = None
    record_type: str = "blood_panel"
    biomarkers: List[Biomarker] = Field(default_factory=list)
    summary: Optional[str] = None
    correlations: List[Correlation] = Field(default_factory=list)
    key_findings: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    food_recommendations: List[FoodRecommendation] = Field(default_factory=list)
    supplement_protocol: List[SupplementRecommendation] = Field(default_factory=list)
    wellness_score: Optional[int] = None
    health_age: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator(
        "biomarkers",
        "correlations",
        "key_findings",
        "recommendations",
        "food_recommendations",
        "supplement_protocol",
        mode="before",
    )
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class HealthRecordListOut(BaseModel):
    records: List[HealthRecordOut]
    total: int
    page: int
    per_page: int
    pages: int


# ---------- Verification ----------
class BiomarkerEdit(BaseModel):
    name: str
    # Left loose on purpose: a bad value rejects this edit only, not the request
    value: Any = None
    unit: Optional[str] = None
    verified: bool = True


class VerifyRecordIn(BaseModel):
    biomarker_edits: List[BiomarkerEdit] = Field(default_factory=list)
    approved: bool = True
    expected_version: Optional[int] = None


class RejectedEdit(BaseModel):
    name: str
    reason: str


class VerifyRecordOut(BaseModel):
    id: str
    status: str
    version: int
    biomarkers: List[Biomarker]
    rejected_edits: List[RejectedEdit] = Field(default_factory=list)
    wellness_score: Optional[int] = None
    health_age: Optional[int] = None
    message: str


# ---------- Comparison ----------
class TrendPoint(BaseModel):
    date: datetime
    value: float
    status: Optional[str] = None


class BiomarkerTrend(BaseModel):
    name: str
    unit: str
    data_points: List[TrendPoint]
    change_percent: Optional[float] = None
    trend: Literal["improving", "declining", "stable"] = "stable"


class DateRange(BaseModel):
    start: datetime
    end: datetime


class ComparisonOut(BaseModel):
    biomarker_trends: List[BiomarkerTrend]
    records_compared: int
    date_range: Optional[DateRange] = None


# ---------- Dashboard / export ----------
class DashboardOut(BaseModel):
    wellness_score: int
    health_age: Optional[int] = None
    chronological_age: Optional[int] = None
    last_sync: Optional[datetime] = None
    summary: Optional[str] = None
    score_breakdown: dict = Field(default_factory=dict)
    biomarker_trends: List[dict] = Field(default_factory=list)
    key_findings: List[str] = Field(default_factory=list)
    correlations: List[Correlation] = Field(default_factory=list)
    supplement_protocol: List[SupplementRecommendation] = Field(default_factory=list)
    total_records: int = 0


class DoctorBriefIn(BaseModel):
    include_trends: bool = True
    include_correlations: bool = True
    records_to_include: int = Field(default=3, ge=1, le=20)


class DoctorBriefOut(BaseModel):
    content_base64: str
    content_type: str = "text/plain"
    generated_at: datetime
