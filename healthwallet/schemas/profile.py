# healthwallet/schemas/profile.py
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

DietaryPreference = Literal["omnivore", "vegetarian", "vegan", "keto", "paleo", "pescatarian"]


# ---------- User Profile ----------
class UserProfileIn(BaseModel):
    date_of_birth: Optional[date] = None
    sex: Optional[str] = Field(default=None, description="male|female|other")
    dietary_preference: Optional[DietaryPreference] = None

    @field_validator("date_of_birth")
    @classmethod
    def _not_in_future(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v > date.today():
            raise ValueError("date_of_birth cannot be in the future")
        return v

    @field_validator("sex")
    @classmethod
    def _known_sex(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v not in {"male", "female", "other"}:
            raise ValueError("sex must be male, female or other")
        return v


class UserProfileOut(BaseModel):
    user_id: str
    date_of_birth: Optional[date] = None
    sex: Optional[str] = None
    dietary_preference: str = "omnivore"
    age: Optional[int] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
