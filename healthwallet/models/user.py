import os
import uuid
from datetime import date, datetime
from typing import Optional, List

from sqlalchemy import (
    String,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.types import JSON as SA_JSON

from healthwallet.db.session import Base, engine

DIETARY_PREFERENCES = ("omnivore", "vegetarian", "vegan", "keto", "paleo", "pescatarian")


# UUID column type: normalize to String(36) so SQLite and Postgres share one schema
def uuid_col_type():
    return String(36)


# JSON column type: Postgres gets JSONB, others get generic JSON
def json_col_type():
    # In tests or non-Postgres environments, force generic JSON to avoid JSONB with SQLite
    if os.getenv("FORCE_GENERIC_JSON", "").lower() in ("1", "true", "yes"):
        return SA_JSON
    if engine.dialect.name == "postgresql":
        return PG_JSONB
    return SA_JSON


class User(Base):
    """Account anchor. Credentials and token issuance live in the auth service."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
    )

    id: Mapped[str] = mapped_column(
        uuid_col_type(),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP")
    )

    profile: Mapped["UserProfile"] = relationship(
        "UserProfile",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan"
    )

    health_records: Mapped[List["HealthRecord"]] = relationship(
        "HealthRecord",
        back_populates="user",
        cascade="all, delete-orphan"
    )


class UserProfile(Base):
    """
    Per-user context the pipeline needs: chronological age and diet.
    """
    __tablename__ = "user_profile"

    user_id: Mapped[str] = mapped_column(
        uuid_col_type(),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    date_of_birth: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    sex: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)  # "male"|"female"|"other"|None
    dietary_preference: Mapped[str] = mapped_column(
        String(32), nullable=False, default="omnivore", server_default="omnivore"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        server_onupdate=text("CURRENT_TIMESTAMP")
    )

    user: Mapped["User"] = relationship("User", back_populates="profile")


def calculate_age(date_of_birth: Optional[date], today: Optional[date] = None) -> Optional[int]:
    if not date_of_birth:
        return None
    today = today or date.today()
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age
