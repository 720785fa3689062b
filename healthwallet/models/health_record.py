# healthwallet/models/health_record.py
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, Date, DateTime, Integer, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from healthwallet.db.session import Base
from healthwallet.models.user import json_col_type
from healthwallet.utils.encryption import EncryptedJSON


class RecordStatus:
    UPLOADING = "uploading"
    PROCESSING = "processing"
    PENDING_REVIEW = "pending_review"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (UPLOADING, PROCESSING, PENDING_REVIEW, COMPLETED, FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthRecord(Base):
    __tablename__ = "health_records"
    __table_args__ = (
        Index("ix_health_records_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )

    file_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    record_type: Mapped[str] = mapped_column(String(64), nullable=False, default="blood_panel")
    record_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    lab_provider: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=RecordStatus.UPLOADING)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Fernet token; plaintext only exists inside the extraction step
    raw_text_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parsed_data: Mapped[Optional[dict]] = mapped_column(EncryptedJSON, nullable=True)

    biomarkers: Mapped[list] = mapped_column(json_col_type(), nullable=False, default=list)

    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    correlations: Mapped[Optional[list]] = mapped_column(json_col_type(), nullable=True)
    key_findings: Mapped[Optional[list]] = mapped_column(json_col_type(), nullable=True)
    recommendations: Mapped[Optional[list]] = mapped_column(json_col_type(), nullable=True)
    food_recommendations: Mapped[Optional[list]] = mapped_column(json_col_type(), nullable=True)
    supplement_protocol: Mapped[Optional[list]] = mapped_column(json_col_type(), nullable=True)
    wellness_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    health_age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user = relationship("User", back_populates="health_records")
