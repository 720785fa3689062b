"""Persistence for health records.

This is the only module that writes ``health_records`` rows. Every status
change is a conditional ``UPDATE`` (current status, and for user edits the
version too) so concurrent workers and requests cannot overwrite each other.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from healthwallet.models.health_record import HealthRecord, RecordStatus, utcnow
from healthwallet.utils.exceptions import ConcurrencyConflict, InvalidTransition, RecordNotFound


class RecordRepository:
    def __init__(self, db: Session):
        self.db = db

    # ---------- reads ----------
    def get(self, record_id: str, user_id: Optional[str] = None) -> HealthRecord:
        """Fetch one record, scoped to ``user_id`` when given."""
        stmt = select(HealthRecord).where(HealthRecord.id == record_id)
        if user_id is not None:
            stmt = stmt.where(HealthRecord.user_id == str(user_id))
        record = self.db.execute(stmt).scalar_one_or_none()
        if record is None:
            raise RecordNotFound(record_id)
        return record

    def list_for_user(self, user_id: str, page: int = 1, per_page: int = 20) -> Tuple[List[HealthRecord], int]:
        base = select(HealthRecord).where(HealthRecord.user_id == str(user_id))
        total = self.db.execute(select(func.count()).select_from(base.subquery())).scalar_one()
        items = (
            self.db.execute(
                base.order_by(HealthRecord.created_at.desc(), HealthRecord.id)
                .offset((page - 1) * per_page)
                .limit(per_page)
            )
            .scalars()
            .all()
        )
        return list(items), int(total)

    def list_completed(self, user_id: str, limit: Optional[int] = None) -> List[HealthRecord]:
        """Completed records, newest upload first."""
        stmt = (
            select(HealthRecord)
            .where(HealthRecord.user_id == str(user_id), HealthRecord.status == RecordStatus.COMPLETED)
            .order_by(HealthRecord.created_at.desc(), HealthRecord.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def count_for_user(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(HealthRecord).where(HealthRecord.user_id == str(user_id))
        return int(self.db.execute(stmt).scalar_one())

    def next_uploading_ids(self, limit: int = 10) -> List[str]:
        stmt = (
            select(HealthRecord.id)
            .where(HealthRecord.status == RecordStatus.UPLOADING)
            .order_by(HealthRecord.created_at, HealthRecord.id)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    # ---------- writes ----------
    def create(
        self,
        user_id: str,
        file_url: str,
        original_filename: str,
        record_type: str = "blood_panel",
        record_date: Optional[date] = None,
        lab_provider: Optional[str] = None,
        status: str = RecordStatus.UPLOADING,
    ) -> HealthRecord:
        now = utcnow()
        record = HealthRecord(
            user_id=str(user_id),
            file_url=file_url,
            original_filename=original_filename,
            record_type=record_type or "blood_panel",
            record_date=record_date,
            lab_provider=lab_provider,
            status=status,
            version=1,
            biomarkers=[],
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def _transition(self, record_id: str, from_status: Iterable[str], values: Dict[str, Any], **filters: Any) -> int:
        stmt = update(HealthRecord).where(
            HealthRecord.id == record_id,
            HealthRecord.status.in_(list(from_status)),
        )
        if "user_id" in filters:
            stmt = stmt.where(HealthRecord.user_id == str(filters["user_id"]))
        if filters.get("version") is not None:
            stmt = stmt.where(HealthRecord.version == filters["version"])
        if filters.get("updated_before") is not None:
            stmt = stmt.where(HealthRecord.updated_at < filters["updated_before"])
        stmt = stmt.values(
            **values,
            version=HealthRecord.version + 1,
            updated_at=utcnow(),
        ).execution_options(synchronize_session=False)
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount

    def claim(self, record_id: str) -> bool:
        """uploading -> processing; exactly one concurrent caller gets ``True``."""
        return self._transition(
            record_id,
            [RecordStatus.UPLOADING],
            {"status": RecordStatus.PROCESSING, "error_message": None},
        ) == 1

    def store_raw_text(self, record_id: str, token: str) -> bool:
        return self._transition(
            record_id, [RecordStatus.PROCESSING], {"raw_text_encrypted": token}
        ) == 1

    def store_extraction(
        self,
        record_id: str,
        biomarkers: List[dict],
        parsed_data: Optional[dict] = None,
        summary: Optional[str] = None,
        record_date: Optional[date] = None,
        lab_provider: Optional[str] = None,
    ) -> bool:
        """processing -> pending_review, replacing the biomarker list."""
        values: Dict[str, Any] = {
            "status": RecordStatus.PENDING_REVIEW,
            "biomarkers": biomarkers,
            "parsed_data": parsed_data,
            "error_message": None,
        }
        if summary:
            values["summary"] = summary
        if record_date:
            values["record_date"] = record_date
        if lab_provider:
            values["lab_provider"] = lab_provider
        return self._transition(record_id, [RecordStatus.PROCESSING], values) == 1

    def create_split(
        self,
        parent: HealthRecord,
        title: str,
        raw_text_token: Optional[str] = None,
    ) -> HealthRecord:
        """Sibling record for an extra report found in the parent's document."""
        record = self.create(
            user_id=parent.user_id,
            file_url=parent.file_url,
            original_filename=title,
            record_type=parent.record_type,
            # each part carries its own lab date, if any, from extraction
            record_date=None,
            lab_provider=parent.lab_provider,
            status=RecordStatus.PROCESSING,
        )
        if raw_text_token:
            self.store_raw_text(record.id, raw_text_token)
        return record

    def mark_failed(
        self,
        record_id: str,
        message: str,
        from_status: Iterable[str] = (RecordStatus.PROCESSING,),
        updated_before: Optional[datetime] = None,
    ) -> bool:
        return self._transition(
            record_id,
            from_status,
            {"status": RecordStatus.FAILED, "error_message": message, "biomarkers": []},
            updated_before=updated_before,
        ) == 1

    def commit_verification(
        self,
        user_id: str,
        record_id: str,
        expected_version: int,
        from_status: Iterable[str],
        values: Dict[str, Any],
    ) -> HealthRecord:
        """Version-checked write for user-driven changes (verify / finalize).

        Raises ``ConcurrencyConflict`` when the row moved on since it was read
        and ``InvalidTransition`` when its status no longer allows the change.
        """
        allowed = list(from_status)
        updated = self._transition(record_id, allowed, values, user_id=user_id, version=expected_version)
        self.db.expire_all()
        record = self.get(record_id, user_id)
        if updated == 1:
            return record
        if record.version != expected_version:
            raise ConcurrencyConflict(record_id, expected_version)
        raise InvalidTransition(record_id, record.status, values.get("status", record.status))

    def sweep_stale(self, max_age_seconds: int) -> List[str]:
        """Fail records stuck in processing; returns the ids that were failed."""
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        stale = list(
            self.db.execute(
                select(HealthRecord.id).where(
                    HealthRecord.status == RecordStatus.PROCESSING,
                    HealthRecord.updated_at < cutoff,
                )
            ).scalars().all()
        )
        failed: List[str] = []
        for record_id in stale:
            # re-check status and age: a worker may have moved the record on since the select
            if self.mark_failed(record_id, "Processing timed out", updated_before=cutoff):
                failed.append(record_id)
        return failed

    def delete(self, user_id: str, record_id: str) -> str:
        """Remove the record; returns its file location so the caller can drop the file."""
        record = self.get(record_id, user_id)
        file_url = record.file_url
        self.db.delete(record)
        self.db.commit()
        return file_url

    def shares_file(self, file_url: str) -> bool:
        stmt = select(func.count()).select_from(HealthRecord).where(HealthRecord.file_url == file_url)
        return int(self.db.execute(stmt).scalar_one()) > 0


__all__ = ["RecordRepository"]
