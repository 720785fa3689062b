"""Record lifecycle: uploading -> processing -> pending_review -> completed.

Worker-side steps (``claim``, ``process``, ``run_once``, ``sweep_stale``) open
their own sessions because they run outside a request. User-side steps
(``enqueue``, ``verify``, ``finalize``) use the request's session.
"""
from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from healthwallet.db import session as session_mod
from healthwallet.models.health_record import HealthRecord, RecordStatus
from healthwallet.models.user import UserProfile, calculate_age
from healthwallet.schemas.records import Biomarker, BiomarkerEdit, RejectedEdit
from healthwallet.services import insights, ocr, reference_ranges, storage
from healthwallet.services.classifier import classify_all, reclassify
from healthwallet.services.extraction import ExtractedReport, ExtractionAdapter, get_extractor
from healthwallet.services.repository import RecordRepository
from healthwallet.utils.encryption import decrypted, encrypt_text
from healthwallet.utils.exceptions import (
    ConcurrencyConflict,
    ExtractionError,
    InvalidTransition,
    ScoringPreconditionError,
)

logger = logging.getLogger("healthwallet")

PROCESSING_TIMEOUT_SECONDS = int(os.getenv("PROCESSING_TIMEOUT_SECONDS", "900"))


def _auto_approve_from_env() -> Optional[float]:
    raw = (os.getenv("AUTO_APPROVE_CONFIDENCE") or "").strip()
    return float(raw) if raw else None


def _coerce_value(value: Any) -> Optional[float]:
    """Finite float from an edit value, or ``None`` when it is not a number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def profile_context(db: Session, user_id: str) -> Tuple[Optional[int], str]:
    """(chronological age, dietary preference) for scoring and food advice."""
    profile = db.get(UserProfile, str(user_id))
    if profile is None:
        return None, "omnivore"
    return calculate_age(profile.date_of_birth), profile.dietary_preference or "omnivore"


@dataclass
class VerifyResult:
    record: HealthRecord
    rejected_edits: List[RejectedEdit] = field(default_factory=list)


class RecordPipeline:
    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        extractor_factory: Optional[Callable[[], ExtractionAdapter]] = None,
        auto_approve_confidence: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self._extractor_factory = extractor_factory or get_extractor
        self.auto_approve_confidence = (
            auto_approve_confidence if auto_approve_confidence is not None else _auto_approve_from_env()
        )

    def _session(self) -> Session:
        if self._session_factory is not None:
            return self._session_factory()
        return session_mod.SessionLocal()

    # ---------- intake ----------
    def enqueue(
        self,
        db: Session,
        user_id: str,
        file_url: str,
        original_filename: str,
        record_type: str = "blood_panel",
        record_date: Optional[date] = None,
        lab_provider: Optional[str] = None,
    ) -> HealthRecord:
        record = RecordRepository(db).create(
            user_id=user_id,
            file_url=file_url,
            original_filename=original_filename,
            record_type=record_type,
            record_date=record_date,
            lab_provider=lab_provider,
        )
        logger.info({"function": "enqueue", "record_id": record.id, "status": record.status})
        return record

    # ---------- worker side ----------
    def claim(self, record_id: str) -> bool:
        with self._session() as db:
            won = RecordRepository(db).claim(record_id)
        if won:
            logger.info({"function": "claim", "record_id": record_id, "status": RecordStatus.PROCESSING})
        return won

    def _fail(self, repo: RecordRepository, record_id: str, message: str) -> None:
        repo.mark_failed(record_id, message)
        logger.info({"function": "process", "record_id": record_id, "status": RecordStatus.FAILED, "error": message})

    def process(self, record_id: str) -> str:
        """Extract and classify a claimed record; returns the resulting status.

        Provider problems and unreadable documents fail the record. Anything
        else propagates and leaves it in processing for the watchdog.
        """
        with self._session() as db:
            repo = RecordRepository(db)
            record = repo.get(record_id)
            if record.status != RecordStatus.PROCESSING:
                raise InvalidTransition(record_id, record.status, RecordStatus.PENDING_REVIEW)

            data = storage.read_upload(record.file_url)
            try:
                text, source = ocr.extract_text_from_bytes(data, record.file_url, "")
            except ValueError as exc:
                self._fail(repo, record_id, f"Unreadable document: {exc}")
                return RecordStatus.FAILED
            token = encrypt_text(text)
            del text
            repo.store_raw_text(record_id, token)

            extractor = self._extractor_factory()
            try:
                with decrypted(token) as plaintext:
                    reports = extractor.extract(plaintext)
            except ExtractionError as exc:
                self._fail(repo, record_id, str(exc))
                return RecordStatus.FAILED
            if not reports:
                self._fail(repo, record_id, "No biomarkers found in document")
                return RecordStatus.FAILED

            first, extra = reports[0], reports[1:]
            self._store_report(repo, record_id, first, extractor.name, source, len(reports), keep_date=record.record_date)
            for part, report in enumerate(extra, start=2):
                suffix = report.record_date.isoformat() if report.record_date else f"Part {part}"
                sibling = repo.create_split(record, f"{record.original_filename} ({suffix})", token)
                self._store_report(repo, sibling.id, report, extractor.name, source, len(reports))
                logger.info({
                    "function": "process",
                    "record_id": sibling.id,
                    "split_from": record_id,
                    "status": RecordStatus.PENDING_REVIEW,
                })

            status = RecordStatus.PENDING_REVIEW
            if self._should_auto_approve(first):
                self.finalize(db, record.user_id, record_id)
                status = RecordStatus.COMPLETED
            logger.info({"function": "process", "record_id": record_id, "status": status})
            return status

    def _store_report(
        self,
        repo: RecordRepository,
        record_id: str,
        report: ExtractedReport,
        adapter: str,
        source: str,
        reports_found: int,
        keep_date: Optional[date] = None,
    ) -> None:
        biomarkers = classify_all(report.candidates)
        parsed = {
            "adapter": adapter,
            "source": source,
            "reports_found": reports_found,
            "report": report.raw,
        }
        stored = repo.store_extraction(
            record_id,
            [b.model_dump() for b in biomarkers],
            parsed_data=parsed,
            summary=report.summary,
            record_date=None if keep_date else report.record_date,
            lab_provider=report.lab_provider,
        )
        if not stored:
            raise InvalidTransition(record_id, "unknown", RecordStatus.PENDING_REVIEW)

    def _should_auto_approve(self, report: ExtractedReport) -> bool:
        threshold = self.auto_approve_confidence
        if threshold is None:
            return False
        return all(c.confidence is not None and c.confidence >= threshold for c in report.candidates)

    def run_once(self, limit: int = 10) -> int:
        """Claim and process the oldest uploading records; returns how many were claimed."""
        with self._session() as db:
            ids = RecordRepository(db).next_uploading_ids(limit)
        claimed = 0
        for record_id in ids:
            if not self.claim(record_id):
                continue
            claimed += 1
            try:
                self.process(record_id)
            except Exception:
                # stays in processing; the watchdog fails it after the timeout
                logger.exception({"function": "run_once", "record_id": record_id})
        return claimed

    def sweep_stale(self, max_age_seconds: Optional[int] = None) -> List[str]:
        bound = PROCESSING_TIMEOUT_SECONDS if max_age_seconds is None else max_age_seconds
        with self._session() as db:
            failed = RecordRepository(db).sweep_stale(bound)
        if failed:
            logger.warning({"function": "sweep_stale", "failed": len(failed), "record_ids": failed})
        return failed

    # ---------- user side ----------
    def verify(
        self,
        db: Session,
        user_id: str,
        record_id: str,
        edits: Sequence[BiomarkerEdit],
        approved: bool = True,
        expected_version: Optional[int] = None,
    ) -> VerifyResult:
        repo = RecordRepository(db)
        record = repo.get(record_id, user_id)
        if expected_version is not None and record.version != expected_version:
            raise ConcurrencyConflict(record_id, expected_version)
        target = RecordStatus.COMPLETED if approved else RecordStatus.PENDING_REVIEW
        if record.status != RecordStatus.PENDING_REVIEW:
            raise InvalidTransition(record_id, record.status, target)

        version = record.version
        biomarkers = [Biomarker.model_validate(b) for b in record.biomarkers or []]
        index = {reference_ranges.normalize_name(b.name): i for i, b in reversed(list(enumerate(biomarkers)))}
        rejected: List[RejectedEdit] = []

        for edit in edits:
            i = index.get(reference_ranges.normalize_name(edit.name))
            if i is None:
                rejected.append(RejectedEdit(name=edit.name, reason="Unknown biomarker"))
                continue
            current = biomarkers[i]
            updates: dict = {"verified": edit.verified}
            if edit.value is not None:
                value = _coerce_value(edit.value)
                if value is None:
                    rejected.append(RejectedEdit(name=edit.name, reason="Value must be a finite number"))
                    continue
                if value != current.value:
                    updates["value"] = value
                    if current.original_value is None:
                        updates["original_value"] = current.value
            if edit.unit is not None and edit.unit.strip():
                updates["unit"] = edit.unit.strip()
            biomarkers[i] = reclassify(current.model_copy(update=updates))

        values: dict = {"biomarkers": [b.model_dump() for b in biomarkers]}
        if approved:
            if not biomarkers:
                raise ScoringPreconditionError("Record has no biomarkers to score", {"record_id": record_id})
            age, diet = profile_context(db, user_id)
            values.update(insights.analyze(biomarkers, age, diet).as_columns())
            values["status"] = RecordStatus.COMPLETED

        record = repo.commit_verification(user_id, record_id, version, [RecordStatus.PENDING_REVIEW], values)
        logger.info({
            "function": "verify",
            "record_id": record_id,
            "status": record.status,
            "edits": len(edits),
            "rejected": len(rejected),
        })
        return VerifyResult(record=record, rejected_edits=rejected)

    def finalize(
        self,
        db: Session,
        user_id: str,
        record_id: str,
        expected_version: Optional[int] = None,
    ) -> HealthRecord:
        """Score the current biomarkers and complete the record. Safe to repeat."""
        repo = RecordRepository(db)
        record = repo.get(record_id, user_id)
        if expected_version is not None and record.version != expected_version:
            raise ConcurrencyConflict(record_id, expected_version)
        if record.status not in (RecordStatus.PENDING_REVIEW, RecordStatus.COMPLETED):
            raise InvalidTransition(record_id, record.status, RecordStatus.COMPLETED)

        biomarkers = [Biomarker.model_validate(b) for b in record.biomarkers or []]
        if not biomarkers:
            raise ScoringPreconditionError("Record has no biomarkers to score", {"record_id": record_id})

        age, diet = profile_context(db, user_id)
        columns = insights.analyze(biomarkers, age, diet).as_columns()
        if record.status == RecordStatus.COMPLETED and all(getattr(record, k) == v for k, v in columns.items()):
            return record

        record = repo.commit_verification(
            user_id,
            record_id,
            record.version,
            [RecordStatus.PENDING_REVIEW, RecordStatus.COMPLETED],
            {"status": RecordStatus.COMPLETED, **columns},
        )
        logger.info({
            "function": "finalize",
            "record_id": record_id,
            "status": record.status,
            "wellness_score": record.wellness_score,
        })
        return record


__all__ = ["RecordPipeline", "VerifyResult", "profile_context"]
