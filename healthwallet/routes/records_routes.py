# healthwallet/routes/records_routes.py
import base64
import logging
import math
import os
from datetime import date
from pathlib import Path
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from sqlalchemy.orm import Session

from healthwallet.auth.deps import get_current_user
from healthwallet.db.session import get_db
from healthwallet.middleware.rate_limit import UPLOAD_RATE_LIMIT, limiter, user_rate_key
from healthwallet.models.health_record import RecordStatus, utcnow
from healthwallet.models.user import User, UserProfile
from healthwallet.schemas.records import (
    ComparisonOut,
    DashboardOut,
    DoctorBriefIn,
    DoctorBriefOut,
    HealthRecordListOut,
    HealthRecordOut,
    UploadOut,
    VerifyRecordIn,
    VerifyRecordOut,
)
from healthwallet.services import ocr, reports, storage, trends
from healthwallet.services.record_pipeline import RecordPipeline, profile_context
from healthwallet.services.repository import RecordRepository

logger = logging.getLogger("healthwallet")

router = APIRouter(prefix="/api/records", tags=["records"])

MAX_UPLOAD_BYTES = int(float(os.getenv("MAX_UPLOAD_SIZE_MB", "10")) * 1024 * 1024)
PROCESS_ON_UPLOAD = (os.getenv("PROCESS_ON_UPLOAD", "true") or "true").strip().lower() not in {"0", "false", "off", "no"}

_CONTENT_TYPE_SUFFIX = {
    "application/pdf": ".pdf",
    "text/plain": ".txt",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/tiff": ".tiff",
    "image/webp": ".webp",
}

_pipeline = RecordPipeline()


def get_pipeline() -> RecordPipeline:
    return _pipeline


def _parse_record_date(raw: Optional[str]) -> Optional[date]:
    if raw is None or not raw.strip():
        return None
    try:
        parsed = date.fromisoformat(raw.strip())
    except ValueError:
        raise HTTPException(status_code=422, detail="record_date must be an ISO date (YYYY-MM-DD)")
    if parsed > date.today():
        raise HTTPException(status_code=422, detail="record_date cannot be in the future")
    return parsed


def _storage_name(filename: str, content_type: str) -> str:
    # the worker picks the text extractor from the stored file's extension
    if Path(filename).suffix:
        return filename
    return filename + _CONTENT_TYPE_SUFFIX.get(content_type, "")


def _process_in_background(pipeline: RecordPipeline, record_id: str) -> None:
    if not pipeline.claim(record_id):
        return
    try:
        pipeline.process(record_id)
    except Exception:
        # left in processing; the watchdog fails it after the timeout
        logger.exception({"function": "process_in_background", "record_id": record_id})


@router.post("/upload", response_model=UploadOut, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(UPLOAD_RATE_LIMIT, key_func=user_rate_key)
async def upload_record(
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    record_date: Optional[str] = Form(None),
    lab_provider: Optional[str] = Form(None),
    record_type: str = Form("blood_panel"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    pipeline: RecordPipeline = Depends(get_pipeline),
):
    parsed_date = _parse_record_date(record_date)
    filename = file.filename or "upload"
    content_type = (file.content_type or "").lower()
    if not ocr.is_supported(filename, content_type):
        raise HTTPException(status_code=415, detail="Only PDF, image and plain-text lab reports are supported")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit")

    stored_path, _ = storage.store_local_upload(data, _storage_name(filename, content_type))
    record = pipeline.enqueue(
        db,
        user_id=str(current_user.id),
        file_url=stored_path,
        original_filename=filename,
        record_type=(record_type or "blood_panel").strip() or "blood_panel",
        record_date=parsed_date,
        lab_provider=(lab_provider or "").strip() or None,
    )
    logger.info({
        "function": "upload_record",
        "record_id": record.id,
        "content_type": content_type,
        "size_bytes": len(data),
    })
    if PROCESS_ON_UPLOAD:
        background_tasks.add_task(_process_in_background, pipeline, record.id)
    return UploadOut(record_id=record.id, status=record.status)


@router.get("/", response_model=HealthRecordListOut)
def list_records(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total = RecordRepository(db).list_for_user(str(current_user.id), page, per_page)
    return HealthRecordListOut(
        records=[HealthRecordOut.model_validate(r) for r in items],
        total=total,
        page=page,
        per_page=per_page,
        pages=math.ceil(total / per_page) if total else 0,
    )


@router.get("/comparison", response_model=ComparisonOut)
def compare_records(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    completed = RecordRepository(db).list_completed(str(current_user.id))
    if len(completed) < 2:
        raise HTTPException(status_code=400, detail="At least two completed records are needed for comparison")
    result = trends.compare(completed)
    return ComparisonOut(
        biomarker_trends=result.biomarker_trends,
        records_compared=result.records_compared,
        date_range=result.date_range,
    )


@router.get("/dashboard/summary", response_model=DashboardOut)
def dashboard_summary(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    repo = RecordRepository(db)
    age, _ = profile_context(db, str(current_user.id))
    return reports.dashboard_summary(
        repo.list_completed(str(current_user.id)),
        chronological_age=age,
        total_records=repo.count_for_user(str(current_user.id)),
    )


@router.post("/export/doctor-brief", response_model=DoctorBriefOut)
def export_doctor_brief(
    payload: DoctorBriefIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    completed = RecordRepository(db).list_completed(str(current_user.id), limit=payload.records_to_include)
    if not completed:
        raise HTTPException(status_code=400, detail="No completed records to export")
    age, _ = profile_context(db, str(current_user.id))
    profile = db.get(UserProfile, str(current_user.id))
    generated_at = utcnow()
    text = reports.doctor_brief(
        completed,
        chronological_age=age,
        sex=profile.sex if profile else None,
        include_trends=payload.include_trends,
        include_correlations=payload.include_correlations,
        generated_at=generated_at,
    )
    logger.info({"function": "export_doctor_brief", "records": len(completed)})
    return DoctorBriefOut(
        content_base64=base64.b64encode(text.encode("utf-8")).decode("ascii"),
        generated_at=generated_at,
    )


@router.get("/{record_id}", response_model=HealthRecordOut)
def get_record(
    record_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return RecordRepository(db).get(record_id, str(current_user.id))


@router.post("/{record_id}/verify", response_model=VerifyRecordOut)
def verify_record(
    record_id: str,
    payload: VerifyRecordIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    pipeline: RecordPipeline = Depends(get_pipeline),
):
    result = pipeline.verify(
        db,
        str(current_user.id),
        record_id,
        payload.biomarker_edits,
        approved=payload.approved,
        expected_version=payload.expected_version,
    )
    record = result.record
    message = (
        "Biomarkers verified and record finalized."
        if record.status == RecordStatus.COMPLETED
        else "Edits saved. Record is awaiting approval."
    )
    return VerifyRecordOut(
        id=record.id,
        status=record.status,
        version=record.version,
        biomarkers=record.biomarkers or [],
        rejected_edits=result.rejected_edits,
        wellness_score=record.wellness_score,
        health_age=record.health_age,
        message=message,
    )


@router.post("/{record_id}/finalize", response_model=HealthRecordOut)
def finalize_record(
    record_id: str,
    expected_version: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    pipeline: RecordPipeline = Depends(get_pipeline),
):
    return pipeline.finalize(db, str(current_user.id), record_id, expected_version=expected_version)


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_record(
    record_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    repo = RecordRepository(db)
    file_url = repo.delete(str(current_user.id), record_id)
    # split siblings share the parent's document
    if not repo.shares_file(file_url):
        storage.delete_upload(file_url)
    logger.info({"function": "delete_record", "record_id": record_id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
