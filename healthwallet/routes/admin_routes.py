# healthwallet/routes/admin_routes.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from healthwallet.auth.deps import require_admin
from healthwallet.models.user import User
from healthwallet.routes.records_routes import get_pipeline
from healthwallet.services.record_pipeline import RecordPipeline

logger = logging.getLogger("healthwallet")

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/records/sweep")
def sweep_stale_records(
    max_age_seconds: Optional[int] = Query(None, ge=0),
    admin: User = Depends(require_admin),
    pipeline: RecordPipeline = Depends(get_pipeline),
):
    """Fail records stuck in processing longer than the timeout."""
    failed = pipeline.sweep_stale(max_age_seconds)
    logger.info({"function": "sweep_stale_records", "admin": str(admin.id), "failed": len(failed)})
    return {"failed": len(failed), "record_ids": failed}
