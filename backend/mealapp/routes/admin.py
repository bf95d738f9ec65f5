"""
Admin analysis dashboard routes
"""
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ..auth import require_admin
from ..db import get_db
from ..models import Profile
from ..schemas import (
    AdminEchoResponse,
    AnalysisListResponse,
    RetryRequest,
    RetryResponse,
    StatsResponse,
    SummaryResponse,
)
from ..services.analysis_admin import enqueue_image_analysis, job_stats, list_recent_analyses, summary_counts
from ..services.date_range import build_jst_range
from ..logger import logger

router = APIRouter(prefix="/admin/analysis", tags=["Admin"])

@router.get("/retry", response_model=AdminEchoResponse)
async def check_admin(admin: Profile = Depends(require_admin)):
    """Confirm the caller passes the admin gate"""
    return AdminEchoResponse(user_id=admin.user_id)

@router.post("/retry", response_model=RetryResponse)
async def retry_analysis(
    body: Optional[RetryRequest] = Body(default=None),
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Re-enqueue analysis for one image"""
    if body is None or not body.image_id:
        raise HTTPException(status_code=400, detail="image_id is required")

    job = await enqueue_image_analysis(db, body.image_id)
    logger.info(
        f"Admin retry queued for image {body.image_id}",
        extra={"admin_user_id": admin.user_id, "image_id": body.image_id, "job_id": job.id},
    )
    return RetryResponse(job_id=job.id)

@router.get("/list", response_model=AnalysisListResponse)
async def list_analyses(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Latest analysis rows with their image path and meal"""
    return AnalysisListResponse(rows=await list_recent_analyses(db))

@router.get("/summary", response_model=SummaryResponse)
async def analysis_summary(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Counts for the last 7 days and the current queue"""
    return SummaryResponse(**await summary_counts(db))

@router.get("/stats", response_model=StatsResponse)
async def analysis_stats(
    start: Optional[str] = Query(None, description="YYYY-MM-DD (JST)"),
    end: Optional[str] = Query(None, description="YYYY-MM-DD (JST)"),
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Job totals per status for a JST day range plus recent failing/pending jobs"""
    try:
        day_range = build_jst_range(start, end)
    except ValueError:
        raise HTTPException(status_code=400, detail="start/end must be YYYY-MM-DD")
    return StatsResponse(**await job_stats(db, day_range))
