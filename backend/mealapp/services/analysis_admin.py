"""
Queries and commands behind the admin analysis dashboard.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import ImageNotFoundError
from ..logger import logger
from ..models import (
    ANALYSIS_STATUS_DONE,
    ANALYSIS_STATUS_ERROR,
    JOB_STATUS_ERROR,
    JOB_STATUS_FAILED,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_QUEUED,
    JOB_TYPE_ANALYZE_MEAL,
    Job,
    Meal,
    MealImage,
    MealImageAnalysis,
)
from .date_range import JstRange

ERROR_STATUSES = (JOB_STATUS_ERROR, JOB_STATUS_FAILED)
PENDING_STATUSES = (JOB_STATUS_QUEUED, JOB_STATUS_PROCESSING)
RECENT_LIMIT = 20
LIST_LIMIT = 100
SUMMARY_DAYS = 7


async def enqueue_image_analysis(db: AsyncSession, image_id: int, *, now: Optional[datetime] = None) -> Job:
    """Insert a fresh queued analyze_meal job for one stored image."""
    image = await db.get(MealImage, image_id)
    if image is None:
        raise ImageNotFoundError(image_id)

    job = Job(
        job_type=JOB_TYPE_ANALYZE_MEAL,
        payload={"meal_id": image.meal_id, "image_id": image.id, "storage_path": image.storage_path},
        status=JOB_STATUS_QUEUED,
        run_at=now or datetime.now(timezone.utc),
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    logger.info(f"Queued analysis job {job.id} for image {image_id}", extra={"job_id": job.id, "image_id": image_id})
    return job


def _job_dict(job: Job, *, error_from_payload: bool = False) -> Dict[str, Any]:
    payload = job.payload if isinstance(job.payload, dict) else None
    return {
        "id": job.id,
        "status": job.status,
        "created_at": job.created_at,
        "run_at": job.run_at,
        "payload": payload,
        "error": (payload or {}).get("error") if error_from_payload else None,
    }


async def list_recent_analyses(db: AsyncSession, limit: int = LIST_LIMIT) -> List[Dict[str, Any]]:
    res = await db.execute(
        select(MealImageAnalysis, MealImage.storage_path, Meal.meal_slot, Meal.taken_at)
        .outerjoin(MealImage, MealImage.id == MealImageAnalysis.image_id)
        .outerjoin(Meal, Meal.id == MealImageAnalysis.meal_id)
        .order_by(MealImageAnalysis.image_id.desc())
        .limit(limit)
    )
    rows = []
    for analysis, storage_path, meal_slot, taken_at in res.all():
        rows.append({
            "image_id": analysis.image_id,
            "meal_id": analysis.meal_id,
            "status": analysis.status,
            "ran_at": analysis.ran_at,
            "error": analysis.error,
            "raw_response": analysis.raw_response or {},
            "meal": {"meal_slot": meal_slot, "taken_at": taken_at},
            "img": {"storage_path": storage_path},
        })
    return rows


async def summary_counts(db: AsyncSession, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Done/error analyses over the last week and the current queue depth."""
    since = (now or datetime.now(timezone.utc)) - timedelta(days=SUMMARY_DAYS)

    async def _analysis_count(status: str) -> int:
        res = await db.execute(
            select(func.count()).select_from(MealImageAnalysis).filter(
                MealImageAnalysis.ran_at >= since, MealImageAnalysis.status == status,
            )
        )
        return int(res.scalar_one())

    queued = await db.execute(
        select(func.count()).select_from(Job).filter(
            Job.job_type == JOB_TYPE_ANALYZE_MEAL, Job.status == JOB_STATUS_QUEUED,
        )
    )
    return {
        "since": since,
        "counts": {
            "done": await _analysis_count(ANALYSIS_STATUS_DONE),
            "error": await _analysis_count(ANALYSIS_STATUS_ERROR),
            "queued": int(queued.scalar_one()),
        },
    }


async def job_stats(db: AsyncSession, day_range: JstRange) -> Dict[str, Any]:
    """Per-status job totals in the range plus the latest failing and pending jobs."""
    in_range = (
        Job.job_type == JOB_TYPE_ANALYZE_MEAL,
        Job.created_at >= day_range.start_utc,
        Job.created_at < day_range.end_utc,
    )

    totals = await db.execute(
        select(Job.status, func.count()).filter(*in_range).group_by(Job.status).order_by(Job.status)
    )
    errors = await db.execute(
        select(Job)
        .filter(*in_range, Job.status.in_(ERROR_STATUSES))
        .order_by(Job.created_at.desc(), Job.id.desc())
        .limit(RECENT_LIMIT)
    )
    pending = await db.execute(
        select(Job)
        .filter(Job.job_type == JOB_TYPE_ANALYZE_MEAL, Job.status.in_(PENDING_STATUSES))
        .order_by(Job.created_at.desc(), Job.id.desc())
        .limit(RECENT_LIMIT)
    )

    return {
        "range": {
            "startIso": day_range.start_iso,
            "endIso": day_range.end_iso,
            "startDate": day_range.start_date,
            "endDate": day_range.end_date,
            "timezone": "UTC+09:00",
        },
        "totals": [{"status": status, "count": int(count)} for status, count in totals.all()],
        "errors": [_job_dict(job, error_from_payload=True) for job in errors.scalars().all()],
        "queued": [_job_dict(job) for job in pending.scalars().all()],
    }
