"""
Meal image analysis job processor.

One run claims a small batch of due `analyze_meal` jobs and handles them one
by one:

    queued -> processing -> done | error

Every job ends with an inspectable job row and (when the image is known) an
analysis row keyed by image_id. A failing job never stops the rest of the
batch, and there is no automatic retry: an admin re-enqueues the image.
"""
from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..analysis.record import AnalysisRecord, build_record, empty_record
from ..analysis.start_time import extract_start_time_from_path
from ..config import Settings
from ..exceptions import PayloadResolutionError
from ..logger import job_extra, logger
from ..models import (
    ANALYSIS_STATUS_DONE,
    ANALYSIS_STATUS_ERROR,
    JOB_STATUS_DONE,
    JOB_STATUS_ERROR,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_QUEUED,
    JOB_TYPE_ANALYZE_MEAL,
    Job,
    MealImage,
    MealImageAnalysis,
)

SessionFactory = Callable[[], AsyncSession]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_id(value: Any) -> int:
    """Positive integer id or 0."""
    if isinstance(value, bool):
        return 0
    try:
        number = int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _payload_dict(value: Any) -> Dict[str, Any]:
    """Job payload as a dict; anything that is not a JSON object counts as empty."""
    return dict(value) if isinstance(value, Mapping) else {}


@dataclass
class AnalysisTarget:
    meal_id: int = 0
    image_id: int = 0
    storage_path: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> "AnalysisTarget":
        payload = _payload_dict(payload)
        return cls(
            meal_id=_to_id(payload.get("meal_id")),
            image_id=_to_id(payload.get("image_id")),
            storage_path=str(payload.get("storage_path") or ""),
        )


@dataclass
class BatchResult:
    claimed: List[int] = field(default_factory=list)
    done: List[int] = field(default_factory=list)
    errors: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    reclaimed: List[int] = field(default_factory=list)

    @property
    def result(self) -> str:
        return "ok" if self.claimed else "no-jobs"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "result": self.result,
            "claimed": list(self.claimed),
            "done": list(self.done),
            "errors": list(self.errors),
            "skipped": list(self.skipped),
            "reclaimed": list(self.reclaimed),
        }


async def reclaim_stale_jobs(db: AsyncSession, *, now: datetime, lease_seconds: int) -> List[int]:
    """Put `processing` jobs whose claim is older than the lease back in the queue."""
    if lease_seconds <= 0:
        return []

    cutoff = now - timedelta(seconds=lease_seconds)
    res = await db.execute(
        select(Job.id).filter(
            Job.job_type == JOB_TYPE_ANALYZE_MEAL,
            Job.status == JOB_STATUS_PROCESSING,
            or_(Job.claimed_at.is_(None), Job.claimed_at < cutoff),
        )
    )
    stale_ids = [row[0] for row in res.all()]
    if not stale_ids:
        return []

    await db.execute(
        update(Job)
        .where(Job.id.in_(stale_ids), Job.status == JOB_STATUS_PROCESSING)
        .values(status=JOB_STATUS_QUEUED, claimed_at=None)
    )
    await db.commit()
    logger.warning(
        f"Reclaimed {len(stale_ids)} stale processing jobs",
        extra={"job_ids": stale_ids, "lease_seconds": lease_seconds},
    )
    return stale_ids


async def fetch_due_jobs(db: AsyncSession, *, now: datetime, limit: int) -> List[Job]:
    res = await db.execute(
        select(Job)
        .filter(
            Job.job_type == JOB_TYPE_ANALYZE_MEAL,
            Job.status == JOB_STATUS_QUEUED,
            or_(Job.run_at.is_(None), Job.run_at <= now),
        )
        .order_by(Job.id.asc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def claim_job(db: AsyncSession, job_id: int, *, now: datetime) -> bool:
    """Move one job from queued to processing. False if another run got it first."""
    res = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == JOB_STATUS_QUEUED)
        .values(status=JOB_STATUS_PROCESSING, claimed_at=now)
    )
    await db.commit()
    return res.rowcount == 1


async def resolve_target(db: AsyncSession, target: AnalysisTarget) -> AnalysisTarget:
    """
    Fill in the image to analyze.

    Without image_id the latest image of the meal is used; this only exists
    for jobs enqueued before payloads carried an image_id.
    """
    if not target.image_id:
        if not target.meal_id:
            raise PayloadResolutionError("invalid payload: need image_id or meal_id")
        res = await db.execute(
            select(MealImage)
            .filter(MealImage.meal_id == target.meal_id)
            .order_by(MealImage.id.desc())
            .limit(1)
        )
        latest = res.scalar_one_or_none()
        if latest is None:
            raise PayloadResolutionError(f"no image for meal {target.meal_id}")
        target.image_id = latest.id
        target.storage_path = latest.storage_path
        return target

    if not target.meal_id or not target.storage_path:
        image = await db.get(MealImage, target.image_id)
        if image is not None:
            target.meal_id = target.meal_id or image.meal_id
            target.storage_path = target.storage_path or image.storage_path
    return target


def _analysis_row(
    record: AnalysisRecord,
    *,
    status: str,
    cfg: Settings,
    ran_at: datetime,
    error: Optional[str],
) -> MealImageAnalysis:
    return MealImageAnalysis(
        status=status,
        model=cfg.OPENAI_MODEL,
        prompt_version=cfg.PROMPT_VERSION,
        ran_at=ran_at,
        error=error,
        raw_response=record.ordered(),
        **record.model_dump(),
    )


async def _set_job_status(db: AsyncSession, job_id: int, status: str, payload: Optional[Dict[str, Any]] = None):
    values: Dict[str, Any] = {"status": status}
    if payload is not None:
        values["payload"] = payload
    await db.execute(update(Job).where(Job.id == job_id).values(**values))


async def process_job(
    session_factory: SessionFactory,
    job_id: int,
    payload: Any,
    *,
    cfg: Settings,
    analyzer,
    signer,
    now: Optional[datetime] = None,
) -> str:
    """Analyze the image of one claimed job; returns the final job status."""
    payload = _payload_dict(payload)
    target = AnalysisTarget.from_payload(payload)

    async with session_factory() as db:
        try:
            await resolve_target(db, target)
            image_url = signer.sign(target.storage_path)
            data = await analyzer.analyze(image_url)

            record = build_record(
                data,
                meal_id=target.meal_id or None,
                image_id=target.image_id,
                start_time=extract_start_time_from_path(target.storage_path, now=now),
            )
            await db.merge(_analysis_row(record, status=ANALYSIS_STATUS_DONE, cfg=cfg, ran_at=now or _utcnow(), error=None))
            await _set_job_status(db, job_id, JOB_STATUS_DONE)
            await db.commit()

            logger.info(
                f"Job {job_id} analysis done",
                extra=job_extra(
                    job_id,
                    payload,
                    resolved_image_id=target.image_id,
                    category_count=record.category_count,
                    image_blur_flag=record.image_blur_flag,
                ),
            )
            return JOB_STATUS_DONE

        except Exception as e:
            await db.rollback()
            message = _error_message(e)
            logger.error(
                f"Job {job_id} analysis failed: {message}",
                extra=job_extra(job_id, payload, error=message, traceback=traceback.format_exc()),
            )

            if target.image_id:
                failed = empty_record(meal_id=target.meal_id or None, image_id=target.image_id)
                await db.merge(_analysis_row(failed, status=ANALYSIS_STATUS_ERROR, cfg=cfg, ran_at=now or _utcnow(), error=message))
            else:
                logger.warning(f"Job {job_id} has no image_id, analysis row not written", extra=job_extra(job_id, payload))

            await _set_job_status(db, job_id, JOB_STATUS_ERROR, payload={**payload, "error": message})
            await db.commit()
            return JOB_STATUS_ERROR


async def run_analysis_batch(
    session_factory: SessionFactory,
    *,
    cfg: Settings,
    analyzer,
    signer,
    now: Optional[datetime] = None,
) -> BatchResult:
    """Process up to ANALYZE_BATCH_SIZE due jobs sequentially."""
    now = now or _utcnow()
    result = BatchResult()

    async with session_factory() as db:
        result.reclaimed = await reclaim_stale_jobs(db, now=now, lease_seconds=cfg.PROCESSING_LEASE_SECONDS)
        jobs = [(job.id, job.payload) for job in await fetch_due_jobs(db, now=now, limit=cfg.ANALYZE_BATCH_SIZE)]

    if not jobs:
        logger.info("No analysis jobs due")
        return result

    for job_id, payload in jobs:
        try:
            async with session_factory() as db:
                claimed = await claim_job(db, job_id, now=now)
        except Exception as e:
            # still queued unless the update landed; the lease covers that case
            logger.error(
                f"Job {job_id} could not be claimed: {_error_message(e)}",
                extra=job_extra(job_id, payload, error=_error_message(e), traceback=traceback.format_exc()),
            )
            result.errors.append(job_id)
            continue

        if not claimed:
            logger.info(f"Job {job_id} already claimed, skipping", extra=job_extra(job_id, payload))
            result.skipped.append(job_id)
            continue

        result.claimed.append(job_id)
        logger.info(f"Job {job_id} claimed", extra=job_extra(job_id, payload, status=JOB_STATUS_PROCESSING))

        try:
            status = await process_job(
                session_factory, job_id, payload, cfg=cfg, analyzer=analyzer, signer=signer, now=now,
            )
        except Exception as e:
            # the failure itself could not be persisted; the lease brings the job back
            logger.error(
                f"Job {job_id} could not be finalized: {_error_message(e)}",
                extra=job_extra(job_id, payload, error=_error_message(e), traceback=traceback.format_exc()),
            )
            status = JOB_STATUS_ERROR

        (result.done if status == JOB_STATUS_DONE else result.errors).append(job_id)

    logger.info(
        f"Analysis batch finished: {len(result.done)} done, {len(result.errors)} error",
        extra=result.as_dict(),
    )
    return result
