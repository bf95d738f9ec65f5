import asyncio
from .workers import celery_app, ANALYZE_MEAL_TASK
from .config import settings
from .db import AsyncSessionLocal, engine
from .inference.vision_openai import OpenAIVisionAnalyzer
from .services.job_processor import run_analysis_batch
from .services.storage import S3UrlSigner
from .logger import logger

@celery_app.task(bind=True, acks_late=True, name=ANALYZE_MEAL_TASK)
def analyze_meal_batch_task(self):
    """
    Celery task draining one batch of due analyze_meal jobs.

    Failed jobs are written as `error` and are not retried here; an admin
    re-enqueues the image instead.
    """
    async def _run():
        logger.info("Starting analyze_meal batch", extra={"task_id": self.request.id})
        try:
            result = await run_analysis_batch(
                AsyncSessionLocal,
                cfg=settings,
                analyzer=OpenAIVisionAnalyzer(settings),
                signer=S3UrlSigner(settings),
            )
        finally:
            # each asyncio.run gets a new loop; pooled connections must not outlive it
            await engine.dispose()
        return result.as_dict()

    return asyncio.run(_run())
