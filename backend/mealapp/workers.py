from celery import Celery
from .config import settings

ANALYZE_MEAL_TASK = "mealapp.tasks.analyze_meal_batch_task"

def _route_task(name, args, kwargs, options, task=None):
    """
    Route tasks to dedicated queues.

    Image analysis waits on the vision model for seconds per job, so it gets
    its own queue and never starves other workers.
    """
    if name == ANALYZE_MEAL_TASK:
        return {"queue": "analysis"}
    return None

celery_app = Celery(
    "mealapp",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["mealapp.tasks"]
)

celery_app.conf.update(
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    broker_transport_options={"visibility_timeout": 3600},
    task_routes=(_route_task,),
    beat_schedule={
        "analyze-meal-batch": {
            "task": ANALYZE_MEAL_TASK,
            "schedule": settings.ANALYZE_SCHEDULE_SECONDS,
        },
    },
)
