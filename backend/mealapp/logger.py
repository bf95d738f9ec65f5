import logging
import sys
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from .config import settings

def setup_logger(name: str = "mealapp", level: Optional[str] = None) -> logging.Logger:
    """
    Configure structured JSON logging for the API and the analysis worker.
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or settings.LOG_LEVEL).upper())

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)

    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z"
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger

def job_extra(job_id: Any, payload: Any = None, **fields: Any) -> Dict[str, Any]:
    """Build the `extra` dict attached to every job log line."""
    if not isinstance(payload, dict):
        payload = {}
    extra = {
        "job_id": job_id,
        "meal_id": payload.get("meal_id"),
        "image_id": payload.get("image_id"),
    }
    extra.update(fields)
    return extra

logger = setup_logger()
