from __future__ import annotations

import argparse
import asyncio
from typing import List

from mealapp.db import AsyncSessionLocal, engine
from mealapp.exceptions import ImageNotFoundError
from mealapp.logger import logger
from mealapp.services.analysis_admin import enqueue_image_analysis


async def enqueue(image_ids: List[int]) -> List[int]:
    job_ids: List[int] = []
    async with AsyncSessionLocal() as db:
        for image_id in image_ids:
            try:
                job = await enqueue_image_analysis(db, image_id)
            except ImageNotFoundError as e:
                logger.warning(e.message, extra={"image_id": image_id})
                continue
            job_ids.append(job.id)

    logger.info(
        "Enqueue analysis finished",
        extra={"requested": len(image_ids), "queued": len(job_ids), "job_ids": job_ids},
    )
    await engine.dispose()
    return job_ids


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Queue analyze_meal jobs for stored meal images.",
    )
    parser.add_argument(
        "--image-id",
        dest="image_ids",
        type=int,
        action="append",
        required=True,
        help="Meal image id to (re)analyze. Repeat for several images.",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    job_ids = asyncio.run(enqueue(args.image_ids))
    if len(job_ids) != len(args.image_ids):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
