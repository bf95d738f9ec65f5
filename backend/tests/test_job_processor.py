from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from mealapp.analysis.record import ANALYSIS_COLUMNS
from mealapp.exceptions import VisionModelError
from mealapp.models import Job, Meal, MealImage, MealImageAnalysis
from mealapp.services import job_processor
from mealapp.services.job_processor import claim_job, run_analysis_batch

NOW = datetime(2024, 9, 22, 0, 0, 0, tzinfo=timezone.utc)

GOOD_ANSWER = {
    "carbs_g": 92.44,
    "fat_g": 18.0,
    "protein_g": 25.55,
    "fiber_g": 4.0,
    "GI": 88,
    "alcohol_ml": 0,
    "major_food_categories": ["rice", "fish_seafood", "nonstarchy_veg"],
    "image_blur_flag": 0,
}


async def add_image(session_factory, meal_id, storage_path):
    async with session_factory() as db:
        if await db.get(Meal, meal_id) is None:
            db.add(Meal(id=meal_id, user_id="user-1", meal_slot="lunch"))
        image = MealImage(meal_id=meal_id, storage_path=storage_path)
        db.add(image)
        await db.commit()
        return image.id


async def add_job(session_factory, payload, status="queued", run_at=None, claimed_at=None):
    async with session_factory() as db:
        job = Job(job_type="analyze_meal", payload=payload, status=status, run_at=run_at, claimed_at=claimed_at)
        db.add(job)
        await db.commit()
        return job.id


async def get_job(session_factory, job_id):
    async with session_factory() as db:
        return await db.get(Job, job_id)


async def get_analysis(session_factory, image_id):
    async with session_factory() as db:
        return await db.get(MealImageAnalysis, image_id)


async def run(session_factory, cfg, analyzer, signer):
    return await run_analysis_batch(session_factory, cfg=cfg, analyzer=analyzer, signer=signer, now=NOW)


@pytest.mark.asyncio
async def test_queued_job_is_analyzed_and_marked_done(session_factory, cfg, signer, make_analyzer):
    path = "user-1/1758123117948_20240922_083549.jpg"
    image_id = await add_image(session_factory, 1, path)
    job_id = await add_job(session_factory, {"meal_id": 1, "image_id": image_id, "storage_path": path})
    analyzer = make_analyzer(default=GOOD_ANSWER)

    result = await run(session_factory, cfg, analyzer, signer)

    assert result.result == "ok"
    assert result.done == [job_id]
    assert signer.calls == [path]
    assert len(analyzer.calls) == 1

    job = await get_job(session_factory, job_id)
    assert job.status == "done"

    analysis = await get_analysis(session_factory, image_id)
    assert analysis.status == "done"
    assert analysis.error is None
    assert analysis.model == cfg.OPENAI_MODEL
    assert analysis.prompt_version == cfg.PROMPT_VERSION
    assert analysis.meal_id == 1
    assert analysis.start_time == "2024-09-22T08:35:49+09:00"
    assert analysis.carbs_g == 92.4
    assert analysis.protein_g == 25.6
    assert analysis.GI == 88
    assert (analysis.cat1, analysis.cat2, analysis.cat3, analysis.cat4) == ("rice", "fish_seafood", "nonstarchy_veg", "")
    assert analysis.category_count == 3
    assert list(analysis.raw_response) == list(ANALYSIS_COLUMNS)


@pytest.mark.asyncio
async def test_failing_job_does_not_stop_the_rest_of_the_batch(session_factory, cfg, signer, make_analyzer):
    first = await add_image(session_factory, 1, "u/a_20240101_120000.jpg")
    last = await add_image(session_factory, 2, "u/b_20240101_130000.jpg")
    ok_1 = await add_job(session_factory, {"meal_id": 1, "image_id": first, "storage_path": "u/a_20240101_120000.jpg"})
    bad = await add_job(session_factory, {})
    ok_2 = await add_job(session_factory, {"meal_id": 2, "image_id": last, "storage_path": "u/b_20240101_130000.jpg"})

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.claimed == [ok_1, bad, ok_2]
    assert result.done == [ok_1, ok_2]
    assert result.errors == [bad]

    failed = await get_job(session_factory, bad)
    assert failed.status == "error"
    assert failed.payload == {"error": "invalid payload: need image_id or meal_id"}
    assert (await get_job(session_factory, ok_2)).status == "done"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", ["not-an-object", [1, 2]])
async def test_non_object_payload_fails_only_that_job(session_factory, cfg, signer, make_analyzer, payload):
    image_id = await add_image(session_factory, 1, "u/a_20240101_120000.jpg")
    bad = await add_job(session_factory, payload)
    ok = await add_job(session_factory, {"meal_id": 1, "image_id": image_id})

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.claimed == [bad, ok]
    assert result.errors == [bad]
    assert result.done == [ok]

    failed = await get_job(session_factory, bad)
    assert failed.status == "error"
    assert failed.payload == {"error": "invalid payload: need image_id or meal_id"}
    assert (await get_job(session_factory, ok)).status == "done"
    assert (await get_analysis(session_factory, image_id)).status == "done"


@pytest.mark.asyncio
async def test_claim_failure_does_not_stop_later_jobs(session_factory, cfg, signer, make_analyzer, monkeypatch):
    first = await add_image(session_factory, 1, "u/a_20240101_120000.jpg")
    second = await add_image(session_factory, 2, "u/b_20240101_130000.jpg")
    broken = await add_job(session_factory, {"meal_id": 1, "image_id": first})
    ok = await add_job(session_factory, {"meal_id": 2, "image_id": second})

    real_claim = job_processor.claim_job

    async def flaky_claim(db, job_id, *, now):
        if job_id == broken:
            raise RuntimeError("connection reset")
        return await real_claim(db, job_id, now=now)

    monkeypatch.setattr(job_processor, "claim_job", flaky_claim)

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.claimed == [ok]
    assert result.done == [ok]
    assert result.errors == [broken]
    assert (await get_job(session_factory, ok)).status == "done"
    # never claimed, so it is picked up again by the next run
    assert (await get_job(session_factory, broken)).status == "queued"


@pytest.mark.asyncio
async def test_signed_url_failure_writes_error_record(session_factory, cfg, signer, make_analyzer):
    path = "broken/photo.jpg"
    image_id = await add_image(session_factory, 3, path)
    payload = {"meal_id": 3, "image_id": image_id, "storage_path": path}
    job_id = await add_job(session_factory, payload)
    analyzer = make_analyzer(default=GOOD_ANSWER)

    result = await run(session_factory, cfg, analyzer, signer)

    assert result.errors == [job_id]
    assert analyzer.calls == []

    job = await get_job(session_factory, job_id)
    assert job.status == "error"
    assert job.payload["error"] == "failed to sign url: broken/photo.jpg"
    assert job.payload["image_id"] == image_id

    analysis = await get_analysis(session_factory, image_id)
    assert analysis.status == "error"
    assert analysis.error == "failed to sign url: broken/photo.jpg"
    assert analysis.carbs_g == 0.0
    assert analysis.GI == 20
    assert analysis.cat1 == ""
    assert list(analysis.raw_response) == list(ANALYSIS_COLUMNS)


@pytest.mark.asyncio
async def test_model_transport_error_marks_job_error(session_factory, cfg, signer, make_analyzer):
    image_id = await add_image(session_factory, 4, "u/x.jpg")
    job_id = await add_job(session_factory, {"image_id": image_id, "storage_path": "u/x.jpg"})
    analyzer = make_analyzer(error=VisionModelError("OpenAI 500: upstream"))

    result = await run(session_factory, cfg, analyzer, signer)

    assert result.errors == [job_id]
    analysis = await get_analysis(session_factory, image_id)
    assert analysis.status == "error"
    assert analysis.meal_id == 4
    assert analysis.error == "OpenAI 500: upstream"


@pytest.mark.asyncio
async def test_empty_model_answer_still_produces_full_record(session_factory, cfg, signer, make_analyzer):
    image_id = await add_image(session_factory, 5, "u/no_time.jpg")
    job_id = await add_job(session_factory, {"meal_id": 5, "image_id": image_id, "storage_path": "u/no_time.jpg"})

    result = await run(session_factory, cfg, make_analyzer(default={}), signer)

    assert result.done == [job_id]
    analysis = await get_analysis(session_factory, image_id)
    assert analysis.status == "done"
    assert analysis.start_time == "2024-09-22T09:00:00+09:00"
    assert analysis.raw_response == {
        "meal_id": 5,
        "image_id": image_id,
        "start_time": "2024-09-22T09:00:00+09:00",
        "carbs_g": 0.0,
        "fat_g": 0.0,
        "protein_g": 0.0,
        "fiber_g": 0.0,
        "GI": 20,
        "alcohol_ml": 0,
        "image_blur_flag": 0,
        "category_count": 0,
        "category_overflow_flag": 0,
        "cat1": "",
        "cat2": "",
        "cat3": "",
        "cat4": "",
        "cat5": "",
    }


@pytest.mark.asyncio
async def test_reanalysis_overwrites_the_same_image_row(session_factory, cfg, signer, make_analyzer):
    image_id = await add_image(session_factory, 6, "u/meal.jpg")
    payload = {"meal_id": 6, "image_id": image_id, "storage_path": "u/meal.jpg"}

    await add_job(session_factory, payload)
    await run(session_factory, cfg, make_analyzer(default={"carbs_g": 10}), signer)

    await add_job(session_factory, payload)
    await run(session_factory, cfg, make_analyzer(default={"carbs_g": 55.55}), signer)

    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(MealImageAnalysis))).scalar_one()
    assert count == 1
    assert (await get_analysis(session_factory, image_id)).carbs_g == 55.6


@pytest.mark.asyncio
async def test_meal_only_payload_uses_latest_image(session_factory, cfg, signer, make_analyzer):
    await add_image(session_factory, 7, "u/old_20240101_080000.jpg")
    latest = await add_image(session_factory, 7, "u/new_20240101_090000.jpg")
    job_id = await add_job(session_factory, {"meal_id": 7})

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.done == [job_id]
    assert signer.calls == ["u/new_20240101_090000.jpg"]
    analysis = await get_analysis(session_factory, latest)
    assert analysis.meal_id == 7
    assert analysis.start_time == "2024-01-01T09:00:00+09:00"


@pytest.mark.asyncio
async def test_meal_without_images_is_an_error(session_factory, cfg, signer, make_analyzer):
    job_id = await add_job(session_factory, {"meal_id": 99})

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.errors == [job_id]
    job = await get_job(session_factory, job_id)
    assert job.payload == {"meal_id": 99, "error": "no image for meal 99"}
    async with session_factory() as db:
        count = (await db.execute(select(func.count()).select_from(MealImageAnalysis))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_image_only_payload_looks_up_meal_and_path(session_factory, cfg, signer, make_analyzer):
    image_id = await add_image(session_factory, 8, "u/p_20240505_070809.jpg")
    job_id = await add_job(session_factory, {"image_id": str(image_id)})

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.done == [job_id]
    analysis = await get_analysis(session_factory, image_id)
    assert analysis.meal_id == 8
    assert analysis.start_time == "2024-05-05T07:08:09+09:00"


@pytest.mark.asyncio
async def test_only_due_queued_jobs_are_claimed(session_factory, cfg, signer, make_analyzer):
    image_id = await add_image(session_factory, 9, "u/m.jpg")
    payload = {"meal_id": 9, "image_id": image_id, "storage_path": "u/m.jpg"}
    past = await add_job(session_factory, payload, run_at=NOW - timedelta(minutes=1))
    future = await add_job(session_factory, payload, run_at=NOW + timedelta(hours=1))
    in_flight = await add_job(session_factory, payload, status="processing", claimed_at=NOW - timedelta(minutes=1))
    finished = await add_job(session_factory, payload, status="done")
    other_type = await add_job(session_factory, payload)
    async with session_factory() as db:
        (await db.get(Job, other_type)).job_type = "send_push"
        await db.commit()

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.claimed == [past]
    assert (await get_job(session_factory, future)).status == "queued"
    assert (await get_job(session_factory, in_flight)).status == "processing"
    assert (await get_job(session_factory, finished)).status == "done"
    assert (await get_job(session_factory, other_type)).status == "queued"


@pytest.mark.asyncio
async def test_batch_is_limited_and_ordered_by_id(session_factory, cfg, signer, make_analyzer):
    image_id = await add_image(session_factory, 10, "u/m.jpg")
    payload = {"meal_id": 10, "image_id": image_id, "storage_path": "u/m.jpg"}
    job_ids = [await add_job(session_factory, payload) for _ in range(7)]

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.claimed == job_ids[:5]
    assert (await get_job(session_factory, job_ids[5])).status == "queued"


@pytest.mark.asyncio
async def test_stale_processing_job_is_reclaimed(session_factory, cfg, signer, make_analyzer):
    image_id = await add_image(session_factory, 11, "u/m.jpg")
    payload = {"meal_id": 11, "image_id": image_id, "storage_path": "u/m.jpg"}
    stale = await add_job(session_factory, payload, status="processing", claimed_at=NOW - timedelta(hours=2))

    result = await run(session_factory, cfg, make_analyzer(default=GOOD_ANSWER), signer)

    assert result.reclaimed == [stale]
    assert result.done == [stale]
    assert (await get_job(session_factory, stale)).status == "done"


@pytest.mark.asyncio
async def test_no_due_jobs(session_factory, cfg, signer, make_analyzer):
    result = await run(session_factory, cfg, make_analyzer(), signer)
    assert result.result == "no-jobs"
    assert result.as_dict()["claimed"] == []


@pytest.mark.asyncio
async def test_claim_is_exclusive(session_factory):
    job_id = await add_job(session_factory, {"image_id": 1})

    async with session_factory() as db:
        assert await claim_job(db, job_id, now=NOW) is True
    async with session_factory() as db:
        assert await claim_job(db, job_id, now=NOW) is False

    job = await get_job(session_factory, job_id)
    assert job.status == "processing"
    assert job.claimed_at is not None
