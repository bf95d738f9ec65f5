from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel

from .categories import category_slots, normalize_categories

GI_MIN = 20
GI_MAX = 110

# Column order of the persisted / exported record.
ANALYSIS_COLUMNS: Tuple[str, ...] = (
    "meal_id",
    "image_id",
    "start_time",
    "carbs_g",
    "fat_g",
    "protein_g",
    "fiber_g",
    "GI",
    "alcohol_ml",
    "image_blur_flag",
    "category_count",
    "category_overflow_flag",
    "cat1",
    "cat2",
    "cat3",
    "cat4",
    "cat5",
)


class AnalysisRecord(BaseModel):
    """Fixed-shape nutrition record; field order matches ANALYSIS_COLUMNS."""

    meal_id: Optional[int] = None
    image_id: Optional[int] = None
    start_time: str = ""
    carbs_g: float = 0.0
    fat_g: float = 0.0
    protein_g: float = 0.0
    fiber_g: float = 0.0
    GI: int = GI_MIN
    alcohol_ml: int = 0
    image_blur_flag: int = 0
    category_count: int = 0
    category_overflow_flag: int = 0
    cat1: str = ""
    cat2: str = ""
    cat3: str = ""
    cat4: str = ""
    cat5: str = ""

    def ordered(self) -> Dict[str, Any]:
        data = self.model_dump()
        return {column: data[column] for column in ANALYSIS_COLUMNS}


def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return math.nan
    return number


def fnum(value: Any) -> float:
    """Gram quantity: non-negative, one decimal. Unparseable -> 0.0."""
    number = _to_number(value)
    if not math.isfinite(number):
        return 0.0
    if number >= 1e12:
        return round(number, 1)
    return float(Decimal(repr(max(0.0, number))).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def inum(value: Any) -> int:
    """Non-negative integer. Unparseable -> 0."""
    number = _to_number(value)
    if not math.isfinite(number):
        return 0
    # halves round up
    return max(0, math.floor(number + 0.5))


def clamp_gi(value: Any) -> int:
    return min(GI_MAX, max(GI_MIN, inum(value)))


def build_record(
    payload: Optional[Mapping[str, Any]],
    *,
    meal_id: Optional[int],
    image_id: Optional[int],
    start_time: str,
) -> AnalysisRecord:
    """
    Normalize a model response into an AnalysisRecord.

    Missing or malformed fields are zero-filled, so an empty payload still
    yields a complete record.
    """
    payload = payload if isinstance(payload, Mapping) else {}

    categories = normalize_categories(payload.get("major_food_categories"))
    slots, count, overflow = category_slots(categories)

    return AnalysisRecord(
        meal_id=meal_id,
        image_id=image_id,
        start_time=start_time,
        carbs_g=fnum(payload.get("carbs_g")),
        fat_g=fnum(payload.get("fat_g")),
        protein_g=fnum(payload.get("protein_g")),
        fiber_g=fnum(payload.get("fiber_g")),
        GI=clamp_gi(payload.get("GI")),
        alcohol_ml=inum(payload.get("alcohol_ml")),
        image_blur_flag=1 if inum(payload.get("image_blur_flag")) else 0,
        category_count=count,
        category_overflow_flag=overflow,
        cat1=slots[0],
        cat2=slots[1],
        cat3=slots[2],
        cat4=slots[3],
        cat5=slots[4],
    )


def empty_record(*, meal_id: Optional[int], image_id: Optional[int], start_time: str = "") -> AnalysisRecord:
    return build_record({}, meal_id=meal_id, image_id=image_id, start_time=start_time)
