from __future__ import annotations

import re
from typing import Any, List, Tuple

# Closed vocabulary of major food categories. The prompt text and the
# response schema are both rendered from this tuple.
ALLOWED_CATEGORIES: Tuple[str, ...] = (
    "rice",
    "bread",
    "noodles",
    "pasta",
    "grains_cereals",
    "starchy_veg",
    "poultry",
    "pork",
    "beef",
    "fish_seafood",
    "soy_legumes",
    "eggs",
    "nonstarchy_veg",
    "fruit",
    "dairy",
    "nuts_seeds",
    "soup_broth",
    "dessert_sweets",
    "mixed_dish",
    "other",
)
ALLOWED_SET = frozenset(ALLOWED_CATEGORIES)

FALLBACK_CATEGORY = "other"
CATEGORY_SLOTS = 5

_NON_TOKEN = re.compile(r"[^a-z0-9_]")


def normalize_token(value: Any) -> str:
    """Lowercase, spaces to underscores, drop everything else; unknown -> `other`."""
    token = _NON_TOKEN.sub("", str(value).lower().replace(" ", "_"))
    return token if token in ALLOWED_SET else FALLBACK_CATEGORY


def _as_list(raw: Any) -> List[Any]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(raw, (list, tuple)):
        return list(raw)
    return []


def normalize_categories(raw: Any) -> List[str]:
    """
    Normalize the model's category list into distinct allowed tokens.

    Accepts a list or a comma separated string; anything else is treated as
    no categories. Order of first appearance is preserved.
    """
    seen = set()
    result: List[str] = []
    for item in _as_list(raw):
        token = normalize_token(item)
        if token not in seen:
            seen.add(token)
            result.append(token)
    return result


def category_slots(categories: List[str]) -> Tuple[List[str], int, int]:
    """
    Fit normalized categories into the fixed slots.

    Returns (slots, category_count, category_overflow_flag). `slots` always
    has CATEGORY_SLOTS entries, padded with empty strings.
    """
    count = len(categories)
    overflow = 1 if count > CATEGORY_SLOTS else 0
    slots = (list(categories[:CATEGORY_SLOTS]) + [""] * CATEGORY_SLOTS)[:CATEGORY_SLOTS]
    return slots, count, overflow
