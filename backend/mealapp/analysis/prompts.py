from __future__ import annotations

from typing import Any, Dict, Tuple

from .categories import ALLOWED_CATEGORIES
from .record import GI_MAX, GI_MIN

# Keys the model must return, in this order.
RESPONSE_KEYS: Tuple[str, ...] = (
    "carbs_g",
    "fat_g",
    "protein_g",
    "fiber_g",
    "GI",
    "alcohol_ml",
    "major_food_categories",
    "image_blur_flag",
)

ALCOHOL_ML_MAX = 1000


def build_system_prompt() -> str:
    return f"""
You are a registered dietitian and an expert in food image analysis. From the meal image, return **only the following 8 fields**.
Do **not** include any derived quantities (glycemic load, flags, balance, duration, etc.).

[Output fields (strict)]
1) carbs_g: number (g), >= 0, rounded to 1 decimal
2) fat_g: number (g), >= 0, 1 decimal
3) protein_g: number (g), >= 0, 1 decimal
4) fiber_g: number (g), >= 0, 1 decimal
5) GI: integer {GI_MIN}..{GI_MAX}. Representative GI of the main carbohydrate (if several, the one contributing most)
6) alcohol_ml: integer (mL). > 0 only when alcohol is clearly visible (0 when unsure)
7) major_food_categories: string[] (3 to 5 items). Choose **only from Allowed tokens**
8) image_blur_flag: 0 or 1. 1 when blur, darkness, occlusion, low resolution or heavy noise make the image hard to judge

[Ordering rule]
- Sort major_food_categories by estimated contribution of carbohydrate amount x representative GI (descending).
- When exact amounts are unknown, approximate from visible area x typical density or typical portion.
- To break ties: staple (carbohydrate) > main dish (protein/fat) > side dish (non-starchy vegetables, seaweed, mushrooms, pickles) > soup/other.

[Format (strict)]
- Output a JSON object with **only the 8 keys above**. No additional text.
- Key order: {",".join(RESPONSE_KEYS)}

[Allowed tokens]: {", ".join(ALLOWED_CATEGORIES)}
""".strip()


SYSTEM_PROMPT = build_system_prompt()

USER_PROMPT = "Return only the JSON described above."


def build_response_format() -> Dict[str, Any]:
    """Structured-output `response_format` for the chat completions API."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "meal_nutrition",
            "strict": True,
            "schema": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "carbs_g": {"type": "number", "minimum": 0},
                    "fat_g": {"type": "number", "minimum": 0},
                    "protein_g": {"type": "number", "minimum": 0},
                    "fiber_g": {"type": "number", "minimum": 0},
                    "GI": {"type": "integer", "minimum": GI_MIN, "maximum": GI_MAX},
                    "alcohol_ml": {"type": "integer", "minimum": 0, "maximum": ALCOHOL_ML_MAX},
                    "major_food_categories": {
                        "type": "array",
                        "minItems": 1,
                        "maxItems": 5,
                        "items": {"type": "string", "enum": list(ALLOWED_CATEGORIES)},
                    },
                    "image_blur_flag": {"type": "integer", "enum": [0, 1]},
                },
                "required": list(RESPONSE_KEYS),
            },
        },
    }


RESPONSE_FORMAT = build_response_format()
