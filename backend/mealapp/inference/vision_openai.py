import logging
import time
from typing import Any, Dict, Optional

from openai import AsyncOpenAI, APIError

from ..analysis.prompts import RESPONSE_FORMAT, SYSTEM_PROMPT, USER_PROMPT
from ..config import Settings
from ..exceptions import VisionModelError
from . import json_guard

logger = logging.getLogger("mealapp.inference")


def _message_to_dict(message: Any) -> Dict[str, Any]:
    """Prefer structured `parsed` output, else recover JSON from `content`."""
    parsed = getattr(message, "parsed", None)
    if parsed is not None:
        if isinstance(parsed, dict):
            return parsed
        if hasattr(parsed, "model_dump"):
            return parsed.model_dump()
    return json_guard.extract_json(getattr(message, "content", None))


class OpenAIVisionAnalyzer:
    """
    Requests the 8-key nutrition breakdown for one meal photo.

    Transport failures raise VisionModelError; an unusable answer yields an
    empty dict so the caller can still build a zero-filled record.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.model = settings.OPENAI_MODEL
        self.detail = settings.OPENAI_IMAGE_DETAIL
        self._client = client or AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
        )

    def build_messages(self, image_url: str):
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_url, "detail": self.detail}},
                ],
            },
        ]

    async def analyze(self, image_url: str) -> Dict[str, Any]:
        """Model answer as a dict. A failed request raises VisionModelError; an unusable answer is {}."""
        started = time.time()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                response_format=RESPONSE_FORMAT,
                messages=self.build_messages(image_url),
            )
        except APIError as e:
            raise VisionModelError(f"OpenAI {getattr(e, 'status_code', None) or 'error'}: {e}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            logger.warning("Vision model returned no choices", extra={"model": self.model})
            return {}

        data = _message_to_dict(choices[0].message)
        logger.info(
            "Vision model answered",
            extra={
                "model": self.model,
                "keys": sorted(data.keys()),
                "duration_ms": int((time.time() - started) * 1000),
            },
        )
        return data
