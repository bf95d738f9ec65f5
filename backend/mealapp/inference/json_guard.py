import json
import re
from typing import Any, Dict

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")

def extract_json(text: Any) -> Dict[str, Any]:
    """
    Recover a JSON object from free-form model output.

    Strips ``` fences and parses the span between the first "{" and the last
    "}". Anything unrecoverable becomes an empty dict.
    """
    cleaned = _FENCE.sub("", str(text or "")).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        return {}
    try:
        data = json.loads(cleaned[start:end + 1])
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
