"""Best-effort parsing of JSON objects embedded in model output."""

from __future__ import annotations

import json
import re
from typing import Any, Dict

from json_repair import repair_json

from mnemo.core.errors import MalformedOutputError

_FENCE = re.compile(r"```(?:json)?", re.I)
_OBJECT = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pull the outermost ``{...}`` out of ``text`` and parse it, repairing
    trailing commas, single quotes and similar model mistakes.
    """
    if not text or not text.strip():
        raise MalformedOutputError("empty model output")
    cleaned = _FENCE.sub("", text)
    match = _OBJECT.search(cleaned)
    if not match:
        raise MalformedOutputError("no JSON object in model output", context={"output": text[:200]})
    try:
        data = json.loads(repair_json(match.group(0)))
    except (ValueError, TypeError) as exc:
        raise MalformedOutputError(f"unparseable JSON: {exc}", context={"output": text[:200]}) from exc
    if not isinstance(data, dict):
        raise MalformedOutputError("model output is not a JSON object", context={"output": text[:200]})
    return data
