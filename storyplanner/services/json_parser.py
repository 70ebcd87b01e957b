"""Recovery of a JSON object from a model answer that should have been pure JSON."""

import json
import logging
import re

from storyplanner.core.metrics import increment_json_parse_failure

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_FENCE_MARKER = re.compile(r"```(?:json)?", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def strip_code_fences(text: str) -> str:
    """Drop every ```json / ``` marker, keeping whatever sits between them."""
    return _FENCE_MARKER.sub("", text).strip()


def _repair(text: str) -> str:
    """Fenced body if any, cut to the outermost braces, trailing commas removed."""
    match = _FENCED_BLOCK.search(text)
    body = match.group(1).strip() if match else text.strip()
    start, end = body.find("{"), body.rfind("}")
    if start != -1 and end > start:
        body = body[start : end + 1]
    return _TRAILING_COMMA.sub(r"\1", body)


def _first_object(text: str) -> dict | None:
    """Decode the first complete JSON object found anywhere in `text`."""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        index = text.find("{", index + 1)
    return None


_TIERS = (
    ("direct", lambda text: text),
    ("cleaned", _repair),
)


def parse_json_object(text: str | None) -> dict | None:
    """
    Tiered JSON object extraction from a structured Gemini answer.

    Tries the raw text, then a repaired copy (fences, surrounding prose,
    trailing commas), then scans for the first decodable object. Each failed
    tier is counted in the parse-failure metric. Returns None when nothing
    yields an object.
    """
    if not text or not text.strip():
        return None

    for tier, prepare in _TIERS:
        try:
            value = json.loads(prepare(text))
        except json.JSONDecodeError:
            increment_json_parse_failure(tier)
            continue
        if isinstance(value, dict):
            return value

    value = _first_object(text)
    if value is None:
        increment_json_parse_failure("object")
        logger.warning("no JSON object recovered preview=%r", text[:300])
    return value
