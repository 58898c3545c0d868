"""Decoding of model output into a bidirectional evaluation.

Two independent stages:
- decode_strict: the whole text must match the response schema exactly.
- decode_fallback: strip code fences, pull the first balanced JSON object,
  and as a last resort apply score regexes to free text.
decode_model_output tries them in that order.
"""

import json
import math
import re
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

SUMMARY_FALLBACK_CHARS = 280


class DecodeError(ValueError):
    """Model output could not be turned into an evaluation."""


class BidirectionalScore(BaseModel):
    """Response schema the model is asked to produce."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    long_score: float = Field(alias="longScore", ge=0, le=10, allow_inf_nan=False)
    short_score: float = Field(alias="shortScore", ge=0, le=10, allow_inf_nan=False)
    long_summary: str = Field(alias="longSummary", min_length=1)
    short_summary: str = Field(alias="shortSummary", min_length=1)
    chosen_direction: Literal["LONG", "SHORT", "NONE"] = Field(alias="chosenDirection")
    confidence: float = Field(ge=0, le=1, allow_inf_nan=False)


# JSON schema sent with the request (strict structured output)
RESPONSE_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "required": [
        "longScore",
        "shortScore",
        "longSummary",
        "shortSummary",
        "chosenDirection",
        "confidence",
    ],
    "properties": {
        "longScore": {"type": "number", "minimum": 0, "maximum": 10},
        "shortScore": {"type": "number", "minimum": 0, "maximum": 10},
        "longSummary": {"type": "string"},
        "shortSummary": {"type": "string"},
        "chosenDirection": {"type": "string", "enum": ["LONG", "SHORT", "NONE"]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
}


@dataclass
class DecodedScore:
    """Evaluation extracted from model output."""

    long_score: float
    short_score: float
    long_summary: str
    short_summary: str
    chosen_direction: str = "NONE"
    confidence: float | None = None
    mode: Literal["schema", "embedded_json", "heuristic"] = "schema"


def clamp_score(value: float) -> float:
    return max(0.0, min(10.0, value))


def _finite(value) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def decode_strict(text: str) -> DecodedScore:
    """Decode output that is exactly one schema-conforming JSON document."""
    try:
        parsed = BidirectionalScore.model_validate_json(text.strip())
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ())) or "document"
        raise DecodeError(f"schema: {loc}: {first.get('msg', 'invalid')}") from e
    return DecodedScore(
        long_score=parsed.long_score,
        short_score=parsed.short_score,
        long_summary=parsed.long_summary,
        short_summary=parsed.short_summary,
        chosen_direction=parsed.chosen_direction,
        confidence=parsed.confidence,
        mode="schema",
    )


_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?|\n?\s*```\s*$")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced {...} span, honoring quoted strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


_SCORE_KEYS = ("score", "aiScore", "totalScore")
_SUMMARY_KEYS = ("summary", "aiSummary", "reasoning")

_HEURISTIC_PATTERNS = (
    re.compile(r"\bscored\s+[A-F][+-]?\s*\(\s*(-?\d+(?:\.\d+)?)\s*\)", re.IGNORECASE),
    re.compile(r"\b(?:ai_?score|total_?score)\s*[=:]\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"\bscore\s*[=:]\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"(-?\d+(?:\.\d+)?)\s*/\s*10\b"),
)


def _decode_object(obj: dict) -> DecodedScore:
    long_score = _finite(obj.get("longScore"))
    short_score = _finite(obj.get("shortScore"))
    if long_score is None or short_score is None:
        single = next((_finite(obj[k]) for k in _SCORE_KEYS if k in obj), None)
        if single is None:
            raise DecodeError("embedded_json: no finite score field")
        long_score = long_score if long_score is not None else single
        short_score = short_score if short_score is not None else single

    summary = next((str(obj[k]) for k in _SUMMARY_KEYS if obj.get(k)), "")
    direction = str(obj.get("chosenDirection") or "NONE").upper()
    if direction not in ("LONG", "SHORT", "NONE"):
        direction = "NONE"
    return DecodedScore(
        long_score=clamp_score(long_score),
        short_score=clamp_score(short_score),
        long_summary=str(obj.get("longSummary") or summary),
        short_summary=str(obj.get("shortSummary") or summary),
        chosen_direction=direction,
        confidence=_finite(obj.get("confidence")),
        mode="embedded_json",
    )


def decode_heuristic(text: str) -> DecodedScore:
    """Regex extraction of a single score from free text."""
    for pattern in _HEURISTIC_PATTERNS:
        match = pattern.search(text)
        if match:
            value = _finite(match.group(1))
            if value is None:
                continue
            score = clamp_score(value)
            summary = text.strip()[:SUMMARY_FALLBACK_CHARS]
            return DecodedScore(
                long_score=score,
                short_score=score,
                long_summary=summary,
                short_summary=summary,
                mode="heuristic",
            )
    raise DecodeError("heuristic: no score pattern found")


def decode_fallback(text: str) -> DecodedScore:
    """Lenient decoding for output that missed the schema."""
    body = strip_code_fences(text)
    candidate = extract_first_json_object(body)
    if candidate is not None:
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            try:
                return _decode_object(obj)
            except DecodeError:
                pass
    return decode_heuristic(body)


def decode_model_output(text: str | None) -> DecodedScore:
    """Strict schema first, fallback stage second.

    Raises:
        DecodeError: with both stage messages when neither succeeds
    """
    if not text or not text.strip():
        raise DecodeError("empty_output")
    try:
        return decode_strict(text)
    except DecodeError as primary:
        try:
            return decode_fallback(text)
        except DecodeError as secondary:
            raise DecodeError(f"{primary}; fallback: {secondary}") from secondary
