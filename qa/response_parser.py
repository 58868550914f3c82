"""
Decode and validate the model's JSON answer.

Models wrap JSON in code fences or prose and occasionally emit smart quotes or
trailing commas; those are repaired before decoding. Anything that still fails
is rejected as a whole.
"""
from __future__ import annotations

import re
import json
import logging

from pydantic import ValidationError

from qa.errors import ResponseParseError, SchemaValidationError
from qa.schemas import AnswerPayload

SNIPPET_LENGTH = 200

SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "‘": "'",
    "’": "'"
}

FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
TRAILING_COMMA = re.compile(r",\s*([}\]])")

logger = logging.getLogger(__name__)


def normalize_quotes(text: str) -> str:
    for k, v in SMART_QUOTES.items():
        text = text.replace(k, v)
    return text


def extract_json_text(text: str) -> str:
    """
    Pull the JSON object out of a model response.

    Prefers a fenced block; otherwise takes the span from the first "{" to
    the last "}".
    """
    if not text:
        return ""

    fenced = FENCED_BLOCK.search(text)
    candidate = fenced.group(1) if fenced else text

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end < start:
        return candidate.strip()
    return candidate[start:end + 1]


def repair_json(text: str) -> str:
    return TRAILING_COMMA.sub(r"\1", normalize_quotes(text))


def snippet(text: str) -> str:
    text = (text or "").strip()
    if len(text) <= SNIPPET_LENGTH:
        return text
    return text[:SNIPPET_LENGTH] + "..."


def decode_json(text: str, label: str = "Model response"):
    raw = extract_json_text(text)
    for candidate in (raw, repair_json(raw)):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    raise ResponseParseError(
        f"{label} JSON parsing failed. Response snippet: {snippet(text)}"
    )


def parse_answer(text: str, label: str = "Model response") -> AnswerPayload:
    """
    Parse a raw model response into an AnswerPayload.

    Raises:
        ResponseParseError: No JSON object could be decoded.
        SchemaValidationError: The object does not satisfy AnswerPayload.
    """
    data = decode_json(text, label)
    if not isinstance(data, dict):
        raise SchemaValidationError(
            f"{label} failed schema validation: expected a JSON object. "
            f"Response snippet: {snippet(text)}",
            issues=["expected a JSON object"]
        )

    try:
        return AnswerPayload.model_validate(data)
    except ValidationError as e:
        issues = [
            f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: {error['msg']}"
            for error in e.errors()
        ]
        logger.warning(f"{label} failed schema validation: {issues}")
        raise SchemaValidationError(
            f"{label} failed schema validation: {'; '.join(issues)}. "
            f"Response snippet: {snippet(text)}",
            issues=issues
        ) from e
