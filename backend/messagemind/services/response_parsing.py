"""Best-effort repair and validation of AI analysis output.

Models often wrap JSON in markdown fences, add a sentence before or after
it, or leave trailing commas. Those are repaired; anything else that does
not decode or does not match the mode's schema is malformed.
"""

import json
import re
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from messagemind.schemas.analysis_results import (
    DeepResult,
    ExpandedResult,
    SnapshotResult,
)
from messagemind.services.pricing import AnalysisMode

_FENCE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")

_SCHEMA_FOR_MODE: dict[AnalysisMode, type[BaseModel]] = {
    AnalysisMode.SNAPSHOT: SnapshotResult,
    AnalysisMode.EXPANDED: ExpandedResult,
    AnalysisMode.DEEP: DeepResult,
}


class MalformedOutputError(Exception):
    """AI output could not be decoded or did not match the expected schema.

    Attributes:
        reason: Short classification ("empty", "no_json", "invalid_json",
            "schema_mismatch").
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def repair_json_text(raw: str) -> str:
    """Apply the text-level repairs before decoding.

    Strips markdown code fences, keeps the outermost ``{...}`` span and
    removes trailing commas before closing braces and brackets.

    Args:
        raw: Raw model output.

    Returns:
        Repaired text (may still be invalid JSON).

    Raises:
        MalformedOutputError: If there is no JSON object in the text.
    """
    text = raw.strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise MalformedOutputError("no_json", "Output contains no JSON object")
    text = text[start : end + 1]

    return _TRAILING_COMMA.sub(r"\1", text)


def parse_analysis_output(raw: str | None, mode: AnalysisMode) -> dict[str, Any]:
    """Repair, decode and validate model output for a mode.

    Args:
        raw: Raw model output.
        mode: Resolved analysis mode (selects the schema).

    Returns:
        Validated result as a JSON-safe dict.

    Raises:
        MalformedOutputError: If any repair, decode or validation step fails.
    """
    if raw is None or not raw.strip():
        raise MalformedOutputError("empty", "Output is empty")

    repaired = repair_json_text(raw)
    try:
        decoded = json.loads(repaired)
    except json.JSONDecodeError as e:
        raise MalformedOutputError("invalid_json", f"Output is not valid JSON: {e.msg}") from e
    if not isinstance(decoded, dict):
        raise MalformedOutputError("invalid_json", "Output is not a JSON object")

    schema = _SCHEMA_FOR_MODE[mode]
    try:
        validated = schema.model_validate(decoded)
    except PydanticValidationError as e:
        raise MalformedOutputError(
            "schema_mismatch",
            f"Output does not match the {mode.value} schema ({e.error_count()} errors)",
        ) from e
    return validated.model_dump(mode="json", exclude_none=True)
