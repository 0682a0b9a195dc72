"""
Plan Response Parser

Parses the model's plan response into step dictionaries.
"""

import json
import re
from typing import Any

from companion.exceptions import PlanParseError

CODE_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _balanced_spans(text: str):
    """
    Yield every balanced {...} span, scanning from each opening brace.

    Braces inside JSON string literals (including escaped quotes) are
    ignored so code snippets in step parameters do not break matching.
    """
    for start, char in enumerate(text):
        if char != "{":
            continue
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            current = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif current == "\\":
                    escaped = True
                elif current == '"':
                    in_string = False
                continue
            if current == '"':
                in_string = True
            elif current == "{":
                depth += 1
            elif current == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break


def extract_json_from_response(response: str) -> dict[str, Any]:
    """
    Extract a JSON object from the model's response text.

    The model may wrap JSON in markdown code blocks or add prose around it.

    Args:
        response: Raw response text

    Returns:
        Parsed JSON object

    Raises:
        PlanParseError: If no JSON object can be extracted
    """
    for match in CODE_BLOCK_PATTERN.findall(response):
        try:
            data = json.loads(match.strip())
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    for span in _balanced_spans(response):
        try:
            data = json.loads(span)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise PlanParseError(
        "Could not extract valid JSON from plan response",
        {"response_preview": response[:200]},
    )


def parse_plan_response(response: str) -> tuple[list[dict[str, Any]], int | None]:
    """
    Parse a plan response into raw step dicts and an optional duration.

    Returns:
        (steps, estimated_duration_seconds or None)

    Raises:
        PlanParseError: If JSON is missing, or steps are absent or empty
    """
    data = extract_json_from_response(response)

    steps = data.get("steps")
    if not isinstance(steps, list) or not steps:
        raise PlanParseError(
            "Plan response contains no steps",
            {"keys": list(data.keys())},
        )

    for i, step in enumerate(steps):
        if not isinstance(step, dict):
            raise PlanParseError(f"Step {i} is not an object")

    duration = data.get("estimatedDuration", data.get("estimated_duration"))
    if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0:
        duration = None

    return steps, int(duration) if duration is not None else None
