"""Extract JSON payloads embedded in free-form model output.

Models wrap JSON in markdown fences or surround it with prose; these helpers
return the first well-formed value of the requested shape.
"""

import json
from typing import Any

from visibility_report.core.exceptions import ResponseParseError

_decoder = json.JSONDecoder()


def _first_json(text: str, opener: str, expected: type) -> Any:
    if not text:
        raise ResponseParseError("Empty model response")

    pos = text.find(opener)
    while pos != -1:
        try:
            value, _ = _decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, expected):
            return value
        pos = text.find(opener, pos + 1)

    kind = "array" if expected is list else "object"
    raise ResponseParseError(f"No valid JSON {kind} found in response")


def extract_json_array(text: str) -> list:
    """Return the first well-formed JSON array in *text*."""
    return _first_json(text, "[", list)


def extract_json_object(text: str) -> dict:
    """Return the first well-formed JSON object in *text*."""
    return _first_json(text, "{", dict)
