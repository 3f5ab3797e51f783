"""
PayloadNormalizer module for repairing the upstream API's known JSON malformations

The upstream API wraps each page as ``{"...": ..., "value": [ ... ]}`` and is
known to emit a handful of broken fragments. The repairs below are applied in
order as plain text rewrites; anything they do not fix surfaces as a
PayloadFormatError when the result is parsed.
"""

import json
import re
from typing import Any, Callable, Dict, List, Tuple


class PayloadFormatError(ValueError):
    """Raised when a page cannot be turned into a JSON array of records"""
    pass


# A ']' is only legitimate as the close of the outer record array, which is
# the last ']' of the terminal '}]}'. Any ']' still followed by a '}]}' is noise.
STRAY_CLOSE_BRACKET = re.compile(r"\](?=.*\}\]\})")

# Known upstream typo where a bracket leaks into a city name.
KNOWN_TOKEN_FIXES = {
    "P[LAIN CITY": "PLAIN CITY",
}

ENCODED_SPACE = "_x0020_"


def collapse_stray_close_brackets(text: str) -> str:
    """Blank out every ']' that precedes the terminal ``}]}``"""
    return STRAY_CLOSE_BRACKET.sub(" ", text)


def fix_known_tokens(text: str) -> str:
    """Repair mis-split tokens the upstream API is known to produce"""
    for broken, fixed in KNOWN_TOKEN_FIXES.items():
        text = text.replace(broken, fixed)
    return text


def extract_array_body(text: str) -> str:
    """
    Return the text between the first '[' and the last ']'

    Raises:
        PayloadFormatError: If the payload contains no bracketed array
    """
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end == -1 or end < start:
        raise PayloadFormatError("Payload does not contain a JSON array")
    return text[start + 1:end]


def strip_encoded_spaces(text: str) -> str:
    """Remove the ``_x0020_`` artefact the upstream API leaves in field names"""
    return text.replace(ENCODED_SPACE, "")


def wrap_array(text: str) -> str:
    return "[" + text.strip() + "]"


NORMALIZATION_RULES: Tuple[Tuple[str, Callable[[str], str]], ...] = (
    ('collapse_stray_close_brackets', collapse_stray_close_brackets),
    ('fix_known_tokens', fix_known_tokens),
    ('extract_array_body', extract_array_body),
    ('strip_encoded_spaces', strip_encoded_spaces),
    ('wrap_array', wrap_array),
)


def normalize_text(raw: str) -> str:
    """Apply every repair rule in order and return the rewritten text"""
    text = raw
    for _, rule in NORMALIZATION_RULES:
        text = rule(text)
    return text


def normalize_payload(raw: str) -> List[Dict[str, Any]]:
    """
    Turn a raw API page into a list of record objects

    Args:
        raw: Response body exactly as received

    Returns:
        List of records; empty when the page held no records

    Raises:
        PayloadFormatError: If the repaired text is not a JSON array of objects
    """
    text = normalize_text(raw)

    try:
        records = json.loads(text)
    except json.JSONDecodeError as e:
        raise PayloadFormatError(f"Payload is not valid JSON after normalisation: {e}")

    if not all(isinstance(record, dict) for record in records):
        raise PayloadFormatError("Payload array contains non-object entries")

    return records
