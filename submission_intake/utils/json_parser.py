import json
import re
from typing import Any, Dict, List, Optional, Union

from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_safely(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """Parse JSON from a model response, tolerating common formatting noise.

    Handles markdown code fences, prose before or after the payload, and
    trailing data after the first complete JSON value.

    Returns:
        Parsed JSON value, or None if nothing parseable is found
    """
    if not text:
        return None

    cleaned_text = _FENCE.sub("", text.strip()).strip()

    try:
        return json.loads(cleaned_text)
    except json.JSONDecodeError as e:
        LOGGER.debug(f"Initial JSON parse failed: {e}, scanning for first JSON value")

    decoder = json.JSONDecoder()
    for match in re.finditer(r"[\{\[]", cleaned_text):
        try:
            value, _ = decoder.raw_decode(cleaned_text, match.start())
            return value
        except json.JSONDecodeError:
            continue

    LOGGER.warning("Failed to parse JSON from model response", extra={"preview": cleaned_text[:200]})
    return None


def extract_field_from_broken_json(text: str, field_name: str) -> Optional[str]:
    """Pull a single string field out of malformed JSON with a regex."""
    pattern = f'"{re.escape(field_name)}"\\s*:\\s*"((?:[^"\\\\]|\\\\.)*)"'
    match = re.search(pattern, text or "", re.DOTALL)
    if not match:
        return None
    return match.group(1).replace('\\"', '"').replace("\\n", "\n").replace("\\\\", "\\")
