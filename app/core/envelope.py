"""Shared JSON envelope decoding for both bridge legs."""

import json
from typing import Any, Dict


class EnvelopeError(ValueError):
    """Raised when an envelope is not valid JSON or lacks required fields."""


class UnknownEnvelopeError(EnvelopeError):
    """Raised for a well-formed envelope with an unrecognised tag."""


def load_json_object(raw: str | bytes) -> Dict[str, Any]:
    """Decode a text frame that must hold a JSON object.

    Raises:
        EnvelopeError: If the frame is not JSON or not an object
    """
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError, UnicodeDecodeError and the int digit limit
        raise EnvelopeError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise EnvelopeError("Envelope is not a JSON object")
    return data
