import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class MalformedPayload(ValueError):
    """The response body holds no JSON document that could be recovered."""

    def __init__(self, message: str, body: Optional[str] = None):
        super().__init__(message)
        self.body = body


def _find_closing_bracket(text: str, start: int) -> Optional[int]:
    """Return the index of the ']' matching the '[' at `start`, skipping string literals."""
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == '\\':
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == '[':
            depth += 1
        elif ch == ']':
            depth -= 1
            if depth == 0:
                return idx
    return None


def extract(body_text: str) -> Any:
    """Recover the JSON document from a response body.

    The whole body is parsed first. When that fails (the array-based analyzer
    may interleave log lines with its output) the first balanced JSON array in
    the body is parsed instead.
    """
    if not isinstance(body_text, str) or not body_text.strip():
        raise MalformedPayload("Empty response body from invoice analyzer", body_text)
    try:
        return json.loads(body_text)
    except json.JSONDecodeError:
        pass
    except (ValueError, RecursionError) as e:
        # Syntactically valid but beyond what the parser accepts (nesting depth, digit limits)
        raise MalformedPayload(f"Invoice analyzer response could not be decoded: {e}", body_text) from e

    start = body_text.find('[')
    if start == -1:
        raise MalformedPayload("Failed to extract valid JSON from invoice analyzer response.", body_text)
    end = _find_closing_bracket(body_text, start)
    if end is None:
        raise MalformedPayload("Unbalanced JSON array in invoice analyzer response.", body_text)

    logger.warning(
        "Recovered JSON array from noisy response body (%d leading, %d trailing characters discarded)",
        start, len(body_text) - end - 1,
    )
    try:
        return json.loads(body_text[start:end + 1])
    except (ValueError, RecursionError) as e:
        raise MalformedPayload(f"Failed to extract valid JSON from invoice analyzer response: {e}", body_text) from e
