import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def parse_json_message(line: str) -> dict[str, Any] | None:
    """Parse a line as JSON message.

    Args:
        line: Raw line from stdin

    Returns:
        Parsed message dict, or None if invalid/should be ignored
    """
    line = line.strip()
    if not line:
        return None  # Ignore empty lines

    try:
        message = json.loads(line)
    except json.JSONDecodeError as e:
        logger.debug(f"Failed to decode JSON line: {e}")
        return None
    if not isinstance(message, dict):
        return None
    return message


def serialize_message(message: dict[str, Any]) -> str:
    """Serialize message to a single-line JSON string.

    Args:
        message: JSON-RPC message to serialize

    Returns:
        JSON string representation with no embedded newlines

    Raises:
        ValueError: If the message cannot be serialized
    """
    try:
        return json.dumps(message, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize message to JSON: {e}") from e
