"""
shared/models/types.py
Custom column types.
"""

import json
from typing import Any, List, Optional

from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator


def decode_list(value: Optional[str]) -> List[str]:
    """
    Decode a stored list column.
    Accepts JSON arrays and the older comma-separated text format.
    """
    if value is None:
        return []
    text = value.strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        return [part.strip() for part in text.split(",") if part.strip()]
    if isinstance(parsed, list):
        return [str(item) for item in parsed]
    if parsed is None:
        return []
    return [str(parsed)]


def encode_list(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        # Already serialized (or legacy text); normalize through decode
        value = decode_list(value)
    return json.dumps([str(item) for item in value])


class JSONEncodedList(TypeDecorator):
    """
    List of strings stored as JSON text.
    Encodes on write and decodes on read so existing text columns keep working.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return encode_list(value)

    def process_result_value(self, value, dialect):
        return decode_list(value)
