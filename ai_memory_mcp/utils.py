"""
Utility functions for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import json
import sqlite3
import logging
from datetime import datetime
from typing import Union, Optional

logger = logging.getLogger("ai-memory.utils")

_adapters_registered = False


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects"""
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def _adapt_datetime(dt: datetime) -> str:
    return dt.isoformat()


def _convert_timestamp(val: Union[str, bytes]) -> Optional[datetime]:
    try:
        decoded = val.decode() if isinstance(val, bytes) else val
        return datetime.fromisoformat(decoded)
    except (ValueError, AttributeError) as e:
        # Malformed timestamps come back as None rather than failing the read
        logger.warning(f"Failed to convert timestamp: {val}, error: {e}")
        return None


def register_sqlite_adapters():
    """Register SQLite adapters for datetime handling (idempotent)"""
    global _adapters_registered
    if _adapters_registered:
        return
    sqlite3.register_adapter(datetime, _adapt_datetime)
    sqlite3.register_converter("TIMESTAMP", _convert_timestamp)
    _adapters_registered = True


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def is_json_scalar(value) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))
