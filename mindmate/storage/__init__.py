"""Record storage backends for mindmate."""

from .base import RecordStore
from .sqlite import SQLiteRecordStore

__all__ = ["RecordStore", "SQLiteRecordStore"]
