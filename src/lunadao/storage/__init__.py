"""Record stores for proposals and votes."""

from .base import InMemoryRecordStore, Record, RecordStore
from .database import DatabaseConfig, SQLiteRecordStore
from .files import JSONFileRecordStore

__all__ = [
    "Record",
    "RecordStore",
    "InMemoryRecordStore",
    "JSONFileRecordStore",
    "DatabaseConfig",
    "SQLiteRecordStore",
]
