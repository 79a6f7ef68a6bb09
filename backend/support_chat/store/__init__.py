"""Record store - pluggable persistence for sessions, messages and agents."""

from .base import RecordStore
from .factory import open_store
from .memory import InMemoryRecordStore
from .mongo import MongoRecordStore

__all__ = ["RecordStore", "InMemoryRecordStore", "MongoRecordStore", "open_store"]
