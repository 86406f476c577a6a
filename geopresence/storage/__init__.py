from .base import KeyedLock, StorageAdapter
from .json_file import JsonFileStorage
from .sql import SqlStorage

__all__ = [
    "KeyedLock",
    "StorageAdapter",
    "JsonFileStorage",
    "SqlStorage",
]
