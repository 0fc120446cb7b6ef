# Storage module
"""Persistence services for session state."""

from simtrader.storage.storage import IStorageService, JsonFileStorage
from simtrader.storage.serializer import SCHEMA_VERSION, SessionSerializer, SnapshotError
from simtrader.storage.autosave import SESSION_STORAGE_KEY, SessionAutosaver, load_session

__all__ = [
    "IStorageService",
    "JsonFileStorage",
    "SCHEMA_VERSION",
    "SessionSerializer",
    "SnapshotError",
    "SESSION_STORAGE_KEY",
    "SessionAutosaver",
    "load_session",
]
