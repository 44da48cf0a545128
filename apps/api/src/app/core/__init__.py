"""
Core module - Configuration, database, security, storage and utilities.
"""

from app.core.config import get_settings, settings
from app.core.database import Base, close_db, get_db, init_db
from app.core.security import decode_token, get_token_scopes
from app.core.storage import S3ObjectStorage, StorageError, get_storage

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Security
    "decode_token",
    "get_token_scopes",
    # Storage
    "S3ObjectStorage",
    "StorageError",
    "get_storage",
]
