"""
MongoDB connection management.

Provides a singleton DatabaseManager and a convenience ``get_db()`` helper.
All collection indexes are configured on first connection.
"""

import logging
import threading
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()


class DatabaseManager:
    """Thread-safe singleton that owns the MongoClient."""

    _instance: Optional["DatabaseManager"] = None
    _lock = threading.Lock()
    _client: Optional[MongoClient] = None
    _db: Optional[Database] = None

    def __new__(cls) -> "DatabaseManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if self._client is None:
            self.connect()

    # ── Connection ───────────────────────────────────────────────────────

    def connect(self) -> None:
        """Establish the MongoDB connection and create indexes."""
        try:
            self._client = MongoClient(
                cfg.MONGODB_URL, serverSelectionTimeoutMS=5000, tz_aware=True
            )
            self._client.admin.command("ping")
            self._db = self._client[cfg.DATABASE_NAME]
            logger.info("Connected to MongoDB database %s", cfg.DATABASE_NAME)

            self._ensure_indexes()
            logger.info("Database indexes created / verified")
        except ConnectionFailure as exc:
            logger.error("Failed to connect to MongoDB: %s", exc)
            raise

    def get_db(self) -> Database:
        """Return the database handle, reconnecting if necessary."""
        if self._db is None:
            self.connect()
        return self._db

    def close(self) -> None:
        """Gracefully close the connection."""
        if self._client:
            self._client.close()
            logger.info("MongoDB connection closed")

    # ── Index helpers ────────────────────────────────────────────────────

    def _ensure_indexes(self) -> None:
        """Create all required indexes for the application."""
        db = self._db

        # Task indexes
        db[cfg.TASKS_COLLECTION].create_index("task_id", unique=True)
        db[cfg.TASKS_COLLECTION].create_index(
            [("repository_id", ASCENDING), ("created_at", ASCENDING)]
        )
        db[cfg.TASKS_COLLECTION].create_index("status")

        # Per-file records
        db[cfg.TASK_FILES_COLLECTION].create_index(
            [
                ("task_id", ASCENDING),
                ("source_path", ASCENDING),
                ("target_language", ASCENDING),
            ],
            unique=True,
        )

        # Repository indexes
        db[cfg.REPOSITORIES_COLLECTION].create_index(
            "repository_id", unique=True
        )
        db[cfg.REPOSITORIES_COLLECTION].create_index("github_repo_id")


# ── Convenience function ─────────────────────────────────────────────────


def get_db() -> Database:
    """Shortcut to obtain the database handle."""
    return DatabaseManager().get_db()
