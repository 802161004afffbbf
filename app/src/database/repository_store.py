"""
Repository documents and their translation configuration.

A repository document holds the GitHub coordinates and credentials of an
imported repository plus an embedded ``config`` sub-document.
"""

import logging
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from commons import utcnow
from configs.config import get_config
from src.database.connection import get_db
from src.translation.models import RepositoryConfig

logger = logging.getLogger(__name__)

cfg = get_config()

_CONFIG_FIELDS = (
    "base_language",
    "target_languages",
    "include_paths",
    "exclude_paths",
    "auto_translate",
    "ai_model",
    "webhook_id",
)


def default_config() -> RepositoryConfig:
    return RepositoryConfig(
        base_language=cfg.DEFAULT_BASE_LANGUAGE,
        target_languages=list(cfg.DEFAULT_TARGET_LANGUAGES),
    )


class RepositoryStore:
    """Reads repositories and upserts their configuration."""

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db = db

    @property
    def _collection(self):
        db = self._db if self._db is not None else get_db()
        return db[cfg.REPOSITORIES_COLLECTION]

    def get_repository(self, repository_id: str) -> Optional[Dict[str, Any]]:
        return self._collection.find_one(
            {"repository_id": repository_id}, {"_id": 0}
        )

    def find_by_github_id(self, github_repo_id: int) -> Optional[Dict[str, Any]]:
        return self._collection.find_one(
            {"github_repo_id": github_repo_id}, {"_id": 0}
        )

    def read_config(self, repository_id: str) -> Optional[RepositoryConfig]:
        repository = self.get_repository(repository_id)
        if not repository or not repository.get("config"):
            return None
        return RepositoryConfig.from_document(repository["config"])

    def upsert_config(
        self, repository_id: str, updates: Dict[str, Any]
    ) -> RepositoryConfig:
        """Merge ``updates`` into the stored config, creating it with defaults."""
        current = self.read_config(repository_id) or default_config()
        merged = current.to_document()
        merged.update(
            {k: v for k, v in updates.items() if k in _CONFIG_FIELDS}
        )
        document = self._collection.find_one_and_update(
            {"repository_id": repository_id},
            {"$set": {"config": merged, "updated_at": utcnow()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if document is None:
            raise KeyError(repository_id)
        logger.info("Configuration updated for repository %s", repository_id)
        return RepositoryConfig.from_document(document["config"])

