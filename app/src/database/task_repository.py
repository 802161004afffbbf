"""
Repository for translation tasks and their per-file records.

Each method is a thin wrapper around a MongoDB operation, keeping the
database access pattern consistent and testable. Terminal tasks are never
moved back: every status write filters on a non-terminal current status.
"""

import logging
from typing import Dict, List, Optional, Sequence

from pymongo.database import Database

from commons import generate_task_id, utcnow
from configs.config import get_config
from src.database.connection import get_db
from src.translation.models import (
    JobKind,
    JobProgress,
    JobStatus,
    TERMINAL_STATUSES,
    UnitResult,
)

logger = logging.getLogger(__name__)

cfg = get_config()

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]
ORPHANED_TASK_ERROR = "interrupted by service restart"


class TaskRepository:
    """Task store backed by the tasks and task-files collections."""

    def __init__(self, db: Optional[Database] = None) -> None:
        self._db = db

    @property
    def db(self) -> Database:
        return self._db if self._db is not None else get_db()

    @property
    def _tasks(self):
        return self.db[cfg.TASKS_COLLECTION]

    @property
    def _files(self):
        return self.db[cfg.TASK_FILES_COLLECTION]

    # ── Create ───────────────────────────────────────────────────────────

    def create_task(
        self,
        user_id: str,
        repository_id: str,
        target_languages: Sequence[str],
        kind: JobKind,
        changed_files: Optional[Sequence[str]] = None,
    ) -> str:
        """Insert a new PENDING task and return its ID."""
        task_id = generate_task_id()
        now = utcnow()
        self._tasks.insert_one({
            "task_id": task_id,
            "user_id": user_id,
            "repository_id": repository_id,
            "type": JobKind(kind).value,
            "target_languages": list(target_languages),
            "changed_files": list(changed_files) if changed_files else None,
            "status": JobStatus.PENDING.value,
            "total_files": 0,
            "completed_files": 0,
            "failed_files": 0,
            "progress": 0,
            "pull_request_url": None,
            "pull_request_number": None,
            "error": None,
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
        })
        logger.debug("Task %s created for repository %s", task_id, repository_id)
        return task_id

    # ── Read ─────────────────────────────────────────────────────────────

    def get_task(self, task_id: str) -> Optional[Dict]:
        """Retrieve a single task by its ID."""
        task = self._tasks.find_one({"task_id": task_id}, {"_id": 0})
        if not task:
            logger.warning("Task %s not found", task_id)
        return task

    def list_tasks(
        self, repository_id: str, status: Optional[str] = None
    ) -> List[Dict]:
        """Tasks of a repository, newest first."""
        query: Dict = {"repository_id": repository_id}
        if status is not None:
            query["status"] = status
        return list(
            self._tasks.find(query, {"_id": 0}).sort("created_at", -1)
        )

    def list_task_files(self, task_id: str) -> List[Dict]:
        return list(
            self._files.find({"task_id": task_id}, {"_id": 0}).sort(
                [("source_path", 1), ("target_language", 1)]
            )
        )

    # ── Update ───────────────────────────────────────────────────────────

    def update_progress(self, task_id: str, progress: JobProgress) -> bool:
        """Write a full progress snapshot onto a non-terminal task."""
        try:
            snapshot = progress.to_dict()
            snapshot.pop("task_id")
            snapshot["updated_at"] = utcnow()
            result = self._tasks.update_one(
                {"task_id": task_id, "status": {"$nin": _TERMINAL_VALUES}},
                {"$set": snapshot},
            )
            if result.matched_count == 0:
                logger.warning(
                    "Task %s progress update ignored — missing or terminal",
                    task_id,
                )
                return False
            logger.debug(
                "Task %s progress: %s %d/%d (%d failed)",
                task_id, progress.status.value,
                progress.completed_files + progress.failed_files,
                progress.total_files, progress.failed_files,
            )
            return True
        except Exception as exc:
            logger.error(
                "Task %s progress update error: %s", task_id, exc, exc_info=True
            )
            return False

    def record_file_result(self, task_id: str, result: UnitResult) -> bool:
        """Upsert the per-file row for one unit."""
        unit = result.unit
        try:
            self._files.update_one(
                {
                    "task_id": task_id,
                    "source_path": unit.source_path,
                    "target_language": unit.target_language,
                },
                {
                    "$set": {
                        "target_path": unit.target_path,
                        "status": result.status.value,
                        "error": result.error,
                        "model": result.model,
                        "updated_at": utcnow(),
                    }
                },
                upsert=True,
            )
            return True
        except Exception as exc:
            logger.error(
                "Task %s file record error for %s: %s",
                task_id, unit.source_path, exc, exc_info=True,
            )
            return False

    def mark_failed(self, task_id: str, error: str) -> bool:
        """Mark a non-terminal task as failed."""
        now = utcnow()
        result = self._tasks.update_one(
            {"task_id": task_id, "status": {"$nin": _TERMINAL_VALUES}},
            {
                "$set": {
                    "status": JobStatus.FAILED.value,
                    "error": error,
                    "completed_at": now,
                    "updated_at": now,
                }
            },
        )
        if result.matched_count > 0:
            logger.error("Task %s marked as failed: %s", task_id, error)
            return True
        logger.warning("Task %s failure update ignored — missing or terminal", task_id)
        return False

    def fail_orphaned_tasks(self) -> int:
        """Sweep tasks left PENDING/RUNNING by a previous process to FAILED."""
        now = utcnow()
        result = self._tasks.update_many(
            {"status": {"$in": [JobStatus.PENDING.value, JobStatus.RUNNING.value]}},
            {
                "$set": {
                    "status": JobStatus.FAILED.value,
                    "error": ORPHANED_TASK_ERROR,
                    "completed_at": now,
                    "updated_at": now,
                }
            },
        )
        if result.modified_count:
            logger.warning(
                "Marked %d orphaned tasks as failed", result.modified_count
            )
        return result.modified_count
