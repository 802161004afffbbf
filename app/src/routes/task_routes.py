"""
Translation task API routes.

All endpoints require a valid ``X-Admin-Key`` header.

Endpoints:
    POST   /api/tasks                   — submit an on-demand translation
    GET    /api/tasks/{task_id}         — poll task progress
    GET    /api/tasks?repository_id=... — list a repository's tasks
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from commons import limiter
from security import (
    require_admin_key,
    safe_error_response,
    validate_languages,
    validate_repository_id,
    validate_task_id,
)
from src.database.repository_store import default_config
from src.translation.models import JobKind, JobStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tasks"])


class CreateTaskRequest(BaseModel):
    repository_id: str = Field(
        ..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_\-]+$"
    )
    target_languages: Optional[List[str]] = Field(default=None, max_length=20)
    type: JobKind = JobKind.FULL
    changed_files: Optional[List[str]] = Field(default=None, max_length=1000)


# ── Submit ───────────────────────────────────────────────────────────────


@router.post("/tasks")
@limiter.limit("10/minute")
def create_task_endpoint(
    request: Request,
    body: CreateTaskRequest,
    _=Depends(require_admin_key),
) -> dict:
    """Queue a FULL (or explicit INCREMENTAL) translation for a repository."""
    services = request.app.state.services

    if body.type is JobKind.INCREMENTAL and not body.changed_files:
        raise HTTPException(
            status_code=400, detail="INCREMENTAL tasks require changed_files"
        )
    if body.type is JobKind.FULL and body.changed_files:
        raise HTTPException(
            status_code=400, detail="FULL tasks cannot list changed_files"
        )

    try:
        repository = services.repositories.get_repository(body.repository_id)
        if not repository:
            raise HTTPException(status_code=404, detail="Repository not found")

        languages = body.target_languages
        if languages is None:
            config = (
                services.repositories.read_config(body.repository_id)
                or default_config()
            )
            languages = config.target_languages
        languages = validate_languages(languages)
        if not languages:
            raise HTTPException(
                status_code=400, detail="At least one target language is required"
            )

        task_id = services.submit(
            repository.get("user_id", ""),
            body.repository_id,
            languages,
            kind=body.type,
            changed_files=body.changed_files,
        )
        logger.info(
            "Task %s submitted for %s (%s, %s)",
            task_id, body.repository_id, body.type.value, ", ".join(languages),
        )
        return {"task_id": task_id, "status": JobStatus.PENDING.value}

    except HTTPException:
        raise
    except Exception as exc:
        safe_error_response(exc, context="create_task")


# ── Progress ─────────────────────────────────────────────────────────────


@router.get("/tasks/{task_id}")
@limiter.limit("120/minute")
def get_task_endpoint(
    request: Request, task_id: str, _=Depends(require_admin_key)
) -> dict:
    """Return current progress of a task and its per-file results."""
    validate_task_id(task_id)
    services = request.app.state.services
    try:
        task = services.tasks.get_task(task_id)
        if not task:
            raise HTTPException(status_code=404, detail="Task not found")

        return {
            "task_id": task_id,
            "repository_id": task.get("repository_id"),
            "type": task.get("type"),
            "status": task.get("status"),
            "progress": task.get("progress", 0),
            "total_files": task.get("total_files", 0),
            "completed_files": task.get("completed_files", 0),
            "failed_files": task.get("failed_files", 0),
            "pull_request_url": task.get("pull_request_url"),
            "completed_at": task.get("completed_at"),
            "error": task.get("error"),
            "files": services.tasks.list_task_files(task_id),
        }
    except HTTPException:
        raise
    except Exception as exc:
        safe_error_response(exc, context="get_task")


@router.get("/tasks")
@limiter.limit("30/minute")
def list_tasks_endpoint(
    request: Request,
    repository_id: str = Query(...),
    status: Optional[JobStatus] = Query(default=None),
    _=Depends(require_admin_key),
) -> dict:
    """List a repository's tasks, newest first."""
    validate_repository_id(repository_id)
    services = request.app.state.services
    try:
        tasks = services.tasks.list_tasks(
            repository_id, status=status.value if status else None
        )
        return {"tasks": tasks, "count": len(tasks)}
    except Exception as exc:
        safe_error_response(exc, context="list_tasks")
