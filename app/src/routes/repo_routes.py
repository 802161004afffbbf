"""
Repository translation settings.

All endpoints require a valid ``X-Admin-Key`` header.

Endpoints:
    GET    /api/repos/{repository_id}/config — read settings
    PUT    /api/repos/{repository_id}/config — update settings

Turning ``auto_translate`` on registers a push webhook on the repository;
turning it off removes it again.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from commons import limiter
from configs.config import get_config
from security import (
    get_webhook_secret,
    require_admin_key,
    safe_error_response,
    validate_languages,
    validate_repository_id,
    webhook_callback_url,
)
from src.database.repository_store import default_config
from src.github.client import GitHubAPIError

logger = logging.getLogger(__name__)

cfg = get_config()

router = APIRouter(prefix="/api", tags=["repositories"])


class UpdateConfigRequest(BaseModel):
    base_language: Optional[str] = Field(default=None, max_length=10)
    target_languages: Optional[List[str]] = Field(default=None, max_length=20)
    include_paths: Optional[List[str]] = Field(default=None, max_length=50)
    exclude_paths: Optional[List[str]] = Field(default=None, max_length=50)
    auto_translate: Optional[bool] = None
    ai_model: Optional[str] = Field(default=None, max_length=100)


def _config_response(repository_id: str, config) -> dict:
    return {"repository_id": repository_id, **config.to_document()}


# ── Read ─────────────────────────────────────────────────────────────────


@router.get("/repos/{repository_id}/config")
@limiter.limit("30/minute")
def get_repo_config(
    request: Request, repository_id: str, _=Depends(require_admin_key)
) -> dict:
    validate_repository_id(repository_id)
    services = request.app.state.services
    try:
        if not services.repositories.get_repository(repository_id):
            raise HTTPException(status_code=404, detail="Repository not found")
        config = services.repositories.read_config(repository_id) or default_config()
        return _config_response(repository_id, config)
    except HTTPException:
        raise
    except Exception as exc:
        safe_error_response(exc, context="get_repo_config")


# ── Update ───────────────────────────────────────────────────────────────


@router.put("/repos/{repository_id}/config")
@limiter.limit("30/minute")
def update_repo_config(
    request: Request,
    repository_id: str,
    body: UpdateConfigRequest,
    _=Depends(require_admin_key),
) -> dict:
    """Merge the given fields into the settings and sync the push webhook."""
    validate_repository_id(repository_id)
    services = request.app.state.services

    updates: Dict[str, Any] = body.model_dump(exclude_none=True)
    if "base_language" in updates:
        updates["base_language"] = validate_languages([updates["base_language"]])[0]
    if "target_languages" in updates:
        updates["target_languages"] = validate_languages(updates["target_languages"])
    if "ai_model" in updates:
        updates["ai_model"] = updates["ai_model"].strip() or None

    try:
        repository = services.repositories.get_repository(repository_id)
        if not repository:
            raise HTTPException(status_code=404, detail="Repository not found")

        current = services.repositories.read_config(repository_id) or default_config()
        wants_auto = updates.get("auto_translate", current.auto_translate)

        if wants_auto and not current.webhook_id:
            updates["webhook_id"] = _register_webhook(services, repository)
        elif not wants_auto and current.webhook_id:
            _remove_webhook(services, repository, current.webhook_id)
            updates["webhook_id"] = None

        config = services.repositories.upsert_config(repository_id, updates)
        return _config_response(repository_id, config)
    except HTTPException:
        raise
    except Exception as exc:
        safe_error_response(exc, context="update_repo_config")


# ── Webhook helpers ──────────────────────────────────────────────────────


def _register_webhook(services, repository: Dict[str, Any]) -> int:
    client = services.client_factory(repository)
    try:
        return client.create_webhook(
            repository["owner"],
            repository["name"],
            webhook_callback_url(),
            get_webhook_secret(),
            list(cfg.WEBHOOK_EVENTS),
        )
    except GitHubAPIError as exc:
        if exc.status_code == 422:
            logger.warning(
                "Webhook rejected for %s: %s", repository.get("full_name"), exc.message
            )
            raise HTTPException(
                status_code=422,
                detail="GitHub rejected the webhook (it may already exist)",
            )
        raise


def _remove_webhook(services, repository: Dict[str, Any], webhook_id: int) -> None:
    try:
        client = services.client_factory(repository)
        client.delete_webhook(repository["owner"], repository["name"], webhook_id)
    except Exception as exc:
        logger.warning(
            "Failed to delete webhook %s for %s: %s",
            webhook_id, repository.get("full_name"), exc,
        )
