"""
Security utilities for the FastAPI application.
Provides middlewares, validators, webhook signature checks and helpers
for hardening the server.
"""

import hashlib
import hmac
import re
import uuid
import logging
from typing import Iterable, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from fastapi import HTTPException

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()

SIGNATURE_PREFIX = "sha256="

# --------------- Input Validation Patterns ---------------

TASK_ID_PATTERN = re.compile(r"^task_[a-f0-9]{12}$")
REPOSITORY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


# --------------- Errors ---------------


class WebhookSecretMissingError(RuntimeError):
    """The shared webhook secret is not configured."""


# --------------- Middlewares ---------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject standard security headers on every response."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Content-Security-Policy"] = "default-src 'none'"
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = (
                "max-age=63072000; includeSubDomains; preload"
            )
        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a unique X-Request-ID to every request / response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# --------------- Validators ---------------


def validate_task_id(task_id: str) -> str:
    """Validate and return a safe task_id, or raise 400."""
    if not TASK_ID_PATTERN.match(task_id):
        logger.warning("Rejected invalid task_id: %r", task_id)
        raise HTTPException(status_code=400, detail="Invalid task ID format")
    return task_id


def validate_repository_id(repository_id: str) -> str:
    """Validate and return a safe repository_id, or raise 400."""
    if not REPOSITORY_ID_PATTERN.match(repository_id):
        logger.warning("Rejected invalid repository_id: %r", repository_id)
        raise HTTPException(
            status_code=400, detail="Invalid repository ID format"
        )
    return repository_id


def validate_languages(languages: Iterable[str]) -> List[str]:
    """
    Return the languages deduplicated in order, or raise 400 if any
    code is not supported.
    """
    seen: List[str] = []
    for code in languages:
        if code not in cfg.SUPPORTED_LANGUAGES:
            logger.warning("Rejected unsupported language: %r", code)
            raise HTTPException(
                status_code=400,
                detail=(
                    f"Language '{code}' not supported. "
                    f"Supported: {', '.join(sorted(cfg.SUPPORTED_LANGUAGES))}"
                ),
            )
        if code not in seen:
            seen.append(code)
    return seen


# --------------- Webhook Signatures ---------------


def get_webhook_secret() -> str:
    """Return the shared webhook secret; raise if it is not configured."""
    secret = cfg.GITHUB_WEBHOOK_SECRET
    if not secret:
        raise WebhookSecretMissingError("GITHUB_WEBHOOK_SECRET not configured")
    return secret


def sign_payload(payload: bytes, secret: str) -> str:
    """Compute the ``sha256=<hex>`` signature GitHub sends for a payload."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256)
    return SIGNATURE_PREFIX + digest.hexdigest()


def verify_webhook_signature(
    payload: bytes, signature: Optional[str], secret: str
) -> bool:
    """Constant-time check of an ``X-Hub-Signature-256`` header."""
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = sign_payload(payload, secret)
    return hmac.compare_digest(
        signature.encode("utf-8"), expected.encode("utf-8")
    )


def webhook_callback_url() -> str:
    """Public URL GitHub should deliver push events to."""
    return cfg.CALLBACK_BASE_URL.rstrip("/") + cfg.WEBHOOK_PATH


# --------------- Error Helpers ---------------


def safe_error_response(
    exc: Exception, context: str = "operation", status_code: int = 500
):
    """
    Log the real exception but return a sanitized message to the client.
    In development mode, the real error is included for debugging.
    """
    logger.error("Error in %s: %s", context, exc, exc_info=True)
    if cfg.ENVIRONMENT == "development":
        detail = f"[DEV] {context}: {exc}"
    else:
        detail = (
            f"An internal error occurred during {context}. "
            "Please try again later."
        )
    raise HTTPException(status_code=status_code, detail=detail)


# --------------- Admin Auth ---------------


def require_admin_key(request: Request):
    """
    Dependency that checks for a valid X-Admin-Key header.
    Raises 403 if missing or incorrect.
    """
    provided_key = request.headers.get("X-Admin-Key", "")
    if not provided_key or not hmac.compare_digest(
        provided_key.encode("utf-8"), cfg.ADMIN_API_KEY.encode("utf-8")
    ):
        logger.warning(
            "Unauthorized admin access attempt from %s",
            request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=403, detail="Forbidden: invalid admin key"
        )
