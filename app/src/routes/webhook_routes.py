"""
GitHub webhook ingress.

Endpoints:
    POST   /api/webhooks/github — signed push notification

Every delivery gets a fast synchronous answer: queued (with the task ID
and file list), skipped with a reason, or rejected. Translation progress
is only ever observed by polling the task.
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from commons import limiter
from configs.config import get_config
from security import WebhookSecretMissingError, safe_error_response
from src.webhooks.change_detector import (
    InvalidSignatureError,
    MalformedPayloadError,
    PushNotification,
    Skip,
)

logger = logging.getLogger(__name__)

cfg = get_config()

router = APIRouter(tags=["webhooks"])


@router.post(cfg.WEBHOOK_PATH)
@limiter.limit("120/minute")
async def github_webhook(request: Request) -> dict:
    """Receive a push delivery and queue an incremental translation."""
    services = request.app.state.services
    notification = PushNotification(
        event=request.headers.get("X-GitHub-Event"),
        delivery_id=request.headers.get("X-GitHub-Delivery"),
        signature=request.headers.get("X-Hub-Signature-256"),
        body=await request.body(),
    )

    try:
        result = await run_in_threadpool(services.detector.detect, notification)
    except InvalidSignatureError:
        raise HTTPException(status_code=401, detail="Invalid signature")
    except MalformedPayloadError as exc:
        logger.warning(
            "Malformed webhook payload (delivery %s): %s",
            notification.delivery_id, exc,
        )
        raise HTTPException(status_code=400, detail=str(exc))
    except WebhookSecretMissingError as exc:
        logger.error("Webhook rejected: %s", exc)
        raise HTTPException(
            status_code=500, detail="Webhook secret not configured"
        )
    except Exception as exc:
        safe_error_response(exc, context="github_webhook")

    if isinstance(result, Skip):
        return {
            "status": "skipped",
            "reason": result.reason.value,
            "message": result.message,
        }

    try:
        task_id = await run_in_threadpool(services.submit_change_set, result)
    except Exception as exc:
        services.detector.release(notification.delivery_id)
        safe_error_response(exc, context="github_webhook")

    logger.info(
        "Delivery %s queued as task %s (%d files)",
        notification.delivery_id, task_id, len(result.files),
    )
    return {
        "status": "queued",
        "task_id": task_id,
        "files": list(result.files),
        "target_languages": list(result.target_languages),
    }
