"""
Push-webhook ingestion.

``ChangeDetector.detect`` turns a signed GitHub push delivery into either
a ``ChangeSet`` ready for an incremental job or a ``Skip`` explaining why
nothing needs translating. Each check is a short-circuit exit; rejected
input (bad signature, malformed body) raises instead of skipping.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from configs.config import get_config
from security import get_webhook_secret, verify_webhook_signature
from src.database.repository_store import RepositoryStore
from src.translation.path_filter import filter_paths
from src.webhooks.deduplicator import DeliveryDeduplicator

logger = logging.getLogger(__name__)

cfg = get_config()

PUSH_EVENT = "push"
_IGNORED_FILE_STATUSES = frozenset({"removed"})


class InvalidSignatureError(Exception):
    """Missing or wrong ``X-Hub-Signature-256``."""


class MalformedPayloadError(ValueError):
    """The delivery body is not a usable push payload."""


class SkipReason(str, Enum):
    DUPLICATE_DELIVERY = "duplicate delivery"
    EVENT_IGNORED = "event ignored"
    NON_DEFAULT_BRANCH = "non-default branch"
    SELF_COMMIT = "self-commit"
    REPOSITORY_NOT_IMPORTED = "repository not imported"
    NOT_CONFIGURED = "repository not configured"
    AUTO_TRANSLATE_DISABLED = "auto-translate disabled"
    NO_TRANSLATABLE_FILES = "no translatable files"
    NO_TARGET_LANGUAGES = "no target languages"


@dataclass(frozen=True)
class Skip:
    reason: SkipReason
    detail: Optional[str] = None

    @property
    def message(self) -> str:
        if self.detail:
            return f"Skipped: {self.reason.value} ({self.detail})"
        return f"Skipped: {self.reason.value}"


@dataclass(frozen=True)
class ChangeSet:
    repository_id: str
    user_id: str
    files: Tuple[str, ...]
    target_languages: Tuple[str, ...]


@dataclass(frozen=True)
class PushNotification:
    """Raw delivery as received on the webhook endpoint."""

    event: Optional[str]
    delivery_id: Optional[str]
    signature: Optional[str]
    body: bytes


class ChangeDetector:
    """Validate a push delivery and extract the files to translate."""

    def __init__(
        self,
        repositories: RepositoryStore,
        deduplicator: Optional[DeliveryDeduplicator] = None,
        client_factory: Optional[Callable[[Dict[str, Any]], Any]] = None,
        secret_provider: Callable[[], str] = get_webhook_secret,
    ) -> None:
        self._repositories = repositories
        self._deduplicator = (
            DeliveryDeduplicator() if deduplicator is None else deduplicator
        )
        self._client_factory = client_factory
        self._secret_provider = secret_provider

    def detect(self, notification: PushNotification) -> Union[ChangeSet, Skip]:
        secret = self._secret_provider()
        if not verify_webhook_signature(
            notification.body, notification.signature, secret
        ):
            logger.warning(
                "Invalid webhook signature for delivery %s",
                notification.delivery_id,
            )
            raise InvalidSignatureError("Invalid signature")

        if not self._deduplicator.accept(notification.delivery_id):
            return self._skip(SkipReason.DUPLICATE_DELIVERY, notification.delivery_id)

        try:
            return self._detect_accepted(notification)
        except Exception:
            self.release(notification.delivery_id)
            raise

    def release(self, delivery_id: Optional[str]) -> None:
        """Let a redelivery of ``delivery_id`` through after a failure."""
        self._deduplicator.forget(delivery_id)

    def _detect_accepted(
        self, notification: PushNotification
    ) -> Union[ChangeSet, Skip]:
        if notification.event != PUSH_EVENT:
            return self._skip(SkipReason.EVENT_IGNORED, notification.event)

        payload = _parse_payload(notification.body)
        github_repo = payload["repository"]

        repository = self._repositories.find_by_github_id(github_repo["id"])
        if not repository:
            return self._skip(
                SkipReason.REPOSITORY_NOT_IMPORTED, github_repo.get("full_name")
            )

        default_branch = (
            repository.get("default_branch")
            or github_repo.get("default_branch")
            or "main"
        )
        if payload["ref"] != f"refs/heads/{default_branch}":
            return self._skip(SkipReason.NON_DEFAULT_BRANCH, payload["ref"])

        commits = payload.get("commits") or []
        if _has_self_commit(commits, payload.get("head_commit")):
            return self._skip(SkipReason.SELF_COMMIT, repository.get("full_name"))

        repository_id = repository["repository_id"]
        config = self._repositories.read_config(repository_id)
        if config is None:
            return self._skip(SkipReason.NOT_CONFIGURED, repository_id)
        if not config.auto_translate:
            return self._skip(SkipReason.AUTO_TRANSLATE_DISABLED, repository_id)

        changed = self._changed_files(repository, payload, commits)
        files = filter_paths(changed, config.include_paths, config.exclude_paths)
        if not files:
            return self._skip(SkipReason.NO_TRANSLATABLE_FILES, repository_id)

        languages = tuple(dict.fromkeys(config.target_languages))
        if not languages:
            return self._skip(SkipReason.NO_TARGET_LANGUAGES, repository_id)

        logger.info(
            "Push to %s: %d translatable files for %s",
            repository.get("full_name"), len(files), ", ".join(languages),
        )
        return ChangeSet(
            repository_id=repository_id,
            user_id=repository.get("user_id", ""),
            files=tuple(files),
            target_languages=languages,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _skip(reason: SkipReason, detail: Optional[str] = None) -> Skip:
        skip = Skip(reason, detail)
        logger.info("Webhook %s", skip.message.lower())
        return skip

    def _changed_files(
        self,
        repository: Dict[str, Any],
        payload: Dict[str, Any],
        commits: List[Dict[str, Any]],
    ) -> List[str]:
        # GitHub truncates the commit list of large pushes
        if (
            len(commits) >= cfg.PUSH_PAYLOAD_COMMIT_LIMIT
            and self._client_factory is not None
            and payload.get("before")
            and payload.get("after")
        ):
            try:
                client = self._client_factory(repository)
                comparison = client.compare_commits(
                    repository["owner"], repository["name"],
                    payload["before"], payload["after"],
                )
                return [
                    item["filename"]
                    for item in comparison.get("files", [])
                    if item.get("status") not in _IGNORED_FILE_STATUSES
                ]
            except Exception as exc:
                logger.warning(
                    "Compare failed for %s, using payload file lists: %s",
                    repository.get("full_name"), exc,
                )
        return payload_changed_files(commits)


def payload_changed_files(commits: List[Dict[str, Any]]) -> List[str]:
    """Union of added and modified paths across commits, in first-seen order."""
    seen: Dict[str, None] = {}
    for commit in commits:
        for path in (commit.get("added") or []) + (commit.get("modified") or []):
            seen.setdefault(path, None)
    return list(seen)


def _has_self_commit(
    commits: List[Dict[str, Any]], head_commit: Optional[Dict[str, Any]]
) -> bool:
    candidates = list(commits)
    if head_commit:
        candidates.append(head_commit)
    return any(
        (commit.get("message") or "").startswith(cfg.SELF_COMMIT_MARKER)
        for commit in candidates
    )


def _parse_payload(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedPayloadError(f"Body is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedPayloadError("Payload must be a JSON object")
    repository = payload.get("repository")
    if not isinstance(repository, dict) or "id" not in repository:
        raise MalformedPayloadError("Payload is missing repository.id")
    if not isinstance(payload.get("ref"), str):
        raise MalformedPayloadError("Payload is missing ref")
    if not isinstance(payload.get("commits", []), list):
        raise MalformedPayloadError("commits must be a list")
    return payload
