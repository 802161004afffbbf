"""
Data models for the translation pipeline.

``TranslationJob`` is the immutable unit of work handed to the queue;
``JobProgress`` is the mutable execution record the engine updates while
the job runs and pollers read.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class JobKind(str, Enum):
    """How a job resolves its file set."""

    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"


class JobStatus(str, Enum):
    """Possible states of a translation job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class FileStatus(str, Enum):
    """Outcome of a single file translation unit."""

    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when a progress update would break monotonicity."""


# ── Job ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TranslationJob:
    """A translation request owned by the queue until dispatched."""

    task_id: str
    user_id: str
    repository_id: str
    kind: JobKind
    target_languages: Tuple[str, ...]
    changed_files: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        languages = tuple(dict.fromkeys(self.target_languages))
        if not languages:
            raise ValueError("target_languages must not be empty")
        object.__setattr__(self, "target_languages", languages)
        object.__setattr__(self, "kind", JobKind(self.kind))

        if self.kind is JobKind.INCREMENTAL:
            if not self.changed_files:
                raise ValueError("INCREMENTAL jobs require changed_files")
            object.__setattr__(
                self, "changed_files", tuple(dict.fromkeys(self.changed_files))
            )
        elif self.changed_files is not None:
            raise ValueError("FULL jobs resolve their files at execution time")

    @classmethod
    def full(
        cls,
        task_id: str,
        user_id: str,
        repository_id: str,
        target_languages: Sequence[str],
    ) -> "TranslationJob":
        return cls(task_id, user_id, repository_id, JobKind.FULL,
                   tuple(target_languages))

    @classmethod
    def incremental(
        cls,
        task_id: str,
        user_id: str,
        repository_id: str,
        target_languages: Sequence[str],
        changed_files: Sequence[str],
    ) -> "TranslationJob":
        return cls(task_id, user_id, repository_id, JobKind.INCREMENTAL,
                   tuple(target_languages), tuple(changed_files))


# ── Progress ─────────────────────────────────────────────────────────────


@dataclass
class JobProgress:
    """
    Mutable execution state for a job.

    ``completed_files + failed_files`` never exceeds ``total_files`` and
    status only ever moves forward through the state machine.
    """

    task_id: str
    status: JobStatus = JobStatus.PENDING
    total_files: int = 0
    completed_files: int = 0
    failed_files: int = 0
    pull_request_url: Optional[str] = None
    pull_request_number: Optional[int] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def percentage(self) -> int:
        if self.total_files == 0:
            return 100 if self.is_terminal else 0
        done = self.completed_files + self.failed_files
        return round(100 * done / self.total_files)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: JobStatus) -> None:
        status = JobStatus(status)
        if status is self.status:
            return
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Task {self.task_id}: cannot move from "
                f"{self.status.value} to {status.value}"
            )
        self.status = status

    def set_total(self, total: int) -> None:
        if total < self.completed_files + self.failed_files:
            raise InvalidTransitionError("total below files already counted")
        self.total_files = total

    def record_success(self) -> None:
        self._check_capacity()
        self.completed_files += 1

    def record_failure(self) -> None:
        self._check_capacity()
        self.failed_files += 1

    def _check_capacity(self) -> None:
        if self.completed_files + self.failed_files >= self.total_files:
            raise InvalidTransitionError(
                f"Task {self.task_id}: more results than units"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "progress": self.percentage,
            "total_files": self.total_files,
            "completed_files": self.completed_files,
            "failed_files": self.failed_files,
            "pull_request_url": self.pull_request_url,
            "pull_request_number": self.pull_request_number,
            "completed_at": self.completed_at,
            "error": self.error,
        }


# ── Units ────────────────────────────────────────────────────────────────


@dataclass(frozen=True, order=True)
class FileTranslationUnit:
    """One source file rendered into one target language."""

    source_path: str
    target_language: str
    target_path: str


@dataclass(frozen=True)
class UnitResult:
    """Tagged outcome of a unit: success, or failure with a reason."""

    unit: FileTranslationUnit
    ok: bool
    error: Optional[str] = None
    model: Optional[str] = None

    @classmethod
    def success(cls, unit: FileTranslationUnit,
                model: Optional[str] = None) -> "UnitResult":
        return cls(unit=unit, ok=True, model=model)

    @classmethod
    def failure(cls, unit: FileTranslationUnit, error: str) -> "UnitResult":
        return cls(unit=unit, ok=False, error=error)

    @property
    def status(self) -> FileStatus:
        return FileStatus.COMPLETED if self.ok else FileStatus.FAILED


# ── Repository configuration ─────────────────────────────────────────────


@dataclass(frozen=True)
class RepositoryConfig:
    """Per-repository translation settings."""

    base_language: str
    target_languages: List[str] = field(default_factory=list)
    include_paths: List[str] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)
    auto_translate: bool = False
    ai_model: Optional[str] = None
    webhook_id: Optional[int] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "RepositoryConfig":
        return cls(
            base_language=doc["base_language"],
            target_languages=list(doc.get("target_languages") or []),
            include_paths=list(doc.get("include_paths") or []),
            exclude_paths=list(doc.get("exclude_paths") or []),
            auto_translate=bool(doc.get("auto_translate", False)),
            ai_model=doc.get("ai_model") or None,
            webhook_id=doc.get("webhook_id"),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "base_language": self.base_language,
            "target_languages": list(self.target_languages),
            "include_paths": list(self.include_paths),
            "exclude_paths": list(self.exclude_paths),
            "auto_translate": self.auto_translate,
            "ai_model": self.ai_model,
            "webhook_id": self.webhook_id,
        }
