"""
Process-scoped service container.

``build_services()`` wires the stores, deduplicator, change detector, job
queue and engine together once at process start. The container lives on
``app.state.services``; tests build their own with in-memory fakes.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional, Sequence

from configs.config import get_config
from src.database.repository_store import RepositoryStore
from src.database.task_repository import TaskRepository
from src.github.client import GitHubClient, client_for_repository
from src.jobs.job_queue import JobQueue
from src.translation.engine import TranslationEngine
from src.translation.models import JobKind, TranslationJob
from src.translation.translator import FallbackTranslator, OpenRouterTranslator
from src.webhooks.change_detector import ChangeDetector, ChangeSet
from src.webhooks.deduplicator import DeliveryDeduplicator

logger = logging.getLogger(__name__)

cfg = get_config()


@dataclass
class TranslationService:
    tasks: TaskRepository
    repositories: RepositoryStore
    deduplicator: DeliveryDeduplicator
    detector: ChangeDetector
    queue: JobQueue
    engine: TranslationEngine
    client_factory: Callable[[Dict[str, Any]], GitHubClient]

    # ── Submission ───────────────────────────────────────────────────────

    def submit_change_set(self, change_set: ChangeSet) -> str:
        """Create an INCREMENTAL task for a detected push and queue it."""
        task_id = self.tasks.create_task(
            change_set.user_id,
            change_set.repository_id,
            change_set.target_languages,
            JobKind.INCREMENTAL,
            changed_files=change_set.files,
        )
        self.queue.add(TranslationJob.incremental(
            task_id,
            change_set.user_id,
            change_set.repository_id,
            change_set.target_languages,
            change_set.files,
        ))
        return task_id

    def submit(
        self,
        user_id: str,
        repository_id: str,
        target_languages: Sequence[str],
        kind: JobKind = JobKind.FULL,
        changed_files: Optional[Sequence[str]] = None,
    ) -> str:
        """Create an on-demand task and queue it."""
        # Built before the task row so invalid jobs are never persisted
        job = TranslationJob(
            task_id="",
            user_id=user_id,
            repository_id=repository_id,
            kind=kind,
            target_languages=tuple(target_languages),
            changed_files=tuple(changed_files) if changed_files else None,
        )
        task_id = self.tasks.create_task(
            user_id, repository_id, job.target_languages, job.kind,
            changed_files=job.changed_files,
        )
        self.queue.add(replace(job, task_id=task_id))
        return task_id

    # ── Lifecycle ────────────────────────────────────────────────────────

    def startup(self) -> None:
        if cfg.SWEEP_ORPHANED_TASKS_ON_STARTUP:
            try:
                swept = self.tasks.fail_orphaned_tasks()
                logger.info("Startup sweep: %d orphaned tasks failed", swept)
            except Exception as exc:
                logger.error("Orphaned task sweep failed: %s", exc, exc_info=True)
        self.queue.start()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        self.queue.shutdown(wait=True, timeout=timeout)


def build_services(
    tasks: Optional[TaskRepository] = None,
    repositories: Optional[RepositoryStore] = None,
    translator: Optional[FallbackTranslator] = None,
    client_factory: Optional[Callable[[Dict[str, Any]], GitHubClient]] = None,
    deduplicator: Optional[DeliveryDeduplicator] = None,
    max_workers: Optional[int] = None,
) -> TranslationService:
    """Wire the pipeline; any collaborator may be injected."""
    if tasks is None:
        tasks = TaskRepository()
    if repositories is None:
        repositories = RepositoryStore()
    if translator is None:
        translator = FallbackTranslator(OpenRouterTranslator())
    if client_factory is None:
        client_factory = client_for_repository
    if deduplicator is None:
        deduplicator = DeliveryDeduplicator()

    engine = TranslationEngine(
        tasks, repositories, translator,
        client_factory=client_factory, max_workers=max_workers,
    )
    detector = ChangeDetector(
        repositories, deduplicator=deduplicator, client_factory=client_factory
    )

    def mark_job_failed(job: TranslationJob, exc: Exception) -> None:
        tasks.mark_failed(job.task_id, f"Unexpected error: {exc}")

    queue = JobQueue(on_error=mark_job_failed)
    service = TranslationService(
        tasks=tasks,
        repositories=repositories,
        deduplicator=deduplicator,
        detector=detector,
        queue=queue,
        engine=engine,
        client_factory=client_factory,
    )
    queue.set_processor(engine.process)
    return service
