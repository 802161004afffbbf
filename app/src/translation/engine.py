"""
Translation engine: executes one ``TranslationJob`` end to end.

Steps:
    1. Resolve the repository, its configuration and a GitHub client.
    2. Resolve the file set (full tree walk, or the job's changed files).
    3. Expand files x target languages into ``FileTranslationUnit``s.
    4. For each unit: read the source at the default branch tip, translate
       it (or mirror it for the base language) and write it to the job's
       holding branch.
    5. Open a single pull request for everything that succeeded.

Unit failures are tagged ``UnitResult`` values and never abort the job;
only ``FatalJobError`` (no credentials, no holding branch) does.
"""

import itertools
import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from commons import utcnow
from configs.config import get_config
from src.database.repository_store import RepositoryStore, default_config
from src.database.task_repository import TaskRepository
from src.github.client import GitHubClient, RepoFile, client_for_repository
from src.translation.filename_translator import get_translated_path
from src.translation.models import (
    FileTranslationUnit,
    JobKind,
    JobProgress,
    JobStatus,
    RepositoryConfig,
    TranslationJob,
    UnitResult,
)
from src.translation.path_filter import filter_paths
from src.translation.translator import FallbackTranslator, build_model_chain

logger = logging.getLogger(__name__)

cfg = get_config()


class FatalJobError(Exception):
    """An error that ends the whole job as FAILED with no pull request."""


def build_units(
    files: Iterable[str],
    target_languages: Sequence[str],
    base_language: str,
) -> List[FileTranslationUnit]:
    """Cross product of files and languages, sorted by path then language."""
    units = {
        FileTranslationUnit(
            source_path=path,
            target_language=language,
            target_path=get_translated_path(path, language, base_language),
        )
        for path in files
        for language in target_languages
    }
    return sorted(units)


def holding_branch_name(task_id: str) -> str:
    return f"{cfg.HOLDING_BRANCH_PREFIX}{task_id}"


def language_display_name(code: str) -> str:
    return cfg.LANGUAGE_NAMES.get(code) or cfg.SUPPORTED_LANGUAGES.get(code) or code


def build_pull_request_body(results: Sequence[UnitResult]) -> str:
    """Markdown summary of per-language counts plus any failed units."""
    succeeded = Counter(r.unit.target_language for r in results if r.ok)
    failed = [r for r in results if not r.ok]

    lines = [
        "This pull request was generated automatically by the docs translator.",
        "",
        "| Language | Files |",
        "|---|---|",
    ]
    for language in sorted(succeeded):
        lines.append(
            f"| {language_display_name(language)} (`{language}`) "
            f"| {succeeded[language]} |"
        )
    if failed:
        lines += ["", f"**{len(failed)} file(s) could not be translated:**", ""]
        for result in failed:
            lines.append(
                f"- `{result.unit.source_path}` → `{result.unit.target_language}`: "
                f"{result.error}"
            )
    return "\n".join(lines)


# ── Per-job state ────────────────────────────────────────────────────────


@dataclass
class _JobRun:
    """Everything one job execution shares between its units."""

    job: TranslationJob
    repository: Dict[str, Any]
    config: RepositoryConfig
    client: GitHubClient
    models: List[str]
    progress: JobProgress
    results: List[UnitResult] = field(default_factory=list)
    branch_created: bool = False
    fatal: Optional[str] = None
    source_cache: Dict[str, Optional[RepoFile]] = field(default_factory=dict)
    branch_lock: threading.Lock = field(default_factory=threading.Lock)
    cache_lock: threading.Lock = field(default_factory=threading.Lock)
    progress_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def owner(self) -> str:
        return self.repository["owner"]

    @property
    def name(self) -> str:
        return self.repository["name"]

    @property
    def default_branch(self) -> str:
        return self.repository.get("default_branch") or "main"

    @property
    def branch(self) -> str:
        return holding_branch_name(self.job.task_id)


class TranslationEngine:
    """Processes translation jobs; registered as the job queue's processor."""

    def __init__(
        self,
        tasks: TaskRepository,
        repositories: RepositoryStore,
        translator: FallbackTranslator,
        client_factory: Callable[[Dict[str, Any]], GitHubClient] = client_for_repository,
        max_workers: Optional[int] = None,
    ) -> None:
        self._tasks = tasks
        self._repositories = repositories
        self._translator = translator
        self._client_factory = client_factory
        self._max_workers = max(1, max_workers or cfg.MAX_CONCURRENT_UNITS)

    # ── Entry point ──────────────────────────────────────────────────────

    def process(self, job: TranslationJob) -> JobProgress:
        progress = JobProgress(task_id=job.task_id)
        try:
            run = self._prepare(job, progress)
            files = self._resolve_files(run)
        except FatalJobError as exc:
            return self._fail(progress, str(exc))

        units = build_units(files, job.target_languages, run.config.base_language)
        progress.set_total(len(units))
        if not units:
            logger.info("Task %s: nothing to translate", job.task_id)
            return self._finish(progress, JobStatus.COMPLETED)

        progress.transition(JobStatus.RUNNING)
        self._tasks.update_progress(job.task_id, progress)
        logger.info(
            "Task %s running: %d files x %d languages = %d units",
            job.task_id, len(files), len(job.target_languages), len(units),
        )

        runnable = self._reject_collisions(run, units)
        try:
            self._run_units(run, runnable)
        except FatalJobError as exc:
            self._count_unattempted(run)
            return self._fail(progress, str(exc))

        if progress.completed_files == 0:
            return self._fail(
                progress, f"All {progress.failed_files} file translations failed"
            )

        self._open_pull_request(run)
        return self._finish(progress, JobStatus.COMPLETED)

    # ── Setup ────────────────────────────────────────────────────────────

    def _prepare(self, job: TranslationJob, progress: JobProgress) -> _JobRun:
        repository = self._repositories.get_repository(job.repository_id)
        if not repository:
            raise FatalJobError(f"Repository {job.repository_id} not found")

        config = self._repositories.read_config(job.repository_id) or default_config()
        try:
            client = self._client_factory(repository)
        except Exception as exc:
            raise FatalJobError(f"GitHub authentication failed: {exc}") from exc

        return _JobRun(
            job=job,
            repository=repository,
            config=config,
            client=client,
            models=build_model_chain(config.ai_model),
            progress=progress,
        )

    def _resolve_files(self, run: _JobRun) -> List[str]:
        include, exclude = run.config.include_paths, run.config.exclude_paths
        if run.job.kind is JobKind.INCREMENTAL:
            return filter_paths(run.job.changed_files, include, exclude)

        try:
            tree = run.client.walk_markdown_files(
                run.owner, run.name, ref=run.default_branch,
                skip_directories=cfg.SKIP_DIRECTORIES,
            )
        except Exception as exc:
            raise FatalJobError(f"Failed to list repository files: {exc}") from exc
        return filter_paths(tree, include, exclude)

    # ── Unit execution ───────────────────────────────────────────────────

    def _reject_collisions(
        self, run: _JobRun, units: List[FileTranslationUnit]
    ) -> List[FileTranslationUnit]:
        """
        Keep the first unit (in sort order) claiming each target path.

        Distinct sources can transliterate to the same name, e.g.
        ``介绍.md`` and ``简介.md`` are both ``Introduction.md``. The later
        claimants are recorded as failed instead of overwriting the first.
        """
        owners: Dict[str, str] = {}
        runnable = []
        for unit in units:
            owner = owners.setdefault(unit.target_path, unit.source_path)
            if owner == unit.source_path:
                runnable.append(unit)
                continue
            self._record(run, self._unit_failed(
                run, unit, f"target path {unit.target_path} collides with {owner}"
            ))
        return runnable

    def _run_units(self, run: _JobRun, units: List[FileTranslationUnit]) -> None:
        # Target paths are unique after _reject_collisions, so grouping by
        # source file leaves every target path with a single writer
        groups = [
            list(group)
            for _, group in itertools.groupby(units, key=lambda u: u.source_path)
        ]
        if self._max_workers == 1 or len(groups) == 1:
            for group in groups:
                self._run_group(run, group)
            return

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="translate"
        ) as executor:
            futures = [executor.submit(self._run_group, run, g) for g in groups]
            errors = [f.exception() for f in as_completed(futures)]
        fatal = next((e for e in errors if isinstance(e, FatalJobError)), None)
        if fatal is not None:
            raise fatal
        unexpected = next((e for e in errors if e is not None), None)
        if unexpected is not None:
            raise unexpected

    def _run_group(self, run: _JobRun, units: List[FileTranslationUnit]) -> None:
        for unit in units:
            if run.fatal:
                raise FatalJobError(run.fatal)
            self._record(run, self._run_unit(run, unit))

    def _run_unit(self, run: _JobRun, unit: FileTranslationUnit) -> UnitResult:
        try:
            source = self._read_source(run, unit.source_path)
            if source is None:
                return self._unit_failed(run, unit, "source file not found")

            if unit.target_language == run.config.base_language:
                content, model = source.content, None
            else:
                content, model = self._translator.translate(
                    source.content,
                    run.config.base_language,
                    unit.target_language,
                    run.models,
                )

            self._ensure_branch(run)
            sha = run.client.get_file_sha(
                run.owner, run.name, unit.target_path, ref=run.branch
            )
            run.client.create_or_update_file(
                run.owner,
                run.name,
                unit.target_path,
                content,
                message=(
                    f"{cfg.SELF_COMMIT_MARKER} Translate {unit.source_path} "
                    f"to {unit.target_language}"
                ),
                branch=run.branch,
                sha=sha,
            )
            logger.debug(
                "Task %s: wrote %s (%s)",
                run.job.task_id, unit.target_path, model or "mirrored",
            )
            return UnitResult.success(unit, model)
        except FatalJobError:
            raise
        except Exception as exc:
            return self._unit_failed(run, unit, str(exc))

    @staticmethod
    def _unit_failed(
        run: _JobRun, unit: FileTranslationUnit, error: str
    ) -> UnitResult:
        logger.warning(
            "Task %s: %s -> %s failed: %s",
            run.job.task_id, unit.source_path, unit.target_language, error,
        )
        return UnitResult.failure(unit, error)

    def _read_source(self, run: _JobRun, path: str) -> Optional[RepoFile]:
        with run.cache_lock:
            if path in run.source_cache:
                return run.source_cache[path]
        source = run.client.get_file(run.owner, run.name, path, ref=run.default_branch)
        with run.cache_lock:
            run.source_cache[path] = source
        return source

    def _ensure_branch(self, run: _JobRun) -> None:
        with run.branch_lock:
            if run.branch_created:
                return
            if run.fatal:
                raise FatalJobError(run.fatal)
            try:
                run.client.create_branch(
                    run.owner, run.name, run.branch, run.default_branch
                )
            except Exception as exc:
                run.fatal = f"Failed to create branch {run.branch}: {exc}"
                raise FatalJobError(run.fatal) from exc
            run.branch_created = True
            logger.info("Task %s: created branch %s", run.job.task_id, run.branch)

    def _record(self, run: _JobRun, result: UnitResult) -> None:
        with run.progress_lock:
            run.results.append(result)
            if result.ok:
                run.progress.record_success()
            else:
                run.progress.record_failure()
            self._tasks.record_file_result(run.job.task_id, result)
            self._tasks.update_progress(run.job.task_id, run.progress)

    @staticmethod
    def _count_unattempted(run: _JobRun) -> None:
        """Units never reached after a fatal error count as failed."""
        progress = run.progress
        with run.progress_lock:
            remaining = progress.total_files - (
                progress.completed_files + progress.failed_files
            )
            for _ in range(remaining):
                progress.record_failure()

    # ── Completion ───────────────────────────────────────────────────────

    def _open_pull_request(self, run: _JobRun) -> None:
        succeeded = [r for r in run.results if r.ok]
        languages = sorted({r.unit.target_language for r in succeeded})
        title = (
            f"{cfg.SELF_COMMIT_MARKER} Translate {len(succeeded)} file(s) "
            f"to {', '.join(languages)}"
        )
        try:
            pull = run.client.create_pull_request(
                run.owner,
                run.name,
                title=title,
                body=build_pull_request_body(sorted(run.results, key=lambda r: r.unit)),
                head=run.branch,
                base=run.default_branch,
            )
        except Exception as exc:
            run.progress.error = f"Failed to open pull request: {exc}"
            logger.error(
                "Task %s: %s", run.job.task_id, run.progress.error, exc_info=True
            )
            return
        run.progress.pull_request_url = pull.get("html_url")
        run.progress.pull_request_number = pull.get("number")
        logger.info(
            "Task %s: opened pull request %s",
            run.job.task_id, run.progress.pull_request_url,
        )

    def _finish(self, progress: JobProgress, status: JobStatus) -> JobProgress:
        progress.transition(status)
        progress.completed_at = utcnow()
        self._tasks.update_progress(progress.task_id, progress)
        logger.info(
            "Task %s %s: %d completed, %d failed of %d",
            progress.task_id, status.value, progress.completed_files,
            progress.failed_files, progress.total_files,
        )
        return progress

    def _fail(self, progress: JobProgress, error: str) -> JobProgress:
        logger.error("Task %s failed: %s", progress.task_id, error)
        progress.error = error
        return self._finish(progress, JobStatus.FAILED)
