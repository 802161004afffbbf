"""
In-process translation job queue.

Producers (the webhook handler and the task API) call ``add``, which puts
the job on a ``queue.Queue`` channel and returns immediately. A single
daemon consumer thread takes jobs off the channel in FIFO order and hands
each one to the registered processor, so no two jobs ever run at once.

A processor failure is caught per job: it is logged, reported through the
``on_error`` hook and the consumer moves on to the next job.
"""

import logging
import queue
import threading
from typing import Callable, Optional

from src.translation.models import TranslationJob

logger = logging.getLogger(__name__)

Processor = Callable[[TranslationJob], object]
ErrorHook = Callable[[TranslationJob, Exception], None]

_SHUTDOWN = object()


class ProcessorNotSetError(RuntimeError):
    """``add`` was called before a processor was registered."""


class ProcessorAlreadySetError(RuntimeError):
    """A processor may only be registered once."""


class QueueClosedError(RuntimeError):
    """The queue has been shut down and accepts no more jobs."""


class JobQueue:
    """Single-consumer FIFO executor for translation jobs."""

    def __init__(self, on_error: Optional[ErrorHook] = None) -> None:
        self._channel: "queue.Queue" = queue.Queue()
        self._processor: Optional[Processor] = None
        self._on_error = on_error
        self._thread: Optional[threading.Thread] = None
        self._closed = False
        self._lock = threading.Lock()

    # ── Registration ─────────────────────────────────────────────────────

    def set_processor(self, processor: Processor) -> None:
        with self._lock:
            if self._processor is not None:
                raise ProcessorAlreadySetError("Job processor already registered")
            self._processor = processor

    # ── Producer side ────────────────────────────────────────────────────

    def add(self, job: TranslationJob) -> None:
        """Enqueue a job; execution happens later on the consumer thread."""
        with self._lock:
            if self._processor is None:
                raise ProcessorNotSetError("Register a processor before adding jobs")
            if self._closed:
                raise QueueClosedError("Job queue is shut down")
            self._channel.put(job)
            self._start_locked()
        logger.info(
            "Job %s queued (%s, %d pending)",
            job.task_id, job.kind.value, self._channel.qsize(),
        )

    @property
    def pending_count(self) -> int:
        return self._channel.qsize()

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        with self._lock:
            if self._closed:
                raise QueueClosedError("Job queue is shut down")
            self._start_locked()

    def _start_locked(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._consume, name="translation-queue", daemon=True
        )
        self._thread.start()
        logger.debug("Job queue consumer started")

    def join(self) -> None:
        """Block until every queued job has been processed."""
        self._channel.join()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop accepting jobs; the consumer exits after draining the queue."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
            if thread is not None:
                self._channel.put(_SHUTDOWN)

        if thread is not None and wait:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(
                    "Job queue consumer still busy after %.0fs", timeout or 0
                )
        logger.info("Job queue shut down")

    # ── Consumer side ────────────────────────────────────────────────────

    def _consume(self) -> None:
        while True:
            job = self._channel.get()
            try:
                if job is _SHUTDOWN:
                    return
                self._run(job)
            finally:
                self._channel.task_done()

    def _run(self, job: TranslationJob) -> None:
        logger.info("Job %s started", job.task_id)
        try:
            self._processor(job)
            logger.info("Job %s finished", job.task_id)
        except Exception as exc:
            logger.error("Job %s crashed: %s", job.task_id, exc, exc_info=True)
            if self._on_error is not None:
                try:
                    self._on_error(job, exc)
                except Exception as hook_exc:
                    logger.error(
                        "Error hook failed for job %s: %s",
                        job.task_id, hook_exc, exc_info=True,
                    )
