"""
Job Orchestrator.
Runs each submitted video through acquire → upload → transcribe → extract
→ merge → validate on its own background thread.
"""

import logging
import threading
import uuid
from pathlib import Path
from typing import Optional

from videodocs.core.constants import (
    JobState, ErrorKind,
    DEFAULT_CHUNK_MAX_TOKENS, DEFAULT_MAX_ATTEMPTS, DEFAULT_INITIAL_DELAY_SEC,
    PROGRESS_INITIALIZING, PROGRESS_DOWNLOADING, PROGRESS_UPLOADING,
    PROGRESS_TRANSCRIBING, PROGRESS_EXTRACT_START, PROGRESS_EXTRACT_END,
    PROGRESS_VALIDATING,
)
from videodocs.core.models import Job, ErrorInfo
from videodocs.core.error_codes import JobError, SchemaValidationError
from videodocs.core.progress import ProgressTracker, ProgressCallback, combine_sinks, utc_now
from videodocs.core.retry import retry
from videodocs.core.chunking_text import split_text
from videodocs.core.merge import merge_results
from videodocs.core.schema_validate import validate_content
from videodocs.core.schemas import DEFAULT_OUTPUT_SCHEMA
from videodocs.core.cleanup import cleanup_audio

logger = logging.getLogger(__name__)


class JobHandle:
    """Caller's view of a running job."""

    def __init__(self, tracker: ProgressTracker, cancel_event: threading.Event):
        self._tracker = tracker
        self._cancel_event = cancel_event
        self._thread: Optional[threading.Thread] = None

    @property
    def job_id(self) -> str:
        return self._tracker.job_id

    @property
    def job(self) -> Job:
        return self._tracker.snapshot()

    def done(self) -> bool:
        return self.job.is_terminal

    def wait(self, timeout: float | None = None) -> Job:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.job

    def cancel(self):
        """Best effort: observed at stage boundaries and between polls."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()


class JobOrchestrator:
    """
    Starts jobs and drives their state machine.
    Jobs share nothing but the clients passed in here.
    """

    def __init__(self, acquirer, transcriber, extractor,
                 on_progress: Optional[ProgressCallback] = None,
                 store=None, config: dict | None = None):
        self.acquirer = acquirer
        self.transcriber = transcriber
        self.extractor = extractor
        self.store = store
        self.config = config or {}
        self._on_progress = combine_sinks(store.on_progress if store else None, on_progress)
        self._handles: dict[str, JobHandle] = {}
        self._handles_lock = threading.Lock()

    # ── Config helpers ────────────────────────────────────────────────

    @property
    def chunk_max_tokens(self) -> int:
        return self.config.get('chunk_max_tokens', DEFAULT_CHUNK_MAX_TOKENS)

    @property
    def keep_audio(self) -> bool:
        return self.config.get('keep_audio', False)

    @property
    def max_attempts(self) -> int:
        return self.config.get('retry_max_attempts', DEFAULT_MAX_ATTEMPTS)

    @property
    def initial_delay(self) -> float:
        return self.config.get('retry_initial_delay_sec', DEFAULT_INITIAL_DELAY_SEC)

    # ── Public API ────────────────────────────────────────────────────

    def start(self, source_ref: str, output_schema: dict | None = None) -> JobHandle:
        """Create a job and return at once; the pipeline runs on a daemon thread."""
        schema = DEFAULT_OUTPUT_SCHEMA if output_schema is None else output_schema
        if self.store is not None:
            job = self.store.create_job(source_ref)
        else:
            now = utc_now()
            job = Job(id=str(uuid.uuid4()), source_ref=source_ref,
                      created_at=now, updated_at=now)

        tracker = ProgressTracker(job, self._on_progress)
        handle = JobHandle(tracker, threading.Event())
        tracker.transition(JobState.INITIALIZING, PROGRESS_INITIALIZING)

        with self._handles_lock:
            self._handles[job.id] = handle

        thread = threading.Thread(
            target=self._run_job,
            args=(tracker, handle._cancel_event, schema),
            name=f"job-{job.id[:8]}",
            daemon=True,
        )
        handle._thread = thread
        thread.start()
        logger.info("Started job %s for %s", job.id, source_ref)
        return handle

    def run(self, source_ref: str, output_schema: dict | None = None) -> Job:
        """Start a job and block until it is terminal."""
        return self.start(source_ref, output_schema).wait()

    def cancel(self, job_id: str) -> bool:
        handle = self.get_handle(job_id)
        if handle is None or handle.done():
            return False
        logger.info("Cancellation requested for job %s", job_id)
        handle.cancel()
        return True

    def get_handle(self, job_id: str) -> JobHandle | None:
        with self._handles_lock:
            return self._handles.get(job_id)

    def forget(self, job_id: str) -> bool:
        """Drop the handle of a finished job. Running jobs are kept."""
        with self._handles_lock:
            handle = self._handles.get(job_id)
            if handle is None or not handle.done():
                return False
            del self._handles[job_id]
        logger.debug("Forgot job %s", job_id)
        return True

    def forget_finished(self) -> int:
        """Drop every finished job's handle. Returns how many were dropped."""
        with self._handles_lock:
            finished = [job_id for job_id, h in self._handles.items() if h.done()]
            for job_id in finished:
                del self._handles[job_id]
        return len(finished)

    def active_jobs(self) -> list[str]:
        with self._handles_lock:
            handles = list(self._handles.values())
        return [h.job_id for h in handles if not h.done()]

    # ── Job processing pipeline ───────────────────────────────────────

    @staticmethod
    def _check_cancel(cancel_event: threading.Event, stage: str):
        if cancel_event.is_set():
            raise JobError(ErrorKind.CANCELLED, f"Job cancelled before {stage}",
                           retryable=False)

    def _acquire(self, source_ref: str, cancel_event: threading.Event) -> Path:
        def _once():
            try:
                return Path(self.acquirer.acquire(source_ref))
            except JobError:
                raise
            except Exception as e:
                raise JobError(ErrorKind.ACQUISITION, f"Audio acquisition failed: {e}",
                               code=type(e).__name__)

        return retry(_once,
                     max_attempts=self.max_attempts,
                     initial_delay=self.initial_delay,
                     cancel_event=cancel_event,
                     description="Audio acquisition")

    def _run_job(self, tracker: ProgressTracker, cancel_event: threading.Event, schema: dict):
        """Process a single job through the full pipeline."""
        job_id = tracker.job_id
        try:
            source_ref = tracker.snapshot().source_ref

            # ── Stage 1: Acquire audio ──
            self._check_cancel(cancel_event, JobState.DOWNLOADING)
            tracker.transition(JobState.DOWNLOADING, PROGRESS_DOWNLOADING)
            audio_path = self._acquire(source_ref, cancel_event)

            # ── Stage 2: Upload + submit ──
            try:
                self._check_cancel(cancel_event, JobState.UPLOADING)
                tracker.transition(JobState.UPLOADING, PROGRESS_UPLOADING)
                upload_url = self.transcriber.upload(audio_path)
            finally:
                cleanup_audio(audio_path, self.keep_audio)
            transcript_id = self.transcriber.submit(upload_url)

            # ── Stage 3: Transcribe ──
            self._check_cancel(cancel_event, JobState.TRANSCRIBING)
            tracker.transition(JobState.TRANSCRIBING, PROGRESS_TRANSCRIBING)
            result = self.transcriber.poll(transcript_id, cancel_event)
            if not result.text.strip():
                raise JobError(ErrorKind.TRANSCRIPTION_FAILED,
                               "Transcription completed with no speech detected",
                               code="empty_transcript", retryable=False)
            tracker.set_transcript(result.text)
            if self.store is not None:
                self.store.record_transcript(job_id, result.text)

            # ── Stage 4: Extract ──
            self._check_cancel(cancel_event, JobState.EXTRACTING)
            tracker.transition(JobState.EXTRACTING, PROGRESS_EXTRACT_START)
            chunks = split_text(result.text, self.chunk_max_tokens)
            span = PROGRESS_EXTRACT_END - PROGRESS_EXTRACT_START

            def _chunk_done(done: int, total: int):
                tracker.advance(PROGRESS_EXTRACT_START + int(done / total * span))

            results = self.extractor.extract_all(chunks, schema,
                                                 on_chunk_done=_chunk_done,
                                                 cancel_event=cancel_event)

            # ── Stage 5: Merge + validate ──
            self._check_cancel(cancel_event, "validation")
            tracker.advance(PROGRESS_VALIDATING)
            results.sort(key=lambda r: r.chunk_index)
            merged = merge_results([r.content for r in results])
            try:
                content = validate_content(merged, schema)
            except SchemaValidationError as e:
                # raw content kept for diagnostics only
                self._handle_job_error(tracker, e, raw_content=merged)
                return

            if self.store is not None:
                self.store.record_extracted_content(job_id, content)
            tracker.complete(content)
            logger.info("Job %s completed (%d chunk(s))", job_id, len(chunks))

        except JobError as e:
            self._handle_job_error(tracker, e)
        except Exception as e:
            logger.error("Unexpected error processing job %s: %s", job_id, e, exc_info=True)
            tracker.fail(ErrorInfo(kind=ErrorKind.INTERNAL,
                                   message=str(e) or type(e).__name__,
                                   code=type(e).__name__))

    def _handle_job_error(self, tracker: ProgressTracker, error: JobError, raw_content=None):
        """No cross-stage recovery: every JobError is final for the job."""
        job = tracker.snapshot()
        logger.warning("Job %s failed in %s: %s", job.id, job.state, error)
        tracker.fail(error.to_error_info(raw_content=raw_content))
