"""
Per-job progress tracking and an in-process notification channel.
"""

import copy
import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from videodocs.core.constants import JobState, PROGRESS_COMPLETED
from videodocs.core.models import Job, ErrorInfo

logger = logging.getLogger(__name__)

# on_progress(job_id, percent, state, error)
ProgressCallback = Callable[[str, int, str, Optional[ErrorInfo]], None]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ProgressUpdate:
    job_id: str
    percent: int
    state: str
    error: Optional[ErrorInfo] = None


class ProgressTracker:
    """
    Owns one Job's state and progress.
    Every change happens under a lock and is emitted before the lock is
    released, so observers only ever see pairs that existed, in order.
    Progress never decreases and nothing changes after a terminal state.
    """

    def __init__(self, job: Job, on_progress: Optional[ProgressCallback] = None):
        self._job = job
        self._on_progress = on_progress
        self._lock = threading.Lock()

    @property
    def job_id(self) -> str:
        return self._job.id

    def snapshot(self) -> Job:
        with self._lock:
            return copy.deepcopy(self._job)

    def _emit(self):
        if not self._on_progress:
            return
        job = self._job
        try:
            self._on_progress(job.id, job.progress_pct, job.state, job.error)
        except Exception as e:
            logger.error("Progress sink failed for job %s: %s", job.id, e, exc_info=True)

    def transition(self, state: str, percent: int) -> bool:
        """Move to state/percent and emit. Returns False if the job is already terminal."""
        with self._lock:
            if self._job.is_terminal:
                logger.debug("Ignoring %s for terminal job %s", state, self._job.id)
                return False
            if state == JobState.ERROR:
                raise ValueError("Use fail() to move a job to error")
            self._job.state = state
            self._job.progress_pct = max(self._job.progress_pct, min(100, int(percent)))
            self._job.updated_at = utc_now()
            self._emit()
            return True

    def advance(self, percent: int) -> bool:
        """Raise progress within the current state."""
        with self._lock:
            if self._job.is_terminal or percent <= self._job.progress_pct:
                return False
            self._job.progress_pct = min(100, int(percent))
            self._job.updated_at = utc_now()
            self._emit()
            return True

    def set_transcript(self, text: str):
        with self._lock:
            self._job.transcript = text

    def complete(self, extracted_content: dict) -> bool:
        """Store validated content and move to completed at 100%."""
        with self._lock:
            if self._job.is_terminal:
                return False
            self._job.extracted_content = extracted_content
            self._job.state = JobState.COMPLETED
            self._job.progress_pct = PROGRESS_COMPLETED
            self._job.updated_at = utc_now()
            self._emit()
            return True

    def fail(self, error: ErrorInfo) -> bool:
        """Move to error, keeping the last progress value."""
        with self._lock:
            if self._job.is_terminal:
                return False
            self._job.state = JobState.ERROR
            self._job.error = error
            self._job.updated_at = utc_now()
            self._emit()
            return True


class ProgressBoard:
    """
    Latest-state notification channel.
    Use ``board.on_progress`` as a sink; live observers ``subscribe`` to a
    job and receive every later update on a queue, starting with the latest.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._latest: dict[str, ProgressUpdate] = {}
        self._subscribers: dict[str, list[queue.Queue]] = {}

    def on_progress(self, job_id: str, percent: int, state: str,
                    error: Optional[ErrorInfo] = None):
        update = ProgressUpdate(job_id=job_id, percent=percent, state=state, error=error)
        with self._lock:
            self._latest[job_id] = update
            for q in self._subscribers.get(job_id, []):
                q.put(update)

    def latest(self, job_id: str) -> Optional[ProgressUpdate]:
        with self._lock:
            return self._latest.get(job_id)

    def subscribe(self, job_id: str) -> queue.Queue:
        q: queue.Queue = queue.Queue()
        with self._lock:
            current = self._latest.get(job_id)
            if current is not None:
                q.put(current)
            self._subscribers.setdefault(job_id, []).append(q)
        return q

    def unsubscribe(self, job_id: str, q: queue.Queue):
        with self._lock:
            subscribers = self._subscribers.get(job_id, [])
            if q in subscribers:
                subscribers.remove(q)
            if not subscribers:
                self._subscribers.pop(job_id, None)

    def forget(self, job_id: str):
        """Drop the stored state of a finished job."""
        with self._lock:
            self._latest.pop(job_id, None)


def combine_sinks(*sinks: Optional[ProgressCallback]) -> ProgressCallback:
    """Fan one progress stream out to several sinks, in order."""
    active = [s for s in sinks if s is not None]

    def _fanout(job_id, percent, state, error=None):
        for sink in active:
            try:
                sink(job_id, percent, state, error)
            except Exception as e:
                logger.error("Progress sink %r failed for job %s: %s", sink, job_id, e)

    return _fanout
