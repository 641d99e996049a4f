"""
AssemblyAI Speech-to-Text integration (v2 REST API).
Upload raw audio, submit a transcript request, then poll until the remote
status is terminal. Every HTTP call is wrapped in bounded retry.
"""

import json
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import requests

from videodocs.core.error_codes import JobError
from videodocs.core.models import TranscriptResult
from videodocs.core.retry import retry
from videodocs.core.constants import (
    ErrorKind, RemoteStatus, KNOWN_REMOTE_STATUSES,
    ASSEMBLYAI_API_BASE, POLL_INTERVAL_SEC,
    DEFAULT_MAX_ATTEMPTS, DEFAULT_INITIAL_DELAY_SEC, MAX_ERROR_BODY_LEN,
)

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT_SEC = 30


def verify_api_key(api_key: str, api_base: str = ASSEMBLYAI_API_BASE) -> tuple[bool, str]:
    """
    Verify an AssemblyAI API key with a lightweight request.
    Returns (success: bool, message: str).
    """
    try:
        resp = requests.get(
            f"{api_base}/transcript",
            headers={"authorization": api_key},
            params={"limit": 1},
            timeout=10,
        )
        if resp.status_code == 200:
            return True, "Key verified"
        elif resp.status_code in (401, 403):
            return False, "Key invalid or rejected"
        else:
            return False, f"Unexpected response: {resp.status_code}"
    except requests.exceptions.ConnectionError:
        return False, "Network error: could not reach AssemblyAI"
    except requests.exceptions.Timeout:
        return False, "Network error: request timed out"
    except requests.exceptions.RequestException as e:
        return False, f"Network error: {e}"


class TranscriptionClient:
    """Talks to AssemblyAI. Safe to share between concurrent jobs."""

    def __init__(self, api_key: str | None,
                 api_base: str = ASSEMBLYAI_API_BASE,
                 poll_interval: float = POLL_INTERVAL_SEC,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 initial_delay: float = DEFAULT_INITIAL_DELAY_SEC,
                 speaker_labels: bool = False,
                 max_polls: int | None = None,
                 session: requests.Session | None = None,
                 sleep: Callable[[float], None] = time.sleep):
        if not api_key:
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           "AssemblyAI API key not configured",
                           code="missing_api_key", retryable=False)
        self.api_base = api_base.rstrip('/')
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.speaker_labels = speaker_labels
        self.max_polls = max_polls
        self._sleep = sleep
        self._session = session or requests.Session()
        self._headers = {"authorization": api_key}

    # ── HTTP plumbing ─────────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs) -> dict:
        """One HTTP call, translated into JobErrors. Not retried here."""
        url = f"{self.api_base}{path}"
        headers = dict(self._headers)
        headers.update(kwargs.pop('headers', {}))

        try:
            resp = self._session.request(method, url, headers=headers,
                                         timeout=kwargs.pop('timeout', _REQUEST_TIMEOUT_SEC),
                                         **kwargs)
        except requests.exceptions.Timeout:
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           f"AssemblyAI {method} {path} timed out", code="timeout")
        except requests.exceptions.ConnectionError:
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           "Network error connecting to AssemblyAI", code="connection_error")
        except requests.exceptions.RequestException as e:
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           f"AssemblyAI request failed: {e}", code="request_error")

        if resp.status_code != 200:
            # Sanitize error message (never log API key)
            error_body = resp.text[:MAX_ERROR_BODY_LEN] if resp.text else "No response body"
            transient = resp.status_code == 429 or resp.status_code >= 500
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           f"AssemblyAI returned {resp.status_code}: {error_body}",
                           code=str(resp.status_code), retryable=transient)

        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError):
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           "Failed to parse AssemblyAI response JSON",
                           code="invalid_json", retryable=False)
        if not isinstance(data, dict):
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           "AssemblyAI response is not a JSON object",
                           code="invalid_json", retryable=False)
        return data

    def _with_retry(self, operation, description: str,
                    cancel_event: Optional[threading.Event] = None):
        return retry(operation,
                     max_attempts=self.max_attempts,
                     initial_delay=self.initial_delay,
                     sleep=self._sleep,
                     cancel_event=cancel_event,
                     description=description)

    # ── Protocol steps ────────────────────────────────────────────────

    def upload(self, audio_path: Path) -> str:
        """Upload raw audio bytes. Returns the opaque upload URL."""
        file_size = audio_path.stat().st_size
        # ~1 min per 10MB, minimum 120s
        timeout_sec = max(120, int(file_size / (10 * 1024 * 1024) * 60) + 60)

        def _upload():
            with open(audio_path, 'rb') as f:
                return self._request(
                    "POST", "/upload",
                    headers={"Content-Type": "application/octet-stream"},
                    data=f,
                    timeout=timeout_sec,
                )

        data = self._with_retry(_upload, "AssemblyAI upload")
        upload_url = data.get('upload_url')
        if not upload_url:
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           "AssemblyAI upload response has no upload_url",
                           code="missing_upload_url", retryable=False)
        logger.info("Uploaded %d bytes from %s", file_size, audio_path.name)
        return upload_url

    def submit(self, upload_url: str) -> str:
        """Request a transcript for an uploaded file. Returns the transcript id."""
        body = {"audio_url": upload_url}
        if self.speaker_labels:
            body["speaker_labels"] = True

        data = self._with_retry(
            lambda: self._request("POST", "/transcript", json=body),
            "AssemblyAI submit",
        )
        transcript_id = data.get('id')
        if not transcript_id:
            raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                           "AssemblyAI submit response has no transcript id",
                           code="missing_transcript_id", retryable=False)
        logger.info("Submitted transcript %s", transcript_id)
        return transcript_id

    def get_status(self, transcript_id: str,
                   cancel_event: Optional[threading.Event] = None) -> dict:
        return self._with_retry(
            lambda: self._request("GET", f"/transcript/{transcript_id}"),
            "AssemblyAI poll",
            cancel_event=cancel_event,
        )

    def poll(self, transcript_id: str,
             cancel_event: Optional[threading.Event] = None) -> TranscriptResult:
        """
        Poll until the transcript is completed or errored.
        Statuses outside the known set are a protocol error, never polled past.
        """
        cancel_event = cancel_event or threading.Event()
        polls = 0

        while True:
            if cancel_event.is_set():
                raise JobError(ErrorKind.CANCELLED, "Cancelled while waiting for transcription",
                               retryable=False)

            data = self.get_status(transcript_id, cancel_event)
            polls += 1
            status = data.get('status')

            if status not in KNOWN_REMOTE_STATUSES:
                raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                               f"Unexpected transcription status {status!r}",
                               code="unexpected_status", retryable=False)

            if status == RemoteStatus.COMPLETED:
                return TranscriptResult(
                    transcript_id=transcript_id,
                    text=data.get('text') or "",
                    utterances=data.get('utterances'),
                )

            if status == RemoteStatus.ERROR:
                remote_error = data.get('error') or "unknown error"
                raise JobError(ErrorKind.TRANSCRIPTION_FAILED,
                               f"Transcription failed: {remote_error}",
                               code="remote_error")

            if self.max_polls is not None and polls >= self.max_polls:
                raise JobError(ErrorKind.TRANSCRIPTION_PROTOCOL,
                               f"Transcription still {status} after {polls} polls",
                               code="poll_limit", retryable=False)

            logger.debug("Transcript %s is %s; polling again in %.1fs",
                         transcript_id, status, self.poll_interval)
            # Wakes early on cancellation
            cancel_event.wait(self.poll_interval)

    def transcribe(self, audio_path: Path,
                   cancel_event: Optional[threading.Event] = None) -> TranscriptResult:
        """Upload, submit and poll in one call."""
        upload_url = self.upload(audio_path)
        transcript_id = self.submit(upload_url)
        return self.poll(transcript_id, cancel_event)
