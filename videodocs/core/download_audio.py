"""
Audio acquisition via yt-dlp.
"""

import logging
import uuid
from pathlib import Path

from videodocs.core.security_utils import run_subprocess_capture, find_executable
from videodocs.core.cleanup import cleanup_partial_download
from videodocs.core.error_codes import JobError
from videodocs.core.constants import ErrorKind, AUDIO_CACHE_DIR, ACQUIRE_TIMEOUT_SEC

logger = logging.getLogger(__name__)


class YtDlpAudioAcquirer:
    """
    Downloads the audio track of a video reference as mp3.
    Any object with an ``acquire(source_ref) -> Path`` method can replace it.
    """

    def __init__(self, output_dir: Path | None = None, ytdlp_path: str | None = None,
                 timeout: int = ACQUIRE_TIMEOUT_SEC):
        self.output_dir = output_dir or AUDIO_CACHE_DIR
        self._ytdlp_path = ytdlp_path
        self.timeout = timeout

    @property
    def ytdlp_path(self) -> str:
        if not self._ytdlp_path:
            self._ytdlp_path = find_executable("yt-dlp")
        if not self._ytdlp_path:
            raise JobError(ErrorKind.ACQUISITION,
                           "yt-dlp not found on PATH or in any expected location",
                           code="tool_not_found", retryable=False)
        return self._ytdlp_path

    def acquire(self, source_ref: str) -> Path:
        """
        Download audio-only for source_ref.
        Returns path to the downloaded mp3.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_file = self.output_dir / f"{uuid.uuid4().hex}.mp3"

        args = [
            self.ytdlp_path,
            "--no-playlist",
            "--no-warnings",
            "-x", "--audio-format", "mp3",
            "-o", str(output_file),
            source_ref,
        ]

        try:
            result = run_subprocess_capture(args, timeout=self.timeout)
        except Exception as e:
            cleanup_partial_download(output_file)
            raise JobError(ErrorKind.ACQUISITION, f"Audio download failed: {e}",
                           code=type(e).__name__)

        if result.returncode != 0:
            cleanup_partial_download(output_file)
            stderr = result.stderr or ""
            raise JobError(ErrorKind.ACQUISITION,
                           f"yt-dlp download failed (rc={result.returncode}): {stderr[:300]}",
                           code=f"rc_{result.returncode}")

        if not output_file.exists():
            cleanup_partial_download(output_file)
            raise JobError(ErrorKind.ACQUISITION, "No audio file found after download",
                           code="missing_output")

        logger.info("Downloaded audio: %s", output_file)
        return output_file
