"""
Cleanup: delete acquired audio once it has been handed to the transcription service.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def cleanup_audio(audio_path: Path | None, keep_audio: bool = False):
    """Delete an acquired audio file (success or failure). Never raises."""
    if audio_path is None or keep_audio:
        return
    try:
        if audio_path.exists():
            audio_path.unlink()
            logger.debug("Deleted: %s", audio_path)
    except OSError as e:
        logger.warning("Failed to delete %s: %s", audio_path, e)


def cleanup_partial_download(output_file: Path):
    """
    Remove whatever a failed yt-dlp run left behind for output_file:
    the file itself plus its .part/.ytdl/.temp siblings. Never raises.
    """
    for leftover in output_file.parent.glob(f"{output_file.stem}*"):
        try:
            leftover.unlink()
            logger.debug("Deleted partial download: %s", leftover)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", leftover, e)
