"""
Security utilities for VideoDocs.
- Safe subprocess execution (argument arrays only)
- External tool discovery
- Secret redaction for logs
"""

import os
import shutil
import subprocess
import logging

from videodocs.core.constants import EXTRA_TOOL_DIRS

logger = logging.getLogger(__name__)


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False: remove any caller-supplied value, then set it once
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )


# ── Tool discovery ────────────────────────────────────────────────────

def find_executable(name: str, extra_dirs: list[str] | None = None) -> str | None:
    """
    Locate an executable on PATH, then in a few well-known directories
    that a minimal service PATH usually misses.
    """
    found = shutil.which(name)
    if found:
        return found

    for directory in extra_dirs if extra_dirs is not None else EXTRA_TOOL_DIRS:
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
        logger.debug("Tried %s: not found", candidate)

    return None


# ── Secrets ───────────────────────────────────────────────────────────

def redact(secret: str | None) -> str:
    """Show only a short prefix of a secret."""
    if not secret:
        return "<missing>"
    return secret[:4] + "…"
