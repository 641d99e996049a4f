"""
Data models (plain dataclasses) for VideoDocs.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Optional

from videodocs.core.constants import JobState, CHARS_PER_TOKEN, TERMINAL_STATES


@dataclass(frozen=True)
class ErrorInfo:
    kind: str
    message: str
    code: Optional[str] = None
    sub_kind: Optional[str] = None
    raw_content: Any = None          # diagnostics only, never final content


@dataclass
class Job:
    id: str                          # UUID
    source_ref: str
    state: str = JobState.INITIALIZING
    progress_pct: int = 0
    transcript: Optional[str] = None
    extracted_content: Optional[dict] = None
    error: Optional[ErrorInfo] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class TranscriptChunk:
    index: int
    text: str

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.text)


@dataclass
class TranscriptResult:
    transcript_id: str
    text: str
    utterances: Optional[list] = None    # speaker-labelled segments, passed through


@dataclass
class ExtractionResult:
    chunk_index: int
    content: dict = field(default_factory=dict)


def estimate_tokens(text: str) -> int:
    """Rough token estimate at a fixed characters-per-token ratio."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)
