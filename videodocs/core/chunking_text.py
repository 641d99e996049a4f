"""
Sentence-bounded transcript chunking.
Token counts are estimated from character length (4 chars per token).
"""

import logging
import re
from typing import Iterator

from videodocs.core.constants import CHARS_PER_TOKEN
from videodocs.core.models import TranscriptChunk, estimate_tokens

logger = logging.getLogger(__name__)

# A run of non-terminators, its terminators (or end of text), then trailing
# whitespace. Consecutive matches tile the whole input.
_SEGMENT_RE = re.compile(r"[^.!?]*(?:[.!?]+|\Z)\s*")


def split_segments(text: str) -> list[str]:
    """Split text into sentence-terminated segments; ''.join(result) == text."""
    return [m.group(0) for m in _SEGMENT_RE.finditer(text) if m.group(0)]


def iter_chunks(text: str, max_tokens_per_chunk: int) -> Iterator[TranscriptChunk]:
    """
    Greedily pack segments into chunks of at most max_tokens_per_chunk
    (estimated). A segment bigger than the whole budget gets a chunk to itself.
    """
    if max_tokens_per_chunk < 1:
        raise ValueError("max_tokens_per_chunk must be >= 1")

    budget = max_tokens_per_chunk * CHARS_PER_TOKEN
    index = 0
    current = ""

    for segment in split_segments(text):
        if current and len(current) + len(segment) > budget:
            yield TranscriptChunk(index=index, text=current)
            index += 1
            current = ""
        current += segment

    if current:
        yield TranscriptChunk(index=index, text=current)


def split_text(text: str, max_tokens_per_chunk: int) -> list[TranscriptChunk]:
    """Split a transcript into ordered chunks."""
    chunks = list(iter_chunks(text, max_tokens_per_chunk))
    oversized = sum(1 for c in chunks if c.estimated_tokens > max_tokens_per_chunk)
    if oversized:
        logger.warning("%d chunk(s) hold a single sentence over the %d-token budget",
                       oversized, max_tokens_per_chunk)
    logger.info("Split %d chars (~%d tokens) into %d chunk(s)",
                len(text), estimate_tokens(text), len(chunks))
    return chunks


def join_chunks(chunks: list[TranscriptChunk]) -> str:
    return "".join(c.text for c in chunks)
