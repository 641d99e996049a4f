"""
Structured extraction with OpenAI chat completions.
One call per transcript chunk, JSON-only responses, schema embedded in the
system prompt. Results are not validated here: a chunk may legitimately be
a partial contribution to the merged document.
"""

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

import openai
from openai import OpenAI

from videodocs.core.error_codes import JobError
from videodocs.core.models import ExtractionResult, TranscriptChunk
from videodocs.core.retry import retry
from videodocs.core.constants import (
    ErrorKind, ApiErrorType,
    OPENAI_DEFAULT_MODEL, OPENAI_DEFAULT_MAX_TOKENS,
    OPENAI_DEFAULT_TEMPERATURE, OPENAI_DEFAULT_TIMEOUT_SEC,
    DEFAULT_MAX_ATTEMPTS, DEFAULT_INITIAL_DELAY_SEC, DEFAULT_CHUNK_MAX_TOKENS,
)

logger = logging.getLogger(__name__)

_GUIDELINES = """Guidelines:
1. The response must be valid JSON that matches the schema exactly
2. All required fields must be included
3. Break down the content into logical sections
4. Each section should have clear, actionable steps
5. Include specific materials needed for each step
6. Estimate durations for steps when possible
7. Set an appropriate difficulty level
8. Add relevant keywords for searchability

Your task is to structure the video content in a way that makes it easy to follow and implement."""


def positional_guidance(chunk_index: int, chunk_count: int) -> str:
    """Extra instructions telling the model where this chunk sits in the video."""
    if chunk_count <= 1:
        return ""
    position = f"This transcript is part {chunk_index + 1} of {chunk_count} of a longer video."
    if chunk_index == 0:
        return (f"{position} It is the opening part: emphasise the introduction, "
                "and derive the title, summary and difficulty from it.")
    if chunk_index == chunk_count - 1:
        return (f"{position} It is the final part: emphasise the summary and "
                "conclusion, and extract the sections it covers.")
    return (f"{position} It is a middle part: extract only the sections and steps "
            "covered here; do not write an introduction or a conclusion.")


def build_system_prompt(output_schema: dict, chunk_index: int = 0, chunk_count: int = 1) -> str:
    parts = [
        "Analyze the following video transcription and extract key information.",
        "You MUST format your response exactly according to this JSON schema:",
        json.dumps(output_schema, indent=2),
        "",
        _GUIDELINES,
    ]
    guidance = positional_guidance(chunk_index, chunk_count)
    if guidance:
        parts.extend(["", guidance])
    parts.extend(["", "Respond with a single JSON object and nothing else."])
    return "\n".join(parts)


def classify_api_error(exc: Exception) -> JobError:
    """Map an OpenAI SDK exception onto an extraction_api_error with a sub-kind."""
    code = getattr(exc, 'code', None)

    if isinstance(exc, openai.APITimeoutError):
        return JobError(ErrorKind.EXTRACTION_API, "Request timed out",
                        code=code or "timeout", sub_kind=ApiErrorType.TIMEOUT, retryable=True)
    if isinstance(exc, openai.APIConnectionError):
        return JobError(ErrorKind.EXTRACTION_API, f"Network error connecting to OpenAI: {exc}",
                        code=code or "connection_error", sub_kind=ApiErrorType.API, retryable=True)
    if isinstance(exc, openai.RateLimitError):
        return JobError(ErrorKind.EXTRACTION_API, str(exc),
                        code=code or "429", sub_kind=ApiErrorType.RATE_LIMIT, retryable=True)
    if isinstance(exc, openai.BadRequestError):
        return JobError(ErrorKind.EXTRACTION_API, str(exc),
                        code=code or "400", sub_kind=ApiErrorType.INVALID_REQUEST, retryable=False)
    if isinstance(exc, openai.PermissionDeniedError):
        return JobError(ErrorKind.EXTRACTION_API, str(exc),
                        code=code or "403", sub_kind=ApiErrorType.CONTENT_FILTER, retryable=False)
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        return JobError(ErrorKind.EXTRACTION_API, str(exc),
                        code=code or str(status), sub_kind=ApiErrorType.API,
                        retryable=status >= 500)
    return JobError(ErrorKind.EXTRACTION_API, str(exc) or type(exc).__name__,
                    code=code or "unknown", sub_kind=ApiErrorType.API, retryable=False)


def parse_model_output(raw: str) -> dict:
    """Parse a JSON-only completion. Not retried: bad output is not transient."""
    try:
        content = json.loads(raw)
    except json.JSONDecodeError as e:
        raise JobError(ErrorKind.EXTRACTION_PARSE,
                       f"Invalid JSON response from model: {e}",
                       code="invalid_json", retryable=False)
    if not isinstance(content, dict):
        raise JobError(ErrorKind.EXTRACTION_PARSE,
                       f"Model returned JSON {type(content).__name__}, expected an object",
                       code="invalid_json", retryable=False)
    return content


class ExtractionEngine:
    """Turns transcript chunks into schema-shaped dicts."""

    def __init__(self, client=None, api_key: str | None = None,
                 model: str = OPENAI_DEFAULT_MODEL,
                 max_tokens: int = OPENAI_DEFAULT_MAX_TOKENS,
                 temperature: float = OPENAI_DEFAULT_TEMPERATURE,
                 timeout: float = OPENAI_DEFAULT_TIMEOUT_SEC,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 initial_delay: float = DEFAULT_INITIAL_DELAY_SEC,
                 chunk_max_tokens: int = DEFAULT_CHUNK_MAX_TOKENS,
                 concurrency: int = 1,
                 sleep: Callable[[float], None] = time.sleep):
        if client is None:
            if not api_key:
                raise JobError(ErrorKind.EXTRACTION_API, "OpenAI API key not configured",
                               code="missing_api_key", sub_kind=ApiErrorType.API,
                               retryable=False)
            # retries are ours, not the SDK's
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.chunk_max_tokens = chunk_max_tokens
        self.concurrency = max(1, concurrency)
        self._sleep = sleep

    def _complete(self, system_prompt: str, user_content: str) -> str:
        """One chat completion; SDK errors become JobErrors."""
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                response_format={"type": "json_object"},
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.OpenAIError as e:
            raise classify_api_error(e)

        choice = completion.choices[0] if completion.choices else None
        if choice is not None and getattr(choice, 'finish_reason', None) == "content_filter":
            raise JobError(ErrorKind.EXTRACTION_API, "Response blocked by content filter",
                           code="content_filter", sub_kind=ApiErrorType.CONTENT_FILTER,
                           retryable=False)

        raw = choice.message.content if choice is not None else None
        if not raw:
            raise JobError(ErrorKind.EXTRACTION_API, "Empty response from OpenAI",
                           code="empty_response", sub_kind=ApiErrorType.API, retryable=True)
        return raw

    def extract(self, chunk: TranscriptChunk, chunk_count: int, output_schema: dict,
                cancel_event: Optional[threading.Event] = None) -> ExtractionResult:
        """Extract one chunk. The API call is retried; parsing is not."""
        if not chunk.text.strip():
            raise JobError(ErrorKind.EXTRACTION_API, f"Chunk {chunk.index} is empty",
                           code="invalid_input", sub_kind=ApiErrorType.INVALID_REQUEST,
                           retryable=False)
        if chunk.estimated_tokens > self.chunk_max_tokens:
            logger.warning("Chunk %d is ~%d tokens, over the %d budget; sending anyway",
                           chunk.index, chunk.estimated_tokens, self.chunk_max_tokens)

        system_prompt = build_system_prompt(output_schema, chunk.index, chunk_count)
        raw = retry(lambda: self._complete(system_prompt, chunk.text),
                    max_attempts=self.max_attempts,
                    initial_delay=self.initial_delay,
                    sleep=self._sleep,
                    cancel_event=cancel_event,
                    description=f"OpenAI extraction (chunk {chunk.index})")
        content = parse_model_output(raw)
        sections = content.get('sections')
        logger.info("Extracted chunk %d/%d (%d sections)", chunk.index + 1, chunk_count,
                    len(sections) if isinstance(sections, list) else 0)
        return ExtractionResult(chunk_index=chunk.index, content=content)

    def extract_all(self, chunks: list[TranscriptChunk], output_schema: dict,
                    on_chunk_done: Optional[Callable[[int, int], None]] = None,
                    cancel_event: Optional[threading.Event] = None) -> list[ExtractionResult]:
        """
        Extract every chunk, sequentially or with at most ``concurrency``
        in flight. Results always come back sorted by chunk index.
        """
        cancel_event = cancel_event or threading.Event()
        total = len(chunks)

        def _one(chunk: TranscriptChunk) -> ExtractionResult:
            if cancel_event.is_set():
                raise JobError(ErrorKind.CANCELLED, "Cancelled during extraction",
                               retryable=False)
            return self.extract(chunk, total, output_schema, cancel_event)

        results: list[ExtractionResult] = []

        if self.concurrency == 1 or total <= 1:
            for chunk in chunks:
                results.append(_one(chunk))
                if on_chunk_done:
                    on_chunk_done(len(results), total)
        else:
            with ThreadPoolExecutor(max_workers=min(self.concurrency, total)) as pool:
                futures = [pool.submit(_one, chunk) for chunk in chunks]
                try:
                    for future in as_completed(futures):
                        results.append(future.result())
                        if on_chunk_done:
                            on_chunk_done(len(results), total)
                except Exception:
                    for future in futures:
                        future.cancel()
                    raise

        results.sort(key=lambda r: r.chunk_index)
        return results
