#!/usr/bin/env python3
"""
Pipeline tests for VideoDocs.
Tests cover: the AssemblyAI client, the OpenAI extraction engine and
end-to-end job runs through the orchestrator. No network access: HTTP and
SDK calls go to in-process fakes.
"""

import sys
import json
import re
import tempfile
import threading
import time
import uuid
from pathlib import Path
from types import SimpleNamespace

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import httpx
import openai
import requests

from videodocs.core.constants import JobState, ErrorKind, ApiErrorType
from videodocs.core.models import TranscriptChunk
from videodocs.core.error_codes import JobError
from videodocs.core.transcribe_assemblyai import TranscriptionClient
from videodocs.core.extract_openai import (
    ExtractionEngine, build_system_prompt, positional_guidance, classify_api_error,
)
from videodocs.core.orchestrator import JobOrchestrator
from videodocs.core.schemas import DEFAULT_OUTPUT_SCHEMA
from videodocs.core.db_sqlite import Database

API_BASE = "https://api.test.invalid/v2"
UPLOAD_URL = "https://cdn.test.invalid/upload/abc"


def no_sleep(_seconds):
    pass


# ── Fakes ─────────────────────────────────────────────────────────────

class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """
    Stands in for requests.Session. Routes map (method, path) to a list of
    responses or exceptions, consumed in order; the last one repeats.
    """

    def __init__(self, routes):
        self.routes = {key: list(items) for key, items in routes.items()}
        self.calls = []
        self._lock = threading.Lock()

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        path = url[len(API_BASE):]
        with self._lock:
            self.calls.append({'method': method, 'path': path,
                               'headers': headers, 'kwargs': kwargs})
            queue = self.routes[(method, path)]
            item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def count(self, method, path):
        return sum(1 for c in self.calls if c['method'] == method and c['path'] == path)


def assemblyai_routes(status_payloads, transcript_id="t-1"):
    return {
        ("POST", "/upload"): [FakeResponse(payload={"upload_url": UPLOAD_URL})],
        ("POST", "/transcript"): [FakeResponse(payload={"id": transcript_id})],
        ("GET", f"/transcript/{transcript_id}"): [FakeResponse(payload=p) for p in status_payloads],
    }


def make_client(session, **kwargs):
    options = dict(api_base=API_BASE, poll_interval=0, initial_delay=0, sleep=no_sleep)
    options.update(kwargs)
    return TranscriptionClient("aai-test-key", session=session, **options)


def completion(content, finish_reason="stop"):
    return SimpleNamespace(choices=[
        SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason),
    ])


class FakeCompletions:
    def __init__(self, responder):
        self.responder = responder
        self.calls = []
        self._lock = threading.Lock()

    def create(self, **kwargs):
        with self._lock:
            self.calls.append(kwargs)
        outcome = self.responder(kwargs)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, SimpleNamespace):
            return outcome
        return completion(outcome)


class FakeOpenAI:
    """Just enough of the OpenAI client surface: client.chat.completions.create."""

    def __init__(self, responder):
        self.completions = FakeCompletions(responder)
        self.chat = SimpleNamespace(completions=self.completions)


def chunk_position(request) -> int:
    """Zero-based chunk index, read back from the system prompt."""
    system = request['messages'][0]['content']
    match = re.search(r"part (\d+) of (\d+)", system)
    return int(match.group(1)) - 1 if match else 0


def chunk_document(index: int) -> dict:
    return {
        "title": f"T{index}",
        "summary": f"Summary {index}",
        "sections": [{
            "title": f"S{index}",
            "content": f"Content {index}",
            "steps": [{"description": f"Step {index}", "details": "Do it"}],
        }],
        "difficulty": "beginner",
        "keywords": ["shared", f"k{index}"],
    }


def http_response(status):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return httpx.Response(status, request=request)


def rate_limit_error():
    return openai.RateLimitError("Rate limit reached", response=http_response(429), body=None)


def bad_request_error():
    return openai.BadRequestError("Invalid request", response=http_response(400), body=None)


class FakeAcquirer:
    def __init__(self, directory, error=None):
        self.directory = Path(directory)
        self.error = error
        self.calls = []

    def acquire(self, source_ref):
        self.calls.append(source_ref)
        if self.error is not None:
            raise self.error
        path = self.directory / f"{uuid.uuid4()}.mp3"
        path.write_bytes(b"ID3 fake audio")
        return path


class ProgressRecorder:
    def __init__(self):
        self.events = []
        self.reached = {}
        self._lock = threading.Lock()

    def __call__(self, job_id, percent, state, error=None):
        with self._lock:
            self.events.append((job_id, percent, state, error))
            self.reached.setdefault(state, threading.Event()).set()

    def wait_for(self, state, timeout=5.0) -> bool:
        with self._lock:
            event = self.reached.setdefault(state, threading.Event())
        return event.wait(timeout)

    @property
    def percents(self):
        return [e[1] for e in self.events]

    @property
    def states(self):
        states = []
        for e in self.events:
            if not states or states[-1] != e[2]:
                states.append(e[2])
        return states


# ── AssemblyAI client ─────────────────────────────────────────────────

class TestTranscriptionClient(unittest.TestCase):
    """Test the upload / submit / poll protocol."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.audio = Path(self.tmpdir.name) / "clip.mp3"
        self.audio.write_bytes(b"ID3 fake audio")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_missing_key(self):
        with self.assertRaises(JobError) as ctx:
            TranscriptionClient(None)
        self.assertEqual(ctx.exception.code, "missing_api_key")
        self.assertFalse(ctx.exception.retryable)

    def test_transcribe_happy_path(self):
        session = FakeSession(assemblyai_routes([
            {"status": "queued"},
            {"status": "processing"},
            {"status": "completed", "text": "Hello world.", "utterances": [{"speaker": "A"}]},
        ]))
        client = make_client(session)
        result = client.transcribe(self.audio)

        self.assertEqual(result.transcript_id, "t-1")
        self.assertEqual(result.text, "Hello world.")
        self.assertEqual(result.utterances, [{"speaker": "A"}])
        self.assertEqual(session.count("GET", "/transcript/t-1"), 3)

        submit = [c for c in session.calls if c['path'] == "/transcript"][0]
        self.assertEqual(submit['kwargs']['json'], {"audio_url": UPLOAD_URL})
        self.assertEqual(submit['headers']['authorization'], "aai-test-key")
        upload = [c for c in session.calls if c['path'] == "/upload"][0]
        self.assertEqual(upload['headers']['Content-Type'], "application/octet-stream")

    def test_speaker_labels_requested(self):
        session = FakeSession(assemblyai_routes([{"status": "completed", "text": "x"}]))
        client = make_client(session, speaker_labels=True)
        client.submit(UPLOAD_URL)
        submit = [c for c in session.calls if c['path'] == "/transcript"][0]
        self.assertTrue(submit['kwargs']['json']['speaker_labels'])

    def test_remote_error_is_transcription_failed(self):
        session = FakeSession(assemblyai_routes([
            {"status": "error", "error": "audio unintelligible"},
        ]))
        client = make_client(session)
        with self.assertRaises(JobError) as ctx:
            client.poll("t-1")
        self.assertEqual(ctx.exception.kind, ErrorKind.TRANSCRIPTION_FAILED)
        self.assertIn("audio unintelligible", ctx.exception.message)
        self.assertEqual(session.count("GET", "/transcript/t-1"), 1)

    def test_unknown_status_is_protocol_error(self):
        session = FakeSession(assemblyai_routes([{"status": "paused"}]))
        client = make_client(session)
        with self.assertRaises(JobError) as ctx:
            client.poll("t-1")
        self.assertEqual(ctx.exception.kind, ErrorKind.TRANSCRIPTION_PROTOCOL)
        self.assertEqual(ctx.exception.code, "unexpected_status")
        self.assertEqual(session.count("GET", "/transcript/t-1"), 1)

    def test_server_error_retried(self):
        delays = []
        session = FakeSession({
            ("POST", "/transcript"): [
                FakeResponse(503, text="Service Unavailable"),
                FakeResponse(payload={"id": "t-9"}),
            ],
        })
        client = make_client(session, initial_delay=0.5, sleep=delays.append)
        self.assertEqual(client.submit(UPLOAD_URL), "t-9")
        self.assertEqual(session.count("POST", "/transcript"), 2)
        self.assertEqual(delays, [0.5])

    def test_client_error_not_retried(self):
        session = FakeSession({
            ("POST", "/transcript"): [FakeResponse(401, text="Unauthorized")],
        })
        client = make_client(session)
        with self.assertRaises(JobError) as ctx:
            client.submit(UPLOAD_URL)
        self.assertEqual(ctx.exception.code, "401")
        self.assertEqual(session.count("POST", "/transcript"), 1)

    def test_connection_errors_exhaust_attempts(self):
        session = FakeSession({
            ("POST", "/upload"): [requests.exceptions.ConnectionError("refused")],
        })
        client = make_client(session, max_attempts=3)
        with self.assertRaises(JobError) as ctx:
            client.upload(self.audio)
        self.assertEqual(ctx.exception.kind, ErrorKind.TRANSCRIPTION_PROTOCOL)
        self.assertEqual(ctx.exception.code, "connection_error")
        self.assertEqual(session.count("POST", "/upload"), 3)

    def test_invalid_json_not_retried(self):
        session = FakeSession({
            ("POST", "/upload"): [FakeResponse(200, payload=None, text="<html>")],
        })
        client = make_client(session)
        with self.assertRaises(JobError) as ctx:
            client.upload(self.audio)
        self.assertEqual(ctx.exception.code, "invalid_json")
        self.assertEqual(session.count("POST", "/upload"), 1)

    def test_poll_limit(self):
        session = FakeSession(assemblyai_routes([{"status": "processing"}]))
        client = make_client(session, max_polls=2)
        with self.assertRaises(JobError) as ctx:
            client.poll("t-1")
        self.assertEqual(ctx.exception.code, "poll_limit")
        self.assertEqual(session.count("GET", "/transcript/t-1"), 2)

    def test_poll_cancelled(self):
        session = FakeSession(assemblyai_routes([{"status": "processing"}]))
        client = make_client(session)
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(JobError) as ctx:
            client.poll("t-1", cancel)
        self.assertEqual(ctx.exception.kind, ErrorKind.CANCELLED)
        self.assertEqual(session.count("GET", "/transcript/t-1"), 0)


# ── OpenAI extraction ─────────────────────────────────────────────────

class TestPrompts(unittest.TestCase):
    """Test system prompt construction."""

    def test_single_chunk_prompt(self):
        prompt = build_system_prompt(DEFAULT_OUTPUT_SCHEMA)
        self.assertIn(json.dumps(DEFAULT_OUTPUT_SCHEMA, indent=2), prompt)
        self.assertIn("Guidelines:", prompt)
        self.assertNotIn("part 1 of", prompt)

    def test_positional_guidance(self):
        self.assertEqual(positional_guidance(0, 1), "")
        first = positional_guidance(0, 3)
        middle = positional_guidance(1, 3)
        last = positional_guidance(2, 3)
        self.assertIn("part 1 of 3", first)
        self.assertIn("introduction", first)
        self.assertIn("part 2 of 3", middle)
        self.assertIn("middle", middle)
        self.assertIn("part 3 of 3", last)
        self.assertIn("conclusion", last)
        self.assertIn(middle, build_system_prompt(DEFAULT_OUTPUT_SCHEMA, 1, 3))

    def test_classify_timeout(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        error = classify_api_error(openai.APITimeoutError(request=request))
        self.assertEqual(error.kind, ErrorKind.EXTRACTION_API)
        self.assertEqual(error.sub_kind, ApiErrorType.TIMEOUT)
        self.assertTrue(error.retryable)

    def test_classify_status_errors(self):
        error = classify_api_error(rate_limit_error())
        self.assertEqual(error.sub_kind, ApiErrorType.RATE_LIMIT)
        self.assertEqual(error.code, "429")
        self.assertTrue(error.retryable)

        error = classify_api_error(bad_request_error())
        self.assertEqual(error.sub_kind, ApiErrorType.INVALID_REQUEST)
        self.assertFalse(error.retryable)

        server = openai.InternalServerError("boom", response=http_response(500), body=None)
        error = classify_api_error(server)
        self.assertEqual(error.sub_kind, ApiErrorType.API)
        self.assertTrue(error.retryable)


class TestExtractionEngine(unittest.TestCase):
    """Test per-chunk extraction and retry classification."""

    def engine(self, responder, **kwargs):
        client = FakeOpenAI(responder)
        options = dict(initial_delay=0, sleep=no_sleep)
        options.update(kwargs)
        return ExtractionEngine(client=client, **options), client.completions

    def test_missing_key(self):
        with self.assertRaises(JobError) as ctx:
            ExtractionEngine(api_key=None)
        self.assertEqual(ctx.exception.code, "missing_api_key")

    def test_extract_request_shape(self):
        engine, completions = self.engine(lambda req: json.dumps(chunk_document(0)),
                                          model="gpt-test", max_tokens=1234, temperature=0.2)
        result = engine.extract(TranscriptChunk(0, "Cut the wood."), 1, DEFAULT_OUTPUT_SCHEMA)

        self.assertEqual(result.chunk_index, 0)
        self.assertEqual(result.content, chunk_document(0))
        request = completions.calls[0]
        self.assertEqual(request['model'], "gpt-test")
        self.assertEqual(request['max_tokens'], 1234)
        self.assertEqual(request['temperature'], 0.2)
        self.assertEqual(request['response_format'], {"type": "json_object"})
        self.assertEqual(request['messages'][0]['role'], "system")
        self.assertEqual(request['messages'][1], {"role": "user", "content": "Cut the wood."})

    def test_parse_error_not_retried(self):
        engine, completions = self.engine(lambda req: "Sure! Here is your JSON")
        with self.assertRaises(JobError) as ctx:
            engine.extract(TranscriptChunk(0, "Hello."), 1, DEFAULT_OUTPUT_SCHEMA)
        self.assertEqual(ctx.exception.kind, ErrorKind.EXTRACTION_PARSE)
        self.assertEqual(len(completions.calls), 1)

    def test_non_object_json_is_parse_error(self):
        engine, _ = self.engine(lambda req: "[1, 2, 3]")
        with self.assertRaises(JobError) as ctx:
            engine.extract(TranscriptChunk(0, "Hello."), 1, DEFAULT_OUTPUT_SCHEMA)
        self.assertEqual(ctx.exception.kind, ErrorKind.EXTRACTION_PARSE)

    def test_empty_response_retried(self):
        replies = ["", json.dumps(chunk_document(0))]
        engine, completions = self.engine(lambda req: replies.pop(0))
        result = engine.extract(TranscriptChunk(0, "Hello."), 1, DEFAULT_OUTPUT_SCHEMA)
        self.assertEqual(result.content["title"], "T0")
        self.assertEqual(len(completions.calls), 2)

    def test_rate_limit_retried_then_raised(self):
        engine, completions = self.engine(lambda req: rate_limit_error(), max_attempts=3)
        with self.assertRaises(JobError) as ctx:
            engine.extract(TranscriptChunk(0, "Hello."), 1, DEFAULT_OUTPUT_SCHEMA)
        self.assertEqual(ctx.exception.kind, ErrorKind.EXTRACTION_API)
        self.assertEqual(ctx.exception.sub_kind, ApiErrorType.RATE_LIMIT)
        self.assertEqual(len(completions.calls), 3)

    def test_bad_request_not_retried(self):
        engine, completions = self.engine(lambda req: bad_request_error())
        with self.assertRaises(JobError) as ctx:
            engine.extract(TranscriptChunk(0, "Hello."), 1, DEFAULT_OUTPUT_SCHEMA)
        self.assertEqual(ctx.exception.sub_kind, ApiErrorType.INVALID_REQUEST)
        self.assertEqual(len(completions.calls), 1)

    def test_content_filter(self):
        engine, completions = self.engine(lambda req: completion(None, "content_filter"))
        with self.assertRaises(JobError) as ctx:
            engine.extract(TranscriptChunk(0, "Hello."), 1, DEFAULT_OUTPUT_SCHEMA)
        self.assertEqual(ctx.exception.sub_kind, ApiErrorType.CONTENT_FILTER)
        self.assertEqual(len(completions.calls), 1)

    def test_empty_chunk_rejected(self):
        engine, completions = self.engine(lambda req: "{}")
        with self.assertRaises(JobError) as ctx:
            engine.extract(TranscriptChunk(0, "   "), 1, DEFAULT_OUTPUT_SCHEMA)
        self.assertEqual(ctx.exception.sub_kind, ApiErrorType.INVALID_REQUEST)
        self.assertEqual(completions.calls, [])

    def test_extract_all_concurrent_keeps_order(self):
        def responder(req):
            index = chunk_position(req)
            # later chunks finish first
            time.sleep(0.01 * (5 - index))
            return json.dumps(chunk_document(index))

        engine, completions = self.engine(responder, concurrency=3)
        chunks = [TranscriptChunk(i, f"Sentence {i}.") for i in range(5)]
        done = []
        results = engine.extract_all(chunks, DEFAULT_OUTPUT_SCHEMA,
                                     on_chunk_done=lambda d, t: done.append((d, t)))

        self.assertEqual([r.chunk_index for r in results], [0, 1, 2, 3, 4])
        self.assertEqual([r.content["title"] for r in results], ["T0", "T1", "T2", "T3", "T4"])
        self.assertEqual(done, [(i, 5) for i in range(1, 6)])
        self.assertEqual(len(completions.calls), 5)

    def test_extract_all_stops_on_failure(self):
        def responder(req):
            return "not json" if chunk_position(req) == 1 else json.dumps(chunk_document(0))

        engine, completions = self.engine(responder)
        chunks = [TranscriptChunk(i, f"Sentence {i}.") for i in range(3)]
        with self.assertRaises(JobError):
            engine.extract_all(chunks, DEFAULT_OUTPUT_SCHEMA)
        self.assertEqual(len(completions.calls), 2)


# ── Orchestrator ──────────────────────────────────────────────────────

class TestOrchestrator(unittest.TestCase):
    """End-to-end job runs with fake collaborators."""

    TRANSCRIPT = "Hello and welcome. Today we build a shelf. First, cut the wood."
    # 396 sentences of 101 chars; three chunks at a 3400-token budget
    LONG_TRANSCRIPT = ("x" * 99 + ". ") * 396

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.recorder = ProgressRecorder()
        self.config = {
            'chunk_max_tokens': 4000,
            'retry_max_attempts': 3,
            'retry_initial_delay_sec': 0,
        }

    def tearDown(self):
        self.tmpdir.cleanup()

    def orchestrator(self, status_payloads, responder, acquirer=None, store=None, **client_kwargs):
        self.session = FakeSession(assemblyai_routes(status_payloads))
        self.openai = FakeOpenAI(responder)
        transcriber = make_client(self.session, **client_kwargs)
        extractor = ExtractionEngine(client=self.openai, initial_delay=0, sleep=no_sleep)
        self.acquirer = acquirer or FakeAcquirer(self.tmpdir.name)
        return JobOrchestrator(self.acquirer, transcriber, extractor,
                               on_progress=self.recorder, store=store, config=self.config)

    def assert_monotonic(self):
        percents = self.recorder.percents
        self.assertEqual(percents, sorted(percents))

    def test_happy_path(self):
        document = chunk_document(0)
        orch = self.orchestrator(
            [{"status": "processing"}, {"status": "completed", "text": self.TRANSCRIPT}],
            lambda req: json.dumps(document),
        )
        job = orch.run("video://abc", DEFAULT_OUTPUT_SCHEMA)

        self.assertEqual(job.state, JobState.COMPLETED)
        self.assertEqual(job.progress_pct, 100)
        self.assertEqual(job.extracted_content, document)
        self.assertEqual(job.transcript, self.TRANSCRIPT)
        self.assertIsNone(job.error)
        self.assertEqual(self.acquirer.calls, ["video://abc"])
        self.assertEqual(self.recorder.states, [
            JobState.INITIALIZING, JobState.DOWNLOADING, JobState.UPLOADING,
            JobState.TRANSCRIBING, JobState.EXTRACTING, JobState.COMPLETED,
        ])
        self.assertEqual(self.recorder.percents[0], 0)
        self.assertEqual(self.recorder.events[-1], (job.id, 100, JobState.COMPLETED, None))
        self.assertTrue({0, 10, 40, 60, 70, 90, 100} <= set(self.recorder.percents))
        self.assert_monotonic()
        # audio is removed once uploaded
        self.assertEqual(list(Path(self.tmpdir.name).glob("*.mp3")), [])

    def test_long_transcript_is_chunked_and_merged(self):
        sentence = "x" * 99 + ". "
        transcript = sentence * 396
        self.assertEqual(len(transcript), 39996)
        self.config['chunk_max_tokens'] = 3400

        orch = self.orchestrator(
            [{"status": "completed", "text": transcript}],
            lambda req: json.dumps(chunk_document(chunk_position(req))),
        )
        job = orch.run("video://long")

        self.assertEqual(job.state, JobState.COMPLETED)
        self.assertEqual(len(self.openai.completions.calls), 3)
        content = job.extracted_content
        self.assertEqual(content["title"], "T0")
        self.assertEqual(content["summary"], "Summary 0")
        self.assertEqual([s["title"] for s in content["sections"]], ["S0", "S1", "S2"])
        self.assertEqual(content["keywords"], ["shared", "k0", "k1", "k2"])
        user_texts = [c['messages'][1]['content'] for c in self.openai.completions.calls]
        self.assertEqual("".join(user_texts), transcript)
        extracting = [e[1] for e in self.recorder.events if e[2] == JobState.EXTRACTING]
        self.assertEqual(extracting[0], 70)
        self.assertEqual(extracting[-1], 90)
        self.assertGreater(len(extracting), 3)
        self.assert_monotonic()

    def test_transcription_failure(self):
        orch = self.orchestrator(
            [{"status": "error", "error": "audio unintelligible"}],
            lambda req: json.dumps(chunk_document(0)),
        )
        job = orch.run("video://abc")

        self.assertEqual(job.state, JobState.ERROR)
        self.assertEqual(job.error.kind, ErrorKind.TRANSCRIPTION_FAILED)
        self.assertIn("audio unintelligible", job.error.message)
        self.assertIsNone(job.extracted_content)
        self.assertEqual(job.progress_pct, 60)
        self.assertEqual(self.openai.completions.calls, [])
        self.assertEqual(self.recorder.events[-1][2], JobState.ERROR)
        self.assert_monotonic()

    def test_schema_violation(self):
        invalid = chunk_document(0)
        del invalid["title"]
        orch = self.orchestrator(
            [{"status": "completed", "text": self.TRANSCRIPT}],
            lambda req: json.dumps(invalid),
        )
        job = orch.run("video://abc")

        self.assertEqual(job.state, JobState.ERROR)
        self.assertEqual(job.error.kind, ErrorKind.VALIDATION)
        self.assertIn("title: required field missing", job.error.message)
        self.assertIsNone(job.extracted_content)
        self.assertEqual(job.error.raw_content, invalid)
        # validation failures are never retried
        self.assertEqual(len(self.openai.completions.calls), 1)

    def test_unexpected_remote_status(self):
        orch = self.orchestrator([{"status": "paused"}], lambda req: "{}")
        job = orch.run("video://abc")

        self.assertEqual(job.error.kind, ErrorKind.TRANSCRIPTION_PROTOCOL)
        self.assertEqual(self.session.count("GET", "/transcript/t-1"), 1)

    def test_empty_transcript(self):
        orch = self.orchestrator([{"status": "completed", "text": "   "}], lambda req: "{}")
        job = orch.run("video://abc")

        self.assertEqual(job.error.kind, ErrorKind.TRANSCRIPTION_FAILED)
        self.assertEqual(job.error.code, "empty_transcript")
        self.assertEqual(self.openai.completions.calls, [])

    def test_acquisition_failure_retried(self):
        acquirer = FakeAcquirer(self.tmpdir.name, error=RuntimeError("network down"))
        orch = self.orchestrator([{"status": "completed", "text": "x."}], lambda req: "{}",
                                 acquirer=acquirer)
        job = orch.run("video://abc")

        self.assertEqual(job.state, JobState.ERROR)
        self.assertEqual(job.error.kind, ErrorKind.ACQUISITION)
        self.assertIn("network down", job.error.message)
        self.assertEqual(len(acquirer.calls), 3)
        self.assertEqual(self.session.calls, [])
        self.assertEqual(job.progress_pct, 10)

    def test_extraction_api_failure(self):
        orch = self.orchestrator(
            [{"status": "completed", "text": self.TRANSCRIPT}],
            lambda req: rate_limit_error(),
        )
        job = orch.run("video://abc")

        self.assertEqual(job.error.kind, ErrorKind.EXTRACTION_API)
        self.assertEqual(job.error.sub_kind, ApiErrorType.RATE_LIMIT)
        self.assertEqual(len(self.openai.completions.calls), 3)

    def test_cancel_while_transcribing(self):
        orch = self.orchestrator([{"status": "processing"}], lambda req: "{}",
                                 poll_interval=0.01)
        handle = orch.start("video://abc")
        self.assertTrue(self.recorder.wait_for(JobState.TRANSCRIBING))
        self.assertIn(handle.job_id, orch.active_jobs())
        self.assertFalse(orch.forget(handle.job_id))

        self.assertTrue(orch.cancel(handle.job_id))
        job = handle.wait(5)

        self.assertTrue(handle.done())
        self.assertEqual(job.state, JobState.ERROR)
        self.assertEqual(job.error.kind, ErrorKind.CANCELLED)
        self.assertFalse(orch.cancel(handle.job_id))
        self.assertEqual(orch.active_jobs(), [])
        self.assertIs(orch.get_handle(handle.job_id), handle)

    def test_concurrent_jobs_are_independent(self):
        orch = self.orchestrator(
            [{"status": "completed", "text": self.TRANSCRIPT}],
            lambda req: json.dumps(chunk_document(0)),
        )
        handles = [orch.start(f"video://{i}") for i in range(3)]
        jobs = [h.wait(5) for h in handles]

        self.assertEqual(len({j.id for j in jobs}), 3)
        self.assertTrue(all(j.state == JobState.COMPLETED for j in jobs))
        for job in jobs:
            percents = [e[1] for e in self.recorder.events if e[0] == job.id]
            self.assertEqual(percents, sorted(percents))
            self.assertEqual(percents[-1], 100)

    def test_malformed_chunk_is_validation_error(self):
        self.config['chunk_max_tokens'] = 3400

        def responder(req):
            index = chunk_position(req)
            document = chunk_document(index)
            if index == 1:
                document["sections"] = 5
                document["keywords"] = "shelf, wood"
            return json.dumps(document)

        orch = self.orchestrator([{"status": "completed", "text": self.LONG_TRANSCRIPT}],
                                 responder)
        job = orch.run("video://long")

        self.assertEqual(len(self.openai.completions.calls), 3)
        self.assertEqual(job.state, JobState.ERROR)
        self.assertEqual(job.error.kind, ErrorKind.VALIDATION)
        self.assertIn("sections: expected array, got number", job.error.message)
        self.assertIn("keywords: expected array, got string", job.error.message)
        self.assertEqual(job.error.raw_content["title"], "T0")
        self.assertIsNone(job.extracted_content)

    def test_empty_schema_accepts_any_object(self):
        orch = self.orchestrator([{"status": "completed", "text": self.TRANSCRIPT}],
                                 lambda req: json.dumps({"anything": 1}))
        job = orch.run("video://abc", {})

        self.assertEqual(job.state, JobState.COMPLETED)
        self.assertEqual(job.extracted_content, {"anything": 1})
        system = self.openai.completions.calls[0]['messages'][0]['content']
        self.assertNotIn('"sections"', system)

    def test_forget_finished_jobs(self):
        orch = self.orchestrator([{"status": "completed", "text": self.TRANSCRIPT}],
                                 lambda req: json.dumps(chunk_document(0)))
        first = orch.run("video://1")
        self.assertTrue(orch.forget(first.id))
        self.assertIsNone(orch.get_handle(first.id))
        self.assertFalse(orch.forget(first.id))

        handles = [orch.start(f"video://{i}") for i in range(3)]
        for handle in handles:
            handle.wait(5)
        self.assertEqual(orch.forget_finished(), 3)
        self.assertTrue(all(orch.get_handle(h.job_id) is None for h in handles))
        self.assertEqual(orch.forget_finished(), 0)
        # a dropped handle still answers for its job
        self.assertEqual(handles[0].job.state, JobState.COMPLETED)

    def test_store_records_job(self):
        db = Database(Path(self.tmpdir.name) / "jobs.db")
        try:
            document = chunk_document(0)
            orch = self.orchestrator(
                [{"status": "completed", "text": self.TRANSCRIPT}],
                lambda req: json.dumps(document),
                store=db,
            )
            job = orch.run("video://abc")
            stored = db.get_job(job.id)
        finally:
            db.close()

        self.assertEqual(stored.state, JobState.COMPLETED)
        self.assertEqual(stored.progress_pct, 100)
        self.assertEqual(stored.transcript, self.TRANSCRIPT)
        self.assertEqual(stored.extracted_content, document)

    def test_store_keeps_error_without_content(self):
        db = Database(Path(self.tmpdir.name) / "jobs.db")
        try:
            invalid = chunk_document(0)
            invalid["difficulty"] = "expert"
            orch = self.orchestrator(
                [{"status": "completed", "text": self.TRANSCRIPT}],
                lambda req: json.dumps(invalid),
                store=db,
            )
            job = orch.run("video://abc")
            stored = db.get_job(job.id)
        finally:
            db.close()

        self.assertEqual(stored.state, JobState.ERROR)
        self.assertEqual(stored.error.kind, ErrorKind.VALIDATION)
        self.assertIn("difficulty", stored.error.message)
        self.assertIsNone(stored.extracted_content)
        self.assertEqual(stored.error.raw_content, invalid)


if __name__ == "__main__":
    unittest.main()
