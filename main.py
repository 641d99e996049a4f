#!/usr/bin/env python3
"""
VideoDocs v1.0.0: command-line entry point.
Turns one video reference into a structured, schema-validated JSON document.

Usage:
    videodocs https://www.youtube.com/watch?v=... --output doc.json
    videodocs --check-keys
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from videodocs.core.constants import APP_NAME, APP_VERSION, LOG_DIR, JobState
from videodocs.core.config import AppConfig
from videodocs.core.db_sqlite import Database
from videodocs.core.download_audio import YtDlpAudioAcquirer
from videodocs.core.error_codes import JobError
from videodocs.core.extract_openai import ExtractionEngine
from videodocs.core.orchestrator import JobOrchestrator
from videodocs.core.schemas import DEFAULT_OUTPUT_SCHEMA, load_schema
from videodocs.core.security_utils import find_executable, redact
from videodocs.core.transcribe_assemblyai import TranscriptionClient, verify_api_key

logger = logging.getLogger("videodocs")

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_USAGE = 2


def setup_logging(verbose: bool = False):
    """Log to ~/.videodocs/logs/app.log, and to stderr with --verbose."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    handlers = [logging.FileHandler(LOG_DIR / "app.log", encoding="utf-8")]
    if verbose:
        handlers.append(logging.StreamHandler(sys.stderr))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="videodocs",
        description="Transcribe a video and extract a structured document from it.",
    )
    parser.add_argument("source_ref", nargs="?", help="video URL or reference")
    parser.add_argument("--schema", type=Path, help="output schema JSON file")
    parser.add_argument("--db", type=Path, help="job database path")
    parser.add_argument("--config", type=Path, help="config JSON path")
    parser.add_argument("--output", "-o", type=Path, help="write the document here instead of stdout")
    parser.add_argument("--check-keys", action="store_true", help="verify API keys and tools, then exit")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def check_keys(config: AppConfig) -> int:
    ok = True

    assembly_key = config.assemblyai_api_key
    if assembly_key:
        verified, message = verify_api_key(assembly_key)
        print(f"AssemblyAI key {redact(assembly_key)}: {message}")
        ok = ok and verified
    else:
        print("AssemblyAI key: not set (ASSEMBLY_AI_API_KEY)")
        ok = False

    print(f"OpenAI key: {redact(config.openai_api_key)}")
    ok = ok and bool(config.openai_api_key)

    ytdlp = find_executable("yt-dlp")
    print(f"yt-dlp: {ytdlp or 'not found'}")
    ok = ok and bool(ytdlp)

    return EXIT_OK if ok else EXIT_JOB_FAILED


def build_orchestrator(config: AppConfig, db: Database, on_progress=None) -> JobOrchestrator:
    settings = config.as_dict()
    transcriber = TranscriptionClient(
        config.assemblyai_api_key,
        poll_interval=settings['poll_interval_sec'],
        max_attempts=settings['retry_max_attempts'],
        initial_delay=settings['retry_initial_delay_sec'],
        speaker_labels=settings['speaker_labels'],
    )
    extractor = ExtractionEngine(
        api_key=config.openai_api_key,
        model=settings['openai_model'],
        max_tokens=settings['openai_max_tokens'],
        temperature=settings['openai_temperature'],
        timeout=settings['openai_timeout_sec'],
        max_attempts=settings['retry_max_attempts'],
        initial_delay=settings['retry_initial_delay_sec'],
        chunk_max_tokens=settings['chunk_max_tokens'],
        concurrency=settings['extraction_concurrency'],
    )
    return JobOrchestrator(YtDlpAudioAcquirer(), transcriber, extractor,
                           on_progress=on_progress, store=db, config=settings)


def print_progress(job_id: str, percent: int, state: str, error=None):
    line = f"[{job_id[:8]}] {percent:3d}% {state}"
    if error is not None:
        line += f" ({error.kind}: {error.message})"
    print(line, file=sys.stderr, flush=True)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("=" * 60)

    config = AppConfig(args.config)

    if args.check_keys:
        return check_keys(config)

    if not args.source_ref:
        print("error: a video reference is required", file=sys.stderr)
        return EXIT_USAGE

    try:
        schema = load_schema(args.schema) if args.schema else DEFAULT_OUTPUT_SCHEMA
    except (OSError, ValueError) as e:
        print(f"error: cannot read schema: {e}", file=sys.stderr)
        return EXIT_USAGE

    db = Database(args.db)
    try:
        orchestrator = build_orchestrator(config, db, on_progress=print_progress)
    except JobError as e:
        print(f"error: {e.message}", file=sys.stderr)
        db.close()
        return EXIT_USAGE

    try:
        job = orchestrator.run(args.source_ref, schema)
    except KeyboardInterrupt:
        logger.info("Interrupted; no result written")
        return EXIT_JOB_FAILED
    finally:
        db.close()

    if job.state != JobState.COMPLETED:
        logger.error("Job %s ended in %s", job.id, job.state)
        return EXIT_JOB_FAILED

    document = json.dumps(job.extracted_content, indent=2, ensure_ascii=False)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(document + "\n", encoding="utf-8")
        logger.info("Wrote document: %s", args.output)
    else:
        print(document)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
