"""
SQLite job store for VideoDocs.
Thread-safe via check_same_thread=False + explicit locking.
Doubles as a progress sink: pass ``db.on_progress`` to the orchestrator.
"""

import json
import sqlite3
import threading
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path

from videodocs.core.constants import DB_PATH
from videodocs.core.models import Job, ErrorInfo

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    source_ref TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'initializing',
    progress_pct INTEGER DEFAULT 0,
    transcript TEXT,
    extracted_content TEXT,
    error_kind TEXT,
    error_message TEXT,
    error_code TEXT,
    error_sub_kind TEXT,
    error_raw TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_jobs_state ON jobs(state);
"""


class Database:
    """SQLite database wrapper holding one row per job."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._ensure_dirs()
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        data = dict(row)
        error = None
        if data.get('error_kind'):
            error = ErrorInfo(
                kind=data['error_kind'],
                message=data.get('error_message') or "",
                code=data.get('error_code'),
                sub_kind=data.get('error_sub_kind'),
                raw_content=json.loads(data['error_raw']) if data.get('error_raw') else None,
            )
        content = data.get('extracted_content')
        return Job(
            id=data['id'],
            source_ref=data['source_ref'],
            state=data['state'],
            progress_pct=data['progress_pct'] or 0,
            transcript=data.get('transcript'),
            extracted_content=json.loads(content) if content else None,
            error=error,
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
        )

    # ── Job CRUD ──────────────────────────────────────────────────────

    def create_job(self, source_ref: str, job_id: str | None = None) -> Job:
        now = self._now()
        job = Job(
            id=job_id or str(uuid.uuid4()),
            source_ref=source_ref,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.conn.execute(
                """INSERT INTO jobs
                   (id, source_ref, state, progress_pct, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (job.id, job.source_ref, job.state, job.progress_pct,
                 job.created_at, job.updated_at),
            )
            self.conn.commit()
        return job

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def get_all_jobs(self) -> list[Job]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC"
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def update_job(self, job_id: str, **kwargs):
        kwargs['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [job_id]
        with self._lock:
            self.conn.execute(
                f"UPDATE jobs SET {sets} WHERE id = ?", vals
            )
            self.conn.commit()

    def delete_job(self, job_id: str):
        with self._lock:
            self.conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            self.conn.commit()

    # ── Pipeline writes ───────────────────────────────────────────────

    def on_progress(self, job_id: str, percent: int, state: str,
                    error: ErrorInfo | None = None):
        """Progress sink: state and percent land in one UPDATE."""
        fields = {'state': state, 'progress_pct': percent}
        if error is not None:
            fields.update(self._error_fields(error))
        self.update_job(job_id, **fields)

    def record_transcript(self, job_id: str, text: str):
        self.update_job(job_id, transcript=text)

    def record_extracted_content(self, job_id: str, content: dict):
        """Only ever called with content that passed schema validation."""
        self.update_job(job_id, extracted_content=json.dumps(content))

    @staticmethod
    def _error_fields(error: ErrorInfo) -> dict:
        return {
            'error_kind': error.kind,
            'error_message': error.message,
            'error_code': error.code,
            'error_sub_kind': error.sub_kind,
            'error_raw': json.dumps(error.raw_content, default=str) if error.raw_content is not None else None,
        }
