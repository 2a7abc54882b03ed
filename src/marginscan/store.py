"""SQLite-backed persistence for scan results and scan job status."""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .models import ScanJob, ScanResult

DEFAULT_DB_PATH = "margin_scan.db"
DEFAULT_TENANT = "default"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS scan_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant TEXT NOT NULL,
    scan_date TEXT NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_scan_results_tenant ON scan_results (tenant, id);

CREATE TABLE IF NOT EXISTS scan_jobs (
    tenant TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    data TEXT NOT NULL
);
"""


class ScanStore:
    """
    SQLite store for scan results and the current job status of each tenant.
    Results are append-only; the job row per tenant is overwritten on every save.
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH, tenant: str = DEFAULT_TENANT):
        self._db_path = Path(db_path)
        self._tenant = tenant
        self._ensure_schema()

    @property
    def tenant(self) -> str:
        return self._tenant

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection that commits on success and is always closed."""
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            conn.executescript(_SCHEMA)

    def save_result(self, result: ScanResult) -> None:
        """Append a completed scan result."""
        data = result.model_dump(mode="json", by_alias=True)
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO scan_results (tenant, scan_date, data) VALUES (?, ?, ?)",
                (self._tenant, data["scanDate"], json.dumps(data)),
            )

    def load_last_result(self) -> Optional[ScanResult]:
        """Return the most recently saved result, or None if no scan has completed."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT data FROM scan_results WHERE tenant = ? ORDER BY id DESC LIMIT 1",
                (self._tenant,),
            ).fetchone()
        if not row:
            return None
        return ScanResult.model_validate(json.loads(row["data"]))

    def save_job_status(self, job: ScanJob) -> None:
        """Insert or replace the tenant's job status."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO scan_jobs (tenant, status, data) VALUES (?, ?, ?)
                ON CONFLICT(tenant) DO UPDATE SET status = excluded.status, data = excluded.data
                """,
                (self._tenant, job.status.value, json.dumps(job.model_dump(mode="json", by_alias=True))),
            )

    def load_job_status(self) -> Optional[ScanJob]:
        """Return the tenant's last saved job status, or None if no scan has started."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT data FROM scan_jobs WHERE tenant = ?",
                (self._tenant,),
            ).fetchone()
        if not row:
            return None
        return ScanJob.model_validate(json.loads(row["data"]))
