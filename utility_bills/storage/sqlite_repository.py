"""
SQLite-backed bill job repository for single-instance deployments.

Each call opens its own connection and runs in a worker thread so that the
event loop is never blocked; SQLite's locking serializes writers. The
atomic claim is a single conditional ``UPDATE``.
"""

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from utility_bills.errors import JobNotFoundError
from utility_bills.models import BillJob, BillStatus, utcnow

from .base import JobRepository

_COLUMNS: tuple[str, ...] = tuple(BillJob.model_fields)
_JSON_COLUMNS = {"extracted_json"}
_DATETIME_COLUMNS = {"created_at", "updated_at"}

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS utility_bills (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL,
        file_url TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'PROCESSING',
        processing_stage TEXT NOT NULL DEFAULT 'DOWNLOAD',
        vendor_name TEXT,
        bill_type TEXT,
        amount_due INTEGER,
        due_date TEXT,
        billing_period_start TEXT,
        billing_period_end TEXT,
        customer_no TEXT,
        payment_account TEXT,
        raw_ocr_text TEXT,
        ocr_mode TEXT,
        template_id TEXT,
        confidence REAL,
        extracted_json TEXT,
        last_error_code TEXT,
        last_error_message TEXT,
        processed_file_url TEXT,
        claim_token TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK (status IN ('PROCESSING', 'NEEDS_REVIEW', 'CONFIRMED', 'REJECTED'))
    )
"""


def _to_db(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in _JSON_COLUMNS:
        return json.dumps(value, ensure_ascii=False)
    if column in _DATETIME_COLUMNS:
        return value.isoformat() if isinstance(value, datetime) else str(value)
    if hasattr(value, "value"):
        return value.value
    return value


def _from_row(row: sqlite3.Row) -> BillJob:
    data = dict(row)
    for column in _JSON_COLUMNS:
        if data.get(column) is not None:
            data[column] = json.loads(data[column])
    return BillJob.model_validate(data)


class SQLiteJobRepository(JobRepository):
    """
    Job repository persisting bills in a SQLite database file.

    Args:
        db_path: Path to the SQLite database file (created if missing).
    """

    def __init__(self, db_path: str = "data/utility_bills.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute(_SCHEMA)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_company_created "
                "ON utility_bills(company_id, created_at)"
            )
            conn.commit()
        finally:
            conn.close()

    def _insert(self, job: BillJob) -> None:
        values = [_to_db(col, getattr(job, col)) for col in _COLUMNS]
        placeholders = ", ".join("?" for _ in _COLUMNS)
        conn = self._get_connection()
        try:
            conn.execute(
                f"INSERT INTO utility_bills ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
            conn.commit()
        finally:
            conn.close()

    def _select(self, job_id: str) -> BillJob | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM utility_bills WHERE id = ?", (job_id,)
            ).fetchone()
        finally:
            conn.close()
        return _from_row(row) if row else None

    def _write(self, job_id: str, fields: dict[str, Any], guard: str, params: list[Any]) -> bool:
        unknown = set(fields) - set(_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown bill job columns: {sorted(unknown)}")

        fields = {**fields, "updated_at": utcnow()}
        assignments = ", ".join(f"{col} = ?" for col in fields)
        values = [_to_db(col, value) for col, value in fields.items()]

        conn = self._get_connection()
        try:
            cursor = conn.execute(
                f"UPDATE utility_bills SET {assignments} WHERE id = ?{guard}",
                [*values, job_id, *params],
            )
            conn.commit()
        finally:
            conn.close()
        return cursor.rowcount == 1

    def _update(self, job_id: str, fields: dict[str, Any]) -> BillJob:
        job = self._select(job_id) if self._write(job_id, fields, "", []) else None
        if job is None:
            raise JobNotFoundError(f"Bill job not found: {job_id}")
        return job

    def _update_claimed(self, job_id: str, token: str, fields: dict[str, Any]) -> BillJob | None:
        guard = " AND claim_token = ? AND status = ?"
        if not self._write(job_id, fields, guard, [token, BillStatus.PROCESSING.value]):
            return None
        return self._select(job_id)

    def _claim(self, job_id: str, token: str) -> bool:
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                "UPDATE utility_bills SET claim_token = ?, updated_at = ? "
                "WHERE id = ? AND status = ? AND claim_token IS NULL",
                (token, utcnow().isoformat(), job_id, BillStatus.PROCESSING.value),
            )
            conn.commit()
        finally:
            conn.close()
        return cursor.rowcount == 1

    def _list(self, company_id: str) -> list[BillJob]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM utility_bills WHERE company_id = ? ORDER BY created_at DESC",
                (company_id,),
            ).fetchall()
        finally:
            conn.close()
        return [_from_row(row) for row in rows]

    async def create(self, job: BillJob) -> BillJob:
        await asyncio.to_thread(self._insert, job)
        return job

    async def get_by_id(self, job_id: str) -> BillJob | None:
        return await asyncio.to_thread(self._select, job_id)

    async def update(self, job_id: str, fields: dict[str, Any]) -> BillJob:
        return await asyncio.to_thread(self._update, job_id, fields)

    async def claim(self, job_id: str, token: str) -> bool:
        return await asyncio.to_thread(self._claim, job_id, token)

    async def update_claimed(
        self, job_id: str, token: str, fields: dict[str, Any]
    ) -> BillJob | None:
        return await asyncio.to_thread(self._update_claimed, job_id, token, fields)

    async def list_by_company(self, company_id: str) -> list[BillJob]:
        return await asyncio.to_thread(self._list, company_id)
