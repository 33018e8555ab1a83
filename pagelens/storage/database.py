"""
Durable store for pagelens.
Handles SQLite connection, schema, and crawl-job persistence.

The store only ever receives plain values and snapshots; the live CrawlJob
object stays with its registry entry. Each write is an independent
statement (autocommit), so readers may observe a job mid-update.
"""

import asyncio
import json
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import aiosqlite

from pagelens.ocr.keywords import Keyword
from pagelens.ocr.recognition import RecognitionResult
from pagelens.scheduler.models import (
    ACTIVE_STATUSES,
    Artifact,
    CrawlError,
    JobSnapshot,
    JobStatus,
    utc_now,
)
from pagelens.utils.config import get_settings
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)

# Columns of crawl_jobs that map one-to-one onto JobSnapshot fields
_JOB_COLUMNS = (
    "pages_processed",
    "screenshot_count",
    "error_count",
    "visited_count",
    "created_at",
    "started_at",
    "paused_at",
    "resumed_at",
    "completed_at",
    "failed_at",
    "stopped_at",
    "duration_seconds",
    "error_message",
)


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str | Path | None = None):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file. If None, uses settings.
        """
        if db_path is None:
            db_path = get_settings().storage.database_path

        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to the database."""
        if self._connection is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Auto-commit mode
        )

        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute("PRAGMA journal_mode = WAL")
        await self._connection.execute("PRAGMA synchronous = NORMAL")

        self._connection.row_factory = aiosqlite.Row

        logger.info("Database connected", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def initialize_schema(self) -> None:
        """Initialize database schema from SQL file."""
        schema_path = Path(__file__).parent / "schema.sql"

        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        schema_sql = schema_path.read_text(encoding="utf-8")

        async with self._lock:
            await self._connection.executescript(schema_sql)

        logger.info("Database schema initialized")

    async def execute(
        self,
        sql: str,
        parameters: tuple | dict | None = None,
    ) -> aiosqlite.Cursor:
        """Execute a SQL statement.

        Args:
            sql: SQL statement to execute.
            parameters: Optional parameters for the statement.

        Returns:
            Cursor with results.
        """
        if self._connection is None:
            raise RuntimeError("Database is not connected")
        async with self._lock:
            if parameters:
                return await self._connection.execute(sql, parameters)
            return await self._connection.execute(sql)

    async def fetch_one(
        self,
        sql: str,
        parameters: tuple | dict | None = None,
    ) -> dict[str, Any] | None:
        """Fetch a single row as a dict, or None."""
        cursor = await self.execute(sql, parameters)
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def fetch_all(
        self,
        sql: str,
        parameters: tuple | dict | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch all rows as dicts."""
        cursor = await self.execute(sql, parameters)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def insert(
        self,
        table: str,
        data: dict[str, Any],
        *,
        or_ignore: bool = False,
    ) -> int:
        """Insert a row into a table.

        Args:
            table: Table name.
            data: Column-value mapping.
            or_ignore: Use INSERT OR IGNORE.

        Returns:
            Number of inserted rows (0 when ignored).
        """
        columns = ", ".join(data.keys())
        placeholders = ", ".join(["?" for _ in data])

        verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
        sql = f"{verb} INTO {table} ({columns}) VALUES ({placeholders})"

        cursor = await self.execute(sql, tuple(data.values()))
        return cursor.rowcount

    async def update(
        self,
        table: str,
        data: dict[str, Any],
        where: str,
        where_params: tuple | None = None,
    ) -> int:
        """Update rows in a table.

        Args:
            table: Table name.
            data: Column-value mapping to update.
            where: WHERE clause.
            where_params: Parameters for WHERE clause.

        Returns:
            Number of affected rows.
        """
        set_clause = ", ".join([f"{k} = ?" for k in data.keys()])
        sql = f"UPDATE {table} SET {set_clause} WHERE {where}"

        params = list(data.values())
        if where_params:
            params.extend(where_params)

        cursor = await self.execute(sql, tuple(params))
        return cursor.rowcount

    # ============================================================
    # Crawl jobs
    # ============================================================

    async def create_job(self, snapshot: JobSnapshot) -> None:
        """Persist a newly created job.

        Args:
            snapshot: Initial job snapshot.
        """
        data = {
            "id": snapshot.job_id,
            "url": snapshot.url,
            "max_depth": snapshot.max_depth,
            "status": snapshot.status.value,
            "options_json": json.dumps(snapshot.options),
        }
        for column in _JOB_COLUMNS:
            data[column] = getattr(snapshot, column)
        if data["created_at"] is None:
            data["created_at"] = utc_now()

        await self.insert("crawl_jobs", data)
        logger.info("Crawl job created", job_id=snapshot.job_id, url=snapshot.url)

    async def update_job(self, job_id: str, fields: dict[str, Any]) -> int:
        """Apply a partial update to a stored job.

        Args:
            job_id: Job ID.
            fields: Column-value mapping; JobStatus values are stored by value.

        Returns:
            Number of affected rows (0 if the job is unknown).
        """
        if not fields:
            return 0
        data = {
            key: value.value if isinstance(value, JobStatus) else value
            for key, value in fields.items()
        }
        return await self.update("crawl_jobs", data, "id = ?", (job_id,))

    async def save_snapshot(self, snapshot: JobSnapshot) -> int:
        """Overwrite the stored state of a job with a full snapshot."""
        fields: dict[str, Any] = {"status": snapshot.status}
        for column in _JOB_COLUMNS:
            if column == "created_at":
                continue
            fields[column] = getattr(snapshot, column)
        return await self.update_job(snapshot.job_id, fields)

    async def append_visited_url(self, job_id: str, url: str, depth: int) -> bool:
        """Record a dequeued URL.

        Returns:
            True if the URL was new for this job.
        """
        inserted = await self.insert(
            "visited_urls",
            {"job_id": job_id, "url": url, "depth": depth, "visited_at": utc_now()},
            or_ignore=True,
        )
        if inserted:
            await self.execute(
                "UPDATE crawl_jobs SET visited_count = visited_count + 1 WHERE id = ?",
                (job_id,),
            )
        return bool(inserted)

    async def append_error(self, job_id: str, error: CrawlError) -> None:
        """Record an error against a job."""
        await self.insert(
            "job_errors",
            {
                "job_id": job_id,
                "url": error.url,
                "stage": error.stage,
                "message": error.message,
                "fatal": 1 if error.fatal else 0,
                "created_at": error.timestamp,
            },
        )

    async def append_artifact(self, job_id: str, artifact: Artifact) -> None:
        """Record a captured page."""
        await self.insert(
            "artifacts",
            {
                "id": artifact.id,
                "job_id": job_id,
                "url": artifact.url,
                "depth": artifact.depth,
                "screenshot_ref": artifact.screenshot_ref,
                "recognition_ref": artifact.recognition_ref,
                "title": artifact.title,
                "created_at": artifact.timestamp,
            },
        )

    async def save_recognition(
        self,
        job_id: str,
        url: str,
        screenshot_ref: str,
        result: RecognitionResult,
        keywords: list[Keyword] | None = None,
    ) -> str:
        """Store OCR output for a screenshot.

        Returns:
            Recognition ID.
        """
        recognition_id = str(uuid.uuid4())
        await self.insert(
            "recognitions",
            {
                "id": recognition_id,
                "job_id": job_id,
                "url": url,
                "screenshot_ref": screenshot_ref,
                "text": result.text,
                "confidence": result.confidence,
                "language": result.language,
                "error": result.error,
                "keywords_json": json.dumps([k.to_dict() for k in keywords or []]),
                "created_at": utc_now(),
            },
        )
        return recognition_id

    async def record_keywords(self, job_id: str, keywords: Iterable[Keyword]) -> int:
        """Fold keywords extracted for a job into global keyword tracking.

        Returns:
            Number of keywords recorded.
        """
        now = utc_now()
        count = 0
        for keyword in keywords:
            await self.execute(
                """
                INSERT INTO keywords (word, frequency, total_score, first_seen_at, last_seen_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(word) DO UPDATE SET
                    frequency = frequency + excluded.frequency,
                    total_score = total_score + excluded.total_score,
                    last_seen_at = excluded.last_seen_at
                """,
                (keyword.word, keyword.frequency, keyword.score, now, now),
            )
            await self.insert(
                "keyword_jobs",
                {"word": keyword.word, "job_id": job_id},
                or_ignore=True,
            )
            count += 1
        return count

    # ============================================================
    # Queries
    # ============================================================

    async def find_job_by_id(self, job_id: str) -> JobSnapshot | None:
        """Load the stored snapshot of a job."""
        row = await self.fetch_one("SELECT * FROM crawl_jobs WHERE id = ?", (job_id,))
        return _row_to_snapshot(row) if row else None

    async def list_jobs(
        self,
        active_only: bool = False,
        limit: int = 50,
    ) -> list[JobSnapshot]:
        """List stored jobs, newest first."""
        if active_only:
            statuses = [s.value for s in ACTIVE_STATUSES]
            placeholders = ", ".join("?" for _ in statuses)
            rows = await self.fetch_all(
                f"SELECT * FROM crawl_jobs WHERE status IN ({placeholders}) "
                "ORDER BY created_at DESC LIMIT ?",
                (*statuses, limit),
            )
        else:
            rows = await self.fetch_all(
                "SELECT * FROM crawl_jobs ORDER BY created_at DESC LIMIT ?",
                (limit,),
            )
        return [_row_to_snapshot(row) for row in rows]

    async def get_job_errors(self, job_id: str) -> list[CrawlError]:
        """Errors recorded for a job, oldest first."""
        rows = await self.fetch_all(
            "SELECT * FROM job_errors WHERE job_id = ? ORDER BY id",
            (job_id,),
        )
        return [
            CrawlError(
                url=row["url"],
                message=row["message"],
                stage=row["stage"],
                fatal=bool(row["fatal"]),
                timestamp=row["created_at"],
            )
            for row in rows
        ]

    async def get_job_logs(
        self,
        job_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Activity log of a job built from visits, errors and OCR results.

        Returns:
            Entries {level, message, timestamp, type, url}, newest first.
        """
        return await self.fetch_all(
            """
            SELECT level, message, timestamp, type, url FROM (
                SELECT 'info' AS level,
                       'Visited ' || url AS message,
                       visited_at AS timestamp,
                       'url' AS type,
                       url
                FROM visited_urls WHERE job_id = ?
                UNION ALL
                SELECT CASE WHEN fatal = 1 THEN 'error' ELSE 'warning' END,
                       stage || ' failed for ' || url || ': ' || message,
                       created_at,
                       'error',
                       url
                FROM job_errors WHERE job_id = ?
                UNION ALL
                SELECT 'info',
                       'OCR completed for ' || url || ' (confidence ' || confidence || ')',
                       created_at,
                       'ocr',
                       url
                FROM recognitions WHERE job_id = ? AND error IS NULL
            )
            ORDER BY timestamp DESC
            LIMIT ? OFFSET ?
            """,
            (job_id, job_id, job_id, limit, offset),
        )

    async def get_artifact(self, job_id: str, artifact_id: str) -> Artifact | None:
        """Load one artifact of a job."""
        row = await self.fetch_one(
            "SELECT * FROM artifacts WHERE job_id = ? AND id = ?",
            (job_id, artifact_id),
        )
        return _row_to_artifact(row) if row else None

    async def get_latest_artifact(self, job_id: str) -> Artifact | None:
        """Most recently captured artifact of a job."""
        row = await self.fetch_one(
            "SELECT * FROM artifacts WHERE job_id = ? ORDER BY created_at DESC LIMIT 1",
            (job_id,),
        )
        return _row_to_artifact(row) if row else None

    async def list_recognitions(
        self,
        job_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """OCR results of a job, newest first, with keywords decoded."""
        rows = await self.fetch_all(
            "SELECT * FROM recognitions WHERE job_id = ? "
            "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
            (job_id, limit, offset),
        )
        return [_decode_recognition(row) for row in rows]

    async def get_recognition(self, job_id: str, recognition_id: str) -> dict[str, Any] | None:
        """Load one OCR result of a job with its keywords decoded."""
        row = await self.fetch_one(
            "SELECT * FROM recognitions WHERE job_id = ? AND id = ?",
            (job_id, recognition_id),
        )
        return _decode_recognition(row) if row else None

    async def top_keywords(self, limit: int = 20) -> list[dict[str, Any]]:
        """Globally most frequent keywords."""
        return await self.fetch_all(
            """
            SELECT k.word,
                   k.frequency,
                   k.total_score,
                   ROUND(k.total_score / MAX(k.frequency, 1), 3) AS average_score,
                   k.first_seen_at,
                   k.last_seen_at,
                   (SELECT COUNT(*) FROM keyword_jobs kj WHERE kj.word = k.word) AS job_count
            FROM keywords k
            ORDER BY k.frequency DESC, k.total_score DESC
            LIMIT ?
            """,
            (limit,),
        )

    async def mark_interrupted_jobs(self) -> int:
        """Fail jobs left non-terminal by a previous process.

        Returns:
            Number of jobs reset.
        """
        statuses = [s.value for s in ACTIVE_STATUSES]
        placeholders = ", ".join("?" for _ in statuses)
        cursor = await self.execute(
            f"UPDATE crawl_jobs SET status = ?, failed_at = ?, error_message = ? "
            f"WHERE status IN ({placeholders})",
            (JobStatus.FAILED.value, utc_now(), "server_restart_reset", *statuses),
        )
        if cursor.rowcount:
            logger.warning("Reset interrupted crawl jobs", count=cursor.rowcount)
        return cursor.rowcount


def _row_to_snapshot(row: dict[str, Any]) -> JobSnapshot:
    return JobSnapshot(
        job_id=row["id"],
        url=row["url"],
        max_depth=row["max_depth"],
        status=JobStatus(row["status"]),
        options=json.loads(row["options_json"] or "{}"),
        **{column: row[column] for column in _JOB_COLUMNS},
    )


def _row_to_artifact(row: dict[str, Any]) -> Artifact:
    return Artifact(
        id=row["id"],
        url=row["url"],
        depth=row["depth"],
        screenshot_ref=row["screenshot_ref"],
        recognition_ref=row["recognition_ref"],
        title=row["title"],
        timestamp=row["created_at"],
    )


def _decode_recognition(row: dict[str, Any]) -> dict[str, Any]:
    row["keywords"] = json.loads(row.pop("keywords_json") or "[]")
    return row


# Global database instance
_db: Database | None = None


async def get_database() -> Database:
    """Get the global database instance.

    Returns:
        Database instance.
    """
    global _db
    if _db is None:
        _db = Database()
        await _db.connect()
        await _db.initialize_schema()
    return _db


async def close_database() -> None:
    """Close the global database instance."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
