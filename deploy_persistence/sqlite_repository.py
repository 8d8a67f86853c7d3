"""
SQLite implementation of the job repository.

Uses aiosqlite for async operations. Can be easily replaced with
PostgreSQL/MySQL implementations.
"""

from collections.abc import Iterable
from datetime import datetime

import aiosqlite

from deploy_common.models import ACTIVE_STATUSES, Job, JobStatus, LogEntry
from deploy_common.repository import JobRepository

JOB_COLUMNS = (
    "id, owner_id, repository_url, branch, status, created_at, result_url, project_name"
)


def _row_to_job(row: tuple) -> Job:
    (
        job_id,
        owner_id,
        repository_url,
        branch,
        status,
        created_at_str,
        result_url,
        project_name,
    ) = row
    return Job(
        id=job_id,
        owner_id=owner_id,
        repository_url=repository_url,
        branch=branch,
        status=JobStatus(status),
        created_at=datetime.fromisoformat(created_at_str),
        result_url=result_url,
        project_name=project_name,
    )


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


class SQLiteJobRepository(JobRepository):
    """
    SQLite-based job storage implementation.

    Uses a single database file with multiple tables:
    - jobs: Job metadata and status
    - build_logs: Append-only build output lines with foreign key to jobs
    - secrets: Per-job environment variables injected into builds
    """

    def __init__(self, db_path: str = "deploy_jobs.db"):
        """
        Initialize the SQLite repository.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path, timeout=30)
            await self._connection.execute("PRAGMA foreign_keys = ON")
            # Intake and worker processes share the file
            await self._connection.execute("PRAGMA journal_mode = WAL")
        return self._connection

    async def initialize(self) -> None:
        """
        Create database tables if they don't exist.

        Schema:
        - jobs table: Job metadata, one row per deployment
        - build_logs table: Log lines ordered by timestamp
        - secrets table: Key/value pairs unique per job
        """
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                repository_url TEXT NOT NULL,
                branch TEXT NOT NULL DEFAULT 'main',
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                result_url TEXT,
                project_name TEXT
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_owner_id
            ON jobs(owner_id)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS build_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_build_logs_job_id
            ON build_logs(job_id)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS secrets (
                job_id TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (job_id, key),
                FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
            )
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def create_job(self, job: Job) -> None:
        conn = await self._get_connection()

        await conn.execute(
            f"""
            INSERT INTO jobs ({JOB_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.owner_id,
                job.repository_url,
                job.branch,
                job.status.value,
                job.created_at.isoformat(),
                job.result_url,
                job.project_name,
            ),
        )
        await conn.commit()

    async def get_job(self, job_id: str) -> Job | None:
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"SELECT {JOB_COLUMNS} FROM jobs WHERE id = ?",
            (job_id,),
        )
        row = await cursor.fetchone()

        if row is None:
            return None
        return _row_to_job(row)

    async def job_exists(self, job_id: str) -> bool:
        conn = await self._get_connection()

        cursor = await conn.execute("SELECT 1 FROM jobs WHERE id = ?", (job_id,))
        return await cursor.fetchone() is not None

    async def transition_status(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        new_status: JobStatus,
        result_url: str | None = None,
    ) -> bool:
        """
        Compare-and-set the job status in a single UPDATE statement.

        Returns:
            True if the row was updated, False if the job was not in an
            expected state (or does not exist)
        """
        conn = await self._get_connection()

        expected_values = [status.value for status in expected]
        updates = ["status = ?"]
        params: list = [new_status.value]

        if result_url is not None:
            updates.append("result_url = ?")
            params.append(result_url)

        params.append(job_id)
        params.extend(expected_values)

        sql = (
            f"UPDATE jobs SET {', '.join(updates)} "
            f"WHERE id = ? AND status IN ({_placeholders(expected_values)})"
        )
        cursor = await conn.execute(sql, params)
        await conn.commit()
        return cursor.rowcount == 1

    async def count_owner_jobs(self, owner_id: str) -> int:
        conn = await self._get_connection()

        cursor = await conn.execute(
            "SELECT COUNT(*) FROM jobs WHERE owner_id = ?", (owner_id,)
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def find_owner_jobs(
        self, owner_id: str, statuses: Iterable[JobStatus] | None = None
    ) -> list[Job]:
        conn = await self._get_connection()

        sql = f"SELECT {JOB_COLUMNS} FROM jobs WHERE owner_id = ?"
        params: list = [owner_id]
        if statuses is not None:
            values = [status.value for status in statuses]
            sql += f" AND status IN ({_placeholders(values)})"
            params.extend(values)
        sql += " ORDER BY created_at DESC"

        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [_row_to_job(row) for row in rows]

    async def find_active_job(
        self, owner_id: str, repository_url: str, branch: str
    ) -> Job | None:
        conn = await self._get_connection()

        values = [status.value for status in ACTIVE_STATUSES]
        cursor = await conn.execute(
            f"""
            SELECT {JOB_COLUMNS}
            FROM jobs
            WHERE owner_id = ? AND repository_url = ? AND branch = ?
              AND status IN ({_placeholders(values)})
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (owner_id, repository_url, branch, *values),
        )
        row = await cursor.fetchone()

        if row is None:
            return None
        return _row_to_job(row)

    async def list_jobs(self) -> list[Job]:
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"SELECT {JOB_COLUMNS} FROM jobs ORDER BY created_at DESC"
        )
        rows = await cursor.fetchall()
        return [_row_to_job(row) for row in rows]

    async def delete_job(self, job_id: str) -> None:
        conn = await self._get_connection()

        # Explicit deletes keep this correct even without foreign key support
        await conn.execute("DELETE FROM build_logs WHERE job_id = ?", (job_id,))
        await conn.execute("DELETE FROM secrets WHERE job_id = ?", (job_id,))
        await conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
        await conn.commit()

    # Build log methods

    async def add_log_entries(self, entries: list[LogEntry]) -> None:
        """
        Insert a batch of log lines in one transaction.

        Args:
            entries: Log entries to persist (may belong to any job)
        """
        if not entries:
            return

        conn = await self._get_connection()

        await conn.executemany(
            "INSERT INTO build_logs (job_id, content, timestamp) VALUES (?, ?, ?)",
            [
                (entry.job_id, entry.content, entry.timestamp.isoformat())
                for entry in entries
            ],
        )
        await conn.commit()

    async def get_log_entries(self, job_id: str) -> list[LogEntry]:
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            SELECT job_id, content, timestamp
            FROM build_logs
            WHERE job_id = ?
            ORDER BY timestamp, id
            """,
            (job_id,),
        )
        rows = await cursor.fetchall()

        return [
            LogEntry(
                job_id=row_job_id,
                content=content,
                timestamp=datetime.fromisoformat(timestamp_str),
            )
            for row_job_id, content, timestamp_str in rows
        ]

    # Secret methods

    async def save_secrets(self, job_id: str, secrets: dict[str, str]) -> None:
        conn = await self._get_connection()

        await conn.executemany(
            """
            INSERT INTO secrets (job_id, key, value) VALUES (?, ?, ?)
            ON CONFLICT(job_id, key) DO UPDATE SET value = excluded.value
            """,
            [(job_id, key, value) for key, value in secrets.items()],
        )
        await conn.commit()

    async def get_secrets(self, job_id: str) -> dict[str, str]:
        conn = await self._get_connection()

        cursor = await conn.execute(
            "SELECT key, value FROM secrets WHERE job_id = ?", (job_id,)
        )
        rows = await cursor.fetchall()
        return {key: value for key, value in rows}
