"""
SQLite-backed FIFO job queue.

Each queue is a named list of job ids stored in the ``job_queue`` table.
Popping the head is a single DELETE ... RETURNING statement, so two
workers polling the same file never receive the same entry.
"""

import aiosqlite

from deploy_common.storage import JobQueue


class SQLiteJobQueue(JobQueue):
    """
    Named FIFO list of job ids.

    Args:
        db_path: Path to the SQLite database file (may be shared with the
            job repository)
        queue_key: Name of the list; intake and worker must agree on it
    """

    def __init__(self, db_path: str = "deploy_jobs.db", queue_key: str = "build-queue"):
        self.db_path = db_path
        self.queue_key = queue_key
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self.db_path, timeout=30)
            await self._connection.execute("PRAGMA journal_mode = WAL")
        return self._connection

    async def initialize(self) -> None:
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS job_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                queue_key TEXT NOT NULL,
                job_id TEXT NOT NULL
            )
        """)

        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_job_queue_key
            ON job_queue(queue_key, id)
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def push(self, job_id: str) -> None:
        conn = await self._get_connection()

        await conn.execute(
            "INSERT INTO job_queue (queue_key, job_id) VALUES (?, ?)",
            (self.queue_key, job_id),
        )
        await conn.commit()

    async def pop(self) -> str | None:
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            DELETE FROM job_queue
            WHERE id = (
                SELECT id FROM job_queue
                WHERE queue_key = ?
                ORDER BY id
                LIMIT 1
            )
            RETURNING job_id
            """,
            (self.queue_key,),
        )
        # Rows must be consumed before the commit
        rows = await cursor.fetchall()
        await cursor.close()
        await conn.commit()

        if not rows:
            return None
        return rows[0][0]

    async def size(self) -> int:
        conn = await self._get_connection()

        cursor = await conn.execute(
            "SELECT COUNT(*) FROM job_queue WHERE queue_key = ?", (self.queue_key,)
        )
        row = await cursor.fetchone()
        return row[0] if row else 0
