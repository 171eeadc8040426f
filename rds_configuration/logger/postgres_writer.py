"""Batched PostgreSQL sink for structured log entries."""

import asyncio
import contextlib
import json
import sys
from typing import Any

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as Connection

from rds_configuration.logger.types import LogEntry

_INSERT_COLUMNS = (
    "timestamp",
    "service_name",
    "instance_id",
    "environment",
    "level",
    "category",
    "function_name",
    "file_path",
    "line_number",
    "message",
    "error_message",
    "stack_trace",
    "context",
    "duration_ms",
    "ingestion_time",
)


class PostgresWriter:
    """Buffers log entries and flushes them to PostgreSQL in batches.

    Entries that cannot be inserted are dumped to stderr as JSON lines so a
    broken log database never hides engine output.
    """

    def __init__(
        self,
        dsn: str,
        table: str = "logs",
        batch_size: int = 100,
        flush_interval: float = 5.0,
    ) -> None:
        self.dsn = dsn
        self.table = table
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.buffer: list[LogEntry] = []
        self._lock = asyncio.Lock()
        self._conn: Connection | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._closed = False

    async def connect(self) -> None:
        """Open the PostgreSQL connection and start the periodic flush."""
        try:
            self._conn = psycopg2.connect(self.dsn)
            self._conn.set_session(autocommit=False)
        except psycopg2.Error as e:
            print(f"[LOGGER ERROR] Failed to connect to PostgreSQL: {e}", file=sys.stderr)
            raise
        self._flush_task = asyncio.create_task(self._background_flush())

    async def write(self, entry: LogEntry) -> None:
        """Append an entry, flushing once the batch is full."""
        if self._closed:
            return
        async with self._lock:
            self.buffer.append(entry)
            if len(self.buffer) >= self.batch_size:
                self._flush_locked()

    def schedule(self, entry: LogEntry) -> None:
        """Queue a write from synchronous code running inside the event loop."""
        if self._closed:
            return
        task = asyncio.get_running_loop().create_task(self.write(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Force the buffer out to PostgreSQL."""
        async with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        if not self.buffer:
            return
        if self._conn is None:
            self._fallback_to_stderr()
            self.buffer.clear()
            return

        query = f"INSERT INTO {self.table} ({', '.join(_INSERT_COLUMNS)}) VALUES %s"
        try:
            with self._conn.cursor() as cursor:
                psycopg2.extras.execute_values(
                    cursor,
                    query,
                    [self._row(entry) for entry in self.buffer],
                    page_size=self.batch_size,
                )
            self._conn.commit()
        except psycopg2.Error as e:
            print(f"[LOGGER ERROR] Failed to insert logs into PostgreSQL: {e}", file=sys.stderr)
            try:
                self._conn.rollback()
            except psycopg2.Error as rollback_error:
                print(f"[LOGGER ERROR] Rollback failed: {rollback_error}", file=sys.stderr)
            self._fallback_to_stderr()
        self.buffer.clear()

    @staticmethod
    def _row(entry: LogEntry) -> tuple[Any, ...]:
        return (
            entry.timestamp,
            entry.service_name,
            entry.instance_id,
            entry.environment,
            entry.level.value,
            entry.category.value if entry.category else None,
            entry.function_name,
            entry.file_path,
            entry.line_number,
            entry.message,
            entry.error_message,
            entry.stack_trace,
            json.dumps(entry.context, default=str) if entry.context is not None else None,
            entry.duration_ms,
            entry.ingestion_time,
        )

    def _fallback_to_stderr(self) -> None:
        for entry in self.buffer:
            print(json.dumps(entry.to_dict(), default=str), file=sys.stderr)

    async def _background_flush(self) -> None:
        while not self._closed:
            try:
                await asyncio.sleep(self.flush_interval)
                await self.flush()
            except asyncio.CancelledError:
                break

    async def close(self) -> None:
        """Stop the periodic flush, write what is left and close the connection."""
        # Записи, запланированные из sync-кода, должны попасть в буфер до закрытия
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._closed = True
        if self._flush_task:
            self._flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._flush_task
            self._flush_task = None

        await self.flush()

        if self._conn:
            self._conn.close()
            self._conn = None
