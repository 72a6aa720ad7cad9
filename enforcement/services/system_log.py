"""
System Log Writer

Buffered writer for the ``system_logs`` table covering every subsystem:
API calls, cron jobs, webhooks, email, DMCA dispatch and scans.

- info/warn entries are buffered and written once the buffer fills
- error/fatal entries are written immediately
- track() wraps an awaitable with timing and success/failure logging
- flush() is called explicitly at the end of each request
"""

import logging
import time
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from enforcement.models.database import SystemLog

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOG_SOURCES = ("api_call", "cron", "webhook", "email", "dmca", "scan", "system")
IMMEDIATE_LEVELS = ("error", "fatal")


@dataclass
class LogEntry:
    log_source: str
    log_level: str
    operation: str
    status: str  # success | failure | info
    message: str
    duration_ms: int | None = None
    trace_id: str | None = None
    user_id: UUID | None = None
    product_id: UUID | None = None
    context: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)


LogSink = Callable[[list[LogEntry]], Awaitable[None]]


class DatabaseLogSink:
    """Writes entries to ``system_logs`` in a session of its own.

    A separate session keeps log writes out of the request transaction, so
    a rollback of the request does not lose its error entries.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def __call__(self, entries: list[LogEntry]) -> None:
        async with self.session_factory() as session:
            session.add_all(SystemLog(**asdict(entry)) for entry in entries)
            await session.commit()


class SystemLogWriter:
    """Per-request log buffer with an injected sink."""

    def __init__(self, sink: LogSink, buffer_size: int = 50):
        self.sink = sink
        self.buffer_size = buffer_size
        self._buffer: list[LogEntry] = []

    @property
    def pending(self) -> int:
        return len(self._buffer)

    async def log(
        self,
        source: str,
        level: str,
        operation: str,
        status: str,
        message: str,
        **details: Any,
    ) -> None:
        entry = LogEntry(
            log_source=source,
            log_level=level,
            operation=operation,
            status=status,
            message=message,
            **details,
        )

        if level in IMMEDIATE_LEVELS:
            logger.error(f"[{source}] {operation}: {message} {entry.error_message or ''}".rstrip())
            await self._write([entry])
            return
        if level == "warn":
            logger.warning(f"[{source}] {operation}: {message}")

        self._buffer.append(entry)
        if len(self._buffer) >= self.buffer_size:
            await self.flush()

    async def info(self, source: str, operation: str, message: str, **details: Any) -> None:
        await self.log(source, "info", operation, "info", message, **details)

    async def warn(self, source: str, operation: str, message: str, **details: Any) -> None:
        await self.log(source, "warn", operation, "info", message, **details)

    async def error(self, source: str, operation: str, message: str, **details: Any) -> None:
        await self.log(source, "error", operation, "failure", message, **details)

    async def fatal(self, source: str, operation: str, message: str, **details: Any) -> None:
        await self.log(source, "fatal", operation, "failure", message, **details)

    async def track(self, operation: str, awaitable: Awaitable[T], source: str = "api_call", **details: Any) -> T:
        """Await ``awaitable`` and log its duration and outcome.

        The exception, if any, is logged and re-raised.
        """
        started = time.monotonic()
        try:
            result = await awaitable
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            context = {**details.pop("context", {}), "stack": traceback.format_exc(limit=5)}
            await self.log(
                source, "error", operation, "failure",
                f"{operation} failed after {duration_ms}ms",
                duration_ms=duration_ms,
                error_message=str(e),
                context=context,
                **details,
            )
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        await self.log(
            source, "info", operation, "success",
            f"{operation} completed in {duration_ms}ms",
            duration_ms=duration_ms,
            **details,
        )
        return result

    async def flush(self) -> None:
        """Write all buffered entries."""
        if not self._buffer:
            return
        entries, self._buffer = self._buffer, []
        await self._write(entries)

    async def _write(self, entries: list[LogEntry]) -> None:
        try:
            await self.sink(entries)
        except Exception as e:
            logger.error(f"Failed to write {len(entries)} system log entries: {e}")
