"""Tests for the buffered system log writer."""

import pytest
from sqlalchemy import select

from enforcement.models.database import SystemLog
from enforcement.services.system_log import DatabaseLogSink, SystemLogWriter


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.batches = []
        self.fail = fail

    async def __call__(self, entries):
        if self.fail:
            raise RuntimeError("database unavailable")
        self.batches.append(list(entries))


class TestSystemLogWriter:
    """Tests for buffering, immediate writes and tracking."""

    @pytest.mark.asyncio
    async def test_info_is_buffered_until_full(self):
        sink = RecordingSink()
        writer = SystemLogWriter(sink, buffer_size=3)

        await writer.info("cron", "process_queue", "started")
        await writer.warn("cron", "process_queue", "slow")
        assert sink.batches == []
        assert writer.pending == 2

        await writer.info("cron", "process_queue", "finished")
        assert len(sink.batches) == 1
        assert [entry.log_level for entry in sink.batches[0]] == ["info", "warn", "info"]
        assert writer.pending == 0

    @pytest.mark.asyncio
    async def test_errors_written_immediately(self):
        sink = RecordingSink()
        writer = SystemLogWriter(sink)

        await writer.info("api_call", "generate", "buffered")
        await writer.error("dmca", "send", "delivery failed", error_message="timeout")

        assert len(sink.batches) == 1
        entry = sink.batches[0][0]
        assert entry.status == "failure"
        assert entry.error_message == "timeout"
        assert writer.pending == 1

    @pytest.mark.asyncio
    async def test_flush(self):
        sink = RecordingSink()
        writer = SystemLogWriter(sink)
        await writer.flush()
        assert sink.batches == []

        await writer.info("api_call", "verify", "ok")
        await writer.flush()
        assert len(sink.batches) == 1

    @pytest.mark.asyncio
    async def test_track_success(self):
        sink = RecordingSink()
        writer = SystemLogWriter(sink, buffer_size=1)

        async def work():
            return 42

        assert await writer.track("compute", work(), source="system") == 42
        entry = sink.batches[0][0]
        assert entry.status == "success"
        assert entry.log_source == "system"
        assert entry.message.startswith("compute completed in")

    @pytest.mark.asyncio
    async def test_track_failure_reraises(self):
        sink = RecordingSink()
        writer = SystemLogWriter(sink)

        async def work():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await writer.track("compute", work(), context={"batch": "b1"})

        entry = sink.batches[0][0]
        assert entry.log_level == "error"
        assert entry.error_message == "boom"
        assert entry.context["batch"] == "b1"
        assert "ValueError" in entry.context["stack"]

    @pytest.mark.asyncio
    async def test_sink_failure_is_swallowed(self):
        writer = SystemLogWriter(RecordingSink(fail=True))
        await writer.error("system", "startup", "bad config")


class TestDatabaseLogSink:
    """Tests for persistence of log entries."""

    @pytest.mark.asyncio
    async def test_entries_persisted(self, session_factory, profile):
        writer = SystemLogWriter(DatabaseLogSink(session_factory))
        await writer.info("api_call", "verify", "verified", user_id=profile.id, context={"id": "x"})
        await writer.fatal("system", "startup", "cannot start")
        await writer.flush()

        async with session_factory() as session:
            rows = (await session.execute(select(SystemLog).order_by(SystemLog.log_level))).scalars().all()

        assert [(row.log_level, row.operation) for row in rows] == [("fatal", "startup"), ("info", "verify")]
        assert rows[1].user_id == profile.id
        assert rows[1].context == {"id": "x"}
