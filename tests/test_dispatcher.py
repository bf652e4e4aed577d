"""Tests for the single-writer sync dispatcher."""
import asyncio

import pytest

from vuln_mirror.sync.dispatcher import SyncDispatcher


class SlowWriter:
    """Records the order of writes and how many run at the same time"""

    def __init__(self, delay: float = 0.001, fail_on=()):
        self.delay = delay
        self.fail_on = set(fail_on)
        self.written = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, record):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if record in self.fail_on:
                raise RuntimeError(f"cannot write {record}")
            self.written.append(record)
        finally:
            self.in_flight -= 1


@pytest.mark.asyncio
async def test_records_are_written_in_submission_order_one_at_a_time():
    writer = SlowWriter()

    async with SyncDispatcher(writer) as dispatcher:
        for i in range(20):
            await dispatcher.submit(i)

    assert writer.written == list(range(20))
    assert writer.max_in_flight == 1
    assert dispatcher.submitted == dispatcher.completed == 20


@pytest.mark.asyncio
async def test_failed_write_is_counted_and_lane_continues(caplog):
    writer = SlowWriter(fail_on={"CVE-B"})

    async with SyncDispatcher(writer, describe=str) as dispatcher:
        for record in ("CVE-A", "CVE-B", "CVE-C"):
            await dispatcher.submit(record)

    assert writer.written == ["CVE-A", "CVE-C"]
    assert dispatcher.failed == 1
    assert "Failed to synchronize CVE-B" in caplog.text


@pytest.mark.asyncio
async def test_queued_writes_drain_when_producer_fails():
    writer = SlowWriter(delay=0.005)

    with pytest.raises(ValueError):
        async with SyncDispatcher(writer) as dispatcher:
            for i in range(5):
                await dispatcher.submit(i)
            raise ValueError("feed broke")

    assert writer.written == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_bounded_queue_applies_backpressure():
    release = asyncio.Event()
    written = []

    async def blocked_writer(record):
        await release.wait()
        written.append(record)

    async with SyncDispatcher(blocked_writer, max_queue_size=2) as dispatcher:
        await dispatcher.submit(1)   # taken by the writer
        await asyncio.sleep(0)
        await dispatcher.submit(2)
        await dispatcher.submit(3)   # queue now full

        producer = asyncio.create_task(dispatcher.submit(4))
        await asyncio.sleep(0.01)
        assert not producer.done()

        release.set()
        await producer

    assert written == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_cancellation_cancels_the_writer():
    started = asyncio.Event()
    written = []

    async def hanging_writer(record):
        started.set()
        await asyncio.sleep(3600)
        written.append(record)

    async def produce():
        async with SyncDispatcher(hanging_writer) as dispatcher:
            await dispatcher.submit(1)
            await dispatcher.submit(2)
            await asyncio.sleep(3600)

    task = asyncio.create_task(produce())
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert written == []


@pytest.mark.asyncio
async def test_submit_after_close_is_rejected():
    dispatcher = SyncDispatcher(SlowWriter())
    async with dispatcher:
        await dispatcher.submit(1)

    with pytest.raises(RuntimeError):
        await dispatcher.submit(2)
