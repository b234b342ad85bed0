"""
Tests for CaseListPoller.
"""
import asyncio

import pytest

from caseflow.models.schemas import CaseCreate
from caseflow.services.case_poller import CaseListPoller


class FlakyStore:
    """Fails the first *failures* list() calls, then delegates."""

    def __init__(self, store, failures: int) -> None:
        self.store = store
        self.failures = failures

    async def list(self, module_type=None):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("database unavailable")
        return await self.store.list(module_type)


@pytest.mark.asyncio
async def test_refresh_delivers_module_cases(memory_store):
    await memory_store.create(CaseCreate(module_type="k12", student_name="A"))
    await memory_store.create(CaseCreate(module_type="post_secondary", student_name="B"))
    received = []
    poller = CaseListPoller(memory_store, "k12", interval_seconds=1)
    poller.subscribe(received.append)

    cases = await poller.refresh()

    assert [c.student_name for c in cases] == ["A"]
    assert received == [cases]


@pytest.mark.asyncio
async def test_async_subscribers_are_awaited(memory_store):
    received = []

    async def on_cases(cases):
        await asyncio.sleep(0)
        received.append(len(cases))

    poller = CaseListPoller(memory_store, interval_seconds=1)
    poller.subscribe(on_cases)
    await memory_store.create(CaseCreate(module_type="k12"))

    await poller.refresh()

    assert received == [1]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others(memory_store):
    received = []

    def broken(cases):
        raise ValueError("subscriber bug")

    poller = CaseListPoller(memory_store, interval_seconds=1)
    poller.subscribe(broken)
    poller.subscribe(received.append)

    await poller.refresh()

    assert received == [[]]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery(memory_store):
    received = []
    poller = CaseListPoller(memory_store, interval_seconds=1)
    unsubscribe = poller.subscribe(received.append)

    await poller.refresh()
    unsubscribe()
    unsubscribe()
    await poller.refresh()

    assert len(received) == 1


@pytest.mark.asyncio
async def test_refresh_propagates_fetch_errors(memory_store):
    poller = CaseListPoller(FlakyStore(memory_store, failures=1), interval_seconds=1)

    with pytest.raises(ConnectionError):
        await poller.refresh()


@pytest.mark.asyncio
async def test_background_loop_survives_fetch_errors(memory_store):
    delivered = asyncio.Event()
    poller = CaseListPoller(FlakyStore(memory_store, failures=2), interval_seconds=0.01)
    poller.subscribe(lambda cases: delivered.set())

    poller.start()
    assert poller.running
    try:
        await asyncio.wait_for(delivered.wait(), timeout=2)
    finally:
        await poller.stop()

    assert not poller.running


@pytest.mark.asyncio
async def test_stop_without_start_is_harmless(memory_store):
    poller = CaseListPoller(memory_store, interval_seconds=1)
    await poller.stop()
    assert not poller.running
