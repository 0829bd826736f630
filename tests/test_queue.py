"""Tests for the offline mutation queue."""

import pytest

from ledger.models import CollectionName, LedgerEventType
from ledger.services.storage import InMemoryCache, StorageError
from ledger.sync import DIRTY_QUEUE_KEY, OfflineMutationQueue, parse_collection
from ledger.telemetry import LedgerEventLogger


class FlakyPersister:
    """Persister that fails a given number of times before succeeding."""

    def __init__(self, failures=0, fail_on=None, error=None):
        self.failures = failures
        self.fail_on = fail_on
        self.error = error or StorageError("remote rejected the write")
        self.calls = []

    async def __call__(self, collection):
        self.calls.append(collection)
        if self.fail_on is not None and collection != self.fail_on:
            return
        if self.failures != 0:
            self.failures -= 1
            raise self.error


class RecordingSleep:
    """Sleep replacement that records the requested delays."""

    def __init__(self, on_sleep=None):
        self.delays = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds):
        self.delays.append(seconds)
        if self.on_sleep:
            self.on_sleep(len(self.delays))


def make_queue(persister, cache=None, sleep=None, **kwargs):
    return OfflineMutationQueue(
        cache or InMemoryCache(),
        persister,
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


class TestFlush:
    """Tests for a single flush pass."""

    @pytest.mark.asyncio
    async def test_flush_persists_every_dirty_collection(self):
        """Test that a clean flush empties the dirty set."""
        cache = InMemoryCache({DIRTY_QUEUE_KEY: ["cards", "tx"]})
        persister = FlakyPersister()
        queue = make_queue(persister, cache)
        await queue.load()

        assert await queue.flush() is True
        assert persister.calls == [CollectionName.TRANSACTIONS, CollectionName.CARDS]
        assert queue.pending == frozenset()
        assert await cache.get(DIRTY_QUEUE_KEY) == []

    @pytest.mark.asyncio
    async def test_failed_flush_readds_unsent(self):
        """Test that the failed collection and untried ones stay dirty."""
        cache = InMemoryCache({DIRTY_QUEUE_KEY: ["tx", "cards", "budgets"]})
        persister = FlakyPersister(failures=1, fail_on=CollectionName.CARDS)
        queue = make_queue(persister, cache)
        await queue.load()

        assert await queue.flush() is False
        assert queue.pending == frozenset({CollectionName.CARDS, CollectionName.BUDGETS})
        assert await cache.get(DIRTY_QUEUE_KEY) == ["cards", "budgets"]

    @pytest.mark.asyncio
    async def test_flush_offline_does_nothing(self):
        """Test that nothing is written while offline."""
        cache = InMemoryCache({DIRTY_QUEUE_KEY: ["tx"]})
        persister = FlakyPersister()
        queue = make_queue(persister, cache, online=False)
        await queue.load()

        assert await queue.flush() is False
        assert persister.calls == []
        assert queue.is_pending("tx")

    @pytest.mark.asyncio
    async def test_load_ignores_unknown_names(self):
        """Test that stale cache entries are dropped."""
        cache = InMemoryCache({DIRTY_QUEUE_KEY: ["tx", "legacyThing"]})
        queue = make_queue(FlakyPersister(), cache)
        assert await queue.load() == frozenset({CollectionName.TRANSACTIONS})


class TestRetryLoop:
    """Tests for backoff-driven persistence."""

    @pytest.mark.asyncio
    async def test_backoff_doubles_up_to_cap(self):
        """Test delays of 5, 10, 20, 40 and then the 60 second cap."""
        persister = FlakyPersister(failures=5)
        sleep = RecordingSleep()
        queue = make_queue(persister, sleep=sleep)

        await queue.mark_dirty(CollectionName.TRANSACTIONS)
        assert await queue.wait_idle() is True

        assert sleep.delays == [5.0, 10.0, 20.0, 40.0, 60.0]
        assert len(persister.calls) == 6
        assert queue.pending == frozenset()

    @pytest.mark.asyncio
    async def test_any_backend_error_is_retried(self):
        """Test that errors outside the storage hierarchy do not end the loop."""
        persister = FlakyPersister(failures=1, error=ConnectionError("socket closed"))
        sleep = RecordingSleep()
        events = []
        logger = LedgerEventLogger()
        logger.add_listener(events.append)
        queue = make_queue(persister, sleep=sleep, event_logger=logger)

        await queue.mark_dirty(CollectionName.TRANSACTIONS)
        assert await queue.wait_idle() is True

        assert persister.calls == [CollectionName.TRANSACTIONS] * 2
        assert sleep.delays == [5.0]
        assert queue.pending == frozenset()
        failed = [e for e in events if e.event_type == LedgerEventType.FLUSH_FAILED]
        assert "ConnectionError" in failed[0].error_message

    @pytest.mark.asyncio
    async def test_custom_retry_schedule(self):
        """Test configurable initial delay and cap."""
        persister = FlakyPersister(failures=3)
        sleep = RecordingSleep()
        queue = make_queue(
            persister, sleep=sleep, initial_retry_seconds=1, max_retry_seconds=3
        )

        await queue.mark_dirty("tx")
        await queue.wait_idle()
        assert sleep.delays == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_retry_stops_when_offline(self):
        """Test that losing connectivity ends the retry loop."""
        persister = FlakyPersister(failures=-1)
        queue = None

        def go_offline(count):
            if count == 2:
                queue.on_connectivity_lost()

        sleep = RecordingSleep(on_sleep=go_offline)
        queue = make_queue(persister, sleep=sleep)

        await queue.mark_dirty(CollectionName.TRANSACTIONS)
        assert await queue.wait_idle() is False
        assert sleep.delays == [5.0, 10.0]
        assert len(persister.calls) == 2
        assert queue.is_pending(CollectionName.TRANSACTIONS)

    @pytest.mark.asyncio
    async def test_retry_events_are_logged(self):
        """Test flush failure and retry events."""
        events = []
        logger = LedgerEventLogger()
        logger.add_listener(events.append)
        queue = make_queue(FlakyPersister(failures=1), event_logger=logger)

        await queue.mark_dirty(CollectionName.CARDS)
        await queue.wait_idle()

        types = [e.event_type for e in events]
        assert types == [
            LedgerEventType.COLLECTION_MARKED_DIRTY,
            LedgerEventType.FLUSH_FAILED,
            LedgerEventType.RETRY_SCHEDULED,
            LedgerEventType.FLUSH_SUCCEEDED,
        ]
        assert events[2].details["delay_seconds"] == 5.0


class TestLifecycle:
    """Tests for connectivity, persistence and teardown."""

    @pytest.mark.asyncio
    async def test_offline_marks_are_persisted_and_flushed_on_reconnect(self):
        """Test that dirty state survives and flushes when back online."""
        cache = InMemoryCache()
        persister = FlakyPersister()
        queue = make_queue(persister, cache, online=False)

        await queue.mark_dirty(CollectionName.TRANSACTIONS, CollectionName.BUDGETS)
        assert queue.retry_task is None
        assert await cache.get(DIRTY_QUEUE_KEY) == ["tx", "budgets"]

        await queue.on_connectivity_regained()
        assert await queue.wait_idle() is True
        assert persister.calls == [CollectionName.TRANSACTIONS, CollectionName.BUDGETS]

    @pytest.mark.asyncio
    async def test_dirty_set_survives_restart(self):
        """Test that a new queue over the same cache resumes pending work."""
        cache = InMemoryCache()
        first = make_queue(FlakyPersister(), cache, online=False)
        await first.mark_dirty(CollectionName.START_BALANCE)

        persister = FlakyPersister()
        second = make_queue(persister, cache)
        assert await second.load() == frozenset({CollectionName.START_BALANCE})
        await second.on_foregrounded()
        assert await second.wait_idle() is True
        assert persister.calls == [CollectionName.START_BALANCE]

    @pytest.mark.asyncio
    async def test_reset_forgets_pending(self):
        """Test that a ledger reset drops queued collections."""
        cache = InMemoryCache()
        queue = make_queue(FlakyPersister(), cache, online=False)
        await queue.mark_dirty(CollectionName.TRANSACTIONS)

        await queue.reset()
        assert queue.pending == frozenset()
        assert await cache.get(DIRTY_QUEUE_KEY) is None

    @pytest.mark.asyncio
    async def test_teardown_stops_scheduling(self):
        """Test that a torn-down queue no longer flushes."""
        persister = FlakyPersister()
        queue = make_queue(persister)
        await queue.teardown()

        await queue.mark_dirty(CollectionName.TRANSACTIONS)
        assert queue.retry_task is None
        assert persister.calls == []

    @pytest.mark.asyncio
    async def test_unknown_collection_rejected(self):
        """Test that only syncable collections can be marked."""
        queue = make_queue(FlakyPersister())
        with pytest.raises(ValueError, match="Unknown collection"):
            await queue.mark_dirty("nope")
        with pytest.raises(ValueError):
            parse_collection("")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
