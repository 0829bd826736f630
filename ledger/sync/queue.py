"""
Offline Mutation Queue

Tracks which collections have local changes the remote store has not seen
yet, and pushes them when it can.

Flow:
1. mark_dirty(collection) -> dirty set updated and mirrored to the cache
2. A flush is scheduled (if online)
3. flush() clears the dirty set optimistically, then persists each collection
4. On failure the collections are re-added (union with anything dirtied
   meanwhile) and the flush is retried with exponential backoff:
   initial, 2x, 4x ... capped at the maximum, until clean or offline

DESIGN DECISION: The dirty set is mirrored to the persistent cache so
unsynced edits survive a restart. The set is per queue instance (one per
profile); nothing lives at module level.

Triggers that restart flushing: a new mark_dirty, connectivity regained and
the app returning to the foreground.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Union

from tenacity import AsyncRetrying, RetryCallState, retry_if_result, wait_exponential

from ledger.models.events import LedgerEventBuilder
from ledger.models.sync import CollectionName
from ledger.services.storage.interface import CacheInterface
from ledger.telemetry import LedgerEventLogger


DIRTY_QUEUE_KEY = "dirtyQueue"

Persister = Callable[[CollectionName], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]

_FLUSH_ORDER = {name: index for index, name in enumerate(CollectionName)}


def parse_collection(collection: Union[CollectionName, str]) -> CollectionName:
    """
    Raises:
        ValueError: If the name is not a syncable collection
    """
    try:
        return CollectionName(collection)
    except ValueError as e:
        raise ValueError(f"Unknown collection: {collection!r}") from e


class OfflineMutationQueue:
    """Dirty-set tracker with backoff-driven persistence."""

    def __init__(
        self,
        cache: CacheInterface,
        persister: Persister,
        *,
        initial_retry_seconds: float = 5.0,
        max_retry_seconds: float = 60.0,
        cache_key: str = DIRTY_QUEUE_KEY,
        event_logger: Optional[LedgerEventLogger] = None,
        sleep: Optional[SleepFn] = None,
        online: bool = True,
    ):
        """
        Initialize the queue.

        Args:
            cache: Persistent cache mirroring the dirty set
            persister: Writes one collection to the remote store; any
                exception it raises counts as a failed write
            initial_retry_seconds: First backoff delay
            max_retry_seconds: Backoff cap
            cache_key: Key of the mirrored dirty set
            event_logger: Receives dirty/flush/retry events
            sleep: Awaitable sleep used between retries (defaults to a
                sleep that a new trigger can cut short)
            online: Initial connectivity
        """
        self._cache = cache
        self._persister = persister
        self._initial = initial_retry_seconds
        self._max = max_retry_seconds
        self._cache_key = cache_key
        self._event_logger = event_logger
        self._sleep = sleep or self._interruptible_sleep
        self._online = online
        self._closed = False

        self._dirty: set[CollectionName] = set()
        self._flush_lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def online(self) -> bool:
        return self._online

    @property
    def pending(self) -> frozenset[CollectionName]:
        return frozenset(self._dirty)

    def is_pending(self, collection: Union[CollectionName, str]) -> bool:
        return parse_collection(collection) in self._dirty

    @property
    def retry_task(self) -> Optional[asyncio.Task]:
        return self._task

    async def load(self) -> frozenset[CollectionName]:
        """Restore the dirty set mirrored in the cache (unknown names are dropped)."""
        stored = await self._cache.get(self._cache_key, [])
        restored = set()
        for name in stored or []:
            try:
                restored.add(CollectionName(name))
            except ValueError:
                continue
        self._dirty |= restored
        return self.pending

    async def _save_dirty(self) -> None:
        await self._cache.set(
            self._cache_key,
            [c.value for c in sorted(self._dirty, key=_FLUSH_ORDER.get)],
        )

    # -------------------------------------------------------------------------
    # Marking and flushing
    # -------------------------------------------------------------------------

    async def mark_dirty(self, *collections: Union[CollectionName, str]) -> None:
        """
        Record that collections changed locally and schedule a flush.

        Raises:
            ValueError: If a name is not a syncable collection
        """
        parsed = [parse_collection(c) for c in collections]
        self._dirty.update(parsed)
        for collection in parsed:
            self._log(LedgerEventBuilder.marked_dirty(collection.value))
        await self._save_dirty()
        self.schedule_flush()

    async def flush(self) -> bool:
        """
        Push every dirty collection once.

        Returns:
            True when the batch was persisted, False when offline or when
            a write failed (failed and untried collections are re-added).
        """
        if not self._online:
            return False

        async with self._flush_lock:
            batch = sorted(self._dirty, key=_FLUSH_ORDER.get)
            if not batch:
                return True
            self._dirty.clear()
            await self._save_dirty()

            for index, collection in enumerate(batch):
                try:
                    await self._persister(collection)
                except Exception as e:
                    # Any backend error leaves the rest of the batch dirty
                    unsent = batch[index:]
                    self._dirty.update(unsent)
                    await self._save_dirty()
                    self._log(LedgerEventBuilder.flush_failed(
                        [c.value for c in unsent], f"{type(e).__name__}: {e}"
                    ))
                    return False

            self._log(LedgerEventBuilder.flush_succeeded([c.value for c in batch]))
            return True

    # -------------------------------------------------------------------------
    # Retry loop
    # -------------------------------------------------------------------------

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(
                multiplier=self._initial,
                min=self._initial,
                max=self._max,
            ),
            retry=retry_if_result(lambda clean: not clean),
            stop=self._should_stop,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            retry_error_callback=lambda state: state.outcome.result(),
        )

    def _should_stop(self, retry_state: RetryCallState) -> bool:
        return self._closed or not self._online

    def _log_retry(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self._log(LedgerEventBuilder.retry_scheduled(retry_state.attempt_number, delay))

    async def _interruptible_sleep(self, seconds: float) -> None:
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _run_until_clean(self) -> bool:
        while True:
            clean = await self._retrying()(self.flush)
            if not clean or not self._dirty or not self._online or self._closed:
                return clean

    def schedule_flush(self) -> Optional[asyncio.Task]:
        """
        Start the retry loop, or wake the running one.

        Must be called from within a running event loop.
        """
        if self._closed or not self._online:
            return None
        if self._task is not None and not self._task.done():
            self._wake.set()
            return self._task
        self._task = asyncio.get_running_loop().create_task(self._run_until_clean())
        return self._task

    async def wait_idle(self) -> Optional[bool]:
        """Wait for the current retry loop (if any) and return its outcome."""
        if self._task is None:
            return None
        return await self._task

    # -------------------------------------------------------------------------
    # Lifecycle triggers
    # -------------------------------------------------------------------------

    def on_connectivity_lost(self) -> None:
        self._online = False

    async def on_connectivity_regained(self) -> None:
        self._online = True
        if self._dirty:
            self.schedule_flush()

    async def on_foregrounded(self) -> None:
        if self._dirty:
            self.schedule_flush()

    async def reset(self) -> None:
        """Stop retrying and forget every pending collection (ledger reset)."""
        await self._cancel_task()
        self._dirty.clear()
        await self._cache.delete(self._cache_key)

    async def teardown(self) -> None:
        """Stop the retry loop for good (profile switch, shutdown)."""
        self._closed = True
        await self._cancel_task()

    async def _cancel_task(self) -> None:
        self._wake.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _log(self, event) -> None:
        if self._event_logger:
            self._event_logger.log(event)
