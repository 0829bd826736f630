"""
Main Orchestrator for the Recurring Ledger

This module ties together all the components for one ledger profile:
1. Mutation (edit -> store -> local cache -> dirty queue -> remote)
2. Reconciliation (remote snapshot -> merge -> store -> cache -> listeners)
3. Projection (store -> occurrences / balances / budgets)

DESIGN DECISION: The engine owns every piece of per-profile state (store,
cards, opening balance, budgets, dirty queue, subscriptions). Nothing lives
at module level, so switching profiles is: tear down, clear, rehydrate,
resubscribe.

The pure modules (rules, projection, sync.merge, budgets) never perform
I/O; this is the only place where they meet the cache and the remote store.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Union

from ledger.budgets import (
    BudgetChange,
    close_expired_budgets,
    ensure_recurring_budgets,
    exclude_budget_triggers,
    generate_materializations,
    normalize_budgets,
    upsert_budget_from_transaction,
)
from ledger.config import LedgerSettings, SyncSettings, get_settings
from ledger.models.budget import Budget
from ledger.models.events import LedgerEventBuilder
from ledger.models.sync import (
    ChangeSource,
    CollectionName,
    LedgerChange,
    ReconciliationResult,
)
from ledger.models.transaction import (
    Card,
    OverrideScope,
    RecurrencePattern,
    TransactionRecord,
)
from ledger.projection import (
    DailyBalance,
    OverrideResult,
    RecordNotFoundError,
    compute_daily_balances,
    delete_all,
    delete_single,
    detach_single,
    edit_record,
    normalize_start_balance,
    occurrences_in_range,
    split_series,
    split_virtual_id,
    truncate_future,
    tx_by_date,
    upcoming_planned,
)
from ledger.rules import ensure_cash_card, occurs_on, post_date, validate_card_registry
from ledger.services.clock import Clock, SystemClock
from ledger.services.storage import (
    CacheInterface,
    InMemoryCache,
    InMemoryRemoteStore,
    JsonFileCache,
    RemoteStoreInterface,
    Unsubscribe,
)
from ledger.store import (
    TransactionStore,
    coerce_date,
    new_record_id,
    normalize_collection,
    normalize_record,
)
from ledger.sync import DIRTY_QUEUE_KEY, OfflineMutationQueue, parse_collection, reconcile
from ledger.sync.queue import SleepFn
from ledger.telemetry import LedgerEventLogger


ChangeListener = Callable[[LedgerChange], None]


class LedgerEngine:
    """
    One profile's ledger: state, projections, mutations and sync.

    Mutations are async and return once local state and the cache are
    updated; remote persistence happens in the background through the
    offline queue.
    """

    def __init__(
        self,
        cache: CacheInterface,
        remote: RemoteStoreInterface,
        clock: Optional[Clock] = None,
        *,
        ledger_settings: Optional[LedgerSettings] = None,
        sync_settings: Optional[SyncSettings] = None,
        event_logger: Optional[LedgerEventLogger] = None,
        sleep: Optional[SleepFn] = None,
        profile: Optional[str] = None,
    ):
        settings = get_settings() if ledger_settings is None or sync_settings is None else None
        self._ledger_settings = ledger_settings or settings.ledger
        self._sync_settings = sync_settings or settings.sync
        self._cash = self._ledger_settings.cash_method
        self._profile = profile or self._ledger_settings.profile

        self._cache = cache
        self._remote = remote
        self._clock = clock or SystemClock(self._ledger_settings.timezone)
        self._event_logger = event_logger or LedgerEventLogger(self._profile)
        self._sleep = sleep

        self._store = TransactionStore(self._cash, self._event_logger)
        self._queue = self._new_queue()
        self._unsubscribers: list[Unsubscribe] = []
        self._listeners: list[ChangeListener] = []
        self._reset_state()

    def _reset_state(self) -> None:
        self._store.clear()
        self._cards: list[Card] = ensure_cash_card([], self._cash)
        self._start_balance: Optional[Decimal] = None
        self._start_date: Optional[date] = None
        self._budgets: list[Budget] = []

    def _new_queue(self, online: bool = True) -> OfflineMutationQueue:
        return OfflineMutationQueue(
            self._cache,
            self._persist,
            initial_retry_seconds=self._sync_settings.initial_retry_seconds,
            max_retry_seconds=self._sync_settings.max_retry_seconds,
            cache_key=self._cache_key(DIRTY_QUEUE_KEY),
            event_logger=self._event_logger,
            sleep=self._sleep,
            online=online,
        )

    # =========================================================================
    # State accessors
    # =========================================================================

    @property
    def profile(self) -> str:
        return self._profile

    @property
    def cash_method(self) -> str:
        return self._cash

    @property
    def cards(self) -> list[Card]:
        return list(self._cards)

    @property
    def budgets(self) -> list[Budget]:
        return list(self._budgets)

    @property
    def start_balance(self) -> Optional[Decimal]:
        return self._start_balance

    @property
    def start_date(self) -> Optional[date]:
        return self._start_date

    @property
    def pending_collections(self) -> frozenset[CollectionName]:
        return self._queue.pending

    @property
    def queue(self) -> OfflineMutationQueue:
        return self._queue

    @property
    def event_logger(self) -> LedgerEventLogger:
        return self._event_logger

    def records(self) -> list[TransactionRecord]:
        """Canonical snapshot (copy-on-read)."""
        return self._store.snapshot()

    def get(self, record_id: str) -> Optional[TransactionRecord]:
        return self._store.get(record_id)

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Call `listener` after every applied change; returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # =========================================================================
    # Pure queries
    # =========================================================================

    def occurs_on(self, master: Union[TransactionRecord, str], day: date) -> bool:
        if isinstance(master, str):
            master = self._require(master)
        return occurs_on(master, day)

    def post_date(self, op_date: date, method: Optional[str] = None) -> date:
        return post_date(op_date, method or self._cash, self._cards, self._cash)

    # =========================================================================
    # Projections
    # =========================================================================

    def occurrences_in_range(self, start: date, end: date):
        """Generator of concrete and virtual records in [start, end]."""
        return occurrences_in_range(
            self._store.snapshot(), start, end,
            cards=self._cards, cash_method=self._cash, event_logger=self._event_logger,
        )

    def tx_by_date(self, day: date) -> list[TransactionRecord]:
        return tx_by_date(
            self._store.snapshot(), day,
            cards=self._cards, cash_method=self._cash, event_logger=self._event_logger,
        )

    def upcoming_planned(self, horizon_days: Optional[int] = None) -> dict[date, list[TransactionRecord]]:
        return upcoming_planned(
            self._store.snapshot(),
            self._clock.today(),
            horizon_days or self._ledger_settings.planned_horizon_days,
            cards=self._cards,
            cash_method=self._cash,
        )

    def balance_records(self, start: date, end: date) -> list[TransactionRecord]:
        """
        Records balance consumers should count for [start, end].

        Projected occurrences plus budget materializations dated in the
        range, minus the records that merely trigger a budget. Spending is
        measured against the whole ledger. Never persisted.
        """
        projected = list(self.occurrences_in_range(start, end))
        materialized = [
            r for r in generate_materializations(
                self._budgets, self._store.snapshot(), self._clock.today(),
                cards=self._cards, cash_method=self._cash,
            )
            if start <= r.op_date <= end
        ]
        return exclude_budget_triggers(projected + materialized, self._budgets)

    def daily_balances(self, start: date, end: date) -> list[DailyBalance]:
        """End-of-day projected and available balances for [start, end]."""
        origin = self._start_date or start
        records = self.balance_records(min(origin, start), end)
        return compute_daily_balances(
            records, start, end,
            start_balance=self._start_balance,
            cash_method=self._cash,
            start_date=self._start_date,
        )

    # =========================================================================
    # Transaction mutations
    # =========================================================================

    async def add_record(
        self,
        *,
        desc: str,
        value: Union[Decimal, int, float, str],
        op_date: Optional[date] = None,
        method: Optional[str] = None,
        recurrence: Union[RecurrencePattern, str] = "",
        planned: Optional[bool] = None,
        budget_tag: Optional[str] = None,
    ) -> TransactionRecord:
        """
        Create a one-off record or a master rule.

        Raises:
            ValueError: If the recurrence pattern is unknown
        """
        pattern = ""
        if recurrence:
            parsed = RecurrencePattern.parse(recurrence)
            if parsed is None:
                raise ValueError(f"Unknown recurrence pattern: {recurrence!r}")
            pattern = parsed.value

        now = self._clock.now()
        normalized = normalize_record(
            {
                "id": new_record_id(),
                "desc": desc,
                "value": value,
                "opDate": op_date or self._clock.today(),
                "method": method or self._cash,
                "recurrence": pattern,
                "planned": planned,
                "budgetTag": budget_tag,
                "ts": now,
                "modifiedAt": now,
            },
            today=self._clock.today(),
            cards=self._cards,
            cash_method=self._cash,
        )
        record = normalized.record
        self._store.upsert(record)
        await self._commit(CollectionName.TRANSACTIONS)
        if record.budget_tag:
            await self._apply_budget_change(upsert_budget_from_transaction(
                record, self._budgets, self._store.snapshot(),
                today=self._clock.today(), now=now,
            ))
        return record

    async def update_record(self, record_id: str, **changes: Any) -> OverrideResult:
        """Edit a one-off, a detached child or a whole series in place."""
        return await self._apply_override(edit_record(
            self._store.snapshot(), self._resolve_id(record_id), changes,
            now=self._clock.now(), today=self._clock.today(),
            cards=self._cards, cash_method=self._cash,
        ))

    async def detach_single(
        self,
        record_id: str,
        day: date,
        *,
        move_to_today: bool = False,
        **changes: Any,
    ) -> OverrideResult:
        return await self._apply_override(detach_single(
            self._store.snapshot(), self._resolve_id(record_id), day,
            now=self._clock.now(), today=self._clock.today(),
            cards=self._cards, cash_method=self._cash,
            move_to_today=move_to_today, changes=changes,
        ))

    async def delete_single(self, record_id: str, day: date) -> OverrideResult:
        return await self._apply_override(delete_single(
            self._store.snapshot(), self._resolve_id(record_id), day,
            now=self._clock.now(),
        ))

    async def truncate_future(self, record_id: str, day: date) -> OverrideResult:
        return await self._apply_override(truncate_future(
            self._store.snapshot(), self._resolve_id(record_id), day,
            now=self._clock.now(),
        ))

    async def split_series(self, record_id: str, day: date, **changes: Any) -> OverrideResult:
        return await self._apply_override(split_series(
            self._store.snapshot(), self._resolve_id(record_id), day,
            now=self._clock.now(), today=self._clock.today(),
            cards=self._cards, cash_method=self._cash, changes=changes,
        ))

    async def delete_all(self, record_id: str) -> OverrideResult:
        return await self._apply_override(delete_all(
            self._store.snapshot(), self._resolve_id(record_id),
        ))

    async def delete_occurrence(
        self,
        record_id: str,
        day: date,
        scope: Union[OverrideScope, str],
    ) -> OverrideResult:
        """Delete with a scope selector: single, future or all."""
        scope = OverrideScope(scope)
        if scope == OverrideScope.SINGLE:
            return await self.delete_single(record_id, day)
        if scope == OverrideScope.FUTURE:
            return await self.truncate_future(record_id, day)
        return await self.delete_all(record_id)

    async def edit_occurrence(
        self,
        record_id: str,
        day: date,
        scope: Union[OverrideScope, str],
        **changes: Any,
    ) -> OverrideResult:
        """Edit with a scope selector: single, future or all."""
        scope = OverrideScope(scope)
        if scope == OverrideScope.SINGLE:
            return await self.detach_single(record_id, day, **changes)
        if scope == OverrideScope.FUTURE:
            return await self.split_series(record_id, day, **changes)
        target = self._require(self._resolve_id(record_id))
        master_id = target.id if target.is_master else (target.parent_id or target.id)
        return await self.update_record(master_id, **changes)

    async def reset_ledger(self) -> None:
        """
        Wipe every collection of this profile, locally and remotely.

        Pending writes are discarded first; the empty state is then queued
        so other devices converge on it.
        """
        await self._queue.reset()
        self._reset_state()
        await self._commit(*CollectionName)

    # =========================================================================
    # Other collections
    # =========================================================================

    async def set_cards(self, cards: Iterable[Union[Card, dict]]) -> list[Card]:
        """
        Replace the card registry and recompute posting dates.

        Raises:
            ValueError: On invalid or duplicate cards
        """
        parsed = [c if isinstance(c, Card) else Card.model_validate(c) for c in cards]
        self._cards = validate_card_registry(parsed, self._cash)
        report = self._store.renormalize(today=self._clock.today(), cards=self._cards)
        changed = [CollectionName.CARDS]
        if report.changed:
            changed.append(CollectionName.TRANSACTIONS)
        await self._commit(*changed)
        return self.cards

    async def set_start_balance(self, value: Any, start_date: Optional[date] = None) -> None:
        self._start_balance = normalize_start_balance(value)
        self._start_date = start_date
        await self._commit(CollectionName.START_BALANCE, CollectionName.START_DATE)

    async def set_budgets(self, budgets: Iterable[Union[Budget, dict]]) -> list[Budget]:
        self._budgets = normalize_budgets(list(budgets))
        await self._commit(CollectionName.BUDGETS)
        return self.budgets

    async def refresh_budgets(self) -> BudgetChange:
        """Close expired budgets and open the current cycle of tagged masters."""
        today, now = self._clock.today(), self._clock.now()
        closed = close_expired_budgets(self._budgets, today=today, now=now)
        opened = ensure_recurring_budgets(
            self._store.snapshot(), closed.budgets, today=today, now=now
        )
        change = BudgetChange(
            budgets=opened.budgets,
            created_ids=opened.created_ids,
            closed_ids=closed.closed_ids + opened.closed_ids,
        )
        await self._apply_budget_change(change)
        return change

    # =========================================================================
    # Offline lifecycle
    # =========================================================================

    async def mark_dirty(self, collection: Union[CollectionName, str]) -> None:
        await self._queue.mark_dirty(parse_collection(collection))

    async def flush(self) -> bool:
        return await self._queue.flush()

    async def wait_idle(self) -> Optional[bool]:
        """Wait for background persistence to settle."""
        return await self._queue.wait_idle()

    def on_connectivity_lost(self) -> None:
        self._queue.on_connectivity_lost()

    async def on_connectivity_regained(self) -> None:
        await self._queue.on_connectivity_regained()

    async def on_foregrounded(self) -> None:
        await self._queue.on_foregrounded()

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def hydrate(self) -> None:
        """Load this profile's state from the persistent cache."""
        today = self._clock.today()

        raw_cards = await self._cache.get(self._cache_key(CollectionName.CARDS.value), [])
        self._cards = ensure_cash_card(_parse_cards(raw_cards), self._cash)

        raw_tx = await self._cache.get(self._cache_key(CollectionName.TRANSACTIONS.value), [])
        report = self._store.ingest(raw_tx, today=today, cards=self._cards)

        self._start_balance = normalize_start_balance(
            await self._cache.get(self._cache_key(CollectionName.START_BALANCE.value))
        )
        self._start_date = coerce_date(
            await self._cache.get(self._cache_key(CollectionName.START_DATE.value))
        )
        self._budgets = normalize_budgets(
            await self._cache.get(self._cache_key(CollectionName.BUDGETS.value), [])
        )

        await self._queue.load()
        if report.changed:
            await self._save_local(CollectionName.TRANSACTIONS)
            await self._queue.mark_dirty(CollectionName.TRANSACTIONS)
        elif self._queue.pending:
            self._queue.schedule_flush()
        self._notify(LedgerChange(source=ChangeSource.CACHE, collections=list(CollectionName)))

    async def start_sync(self) -> None:
        """Subscribe to every remote collection of this profile."""
        self._unsubscribe_all()
        handlers = {
            CollectionName.TRANSACTIONS: self._on_transactions_snapshot,
            CollectionName.CARDS: self._on_cards_snapshot,
            CollectionName.START_BALANCE: self._on_start_balance_snapshot,
            CollectionName.START_DATE: self._on_start_date_snapshot,
            CollectionName.BUDGETS: self._on_budgets_snapshot,
        }
        for collection, handler in handlers.items():
            unsubscribe = await self._remote.subscribe(self._remote_path(collection), handler)
            self._unsubscribers.append(unsubscribe)

    async def switch_profile(self, profile: str, *, sync: bool = True) -> None:
        """
        Move to another profile.

        Subscriptions and the retry loop of the old profile are torn down
        before anything of the new profile is loaded.
        """
        previous = self._profile
        self._unsubscribe_all()
        await self._queue.teardown()

        self._profile = profile
        self._reset_state()
        self._queue = self._new_queue(online=self._queue.online)
        self._event_logger.log(LedgerEventBuilder.profile_switched(previous, profile))

        await self.hydrate()
        if sync:
            await self.start_sync()

    async def close(self) -> None:
        self._unsubscribe_all()
        await self._queue.teardown()

    def _unsubscribe_all(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()

    # =========================================================================
    # Remote snapshot handlers
    # =========================================================================

    async def _on_transactions_snapshot(self, value: Any) -> None:
        today = self._clock.today()
        incoming = normalize_collection(
            value, today=today, cards=self._cards,
            cash_method=self._cash, event_logger=self._event_logger,
        )
        result = reconcile(
            self._store.snapshot(),
            incoming.records,
            pending=self._queue.is_pending(CollectionName.TRANSACTIONS),
        )
        merged = normalize_collection(
            result.records, today=today, cards=self._cards,
            cash_method=self._cash, event_logger=self._event_logger,
        )
        self._store.replace_all(merged.records)
        result = result.model_copy(update={
            "records": self._store.snapshot(),
            "normalization_changed": incoming.changed or merged.changed,
        })
        self._event_logger.log(LedgerEventBuilder.snapshot_applied(
            result.strategy.value, result.added_ids, result.removed_ids, result.updated_ids
        ))
        await self._consume_reconciliation(result)

    async def _consume_reconciliation(self, result: ReconciliationResult) -> None:
        await self._save_local(CollectionName.TRANSACTIONS)
        if result.normalization_changed:
            await self._queue.mark_dirty(CollectionName.TRANSACTIONS)
        self._notify(LedgerChange(
            source=ChangeSource.REMOTE,
            collections=[CollectionName.TRANSACTIONS],
            reconciliation=result,
        ))

    async def _on_cards_snapshot(self, value: Any) -> None:
        if self._queue.is_pending(CollectionName.CARDS):
            return
        cards = ensure_cash_card(_parse_cards(value), self._cash)
        if cards == self._cards:
            return
        self._cards = cards
        await self._save_local(CollectionName.CARDS)
        report = self._store.renormalize(today=self._clock.today(), cards=self._cards)
        changed = [CollectionName.CARDS]
        if report.changed:
            await self._save_local(CollectionName.TRANSACTIONS)
            await self._queue.mark_dirty(CollectionName.TRANSACTIONS)
            changed.append(CollectionName.TRANSACTIONS)
        self._notify(LedgerChange(source=ChangeSource.REMOTE, collections=changed))

    async def _on_start_balance_snapshot(self, value: Any) -> None:
        if self._queue.is_pending(CollectionName.START_BALANCE):
            return
        self._start_balance = normalize_start_balance(value)
        await self._save_local(CollectionName.START_BALANCE)
        self._notify(LedgerChange(
            source=ChangeSource.REMOTE, collections=[CollectionName.START_BALANCE]
        ))

    async def _on_start_date_snapshot(self, value: Any) -> None:
        if self._queue.is_pending(CollectionName.START_DATE):
            return
        self._start_date = coerce_date(value)
        await self._save_local(CollectionName.START_DATE)
        self._notify(LedgerChange(
            source=ChangeSource.REMOTE, collections=[CollectionName.START_DATE]
        ))

    async def _on_budgets_snapshot(self, value: Any) -> None:
        if self._queue.is_pending(CollectionName.BUDGETS):
            return
        self._budgets = normalize_budgets(value)
        await self._save_local(CollectionName.BUDGETS)
        self._notify(LedgerChange(source=ChangeSource.REMOTE, collections=[CollectionName.BUDGETS]))

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _cache_key(self, key: str) -> str:
        return f"{self._profile}:{key}"

    def _remote_path(self, collection: CollectionName) -> str:
        return f"{self._sync_settings.remote_root}/{self._profile}/{collection.value}"

    def _payload(self, collection: CollectionName) -> Any:
        if collection == CollectionName.TRANSACTIONS:
            return self._store.to_storage()
        if collection == CollectionName.CARDS:
            return [c.to_storage_dict() for c in self._cards]
        if collection == CollectionName.START_BALANCE:
            return None if self._start_balance is None else str(self._start_balance)
        if collection == CollectionName.START_DATE:
            return None if self._start_date is None else self._start_date.isoformat()
        return [b.to_storage_dict() for b in self._budgets]

    async def _save_local(self, collection: CollectionName) -> None:
        await self._cache.set(self._cache_key(collection.value), self._payload(collection))

    async def _persist(self, collection: CollectionName) -> None:
        """Queue persister: write the current state of one collection remotely."""
        await self._remote.write(self._remote_path(collection), self._payload(collection))

    async def _commit(self, *collections: CollectionName) -> None:
        for collection in collections:
            await self._save_local(collection)
        await self._queue.mark_dirty(*collections)
        self._notify(LedgerChange(source=ChangeSource.LOCAL, collections=list(collections)))

    async def _apply_override(self, result: OverrideResult) -> OverrideResult:
        for event in result.events:
            self._event_logger.log(event)
        if result.changed:
            self._store.replace_all(result.records)
            await self._commit(CollectionName.TRANSACTIONS)
        return result

    async def _apply_budget_change(self, change: BudgetChange) -> None:
        for budget_id in change.created_ids:
            budget = next(b for b in change.budgets if b.id == budget_id)
            self._event_logger.log(LedgerEventBuilder.budget_created(
                budget.id, budget.tag, budget.start_date.isoformat()
            ))
        for budget_id in change.closed_ids:
            budget = next(b for b in change.budgets if b.id == budget_id)
            self._event_logger.log(LedgerEventBuilder.budget_closed(budget.id, budget.tag))
        if change.changed:
            self._budgets = change.budgets
            await self._commit(CollectionName.BUDGETS)

    def _notify(self, change: LedgerChange) -> None:
        for listener in list(self._listeners):
            listener(change)

    def _require(self, record_id: str) -> TransactionRecord:
        record = self._store.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Record {record_id} not found")
        return record

    def _resolve_id(self, record_id: str) -> str:
        """Accept stored ids and virtual occurrence ids ("<master>_<date>")."""
        if record_id in self._store:
            return record_id
        split = split_virtual_id(record_id)
        if split is not None and split[0] in self._store:
            return split[0]
        raise RecordNotFoundError(f"Record {record_id} not found")


def _parse_cards(raw: Any) -> list[Card]:
    """Readable cards from a stored collection; unreadable entries are skipped."""
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = list(raw.values())
    cards = []
    for item in raw:
        try:
            cards.append(item if isinstance(item, Card) else Card.model_validate(item))
        except ValueError:
            continue
    return cards


def create_ledger(
    use_disk_cache: bool = False,
    remote: Optional[RemoteStoreInterface] = None,
    clock: Optional[Clock] = None,
    event_logger: Optional[LedgerEventLogger] = None,
) -> LedgerEngine:
    """
    Factory function to create a ledger engine from settings.

    Args:
        use_disk_cache: Persist the cache as JSON at the configured path.
                    Set to False for an in-memory cache.
        remote: Remote store backend; defaults to an in-memory store
        clock: Time source; defaults to the system clock in the
               configured timezone
        event_logger: Event logger; defaults to a local-only logger

    Returns:
        A LedgerEngine; call `hydrate()` and `start_sync()` before use.
    """
    settings = get_settings()
    cache = JsonFileCache(settings.sync.cache_path) if use_disk_cache else InMemoryCache()
    return LedgerEngine(
        cache,
        remote or InMemoryRemoteStore(),
        clock,
        ledger_settings=settings.ledger,
        sync_settings=settings.sync,
        event_logger=event_logger,
    )
