"""
Budget ledger for Routewise.

Persistent running totals (daily/monthly spend) plus an append-only
transaction log. The router consults it before committing a route; callers
record actual spend after a call completes.

Consistency model:
- `monthly_spent` is recomputed from the transaction log on every read.
- `daily_spent` is an incremental counter, reset when the stored
  `last_reset` date differs from today (UTC). Pruning old transactions does
  not retroactively correct it, so the log is the ground truth when the two
  disagree.
- Every read-modify-write cycle is serialized per (store, key).
- Storage failures are logged and degrade to an empty usage record instead
  of blocking routing. `last_error` keeps the most recent failure so the
  degradation is observable. Writes are skipped after a failed read so the
  stored log is never replaced by that empty record.
"""

import logging
import threading
import uuid
import weakref
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from routewise.models import (
    BudgetCheck,
    BudgetUsage,
    Operation,
    SpendBreakdown,
    SpendingStats,
    Transaction,
    TransactionExport,
)
from routewise.schemas import BudgetConfig
from routewise.storage import InMemoryStore, KeyValueStore

logger = logging.getLogger("routewise.ledger")

DEFAULT_STORAGE_KEY = "routewise.budget"
DEFAULT_WARNING_THRESHOLD = 80.0

TransactionListener = Callable[[Transaction], None]

# One lock per (store, key) so every ledger sharing a record serializes on it.
# Entries go away with their store.
_key_locks: "weakref.WeakKeyDictionary[Any, dict[str, threading.RLock]]" = weakref.WeakKeyDictionary()
_key_locks_guard = threading.Lock()


def _lock_for(storage: Any, key: str) -> threading.RLock:
    with _key_locks_guard:
        try:
            locks = _key_locks.setdefault(storage, {})
        except TypeError:
            # Unhashable or not weak-referenceable: the ledger gets its own lock
            logger.debug(f"Budget store {type(storage).__name__} cannot share a lock")
            return threading.RLock()
        if key not in locks:
            locks[key] = threading.RLock()
        return locks[key]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BudgetLedger:
    """
    Persistent spend tracking with pre-flight limit checks.

    Example:
        ```python
        ledger = BudgetLedger(SQLiteStore("budget.db"))
        budget = BudgetConfig(daily_usd=1.00, monthly_usd=20.00)

        check = ledger.check_budget(0.02, budget)
        if check.allowed:
            ...  # make the call
            ledger.record_transaction("openai", "gpt-4o-mini", 0.018, 900, 150)

        print(ledger.get_budget_warnings(budget))
        ```
    """

    def __init__(
        self,
        storage: Optional[Any] = None,
        key: str = DEFAULT_STORAGE_KEY,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the ledger.

        Args:
            storage: Object with `get(key)` and `update(key, value)`. A store
                without a callable `update` cannot persist; the ledger then
                falls back to a transient in-memory store and logs a warning.
            key: Persistence key the usage record lives under.
            clock: Returns the current time. Defaults to UTC now.
        """
        self.key = key
        self._clock = clock or _utcnow
        self._listeners: list[TransactionListener] = []
        self.last_error: Optional[Exception] = None

        if storage is None:
            self.persistent = False
            self._storage: KeyValueStore = InMemoryStore()
        elif not callable(getattr(storage, "update", None)):
            self.persistent = False
            self._storage = self._transient_copy_of(storage)
            logger.warning(
                f"Budget store {type(storage).__name__} has no update(); "
                f"spend for '{key}' will not survive a restart"
            )
        else:
            self.persistent = True
            self._storage = storage

        self._lock = _lock_for(self._storage, key)

    def _transient_copy_of(self, storage: Any) -> InMemoryStore:
        memory = InMemoryStore()
        getter = getattr(storage, "get", None)
        if callable(getter):
            try:
                existing = getter(self.key)
            except Exception as e:
                logger.warning(f"Failed to read budget data from read-only store: {e}")
                self.last_error = e
                existing = None
            if existing is not None:
                memory.update(self.key, existing)
        return memory

    # =========================================================================
    # Persistence
    # =========================================================================

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    def _empty_usage(self, today: str) -> BudgetUsage:
        return BudgetUsage(daily_spent=0.0, monthly_spent=0.0, last_reset=today)

    def _load(self, today: str) -> tuple[BudgetUsage, bool]:
        """
        Read the stored usage record.

        Returns:
            (usage, readable). `readable` is False when the store itself
            failed; `usage` is then an empty stand-in that must not be
            written back.
        """
        try:
            stored = self._storage.get(self.key)
        except Exception as e:
            logger.warning(f"Failed to load budget data for '{self.key}': {e}")
            self.last_error = e
            return self._empty_usage(today), False

        if stored is None:
            return self._empty_usage(today), True

        try:
            usage = BudgetUsage.from_dict(stored, today)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed budget data for '{self.key}': {e}")
            self.last_error = e
            return self._empty_usage(today), True

        return usage, True

    def _save(self, usage: BudgetUsage) -> bool:
        try:
            self._storage.update(self.key, usage.to_dict())
            return True
        except Exception as e:
            logger.error(f"Failed to save budget data for '{self.key}': {e}")
            self.last_error = e
            return False

    # =========================================================================
    # Recording
    # =========================================================================

    def add_listener(self, listener: TransactionListener) -> TransactionListener:
        """Register a callback run after each recorded transaction."""
        self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: TransactionListener) -> bool:
        """Unregister a callback. Returns True if it was registered."""
        if listener in self._listeners:
            self._listeners.remove(listener)
            return True
        return False

    def _generate_id(self, now: datetime) -> str:
        return f"{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}"

    def record_transaction(
        self,
        provider: str,
        model: str,
        cost: float,
        input_tokens: int = 0,
        output_tokens: int = 0,
        operation: Operation | str = Operation.CHAT,
    ) -> Transaction:
        """
        Append a spend event and persist the updated totals.

        Listeners run after persistence; their failures are logged and
        never reach the caller.

        Raises:
            ValueError: If cost or token counts are negative.
        """
        if cost < 0:
            raise ValueError(f"cost must be non-negative, got {cost}")
        if input_tokens < 0 or output_tokens < 0:
            raise ValueError("token counts must be non-negative")

        operation = Operation(operation).value

        with self._lock:
            now = self._now()
            transaction = Transaction(
                id=self._generate_id(now),
                timestamp=now.isoformat(),
                provider=provider,
                model=model,
                cost=float(cost),
                input_tokens=int(input_tokens),
                output_tokens=int(output_tokens),
                operation=operation,
            )

            usage, readable = self._current_usage()
            if readable:
                usage.transactions.append(transaction)
                usage.daily_spent += transaction.cost
                usage.monthly_spent += transaction.cost
                self._save(usage)
            else:
                logger.error(
                    f"Dropped ${transaction.cost:.6f} for {provider}:{model}: "
                    f"budget data for '{self.key}' could not be read"
                )

        logger.debug(
            f"Recorded ${transaction.cost:.6f} for {provider}:{model} ({operation})"
        )

        for listener in list(self._listeners):
            try:
                listener(transaction)
            except Exception:
                logger.exception(f"Transaction listener {listener!r} failed")

        return transaction

    # =========================================================================
    # Queries
    # =========================================================================

    def get_budget_usage(self) -> BudgetUsage:
        """
        Load and reconcile the usage record.

        Applies the daily rollover and recomputes monthly spend from the
        transaction log. Every other query goes through here.
        """
        return self._current_usage()[0]

    def _current_usage(self) -> tuple[BudgetUsage, bool]:
        now = self._now()
        today = now.strftime("%Y-%m-%d")
        this_month = now.strftime("%Y-%m")

        usage, readable = self._load(today)

        if usage.last_reset != today:
            usage.daily_spent = 0.0
            usage.last_reset = today

        usage.monthly_spent = sum(
            t.cost for t in usage.transactions if t.month == this_month
        )
        return usage, readable

    def check_budget(self, estimated_cost: float, config: BudgetConfig) -> BudgetCheck:
        """
        Check whether spending `estimated_cost` would break a ceiling.

        The daily ceiling is checked first. Dimensions without a positive
        ceiling impose no constraint.
        """
        usage = self.get_budget_usage()

        if config.daily_usd and config.daily_usd > 0:
            projected = usage.daily_spent + estimated_cost
            if projected > config.daily_usd:
                return BudgetCheck(
                    allowed=False,
                    current_usage=usage,
                    reason=(
                        f"Would exceed daily budget (${config.daily_usd:.2f}). "
                        f"Current: ${usage.daily_spent:.4f}, "
                        f"Estimated: +${estimated_cost:.4f}"
                    ),
                )

        if config.monthly_usd and config.monthly_usd > 0:
            projected = usage.monthly_spent + estimated_cost
            if projected > config.monthly_usd:
                return BudgetCheck(
                    allowed=False,
                    current_usage=usage,
                    reason=(
                        f"Would exceed monthly budget (${config.monthly_usd:.2f}). "
                        f"Current: ${usage.monthly_spent:.4f}, "
                        f"Estimated: +${estimated_cost:.4f}"
                    ),
                )

        return BudgetCheck(allowed=True, current_usage=usage)

    def get_budget_warnings(self, config: BudgetConfig) -> list[str]:
        """Advisory messages for ceilings whose usage ratio is at or over the threshold."""
        warnings = []
        usage = self.get_budget_usage()
        threshold = (config.warning_threshold or DEFAULT_WARNING_THRESHOLD) / 100

        if config.daily_usd and config.daily_usd > 0:
            ratio = usage.daily_spent / config.daily_usd
            if ratio >= threshold:
                warnings.append(
                    f"Daily budget {ratio * 100:.1f}% used "
                    f"(${usage.daily_spent:.2f} of ${config.daily_usd:.2f})"
                )

        if config.monthly_usd and config.monthly_usd > 0:
            ratio = usage.monthly_spent / config.monthly_usd
            if ratio >= threshold:
                warnings.append(
                    f"Monthly budget {ratio * 100:.1f}% used "
                    f"(${usage.monthly_spent:.2f} of ${config.monthly_usd:.2f})"
                )

        return warnings

    def get_spending_stats(self) -> SpendingStats:
        """Totals plus per-provider, per-model and per-day breakdowns, highest cost first."""
        transactions = self.get_budget_usage().transactions

        total = sum(t.cost for t in transactions)
        count = len(transactions)

        by_provider: dict[str, list] = defaultdict(lambda: [0.0, 0])
        by_model: dict[str, list] = defaultdict(lambda: [0.0, 0])
        by_day: dict[str, list] = defaultdict(lambda: [0.0, 0])

        for t in transactions:
            for bucket, key in ((by_provider, t.provider), (by_model, t.model), (by_day, t.date)):
                bucket[key][0] += t.cost
                bucket[key][1] += 1

        def ranked(bucket: dict[str, list]) -> list[SpendBreakdown]:
            rows = [SpendBreakdown(key=k, cost=v[0], count=v[1]) for k, v in bucket.items()]
            return sorted(rows, key=lambda row: row.cost, reverse=True)

        return SpendingStats(
            total_spent=total,
            transaction_count=count,
            average_per_transaction=total / count if count > 0 else 0.0,
            top_providers=ranked(by_provider),
            top_models=ranked(by_model),
            daily_trend=ranked(by_day),
        )

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_old_transactions(self, keep_days: int = 30) -> int:
        """
        Drop transactions older than `keep_days` days.

        `daily_spent` is left as is, even if pruned transactions were
        counted in it.

        Returns:
            Number of transactions removed.
        """
        with self._lock:
            usage, readable = self._current_usage()
            if not readable:
                logger.error(f"Skipped cleanup: budget data for '{self.key}' could not be read")
                return 0
            cutoff = self._now() - timedelta(days=keep_days)

            before = len(usage.transactions)
            usage.transactions = [t for t in usage.transactions if t.at >= cutoff]
            removed = before - len(usage.transactions)

            self._save(usage)

        if removed:
            logger.info(f"Pruned {removed} transactions older than {keep_days} days")
        return removed

    def export_transactions(self) -> TransactionExport:
        """All transactions, oldest first, with a summary."""
        transactions = sorted(self.get_budget_usage().transactions, key=lambda t: t.at)
        return TransactionExport(
            transactions=transactions,
            total_cost=sum(t.cost for t in transactions),
            total_transactions=len(transactions),
            date_from=transactions[0].timestamp if transactions else "",
            date_to=transactions[-1].timestamp if transactions else "",
        )
