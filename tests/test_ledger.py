"""Tests for the budget ledger."""

import gc
import logging
import threading
import weakref
from datetime import datetime, timedelta, timezone

import pytest

from routewise.ledger import BudgetLedger, _key_locks, _lock_for
from routewise.models import Operation
from routewise.schemas import BudgetConfig
from routewise.storage import InMemoryStore, PersistenceError, SQLiteStore


class FakeClock:
    """Settable clock for deterministic day and month boundaries."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class ReadOnlyStore:
    """Store without an update() method."""

    def __init__(self, data=None):
        self.data = data

    def get(self, key):
        return self.data


class BrokenStore:
    """Store whose reads and writes always fail."""

    def get(self, key):
        raise PersistenceError("disk gone", key)

    def update(self, key, value):
        raise PersistenceError("disk gone", key)


class FlakyReadStore(InMemoryStore):
    """In-memory store whose next get() can be made to fail once."""

    def __init__(self):
        super().__init__()
        self.fail_next_read = False

    def get(self, key):
        if self.fail_next_read:
            self.fail_next_read = False
            raise PersistenceError("database is locked", key)
        return super().get(key)


class TestRecording:
    """Test transaction recording."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
        self.ledger = BudgetLedger(InMemoryStore(), clock=self.clock)

    def test_record_updates_totals(self):
        """Recording adds to both daily and monthly spend."""
        self.ledger.record_transaction("openai", "gpt-4o-mini", 0.25, 1000, 200)
        self.ledger.record_transaction("openai", "gpt-4o", 0.5)

        usage = self.ledger.get_budget_usage()
        assert usage.daily_spent == pytest.approx(0.75)
        assert usage.monthly_spent == pytest.approx(0.75)
        assert len(usage.transactions) == 2
        assert usage.last_reset == "2026-03-10"

    def test_transaction_fields(self):
        """Transactions carry an id, UTC timestamp and operation."""
        tx = self.ledger.record_transaction("ollama", "llama3", 0.0, 10, 5, Operation.COMPLETION)

        assert tx.id
        assert tx.timestamp.startswith("2026-03-10T12:00:00")
        assert tx.operation == "completion"
        assert tx.input_tokens == 10
        assert tx.output_tokens == 5

    def test_transaction_ids_unique(self):
        ids = {self.ledger.record_transaction("p", "m", 0.01).id for _ in range(20)}
        assert len(ids) == 20

    def test_negative_cost_rejected(self):
        """Negative costs are rejected before anything is stored."""
        with pytest.raises(ValueError):
            self.ledger.record_transaction("p", "m", -0.01)
        assert self.ledger.get_budget_usage().transactions == []

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError):
            self.ledger.record_transaction("p", "m", 0.01, input_tokens=-1)

    def test_unknown_operation_rejected(self):
        with pytest.raises(ValueError):
            self.ledger.record_transaction("p", "m", 0.01, operation="embedding")

    def test_listeners_called(self):
        """Listeners see each recorded transaction."""
        seen = []
        self.ledger.add_listener(seen.append)

        tx = self.ledger.record_transaction("p", "m", 0.1)

        assert seen == [tx]

    def test_failing_listener_isolated(self):
        """A listener error does not reach the caller or other listeners."""
        seen = []

        def broken(tx):
            raise RuntimeError("listener bug")

        self.ledger.add_listener(broken)
        self.ledger.add_listener(seen.append)

        tx = self.ledger.record_transaction("p", "m", 0.1)

        assert seen == [tx]
        assert self.ledger.get_budget_usage().daily_spent == pytest.approx(0.1)

    def test_remove_listener(self):
        seen = []
        self.ledger.add_listener(seen.append)
        assert self.ledger.remove_listener(seen.append)
        assert not self.ledger.remove_listener(seen.append)

        self.ledger.record_transaction("p", "m", 0.1)
        assert seen == []


class TestRollover:
    """Test day and month boundaries."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2026, 3, 30, 23, 0, tzinfo=timezone.utc))
        self.ledger = BudgetLedger(InMemoryStore(), clock=self.clock)

    def test_daily_reset_on_new_day(self):
        """Daily spend resets on a new UTC day; monthly does not."""
        self.ledger.record_transaction("p", "m", 0.5)
        self.clock.advance(hours=2)

        usage = self.ledger.get_budget_usage()
        assert usage.daily_spent == 0.0
        assert usage.monthly_spent == pytest.approx(0.5)
        assert usage.last_reset == "2026-03-31"

    def test_spend_after_rollover(self):
        self.ledger.record_transaction("p", "m", 0.5)
        self.clock.advance(days=1)
        self.ledger.record_transaction("p", "m", 0.2)

        usage = self.ledger.get_budget_usage()
        assert usage.daily_spent == pytest.approx(0.2)
        assert usage.monthly_spent == pytest.approx(0.7)

    def test_monthly_recomputed_from_log(self):
        """Monthly spend only counts transactions from the current month."""
        self.ledger.record_transaction("p", "m", 0.5)
        self.clock.advance(days=2)
        self.ledger.record_transaction("p", "m", 0.3)

        usage = self.ledger.get_budget_usage()
        assert usage.monthly_spent == pytest.approx(0.3)
        assert len(usage.transactions) == 2

    def test_naive_clock_treated_as_utc(self):
        clock = FakeClock(datetime(2026, 5, 1, 8, 0))
        ledger = BudgetLedger(InMemoryStore(), clock=clock)
        tx = ledger.record_transaction("p", "m", 0.1)
        assert tx.month == "2026-05"


class TestBudgetCheck:
    """Test pre-flight budget checks."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
        self.ledger = BudgetLedger(InMemoryStore(), clock=self.clock)

    def test_blocks_over_daily_ceiling(self):
        """0.50 spent + 0.60 estimated exceeds a 1.00 daily ceiling."""
        self.ledger.record_transaction("p", "m", 0.50)

        check = self.ledger.check_budget(0.60, BudgetConfig(daily_usd=1.00))

        assert not check.allowed
        assert "daily budget" in check.reason
        assert check.current_usage.daily_spent == pytest.approx(0.50)

    def test_allows_exactly_at_ceiling(self):
        """Reaching the ceiling exactly is allowed."""
        self.ledger.record_transaction("p", "m", 0.50)
        assert self.ledger.check_budget(0.50, BudgetConfig(daily_usd=1.00)).allowed

    def test_monthly_ceiling(self):
        self.ledger.record_transaction("p", "m", 4.0)
        self.clock.advance(days=1)

        check = self.ledger.check_budget(1.5, BudgetConfig(daily_usd=10.0, monthly_usd=5.0))

        assert not check.allowed
        assert "monthly budget" in check.reason

    def test_daily_checked_before_monthly(self):
        """When both ceilings are broken the daily one is reported."""
        self.ledger.record_transaction("p", "m", 0.9)
        check = self.ledger.check_budget(1.0, BudgetConfig(daily_usd=1.0, monthly_usd=1.0))
        assert "daily budget" in check.reason

    def test_no_ceilings(self):
        """A budget without ceilings allows everything."""
        self.ledger.record_transaction("p", "m", 100.0)
        assert self.ledger.check_budget(100.0, BudgetConfig()).allowed

    def test_zero_ceiling_is_unconstrained(self):
        assert self.ledger.check_budget(5.0, BudgetConfig(daily_usd=0.0)).allowed


class TestWarnings:
    """Test budget threshold warnings."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
        self.ledger = BudgetLedger(InMemoryStore(), clock=self.clock)

    def test_daily_warning_at_threshold(self):
        self.ledger.record_transaction("p", "m", 0.85)

        warnings = self.ledger.get_budget_warnings(BudgetConfig(daily_usd=1.0, monthly_usd=10.0))

        assert warnings == ["Daily budget 85.0% used ($0.85 of $1.00)"]

    def test_custom_threshold(self):
        self.ledger.record_transaction("p", "m", 5.0)
        budget = BudgetConfig(monthly_usd=10.0, warning_threshold=50.0)

        warnings = self.ledger.get_budget_warnings(budget)

        assert len(warnings) == 1
        assert warnings[0].startswith("Monthly budget 50.0% used")

    def test_below_threshold(self):
        self.ledger.record_transaction("p", "m", 0.1)
        assert self.ledger.get_budget_warnings(BudgetConfig(daily_usd=1.0)) == []


class TestStatsAndExport:
    """Test spending statistics, export and cleanup."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
        self.ledger = BudgetLedger(InMemoryStore(), clock=self.clock)
        self.ledger.record_transaction("openai", "gpt-4o", 0.40)
        self.clock.advance(days=1)
        self.ledger.record_transaction("openai", "gpt-4o-mini", 0.05)
        self.ledger.record_transaction("anthropic", "claude", 0.20)

    def test_stats_totals(self):
        stats = self.ledger.get_spending_stats()

        assert stats.total_spent == pytest.approx(0.65)
        assert stats.transaction_count == 3
        assert stats.average_per_transaction == pytest.approx(0.65 / 3)

    def test_breakdowns_sorted_by_cost(self):
        """Breakdowns list the biggest spender first."""
        stats = self.ledger.get_spending_stats()

        assert [row.key for row in stats.top_providers] == ["openai", "anthropic"]
        assert stats.top_providers[0].count == 2
        assert [row.key for row in stats.top_models] == ["gpt-4o", "claude", "gpt-4o-mini"]
        assert [row.key for row in stats.daily_trend] == ["2026-03-01", "2026-03-02"]

    def test_empty_stats(self):
        stats = BudgetLedger().get_spending_stats()
        assert stats.total_spent == 0.0
        assert stats.average_per_transaction == 0.0
        assert stats.top_models == []

    def test_export_matches_stats(self):
        """Export total equals the stats total, oldest transaction first."""
        export = self.ledger.export_transactions()

        assert export.total_cost == pytest.approx(self.ledger.get_spending_stats().total_spent)
        assert export.total_transactions == 3
        assert export.transactions[0].model == "gpt-4o"
        assert export.date_from.startswith("2026-03-01")
        assert export.date_to.startswith("2026-03-02")
        assert export.to_dict()["summary"]["total_transactions"] == 3

    def test_export_empty(self):
        export = BudgetLedger().export_transactions()
        assert export.total_transactions == 0
        assert export.date_from == ""

    def test_cleanup_removes_old_transactions(self):
        """Cleanup prunes by age and leaves daily spend untouched."""
        self.clock.advance(days=40)
        self.ledger.record_transaction("openai", "gpt-4o", 0.10)
        daily_before = self.ledger.get_budget_usage().daily_spent

        removed = self.ledger.cleanup_old_transactions(keep_days=30)

        usage = self.ledger.get_budget_usage()
        assert removed == 3
        assert len(usage.transactions) == 1
        assert usage.daily_spent == pytest.approx(daily_before)

    def test_cleanup_nothing_to_remove(self):
        assert self.ledger.cleanup_old_transactions(keep_days=30) == 0


class TestStorageBackends:
    """Test ledger behavior across storage backends."""

    def test_default_is_in_memory(self):
        ledger = BudgetLedger()
        assert not ledger.persistent
        ledger.record_transaction("p", "m", 0.1)
        assert ledger.get_budget_usage().daily_spent == pytest.approx(0.1)

    def test_sqlite_persists_across_instances(self, tmp_path):
        """A second ledger on the same database sees earlier spend."""
        db_path = str(tmp_path / "budget.db")
        first = BudgetLedger(SQLiteStore(db_path))
        first.record_transaction("openai", "gpt-4o-mini", 0.3, 100, 20)

        second = BudgetLedger(SQLiteStore(db_path))
        usage = second.get_budget_usage()

        assert second.persistent
        assert usage.daily_spent == pytest.approx(0.3)
        assert usage.transactions[0].model == "gpt-4o-mini"

    def test_separate_keys_are_isolated(self):
        store = InMemoryStore()
        BudgetLedger(store, key="team-a").record_transaction("p", "m", 1.0)
        assert BudgetLedger(store, key="team-b").get_budget_usage().transactions == []

    def test_store_without_update_falls_back(self, caplog):
        """A read-only store degrades to a transient copy with a warning."""
        seeded = BudgetLedger()
        seeded.record_transaction("p", "m", 0.2)
        data = seeded._storage.get(seeded.key)

        with caplog.at_level(logging.WARNING, logger="routewise.ledger"):
            ledger = BudgetLedger(ReadOnlyStore(data))

        assert not ledger.persistent
        assert "will not survive a restart" in caplog.text
        assert len(ledger.get_budget_usage().transactions) == 1

        ledger.record_transaction("p", "m", 0.1)
        assert len(ledger.get_budget_usage().transactions) == 2

    def test_storage_failure_degrades(self):
        """Read and write failures leave an empty usage record."""
        ledger = BudgetLedger(BrokenStore())

        tx = ledger.record_transaction("p", "m", 0.1)

        assert tx.cost == pytest.approx(0.1)
        assert ledger.get_budget_usage().transactions == []
        assert isinstance(ledger.last_error, PersistenceError)

    def test_malformed_data_discarded(self):
        store = InMemoryStore()
        store.update("routewise.budget", {"transactions": [{"id": "x"}]})
        ledger = BudgetLedger(store)

        assert ledger.get_budget_usage().transactions == []
        assert ledger.last_error is not None

    def test_failed_read_keeps_stored_log(self):
        """A transient read failure never overwrites the stored transactions."""
        store = FlakyReadStore()
        ledger = BudgetLedger(store)
        for _ in range(5):
            ledger.record_transaction("openai", "gpt-4o-mini", 0.01)

        store.fail_next_read = True
        ledger.record_transaction("openai", "gpt-4o-mini", 0.01)

        assert isinstance(ledger.last_error, PersistenceError)
        assert len(ledger.get_budget_usage().transactions) == 5

        ledger.record_transaction("openai", "gpt-4o-mini", 0.01)
        assert len(ledger.get_budget_usage().transactions) == 6

    def test_failed_read_skips_cleanup(self):
        clock = FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
        store = FlakyReadStore()
        ledger = BudgetLedger(store, clock=clock)
        ledger.record_transaction("openai", "gpt-4o", 0.2)
        clock.advance(days=40)

        store.fail_next_read = True
        assert ledger.cleanup_old_transactions(keep_days=30) == 0

        assert len(ledger.get_budget_usage().transactions) == 1
        assert ledger.cleanup_old_transactions(keep_days=30) == 1


class TestConcurrency:
    """Test serialization of concurrent recording."""

    def test_concurrent_records_on_shared_store(self):
        """Two ledgers on one store lose no transactions under contention."""
        store = InMemoryStore()
        ledgers = [BudgetLedger(store), BudgetLedger(store)]
        threads_per_ledger = 4
        records_per_thread = 25

        def record(ledger, cost):
            for _ in range(records_per_thread):
                ledger.record_transaction("openai", "gpt-4o-mini", cost)

        threads = [
            threading.Thread(target=record, args=(ledger, 0.01 * (i + 1)))
            for ledger in ledgers
            for i in range(threads_per_ledger)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        usage = ledgers[0].get_budget_usage()
        expected_total = 2 * records_per_thread * sum(0.01 * (i + 1) for i in range(threads_per_ledger))
        assert len(usage.transactions) == 2 * threads_per_ledger * records_per_thread
        assert usage.daily_spent == pytest.approx(expected_total)
        assert sum(t.cost for t in usage.transactions) == pytest.approx(expected_total)

    def test_lock_shared_per_store_and_key(self):
        store = InMemoryStore()

        assert BudgetLedger(store)._lock is BudgetLedger(store)._lock
        assert BudgetLedger(store, key="a")._lock is not BudgetLedger(store, key="b")._lock
        assert BudgetLedger(InMemoryStore())._lock is not BudgetLedger(store)._lock

    def test_locks_released_with_store(self):
        """Lock entries do not outlive their store."""
        store = InMemoryStore()
        _lock_for(store, "routewise.budget")
        assert store in _key_locks
        store_ref = weakref.ref(store)

        del store
        gc.collect()

        assert store_ref() is None

    def test_unhashable_store_gets_own_lock(self):
        class DictStore(dict):
            def update(self, key, value):
                self[key] = value

        store = DictStore()
        ledger = BudgetLedger(store)
        ledger.record_transaction("p", "m", 0.1)

        assert ledger.persistent
        assert len(ledger.get_budget_usage().transactions) == 1
