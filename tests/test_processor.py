from datetime import datetime, timedelta, timezone

import pytest

from finance_tracker import categories
from finance_tracker.categories import Actor
from finance_tracker.core.errors import PersistenceError
from finance_tracker.core.models import Category, CategoryType, Frequency, TransactionType
from finance_tracker.database import Session, Store
from finance_tracker.processor import RecurringProcessor

NOW = datetime(2025, 6, 10, 0, 0, tzinfo=timezone.utc)
YESTERDAY = NOW - timedelta(days=1)


def _setup(tmp_path, *categories):
    store = Store(tmp_path / "tx.db")
    store.init_schema()
    with store.unit_of_work() as session:
        for category in categories:
            session.insert_category(category)
    return store


def _daily(name="Coffee", active=True, next_run=YESTERDAY, owner="u1"):
    return Category(
        name=name,
        type=CategoryType.EXPENSE,
        transaction_type=TransactionType.RECURRING,
        is_recurring=True,
        frequency=Frequency.DAILY,
        default_amount=100.0,
        is_active=active,
        last_processed_date=next_run - timedelta(days=1),
        next_processed_date=next_run,
        created_by=owner,
    )


def test_due_category_generates_one_transaction(tmp_path):
    category = _daily()
    store = _setup(tmp_path, category)

    result = RecurringProcessor(store, clock=lambda: NOW).process_recurring_categories()

    assert result.processed == [category.id]
    assert result.failed == []
    txs = store.fetch_transactions()
    assert len(txs) == 1
    tx = txs[0]
    assert tx.amount == 100.0
    assert tx.type is CategoryType.EXPENSE
    assert tx.category == category.id
    assert tx.user == "u1"
    assert tx.title == "Coffee"
    assert tx.description == "Recurring Coffee"
    assert tx.date == NOW
    assert result.transactions == [tx.id]

    updated = store.get_category(category.id)
    assert updated.last_processed_date == NOW
    assert updated.next_processed_date == NOW + timedelta(days=1)
    assert updated.next_processed_date > category.next_processed_date


def test_second_run_without_time_passing_generates_nothing(tmp_path):
    store = _setup(tmp_path, _daily())
    processor = RecurringProcessor(store, clock=lambda: NOW)

    processor.process_recurring_categories()
    second = processor.process_recurring_categories()

    assert second.processed == []
    assert len(store.fetch_transactions()) == 1


def test_inactive_category_is_skipped(tmp_path):
    category = _daily(active=False)
    store = _setup(tmp_path, category)

    result = RecurringProcessor(store, clock=lambda: NOW).process_recurring_categories()

    assert result.processed == []
    assert store.fetch_transactions() == []
    assert store.get_category(category.id).next_processed_date == YESTERDAY


def test_ownerless_default_category_is_not_processed(tmp_path):
    category = _daily(owner=None)
    category.is_default = True
    store = _setup(tmp_path, category)

    RecurringProcessor(store, clock=lambda: NOW).process_recurring_categories()

    assert store.fetch_transactions() == []


def test_failed_category_update_leaves_no_transaction(tmp_path, monkeypatch):
    category = _daily()
    store = _setup(tmp_path, category)

    def fail_update(self, category_id, last_processed, next_processed, updated_at):
        raise PersistenceError("disk full")

    monkeypatch.setattr(Session, "advance_schedule", fail_update)
    result = RecurringProcessor(store, clock=lambda: NOW).process_recurring_categories()

    assert result.failed == [category.id]
    assert store.fetch_transactions() == []
    assert store.get_category(category.id).next_processed_date == YESTERDAY


def test_failed_category_is_retried_next_cycle(tmp_path, monkeypatch):
    category = _daily()
    store = _setup(tmp_path, category)
    processor = RecurringProcessor(store, clock=lambda: NOW)

    def fail_update(self, category_id, last_processed, next_processed, updated_at):
        raise PersistenceError("database is locked")

    with monkeypatch.context() as patched:
        patched.setattr(Session, "advance_schedule", fail_update)
        assert processor.process_recurring_categories().failed == [category.id]

    result = processor.process_recurring_categories()
    assert result.processed == [category.id]
    assert len(store.fetch_transactions()) == 1


def test_one_failure_does_not_stop_other_categories(tmp_path, monkeypatch, caplog):
    broken = _daily(name="Broken")
    healthy = _daily(name="Healthy", next_run=YESTERDAY - timedelta(hours=1))
    store = _setup(tmp_path, broken, healthy)

    original = Session.insert_transaction

    def flaky_insert(self, transaction):
        if transaction.category == broken.id:
            raise PersistenceError("constraint failed")
        return original(self, transaction)

    monkeypatch.setattr(Session, "insert_transaction", flaky_insert)
    with caplog.at_level("ERROR"):
        result = RecurringProcessor(store, clock=lambda: NOW).process_recurring_categories()

    assert result.processed == [healthy.id]
    assert result.failed == [broken.id]
    assert [tx.category for tx in store.fetch_transactions()] == [healthy.id]
    assert broken.id in caplog.text


def test_reactivated_category_catches_up_once(tmp_path):
    category = _daily(next_run=NOW - timedelta(days=30))
    store = _setup(tmp_path, category)

    result = RecurringProcessor(store, clock=lambda: NOW).process_recurring_categories()

    assert len(result.processed) == 1
    assert len(store.fetch_transactions()) == 1
    assert store.get_category(category.id).next_processed_date == NOW + timedelta(days=1)


def test_query_failure_propagates(tmp_path, monkeypatch):
    store = _setup(tmp_path)

    def broken_query(now):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(store, "find_due_categories", broken_query)
    with pytest.raises(PersistenceError):
        RecurringProcessor(store, clock=lambda: NOW).process_recurring_categories()


def _edit_after_selection(store, edit):
    selected = store.find_due_categories(NOW)
    assert len(selected) == 1
    categories.update_category(store, selected[0].id, edit, Actor(id="u1"), clock=lambda: NOW)
    return selected[0]


def test_deactivated_during_run_keeps_user_edit(tmp_path):
    store = _setup(tmp_path, _daily(name="Rent"))
    snapshot = _edit_after_selection(store, {"isActive": False, "name": "Rent v2"})

    transaction = RecurringProcessor(store, clock=lambda: NOW).process_category(snapshot, NOW)

    assert transaction is None
    stored = store.get_category(snapshot.id)
    assert stored.is_active is False
    assert stored.name == "Rent v2"
    assert stored.next_processed_date == YESTERDAY
    assert store.fetch_transactions() == []


def test_switched_to_one_time_during_run_stays_one_time(tmp_path):
    store = _setup(tmp_path, _daily(name="Rent"))
    snapshot = _edit_after_selection(store, {"transactionType": "one-time"})

    transaction = RecurringProcessor(store, clock=lambda: NOW).process_category(snapshot, NOW)

    assert transaction is None
    stored = store.get_category(snapshot.id)
    assert stored.transaction_type is TransactionType.ONE_TIME
    assert stored.is_recurring is False
    assert stored.frequency is None
    assert stored.default_amount is None
    assert store.fetch_transactions() == []


def test_amount_edited_during_run_uses_current_values(tmp_path):
    store = _setup(tmp_path, _daily(name="Rent"))
    snapshot = _edit_after_selection(store, {"defaultAmount": 250, "name": "Rent v2"})

    transaction = RecurringProcessor(store, clock=lambda: NOW).process_category(snapshot, NOW)

    assert transaction.amount == 250.0
    assert transaction.title == "Rent v2"
    stored = store.get_category(snapshot.id)
    assert stored.name == "Rent v2"
    assert stored.default_amount == 250.0
    assert stored.next_processed_date == NOW + timedelta(days=1)


def test_stale_selection_from_another_run_is_not_generated_twice(tmp_path):
    store = _setup(tmp_path, _daily())
    first = RecurringProcessor(store, clock=lambda: NOW)
    second = RecurringProcessor(store, clock=lambda: NOW)
    snapshot = store.find_due_categories(NOW)[0]

    assert first.process_category(snapshot, NOW) is not None
    assert second.process_category(snapshot, NOW) is None
    assert len(store.fetch_transactions()) == 1


def test_deleted_during_run_is_skipped(tmp_path):
    store = _setup(tmp_path, _daily())
    snapshot = store.find_due_categories(NOW)[0]
    categories.delete_category(store, snapshot.id, Actor(id="u1"))

    result_tx = RecurringProcessor(store, clock=lambda: NOW).process_category(snapshot, NOW)

    assert result_tx is None
    assert store.fetch_transactions() == []


def test_run_with_stale_selection_reports_skipped(tmp_path, monkeypatch):
    category = _daily()
    store = _setup(tmp_path, category)
    stale = store.find_due_categories(NOW)
    processor = RecurringProcessor(store, clock=lambda: NOW)
    processor.process_recurring_categories()

    monkeypatch.setattr(store, "find_due_categories", lambda now: stale)
    result = processor.process_recurring_categories()

    assert result.processed == []
    assert result.skipped == [category.id]
    assert len(store.fetch_transactions()) == 1
