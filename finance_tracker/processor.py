# finance_tracker/processor.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from finance_tracker.core.clock import Clock, utc_now
from finance_tracker.core.errors import NotFoundError
from finance_tracker.core.models import Category, Transaction, TransactionType
from finance_tracker.database import Store
from finance_tracker.recurring import next_date

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    processed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    transactions: List[str] = field(default_factory=list)


def _still_due(category: Category, now: datetime) -> bool:
    return (
        category.transaction_type is TransactionType.RECURRING
        and category.is_active
        and category.created_by is not None
        and category.next_processed_date is not None
        and category.next_processed_date <= now
    )


class RecurringProcessor:
    """Materialise due recurring categories into transactions."""

    def __init__(self, store: Store, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock

    def process_recurring_categories(self) -> ProcessingResult:
        """Run one processing cycle.

        Query failures propagate. Failures while processing a single category
        are logged and recorded, and the remaining categories still run.
        """
        now = self.clock()
        due = self.store.find_due_categories(now)
        logger.info("Processing %d due recurring categories", len(due))

        result = ProcessingResult()
        for category in due:
            try:
                transaction = self.process_category(category, now)
            except Exception:
                logger.exception("Error processing recurring category %s", category.id)
                result.failed.append(category.id)
                continue
            if transaction is None:
                result.skipped.append(category.id)
                continue
            result.processed.append(category.id)
            result.transactions.append(transaction.id)

        logger.info(
            "Recurring processing completed: %d processed, %d skipped, %d failed",
            len(result.processed),
            len(result.skipped),
            len(result.failed),
        )
        return result

    def process_category(self, category: Category, now: datetime) -> Optional[Transaction]:
        """Create the transaction for *category* and advance its schedule.

        The row is re-read inside the unit of work; if it was edited, deleted
        or already processed since it was selected, nothing is written and
        ``None`` is returned. Otherwise the transaction insert and the cursor
        update share one unit of work; if either fails neither is kept and the
        category stays due.
        """
        with self.store.unit_of_work() as session:
            try:
                current = session.get_category(category.id)
            except NotFoundError:
                current = None
            if current is None or not _still_due(current, now):
                logger.info("Recurring category %s no longer due; skipping", category.id)
                return None

            transaction = Transaction(
                user=current.created_by,
                category=current.id,
                amount=current.default_amount,
                type=current.type,
                title=current.name,
                description=f"Recurring {current.name}",
                date=now,
                created_at=now,
            )
            session.insert_transaction(transaction)
            upcoming = next_date(now, current.frequency)
            session.advance_schedule(current.id, now, upcoming, now)
        logger.debug(
            "Generated transaction %s for category %s; next run at %s",
            transaction.id,
            current.id,
            upcoming.isoformat(),
        )
        return transaction
