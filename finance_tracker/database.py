# finance_tracker/database.py
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from finance_tracker.core.clock import as_utc
from finance_tracker.core.errors import NotFoundError, PersistenceError
from finance_tracker.core.models import (
    Category,
    CategoryType,
    Frequency,
    Transaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

_CATEGORY_COLUMNS = (
    "id",
    "name",
    "type",
    "icon",
    "color",
    "description",
    "transaction_type",
    "is_recurring",
    "frequency",
    "default_amount",
    "is_active",
    "last_processed_date",
    "next_processed_date",
    "is_default",
    "created_by",
    "budget",
    "created_at",
    "updated_at",
)

_TRANSACTION_COLUMNS = (
    "id",
    "user",
    "type",
    "title",
    "amount",
    "category",
    "description",
    "date",
    "created_at",
)


def _init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS categories (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            icon TEXT,
            color TEXT,
            description TEXT,
            transaction_type TEXT NOT NULL,
            is_recurring INTEGER NOT NULL DEFAULT 0,
            frequency TEXT,
            default_amount REAL,
            is_active INTEGER NOT NULL DEFAULT 1,
            last_processed_date TEXT,
            next_processed_date TEXT,
            is_default INTEGER NOT NULL DEFAULT 0,
            created_by TEXT,
            budget REAL,
            created_at TEXT,
            updated_at TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_categories_due
            ON categories (transaction_type, is_active, next_processed_date);
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            user TEXT NOT NULL,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            amount REAL NOT NULL,
            category TEXT NOT NULL REFERENCES categories(id),
            description TEXT,
            date TEXT NOT NULL,
            created_at TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_transactions_user
            ON transactions (user, date);
        """
    )


def _dt_to_db(value: Optional[datetime]) -> Optional[str]:
    # Fixed width so that string comparison in SQL matches time order.
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def _dt_from_db(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _category_params(category: Category) -> tuple:
    return (
        category.id,
        category.name,
        CategoryType(category.type).value,
        category.icon,
        category.color,
        category.description,
        TransactionType(category.transaction_type).value,
        int(category.is_recurring),
        Frequency(category.frequency).value if category.frequency else None,
        category.default_amount,
        int(category.is_active),
        _dt_to_db(category.last_processed_date),
        _dt_to_db(category.next_processed_date),
        int(category.is_default),
        category.created_by,
        category.budget,
        _dt_to_db(category.created_at),
        _dt_to_db(category.updated_at),
    )


def _category_from_row(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        type=CategoryType(row["type"]),
        icon=row["icon"],
        color=row["color"],
        description=row["description"],
        transaction_type=TransactionType(row["transaction_type"]),
        is_recurring=bool(row["is_recurring"]),
        frequency=Frequency(row["frequency"]) if row["frequency"] else None,
        default_amount=row["default_amount"],
        is_active=bool(row["is_active"]),
        last_processed_date=_dt_from_db(row["last_processed_date"]),
        next_processed_date=_dt_from_db(row["next_processed_date"]),
        is_default=bool(row["is_default"]),
        created_by=row["created_by"],
        budget=row["budget"],
        created_at=_dt_from_db(row["created_at"]),
        updated_at=_dt_from_db(row["updated_at"]),
    )


def _transaction_from_row(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        user=row["user"],
        type=CategoryType(row["type"]),
        title=row["title"],
        amount=float(row["amount"]),
        category=row["category"],
        description=row["description"],
        date=_dt_from_db(row["date"]),
        created_at=_dt_from_db(row["created_at"]),
    )


class Session:
    """Writes bound to one open unit of work."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get_category(self, category_id: str) -> Category:
        row = self._conn.execute(
            "SELECT * FROM categories WHERE id = ?", (category_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Category not found: {category_id}")
        return _category_from_row(row)

    def insert_category(self, category: Category) -> Category:
        placeholders = ", ".join("?" for _ in _CATEGORY_COLUMNS)
        self._conn.execute(
            f"INSERT INTO categories ({', '.join(_CATEGORY_COLUMNS)}) VALUES ({placeholders})",
            _category_params(category),
        )
        return category

    def update_category(self, category: Category) -> Category:
        assignments = ", ".join(f"{col} = ?" for col in _CATEGORY_COLUMNS[1:])
        params = _category_params(category)
        cursor = self._conn.execute(
            f"UPDATE categories SET {assignments} WHERE id = ?",
            params[1:] + (params[0],),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Category not found: {category.id}")
        return category

    def advance_schedule(
        self,
        category_id: str,
        last_processed: datetime,
        next_processed: datetime,
        updated_at: datetime,
    ) -> None:
        """Move only the schedule cursor, leaving user-editable columns alone."""
        cursor = self._conn.execute(
            """
            UPDATE categories
            SET last_processed_date = ?, next_processed_date = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                _dt_to_db(last_processed),
                _dt_to_db(next_processed),
                _dt_to_db(updated_at),
                category_id,
            ),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Category not found: {category_id}")

    def delete_category(self, category_id: str) -> None:
        cursor = self._conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        if cursor.rowcount == 0:
            raise NotFoundError(f"Category not found: {category_id}")

    def insert_transaction(self, transaction: Transaction) -> Transaction:
        self._conn.execute(
            f"""
            INSERT INTO transactions ({', '.join(_TRANSACTION_COLUMNS)})
            VALUES ({', '.join('?' for _ in _TRANSACTION_COLUMNS)})
            """,
            (
                transaction.id,
                transaction.user,
                CategoryType(transaction.type).value,
                transaction.title,
                float(transaction.amount),
                transaction.category,
                transaction.description,
                _dt_to_db(transaction.date),
                _dt_to_db(transaction.created_at),
            ),
        )
        return transaction


class Store:
    """SQLite-backed category and transaction store.

    Every write goes through :meth:`unit_of_work`, which commits all of the
    session's writes together or rolls all of them back. ``sqlite3`` failures
    surface as :class:`PersistenceError`.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=30)
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"Cannot open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def init_schema(self) -> None:
        conn = self._connect()
        try:
            _init_db(conn)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot initialise schema: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield Session(conn)
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            _rollback(conn)
            raise PersistenceError(str(exc)) from exc
        except BaseException:
            _rollback(conn)
            raise
        finally:
            conn.close()

    def _query(self, sql: str, params: list) -> List[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    def get_category(self, category_id: str) -> Category:
        rows = self._query("SELECT * FROM categories WHERE id = ?", [category_id])
        if not rows:
            raise NotFoundError(f"Category not found: {category_id}")
        return _category_from_row(rows[0])

    def find_categories(
        self,
        *,
        transaction_type: TransactionType | None = None,
        is_active: bool | None = None,
        next_processed_before: datetime | None = None,
        created_by: str | None = None,
        type: CategoryType | None = None,
        is_default: bool | None = None,
        visible_to: str | None = None,
        has_owner: bool | None = None,
    ) -> List[Category]:
        """Return categories matching every given filter.

        ``next_processed_before`` is inclusive. ``visible_to`` keeps shared
        default categories plus those owned by the given user.
        """
        conditions: list[str] = []
        params: list = []
        if transaction_type is not None:
            conditions.append("transaction_type = ?")
            params.append(TransactionType(transaction_type).value)
        if is_active is not None:
            conditions.append("is_active = ?")
            params.append(int(is_active))
        if next_processed_before is not None:
            conditions.append("next_processed_date <= ?")
            params.append(_dt_to_db(next_processed_before))
        if created_by is not None:
            conditions.append("created_by = ?")
            params.append(created_by)
        if type is not None:
            conditions.append("type = ?")
            params.append(CategoryType(type).value)
        if is_default is not None:
            conditions.append("is_default = ?")
            params.append(int(is_default))
        if visible_to is not None:
            conditions.append("(is_default = 1 OR created_by = ?)")
            params.append(visible_to)
        if has_owner is not None:
            conditions.append("created_by IS NOT NULL" if has_owner else "created_by IS NULL")
        where = " WHERE " + " AND ".join(conditions) if conditions else ""
        order = " ORDER BY next_processed_date" if transaction_type is TransactionType.RECURRING else " ORDER BY name"
        rows = self._query(f"SELECT * FROM categories{where}{order}", params)
        return [_category_from_row(r) for r in rows]

    def find_due_categories(self, now: datetime) -> List[Category]:
        """Active recurring categories with an owner whose next run is due."""
        return self.find_categories(
            transaction_type=TransactionType.RECURRING,
            is_active=True,
            next_processed_before=now,
            has_owner=True,
        )

    def fetch_transactions(
        self,
        user: str | None = None,
        category: str | None = None,
    ) -> List[Transaction]:
        conditions: list[str] = []
        params: list[str] = []
        if user:
            conditions.append("user = ?")
            params.append(user)
        if category:
            conditions.append("category = ?")
            params.append(category)
        where = " WHERE " + " AND ".join(conditions) if conditions else ""
        rows = self._query(f"SELECT * FROM transactions{where} ORDER BY date", params)
        return [_transaction_from_row(r) for r in rows]


def _rollback(conn: sqlite3.Connection) -> None:
    if not conn.in_transaction:
        return
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error:
        logger.exception("Rollback failed for %s", conn)
