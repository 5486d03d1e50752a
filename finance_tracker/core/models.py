# finance_tracker/core/models.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class CategoryType(str, Enum):
    INCOME = "Income"
    EXPENSE = "Expense"


class TransactionType(str, Enum):
    ONE_TIME = "one-time"
    RECURRING = "recurring"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


def new_id() -> str:
    return uuid.uuid4().hex


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass
class Category:
    name: str
    type: CategoryType
    id: str = field(default_factory=new_id)
    icon: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    transaction_type: TransactionType = TransactionType.ONE_TIME
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    default_amount: Optional[float] = None
    is_active: bool = True
    last_processed_date: Optional[datetime] = None
    next_processed_date: Optional[datetime] = None
    is_default: bool = False
    created_by: Optional[str] = None
    budget: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the camelCase names the HTTP layer exposes."""
        return {_camel(f.name): _json_value(getattr(self, f.name)) for f in fields(self)}


@dataclass
class Transaction:
    user: str
    type: CategoryType
    title: str
    amount: float
    category: str
    date: datetime
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {_camel(f.name): _json_value(getattr(self, f.name)) for f in fields(self)}


# camelCase JSON name -> Category attribute, for every field a client may set.
CATEGORY_WRITABLE_FIELDS: Dict[str, str] = {
    "name": "name",
    "type": "type",
    "icon": "icon",
    "color": "color",
    "description": "description",
    "transactionType": "transaction_type",
    "frequency": "frequency",
    "defaultAmount": "default_amount",
    "isActive": "is_active",
    "budget": "budget",
}
