# finance_tracker/categories.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from finance_tracker.core.clock import Clock, utc_now
from finance_tracker.core.errors import PermissionDeniedError, ValidationError
from finance_tracker.core.models import (
    CATEGORY_WRITABLE_FIELDS,
    Category,
    CategoryType,
    Frequency,
    TransactionType,
)
from finance_tracker.database import Store
from finance_tracker.recurring import apply_recurrence

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

_REQUIRED = {"name", "type", "transaction_type", "is_active"}

DEFAULT_CATEGORIES: List[Dict[str, object]] = [
    {"name": "Salary", "description": "Regular salary income", "icon": "money", "color": "#33FF57", "type": "Income"},
    {"name": "Freelance", "description": "Freelance work income", "icon": "work", "color": "#33FF57", "type": "Income"},
    {"name": "Investments", "description": "Investment returns", "icon": "trending_up", "color": "#33FF57", "type": "Income"},
    {"name": "Gifts", "description": "Gifts and donations received", "icon": "card_giftcard", "color": "#33FF57", "type": "Income"},
    {"name": "Food & Dining", "description": "Food and dining expenses", "icon": "restaurant", "color": "#FF5733", "type": "Expense"},
    {"name": "Transportation", "description": "Transportation expenses", "icon": "directions_car", "color": "#FF5733", "type": "Expense"},
    {"name": "Housing", "description": "Housing and rent expenses", "icon": "home", "color": "#FF5733", "type": "Expense"},
    {"name": "Utilities", "description": "Utility bills", "icon": "build", "color": "#FF5733", "type": "Expense"},
    {"name": "Shopping", "description": "Shopping expenses", "icon": "shopping_cart", "color": "#FF5733", "type": "Expense"},
    {"name": "Entertainment", "description": "Entertainment expenses", "icon": "sports_esports", "color": "#FF5733", "type": "Expense"},
    {"name": "Healthcare", "description": "Healthcare expenses", "icon": "local_hospital", "color": "#FF5733", "type": "Expense"},
    {"name": "Education", "description": "Education expenses", "icon": "school", "color": "#FF5733", "type": "Expense"},
]


@dataclass
class Actor:
    """The authenticated caller, as supplied by the auth layer."""

    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def _enum_value(enum_cls, value, field_name, message):
    try:
        return enum_cls(value)
    except ValueError:
        supported = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{message} (supported: {supported})", field=field_name) from None


def _number(value, field_name):
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f"{field_name} must be a number", field=field_name)
    try:
        number = float(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be a number", field=field_name) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field_name} must be a finite number", field=field_name)
    return number


def _coerce(json_name: str, attr: str, value: Any) -> Any:
    if value is None:
        if attr in _REQUIRED:
            raise ValidationError(f"{json_name} cannot be empty", field=json_name)
        return None
    if attr == "type":
        return _enum_value(
            CategoryType, value, json_name, "Valid category type is required (Income/Expense)"
        )
    if attr == "transaction_type":
        return _enum_value(TransactionType, value, json_name, "Invalid transaction type")
    if attr == "frequency":
        return _enum_value(Frequency, value, json_name, "Invalid frequency")
    if attr in ("default_amount", "budget"):
        return _number(value, json_name)
    if attr == "is_active":
        if not isinstance(value, bool):
            raise ValidationError("isActive must be a boolean", field=json_name)
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{json_name} must be a string", field=json_name)
    return value.strip()


def parse_changes(data: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a camelCase payload into validated Category attributes."""
    changes: Dict[str, Any] = {}
    for key, value in data.items():
        attr = CATEGORY_WRITABLE_FIELDS.get(key)
        if attr is None:
            raise ValidationError(f"Field '{key}' cannot be set", field=key)
        changes[attr] = _coerce(key, attr, value)
    return changes


def _validate_fields(category: Category) -> None:
    if not category.name:
        raise ValidationError("Name is required", field="name")
    if category.budget is not None and category.budget < 0:
        raise ValidationError("Budget cannot be negative", field="budget")


def _check_owner(category: Category, actor: Actor) -> None:
    if actor.is_admin:
        return
    if category.created_by != actor.id:
        raise PermissionDeniedError("Not authorized to modify this category")


def create_category(
    store: Store,
    data: Dict[str, Any],
    actor: Actor,
    clock: Clock = utc_now,
) -> Category:
    changes = parse_changes(data)
    if not changes.get("name"):
        raise ValidationError("Name is required", field="name")
    if changes.get("type") is None:
        raise ValidationError(
            "Valid category type is required (Income/Expense)", field="type"
        )

    now = clock()
    category = Category(
        name=changes.pop("name"),
        type=changes.pop("type"),
        created_by=actor.id,
        is_default=actor.is_admin,
        created_at=now,
        updated_at=now,
    )
    category = replace(category, **changes)
    _validate_fields(category)
    apply_recurrence(category, now)

    with store.unit_of_work() as session:
        session.insert_category(category)
    logger.info(
        "Created category %s (%s) for user %s", category.id, category.transaction_type.value, actor.id
    )
    return category


def update_category(
    store: Store,
    category_id: str,
    data: Dict[str, Any],
    actor: Actor,
    clock: Clock = utc_now,
) -> Category:
    """Merge *data* onto the stored category and save the result.

    The merged record is validated as a whole, so a change set that leaves a
    recurring category without a frequency or amount is rejected.
    """
    changes = parse_changes(data)
    now = clock()
    with store.unit_of_work() as session:
        existing = session.get_category(category_id)
        _check_owner(existing, actor)
        category = replace(existing, **changes)
        _validate_fields(category)
        apply_recurrence(category, now)
        category.updated_at = now
        session.update_category(category)
    logger.info("Updated category %s", category.id)
    return category


def get_category(store: Store, category_id: str, actor: Actor) -> Category:
    category = store.get_category(category_id)
    if not (actor.is_admin or category.is_default or category.created_by == actor.id):
        raise PermissionDeniedError("Access denied")
    return category


def list_categories(
    store: Store,
    actor: Actor,
    show_default: Optional[bool] = None,
    type: Optional[CategoryType] = None,
) -> List[Category]:
    """Admins see everything; users see shared defaults plus their own."""
    if actor.is_admin:
        return store.find_categories(is_default=show_default, type=type)
    if show_default is True:
        return store.find_categories(is_default=True, type=type)
    if show_default is False:
        return store.find_categories(created_by=actor.id, type=type)
    return store.find_categories(visible_to=actor.id, type=type)


def list_recurring_categories(
    store: Store,
    actor: Actor,
    type: Optional[CategoryType] = None,
    is_active: Optional[bool] = None,
) -> List[Category]:
    return store.find_categories(
        transaction_type=TransactionType.RECURRING,
        created_by=actor.id,
        type=type,
        is_active=is_active,
    )


def delete_category(store: Store, category_id: str, actor: Actor) -> None:
    with store.unit_of_work() as session:
        category = session.get_category(category_id)
        _check_owner(category, actor)
        session.delete_category(category_id)
    logger.info("Deleted category %s", category_id)


def seed_default_categories(store: Store, clock: Clock = utc_now) -> int:
    """Insert the shared default categories unless some already exist."""
    if store.find_categories(is_default=True):
        logger.info("Default categories already exist")
        return 0

    now = clock()
    with store.unit_of_work() as session:
        for entry in DEFAULT_CATEGORIES:
            category = Category(
                name=entry["name"],
                type=CategoryType(entry["type"]),
                description=entry["description"],
                icon=entry["icon"],
                color=entry["color"],
                is_default=True,
                created_at=now,
                updated_at=now,
            )
            session.insert_category(apply_recurrence(category, now))
    logger.info("Default categories created successfully")
    return len(DEFAULT_CATEGORIES)
