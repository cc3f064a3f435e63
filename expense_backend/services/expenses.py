"""
Expense aggregation, approval state and summary totals.

Each period is a child collection of the user document, named by its period
identifier ("2024-01"). The user's ``approved`` field lists the approved
periods; approval is per period, never per expense line.
"""

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from google.cloud import firestore

from ..errors import NotFound
from .firestore import (
    document_ref,
    get_user_data,
    list_collections,
    list_users,
    read_collection,
    update_user,
    user_ref,
)


logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Currency symbols, whitespace and thousands separators
AMOUNT_NOISE = re.compile(r"[\s,$€£¥₱]")


@dataclass
class ExpenseSummary:
    total: Decimal = ZERO
    approved: Decimal = ZERO
    rejected: Decimal = ZERO


def _approved_set(user_data: Dict[str, Any]) -> set:
    return set(user_data.get("approved") or [])


def _username(user_data: Dict[str, Any]) -> Optional[str]:
    # Older user documents store the display name under "name"
    return user_data.get("username") or user_data.get("name")


def _sorted_collections(collections: Iterable[Any]) -> List[Any]:
    return sorted(collections, key=lambda col: col.id)


def _parse_amount_text(text: str) -> Optional[Decimal]:
    # "(12.50)" may be an accounting negative; too ambiguous to guess
    if "(" in text or ")" in text:
        return None
    try:
        return Decimal(AMOUNT_NOISE.sub("", text))
    except InvalidOperation:
        return None


def parse_amount(value: Any) -> Decimal:
    """Coerce a stored amount to Decimal; unusable values count as zero."""
    if isinstance(value, bool) or value is None:
        parsed = None
    elif isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, float) and not math.isfinite(value):
        parsed = None
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        parsed = _parse_amount_text(value)
    else:
        parsed = None

    if parsed is None or not parsed.is_finite():
        logger.warning("Ignoring non-numeric expense amount %r", value)
        return ZERO
    return parsed


async def list_subcollections(db, doc_path: str) -> List[str]:
    collections = await list_collections(document_ref(db, doc_path))
    return [collection.id for collection in collections]


async def _period_entries(collection) -> List[Dict[str, Any]]:
    docs = await read_collection(collection)
    return [
        {"dayType": data.get("dayType"), "expenses": data.get("expenses") or []}
        for data in (doc.to_dict() or {} for doc in docs)
    ]


async def aggregate_user(db, user_id: str) -> Dict[str, Any]:
    """Return a user's periods with their expense entries and approval flag."""
    user_data = await get_user_data(db, user_id)
    approved = _approved_set(user_data)

    collections = _sorted_collections(await list_collections(user_ref(db, user_id)))
    entries = await asyncio.gather(*(_period_entries(col) for col in collections))

    return {
        "username": _username(user_data),
        "periods": [
            {
                "period": collection.id,
                "approved": collection.id in approved,
                "expenses": period_entries,
            }
            for collection, period_entries in zip(collections, entries)
        ],
    }


async def _user_periods(user_doc) -> List[Dict[str, Any]]:
    user_data = user_doc.to_dict() or {}
    approved = _approved_set(user_data)
    username = _username(user_data)
    collections = _sorted_collections(await list_collections(user_doc.reference))
    return [
        {
            "id": f"{user_doc.id}/{collection.id}",
            "username": username,
            "month": collection.id,
            "approved": collection.id in approved,
        }
        for collection in collections
    ]


async def aggregate_all(db) -> List[Dict[str, Any]]:
    """Flatten every user's periods into one approval listing."""
    users = await list_users(db)
    if not users:
        raise NotFound("No users found")
    per_user = await asyncio.gather(*(_user_periods(user_doc) for user_doc in users))
    return [row for rows in per_user for row in rows]


async def set_approval(db, user_id: str, period: str, approved: bool) -> bool:
    """Add or remove ``period`` from the user's approved set.

    Returns whether a write happened. The write is an ArrayUnion/ArrayRemove
    transform so approvals of other periods running concurrently survive.
    """
    current = _approved_set(await get_user_data(db, user_id))
    if approved == (period in current):
        return False

    transform = firestore.ArrayUnion if approved else firestore.ArrayRemove
    await update_user(db, user_id, {"approved": transform([period])})
    logger.info("User %s period %s %s", user_id, period, "approved" if approved else "rejected")
    return True


async def get_user_month(db, user_id: str, period: str) -> Dict[str, Any]:
    user_data = await get_user_data(db, user_id)
    docs = await read_collection(user_ref(db, user_id).collection(period))
    if not docs:
        raise NotFound("No expense records found for this month")

    expenses = []
    for doc in docs:
        expense = doc.to_dict() or {}
        expense["id"] = doc.id
        expenses.append(expense)

    return {
        "expenses": expenses,
        "isApproved": period in _approved_set(user_data),
        "userName": _username(user_data),
    }


async def _user_summary(user_doc) -> ExpenseSummary:
    approved = _approved_set(user_doc.to_dict() or {})
    summary = ExpenseSummary()
    for collection in await list_collections(user_doc.reference):
        is_approved = collection.id in approved
        for doc in await read_collection(collection):
            for item in (doc.to_dict() or {}).get("expenses") or []:
                amount = parse_amount(item.get("amount") if isinstance(item, dict) else None)
                summary.total += amount
                if is_approved:
                    summary.approved += amount
                else:
                    summary.rejected += amount
    return summary


async def compute_summary(db) -> ExpenseSummary:
    """Sum every expense line into total, approved and rejected buckets."""
    users = await list_users(db)
    if not users:
        raise NotFound("No users found")

    summary = ExpenseSummary()
    for user_summary in await asyncio.gather(*(_user_summary(user_doc) for user_doc in users)):
        summary.total += user_summary.total
        summary.approved += user_summary.approved
        summary.rejected += user_summary.rejected
    return summary


async def _period_map(collection) -> Dict[str, Any]:
    docs = await read_collection(collection)
    period: Dict[str, Any] = {}
    dates = []
    for doc in docs:
        data = doc.to_dict() or {}
        period[doc.id] = data
        dates.append({"date": doc.id, **data})
    period["dates"] = dates
    return period


async def _user_expense_map(user_doc) -> Dict[str, Any]:
    user_data = user_doc.to_dict() or {}
    collections = _sorted_collections(await list_collections(user_doc.reference))
    periods = await asyncio.gather(*(_period_map(col) for col in collections))
    return {
        "id": user_doc.id,
        "username": _username(user_data),
        "approved": list(user_data.get("approved") or []),
        "expenses": {col.id: period for col, period in zip(collections, periods)},
    }


async def fetch_expenses(db) -> List[Dict[str, Any]]:
    """Nested per-user view: period -> entry id -> entry, plus a ``dates`` list."""
    users = await list_users(db)
    return list(await asyncio.gather(*(_user_expense_map(user_doc) for user_doc in users)))
