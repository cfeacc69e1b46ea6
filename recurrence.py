"""Recurring pattern detection for manually entered transactions."""
from __future__ import annotations

import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from models import RecurringFrequency
from schemas import TransactionRecord

MIN_OCCURRENCES = 2
KNOWN_INTERVALS = (
    (7, RecurringFrequency.weekly),
    (14, RecurringFrequency.biweekly),
    (30, RecurringFrequency.monthly),
    (91, RecurringFrequency.quarterly),
    (365, RecurringFrequency.yearly),
)
YEARLY_TOLERANCE_DAYS = 7


@dataclass(frozen=True)
class DetectedRecurring:
    merchant: str
    category_id: Optional[int]
    provider_category: Optional[str]
    fin_account_id: Optional[int]
    frequency: RecurringFrequency
    interval_days: int
    average_amount: Decimal
    instance_ids: tuple[str, ...]
    first_date: date


def _normalize_merchant(value: Optional[str]) -> str:
    return " ".join((value or "").lower().split())


def classify_interval(
    intervals: list[int], tolerance: int
) -> Optional[tuple[int, RecurringFrequency]]:
    if not intervals:
        return None
    mean_interval = statistics.mean(intervals)
    spread = statistics.stdev(intervals) if len(intervals) > 1 else 0
    for known, frequency in KNOWN_INTERVALS:
        allowed = max(tolerance, YEARLY_TOLERANCE_DAYS) if known >= 365 else tolerance
        if abs(mean_interval - known) <= allowed and spread <= allowed:
            return round(mean_interval), frequency
    return None


def detect_recurring(
    transactions: Iterable[TransactionRecord], tolerance: int = 3
) -> list[DetectedRecurring]:
    """Group transactions by category and merchant, keep regular intervals.

    Transactions without a merchant or an id are ignored. A group qualifies
    when its mean gap between consecutive dates is within ``tolerance`` days
    of a weekly, biweekly, monthly, quarterly or yearly period.
    """
    groups: dict[tuple[object, str], list[TransactionRecord]] = defaultdict(list)
    for txn in transactions:
        merchant = _normalize_merchant(txn.merchant)
        if not merchant or not txn.user_tx_id:
            continue
        category_key = txn.category_id if txn.category_id is not None else txn.provider_category
        groups[(category_key, merchant)].append(txn)

    detected: list[DetectedRecurring] = []
    for members in groups.values():
        if len(members) < MIN_OCCURRENCES:
            continue
        members.sort(key=lambda t: (t.date, t.user_tx_id))
        intervals = [
            (members[i].date - members[i - 1].date).days for i in range(1, len(members))
        ]
        match = classify_interval(intervals, tolerance)
        if match is None:
            continue
        interval_days, frequency = match
        total = sum((t.amount for t in members), Decimal("0"))
        first = members[0]
        detected.append(
            DetectedRecurring(
                merchant=first.merchant or "",
                category_id=first.category_id,
                provider_category=first.provider_category,
                fin_account_id=first.fin_account_id,
                frequency=frequency,
                interval_days=interval_days,
                average_amount=total / len(members),
                instance_ids=tuple(t.user_tx_id for t in members),
                first_date=first.date,
            )
        )
    detected.sort(key=lambda d: (d.first_date, d.merchant))
    return detected
