from datetime import date, timedelta
from decimal import Decimal

from models import RecurringFrequency
from recurrence import classify_interval, detect_recurring
from schemas import TransactionRecord


def _txn(tx_id: str, day: date, merchant: str = "Gym Club", **kwargs) -> TransactionRecord:
    values = {
        "user_tx_id": tx_id,
        "fin_account_id": 1,
        "date": day,
        "amount": Decimal("30.00"),
        "merchant": merchant,
        "category_id": 4,
    }
    values.update(kwargs)
    return TransactionRecord(**values)


def test_classify_interval_known_periods():
    assert classify_interval([7, 7, 8], 3) == (7, RecurringFrequency.weekly)
    assert classify_interval([14, 13], 3) == (14, RecurringFrequency.biweekly)
    assert classify_interval([31, 28, 31], 3) == (30, RecurringFrequency.monthly)
    assert classify_interval([92, 91], 3) == (92, RecurringFrequency.quarterly)
    assert classify_interval([360], 3) == (360, RecurringFrequency.yearly)
    assert classify_interval([45, 12], 3) is None
    assert classify_interval([], 3) is None


def test_detects_monthly_pattern_for_same_merchant_and_category():
    txns = [
        _txn("P3", date(2026, 9, 2)),
        _txn("P1", date(2026, 7, 1)),
        _txn("P2", date(2026, 8, 1)),
    ]

    detected = detect_recurring(txns)

    assert len(detected) == 1
    pattern = detected[0]
    assert pattern.frequency == RecurringFrequency.monthly
    assert pattern.instance_ids == ("P1", "P2", "P3")
    assert pattern.first_date == date(2026, 7, 1)
    assert pattern.average_amount == Decimal("30.00")
    assert pattern.category_id == 4


def test_merchant_match_ignores_case_and_spacing():
    txns = [
        _txn("P1", date(2026, 7, 1), merchant="Gym  Club"),
        _txn("P2", date(2026, 7, 8), merchant="gym club"),
        _txn("P3", date(2026, 7, 15), merchant="GYM CLUB"),
    ]

    detected = detect_recurring(txns)

    assert [d.frequency for d in detected] == [RecurringFrequency.weekly]


def test_different_categories_are_not_grouped():
    txns = [
        _txn("P1", date(2026, 7, 1), category_id=4),
        _txn("P2", date(2026, 8, 1), category_id=5),
    ]

    assert detect_recurring(txns) == []


def test_irregular_intervals_are_ignored():
    start = date(2026, 1, 1)
    txns = [_txn(f"P{i}", start + timedelta(days=offset)) for i, offset in enumerate([0, 9, 40, 44])]

    assert detect_recurring(txns) == []


def test_tolerance_controls_matching():
    txns = [
        _txn("P1", date(2026, 7, 1)),
        _txn("P2", date(2026, 8, 5)),
    ]

    assert detect_recurring(txns, tolerance=3) == []
    assert len(detect_recurring(txns, tolerance=5)) == 1


def test_rows_without_merchant_or_id_are_skipped():
    txns = [
        _txn("P1", date(2026, 7, 1), merchant=None),
        _txn("P2", date(2026, 8, 1), merchant=None),
        _txn(None, date(2026, 9, 1)),
        _txn("P4", date(2026, 10, 1)),
    ]

    assert detect_recurring(txns) == []
