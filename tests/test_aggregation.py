from datetime import date
from decimal import Decimal

from aggregation import (
    analyze_spending,
    build_tracking,
    recommendations_to_dict,
    tracking_to_dict,
    trailing_window,
    window_totals,
)
from classifier import ClassifiedTransaction, Taxonomy
from schemas import CategoryRef, TransactionRecord

INCOME = CategoryRef(category_id=1, category_name="Income", group_id=1, group_name="Income")
RENT = CategoryRef(category_id=2, category_name="Rent", group_id=2, group_name="Housing")
SHOPPING = CategoryRef(
    category_id=3,
    category_name="Shopping",
    group_id=3,
    group_name="Shopping",
    is_discretionary=True,
)
TAXONOMY = Taxonomy.from_refs([INCOME, RENT, SHOPPING])


def _item(ref: CategoryRef, day: date, amount: str) -> ClassifiedTransaction:
    return ClassifiedTransaction(
        transaction=TransactionRecord(date=day, amount=Decimal(amount)),
        category=ref,
    )


def _history() -> list[ClassifiedTransaction]:
    return [
        _item(INCOME, date(2026, 7, 1), "-3000"),
        _item(RENT, date(2026, 7, 3), "1200"),
        _item(SHOPPING, date(2026, 7, 20), "150"),
        _item(INCOME, date(2026, 9, 1), "-3000"),
        _item(RENT, date(2026, 9, 3), "1200"),
        _item(SHOPPING, date(2026, 9, 10), "200"),
        _item(SHOPPING, date(2026, 9, 28), "-50"),
    ]


def test_tracking_covers_every_month_in_range() -> None:
    tracking = build_tracking(_history(), TAXONOMY)

    assert list(tracking) == ["2026-07", "2026-08", "2026-09"]
    assert tracking["2026-08"]["Housing"].spending_actual == Decimal("0")
    assert tracking["2026-09"]["Shopping"].spending_actual == Decimal("150")
    assert tracking["2026-07"]["Income"].spending_actual == Decimal("-3000")
    assert "Other" in tracking["2026-07"]


def test_income_sign_is_negative_even_for_positive_rows() -> None:
    tracking = build_tracking([_item(INCOME, date(2026, 9, 1), "2500")], TAXONOMY)
    assert tracking["2026-09"]["Income"].spending_actual == Decimal("-2500")


def test_trailing_window_anchors_on_latest_transaction() -> None:
    window = trailing_window(_history(), days=30)

    assert [i.transaction.date for i in window] == [
        date(2026, 9, 1),
        date(2026, 9, 3),
        date(2026, 9, 10),
        date(2026, 9, 28),
    ]


def test_window_totals_split_income_and_discretionary() -> None:
    totals = window_totals(trailing_window(_history(), days=30))

    assert totals.income == Decimal("3000")
    assert totals.non_discretionary == Decimal("1200")
    assert totals.discretionary == Decimal("150")
    assert totals.desired_spending == Decimal("1350")


def test_initial_recommendations_match_window_actuals() -> None:
    analysis = analyze_spending(_history(), TAXONOMY)

    balanced = analysis.recommendations["balanced"]
    assert balanced["Shopping"].recommendation == Decimal("150")
    assert balanced["Housing"].categories[0].recommendation == Decimal("1200")
    assert balanced["Income"].recommendation == Decimal("-3000")
    assert set(analysis.recommendations) == {"balanced", "conservative", "relaxed"}
    assert analysis.recommendations["balanced"] is not analysis.recommendations["relaxed"]


def test_analysis_is_idempotent() -> None:
    history = _history()

    first = analyze_spending(history, TAXONOMY)
    second = analyze_spending(history, TAXONOMY)

    assert tracking_to_dict(first.tracking) == tracking_to_dict(second.tracking)
    assert recommendations_to_dict(first.recommendations) == recommendations_to_dict(
        second.recommendations
    )
    assert first.totals == second.totals


def test_empty_history_produces_empty_outputs() -> None:
    analysis = analyze_spending([], TAXONOMY)

    assert analysis.tracking == {}
    assert analysis.window == []
    assert analysis.totals.income == Decimal("0")
