from decimal import Decimal

import pytest

from aggregation import CategoryRecommendation, GroupRecommendation, WindowTotals
from recommendations import (
    allocate_with_remainder,
    apply_strategies,
    balanced_strategy,
    conservative_strategy,
    relaxed_strategy,
)


def _groups(
    discretionary: dict[str, str], fixed: str = "0"
) -> dict[str, GroupRecommendation]:
    shopping = GroupRecommendation(group_name="Shopping", group_id=1)
    for name, amount in discretionary.items():
        shopping.categories.append(
            CategoryRecommendation(
                category_name=name,
                category_id=None,
                is_discretionary=True,
                spending=Decimal(amount),
                recommendation=Decimal(amount),
            )
        )
    shopping.refresh_total()
    housing = GroupRecommendation(group_name="Housing", group_id=2)
    housing.categories.append(
        CategoryRecommendation(
            category_name="Rent",
            category_id=None,
            is_discretionary=False,
            spending=Decimal(fixed),
            recommendation=Decimal(fixed),
        )
    )
    housing.refresh_total()
    return {"Shopping": shopping, "Housing": housing}


def _totals(income: str, discretionary: str, non_discretionary: str) -> WindowTotals:
    return WindowTotals(
        income=Decimal(income),
        discretionary=Decimal(discretionary),
        non_discretionary=Decimal(non_discretionary),
    )


def _recommended(groups: dict[str, GroupRecommendation]) -> dict[str, Decimal]:
    return {
        cat.category_name: cat.recommendation
        for group in groups.values()
        for cat in group.categories
    }


def test_allocate_with_remainder_example() -> None:
    assert allocate_with_remainder(Decimal("100.00"), 3) == [
        Decimal("33.34"),
        Decimal("33.34"),
        Decimal("33.32"),
    ]


@pytest.mark.parametrize(
    "total,months",
    [("100.00", 3), ("1000.00", 7), ("0.05", 2), ("1234.56", 12), ("50.00", 1)],
)
def test_allocate_with_remainder_sums_exactly(total: str, months: int) -> None:
    amounts = allocate_with_remainder(Decimal(total), months)
    assert len(amounts) == months
    assert sum(amounts) == Decimal(total)
    assert len(set(amounts[:-1])) <= 1


def test_allocate_with_remainder_rejects_zero_months() -> None:
    with pytest.raises(ValueError):
        allocate_with_remainder(Decimal("10"), 0)


def test_balanced_reduction_capped_at_half_of_discretionary() -> None:
    groups = _groups({"Clothing": "1200", "Gadgets": "800"}, fixed="2000")
    totals = _totals("3000", "2000", "2000")

    balanced_strategy(groups, {}, totals)

    recommended = _recommended(groups)
    assert recommended["Clothing"] == Decimal("600.00")
    assert recommended["Gadgets"] == Decimal("400.00")
    assert groups["Shopping"].recommendation == Decimal("1000.00")
    assert recommended["Rent"] == Decimal("2000")


def test_balanced_huge_deficit_never_cuts_more_than_half() -> None:
    groups = _groups({"Clothing": "700", "Gadgets": "300"}, fixed="9000")
    totals = _totals("1000", "1000", "9000")

    plans = balanced_strategy(groups, {1: {"2026-11": Decimal("100")}}, totals)

    assert groups["Shopping"].recommendation == Decimal("500.00")
    assert all(amount >= 0 for amount in _recommended(groups).values())
    assert plans == {1: {}}


def test_balanced_last_category_absorbs_rounding() -> None:
    groups = _groups({"A": "100", "B": "100", "C": "100"}, fixed="0")
    totals = _totals("200", "300", "0")

    balanced_strategy(groups, {}, totals)

    assert groups["Shopping"].recommendation == Decimal("200")
    assert _recommended(groups)["C"] == Decimal("66.66")


def test_balanced_without_deficit_leaves_spending_and_keeps_timeline() -> None:
    groups = _groups({"Clothing": "500"}, fixed="2000")
    totals = _totals("3000", "500", "2000")
    plan = {"2026-11": Decimal("300"), "2026-12": Decimal("300"), "2027-01": Decimal("300")}

    plans = balanced_strategy(groups, {7: plan}, totals)

    assert _recommended(groups)["Clothing"] == Decimal("500")
    assert plans[7] == plan


def test_balanced_extends_timeline_when_available_is_short() -> None:
    groups = _groups({"Clothing": "500"}, fixed="2000")
    totals = _totals("3000", "500", "2000")
    plan = {"2026-11": Decimal("1000"), "2026-12": Decimal("1000"), "2027-01": Decimal("1000")}

    plans = balanced_strategy(groups, {7: plan}, totals)

    assert list(plans[7]) == [
        "2026-11",
        "2026-12",
        "2027-01",
        "2027-02",
        "2027-03",
        "2027-04",
    ]
    assert set(plans[7].values()) == {Decimal("500.00")}


def test_conservative_cuts_twenty_percent_and_shortens_goals() -> None:
    groups = _groups({"Clothing": "1000"}, fixed="2000")
    totals = _totals("5000", "1000", "2000")
    plan = {"2026-11": Decimal("1000"), "2026-12": Decimal("1000"), "2027-01": Decimal("1000")}

    plans = conservative_strategy(groups, {3: plan}, totals)

    assert _recommended(groups)["Clothing"] == Decimal("800.0")
    assert plans[3] == {"2026-11": Decimal("1500.00"), "2026-12": Decimal("1500.00")}


def test_conservative_deficit_ratio_capped_at_half() -> None:
    groups = _groups({"Clothing": "1000"}, fixed="4000")
    totals = _totals("4000", "1000", "4000")

    conservative_strategy(groups, {}, totals)

    assert _recommended(groups)["Clothing"] == Decimal("500.0")


def test_relaxed_surplus_grows_discretionary_by_twenty_percent() -> None:
    groups = _groups({"Clothing": "600", "Gadgets": "400"}, fixed="2000")
    totals = _totals("5000", "1000", "2000")

    relaxed_strategy(groups, {}, totals)

    recommended = _recommended(groups)
    assert recommended["Clothing"] == Decimal("720")
    assert recommended["Gadgets"] == Decimal("480")
    assert groups["Shopping"].recommendation == Decimal("1200")


def test_relaxed_growth_bounded_by_surplus() -> None:
    groups = _groups({"Clothing": "1000"}, fixed="2000")
    totals = _totals("3050", "1000", "2000")

    relaxed_strategy(groups, {}, totals)

    assert _recommended(groups)["Clothing"] == Decimal("1050")


def test_relaxed_extends_each_goal_by_its_share() -> None:
    groups = _groups({"Clothing": "1000"}, fixed="2000")
    totals = _totals("3300", "1000", "2000")
    plans = {
        1: {"2026-11": Decimal("200"), "2026-12": Decimal("200")},
        2: {"2026-11": Decimal("300"), "2026-12": Decimal("300")},
    }

    result = relaxed_strategy(groups, plans, totals)

    # 1200 discretionary leaves 100 available, split 40/60
    assert len(result[1]) == 10
    assert len(result[2]) == 10
    assert sum(result[1].values()) == Decimal("400")
    assert sum(result[2].values()) == Decimal("600")


def test_apply_strategies_gives_each_strategy_its_own_plans() -> None:
    base = _groups({"Clothing": "500"}, fixed="2000")
    recommendations = {
        "balanced": base,
        "conservative": _groups({"Clothing": "500"}, fixed="2000"),
        "relaxed": _groups({"Clothing": "500"}, fixed="2000"),
    }
    plan = {"2026-11": Decimal("100"), "2026-12": Decimal("100")}

    result = apply_strategies(recommendations, {1: plan}, _totals("3000", "500", "2000"))

    assert set(result) == {"balanced", "conservative", "relaxed"}
    assert plan == {"2026-11": Decimal("100"), "2026-12": Decimal("100")}
    assert result["balanced"][1] is not result["relaxed"][1]


def test_balanced_last_cut_never_takes_category_below_zero() -> None:
    categories = {f"Item {i}": "1.00" for i in range(10)}
    categories["Tip"] = "0.01"
    groups = _groups(categories, fixed="0")
    totals = _totals("9.87", "10.01", "0")

    balanced_strategy(groups, {}, totals)

    recommended = _recommended(groups)
    assert recommended["Tip"] == Decimal("0.00")
    assert recommended["Item 0"] == Decimal("0.99")
    # ten rounded cuts of 0.01 plus the clamped last cut, short of the 0.14 deficit
    assert groups["Shopping"].recommendation == Decimal("9.90")
    assert all(amount >= 0 for amount in recommended.values())


def _year_plan() -> dict[str, Decimal]:
    return {f"2027-{month:02d}": Decimal("500") for month in range(1, 13)}


def test_balanced_leaves_goal_unfunded_when_extension_exceeds_cap() -> None:
    groups = _groups({"Clothing": "1000"}, fixed="2000")
    totals = _totals("3000.01", "1000", "2000")

    assert balanced_strategy(groups, {1: _year_plan()}, totals) == {1: {}}


def test_conservative_leaves_goal_unfunded_when_extension_exceeds_cap() -> None:
    groups = _groups({"Clothing": "1000"}, fixed="2000")
    totals = _totals("2800.01", "1000", "2000")

    assert conservative_strategy(groups, {1: _year_plan()}, totals) == {1: {}}


def test_relaxed_leaves_goal_unfunded_when_extension_exceeds_cap() -> None:
    groups = _groups({"Clothing": "1000"}, fixed="2000")
    totals = _totals("3200.01", "1000", "2000")

    assert relaxed_strategy(groups, {1: _year_plan()}, totals) == {1: {}}


def test_extension_within_custom_cap_still_applies() -> None:
    totals = _totals("3250", "1000", "2000")

    within = balanced_strategy(
        _groups({"Clothing": "1000"}, fixed="2000"), {1: _year_plan()}, totals, 24
    )
    beyond = balanced_strategy(
        _groups({"Clothing": "1000"}, fixed="2000"), {1: _year_plan()}, totals, 23
    )

    assert len(within[1]) == 24
    assert sum(within[1].values()) == Decimal("6000")
    assert beyond == {1: {}}


def test_plan_longer_than_cap_keeps_its_length() -> None:
    groups = _groups({"Clothing": "1000"}, fixed="2000")
    totals = _totals("4000", "1000", "2000")

    plans = balanced_strategy(groups, {1: _year_plan()}, totals, 6)

    assert len(plans[1]) == 12
