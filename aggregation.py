from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Iterable, Optional

from classifier import OTHER_GROUP, ClassifiedTransaction, Taxonomy, is_income_group
from periods import iter_month_keys, month_key

STRATEGIES = ("balanced", "conservative", "relaxed")
ZERO = Decimal("0")


def _money(value: Decimal) -> float:
    return float(value)


@dataclass
class CategoryTracking:
    category_name: str
    category_id: Optional[int]
    spending_actual: Decimal = ZERO
    spending_target: Decimal = ZERO

    def to_dict(self) -> dict[str, object]:
        return {
            "category_name": self.category_name,
            "category_id": self.category_id,
            "spending_actual": _money(self.spending_actual),
            "spending_target": _money(self.spending_target),
        }


@dataclass
class GroupTracking:
    group_name: str
    group_id: Optional[int]
    spending_actual: Decimal = ZERO
    spending_target: Decimal = ZERO
    categories: list[CategoryTracking] = field(default_factory=list)

    def category(self, name: str, category_id: Optional[int]) -> CategoryTracking:
        for item in self.categories:
            if item.category_name == name:
                return item
        item = CategoryTracking(category_name=name, category_id=category_id)
        self.categories.append(item)
        return item

    def to_dict(self) -> dict[str, object]:
        return {
            "group_name": self.group_name,
            "group_id": self.group_id,
            "spending_actual": _money(self.spending_actual),
            "spending_target": _money(self.spending_target),
            "categories": [c.to_dict() for c in self.categories],
        }


# month -> group name -> tracking
SpendingTracking = dict[str, dict[str, GroupTracking]]


@dataclass
class CategoryRecommendation:
    category_name: str
    category_id: Optional[int]
    is_discretionary: bool
    spending: Decimal
    recommendation: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "category_name": self.category_name,
            "category_id": self.category_id,
            "is_discretionary": self.is_discretionary,
            "spending": _money(self.spending),
            "recommendation": _money(self.recommendation),
        }


@dataclass
class GroupRecommendation:
    group_name: str
    group_id: Optional[int]
    spending: Decimal = ZERO
    recommendation: Decimal = ZERO
    categories: list[CategoryRecommendation] = field(default_factory=list)

    def refresh_total(self) -> None:
        self.recommendation = sum(
            (c.recommendation for c in self.categories), ZERO
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "group_name": self.group_name,
            "group_id": self.group_id,
            "spending": _money(self.spending),
            "recommendation": _money(self.recommendation),
            "categories": [c.to_dict() for c in self.categories],
        }


# group name -> recommendation, one map per strategy
StrategyRecommendations = dict[str, GroupRecommendation]


@dataclass(frozen=True)
class WindowTotals:
    income: Decimal
    discretionary: Decimal
    non_discretionary: Decimal

    @property
    def desired_spending(self) -> Decimal:
        return self.non_discretionary + self.discretionary


@dataclass
class SpendingAnalysis:
    tracking: SpendingTracking
    window: list[ClassifiedTransaction]
    totals: WindowTotals
    recommendations: dict[str, StrategyRecommendations]


def _signed_amount(item: ClassifiedTransaction) -> Decimal:
    amount = item.transaction.amount
    if is_income_group(item.category.group_name):
        return -abs(amount)
    return amount


def _empty_groups(taxonomy: Taxonomy) -> dict[str, GroupTracking]:
    groups = {
        name: GroupTracking(group_name=name, group_id=group_id)
        for name, group_id in taxonomy.group_ids.items()
    }
    groups.setdefault(OTHER_GROUP, GroupTracking(group_name=OTHER_GROUP, group_id=None))
    return groups


def build_tracking(
    transactions: Iterable[ClassifiedTransaction], taxonomy: Taxonomy
) -> SpendingTracking:
    """Actual spending per month, group and category over the full history."""
    items = sorted(transactions, key=lambda t: t.transaction.date)
    if not items:
        return {}
    tracking: SpendingTracking = {
        key: _empty_groups(taxonomy)
        for key in iter_month_keys(items[0].transaction.date, items[-1].transaction.date)
    }
    for item in items:
        groups = tracking[month_key(item.transaction.date)]
        group_name = item.category.group_name
        if group_name not in taxonomy.group_ids:
            group_name = OTHER_GROUP
        group = groups[group_name]
        amount = _signed_amount(item)
        group.spending_actual += amount
        group.spending_target += amount
        category = group.category(item.category.category_name, item.category.category_id)
        category.spending_actual += amount
        category.spending_target += amount
    return tracking


def trailing_window(
    transactions: Iterable[ClassifiedTransaction], days: int = 30
) -> list[ClassifiedTransaction]:
    """Transactions within ``days`` of the most recent transaction date."""
    items = list(transactions)
    if not items:
        return []
    latest = max(item.transaction.date for item in items)
    cutoff = latest - timedelta(days=days)
    return [item for item in items if item.transaction.date >= cutoff]


def _category_sums(
    window: Iterable[ClassifiedTransaction],
) -> dict[str, tuple[ClassifiedTransaction, Decimal]]:
    sums: dict[str, tuple[ClassifiedTransaction, Decimal]] = {}
    for item in window:
        name = item.category.category_name
        first, total = sums.get(name, (item, ZERO))
        sums[name] = (first, total + item.transaction.amount)
    return sums


def window_totals(window: Iterable[ClassifiedTransaction]) -> WindowTotals:
    income = ZERO
    discretionary = ZERO
    non_discretionary = ZERO
    for item, total in _category_sums(window).values():
        if is_income_group(item.category.group_name):
            income += total
        elif item.category.is_discretionary:
            discretionary += abs(total)
        else:
            non_discretionary += abs(total)
    return WindowTotals(
        income=abs(income),
        discretionary=discretionary,
        non_discretionary=non_discretionary,
    )


def initial_recommendations(
    window: Iterable[ClassifiedTransaction], taxonomy: Taxonomy
) -> dict[str, StrategyRecommendations]:
    """Per-strategy baseline: every group seeded with the window's actuals."""
    sums = _category_sums(window)
    result: dict[str, StrategyRecommendations] = {}
    for strategy in STRATEGIES:
        groups: StrategyRecommendations = {
            name: GroupRecommendation(group_name=name, group_id=group_id)
            for name, group_id in taxonomy.group_ids.items()
        }
        for name, (item, total) in sums.items():
            group_name = item.category.group_name
            if group_name not in groups:
                group_name = OTHER_GROUP
                groups.setdefault(
                    OTHER_GROUP, GroupRecommendation(group_name=OTHER_GROUP, group_id=None)
                )
            amount = -abs(total) if is_income_group(group_name) else total
            group = groups[group_name]
            group.spending += amount
            group.recommendation += amount
            group.categories.append(
                CategoryRecommendation(
                    category_name=name,
                    category_id=item.category.category_id,
                    is_discretionary=item.category.is_discretionary,
                    spending=amount,
                    recommendation=amount,
                )
            )
        result[strategy] = groups
    return result


def analyze_spending(
    transactions: Iterable[ClassifiedTransaction],
    taxonomy: Taxonomy,
    window_days: int = 30,
) -> SpendingAnalysis:
    items = list(transactions)
    window = trailing_window(items, window_days)
    return SpendingAnalysis(
        tracking=build_tracking(items, taxonomy),
        window=window,
        totals=window_totals(window),
        recommendations=initial_recommendations(window, taxonomy),
    )


def tracking_to_dict(tracking: SpendingTracking) -> dict[str, dict[str, object]]:
    return {
        month: {name: group.to_dict() for name, group in groups.items()}
        for month, groups in tracking.items()
    }


def recommendations_to_dict(
    recommendations: dict[str, StrategyRecommendations],
) -> dict[str, dict[str, object]]:
    return {
        strategy: {name: group.to_dict() for name, group in groups.items()}
        for strategy, groups in recommendations.items()
    }
