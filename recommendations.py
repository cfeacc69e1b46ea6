from __future__ import annotations

import logging
from copy import deepcopy
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Mapping

from aggregation import (
    STRATEGIES,
    ZERO,
    CategoryRecommendation,
    SpendingTracking,
    StrategyRecommendations,
    WindowTotals,
)
from periods import shift_month_key

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HALF = Decimal("0.5")
TWENTY_PCT = Decimal("0.2")
# Longest schedule a goal may be stretched to before it is left unfunded.
MAX_GOAL_MONTHS = 600

# goal id -> month key -> contribution
GoalPlans = dict[int, dict[str, Decimal]]


def to_cents(value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    return value.quantize(CENT, rounding=rounding)


def allocate_with_remainder(
    total: Decimal, months: int, *, rounding: str = ROUND_CEILING
) -> list[Decimal]:
    """Split ``total`` over ``months`` so the cents add back up exactly.

    Every month but the last gets the same base amount (rounded up to the
    cent by default); the last month takes whatever is left.

    >>> allocate_with_remainder(Decimal("100"), 3)
    [Decimal('33.34'), Decimal('33.34'), Decimal('33.32')]
    """
    if months < 1:
        raise ValueError("months must be at least 1")
    total = Decimal(total)
    base = to_cents(total / months, rounding)
    last = to_cents(total - base * (months - 1))
    return [base] * (months - 1) + [last]


def _discretionary(groups: StrategyRecommendations) -> list[CategoryRecommendation]:
    # Negative balances (refunds) are never adjusted so nothing turns negative.
    return [
        cat
        for group in groups.values()
        for cat in group.categories
        if cat.is_discretionary and cat.recommendation > 0
    ]


def _refresh(groups: StrategyRecommendations) -> None:
    for group in groups.values():
        group.refresh_total()


def _scale(categories: list[CategoryRecommendation], factor: Decimal) -> None:
    for cat in categories:
        cat.recommendation = cat.recommendation * factor


def _available(
    totals: WindowTotals, before: Decimal, categories: list[CategoryRecommendation]
) -> Decimal:
    after = sum((c.recommendation for c in categories), ZERO)
    adjusted_discretionary = totals.discretionary + (after - before)
    return totals.income - totals.non_discretionary - adjusted_discretionary


def _first_month_total(plans: GoalPlans) -> tuple[Decimal, dict[int, Decimal]]:
    firsts: dict[int, Decimal] = {}
    for goal_id, plan in plans.items():
        if plan:
            firsts[goal_id] = plan[min(plan)]
    return sum(firsts.values(), ZERO), firsts


def _reallocate(
    plan: Mapping[str, Decimal], month_count: int, max_months: int = MAX_GOAL_MONTHS
) -> dict[str, Decimal]:
    months = sorted(plan)
    # Extensions are capped; a plan already longer than the cap keeps its length.
    if month_count > max(max_months, len(months)):
        logger.warning(
            f"goal_schedule_capped: start={months[0]} months={month_count} max={max_months}"
        )
        return {}
    total_needed = sum(plan.values(), ZERO)
    amounts = allocate_with_remainder(total_needed, month_count)
    return {
        shift_month_key(months[0], index): amount
        for index, amount in enumerate(amounts)
    }


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def _extend_by_ratio(
    plans: GoalPlans,
    original_total: Decimal,
    available: Decimal,
    max_months: int = MAX_GOAL_MONTHS,
) -> GoalPlans:
    ratio = original_total / available
    return {
        goal_id: _reallocate(plan, _ceil(len(plan) * ratio), max_months)
        if plan
        else {}
        for goal_id, plan in plans.items()
    }


def _keep_timelines(plans: GoalPlans) -> GoalPlans:
    return {
        goal_id: _reallocate(plan, len(plan)) if plan else {}
        for goal_id, plan in plans.items()
    }


def balanced_strategy(
    groups: StrategyRecommendations,
    plans: GoalPlans,
    totals: WindowTotals,
    max_months: int = MAX_GOAL_MONTHS,
) -> GoalPlans:
    """Trim discretionary spending only as far as a deficit requires.

    The reduction never exceeds half of the discretionary total. It is spread
    by each category's share, largest first, and the last category absorbs
    the rounding remainder.
    """
    categories = _discretionary(groups)
    before = sum((c.recommendation for c in categories), ZERO)
    deficit = max(ZERO, totals.desired_spending - totals.income)
    if deficit > 0 and before > 0:
        reduction = min(before * HALF, deficit)
        ordered = sorted(categories, key=lambda c: c.recommendation, reverse=True)
        applied = ZERO
        for index, cat in enumerate(ordered):
            if index == len(ordered) - 1:
                cut = min(reduction - applied, cat.recommendation)
            else:
                cut = to_cents(reduction * cat.recommendation / before)
                applied += cut
            cat.recommendation -= cut
        _refresh(groups)

    available = _available(totals, before, categories)
    if available <= 0:
        return {goal_id: {} for goal_id in plans}
    original_total, _ = _first_month_total(plans)
    if available < original_total:
        return _extend_by_ratio(plans, original_total, available, max_months)
    return _keep_timelines(plans)


def conservative_strategy(
    groups: StrategyRecommendations,
    plans: GoalPlans,
    totals: WindowTotals,
    max_months: int = MAX_GOAL_MONTHS,
) -> GoalPlans:
    """Always cut discretionary spending by at least 20%, at most 50%."""
    categories = _discretionary(groups)
    before = sum((c.recommendation for c in categories), ZERO)
    deficit = max(ZERO, totals.desired_spending - totals.income)
    if before > 0:
        if deficit > 0:
            pct = min(max(deficit / before, TWENTY_PCT), HALF)
        else:
            pct = TWENTY_PCT
        _scale(categories, Decimal(1) - pct)
        _refresh(groups)

    available = _available(totals, before, categories)
    if available <= 0:
        return {goal_id: {} for goal_id in plans}
    original_total, firsts = _first_month_total(plans)
    if available < original_total:
        return _extend_by_ratio(plans, original_total, available, max_months)

    result: GoalPlans = {}
    for goal_id, plan in plans.items():
        if not plan or original_total <= 0:
            result[goal_id] = dict(plan)
            continue
        share = firsts[goal_id] / original_total
        increased = to_cents(available * share, ROUND_FLOOR)
        if increased <= 0:
            result[goal_id] = _reallocate(plan, len(plan))
            continue
        total_needed = sum(plan.values(), ZERO)
        result[goal_id] = _reallocate(
            plan, _ceil(total_needed / increased), max_months
        )
    return result


def relaxed_strategy(
    groups: StrategyRecommendations,
    plans: GoalPlans,
    totals: WindowTotals,
    max_months: int = MAX_GOAL_MONTHS,
) -> GoalPlans:
    """Let discretionary spending grow by up to 20% when income allows."""
    categories = _discretionary(groups)
    before = sum((c.recommendation for c in categories), ZERO)
    surplus = totals.income - totals.desired_spending
    if before > 0:
        if surplus >= 0:
            change = min(before * TWENTY_PCT, surplus)
            _scale(categories, Decimal(1) + change / before)
        else:
            change = min(-surplus, before * HALF)
            _scale(categories, Decimal(1) - change / before)
        _refresh(groups)

    available = _available(totals, before, categories)
    if available <= 0:
        return {goal_id: {} for goal_id in plans}
    original_total, firsts = _first_month_total(plans)
    if original_total <= available:
        return _keep_timelines(plans)

    result: GoalPlans = {}
    for goal_id, plan in plans.items():
        if not plan:
            result[goal_id] = {}
            continue
        for_goal = available * firsts[goal_id] / original_total
        total_needed = sum(plan.values(), ZERO)
        month_count = len(plan)
        if for_goal > 0:
            month_count = max(month_count, _ceil(total_needed / for_goal))
        result[goal_id] = _reallocate(plan, month_count, max_months)
    return result


STRATEGY_FUNCS = {
    "balanced": balanced_strategy,
    "conservative": conservative_strategy,
    "relaxed": relaxed_strategy,
}


def apply_strategies(
    recommendations: dict[str, StrategyRecommendations],
    plans: GoalPlans,
    totals: WindowTotals,
    max_months: int = MAX_GOAL_MONTHS,
) -> dict[str, GoalPlans]:
    """Run every strategy in place on its own recommendation set.

    Each strategy receives its own copy of the goal plans; the returned map
    holds the adjusted plans per strategy.
    """
    goal_recommendations: dict[str, GoalPlans] = {}
    for strategy in STRATEGIES:
        goal_recommendations[strategy] = STRATEGY_FUNCS[strategy](
            recommendations[strategy], deepcopy(plans), totals, max_months
        )
        logger.debug(
            f"strategy_applied: strategy={strategy} goals={len(goal_recommendations[strategy])}"
        )
    return goal_recommendations


def round_recommendations(recommendations: dict[str, StrategyRecommendations]) -> None:
    for groups in recommendations.values():
        for group in groups.values():
            group.spending = to_cents(group.spending)
            group.recommendation = to_cents(group.recommendation)
            for cat in group.categories:
                cat.spending = to_cents(cat.spending)
                cat.recommendation = to_cents(cat.recommendation)


def round_tracking(tracking: SpendingTracking) -> None:
    for groups in tracking.values():
        for group in groups.values():
            group.spending_actual = to_cents(group.spending_actual)
            group.spending_target = to_cents(group.spending_target)
            for cat in group.categories:
                cat.spending_actual = to_cents(cat.spending_actual)
                cat.spending_target = to_cents(cat.spending_target)


def round_goal_plans(goal_recommendations: Mapping[str, GoalPlans]) -> None:
    for plans in goal_recommendations.values():
        for plan in plans.values():
            for month in plan:
                plan[month] = to_cents(plan[month])


def goal_plans_to_dict(plan: Mapping[str, Decimal]) -> dict[str, float]:
    return {month: float(amount) for month, amount in sorted(plan.items())}

