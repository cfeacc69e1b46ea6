from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

from errors import GoalValidationError
from periods import add_months, month_key, parse_month_key
from recommendations import allocate_with_remainder, to_cents
from schemas import GoalAllocation, GoalMonthTracking, GoalRecord

FALLBACK_ALLOCATION_DAY = 25

# month key -> tracking for that month
GoalTracking = dict[str, GoalMonthTracking]


@dataclass(frozen=True)
class ScheduledAllocation:
    month: str
    date: date
    amount: Decimal


def schedule_goal(
    amount: Decimal, target_date: date, today: date
) -> list[ScheduledAllocation]:
    """Monthly contribution calendar from ``today`` up to ``target_date``.

    One allocation per month through the target month, on the target's day
    of month (clamped to short months). The first month is skipped when its
    allocation day is already reached. Amounts use a half-up base with the
    last month absorbing the remainder.
    """
    if target_date <= today:
        raise GoalValidationError(
            f"Goal target date {target_date.isoformat()} must be after {today.isoformat()}"
        )
    target_day = target_date.day
    start = today.replace(day=1)
    if today.day >= target_day:
        start = add_months(start, 1)

    dates: list[date] = []
    current = start
    last_month = target_date.replace(day=1)
    while current <= last_month:
        dates.append(add_months(current, 0, day=target_day))
        current = add_months(current, 1)

    amounts = allocate_with_remainder(
        Decimal(amount), len(dates), rounding=ROUND_HALF_UP
    )
    return [
        ScheduledAllocation(month=month_key(d), date=d, amount=a)
        for d, a in zip(dates, amounts)
    ]


def goal_plan(goal: GoalRecord, today: date) -> dict[str, Decimal]:
    return {
        item.month: item.amount
        for item in schedule_goal(goal.amount, goal.target_date, today)
    }


def initial_tracking(
    allocations: list[ScheduledAllocation], starting_balance: Decimal
) -> GoalTracking:
    tracking: GoalTracking = {}
    for index, item in enumerate(allocations):
        tracking[item.month] = GoalMonthTracking(
            month=item.month,
            starting_balance=starting_balance if index == 0 else Decimal("0"),
            allocations={
                item.date.isoformat(): GoalAllocation(
                    date_target=item.date, amount_target=item.amount
                )
            },
        )
    return tracking


def build_goal_tracking(
    goal: GoalRecord, plan: Mapping[str, Decimal]
) -> GoalTracking:
    """Re-derive a goal's tracking from its recommended monthly amounts.

    Months that already hold allocations keep their dates; only the amounts
    are rescaled to the new monthly total. Other months get a single
    allocation on the 25th.
    """
    tracking: GoalTracking = {}
    for index, month in enumerate(sorted(plan)):
        recommended = plan[month]
        existing: Optional[GoalMonthTracking] = goal.spending_tracking.get(month)
        entry = GoalMonthTracking(
            month=month,
            starting_balance=goal.account_balance if index == 0 else Decimal("0"),
        )
        if existing is None or not existing.allocations:
            if recommended > 0:
                day = parse_month_key(month).replace(day=FALLBACK_ALLOCATION_DAY)
                entry.allocations[day.isoformat()] = GoalAllocation(
                    date_target=day, amount_target=recommended
                )
        else:
            old_total = sum(
                (a.amount_target for a in existing.allocations.values()), Decimal("0")
            )
            keys = sorted(existing.allocations)
            assigned = Decimal("0")
            for index, key in enumerate(keys):
                allocation = existing.allocations[key]
                adjusted = Decimal("0")
                if old_total > 0:
                    if index == len(keys) - 1:
                        # last allocation takes the remainder so the month sums exactly
                        adjusted = to_cents(recommended - assigned)
                    else:
                        adjusted = to_cents(
                            allocation.amount_target * recommended / old_total
                        )
                    assigned += adjusted
                entry.allocations[key] = GoalAllocation(
                    date_target=allocation.date_target,
                    amount_target=adjusted,
                    amount_actual=allocation.amount_actual,
                )
        tracking[month] = entry
    return tracking


def round_goal_tracking(trackings: Mapping[int, GoalTracking]) -> None:
    for tracking in trackings.values():
        for entry in tracking.values():
            entry.starting_balance = to_cents(entry.starting_balance)
            for allocation in entry.allocations.values():
                allocation.amount_target = to_cents(allocation.amount_target)
                if allocation.amount_actual is not None:
                    allocation.amount_actual = to_cents(allocation.amount_actual)


def goal_tracking_to_dict(tracking: GoalTracking) -> dict[str, dict[str, object]]:
    result: dict[str, dict[str, object]] = {}
    for month, entry in sorted(tracking.items()):
        result[month] = {
            "month": entry.month,
            "starting_balance": float(entry.starting_balance),
            "allocations": {
                key: {
                    "date_target": allocation.date_target.isoformat(),
                    "amount_target": float(allocation.amount_target),
                    "amount_actual": float(allocation.amount_actual)
                    if allocation.amount_actual is not None
                    else None,
                }
                for key, allocation in sorted(entry.allocations.items())
            },
        }
    return result


def goal_tracking_from_dict(raw: Optional[Mapping[str, object]]) -> GoalTracking:
    if not raw:
        return {}
    return {
        month: GoalMonthTracking.model_validate(value) for month, value in raw.items()
    }
