from datetime import date
from decimal import Decimal

import pytest

from errors import GoalValidationError
from goal_tracking import (
    build_goal_tracking,
    goal_tracking_from_dict,
    goal_tracking_to_dict,
    initial_tracking,
    schedule_goal,
)
from models import GoalType
from schemas import GoalAllocation, GoalMonthTracking, GoalRecord


def test_schedule_starts_next_month_when_day_passed() -> None:
    allocations = schedule_goal(Decimal("1000"), date(2027, 1, 15), date(2026, 10, 19))

    assert [a.date for a in allocations] == [
        date(2026, 11, 15),
        date(2026, 12, 15),
        date(2027, 1, 15),
    ]
    assert [a.amount for a in allocations] == [
        Decimal("333.33"),
        Decimal("333.33"),
        Decimal("333.34"),
    ]
    assert sum(a.amount for a in allocations) == Decimal("1000")


def test_schedule_includes_current_month_before_target_day() -> None:
    allocations = schedule_goal(Decimal("600"), date(2026, 12, 25), date(2026, 10, 19))

    assert [a.month for a in allocations] == ["2026-10", "2026-11", "2026-12"]
    assert sum(a.amount for a in allocations) == Decimal("600")


def test_schedule_clamps_day_to_short_months() -> None:
    allocations = schedule_goal(Decimal("400"), date(2027, 3, 31), date(2026, 12, 1))

    assert [a.date for a in allocations] == [
        date(2026, 12, 31),
        date(2027, 1, 31),
        date(2027, 2, 28),
        date(2027, 3, 31),
    ]


def test_schedule_sum_matches_amount_for_uneven_split() -> None:
    allocations = schedule_goal(Decimal("1234.57"), date(2027, 9, 5), date(2026, 10, 19))

    assert len(allocations) == 11
    assert sum(a.amount for a in allocations) == Decimal("1234.57")


@pytest.mark.parametrize("target", [date(2026, 10, 19), date(2026, 10, 1)])
def test_schedule_rejects_target_not_after_today(target: date) -> None:
    with pytest.raises(GoalValidationError):
        schedule_goal(Decimal("100"), target, date(2026, 10, 19))


def test_initial_tracking_puts_balance_on_first_month() -> None:
    allocations = schedule_goal(Decimal("200"), date(2026, 12, 10), date(2026, 10, 19))

    tracking = initial_tracking(allocations, Decimal("50"))

    assert list(tracking) == ["2026-11", "2026-12"]
    assert tracking["2026-11"].starting_balance == Decimal("50")
    assert tracking["2026-12"].starting_balance == Decimal("0")
    assert tracking["2026-11"].allocations["2026-11-10"].amount_target == Decimal("100.00")


def test_build_goal_tracking_keeps_existing_dates_and_rescales() -> None:
    goal = GoalRecord(
        id=1,
        type=GoalType.savings,
        name="Trip",
        amount=Decimal("900"),
        target_date=date(2027, 1, 20),
        account_balance=Decimal("75"),
        spending_tracking={
            "2026-11": GoalMonthTracking(
                month="2026-11",
                allocations={
                    "2026-11-10": GoalAllocation(
                        date_target=date(2026, 11, 10), amount_target=Decimal("100")
                    ),
                    "2026-11-20": GoalAllocation(
                        date_target=date(2026, 11, 20),
                        amount_target=Decimal("100"),
                        amount_actual=Decimal("80"),
                    ),
                },
            )
        },
    )

    tracking = build_goal_tracking(
        goal, {"2026-11": Decimal("300"), "2026-12": Decimal("450")}
    )

    november = tracking["2026-11"]
    assert november.starting_balance == Decimal("75")
    assert set(november.allocations) == {"2026-11-10", "2026-11-20"}
    assert november.allocations["2026-11-10"].amount_target == Decimal("150.00")
    assert november.allocations["2026-11-20"].amount_actual == Decimal("80")

    december = tracking["2026-12"]
    assert december.starting_balance == Decimal("0")
    assert list(december.allocations) == ["2026-12-25"]
    assert december.allocations["2026-12-25"].amount_target == Decimal("450")


def test_goal_tracking_dict_round_trip_keeps_dates() -> None:
    allocations = schedule_goal(Decimal("300"), date(2027, 1, 5), date(2026, 10, 19))
    tracking = initial_tracking(allocations, Decimal("10"))

    restored = goal_tracking_from_dict(goal_tracking_to_dict(tracking))

    assert list(restored) == list(tracking)
    assert restored["2026-11"].allocations["2026-11-05"].date_target == date(2026, 11, 5)


def test_rescaled_allocations_sum_to_recommended_month() -> None:
    allocations = {
        f"2026-11-{day:02d}": GoalAllocation(
            date_target=date(2026, 11, day), amount_target=Decimal("100")
        )
        for day in (5, 15, 25)
    }
    goal = GoalRecord(
        id=1,
        type=GoalType.savings,
        name="Trip",
        amount=Decimal("300"),
        target_date=date(2026, 11, 25),
        spending_tracking={
            "2026-11": GoalMonthTracking(month="2026-11", allocations=allocations)
        },
    )

    tracking = build_goal_tracking(goal, {"2026-11": Decimal("100")})

    amounts = [a.amount_target for _, a in sorted(tracking["2026-11"].allocations.items())]
    assert amounts == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(amounts) == Decimal("100")
