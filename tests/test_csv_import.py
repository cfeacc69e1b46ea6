import random
from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from csv_utils import parse_amount, parse_csv, parse_date
from database import Base
from errors import CategoryAmbiguous, CategoryNotFound
from models import Category, CategoryGroup, FinAccount, Transaction
from schemas import BudgetIn
from services import BudgetService, CategoryService, CSVService


def _budget(session: Session, *account_names: str) -> int:
    budget = BudgetService.create(session, BudgetIn(name="Home"))
    for name in account_names:
        session.add(FinAccount(budget_id=budget.id, name=name))
    session.commit()
    return budget.id


def test_parse_date_and_amount_formats() -> None:
    assert parse_date("2026-10-01") == date(2026, 10, 1)
    assert parse_date("01.10.2026") == date(2026, 10, 1)
    assert parse_amount("12,50 €") == 1250
    assert parse_amount("1.234,56") == 123456
    assert parse_amount("-40.00", allow_negative=True) == -4000
    with pytest.raises(ValueError):
        parse_amount("-40.00")
    with pytest.raises(ValueError):
        parse_amount("abc")


def test_parse_csv_reports_missing_columns() -> None:
    rows, errors = parse_csv("Date,Amount\n2026-10-01,10\n")
    assert rows == []
    assert errors == ["Missing columns: Category"]


def test_parse_csv_collects_row_errors() -> None:
    content = (
        "Date,Amount,Category,Merchant\n"
        "2026-10-01,12.50,Groceries,Market\n"
        "not-a-date,10,Groceries,\n"
        "2026-10-02,0,Groceries,\n"
        "2026-10-03,-2500,Income,Employer\n"
    )

    rows, errors = parse_csv(content)

    assert [r.amount_cents for r in rows] == [1250, -250000]
    assert rows[0].merchant == "Market"
    assert rows[1].account is None
    assert len(errors) == 2
    assert errors[0].startswith("Row 2:")
    assert errors[1] == "Row 3: Amount must not be zero"


def test_resolve_name_tolerates_one_typo() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget_id = _budget(session)
        categories = CategoryService(session, budget_id)

        assert categories.resolve_name("groceries").name == "Groceries"
        assert categories.resolve_name("Groceris").name == "Groceries"
        with pytest.raises(CategoryNotFound):
            categories.resolve_name("Grcrs")


def test_resolve_name_rejects_ambiguous_match() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget_id = _budget(session)
        group = session.scalar(
            select(CategoryGroup).where(
                CategoryGroup.budget_id == budget_id, CategoryGroup.name == "Food"
            )
        )
        session.add_all(
            [
                Category(budget_id=budget_id, group_id=group.id, name="Cafe"),
                Category(budget_id=budget_id, group_id=group.id, name="Cake"),
            ]
        )
        session.commit()

        with pytest.raises(CategoryAmbiguous, match="Cafe, Cake"):
            CategoryService(session, budget_id).resolve_name("Cave")


def test_preview_flags_unknown_account_and_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget_id = _budget(session, "Checking", "Savings")
        content = (
            "Date,Amount,Category,Account\n"
            "2026-10-01,12.50,Groceries,checking\n"
            "2026-10-02,8.00,Groceries,Brokerage\n"
            "2026-10-03,8.00,Nope At All,Savings\n"
            "2026-10-04,8.00,Groceries,\n"
        )

        rows, errors = CSVService(session, budget_id).preview(content)

        assert len(rows) == 4
        assert rows[0]["fin_account_id"] is not None
        assert rows[0]["category_id"] is not None
        assert errors == [
            "Row 2: unknown account 'Brokerage'",
            "Row 3: Category 'Nope At All' not found",
            "Row 4: unknown account ''",
        ]


def test_commit_stores_rows_with_generated_ids() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget_id = _budget(session, "Checking")
        content = (
            "Date,Amount,Category,Merchant,Note\n"
            "2026-10-01,12.50,Groceris,Market,weekly shop\n"
            "01.10.2026,-2500,Income,Employer,\n"
        )

        count = CSVService(session, budget_id, random.Random(7)).commit(content)

        assert count == 2
        stored = session.scalars(select(Transaction).order_by(Transaction.amount_cents)).all()
        assert [t.amount_cents for t in stored] == [-250000, 1250]
        assert all(t.user_tx_id.startswith("P20261001") for t in stored)
        assert all(t.user_tx_id.endswith("000000") for t in stored)
        assert stored[1].category.name == "Groceries"
        assert stored[1].note == "weekly shop"
        assert stored[0].provider_tx_id is None


def test_commit_rejects_file_with_errors() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget_id = _budget(session, "Checking")

        with pytest.raises(ValueError, match="Row 1"):
            CSVService(session, budget_id).commit(
                "Date,Amount,Category\n2026-10-01,5,Unknown Thing\n"
            )

        assert session.scalars(select(Transaction)).all() == []
