import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, make_engine
from main import app, get_db, get_provider
from models import Category, FinAccount


@pytest.fixture()
def factory():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture()
def client(factory):
    def override_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_provider] = lambda: None
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_budget(client: TestClient) -> int:
    response = client.post("/budgets", json={"name": "Home"})
    assert response.status_code == 201
    assert response.json()["onboarding_step"] == "profile_goals"
    return response.json()["id"]


def _add_account(factory, budget_id: int) -> int:
    with factory() as session:
        account = FinAccount(budget_id=budget_id, name="Checking", balance_cents=10000)
        session.add(account)
        session.commit()
        return account.id


def test_unknown_budget_is_404(client) -> None:
    assert client.get("/budgets/999/onboarding").status_code == 404
    assert client.get("/budgets/999/spending-tracking").status_code == 404


def test_onboarding_guard_errors_are_400(client, factory) -> None:
    budget_id = _create_budget(client)

    response = client.post(
        f"/budgets/{budget_id}/onboarding", json={"step": "analyze_spending"}
    )
    assert response.status_code == 400
    assert "Link at least one account" in response.json()["detail"]

    _add_account(factory, budget_id)
    response = client.post(
        f"/budgets/{budget_id}/onboarding", json={"step": "analyze_spending"}
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Financial profile is incomplete"

    profile = client.put(
        f"/budgets/{budget_id}/profile",
        json={
            "full_name": "Sam Doe",
            "age": 34,
            "annual_income_cents": 6000000,
            "savings_cents": 100000,
        },
    )
    assert profile.json()["is_complete"] is True

    response = client.post(
        f"/budgets/{budget_id}/onboarding", json={"step": "analyze_spending"}
    )
    assert response.status_code == 200
    assert client.get(f"/budgets/{budget_id}/onboarding").json() == {
        "step": "analyze_spending"
    }


def test_goal_must_target_a_future_date(client, factory) -> None:
    budget_id = _create_budget(client)
    account_id = _add_account(factory, budget_id)

    response = client.post(
        f"/budgets/{budget_id}/goals",
        json={
            "type": "savings",
            "name": "Past",
            "amount_cents": 5000,
            "target_date": "2001-01-01",
            "fin_account_id": account_id,
        },
    )

    assert response.status_code == 400
    assert client.get(f"/budgets/{budget_id}/goals").json() == []


def test_manual_transaction_gets_generated_id(client, factory) -> None:
    budget_id = _create_budget(client)
    account_id = _add_account(factory, budget_id)
    with factory() as session:
        category_id = session.scalar(
            select(Category.id).where(
                Category.budget_id == budget_id, Category.name == "Groceries"
            )
        )

    response = client.post(
        f"/budgets/{budget_id}/transactions",
        json={
            "fin_account_id": account_id,
            "date": "2026-10-02",
            "amount_cents": 4599,
            "merchant": "Market",
            "category_id": category_id,
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["user_tx_id"].startswith("P20261002")
    assert len(body["user_tx_id"]) == 21

    missing = client.post(
        f"/budgets/{budget_id}/transactions",
        json={"fin_account_id": 999, "date": "2026-10-02", "amount_cents": 100},
    )
    assert missing.status_code == 404


def test_csv_preview_then_commit(client, factory) -> None:
    budget_id = _create_budget(client)
    _add_account(factory, budget_id)
    content = b"Date,Amount,Category,Merchant\n2026-10-01,12.50,Groceris,Market\n"

    preview = client.post(
        f"/budgets/{budget_id}/transactions/import",
        files={"file": ("import.csv", content, "text/csv")},
    )
    assert preview.status_code == 200
    assert preview.json()["errors"] == []
    assert preview.json()["rows"][0]["date"] == "2026-10-01"

    committed = client.post(
        f"/budgets/{budget_id}/transactions/import",
        files={"file": ("import.csv", content, "text/csv")},
        data={"commit": "true"},
    )
    assert committed.json() == {"imported": 1}


def test_analysis_from_wrong_step_is_400(client) -> None:
    budget_id = _create_budget(client)

    response = client.post(f"/budgets/{budget_id}/analysis")

    assert response.status_code == 400
    assert "Cannot analyze spending" in response.json()["detail"]


def test_csv_upload_with_invalid_encoding_is_400(client) -> None:
    budget_id = _create_budget(client)

    response = client.post(
        f"/budgets/{budget_id}/transactions/import",
        files={"file": ("import.csv", b"Date,Amount\n\xff\xfe\xfa", "text/csv")},
    )

    assert response.status_code == 400
