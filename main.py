import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from analysis import AnalysisRun
from config import get_settings
from database import SessionLocal
from errors import NotFoundError, ServerError
from goal_tracking import goal_tracking_from_dict, goal_tracking_to_dict
from models import BudgetGoal
from onboarding import OnboardingService
from provider import PlaidProvider, TransactionProvider
from recommendations import goal_plans_to_dict
from schemas import (
    BudgetIn,
    FinancialProfileIn,
    GoalIn,
    ManualTransactionIn,
    OnboardingStepIn,
)
from services import BudgetService, CSVService, GoalService, TransactionService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Recommendations")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_provider() -> Optional[TransactionProvider]:
    settings = get_settings()
    if not settings.plaid_client_id or not settings.plaid_secret:
        return None
    return PlaidProvider()


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ServerError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _goal_payload(goal: BudgetGoal) -> dict:
    return {
        "id": goal.id,
        "type": goal.type.value,
        "name": goal.name,
        "amount_cents": goal.amount_cents,
        "target_date": goal.target_date.isoformat(),
        "description": goal.description,
        "fin_account_id": goal.fin_account_id,
        "spending_tracking": goal_tracking_to_dict(
            goal_tracking_from_dict(goal.spending_tracking)
        ),
        "spending_recommendations": goal.spending_recommendations or {},
    }


def _analysis_payload(run: AnalysisRun) -> dict:
    return {
        "onboarding_step": "budget_setup",
        "spending_recommendations": run.recommendations_dict(),
        "spending_tracking": run.tracking_dict(),
        "goal_recommendations": {
            strategy: {
                str(goal_id): goal_plans_to_dict(plan) for goal_id, plan in plans.items()
            }
            for strategy, plans in run.goal_recommendations.items()
        },
        "goal_tracking": {
            str(goal_id): goal_tracking_to_dict(tracking)
            for goal_id, tracking in run.goal_trackings.items()
        },
        "uncategorized": len(run.uncategorized),
    }


@app.post("/budgets", status_code=201)
def create_budget(data: BudgetIn, db: Session = Depends(get_db)):
    budget = BudgetService.create(db, data)
    return {
        "id": budget.id,
        "name": budget.name,
        "onboarding_step": budget.onboarding_step.value,
    }


@app.post("/budgets/{budget_id}/analysis")
def run_analysis(
    budget_id: int,
    db: Session = Depends(get_db),
    provider: Optional[TransactionProvider] = Depends(get_provider),
):
    service = OnboardingService(db, budget_id, provider=provider)
    try:
        run = service.run_analysis()
    except (ValueError, ServerError) as exc:
        raise _http_error(exc) from exc
    return _analysis_payload(run)


@app.get("/budgets/{budget_id}/onboarding")
def get_onboarding(budget_id: int, db: Session = Depends(get_db)):
    try:
        step = OnboardingService(db, budget_id).current_step()
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"step": step.value}


@app.post("/budgets/{budget_id}/onboarding")
def update_onboarding(
    budget_id: int, data: OnboardingStepIn, db: Session = Depends(get_db)
):
    try:
        budget = OnboardingService(db, budget_id).transition(data.step)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"step": budget.onboarding_step.value}


@app.put("/budgets/{budget_id}/profile")
def update_profile(
    budget_id: int, data: FinancialProfileIn, db: Session = Depends(get_db)
):
    try:
        profile = BudgetService(db, budget_id).upsert_profile(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "full_name": profile.full_name,
        "age": profile.age,
        "annual_income_cents": profile.annual_income_cents,
        "savings_cents": profile.savings_cents,
        "is_complete": profile.is_complete,
    }


@app.post("/budgets/{budget_id}/goals", status_code=201)
def create_goal(budget_id: int, data: GoalIn, db: Session = Depends(get_db)):
    try:
        BudgetService(db, budget_id).get()
        goal = GoalService(db, budget_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return _goal_payload(goal)


@app.get("/budgets/{budget_id}/goals")
def list_goals(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db, budget_id).get()
    except ValueError as exc:
        raise _http_error(exc) from exc
    return [_goal_payload(goal) for goal in GoalService(db, budget_id).list_all()]


@app.get("/budgets/{budget_id}/spending-tracking")
def spending_tracking(budget_id: int, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db, budget_id).get()
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "spending_tracking": budget.spending_tracking or {},
        "spending_recommendations": budget.spending_recommendations or {},
    }


@app.post("/budgets/{budget_id}/transactions/import")
async def import_transactions(
    budget_id: int,
    file: UploadFile = File(...),
    commit: bool = Form(False),
    db: Session = Depends(get_db),
):
    raw = await file.read()
    service = CSVService(db, budget_id)
    try:
        BudgetService(db, budget_id).get()
        content = raw.decode("utf-8-sig")
        if commit:
            count = service.commit(content)
            return {"imported": count}
        rows, errors = service.preview(content)
    except (ValueError, ServerError) as exc:
        raise _http_error(exc) from exc
    return {
        "rows": [{**row, "date": row["date"].isoformat()} for row in rows],
        "errors": errors,
    }


@app.post("/budgets/{budget_id}/transactions", status_code=201)
def create_transaction(
    budget_id: int, data: ManualTransactionIn, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db, budget_id).create_manual(data)
    except (ValueError, ServerError) as exc:
        raise _http_error(exc) from exc
    return {
        "user_tx_id": txn.user_tx_id,
        "fin_account_id": txn.fin_account_id,
        "date": txn.date.isoformat(),
        "amount_cents": txn.amount_cents,
        "merchant": txn.merchant,
        "category_id": txn.category_id,
        "note": txn.note,
    }
