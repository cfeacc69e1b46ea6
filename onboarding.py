from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from analysis import AnalysisContext, AnalysisRun, run_pipeline
from errors import (
    AnalysisInProgress,
    GoalValidationError,
    InvalidTransition,
    NoLinkedAccounts,
    ProfileIncomplete,
)
from models import Budget, OnboardingStep
from periods import local_today
from provider import TransactionProvider
from retry import RetryPolicy
from services import BudgetService, GoalService

logger = logging.getLogger(__name__)

STEPS: tuple[OnboardingStep, ...] = (
    OnboardingStep.profile_goals,
    OnboardingStep.analyze_spending,
    OnboardingStep.analyze_spending_in_progress,
    OnboardingStep.budget_setup,
    OnboardingStep.end,
)

# Steps that need a complete profile and valid goals before they can be entered.
ANALYSIS_STEPS = (
    OnboardingStep.analyze_spending,
    OnboardingStep.analyze_spending_in_progress,
)


@dataclass(frozen=True)
class TransitionContext:
    today: date
    has_linked_accounts: bool = False
    profile_complete: bool = False
    goal_target_dates: tuple[date, ...] = ()
    has_recommendations: bool = False
    has_tracking: bool = False


def check_transition(
    current: OnboardingStep, target: OnboardingStep, ctx: TransitionContext
) -> None:
    """Raise if ``current -> target`` is not allowed in ``ctx``."""
    offset = STEPS.index(target) - STEPS.index(current)
    if abs(offset) != 1:
        raise InvalidTransition(
            f"Cannot move from {current.value} to {target.value}"
        )
    if target == OnboardingStep.profile_goals and not ctx.has_linked_accounts:
        raise NoLinkedAccounts("Link at least one account before setting goals")
    if offset < 0:
        return
    if target in ANALYSIS_STEPS:
        if not ctx.has_linked_accounts:
            raise NoLinkedAccounts("Link at least one account before analyzing spending")
        if not ctx.profile_complete:
            raise ProfileIncomplete("Financial profile is incomplete")
        expired = sorted(d for d in ctx.goal_target_dates if d <= ctx.today)
        if expired:
            raise GoalValidationError(
                f"Goal target date {expired[0].isoformat()} must be after "
                f"{ctx.today.isoformat()}"
            )
    if target == OnboardingStep.budget_setup:
        if not ctx.has_recommendations or not ctx.has_tracking:
            raise InvalidTransition("Spending analysis has not produced results")


class OnboardingService:
    def __init__(
        self,
        session: Session,
        budget_id: int,
        provider: Optional[TransactionProvider] = None,
        retry: Optional[RetryPolicy] = None,
        rng: Optional[random.Random] = None,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.budget_id = budget_id
        self.provider = provider
        self.retry = retry
        self.rng = rng
        self.today = today or local_today()

    def _budget(self) -> Budget:
        return BudgetService(self.session, self.budget_id).get()

    def current_step(self) -> OnboardingStep:
        return self._budget().onboarding_step

    def _context(self, budget: Budget) -> TransitionContext:
        budgets = BudgetService(self.session, self.budget_id)
        profile = budgets.profile()
        goals = GoalService(self.session, self.budget_id).list_all()
        return TransitionContext(
            today=self.today,
            has_linked_accounts=budgets.has_linked_accounts(),
            profile_complete=bool(profile and profile.is_complete),
            goal_target_dates=tuple(goal.target_date for goal in goals),
            has_recommendations=bool(budget.spending_recommendations),
            has_tracking=bool(budget.spending_tracking),
        )

    def _move(self, target: OnboardingStep) -> Budget:
        budget = self._budget()
        current = budget.onboarding_step
        check_transition(current, target, self._context(budget))
        budget.onboarding_step = target
        self.session.flush()
        logger.info(
            f"onboarding_transition: budget_id={self.budget_id} "
            f"from={current.value} to={target.value}"
        )
        return budget

    def transition(self, target: OnboardingStep) -> Budget:
        if target == OnboardingStep.analyze_spending_in_progress:
            raise InvalidTransition("Start an analysis run to analyze spending")
        budget = self._move(target)
        self.session.commit()
        return budget

    def _rollback(self) -> None:
        self.session.rollback()
        budget = self._budget()
        budget.onboarding_step = OnboardingStep.analyze_spending
        self.session.commit()
        logger.warning(
            f"onboarding_rollback: budget_id={self.budget_id} "
            f"step={OnboardingStep.analyze_spending.value}"
        )

    def run_analysis(self) -> AnalysisRun:
        """Analyze spending and move the budget on to ``budget_setup``.

        The in-progress step is committed first so a concurrent run is
        rejected. Any failure after that rolls back everything the run wrote
        and returns the budget to ``analyze_spending`` before re-raising.
        """
        step = self.current_step()
        if step == OnboardingStep.analyze_spending_in_progress:
            raise AnalysisInProgress("Already analyzing spending")
        if step != OnboardingStep.analyze_spending:
            raise InvalidTransition(f"Cannot analyze spending from {step.value}")
        self._move(OnboardingStep.analyze_spending_in_progress)
        self.session.commit()

        ctx = AnalysisContext(
            session=self.session,
            budget_id=self.budget_id,
            provider=self.provider,
            retry=self.retry or RetryPolicy.from_settings(),
            rng=self.rng,
        )
        run = AnalysisRun(budget_id=self.budget_id, today=self.today)
        try:
            run_pipeline(ctx, run).raise_for_error()
            self._move(OnboardingStep.budget_setup)
            self.session.commit()
        except Exception:
            self._rollback()
            raise
        return run
