"""One spending analysis run, split into stages.

Every stage takes the shared :class:`AnalysisRun` and returns a
:class:`StageResult`; nothing raises across a stage boundary. The caller
decides what to do with a failed stage.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from sqlalchemy.orm import Session

from aggregation import (
    SpendingAnalysis,
    analyze_spending,
    recommendations_to_dict,
    tracking_to_dict,
)
from classifier import ClassifiedTransaction, Taxonomy, classify_all, classify_recurring
from config import get_settings
from errors import MappingUnavailable, ProviderError, StageResult
from goal_tracking import GoalTracking, build_goal_tracking, goal_plan, round_goal_tracking
from provider import TransactionProvider
from reconciliation import (
    ManualRecurringMerge,
    StreamMerge,
    fetch_streams,
    merge_manual_recurring,
    merge_streams,
    merge_transactions,
    sync_item,
)
from recommendations import (
    GoalPlans,
    apply_strategies,
    round_goal_plans,
    round_recommendations,
    round_tracking,
)
from recurrence import detect_recurring
from retry import RetryPolicy
from schemas import GoalRecord, RecurringRecord, TransactionRecord
from services import (
    BudgetService,
    CategoryService,
    GoalService,
    RecurringService,
    TransactionService,
)

logger = logging.getLogger(__name__)


@dataclass
class AnalysisRun:
    budget_id: int
    today: date
    transactions: list[TransactionRecord] = field(default_factory=list)
    unlinked: list[TransactionRecord] = field(default_factory=list)
    recurring: list[RecurringRecord] = field(default_factory=list)
    # provider item id -> cursor to store once the run succeeds
    cursors: dict[int, Optional[str]] = field(default_factory=dict)
    stream_merges: list[StreamMerge] = field(default_factory=list)
    manual_merge: Optional[ManualRecurringMerge] = None
    taxonomy: Taxonomy = field(default_factory=Taxonomy)
    mapping: dict[str, str] = field(default_factory=dict)
    classified: list[ClassifiedTransaction] = field(default_factory=list)
    uncategorized: list[TransactionRecord] = field(default_factory=list)
    # recurring record id -> resolved category id
    recurring_categories: dict[int, Optional[int]] = field(default_factory=dict)
    goals: list[GoalRecord] = field(default_factory=list)
    goal_plans: GoalPlans = field(default_factory=dict)
    spending: Optional[SpendingAnalysis] = None
    goal_recommendations: dict[str, GoalPlans] = field(default_factory=dict)
    goal_trackings: dict[int, GoalTracking] = field(default_factory=dict)

    def recommendations_dict(self) -> dict[str, dict[str, object]]:
        if self.spending is None:
            return {}
        return recommendations_to_dict(self.spending.recommendations)

    def tracking_dict(self) -> dict[str, dict[str, object]]:
        if self.spending is None:
            return {}
        return tracking_to_dict(self.spending.tracking)


@dataclass
class AnalysisContext:
    """Collaborators shared by every stage of a run."""

    session: Session
    budget_id: int
    provider: Optional[TransactionProvider] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy.from_settings)
    rng: Optional[random.Random] = None

    @property
    def budgets(self) -> BudgetService:
        return BudgetService(self.session, self.budget_id)

    @property
    def categories(self) -> CategoryService:
        return CategoryService(self.session, self.budget_id)

    @property
    def transactions(self) -> TransactionService:
        return TransactionService(self.session, self.budget_id, self.rng)

    @property
    def recurring(self) -> RecurringService:
        return RecurringService(self.session, self.budget_id, self.rng)

    @property
    def goals(self) -> GoalService:
        return GoalService(self.session, self.budget_id)


Stage = Callable[[AnalysisContext, AnalysisRun], None]


def _run_stage(
    name: str, stage: Stage, ctx: AnalysisContext, run: AnalysisRun
) -> StageResult[None]:
    try:
        stage(ctx, run)
    except (ValueError, RuntimeError) as exc:
        logger.warning(
            f"analysis_stage_failed: budget_id={run.budget_id} stage={name} error={exc}"
        )
        return StageResult.failure(exc)
    logger.debug(f"analysis_stage: budget_id={run.budget_id} stage={name}")
    return StageResult.success(None)


def reconcile(ctx: AnalysisContext, run: AnalysisRun) -> None:
    """Sync provider items, store new transactions and recurring streams."""
    budgets = ctx.budgets
    transactions = ctx.transactions
    accounts = budgets.account_links()
    linked_ids = {account.id for account in budgets.linked_accounts()}
    items = budgets.provider_items()
    added = []
    if items and ctx.provider is None:
        raise ProviderError("No transaction provider configured")
    for item in items:
        synced = sync_item(ctx.provider, item.access_token, item.next_cursor, ctx.retry)
        added.extend(synced.added)
        run.cursors[item.id] = synced.next_cursor

    merged = merge_transactions(
        transactions.records(), added, accounts, ctx.budget_id, linked_ids
    )
    transactions.replace_pending(merged.replaced)
    saved = {
        record.provider_tx_id: record for record in transactions.persist_new(merged.new)
    }
    run.transactions = [
        saved.get(record.provider_tx_id, record) if record.provider_tx_id else record
        for record in merged.linked
    ]
    run.unlinked = [
        saved.get(record.provider_tx_id, record) if record.provider_tx_id else record
        for record in merged.unlinked
    ]

    recurring = ctx.recurring
    existing = recurring.records()
    for item in items:
        account_ids = [
            account.provider_account_id
            for account in item.accounts
            if account.provider_account_id
        ]
        if not account_ids:
            continue
        streams = fetch_streams(ctx.provider, item.access_token, account_ids, ctx.retry)
        provider_ids = [tid for stream in streams.all() for tid in stream.transaction_ids]
        merge = merge_streams(
            existing, streams.all(), accounts, transactions.user_id_map(provider_ids)
        )
        recurring.apply_stream_merge(merge, run.today)
        run.stream_merges.append(merge)

    manual = [
        record
        for record in run.transactions
        if record.provider_account_id is None and record.fin_account_id is not None
    ]
    detected = detect_recurring(manual, get_settings().recurring_day_tolerance)
    run.manual_merge = merge_manual_recurring(recurring.records(), detected)
    recurring.apply_manual_merge(run.manual_merge)
    run.recurring = recurring.records()
    logger.info(
        f"reconcile: budget_id={run.budget_id} linked={len(run.transactions)} "
        f"unlinked={len(run.unlinked)} new={len(merged.new)} "
        f"replaced={len(merged.replaced)} recurring={len(run.recurring)}"
    )


def classify(ctx: AnalysisContext, run: AnalysisRun) -> None:
    categories = ctx.categories
    run.taxonomy = categories.taxonomy()
    run.mapping = categories.mapping()
    if not run.taxonomy and not run.mapping:
        raise MappingUnavailable("Category taxonomy and provider mapping are empty")
    run.classified, run.uncategorized = classify_all(
        run.transactions, run.taxonomy, run.mapping
    )
    instances = {
        item.transaction.user_tx_id: item.category
        for item in run.classified
        if item.transaction.user_tx_id
    }
    for record in run.recurring:
        if record.id is None:
            continue
        ref = classify_recurring(record, instances, run.taxonomy, run.mapping)
        run.recurring_categories[record.id] = ref.category_id if ref else None


def aggregate(ctx: AnalysisContext, run: AnalysisRun) -> None:
    run.spending = analyze_spending(
        run.classified, run.taxonomy, get_settings().trailing_window_days
    )


def recommend(ctx: AnalysisContext, run: AnalysisRun) -> None:
    run.goals = ctx.goals.records()
    run.goal_plans = {goal.id: goal_plan(goal, run.today) for goal in run.goals}
    run.goal_recommendations = apply_strategies(
        run.spending.recommendations,
        run.goal_plans,
        run.spending.totals,
        get_settings().max_goal_months,
    )


def track_goals(ctx: AnalysisContext, run: AnalysisRun) -> None:
    balanced = run.goal_recommendations.get("balanced", {})
    run.goal_trackings = {
        goal.id: build_goal_tracking(goal, balanced.get(goal.id, {}))
        for goal in run.goals
    }
    round_recommendations(run.spending.recommendations)
    round_tracking(run.spending.tracking)
    round_goal_plans(run.goal_recommendations)
    round_goal_tracking(run.goal_trackings)


def persist(ctx: AnalysisContext, run: AnalysisRun) -> None:
    ctx.recurring.update_categories(run.recurring_categories)
    budgets = ctx.budgets
    for item_id, cursor in run.cursors.items():
        budgets.update_cursor(item_id, cursor)
    budgets.persist_spending(run.recommendations_dict(), run.tracking_dict())
    ctx.goals.persist_results(run.goal_recommendations, run.goal_trackings)


STAGES: tuple[tuple[str, Stage], ...] = (
    ("reconcile", reconcile),
    ("classify", classify),
    ("aggregate", aggregate),
    ("recommend", recommend),
    ("track_goals", track_goals),
    ("persist", persist),
)


def run_pipeline(ctx: AnalysisContext, run: AnalysisRun) -> StageResult[AnalysisRun]:
    """Run every stage in order, stopping at the first failure."""
    for name, stage in STAGES:
        result = _run_stage(name, stage, ctx, run)
        if not result.ok:
            return StageResult(error=result.error, kind=result.kind)
    logger.info(
        f"analysis_run: budget_id={run.budget_id} classified={len(run.classified)} "
        f"uncategorized={len(run.uncategorized)} goals={len(run.goals)}"
    )
    return StageResult.success(run)
