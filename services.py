from __future__ import annotations

import logging
import random
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

from pydantic import ValidationError
from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from classifier import Taxonomy
from csv_utils import parse_csv
from errors import (
    CategoryAmbiguous,
    CategoryNotFound,
    GoalValidationError,
    NotFoundError,
    PersistenceError,
)
from goal_tracking import (
    GoalTracking,
    goal_tracking_from_dict,
    goal_tracking_to_dict,
    initial_tracking,
    schedule_goal,
)
from models import (
    Budget,
    BudgetGoal,
    Category,
    CategoryGroup,
    FinAccount,
    FinancialProfile,
    ProviderCategoryMapping,
    ProviderItem,
    RecurringTransaction,
    Transaction,
)
from periods import local_today
from reconciliation import (
    AccountLink,
    ManualRecurringMerge,
    StreamMerge,
    generate_recurring_id,
    generate_user_tx_id,
)
from recommendations import goal_plans_to_dict
from schemas import (
    BudgetIn,
    CategoryRef,
    FinancialProfileIn,
    GoalIn,
    GoalRecord,
    ManualTransactionIn,
    RecurringRecord,
    TransactionRecord,
)
from seeds import seed_defaults

logger = logging.getLogger(__name__)

CENTS = Decimal("100")


def cents_to_decimal(cents: int) -> Decimal:
    return Decimal(cents) / CENTS


def decimal_to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * CENTS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _transaction_record(txn: Transaction) -> TransactionRecord:
    return TransactionRecord(
        user_tx_id=txn.user_tx_id,
        provider_tx_id=txn.provider_tx_id,
        provider_account_id=txn.account.provider_account_id if txn.account else None,
        fin_account_id=txn.fin_account_id,
        date=txn.date,
        amount=cents_to_decimal(txn.amount_cents),
        status=txn.status,
        currency=txn.currency,
        merchant=txn.merchant,
        provider_category=txn.provider_category,
        category_id=txn.category_id,
        note=txn.note,
    )


def _recurring_record(row: RecurringTransaction) -> RecurringRecord:
    return RecurringRecord(
        id=row.id,
        user_tx_id=row.user_tx_id,
        provider_stream_id=row.provider_stream_id,
        fin_account_id=row.fin_account_id,
        merchant=row.merchant,
        provider_category=row.provider_category,
        category_id=row.category_id,
        frequency=row.frequency,
        average_amount=cents_to_decimal(row.average_amount_cents),
        instance_ids=list(row.instance_ids or []),
    )


class BudgetService:
    def __init__(self, session: Session, budget_id: int) -> None:
        self.session = session
        self.budget_id = budget_id

    @classmethod
    def create(cls, session: Session, data: BudgetIn) -> Budget:
        """Create a budget with the default category taxonomy."""
        budget = Budget(name=data.name.strip())
        session.add(budget)
        session.flush()
        seed_defaults(session, budget.id)
        session.commit()
        logger.info(f"budget_created: budget_id={budget.id}")
        return budget

    def get(self) -> Budget:
        budget = self.session.get(Budget, self.budget_id)
        if not budget:
            raise NotFoundError(f"Budget {self.budget_id} not found")
        return budget

    def linked_accounts(self) -> list[FinAccount]:
        return list(
            self.session.scalars(
                select(FinAccount)
                .where(FinAccount.budget_id == self.budget_id)
                .order_by(FinAccount.id)
            )
        )

    def has_linked_accounts(self) -> bool:
        return bool(
            self.session.scalar(
                select(func.count(FinAccount.id)).where(
                    FinAccount.budget_id == self.budget_id
                )
            )
        )

    def provider_items(self) -> list[ProviderItem]:
        return list(
            self.session.scalars(
                select(ProviderItem)
                .options(joinedload(ProviderItem.accounts))
                .where(ProviderItem.budget_id == self.budget_id)
                .order_by(ProviderItem.id)
            ).unique()
        )

    def account_links(self) -> dict[str, AccountLink]:
        """Provider account id -> stored account, for this budget's items."""
        links: dict[str, AccountLink] = {}
        for item in self.provider_items():
            for account in item.accounts:
                if account.provider_account_id:
                    links[account.provider_account_id] = AccountLink(
                        fin_account_id=account.id, budget_id=account.budget_id
                    )
        return links

    def profile(self) -> Optional[FinancialProfile]:
        return self.session.scalar(
            select(FinancialProfile).where(FinancialProfile.budget_id == self.budget_id)
        )

    def upsert_profile(self, data: FinancialProfileIn) -> FinancialProfile:
        self.get()
        profile = self.profile()
        if profile is None:
            profile = FinancialProfile(budget_id=self.budget_id)
            self.session.add(profile)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(profile, field, value)
        self.session.commit()
        return profile

    def update_cursor(self, item_id: int, cursor: Optional[str]) -> None:
        item = self.session.get(ProviderItem, item_id)
        if not item or item.budget_id != self.budget_id:
            raise PersistenceError(f"Provider item {item_id} not found")
        item.next_cursor = cursor

    def persist_spending(
        self,
        recommendations: dict[str, object],
        tracking: dict[str, object],
    ) -> None:
        budget = self.get()
        try:
            budget.spending_recommendations = recommendations
            budget.spending_tracking = tracking
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save spending: {exc}") from exc


class CategoryService:
    def __init__(self, session: Session, budget_id: int) -> None:
        self.session = session
        self.budget_id = budget_id

    def list_groups(self) -> list[CategoryGroup]:
        return list(
            self.session.scalars(
                select(CategoryGroup)
                .options(joinedload(CategoryGroup.categories))
                .where(CategoryGroup.budget_id == self.budget_id)
                .order_by(CategoryGroup.id)
            ).unique()
        )

    def taxonomy(self) -> Taxonomy:
        groups = self.list_groups()
        refs = [
            CategoryRef(
                category_id=category.id,
                category_name=category.name,
                group_id=group.id,
                group_name=group.name,
                is_discretionary=category.is_discretionary,
            )
            for group in groups
            for category in group.categories
        ]
        return Taxonomy.from_refs(refs, [(g.name, g.id) for g in groups])

    def mapping(self) -> dict[str, str]:
        rows = self.session.execute(
            select(
                ProviderCategoryMapping.provider_category,
                ProviderCategoryMapping.category_name,
            )
        )
        return {row.provider_category: row.category_name for row in rows}

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.budget_id != self.budget_id:
            raise CategoryNotFound(f"Category {category_id} not found")
        return category

    def resolve_name(self, name: str) -> Category:
        """Find a category by name, tolerating one typo."""
        raw = (name or "").strip()
        if not raw:
            raise CategoryNotFound("Category name is required")
        input_lower = raw.lower()
        exact = self.session.scalar(
            select(Category).where(
                Category.budget_id == self.budget_id,
                func.lower(Category.name) == input_lower,
            )
        )
        if exact:
            return exact
        categories = self.session.scalars(
            select(Category).where(Category.budget_id == self.budget_id)
        ).all()
        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in categories:
            dist = int(Levenshtein.distance(input_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)
        if best_distance is None or best_distance > 1:
            raise CategoryNotFound(f"Category '{raw}' not found")
        if len(best) > 1:
            options = ", ".join(sorted({c.name for c in best}))
            raise CategoryAmbiguous(f"Category '{raw}' is ambiguous; matches: {options}")
        return best[0]


class TransactionService:
    def __init__(
        self,
        session: Session,
        budget_id: int,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.session = session
        self.budget_id = budget_id
        self.rng = rng or random.Random()

    def _account_ids(self) -> list[int]:
        return list(
            self.session.scalars(
                select(FinAccount.id)
                .outerjoin(ProviderItem, FinAccount.provider_item_id == ProviderItem.id)
                .where(
                    or_(
                        FinAccount.budget_id == self.budget_id,
                        ProviderItem.budget_id == self.budget_id,
                    )
                )
            )
        )

    def records(self) -> list[TransactionRecord]:
        """Stored transactions of every account reachable from the budget."""
        account_ids = self._account_ids()
        if not account_ids:
            return []
        rows = self.session.scalars(
            select(Transaction)
            .options(joinedload(Transaction.account))
            .where(Transaction.fin_account_id.in_(account_ids))
            .order_by(Transaction.date, Transaction.id)
        ).all()
        return [_transaction_record(row) for row in rows]

    def taken_ids(self, candidates: list[str]) -> set[str]:
        if not candidates:
            return set()
        return set(
            self.session.scalars(
                select(Transaction.user_tx_id).where(
                    Transaction.user_tx_id.in_(candidates)
                )
            )
        )

    def user_id_map(self, provider_ids: Iterable[str]) -> dict[str, str]:
        ids = [pid for pid in provider_ids if pid]
        if not ids:
            return {}
        rows = self.session.execute(
            select(Transaction.provider_tx_id, Transaction.user_tx_id).where(
                Transaction.provider_tx_id.in_(ids)
            )
        )
        return {row.provider_tx_id: row.user_tx_id for row in rows}

    def _new_user_tx_id(self, txn_date: date, provider_tx_id: Optional[str]) -> str:
        return generate_user_tx_id(txn_date, provider_tx_id, self.taken_ids, self.rng)

    def persist_new(self, records: Iterable[TransactionRecord]) -> list[TransactionRecord]:
        """Insert records, generating ``user_tx_id``s against the store.

        Each row is flushed before the next id is generated, so a candidate
        is only ever checked against rows the database already holds.
        """
        saved: list[TransactionRecord] = []
        for record in records:
            user_tx_id = record.user_tx_id or self._new_user_tx_id(
                record.date, record.provider_tx_id
            )
            row = Transaction(
                user_tx_id=user_tx_id,
                provider_tx_id=record.provider_tx_id,
                fin_account_id=record.fin_account_id,
                date=record.date,
                amount_cents=decimal_to_cents(record.amount),
                status=record.status,
                currency=record.currency,
                merchant=record.merchant,
                provider_category=record.provider_category,
                category_id=record.category_id,
                note=record.note,
            )
            self.session.add(row)
            try:
                self.session.flush()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to save transaction: {exc}") from exc
            saved.append(record.model_copy(update={"user_tx_id": user_tx_id}))
        return saved

    def replace_pending(self, replaced: Mapping[str, TransactionRecord]) -> int:
        """Turn stored pending rows into their posted versions."""
        count = 0
        for pending_id, record in replaced.items():
            row = self.session.scalar(
                select(Transaction).where(Transaction.provider_tx_id == pending_id)
            )
            if row is None:
                continue
            row.provider_tx_id = record.provider_tx_id
            row.date = record.date
            row.amount_cents = decimal_to_cents(record.amount)
            row.status = record.status
            row.merchant = record.merchant or row.merchant
            row.provider_category = record.provider_category or row.provider_category
            count += 1
        self.session.flush()
        return count

    def create_manual(self, data: ManualTransactionIn) -> Transaction:
        account = self.session.get(FinAccount, data.fin_account_id)
        if not account or account.budget_id != self.budget_id:
            raise NotFoundError(f"Account {data.fin_account_id} not found")
        if data.category_id is not None:
            CategoryService(self.session, self.budget_id).get(data.category_id)
        if data.user_tx_id and self.taken_ids([data.user_tx_id]):
            raise ValueError(f"Transaction id {data.user_tx_id} already exists")
        record = TransactionRecord(
            user_tx_id=data.user_tx_id,
            fin_account_id=account.id,
            date=data.date,
            amount=cents_to_decimal(data.amount_cents),
            currency=account.currency,
            merchant=data.merchant,
            category_id=data.category_id,
            note=data.note,
        )
        saved = self.persist_new([record])[0]
        self.session.commit()
        return self.session.scalar(
            select(Transaction).where(Transaction.user_tx_id == saved.user_tx_id)
        )


class RecurringService:
    def __init__(
        self,
        session: Session,
        budget_id: int,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.session = session
        self.budget_id = budget_id
        self.rng = rng or random.Random()

    def records(self) -> list[RecurringRecord]:
        rows = self.session.scalars(
            select(RecurringTransaction)
            .where(RecurringTransaction.budget_id == self.budget_id)
            .order_by(RecurringTransaction.id)
        ).all()
        return [_recurring_record(row) for row in rows]

    def taken_ids(self, candidates: list[str]) -> set[str]:
        if not candidates:
            return set()
        return set(
            self.session.scalars(
                select(RecurringTransaction.user_tx_id).where(
                    RecurringTransaction.user_tx_id.in_(candidates)
                )
            )
        )

    def _update(self, record: RecurringRecord) -> None:
        row = self.session.get(RecurringTransaction, record.id)
        if row is None or row.budget_id != self.budget_id:
            raise PersistenceError(f"Recurring transaction {record.id} not found")
        row.instance_ids = list(record.instance_ids)
        row.frequency = record.frequency
        row.average_amount_cents = decimal_to_cents(record.average_amount)
        row.category_id = record.category_id

    def _insert(
        self,
        record: RecurringRecord,
        first_date: date,
    ) -> RecurringTransaction:
        row = RecurringTransaction(
            budget_id=self.budget_id,
            fin_account_id=record.fin_account_id,
            provider_stream_id=record.provider_stream_id,
            user_tx_id=generate_recurring_id(
                first_date, record.merchant, self.taken_ids, self.rng
            ),
            merchant=record.merchant,
            provider_category=record.provider_category,
            category_id=record.category_id,
            frequency=record.frequency,
            average_amount_cents=decimal_to_cents(record.average_amount),
            instance_ids=list(record.instance_ids),
        )
        self.session.add(row)
        self.session.flush()
        return row

    def apply_stream_merge(self, merge: StreamMerge, today: date) -> None:
        for record in merge.updated:
            self._update(record)
        for record in merge.new:
            self._insert(record, today)
        self.session.flush()

    def apply_manual_merge(self, merge: ManualRecurringMerge) -> None:
        for record in merge.updated:
            self._update(record)
        for record_id in merge.superseded:
            row = self.session.get(RecurringTransaction, record_id)
            if row is not None:
                self.session.delete(row)
        for pattern in merge.new:
            self._insert(
                RecurringRecord(
                    fin_account_id=pattern.fin_account_id,
                    merchant=pattern.merchant,
                    provider_category=pattern.provider_category,
                    category_id=pattern.category_id,
                    frequency=pattern.frequency,
                    average_amount=pattern.average_amount,
                    instance_ids=list(pattern.instance_ids),
                ),
                pattern.first_date,
            )
        self.session.flush()

    def update_categories(self, categories: Mapping[int, Optional[int]]) -> None:
        for record_id, category_id in categories.items():
            row = self.session.get(RecurringTransaction, record_id)
            if row is not None and category_id is not None:
                row.category_id = category_id
        self.session.flush()


class GoalService:
    def __init__(self, session: Session, budget_id: int) -> None:
        self.session = session
        self.budget_id = budget_id

    def list_all(self) -> list[BudgetGoal]:
        return list(
            self.session.scalars(
                select(BudgetGoal)
                .options(joinedload(BudgetGoal.account))
                .where(BudgetGoal.budget_id == self.budget_id)
                .order_by(BudgetGoal.id)
            )
        )

    def get(self, goal_id: int) -> BudgetGoal:
        goal = self.session.get(BudgetGoal, goal_id)
        if not goal or goal.budget_id != self.budget_id:
            raise NotFoundError(f"Goal {goal_id} not found")
        return goal

    def _balance(self, fin_account_id: Optional[int]) -> Decimal:
        if fin_account_id is None:
            return Decimal("0")
        account = self.session.get(FinAccount, fin_account_id)
        if not account or account.budget_id != self.budget_id:
            raise GoalValidationError("Goal account must be linked to the budget")
        return cents_to_decimal(account.balance_cents)

    def create(self, data: GoalIn, today: Optional[date] = None) -> BudgetGoal:
        today = today or local_today()
        balance = self._balance(data.fin_account_id)
        amount = cents_to_decimal(data.amount_cents)
        allocations = schedule_goal(amount, data.target_date, today)
        goal = BudgetGoal(
            budget_id=self.budget_id,
            type=data.type,
            name=data.name,
            amount_cents=data.amount_cents,
            target_date=data.target_date,
            description=data.description,
            fin_account_id=data.fin_account_id,
            debt_type=data.debt_type,
            debt_payment_component=data.debt_payment_component,
            debt_interest_rate=data.debt_interest_rate,
            spending_tracking=goal_tracking_to_dict(
                initial_tracking(allocations, balance)
            ),
        )
        self.session.add(goal)
        self.session.commit()
        logger.info(f"goal_created: budget_id={self.budget_id} goal_id={goal.id}")
        return goal

    def records(self) -> list[GoalRecord]:
        """Goals with their account balance; malformed rows are skipped."""
        records: list[GoalRecord] = []
        for goal in self.list_all():
            try:
                records.append(
                    GoalRecord(
                        id=goal.id,
                        type=goal.type,
                        name=goal.name,
                        amount=cents_to_decimal(goal.amount_cents),
                        target_date=goal.target_date,
                        fin_account_id=goal.fin_account_id,
                        account_balance=cents_to_decimal(goal.account.balance_cents)
                        if goal.account
                        else Decimal("0"),
                        spending_tracking=goal_tracking_from_dict(goal.spending_tracking),
                    )
                )
            except ValidationError as exc:
                logger.warning(f"goal_skipped: goal_id={goal.id} error={exc}")
        return records

    def _upsert(
        self,
        goal_id: int,
        recommendations: dict[str, dict[str, float]],
        tracking: GoalTracking,
    ) -> None:
        goal = self.session.get(BudgetGoal, goal_id)
        if goal is None or goal.budget_id != self.budget_id:
            raise PersistenceError(f"Goal {goal_id} not found")
        goal.spending_recommendations = recommendations
        goal.spending_tracking = goal_tracking_to_dict(tracking)
        self.session.flush()

    def persist_results(
        self,
        goal_recommendations: Mapping[str, Mapping[int, Mapping[str, Decimal]]],
        goal_trackings: Mapping[int, GoalTracking],
    ) -> None:
        """Write every goal's recommendations and tracking as one batch.

        Each goal is written in its own savepoint; failures are collected
        and reported together once the whole batch has been attempted.
        """
        errors: list[str] = []
        for goal_id, tracking in goal_trackings.items():
            recommendations = {
                strategy: goal_plans_to_dict(plans.get(goal_id, {}))
                for strategy, plans in goal_recommendations.items()
            }
            try:
                with self.session.begin_nested():
                    self._upsert(goal_id, recommendations, tracking)
            except (PersistenceError, SQLAlchemyError) as exc:
                errors.append(str(exc))
        if errors:
            raise PersistenceError(f"Failed to update goal spending: {', '.join(errors)}")


class CSVService:
    def __init__(
        self,
        session: Session,
        budget_id: int,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.session = session
        self.budget_id = budget_id
        self.rng = rng

    def _account_lookup(self) -> dict[str, FinAccount]:
        accounts = BudgetService(self.session, self.budget_id).linked_accounts()
        return {account.name.lower(): account for account in accounts}

    def preview(self, content: str) -> tuple[list[dict[str, object]], list[str]]:
        rows, errors = parse_csv(content)
        accounts = self._account_lookup()
        default_account = next(iter(accounts.values())) if len(accounts) == 1 else None
        categories = CategoryService(self.session, self.budget_id)
        preview_rows: list[dict[str, object]] = []
        for idx, row in enumerate(rows, start=1):
            account = accounts.get((row.account or "").lower()) or (
                default_account if not row.account else None
            )
            if account is None:
                errors.append(f"Row {idx}: unknown account '{row.account or ''}'")
            category_id = None
            try:
                category_id = categories.resolve_name(row.category).id
            except (CategoryNotFound, CategoryAmbiguous) as exc:
                errors.append(f"Row {idx}: {exc}")
            preview_rows.append(
                {
                    "date": row.date,
                    "amount_cents": row.amount_cents,
                    "merchant": row.merchant,
                    "category": row.category,
                    "category_id": category_id,
                    "fin_account_id": account.id if account else None,
                    "note": row.note,
                }
            )
        return preview_rows, errors

    def commit(self, content: str) -> int:
        preview_rows, errors = self.preview(content)
        if errors:
            raise ValueError("; ".join(errors))
        records = [
            TransactionRecord(
                fin_account_id=row["fin_account_id"],
                date=row["date"],
                amount=cents_to_decimal(row["amount_cents"]),
                merchant=row["merchant"],
                category_id=row["category_id"],
                note=row["note"],
            )
            for row in preview_rows
        ]
        TransactionService(self.session, self.budget_id, self.rng).persist_new(records)
        self.session.commit()
        return len(records)
