from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class OnboardingStep(str, Enum):
    profile_goals = "profile_goals"
    analyze_spending = "analyze_spending"
    analyze_spending_in_progress = "analyze_spending_in_progress"
    budget_setup = "budget_setup"
    end = "end"


class TransactionStatus(str, Enum):
    pending = "pending"
    posted = "posted"


class GoalType(str, Enum):
    savings = "savings"
    debt = "debt"
    investment = "investment"


class DebtType(str, Enum):
    credit_card = "credit_card"
    student_loan = "student_loan"
    mortgage = "mortgage"
    auto_loan = "auto_loan"
    personal_loan = "personal_loan"
    other = "other"


class DebtPaymentComponent(str, Enum):
    principal = "principal"
    interest = "interest"
    principal_interest = "principal_interest"


class RecurringFrequency(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"
    unknown = "unknown"


class CurrencyCode(str, Enum):
    eur = "EUR"
    usd = "USD"
    cad = "CAD"
    gbp = "GBP"


CURRENCY_CODE_ENUM = SAEnum(
    CurrencyCode,
    name="currencycode",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    onboarding_step: Mapped[OnboardingStep] = mapped_column(
        SAEnum(OnboardingStep),
        default=OnboardingStep.profile_goals,
        nullable=False,
    )
    spending_recommendations: Mapped[Optional[dict]] = mapped_column(JSON)
    spending_tracking: Mapped[Optional[dict]] = mapped_column(JSON)

    profile: Mapped[Optional["FinancialProfile"]] = relationship(
        "FinancialProfile", back_populates="budget", uselist=False
    )
    accounts: Mapped[list["FinAccount"]] = relationship(
        "FinAccount", back_populates="budget"
    )
    goals: Mapped[list["BudgetGoal"]] = relationship(
        "BudgetGoal", back_populates="budget"
    )
    category_groups: Mapped[list["CategoryGroup"]] = relationship(
        "CategoryGroup", back_populates="budget"
    )


class FinancialProfile(Base, TimestampMixin):
    __tablename__ = "financial_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id"), nullable=False, unique=True
    )
    full_name: Mapped[Optional[str]] = mapped_column(String(120))
    age: Mapped[Optional[int]] = mapped_column(Integer)
    annual_income_cents: Mapped[Optional[int]] = mapped_column(Integer)
    savings_cents: Mapped[Optional[int]] = mapped_column(Integer)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="profile")

    @property
    def is_complete(self) -> bool:
        return (
            bool(self.full_name)
            and self.age is not None
            and self.annual_income_cents is not None
            and self.savings_cents is not None
        )


class ProviderItem(Base, TimestampMixin):
    __tablename__ = "provider_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    institution_name: Mapped[Optional[str]] = mapped_column(String(120))
    access_token: Mapped[str] = mapped_column(String(255), nullable=False)
    next_cursor: Mapped[Optional[str]] = mapped_column(Text)

    accounts: Mapped[list["FinAccount"]] = relationship(
        "FinAccount", back_populates="provider_item"
    )


class FinAccount(Base, TimestampMixin):
    __tablename__ = "fin_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[Optional[int]] = mapped_column(ForeignKey("budgets.id"))
    provider_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("provider_items.id")
    )
    provider_account_id: Mapped[Optional[str]] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, default=CurrencyCode.usd, nullable=False
    )

    budget: Mapped[Optional["Budget"]] = relationship(
        "Budget", back_populates="accounts"
    )
    provider_item: Mapped[Optional["ProviderItem"]] = relationship(
        "ProviderItem", back_populates="accounts"
    )

    __table_args__ = (
        UniqueConstraint("provider_account_id", name="uq_fin_account_provider_id"),
    )


class CategoryGroup(Base, TimestampMixin):
    __tablename__ = "category_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))

    budget: Mapped["Budget"] = relationship("Budget", back_populates="category_groups")
    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="group", order_by="Category.id"
    )

    __table_args__ = (
        UniqueConstraint("budget_id", "name", name="uq_category_group_budget_name"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    group_id: Mapped[int] = mapped_column(
        ForeignKey("category_groups.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_discretionary: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    group: Mapped["CategoryGroup"] = relationship(
        "CategoryGroup", back_populates="categories"
    )

    __table_args__ = (
        UniqueConstraint("budget_id", "name", name="uq_category_budget_name"),
    )


class ProviderCategoryMapping(Base):
    __tablename__ = "provider_category_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider_category: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True
    )
    category_name: Mapped[str] = mapped_column(String(100), nullable=False)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_tx_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    provider_tx_id: Mapped[Optional[str]] = mapped_column(String(100))
    fin_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("fin_accounts.id")
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), default=TransactionStatus.posted, nullable=False
    )
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, default=CurrencyCode.usd, nullable=False
    )
    merchant: Mapped[Optional[str]] = mapped_column(String(200))
    provider_category: Mapped[Optional[str]] = mapped_column(String(100))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    note: Mapped[Optional[str]] = mapped_column(String(200))

    account: Mapped[Optional["FinAccount"]] = relationship("FinAccount")
    category: Mapped[Optional["Category"]] = relationship("Category")

    __table_args__ = (
        Index("ix_transaction_account_date", "fin_account_id", "date"),
        Index("ix_transaction_provider_id", "provider_tx_id"),
    )


class RecurringTransaction(Base, TimestampMixin):
    __tablename__ = "recurring_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    fin_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("fin_accounts.id")
    )
    provider_stream_id: Mapped[Optional[str]] = mapped_column(String(100))
    user_tx_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    merchant: Mapped[Optional[str]] = mapped_column(String(200))
    provider_category: Mapped[Optional[str]] = mapped_column(String(100))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    frequency: Mapped[RecurringFrequency] = mapped_column(
        SAEnum(RecurringFrequency), default=RecurringFrequency.unknown, nullable=False
    )
    average_amount_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    instance_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    category: Mapped[Optional["Category"]] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "budget_id", "provider_stream_id", name="uq_recurring_budget_stream"
        ),
    )


class BudgetGoal(Base, TimestampMixin):
    __tablename__ = "budget_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(ForeignKey("budgets.id"), nullable=False)
    type: Mapped[GoalType] = mapped_column(SAEnum(GoalType), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    target_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    fin_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("fin_accounts.id")
    )
    debt_type: Mapped[Optional[DebtType]] = mapped_column(SAEnum(DebtType))
    debt_payment_component: Mapped[Optional[DebtPaymentComponent]] = mapped_column(
        SAEnum(DebtPaymentComponent)
    )
    debt_interest_rate: Mapped[Optional[float]] = mapped_column(Numeric(6, 3))
    spending_tracking: Mapped[Optional[dict]] = mapped_column(JSON)
    spending_recommendations: Mapped[Optional[dict]] = mapped_column(JSON)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="goals")
    account: Mapped[Optional["FinAccount"]] = relationship("FinAccount")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_goal_amount_positive"),
        Index("ix_goal_budget", "budget_id"),
    )
