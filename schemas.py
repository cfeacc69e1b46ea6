from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    CurrencyCode,
    DebtPaymentComponent,
    DebtType,
    GoalType,
    OnboardingStep,
    RecurringFrequency,
    TransactionStatus,
)


class CategoryRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    category_id: int
    category_name: str
    group_id: Optional[int] = None
    group_name: str
    is_discretionary: bool = False


class TransactionRecord(BaseModel):
    """A stored or freshly synced transaction, as seen by the engine."""

    user_tx_id: Optional[str] = None
    provider_tx_id: Optional[str] = None
    pending_provider_tx_id: Optional[str] = None
    provider_account_id: Optional[str] = None
    fin_account_id: Optional[int] = None
    date: date
    amount: Decimal
    status: TransactionStatus = TransactionStatus.posted
    currency: CurrencyCode = CurrencyCode.usd
    merchant: Optional[str] = None
    provider_category: Optional[str] = None
    category_id: Optional[int] = None
    note: Optional[str] = None

    @property
    def match_key(self) -> Optional[str]:
        return self.provider_tx_id or self.user_tx_id


class RecurringRecord(BaseModel):
    id: Optional[int] = None
    user_tx_id: Optional[str] = None
    provider_stream_id: Optional[str] = None
    fin_account_id: Optional[int] = None
    merchant: Optional[str] = None
    provider_category: Optional[str] = None
    category_id: Optional[int] = None
    frequency: RecurringFrequency = RecurringFrequency.unknown
    average_amount: Decimal = Decimal("0")
    instance_ids: list[str] = Field(default_factory=list)


class ProviderTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transaction_id: str
    account_id: str
    date: date
    amount: Decimal
    pending: bool = False
    pending_transaction_id: Optional[str] = None
    iso_currency_code: Optional[str] = None
    merchant_name: Optional[str] = None
    name: Optional[str] = None
    detailed_category: Optional[str] = None


class ProviderStream(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stream_id: str
    account_id: str
    merchant_name: Optional[str] = None
    description: Optional[str] = None
    detailed_category: Optional[str] = None
    frequency: Optional[str] = None
    average_amount: Decimal = Decimal("0")
    transaction_ids: list[str] = Field(default_factory=list)


class FinancialProfileIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = Field(default=None, max_length=120)
    age: Optional[int] = Field(default=None, ge=0, le=130)
    annual_income_cents: Optional[int] = Field(default=None, ge=0)
    savings_cents: Optional[int] = Field(default=None, ge=0)


class GoalIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: GoalType
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    target_date: date
    description: Optional[str] = Field(default=None, max_length=255)
    fin_account_id: Optional[int] = None
    debt_type: Optional[DebtType] = None
    debt_payment_component: Optional[DebtPaymentComponent] = None
    debt_interest_rate: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def validate_debt_fields(self) -> "GoalIn":
        debt_fields = (
            self.debt_type,
            self.debt_payment_component,
            self.debt_interest_rate,
        )
        if self.type == GoalType.debt:
            if any(value is None for value in debt_fields):
                raise ValueError(
                    "Debt goals require debt_type, debt_payment_component and debt_interest_rate"
                )
        elif any(value is not None for value in debt_fields):
            raise ValueError("Debt fields are only allowed for debt goals")
        return self


class GoalAllocation(BaseModel):
    date_target: date
    amount_target: Decimal
    amount_actual: Optional[Decimal] = None


class GoalMonthTracking(BaseModel):
    month: str
    starting_balance: Decimal = Decimal("0")
    allocations: dict[str, GoalAllocation] = Field(default_factory=dict)


class GoalRecord(BaseModel):
    """A goal read from the store, annotated with its account balance."""

    id: int
    type: GoalType
    name: str
    amount: Decimal
    target_date: date
    fin_account_id: Optional[int] = None
    account_balance: Decimal = Decimal("0")
    spending_tracking: dict[str, GoalMonthTracking] = Field(default_factory=dict)


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=120)


class OnboardingStepIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    step: OnboardingStep


class ManualTransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fin_account_id: int
    date: date
    amount_cents: int
    merchant: Optional[str] = Field(default=None, max_length=200)
    category_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=200)
    user_tx_id: Optional[str] = Field(default=None, max_length=32)


class CSVRow(BaseModel):
    date: date
    amount_cents: int
    merchant: Optional[str]
    category: str
    account: Optional[str]
    note: Optional[str]
