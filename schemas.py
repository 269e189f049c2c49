from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    BudgetPeriod,
    Frequency,
    NotificationType,
    TransactionType,
)


class UserRegisterIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=80)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class UserLoginIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=80)
    password: str = Field(..., min_length=1, max_length=128)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str


class AuthOut(BaseModel):
    token: str
    user: UserOut


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    icon: str
    color: str


class TransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    category_id: int
    description: Optional[str] = Field(default=None, max_length=500)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    type: TransactionType
    category_id: int
    description: Optional[str]
    created_at: datetime
    category: Optional[CategoryOut] = None


class BudgetAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    alert: bool
    overspent_cents: Optional[int] = None
    remaining_cents: Optional[int] = None


class TransactionCreatedOut(BaseModel):
    tx: TransactionOut
    alert: Optional[BudgetAlertOut] = None


class TransactionPageOut(BaseModel):
    data: list[TransactionOut]
    total: int
    page: int
    last_page: int


class BudgetIn(BaseModel):
    category_id: int
    limit_cents: int = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.monthly


class BudgetUpdateIn(BaseModel):
    limit_cents: Optional[int] = Field(default=None, gt=0)
    period: Optional[BudgetPeriod] = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    limit_cents: int
    period: BudgetPeriod
    created_at: datetime
    category: Optional[CategoryOut] = None


class SavingsGoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_cents: int = Field(..., gt=0)
    deadline: datetime
    frequency: Frequency


class AmountIn(BaseModel):
    amount_cents: int


class SavingsGoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    target_cents: int
    current_cents: int
    deadline: datetime
    frequency: Frequency
    is_deleted: bool
    is_money_used: bool
    completed_at: Optional[datetime]
    created_at: datetime


class SavingsGoalProgressOut(SavingsGoalOut):
    remaining_cents: int
    days_left: int
    required_per_period_cents: int


class MarkUsedOut(BaseModel):
    goal: SavingsGoalOut
    transaction: TransactionOut
    message: str


class RefundOut(BaseModel):
    message: str
    refunded_cents: int


class RecommendationOut(BaseModel):
    recommended_cents: int
    frequency: Frequency
    remaining_cents: int
    periods_left: int
    days_left: int
    message: str


class SavingsStatsOut(BaseModel):
    total_goals: int
    completed_goals: int
    total_saved_cents: int
    total_target_cents: int
    balance_cents: int
    available_to_spend_cents: int
    progress_percent: float


class LifetimeSavingsOut(BaseModel):
    total_saved_cents: int
    goals_completed: int


class RecurringTransactionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    type: TransactionType
    category_id: int
    frequency: Frequency
    next_run: date
    active: bool = True


class RecurringTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    type: TransactionType
    category_id: int
    frequency: Frequency
    next_run: date
    active: bool
    created_at: datetime


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    message: str
    type: NotificationType
    created_at: datetime


class CategoryTotalOut(BaseModel):
    category: str
    total_cents: int


class SummaryOut(BaseModel):
    income_cents: int
    expense_cents: int
    balance_cents: int
    by_category: list[CategoryTotalOut]


class CategoryStatOut(BaseModel):
    category_id: int
    name: str
    icon: str
    color: str
    type: TransactionType
    total_cents: int
    transaction_count: int


class TrendPointOut(BaseModel):
    date: date
    income_cents: int
    expense_cents: int


class RecurringActiveIn(BaseModel):
    active: bool
