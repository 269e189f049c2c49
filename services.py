from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError

from auth import hash_password, verify_password
from models import (
    Budget,
    BudgetPeriod,
    Category,
    Frequency,
    LifetimeSavings,
    NotificationType,
    RecurringTransaction,
    SavingsGoal,
    Transaction,
    TransactionType,
    User,
    utcnow,
)
from notifications import NotificationQueue
from periods import Period, budget_window_start, month_start
from schemas import (
    BudgetIn,
    BudgetUpdateIn,
    RecurringTransactionIn,
    SavingsGoalIn,
    TransactionIn,
    UserLoginIn,
    UserRegisterIn,
)


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


class AuthenticationError(ValueError):
    pass


class LedgerValidationError(ValueError):
    def __init__(self, message: str, **details: int) -> None:
        super().__init__(message)
        self.details = details


SAVINGS_USED_CATEGORY = "Savings used for their purpose"

DEFAULT_CATEGORIES: list[tuple[str, TransactionType, str, str]] = [
    ("Salary", TransactionType.income, "💰", "#10b981"),
    ("Freelance", TransactionType.income, "💻", "#8b5cf6"),
    ("Investments", TransactionType.income, "📈", "#f59e0b"),
    ("Food", TransactionType.expense, "🍔", "#ef4444"),
    ("Transport", TransactionType.expense, "🚌", "#3b82f6"),
    ("Entertainment", TransactionType.expense, "🎮", "#a855f7"),
    ("Health", TransactionType.expense, "💊", "#ec4899"),
    ("Education", TransactionType.expense, "📚", "#06b6d4"),
    ("Home", TransactionType.expense, "🏠", "#84cc16"),
    ("Gifts", TransactionType.expense, "🎁", "#f97316"),
    ("Other", TransactionType.expense, "📦", "#64748b"),
    (SAVINGS_USED_CATEGORY, TransactionType.expense, "🎯", "#0ea5e9"),
]


def format_cents(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def user_balance_cents(session: Session, user_id: int) -> int:
    signed = case(
        (Transaction.type == TransactionType.income, Transaction.amount_cents),
        else_=-Transaction.amount_cents,
    )
    stmt = select(func.coalesce(func.sum(signed), 0)).where(
        Transaction.user_id == user_id
    )
    return int(session.execute(stmt).scalar_one() or 0)


def parked_savings_cents(
    session: Session, user_id: int, *, exclude_goal_id: Optional[int] = None
) -> int:
    """Money held in goals that have not been deleted."""
    stmt = select(func.coalesce(func.sum(SavingsGoal.current_cents), 0)).where(
        SavingsGoal.user_id == user_id,
        SavingsGoal.is_deleted.is_(False),
    )
    if exclude_goal_id is not None:
        stmt = stmt.where(SavingsGoal.id != exclude_goal_id)
    return int(session.execute(stmt).scalar_one() or 0)


def _commit_versioned(session: Session, what: str) -> None:
    try:
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        raise ConflictError(f"{what} was modified concurrently, try again") from exc


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: UserRegisterIn) -> User:
        username = data.username.strip()
        email = data.email.strip().lower()
        if not username or not email:
            raise ValueError("Missing required fields")
        existing = self.session.scalar(
            select(User).where(
                (func.lower(User.username) == username.lower()) | (User.email == email)
            )
        )
        if existing:
            raise ValueError("User already exists")
        user = User(
            username=username,
            email=email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info("user_registered: user_id=%s", user.id)
        return user

    def authenticate(self, data: UserLoginIn) -> User:
        user = self.session.scalar(
            select(User).where(func.lower(User.username) == data.username.strip().lower())
        )
        if not user or not verify_password(data.password, user.password_hash):
            raise AuthenticationError("Invalid username or password")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, type: Optional[TransactionType] = None) -> list[Category]:
        stmt = select(Category).order_by(Category.name)
        if type is not None:
            stmt = stmt.where(Category.type == type)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Invalid category")
        return category

    def seed_defaults(self) -> int:
        existing = {
            (c.type, c.name) for c in self.session.scalars(select(Category)).all()
        }
        added = 0
        for name, txn_type, icon, color in DEFAULT_CATEGORIES:
            if (txn_type, name) in existing:
                continue
            self.session.add(Category(name=name, type=txn_type, icon=icon, color=color))
            added += 1
        self.session.commit()
        if added:
            logger.info("categories_seeded: added=%s", added)
        return added

    def savings_used(self) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.name == SAVINGS_USED_CATEGORY,
                Category.type == TransactionType.expense,
            )
        )
        if category:
            return category
        category = Category(
            name=SAVINGS_USED_CATEGORY,
            type=TransactionType.expense,
            icon="🎯",
            color="#0ea5e9",
        )
        self.session.add(category)
        self.session.flush()
        return category

    def stats_for_month(
        self, user_id: int, now: Optional[datetime] = None
    ) -> list[dict[str, object]]:
        now = now or utcnow()
        total = func.sum(Transaction.amount_cents).label("total_cents")
        count = func.count(Transaction.id).label("transaction_count")
        stmt = (
            select(
                Category.id,
                Category.name,
                Category.icon,
                Category.color,
                Category.type,
                total,
                count,
            )
            .join(Transaction, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == user_id,
                Transaction.created_at >= month_start(now),
                Transaction.created_at <= now,
            )
            .group_by(
                Category.id, Category.name, Category.icon, Category.color, Category.type
            )
            .order_by(total.desc())
        )
        return [
            {
                "category_id": row.id,
                "name": row.name,
                "icon": row.icon,
                "color": row.color,
                "type": row.type,
                "total_cents": int(row.total_cents or 0),
                "transaction_count": int(row.transaction_count or 0),
            }
            for row in self.session.execute(stmt).all()
        ]


@dataclass(frozen=True)
class BudgetAlert:
    alert: bool
    overspent_cents: Optional[int] = None
    remaining_cents: Optional[int] = None


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def for_category(self, category_id: int) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id, Budget.category_id == category_id
            )
        )

    def create(self, data: BudgetIn) -> Budget:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise ValueError("Invalid category")
        if category.type != TransactionType.expense:
            raise ValueError("Budgets can only be set for expense categories")
        if self.for_category(data.category_id):
            raise ConflictError("A budget already exists for this category")
        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            limit_cents=data.limit_cents,
            period=data.period,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        budget = self.get(budget_id)
        if data.limit_cents is not None:
            budget.limit_cents = data.limit_cents
        if data.period is not None:
            budget.period = data.period
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def spent_since(self, category_id: int, start: datetime) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.category_id == category_id,
            Transaction.type == TransactionType.expense,
            Transaction.created_at >= start,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def check_alert(
        self,
        category_id: int,
        candidate_cents: int = 0,
        period: Optional[BudgetPeriod] = None,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[BudgetAlert]:
        """Would spending ``candidate_cents`` more push the category over budget?

        Returns None when the user has no budget for the category. The check
        only reads; persisting the expense and notifying are up to the caller.
        """
        if candidate_cents < 0:
            raise ValueError("Amount must not be negative")
        budget = self.for_category(category_id)
        if not budget:
            return None
        now = now or utcnow()
        start = budget_window_start(period or budget.period, budget.created_at, now)
        total = self.spent_since(category_id, start) + candidate_cents
        if total > budget.limit_cents:
            return BudgetAlert(alert=True, overspent_cents=total - budget.limit_cents)
        return BudgetAlert(alert=False, remaining_cents=budget.limit_cents - total)


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        notifications: Optional[NotificationQueue] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.notifications = notifications

    def create(
        self, data: TransactionIn, *, now: Optional[datetime] = None
    ) -> tuple[Transaction, Optional[BudgetAlert]]:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise ValueError("Invalid category")
        if category.type != data.type:
            raise ValueError("Category type mismatch")
        now = now or utcnow()

        alert = None
        if data.type == TransactionType.expense:
            alert = BudgetService(self.session, self.user_id).check_alert(
                data.category_id, data.amount_cents, now=now
            )

        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            amount_cents=data.amount_cents,
            category_id=data.category_id,
            description=data.description,
            created_at=now,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)

        if alert and alert.alert:
            logger.info(
                "budget_exceeded: user_id=%s category_id=%s overspent_cents=%s",
                self.user_id,
                category.id,
                alert.overspent_cents,
            )
            if self.notifications is not None:
                self.notifications.enqueue(
                    self.user_id,
                    f"You are {format_cents(alert.overspent_cents)} over your "
                    f"{category.name} budget",
                    NotificationType.budget_overspent,
                )
        return txn, alert

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def list(self, page: int = 1, limit: int = 50) -> dict[str, object]:
        page = max(page, 1)
        limit = min(max(limit, 1), 500)
        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.user_id == self.user_id
                )
            ).scalar_one()
            or 0
        )
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return {
            "data": list(self.session.scalars(stmt).all()),
            "total": total,
            "page": page,
            "last_page": math.ceil(total / limit),
        }

    def in_range(self, period: Period) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.created_at.between(period.start, period.end),
            )
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()


class LifetimeSavingsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def upsert(self) -> LifetimeSavings:
        record = self.session.scalar(
            select(LifetimeSavings).where(LifetimeSavings.user_id == self.user_id)
        )
        if record is None:
            record = LifetimeSavings(
                user_id=self.user_id, total_saved_cents=0, goals_completed=0
            )
            self.session.add(record)
            self.session.flush()
        return record

    def record_completion(self, amount_cents: int) -> LifetimeSavings:
        record = self.upsert()
        record.total_saved_cents += amount_cents
        record.goals_completed += 1
        return record

    def get(self) -> dict[str, int]:
        record = self.session.scalar(
            select(LifetimeSavings).where(LifetimeSavings.user_id == self.user_id)
        )
        if record is None:
            return {"total_saved_cents": 0, "goals_completed": 0}
        return {
            "total_saved_cents": record.total_saved_cents,
            "goals_completed": record.goals_completed,
        }


FREQUENCY_DAYS = {
    Frequency.daily: 1,
    Frequency.weekly: 7,
    Frequency.biweekly: 14,
    Frequency.monthly: 30,
}

FREQUENCY_LABELS = {
    Frequency.daily: "day",
    Frequency.weekly: "week",
    Frequency.biweekly: "two weeks",
    Frequency.monthly: "month",
}


def periods_left(days_left: int, frequency: Frequency) -> int:
    return ceil_div(days_left, FREQUENCY_DAYS[frequency])


def calculate_required_saving(
    remaining_cents: int, days_left: int, frequency: Frequency
) -> int:
    if remaining_cents <= 0 or days_left <= 0:
        return 0
    return ceil_div(remaining_cents, periods_left(days_left, frequency))


def naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def days_until(deadline: datetime, now: datetime) -> int:
    return math.ceil((deadline - now).total_seconds() / 86400)


@dataclass(frozen=True)
class Recommendation:
    recommended_cents: int
    frequency: Frequency
    remaining_cents: int
    periods_left: int
    days_left: int
    message: str


class SavingsGoalService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        notifications: Optional[NotificationQueue] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.notifications = notifications

    def create(self, data: SavingsGoalIn) -> SavingsGoal:
        goal = SavingsGoal(
            user_id=self.user_id,
            name=data.name.strip(),
            target_cents=data.target_cents,
            current_cents=0,
            deadline=naive_utc(data.deadline),
            frequency=data.frequency,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def list(self) -> list[SavingsGoal]:
        stmt = (
            select(SavingsGoal)
            .where(
                SavingsGoal.user_id == self.user_id,
                SavingsGoal.is_deleted.is_(False),
            )
            .order_by(SavingsGoal.created_at.desc(), SavingsGoal.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, goal_id: int, *, for_update: bool = False) -> SavingsGoal:
        stmt = select(SavingsGoal).where(
            SavingsGoal.id == goal_id,
            SavingsGoal.user_id == self.user_id,
            SavingsGoal.is_deleted.is_(False),
        )
        if for_update:
            stmt = stmt.with_for_update()
        goal = self.session.scalar(stmt)
        if not goal:
            raise NotFoundError("Savings goal not found")
        return goal

    def available_to_save(self, goal: SavingsGoal) -> int:
        balance = user_balance_cents(self.session, self.user_id)
        others = parked_savings_cents(
            self.session, self.user_id, exclude_goal_id=goal.id
        )
        return balance - others - goal.current_cents

    def deposit(
        self, goal_id: int, amount_cents: int, *, now: Optional[datetime] = None
    ) -> SavingsGoal:
        if amount_cents <= 0:
            raise ValueError("Invalid amount")
        goal = self.get(goal_id, for_update=True)

        available = self.available_to_save(goal)
        if amount_cents > available:
            raise LedgerValidationError(
                "Not enough money available. Available to save: "
                f"{format_cents(max(available, 0))}",
                available_cents=available,
            )
        new_amount = goal.current_cents + amount_cents
        if new_amount > goal.target_cents:
            max_deposit = goal.target_cents - goal.current_cents
            raise LedgerValidationError(
                f"Deposit exceeds the goal target. Maximum deposit: "
                f"{format_cents(max_deposit)}",
                max_cents=max_deposit,
            )

        goal.current_cents = new_amount
        completed_now = goal.current_cents >= goal.target_cents and not goal.completed_at
        if completed_now:
            goal.completed_at = now or utcnow()
            LifetimeSavingsService(self.session, self.user_id).record_completion(
                goal.target_cents
            )
        _commit_versioned(self.session, "Savings goal")
        self.session.refresh(goal)

        if completed_now:
            logger.info("goal_completed: user_id=%s goal_id=%s", self.user_id, goal.id)
            if self.notifications is not None:
                self.notifications.enqueue(
                    self.user_id,
                    f'Goal "{goal.name}" completed!',
                    NotificationType.goal_completed,
                )
        return goal

    def withdraw(self, goal_id: int, amount_cents: int) -> SavingsGoal:
        if amount_cents <= 0:
            raise ValueError("Invalid amount")
        goal = self.get(goal_id, for_update=True)
        if amount_cents > goal.current_cents:
            raise ConflictError("Insufficient funds")
        goal.current_cents -= amount_cents
        _commit_versioned(self.session, "Savings goal")
        self.session.refresh(goal)
        return goal

    def mark_used(
        self, goal_id: int, *, now: Optional[datetime] = None
    ) -> tuple[SavingsGoal, Transaction]:
        goal = self.get(goal_id, for_update=True)
        if not goal.completed_at:
            raise ValueError("Only completed goals can be marked as used")
        if goal.is_money_used:
            raise ValueError("This goal is already marked as used")
        if goal.current_cents <= 0:
            raise ValueError("Nothing left to mark as used")

        category = CategoryService(self.session).savings_used()
        txn = Transaction(
            user_id=self.user_id,
            type=TransactionType.expense,
            amount_cents=goal.current_cents,
            category_id=category.id,
            description=f"Savings used: {goal.name}",
            created_at=now or utcnow(),
        )
        self.session.add(txn)
        goal.is_money_used = True
        _commit_versioned(self.session, "Savings goal")
        self.session.refresh(goal)
        self.session.refresh(txn)
        return goal, txn

    def delete(self, goal_id: int) -> int:
        goal = self.get(goal_id, for_update=True)
        # Spent money already left the balance through the mark-used expense.
        released = 0 if goal.is_money_used else goal.current_cents
        goal.is_deleted = True
        _commit_versioned(self.session, "Savings goal")
        return released

    def delete_and_refund(self, goal_id: int) -> int:
        # Deleted goals drop out of the available-to-save sums, which is the refund.
        return self.delete(goal_id)

    def recommendation(
        self, goal_id: int, *, now: Optional[datetime] = None
    ) -> Recommendation:
        goal = self.get(goal_id)
        now = now or utcnow()
        remaining = goal.target_cents - goal.current_cents
        days_left = days_until(goal.deadline, now)

        if days_left <= 0:
            return Recommendation(
                recommended_cents=0,
                frequency=goal.frequency,
                remaining_cents=max(0, remaining),
                periods_left=0,
                days_left=days_left,
                message="The deadline has passed" if remaining > 0 else "Goal completed",
            )
        if remaining <= 0:
            return Recommendation(
                recommended_cents=0,
                frequency=goal.frequency,
                remaining_cents=0,
                periods_left=0,
                days_left=days_left,
                message="Goal completed",
            )

        count = periods_left(days_left, goal.frequency)
        recommended = ceil_div(remaining, count)
        label = FREQUENCY_LABELS[goal.frequency]
        return Recommendation(
            recommended_cents=recommended,
            frequency=goal.frequency,
            remaining_cents=remaining,
            periods_left=count,
            days_left=days_left,
            message=(
                f"Save {format_cents(recommended)} every {label} to reach your goal"
            ),
        )

    def progress(
        self, goal_id: int, *, now: Optional[datetime] = None
    ) -> dict[str, object]:
        goal = self.get(goal_id)
        now = now or utcnow()
        remaining = max(0, goal.target_cents - goal.current_cents)
        days_left = days_until(goal.deadline, now)
        return {
            "goal": goal,
            "remaining_cents": remaining,
            "days_left": days_left,
            "required_per_period_cents": calculate_required_saving(
                remaining, days_left, goal.frequency
            ),
        }

    def stats(self) -> dict[str, object]:
        goals = self.list()
        total_saved = sum(g.current_cents for g in goals)
        total_target = sum(g.target_cents for g in goals)
        balance = user_balance_cents(self.session, self.user_id)
        progress = (
            sum(g.current_cents for g in goals) / total_target * 100
            if total_target
            else 0.0
        )
        return {
            "total_goals": len(goals),
            "completed_goals": sum(1 for g in goals if g.completed_at),
            "total_saved_cents": total_saved,
            "total_target_cents": total_target,
            "balance_cents": balance,
            "available_to_spend_cents": balance - total_saved,
            "progress_percent": round(progress, 2),
        }


class RecurringTransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, template_id: int) -> RecurringTransaction:
        template = self.session.get(RecurringTransaction, template_id)
        if not template or template.user_id != self.user_id:
            raise NotFoundError("Recurring transaction not found")
        return template

    def list(self) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .options(joinedload(RecurringTransaction.category))
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(RecurringTransaction.next_run, RecurringTransaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def _check_category(self, category_id: int, txn_type: TransactionType) -> None:
        category = self.session.get(Category, category_id)
        if not category:
            raise ValueError("Invalid category")
        if category.type != txn_type:
            raise ValueError("Category type mismatch")

    def create(self, data: RecurringTransactionIn) -> RecurringTransaction:
        self._check_category(data.category_id, data.type)
        template = RecurringTransaction(
            user_id=self.user_id,
            category_id=data.category_id,
            type=data.type,
            amount_cents=data.amount_cents,
            frequency=data.frequency,
            next_run=data.next_run,
            active=data.active,
        )
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    def update(
        self, template_id: int, data: RecurringTransactionIn
    ) -> RecurringTransaction:
        template = self.get(template_id)
        if data.category_id != template.category_id or data.type != template.type:
            self._check_category(data.category_id, data.type)
        for field, value in data.model_dump().items():
            setattr(template, field, value)
        _commit_versioned(self.session, "Recurring transaction")
        self.session.refresh(template)
        return template

    def set_active(self, template_id: int, active: bool) -> RecurringTransaction:
        template = self.get(template_id)
        template.active = active
        _commit_versioned(self.session, "Recurring transaction")
        return template

    def delete(self, template_id: int) -> None:
        template = self.get(template_id)
        self.session.delete(template)
        _commit_versioned(self.session, "Recurring transaction")


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def summary(self, period: Period) -> dict[str, object]:
        total = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            select(Transaction.type, Category.name.label("category"), total)
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.created_at.between(period.start, period.end),
            )
            .group_by(Transaction.type, Category.name)
        )
        rows = self.session.execute(stmt).all()
        income = sum(int(r.total or 0) for r in rows if r.type == TransactionType.income)
        expense = sum(
            int(r.total or 0) for r in rows if r.type == TransactionType.expense
        )
        by_category = sorted(
            (
                {"category": r.category, "total_cents": int(r.total or 0)}
                for r in rows
                if r.type == TransactionType.expense
            ),
            key=lambda item: item["total_cents"],
            reverse=True,
        )
        return {
            "income_cents": income,
            "expense_cents": expense,
            "balance_cents": income - expense,
            "by_category": by_category,
        }

    def trend(self, period: Period) -> list[dict[str, object]]:
        day = func.date(Transaction.created_at).label("day")
        income = func.sum(
            case(
                (Transaction.type == TransactionType.income, Transaction.amount_cents),
                else_=0,
            )
        ).label("income")
        expense = func.sum(
            case(
                (Transaction.type == TransactionType.expense, Transaction.amount_cents),
                else_=0,
            )
        ).label("expense")
        stmt = (
            select(day, income, expense)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.created_at.between(period.start, period.end),
            )
            .group_by(day)
            .order_by(day)
        )
        return [
            {
                "date": date.fromisoformat(str(row.day)[:10]),
                "income_cents": int(row.income or 0),
                "expense_cents": int(row.expense or 0),
            }
            for row in self.session.execute(stmt).all()
        ]

    def category_totals(self, period: Period) -> list[dict[str, object]]:
        total = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            select(Category.name.label("category"), total)
            .join(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.created_at.between(period.start, period.end),
            )
            .group_by(Category.name)
            .order_by(total.desc())
        )
        return [
            {"category": row.category, "total_cents": int(row.total or 0)}
            for row in self.session.execute(stmt).all()
        ]
