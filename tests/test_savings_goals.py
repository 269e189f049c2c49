from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import (
    Category,
    Frequency,
    LifetimeSavings,
    NotificationType,
    Transaction,
    TransactionType,
    User,
)
from notifications import NotificationQueue
from schemas import SavingsGoalIn
from services import (
    SAVINGS_USED_CATEGORY,
    ConflictError,
    LedgerValidationError,
    LifetimeSavingsService,
    NotFoundError,
    SavingsGoalService,
    user_balance_cents,
)

NOW = datetime(2025, 3, 20, 12, 0)


def make_session(url="sqlite+pysqlite:///:memory:"):
    engine = create_engine(url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def setup_user(session, income_cents):
    user = User(username="ana", email="ana@example.com", password_hash="x")
    salary = Category(name="Salary", type=TransactionType.income)
    session.add_all([user, salary])
    session.commit()
    session.add(
        Transaction(
            user_id=user.id,
            type=TransactionType.income,
            amount_cents=income_cents,
            category_id=salary.id,
        )
    )
    session.commit()
    return user


def new_goal(service, target_cents, days=60, frequency=Frequency.monthly):
    return service.create(
        SavingsGoalIn(
            name="Trip",
            target_cents=target_cents,
            deadline=NOW + timedelta(days=days),
            frequency=frequency,
        )
    )


def test_deposit_cannot_exceed_available_balance():
    session = make_session()
    user = setup_user(session, 10_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 50_000)

    with pytest.raises(LedgerValidationError) as excinfo:
        service.deposit(goal.id, 12_000)

    assert excinfo.value.details == {"available_cents": 10_000}
    assert service.get(goal.id).current_cents == 0


def test_money_parked_in_other_goals_is_not_available():
    session = make_session()
    user = setup_user(session, 10_000)
    service = SavingsGoalService(session, user.id)
    first = new_goal(service, 50_000)
    second = new_goal(service, 50_000)
    service.deposit(first.id, 8_000)

    with pytest.raises(LedgerValidationError) as excinfo:
        service.deposit(second.id, 3_000)

    assert excinfo.value.details["available_cents"] == 2_000
    assert service.deposit(second.id, 2_000).current_cents == 2_000


def test_deposit_cannot_overshoot_target():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 5_000)
    service.deposit(goal.id, 1_000)

    with pytest.raises(LedgerValidationError) as excinfo:
        service.deposit(goal.id, 6_000)

    assert excinfo.value.details == {"max_cents": 4_000}
    assert service.get(goal.id).current_cents == 1_000


@pytest.mark.parametrize("amount", [0, -500])
def test_non_positive_amounts_are_rejected(amount):
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 5_000)

    with pytest.raises(ValueError, match="Invalid amount"):
        service.deposit(goal.id, amount)
    with pytest.raises(ValueError, match="Invalid amount"):
        service.withdraw(goal.id, amount)


def test_completion_is_recorded_once():
    session = make_session()
    user = setup_user(session, 100_000)
    queue = NotificationQueue()
    service = SavingsGoalService(session, user.id, queue)
    goal = new_goal(service, 5_000)

    goal = service.deposit(goal.id, 5_000, now=NOW)

    assert goal.completed_at == NOW
    assert LifetimeSavingsService(session, user.id).get() == {
        "total_saved_cents": 5_000,
        "goals_completed": 1,
    }
    [notification] = queue.list(user.id)
    assert notification.type == NotificationType.goal_completed
    assert "Trip" in notification.message

    service.withdraw(goal.id, 1_000)
    goal = service.deposit(goal.id, 1_000, now=NOW + timedelta(days=1))

    assert goal.completed_at == NOW
    assert LifetimeSavingsService(session, user.id).get()["goals_completed"] == 1
    assert session.scalar(select(func.count(LifetimeSavings.id))) == 1
    assert len(queue.list(user.id)) == 1


def test_withdraw_more_than_saved_is_a_conflict():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 5_000)
    service.deposit(goal.id, 2_000)

    with pytest.raises(ConflictError, match="Insufficient funds"):
        service.withdraw(goal.id, 2_500)

    assert service.get(goal.id).current_cents == 2_000
    assert service.withdraw(goal.id, 2_000).current_cents == 0


def test_mark_used_records_a_single_expense():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 5_000)
    service.deposit(goal.id, 5_000)

    goal, txn = service.mark_used(goal.id, now=NOW)

    assert goal.is_money_used is True
    assert txn.type == TransactionType.expense
    assert txn.amount_cents == 5_000
    assert txn.created_at == NOW

    with pytest.raises(ValueError, match="already marked"):
        service.mark_used(goal.id)

    spent = session.scalars(
        select(Transaction)
        .join(Category, Transaction.category_id == Category.id)
        .where(Category.name == SAVINGS_USED_CATEGORY)
    ).all()
    assert len(spent) == 1
    assert user_balance_cents(session, user.id) == 95_000
    assert service.stats()["total_saved_cents"] == 5_000


def test_mark_used_requires_completed_goal():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 5_000)
    service.deposit(goal.id, 4_000)

    with pytest.raises(ValueError, match="Only completed goals"):
        service.mark_used(goal.id)


def test_mark_used_rejects_an_emptied_goal():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 5_000)
    service.deposit(goal.id, 5_000)
    service.withdraw(goal.id, 5_000)

    with pytest.raises(ValueError, match="Nothing left"):
        service.mark_used(goal.id)

    assert service.get(goal.id).is_money_used is False
    assert session.scalar(
        select(func.count(Transaction.id)).where(
            Transaction.type == TransactionType.expense
        )
    ) == 0


def test_spent_goals_still_count_against_new_deposits():
    session = make_session()
    user = setup_user(session, 10_000)
    service = SavingsGoalService(session, user.id)
    spent = new_goal(service, 10_000)
    service.deposit(spent.id, 10_000)
    service.mark_used(spent.id)
    salary = session.scalar(select(Category).where(Category.name == "Salary"))
    session.add(
        Transaction(
            user_id=user.id,
            type=TransactionType.income,
            amount_cents=5_000,
            category_id=salary.id,
        )
    )
    session.commit()
    other = new_goal(service, 50_000)

    with pytest.raises(LedgerValidationError) as excinfo:
        service.deposit(other.id, 5_000)

    assert excinfo.value.details == {"available_cents": -5_000}
    assert service.get(other.id).current_cents == 0


def test_refund_of_a_spent_goal_is_zero():
    session = make_session()
    user = setup_user(session, 10_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 4_000)
    service.deposit(goal.id, 4_000)
    service.mark_used(goal.id)

    assert service.delete_and_refund(goal.id) == 0
    with pytest.raises(NotFoundError):
        service.get(goal.id)


def test_deleting_a_goal_releases_its_money():
    session = make_session()
    user = setup_user(session, 10_000)
    service = SavingsGoalService(session, user.id)
    first = new_goal(service, 50_000)
    second = new_goal(service, 50_000)
    service.deposit(first.id, 8_000)

    assert service.delete_and_refund(first.id) == 8_000
    assert service.deposit(second.id, 9_000).current_cents == 9_000

    with pytest.raises(NotFoundError):
        service.get(first.id)
    with pytest.raises(NotFoundError):
        service.deposit(first.id, 100)
    assert [g.id for g in service.list()] == [second.id]


def test_goals_are_scoped_to_their_owner():
    session = make_session()
    user = setup_user(session, 10_000)
    other = User(username="ben", email="ben@example.com", password_hash="x")
    session.add(other)
    session.commit()
    goal = new_goal(SavingsGoalService(session, user.id), 5_000)

    with pytest.raises(NotFoundError):
        SavingsGoalService(session, other.id).deposit(goal.id, 100)


def test_recommendation_spreads_remaining_over_periods():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 10_000, days=9, frequency=Frequency.weekly)

    rec = service.recommendation(goal.id, now=NOW)

    assert rec.days_left == 9
    assert rec.periods_left == 2
    assert rec.recommended_cents == 5_000
    assert rec.message == "Save 50.00 every week to reach your goal"


def test_recommendation_rounds_up_to_the_cent():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 10_000, days=3, frequency=Frequency.daily)

    rec = service.recommendation(goal.id, now=NOW)

    assert rec.periods_left == 3
    assert rec.recommended_cents == 3_334


def test_recommendation_after_deadline():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 10_000, days=5)

    rec = service.recommendation(goal.id, now=NOW + timedelta(days=6))

    assert rec.recommended_cents == 0
    assert rec.message == "The deadline has passed"


def test_recommendation_for_a_reached_goal():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 10_000, days=20, frequency=Frequency.weekly)
    service.deposit(goal.id, 10_000)

    rec = service.recommendation(goal.id, now=NOW)

    assert rec.recommended_cents == 0
    assert rec.remaining_cents == 0
    assert rec.periods_left == 0
    assert rec.days_left == 20
    assert rec.message == "Goal completed"


def test_recommendation_for_a_reached_goal_after_deadline():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 10_000, days=5)
    service.deposit(goal.id, 10_000)

    rec = service.recommendation(goal.id, now=NOW + timedelta(days=10))

    assert rec.recommended_cents == 0
    assert rec.remaining_cents == 0
    assert rec.message == "Goal completed"


def test_progress_reports_required_saving():
    session = make_session()
    user = setup_user(session, 100_000)
    service = SavingsGoalService(session, user.id)
    goal = new_goal(service, 9_000, days=60, frequency=Frequency.monthly)
    service.deposit(goal.id, 3_000)

    progress = service.progress(goal.id, now=NOW)

    assert progress["remaining_cents"] == 6_000
    assert progress["days_left"] == 60
    assert progress["required_per_period_cents"] == 3_000


def test_stale_update_is_reported_as_conflict(tmp_path):
    url = f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}"
    first = make_session(url)
    user = setup_user(first, 100_000)
    goal = new_goal(SavingsGoalService(first, user.id), 50_000)

    second = sessionmaker(bind=first.get_bind(), autoflush=False)()
    stale = SavingsGoalService(second, user.id)
    stale.get(goal.id)

    SavingsGoalService(first, user.id).deposit(goal.id, 3_000)

    with pytest.raises(ConflictError, match="concurrently"):
        stale.deposit(goal.id, 1_000)

    first.expire_all()
    assert SavingsGoalService(first, user.id).get(goal.id).current_cents == 3_000
