import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from models import Frequency, RecurringTransaction, Transaction, utcnow


logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(base.day, days_in_month(year, month))
    return date(year, month, day)


def calculate_next_run(frequency: Frequency, from_date: date) -> date:
    if frequency == Frequency.daily:
        return from_date + timedelta(days=1)
    if frequency == Frequency.weekly:
        return from_date + timedelta(weeks=1)
    if frequency == Frequency.biweekly:
        return from_date + timedelta(weeks=2)
    return add_months(from_date, 1)


class RecurringEngine:
    """Turns due recurring templates into concrete transactions.

    Each template fires at most once per call and its ``next_run`` moves
    forward by a single cadence step, so a template that missed several
    periods stays due and fires again on the following ticks.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def due_templates(self, today: date) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .options(joinedload(RecurringTransaction.category, innerjoin=True))
            .where(
                RecurringTransaction.active.is_(True),
                RecurringTransaction.next_run <= today,
            )
            .order_by(RecurringTransaction.next_run, RecurringTransaction.id)
            .with_for_update()
        )
        return list(self.session.scalars(stmt).unique().all())

    def post_due(
        self, today: Optional[date] = None, now: Optional[datetime] = None
    ) -> int:
        today = today or local_today()
        now = now or utcnow()
        count = 0
        for template in self.due_templates(today):
            self._post_occurrence(template, now)
            template.next_run = calculate_next_run(template.frequency, template.next_run)
            count += 1
            logger.info(
                "recurring_posted: template_id=%s user_id=%s next_run=%s",
                template.id,
                template.user_id,
                template.next_run,
            )
        self.session.flush()
        return count

    def _post_occurrence(self, template: RecurringTransaction, now: datetime) -> None:
        category_name = template.category.name if template.category else "?"
        txn = Transaction(
            user_id=template.user_id,
            type=template.type,
            amount_cents=template.amount_cents,
            category_id=template.category_id,
            description=f"Recurring: {category_name}",
            created_at=now,
        )
        self.session.add(txn)
