import logging
import re
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from auth import generate_token, verify_token
from config import get_settings
from csv_utils import export_transactions
from database import get_db, init_db, session_scope
from models import TransactionType, User
from notifications import NotificationQueue
from periods import resolve_period, resolve_range
from reports import PdfUnavailableError, render_transactions_pdf
from scheduler import SchedulerManager
from schemas import (
    AmountIn,
    AuthOut,
    BudgetAlertOut,
    BudgetIn,
    BudgetOut,
    BudgetUpdateIn,
    CategoryOut,
    CategoryStatOut,
    CategoryTotalOut,
    LifetimeSavingsOut,
    MarkUsedOut,
    NotificationOut,
    RecommendationOut,
    RecurringActiveIn,
    RecurringTransactionIn,
    RecurringTransactionOut,
    RefundOut,
    SavingsGoalIn,
    SavingsGoalOut,
    SavingsGoalProgressOut,
    SavingsStatsOut,
    SummaryOut,
    TransactionCreatedOut,
    TransactionIn,
    TransactionOut,
    TransactionPageOut,
    TrendPointOut,
    UserLoginIn,
    UserOut,
    UserRegisterIn,
)
from services import (
    AuthenticationError,
    BudgetService,
    CategoryService,
    ConflictError,
    LedgerValidationError,
    LifetimeSavingsService,
    NotFoundError,
    RecurringTransactionService,
    ReportService,
    SavingsGoalService,
    TransactionService,
    UserService,
)

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Finance Ledger")
app.state.notifications = NotificationQueue(limit=get_settings().notification_limit)


def get_notifications(request: Request) -> NotificationQueue:
    return request.app.state.notifications


def get_current_user_id(request: Request, db: Session = Depends(get_db)) -> int:
    token = request.cookies.get("authToken")
    if not token:
        header = request.headers.get("Authorization", "")
        scheme, _, value = header.partition(" ")
        if scheme == "Bearer" and value:
            token = value.strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    user_id = verify_token(token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid authorization token")
    if db.scalar(select(User.id).where(User.id == user_id)) is None:
        raise HTTPException(status_code=401, detail="Invalid authorization token")
    return user_id


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, AuthenticationError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, LedgerValidationError):
        return HTTPException(
            status_code=400, detail={"message": str(exc), **exc.details}
        )
    return HTTPException(status_code=400, detail=str(exc))


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    with session_scope() as session:
        CategoryService(session).seed_defaults()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/health")
def health():
    return {"status": "OK"}


@app.post("/users/register", response_model=AuthOut, status_code=201)
def register(data: UserRegisterIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return AuthOut(token=generate_token(user.id), user=UserOut.model_validate(user))


@app.post("/users/login", response_model=AuthOut)
def login(data: UserLoginIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return AuthOut(token=generate_token(user.id), user=UserOut.model_validate(user))


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.get("/categories/stats", response_model=list[CategoryStatOut])
def category_stats(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    return CategoryService(db).stats_for_month(user_id)


@app.get("/categories/{category_type}", response_model=list[CategoryOut])
def list_categories_by_type(category_type: str, db: Session = Depends(get_db)):
    try:
        txn_type = TransactionType(category_type)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail="Category type must be 'income' or 'expense'"
        ) from exc
    return CategoryService(db).list_all(txn_type)


@app.post("/transactions", response_model=TransactionCreatedOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationQueue = Depends(get_notifications),
):
    try:
        txn, alert = TransactionService(db, user_id, notifications).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return TransactionCreatedOut(
        tx=TransactionOut.model_validate(txn),
        alert=BudgetAlertOut.model_validate(alert) if alert else None,
    )


@app.get("/transactions", response_model=TransactionPageOut)
def list_transactions(
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return TransactionService(db, user_id).list(page=page, limit=limit)


@app.get("/transactions/export.csv")
def export_transactions_csv(
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        period = resolve_range(start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    content = export_transactions(TransactionService(db, user_id).in_range(period))
    filename = f"transactions-{start}-to-{end}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/transactions/export.pdf")
def export_transactions_pdf(
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        period = resolve_range(start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    user = UserService(db).get(user_id)
    transactions = TransactionService(db, user_id).in_range(period)
    try:
        pdf_bytes = render_transactions_pdf(transactions, user.username, start, end)
    except PdfUnavailableError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    safe_name = re.sub(r"[^A-Za-z0-9]", "", user.username) or "user"
    filename = f"report-{safe_name}-{start}-{end}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return TransactionService(db, user_id).get(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return BudgetService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/budgets", response_model=list[BudgetOut])
def list_budgets(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    return BudgetService(db, user_id).list()


@app.get(
    "/budgets/{category_id}/almost",
    response_model=BudgetAlertOut,
    response_model_exclude_none=True,
)
def budget_status(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    alert = BudgetService(db, user_id).check_alert(category_id, 0)
    if alert is None:
        raise HTTPException(status_code=404, detail="No budget for this category")
    return alert


@app.patch("/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetUpdateIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return BudgetService(db, user_id).update(budget_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/savings-goals", response_model=SavingsGoalOut, status_code=201)
def create_goal(
    data: SavingsGoalIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    return SavingsGoalService(db, user_id).create(data)


@app.get("/savings-goals", response_model=list[SavingsGoalOut])
def list_goals(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    return SavingsGoalService(db, user_id).list()


@app.get("/savings-goals/stats", response_model=SavingsStatsOut)
def goal_stats(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    return SavingsGoalService(db, user_id).stats()


@app.get("/savings-goals/{goal_id}/progress", response_model=SavingsGoalProgressOut)
def goal_progress(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        progress = SavingsGoalService(db, user_id).progress(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    goal = SavingsGoalOut.model_validate(progress.pop("goal"))
    return SavingsGoalProgressOut(**goal.model_dump(), **progress)


@app.get("/savings-goals/{goal_id}/recommendation", response_model=RecommendationOut)
def goal_recommendation(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        rec = SavingsGoalService(db, user_id).recommendation(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return RecommendationOut(**asdict(rec))


@app.api_route(
    "/savings-goals/{goal_id}/deposit",
    methods=["POST", "PATCH"],
    response_model=SavingsGoalOut,
)
def deposit_goal(
    goal_id: int,
    data: AmountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationQueue = Depends(get_notifications),
):
    try:
        return SavingsGoalService(db, user_id, notifications).deposit(
            goal_id, data.amount_cents
        )
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/savings-goals/{goal_id}/withdraw", response_model=SavingsGoalOut)
def withdraw_goal(
    goal_id: int,
    data: AmountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return SavingsGoalService(db, user_id).withdraw(goal_id, data.amount_cents)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch("/savings-goals/{goal_id}/mark-used", response_model=MarkUsedOut)
def mark_goal_used(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        goal, txn = SavingsGoalService(db, user_id).mark_used(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return MarkUsedOut(
        goal=SavingsGoalOut.model_validate(goal),
        transaction=TransactionOut.model_validate(txn),
        message="Goal marked as used and expense recorded",
    )


@app.delete("/savings-goals/{goal_id}/delete-and-refund", response_model=RefundOut)
def delete_goal_and_refund(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        refunded = SavingsGoalService(db, user_id).delete_and_refund(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return RefundOut(
        message="Goal deleted. The saved money is available again.",
        refunded_cents=refunded,
    )


@app.delete("/savings-goals/{goal_id}", status_code=204)
def delete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        SavingsGoalService(db, user_id).delete(goal_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/lifetime-savings", response_model=LifetimeSavingsOut)
def lifetime_savings(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    return LifetimeSavingsService(db, user_id).get()


@app.post(
    "/recurring-transactions", response_model=RecurringTransactionOut, status_code=201
)
def create_recurring(
    data: RecurringTransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return RecurringTransactionService(db, user_id).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/recurring-transactions", response_model=list[RecurringTransactionOut])
def list_recurring(
    db: Session = Depends(get_db), user_id: int = Depends(get_current_user_id)
):
    return RecurringTransactionService(db, user_id).list()


@app.put(
    "/recurring-transactions/{template_id}", response_model=RecurringTransactionOut
)
def update_recurring(
    template_id: int,
    data: RecurringTransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return RecurringTransactionService(db, user_id).update(template_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.patch(
    "/recurring-transactions/{template_id}/active",
    response_model=RecurringTransactionOut,
)
def toggle_recurring(
    template_id: int,
    data: RecurringActiveIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        return RecurringTransactionService(db, user_id).set_active(
            template_id, data.active
        )
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/recurring-transactions/{template_id}", status_code=204)
def delete_recurring(
    template_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        RecurringTransactionService(db, user_id).delete(template_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/notifications", response_model=list[NotificationOut])
def list_notifications(
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationQueue = Depends(get_notifications),
):
    return notifications.list(user_id)


@app.delete("/notifications", status_code=204)
def clear_notifications(
    user_id: int = Depends(get_current_user_id),
    notifications: NotificationQueue = Depends(get_notifications),
):
    notifications.clear(user_id)
    return Response(status_code=204)


@app.get("/dashboard/summary")
def dashboard_summary(
    period: str = "month",
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        resolved = resolve_period(period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    summary = ReportService(db, user_id).summary(resolved)
    return {"period": resolved.slug, "summary": SummaryOut(**summary)}


@app.get("/reports/trend", response_model=list[TrendPointOut])
def report_trend(
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        period = resolve_range(start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ReportService(db, user_id).trend(period)


@app.get("/reports/category", response_model=list[CategoryTotalOut])
def report_category(
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
):
    try:
        period = resolve_range(start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ReportService(db, user_id).category_totals(period)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
