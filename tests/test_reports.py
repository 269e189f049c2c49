from datetime import datetime

from models import Category, Transaction, TransactionType
from reports import report_context, render_transactions_html


def make_transactions():
    salary = Category(name="Salary", type=TransactionType.income)
    food = Category(name="Food & Drinks", type=TransactionType.expense)
    income = Transaction(
        type=TransactionType.income,
        amount_cents=250_000,
        created_at=datetime(2025, 3, 1, 9, 0),
    )
    income.category = salary
    expense = Transaction(
        type=TransactionType.expense,
        amount_cents=4_550,
        description="<b>pizza</b>",
        created_at=datetime(2025, 3, 2, 20, 0),
    )
    expense.category = food
    return [income, expense]


def test_report_context_totals():
    context = report_context(make_transactions(), "ana", "2025-03-01", "2025-03-31")

    assert context["totals"] == {
        "income": "2,500.00",
        "expense": "45.50",
        "balance": "2,454.50",
    }
    assert [row["date"] for row in context["rows"]] == ["2025-03-01", "2025-03-02"]


def test_html_report_escapes_user_text():
    html = render_transactions_html(
        make_transactions(), "ana", "2025-03-01", "2025-03-31"
    )

    assert "User: ana" in html
    assert "Food &amp; Drinks" in html
    assert "&lt;b&gt;pizza&lt;/b&gt;" in html
    assert "<b>pizza</b>" not in html


def test_empty_report_says_so():
    html = render_transactions_html([], "ana", "2025-03-01", "2025-03-31")

    assert "No transactions in this period." in html
    assert "Balance: 0.00" in html
