import logging
from datetime import datetime
from pathlib import Path
from typing import Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from models import Transaction, TransactionType, utcnow


logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)

REPORT_CSS = """
    @page { size: A4; margin: 16mm 14mm; }
    body { font-family: sans-serif; font-size: 9.5pt; color: #111827; }
    h1 { font-size: 16pt; margin: 0 0 2mm; }
    .meta { margin: 0; color: #6b7280; }
    table { width: 100%; border-collapse: collapse; margin-top: 6mm; }
    th, td { padding: 1.5mm 2mm; border-bottom: 0.3mm solid #e5e7eb; text-align: left; }
    .num { text-align: right; white-space: nowrap; }
    .pill { padding: 1px 6px; border-radius: 999px; font-size: 8.5pt; font-weight: 700; }
    .pill-income { background: rgba(22, 163, 74, 0.12); color: #15803d; }
    .pill-expense { background: rgba(220, 38, 38, 0.12); color: #b91c1c; }
    .totals { margin-top: 6mm; }
    footer { margin-top: 8mm; color: #9ca3af; font-size: 8pt; }
"""


class PdfUnavailableError(RuntimeError):
    pass


def _money(cents: int) -> str:
    return f"{cents / 100:,.2f}"


def report_context(
    transactions: Sequence[Transaction], username: str, start: str, end: str
) -> dict[str, object]:
    income = sum(
        t.amount_cents for t in transactions if t.type == TransactionType.income
    )
    expense = sum(
        t.amount_cents for t in transactions if t.type == TransactionType.expense
    )
    rows = [
        {
            "date": t.created_at.strftime("%Y-%m-%d"),
            "category": t.category.name if t.category else "",
            "type": t.type.value,
            "amount": _money(t.amount_cents),
            "description": t.description,
        }
        for t in transactions
    ]
    return {
        "username": username,
        "start": start,
        "end": end,
        "rows": rows,
        "totals": {
            "income": _money(income),
            "expense": _money(expense),
            "balance": _money(income - expense),
        },
        "generated_at": utcnow(),
    }


def render_transactions_html(
    transactions: Sequence[Transaction], username: str, start: str, end: str
) -> str:
    context = report_context(transactions, username, start, end)
    return _env.get_template("transactions_report.html").render(**context)


def render_transactions_pdf(
    transactions: Sequence[Transaction], username: str, start: str, end: str
) -> bytes:
    try:
        from weasyprint import CSS, HTML
    except Exception as exc:
        raise PdfUnavailableError(
            "PDF export requires WeasyPrint system dependencies; install them and retry."
        ) from exc

    html = render_transactions_html(transactions, username, start, end)
    started = datetime.now()
    pdf_bytes = HTML(string=html).write_pdf(stylesheets=[CSS(string=REPORT_CSS)])
    logger.info(
        "report_generated: period=%sto%s transactions=%s pdf_size_bytes=%s duration=%.2fs",
        start,
        end,
        len(transactions),
        len(pdf_bytes),
        (datetime.now() - started).total_seconds(),
    )
    return pdf_bytes
