import csv
import re
from io import StringIO
from typing import Sequence

from models import Transaction

EXPORT_HEADER = ["CreatedAt", "Amount", "Type", "Description", "Category"]

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
_SHELL_LIKE = re.compile(r"^(cmd|powershell|bash|sh)\b|^https?://", re.IGNORECASE)


def sanitize_csv_value(value: str) -> str:
    """Neutralise cells a spreadsheet would evaluate by prefixing a tab."""
    value = (value or "").strip()
    if not value:
        return ""
    if value.startswith(_FORMULA_PREFIXES) or _SHELL_LIKE.match(value):
        return "\t" + value
    return value


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                txn.created_at.strftime("%Y-%m-%d %H:%M"),
                f"{txn.amount_cents / 100:.2f}",
                txn.type.value,
                sanitize_csv_value(txn.description or ""),
                sanitize_csv_value(txn.category.name if txn.category else ""),
            ]
        )
    return output.getvalue()
