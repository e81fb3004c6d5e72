import csv
import re
from datetime import date, datetime
from io import StringIO
from typing import Optional, Sequence

from models import Transaction
from money import parse_money
from schemas import CSVRow

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y")


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> date:
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date: {value!r}")


def _field(raw: dict[str, Optional[str]], name: str) -> str:
    for key, value in raw.items():
        if key and key.strip().lower() == name:
            return (value or "").strip()
    return ""


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    reader = csv.DictReader(StringIO(content.lstrip("\ufeff")))
    rows: list[CSVRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            description = _field(raw, "description")
            if not description:
                raise ValueError("Missing description")
            rows.append(
                CSVRow(
                    date=parse_date(_field(raw, "date")),
                    description=description,
                    amount=parse_money(_field(raw, "amount")),
                )
            )
        except ValueError as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(
        ["Date", "Type", "Description", "Amount", "Category", "Recurrence"]
    )
    for txn in transactions:
        writer.writerow(
            [
                txn.effective_date.isoformat(),
                txn.type.value,
                sanitize_csv_value(txn.description or ""),
                f"{txn.amount:.2f}",
                sanitize_csv_value(txn.category.name if txn.category else ""),
                txn.recurrence.value,
            ]
        )
    return output.getvalue()
