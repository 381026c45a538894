import csv
from io import StringIO
from typing import Any, Iterable, Mapping, Sequence


def rows_to_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


def _iso(value) -> str:
    return value.isoformat() if value else ""


def payments_to_csv(records: Iterable) -> str:
    """Normalized payment records (as produced by the financial sync) to CSV."""
    headers = [
        "id",
        "apartment_number",
        "resident_name",
        "reference_month",
        "description",
        "amount",
        "currency",
        "status",
        "due_date",
        "payment_date",
    ]
    rows = []
    for record in records:
        rows.append(
            [
                record.id,
                record.apartment_number or "",
                record.resident_name or "",
                _iso(record.reference_month),
                record.description,
                str(record.amount),
                record.currency,
                record.status,
                _iso(record.due_date),
                _iso(record.payment_date),
            ]
        )
    return rows_to_csv(headers, rows)


def contributions_to_csv(contributions: Iterable[Mapping[str, Any]]) -> str:
    headers = ["resident_name", "apartment_number", "amount", "status", "payment_date", "notes"]
    rows = []
    for contribution in contributions:
        rows.append(
            [
                contribution.get("resident_name") or "",
                contribution.get("apartment_number") or "",
                str(contribution.get("amount")),
                contribution.get("status"),
                _iso(contribution.get("payment_date")),
                contribution.get("notes") or "",
            ]
        )
    return rows_to_csv(headers, rows)
