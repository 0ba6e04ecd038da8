"""CSV export helpers for ledger history."""

from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path
from typing import Iterable

from ..domain.entities import Transaction

HEADERS = [
    "id",
    "sequence",
    "created_at",
    "type",
    "amount",
    "fee",
    "balance",
    "concept",
    "fine_reason",
    "fine_action",
    "approved_by",
    "receipt_url",
    "created_by",
]


def _serialize_value(value):
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def export_transactions_csv(*, transactions: Iterable[Transaction], output_path: Path) -> Path:
    """Write transactions to CSV at `output_path`.

    Columns are deterministic (see ``HEADERS``); rows keep the given order.
    Returns the path written.
    """

    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Use newline='' for csv on Windows
    with output_path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(
            fh, fieldnames=HEADERS, extrasaction="ignore", quoting=csv.QUOTE_MINIMAL
        )
        writer.writeheader()
        for tx in transactions:
            meta = tx.metadata
            row = {
                "id": tx.id,
                "sequence": tx.sequence,
                "created_at": tx.created_at,
                "type": tx.type,
                "amount": tx.amount,
                "fee": meta.fee,
                "balance": tx.balance,
                "concept": tx.concept,
                "fine_reason": meta.fine_reason,
                "fine_action": meta.fine_action,
                "approved_by": meta.approved_by,
                "receipt_url": meta.receipt_url,
                "created_by": tx.created_by,
            }
            writer.writerow({key: _serialize_value(value) for key, value in row.items()})

    return output_path


__all__ = ["HEADERS", "export_transactions_csv"]
