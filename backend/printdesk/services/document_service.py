# Overview: Human-readable document numbers for invoices, payments and print jobs.

from __future__ import annotations

from ..extensions import db
from printdesk.time_utils import utcnow


def next_document_number(*, column, prefix: str, pad: int = 4, filters=()) -> str:
    """
    Next "{prefix}-{NNNN}" for a dated prefix.

    Reads the highest existing number with the same prefix and increments
    it. Two writers can still pick the same number; the unique constraint
    on the column catches that, commit_or_conflict (with the column as a
    retry marker) raises DocumentNumberTakenError and run_with_retry
    replays the operation with the next number.
    """
    query = db.session.query(column).filter(column.like(f"{prefix}-%"), *filters)
    last = query.order_by(column.desc()).first()

    next_num = 1
    if last is not None:
        suffix = last[0].rsplit("-", 1)[-1]
        if suffix.isdigit():
            next_num = int(suffix) + 1

    return f"{prefix}-{next_num:0{pad}d}"


def invoice_prefix(branch_code: str, when=None) -> str:
    when = when or utcnow()
    return f"{branch_code}-{when:%Y%m%d}"


def payment_prefix(branch_code: str, when=None) -> str:
    when = when or utcnow()
    return f"PAY-{branch_code}-{when:%y%m%d}"


def print_job_prefix(branch_code: str, when=None) -> str:
    when = when or utcnow()
    return f"{branch_code}-JOB-{when:%Y%m%d}"
