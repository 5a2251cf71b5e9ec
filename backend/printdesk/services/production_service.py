# Overview: Service-layer operations for print jobs; production-eligibility gate and job lifecycle.

"""
Production Service

WHY: A print job sends an invoice to the production floor. Exactly one job
may exist per invoice; a second job would print the order twice.

ELIGIBILITY (derived, never stored):
    NotEligible -> Eligible -> JobCreated

    Eligible  = caller holds create_print_job AND no job exists for the invoice
    JobCreated is permanent: the gate never reopens.

Payment does not gate production. A draft invoice or an outstanding balance
only adds an advisory to the decision so the operator can see it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable

from ..extensions import db
from ..models import Invoice, PrintJob
from ..money import format_currency
from ..permissions import CREATE_PRINT_JOB
from printdesk.time_utils import utcnow, today
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int
from . import permission_service
from .concurrency import lock_for_update, run_with_retry, commit_or_conflict
from .document_service import next_document_number, print_job_prefix
from .permission_service import PermissionDeniedError


logger = logging.getLogger(__name__)


JOB_TYPE_GENERAL = "general_printing"

# Checked in order; first product-name match wins
JOB_TYPE_KEYWORDS = (
    ("business card", "business_cards"),
    ("brochure", "brochures"),
    ("banner", "banners"),
)

PRIORITIES = ["low", "normal", "medium", "high", "urgent"]

HIGH_PRIORITY_TOTAL_CENTS = 5_000_000      # Rs. 50,000
LONG_JOB_TOTAL_CENTS = 2_500_000           # Rs. 25,000
HEAVY_JOB_WEIGHT_GRAMS = 10_000            # 10 kg
DUE_SOON_DAYS = 2

BASE_PRODUCTION_HOURS = 24
HEAVY_JOB_EXTRA_HOURS = 12
LARGE_JOB_EXTRA_HOURS = 8

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_QUALITY_CHECK = "quality_check"
STATUS_COMPLETED = "completed"
STATUS_ON_HOLD = "on_hold"

PRODUCTION_TRANSITIONS = {
    STATUS_PENDING: {STATUS_IN_PROGRESS, STATUS_ON_HOLD},
    STATUS_IN_PROGRESS: {STATUS_QUALITY_CHECK, STATUS_ON_HOLD},
    STATUS_QUALITY_CHECK: {STATUS_COMPLETED, STATUS_IN_PROGRESS},
    STATUS_ON_HOLD: {STATUS_IN_PROGRESS},
    STATUS_COMPLETED: set(),
}


# =============================================================================
# ELIGIBILITY GATE (pure)
# =============================================================================

@dataclass(frozen=True)
class EligibilityDecision:
    eligible: bool
    reason: str | None = None
    advisories: tuple[str, ...] = field(default_factory=tuple)

    @property
    def state(self) -> str:
        if self.eligible:
            return "eligible"
        if self.reason == JOB_EXISTS_REASON:
            return "job_created"
        return "not_eligible"

    def to_dict(self) -> dict:
        return {
            "eligible": self.eligible,
            "state": self.state,
            "reason": self.reason,
            "advisories": list(self.advisories),
            "message": "; ".join(self.advisories) if self.advisories else None,
        }


NO_PERMISSION_REASON = "You do not have permission to create print jobs"
JOB_EXISTS_REASON = "A print job already exists for this invoice"


def evaluate_eligibility(
    *,
    has_permission: bool,
    has_existing_job: bool,
    invoice_status: str,
    remaining_balance_cents: int,
) -> EligibilityDecision:
    advisories = []
    if invoice_status == "draft":
        advisories.append("Invoice is in draft status")
    if remaining_balance_cents > 0:
        advisories.append(f"Outstanding balance of {format_currency(remaining_balance_cents)}")

    if has_existing_job:
        return EligibilityDecision(False, JOB_EXISTS_REASON, tuple(advisories))
    if not has_permission:
        return EligibilityDecision(False, NO_PERMISSION_REASON, tuple(advisories))
    return EligibilityDecision(True, None, tuple(advisories))


# =============================================================================
# JOB ATTRIBUTES (pure)
# =============================================================================

def infer_job_type(product_names: Iterable[str | None]) -> str:
    names = [name.lower() for name in product_names if name]
    for keyword, job_type in JOB_TYPE_KEYWORDS:
        if any(keyword in name for name in names):
            return job_type
    return JOB_TYPE_GENERAL


def calculate_priority(*, customer_type: str | None, total_amount_cents: int, due_date: date | None, on: date) -> str:
    if customer_type == "vip":
        return "urgent"
    if total_amount_cents > HIGH_PRIORITY_TOTAL_CENTS:
        return "high"
    if due_date is not None and (due_date - on).days <= DUE_SOON_DAYS:
        return "medium"
    return "normal"


def estimate_completion(*, total_weight_grams: int, total_amount_cents: int, start: datetime) -> datetime:
    hours = BASE_PRODUCTION_HOURS
    if total_weight_grams > HEAVY_JOB_WEIGHT_GRAMS:
        hours += HEAVY_JOB_EXTRA_HOURS
    if total_amount_cents > LONG_JOB_TOTAL_CENTS:
        hours += LARGE_JOB_EXTRA_HOURS
    return start + timedelta(hours=hours)


# =============================================================================
# DB OPERATIONS
# =============================================================================

def _get_invoice(invoice_id: int, company_id: int, *, lock: bool = False) -> Invoice:
    query = db.session.query(Invoice).filter(
        Invoice.id == invoice_id,
        Invoice.company_id == company_id,
        Invoice.deleted_at.is_(None),
    )
    if lock:
        query = lock_for_update(query)
    invoice = query.first()
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _has_job(invoice_id: int) -> bool:
    return db.session.query(PrintJob.id).filter_by(invoice_id=invoice_id).first() is not None


def _decide(user, invoice: Invoice) -> EligibilityDecision:
    return evaluate_eligibility(
        has_permission=permission_service.has_permission(user, CREATE_PRINT_JOB),
        has_existing_job=_has_job(invoice.id),
        invoice_status=invoice.status,
        remaining_balance_cents=invoice.total_amount_cents - invoice.total_paid_cents,
    )


def check_eligibility(invoice_id: int, *, user) -> EligibilityDecision:
    invoice = _get_invoice(invoice_id, user.company_id)
    return _decide(user, invoice)


def create_print_job(
    invoice_id: int,
    *,
    user,
    customer_instructions: str | None = None,
    priority: str | None = None,
) -> tuple[PrintJob, EligibilityDecision]:
    """
    Create the print job for an invoice.

    Returns:
        (PrintJob, decision) where decision carries the advisories

    Raises:
        PermissionDeniedError: caller lacks create_print_job
        ConflictError: a job already exists for the invoice
    """
    if priority is not None and priority not in PRIORITIES:
        raise ValidationError(f"priority must be one of {PRIORITIES}", field="priority")

    def _op():
        invoice = _get_invoice(invoice_id, user.company_id, lock=True)
        decision = _decide(user, invoice)
        if not decision.eligible:
            if decision.reason == NO_PERMISSION_REASON:
                raise PermissionDeniedError(decision.reason)
            raise ConflictError(decision.reason)

        now = utcnow()
        job = PrintJob(
            invoice_id=invoice.id,
            branch_id=invoice.branch_id,
            job_number=next_document_number(
                column=PrintJob.job_number,
                prefix=print_job_prefix(invoice.branch.code, now),
                pad=3,
            ),
            job_type=infer_job_type(
                item.product.name if item.product else item.item_description
                for item in invoice.items
            ),
            production_status=STATUS_PENDING,
            priority=priority or calculate_priority(
                customer_type=invoice.customer.customer_type if invoice.customer else None,
                total_amount_cents=invoice.total_amount_cents,
                due_date=invoice.due_date,
                on=today(),
            ),
            progress_percentage=0,
            customer_instructions=(customer_instructions or invoice.notes or "").strip() or None,
            estimated_completion=estimate_completion(
                total_weight_grams=invoice.total_weight_grams,
                total_amount_cents=invoice.total_amount_cents,
                start=now,
            ),
            created_by_user_id=user.id,
            created_at=now,
        )
        db.session.add(job)

        # The unique constraint on invoice_id closes the race between two creators;
        # a clash on job_number only means another invoice took the number first
        commit_or_conflict(ConflictError(JOB_EXISTS_REASON), retry_markers=("job_number",))

        logger.info("Print job %s created for invoice %s", job.job_number, invoice.invoice_number)
        return job, decision

    return run_with_retry(_op)


def get_print_job(job_id: int, company_id: int) -> PrintJob:
    job = (
        db.session.query(PrintJob)
        .join(Invoice, Invoice.id == PrintJob.invoice_id)
        .filter(PrintJob.id == job_id, Invoice.company_id == company_id)
        .first()
    )
    if not job:
        raise NotFoundError(f"Print job {job_id} not found")
    return job


def update_production_status(
    job_id: int,
    *,
    company_id: int,
    status: str,
    progress_percentage=None,
    notes: str | None = None,
) -> PrintJob:
    """
    Move a print job along the production workflow.

    completed is terminal and forces progress to 100.
    """
    if status not in PRODUCTION_TRANSITIONS:
        raise ValidationError(f"status must be one of {sorted(PRODUCTION_TRANSITIONS)}", field="status")

    progress = None
    if progress_percentage is not None:
        progress = coerce_int("progress_percentage", progress_percentage)
        if not 0 <= progress <= 100:
            raise ValidationError("progress_percentage must be between 0 and 100", field="progress_percentage")

    def _op() -> PrintJob:
        job = get_print_job(job_id, company_id)

        if status != job.production_status:
            allowed = PRODUCTION_TRANSITIONS[job.production_status]
            if status not in allowed:
                raise ConflictError(f"Cannot move print job from {job.production_status} to {status}")

        now = utcnow()
        if status == STATUS_IN_PROGRESS and job.started_at is None:
            job.started_at = now
        if status == STATUS_COMPLETED:
            job.completed_at = job.completed_at or now
            job.progress_percentage = 100
        elif progress is not None:
            job.progress_percentage = progress

        job.production_status = status

        if notes and notes.strip():
            stamp = now.strftime("%Y-%m-%d %H:%M:%S")
            entry = f"{stamp}: {notes.strip()}"
            job.production_notes = f"{job.production_notes}\n{entry}" if job.production_notes else entry

        db.session.commit()
        logger.info("Print job %s moved to %s", job.job_number, status)
        return job

    return run_with_retry(_op)
