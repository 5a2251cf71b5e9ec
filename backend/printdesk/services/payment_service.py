# Overview: Service-layer operations for invoice payments; encapsulates business logic and database work.

"""
Payment Processing Service

WHY: Invoices are settled by one or more payments. Front-desk staff record
payments as PENDING; a verifier confirms or rejects them. Only verified
(COMPLETED) payments reduce the balance.

DESIGN PRINCIPLES:
- Reconciliation rules live in reconciliation_service; this module loads
  rows, calls those rules and persists the outcome.
- Every payment mutation rewrites the invoice's balance snapshot
  (total_paid_cents, payment_status, updated_at). The invoice carries an
  optimistic version_id, so two concurrent writers on the same invoice
  collide there; run_with_retry replays the loser against fresh balances.
- Verification re-checks the balance: a pending payment that no longer
  fits cannot be verified, so accepted payments never exceed the total.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Invoice, Payment
from printdesk.time_utils import utcnow, today
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_date, coerce_int
from .concurrency import lock_for_update, run_with_retry, commit_or_conflict, flush_or_conflict
from .document_service import next_document_number, payment_prefix
from .reconciliation_service import (
    METHOD_ONLINE,
    STATUS_COMPLETED,
    STATUS_PENDING,
    STATUS_FAILED,
    STATUS_REFUNDED,
    VERIFICATION_PENDING,
    VERIFICATION_REJECTED,
    VERIFICATION_VERIFIED,
    CLOSED_INVOICE_STATUSES,
    OverpaymentError,
    PaymentStateError,
    PaymentRecord,
    PaymentRequest,
    PaymentSummary,
    check_refund_transition,
    check_reject_transition,
    check_verify_transition,
    ensure_within_balance,
    summarize_payments,
    validate_payment_request,
)


logger = logging.getLogger(__name__)

# Unique-violation text that identifies a payment_reference race
REFERENCE_MARKERS = ("payment_reference",)

PAYMENT_UPDATE_FIELDS = {
    "amount_cents", "payment_method", "payment_date",
    "bank_name", "cheque_number", "gateway_reference", "notes",
}

PAYMENT_STATUSES = [STATUS_PENDING, STATUS_COMPLETED, STATUS_FAILED, STATUS_REFUNDED]
VERIFICATION_STATUSES = [VERIFICATION_PENDING, VERIFICATION_VERIFIED, VERIFICATION_REJECTED]

__all__ = [
    "OverpaymentError",
    "PaymentStateError",
    "record_payment",
    "record_gateway_payment",
    "update_payment",
    "verify_payment",
    "reject_payment",
    "refund_payment",
    "get_payment_summary",
    "get_invoice_payments",
    "list_payments",
]


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _load_invoice_locked(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if not invoice or invoice.is_deleted:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _load_payment(payment_id: int) -> Payment:
    payment = db.session.query(Payment).filter_by(id=payment_id).first()
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def _summarize(invoice: Invoice) -> PaymentSummary:
    payments = db.session.query(Payment).filter_by(invoice_id=invoice.id).all()
    return summarize_payments(invoice.total_amount_cents, (PaymentRecord.from_model(p) for p in payments))


def _refresh_invoice_balance(invoice: Invoice) -> PaymentSummary:
    """
    Rewrite the invoice's balance snapshot from its payments.

    Always bumps updated_at so the invoice row (and its version_id) is
    written even when the totals do not change.
    """
    summary = _summarize(invoice)
    if summary.is_overpaid:
        logger.error(
            "Invoice %s is overpaid: total=%s paid=%s",
            invoice.invoice_number, summary.total_amount_cents, summary.total_paid_cents,
        )
    invoice.total_paid_cents = summary.total_paid_cents
    invoice.payment_status = summary.payment_status
    invoice.updated_at = utcnow()
    return summary


def _ensure_unique_transaction(transaction_id: str | None) -> None:
    if not transaction_id:
        return
    exists = db.session.query(Payment.id).filter_by(transaction_id=transaction_id).first()
    if exists:
        raise ConflictError(f"Transaction {transaction_id} has already been recorded")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def record_payment(
    invoice_id: int,
    *,
    user_id: int | None,
    amount_cents: int,
    payment_method: str,
    payment_date=None,
    bank_name: str | None = None,
    cheque_number: str | None = None,
    gateway_reference: str | None = None,
    transaction_id: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Record a payment against an invoice in PENDING state.

    Args:
        invoice_id: Invoice being paid
        user_id: Staff member taking the payment
        amount_cents: Amount received (must fit the remaining balance)
        payment_method: cash, bank_transfer, cheque, online
        payment_date: Date money was received (defaults to today, never future)

    Returns:
        Payment record (status pending, verification pending)

    Raises:
        NotFoundError: invoice missing or deleted
        ValidationError: bad amount/method/date, missing method-specific field
        OverpaymentError: amount exceeds remaining balance
        ConflictError: duplicate transaction_id
    """
    return _create_payment(
        invoice_id,
        user_id=user_id,
        request=PaymentRequest(
            amount_cents=amount_cents,
            payment_method=payment_method,
            payment_date=payment_date or today(),
            bank_name=_clean(bank_name),
            cheque_number=_clean(cheque_number),
            gateway_reference=_clean(gateway_reference),
        ),
        transaction_id=_clean(transaction_id),
        notes=notes,
        auto_verify=False,
    )


def record_gateway_payment(
    invoice_id: int,
    *,
    user_id: int | None,
    amount_cents: int,
    gateway_reference: str,
    transaction_id: str | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Record a confirmed online gateway payment.

    WHY: The gateway has already captured the money, so there is nothing for
    staff to verify; the payment is COMPLETED/VERIFIED on creation. It is
    still refused if it would overpay the invoice.
    """
    return _create_payment(
        invoice_id,
        user_id=user_id,
        request=PaymentRequest(
            amount_cents=amount_cents,
            payment_method=METHOD_ONLINE,
            payment_date=today(),
            gateway_reference=_clean(gateway_reference),
        ),
        transaction_id=_clean(transaction_id),
        notes=notes,
        auto_verify=True,
    )


def _create_payment(
    invoice_id: int,
    *,
    user_id: int | None,
    request: PaymentRequest,
    transaction_id: str | None,
    notes: str | None,
    auto_verify: bool,
) -> Payment:
    def _op() -> Payment:
        invoice = _load_invoice_locked(invoice_id)

        summary = _summarize(invoice)
        validate_payment_request(
            request,
            remaining_balance_cents=summary.remaining_balance_cents,
            invoice_status=invoice.status,
            today=today(),
        )
        _ensure_unique_transaction(transaction_id)

        reference = next_document_number(
            column=Payment.payment_reference,
            prefix=payment_prefix(invoice.branch.code),
        )

        now = utcnow()
        payment = Payment(
            invoice_id=invoice.id,
            payment_reference=reference,
            amount_cents=request.amount_cents,
            payment_method=request.payment_method,
            payment_date=request.payment_date,
            bank_name=request.bank_name,
            cheque_number=request.cheque_number,
            gateway_reference=request.gateway_reference,
            transaction_id=transaction_id,
            notes=_clean(notes),
            received_by_user_id=user_id,
            created_at=now,
        )
        if auto_verify:
            payment.status = STATUS_COMPLETED
            payment.verification_status = VERIFICATION_VERIFIED
            payment.verified_by_user_id = user_id
            payment.verified_at = now

        db.session.add(payment)
        flush_or_conflict(ConflictError("Transaction already recorded"), retry_markers=REFERENCE_MARKERS)

        _refresh_invoice_balance(invoice)

        commit_or_conflict(ConflictError("Transaction already recorded"), retry_markers=REFERENCE_MARKERS)

        logger.info(
            "Payment %s recorded on invoice %s (%s cents, %s, %s)",
            payment.payment_reference, invoice.invoice_number,
            payment.amount_cents, payment.payment_method, payment.status,
        )
        return payment

    return run_with_retry(_op)


# =============================================================================
# PAYMENT EDITS
# =============================================================================

def update_payment(payment_id: int, *, payload: dict) -> Payment:
    """
    Correct a payment that is still awaiting verification.

    The edited values go through the same checks as a new payment, against
    the invoice's current remaining balance (pending payments never count
    toward it, so the payment being edited does not block itself).

    Raises:
        PaymentStateError: payment already verified, rejected or refunded
        ValidationError: unknown field, bad amount/method/date, missing method field
        OverpaymentError: new amount exceeds the remaining balance
    """
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("No changes supplied")
    unknown = sorted(set(payload) - PAYMENT_UPDATE_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(unknown)}", field=unknown[0])

    def _op() -> Payment:
        payment = _load_payment(payment_id)
        invoice = _load_invoice_locked(payment.invoice_id)
        if payment.status != STATUS_PENDING or payment.verification_status != VERIFICATION_PENDING:
            raise PaymentStateError("Cannot update processed payments")

        request = PaymentRequest(
            amount_cents=(
                coerce_int("amount_cents", payload["amount_cents"])
                if "amount_cents" in payload else payment.amount_cents
            ),
            payment_method=payload.get("payment_method", payment.payment_method),
            payment_date=(
                coerce_date("payment_date", payload["payment_date"])
                if payload.get("payment_date") else payment.payment_date
            ),
            bank_name=_clean(payload["bank_name"]) if "bank_name" in payload else payment.bank_name,
            cheque_number=_clean(payload["cheque_number"]) if "cheque_number" in payload else payment.cheque_number,
            gateway_reference=(
                _clean(payload["gateway_reference"])
                if "gateway_reference" in payload else payment.gateway_reference
            ),
        )

        summary = _summarize(invoice)
        validate_payment_request(
            request,
            remaining_balance_cents=summary.remaining_balance_cents,
            invoice_status=invoice.status,
            today=today(),
        )

        payment.amount_cents = request.amount_cents
        payment.payment_method = request.payment_method
        payment.payment_date = request.payment_date
        payment.bank_name = request.bank_name
        payment.cheque_number = request.cheque_number
        payment.gateway_reference = request.gateway_reference
        if "notes" in payload:
            payment.notes = _clean(payload["notes"])

        _refresh_invoice_balance(invoice)
        db.session.commit()

        logger.info(
            "Payment %s updated (%s cents, %s)",
            payment.payment_reference, payment.amount_cents, payment.payment_method,
        )
        return payment

    return run_with_retry(_op)


# =============================================================================
# VERIFICATION
# =============================================================================

def verify_payment(payment_id: int, *, user_id: int | None) -> Payment:
    """
    Verify a pending payment (pending -> verified, status completed).

    Idempotent: verifying an already verified payment returns it unchanged.

    Raises:
        PaymentStateError: payment was rejected
        OverpaymentError: payment no longer fits the remaining balance
    """
    def _op() -> Payment:
        payment = _load_payment(payment_id)
        if not check_verify_transition(payment.verification_status):
            return payment

        invoice = _load_invoice_locked(payment.invoice_id)
        if invoice.status in CLOSED_INVOICE_STATUSES:
            raise ValidationError(f"Cannot verify payments on a {invoice.status} invoice")

        summary = _summarize(invoice)
        try:
            ensure_within_balance(payment.amount_cents, summary.remaining_balance_cents)
        except OverpaymentError:
            logger.warning(
                "Refused to verify payment %s: would overpay invoice %s",
                payment.payment_reference, invoice.invoice_number,
            )
            raise

        payment.status = STATUS_COMPLETED
        payment.verification_status = VERIFICATION_VERIFIED
        payment.verified_by_user_id = user_id
        payment.verified_at = utcnow()

        _refresh_invoice_balance(invoice)
        db.session.commit()

        logger.info("Payment %s verified by user %s", payment.payment_reference, user_id)
        return payment

    return run_with_retry(_op)


def reject_payment(payment_id: int, *, user_id: int | None, reason: str | None) -> Payment:
    """
    Reject a pending payment (pending -> rejected, status failed).

    Rejected payments never count toward the balance.
    """
    def _op() -> Payment:
        payment = _load_payment(payment_id)
        cleaned_reason = check_reject_transition(payment.verification_status, reason)

        invoice = _load_invoice_locked(payment.invoice_id)

        payment.status = STATUS_FAILED
        payment.verification_status = VERIFICATION_REJECTED
        payment.rejection_reason = cleaned_reason
        payment.verified_by_user_id = user_id
        payment.verified_at = utcnow()

        _refresh_invoice_balance(invoice)
        db.session.commit()

        logger.info("Payment %s rejected by user %s: %s", payment.payment_reference, user_id, cleaned_reason)
        return payment

    return run_with_retry(_op)


def refund_payment(payment_id: int, *, user_id: int | None, reason: str | None) -> Payment:
    """
    Refund a completed payment (completed -> refunded).

    The amount leaves total_paid; an invoice whose only payments were
    refunded reads as payment_status "refunded".
    """
    def _op() -> Payment:
        payment = _load_payment(payment_id)
        cleaned_reason = check_refund_transition(payment.status, reason)

        invoice = _load_invoice_locked(payment.invoice_id)

        payment.status = STATUS_REFUNDED
        payment.refund_reason = cleaned_reason
        payment.refunded_by_user_id = user_id
        payment.refunded_at = utcnow()

        _refresh_invoice_balance(invoice)
        db.session.commit()

        logger.info("Payment %s refunded by user %s: %s", payment.payment_reference, user_id, cleaned_reason)
        return payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment_summary(invoice_id: int) -> PaymentSummary:
    invoice = db.session.query(Invoice).filter_by(id=invoice_id).first()
    if not invoice or invoice.is_deleted:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return _summarize(invoice)


def get_invoice_payments(invoice_id: int) -> list[Payment]:
    return (
        db.session.query(Payment)
        .filter_by(invoice_id=invoice_id)
        .order_by(Payment.created_at.asc(), Payment.id.asc())
        .all()
    )


def list_payments(
    *,
    company_id: int,
    verification_status: str | None = None,
    status: str | None = None,
    payment_method: str | None = None,
    branch_id: int | None = None,
    invoice_id: int | None = None,
    page: int = 1,
    per_page: int = 15,
    max_per_page: int = 100,
) -> dict:
    """
    Company-scoped payment listing, paginated.

    verification_status=pending is the verifier's queue and lists oldest
    first; every other listing is newest first.
    """
    if verification_status and verification_status not in VERIFICATION_STATUSES:
        raise ValidationError(
            f"verification_status must be one of {VERIFICATION_STATUSES}", field="verification_status",
        )
    if status and status not in PAYMENT_STATUSES:
        raise ValidationError(f"status must be one of {PAYMENT_STATUSES}", field="status")

    query = (
        db.session.query(Payment)
        .join(Invoice, Invoice.id == Payment.invoice_id)
        .filter(Invoice.company_id == company_id, Invoice.deleted_at.is_(None))
    )
    if verification_status:
        query = query.filter(Payment.verification_status == verification_status)
    if status:
        query = query.filter(Payment.status == status)
    if payment_method:
        query = query.filter(Payment.payment_method == payment_method)
    if branch_id:
        query = query.filter(Invoice.branch_id == branch_id)
    if invoice_id:
        query = query.filter(Payment.invoice_id == invoice_id)

    if verification_status == VERIFICATION_PENDING:
        query = query.order_by(Payment.created_at.asc(), Payment.id.asc())
    else:
        query = query.order_by(Payment.created_at.desc(), Payment.id.desc())

    per_page = max(1, min(per_page or 15, max_per_page))
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    payments = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [dict(p.to_dict(), invoice_number=p.invoice.invoice_number) for p in payments],
        "count": len(payments),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
