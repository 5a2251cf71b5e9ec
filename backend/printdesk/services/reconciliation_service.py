# Overview: Pure payment reconciliation (balance summary, status derivation, request and transition checks).

"""
Payment Reconciliation

WHY: Invoices are paid in several instalments (deposit, balance, cheque that
later bounces). The balance, the invoice payment_status and the acceptance of
a new payment must all be computed the same way, from the same rules.

DESIGN PRINCIPLES:
- Pure functions over plain values; payment_service feeds them ORM rows.
- Only COMPLETED payments count toward total_paid.
- PENDING payments are tracked separately (pending_amount), never counted.
- Remaining balance is kept signed; a negative value means overpaid, which
  is an error condition surfaced in the summary, never silently clamped.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable

from ..money import DEFAULT_CURRENCY_PREFIX, format_currency
from ..validation import ValidationError, ConflictError, enforce_amount_range


class OverpaymentError(ValidationError):
    """Payment amount exceeds the invoice's remaining balance."""


class PaymentStateError(ConflictError):
    """Transition out of a terminal verification state."""


# =============================================================================
# CONSTANTS
# =============================================================================

METHOD_CASH = "cash"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CHEQUE = "cheque"
METHOD_ONLINE = "online"

VALID_PAYMENT_METHODS = [METHOD_CASH, METHOD_BANK_TRANSFER, METHOD_CHEQUE, METHOD_ONLINE]

# Fields each method must carry
METHOD_REQUIRED_FIELDS = {
    METHOD_CASH: (),
    METHOD_BANK_TRANSFER: ("bank_name",),
    METHOD_CHEQUE: ("bank_name", "cheque_number"),
    METHOD_ONLINE: ("gateway_reference",),
}

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_REFUNDED = "refunded"

VERIFICATION_PENDING = "pending"
VERIFICATION_VERIFIED = "verified"
VERIFICATION_REJECTED = "rejected"

TERMINAL_VERIFICATION_STATES = {VERIFICATION_VERIFIED, VERIFICATION_REJECTED}

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partially_paid"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_REFUNDED = "refunded"

# Invoice statuses that accept no further payments
CLOSED_INVOICE_STATUSES = {"cancelled"}


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class PaymentRecord:
    """The slice of a payment the reconciliation rules look at."""
    amount_cents: int
    status: str
    verification_status: str = VERIFICATION_PENDING

    @classmethod
    def from_model(cls, payment) -> "PaymentRecord":
        return cls(
            amount_cents=payment.amount_cents,
            status=payment.status,
            verification_status=payment.verification_status,
        )


@dataclass(frozen=True)
class PaymentSummary:
    total_amount_cents: int
    total_paid_cents: int
    pending_amount_cents: int
    remaining_balance_cents: int
    payment_count: int
    payment_status: str

    @property
    def display_remaining_cents(self) -> int:
        return max(0, self.remaining_balance_cents)

    @property
    def is_overpaid(self) -> bool:
        return self.remaining_balance_cents < 0

    @property
    def is_fully_paid(self) -> bool:
        return self.remaining_balance_cents <= 0

    def to_dict(self, currency_prefix: str = DEFAULT_CURRENCY_PREFIX) -> dict:
        return {
            "total_amount_cents": self.total_amount_cents,
            "total_paid_cents": self.total_paid_cents,
            "pending_amount_cents": self.pending_amount_cents,
            "remaining_balance_cents": self.display_remaining_cents,
            "signed_remaining_cents": self.remaining_balance_cents,
            "is_overpaid": self.is_overpaid,
            "is_fully_paid": self.is_fully_paid,
            "payment_count": self.payment_count,
            "payment_status": self.payment_status,
            "formatted": {
                "total_amount": format_currency(self.total_amount_cents, currency_prefix),
                "total_paid": format_currency(self.total_paid_cents, currency_prefix),
                "pending_amount": format_currency(self.pending_amount_cents, currency_prefix),
                "remaining_balance": format_currency(self.display_remaining_cents, currency_prefix),
            },
        }


@dataclass(frozen=True)
class PaymentRequest:
    amount_cents: int
    payment_method: str
    payment_date: date
    bank_name: str | None = None
    cheque_number: str | None = None
    gateway_reference: str | None = None


# =============================================================================
# SUMMARY AND STATUS
# =============================================================================

def derive_payment_status(total_amount_cents: int, total_paid_cents: int, any_refunded: bool = False) -> str:
    """
    Invoice payment_status, checked in this order:

    1. paid            remaining <= 0
    2. partially_paid  0 < paid < total
    3. refunded        nothing paid and at least one payment was refunded
    4. pending         nothing paid
    """
    if total_amount_cents - total_paid_cents <= 0:
        return PAYMENT_STATUS_PAID
    if total_paid_cents > 0:
        return PAYMENT_STATUS_PARTIAL
    if any_refunded:
        return PAYMENT_STATUS_REFUNDED
    return PAYMENT_STATUS_PENDING


def summarize_payments(total_amount_cents: int, payments: Iterable[PaymentRecord]) -> PaymentSummary:
    payments = list(payments)

    total_paid = sum(p.amount_cents for p in payments if p.status == STATUS_COMPLETED)
    pending = sum(
        p.amount_cents
        for p in payments
        if p.status == STATUS_PENDING and p.verification_status == VERIFICATION_PENDING
    )
    any_refunded = any(p.status == STATUS_REFUNDED for p in payments)

    return PaymentSummary(
        total_amount_cents=total_amount_cents,
        total_paid_cents=total_paid,
        pending_amount_cents=pending,
        remaining_balance_cents=total_amount_cents - total_paid,
        payment_count=len(payments),
        payment_status=derive_payment_status(total_amount_cents, total_paid, any_refunded),
    )


# =============================================================================
# PAYMENT REQUEST VALIDATION
# =============================================================================

def ensure_within_balance(amount_cents: int, remaining_balance_cents: int) -> None:
    if amount_cents > remaining_balance_cents:
        raise OverpaymentError(
            f"Payment amount ({format_currency(amount_cents)}) exceeds remaining balance "
            f"({format_currency(max(0, remaining_balance_cents))})",
            field="amount_cents",
        )


def validate_payment_request(
    request: PaymentRequest,
    *,
    remaining_balance_cents: int,
    invoice_status: str,
    today: date,
) -> None:
    """
    Reject a payment before it is recorded.

    Raises:
        ValidationError: bad amount, method, date or missing method fields
        OverpaymentError: amount larger than the remaining balance
    """
    if invoice_status in CLOSED_INVOICE_STATUSES:
        raise ValidationError(f"Cannot record payments on a {invoice_status} invoice")

    enforce_amount_range("amount_cents", request.amount_cents, allow_zero=False)

    if request.payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {request.payment_method}. Must be one of {VALID_PAYMENT_METHODS}",
            field="payment_method",
        )

    for field in METHOD_REQUIRED_FIELDS[request.payment_method]:
        value = getattr(request, field)
        if value is None or not str(value).strip():
            raise ValidationError(f"{field} is required for {request.payment_method} payments", field=field)

    if request.payment_date > today:
        raise ValidationError("payment_date cannot be in the future", field="payment_date")

    if remaining_balance_cents <= 0:
        raise OverpaymentError("Invoice has no remaining balance due", field="amount_cents")

    ensure_within_balance(request.amount_cents, remaining_balance_cents)


# =============================================================================
# VERIFICATION STATE MACHINE
# =============================================================================

def check_verify_transition(verification_status: str) -> bool:
    """
    Returns True when the payment must be verified now, False when it
    already is (idempotent no-op).
    """
    if verification_status == VERIFICATION_VERIFIED:
        return False
    if verification_status == VERIFICATION_REJECTED:
        raise PaymentStateError("Payment has already been rejected")
    return True


def check_reject_transition(verification_status: str, reason: str | None) -> str:
    """Validate a rejection and return the cleaned reason."""
    if verification_status in TERMINAL_VERIFICATION_STATES:
        raise PaymentStateError(f"Payment has already been {verification_status}")
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("A rejection reason is required", field="reason")
    return cleaned


def check_refund_transition(status: str, reason: str | None) -> str:
    """Only completed payments can be refunded; a reason is required."""
    if status != STATUS_COMPLETED:
        raise PaymentStateError(f"Only completed payments can be refunded (status is {status})")
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("A refund reason is required", field="reason")
    return cleaned
