"""
Payment reconciliation rules.

Pure functions: balance summary, payment_status derivation, request
validation and the verification state machine.
"""

from datetime import date

import pytest

from printdesk.services.reconciliation_service import (
    OverpaymentError,
    PaymentRecord,
    PaymentRequest,
    PaymentStateError,
    check_refund_transition,
    check_reject_transition,
    check_verify_transition,
    derive_payment_status,
    summarize_payments,
    validate_payment_request,
)
from printdesk.validation import ConflictError, ValidationError


TODAY = date(2026, 10, 16)


def _request(**overrides):
    values = {
        "amount_cents": 10_000,
        "payment_method": "cash",
        "payment_date": TODAY,
    }
    values.update(overrides)
    return PaymentRequest(**values)


def _validate(request, remaining=53_000, invoice_status="pending"):
    validate_payment_request(
        request,
        remaining_balance_cents=remaining,
        invoice_status=invoice_status,
        today=TODAY,
    )


# =============================================================================
# SUMMARY
# =============================================================================

class TestSummary:

    def test_only_completed_payments_count(self):
        summary = summarize_payments(30_000, [
            PaymentRecord(10_000, "completed", "verified"),
            PaymentRecord(5_000, "pending", "pending"),
            PaymentRecord(3_000, "failed", "rejected"),
            PaymentRecord(2_000, "refunded", "verified"),
        ])
        assert summary.total_paid_cents == 10_000
        assert summary.pending_amount_cents == 5_000
        assert summary.remaining_balance_cents == 20_000
        assert summary.payment_count == 4
        assert summary.payment_status == "partially_paid"

    def test_overpaid_is_flagged_not_clamped(self):
        summary = summarize_payments(10_000, [PaymentRecord(12_000, "completed", "verified")])
        assert summary.remaining_balance_cents == -2_000
        assert summary.display_remaining_cents == 0
        assert summary.is_overpaid is True
        data = summary.to_dict()
        assert data["remaining_balance_cents"] == 0
        assert data["signed_remaining_cents"] == -2_000

    def test_empty_summary(self):
        summary = summarize_payments(53_000, [])
        assert summary.payment_status == "pending"
        assert summary.to_dict()["formatted"]["remaining_balance"] == "Rs. 530.00"

    @pytest.mark.parametrize("total,paid,refunded,expected", [
        (100, 100, False, "paid"),
        (100, 150, False, "paid"),
        (100, 50, False, "partially_paid"),
        (100, 50, True, "partially_paid"),
        (100, 0, True, "refunded"),
        (100, 0, False, "pending"),
        (0, 0, False, "paid"),
    ])
    def test_derive_status(self, total, paid, refunded, expected):
        assert derive_payment_status(total, paid, refunded) == expected


# =============================================================================
# REQUEST VALIDATION
# =============================================================================

class TestPaymentRequest:

    def test_valid_cash_payment(self):
        _validate(_request())

    def test_full_balance_allowed(self):
        _validate(_request(amount_cents=53_000))

    def test_overpayment_rejected(self):
        with pytest.raises(OverpaymentError) as exc:
            _validate(_request(amount_cents=53_001))
        assert "exceeds remaining balance" in str(exc.value)

    def test_no_balance_due(self):
        with pytest.raises(OverpaymentError) as exc:
            _validate(_request(amount_cents=1), remaining=0)
        assert "no remaining balance" in str(exc.value)

    def test_overpayment_is_validation_error(self):
        assert issubclass(OverpaymentError, ValidationError)

    @pytest.mark.parametrize("amount", [0, -500])
    def test_non_positive_amount(self, amount):
        with pytest.raises(ValidationError) as exc:
            _validate(_request(amount_cents=amount))
        assert exc.value.field == "amount_cents"

    def test_unknown_method(self):
        with pytest.raises(ValidationError) as exc:
            _validate(_request(payment_method="crypto"))
        assert exc.value.field == "payment_method"

    @pytest.mark.parametrize("method,extra,missing", [
        ("bank_transfer", {}, "bank_name"),
        ("cheque", {"bank_name": "BOC"}, "cheque_number"),
        ("cheque", {"cheque_number": "000123"}, "bank_name"),
        ("online", {}, "gateway_reference"),
        ("online", {"gateway_reference": "   "}, "gateway_reference"),
    ])
    def test_method_fields_required(self, method, extra, missing):
        with pytest.raises(ValidationError) as exc:
            _validate(_request(payment_method=method, **extra))
        assert str(exc.value) == f"{missing} is required for {method} payments"

    def test_cheque_with_details(self):
        _validate(_request(payment_method="cheque", bank_name="BOC", cheque_number="000123"))

    def test_future_date_rejected(self):
        with pytest.raises(ValidationError) as exc:
            _validate(_request(payment_date=date(2026, 10, 17)))
        assert exc.value.field == "payment_date"

    def test_cancelled_invoice_rejected(self):
        with pytest.raises(ValidationError):
            _validate(_request(), invoice_status="cancelled")


# =============================================================================
# VERIFICATION STATE MACHINE
# =============================================================================

class TestTransitions:

    def test_verify_pending(self):
        assert check_verify_transition("pending") is True

    def test_verify_is_idempotent(self):
        assert check_verify_transition("verified") is False

    def test_verify_rejected_fails(self):
        with pytest.raises(PaymentStateError):
            check_verify_transition("rejected")

    def test_state_error_is_conflict(self):
        assert issubclass(PaymentStateError, ConflictError)

    @pytest.mark.parametrize("state", ["verified", "rejected"])
    def test_reject_terminal_fails(self, state):
        with pytest.raises(PaymentStateError):
            check_reject_transition(state, "bounced")

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reject_requires_reason(self, reason):
        with pytest.raises(ValidationError):
            check_reject_transition("pending", reason)

    def test_reject_returns_clean_reason(self):
        assert check_reject_transition("pending", "  cheque bounced ") == "cheque bounced"

    @pytest.mark.parametrize("status", ["pending", "failed", "refunded"])
    def test_refund_requires_completed(self, status):
        with pytest.raises(PaymentStateError):
            check_refund_transition(status, "customer cancelled")

    def test_refund_requires_reason(self):
        with pytest.raises(ValidationError):
            check_refund_transition("completed", "")
