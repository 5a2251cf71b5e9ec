# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/printdesk/routes/payments.py
"""
Payment API Routes

DESIGN:
- Record payments (pending until verified)
- Record online gateway payments (verified on creation)
- Correct pending payments before verification
- List payments, including the pending verification queue
- Verify / reject pending payments, refund completed ones
- Payment summary: total paid, pending, remaining balance

SECURITY:
- create_payment required for recording payments
- verify_payment required for verify/reject
- refund_payment required for refunds
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import Invoice, Payment
from ..money import parse_amount
from ..services import invoice_service, payment_service
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_date, coerce_int
from ..decorators import require_auth, require_permission
from ..permissions import CREATE_PAYMENT, VERIFY_PAYMENT, REFUND_PAYMENT, VIEW_INVOICES


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _amount_cents(data: dict) -> int:
    """amount_cents (integer) wins; otherwise parse a display amount like "1,250.00"."""
    if data.get("amount_cents") is not None:
        return coerce_int("amount_cents", data["amount_cents"])
    if data.get("amount") is not None:
        return parse_amount(data["amount"])
    raise ValidationError("amount_cents is required", field="amount_cents")


def _get_payment_for_company(payment_id: int) -> Payment:
    payment = (
        db.session.query(Payment)
        .join(Invoice, Invoice.id == Payment.invoice_id)
        .filter(Payment.id == payment_id, Invoice.company_id == g.company_id)
        .first()
    )
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def _payment_response(payment: Payment) -> dict:
    return {
        "payment": payment.to_dict(),
        "summary": payment_service.get_payment_summary(payment.invoice_id).to_dict(
            current_app.config["CURRENCY_PREFIX"]
        ),
    }


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("/")
@require_auth
@require_permission(CREATE_PAYMENT)
def record_payment_route():
    """
    Record a payment against an invoice.

    Request body:
    {
        "invoice_id": 12,
        "amount_cents": 150000,         (or "amount": "1,500.00")
        "payment_method": "cheque",     (cash, bank_transfer, cheque, online)
        "payment_date": "2026-10-16",   (optional, not in the future)
        "bank_name": "...",             (bank_transfer, cheque)
        "cheque_number": "...",         (cheque)
        "gateway_reference": "...",     (online)
        "transaction_id": "...",        (optional, unique)
        "notes": "..."                  (optional)
    }

    Returns:
        201: Payment recorded (pending verification)
        400: Invalid input or amount exceeds remaining balance
        404: Invoice not found
        409: Duplicate transaction
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("invoice_id") or not data.get("payment_method"):
            return jsonify({"error": "invoice_id and payment_method required"}), 400

        invoice = invoice_service.get_invoice(coerce_int("invoice_id", data["invoice_id"]), g.company_id)

        payment = payment_service.record_payment(
            invoice.id,
            user_id=g.current_user.id,
            amount_cents=_amount_cents(data),
            payment_method=data["payment_method"],
            payment_date=coerce_date("payment_date", data["payment_date"]) if data.get("payment_date") else None,
            bank_name=data.get("bank_name"),
            cheque_number=data.get("cheque_number"),
            gateway_reference=data.get("gateway_reference"),
            transaction_id=data.get("transaction_id"),
            notes=data.get("notes"),
        )
        return jsonify(_payment_response(payment)), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/gateway")
@require_auth
@require_permission(CREATE_PAYMENT)
def record_gateway_payment_route():
    """
    Record a payment already captured by the online gateway.

    Request body: {"invoice_id": 12, "amount_cents": 5000, "gateway_reference": "...", "transaction_id": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("invoice_id"):
            return jsonify({"error": "invoice_id required"}), 400

        invoice = invoice_service.get_invoice(coerce_int("invoice_id", data["invoice_id"]), g.company_id)

        payment = payment_service.record_gateway_payment(
            invoice.id,
            user_id=g.current_user.id,
            amount_cents=_amount_cents(data),
            gateway_reference=data.get("gateway_reference"),
            transaction_id=data.get("transaction_id"),
            notes=data.get("notes"),
        )
        return jsonify(_payment_response(payment)), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to record gateway payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.patch("/<int:payment_id>")
@require_auth
@require_permission(CREATE_PAYMENT)
def update_payment_route(payment_id: int):
    """
    Correct a payment that has not been verified yet.

    Request body: any of amount_cents (or amount), payment_method,
    payment_date, bank_name, cheque_number, gateway_reference, notes

    Returns:
        200: Payment updated
        400: Invalid input or amount exceeds remaining balance
        409: Payment already processed
    """
    try:
        data = request.get_json(silent=True) or {}
        if "amount" in data and "amount_cents" not in data:
            data = dict(data)
            data["amount_cents"] = parse_amount(data.pop("amount"))

        payment = _get_payment_for_company(payment_id)
        payment = payment_service.update_payment(payment.id, payload=data)
        return jsonify(_payment_response(payment))

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/")
@require_auth
@require_permission(VIEW_INVOICES)
def list_payments_route():
    """
    Query params: verification_status, status, payment_method, branch_id,
    invoice_id, page, per_page

    verification_status=pending is the verification queue (oldest first).
    """
    try:
        result = payment_service.list_payments(
            company_id=g.company_id,
            verification_status=request.args.get("verification_status"),
            status=request.args.get("status"),
            payment_method=request.args.get("payment_method"),
            branch_id=request.args.get("branch_id", type=int),
            invoice_id=request.args.get("invoice_id", type=int),
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", current_app.config["DEFAULT_PAGE_SIZE"], type=int),
            max_per_page=current_app.config["MAX_PAGE_SIZE"],
        )
        return jsonify(result)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/invoices/<int:invoice_id>")
@require_auth
@require_permission(VIEW_INVOICES)
def get_invoice_payments_route(invoice_id: int):
    """
    Payments for an invoice plus the reconciliation summary:
    total paid, pending amount, remaining balance, payment status.
    """
    try:
        invoice = invoice_service.get_invoice(invoice_id, g.company_id)
        payments = payment_service.get_invoice_payments(invoice.id)
        summary = payment_service.get_payment_summary(invoice.id)
        return jsonify({
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "payments": [p.to_dict() for p in payments],
            "summary": summary.to_dict(current_app.config["CURRENCY_PREFIX"]),
        })
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load invoice payments")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# VERIFICATION AND REFUNDS
# =============================================================================

@payments_bp.post("/<int:payment_id>/verify")
@require_auth
@require_permission(VERIFY_PAYMENT)
def verify_payment_route(payment_id: int):
    """
    Returns:
        200: Payment verified (or already verified)
        400: Payment would overpay the invoice
        409: Payment already rejected
    """
    try:
        payment = _get_payment_for_company(payment_id)
        payment = payment_service.verify_payment(payment.id, user_id=g.current_user.id)
        return jsonify(_payment_response(payment))
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/reject")
@require_auth
@require_permission(VERIFY_PAYMENT)
def reject_payment_route(payment_id: int):
    """Request body: {"reason": "Cheque bounced"}"""
    try:
        data = request.get_json(silent=True) or {}
        payment = _get_payment_for_company(payment_id)
        payment = payment_service.reject_payment(payment.id, user_id=g.current_user.id, reason=data.get("reason"))
        return jsonify(_payment_response(payment))
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to reject payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/refund")
@require_auth
@require_permission(REFUND_PAYMENT)
def refund_payment_route(payment_id: int):
    """Request body: {"reason": "Order cancelled"}"""
    try:
        data = request.get_json(silent=True) or {}
        payment = _get_payment_for_company(payment_id)
        payment = payment_service.refund_payment(payment.id, user_id=g.current_user.id, reason=data.get("reason"))
        return jsonify(_payment_response(payment))
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return jsonify({"error": "Internal server error"}), 500
