# Overview: Flask API routes for invoices operations; parses input and returns JSON responses.

# backend/printdesk/routes/invoices.py
"""
Invoice API Routes

DESIGN:
- Create, edit, duplicate and soft-delete invoices
- Add, edit and remove invoice items (totals re-priced on every change)
- Quote: price a prospective invoice without saving it
- All lookups scoped to the caller's company

SECURITY:
- view_invoices required for reads
- edit_invoice required for every mutation
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import invoice_service, payment_service
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int
from ..decorators import require_auth, require_permission
from ..permissions import VIEW_INVOICES, EDIT_INVOICE
from ..money import format_currency, format_weight


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _invoice_detail(invoice) -> dict:
    data = invoice.to_dict(include_items=True)
    prefix = current_app.config.get("CURRENCY_PREFIX", "Rs.")
    data["formatted"] = {
        "subtotal": format_currency(invoice.subtotal_cents, prefix),
        "weight_charge": format_currency(invoice.weight_charge_cents, prefix),
        "tax_amount": format_currency(invoice.tax_amount_cents, prefix),
        "discount_amount": format_currency(invoice.discount_amount_cents, prefix),
        "total_amount": format_currency(invoice.total_amount_cents, prefix),
        "total_weight": format_weight(invoice.total_weight_grams),
    }
    data["can_be_modified"] = invoice_service.can_be_modified(invoice)
    data["payment_summary"] = payment_service.get_payment_summary(invoice.id).to_dict(prefix)
    data["print_job"] = invoice.print_job.to_dict() if invoice.print_job else None
    return data


# =============================================================================
# INVOICES
# =============================================================================

@invoices_bp.get("/")
@require_auth
@require_permission(VIEW_INVOICES)
def list_invoices_route():
    """
    Query params: status, payment_status, branch_id, customer_id, search,
    page, per_page
    """
    try:
        result = invoice_service.list_invoices(
            company_id=g.company_id,
            status=request.args.get("status"),
            payment_status=request.args.get("payment_status"),
            branch_id=request.args.get("branch_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            search=(request.args.get("search") or "").strip() or None,
            page=request.args.get("page", 1, type=int),
            per_page=request.args.get("per_page", current_app.config["DEFAULT_PAGE_SIZE"], type=int),
            max_per_page=current_app.config["MAX_PAGE_SIZE"],
        )
        return jsonify(result)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/")
@require_auth
@require_permission(EDIT_INVOICE)
def create_invoice_route():
    """
    Create an invoice.

    Request body:
    {
        "customer_id": 3,
        "branch_id": 1,               (optional, defaults to the user's branch)
        "items": [
            {"product_id": 7, "quantity": 2},
            {"item_description": "Die cutting", "quantity": 1, "unit_price_cents": 5000}
        ],
        "discount_amount_cents": 2000, (optional)
        "invoice_date": "2026-10-16",  (optional)
        "due_date": "2026-11-15",      (optional)
        "notes": "...",                (optional)
        "status": "draft"              (optional, draft or pending)
    }

    Returns:
        201: Invoice created
        400: Invalid input
        404: Branch, customer or product not found
    """
    try:
        data = request.get_json(silent=True) or {}

        branch_id = data.get("branch_id") or g.current_user.branch_id
        if not branch_id or not data.get("customer_id"):
            return jsonify({"error": "customer_id and branch_id required"}), 400

        invoice = invoice_service.create_invoice(
            company_id=g.company_id,
            branch_id=coerce_int("branch_id", branch_id),
            customer_id=coerce_int("customer_id", data.get("customer_id")),
            user_id=g.current_user.id,
            items=data.get("items") or [],
            discount_amount_cents=data.get("discount_amount_cents") or 0,
            invoice_date=data.get("invoice_date"),
            due_date=data.get("due_date"),
            notes=data.get("notes"),
            status=data.get("status") or "draft",
            due_days=current_app.config["INVOICE_DUE_DAYS"],
        )
        return jsonify({"invoice": _invoice_detail(invoice)}), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/quote")
@require_auth
@require_permission(VIEW_INVOICES)
def quote_route():
    """
    Price items without creating an invoice.

    Request body: {"items": [...], "discount_amount_cents": 0}
    """
    try:
        data = request.get_json(silent=True) or {}
        totals = invoice_service.quote(
            company_id=g.company_id,
            items=data.get("items") or [],
            discount_amount_cents=data.get("discount_amount_cents") or 0,
        )
        result = totals.to_dict()
        result["formatted_total"] = format_currency(totals.total_amount_cents, current_app.config["CURRENCY_PREFIX"])
        return jsonify({"quote": result})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to quote invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_permission(VIEW_INVOICES)
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id, g.company_id)
        return jsonify({"invoice": _invoice_detail(invoice)})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>")
@require_auth
@require_permission(EDIT_INVOICE)
def update_invoice_route(invoice_id: int):
    """
    Patchable: discount_amount_cents, notes, invoice_date, due_date, status,
    items (full replacement).

    Returns:
        200: Updated invoice
        400: Invalid input
        409: Invoice can no longer be modified
    """
    try:
        data = request.get_json(silent=True)
        invoice = invoice_service.update_invoice(invoice_id, company_id=g.company_id, payload=data)
        return jsonify({"invoice": _invoice_detail(invoice)})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_permission(EDIT_INVOICE)
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id, company_id=g.company_id)
        return jsonify({"message": "Invoice deleted"})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/duplicate")
@require_auth
@require_permission(EDIT_INVOICE)
def duplicate_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.duplicate_invoice(
            invoice_id,
            company_id=g.company_id,
            user_id=g.current_user.id,
            due_days=current_app.config["INVOICE_DUE_DAYS"],
        )
        return jsonify({"invoice": _invoice_detail(invoice)}), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to duplicate invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/recalculate")
@require_auth
@require_permission(EDIT_INVOICE)
def recalculate_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.recalculate_totals(invoice_id, company_id=g.company_id)
        return jsonify({"invoice": _invoice_detail(invoice)})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to recalculate invoice")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEMS
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/items")
@require_auth
@require_permission(EDIT_INVOICE)
def add_item_route(invoice_id: int):
    """
    Request body: {"product_id": 7, "quantity": 2} or a custom line with
    item_description and unit_price_cents.
    """
    try:
        data = request.get_json(silent=True) or {}
        item = invoice_service.add_item(invoice_id, company_id=g.company_id, payload=data)
        return jsonify({"item": item.to_dict(), "invoice": _invoice_detail(item.invoice)}), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to add invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>/items/<int:item_id>")
@require_auth
@require_permission(EDIT_INVOICE)
def update_item_route(invoice_id: int, item_id: int):
    try:
        data = request.get_json(silent=True) or {}
        item = invoice_service.update_item(invoice_id, item_id, company_id=g.company_id, payload=data)
        return jsonify({"item": item.to_dict(), "invoice": _invoice_detail(item.invoice)})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>/items/<int:item_id>")
@require_auth
@require_permission(EDIT_INVOICE)
def remove_item_route(invoice_id: int, item_id: int):
    try:
        invoice = invoice_service.remove_item(invoice_id, item_id, company_id=g.company_id)
        return jsonify({"invoice": _invoice_detail(invoice)})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to remove invoice item")
        return jsonify({"error": "Internal server error"}), 500
