# Overview: Service-layer operations for invoices and invoice items; encapsulates business logic and database work.

"""
Invoice Service

WHY: Invoices are the priced documents payments reconcile against and print
jobs are created from. This module owns their lifecycle: creation, item
edits, discount changes, duplication and soft deletion.

DESIGN PRINCIPLES:
- Stored totals are only ever written by _reprice(), which delegates all
  arithmetic to pricing_service.
- Items snapshot the product's price, weight and tax rate when added.
- An invoice can be edited only while it is draft/pending AND has no
  payments; after the first payment the priced document is frozen.
- Company scoping: every lookup is filtered by company_id.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable

from sqlalchemy import or_

from ..extensions import db
from ..models import Branch, Customer, Invoice, InvoiceItem, Product
from ..models.invoices import INVOICE_STATUSES, INVOICE_PAYMENT_STATUSES
from printdesk.time_utils import utcnow, today
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_date,
    coerce_int,
    enforce_rules_invoice,
)
from .concurrency import lock_for_update, run_with_retry, commit_or_conflict
from .document_service import next_document_number, invoice_prefix
from .pricing_service import InvoiceTotals, LineInput, calculate_invoice_totals
from .reconciliation_service import derive_payment_status
from .weight_tier_service import get_active_tier_rules


MODIFIABLE_STATUSES = {"draft", "pending"}
DELETABLE_STATUSES = {"draft"}
DEFAULT_DUE_DAYS = 30

# Unique-violation text that identifies an invoice_number race
INVOICE_NUMBER_MARKERS = ("invoice_number", "uq_invoices_branch_number")

ITEM_FIELDS = {"product_id", "item_description", "quantity", "unit_price_cents", "unit_weight_grams", "tax_rate_bps"}
INVOICE_UPDATE_FIELDS = {"discount_amount_cents", "notes", "invoice_date", "due_date", "status", "items"}


# =============================================================================
# LOOKUPS
# =============================================================================

def get_invoice(invoice_id: int, company_id: int) -> Invoice:
    invoice = (
        db.session.query(Invoice)
        .filter(Invoice.id == invoice_id, Invoice.company_id == company_id, Invoice.deleted_at.is_(None))
        .first()
    )
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _get_invoice_locked(invoice_id: int, company_id: int) -> Invoice:
    invoice = lock_for_update(
        db.session.query(Invoice).filter(
            Invoice.id == invoice_id,
            Invoice.company_id == company_id,
            Invoice.deleted_at.is_(None),
        )
    ).first()
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _get_item(invoice: Invoice, item_id: int) -> InvoiceItem:
    for item in invoice.items:
        if item.id == item_id:
            return item
    raise NotFoundError(f"Item {item_id} not found on invoice {invoice.invoice_number}")


def can_be_modified(invoice: Invoice) -> bool:
    return invoice.status in MODIFIABLE_STATUSES and not invoice.payments


def _require_modifiable(invoice: Invoice) -> None:
    if invoice.status not in MODIFIABLE_STATUSES:
        raise ConflictError(f"Invoice {invoice.invoice_number} is {invoice.status} and can no longer be modified")
    if invoice.payments:
        raise ConflictError(f"Invoice {invoice.invoice_number} has payments and can no longer be modified")


# =============================================================================
# ITEM BUILDING
# =============================================================================

def _load_product(product_id: int, company_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, company_id=company_id).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product.name} is inactive", field="product_id")
    return product


def _item_values(company_id: int, raw: dict, existing: InvoiceItem | None = None) -> dict:
    """
    Normalize an item payload into column values.

    Missing price/weight/tax default to the product (new items) or to the
    item's current snapshot (edits).
    """
    if not isinstance(raw, dict):
        raise ValidationError("Each item must be an object")
    unknown = sorted(set(raw) - ITEM_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}", field=unknown[0])

    values: dict = {}
    product = None

    if raw.get("product_id") is not None:
        product = _load_product(coerce_int("product_id", raw["product_id"]), company_id)
        values["product_id"] = product.id
        values["item_description"] = product.name
        values["unit_price_cents"] = product.base_price_cents
        values["unit_weight_grams"] = product.weight_per_unit_grams
        values["tax_rate_bps"] = product.tax_rate_bps
    elif existing is None:
        values["product_id"] = None
        values["unit_weight_grams"] = 0
        values["tax_rate_bps"] = 0

    for key in ("quantity", "unit_price_cents", "unit_weight_grams", "tax_rate_bps"):
        if raw.get(key) is not None:
            values[key] = coerce_int(key, raw[key])

    if "item_description" in raw:
        description = (raw.get("item_description") or "").strip()
        if description:
            values["item_description"] = description[:255]

    if existing is None:
        if "quantity" not in values:
            raise ValidationError("quantity is required", field="quantity")
        if "unit_price_cents" not in values:
            raise ValidationError("unit_price_cents is required for items without a product", field="unit_price_cents")
        if not values.get("item_description"):
            raise ValidationError("item_description is required for items without a product", field="item_description")

    return values


def _line_input(values: dict) -> LineInput:
    return LineInput(
        quantity=values["quantity"],
        unit_price_cents=values["unit_price_cents"],
        unit_weight_grams=values.get("unit_weight_grams", 0),
        tax_rate_bps=values.get("tax_rate_bps", 0),
    )


def _item_line(item: InvoiceItem) -> LineInput:
    return LineInput(
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        unit_weight_grams=item.unit_weight_grams,
        tax_rate_bps=item.tax_rate_bps,
    )


def _add_items(invoice: Invoice, raw_items: Iterable[dict]) -> None:
    for raw in raw_items:
        values = _item_values(invoice.company_id, raw)
        # Validate the line before it joins the invoice
        calculate_invoice_totals([_line_input(values)])
        invoice.items.append(InvoiceItem(**values, line_total_cents=0, created_at=utcnow()))


# =============================================================================
# PRICING
# =============================================================================

def _reprice(invoice: Invoice) -> InvoiceTotals:
    """Write line and invoice totals from the pricing engine."""
    totals = calculate_invoice_totals(
        [_item_line(item) for item in invoice.items],
        discount_amount_cents=invoice.discount_amount_cents or 0,
        tiers=get_active_tier_rules(invoice.company_id),
    )

    for item, priced in zip(invoice.items, totals.lines):
        item.line_total_cents = priced.line_total_cents
        item.line_weight_grams = priced.line_weight_grams
        item.tax_amount_cents = priced.tax_amount_cents

    invoice.subtotal_cents = totals.subtotal_cents
    invoice.total_weight_grams = totals.total_weight_grams
    invoice.weight_charge_cents = totals.weight_charge_cents
    invoice.tax_amount_cents = totals.tax_amount_cents
    invoice.total_amount_cents = totals.total_amount_cents
    # Only payment-free invoices are repriced, so nothing has been paid yet
    invoice.payment_status = derive_payment_status(totals.total_amount_cents, invoice.total_paid_cents or 0)
    invoice.updated_at = utcnow()
    return totals


def quote(*, company_id: int, items: list[dict], discount_amount_cents=0) -> InvoiceTotals:
    """Price a prospective invoice without saving anything."""
    if not isinstance(items, list):
        raise ValidationError("items must be a list", field="items")
    lines = [_line_input(_item_values(company_id, raw)) for raw in items]
    return calculate_invoice_totals(
        lines,
        discount_amount_cents=coerce_int("discount_amount_cents", discount_amount_cents or 0),
        tiers=get_active_tier_rules(company_id),
    )


def recalculate_totals(invoice_id: int, *, company_id: int) -> Invoice:
    """
    Re-price an editable invoice, e.g. after the company's weight tiers changed.

    Invoices with payments keep the totals they were paid against.
    """
    def _op() -> Invoice:
        invoice = _get_invoice_locked(invoice_id, company_id)
        _require_modifiable(invoice)
        _reprice(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# INVOICE LIFECYCLE
# =============================================================================

def create_invoice(
    *,
    company_id: int,
    branch_id: int,
    customer_id: int,
    user_id: int | None,
    items: list[dict] | None = None,
    discount_amount_cents: int = 0,
    invoice_date=None,
    due_date=None,
    notes: str | None = None,
    status: str = "draft",
    due_days: int = DEFAULT_DUE_DAYS,
) -> Invoice:
    """
    Create and price a new invoice.

    Raises:
        NotFoundError: branch, customer or product outside the company
        ValidationError: bad item, discount, dates or status
    """
    branch = db.session.query(Branch).filter_by(id=branch_id, company_id=company_id).first()
    if not branch or not branch.is_active:
        raise NotFoundError(f"Branch {branch_id} not found")
    customer = db.session.query(Customer).filter_by(id=customer_id, company_id=company_id).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")
    if status not in MODIFIABLE_STATUSES:
        raise ValidationError(f"New invoices must be one of {sorted(MODIFIABLE_STATUSES)}", field="status")
    if items is not None and not isinstance(items, list):
        raise ValidationError("items must be a list", field="items")

    discount = coerce_int("discount_amount_cents", discount_amount_cents or 0)
    enforce_rules_invoice({"discount_amount_cents": discount})

    issued = coerce_date("invoice_date", invoice_date) if invoice_date else today()
    due = coerce_date("due_date", due_date) if due_date else issued + timedelta(days=due_days)
    if due < issued:
        raise ValidationError("due_date cannot be before invoice_date", field="due_date")

    def _op() -> Invoice:
        invoice = Invoice(
            company_id=company_id,
            branch_id=branch.id,
            customer_id=customer.id,
            invoice_number=next_document_number(
                column=Invoice.invoice_number,
                prefix=invoice_prefix(branch.code),
                filters=(Invoice.branch_id == branch.id,),
            ),
            invoice_date=issued,
            due_date=due,
            notes=(notes or "").strip() or None,
            discount_amount_cents=discount,
            status=status,
            payment_status="pending",
            total_paid_cents=0,
            created_by_user_id=user_id,
            created_at=utcnow(),
        )
        with db.session.no_autoflush:
            db.session.add(invoice)
            _add_items(invoice, items or [])
            _reprice(invoice)
        commit_or_conflict(
            ConflictError("Invoice could not be saved, please retry"),
            retry_markers=INVOICE_NUMBER_MARKERS,
        )
        return invoice

    return run_with_retry(_op)


def update_invoice(invoice_id: int, *, company_id: int, payload: dict) -> Invoice:
    """
    Patch an invoice.

    notes can always change. Discount, dates and item replacement need a
    modifiable invoice. Status changes: a cancelled invoice stays
    cancelled, and an invoice holding completed payments cannot be
    cancelled until they are refunded.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(payload) - INVOICE_UPDATE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}", field=unknown[0])

    def _op() -> Invoice:
        invoice = _get_invoice_locked(invoice_id, company_id)

        priced_fields = {"discount_amount_cents", "invoice_date", "due_date", "items"} & set(payload)
        if priced_fields:
            _require_modifiable(invoice)

        if "notes" in payload:
            invoice.notes = (payload["notes"] or "").strip() or None

        if "discount_amount_cents" in payload:
            discount = coerce_int("discount_amount_cents", payload["discount_amount_cents"] or 0)
            enforce_rules_invoice({"discount_amount_cents": discount})
            invoice.discount_amount_cents = discount

        if "invoice_date" in payload:
            invoice.invoice_date = coerce_date("invoice_date", payload["invoice_date"])
        if "due_date" in payload:
            invoice.due_date = coerce_date("due_date", payload["due_date"])
        if invoice.due_date < invoice.invoice_date:
            raise ValidationError("due_date cannot be before invoice_date", field="due_date")

        if "items" in payload:
            if not isinstance(payload["items"], list):
                raise ValidationError("items must be a list", field="items")
            invoice.items.clear()
            _add_items(invoice, payload["items"])

        if "status" in payload:
            _change_status(invoice, payload["status"])

        if priced_fields:
            _reprice(invoice)
        else:
            invoice.updated_at = utcnow()
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def _change_status(invoice: Invoice, new_status: str) -> None:
    if new_status not in INVOICE_STATUSES:
        raise ValidationError(f"status must be one of {INVOICE_STATUSES}", field="status")
    if new_status == invoice.status:
        return
    if invoice.status == "cancelled":
        raise ConflictError("Cancelled invoices cannot be reopened")
    if new_status == "cancelled" and invoice.total_paid_cents > 0:
        raise ConflictError("Refund completed payments before cancelling the invoice")
    invoice.status = new_status


def delete_invoice(invoice_id: int, *, company_id: int) -> None:
    """Soft-delete a draft invoice that has no payments."""
    def _op() -> None:
        invoice = _get_invoice_locked(invoice_id, company_id)
        if invoice.status not in DELETABLE_STATUSES or invoice.payments:
            raise ConflictError("Only draft invoices without payments can be deleted")
        if invoice.print_job is not None:
            raise ConflictError("Invoice has a print job and cannot be deleted")
        invoice.deleted_at = utcnow()
        invoice.updated_at = invoice.deleted_at
        db.session.commit()

    run_with_retry(_op)


def duplicate_invoice(invoice_id: int, *, company_id: int, user_id: int | None, due_days: int = DEFAULT_DUE_DAYS) -> Invoice:
    """
    Copy an invoice's items and discount into a new draft dated today.

    Item snapshots are copied as-is; the weight charge is re-priced with the
    company's current tiers.
    """
    source = get_invoice(invoice_id, company_id)
    items = [
        {
            "product_id": None,
            "item_description": item.item_description,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "unit_weight_grams": item.unit_weight_grams,
            "tax_rate_bps": item.tax_rate_bps,
        }
        for item in source.items
    ]
    invoice = create_invoice(
        company_id=company_id,
        branch_id=source.branch_id,
        customer_id=source.customer_id,
        user_id=user_id,
        items=items,
        discount_amount_cents=source.discount_amount_cents,
        notes=source.notes,
        due_days=due_days,
    )
    # Keep the product link for reporting
    for copy, original in zip(invoice.items, source.items):
        copy.product_id = original.product_id
    db.session.commit()
    return invoice


# =============================================================================
# ITEMS
# =============================================================================

def add_item(invoice_id: int, *, company_id: int, payload: dict) -> InvoiceItem:
    def _op() -> InvoiceItem:
        invoice = _get_invoice_locked(invoice_id, company_id)
        _require_modifiable(invoice)
        _add_items(invoice, [payload])
        _reprice(invoice)
        db.session.commit()
        return invoice.items[-1]

    return run_with_retry(_op)


def update_item(invoice_id: int, item_id: int, *, company_id: int, payload: dict) -> InvoiceItem:
    def _op() -> InvoiceItem:
        invoice = _get_invoice_locked(invoice_id, company_id)
        _require_modifiable(invoice)
        item = _get_item(invoice, item_id)

        values = _item_values(company_id, payload, existing=item)
        for key, value in values.items():
            setattr(item, key, value)

        _reprice(invoice)
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_item(invoice_id: int, item_id: int, *, company_id: int) -> Invoice:
    def _op() -> Invoice:
        invoice = _get_invoice_locked(invoice_id, company_id)
        _require_modifiable(invoice)
        item = _get_item(invoice, item_id)
        invoice.items.remove(item)
        _reprice(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


# =============================================================================
# LISTING
# =============================================================================

def list_invoices(
    *,
    company_id: int,
    status: str | None = None,
    payment_status: str | None = None,
    branch_id: int | None = None,
    customer_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 15,
    max_per_page: int = 100,
) -> dict:
    """
    Company-scoped invoice listing, newest first, paginated.
    """
    if status and status not in INVOICE_STATUSES:
        raise ValidationError(f"status must be one of {INVOICE_STATUSES}", field="status")
    if payment_status and payment_status not in INVOICE_PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of {INVOICE_PAYMENT_STATUSES}", field="payment_status")

    query = db.session.query(Invoice).filter(Invoice.company_id == company_id, Invoice.deleted_at.is_(None))
    if status:
        query = query.filter(Invoice.status == status)
    if payment_status:
        query = query.filter(Invoice.payment_status == payment_status)
    if branch_id:
        query = query.filter(Invoice.branch_id == branch_id)
    if customer_id:
        query = query.filter(Invoice.customer_id == customer_id)
    if search:
        query = query.join(Customer, Customer.id == Invoice.customer_id).filter(
            or_(Invoice.invoice_number.ilike(f"%{search}%"), Customer.name.ilike(f"%{search}%"))
        )

    query = query.order_by(Invoice.created_at.desc(), Invoice.id.desc())

    per_page = max(1, min(per_page or 15, max_per_page))
    page = max(page or 1, 1)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    invoices = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [invoice.to_dict() for invoice in invoices],
        "count": len(invoices),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
