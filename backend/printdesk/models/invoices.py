from __future__ import annotations

from ..extensions import db
from printdesk.time_utils import to_utc_z, to_iso_date


INVOICE_STATUSES = ["draft", "pending", "processing", "completed", "cancelled"]
INVOICE_PAYMENT_STATUSES = ["pending", "partially_paid", "paid", "refunded"]


class Invoice(db.Model):
    """
    Customer invoice (the priced document payments are reconciled against).

    WHY: Totals are stored so lists and reports do not re-price every row,
    but they are ALWAYS written by pricing_service; never set them directly.

    INVARIANT:
        total_amount_cents == subtotal_cents + weight_charge_cents
                              + tax_amount_cents - discount_amount_cents

    CONCURRENCY: version_id is an optimistic lock. Every payment mutation
    touches this row, so concurrent payment writers collide here.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "invoice_number", name="uq_invoices_branch_number"),
        db.Index("ix_invoices_company_status", "company_id", "status"),
        db.Index("ix_invoices_company_payment_status", "company_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Human-readable number (e.g., "MAIN-20261016-0001")
    invoice_number = db.Column(db.String(64), nullable=False)

    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # Priced totals (all amounts in cents, weight in grams)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    weight_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_weight_grams = db.Column(db.Integer, nullable=False, default=0)

    # Reconciliation snapshot (sum of completed payments)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Soft delete
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    company = db.relationship("Company")
    branch = db.relationship("Branch", backref=db.backref("invoices", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        lazy=True,
        order_by="InvoiceItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "branch_id": self.branch_id,
            "customer_id": self.customer_id,
            "invoice_number": self.invoice_number,
            "invoice_date": to_iso_date(self.invoice_date),
            "due_date": to_iso_date(self.due_date),
            "notes": self.notes,
            "subtotal_cents": self.subtotal_cents,
            "weight_charge_cents": self.weight_charge_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "total_weight_grams": self.total_weight_grams,
            "total_paid_cents": self.total_paid_cents,
            "status": self.status,
            "payment_status": self.payment_status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """
    Invoice line.

    INVARIANTS:
        line_total_cents == quantity * unit_price_cents
        line_weight_grams == quantity * unit_weight_grams

    Price, weight and tax rate are snapshotted from the product when the line
    is added, so later catalogue edits never re-price old invoices.
    """
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    item_description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_weight_grams = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    line_total_cents = db.Column(db.Integer, nullable=False)
    line_weight_grams = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "item_description": self.item_description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_weight_grams": self.unit_weight_grams,
            "tax_rate_bps": self.tax_rate_bps,
            "line_total_cents": self.line_total_cents,
            "line_weight_grams": self.line_weight_grams,
            "tax_amount_cents": self.tax_amount_cents,
        }
