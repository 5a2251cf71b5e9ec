from __future__ import annotations

from ..extensions import db
from printdesk.time_utils import to_utc_z, to_iso_date


class Payment(db.Model):
    """
    Payment recorded against an invoice.

    WHY: Invoices are settled by one or more payments (deposits, split
    tender). Staff record payments as pending; an authorized role verifies
    or rejects them. Only completed payments count toward the balance.

    STATUS (money state):
    - pending: recorded, awaiting verification (tracked as pending_amount)
    - completed: verified, counted in total_paid
    - failed: rejected during verification
    - refunded: money returned after completion

    VERIFICATION (approval state machine):
    - pending -> verified (terminal)
    - pending -> rejected (terminal, requires reason)
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_invoice_status", "invoice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    # Human-readable reference (e.g., "PAY-MAIN-261016-0001")
    payment_reference = db.Column(db.String(64), nullable=False, unique=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, index=True)  # cash, bank_transfer, cheque, online
    payment_date = db.Column(db.Date, nullable=False)

    # Method-specific details
    bank_name = db.Column(db.String(100), nullable=True)
    cheque_number = db.Column(db.String(50), nullable=True)
    gateway_reference = db.Column(db.String(200), nullable=True)
    transaction_id = db.Column(db.String(100), nullable=True, unique=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    verification_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    # Attribution
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    verified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    refunded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    received_by = db.relationship("User", foreign_keys=[received_by_user_id])
    verified_by = db.relationship("User", foreign_keys=[verified_by_user_id])
    refunded_by = db.relationship("User", foreign_keys=[refunded_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "payment_reference": self.payment_reference,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "payment_date": to_iso_date(self.payment_date),
            "bank_name": self.bank_name,
            "cheque_number": self.cheque_number,
            "gateway_reference": self.gateway_reference,
            "transaction_id": self.transaction_id,
            "notes": self.notes,
            "status": self.status,
            "verification_status": self.verification_status,
            "rejection_reason": self.rejection_reason,
            "received_by_user_id": self.received_by_user_id,
            "verified_by_user_id": self.verified_by_user_id,
            "verified_at": to_utc_z(self.verified_at),
            "refunded_by_user_id": self.refunded_by_user_id,
            "refunded_at": to_utc_z(self.refunded_at),
            "refund_reason": self.refund_reason,
            "created_at": to_utc_z(self.created_at),
        }
