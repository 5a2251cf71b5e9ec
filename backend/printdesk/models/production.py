from __future__ import annotations

from ..extensions import db
from printdesk.time_utils import to_utc_z


class PrintJob(db.Model):
    """
    Production job created from an invoice.

    At most one job per invoice: enforced by production_service's
    eligibility gate and backed by the unique constraint on invoice_id.
    """
    __tablename__ = "print_jobs"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", name="uq_print_jobs_invoice"),
        db.Index("ix_print_jobs_branch_status", "branch_id", "production_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # e.g., "MAIN-JOB-20261016-001"
    job_number = db.Column(db.String(64), nullable=False, unique=True)
    job_type = db.Column(db.String(32), nullable=False, default="general_printing")

    # pending, in_progress, quality_check, completed, on_hold
    production_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    priority = db.Column(db.String(16), nullable=False, default="normal")
    progress_percentage = db.Column(db.Integer, nullable=False, default=0)

    customer_instructions = db.Column(db.Text, nullable=True)
    production_notes = db.Column(db.Text, nullable=True)

    estimated_completion = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("print_job", uselist=False, lazy=True))
    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "branch_id": self.branch_id,
            "job_number": self.job_number,
            "job_type": self.job_type,
            "production_status": self.production_status,
            "priority": self.priority,
            "progress_percentage": self.progress_percentage,
            "customer_instructions": self.customer_instructions,
            "production_notes": self.production_notes,
            "estimated_completion": to_utc_z(self.estimated_completion),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
