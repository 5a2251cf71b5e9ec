from __future__ import annotations

from ..extensions import db
from printdesk.time_utils import to_utc_z


class WeightPricingTier(db.Model):
    """
    Company-specific delivery surcharge tier.

    WHY: Companies can override the default weight table. A tier covers
    [min_weight_grams, max_weight_grams]; a NULL max is open-ended.
    Charge = base_price_cents + (weight - min) * price_per_kg_cents / 1000.
    """
    __tablename__ = "weight_pricing_tiers"
    __table_args__ = (
        db.Index("ix_weight_tiers_company_status", "company_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    tier_name = db.Column(db.String(64), nullable=False)

    min_weight_grams = db.Column(db.Integer, nullable=False, default=0)
    max_weight_grams = db.Column(db.Integer, nullable=True)

    base_price_cents = db.Column(db.Integer, nullable=False, default=0)
    price_per_kg_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="active")  # active, inactive
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("weight_pricing_tiers", lazy=True))

    @property
    def weight_range(self) -> str:
        low = self.min_weight_grams / 1000
        if self.max_weight_grams is None:
            return f"{low:g}kg+"
        return f"{low:g}kg - {self.max_weight_grams / 1000:g}kg"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "tier_name": self.tier_name,
            "min_weight_grams": self.min_weight_grams,
            "max_weight_grams": self.max_weight_grams,
            "base_price_cents": self.base_price_cents,
            "price_per_kg_cents": self.price_per_kg_cents,
            "status": self.status,
            "sort_order": self.sort_order,
            "weight_range": self.weight_range,
            "created_at": to_utc_z(self.created_at),
        }
