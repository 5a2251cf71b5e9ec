# backend/printdesk/services/weight_tier_service.py
"""
Custom Weight Pricing Tiers

Per-company overrides of the default delivery surcharge table. Only ACTIVE
tiers take part in pricing; ranges of active tiers must not overlap.
"""
from __future__ import annotations

from ..extensions import db
from ..models import WeightPricingTier
from ..validation import ModelValidationPolicy, NotFoundError, ValidationError, validate_payload
from .pricing_service import TierRule, analyze_tiers, sample_pricing_table, validate_tier, validate_tier_ranges

TIER_STATUSES = {"active", "inactive"}

TIER_POLICY = ModelValidationPolicy(
    writable_fields={
        "tier_name",
        "min_weight_grams",
        "max_weight_grams",
        "base_price_cents",
        "price_per_kg_cents",
        "status",
        "sort_order",
    },
    required_on_create={"tier_name", "min_weight_grams", "base_price_cents"},
)


def _tier_query(company_id: int):
    return db.session.query(WeightPricingTier).filter(WeightPricingTier.company_id == company_id)


def list_tiers(company_id: int) -> list[WeightPricingTier]:
    return (
        _tier_query(company_id)
        .order_by(WeightPricingTier.sort_order.asc(), WeightPricingTier.min_weight_grams.asc())
        .all()
    )


def get_active_tier_rules(company_id: int) -> list[TierRule]:
    """Active tiers in the shape the pricing engine consumes."""
    tiers = _tier_query(company_id).filter(WeightPricingTier.status == "active").all()
    return [TierRule.from_model(t) for t in tiers]


def get_tier(tier_id: int, company_id: int) -> WeightPricingTier:
    tier = _tier_query(company_id).filter(WeightPricingTier.id == tier_id).first()
    if not tier:
        raise NotFoundError(f"Weight tier {tier_id} not found")
    return tier


def _check_tier(tier: WeightPricingTier) -> None:
    if tier.status not in TIER_STATUSES:
        raise ValidationError(f"status must be one of {sorted(TIER_STATUSES)}", field="status")

    rule = TierRule.from_model(tier)
    if tier.status != "active":
        validate_tier(rule)
        return

    query = _tier_query(tier.company_id).filter(WeightPricingTier.status == "active")
    if tier.id is not None:
        query = query.filter(WeightPricingTier.id != tier.id)
    validate_tier_ranges(rule, [TierRule.from_model(t) for t in query.all()])


def create_tier(*, company_id: int, payload: dict) -> WeightPricingTier:
    patch = validate_payload(model=WeightPricingTier, payload=payload, policy=TIER_POLICY, partial=False)

    tier = WeightPricingTier(company_id=company_id, status="active", sort_order=0, price_per_kg_cents=0)
    for key, value in patch.items():
        setattr(tier, key, value)

    with db.session.no_autoflush:
        _check_tier(tier)

    db.session.add(tier)
    db.session.commit()
    return tier


def update_tier(tier_id: int, *, company_id: int, payload: dict) -> WeightPricingTier:
    tier = get_tier(tier_id, company_id)
    patch = validate_payload(model=WeightPricingTier, payload=payload, policy=TIER_POLICY, partial=True)

    try:
        with db.session.no_autoflush:
            for key, value in patch.items():
                setattr(tier, key, value)
            _check_tier(tier)
    except ValidationError:
        db.session.rollback()
        raise

    db.session.commit()
    return tier


def delete_tier(tier_id: int, *, company_id: int) -> None:
    tier = get_tier(tier_id, company_id)
    db.session.delete(tier)
    db.session.commit()


def get_sample_pricing(company_id: int) -> list[dict]:
    return sample_pricing_table(get_active_tier_rules(company_id))


def get_tier_analysis(company_id: int) -> dict:
    return analyze_tiers(get_active_tier_rules(company_id))
