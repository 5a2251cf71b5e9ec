# Overview: Pure invoice pricing engine (line totals, weight surcharge, tax, discount).

"""
Invoice Pricing Engine

WHY: One source of truth for invoice arithmetic. Invoice creation, item
edits, quotes and the sample pricing table all call these functions, so the
stored totals, previews and reports can never disagree.

DESIGN PRINCIPLES:
- Pure functions: no database, no Flask, no clock. Same input, same output.
- Integer units only: cents for money, grams for weight, basis points for tax.
- Fractions (per-kg surcharge, tax) are rounded half-up once per component.
- Weight surcharge is charged on TOTAL invoice weight, never per item.

TOTALS:
    line_total     = quantity * unit_price
    line_weight    = quantity * unit_weight
    item_tax       = line_total * tax_rate_bps / 10000
    subtotal       = sum(line_total)
    tax_amount     = sum(item_tax)
    total          = subtotal + weight_charge + tax_amount - discount
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from ..money import format_currency, format_weight, round_half_up_div
from ..validation import MAX_TAX_RATE_BPS, ValidationError, enforce_amount_range


# =============================================================================
# DEFAULT WEIGHT TABLE
# =============================================================================

@dataclass(frozen=True)
class DefaultWeightBand:
    """
    One band of the built-in surcharge table.

    Applies to weights in (previous band's upper, upper_grams]; charge is
    base_price_cents plus price_per_kg_cents for every kg above
    surcharge_from_grams.
    """
    tier_name: str
    upper_grams: int | None
    base_price_cents: int
    price_per_kg_cents: int = 0
    surcharge_from_grams: int = 0


DEFAULT_WEIGHT_BANDS = (
    DefaultWeightBand("Light", 1_000, 20_000),
    DefaultWeightBand("Medium", 3_000, 30_000),
    DefaultWeightBand("Heavy", 5_000, 40_000),
    DefaultWeightBand("Extra Heavy", 10_000, 50_000, 5_000, 5_000),
    DefaultWeightBand("Bulk", None, 75_000, 7_500, 10_000),
)

NO_DELIVERY_TIER = "No items"

SAMPLE_WEIGHTS_GRAMS = (500, 1_000, 2_000, 3_000, 5_000, 10_000, 15_000, 20_000, 25_000, 50_000)


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class TierRule:
    """
    Engine-side view of a company's custom weight tier.

    Covers [min_weight_grams, max_weight_grams]; max None is open-ended.
    """
    tier_name: str
    min_weight_grams: int
    max_weight_grams: int | None
    base_price_cents: int
    price_per_kg_cents: int

    def matches(self, weight_grams: int) -> bool:
        if weight_grams < self.min_weight_grams:
            return False
        if self.max_weight_grams is not None and weight_grams > self.max_weight_grams:
            return False
        return True

    @classmethod
    def from_model(cls, tier) -> "TierRule":
        return cls(
            tier_name=tier.tier_name,
            min_weight_grams=tier.min_weight_grams,
            max_weight_grams=tier.max_weight_grams,
            base_price_cents=tier.base_price_cents,
            price_per_kg_cents=tier.price_per_kg_cents,
        )


@dataclass(frozen=True)
class LineInput:
    quantity: int
    unit_price_cents: int
    unit_weight_grams: int = 0
    tax_rate_bps: int = 0


@dataclass(frozen=True)
class PricedLine:
    quantity: int
    unit_price_cents: int
    unit_weight_grams: int
    tax_rate_bps: int
    line_total_cents: int
    line_weight_grams: int
    tax_amount_cents: int


@dataclass(frozen=True)
class WeightCharge:
    tier_name: str
    weight_grams: int
    base_price_cents: int
    additional_cents: int
    is_custom_tier: bool = False

    @property
    def total_cents(self) -> int:
        return self.base_price_cents + self.additional_cents

    def to_dict(self) -> dict:
        return {
            "tier_name": self.tier_name,
            "weight_grams": self.weight_grams,
            "base_price_cents": self.base_price_cents,
            "additional_cents": self.additional_cents,
            "total_cents": self.total_cents,
            "is_custom_tier": self.is_custom_tier,
        }


@dataclass(frozen=True)
class InvoiceTotals:
    lines: tuple[PricedLine, ...]
    subtotal_cents: int
    total_weight_grams: int
    weight_charge: WeightCharge
    tax_amount_cents: int
    discount_amount_cents: int
    total_amount_cents: int

    @property
    def weight_charge_cents(self) -> int:
        return self.weight_charge.total_cents

    def to_dict(self) -> dict:
        return {
            "lines": [
                {
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                    "unit_weight_grams": line.unit_weight_grams,
                    "tax_rate_bps": line.tax_rate_bps,
                    "line_total_cents": line.line_total_cents,
                    "line_weight_grams": line.line_weight_grams,
                    "tax_amount_cents": line.tax_amount_cents,
                }
                for line in self.lines
            ],
            "subtotal_cents": self.subtotal_cents,
            "total_weight_grams": self.total_weight_grams,
            "weight_charge_cents": self.weight_charge_cents,
            "weight_charge": self.weight_charge.to_dict(),
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
        }


# =============================================================================
# LINE PRICING
# =============================================================================

def price_line(line: LineInput) -> PricedLine:
    """
    Price one invoice line.

    Raises:
        ValidationError: quantity <= 0, negative price/weight, tax rate out of range
    """
    if line.quantity <= 0:
        raise ValidationError("quantity must be > 0", field="quantity")
    enforce_amount_range("unit_price_cents", line.unit_price_cents)
    if line.unit_weight_grams < 0:
        raise ValidationError("unit_weight_grams must be >= 0", field="unit_weight_grams")
    if not 0 <= line.tax_rate_bps <= MAX_TAX_RATE_BPS:
        raise ValidationError(f"tax_rate_bps must be between 0 and {MAX_TAX_RATE_BPS}", field="tax_rate_bps")

    line_total = line.quantity * line.unit_price_cents
    return PricedLine(
        quantity=line.quantity,
        unit_price_cents=line.unit_price_cents,
        unit_weight_grams=line.unit_weight_grams,
        tax_rate_bps=line.tax_rate_bps,
        line_total_cents=line_total,
        line_weight_grams=line.quantity * line.unit_weight_grams,
        tax_amount_cents=round_half_up_div(line_total * line.tax_rate_bps, 10_000),
    )


# =============================================================================
# WEIGHT SURCHARGE
# =============================================================================

def _default_weight_charge(weight_grams: int) -> WeightCharge:
    for band in DEFAULT_WEIGHT_BANDS:
        if band.upper_grams is None or weight_grams <= band.upper_grams:
            extra_grams = max(0, weight_grams - band.surcharge_from_grams) if band.price_per_kg_cents else 0
            return WeightCharge(
                tier_name=band.tier_name,
                weight_grams=weight_grams,
                base_price_cents=band.base_price_cents,
                additional_cents=round_half_up_div(extra_grams * band.price_per_kg_cents, 1_000),
            )
    raise AssertionError("default weight table must end with an open band")


def _match_custom_tier(weight_grams: int, tiers: Iterable[TierRule]) -> TierRule | None:
    # Highest min_weight wins when ranges touch at a boundary
    matching = [tier for tier in tiers if tier.matches(weight_grams)]
    if not matching:
        return None
    return max(matching, key=lambda tier: tier.min_weight_grams)


def weight_charge_breakdown(weight_grams: int, tiers: Sequence[TierRule] | None = None) -> WeightCharge:
    """
    Delivery surcharge for a total invoice weight, with its components.

    Custom tiers (already filtered to active ones) take precedence; a weight
    no custom tier covers falls back to the default table.
    """
    if weight_grams < 0:
        raise ValidationError("weight cannot be negative", field="weight_grams")

    tier = _match_custom_tier(weight_grams, tiers or ())
    if tier is not None:
        extra_grams = max(0, weight_grams - tier.min_weight_grams)
        return WeightCharge(
            tier_name=tier.tier_name,
            weight_grams=weight_grams,
            base_price_cents=tier.base_price_cents,
            additional_cents=round_half_up_div(extra_grams * tier.price_per_kg_cents, 1_000),
            is_custom_tier=True,
        )

    return _default_weight_charge(weight_grams)


def calculate_weight_charge(weight_grams: int, tiers: Sequence[TierRule] | None = None) -> int:
    """Surcharge in cents for a total invoice weight in grams."""
    return weight_charge_breakdown(weight_grams, tiers).total_cents


# =============================================================================
# INVOICE TOTALS
# =============================================================================

def calculate_invoice_totals(
    lines: Iterable[LineInput],
    discount_amount_cents: int = 0,
    tiers: Sequence[TierRule] | None = None,
) -> InvoiceTotals:
    """
    Price a whole invoice.

    An empty item set has nothing to deliver and carries no weight charge.
    A non-empty set weighing 0 g still pays the first band.

    Raises:
        ValidationError: invalid line, negative discount, or a discount
        larger than the pre-discount total
    """
    enforce_amount_range("discount_amount_cents", discount_amount_cents)

    priced = tuple(price_line(line) for line in lines)

    subtotal = sum(line.line_total_cents for line in priced)
    total_weight = sum(line.line_weight_grams for line in priced)
    tax_amount = sum(line.tax_amount_cents for line in priced)

    if priced:
        weight_charge = weight_charge_breakdown(total_weight, tiers)
    else:
        weight_charge = WeightCharge(
            tier_name=NO_DELIVERY_TIER,
            weight_grams=0,
            base_price_cents=0,
            additional_cents=0,
        )

    gross = subtotal + weight_charge.total_cents + tax_amount
    if discount_amount_cents > gross:
        raise ValidationError(
            f"Discount of {format_currency(discount_amount_cents)} exceeds invoice total of {format_currency(gross)}",
            field="discount_amount_cents",
        )

    return InvoiceTotals(
        lines=priced,
        subtotal_cents=subtotal,
        total_weight_grams=total_weight,
        weight_charge=weight_charge,
        tax_amount_cents=tax_amount,
        discount_amount_cents=discount_amount_cents,
        total_amount_cents=gross - discount_amount_cents,
    )


# =============================================================================
# CUSTOM TIER MAINTENANCE
# =============================================================================

def _upper(tier: TierRule) -> float:
    return float("inf") if tier.max_weight_grams is None else tier.max_weight_grams


def validate_tier(tier: TierRule) -> None:
    if tier.min_weight_grams < 0:
        raise ValidationError("min_weight_grams must be >= 0", field="min_weight_grams")
    if tier.max_weight_grams is not None and tier.max_weight_grams <= tier.min_weight_grams:
        raise ValidationError("max_weight_grams must be greater than min_weight_grams", field="max_weight_grams")
    enforce_amount_range("base_price_cents", tier.base_price_cents)
    enforce_amount_range("price_per_kg_cents", tier.price_per_kg_cents)


def validate_tier_ranges(candidate: TierRule, existing: Iterable[TierRule]) -> None:
    """
    Reject a tier whose weight range overlaps an existing one.

    Ranges that only touch (max == next min) are allowed.
    """
    validate_tier(candidate)
    for tier in existing:
        if candidate.min_weight_grams < _upper(tier) and _upper(candidate) > tier.min_weight_grams:
            raise ValidationError(f"Weight range overlaps with existing tier: {tier.tier_name}")


def analyze_tiers(tiers: Sequence[TierRule]) -> dict:
    """
    Coverage gaps and price regressions in a company's custom tiers.
    """
    ordered = sorted(tiers, key=lambda t: t.min_weight_grams)
    suggestions = []

    previous_max = 0
    for tier in ordered:
        if tier.min_weight_grams > previous_max:
            suggestions.append({
                "type": "gap",
                "message": f"Gap in weight range from {format_weight(previous_max)} to {format_weight(tier.min_weight_grams)}",
                "recommendation": "Weights in the gap use the default table",
            })
        previous_max = _upper(tier)

    for current, following in zip(ordered, ordered[1:]):
        if current.base_price_cents > following.base_price_cents:
            suggestions.append({
                "type": "pricing_inconsistency",
                "message": f"Tier '{current.tier_name}' has higher base price than '{following.tier_name}'",
                "recommendation": "Adjust pricing to keep charges increasing with weight",
            })

    if ordered:
        last_max = ordered[-1].max_weight_grams
        coverage = {
            "min_covered_grams": ordered[0].min_weight_grams,
            "max_covered_grams": last_max,
            "open_ended": last_max is None,
        }
    else:
        coverage = {"min_covered_grams": 0, "max_covered_grams": 0, "open_ended": False}

    return {
        "total_tiers": len(ordered),
        "suggestions": suggestions,
        "coverage": coverage,
    }


def sample_pricing_table(tiers: Sequence[TierRule] | None = None) -> list[dict]:
    """Surcharge for a fixed set of reference weights (for the pricing screen)."""
    table = []
    for grams in SAMPLE_WEIGHTS_GRAMS:
        charge = weight_charge_breakdown(grams, tiers)
        table.append({
            "weight": format_weight(grams),
            "weight_grams": grams,
            "tier": charge.tier_name,
            "price": format_currency(charge.total_cents),
            "price_cents": charge.total_cents,
            "base_price_cents": charge.base_price_cents,
            "additional_cents": charge.additional_cents,
        })
    return table
