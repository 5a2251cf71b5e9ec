# Overview: Flask API routes for custom weight pricing tiers; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import weight_tier_service
from ..validation import NotFoundError, ValidationError
from ..decorators import require_auth, require_permission
from ..permissions import VIEW_INVOICES, MANAGE_PRICING


weight_tiers_bp = Blueprint("weight_tiers", __name__, url_prefix="/api/weight-tiers")


@weight_tiers_bp.get("/")
@require_auth
@require_permission(VIEW_INVOICES)
def list_tiers_route():
    tiers = weight_tier_service.list_tiers(g.company_id)
    return jsonify({"items": [t.to_dict() for t in tiers], "count": len(tiers)})


@weight_tiers_bp.post("/")
@require_auth
@require_permission(MANAGE_PRICING)
def create_tier_route():
    """
    Request body:
    {
        "tier_name": "Parcel",
        "min_weight_grams": 0,
        "max_weight_grams": 2000,      (optional, null = open-ended)
        "base_price_cents": 15000,
        "price_per_kg_cents": 0,       (optional)
        "status": "active",            (optional)
        "sort_order": 1                (optional)
    }

    Returns:
        201: Tier created
        400: Invalid input or range overlaps an active tier
    """
    try:
        data = request.get_json(silent=True)
        tier = weight_tier_service.create_tier(company_id=g.company_id, payload=data)
        return jsonify({"tier": tier.to_dict()}), 201
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to create weight tier")
        return jsonify({"error": "Internal server error"}), 500


@weight_tiers_bp.put("/<int:tier_id>")
@require_auth
@require_permission(MANAGE_PRICING)
def update_tier_route(tier_id: int):
    try:
        data = request.get_json(silent=True)
        tier = weight_tier_service.update_tier(tier_id, company_id=g.company_id, payload=data)
        return jsonify({"tier": tier.to_dict()})
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update weight tier")
        return jsonify({"error": "Internal server error"}), 500


@weight_tiers_bp.delete("/<int:tier_id>")
@require_auth
@require_permission(MANAGE_PRICING)
def delete_tier_route(tier_id: int):
    try:
        weight_tier_service.delete_tier(tier_id, company_id=g.company_id)
        return jsonify({"message": "Weight tier deleted"})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete weight tier")
        return jsonify({"error": "Internal server error"}), 500


@weight_tiers_bp.get("/sample")
@require_auth
@require_permission(VIEW_INVOICES)
def sample_pricing_route():
    """Surcharge at reference weights using the company's active tiers."""
    return jsonify({"sample_pricing": weight_tier_service.get_sample_pricing(g.company_id)})


@weight_tiers_bp.get("/analysis")
@require_auth
@require_permission(MANAGE_PRICING)
def tier_analysis_route():
    """Coverage gaps and price regressions in the active tiers."""
    return jsonify(weight_tier_service.get_tier_analysis(g.company_id))
