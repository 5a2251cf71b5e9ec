# Overview: Flask API routes for print job operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import production_service
from ..services.permission_service import PermissionDeniedError
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int
from ..decorators import require_auth, require_permission
from ..permissions import VIEW_INVOICES, MANAGE_PRODUCTION


print_jobs_bp = Blueprint("print_jobs", __name__, url_prefix="/api/print-jobs")


@print_jobs_bp.get("/invoices/<int:invoice_id>/eligibility")
@require_auth
@require_permission(VIEW_INVOICES)
def eligibility_route(invoice_id: int):
    """
    Can the caller send this invoice to production?

    Returns the decision with any advisories (draft status, outstanding
    balance); advisories never block creation.
    """
    try:
        decision = production_service.check_eligibility(invoice_id, user=g.current_user)
        return jsonify({"invoice_id": invoice_id, "eligibility": decision.to_dict()})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to check print job eligibility")
        return jsonify({"error": "Internal server error"}), 500


@print_jobs_bp.post("/")
@require_auth
def create_print_job_route():
    """
    Create the print job for an invoice.

    Request body:
    {
        "invoice_id": 12,
        "customer_instructions": "...",  (optional, defaults to invoice notes)
        "priority": "high"               (optional, derived when omitted)
    }

    Returns:
        201: Print job created (with advisories)
        403: Missing create_print_job permission
        404: Invoice not found
        409: A print job already exists for the invoice
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("invoice_id"):
            return jsonify({"error": "invoice_id required"}), 400

        job, decision = production_service.create_print_job(
            coerce_int("invoice_id", data["invoice_id"]),
            user=g.current_user,
            customer_instructions=data.get("customer_instructions"),
            priority=data.get("priority"),
        )
        return jsonify({"print_job": job.to_dict(), "advisories": list(decision.advisories)}), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except PermissionDeniedError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create print job")
        return jsonify({"error": "Internal server error"}), 500


@print_jobs_bp.get("/<int:job_id>")
@require_auth
@require_permission(VIEW_INVOICES)
def get_print_job_route(job_id: int):
    try:
        job = production_service.get_print_job(job_id, g.company_id)
        return jsonify({"print_job": job.to_dict()})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load print job")
        return jsonify({"error": "Internal server error"}), 500


@print_jobs_bp.post("/<int:job_id>/status")
@require_auth
@require_permission(MANAGE_PRODUCTION)
def update_print_job_status_route(job_id: int):
    """
    Request body: {"status": "in_progress", "progress_percentage": 40, "notes": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("status"):
            return jsonify({"error": "status required"}), 400

        job = production_service.update_production_status(
            job_id,
            company_id=g.company_id,
            status=data["status"],
            progress_percentage=data.get("progress_percentage"),
            notes=data.get("notes"),
        )
        return jsonify({"print_job": job.to_dict()})

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update print job status")
        return jsonify({"error": "Internal server error"}), 500
