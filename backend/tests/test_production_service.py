"""
Production eligibility gate and print job lifecycle.
"""

import re
from datetime import date, datetime, timedelta

import pytest

from printdesk.models import PrintJob
from printdesk.services import invoice_service, payment_service, production_service
from printdesk.services.permission_service import PermissionDeniedError
from printdesk.services.production_service import (
    JOB_EXISTS_REASON,
    NO_PERMISSION_REASON,
    calculate_priority,
    estimate_completion,
    evaluate_eligibility,
    infer_job_type,
)
from printdesk.validation import ConflictError, NotFoundError, ValidationError


# =============================================================================
# PURE RULES
# =============================================================================

class TestEligibilityRules:

    def test_eligible_with_advisories(self):
        decision = evaluate_eligibility(
            has_permission=True,
            has_existing_job=False,
            invoice_status="draft",
            remaining_balance_cents=53_000,
        )
        assert decision.eligible is True
        assert decision.state == "eligible"
        assert decision.advisories == ("Invoice is in draft status", "Outstanding balance of Rs. 530.00")
        assert decision.to_dict()["message"] == "Invoice is in draft status; Outstanding balance of Rs. 530.00"

    def test_paid_confirmed_invoice_has_no_advisories(self):
        decision = evaluate_eligibility(
            has_permission=True,
            has_existing_job=False,
            invoice_status="pending",
            remaining_balance_cents=0,
        )
        assert decision.eligible is True
        assert decision.advisories == ()
        assert decision.to_dict()["message"] is None

    def test_no_permission(self):
        decision = evaluate_eligibility(
            has_permission=False,
            has_existing_job=False,
            invoice_status="pending",
            remaining_balance_cents=0,
        )
        assert decision.eligible is False
        assert decision.reason == NO_PERMISSION_REASON
        assert decision.state == "not_eligible"

    @pytest.mark.parametrize("remaining", [0, 53_000])
    def test_existing_job_blocks_regardless_of_payment(self, remaining):
        decision = evaluate_eligibility(
            has_permission=True,
            has_existing_job=True,
            invoice_status="pending",
            remaining_balance_cents=remaining,
        )
        assert decision.eligible is False
        assert decision.reason == JOB_EXISTS_REASON
        assert decision.state == "job_created"


class TestJobAttributes:

    @pytest.mark.parametrize("names,expected", [
        (["Business Cards (100)"], "business_cards"),
        (["A4 Brochure", "Vinyl Banner"], "brochures"),
        (["Vinyl Banner 2x1m"], "banners"),
        (["Letterheads", None], "general_printing"),
        ([], "general_printing"),
    ])
    def test_job_type(self, names, expected):
        assert infer_job_type(names) == expected

    @pytest.mark.parametrize("customer_type,total,due,expected", [
        ("vip", 1_000, date(2026, 12, 1), "urgent"),
        ("regular", 5_000_001, date(2026, 12, 1), "high"),
        ("regular", 5_000_000, date(2026, 12, 1), "normal"),
        ("regular", 1_000, date(2026, 10, 18), "medium"),
        ("regular", 1_000, date(2026, 10, 19), "normal"),
        (None, 1_000, None, "normal"),
    ])
    def test_priority(self, customer_type, total, due, expected):
        assert calculate_priority(
            customer_type=customer_type,
            total_amount_cents=total,
            due_date=due,
            on=date(2026, 10, 16),
        ) == expected

    @pytest.mark.parametrize("weight,total,hours", [
        (2_000, 53_000, 24),
        (10_001, 53_000, 36),
        (2_000, 2_500_001, 32),
        (12_000, 3_000_000, 44),
    ])
    def test_estimate(self, weight, total, hours):
        start = datetime(2026, 10, 16, 9, 0)
        assert estimate_completion(
            total_weight_grams=weight,
            total_amount_cents=total,
            start=start,
        ) == start + timedelta(hours=hours)


# =============================================================================
# GATE AGAINST THE DATABASE
# =============================================================================

class TestCreatePrintJob:

    def test_unpaid_draft_invoice_gets_job_with_advisories(self, invoice, manager_user):
        job, decision = production_service.create_print_job(invoice.id, user=manager_user)

        assert re.match(r"^MAIN-JOB-\d{8}-001$", job.job_number)
        assert job.production_status == "pending"
        assert job.priority == "normal"
        assert job.job_type == "general_printing"
        assert job.progress_percentage == 0
        assert job.created_by_user_id == manager_user.id
        assert job.estimated_completion - job.created_at == timedelta(hours=24)
        assert "Invoice is in draft status" in decision.advisories

    def test_second_job_rejected_even_after_payment(self, invoice, manager_user, staff_user):
        production_service.create_print_job(invoice.id, user=manager_user)

        payment = payment_service.record_payment(
            invoice.id, user_id=staff_user.id, amount_cents=53_000, payment_method="cash",
        )
        payment_service.verify_payment(payment.id, user_id=manager_user.id)

        with pytest.raises(ConflictError):
            production_service.create_print_job(invoice.id, user=manager_user)

        decision = production_service.check_eligibility(invoice.id, user=manager_user)
        assert decision.state == "job_created"
        assert decision.advisories == ("Invoice is in draft status",)
        assert PrintJob.query.filter_by(invoice_id=invoice.id).count() == 1

    def test_user_without_permission(self, invoice, staff_user):
        decision = production_service.check_eligibility(invoice.id, user=staff_user)
        assert decision.eligible is False
        assert decision.reason == NO_PERMISSION_REASON

        with pytest.raises(PermissionDeniedError):
            production_service.create_print_job(invoice.id, user=staff_user)

    def test_vip_customer_is_urgent(self, company, branch, vip_customer, manager_user, business_cards):
        invoice = invoice_service.create_invoice(
            company_id=company.id,
            branch_id=branch.id,
            customer_id=vip_customer.id,
            user_id=manager_user.id,
            items=[{"product_id": business_cards.id, "quantity": 5}],
        )
        job, _ = production_service.create_print_job(invoice.id, user=manager_user)
        assert job.priority == "urgent"
        assert job.job_type == "business_cards"

    def test_explicit_priority_and_instructions(self, invoice, manager_user):
        job, _ = production_service.create_print_job(
            invoice.id,
            user=manager_user,
            priority="low",
            customer_instructions="  Matte finish  ",
        )
        assert job.priority == "low"
        assert job.customer_instructions == "Matte finish"

    def test_invalid_priority(self, invoice, manager_user):
        with pytest.raises(ValidationError):
            production_service.create_print_job(invoice.id, user=manager_user, priority="asap")

    def test_other_company_cannot_see_invoice(self, invoice, other_admin):
        with pytest.raises(NotFoundError):
            production_service.create_print_job(invoice.id, user=other_admin)

    def test_job_blocks_invoice_delete(self, invoice, manager_user, company):
        production_service.create_print_job(invoice.id, user=manager_user)
        with pytest.raises(ConflictError):
            invoice_service.delete_invoice(invoice.id, company_id=company.id)


# =============================================================================
# PRODUCTION WORKFLOW
# =============================================================================

class TestProductionStatus:

    @pytest.fixture
    def job(self, invoice, manager_user):
        job, _ = production_service.create_print_job(invoice.id, user=manager_user)
        return job

    def test_full_workflow(self, job, company):
        production_service.update_production_status(job.id, company_id=company.id, status="in_progress", progress_percentage=10)
        assert job.started_at is not None
        assert job.progress_percentage == 10

        production_service.update_production_status(
            job.id, company_id=company.id, status="quality_check", progress_percentage=90, notes="Plates checked",
        )
        production_service.update_production_status(job.id, company_id=company.id, status="completed", notes="Packed")

        assert job.production_status == "completed"
        assert job.progress_percentage == 100
        assert job.completed_at is not None
        lines = job.production_notes.split("\n")
        assert len(lines) == 2
        assert lines[0].endswith("Plates checked")
        assert lines[1].endswith("Packed")

    def test_cannot_skip_to_completed(self, job, company):
        with pytest.raises(ConflictError):
            production_service.update_production_status(job.id, company_id=company.id, status="completed")

    def test_completed_is_terminal(self, job, company):
        for status in ("in_progress", "quality_check", "completed"):
            production_service.update_production_status(job.id, company_id=company.id, status=status)
        with pytest.raises(ConflictError):
            production_service.update_production_status(job.id, company_id=company.id, status="in_progress")

    def test_hold_and_resume(self, job, company):
        production_service.update_production_status(job.id, company_id=company.id, status="on_hold", notes="Waiting for paper")
        production_service.update_production_status(job.id, company_id=company.id, status="in_progress")
        assert job.production_status == "in_progress"

    @pytest.mark.parametrize("progress", [-1, 101, "abc"])
    def test_progress_range(self, job, company, progress):
        with pytest.raises(ValidationError):
            production_service.update_production_status(
                job.id, company_id=company.id, status="in_progress", progress_percentage=progress,
            )

    def test_unknown_status(self, job, company):
        with pytest.raises(ValidationError):
            production_service.update_production_status(job.id, company_id=company.id, status="printing")

    def test_other_company_job_hidden(self, job, other_company):
        with pytest.raises(NotFoundError):
            production_service.get_print_job(job.id, other_company.id)
