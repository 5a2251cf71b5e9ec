"""
Invoice lifecycle: creation, pricing, item edits, locking, duplication,
soft delete and listing.
"""

import re
from datetime import timedelta

import pytest

from printdesk.extensions import db
from printdesk.models import Invoice
from printdesk.services import catalog_service, invoice_service, payment_service, weight_tier_service
from printdesk.time_utils import today
from printdesk.validation import ConflictError, NotFoundError, ValidationError


def _new_invoice(company, branch, customer, user, items, **kwargs):
    return invoice_service.create_invoice(
        company_id=company.id,
        branch_id=branch.id,
        customer_id=customer.id,
        user_id=user.id,
        items=items,
        **kwargs,
    )


# =============================================================================
# CREATION AND PRICING
# =============================================================================

class TestCreateInvoice:

    def test_fixture_totals(self, invoice):
        assert invoice.subtotal_cents == 25_000
        assert invoice.total_weight_grams == 2_000
        assert invoice.weight_charge_cents == 30_000
        assert invoice.tax_amount_cents == 0
        assert invoice.discount_amount_cents == 2_000
        assert invoice.total_amount_cents == 53_000
        assert invoice.status == "draft"
        assert invoice.payment_status == "pending"
        assert invoice.due_date == invoice.invoice_date + timedelta(days=30)

    def test_product_items_snapshot_price_weight_tax(
        self, company, branch, customer, admin_user, business_cards, flyer
    ):
        invoice = _new_invoice(
            company, branch, customer, admin_user,
            [{"product_id": business_cards.id, "quantity": 2}, {"product_id": flyer.id, "quantity": 1}],
            discount_amount_cents=2_000,
        )
        first = invoice.items[0]
        assert first.item_description == "Business Cards (box)"
        assert first.unit_price_cents == 10_000
        assert first.unit_weight_grams == 500
        assert first.tax_rate_bps == 1_200
        assert first.tax_amount_cents == 2_400
        assert invoice.total_amount_cents == 55_400

        # Later catalogue changes do not touch the invoice
        business_cards.base_price_cents = 99_000
        db.session.commit()
        assert invoice.items[0].unit_price_cents == 10_000
        assert invoice.total_amount_cents == 55_400

    def test_item_overrides_product_price(self, company, branch, customer, admin_user, flyer):
        invoice = _new_invoice(
            company, branch, customer, admin_user,
            [{"product_id": flyer.id, "quantity": 1, "unit_price_cents": 4_000}],
        )
        assert invoice.items[0].unit_price_cents == 4_000
        assert invoice.items[0].unit_weight_grams == 1_000

    def test_invoice_numbers_are_sequential_per_branch(self, company, branch, customer, admin_user):
        first = _new_invoice(company, branch, customer, admin_user, [])
        second = _new_invoice(company, branch, customer, admin_user, [])
        assert re.match(r"^MAIN-\d{8}-0001$", first.invoice_number)
        assert second.invoice_number.endswith("-0002")

    def test_empty_invoice_has_no_weight_charge(self, company, branch, customer, admin_user):
        invoice = _new_invoice(company, branch, customer, admin_user, [])
        assert invoice.weight_charge_cents == 0
        assert invoice.total_amount_cents == 0

    def test_payment_status_follows_total(self, company, branch, customer, admin_user, flyer):
        invoice = _new_invoice(company, branch, customer, admin_user, [])
        assert invoice.payment_status == "paid"
        assert invoice.payment_status == payment_service.get_payment_summary(invoice.id).payment_status

        item = invoice_service.add_item(invoice.id, company_id=company.id, payload={"product_id": flyer.id, "quantity": 1})
        assert item.invoice.payment_status == "pending"

    def test_custom_item_requires_description(self, company, branch, customer, admin_user):
        with pytest.raises(ValidationError) as exc:
            _new_invoice(company, branch, customer, admin_user, [{"quantity": 1, "unit_price_cents": 1_000}])
        assert exc.value.field == "item_description"

    def test_unknown_item_field(self, company, branch, customer, admin_user):
        with pytest.raises(ValidationError):
            _new_invoice(
                company, branch, customer, admin_user,
                [{"item_description": "X", "quantity": 1, "unit_price_cents": 1, "line_total_cents": 5}],
            )

    def test_inactive_product_rejected(self, company, branch, customer, admin_user, flyer):
        flyer.is_active = False
        db.session.commit()
        with pytest.raises(ValidationError):
            _new_invoice(company, branch, customer, admin_user, [{"product_id": flyer.id, "quantity": 1}])

    def test_other_company_product_not_found(self, company, branch, customer, admin_user, other_company):
        foreign = catalog_service.create_product(
            company_id=other_company.id,
            payload={"name": "Poster", "base_price_cents": 1_000},
        )
        with pytest.raises(NotFoundError):
            _new_invoice(company, branch, customer, admin_user, [{"product_id": foreign.id, "quantity": 1}])

    def test_other_company_customer_not_found(self, company, branch, other_customer, admin_user):
        with pytest.raises(NotFoundError):
            _new_invoice(company, branch, other_customer, admin_user, [])

    def test_discount_above_total_rejected_and_nothing_saved(self, company, branch, customer, admin_user):
        with pytest.raises(ValidationError):
            _new_invoice(
                company, branch, customer, admin_user,
                [{"item_description": "Stickers", "quantity": 1, "unit_price_cents": 1_000}],
                discount_amount_cents=100_000,
            )
        assert db.session.query(Invoice).count() == 0

    def test_due_date_before_invoice_date(self, company, branch, customer, admin_user):
        with pytest.raises(ValidationError):
            _new_invoice(
                company, branch, customer, admin_user, [],
                invoice_date="2026-10-16", due_date="2026-10-01",
            )

    def test_custom_tiers_apply(self, company, branch, customer, admin_user):
        weight_tier_service.create_tier(
            company_id=company.id,
            payload={"tier_name": "Flat Local", "min_weight_grams": 0, "base_price_cents": 10_000},
        )
        invoice = _new_invoice(
            company, branch, customer, admin_user,
            [{"item_description": "Posters", "quantity": 4, "unit_price_cents": 1_000, "unit_weight_grams": 2_000}],
        )
        assert invoice.weight_charge_cents == 10_000
        assert invoice.total_amount_cents == 14_000

    def test_quote_saves_nothing(self, company, flyer):
        totals = invoice_service.quote(
            company_id=company.id,
            items=[{"product_id": flyer.id, "quantity": 3}],
            discount_amount_cents=500,
        )
        assert totals.subtotal_cents == 15_000
        assert totals.weight_charge_cents == 30_000
        assert totals.total_amount_cents == 44_500
        assert db.session.query(Invoice).count() == 0


# =============================================================================
# EDITING
# =============================================================================

class TestEditInvoice:

    def test_add_item_reprices(self, invoice, company):
        invoice_service.add_item(
            invoice.id,
            company_id=company.id,
            payload={"item_description": "Flyers", "quantity": 1, "unit_price_cents": 5_000, "unit_weight_grams": 1_000},
        )
        assert len(invoice.items) == 3
        assert invoice.subtotal_cents == 30_000
        assert invoice.total_weight_grams == 3_000
        assert invoice.weight_charge_cents == 30_000
        assert invoice.total_amount_cents == 58_000

    def test_update_item_reprices(self, invoice, company):
        item = invoice.items[0]
        invoice_service.update_item(invoice.id, item.id, company_id=company.id, payload={"quantity": 3})
        assert item.line_total_cents == 30_000
        assert invoice.total_weight_grams == 2_500
        assert invoice.total_amount_cents == 63_000

    def test_remove_item_reprices(self, invoice, company):
        envelopes = invoice.items[1]
        invoice_service.remove_item(invoice.id, envelopes.id, company_id=company.id)
        assert len(invoice.items) == 1
        assert invoice.total_weight_grams == 1_000
        assert invoice.weight_charge_cents == 20_000
        assert invoice.total_amount_cents == 38_000

    def test_unknown_item(self, invoice, company):
        with pytest.raises(NotFoundError):
            invoice_service.remove_item(invoice.id, 9_999, company_id=company.id)

    def test_discount_change_reprices(self, invoice, company):
        invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"discount_amount_cents": 0})
        assert invoice.total_amount_cents == 55_000

    def test_replace_items(self, invoice, company):
        invoice_service.update_invoice(
            invoice.id,
            company_id=company.id,
            payload={"items": [{"item_description": "Banner", "quantity": 1, "unit_price_cents": 45_000, "unit_weight_grams": 6_000}]},
        )
        assert len(invoice.items) == 1
        # 50000 + 1 kg over 5 kg at Rs.50/kg
        assert invoice.weight_charge_cents == 55_000
        assert invoice.total_amount_cents == 45_000 + 55_000 - 2_000

    def test_recalculate_after_tier_change(self, invoice, company):
        weight_tier_service.create_tier(
            company_id=company.id,
            payload={"tier_name": "Flat Local", "min_weight_grams": 0, "base_price_cents": 10_000},
        )
        # Stored totals are unchanged until the invoice is re-priced
        assert invoice.total_amount_cents == 53_000

        invoice_service.recalculate_totals(invoice.id, company_id=company.id)
        assert invoice.weight_charge_cents == 10_000
        assert invoice.total_amount_cents == 33_000

    def test_payment_freezes_priced_fields(self, invoice, company, staff_user):
        payment_service.record_payment(invoice.id, user_id=staff_user.id, amount_cents=10_000, payment_method="cash")

        assert invoice_service.can_be_modified(invoice) is False
        with pytest.raises(ConflictError):
            invoice_service.add_item(
                invoice.id,
                company_id=company.id,
                payload={"item_description": "Extra", "quantity": 1, "unit_price_cents": 100},
            )
        with pytest.raises(ConflictError):
            invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"discount_amount_cents": 0})
        with pytest.raises(ConflictError):
            invoice_service.recalculate_totals(invoice.id, company_id=company.id)

        # Notes stay editable
        invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"notes": "Collect Friday"})
        assert invoice.notes == "Collect Friday"
        assert invoice.total_amount_cents == 53_000

    def test_completed_invoice_is_frozen(self, invoice, company):
        invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"status": "completed"})
        with pytest.raises(ConflictError):
            invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"discount_amount_cents": 0})

    def test_unknown_field_rejected(self, invoice, company):
        with pytest.raises(ValidationError) as exc:
            invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"total_amount_cents": 1})
        assert exc.value.field == "total_amount_cents"


# =============================================================================
# STATUS, DELETE, DUPLICATE
# =============================================================================

class TestLifecycle:

    def test_cancel_with_completed_payment_rejected(self, invoice, company, staff_user, manager_user):
        payment = payment_service.record_payment(
            invoice.id, user_id=staff_user.id, amount_cents=10_000, payment_method="cash",
        )
        payment_service.verify_payment(payment.id, user_id=manager_user.id)

        with pytest.raises(ConflictError):
            invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"status": "cancelled"})

        payment_service.refund_payment(payment.id, user_id=manager_user.id, reason="Customer withdrew order")
        invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"status": "cancelled"})
        assert invoice.status == "cancelled"

    def test_cancelled_cannot_reopen(self, invoice, company):
        invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"status": "cancelled"})
        with pytest.raises(ConflictError):
            invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"status": "pending"})

    def test_invalid_status(self, invoice, company):
        with pytest.raises(ValidationError):
            invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"status": "archived"})

    def test_soft_delete(self, invoice, company):
        invoice_service.delete_invoice(invoice.id, company_id=company.id)

        assert db.session.get(Invoice, invoice.id).deleted_at is not None
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(invoice.id, company.id)
        assert invoice_service.list_invoices(company_id=company.id)["pagination"]["total"] == 0

    def test_only_drafts_can_be_deleted(self, invoice, company):
        invoice_service.update_invoice(invoice.id, company_id=company.id, payload={"status": "pending"})
        with pytest.raises(ConflictError):
            invoice_service.delete_invoice(invoice.id, company_id=company.id)

    def test_invoice_with_payment_cannot_be_deleted(self, invoice, company, staff_user):
        payment_service.record_payment(invoice.id, user_id=staff_user.id, amount_cents=1_000, payment_method="cash")
        with pytest.raises(ConflictError):
            invoice_service.delete_invoice(invoice.id, company_id=company.id)

    def test_duplicate(self, company, branch, customer, admin_user, staff_user, business_cards):
        source = _new_invoice(
            company, branch, customer, admin_user,
            [{"product_id": business_cards.id, "quantity": 2}],
            discount_amount_cents=1_000,
            notes="Rush order",
        )
        payment_service.record_payment(source.id, user_id=staff_user.id, amount_cents=1_000, payment_method="cash")

        copy = invoice_service.duplicate_invoice(source.id, company_id=company.id, user_id=staff_user.id)

        assert copy.id != source.id
        assert copy.invoice_number != source.invoice_number
        assert copy.status == "draft"
        assert copy.payment_status == "pending"
        assert copy.total_paid_cents == 0
        assert copy.invoice_date == today()
        assert copy.notes == "Rush order"
        assert copy.created_by_user_id == staff_user.id
        assert copy.items[0].product_id == business_cards.id
        assert copy.total_amount_cents == source.total_amount_cents


# =============================================================================
# LISTING
# =============================================================================

class TestListInvoices:

    def test_filters_and_pagination(self, company, branch, customer, vip_customer, admin_user):
        for _ in range(3):
            _new_invoice(company, branch, customer, admin_user, [])
        vip_invoice = _new_invoice(company, branch, vip_customer, admin_user, [], status="pending")

        page = invoice_service.list_invoices(company_id=company.id, per_page=2)
        assert page["count"] == 2
        assert page["pagination"]["total"] == 4
        assert page["pagination"]["total_pages"] == 2
        assert page["pagination"]["has_next"] is True
        assert page["pagination"]["has_prev"] is False

        pending = invoice_service.list_invoices(company_id=company.id, status="pending")
        assert [i["id"] for i in pending["items"]] == [vip_invoice.id]

        found = invoice_service.list_invoices(company_id=company.id, search="Ceylon")
        assert [i["id"] for i in found["items"]] == [vip_invoice.id]

    def test_company_scoped(self, invoice, other_company):
        assert invoice_service.list_invoices(company_id=other_company.id)["items"] == []

    def test_bad_filter(self, company):
        with pytest.raises(ValidationError):
            invoice_service.list_invoices(company_id=company.id, payment_status="overdue")
