import pytest
from sqlalchemy.orm.exc import StaleDataError

from printdesk import create_app
from printdesk.extensions import db
from printdesk.models import Invoice, Payment, PrintJob, User
from printdesk.services import catalog_service, invoice_service, payment_service, production_service
from printdesk.services.auth_service import create_user
from printdesk.services.concurrency import DocumentNumberTakenError, run_with_retry
from printdesk.services.payment_service import OverpaymentError
from printdesk.validation import ConflictError, ValidationError


class TestRunWithRetry:

    def test_retries_stale_invoice_version(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("invoice version changed")
            return "ok"

        assert run_with_retry(_op, backoff_base=0) == "ok"
        assert len(calls) == 2

    def test_gives_up_after_attempts(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise StaleDataError("still stale")

        with pytest.raises(StaleDataError):
            run_with_retry(_op, attempts=3, backoff_base=0)
        assert len(calls) == 3

    def test_business_errors_are_not_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise ValidationError("bad amount")

        with pytest.raises(ValidationError):
            run_with_retry(_op, backoff_base=0)
        assert len(calls) == 1


# =============================================================================
# INTERLEAVED REQUESTS (file-backed SQLite, one session per app context)
# =============================================================================

LETTERHEADS = [{"item_description": "Letterheads", "quantity": 1, "unit_price_cents": 33_000, "unit_weight_grams": 500}]


@pytest.fixture
def race_app(tmp_path):
    """
    A separate app on a database file so a nested app context gets its own
    session and connection, the way two concurrent requests would.
    """
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.sqlite3'}",
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "BCRYPT_ROUNDS": 4,
    })
    with app.app_context():
        db.create_all()
        company = catalog_service.create_company(name="Colombo Print House", code="CPH")
        branch = catalog_service.create_branch(company_id=company.id, name="Main Branch", code="MAIN")
        customer = catalog_service.create_customer(company_id=company.id, payload={"name": "Nimal Perera"})
        manager = create_user(
            username="manager_user",
            email="manager@cph.lk",
            password="Password123!",
            role="manager",
            company_id=company.id,
            branch_id=branch.id,
        )
        for _ in range(2):
            invoice_service.create_invoice(
                company_id=company.id,
                branch_id=branch.id,
                customer_id=customer.id,
                user_id=manager.id,
                items=LETTERHEADS,
            )
        db.session.remove()

    yield app

    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _ids(app):
    with app.app_context():
        invoice_ids = [i.id for i in db.session.query(Invoice).order_by(Invoice.id).all()]
        manager_id = db.session.query(User).filter_by(username="manager_user").one().id
    return invoice_ids, manager_id


def _run_once(rival):
    """Wrap a function so the rival request runs, to completion, on its first call only."""
    state = {"done": False}

    def _hook(real):
        def _wrapped(*args, **kwargs):
            result = real(*args, **kwargs)
            if not state["done"]:
                state["done"] = True
                rival()
            return result
        return _wrapped

    return _hook


class TestInterleavedRequests:
    """
    Each invoice totals Rs. 530.00 (330.00 letterheads + 200.00 weight charge).
    """

    def test_concurrent_verifications_cannot_overpay(self, race_app, monkeypatch):
        (invoice_id, _), manager_id = _ids(race_app)

        with race_app.app_context():
            first = payment_service.record_payment(
                invoice_id, user_id=manager_id, amount_cents=30_000, payment_method="cash",
            ).id
            second = payment_service.record_payment(
                invoice_id, user_id=manager_id, amount_cents=30_000, payment_method="cash",
            ).id

        def _rival():
            with race_app.app_context():
                payment_service.verify_payment(second, user_id=manager_id)

        hook = _run_once(_rival)
        monkeypatch.setattr(payment_service, "ensure_within_balance", hook(payment_service.ensure_within_balance))

        with race_app.app_context():
            with pytest.raises(OverpaymentError):
                payment_service.verify_payment(first, user_id=manager_id)

        with race_app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            assert invoice.total_paid_cents == 30_000
            assert invoice.total_paid_cents <= invoice.total_amount_cents
            assert db.session.get(Payment, first).verification_status == "pending"
            assert db.session.get(Payment, second).verification_status == "verified"

    def test_concurrent_gateway_payments_cannot_overpay(self, race_app, monkeypatch):
        (invoice_id, _), manager_id = _ids(race_app)

        def _rival():
            with race_app.app_context():
                payment_service.record_gateway_payment(
                    invoice_id, user_id=manager_id, amount_cents=30_000, gateway_reference="PAYHERE-B",
                )

        hook = _run_once(_rival)
        monkeypatch.setattr(payment_service, "validate_payment_request", hook(payment_service.validate_payment_request))

        with race_app.app_context():
            with pytest.raises(OverpaymentError):
                payment_service.record_gateway_payment(
                    invoice_id, user_id=manager_id, amount_cents=30_000, gateway_reference="PAYHERE-A",
                )

        with race_app.app_context():
            invoice = db.session.get(Invoice, invoice_id)
            completed = db.session.query(Payment).filter_by(invoice_id=invoice_id, status="completed").all()
            assert [p.gateway_reference for p in completed] == ["PAYHERE-B"]
            assert invoice.total_paid_cents == 30_000
            assert invoice.total_paid_cents <= invoice.total_amount_cents

    def test_payment_reference_race_takes_next_number(self, race_app, monkeypatch):
        (first_invoice, second_invoice), manager_id = _ids(race_app)

        def _rival():
            with race_app.app_context():
                payment_service.record_payment(
                    second_invoice, user_id=manager_id, amount_cents=5_000, payment_method="cash",
                )

        hook = _run_once(_rival)
        monkeypatch.setattr(payment_service, "next_document_number", hook(payment_service.next_document_number))

        with race_app.app_context():
            payment = payment_service.record_payment(
                first_invoice, user_id=manager_id, amount_cents=10_000, payment_method="cash",
            )
            reference = payment.payment_reference

        with race_app.app_context():
            rival = db.session.query(Payment).filter_by(invoice_id=second_invoice).one()
            assert rival.payment_reference.endswith("-0001")
            assert reference.endswith("-0002")
            assert db.session.query(Payment).count() == 2

    def test_job_number_race_takes_next_number(self, race_app, monkeypatch):
        (first_invoice, second_invoice), manager_id = _ids(race_app)

        def _rival():
            with race_app.app_context():
                manager = db.session.get(User, manager_id)
                production_service.create_print_job(second_invoice, user=manager)

        hook = _run_once(_rival)
        monkeypatch.setattr(production_service, "next_document_number", hook(production_service.next_document_number))

        with race_app.app_context():
            manager = db.session.get(User, manager_id)
            job, _ = production_service.create_print_job(first_invoice, user=manager)
            job_number = job.job_number

        with race_app.app_context():
            rival = db.session.query(PrintJob).filter_by(invoice_id=second_invoice).one()
            assert rival.job_number.endswith("-001")
            assert job_number.endswith("-002")

    def test_second_job_for_same_invoice_still_conflicts(self, race_app, monkeypatch):
        (invoice_id, _), manager_id = _ids(race_app)

        def _rival():
            with race_app.app_context():
                manager = db.session.get(User, manager_id)
                production_service.create_print_job(invoice_id, user=manager)

        # Rival slips in after the eligibility check read "no job yet"
        hook = _run_once(_rival)
        monkeypatch.setattr(production_service, "next_document_number", hook(production_service.next_document_number))

        with race_app.app_context():
            manager = db.session.get(User, manager_id)
            with pytest.raises(ConflictError) as exc:
                production_service.create_print_job(invoice_id, user=manager)
            assert not isinstance(exc.value, DocumentNumberTakenError)

        with race_app.app_context():
            assert db.session.query(PrintJob).filter_by(invoice_id=invoice_id).count() == 1
