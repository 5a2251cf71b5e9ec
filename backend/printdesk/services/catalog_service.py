# backend/printdesk/services/catalog_service.py
"""
Reference data: companies, branches, customers and products.

These rows are read by invoicing and pricing; they are created by the
`flask system init` bootstrap and by tests, not through the HTTP API.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Branch, Company, Customer, Product
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_product,
    validate_payload,
)

CUSTOMER_TYPES = {"regular", "vip", "corporate"}

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "base_price_cents", "weight_per_unit_grams", "tax_rate_bps", "is_active"},
    required_on_create={"name", "base_price_cents"},
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "customer_type"},
    required_on_create={"name"},
)


def _require_company(company_id: int) -> Company:
    company = db.session.query(Company).filter_by(id=company_id).first()
    if not company:
        raise NotFoundError(f"Company {company_id} not found")
    return company


def create_company(*, name: str, code: str) -> Company:
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("code is required", field="code")
    if db.session.query(Company).filter_by(code=code).first():
        raise ConflictError(f"Company code {code} already exists")

    company = Company(name=name.strip(), code=code, is_active=True)
    db.session.add(company)
    db.session.commit()
    return company


def create_branch(*, company_id: int, name: str, code: str) -> Branch:
    _require_company(company_id)
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("code is required", field="code")
    if db.session.query(Branch).filter_by(company_id=company_id, code=code).first():
        raise ConflictError(f"Branch code {code} already exists")

    branch = Branch(company_id=company_id, name=name.strip(), code=code, is_active=True)
    db.session.add(branch)
    db.session.commit()
    return branch


def create_customer(*, company_id: int, payload: dict) -> Customer:
    _require_company(company_id)
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    customer_type = patch.get("customer_type") or "regular"
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError(f"customer_type must be one of {sorted(CUSTOMER_TYPES)}", field="customer_type")
    patch["customer_type"] = customer_type

    customer = Customer(company_id=company_id, **patch)
    db.session.add(customer)
    db.session.commit()
    return customer


def create_product(*, company_id: int, payload: dict) -> Product:
    _require_company(company_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    product = Product(company_id=company_id, weight_per_unit_grams=0, tax_rate_bps=0, is_active=True)
    for key, value in patch.items():
        setattr(product, key, value)
    db.session.add(product)
    db.session.commit()
    return product
