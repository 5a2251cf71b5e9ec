# Overview: Flask CLI command groups for bootstrap, inspection, and pricing.

# backend/printdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--company "Company Name"] [--company-code PD]
#   Idempotent bootstrap: default company, branch, sample products and one user per role.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--company-id 1]
# - python -m flask users create --company-id 1 --username desk1 --email desk1@printdesk.local --password "Password123!" --role staff
#
# Pricing:
# - python -m flask pricing sample --company-id 1
#   Print the delivery surcharge at reference weights.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Company, Product, User
from .money import format_currency
from .permissions import VALID_ROLES
from .services import catalog_service, weight_tier_service
from .services.auth_service import create_user
from .validation import ConflictError, NotFoundError, ValidationError


DEFAULT_PASSWORD = "Password123!"

SAMPLE_PRODUCTS = [
    # name, price (cents), unit weight (g), tax (bps)
    ("Business Cards (100)", 250_000, 300, 1_200),
    ("A4 Brochure", 15_000, 50, 1_200),
    ("Vinyl Banner 2x1m", 450_000, 1_500, 1_200),
    ("Flyer A5", 2_000, 10, 0),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--company', 'company_name', default='PrintDesk Demo', help='Company name')
@click.option('--company-code', default='PD', help='Company code')
@with_appcontext
def init_system(company_name, company_code):
    """
    Initialize a working system: company, branch, sample products and users.

    Users (all with password "Password123!"):
    admin, manager, staff, production

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing PrintDesk...")

    company = db.session.query(Company).filter_by(code=company_code.upper()).first()
    if not company:
        company = catalog_service.create_company(name=company_name, code=company_code)
        click.echo(f"PASS Created company: {company.name} (ID: {company.id}, Code: {company.code})")
    else:
        click.echo(f"PASS Using existing company: {company.name} (ID: {company.id})")

    branch = db.session.query(Branch).filter_by(company_id=company.id).first()
    if not branch:
        branch = catalog_service.create_branch(company_id=company.id, name="Main Branch", code="MAIN")
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Code: {branch.code})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    if not db.session.query(Product).filter_by(company_id=company.id).first():
        for name, price, weight, tax in SAMPLE_PRODUCTS:
            catalog_service.create_product(
                company_id=company.id,
                payload={
                    "name": name,
                    "base_price_cents": price,
                    "weight_per_unit_grams": weight,
                    "tax_rate_bps": tax,
                },
            )
        click.echo(f"PASS Created {len(SAMPLE_PRODUCTS)} sample products")

    if not company.customers:
        catalog_service.create_customer(company_id=company.id, payload={"name": "Walk-in Customer"})
        click.echo("PASS Created walk-in customer")

    click.echo("\nUSERS Creating default users...")
    for role in VALID_ROLES:
        if db.session.query(User).filter_by(username=role).first():
            click.echo(f"WARN  User '{role}' already exists, skipping...")
            continue
        try:
            create_user(
                username=role,
                email=f"{role}@printdesk.local",
                password=DEFAULT_PASSWORD,
                role=role,
                company_id=company.id,
                branch_id=branch.id,
            )
            click.echo(f"PASS Created user: {role} with role '{role}'")
        except (ValidationError, ConflictError) as e:
            click.echo(f"FAIL Failed to create user '{role}': {e}")

    click.echo("\n" + "=" * 60)
    click.echo("DONE PrintDesk Initialized")
    click.echo("=" * 60)
    click.echo(f"\nDefault password for all users: {DEFAULT_PASSWORD} (CHANGE IN PRODUCTION!)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--branch-id', type=int, help='Branch ID')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(VALID_ROLES), prompt=True, help='Role')
@with_appcontext
def create_user_cli(company_id, branch_id, username, email, password, role):
    """Create a user."""
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            company_id=company_id,
            branch_id=branch_id,
        )
        click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")
    except (ValidationError, ConflictError, NotFoundError) as e:
        raise click.ClickException(str(e))


@users_group.command('list')
@click.option('--company-id', type=int, help='Filter by company ID')
@with_appcontext
def list_users(company_id):
    """List users with their roles."""
    query = db.session.query(User)
    if company_id:
        query = query.filter_by(company_id=company_id)

    users = query.order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Company':<8} {'Username':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("=" * 90)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        company_str = str(user.company_id) if user.company_id else "-"
        click.echo(f"{user.id:<5} {company_str:<8} {user.username:<20} {user.email:<30} {active_str:<8} {user.role}")
    click.echo("=" * 90 + "\n")


@click.group('pricing')
def pricing_group():
    """Delivery surcharge inspection."""


@pricing_group.command('sample')
@click.option('--company-id', type=int, required=True, help='Company ID')
@with_appcontext
def pricing_sample(company_id):
    """Print the surcharge at reference weights (custom tiers first, then defaults)."""
    rows = weight_tier_service.get_sample_pricing(company_id)
    click.echo(f"{'Weight':<12} {'Tier':<16} {'Charge':>16}")
    for row in rows:
        click.echo(f"{row['weight']:<12} {row['tier']:<16} {format_currency(row['price_cents']):>16}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(pricing_group)
