# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every payment, verification and print job is attributed to a user.
Uses bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app, has_app_context

from ..extensions import db
from ..models import Branch, Company, User
from ..permissions import VALID_ROLES
from printdesk.time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError


DEFAULT_BCRYPT_ROUNDS = 12


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, field="password")


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def _bcrypt_rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS))
    return DEFAULT_BCRYPT_ROUNDS


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash the password."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    role: str = "staff",
    company_id: int | None = None,
    branch_id: int | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: bad role, weak password, branch outside the company
        NotFoundError: company or branch missing
        ConflictError: username or email already taken
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username:
        raise ValidationError("username is required", field="username")
    if not email:
        raise ValidationError("email is required", field="email")
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of {VALID_ROLES}", field="role")

    if company_id is not None:
        company = db.session.query(Company).filter_by(id=company_id).first()
        if not company:
            raise NotFoundError("Company not found")

    if branch_id is not None:
        branch = db.session.query(Branch).filter_by(id=branch_id).first()
        if not branch:
            raise NotFoundError("Branch not found")
        if branch.company_id != company_id:
            raise ValidationError("Branch does not belong to this company", field="branch_id")

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if existing:
        raise ConflictError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        company_id=company_id,
        branch_id=branch_id,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Returns User if credentials are valid, None otherwise.

    Accepts username or email. Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == (username or "").lower()),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if user.company is not None and not user.company.is_active:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
