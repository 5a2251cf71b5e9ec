# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service

WHY: API clients authenticate with a bearer token. Tokens are
cryptographically random, stored only as a SHA-256 hash, time-limited
and revocable.

SECURITY FEATURES:
- 32 random bytes per token (secrets.token_hex)
- SHA-256 hash stored, plaintext only ever returned to the client
- Absolute timeout from SESSION_TTL_HOURS
- Revoked on logout or when the user is deactivated
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app, has_app_context

from ..extensions import db
from ..models import SessionToken, User
from printdesk.time_utils import utcnow


DEFAULT_SESSION_TTL_HOURS = 24


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    WHY SHA-256 not bcrypt: tokens are already high-entropy, so a fast
    one-way hash is sufficient.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def _session_ttl() -> timedelta:
    hours = DEFAULT_SESSION_TTL_HOURS
    if has_app_context():
        hours = int(current_app.config.get("SESSION_TTL_HOURS", DEFAULT_SESSION_TTL_HOURS))
    return timedelta(hours=hours)


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Returns (session_record, plaintext_token).
    """
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise ValueError("User not found")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + _session_ttl(),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """
    Return the session's user, or None if the token is unknown, expired,
    revoked, or belongs to a deactivated user.
    """
    now = utcnow()
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    user = session.user
    if not user or not user.is_active:
        session.is_revoked = True
        session.revoked_at = now
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
