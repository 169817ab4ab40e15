# Overview: Service-layer operations for session; issues and validates bearer tokens.

"""
Session Token Management Service

WHY: Every request that reaches the approval workflow must be attributable
to a user. Staff authenticate with opaque bearer tokens issued by the
`flask users issue-token` command (or by whatever login front end is put in
front of this API).

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute timeout of SESSION_TTL_HOURS
- Revocable; sessions of deactivated users are revoked on first use
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


@dataclass
class SessionContext:
    """Identity resolved from a bearer token."""
    user: User
    session: SessionToken


def generate_token() -> str:
    """64 hex characters; plaintext is returned to the client once and never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 hex digest for storage.

    WHY SHA-256 not bcrypt: tokens are already high-entropy.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int, ttl_hours: int | None = None) -> tuple[SessionToken, str]:
    """
    Issue a session for an active user.

    Returns (session_record, plaintext_token).

    Raises ValueError if the user does not exist or is deactivated.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User account is deactivated")

    if ttl_hours is None:
        ttl_hours = current_app.config["SESSION_TTL_HOURS"]

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _find_active(token: str) -> SessionToken | None:
    if not token:
        return None
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .one_or_none()
    )


def _revoke(session: SessionToken) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token.

    None for unknown, expired or revoked tokens. A token whose user has been
    deactivated is revoked on the spot.
    """
    session = _find_active(token)
    if session is None or session.expires_at < utcnow():
        return None

    if session.user is None or not session.user.is_active:
        _revoke(session)
        return None

    return SessionContext(user=session.user, session=session)


def revoke_session(token: str) -> bool:
    """Revoke a token. False when it was not an active session."""
    session = _find_active(token)
    if session is None:
        return False
    _revoke(session)
    return True
