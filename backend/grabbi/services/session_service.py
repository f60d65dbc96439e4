# Overview: Service-layer operations for session tokens; issue, validate, rotate and revoke.

"""
Session Token Management Service

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Only HMAC-SHA256(SECRET_KEY, token) is stored
- Access tokens live ACCESS_TOKEN_TTL_MINUTES, refresh tokens REFRESH_TOKEN_TTL_DAYS
- Refresh tokens are single use: presenting one revokes it and issues a new pair
- Tracks client IP and user agent
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow
from .concurrency import locked_first


ACCESS = "access"
REFRESH = "refresh"


class SessionError(Exception):
    def __init__(self, message: str, status: int = 401):
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass
class SessionContext:
    user: User
    session: SessionToken


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    key = current_app.config["SECRET_KEY"].encode("utf-8")
    return hmac.new(key, token.encode("utf-8"), hashlib.sha256).hexdigest()


def _ttl(token_type: str) -> timedelta:
    cfg = current_app.config
    if token_type == REFRESH:
        return timedelta(days=cfg.get("REFRESH_TOKEN_TTL_DAYS", 7))
    return timedelta(minutes=cfg.get("ACCESS_TOKEN_TTL_MINUTES", 60))


def _new_token(user_id, token_type: str, user_agent: str | None, ip_address: str | None) -> str:
    plaintext = generate_token()
    now = utcnow()
    db.session.add(SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext),
        token_type=token_type,
        created_at=now,
        expires_at=now + _ttl(token_type),
        user_agent=(user_agent or "")[:512] or None,
        ip_address=ip_address,
    ))
    return plaintext


def issue_token_pair(user: User, *, user_agent: str | None = None, ip_address: str | None = None) -> dict:
    """Create an access + refresh token pair and commit. Plaintext tokens are returned once, never stored."""
    access = _new_token(user.id, ACCESS, user_agent, ip_address)
    refresh = _new_token(user.id, REFRESH, user_agent, ip_address)
    db.session.commit()
    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "Bearer",
        "expires_in": int(_ttl(ACCESS).total_seconds()),
    }


def _lookup(token: str, token_type: str) -> SessionToken | None:
    if not token:
        return None
    return (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), token_type=token_type)
        .first()
    )


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve an access token to its user.

    Returns None when the token is unknown, expired or revoked. Blocked users
    are returned; the caller decides how to answer them.
    """
    session = _lookup(token, ACCESS)
    if session is None or session.is_revoked or session.expires_at < utcnow():
        return None

    user = session.user
    if user is None or user.deleted_at is not None:
        return None
    return SessionContext(user=user, session=session)


def rotate_refresh_token(token: str, *, user_agent: str | None = None, ip_address: str | None = None) -> tuple[User, dict]:
    """
    Exchange a refresh token for a new pair.

    Raises SessionError(401) for unknown, revoked or expired tokens and
    SessionError(403) for blocked accounts.
    """
    if not token:
        raise SessionError("refresh_token is required", status=400)

    q = db.session.query(SessionToken).filter_by(token_hash=hash_token(token), token_type=REFRESH)
    session = locked_first(q)
    now = utcnow()
    if session is None or session.is_revoked or session.expires_at < now:
        db.session.rollback()
        raise SessionError("Invalid or expired refresh token")

    user = session.user
    if user is None or user.deleted_at is not None:
        db.session.rollback()
        raise SessionError("Invalid or expired refresh token")
    if user.is_blocked:
        session.revoked_at = now
        db.session.commit()
        raise SessionError("Account is blocked", status=403)

    session.revoked_at = now
    return user, issue_token_pair(user, user_agent=user_agent, ip_address=ip_address)


def revoke_session(token: str) -> bool:
    """Revoke an access or refresh token. Returns False if it was unknown or already revoked."""
    token_hash = hash_token(token)
    session = (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == token_hash, SessionToken.revoked_at.is_(None))
        .first()
    )
    if not session:
        return False
    session.revoked_at = utcnow()
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id) -> int:
    now = utcnow()
    count = (
        db.session.query(SessionToken)
        .filter(SessionToken.user_id == user_id, SessionToken.revoked_at.is_(None))
        .update({SessionToken.revoked_at: now}, synchronize_session=False)
    )
    db.session.commit()
    return count


def cleanup_expired_sessions(older_than_days: int = 30) -> int:
    """Delete expired or revoked tokens created more than older_than_days ago."""
    cutoff = utcnow() - timedelta(days=older_than_days)
    deleted = (
        db.session.query(SessionToken)
        .filter(
            db.or_(SessionToken.expires_at < utcnow(), SessionToken.revoked_at.isnot(None)),
            SessionToken.created_at < cutoff,
        )
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
