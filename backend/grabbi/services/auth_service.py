# Overview: Service-layer operations for accounts; passwords, registration, login, profile, resets and loyalty points.

"""
Authentication Service

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12), minimum 8 characters
- Emails are stored lower-cased and trimmed; uniqueness is global
- Blocked accounts cannot log in or refresh
- Password reset tokens are single use, hashed like session tokens,
  and expire after PASSWORD_RESET_TTL_MINUTES
- Tokens themselves are managed in session_service.py
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import timedelta

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import LoyaltyHistory, PasswordResetToken, User
from ..models.auth import FRANCHISE_ROLES, ROLE_ADMIN, ROLE_CUSTOMER, ROLE_FRANCHISE_OWNER, ROLES
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError, parse_optional_uuid
from . import notification_service, session_service
from .concurrency import locked_first


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
BCRYPT_ROUNDS = 12

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AuthError(Exception):
    """Authentication failure. status is 401 for bad credentials, 403 for blocked accounts."""

    def __init__(self, message: str, status: int = 401):
        super().__init__(message)
        self.message = message
        self.status = status


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet the length requirement."""


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe compare through bcrypt.checkpw. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def normalize_email(email) -> str:
    value = str(email or "").strip().lower()
    if not _EMAIL_RE.match(value):
        raise ValidationError("A valid email is required")
    return value


def get_user_by_email(email: str) -> User | None:
    return (
        db.session.query(User)
        .filter(User.email == email.strip().lower(), User.deleted_at.is_(None))
        .first()
    )


def get_user(user_id) -> User | None:
    return db.session.query(User).filter(User.id == user_id, User.deleted_at.is_(None)).first()


def create_user(
    email: str,
    password: str,
    *,
    name: str | None = None,
    phone: str | None = None,
    role: str = ROLE_CUSTOMER,
    franchise_id=None,
    commit: bool = True,
) -> User:
    """
    Create an account. Raises ValidationError for bad input and ConflictError
    when the email is taken.
    """
    email = normalize_email(email)
    if role not in ROLES:
        raise ValidationError("Invalid role")
    if db.session.query(User.id).filter(User.email == email).first():
        raise ConflictError("Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=(name or "").strip() or None,
        phone=(phone or "").strip() or None,
        role=role,
        franchise_id=franchise_id,
    )
    db.session.add(user)
    try:
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered")
    return user


def register(payload: dict, *, user_agent: str | None = None, ip_address: str | None = None) -> tuple[User, dict]:
    """Customer self-registration. Returns the user and a fresh token pair."""
    user = create_user(
        payload.get("email"),
        payload.get("password"),
        name=payload.get("name"),
        phone=payload.get("phone"),
    )
    tokens = session_service.issue_token_pair(user, user_agent=user_agent, ip_address=ip_address)
    logger.info("Registered user %s", user.id)
    notification_service.send_welcome(user.email, user.name)
    return user, tokens


def authenticate(email, password, *, user_agent: str | None = None, ip_address: str | None = None) -> tuple[User, dict]:
    if not email or not password:
        raise ValidationError("Email and password are required")

    user = get_user_by_email(str(email))
    if not user or not verify_password(str(password), user.password_hash):
        logger.info("Failed login for %s from %s", str(email).strip().lower(), ip_address)
        raise AuthError("Invalid email or password")
    if user.is_blocked:
        raise AuthError("Account is blocked", status=403)

    tokens = session_service.issue_token_pair(user, user_agent=user_agent, ip_address=ip_address)
    return user, tokens


def update_profile(user: User, payload: dict) -> User:
    for field in ("name", "phone"):
        if field in payload:
            value = payload.get(field)
            setattr(user, field, (str(value).strip() or None) if value is not None else None)
    db.session.commit()
    return user


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password or "", user.password_hash):
        raise AuthError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.session.commit()
    # other devices must sign in again
    session_service.revoke_all_user_sessions(user.id)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

def frontend_url_for(user: User) -> str:
    cfg = current_app.config
    if user.role == ROLE_ADMIN:
        return cfg["ADMIN_URL"]
    if user.role in FRANCHISE_ROLES:
        return cfg["FRANCHISE_URL"]
    return cfg["FRONTEND_URL"]


def request_password_reset(email) -> str | None:
    """
    Issue a reset token and email it. Unknown emails are silently ignored so
    the endpoint cannot be used to enumerate accounts.

    Returns the plaintext token (None when no account matched).
    """
    try:
        email = normalize_email(email)
    except ValidationError:
        return None
    user = get_user_by_email(email)
    if not user or user.is_blocked:
        return None

    token = secrets.token_urlsafe(32)
    ttl = timedelta(minutes=current_app.config.get("PASSWORD_RESET_TTL_MINUTES", 60))
    db.session.add(PasswordResetToken(
        user_id=user.id,
        token_hash=session_service.hash_token(token),
        expires_at=utcnow() + ttl,
    ))
    db.session.commit()

    notification_service.send_password_reset(user.email, user.name, token, frontend_url_for(user))
    return token


def reset_password(token: str, new_password: str) -> User:
    if not token:
        raise ValidationError("token is required")
    validate_password_strength(new_password)

    q = db.session.query(PasswordResetToken).filter(
        PasswordResetToken.token_hash == session_service.hash_token(token),
        PasswordResetToken.used_at.is_(None),
    )
    record = locked_first(q)
    if record is None or record.expires_at < utcnow():
        raise ValidationError("Invalid or expired reset token")

    user = get_user(record.user_id)
    if user is None:
        raise ValidationError("Invalid or expired reset token")

    user.password_hash = hash_password(new_password)
    record.used_at = utcnow()
    db.session.commit()
    session_service.revoke_all_user_sessions(user.id)
    logger.info("Password reset for user %s", user.id)
    return user


# ---------------------------------------------------------------------------
# Loyalty
# ---------------------------------------------------------------------------

def redeem_points(user: User, points: int) -> User:
    """Spend points; the balance may reach zero but never go below it."""
    q = db.session.query(User).filter(User.id == user.id)
    locked = locked_first(q)
    if locked.loyalty_points < points:
        db.session.rollback()
        raise ValidationError("Insufficient loyalty points")

    locked.loyalty_points -= points
    db.session.add(LoyaltyHistory(
        user_id=locked.id,
        points=points,
        type="redeemed",
        description=f"Redeemed {points} points",
    ))
    db.session.commit()
    return locked


def loyalty_history(user: User, *, page: int = 1, limit: int = 20) -> tuple[list[LoyaltyHistory], int]:
    q = db.session.query(LoyaltyHistory).filter(LoyaltyHistory.user_id == user.id)
    total = q.count()
    rows = (
        q.order_by(LoyaltyHistory.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


# ---------------------------------------------------------------------------
# Admin user management
# ---------------------------------------------------------------------------

def list_users(*, role: str | None = None, search: str | None = None, page: int = 1, limit: int = 20) -> tuple[list[User], int]:
    q = db.session.query(User).filter(User.deleted_at.is_(None))
    if role:
        q = q.filter(User.role == role)
    if search:
        term = search.strip()
        q = q.filter(db.or_(
            User.email.icontains(term, autoescape=True),
            User.name.icontains(term, autoescape=True),
        ))
    total = q.count()
    users = q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return users, total


def admin_update_user(user_id, payload: dict, *, actor: User) -> User:
    user = get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")

    if "role" in payload:
        role = payload.get("role")
        if role not in ROLES:
            raise ValidationError("Invalid role")
        if user.id == actor.id and role != ROLE_ADMIN:
            raise ValidationError("Admins cannot remove their own admin role")
        user.role = role

    if "franchise_id" in payload:
        user.franchise_id = parse_optional_uuid(payload.get("franchise_id"), "franchise_id")

    if "is_blocked" in payload:
        blocked = payload.get("is_blocked")
        if not isinstance(blocked, bool):
            raise ValidationError("is_blocked must be a boolean")
        if user.id == actor.id and blocked:
            raise ValidationError("Admins cannot block themselves")
        user.is_blocked = blocked

    if user.role in FRANCHISE_ROLES and user.franchise_id is None:
        raise ValidationError("Franchise roles require a franchise_id")
    if user.role not in FRANCHISE_ROLES:
        user.franchise_id = None

    db.session.commit()
    if user.is_blocked:
        session_service.revoke_all_user_sessions(user.id)
    logger.info("Admin %s updated user %s", actor.id, user.id)
    return user


def promote_to_owner(user: User, franchise_id) -> None:
    """Link a user to a franchise as its owner. Caller commits."""
    if user.role != ROLE_ADMIN:
        user.role = ROLE_FRANCHISE_OWNER
    user.franchise_id = franchise_id
