from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ROLE_CUSTOMER = "customer"
ROLE_FRANCHISE_STAFF = "franchise_staff"
ROLE_FRANCHISE_OWNER = "franchise_owner"
ROLE_ADMIN = "admin"

ROLES = (ROLE_CUSTOMER, ROLE_FRANCHISE_STAFF, ROLE_FRANCHISE_OWNER, ROLE_ADMIN)
FRANCHISE_ROLES = (ROLE_FRANCHISE_STAFF, ROLE_FRANCHISE_OWNER)


class User(db.Model):
    """
    Platform account.

    One table for every role. Franchise roles carry franchise_id, which scopes
    their portal and order visibility. franchise_id is not a database foreign key
    because franchises also point back at their owner.
    """
    __tablename__ = "users"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)

    role = db.Column(db.String(32), nullable=False, default=ROLE_CUSTOMER, index=True)
    franchise_id = db.Column(db.Uuid, nullable=True, index=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    is_blocked = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    __table_args__ = (
        db.CheckConstraint("loyalty_points >= 0", name="ck_users_loyalty_points_nonneg"),
    )

    @property
    def is_franchise_user(self) -> bool:
        return self.role in FRANCHISE_ROLES

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "role": self.role,
            "franchise_id": str(self.franchise_id) if self.franchise_id else None,
            "loyalty_points": self.loyalty_points,
            "is_blocked": self.is_blocked,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Access and refresh tokens.

    SECURITY: only an HMAC of the plaintext token is stored. Refresh tokens are
    single use: rotation revokes the presented token and issues a new pair.
    """
    __tablename__ = "session_tokens"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(db.Uuid, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(128), nullable=False, unique=True, index=True)
    token_type = db.Column(db.String(16), nullable=False, default="access")  # access | refresh

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked_at = db.Column(db.DateTime, nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None


class PasswordResetToken(db.Model):
    __tablename__ = "password_reset_tokens"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(db.Uuid, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(128), nullable=False, unique=True, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user = db.relationship("User")


class LoyaltyHistory(db.Model):
    """Ledger of loyalty point movements; points is always positive, type gives the sign."""
    __tablename__ = "loyalty_history"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(db.Uuid, db.ForeignKey("users.id"), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)  # earned | redeemed
    description = db.Column(db.String(255), nullable=True)
    order_id = db.Column(db.Uuid, db.ForeignKey("orders.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "points": self.points,
            "type": self.type,
            "description": self.description,
            "order_id": str(self.order_id) if self.order_id else None,
            "created_at": to_utc_z(self.created_at),
        }
