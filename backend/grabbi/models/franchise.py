from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Franchise(db.Model):
    """
    A retail location with its own delivery area, fees and override rows.

    delivery_radius is in kilometres.
    """
    __tablename__ = "franchises"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(128), nullable=False, unique=True, index=True)
    owner_id = db.Column(db.Uuid, db.ForeignKey("users.id"), nullable=False, index=True)

    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    post_code = db.Column(db.String(32), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    latitude = db.Column(db.Float, nullable=False, info={"round_digits": 6})
    longitude = db.Column(db.Float, nullable=False, info={"round_digits": 6})
    delivery_radius = db.Column(db.Float, nullable=False, default=5.0)
    delivery_fee = db.Column(db.Float, nullable=False, default=4.99)
    free_delivery_min = db.Column(db.Float, nullable=False, default=50.0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    owner = db.relationship("User", foreign_keys=[owner_id])

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "slug": self.slug,
            "owner_id": str(self.owner_id),
            "address": self.address,
            "city": self.city,
            "post_code": self.post_code,
            "phone": self.phone,
            "email": self.email,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "delivery_radius": self.delivery_radius,
            "delivery_fee": self.delivery_fee,
            "free_delivery_min": self.free_delivery_min,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class FranchiseStaff(db.Model):
    """Staff membership. A user can work at one franchise at a time."""
    __tablename__ = "franchise_staff"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    franchise_id = db.Column(db.Uuid, db.ForeignKey("franchises.id"), nullable=False, index=True)
    user_id = db.Column(db.Uuid, db.ForeignKey("users.id"), nullable=False, unique=True)
    role = db.Column(db.String(32), nullable=False, default="staff")  # manager | staff
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    franchise = db.relationship("Franchise", backref=db.backref("staff", lazy=True))
    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "franchise_id": str(self.franchise_id),
            "user_id": str(self.user_id),
            "role": self.role,
            "user": {
                "email": self.user.email,
                "name": self.user.name,
            } if self.user else None,
            "created_at": to_utc_z(self.created_at),
        }


class StoreHours(db.Model):
    """
    Opening hours for one weekday. day_of_week runs 0=Sunday..6=Saturday and
    times are local "HH:MM" strings; a closed day keeps its times for display.
    """
    __tablename__ = "store_hours"
    __table_args__ = (
        db.UniqueConstraint("franchise_id", "day_of_week", name="uq_store_hours_franchise_day"),
        db.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_store_hours_day_of_week"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    franchise_id = db.Column(db.Uuid, db.ForeignKey("franchises.id"), nullable=False, index=True)
    day_of_week = db.Column(db.Integer, nullable=False)
    open_time = db.Column(db.String(5), nullable=False, default="09:00")
    close_time = db.Column(db.String(5), nullable=False, default="21:00")
    is_closed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)

    franchise = db.relationship(
        "Franchise",
        backref=db.backref("store_hours", lazy=True, order_by="StoreHours.day_of_week"),
    )

    def to_dict(self) -> dict:
        return {
            "day_of_week": self.day_of_week,
            "open_time": self.open_time,
            "close_time": self.close_time,
            "is_closed": self.is_closed,
        }
