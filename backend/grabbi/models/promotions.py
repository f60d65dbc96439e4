from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Promotion(db.Model):
    """Platform-wide marketing banner linking to a product or listing."""
    __tablename__ = "promotions"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image = db.Column(db.String(1024), nullable=True)
    product_url = db.Column(db.String(1024), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "description": self.description,
            "image": self.image,
            "product_url": self.product_url,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class FranchisePromotion(db.Model):
    """Franchise-scoped banner with an optional display window."""
    __tablename__ = "franchise_promotions"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    franchise_id = db.Column(db.Uuid, db.ForeignKey("franchises.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image = db.Column(db.String(1024), nullable=True)
    product_url = db.Column(db.String(1024), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True, info={"inclusive_end": True})

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "franchise_id": str(self.franchise_id),
            "title": self.title,
            "description": self.description,
            "image": self.image,
            "product_url": self.product_url,
            "is_active": self.is_active,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
        }
