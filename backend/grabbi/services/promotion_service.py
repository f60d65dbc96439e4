# Overview: Service-layer operations for platform promotions (marketing banners).

from __future__ import annotations

from ..extensions import db
from ..models import Promotion
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, NotFoundError, validate_payload


PROMOTION_POLICY = ModelValidationPolicy(
    writable_fields={"title", "description", "image", "product_url", "is_active"},
    required_on_create={"title"},
)


def list_promotions(*, include_inactive: bool = False) -> list[Promotion]:
    q = db.session.query(Promotion).filter(Promotion.deleted_at.is_(None))
    if not include_inactive:
        q = q.filter(Promotion.is_active.is_(True))
    return q.order_by(Promotion.created_at.desc()).all()


def get_promotion(promotion_id, *, include_inactive: bool = False) -> Promotion:
    q = db.session.query(Promotion).filter(Promotion.id == promotion_id, Promotion.deleted_at.is_(None))
    if not include_inactive:
        q = q.filter(Promotion.is_active.is_(True))
    promo = q.first()
    if promo is None:
        raise NotFoundError("Promotion not found")
    return promo


def create_promotion(payload: dict) -> Promotion:
    patch = validate_payload(model=Promotion, payload=payload, policy=PROMOTION_POLICY, partial=False)
    promo = Promotion(**patch)
    db.session.add(promo)
    db.session.commit()
    return promo


def update_promotion(promotion_id, payload: dict) -> Promotion:
    promo = get_promotion(promotion_id, include_inactive=True)
    patch = validate_payload(model=Promotion, payload=payload, policy=PROMOTION_POLICY, partial=True)
    for key, value in patch.items():
        setattr(promo, key, value)
    db.session.commit()
    return promo


def delete_promotion(promotion_id) -> None:
    promo = get_promotion(promotion_id, include_inactive=True)
    promo.deleted_at = utcnow()
    db.session.commit()
