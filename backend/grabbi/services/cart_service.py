# Overview: Service-layer operations for the shopping cart.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import CartItem, Franchise, User
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, parse_optional_uuid, parse_positive_int, parse_uuid
from . import catalog_service


def _live_product(product_id):
    product = catalog_service.find_product_by_id(product_id)
    if product is None or product.status != "active":
        raise NotFoundError("Product not found")
    return product


def _cart_rows(user_id) -> list[CartItem]:
    return (
        db.session.query(CartItem)
        .options(selectinload(CartItem.product))
        .filter(CartItem.user_id == user_id, CartItem.deleted_at.is_(None))
        .order_by(CartItem.created_at)
        .all()
    )


def get_cart(user: User, *, franchise_id=None) -> dict:
    """Cart lines priced with the franchise's effective values when a franchise is given."""
    rows = [r for r in _cart_rows(user.id) if r.product is not None and r.product.deleted_at is None]
    ids = [r.product_id for r in rows]
    images = catalog_service.primary_images(ids)
    overrides = catalog_service.overrides_for(franchise_id, ids) if franchise_id else {}
    now = utcnow()

    items = []
    subtotal = 0.0
    for row in rows:
        eff = catalog_service.effective_values(row.product, overrides.get(row.product_id), now)
        line_total = round(eff["current_price"] * row.quantity, 2)
        subtotal += line_total
        items.append({
            "id": str(row.id),
            "product_id": str(row.product_id),
            "franchise_id": str(row.franchise_id) if row.franchise_id else None,
            "item_name": row.product.item_name,
            "sku": row.product.sku,
            "image_url": images.get(row.product_id),
            "quantity": row.quantity,
            "price": eff["current_price"],
            "stock_quantity": eff["stock_quantity"],
            "line_total": line_total,
        })

    return {
        "items": items,
        "item_count": sum(i["quantity"] for i in items),
        "subtotal": round(subtotal, 2),
    }


def add_item(user: User, payload: dict) -> CartItem:
    """
    Add a product. An existing line for the same product (including a
    removed one) is reused so (user, product) stays unique.
    """
    product_id = parse_uuid(payload.get("product_id"), "product_id")
    quantity = parse_positive_int(payload.get("quantity", 1), "quantity")
    franchise_id = parse_optional_uuid(payload.get("franchise_id"), "franchise_id")
    _live_product(product_id)

    if franchise_id is not None:
        exists = (
            db.session.query(Franchise.id)
            .filter(Franchise.id == franchise_id, Franchise.deleted_at.is_(None))
            .first()
        )
        if not exists:
            raise NotFoundError("Franchise not found")

    item = db.session.query(CartItem).filter_by(user_id=user.id, product_id=product_id).first()
    if item is None:
        item = CartItem(user_id=user.id, product_id=product_id, quantity=quantity, franchise_id=franchise_id)
        db.session.add(item)
    elif item.deleted_at is not None:
        item.deleted_at = None
        item.quantity = quantity
        item.franchise_id = franchise_id
    else:
        item.quantity += quantity
        if franchise_id is not None:
            item.franchise_id = franchise_id

    try:
        db.session.commit()
    except IntegrityError:
        # a concurrent add created the row first; bump it instead
        db.session.rollback()
        item = db.session.query(CartItem).filter_by(user_id=user.id, product_id=product_id).one()
        item.deleted_at = None
        item.quantity += quantity
        db.session.commit()
    return item


def _own_item(user: User, item_id) -> CartItem:
    item = (
        db.session.query(CartItem)
        .filter(CartItem.id == item_id, CartItem.user_id == user.id, CartItem.deleted_at.is_(None))
        .first()
    )
    if item is None:
        raise NotFoundError("Cart item not found")
    return item


def update_item(user: User, item_id, payload: dict) -> CartItem:
    if "quantity" not in payload:
        raise ValidationError("quantity is required")
    item = _own_item(user, item_id)
    item.quantity = parse_positive_int(payload.get("quantity"), "quantity")
    db.session.commit()
    return item


def remove_item(user: User, item_id) -> None:
    item = _own_item(user, item_id)
    db.session.delete(item)
    db.session.commit()


def clear_cart(user: User) -> int:
    count = db.session.query(CartItem).filter(CartItem.user_id == user.id).delete(synchronize_session=False)
    db.session.commit()
    return count
