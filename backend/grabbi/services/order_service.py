# Overview: Checkout pipeline and order status updates with stock compensation.

"""
Order Service

place_order runs cart load, pricing, stock reservation, order insert, loyalty
credit and cart clearing inside one transaction. Stock rows are locked in
product id order. The franchise override row is the stock row when it exists,
otherwise the master product row; never both.

Notifications are sent only after commit and cannot fail the request.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import (
    CartItem,
    Franchise,
    FranchiseProduct,
    LoyaltyHistory,
    Order,
    OrderItem,
    Product,
    User,
)
from ..models.auth import ROLE_ADMIN, FRANCHISE_ROLES
from ..time_utils import utcnow
from ..validation import ValidationError, parse_optional_uuid, parse_float
from . import catalog_service, franchise_service, notification_service
from .concurrency import locked_first, run_with_retry
from .order_status import CANCELLED, is_valid_transition, validate_status


logger = logging.getLogger(__name__)


class OrderError(Exception):
    """Checkout or status rule violation; code is the stable machine-readable kind."""

    def __init__(self, code: str, message: str, *, status: int = 400, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}

    def to_dict(self) -> dict:
        data = {"error": self.message, "code": self.code}
        if self.details:
            data["details"] = self.details
        return data


@dataclass(frozen=True)
class CheckoutRequest:
    delivery_address: str
    payment_method: str | None = None
    franchise_id: object | None = None
    customer_lat: float | None = None
    customer_lng: float | None = None

    @property
    def has_geo(self) -> bool:
        return self.customer_lat is not None and self.customer_lng is not None


def parse_checkout(payload: dict | None) -> CheckoutRequest:
    payload = payload or {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    address = str(payload.get("delivery_address") or "").strip()
    if not address:
        raise ValidationError("delivery_address is required")

    lat = payload.get("customer_lat")
    lng = payload.get("customer_lng")
    if (lat is None) != (lng is None):
        raise ValidationError("customer_lat and customer_lng must be provided together")
    if lat is not None:
        lat = parse_float(lat, "customer_lat")
        lng = parse_float(lng, "customer_lng")
        if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
            raise ValidationError("customer location is out of range")

    payment_method = payload.get("payment_method")
    return CheckoutRequest(
        delivery_address=address,
        payment_method=str(payment_method).strip() if payment_method else None,
        franchise_id=parse_optional_uuid(payload.get("franchise_id"), "franchise_id"),
        customer_lat=lat,
        customer_lng=lng,
    )


# ---------------------------------------------------------------------------
# Franchise resolution
# ---------------------------------------------------------------------------

def resolve_franchise(req: CheckoutRequest) -> Franchise | None:
    if req.franchise_id is not None:
        franchise = (
            db.session.query(Franchise)
            .filter(
                Franchise.id == req.franchise_id,
                Franchise.is_active.is_(True),
                Franchise.deleted_at.is_(None),
            )
            .first()
        )
        if franchise is None:
            raise OrderError("franchise_not_found", "Franchise not found", status=404)
        return franchise

    if req.has_geo:
        found = franchise_service.nearest_franchise(req.customer_lat, req.customer_lng)
        if found is None:
            raise OrderError("no_franchise_serves_location", "No franchise delivers to your location")
        return found[0]

    return None


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

@dataclass
class _Line:
    product: Product
    quantity: int
    price: float
    image_url: str | None


def generate_order_number(order_id) -> str:
    return "ORD" + utcnow().strftime("%Y%m%d%H%M%S") + str(order_id).replace("-", "")[:8].upper()


def delivery_fee_for(subtotal: float, franchise: Franchise | None) -> float:
    if franchise is not None:
        free_min, fee = franchise.free_delivery_min, franchise.delivery_fee
    else:
        free_min = current_app.config["DEFAULT_FREE_DELIVERY_MIN"]
        fee = current_app.config["DEFAULT_DELIVERY_FEE"]
    return 0.0 if subtotal >= free_min else round(fee, 2)


def _lock_franchise_product(franchise_id, product_id) -> FranchiseProduct | None:
    q = db.session.query(FranchiseProduct).filter_by(franchise_id=franchise_id, product_id=product_id)
    return locked_first(q)


def _lock_product(product_id) -> Product | None:
    q = db.session.query(Product).filter(Product.id == product_id)
    return locked_first(q)


def _reserve_stock(line: _Line, franchise_id) -> None:
    """Decrement exactly one stock row for the line, raising insufficient_stock without touching it."""
    row = _lock_franchise_product(franchise_id, line.product.id) if franchise_id else None
    if row is None:
        row = _lock_product(line.product.id)
    if row is None or row.stock_quantity < line.quantity:
        available = row.stock_quantity if row is not None else 0
        raise OrderError(
            "insufficient_stock",
            f"Insufficient stock for {line.product.item_name}",
            details={
                "product_id": str(line.product.id),
                "item_name": line.product.item_name,
                "requested": line.quantity,
                "available": available,
            },
        )
    row.stock_quantity -= line.quantity


def _checkout_tx(user_id, req: CheckoutRequest, franchise: Franchise | None):
    franchise_id = franchise.id if franchise else None

    cart = (
        db.session.query(CartItem)
        .options(selectinload(CartItem.product))
        .filter(CartItem.user_id == user_id, CartItem.deleted_at.is_(None))
        .all()
    )
    if not cart:
        raise OrderError("empty_cart", "Cart is empty")

    for item in cart:
        product = item.product
        if product is None or product.deleted_at is not None or product.status != "active":
            name = product.item_name if product else str(item.product_id)
            raise OrderError("product_unavailable", f"{name} is no longer available")

    product_ids = [item.product_id for item in cart]
    images = catalog_service.primary_images(product_ids)
    overrides = catalog_service.overrides_for(franchise_id, product_ids) if franchise_id else {}
    now = utcnow()

    lines = []
    for item in cart:
        eff = catalog_service.effective_values(item.product, overrides.get(item.product_id), now)
        lines.append(_Line(
            product=item.product,
            quantity=item.quantity,
            price=eff["current_price"],
            image_url=images.get(item.product_id),
        ))

    subtotal = round(sum(line.price * line.quantity for line in lines), 2)
    delivery_fee = delivery_fee_for(subtotal, franchise)
    total = round(subtotal + delivery_fee, 2)
    points = math.floor(subtotal)

    for line in sorted(lines, key=lambda ln: str(ln.product.id)):
        _reserve_stock(line, franchise_id)

    order = Order(
        user_id=user_id,
        franchise_id=franchise_id,
        status="pending",
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=total,
        points_earned=points,
        delivery_address=req.delivery_address,
        payment_method=req.payment_method,
        customer_lat=req.customer_lat,
        customer_lng=req.customer_lng,
    )
    order.id = uuid.uuid4()
    order.order_number = generate_order_number(order.id)
    db.session.add(order)

    order.items = [
        OrderItem(
            product_id=line.product.id,
            product_name=line.product.item_name,
            product_sku=line.product.sku,
            image_url=line.image_url,
            quantity=line.quantity,
            price=line.price,
        )
        for line in lines
    ]

    user = locked_first(db.session.query(User).filter(User.id == user_id))
    user.loyalty_points += points
    if points > 0:
        db.session.add(LoyaltyHistory(
            user_id=user_id,
            points=points,
            type="earned",
            description=f"Earned from order {order.order_number}",
            order_id=order.id,
        ))

    db.session.query(CartItem).filter(CartItem.user_id == user_id).delete(synchronize_session=False)

    db.session.commit()
    return order.id


def place_order(user: User, req: CheckoutRequest) -> Order:
    """
    Raises OrderError for business failures. Infrastructure errors propagate
    after rollback; nothing is written unless every step succeeds.
    """
    franchise = resolve_franchise(req)

    def _op():
        try:
            return _checkout_tx(user.id, req, franchise)
        except OrderError:
            db.session.rollback()
            raise

    order_id = run_with_retry(_op)

    order = get_order_by_id(order_id)
    logger.info("Order %s placed by user %s (total %.2f)", order.order_number, user.id, order.total)

    notification_service.send_order_confirmation(user.email, user.name, order.order_number, order.total)
    return order


# ---------------------------------------------------------------------------
# Status updates
# ---------------------------------------------------------------------------

def _restore_stock(order: Order) -> None:
    """Put each line back on the row checkout decremented."""
    for item in sorted(order.items, key=lambda it: str(it.product_id)):
        row = _lock_franchise_product(order.franchise_id, item.product_id) if order.franchise_id else None
        if row is None:
            row = _lock_product(item.product_id)
        if row is None:
            logger.warning("Order %s: product %s vanished, stock not restored", order.order_number, item.product_id)
            continue
        row.stock_quantity += item.quantity


def _scoped_order_query(actor: User | None):
    q = db.session.query(Order).filter(Order.deleted_at.is_(None))
    if actor is None or actor.role == ROLE_ADMIN:
        return q
    if actor.role in FRANCHISE_ROLES:
        return q.filter(Order.franchise_id == actor.franchise_id)
    return q.filter(Order.user_id == actor.id)


def update_status(order_id, new_status: str, *, actor: User | None = None) -> Order:
    try:
        validate_status(new_status)
    except ValueError:
        raise OrderError("invalid_status", f"Invalid status: {new_status}")

    def _op():
        q = _scoped_order_query(actor).filter(Order.id == order_id)
        order = locked_first(q)
        if order is None:
            db.session.rollback()
            raise OrderError("order_not_found", "Order not found", status=404)

        if not is_valid_transition(order.status, new_status):
            current = order.status
            db.session.rollback()
            raise OrderError(
                "invalid_transition",
                f"Cannot transition order from {current} to {new_status}",
                details={"from": current, "to": new_status},
            )

        if new_status == CANCELLED:
            _restore_stock(order)

        order.status = new_status
        db.session.commit()
        return order.id

    order = get_order_by_id(run_with_retry(_op))
    logger.info("Order %s moved to %s", order.order_number, new_status)

    if order.user is not None:
        notification_service.send_order_status_update(order.user.email, order.user.name, order.order_number, new_status)
    return order


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_order_by_id(order_id) -> Order | None:
    return (
        db.session.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.id == order_id, Order.deleted_at.is_(None))
        .first()
    )


def get_order(actor: User, order_id) -> Order | None:
    return (
        _scoped_order_query(actor)
        .options(selectinload(Order.items))
        .filter(Order.id == order_id)
        .first()
    )


def list_orders(
    actor: User,
    *,
    franchise_id=None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Order], int]:
    """
    Role-filtered listing, newest first.

    customer: own orders; franchise roles: their franchise; admin: all, with an
    optional franchise filter.
    """
    q = _scoped_order_query(actor)
    if franchise_id is not None and actor.role == ROLE_ADMIN:
        q = q.filter(Order.franchise_id == franchise_id)
    if status:
        q = q.filter(Order.status == status)

    total = q.count()
    orders = (
        q.options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return orders, total
