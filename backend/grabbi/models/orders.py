from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class CartItem(db.Model):
    """
    One line per (user, product). Adding an existing product bumps quantity.

    franchise_id records the storefront the item was added from; checkout
    resolves its own franchise and does not reconcile the two.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(db.Uuid, db.ForeignKey("users.id"), nullable=False, index=True)
    product_id = db.Column(db.Uuid, db.ForeignKey("products.id"), nullable=False, index=True)
    franchise_id = db.Column(db.Uuid, db.ForeignKey("franchises.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "product_id": str(self.product_id),
            "franchise_id": str(self.franchise_id) if self.franchise_id else None,
            "quantity": self.quantity,
            "created_at": to_utc_z(self.created_at),
        }


class Order(db.Model):
    """
    Customer order.

    Totals are frozen at checkout: total = subtotal + delivery_fee and
    points_earned = floor(subtotal). After creation only status changes.
    """
    __tablename__ = "orders"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    user_id = db.Column(db.Uuid, db.ForeignKey("users.id"), nullable=False, index=True)
    franchise_id = db.Column(db.Uuid, db.ForeignKey("franchises.id"), nullable=True, index=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    subtotal = db.Column(db.Float, nullable=False)
    delivery_fee = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False)
    points_earned = db.Column(db.Integer, nullable=False, default=0)

    delivery_address = db.Column(db.Text, nullable=False)
    payment_method = db.Column(db.String(64), nullable=True)
    customer_lat = db.Column(db.Float, nullable=True)
    customer_lng = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    user = db.relationship("User")
    franchise = db.relationship("Franchise")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.created_at",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "franchise_id": str(self.franchise_id) if self.franchise_id else None,
            "order_number": self.order_number,
            "status": self.status,
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "total": self.total,
            "points_earned": self.points_earned,
            "delivery_address": self.delivery_address,
            "payment_method": self.payment_method,
            "customer_lat": self.customer_lat,
            "customer_lng": self.customer_lng,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Order line. price, image_url, product_name and product_sku are snapshots taken at checkout."""
    __tablename__ = "order_items"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    order_id = db.Column(db.Uuid, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Uuid, db.ForeignKey("products.id"), nullable=False, index=True)

    image_url = db.Column(db.String(1024), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=True)
    product_sku = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "order_id": str(self.order_id),
            "product_id": str(self.product_id),
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "image_url": self.image_url,
            "quantity": self.quantity,
            "price": self.price,
            "line_total": round(self.price * self.quantity, 2),
        }
