from __future__ import annotations

import uuid

from ..extensions import db
from ..time_utils import to_utc_z, to_date_str, utcnow


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(1024), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    def to_dict(self, subcategories: list | None = None) -> dict:
        data = {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "created_at": to_utc_z(self.created_at),
        }
        if subcategories is not None:
            data["subcategories"] = [s.to_dict() for s in subcategories]
        return data


class Subcategory(db.Model):
    __tablename__ = "subcategories"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    category_id = db.Column(db.Uuid, db.ForeignKey("categories.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    category = db.relationship("Category")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "category_id": str(self.category_id),
            "name": self.name,
            "description": self.description,
        }


class Product(db.Model):
    """
    Master catalog row.

    Franchise-specific stock and prices live in FranchiseProduct; when no
    override row exists the master values apply, including stock.
    Money columns are floats rounded to 2 decimals at write time.
    """
    __tablename__ = "products"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    item_name = db.Column(db.String(255), nullable=False, index=True)
    short_description = db.Column(db.Text, nullable=True)
    long_description = db.Column(db.Text, nullable=True)

    cost_price = db.Column(db.Float, nullable=False, default=0.0)
    retail_price = db.Column(db.Float, nullable=False)
    promotion_price = db.Column(db.Float, nullable=True)
    promotion_start = db.Column(db.DateTime, nullable=True)
    promotion_end = db.Column(db.DateTime, nullable=True, info={"inclusive_end": True})

    gross_margin = db.Column(db.Float, nullable=False, default=0.0)
    staff_discount = db.Column(db.Float, nullable=False, default=0.0)
    tax_rate = db.Column(db.Float, nullable=False, default=0.0)

    batch_number = db.Column(db.String(128), nullable=True, index=True)
    barcode = db.Column(db.String(128), nullable=True, unique=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0, index=True)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)
    shelf_location = db.Column(db.String(128), nullable=True)

    weight_volume = db.Column(db.Float, nullable=False, default=0.0)
    unit_of_measure = db.Column(db.String(32), nullable=True)
    expiry_date = db.Column(db.DateTime, nullable=True)
    pack_size = db.Column(db.String(64), nullable=True)

    category_id = db.Column(db.Uuid, db.ForeignKey("categories.id"), nullable=False, index=True)
    subcategory_id = db.Column(db.Uuid, db.ForeignKey("subcategories.id"), nullable=True, index=True)
    brand = db.Column(db.String(128), nullable=True, index=True)
    supplier = db.Column(db.String(128), nullable=True)
    country_of_origin = db.Column(db.String(128), nullable=True)

    is_gluten_free = db.Column(db.Boolean, nullable=False, default=False)
    is_vegetarian = db.Column(db.Boolean, nullable=False, default=False)
    is_vegan = db.Column(db.Boolean, nullable=False, default=False)
    is_age_restricted = db.Column(db.Boolean, nullable=False, default=False)
    minimum_age = db.Column(db.Integer, nullable=True)

    allergen_info = db.Column(db.Text, nullable=True)
    storage_type = db.Column(db.String(64), nullable=True)
    is_own_brand = db.Column(db.Boolean, nullable=False, default=False)
    online_visible = db.Column(db.Boolean, nullable=False, default=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)
    deleted_by = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_nonneg"),
    )

    category = db.relationship("Category")
    subcategory = db.relationship("Subcategory")

    def to_dict(self, images: list | None = None) -> dict:
        data = {
            "id": str(self.id),
            "sku": self.sku,
            "item_name": self.item_name,
            "short_description": self.short_description,
            "long_description": self.long_description,
            "cost_price": self.cost_price,
            "retail_price": self.retail_price,
            "promotion_price": self.promotion_price,
            "promotion_start": to_date_str(self.promotion_start),
            "promotion_end": to_date_str(self.promotion_end),
            "gross_margin": self.gross_margin,
            "staff_discount": self.staff_discount,
            "tax_rate": self.tax_rate,
            "batch_number": self.batch_number,
            "barcode": self.barcode,
            "stock_quantity": self.stock_quantity,
            "reorder_level": self.reorder_level,
            "shelf_location": self.shelf_location,
            "weight_volume": self.weight_volume,
            "unit_of_measure": self.unit_of_measure,
            "expiry_date": to_date_str(self.expiry_date),
            "pack_size": self.pack_size,
            "category_id": str(self.category_id),
            "subcategory_id": str(self.subcategory_id) if self.subcategory_id else None,
            "brand": self.brand,
            "supplier": self.supplier,
            "country_of_origin": self.country_of_origin,
            "is_gluten_free": self.is_gluten_free,
            "is_vegetarian": self.is_vegetarian,
            "is_vegan": self.is_vegan,
            "is_age_restricted": self.is_age_restricted,
            "minimum_age": self.minimum_age,
            "allergen_info": self.allergen_info,
            "storage_type": self.storage_type,
            "is_own_brand": self.is_own_brand,
            "online_visible": self.online_visible,
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if images is not None:
            data["images"] = [img.to_dict() for img in images]
        return data


class ProductImage(db.Model):
    __tablename__ = "product_images"

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    product_id = db.Column(db.Uuid, db.ForeignKey("products.id"), nullable=False, index=True)
    image_url = db.Column(db.String(1024), nullable=False, index=True)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "product_id": str(self.product_id),
            "image_url": self.image_url,
            "is_primary": self.is_primary,
            "position": self.position,
        }


class FranchiseProduct(db.Model):
    """
    Per-franchise override row.

    When present it supersedes the master row for stock, reorder level, shelf
    and (if set) retail/promotion prices at this franchise.
    """
    __tablename__ = "franchise_products"
    __table_args__ = (
        db.UniqueConstraint("franchise_id", "product_id", name="uq_franchise_products_franchise_product"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_franchise_products_stock_nonneg"),
    )

    id = db.Column(db.Uuid, primary_key=True, default=uuid.uuid4)
    franchise_id = db.Column(db.Uuid, db.ForeignKey("franchises.id"), nullable=False, index=True)
    product_id = db.Column(db.Uuid, db.ForeignKey("products.id"), nullable=False, index=True)

    retail_price_override = db.Column(db.Float, nullable=True)
    promotion_price_override = db.Column(db.Float, nullable=True)
    promotion_start_override = db.Column(db.DateTime, nullable=True)
    promotion_end_override = db.Column(db.DateTime, nullable=True, info={"inclusive_end": True})

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=5)
    shelf_location = db.Column(db.String(128), nullable=True)
    is_available = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "franchise_id": str(self.franchise_id),
            "product_id": str(self.product_id),
            "retail_price_override": self.retail_price_override,
            "promotion_price_override": self.promotion_price_override,
            "promotion_start_override": to_utc_z(self.promotion_start_override),
            "promotion_end_override": to_utc_z(self.promotion_end_override),
            "stock_quantity": self.stock_quantity,
            "reorder_level": self.reorder_level,
            "shelf_location": self.shelf_location,
            "is_available": self.is_available,
        }


class SkuSequence(db.Model):
    """Monotonic counter backing generated SKUs (GRB-000001, GRB-000002, ...)."""
    __tablename__ = "sku_sequences"

    name = db.Column(db.String(32), primary_key=True)
    next_value = db.Column(db.Integer, nullable=False, default=1)
