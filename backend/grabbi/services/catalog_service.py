# Overview: Catalog repository; product lookups, effective franchise values, SKUs, image references and cascading deletes.

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import (
    CartItem,
    FranchiseProduct,
    OrderItem,
    Product,
    ProductImage,
    SkuSequence,
)
from ..time_utils import utcnow
from .storage_service import StorageError, extract_object_path


logger = logging.getLogger(__name__)

SKU_PREFIX = "GRB-"
SKU_SEQUENCE_NAME = "product_sku"

# Bound on IN (...) list sizes for batched lookups
LOOKUP_CHUNK = 500


class CatalogError(Exception):
    """Catalog rule violation."""


def chunked(items: list, size: int = LOOKUP_CHUNK):
    for i in range(0, len(items), size):
        yield items[i:i + size]


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def find_product_by_id(product_id, *, include_deleted: bool = False) -> Product | None:
    q = db.session.query(Product).filter(Product.id == product_id)
    if not include_deleted:
        q = q.filter(Product.deleted_at.is_(None))
    return q.first()


def find_by_sku(sku: str, *, include_deleted: bool = False) -> Product | None:
    if not sku:
        return None
    q = db.session.query(Product).filter(Product.sku == sku)
    if not include_deleted:
        q = q.filter(Product.deleted_at.is_(None))
    return q.first()


def find_franchise_override(franchise_id, product_id) -> FranchiseProduct | None:
    return (
        db.session.query(FranchiseProduct)
        .filter_by(franchise_id=franchise_id, product_id=product_id)
        .first()
    )


def overrides_for(franchise_id, product_ids: list) -> dict:
    """product_id -> FranchiseProduct for one franchise, batched."""
    result: dict = {}
    for chunk in chunked(list(product_ids)):
        rows = (
            db.session.query(FranchiseProduct)
            .filter(FranchiseProduct.franchise_id == franchise_id, FranchiseProduct.product_id.in_(chunk))
            .all()
        )
        for row in rows:
            result[row.product_id] = row
    return result


def images_for_products(product_ids: list) -> dict:
    """product_id -> live images, primary first then by position."""
    result: dict = {pid: [] for pid in product_ids}
    for chunk in chunked(list(product_ids)):
        rows = (
            db.session.query(ProductImage)
            .filter(ProductImage.product_id.in_(chunk), ProductImage.deleted_at.is_(None))
            .order_by(ProductImage.is_primary.desc(), ProductImage.position, ProductImage.created_at)
            .all()
        )
        for row in rows:
            result.setdefault(row.product_id, []).append(row)
    return result


def primary_images(product_ids: list) -> dict:
    """
    product_id -> image_url of the primary image.

    Products whose images carry no primary flag fall back to their first image.
    """
    return {
        pid: images[0].image_url
        for pid, images in images_for_products(product_ids).items()
        if images
    }


# ---------------------------------------------------------------------------
# Effective values
# ---------------------------------------------------------------------------

def is_promotion_active(
    promotion_price: float | None,
    start: datetime | None,
    end: datetime | None,
    now: datetime | None = None,
) -> bool:
    """A promotion needs a price; a missing bound leaves that side of the window open."""
    if promotion_price is None:
        return False
    now = now or utcnow()
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True


def effective_values(product: Product, override: FranchiseProduct | None = None, now: datetime | None = None) -> dict:
    """
    Price and stock a customer actually sees.

    Override prices win when set. The promotion window is the override window
    when either override bound is set, otherwise the master window.
    Stock, reorder level and shelf come from the override row whenever it exists.
    """
    retail = product.retail_price
    promo_price = product.promotion_price
    promo_start = product.promotion_start
    promo_end = product.promotion_end
    stock = product.stock_quantity
    reorder = product.reorder_level
    shelf = product.shelf_location
    is_available = True

    if override is not None:
        if override.retail_price_override is not None:
            retail = override.retail_price_override
        if override.promotion_price_override is not None:
            promo_price = override.promotion_price_override
        if override.promotion_start_override is not None or override.promotion_end_override is not None:
            promo_start = override.promotion_start_override
            promo_end = override.promotion_end_override
        stock = override.stock_quantity
        reorder = override.reorder_level
        shelf = override.shelf_location or shelf
        is_available = override.is_available

    promo_active = is_promotion_active(promo_price, promo_start, promo_end, now)
    return {
        "retail_price": retail,
        "promotion_price": promo_price,
        "promotion_start": promo_start,
        "promotion_end": promo_end,
        "promotion_active": promo_active,
        "current_price": round(promo_price if promo_active else retail, 2),
        "stock_quantity": stock,
        "reorder_level": reorder,
        "shelf_location": shelf,
        "is_available": is_available,
        "has_override": override is not None,
    }


def storefront_dict(product: Product, images: list, override: FranchiseProduct | None = None, now: datetime | None = None) -> dict:
    data = product.to_dict(images=images)
    eff = effective_values(product, override, now)
    data.update({
        "retail_price": eff["retail_price"],
        "promotion_price": eff["promotion_price"],
        "promotion_active": eff["promotion_active"],
        "current_price": eff["current_price"],
        "stock_quantity": eff["stock_quantity"],
        "reorder_level": eff["reorder_level"],
        "shelf_location": eff["shelf_location"],
        "is_available": eff["is_available"],
    })
    data["image_url"] = images[0].image_url if images else None
    return data


def list_products(
    *,
    category_id=None,
    subcategory_id=None,
    search: str | None = None,
    show_all: bool = False,
    franchise_id=None,
) -> list[dict]:
    """
    Storefront listing.

    Always filters status=active; show_all lifts only the online_visible filter.
    With a franchise, values are merged from its override rows and products it
    marked unavailable are hidden.
    """
    q = db.session.query(Product).filter(
        Product.deleted_at.is_(None),
        Product.status == "active",
    )
    if not show_all:
        q = q.filter(Product.online_visible.is_(True))
    if category_id:
        q = q.filter(Product.category_id == category_id)
    if subcategory_id:
        q = q.filter(Product.subcategory_id == subcategory_id)
    if search:
        q = q.filter(Product.item_name.icontains(search.strip(), autoescape=True))

    products = q.order_by(Product.item_name).all()
    ids = [p.id for p in products]
    images = images_for_products(ids)
    overrides = overrides_for(franchise_id, ids) if franchise_id else {}
    now = utcnow()

    result = []
    for product in products:
        override = overrides.get(product.id)
        if override is not None and not override.is_available:
            continue
        result.append(storefront_dict(product, images.get(product.id, []), override, now))
    return result


def get_storefront_product(product_id, *, franchise_id=None) -> dict | None:
    product = find_product_by_id(product_id)
    if not product or product.status != "active":
        return None
    override = find_franchise_override(franchise_id, product_id) if franchise_id else None
    images = images_for_products([product.id]).get(product.id, [])
    return storefront_dict(product, images, override)


# ---------------------------------------------------------------------------
# SKU generation
# ---------------------------------------------------------------------------

def format_sku(number: int) -> str:
    return f"{SKU_PREFIX}{number:06d}"


def fallback_sku() -> str:
    return f"{SKU_PREFIX}{int(time.time()) % 100000}{random.randint(0, 9999):04d}"


def _allocate_sku_numbers(count: int) -> int:
    """
    Reserve count consecutive numbers; returns the first.

    Runs on its own connection and commits immediately so a failure here can
    never poison the caller's transaction.
    """
    stmt = (
        update(SkuSequence)
        .where(SkuSequence.name == SKU_SEQUENCE_NAME)
        .values(next_value=SkuSequence.next_value + count)
    )
    for _ in range(2):
        with db.engine.begin() as conn:
            result = conn.execute(stmt)
            if result.rowcount:
                current = conn.execute(
                    select(SkuSequence.next_value).where(SkuSequence.name == SKU_SEQUENCE_NAME)
                ).scalar_one()
                return current - count
        try:
            with db.engine.begin() as conn:
                conn.execute(SkuSequence.__table__.insert().values(name=SKU_SEQUENCE_NAME, next_value=1 + count))
            return 1
        except IntegrityError:
            # another writer seeded the row first; retry the increment
            continue
    raise CatalogError("could not allocate SKU numbers")


def reserve_skus(count: int) -> list[str]:
    """
    Unique SKUs from the monotonic sequence.

    If the sequence is unavailable each SKU falls back to a timestamp plus
    random digits. Candidates already taken (including soft-deleted rows, the
    unique index covers them) are skipped.
    """
    if count <= 0:
        return []
    try:
        first = _allocate_sku_numbers(count)
        candidates = [format_sku(first + i) for i in range(count)]
    except (SQLAlchemyError, CatalogError):
        logger.warning("SKU sequence unavailable, using fallback SKUs", exc_info=True)
        candidates = [fallback_sku() for _ in range(count)]

    taken = set()
    for chunk in chunked(candidates):
        taken.update(sku for (sku,) in db.session.query(Product.sku).filter(Product.sku.in_(chunk)).all())

    result = []
    seen = set()
    for sku in candidates:
        while sku in taken or sku in seen:
            sku = fallback_sku()
        seen.add(sku)
        result.append(sku)
    return result


def next_sku() -> str:
    return reserve_skus(1)[0]


# ---------------------------------------------------------------------------
# Order references
# ---------------------------------------------------------------------------

def image_is_order_referenced(image_url: str) -> int:
    """Number of order lines that froze this image URL."""
    if not image_url:
        return 0
    return (
        db.session.query(func.count(OrderItem.id))
        .filter(OrderItem.image_url == image_url)
        .scalar()
        or 0
    )


def image_order_counts(image_urls) -> dict[str, int]:
    """Batched variant: url -> referencing order line count (only nonzero entries)."""
    counts: dict[str, int] = {}
    urls = [u for u in set(image_urls) if u]
    for chunk in chunked(urls):
        rows = (
            db.session.query(OrderItem.image_url, func.count(OrderItem.id))
            .filter(OrderItem.image_url.in_(chunk))
            .group_by(OrderItem.image_url)
            .all()
        )
        counts.update({url: n for url, n in rows})
    return counts


def product_order_counts(product_ids) -> dict:
    """product_id -> referencing order line count (only nonzero entries)."""
    counts: dict = {}
    for chunk in chunked(list(product_ids)):
        rows = (
            db.session.query(OrderItem.product_id, func.count(OrderItem.id))
            .filter(OrderItem.product_id.in_(chunk))
            .group_by(OrderItem.product_id)
            .all()
        )
        counts.update({pid: n for pid, n in rows})
    return counts


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------

def delete_objects(storage, urls: list[str], *, concurrency: int = 5) -> list[str]:
    """
    Remove objects from the store in parallel; missing objects count as deleted.

    Returns the urls that could not be removed. No database access happens here,
    so it is safe to call from worker threads.
    """
    if not urls:
        return []

    def _delete(url: str) -> str | None:
        try:
            storage.delete(extract_object_path(url))
        except StorageError:
            logger.warning("Failed to delete image object %s", url, exc_info=True)
            return url
        return None

    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        return [url for url in pool.map(_delete, urls) if url]


def delete_products_cascade(products: list[Product], storage, *, deleted_by: str | None = None, concurrency: int = 5) -> int:
    """
    Soft-delete products with their images and cart lines.

    Image objects are removed from the store only when no order line references
    their URL; the image rows are always soft-deleted. Store failures are logged
    and leave an orphaned object, never a half-deleted product.
    Caller commits.
    """
    if not products:
        return 0

    ids = [p.id for p in products]
    images_by_product = images_for_products(ids)
    all_images = [img for imgs in images_by_product.values() for img in imgs]
    ref_counts = image_order_counts(img.image_url for img in all_images)

    removable = sorted({
        img.image_url
        for img in all_images
        if ref_counts.get(img.image_url, 0) == 0 and img.image_url
    })
    for url in sorted({img.image_url for img in all_images} - set(removable)):
        logger.info("Keeping image object %s: referenced by orders", url)

    failed = delete_objects(storage, removable, concurrency=concurrency)
    if failed:
        logger.warning("%d image objects could not be removed", len(failed))

    now = utcnow()
    for img in all_images:
        img.deleted_at = now
    for product in products:
        product.deleted_at = now
        product.deleted_by = deleted_by

    for chunk in chunked(ids):
        db.session.query(CartItem).filter(CartItem.product_id.in_(chunk)).delete(synchronize_session=False)

    db.session.flush()
    return len(products)


def delete_product_cascade(product: Product, storage, *, deleted_by: str | None = None) -> None:
    delete_products_cascade([product], storage, deleted_by=deleted_by)
