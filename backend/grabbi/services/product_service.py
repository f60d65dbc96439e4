# Overview: Service-layer operations for the admin master catalog; CRUD, images and export.

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Franchise, FranchiseProduct, Product, ProductImage
from ..time_utils import to_date_str, utcnow
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_product,
    parse_uuid,
    validate_payload,
)
from . import catalog_service, category_service
from .import_schemas import BOOL_FIELDS, DATE_FIELDS, FLOAT_FIELDS, INT_FIELDS, TEXT_FIELDS
from .storage_service import StorageError


logger = logging.getLogger(__name__)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "category_id", "subcategory_id"}
    | set(TEXT_FIELDS) | set(FLOAT_FIELDS) | set(INT_FIELDS) | set(BOOL_FIELDS) | set(DATE_FIELDS),
    required_on_create={"item_name", "retail_price", "category_id"},
)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


def get_product(product_id, *, include_deleted: bool = False) -> Product:
    product = catalog_service.find_product_by_id(product_id, include_deleted=include_deleted)
    if product is None:
        raise NotFoundError("Product not found")
    return product


def product_detail(product: Product) -> dict:
    images = catalog_service.images_for_products([product.id]).get(product.id, [])
    data = product.to_dict(images=images)
    data["image_url"] = images[0].image_url if images else None
    return data


def list_products(
    *,
    search: str | None = None,
    category_id=None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[dict], int]:
    """Admin listing: every live product regardless of status or visibility."""
    q = db.session.query(Product).filter(Product.deleted_at.is_(None))
    if search:
        term = search.strip()
        q = q.filter(db.or_(
            Product.item_name.icontains(term, autoescape=True),
            Product.sku.icontains(term, autoescape=True),
            Product.barcode.icontains(term, autoescape=True),
        ))
    if category_id:
        q = q.filter(Product.category_id == category_id)
    if status:
        q = q.filter(Product.status == status)

    total = q.count()
    products = q.order_by(Product.item_name).offset((page - 1) * limit).limit(limit).all()
    images = catalog_service.images_for_products([p.id for p in products])
    rows = []
    for product in products:
        data = product.to_dict(images=images.get(product.id, []))
        data["image_url"] = data["images"][0]["image_url"] if data["images"] else None
        rows.append(data)
    return rows, total


def _check_references(patch: dict, product: Product | None = None) -> None:
    category_id = patch.get("category_id", product.category_id if product else None)
    if "category_id" in patch:
        category_service.require_category_id(category_id)
    subcategory_id = patch.get("subcategory_id")
    if subcategory_id is not None:
        sub = category_service.get_subcategory(subcategory_id)
        if sub is None or sub.category_id != category_id:
            raise ValidationError("subcategory_id does not belong to category_id")


def _check_unique(patch: dict, product_id=None) -> None:
    if patch.get("sku"):
        # the unique index covers soft-deleted rows too
        owner = catalog_service.find_by_sku(patch["sku"], include_deleted=True)
        if owner and owner.id != product_id:
            raise ConflictError("SKU already exists")
    if patch.get("barcode"):
        owner = db.session.query(Product.id).filter(Product.barcode == patch["barcode"]).first()
        if owner and owner[0] != product_id:
            raise ConflictError("Barcode already exists")


def _link_franchises(product: Product, franchise_ids) -> int:
    """Create missing override rows seeded from the master stock. Caller commits."""
    if not franchise_ids:
        return 0
    if not isinstance(franchise_ids, list):
        raise ValidationError("franchise_ids must be a list")
    ids = [parse_uuid(f, "franchise_ids") for f in franchise_ids]
    known = {
        fid for (fid,) in db.session.query(Franchise.id)
        .filter(Franchise.id.in_(ids), Franchise.deleted_at.is_(None))
        .all()
    }
    missing = [str(f) for f in ids if f not in known]
    if missing:
        raise NotFoundError(f"Franchise not found: {', '.join(missing)}")

    existing = {
        fid for (fid,) in db.session.query(FranchiseProduct.franchise_id)
        .filter(FranchiseProduct.product_id == product.id)
        .all()
    }
    created = 0
    for fid in dict.fromkeys(ids):
        if fid in existing:
            continue
        db.session.add(FranchiseProduct(
            franchise_id=fid,
            product_id=product.id,
            stock_quantity=product.stock_quantity,
            reorder_level=product.reorder_level,
            is_available=product.status == "active",
        ))
        created += 1
    return created


def create_product(payload: dict) -> Product:
    payload = dict(payload or {})
    franchise_ids = payload.pop("franchise_ids", None)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    _check_references(patch)
    if not patch.get("barcode"):
        patch["barcode"] = None

    if not patch.get("sku"):
        # reserved before any session write so the sequence connection never waits on us
        patch["sku"] = catalog_service.next_sku()
    _check_unique(patch)

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.flush()
        _link_franchises(product, franchise_ids)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Product conflicts with an existing SKU or barcode")
    logger.info("Created product %s (%s)", product.id, product.sku)
    return product


def update_product(product_id, payload: dict) -> Product:
    product = get_product(product_id)
    payload = dict(payload or {})
    franchise_ids = payload.pop("franchise_ids", None)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    start = patch.get("promotion_start", product.promotion_start)
    end = patch.get("promotion_end", product.promotion_end)
    if start is not None and end is not None and end < start:
        raise ValidationError("promotion_end must not be before promotion_start")

    if "sku" in patch and not patch["sku"]:
        raise ValidationError("sku cannot be blank")
    if "barcode" in patch and not patch["barcode"]:
        patch["barcode"] = None
    _check_references(patch, product)
    _check_unique(patch, product.id)

    for key, value in patch.items():
        setattr(product, key, value)
    try:
        _link_franchises(product, franchise_ids)
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError("Product was modified concurrently, reload and retry")
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Product conflicts with an existing SKU or barcode")
    return product


def delete_product(product_id, storage, *, deleted_by: str | None = None) -> None:
    product = get_product(product_id)
    catalog_service.delete_product_cascade(product, storage, deleted_by=deleted_by)
    db.session.commit()
    logger.info("Deleted product %s", product.id)


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def add_images(product_id, files: list, storage) -> list[ProductImage]:
    """Upload files and attach them in order. The first image of a product without a primary becomes primary."""
    product = get_product(product_id)
    if not files:
        raise ValidationError("No image files provided")
    for f in files:
        if (f.mimetype or "").lower() not in ALLOWED_IMAGE_TYPES:
            raise ValidationError(f"Unsupported image type: {f.mimetype or 'unknown'}")

    live = catalog_service.images_for_products([product.id]).get(product.id, [])
    has_primary = any(img.is_primary for img in live)
    position = max((img.position for img in live), default=-1) + 1

    uploaded: list[ProductImage] = []
    for f in files:
        url = storage.upload(f.stream, f.filename or "image", f.mimetype)
        image = ProductImage(
            product_id=product.id,
            image_url=url,
            is_primary=not has_primary and not uploaded,
            position=position,
        )
        position += 1
        db.session.add(image)
        uploaded.append(image)
    db.session.commit()
    return uploaded


def delete_image(product_id, image_id, storage) -> None:
    """
    Soft-delete one image row. The store object survives while any order line
    references its URL. If the primary goes, the next image is promoted.
    """
    product = get_product(product_id)
    image = (
        db.session.query(ProductImage)
        .filter(
            ProductImage.id == image_id,
            ProductImage.product_id == product.id,
            ProductImage.deleted_at.is_(None),
        )
        .first()
    )
    if image is None:
        raise NotFoundError("Image not found")

    refs = catalog_service.image_is_order_referenced(image.image_url)
    if refs:
        logger.info("Keeping image object %s: referenced by %d order lines", image.image_url, refs)
    else:
        try:
            storage.delete_url(image.image_url)
        except StorageError:
            logger.warning("Failed to delete image object %s", image.image_url, exc_info=True)

    image.deleted_at = utcnow()
    if image.is_primary:
        image.is_primary = False
        successor = (
            db.session.query(ProductImage)
            .filter(
                ProductImage.product_id == product.id,
                ProductImage.deleted_at.is_(None),
                ProductImage.id != image.id,
            )
            .order_by(ProductImage.position, ProductImage.created_at)
            .first()
        )
        if successor is not None:
            successor.is_primary = True
    db.session.commit()


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_rows() -> list[dict]:
    """Live products shaped as batch import rows, so an export can be edited and re-imported."""
    products = (
        db.session.query(Product)
        .filter(Product.deleted_at.is_(None))
        .order_by(Product.item_name)
        .all()
    )
    images = catalog_service.images_for_products([p.id for p in products])
    links: dict = {}
    for fid, pid in db.session.query(FranchiseProduct.franchise_id, FranchiseProduct.product_id).all():
        links.setdefault(pid, []).append(str(fid))

    rows = []
    for product in products:
        row = {"id": str(product.id), "sku": product.sku}
        for name in TEXT_FIELDS + FLOAT_FIELDS + INT_FIELDS + BOOL_FIELDS:
            row[name] = getattr(product, name)
        for name in DATE_FIELDS:
            row[name] = to_date_str(getattr(product, name))
        row["category_id"] = str(product.category_id)
        row["subcategory_id"] = str(product.subcategory_id) if product.subcategory_id else None
        row["image_urls"] = [img.image_url for img in images.get(product.id, [])]
        row["images_provided"] = True
        row["franchise_ids"] = sorted(links.get(product.id, []))
        rows.append(row)
    return rows
