# Overview: Service-layer operations for categories and subcategories.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Category, Product, Subcategory
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, NotFoundError, parse_uuid, validate_payload


logger = logging.getLogger(__name__)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "image_url"},
    required_on_create={"name"},
)
SUBCATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"category_id", "name", "description"},
    required_on_create={"category_id", "name"},
)

DEFAULT_CATEGORIES = (
    ("Fruit & Vegetables", ("Fresh Fruit", "Fresh Vegetables", "Salad & Herbs")),
    ("Bakery", ("Bread", "Cakes & Pastries")),
    ("Dairy & Eggs", ("Milk", "Cheese", "Yoghurt", "Eggs")),
    ("Meat & Fish", ("Fresh Meat", "Fresh Fish")),
    ("Drinks", ("Soft Drinks", "Juice", "Water")),
    ("Household", ("Cleaning", "Laundry")),
)


class CategoryError(ValueError):
    """Category rule violation, e.g. deleting a category that still has products."""


def get_category(category_id) -> Category | None:
    return (
        db.session.query(Category)
        .filter(Category.id == category_id, Category.deleted_at.is_(None))
        .first()
    )


def get_subcategory(subcategory_id) -> Subcategory | None:
    return (
        db.session.query(Subcategory)
        .filter(Subcategory.id == subcategory_id, Subcategory.deleted_at.is_(None))
        .first()
    )


def _subcategories_by_category(category_ids: list) -> dict:
    result: dict = {cid: [] for cid in category_ids}
    if not category_ids:
        return result
    rows = (
        db.session.query(Subcategory)
        .filter(Subcategory.category_id.in_(category_ids), Subcategory.deleted_at.is_(None))
        .order_by(Subcategory.name)
        .all()
    )
    for row in rows:
        result[row.category_id].append(row)
    return result


def list_categories() -> list[dict]:
    categories = (
        db.session.query(Category)
        .filter(Category.deleted_at.is_(None))
        .order_by(Category.name)
        .all()
    )
    subs = _subcategories_by_category([c.id for c in categories])
    return [c.to_dict(subcategories=subs[c.id]) for c in categories]


def category_detail(category_id) -> dict:
    category = get_category(category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category.to_dict(subcategories=_subcategories_by_category([category.id])[category.id])


def list_subcategories(category_id) -> list[Subcategory]:
    if get_category(category_id) is None:
        raise NotFoundError("Category not found")
    return _subcategories_by_category([category_id])[category_id]


def create_category(payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    category = Category(**patch)
    db.session.add(category)
    db.session.commit()
    return category


def update_category(category_id, payload: dict) -> Category:
    category = get_category(category_id)
    if category is None:
        raise NotFoundError("Category not found")
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)
    for key, value in patch.items():
        setattr(category, key, value)
    db.session.commit()
    return category


def delete_category(category_id) -> None:
    category = get_category(category_id)
    if category is None:
        raise NotFoundError("Category not found")

    products = (
        db.session.query(Product.id)
        .filter(Product.category_id == category.id, Product.deleted_at.is_(None))
        .count()
    )
    if products:
        raise CategoryError(f"Cannot delete category with {products} products")
    subs = (
        db.session.query(Subcategory.id)
        .filter(Subcategory.category_id == category.id, Subcategory.deleted_at.is_(None))
        .count()
    )
    if subs:
        raise CategoryError(f"Cannot delete category with {subs} subcategories")

    category.deleted_at = utcnow()
    db.session.commit()


def create_subcategory(payload: dict) -> Subcategory:
    patch = validate_payload(model=Subcategory, payload=payload, policy=SUBCATEGORY_POLICY, partial=False)
    if get_category(patch["category_id"]) is None:
        raise NotFoundError("Category not found")
    sub = Subcategory(**patch)
    db.session.add(sub)
    db.session.commit()
    return sub


def update_subcategory(subcategory_id, payload: dict) -> Subcategory:
    sub = get_subcategory(subcategory_id)
    if sub is None:
        raise NotFoundError("Subcategory not found")
    patch = validate_payload(model=Subcategory, payload=payload, policy=SUBCATEGORY_POLICY, partial=True)
    if "category_id" in patch and get_category(patch["category_id"]) is None:
        raise NotFoundError("Category not found")
    for key, value in patch.items():
        setattr(sub, key, value)
    db.session.commit()
    return sub


def delete_subcategory(subcategory_id) -> None:
    sub = get_subcategory(subcategory_id)
    if sub is None:
        raise NotFoundError("Subcategory not found")
    products = (
        db.session.query(Product.id)
        .filter(Product.subcategory_id == sub.id, Product.deleted_at.is_(None))
        .count()
    )
    if products:
        raise CategoryError(f"Cannot delete subcategory with {products} products")
    sub.deleted_at = utcnow()
    db.session.commit()


def seed_default_categories() -> int:
    """Create the default category tree; existing names are left alone. Returns rows created."""
    created = 0
    existing = {
        c.name: c for c in db.session.query(Category).filter(Category.deleted_at.is_(None)).all()
    }
    for name, sub_names in DEFAULT_CATEGORIES:
        category = existing.get(name)
        if category is None:
            category = Category(name=name)
            db.session.add(category)
            db.session.flush()
            created += 1
        have = {
            s.name for s in db.session.query(Subcategory)
            .filter(Subcategory.category_id == category.id, Subcategory.deleted_at.is_(None))
            .all()
        }
        for sub_name in sub_names:
            if sub_name not in have:
                db.session.add(Subcategory(category_id=category.id, name=sub_name))
                created += 1
    db.session.commit()
    logger.info("Seeded %d categories and subcategories", created)
    return created


def require_category_id(value) -> object:
    """Parse and check a category reference coming from a product payload."""
    category_id = parse_uuid(value, "category_id")
    if get_category(category_id) is None:
        raise NotFoundError("Category not found")
    return category_id
