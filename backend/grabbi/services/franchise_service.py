# Overview: Service-layer operations for franchises; discovery, admin CRUD, the franchise portal and store hours.

from __future__ import annotations

import logging
import re
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..geo import estimate_delivery_time, haversine_km
from ..models import Franchise, FranchiseProduct, FranchisePromotion, FranchiseStaff, Product, StoreHours, User
from ..models.auth import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_FRANCHISE_STAFF
from ..time_utils import store_now, utcnow
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)
from . import auth_service, catalog_service, notification_service


logger = logging.getLogger(__name__)

FRANCHISE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "slug", "owner_id", "address", "city", "post_code", "phone", "email",
        "latitude", "longitude", "delivery_radius", "delivery_fee", "free_delivery_min", "is_active",
    },
    required_on_create={"name", "owner_id", "latitude", "longitude"},
)
# franchise owners may edit their own store details but not ownership or activation
OWN_FRANCHISE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "address", "city", "post_code", "phone", "email",
        "delivery_radius", "delivery_fee", "free_delivery_min",
    },
)
STOCK_POLICY = ModelValidationPolicy(
    writable_fields={"stock_quantity", "reorder_level", "shelf_location", "is_available"},
)
PRICING_FIELDS = (
    "retail_price_override",
    "promotion_price_override",
    "promotion_start_override",
    "promotion_end_override",
)
PRICING_POLICY = ModelValidationPolicy(writable_fields=set(PRICING_FIELDS))
PROMOTION_POLICY = ModelValidationPolicy(
    writable_fields={"title", "description", "image", "product_url", "is_active", "start_date", "end_date"},
    required_on_create={"title"},
)

STAFF_ROLES = ("manager", "staff")

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    return _SLUG_STRIP.sub("-", value.lower()).strip("-")


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def active_franchises() -> list[Franchise]:
    return (
        db.session.query(Franchise)
        .filter(Franchise.is_active.is_(True), Franchise.deleted_at.is_(None))
        .all()
    )


def nearest_franchise(lat: float, lng: float) -> tuple[Franchise, float] | None:
    """Closest active franchise whose delivery radius covers the point, with its distance in km."""
    best = None
    best_distance = None
    for franchise in active_franchises():
        distance = haversine_km(lat, lng, franchise.latitude, franchise.longitude)
        if distance <= franchise.delivery_radius and (best_distance is None or distance < best_distance):
            best = franchise
            best_distance = distance
    if best is None:
        return None
    return best, best_distance


def nearest_payload(lat: float, lng: float) -> dict | None:
    found = nearest_franchise(lat, lng)
    if found is None:
        return None
    franchise, distance = found
    return {
        "franchise": franchise_detail(franchise),
        "distance": round(distance, 3),
        "delivery_time": estimate_delivery_time(distance),
    }


def get_franchise(franchise_id, *, active_only: bool = False) -> Franchise:
    q = db.session.query(Franchise).filter(Franchise.id == franchise_id, Franchise.deleted_at.is_(None))
    if active_only:
        q = q.filter(Franchise.is_active.is_(True))
    franchise = q.first()
    if franchise is None:
        raise NotFoundError("Franchise not found")
    return franchise


def franchise_storefront(franchise_id, *, category_id=None, search: str | None = None) -> list[dict]:
    franchise = get_franchise(franchise_id, active_only=True)
    return catalog_service.list_products(category_id=category_id, search=search, franchise_id=franchise.id)


def public_promotions(franchise_id) -> list[FranchisePromotion]:
    """Active franchise promotions whose date window contains now; open bounds are allowed."""
    get_franchise(franchise_id, active_only=True)
    now = utcnow()
    return (
        db.session.query(FranchisePromotion)
        .filter(
            FranchisePromotion.franchise_id == franchise_id,
            FranchisePromotion.deleted_at.is_(None),
            FranchisePromotion.is_active.is_(True),
            db.or_(FranchisePromotion.start_date.is_(None), FranchisePromotion.start_date <= now),
            db.or_(FranchisePromotion.end_date.is_(None), FranchisePromotion.end_date >= now),
        )
        .order_by(FranchisePromotion.created_at.desc())
        .all()
    )


# ---------------------------------------------------------------------------
# Admin CRUD
# ---------------------------------------------------------------------------

def list_franchises(*, include_inactive: bool = True) -> list[Franchise]:
    q = db.session.query(Franchise).filter(Franchise.deleted_at.is_(None))
    if not include_inactive:
        q = q.filter(Franchise.is_active.is_(True))
    return q.order_by(Franchise.name).all()


def _validate_geo(patch: dict) -> None:
    lat, lng = patch.get("latitude"), patch.get("longitude")
    if lat is not None and not -90 <= lat <= 90:
        raise ValidationError("latitude must be between -90 and 90")
    if lng is not None and not -180 <= lng <= 180:
        raise ValidationError("longitude must be between -180 and 180")
    for key in ("delivery_radius", "delivery_fee", "free_delivery_min"):
        if patch.get(key) is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


def _owner(user_id) -> User:
    user = auth_service.get_user(user_id)
    if user is None:
        raise NotFoundError("Owner user not found")
    return user


def _check_slug(slug: str, franchise_id=None) -> None:
    if not slug:
        raise ValidationError("slug cannot be blank")
    owner = db.session.query(Franchise.id).filter(Franchise.slug == slug).first()
    if owner and owner[0] != franchise_id:
        raise ConflictError("Franchise slug already exists")


def create_franchise(payload: dict) -> Franchise:
    patch = validate_payload(model=Franchise, payload=payload, policy=FRANCHISE_POLICY, partial=False)
    _validate_geo(patch)
    patch["slug"] = slugify(patch.get("slug") or patch["name"])
    _check_slug(patch["slug"])
    owner = _owner(patch["owner_id"])

    franchise = Franchise(**patch)
    db.session.add(franchise)
    try:
        db.session.flush()
        default_store_hours(franchise.id)
        auth_service.promote_to_owner(owner, franchise.id)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Franchise slug already exists")
    logger.info("Created franchise %s (%s) owned by %s", franchise.id, franchise.slug, owner.id)
    return franchise


def update_franchise(franchise_id, payload: dict, *, policy: ModelValidationPolicy = FRANCHISE_POLICY) -> Franchise:
    franchise = get_franchise(franchise_id)
    patch = validate_payload(model=Franchise, payload=payload, policy=policy, partial=True)
    _validate_geo(patch)
    if "slug" in patch:
        patch["slug"] = slugify(patch["slug"] or "")
        _check_slug(patch["slug"], franchise.id)
    if "owner_id" in patch and patch["owner_id"] != franchise.owner_id:
        auth_service.promote_to_owner(_owner(patch["owner_id"]), franchise.id)

    for key, value in patch.items():
        setattr(franchise, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Franchise slug already exists")
    return franchise


def delete_franchise(franchise_id) -> None:
    franchise = get_franchise(franchise_id)
    franchise.is_active = False
    franchise.deleted_at = utcnow()
    db.session.commit()
    logger.info("Deleted franchise %s", franchise.id)


# ---------------------------------------------------------------------------
# Portal: products
# ---------------------------------------------------------------------------

def portal_products(franchise_id, *, search: str | None = None, low_stock: bool = False) -> list[dict]:
    """Override rows of one franchise with the effective values customers see."""
    q = (
        db.session.query(FranchiseProduct)
        .join(Product, Product.id == FranchiseProduct.product_id)
        .options(selectinload(FranchiseProduct.product))
        .filter(FranchiseProduct.franchise_id == franchise_id, Product.deleted_at.is_(None))
    )
    if search:
        q = q.filter(Product.item_name.icontains(search.strip(), autoescape=True))
    if low_stock:
        q = q.filter(FranchiseProduct.stock_quantity <= FranchiseProduct.reorder_level)
    rows = q.order_by(Product.item_name).all()

    images = catalog_service.primary_images([r.product_id for r in rows])
    now = utcnow()
    result = []
    for row in rows:
        data = row.to_dict()
        eff = catalog_service.effective_values(row.product, row, now)
        data.update({
            "item_name": row.product.item_name,
            "sku": row.product.sku,
            "image_url": images.get(row.product_id),
            "master_retail_price": row.product.retail_price,
            "current_price": eff["current_price"],
            "promotion_active": eff["promotion_active"],
        })
        result.append(data)
    return result


def _override_row(franchise_id, product_id) -> FranchiseProduct:
    row = catalog_service.find_franchise_override(franchise_id, product_id)
    if row is None:
        raise NotFoundError("Franchise product not found")
    return row


def update_stock(franchise_id, product_id, payload: dict) -> FranchiseProduct:
    row = _override_row(franchise_id, product_id)
    patch = validate_payload(model=FranchiseProduct, payload=payload, policy=STOCK_POLICY, partial=True)
    for key in ("stock_quantity", "reorder_level"):
        if key in patch and (patch[key] is None or patch[key] < 0):
            raise ValidationError(f"{key} must be >= 0")
    for key, value in patch.items():
        setattr(row, key, value)
    db.session.commit()
    return row


def update_pricing(franchise_id, product_id, payload: dict) -> FranchiseProduct:
    """Replace the four pricing overrides; a field left out of the body is cleared."""
    row = _override_row(franchise_id, product_id)
    patch = validate_payload(model=FranchiseProduct, payload=payload, policy=PRICING_POLICY, partial=True)
    for key in ("retail_price_override", "promotion_price_override"):
        if patch.get(key) is not None and patch[key] <= 0:
            raise ValidationError(f"{key} must be > 0")
    start, end = patch.get("promotion_start_override"), patch.get("promotion_end_override")
    if start is not None and end is not None and end < start:
        raise ValidationError("promotion_end_override must not be before promotion_start_override")

    for key in PRICING_FIELDS:
        setattr(row, key, patch.get(key))
    db.session.commit()
    return row


# ---------------------------------------------------------------------------
# Portal: staff
# ---------------------------------------------------------------------------

def list_staff(franchise_id) -> list[FranchiseStaff]:
    return (
        db.session.query(FranchiseStaff)
        .options(selectinload(FranchiseStaff.user))
        .filter(FranchiseStaff.franchise_id == franchise_id)
        .order_by(FranchiseStaff.created_at)
        .all()
    )


def add_staff(franchise_id, payload: dict) -> FranchiseStaff:
    """
    Attach a user to the franchise as staff, creating the account when the
    email is new. A user already on any franchise's staff is a conflict.
    """
    franchise = get_franchise(franchise_id)
    email = auth_service.normalize_email(payload.get("email"))
    role = (payload.get("role") or "staff").strip().lower()
    if role not in STAFF_ROLES:
        raise ValidationError("Role must be 'manager' or 'staff'")
    name = (payload.get("name") or "").strip() or None

    user = auth_service.get_user_by_email(email)
    if user is None:
        user = auth_service.create_user(
            email,
            payload.get("password"),
            name=name,
            role=ROLE_FRANCHISE_STAFF,
            franchise_id=franchise.id,
            commit=False,
        )
    else:
        if user.role == ROLE_ADMIN:
            raise ConflictError("Admins cannot be added as franchise staff")
        if db.session.query(FranchiseStaff.id).filter(FranchiseStaff.user_id == user.id).first():
            raise ConflictError("User is already staff at a franchise")
        if user.role == ROLE_CUSTOMER:
            user.role = ROLE_FRANCHISE_STAFF
        user.franchise_id = franchise.id
        if name:
            user.name = name

    staff = FranchiseStaff(franchise_id=franchise.id, user_id=user.id, role=role)
    db.session.add(staff)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("User is already staff at a franchise")

    notification_service.send_staff_invitation(
        user.email, user.name, franchise.name, role, current_app.config["FRANCHISE_URL"],
    )
    return staff


def remove_staff(franchise_id, staff_id) -> None:
    staff = (
        db.session.query(FranchiseStaff)
        .filter(FranchiseStaff.id == staff_id, FranchiseStaff.franchise_id == franchise_id)
        .first()
    )
    if staff is None:
        raise NotFoundError("Staff member not found")

    user = staff.user
    db.session.delete(staff)
    if user is not None and user.role == ROLE_FRANCHISE_STAFF:
        user.role = ROLE_CUSTOMER
        user.franchise_id = None
    db.session.commit()


# ---------------------------------------------------------------------------
# Portal: promotions
# ---------------------------------------------------------------------------

def list_own_promotions(franchise_id) -> list[FranchisePromotion]:
    return (
        db.session.query(FranchisePromotion)
        .filter(FranchisePromotion.franchise_id == franchise_id, FranchisePromotion.deleted_at.is_(None))
        .order_by(FranchisePromotion.created_at.desc())
        .all()
    )


def _own_promotion(franchise_id, promotion_id) -> FranchisePromotion:
    promo = (
        db.session.query(FranchisePromotion)
        .filter(
            FranchisePromotion.id == promotion_id,
            FranchisePromotion.franchise_id == franchise_id,
            FranchisePromotion.deleted_at.is_(None),
        )
        .first()
    )
    if promo is None:
        raise NotFoundError("Promotion not found")
    return promo


def _check_window(start, end) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError("end_date must not be before start_date")


def create_promotion(franchise_id, payload: dict) -> FranchisePromotion:
    patch = validate_payload(model=FranchisePromotion, payload=payload, policy=PROMOTION_POLICY, partial=False)
    _check_window(patch.get("start_date"), patch.get("end_date"))
    promo = FranchisePromotion(franchise_id=franchise_id, **patch)
    db.session.add(promo)
    db.session.commit()
    return promo


def update_promotion(franchise_id, promotion_id, payload: dict) -> FranchisePromotion:
    promo = _own_promotion(franchise_id, promotion_id)
    patch = validate_payload(model=FranchisePromotion, payload=payload, policy=PROMOTION_POLICY, partial=True)
    _check_window(patch.get("start_date", promo.start_date), patch.get("end_date", promo.end_date))
    for key, value in patch.items():
        setattr(promo, key, value)
    db.session.commit()
    return promo


def delete_promotion(franchise_id, promotion_id) -> None:
    promo = _own_promotion(franchise_id, promotion_id)
    promo.deleted_at = utcnow()
    db.session.commit()


# ---------------------------------------------------------------------------
# Store hours
# ---------------------------------------------------------------------------

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
DEFAULT_OPEN_TIME = "09:00"
DEFAULT_CLOSE_TIME = "21:00"

_CLOCK = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")


def default_store_hours(franchise_id) -> list[StoreHours]:
    """Seven open days at the default times. Caller commits."""
    rows = [
        StoreHours(
            franchise_id=franchise_id,
            day_of_week=day,
            open_time=DEFAULT_OPEN_TIME,
            close_time=DEFAULT_CLOSE_TIME,
            is_closed=False,
        )
        for day in range(7)
    ]
    db.session.add_all(rows)
    return rows


def list_store_hours(franchise_id) -> list[StoreHours]:
    return (
        db.session.query(StoreHours)
        .filter(StoreHours.franchise_id == franchise_id)
        .order_by(StoreHours.day_of_week)
        .all()
    )


def _clock(entry: dict, key: str, current: str) -> str:
    value = entry.get(key, current)
    if not isinstance(value, str) or not _CLOCK.match(value.strip()):
        raise ValidationError(f"{key} must be HH:MM")
    return value.strip()


def update_store_hours(franchise_id, payload) -> list[StoreHours]:
    """
    Set the hours of the given weekdays. The body is a list of day entries or
    {"hours": [...]}; days left out keep their current hours. Nothing is saved
    unless every entry is valid.
    """
    franchise = get_franchise(franchise_id)
    entries = payload.get("hours") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise ValidationError("hours must be a list")

    existing = {row.day_of_week: row for row in list_store_hours(franchise.id)}
    changes = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError("Each hours entry must be an object")
        day = entry.get("day_of_week")
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise ValidationError("Invalid day_of_week")

        row = existing.get(day)
        open_time = _clock(entry, "open_time", row.open_time if row else DEFAULT_OPEN_TIME)
        close_time = _clock(entry, "close_time", row.close_time if row else DEFAULT_CLOSE_TIME)
        is_closed = entry.get("is_closed", row.is_closed if row else False)
        if not isinstance(is_closed, bool):
            raise ValidationError("is_closed must be a boolean")
        if not is_closed and close_time <= open_time:
            raise ValidationError(f"close_time must be after open_time on {DAY_NAMES[day]}")
        changes[day] = (open_time, close_time, is_closed)

    for day, (open_time, close_time, is_closed) in changes.items():
        row = existing.get(day)
        if row is None:
            row = StoreHours(franchise_id=franchise.id, day_of_week=day)
            db.session.add(row)
        row.open_time, row.close_time, row.is_closed = open_time, close_time, is_closed
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Store hours were modified concurrently, reload and retry")
    logger.info("Updated store hours of franchise %s for days %s", franchise.id, sorted(changes))
    return list_store_hours(franchise.id)


def format_clock(value: str) -> str:
    """'21:00' -> '9:00 PM'; anything that is not HH:MM is returned unchanged."""
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return value
    hour, minute = int(parts[0]), int(parts[1])
    suffix = "AM" if hour < 12 else "PM"
    return f"{hour % 12 or 12}:{minute:02d} {suffix}"


def _next_open(by_day: dict, today: int) -> dict:
    for ahead in range(1, 8):
        day = (today + ahead) % 7
        row = by_day.get(day)
        if row is not None and not row.is_closed:
            return {
                "is_open": False,
                "current_day": today,
                "message": f"Closed · Opens {DAY_NAMES[day]} at {format_clock(row.open_time)}",
                "next_open_day": day,
                "next_open_time": row.open_time,
            }
    return {"is_open": False, "current_day": today, "message": "Temporarily closed"}


def store_status(hours, now: datetime) -> dict:
    """
    Open/closed state at the wall-clock time now, with a customer-facing message.

    Both ends of today's window count as open. After closing, or on a closed
    day, the message names the next open day within a week.
    """
    by_day = {row.day_of_week: row for row in hours}
    today = (now.weekday() + 1) % 7
    clock = now.strftime("%H:%M")

    row = by_day.get(today)
    if row is None or row.is_closed:
        return _next_open(by_day, today)
    if row.open_time <= clock <= row.close_time:
        is_open, message = True, f"Open until {format_clock(row.close_time)}"
    elif clock < row.open_time:
        is_open, message = False, f"Opens today at {format_clock(row.open_time)}"
    else:
        return _next_open(by_day, today)
    return {
        "is_open": is_open,
        "current_day": today,
        "open_time": row.open_time,
        "close_time": row.close_time,
        "message": message,
    }


def franchise_detail(franchise: Franchise, now: datetime | None = None) -> dict:
    """Public franchise payload with its weekly hours and current open state."""
    if now is None:
        now = store_now(current_app.config["STORE_TIMEZONE"])
    hours = list_store_hours(franchise.id)
    data = franchise.to_dict()
    data["store_hours"] = [row.to_dict() for row in hours]
    data["store_status"] = store_status(hours, now)
    return data
