# Overview: Flask API routes for franchise discovery and the franchise portal.

"""
Franchise routes.

Public (/api/franchises): nearest serving franchise, details, storefront
and active promotions.

Portal (/api/franchise): scoped to the caller's own franchise_id. Staff and
owners manage stock, pricing and orders; owners alone manage staff,
promotions, store details and opening hours.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_FRANCHISE_OWNER, ROLE_FRANCHISE_STAFF
from ..services import dashboard_service, franchise_service, order_service, order_status
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    parse_float,
    parse_optional_uuid,
    parse_page_args,
)

franchises_bp = Blueprint("franchises", __name__, url_prefix="/api/franchises")
portal_bp = Blueprint("franchise_portal", __name__, url_prefix="/api/franchise")


def _error(e: Exception):
    if isinstance(e, NotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, ConflictError):
        return jsonify({"error": str(e)}), 409
    return jsonify({"error": str(e)}), 400


# =============================================================================
# PUBLIC
# =============================================================================

@franchises_bp.get("/nearest")
def nearest():
    """Query params: lat, lng. 404 when no active franchise delivers there."""
    try:
        lat = parse_float(request.args.get("lat"), "lat")
        lng = parse_float(request.args.get("lng"), "lng")
    except ValidationError as e:
        return _error(e)
    if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
        return jsonify({"error": "lat/lng out of range"}), 400

    payload = franchise_service.nearest_payload(lat, lng)
    if payload is None:
        return jsonify({"error": "No franchise delivers to this location", "code": "no_franchise_serves_location"}), 404
    return jsonify(payload)


@franchises_bp.get("/<uuid:franchise_id>")
def get_franchise(franchise_id):
    try:
        franchise = franchise_service.get_franchise(franchise_id, active_only=True)
    except NotFoundError as e:
        return _error(e)
    return jsonify({"franchise": franchise_service.franchise_detail(franchise)})


@franchises_bp.get("/<uuid:franchise_id>/products")
def franchise_products(franchise_id):
    try:
        category_id = parse_optional_uuid(request.args.get("category_id"), "category_id")
        products = franchise_service.franchise_storefront(
            franchise_id, category_id=category_id, search=request.args.get("search"),
        )
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    return jsonify({"products": products, "count": len(products)})


@franchises_bp.get("/<uuid:franchise_id>/promotions")
def franchise_promotions(franchise_id):
    try:
        promos = franchise_service.public_promotions(franchise_id)
    except NotFoundError as e:
        return _error(e)
    return jsonify({"promotions": [p.to_dict() for p in promos]})


# =============================================================================
# PORTAL
# =============================================================================

@portal_bp.before_request
@require_auth
@require_role(ROLE_FRANCHISE_OWNER, ROLE_FRANCHISE_STAFF)
def _franchise_users_only():
    return None


def _owner_only():
    if g.current_user.role != ROLE_FRANCHISE_OWNER:
        return jsonify({"error": "Franchise owner access required"}), 403
    return None


@portal_bp.get("")
def my_franchise():
    try:
        franchise = franchise_service.get_franchise(g.current_user.franchise_id)
    except NotFoundError as e:
        return _error(e)
    return jsonify({"franchise": franchise.to_dict()})


@portal_bp.put("")
def update_my_franchise():
    denied = _owner_only()
    if denied:
        return denied
    data = request.get_json(silent=True) or {}
    try:
        franchise = franchise_service.update_franchise(
            g.current_user.franchise_id, data, policy=franchise_service.OWN_FRANCHISE_POLICY,
        )
    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    return jsonify({"franchise": franchise.to_dict()})


@portal_bp.get("/products")
def portal_products():
    """Query params: search, low_stock (stock at or below reorder level)."""
    low_stock = request.args.get("low_stock", "false").lower() in ("1", "true", "yes")
    rows = franchise_service.portal_products(
        g.current_user.franchise_id, search=request.args.get("search"), low_stock=low_stock,
    )
    return jsonify({"products": rows, "count": len(rows)})


@portal_bp.put("/products/<uuid:product_id>/stock")
def update_stock(product_id):
    data = request.get_json(silent=True) or {}
    try:
        row = franchise_service.update_stock(g.current_user.franchise_id, product_id, data)
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    return jsonify({"product": row.to_dict()})


@portal_bp.put("/products/<uuid:product_id>/pricing")
def update_pricing(product_id):
    data = request.get_json(silent=True) or {}
    try:
        row = franchise_service.update_pricing(g.current_user.franchise_id, product_id, data)
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    return jsonify({"product": row.to_dict()})


@portal_bp.get("/orders")
def portal_orders():
    page, limit = parse_page_args(request.args)
    status = request.args.get("status")
    if status and status not in order_status.STATUSES:
        return jsonify({"error": f"Invalid status: {status}"}), 400
    orders, total = order_service.list_orders(g.current_user, status=status, page=page, limit=limit)
    return jsonify({"orders": [o.to_dict() for o in orders], "total": total, "page": page, "limit": limit})


@portal_bp.get("/dashboard")
def portal_dashboard():
    return jsonify(dashboard_service.franchise_dashboard(g.current_user.franchise_id))


@portal_bp.get("/staff")
def list_staff():
    denied = _owner_only()
    if denied:
        return denied
    staff = franchise_service.list_staff(g.current_user.franchise_id)
    return jsonify({"staff": [s.to_dict() for s in staff]})


@portal_bp.post("/staff")
def add_staff():
    """Body: email, role (manager | staff), name, password (needed when the email is new)."""
    denied = _owner_only()
    if denied:
        return denied
    data = request.get_json(silent=True) or {}
    try:
        staff = franchise_service.add_staff(g.current_user.franchise_id, data)
    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to add franchise staff")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"staff": staff.to_dict()}), 201


@portal_bp.delete("/staff/<uuid:staff_id>")
def remove_staff(staff_id):
    denied = _owner_only()
    if denied:
        return denied
    try:
        franchise_service.remove_staff(g.current_user.franchise_id, staff_id)
    except NotFoundError as e:
        return _error(e)
    return jsonify({"message": "Staff member removed"})


@portal_bp.get("/promotions")
def list_promotions():
    promos = franchise_service.list_own_promotions(g.current_user.franchise_id)
    return jsonify({"promotions": [p.to_dict() for p in promos]})


@portal_bp.post("/promotions")
def create_promotion():
    denied = _owner_only()
    if denied:
        return denied
    data = request.get_json(silent=True) or {}
    try:
        promo = franchise_service.create_promotion(g.current_user.franchise_id, data)
    except ValidationError as e:
        return _error(e)
    return jsonify({"promotion": promo.to_dict()}), 201


@portal_bp.put("/promotions/<uuid:promotion_id>")
def update_promotion(promotion_id):
    denied = _owner_only()
    if denied:
        return denied
    data = request.get_json(silent=True) or {}
    try:
        promo = franchise_service.update_promotion(g.current_user.franchise_id, promotion_id, data)
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    return jsonify({"promotion": promo.to_dict()})


@portal_bp.delete("/promotions/<uuid:promotion_id>")
def delete_promotion(promotion_id):
    denied = _owner_only()
    if denied:
        return denied
    try:
        franchise_service.delete_promotion(g.current_user.franchise_id, promotion_id)
    except NotFoundError as e:
        return _error(e)
    return jsonify({"message": "Promotion deleted"})


@portal_bp.get("/store-hours")
def get_store_hours():
    hours = franchise_service.list_store_hours(g.current_user.franchise_id)
    return jsonify({"hours": [h.to_dict() for h in hours]})


@portal_bp.put("/store-hours")
def update_store_hours():
    """Body: [{day_of_week, open_time, close_time, is_closed}, ...] or {"hours": [...]}."""
    denied = _owner_only()
    if denied:
        return denied
    data = request.get_json(silent=True)
    try:
        hours = franchise_service.update_store_hours(g.current_user.franchise_id, data)
    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    return jsonify({"hours": [h.to_dict() for h in hours]})
