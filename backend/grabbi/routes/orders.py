# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

"""
Order routes.

Checkout runs as one transaction (franchise resolution, stock reservation,
order rows, loyalty points, cart clear); confirmation email goes out after
commit. Reads are role-filtered: customers see their own orders, franchise
roles their franchise's, admins everything.
"""

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.orm.exc import StaleDataError

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_FRANCHISE_OWNER, ROLE_FRANCHISE_STAFF
from ..services import order_service, order_status
from ..services.order_service import OrderError
from ..validation import ValidationError, parse_optional_uuid, parse_page_args

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")
transitions_bp = Blueprint("order_transitions", __name__, url_prefix="/api/order-transitions")


@orders_bp.post("")
@require_auth
def create_order():
    """
    Place an order from the caller's cart.

    Body: delivery_address (required), payment_method, franchise_id,
    customer_lat + customer_lng.
    """
    data = request.get_json(silent=True) or {}
    try:
        req = order_service.parse_checkout(data)
        order = order_service.place_order(g.current_user, req)
        return jsonify({"order": order.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e), "code": "validation_error"}), 400
    except OrderError as e:
        return jsonify(e.to_dict()), e.status
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
def list_orders():
    """
    Query params:
    - status: filter by order status
    - franchise_id: admin only, filter by franchise
    - page, limit
    """
    page, limit = parse_page_args(request.args)
    status = request.args.get("status")
    if status and status not in order_status.STATUSES:
        return jsonify({"error": f"Invalid status: {status}"}), 400
    try:
        franchise_id = parse_optional_uuid(request.args.get("franchise_id"), "franchise_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    orders, total = order_service.list_orders(
        g.current_user, franchise_id=franchise_id, status=status, page=page, limit=limit,
    )
    return jsonify({
        "orders": [o.to_dict() for o in orders],
        "total": total,
        "page": page,
        "limit": limit,
    })


@orders_bp.get("/<uuid:order_id>")
@require_auth
def get_order(order_id):
    order = order_service.get_order(g.current_user, order_id)
    if order is None:
        return jsonify({"error": "Order not found", "code": "order_not_found"}), 404
    return jsonify({"order": order.to_dict()})


@orders_bp.put("/<uuid:order_id>/status")
@require_auth
@require_role(ROLE_ADMIN, ROLE_FRANCHISE_OWNER, ROLE_FRANCHISE_STAFF)
def update_order_status(order_id):
    """Body: status. Moving to cancelled puts the reserved stock back."""
    data = request.get_json(silent=True) or {}
    status = data.get("status")
    if not status:
        return jsonify({"error": "status is required", "code": "validation_error"}), 400
    try:
        order = order_service.update_status(order_id, str(status), actor=g.current_user)
        return jsonify({"order": order.to_dict()})
    except OrderError as e:
        return jsonify(e.to_dict()), e.status
    except StaleDataError:
        return jsonify({"error": "Order was modified concurrently, reload and retry"}), 409
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@transitions_bp.get("")
def list_transitions():
    return jsonify({
        "transitions": order_status.transitions_map(),
        "statuses": list(order_status.STATUSES),
        "terminal": sorted(order_status.TERMINAL_STATUSES),
    })
