# Overview: Flask API routes for the shopping cart; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..services import cart_service
from ..validation import NotFoundError, ValidationError, parse_optional_uuid

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_auth
def get_cart():
    """Query params: franchise_id (optional) prices lines with that franchise's overrides."""
    try:
        franchise_id = parse_optional_uuid(request.args.get("franchise_id"), "franchise_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(cart_service.get_cart(g.current_user, franchise_id=franchise_id))


@cart_bp.post("")
@require_auth
def add_to_cart():
    data = request.get_json(silent=True) or {}
    try:
        item = cart_service.add_item(g.current_user, data)
        return jsonify({"item": item.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to add item to cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.put("/<uuid:item_id>")
@require_auth
def update_cart_item(item_id):
    data = request.get_json(silent=True) or {}
    try:
        item = cart_service.update_item(g.current_user, item_id, data)
        return jsonify({"item": item.to_dict()})
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@cart_bp.delete("/<uuid:item_id>")
@require_auth
def remove_cart_item(item_id):
    try:
        cart_service.remove_item(g.current_user, item_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"message": "Item removed"})


@cart_bp.delete("")
@require_auth
def clear_cart():
    removed = cart_service.clear_cart(g.current_user)
    return jsonify({"message": "Cart cleared", "removed": removed})
