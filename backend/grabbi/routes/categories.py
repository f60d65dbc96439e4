# Overview: Flask API routes for category reads; parses input and returns JSON responses.

from flask import Blueprint, jsonify

from ..services import category_service
from ..validation import NotFoundError

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
def list_categories():
    return jsonify({"categories": category_service.list_categories()})


@categories_bp.get("/<uuid:category_id>")
def get_category(category_id):
    try:
        return jsonify({"category": category_service.category_detail(category_id)})
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@categories_bp.get("/<uuid:category_id>/subcategories")
def list_subcategories(category_id):
    try:
        subs = category_service.list_subcategories(category_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"subcategories": [s.to_dict() for s in subs]})
