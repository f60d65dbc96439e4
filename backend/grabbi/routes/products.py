# Overview: Flask API routes for storefront product reads; parses input and returns JSON responses.

"""
Storefront product routes. Public, no authentication.

Only active products are listed; online_visible is applied unless show_all
is set. With franchise_id, values are merged from that franchise's overrides.
"""

from flask import Blueprint, jsonify, request

from ..services import catalog_service
from ..validation import ValidationError, parse_optional_uuid

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _flag(name: str) -> bool:
    return request.args.get(name, "false").lower() in ("1", "true", "yes")


@products_bp.get("")
def list_products():
    """
    Query params:
    - category_id, subcategory_id: UUID filters
    - search: case-insensitive substring of item_name
    - show_all: include products hidden from the online store
    - franchise_id: merge that franchise's stock and pricing overrides
    """
    try:
        category_id = parse_optional_uuid(request.args.get("category_id"), "category_id")
        subcategory_id = parse_optional_uuid(request.args.get("subcategory_id"), "subcategory_id")
        franchise_id = parse_optional_uuid(request.args.get("franchise_id"), "franchise_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    products = catalog_service.list_products(
        category_id=category_id,
        subcategory_id=subcategory_id,
        search=request.args.get("search"),
        show_all=_flag("show_all"),
        franchise_id=franchise_id,
    )
    return jsonify({"products": products, "count": len(products)})


@products_bp.get("/<uuid:product_id>")
def get_product(product_id):
    try:
        franchise_id = parse_optional_uuid(request.args.get("franchise_id"), "franchise_id")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    product = catalog_service.get_storefront_product(product_id, franchise_id=franchise_id)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product})
