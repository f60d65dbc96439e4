# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

"""
Admin routes.

Provides endpoints for:
- Master catalog (products, images, export, batch import)
- Categories and subcategories
- Users (list, role / franchise / block changes)
- Franchises (CRUD)
- Platform dashboard

All endpoints require an authenticated admin.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLES
from ..services import (
    auth_service,
    category_service,
    dashboard_service,
    franchise_service,
    import_service,
    product_service,
)
from ..services.category_service import CategoryError
from ..services.job_registry import get_registry
from ..services.storage_service import StorageError, get_storage
from ..validation import ConflictError, NotFoundError, ValidationError, parse_optional_uuid, parse_page_args

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.before_request
@require_auth
@require_role(ROLE_ADMIN)
def _admin_only():
    return None


def _error(e: Exception):
    """Map the shared validation errors to their status codes."""
    if isinstance(e, NotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, ConflictError):
        return jsonify({"error": str(e)}), 409
    return jsonify({"error": str(e)}), 400


# =============================================================================
# PRODUCTS
# =============================================================================

@admin_bp.get("/products")
def list_products():
    """
    Query params:
    - search: item_name, sku or barcode substring
    - category_id, status
    - page, limit
    """
    page, limit = parse_page_args(request.args)
    try:
        category_id = parse_optional_uuid(request.args.get("category_id"), "category_id")
    except ValidationError as e:
        return _error(e)
    rows, total = product_service.list_products(
        search=request.args.get("search"),
        category_id=category_id,
        status=request.args.get("status"),
        page=page,
        limit=limit,
    )
    return jsonify({"products": rows, "total": total, "page": page, "limit": limit})


@admin_bp.get("/products/<uuid:product_id>")
def get_product(product_id):
    try:
        product = product_service.get_product(product_id)
    except NotFoundError as e:
        return _error(e)
    return jsonify({"product": product_service.product_detail(product)})


@admin_bp.post("/products")
def create_product():
    data = request.get_json(silent=True) or {}
    try:
        product = product_service.create_product(data)
    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"product": product_service.product_detail(product)}), 201


@admin_bp.put("/products/<uuid:product_id>")
def update_product(product_id):
    data = request.get_json(silent=True) or {}
    try:
        product = product_service.update_product(product_id, data)
    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"product": product_service.product_detail(product)})


@admin_bp.delete("/products/<uuid:product_id>")
def delete_product(product_id):
    try:
        product_service.delete_product(product_id, get_storage(), deleted_by=g.current_user.email)
    except NotFoundError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"message": "Product deleted"})


@admin_bp.post("/products/<uuid:product_id>/images")
def upload_images(product_id):
    """Multipart upload; every part named "images" (or "image") becomes one image, in order."""
    files = request.files.getlist("images") or request.files.getlist("image")
    try:
        images = product_service.add_images(product_id, files, get_storage())
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    except StorageError:
        current_app.logger.exception("Failed to upload product images")
        return jsonify({"error": "Image upload failed"}), 500
    return jsonify({"images": [img.to_dict() for img in images]}), 201


@admin_bp.delete("/products/<uuid:product_id>/images/<uuid:image_id>")
def delete_image(product_id, image_id):
    try:
        product_service.delete_image(product_id, image_id, get_storage())
    except NotFoundError as e:
        return _error(e)
    return jsonify({"message": "Image deleted"})


@admin_bp.get("/products/export")
def export_products():
    rows = product_service.export_rows()
    return jsonify({"products": rows, "count": len(rows)})


@admin_bp.post("/products/batch")
def submit_batch():
    """
    Body: {products: [...], delete_missing?: bool}

    Returns 202 immediately; poll GET /products/batch/<job_id> for progress.
    """
    try:
        rows, delete_missing = import_service.validate_envelope(request.get_json(silent=True))
    except ValidationError as e:
        return _error(e)
    job = import_service.submit_import(rows, delete_missing=delete_missing)
    return jsonify({"job_id": job.id, "status": "processing", "total": job.total}), 202


@admin_bp.get("/products/batch/<job_id>")
def get_batch(job_id: str):
    job = get_registry().get(job_id)
    if job is None:
        return jsonify({"error": "Job not found"}), 404
    return jsonify(job.to_dict())


# =============================================================================
# CATEGORIES
# =============================================================================

@admin_bp.post("/categories")
def create_category():
    data = request.get_json(silent=True) or {}
    try:
        category = category_service.create_category(data)
    except ValidationError as e:
        return _error(e)
    return jsonify({"category": category.to_dict()}), 201


@admin_bp.put("/categories/<uuid:category_id>")
def update_category(category_id):
    data = request.get_json(silent=True) or {}
    try:
        category = category_service.update_category(category_id, data)
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    return jsonify({"category": category.to_dict()})


@admin_bp.delete("/categories/<uuid:category_id>")
def delete_category(category_id):
    try:
        category_service.delete_category(category_id)
    except (CategoryError, NotFoundError) as e:
        return _error(e)
    return jsonify({"message": "Category deleted"})


@admin_bp.post("/subcategories")
def create_subcategory():
    data = request.get_json(silent=True) or {}
    try:
        sub = category_service.create_subcategory(data)
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    return jsonify({"subcategory": sub.to_dict()}), 201


@admin_bp.put("/subcategories/<uuid:subcategory_id>")
def update_subcategory(subcategory_id):
    data = request.get_json(silent=True) or {}
    try:
        sub = category_service.update_subcategory(subcategory_id, data)
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    return jsonify({"subcategory": sub.to_dict()})


@admin_bp.delete("/subcategories/<uuid:subcategory_id>")
def delete_subcategory(subcategory_id):
    try:
        category_service.delete_subcategory(subcategory_id)
    except (CategoryError, NotFoundError) as e:
        return _error(e)
    return jsonify({"message": "Subcategory deleted"})


# =============================================================================
# USERS
# =============================================================================

@admin_bp.get("/users")
def list_users():
    """Query params: role, search (email or name), page, limit."""
    page, limit = parse_page_args(request.args)
    role = request.args.get("role")
    if role and role not in ROLES:
        return jsonify({"error": "Invalid role"}), 400
    users, total = auth_service.list_users(
        role=role, search=request.args.get("search"), page=page, limit=limit,
    )
    return jsonify({"users": [u.to_dict() for u in users], "total": total, "page": page, "limit": limit})


@admin_bp.put("/users/<uuid:user_id>")
def update_user(user_id):
    """Body may set role, franchise_id and is_blocked. Blocking revokes every session."""
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.admin_update_user(user_id, data, actor=g.current_user)
    except (ValidationError, NotFoundError) as e:
        return _error(e)
    return jsonify({"user": user.to_dict()})


# =============================================================================
# FRANCHISES
# =============================================================================

@admin_bp.get("/franchises")
def list_franchises():
    franchises = franchise_service.list_franchises()
    return jsonify({"franchises": [f.to_dict() for f in franchises]})


@admin_bp.post("/franchises")
def create_franchise():
    data = request.get_json(silent=True) or {}
    try:
        franchise = franchise_service.create_franchise(data)
    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    return jsonify({"franchise": franchise.to_dict()}), 201


@admin_bp.put("/franchises/<uuid:franchise_id>")
def update_franchise(franchise_id):
    data = request.get_json(silent=True) or {}
    try:
        franchise = franchise_service.update_franchise(franchise_id, data)
    except (ValidationError, ConflictError, NotFoundError) as e:
        return _error(e)
    return jsonify({"franchise": franchise.to_dict()})


@admin_bp.delete("/franchises/<uuid:franchise_id>")
def delete_franchise(franchise_id):
    try:
        franchise_service.delete_franchise(franchise_id)
    except NotFoundError as e:
        return _error(e)
    return jsonify({"message": "Franchise deleted"})


# =============================================================================
# DASHBOARD
# =============================================================================

@admin_bp.get("/dashboard")
def dashboard():
    return jsonify(dashboard_service.admin_dashboard())
