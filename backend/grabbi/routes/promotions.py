# Overview: Flask API routes for marketing banners; public reads, admin writes.

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import promotion_service
from ..validation import NotFoundError, ValidationError

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/promotions")


@promotions_bp.route("", methods=["GET"])
def list_promotions():
    result = promotion_service.list_promotions()
    return jsonify({"promotions": [p.to_dict() for p in result]})


@promotions_bp.route("/<uuid:promotion_id>", methods=["GET"])
def get_promotion(promotion_id):
    try:
        promo = promotion_service.get_promotion(promotion_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"promotion": promo.to_dict()})


@promotions_bp.route("", methods=["POST"])
@require_auth
@require_role(ROLE_ADMIN)
def create_promotion():
    data = request.get_json(silent=True) or {}
    try:
        promo = promotion_service.create_promotion(data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"promotion": promo.to_dict()}), 201


@promotions_bp.route("/<uuid:promotion_id>", methods=["PUT"])
@require_auth
@require_role(ROLE_ADMIN)
def update_promotion(promotion_id):
    data = request.get_json(silent=True) or {}
    try:
        promo = promotion_service.update_promotion(promotion_id, data)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"promotion": promo.to_dict()})


@promotions_bp.route("/<uuid:promotion_id>", methods=["DELETE"])
@require_auth
@require_role(ROLE_ADMIN)
def delete_promotion(promotion_id):
    try:
        promotion_service.delete_promotion(promotion_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"message": "Promotion deleted"})
