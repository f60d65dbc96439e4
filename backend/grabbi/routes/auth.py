# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

SECURITY FEATURES:
- Password strength validation on registration, change and reset
- Sliding-window rate limits on login, register and forgot-password
- Rotating refresh tokens; blocked accounts get 403
- forgot-password always answers 200 so accounts cannot be enumerated
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import bearer_token, rate_limit, require_auth
from ..services import auth_service, session_service
from ..services.auth_service import AuthError
from ..services.session_service import SessionError
from ..validation import ConflictError, ValidationError, parse_page_args, parse_positive_int


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _client():
    return {"user_agent": request.headers.get("User-Agent"), "ip_address": request.remote_addr}


@auth_bp.post("/register")
@rate_limit("register")
def register_route():
    """Customer self-registration. Returns the user and a token pair (201)."""
    data = request.get_json(silent=True) or {}
    try:
        user, tokens = auth_service.register(data, **_client())
        return jsonify({"user": user.to_dict(), **tokens}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to register user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
@rate_limit("login")
def login_route():
    data = request.get_json(silent=True) or {}
    try:
        user, tokens = auth_service.authenticate(data.get("email"), data.get("password"), **_client())
        return jsonify({"user": user.to_dict(), **tokens, "message": "Login successful"}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AuthError as e:
        return jsonify({"error": e.message}), e.status
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/refresh")
def refresh_route():
    """Exchange a refresh token for a new pair. The presented token is revoked."""
    data = request.get_json(silent=True) or {}
    try:
        user, tokens = session_service.rotate_refresh_token(data.get("refresh_token"), **_client())
        return jsonify({"user": user.to_dict(), **tokens}), 200
    except SessionError as e:
        return jsonify({"error": e.message}), e.status
    except Exception:
        current_app.logger.exception("Failed to refresh session")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the current access token, and the refresh token when one is supplied."""
    data = request.get_json(silent=True) or {}
    session_service.revoke_session(bearer_token())
    if data.get("refresh_token"):
        session_service.revoke_session(data["refresh_token"])
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/profile")
@require_auth
def get_profile_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.put("/profile")
@require_auth
def update_profile_route():
    data = request.get_json(silent=True) or {}
    user = auth_service.update_profile(g.current_user, data)
    return jsonify({"user": user.to_dict()}), 200


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    data = request.get_json(silent=True) or {}
    try:
        auth_service.change_password(g.current_user, data.get("current_password"), data.get("new_password"))
        return jsonify({"message": "Password changed, please sign in again"}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AuthError as e:
        return jsonify({"error": e.message}), 400


@auth_bp.post("/forgot-password")
@rate_limit("forgot-password")
def forgot_password_route():
    data = request.get_json(silent=True) or {}
    try:
        auth_service.request_password_reset(data.get("email"))
    except Exception:
        # the answer must not depend on whether the account exists
        current_app.logger.exception("Failed to issue password reset")
    return jsonify({"message": "If that email is registered, a reset link has been sent"}), 200


@auth_bp.post("/reset-password")
def reset_password_route():
    data = request.get_json(silent=True) or {}
    try:
        auth_service.reset_password(data.get("token"), data.get("new_password"))
        return jsonify({"message": "Password has been reset"}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@auth_bp.post("/redeem-points")
@require_auth
def redeem_points_route():
    data = request.get_json(silent=True) or {}
    try:
        points = parse_positive_int(data.get("points"), "points")
        user = auth_service.redeem_points(g.current_user, points)
        return jsonify({"user": user.to_dict(), "loyalty_points": user.loyalty_points}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@auth_bp.get("/loyalty-history")
@require_auth
def loyalty_history_route():
    page, limit = parse_page_args(request.args)
    rows, total = auth_service.loyalty_history(g.current_user, page=page, limit=limit)
    return jsonify({
        "history": [r.to_dict() for r in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }), 200
