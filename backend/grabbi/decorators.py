# Overview: Request, role and rate-limit decorators for API routes.

import threading
import time
from collections import defaultdict, deque
from functools import wraps

from flask import current_app, g, jsonify, request

from .models.auth import FRANCHISE_ROLES
from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid access token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, revoked or expired token
    Returns 403 if the account is blocked.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401
        if context.user.is_blocked:
            return jsonify({"error": "Account is blocked"}), 403

        g.current_user = context.user
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the authenticated user to hold one of roles. Must follow @require_auth.

    Franchise roles must also be attached to a franchise; a franchise user
    without one has nothing to act on.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": list(roles),
                }), 403
            if user.role in FRANCHISE_ROLES and not user.franchise_id:
                return jsonify({"error": "No franchise assigned to this account"}), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


class SlidingWindowLimiter:
    """Per-key request log; a key may make `limit` calls in any `window` seconds."""

    def __init__(self):
        self._lock = threading.Lock()
        self._hits: dict[str, deque] = defaultdict(deque)

    def hit(self, key: str, *, limit: int, window: float) -> bool:
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= now - window:
                hits.popleft()
            if len(hits) >= limit:
                return False
            hits.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


limiter = SlidingWindowLimiter()


def rate_limit(scope: str):
    """Limit calls per client address using AUTH_RATE_LIMIT / AUTH_RATE_WINDOW_SECONDS."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            cfg = current_app.config
            key = f"{scope}:{request.remote_addr or 'unknown'}"
            allowed = limiter.hit(
                key,
                limit=cfg.get("AUTH_RATE_LIMIT", 10),
                window=cfg.get("AUTH_RATE_WINDOW_SECONDS", 60),
            )
            if not allowed:
                current_app.logger.warning("Rate limit exceeded for %s", key)
                return jsonify({"error": "Too many requests, try again later"}), 429
            return f(*args, **kwargs)

        return decorated_function
    return decorator
