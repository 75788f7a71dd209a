"""Bearer token guard for the reconcile trigger."""
import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)


def _unauthorized(detail: str):
    response = jsonify({"error": "Unauthorized", "message": detail})
    response.status_code = 401
    response.headers["WWW-Authenticate"] = 'Bearer realm="license-manager"'
    return response


def require_trigger_token(fn):
    """
    Require ``Authorization: Bearer <RECONCILE_TRIGGER_TOKEN>``.

    Returns 503 when no token is configured, so an unconfigured deployment
    never accepts anonymous triggers.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        expected = current_app.config["APP_CONFIG"].reconcile_trigger_token
        if not expected:
            logger.error("Reconcile trigger called but RECONCILE_TRIGGER_TOKEN is not configured")
            return jsonify({"error": "Service Unavailable", "message": "Trigger token not configured"}), 503

        auth_header = request.headers.get("Authorization", "")
        if not auth_header:
            logger.warning("Reconcile request missing Authorization header")
            return _unauthorized("Authorization header required. Use 'Authorization: Bearer <token>'")
        if not auth_header.startswith("Bearer "):
            logger.warning("Reconcile request with invalid Authorization format")
            return _unauthorized("Invalid Authorization header format. Expected 'Bearer <token>'")

        token = auth_header[7:].strip()
        if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Reconcile request with invalid bearer token")
            return _unauthorized("Invalid bearer token")

        return fn(*args, **kwargs)

    return wrapper
